"""Pydantic schemas for the title registry API.

These schemas define the request/response shapes for the REST API. They are
separate from the ORM models to maintain clean boundaries between the API
and database layers. Registration requests arrive as multipart forms (they
carry documents), so only their responses are modelled here.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class ReconcileRegistrationRequest(BaseModel):
    """Request body for replaying a mint transaction into the ledger."""

    mint_transaction_hash: str = Field(
        ...,
        min_length=66,
        max_length=66,
        description="Hash of the mint transaction (0x-prefixed)",
    )


class VerifyPropertyRequest(BaseModel):
    """Request body for marking a title verified."""

    verifier_ref: str = Field(
        default="SYSTEM",
        max_length=100,
        description="Who performed the verification (recorded in the audit log)",
    )


class ListPropertyRequest(BaseModel):
    """Request body for listing a verified property on the marketplace."""

    price: Decimal = Field(
        ...,
        gt=0,
        description="Asking price in ether",
        examples=["1.5"],
    )
    caller_wallet_address: str = Field(
        ...,
        min_length=42,
        max_length=42,
        description="Wallet of the account requesting the listing; must be the owner",
        examples=["0x742d35cc6634c0532925a3b844bc9e7595f2bd18"],
    )


class ConfirmSaleRequest(BaseModel):
    """Request body for recording a completed marketplace purchase."""

    buyer_wallet_address: str = Field(
        ...,
        min_length=42,
        max_length=42,
        description="Wallet that called buyProperty; must belong to a local account",
    )
    transaction_hash: str = Field(
        ...,
        min_length=66,
        max_length=66,
        description="Hash of the buyer's buyProperty transaction",
    )
    price: Decimal | None = Field(
        default=None,
        gt=0,
        description="Expected sale price in ether (checked against the sale event)",
    )


class CreateAccountRequest(BaseModel):
    """Request body for registering a local account."""

    name: str = Field(..., min_length=1, max_length=200)
    wallet_address: str = Field(..., min_length=42, max_length=42)
    role: str = Field(default="buyer", description="seller, buyer or verifier")
    email: str | None = Field(default=None, max_length=320)


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class PrepareRegistrationResponse(BaseModel):
    """What the owner's wallet needs to sign."""

    payload_hash: str
    encoded_call_data: str
    canonical_payload: str
    document_hashes: list[str]
    property_id: str
    status: str


class RegistrationDraftResponse(BaseModel):
    """Current state of a registration."""

    model_config = ConfigDict(from_attributes=True)

    payload_hash: str
    property_id: str
    status: str
    failure_reason: str | None
    document_hashes: list[str]
    signer_address: str | None
    mint_transaction_hash: str | None
    asset_id: int | None
    created_at: datetime
    updated_at: datetime


class PropertyResponse(BaseModel):
    """Response schema for a property record."""

    model_config = ConfigDict(from_attributes=True)

    property_id: str
    survey_number: str
    asset_id: int | None
    property_address: str
    area: Decimal
    owner_name: str
    owner_wallet_address: str
    description: str | None
    document_hashes: list[str]
    verifier_ref: str
    owner_ref: uuid.UUID | None
    payload_hash: str
    status: str
    mint_transaction_hash: str
    sale_transaction_hash: str | None
    list_price: Decimal | None
    sale_price: Decimal | None
    listed_at: datetime | None
    sold_at: datetime | None
    created_at: datetime
    updated_at: datetime


class PropertyEventResponse(BaseModel):
    """Response schema for an audit event."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    property_id: str
    event_type: str
    old_status: str | None
    new_status: str
    actor: str
    metadata: dict | None = Field(default=None, validation_alias="metadata_json")
    created_at: datetime


class PropertyStatusResponse(BaseModel):
    """Lightweight status check response."""

    property_id: str
    asset_id: int | None
    status: str
    allowed_events: list[str] = Field(
        description="State machine events that can fire from the current status"
    )


class DocumentCheckResponse(BaseModel):
    property_id: str
    kind: str
    verified: bool
    document_authentic: bool
    wallet_is_owner: bool
    content_hash: str
    chain_owner: str


class SaleEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    transaction_hash: str
    asset_id: int
    property_id: str
    buyer: str
    seller: str
    price_wei: str
    block_number: int | None
    captured_at: datetime


class EscrowBalanceResponse(BaseModel):
    """Pending marketplace proceeds for the service seller address."""

    seller_address: str
    pending_wei: str = Field(description="Exact amount in wei, as a decimal string")
    pending_ether: Decimal
    recorded_sales: list[SaleEventResponse]


class WithdrawalResponse(BaseModel):
    tx_hash: str
    amount_wei: str
    amount_ether: Decimal


class AccountResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    email: str | None
    wallet_address: str
    role: str
    kyc_status: str
    created_at: datetime


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    database: str = "unknown"
    chain: str = "unknown"
