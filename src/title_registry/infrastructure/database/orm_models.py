"""SQLAlchemy 2.0 ORM models for the title registry.

Five tables:
    1. accounts             — Local user accounts, matched to wallets.
    2. properties           — The off-chain projection of each title (PropertyRecord).
    3. registration_drafts  — Resumable prepare -> sign -> execute protocol state.
    4. property_events      — Append-only audit log of every status change.
    5. sale_events          — Captured marketplace sales for escrow reporting.

Design decisions:
    - property_id is the business key; asset_id gets a unique index once minted.
    - Wallet addresses are stored lowercase so equality is plain string equality.
    - Decimal for area and prices (no floating point rounding errors).
    - JSON columns (JSONB on PostgreSQL) for document hashes and draft fields.
    - CHECK constraints on status columns to reject unknown values at DB level.
    - property_events is append-only: no UPDATE or DELETE at the application level.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal  # noqa: TC003 - needed at runtime by SQLAlchemy Mapped[]

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    Uuid,
    event,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JSONVariant = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def _now() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Helper: auto-set updated_at on flush
# ---------------------------------------------------------------------------
def _set_updated_at(mapper, connection, target):  # noqa: ANN001
    """SQLAlchemy event listener that updates `updated_at` before flush."""
    if hasattr(target, "updated_at"):
        target.updated_at = _now()


# ---------------------------------------------------------------------------
# 1. accounts
# ---------------------------------------------------------------------------
class Account(Base):
    """A locally registered user. Owners and buyers are resolved by wallet."""

    __tablename__ = "accounts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True, unique=True)
    wallet_address: Mapped[str] = mapped_column(
        String(42),
        nullable=False,
        unique=True,
        comment="Lowercased EVM wallet address",
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="buyer")
    kyc_status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )

    __table_args__ = (
        CheckConstraint(
            "role IN ('seller', 'buyer', 'verifier')",
            name="ck_account_valid_role",
        ),
    )

    def __repr__(self) -> str:
        return f"<Account id={self.id} wallet={self.wallet_address} role={self.role}>"


# ---------------------------------------------------------------------------
# 2. properties
# ---------------------------------------------------------------------------
class PropertyRecord(Base):
    """Off-chain projection of one minted title."""

    __tablename__ = "properties"

    # --- Identity ---
    property_id: Mapped[str] = mapped_column(
        String(100),
        primary_key=True,
        comment="Business identifier, globally unique",
    )
    survey_number: Mapped[str] = mapped_column(String(100), nullable=False)
    asset_id: Mapped[int | None] = mapped_column(
        BigInteger,
        nullable=True,
        unique=True,
        comment="On-chain token id, assigned by the mint event",
    )

    # --- Descriptive ---
    property_address: Mapped[str] = mapped_column(Text, nullable=False)
    area: Mapped[Decimal] = mapped_column(Numeric(24, 6), nullable=False)
    owner_name: Mapped[str] = mapped_column(String(200), nullable=False)
    owner_wallet_address: Mapped[str] = mapped_column(String(42), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # --- Provenance ---
    document_hashes: Mapped[list] = mapped_column(
        JSONVariant,
        nullable=False,
        comment="[mother_deed, encumbrance_certificate] content hashes",
    )
    verifier_ref: Mapped[str] = mapped_column(String(100), nullable=False)
    owner_ref: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("accounts.id"),
        nullable=True,
        comment="Local account of the current owner (null until matched)",
    )
    payload_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    consent_signature: Mapped[str | None] = mapped_column(
        String(132),
        nullable=True,
        comment="Owner's raw signature, kept for dispute resolution",
    )

    # --- Lifecycle ---
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="pending",
        comment="Current lifecycle state (guarded by PropertyStateMachine)",
    )
    mint_transaction_hash: Mapped[str] = mapped_column(String(66), nullable=False, unique=True)
    sale_transaction_hash: Mapped[str | None] = mapped_column(String(66), nullable=True)
    list_price: Mapped[Decimal | None] = mapped_column(Numeric(36, 18), nullable=True)
    sale_price: Mapped[Decimal | None] = mapped_column(Numeric(36, 18), nullable=True)
    listed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    sold_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now, onupdate=_now
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'verified', 'listed_for_sale', 'sold')",
            name="ck_property_valid_status",
        ),
        CheckConstraint("area > 0", name="ck_property_positive_area"),
        Index("idx_property_status", "status"),
        Index("idx_property_owner_wallet", "owner_wallet_address"),
        Index("idx_property_owner_ref", "owner_ref"),
    )

    def __repr__(self) -> str:
        return (
            f"<PropertyRecord property_id={self.property_id} "
            f"asset_id={self.asset_id} status={self.status}>"
        )


# ---------------------------------------------------------------------------
# 3. registration_drafts
# ---------------------------------------------------------------------------
class RegistrationDraft(Base):
    """State of one registration between prepare and ledger write.

    Keyed by the canonical payload hash so the signing round trip can be
    resumed from whatever the wallet returns.
    """

    __tablename__ = "registration_drafts"

    payload_hash: Mapped[str] = mapped_column(String(66), primary_key=True)
    property_id: Mapped[str] = mapped_column(String(100), nullable=False)
    fields: Mapped[dict] = mapped_column(
        JSONVariant,
        nullable=False,
        comment="Normalized RegistrationFields",
    )
    document_hashes: Mapped[list] = mapped_column(JSONVariant, nullable=False)
    encoded_call_data: Mapped[str] = mapped_column(Text, nullable=False)
    verifier_ref: Mapped[str] = mapped_column(String(100), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="drafted",
        comment="Guarded by RegistrationStateMachine",
    )
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    signer_address: Mapped[str | None] = mapped_column(String(42), nullable=True)
    signature: Mapped[str | None] = mapped_column(String(132), nullable=True)
    mint_transaction_hash: Mapped[str | None] = mapped_column(
        String(66), nullable=True, unique=True
    )
    asset_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now, onupdate=_now
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('drafted', 'hash_prepared', 'signed', 'chain_submitted', "
            "'recorded', 'failed')",
            name="ck_draft_valid_status",
        ),
        Index("idx_draft_property_id", "property_id"),
        Index("idx_draft_status", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<RegistrationDraft hash={self.payload_hash[:10]} "
            f"property_id={self.property_id} status={self.status}>"
        )


# ---------------------------------------------------------------------------
# 4. property_events (Append-Only Audit Log)
# ---------------------------------------------------------------------------
class PropertyEvent(Base):
    """Immutable audit record of every status change of a property.

    This table is APPEND-ONLY. No UPDATE or DELETE operations are permitted
    at the application level.
    """

    __tablename__ = "property_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    property_id: Mapped[str] = mapped_column(
        String(100),
        ForeignKey("properties.property_id"),
        nullable=False,
    )
    event_type: Mapped[str] = mapped_column(String(40), nullable=False)
    old_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    new_status: Mapped[str] = mapped_column(String(20), nullable=False)
    actor: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        default="SYSTEM",
        comment="Who triggered this event (wallet address, verifier ref or SYSTEM)",
    )
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata",
        JSONVariant,
        nullable=True,
        default=None,
        comment="Arbitrary context: tx hashes, signature, prices",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )

    __table_args__ = (
        Index("idx_event_property", "property_id"),
        Index("idx_event_type", "event_type"),
        Index("idx_event_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<PropertyEvent id={self.id} type={self.event_type} "
            f"{self.old_status}->{self.new_status}>"
        )


# ---------------------------------------------------------------------------
# 5. sale_events
# ---------------------------------------------------------------------------
class SaleEventRecord(Base):
    """A PropertySold event captured when a sale is confirmed."""

    __tablename__ = "sale_events"

    transaction_hash: Mapped[str] = mapped_column(String(66), primary_key=True)
    asset_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    property_id: Mapped[str] = mapped_column(
        String(100),
        ForeignKey("properties.property_id"),
        nullable=False,
    )
    buyer: Mapped[str] = mapped_column(String(42), nullable=False)
    seller: Mapped[str] = mapped_column(String(42), nullable=False)
    price_wei: Mapped[str] = mapped_column(
        String(78),
        nullable=False,
        comment="Sale price in wei as a decimal string (exceeds 64-bit range)",
    )
    block_number: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    captured_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )

    __table_args__ = (
        Index("idx_sale_seller", "seller"),
        Index("idx_sale_asset", "asset_id"),
    )


# ---------------------------------------------------------------------------
# Register the auto-update listeners for updated_at
# ---------------------------------------------------------------------------
event.listen(PropertyRecord, "before_update", _set_updated_at)
event.listen(RegistrationDraft, "before_update", _set_updated_at)
