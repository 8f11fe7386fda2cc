"""Property REST API routes.

Routes:
    GET    /api/v1/properties/{id}                  — Get property record
    GET    /api/v1/properties/{id}/status           — Lightweight status check
    GET    /api/v1/properties/{id}/events           — Audit trail
    POST   /api/v1/properties/{id}/verify           — Set verified flag (pending -> verified)
    POST   /api/v1/properties/{id}/list             — List for sale (verified -> listed_for_sale)
    POST   /api/v1/properties/{id}/confirm-sale     — Record a purchase (listed_for_sale -> sold)
    POST   /api/v1/properties/{id}/reconcile        — Catch the ledger up with the chain
    POST   /api/v1/properties/{id}/verify-document  — Check a document against the title
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, File, Form, UploadFile

from title_registry.api.deps import get_property_service, get_transfer_coordinator
from title_registry.domain.document_protocol import DocumentUpload
from title_registry.logging_config import get_logger
from title_registry.schemas.property import (
    ConfirmSaleRequest,
    DocumentCheckResponse,
    ListPropertyRequest,
    PropertyEventResponse,
    PropertyResponse,
    PropertyStatusResponse,
    VerifyPropertyRequest,
)
from title_registry.services.property_service import PropertyService
from title_registry.services.transfer_service import TransferCoordinator

router = APIRouter(prefix="/api/v1/properties", tags=["Properties"])
logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Read
# ---------------------------------------------------------------------------


@router.get(
    "/{property_id}",
    response_model=PropertyResponse,
    summary="Get property record",
)
async def get_property(
    property_id: str,
    svc: PropertyService = Depends(get_property_service),
) -> PropertyResponse:
    record = await svc.get_property(property_id)
    return PropertyResponse.model_validate(record)


@router.get(
    "/{property_id}/status",
    response_model=PropertyStatusResponse,
    summary="Get lightweight status",
)
async def get_property_status(
    property_id: str,
    svc: PropertyService = Depends(get_property_service),
) -> PropertyStatusResponse:
    """Return current status and the allowed state machine events."""
    return PropertyStatusResponse(**await svc.get_status(property_id))


@router.get(
    "/{property_id}/events",
    response_model=list[PropertyEventResponse],
    summary="Get audit trail",
)
async def get_property_events(
    property_id: str,
    svc: PropertyService = Depends(get_property_service),
) -> list[PropertyEventResponse]:
    """Return all status-change events for a property in chronological order."""
    events = await svc.get_events(property_id)
    return [PropertyEventResponse.model_validate(e) for e in events]


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


@router.post(
    "/{property_id}/verify",
    response_model=PropertyResponse,
    summary="Verify a pending title",
)
async def verify_property(
    property_id: str,
    request: VerifyPropertyRequest | None = None,
    coordinator: TransferCoordinator = Depends(get_transfer_coordinator),
) -> PropertyResponse:
    """Set the on-chain verified flag. Transitions pending -> verified."""
    actor = request.verifier_ref if request else "SYSTEM"
    record = await coordinator.verify_property(property_id, actor=actor)
    return PropertyResponse.model_validate(record)


@router.post(
    "/{property_id}/list",
    response_model=PropertyResponse,
    summary="List a verified title for sale",
)
async def list_property(
    property_id: str,
    request: ListPropertyRequest,
    coordinator: TransferCoordinator = Depends(get_transfer_coordinator),
) -> PropertyResponse:
    """Approve the marketplace and list. Transitions verified -> listed_for_sale."""
    record = await coordinator.list_for_sale(
        property_id,
        price=request.price,
        caller_wallet=request.caller_wallet_address,
    )
    return PropertyResponse.model_validate(record)


@router.post(
    "/{property_id}/confirm-sale",
    response_model=PropertyResponse,
    summary="Record a completed purchase",
)
async def confirm_sale(
    property_id: str,
    request: ConfirmSaleRequest,
    coordinator: TransferCoordinator = Depends(get_transfer_coordinator),
) -> PropertyResponse:
    """Capture the PropertySold event and hand the title to the buyer."""
    record = await coordinator.confirm_sale(
        property_id,
        buyer_wallet=request.buyer_wallet_address,
        transaction_hash=request.transaction_hash,
        price=request.price,
    )
    return PropertyResponse.model_validate(record)


@router.post(
    "/{property_id}/reconcile",
    response_model=PropertyResponse,
    summary="Advance a lagging ledger status from chain state",
)
async def reconcile_property(
    property_id: str,
    coordinator: TransferCoordinator = Depends(get_transfer_coordinator),
) -> PropertyResponse:
    record = await coordinator.reconcile_status(property_id)
    return PropertyResponse.model_validate(record)


@router.post(
    "/{property_id}/verify-document",
    response_model=DocumentCheckResponse,
    summary="Check a document against the recorded title",
)
async def verify_document(
    property_id: str,
    kind: str = Form(...),
    wallet_address: str = Form(...),
    document: UploadFile = File(...),
    svc: PropertyService = Depends(get_property_service),
) -> DocumentCheckResponse:
    """Authentic only if the bytes match the recorded hash and the wallet owns the asset."""
    upload = DocumentUpload(
        kind=kind,
        filename=document.filename or "document.pdf",
        content_type=document.content_type or "",
        content=await document.read(),
    )
    check = await svc.verify_document(property_id, upload, wallet_address)
    return DocumentCheckResponse(
        property_id=check.property_id,
        kind=check.kind,
        verified=check.verified,
        document_authentic=check.document_authentic,
        wallet_is_owner=check.wallet_is_owner,
        content_hash=check.content_hash,
        chain_owner=check.chain_owner,
    )
