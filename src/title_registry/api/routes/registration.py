"""Registration REST API routes.

Registration is a two-call protocol: prepare returns the payload hash the
owner's wallet signs, execute submits that signature and mints the title.

Routes:
    POST   /api/v1/registrations/prepare               — Pin documents, return payload hash
    POST   /api/v1/registrations/execute               — Verify consent, mint, record
    GET    /api/v1/registrations/{payload_hash}        — Registration status
    POST   /api/v1/registrations/{payload_hash}/resume — Finish after a confirmation timeout
    POST   /api/v1/registrations/reconcile             — Replay a mint transaction
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, File, Form, UploadFile

from title_registry.api.deps import get_registration_coordinator
from title_registry.domain.document_protocol import DocumentUpload
from title_registry.domain.enums import DocumentKind
from title_registry.logging_config import get_logger
from title_registry.schemas.property import (
    PrepareRegistrationResponse,
    PropertyResponse,
    ReconcileRegistrationRequest,
    RegistrationDraftResponse,
)
from title_registry.services.registration_service import RegistrationCoordinator

router = APIRouter(prefix="/api/v1/registrations", tags=["Registrations"])
logger = get_logger(__name__)


def registration_fields(
    property_id: str = Form(...),
    survey_number: str = Form(...),
    property_address: str = Form(...),
    area: str = Form(...),
    owner_name: str = Form(...),
    owner_wallet_address: str = Form(...),
    description: str | None = Form(default=None),
) -> dict:
    """Collect the registration attributes from the multipart form."""
    return {
        "property_id": property_id,
        "survey_number": survey_number,
        "property_address": property_address,
        "area": area,
        "owner_name": owner_name,
        "owner_wallet_address": owner_wallet_address,
        "description": description,
    }


async def _read_upload(kind: DocumentKind, upload: UploadFile) -> DocumentUpload:
    return DocumentUpload(
        kind=kind,
        filename=upload.filename or f"{kind}.pdf",
        content_type=upload.content_type or "",
        content=await upload.read(),
    )


# ---------------------------------------------------------------------------
# Prepare
# ---------------------------------------------------------------------------


@router.post(
    "/prepare",
    response_model=PrepareRegistrationResponse,
    status_code=201,
    summary="Prepare a registration for owner signature",
)
async def prepare_registration(
    fields: dict = Depends(registration_fields),
    verifier_ref: str = Form(...),
    mother_deed: UploadFile = File(...),
    encumbrance_certificate: UploadFile = File(...),
    coordinator: RegistrationCoordinator = Depends(get_registration_coordinator),
) -> PrepareRegistrationResponse:
    """Pin both documents and return the canonical payload hash to sign."""
    documents = [
        await _read_upload(DocumentKind.MOTHER_DEED, mother_deed),
        await _read_upload(DocumentKind.ENCUMBRANCE_CERTIFICATE, encumbrance_certificate),
    ]
    prepared = await coordinator.prepare_registration(fields, documents, verifier_ref)
    return PrepareRegistrationResponse(
        payload_hash=prepared.payload_hash,
        encoded_call_data=prepared.encoded_call_data,
        canonical_payload=prepared.canonical_payload,
        document_hashes=prepared.document_hashes,
        property_id=prepared.property_id,
        status=prepared.status,
    )


# ---------------------------------------------------------------------------
# Execute
# ---------------------------------------------------------------------------


@router.post(
    "/execute",
    response_model=PropertyResponse,
    status_code=201,
    summary="Submit the owner's signature and mint the title",
)
async def execute_registration(
    fields: dict = Depends(registration_fields),
    signature: str = Form(...),
    signer_address: str = Form(...),
    payload_hash: str = Form(...),
    mother_deed: UploadFile | None = File(default=None),
    encumbrance_certificate: UploadFile | None = File(default=None),
    coordinator: RegistrationCoordinator = Depends(get_registration_coordinator),
) -> PropertyResponse:
    """Verify consent and payload integrity, mint, and record a pending title.

    Documents are optional here; without them the hashes pinned at prepare
    time are used for the integrity check.
    """
    documents = None
    if mother_deed is not None or encumbrance_certificate is not None:
        documents = []
        if mother_deed is not None:
            documents.append(await _read_upload(DocumentKind.MOTHER_DEED, mother_deed))
        if encumbrance_certificate is not None:
            documents.append(
                await _read_upload(DocumentKind.ENCUMBRANCE_CERTIFICATE, encumbrance_certificate)
            )

    record = await coordinator.execute_registration(
        fields,
        signature=signature,
        signer_address=signer_address,
        payload_hash=payload_hash,
        documents=documents,
    )
    return PropertyResponse.model_validate(record)


# ---------------------------------------------------------------------------
# Recovery
# ---------------------------------------------------------------------------


@router.post(
    "/reconcile",
    response_model=PropertyResponse,
    summary="Replay a mint transaction into the ledger",
)
async def reconcile_registration(
    request: ReconcileRegistrationRequest,
    coordinator: RegistrationCoordinator = Depends(get_registration_coordinator),
) -> PropertyResponse:
    """Idempotent: returns the existing record if the mint is already recorded."""
    record = await coordinator.reconcile_registration(request.mint_transaction_hash)
    return PropertyResponse.model_validate(record)


@router.get(
    "/{payload_hash}",
    response_model=RegistrationDraftResponse,
    summary="Get registration status",
)
async def get_registration(
    payload_hash: str,
    coordinator: RegistrationCoordinator = Depends(get_registration_coordinator),
) -> RegistrationDraftResponse:
    draft = await coordinator.get_draft(payload_hash)
    return RegistrationDraftResponse.model_validate(draft)


@router.post(
    "/{payload_hash}/resume",
    response_model=PropertyResponse,
    summary="Resume a registration after a confirmation timeout",
)
async def resume_registration(
    payload_hash: str,
    coordinator: RegistrationCoordinator = Depends(get_registration_coordinator),
) -> PropertyResponse:
    record = await coordinator.resume_registration(payload_hash)
    return PropertyResponse.model_validate(record)
