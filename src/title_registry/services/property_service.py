"""Property Service — read side of the ledger and document authenticity checks."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from title_registry.domain.enums import DocumentKind
from title_registry.domain.exceptions import PropertyNotFoundError, ValidationError
from title_registry.domain.payload import normalize_wallet_address
from title_registry.domain.state_machine import PropertyStateMachine
from title_registry.infrastructure.database.repositories import EventRepository, PropertyLedger
from title_registry.logging_config import get_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from title_registry.domain.document_protocol import DocumentStore, DocumentUpload
    from title_registry.infrastructure.chain.gateway import ChainGateway
    from title_registry.infrastructure.database.orm_models import PropertyEvent, PropertyRecord

logger = get_logger(__name__)


@dataclass(frozen=True)
class DocumentCheck:
    """Outcome of comparing an uploaded document with the recorded title."""

    property_id: str
    kind: str
    document_authentic: bool
    wallet_is_owner: bool
    content_hash: str
    chain_owner: str

    @property
    def verified(self) -> bool:
        return self.document_authentic and self.wallet_is_owner


class PropertyService:
    """Lookups over PropertyLedger plus the document authenticity check."""

    def __init__(
        self,
        session: AsyncSession,
        gateway: ChainGateway | None = None,
        document_store: DocumentStore | None = None,
    ) -> None:
        self._ledger = PropertyLedger(session)
        self._events = EventRepository(session)
        self._gateway = gateway
        self._store = document_store

    async def get_property(self, property_id: str) -> PropertyRecord:
        record = await self._ledger.get(property_id)
        if record is None:
            raise PropertyNotFoundError(property_id)
        return record

    async def get_status(self, property_id: str) -> dict:
        """Get property status with allowed events."""
        record = await self.get_property(property_id)
        sm = PropertyStateMachine(current_status=record.status)
        return {
            "property_id": record.property_id,
            "asset_id": record.asset_id,
            "status": record.status,
            "allowed_events": sm.get_allowed_events(),
        }

    async def get_events(self, property_id: str) -> list[PropertyEvent]:
        """Get audit trail."""
        await self.get_property(property_id)
        return await self._events.get_by_property(property_id)

    async def verify_document(
        self,
        property_id: str,
        document: DocumentUpload,
        wallet_address: str,
    ) -> DocumentCheck:
        """Check that a document matches the recorded hash and the wallet owns the asset.

        The uploaded bytes are pinned again; a content-addressed store returns
        the recorded hash only for identical bytes.
        """
        if self._gateway is None or self._store is None:
            raise RuntimeError("verify_document needs a chain gateway and a document store")

        wallet = normalize_wallet_address(wallet_address, field="wallet_address")
        record = await self.get_property(property_id)
        try:
            kind = DocumentKind(document.kind)
        except ValueError as err:
            raise ValidationError(f"Unknown document kind: {document.kind}", field="kind") from err
        recorded_hash = record.document_hashes[list(DocumentKind).index(kind)]

        content_hash = await self._store.pin_file(
            document.content,
            {
                "name": f"verification-{document.filename}",
                "content_type": document.content_type,
                "property_id": property_id,
            },
        )
        chain_owner = await self._gateway.get_owner(record.asset_id)

        check = DocumentCheck(
            property_id=property_id,
            kind=kind.value,
            document_authentic=content_hash == recorded_hash,
            wallet_is_owner=chain_owner == wallet,
            content_hash=content_hash,
            chain_owner=chain_owner,
        )
        logger.info(
            "property.document_checked",
            property_id=property_id,
            kind=kind.value,
            authentic=check.document_authentic,
            owner_match=check.wallet_is_owner,
        )
        return check
