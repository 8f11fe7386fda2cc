"""Registration Coordinator — the prepare / sign / execute protocol.

Coordinates between:
    - CanonicalPayloadBuilder and SignatureVerifier (domain)
    - DocumentStore (pinning the two required documents)
    - ChainGateway (the irreversible mint)
    - PropertyLedger and the draft / event repositories

The owner signs out of process, so the protocol is split in two calls.
Drafts are keyed by payload hash and committed at every durable checkpoint:
after consent is accepted, once the mint is signed (with its tx hash, before
the first broadcast), and after the ledger write. A crash at any point
leaves enough state to resume or reconcile from the mint transaction hash.

The description is stored and minted but is not part of the signed payload,
so the call data kept on the draft is re-encoded at execute from what is
actually minted.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from title_registry.config import get_settings
from title_registry.domain.chain_protocol import MintParams
from title_registry.domain.enums import (
    DocumentKind,
    EventType,
    FailureReason,
    PropertyStatus,
    RegistrationStatus,
)
from title_registry.domain.exceptions import (
    ChainError,
    ChainRejectedError,
    ChainTransientError,
    ConfirmationTimeoutError,
    ConsistencyError,
    DuplicatePropertyError,
    EventMissingError,
    InvalidStateTransitionError,
    PayloadIntegrityError,
    RegistrationNotFoundError,
    SignatureError,
    ValidationError,
)
from title_registry.domain.payload import (
    CanonicalPayloadBuilder,
    RegistrationFields,
    normalize_wallet_address,
)
from title_registry.domain.signatures import SignatureVerifier
from title_registry.domain.state_machine import RegistrationStateMachine
from title_registry.infrastructure.chain.abi import encode_mint_call
from title_registry.infrastructure.database.orm_models import PropertyRecord, RegistrationDraft
from title_registry.infrastructure.database.repositories import (
    AccountRepository,
    EventRepository,
    PropertyLedger,
    RegistrationDraftRepository,
)
from title_registry.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from typing import Any

    from sqlalchemy.ext.asyncio import AsyncSession

    from title_registry.config import Settings
    from title_registry.domain.chain_protocol import MintResult
    from title_registry.domain.document_protocol import DocumentStore, DocumentUpload
    from title_registry.infrastructure.chain.gateway import ChainGateway

logger = get_logger(__name__)


@dataclass(frozen=True)
class PreparedRegistration:
    """What the owner's wallet needs in order to sign."""

    payload_hash: str
    encoded_call_data: str
    canonical_payload: str
    document_hashes: list[str]
    property_id: str
    status: str


class RegistrationCoordinator:
    """Drives a registration from raw input to a recorded PropertyRecord."""

    def __init__(
        self,
        session: AsyncSession,
        gateway: ChainGateway,
        document_store: DocumentStore,
        settings: Settings | None = None,
        payload_builder: CanonicalPayloadBuilder | None = None,
        signature_verifier: SignatureVerifier | None = None,
    ) -> None:
        self._session = session
        self._gateway = gateway
        self._store = document_store
        self._settings = settings or get_settings()
        self._builder = payload_builder or CanonicalPayloadBuilder()
        self._verifier = signature_verifier or SignatureVerifier()
        self._ledger = PropertyLedger(session)
        self._drafts = RegistrationDraftRepository(session)
        self._accounts = AccountRepository(session)
        self._events = EventRepository(session)

    # ------------------------------------------------------------------
    # Phase 1: prepare
    # ------------------------------------------------------------------

    async def prepare_registration(
        self,
        raw_fields: Mapping[str, Any],
        documents: Sequence[DocumentUpload],
        verifier_ref: str,
    ) -> PreparedRegistration:
        """Pin documents and build the payload hash for the owner to sign.

        No chain interaction happens here.
        """
        fields = self._builder.normalize(raw_fields)
        if not verifier_ref or not verifier_ref.strip():
            raise ValidationError("verifier_ref is required", field="verifier_ref")
        ordered = self._validate_documents(documents)

        if await self._ledger.exists(fields.property_id):
            raise DuplicatePropertyError(fields.property_id)

        hashes = await self._pin_documents(ordered, fields.property_id)
        payload = self._builder.build(fields, hashes)
        call_data = encode_mint_call(self._mint_params(fields, payload.document_hashes))

        draft = await self._drafts.get(payload.digest)
        if draft is None:
            draft = await self._drafts.add(
                RegistrationDraft(
                    payload_hash=payload.digest,
                    property_id=fields.property_id,
                    fields=fields.to_dict(),
                    document_hashes=list(payload.document_hashes),
                    encoded_call_data=call_data,
                    verifier_ref=verifier_ref.strip(),
                    status=RegistrationStatus.DRAFTED.value,
                )
            )
        else:
            if draft.status == RegistrationStatus.RECORDED:
                raise DuplicatePropertyError(draft.property_id)
            if draft.mint_transaction_hash:
                # A mint was broadcast for this payload; only resume/reconcile may continue
                raise InvalidStateTransitionError(draft.status, RegistrationStatus.HASH_PREPARED)
            draft.fields = fields.to_dict()
            draft.encoded_call_data = call_data
            draft.verifier_ref = verifier_ref.strip()
            draft.signature = None
            draft.signer_address = None

        self._fire(draft, "prepare_hash")
        await self._drafts.update_status(draft, RegistrationStatus.HASH_PREPARED)
        await self._session.commit()

        logger.info(
            "registration.prepared",
            property_id=fields.property_id,
            payload_hash=payload.digest,
            verifier_ref=verifier_ref,
        )
        return PreparedRegistration(
            payload_hash=payload.digest,
            encoded_call_data=call_data,
            canonical_payload=payload.text,
            document_hashes=list(payload.document_hashes),
            property_id=fields.property_id,
            status=draft.status,
        )

    # ------------------------------------------------------------------
    # Phase 2: execute
    # ------------------------------------------------------------------

    async def execute_registration(
        self,
        raw_fields: Mapping[str, Any],
        signature: str,
        signer_address: str,
        payload_hash: str,
        documents: Sequence[DocumentUpload] | None = None,
    ) -> PropertyRecord:
        """Verify consent, mint the asset and record it in the ledger.

        Raises:
            SignatureError: claimed signer is not the owner, or recovery failed.
            PayloadIntegrityError: inputs changed since the hash was signed.
            ChainRejectedError / ChainTransientError: mint failed.
            ConfirmationTimeoutError: mint submitted but not yet confirmed.
            EventMissingError: mint confirmed without a TitleMinted event.
            ConsistencyError: mint succeeded but the ledger write failed.
        """
        fields = self._builder.normalize(raw_fields)
        payload_hash = (payload_hash or "").strip().lower()
        draft = await self._get_draft_or_raise(payload_hash)

        if draft.status == RegistrationStatus.RECORDED:
            raise DuplicatePropertyError(draft.property_id)
        if draft.mint_transaction_hash or draft.status in (
            RegistrationStatus.CHAIN_SUBMITTED,
            RegistrationStatus.FAILED,
        ):
            raise InvalidStateTransitionError(draft.status, RegistrationStatus.SIGNED)

        # 1. Claimed signer must be the owner named in the payload
        claimed = normalize_wallet_address(signer_address, field="signer_address")
        if claimed != fields.owner_wallet_address:
            await self._fail(draft, FailureReason.SIGNATURE_MISMATCH)
            raise SignatureError("Signer does not match the property owner")

        # 2. The signature must recover to that owner
        if not self._verifier.verify(payload_hash, signature, fields.owner_wallet_address):
            await self._fail(draft, FailureReason.SIGNATURE_MISMATCH)
            raise SignatureError("Signature was not produced by the owner's wallet")

        # 3. What we are about to mint must be exactly what was signed
        if documents:
            hashes = await self._pin_documents(
                self._validate_documents(documents), fields.property_id
            )
        else:
            hashes = tuple(draft.document_hashes)
        recomputed = self._builder.build(fields, hashes)
        if recomputed.digest != payload_hash:
            logger.error(
                "registration.integrity_mismatch",
                property_id=fields.property_id,
                signed_hash=payload_hash,
                recomputed_hash=recomputed.digest,
            )
            await self._fail(draft, FailureReason.INTEGRITY_MISMATCH)
            raise PayloadIntegrityError(payload_hash, recomputed.digest)

        if await self._ledger.exists(fields.property_id):
            raise DuplicatePropertyError(fields.property_id)

        # Checkpoint: consent accepted, about to go on chain
        params = self._mint_params(fields, recomputed.document_hashes)
        self._fire(draft, "accept_signature")
        draft.signer_address = claimed
        draft.signature = signature.strip()
        draft.fields = fields.to_dict()
        draft.encoded_call_data = encode_mint_call(params)
        await self._drafts.update_status(draft, RegistrationStatus.SIGNED)
        self._fire(draft, "submit_to_chain")
        await self._drafts.update_status(draft, RegistrationStatus.CHAIN_SUBMITTED)
        await self._session.commit()

        # 4. Mint (transient submission failures are retried by the gateway)
        mint = await self._mint(draft, params)

        # 5. Checkpoint: asset exists on chain
        draft.asset_id = mint.asset_id
        await self._session.commit()

        # 6. Ledger write
        record = await self._finish(draft, mint, EventType.PROPERTY_REGISTERED)
        logger.info(
            "registration.recorded",
            property_id=record.property_id,
            asset_id=record.asset_id,
            tx_hash=mint.tx_hash,
        )
        return record

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    async def resume_registration(self, payload_hash: str) -> PropertyRecord:
        """Finish a registration whose mint confirmation timed out."""
        draft = await self._get_draft_or_raise(payload_hash.strip().lower())

        if draft.status == RegistrationStatus.RECORDED:
            record = await self._ledger.get(draft.property_id)
            if record is not None:
                return record
        if draft.status != RegistrationStatus.CHAIN_SUBMITTED or not draft.mint_transaction_hash:
            raise InvalidStateTransitionError(draft.status, RegistrationStatus.RECORDED)

        tx_hash = draft.mint_transaction_hash
        logger.info("registration.resuming", payload_hash=draft.payload_hash, tx_hash=tx_hash)
        mint = await self._replay_mint(draft, tx_hash)
        return await self._finish(draft, mint, EventType.PROPERTY_REGISTERED)

    async def reconcile_registration(self, mint_transaction_hash: str) -> PropertyRecord:
        """Idempotently bring the ledger in line with a mint transaction.

        Safe to call any number of times: an already recorded mint returns
        the existing record unchanged.
        """
        tx_hash = mint_transaction_hash.strip().lower()

        existing = await self._ledger.get_by_mint_tx(tx_hash)
        if existing is not None:
            draft = await self._drafts.get_by_mint_tx(tx_hash)
            if draft is not None and draft.status == RegistrationStatus.CHAIN_SUBMITTED:
                self._fire(draft, "record_in_ledger")
                await self._drafts.update_status(draft, RegistrationStatus.RECORDED)
                await self._session.commit()
            logger.info(
                "registration.reconcile_noop",
                tx_hash=tx_hash,
                property_id=existing.property_id,
            )
            return existing

        mint = await self._gateway.get_mint_result(tx_hash)

        draft = await self._drafts.get_by_mint_tx(tx_hash)
        if draft is None:
            # The draft lost track of this hash: match by the minted event
            draft = await self._match_draft(mint)
            if draft is None:
                raise RegistrationNotFoundError(tx_hash)
            draft.mint_transaction_hash = tx_hash

        if draft.status == RegistrationStatus.FAILED and draft.asset_id is None:
            # Given up on as never mined, but the chain says otherwise
            self._fire(draft, "reopen")
            await self._drafts.update_status(draft, RegistrationStatus.CHAIN_SUBMITTED)
            logger.warning(
                "registration.reopened",
                payload_hash=draft.payload_hash,
                tx_hash=tx_hash,
            )

        if draft.status != RegistrationStatus.CHAIN_SUBMITTED:
            raise InvalidStateTransitionError(draft.status, RegistrationStatus.RECORDED)

        other = await self._ledger.get(draft.property_id)
        if other is not None:
            raise DuplicatePropertyError(draft.property_id)

        draft.asset_id = mint.asset_id
        await self._session.commit()
        record = await self._finish(draft, mint, EventType.REGISTRATION_RECONCILED)
        logger.info(
            "registration.reconciled",
            tx_hash=tx_hash,
            property_id=record.property_id,
            asset_id=record.asset_id,
        )
        return record

    async def get_draft(self, payload_hash: str) -> RegistrationDraft:
        return await self._get_draft_or_raise(payload_hash.strip().lower())

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _validate_documents(self, documents: Sequence[DocumentUpload]) -> list[DocumentUpload]:
        """Check kinds, types and sizes; return the documents in signing order."""
        allowed = self._settings.document_allowed_type_list
        by_kind: dict[DocumentKind, DocumentUpload] = {}

        for doc in documents:
            try:
                kind = DocumentKind(doc.kind)
            except ValueError as err:
                raise ValidationError(f"Unknown document kind: {doc.kind}", field="documents") from err
            if kind in by_kind:
                raise ValidationError(f"{kind} supplied more than once", field=kind.value)
            if doc.content_type not in allowed:
                raise ValidationError(
                    f"{kind} must be one of {', '.join(allowed)}, got {doc.content_type}",
                    field=kind.value,
                )
            if doc.size == 0:
                raise ValidationError(f"{kind} is empty", field=kind.value)
            if doc.size > self._settings.document_max_bytes:
                raise ValidationError(
                    f"{kind} exceeds {self._settings.document_max_bytes} bytes",
                    field=kind.value,
                )
            by_kind[kind] = doc

        for kind in DocumentKind:
            if kind not in by_kind:
                raise ValidationError(f"{kind} document is required", field=kind.value)

        return [by_kind[kind] for kind in DocumentKind]

    async def _pin_documents(
        self,
        documents: Sequence[DocumentUpload],
        property_id: str,
    ) -> tuple[str, ...]:
        hashes = []
        for doc in documents:
            hashes.append(
                await self._store.pin_file(
                    doc.content,
                    {
                        "name": doc.filename,
                        "content_type": doc.content_type,
                        "kind": str(doc.kind),
                        "property_id": property_id,
                    },
                )
            )
        return tuple(hashes)

    @staticmethod
    def _mint_params(fields: RegistrationFields, document_hashes: Sequence[str]) -> MintParams:
        return MintParams(
            owner=fields.owner_wallet_address,
            survey_number=fields.survey_number,
            property_id=fields.property_id,
            property_address=fields.property_address,
            area=fields.area,
            owner_name=fields.owner_name,
            description=fields.description or "",
            document_hashes=tuple(document_hashes),
        )

    async def _mint(
        self,
        draft: RegistrationDraft,
        params: MintParams,
    ) -> MintResult:
        async def remember_tx(tx_hash: str) -> None:
            draft.mint_transaction_hash = tx_hash
            await self._session.commit()

        try:
            return await self._gateway.mint_asset(params, on_submitted=remember_tx)
        except ConfirmationTimeoutError as err:
            logger.warning(
                "registration.confirmation_pending",
                payload_hash=draft.payload_hash,
                tx_hash=err.tx_hash,
            )
            raise
        except EventMissingError:
            await self._fail(draft, FailureReason.EVENT_MISSING)
            raise
        except ChainRejectedError as err:
            if err.tx_hash is None:
                # Refused at broadcast: the signed mint can never be mined
                draft.mint_transaction_hash = None
            await self._fail(draft, f"{FailureReason.CHAIN_REJECTED}: {err.reason}")
            raise
        except ChainError as err:
            if err.tx_hash:
                # Broadcast may have landed; outcome unknown, keep it resumable
                logger.warning(
                    "registration.confirmation_interrupted",
                    payload_hash=draft.payload_hash,
                    tx_hash=err.tx_hash,
                    error=err.message,
                )
                raise
            draft.mint_transaction_hash = None
            await self._fail(draft, FailureReason.CHAIN_UNAVAILABLE)
            raise

    async def _match_draft(self, mint: MintResult) -> RegistrationDraft | None:
        """Find the signed draft a mint belongs to when no draft holds its hash.

        Submitted drafts win over failed ones; within each, the latest.
        """
        submitted = await self._drafts.get_in_status(
            mint.property_id, RegistrationStatus.CHAIN_SUBMITTED
        )
        failed = [
            d
            for d in await self._drafts.get_in_status(mint.property_id, RegistrationStatus.FAILED)
            if d.asset_id is None and d.signature is not None
        ]
        for draft in [*submitted, *failed]:
            if (
                draft.mint_transaction_hash is None
                and draft.fields.get("owner_wallet_address") == mint.owner
            ):
                return draft
        return None

    async def _replay_mint(self, draft: RegistrationDraft, tx_hash: str) -> MintResult:
        if not await self._gateway.is_transaction_known(tx_hash):
            logger.warning(
                "registration.mint_never_broadcast",
                payload_hash=draft.payload_hash,
                tx_hash=tx_hash,
            )
            draft.mint_transaction_hash = None
            await self._fail(draft, FailureReason.CHAIN_UNAVAILABLE)
            raise ChainTransientError(
                f"Mint {tx_hash} never reached the chain; prepare the registration again"
            )
        try:
            mint = await self._gateway.get_mint_result(tx_hash)
        except EventMissingError:
            await self._fail(draft, FailureReason.EVENT_MISSING)
            raise
        except ChainRejectedError as err:
            await self._fail(draft, f"{FailureReason.CHAIN_REJECTED}: {err.reason}")
            raise
        draft.asset_id = mint.asset_id
        await self._session.commit()
        return mint

    async def _finish(
        self,
        draft: RegistrationDraft,
        mint: MintResult,
        event_type: EventType,
    ) -> PropertyRecord:
        """Write the PropertyRecord for a confirmed mint and close the draft."""
        fields = RegistrationFields(**draft.fields)
        payload_hash = draft.payload_hash
        if mint.property_id != fields.property_id:
            raise ConsistencyError(
                f"Mint {mint.tx_hash} names property {mint.property_id}, "
                f"draft names {fields.property_id}",
                tx_hash=mint.tx_hash,
                property_id=fields.property_id,
            )

        try:
            owner = await self._accounts.get_by_wallet(fields.owner_wallet_address)
            record = await self._ledger.create(
                PropertyRecord(
                    property_id=fields.property_id,
                    survey_number=fields.survey_number,
                    asset_id=mint.asset_id,
                    property_address=fields.property_address,
                    area=Decimal(fields.area),
                    owner_name=fields.owner_name,
                    owner_wallet_address=fields.owner_wallet_address,
                    description=fields.description,
                    document_hashes=list(draft.document_hashes),
                    verifier_ref=draft.verifier_ref,
                    owner_ref=owner.id if owner else None,
                    payload_hash=payload_hash,
                    consent_signature=draft.signature,
                    status=PropertyStatus.PENDING.value,
                    mint_transaction_hash=mint.tx_hash,
                )
            )
            await self._events.record(
                property_id=record.property_id,
                event_type=event_type,
                old_status=None,
                new_status=PropertyStatus.PENDING,
                actor=draft.verifier_ref,
                metadata={
                    "asset_id": mint.asset_id,
                    "mint_transaction_hash": mint.tx_hash,
                    "block_number": mint.block_number,
                    "payload_hash": payload_hash,
                    "signature": draft.signature,
                },
            )
            self._fire(draft, "record_in_ledger")
            await self._drafts.update_status(draft, RegistrationStatus.RECORDED)
            await self._session.commit()
        except (SQLAlchemyError, DuplicatePropertyError) as err:
            await self._session.rollback()
            logger.error(
                "registration.ledger_write_failed",
                property_id=fields.property_id,
                asset_id=mint.asset_id,
                tx_hash=mint.tx_hash,
                error=str(err),
            )
            raise ConsistencyError(
                f"Asset {mint.asset_id} minted in {mint.tx_hash} but the ledger write "
                "failed; reconcile from the mint transaction hash",
                tx_hash=mint.tx_hash,
                property_id=fields.property_id,
            ) from err

        return record

    async def _fail(self, draft: RegistrationDraft, reason: str) -> None:
        self._fire(draft, "mark_failed")
        await self._drafts.update_status(draft, RegistrationStatus.FAILED, failure_reason=str(reason))
        await self._session.commit()
        logger.warning(
            "registration.failed",
            payload_hash=draft.payload_hash,
            property_id=draft.property_id,
            reason=str(reason),
        )

    async def _get_draft_or_raise(self, payload_hash: str) -> RegistrationDraft:
        draft = await self._drafts.get(payload_hash)
        if draft is None:
            raise RegistrationNotFoundError(payload_hash)
        return draft

    @staticmethod
    def _fire(draft: RegistrationDraft, event_name: str) -> None:
        """Validate a registration transition against the state machine.

        Raises InvalidStateTransitionError if the transition is illegal.
        """
        from statemachine.exceptions import TransitionNotAllowed

        sm = RegistrationStateMachine(current_status=draft.status)
        try:
            getattr(sm, event_name)()
        except TransitionNotAllowed as err:
            raise InvalidStateTransitionError(draft.status, event_name) from err
