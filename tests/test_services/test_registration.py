"""Tests for the RegistrationCoordinator prepare / execute protocol.

These tests verify that:
    1. Nothing reaches the chain unless the owner's signature and the
       recomputed payload both check out.
    2. Each failure leaves the draft in the documented status.
    3. A successful execute writes exactly one pending record and one event.
"""

from __future__ import annotations

from dataclasses import replace

import pytest

from title_registry.domain.enums import EventType, PropertyStatus, RegistrationStatus
from title_registry.domain.exceptions import (
    ChainRejectedError,
    ChainTransientError,
    ConfirmationTimeoutError,
    DuplicatePropertyError,
    EventMissingError,
    InvalidStateTransitionError,
    PayloadIntegrityError,
    RegistrationNotFoundError,
    SignatureError,
    ValidationError,
)
from title_registry.infrastructure.database.repositories import EventRepository, PropertyLedger

VERIFIER = "VERIFIER-01"


async def _prepare(coordinator, fields, documents):
    return await coordinator.prepare_registration(fields, documents, verifier_ref=VERIFIER)


# ---------------------------------------------------------------------------
# Prepare
# ---------------------------------------------------------------------------


class TestPrepare:
    @pytest.mark.asyncio
    async def test_returns_hash_and_call_data(
        self, coordinator, registration_fields, pdf_documents, backend
    ) -> None:
        prepared = await _prepare(coordinator, registration_fields, pdf_documents)

        assert prepared.payload_hash.startswith("0x")
        assert prepared.encoded_call_data.startswith("0x")
        assert prepared.status == RegistrationStatus.HASH_PREPARED
        assert len(prepared.document_hashes) == 2
        assert '"area":"1200.5"' in prepared.canonical_payload
        # Preparing never touches the chain
        assert backend.sent == []

    @pytest.mark.asyncio
    async def test_is_repeatable(self, coordinator, registration_fields, pdf_documents) -> None:
        first = await _prepare(coordinator, registration_fields, pdf_documents)
        second = await _prepare(coordinator, registration_fields, pdf_documents)
        assert first.payload_hash == second.payload_hash

    @pytest.mark.asyncio
    async def test_document_order_of_upload_does_not_matter(
        self, coordinator, registration_fields, pdf_documents
    ) -> None:
        forward = await _prepare(coordinator, registration_fields, pdf_documents)
        backward = await _prepare(coordinator, registration_fields, list(reversed(pdf_documents)))
        assert forward.payload_hash == backward.payload_hash

    @pytest.mark.asyncio
    async def test_requires_both_documents(
        self, coordinator, registration_fields, pdf_documents
    ) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await _prepare(coordinator, registration_fields, pdf_documents[:1])
        assert exc_info.value.field == "encumbrance_certificate"

    @pytest.mark.asyncio
    async def test_rejects_non_pdf(self, coordinator, registration_fields, pdf_documents) -> None:
        docs = [replace(pdf_documents[0], content_type="image/png"), pdf_documents[1]]
        with pytest.raises(ValidationError, match="application/pdf"):
            await _prepare(coordinator, registration_fields, docs)

    @pytest.mark.asyncio
    async def test_rejects_oversized_document(
        self, coordinator, registration_fields, pdf_documents
    ) -> None:
        docs = [replace(pdf_documents[0], content=b"x" * 2048), pdf_documents[1]]
        with pytest.raises(ValidationError, match="exceeds"):
            await _prepare(coordinator, registration_fields, docs)

    @pytest.mark.asyncio
    async def test_rejects_duplicate_kind(
        self, coordinator, registration_fields, pdf_documents
    ) -> None:
        docs = [pdf_documents[0], pdf_documents[0]]
        with pytest.raises(ValidationError, match="more than once"):
            await _prepare(coordinator, registration_fields, docs)

    @pytest.mark.asyncio
    async def test_requires_verifier(self, coordinator, registration_fields, pdf_documents) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await coordinator.prepare_registration(registration_fields, pdf_documents, "  ")
        assert exc_info.value.field == "verifier_ref"

    @pytest.mark.asyncio
    async def test_rejects_already_registered(
        self, coordinator, registered_property, registration_fields, pdf_documents
    ) -> None:
        with pytest.raises(DuplicatePropertyError):
            await _prepare(coordinator, registration_fields, pdf_documents)


# ---------------------------------------------------------------------------
# Execute
# ---------------------------------------------------------------------------


class TestExecuteHappyPath:
    @pytest.mark.asyncio
    async def test_records_pending_property(
        self, registered_property, owner_account, owner_wallet, db_session, backend
    ) -> None:
        record = registered_property
        assert record.status == PropertyStatus.PENDING
        assert record.asset_id == 1
        assert record.owner_wallet_address == owner_wallet.lower()
        assert record.owner_ref == owner_account.id
        assert record.consent_signature is not None
        assert [fn for _, fn, _ in backend.sent] == ["mintProperty"]

        events = await EventRepository(db_session).get_by_property(record.property_id)
        assert len(events) == 1
        assert events[0].event_type == EventType.PROPERTY_REGISTERED
        assert events[0].old_status is None
        assert events[0].new_status == PropertyStatus.PENDING
        assert events[0].actor == VERIFIER
        assert events[0].metadata_json["mint_transaction_hash"] == record.mint_transaction_hash

    @pytest.mark.asyncio
    async def test_draft_is_recorded(self, coordinator, registered_property) -> None:
        draft = await coordinator.get_draft(registered_property.payload_hash)
        assert draft.status == RegistrationStatus.RECORDED
        assert draft.mint_transaction_hash == registered_property.mint_transaction_hash
        assert draft.asset_id == registered_property.asset_id

    @pytest.mark.asyncio
    async def test_owner_without_account_is_unmatched(
        self, coordinator, registration_fields, pdf_documents, owner_key, owner_wallet, sign
    ) -> None:
        prepared = await _prepare(coordinator, registration_fields, pdf_documents)
        record = await coordinator.execute_registration(
            registration_fields,
            signature=sign(owner_key, prepared.payload_hash),
            signer_address=owner_wallet,
            payload_hash=prepared.payload_hash,
        )
        assert record.owner_ref is None

    @pytest.mark.asyncio
    async def test_execute_again_is_duplicate(
        self, coordinator, registered_property, registration_fields, owner_key, owner_wallet, sign
    ) -> None:
        with pytest.raises(DuplicatePropertyError):
            await coordinator.execute_registration(
                registration_fields,
                signature=sign(owner_key, registered_property.payload_hash),
                signer_address=owner_wallet,
                payload_hash=registered_property.payload_hash,
            )


class TestExecuteConsent:
    @pytest.mark.asyncio
    async def test_signer_must_be_owner(
        self, coordinator, registration_fields, pdf_documents, other_key, sign, backend
    ) -> None:
        prepared = await _prepare(coordinator, registration_fields, pdf_documents)
        with pytest.raises(SignatureError):
            await coordinator.execute_registration(
                registration_fields,
                signature=sign(other_key, prepared.payload_hash),
                signer_address=other_key.public_key.to_checksum_address(),
                payload_hash=prepared.payload_hash,
            )

        draft = await coordinator.get_draft(prepared.payload_hash)
        assert draft.status == RegistrationStatus.FAILED
        assert draft.failure_reason == "signature_mismatch"
        assert backend.sent == []

    @pytest.mark.asyncio
    async def test_signature_must_recover_to_owner(
        self, coordinator, registration_fields, pdf_documents, other_key, owner_wallet, sign, backend
    ) -> None:
        prepared = await _prepare(coordinator, registration_fields, pdf_documents)
        with pytest.raises(SignatureError):
            await coordinator.execute_registration(
                registration_fields,
                signature=sign(other_key, prepared.payload_hash),
                signer_address=owner_wallet,
                payload_hash=prepared.payload_hash,
            )
        assert backend.sent == []

    @pytest.mark.asyncio
    async def test_failed_draft_can_be_prepared_again(
        self, coordinator, registration_fields, pdf_documents, other_key, owner_key,
        owner_wallet, sign,
    ) -> None:
        prepared = await _prepare(coordinator, registration_fields, pdf_documents)
        with pytest.raises(SignatureError):
            await coordinator.execute_registration(
                registration_fields,
                signature=sign(other_key, prepared.payload_hash),
                signer_address=owner_wallet,
                payload_hash=prepared.payload_hash,
            )

        # A failed draft cannot be executed directly
        with pytest.raises(InvalidStateTransitionError):
            await coordinator.execute_registration(
                registration_fields,
                signature=sign(owner_key, prepared.payload_hash),
                signer_address=owner_wallet,
                payload_hash=prepared.payload_hash,
            )

        again = await _prepare(coordinator, registration_fields, pdf_documents)
        record = await coordinator.execute_registration(
            registration_fields,
            signature=sign(owner_key, again.payload_hash),
            signer_address=owner_wallet,
            payload_hash=again.payload_hash,
        )
        assert record.status == PropertyStatus.PENDING

    @pytest.mark.asyncio
    async def test_unknown_payload_hash(
        self, coordinator, registration_fields, owner_key, owner_wallet, sign
    ) -> None:
        unknown = "0x" + "ab" * 32
        with pytest.raises(RegistrationNotFoundError):
            await coordinator.execute_registration(
                registration_fields,
                signature=sign(owner_key, unknown),
                signer_address=owner_wallet,
                payload_hash=unknown,
            )


class TestExecuteIntegrity:
    @pytest.mark.asyncio
    async def test_tampered_area(
        self, coordinator, registration_fields, pdf_documents, owner_key, owner_wallet, sign,
        backend, db_session,
    ) -> None:
        prepared = await _prepare(coordinator, registration_fields, pdf_documents)
        tampered = {**registration_fields, "area": "2400"}

        with pytest.raises(PayloadIntegrityError) as exc_info:
            await coordinator.execute_registration(
                tampered,
                signature=sign(owner_key, prepared.payload_hash),
                signer_address=owner_wallet,
                payload_hash=prepared.payload_hash,
            )

        assert exc_info.value.signed_hash == prepared.payload_hash
        assert backend.sent == []
        draft = await coordinator.get_draft(prepared.payload_hash)
        assert draft.status == RegistrationStatus.FAILED
        assert draft.failure_reason == "integrity_mismatch"
        assert not await PropertyLedger(db_session).exists(registration_fields["property_id"])

    @pytest.mark.asyncio
    async def test_swapped_document(
        self, coordinator, registration_fields, pdf_documents, owner_key, owner_wallet, sign, backend
    ) -> None:
        prepared = await _prepare(coordinator, registration_fields, pdf_documents)
        swapped = [replace(pdf_documents[0], content=b"%PDF-1.4 forged deed"), pdf_documents[1]]

        with pytest.raises(PayloadIntegrityError):
            await coordinator.execute_registration(
                registration_fields,
                signature=sign(owner_key, prepared.payload_hash),
                signer_address=owner_wallet,
                payload_hash=prepared.payload_hash,
                documents=swapped,
            )
        assert backend.sent == []

    @pytest.mark.asyncio
    async def test_description_change_is_allowed(
        self, coordinator, registration_fields, pdf_documents, owner_key, owner_wallet, sign,
        owner_account, backend,
    ) -> None:
        corner = {**registration_fields, "description": "Corner plot"}
        expected = await _prepare(coordinator, corner, pdf_documents)
        prepared = await _prepare(coordinator, registration_fields, pdf_documents)
        assert prepared.payload_hash == expected.payload_hash
        assert prepared.encoded_call_data != expected.encoded_call_data

        record = await coordinator.execute_registration(
            corner,
            signature=sign(owner_key, prepared.payload_hash),
            signer_address=owner_wallet,
            payload_hash=prepared.payload_hash,
            documents=pdf_documents,
        )
        assert record.description == "Corner plot"

        # The stored call data is what was minted, not what was first prepared
        draft = await coordinator.get_draft(prepared.payload_hash)
        assert draft.encoded_call_data == expected.encoded_call_data
        assert backend.sent[-1][2][6] == "Corner plot"


class TestExecuteChainFailures:
    async def _execute(self, coordinator, fields, documents, key, wallet, sign):
        prepared = await _prepare(coordinator, fields, documents)
        try:
            await coordinator.execute_registration(
                fields,
                signature=sign(key, prepared.payload_hash),
                signer_address=wallet,
                payload_hash=prepared.payload_hash,
            )
        finally:
            self.draft = await coordinator.get_draft(prepared.payload_hash)

    @pytest.mark.asyncio
    async def test_rejected_mint_fails_draft(
        self, coordinator, registration_fields, pdf_documents, owner_key, owner_wallet, sign,
        backend, db_session,
    ) -> None:
        backend.fail_next(ChainRejectedError("title already exists"), function="mintProperty")
        with pytest.raises(ChainRejectedError):
            await self._execute(
                coordinator, registration_fields, pdf_documents, owner_key, owner_wallet, sign
            )
        assert self.draft.status == RegistrationStatus.FAILED
        assert self.draft.failure_reason == "chain_rejected: title already exists"
        # Refused at broadcast, so there is no transaction to follow
        assert self.draft.mint_transaction_hash is None
        assert not await PropertyLedger(db_session).exists(registration_fields["property_id"])

    @pytest.mark.asyncio
    async def test_lost_broadcast_response_mints_once(
        self, coordinator, registration_fields, pdf_documents, owner_key, owner_wallet, sign,
        backend, db_session,
    ) -> None:
        backend.drop_responses(function="mintProperty")
        await self._execute(
            coordinator, registration_fields, pdf_documents, owner_key, owner_wallet, sign
        )

        assert self.draft.status == RegistrationStatus.RECORDED
        assert [fn for _, fn, _ in backend.sent] == ["mintProperty"]
        record = await PropertyLedger(db_session).get(registration_fields["property_id"])
        assert record.mint_transaction_hash == self.draft.mint_transaction_hash
        assert record.asset_id == 1

    @pytest.mark.asyncio
    async def test_unreachable_node_stays_resumable(
        self, coordinator, registration_fields, pdf_documents, owner_key, owner_wallet, sign,
        backend,
    ) -> None:
        backend.fail_next(ConnectionResetError("reset by peer"), times=3)
        with pytest.raises(ChainTransientError) as exc_info:
            await self._execute(
                coordinator, registration_fields, pdf_documents, owner_key, owner_wallet, sign
            )
        # The send may have landed before the connection dropped
        assert self.draft.status == RegistrationStatus.CHAIN_SUBMITTED
        assert self.draft.mint_transaction_hash == exc_info.value.tx_hash

        # It never did: resuming gives up and frees the payload for a new attempt
        with pytest.raises(ChainTransientError, match="never reached the chain"):
            await coordinator.resume_registration(self.draft.payload_hash)
        draft = await coordinator.get_draft(self.draft.payload_hash)
        assert draft.status == RegistrationStatus.FAILED
        assert draft.failure_reason == "chain_unavailable"
        assert draft.mint_transaction_hash is None

        await self._execute(
            coordinator, registration_fields, pdf_documents, owner_key, owner_wallet, sign
        )
        assert self.draft.status == RegistrationStatus.RECORDED
        assert [fn for _, fn, _ in backend.sent] == ["mintProperty"]

    @pytest.mark.asyncio
    async def test_node_unavailable_fails_draft(
        self, coordinator, registration_fields, pdf_documents, owner_key, owner_wallet, sign, backend
    ) -> None:
        backend.fail_next(ChainTransientError("node down"), times=10)
        with pytest.raises(ChainTransientError):
            await self._execute(
                coordinator, registration_fields, pdf_documents, owner_key, owner_wallet, sign
            )
        assert self.draft.status == RegistrationStatus.FAILED
        assert self.draft.failure_reason == "chain_unavailable"
        assert self.draft.mint_transaction_hash is None

    @pytest.mark.asyncio
    async def test_transient_failure_recovers(
        self, coordinator, registration_fields, pdf_documents, owner_key, owner_wallet, sign,
        backend,
    ) -> None:
        backend.fail_next(ChainTransientError("replacement transaction underpriced"), times=2)
        await self._execute(
            coordinator, registration_fields, pdf_documents, owner_key, owner_wallet, sign
        )
        assert self.draft.status == RegistrationStatus.RECORDED

    @pytest.mark.asyncio
    async def test_missing_event_fails_draft(
        self, coordinator, registration_fields, pdf_documents, owner_key, owner_wallet, sign,
        backend, db_session,
    ) -> None:
        backend.omit_events("mintProperty")
        with pytest.raises(EventMissingError):
            await self._execute(
                coordinator, registration_fields, pdf_documents, owner_key, owner_wallet, sign
            )
        assert self.draft.status == RegistrationStatus.FAILED
        assert self.draft.failure_reason == "event_missing"
        assert not await PropertyLedger(db_session).exists(registration_fields["property_id"])

    @pytest.mark.asyncio
    async def test_confirmation_timeout_stays_submitted(
        self, coordinator, registration_fields, pdf_documents, owner_key, owner_wallet, sign,
        backend, db_session,
    ) -> None:
        backend.hold_confirmations()
        with pytest.raises(ConfirmationTimeoutError) as exc_info:
            await self._execute(
                coordinator, registration_fields, pdf_documents, owner_key, owner_wallet, sign
            )
        assert self.draft.status == RegistrationStatus.CHAIN_SUBMITTED
        assert self.draft.mint_transaction_hash == exc_info.value.tx_hash
        assert not await PropertyLedger(db_session).exists(registration_fields["property_id"])
