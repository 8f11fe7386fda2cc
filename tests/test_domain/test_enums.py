"""Tests for domain enumerations."""

from __future__ import annotations

from title_registry.domain.enums import (
    DocumentKind,
    EventType,
    FailureReason,
    PropertyStatus,
    RegistrationStatus,
)


class TestPropertyStatus:
    def test_all_statuses_exist(self) -> None:
        expected = {"pending", "verified", "listed_for_sale", "sold"}
        actual = {s.value for s in PropertyStatus}
        assert actual == expected

    def test_status_is_str_enum(self) -> None:
        assert isinstance(PropertyStatus.PENDING, str)
        assert PropertyStatus.LISTED_FOR_SALE == "listed_for_sale"


class TestRegistrationStatus:
    def test_all_statuses_exist(self) -> None:
        expected = {"drafted", "hash_prepared", "signed", "chain_submitted", "recorded", "failed"}
        assert {s.value for s in RegistrationStatus} == expected


class TestEventType:
    def test_one_event_per_lifecycle_step_plus_reconciliation(self) -> None:
        # 4 lifecycle + 2 reconciliation
        assert len(EventType) == 6

    def test_event_type_is_str_enum(self) -> None:
        assert isinstance(EventType.PROPERTY_REGISTERED, str)


class TestDocumentKind:
    def test_signing_order(self) -> None:
        assert list(DocumentKind) == [
            DocumentKind.MOTHER_DEED,
            DocumentKind.ENCUMBRANCE_CERTIFICATE,
        ]


class TestFailureReason:
    def test_chain_rejected_formats_with_reason(self) -> None:
        assert f"{FailureReason.CHAIN_REJECTED}: already minted" == "chain_rejected: already minted"
