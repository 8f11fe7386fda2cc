"""Tests for canonical payload normalization and hashing."""

from __future__ import annotations

import json
from decimal import Decimal

import pytest

from title_registry.domain.exceptions import ValidationError
from title_registry.domain.payload import (
    CanonicalPayloadBuilder,
    canonical_decimal,
    normalize_wallet_address,
)

HASHES = ["sha256-aaa", "sha256-bbb"]


@pytest.fixture
def builder() -> CanonicalPayloadBuilder:
    return CanonicalPayloadBuilder()


class TestCanonicalDecimal:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("1200", "1200"),
            ("1200.50", "1200.5"),
            (" 1200.0 ", "1200"),
            (1200, "1200"),
            (Decimal("0.010"), "0.01"),
            (0.1, "0.1"),
            ("1E+3", "1000"),
        ],
    )
    def test_formats(self, value, expected: str) -> None:
        assert canonical_decimal(value) == expected

    @pytest.mark.parametrize("value", ["0", "-5", "abc", "", None, True, "NaN", "Infinity"])
    def test_rejects(self, value) -> None:
        with pytest.raises(ValidationError):
            canonical_decimal(value)


class TestWalletAddress:
    def test_lowercases_checksum_address(self) -> None:
        address = "0x742d35Cc6634C0532925a3b844Bc9e7595f2bD18"
        assert normalize_wallet_address(f"  {address} ") == address.lower()

    @pytest.mark.parametrize("value", ["", "0x123", "742d35cc6634c0532925a3b844bc9e7595f2bd18", 42])
    def test_rejects_malformed(self, value) -> None:
        with pytest.raises(ValidationError) as exc_info:
            normalize_wallet_address(value)
        assert exc_info.value.field == "owner_wallet_address"


class TestNormalize:
    def test_trims_and_lowercases(self, builder, registration_fields: dict) -> None:
        raw = {**registration_fields, "owner_name": "  Ravi Kumar  ", "area": "1200.500"}
        fields = builder.normalize(raw)
        assert fields.owner_name == "Ravi Kumar"
        assert fields.area == "1200.5"
        assert fields.owner_wallet_address == registration_fields["owner_wallet_address"].lower()

    @pytest.mark.parametrize(
        "missing",
        ["property_id", "survey_number", "property_address", "area", "owner_name",
         "owner_wallet_address"],
    )
    def test_missing_field_is_named(self, builder, registration_fields: dict, missing: str) -> None:
        raw = {**registration_fields, missing: "   "}
        with pytest.raises(ValidationError) as exc_info:
            builder.normalize(raw)
        assert exc_info.value.field == missing

    def test_description_is_optional(self, builder, registration_fields: dict) -> None:
        raw = {k: v for k, v in registration_fields.items() if k != "description"}
        assert builder.normalize(raw).description is None


class TestBuild:
    def test_serialization_is_sorted_and_compact(self, builder, registration_fields: dict) -> None:
        payload = builder.build(builder.normalize(registration_fields), HASHES)
        text = payload.text
        assert '", "' not in text
        assert '": ' not in text
        assert list(json.loads(text)) == sorted(json.loads(text))
        assert payload.digest.startswith("0x")
        assert len(payload.digest) == 66

    def test_description_is_not_signed(self, builder, registration_fields: dict) -> None:
        a = builder.digest(registration_fields, HASHES)
        b = builder.digest({**registration_fields, "description": "changed"}, HASHES)
        assert a == b

    def test_equivalent_inputs_share_a_digest(self, builder, registration_fields: dict) -> None:
        variant = {
            **registration_fields,
            "area": "1200.5000",
            "owner_wallet_address": registration_fields["owner_wallet_address"].lower(),
            "property_address": f"  {registration_fields['property_address']}\n",
        }
        assert builder.digest(registration_fields, HASHES) == builder.digest(variant, HASHES)

    @pytest.mark.parametrize(
        ("field", "value"),
        [("area", "1201"), ("owner_name", "Someone Else"), ("survey_number", "SY-46")],
    )
    def test_any_signed_change_alters_digest(
        self, builder, registration_fields: dict, field: str, value: str
    ) -> None:
        original = builder.digest(registration_fields, HASHES)
        assert builder.digest({**registration_fields, field: value}, HASHES) != original

    def test_document_order_matters(self, builder, registration_fields: dict) -> None:
        forward = builder.digest(registration_fields, HASHES)
        reversed_ = builder.digest(registration_fields, list(reversed(HASHES)))
        assert forward != reversed_

    @pytest.mark.parametrize("hashes", [[], ["only-one"], ["a", ""], ["a", "b", "c"]])
    def test_exactly_two_hashes(self, builder, registration_fields: dict, hashes) -> None:
        with pytest.raises(ValidationError):
            builder.digest(registration_fields, hashes)
