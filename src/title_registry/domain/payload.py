"""Canonical payload construction for owner consent signatures.

The canonical payload is the single object the registration authority and
the property owner agree on. It must serialize to the same bytes for the same
logical input on any runtime, so:

    - every string is trimmed, the wallet address lowercased;
    - area is a canonical decimal string ("1200", "1200.5"), never a float;
    - keys are emitted in sorted order with compact separators;
    - document content hashes are part of the signed payload.

The keccak-256 digest of those bytes is what the owner's wallet signs.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

from eth_utils import keccak

from title_registry.domain.exceptions import ValidationError

WALLET_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
REQUIRED_DOCUMENT_COUNT = 2

_REQUIRED_FIELDS = (
    "property_id",
    "survey_number",
    "property_address",
    "area",
    "owner_name",
    "owner_wallet_address",
)


@dataclass(frozen=True)
class RegistrationFields:
    """Normalized registration attributes.

    Attributes:
        property_id: Business key of the title.
        survey_number: Land survey number.
        property_address: Postal address of the property.
        area: Canonical decimal string, always positive.
        owner_name: Name of the owner as recorded.
        owner_wallet_address: Lowercased 0x-prefixed wallet address.
        description: Free text. Stored and minted, not signed.
    """

    property_id: str
    survey_number: str
    property_address: str
    area: str
    owner_name: str
    owner_wallet_address: str
    description: str | None = None

    def to_dict(self) -> dict:
        """Serialize for storage in the registration draft JSON column."""
        return {
            "property_id": self.property_id,
            "survey_number": self.survey_number,
            "property_address": self.property_address,
            "area": self.area,
            "owner_name": self.owner_name,
            "owner_wallet_address": self.owner_wallet_address,
            "description": self.description,
        }


@dataclass(frozen=True)
class CanonicalPayload:
    """Serialized payload and its digest. Never persisted on its own."""

    fields: RegistrationFields
    document_hashes: tuple[str, ...]
    serialized: bytes
    digest: str

    @property
    def text(self) -> str:
        return self.serialized.decode("utf-8")


def normalize_wallet_address(value: Any, field: str = "owner_wallet_address") -> str:
    """Trim, validate and lowercase an EVM wallet address."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required", field=field)
    address = value.strip()
    if not WALLET_ADDRESS_RE.match(address):
        raise ValidationError(f"{field} is not a valid wallet address", field=field)
    return address.lower()


def canonical_decimal(value: Any, field: str = "area") -> str:
    """Format a positive number as a canonical decimal string.

    Accepts str, int, Decimal and float (floats go through repr so 0.1 stays 0.1).
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a positive number", field=field)
    if isinstance(value, float):
        value = repr(value)
    if isinstance(value, str):
        value = value.strip()
    try:
        number = Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as err:
        raise ValidationError(f"{field} must be a positive number", field=field) from err
    if not number.is_finite() or number <= 0:
        raise ValidationError(f"{field} must be a positive number", field=field)
    text = format(number.normalize(), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


class CanonicalPayloadBuilder:
    """Normalizes registration fields and derives the signed payload digest."""

    def normalize(self, raw: Mapping[str, Any]) -> RegistrationFields:
        """Validate and normalize raw registration input.

        Raises:
            ValidationError: naming the first missing or malformed field.
        """
        for name in _REQUIRED_FIELDS:
            value = raw.get(name)
            if value is None or (isinstance(value, str) and not value.strip()):
                raise ValidationError(f"{name} is required", field=name)

        text_fields = {}
        for name in ("property_id", "survey_number", "property_address", "owner_name"):
            value = raw[name]
            if not isinstance(value, str):
                raise ValidationError(f"{name} must be a string", field=name)
            text_fields[name] = value.strip()

        description = raw.get("description")
        if description is not None:
            if not isinstance(description, str):
                raise ValidationError("description must be a string", field="description")
            description = description.strip() or None

        return RegistrationFields(
            area=canonical_decimal(raw["area"]),
            owner_wallet_address=normalize_wallet_address(raw["owner_wallet_address"]),
            description=description,
            **text_fields,
        )

    def build(
        self,
        fields: RegistrationFields,
        document_hashes: Sequence[str],
    ) -> CanonicalPayload:
        """Serialize the signed attribute set and hash it."""
        hashes = tuple(h.strip() for h in document_hashes if isinstance(h, str))
        if len(hashes) != REQUIRED_DOCUMENT_COUNT or not all(hashes):
            raise ValidationError(
                f"exactly {REQUIRED_DOCUMENT_COUNT} document hashes are required",
                field="document_hashes",
            )

        body = {
            "area": fields.area,
            "documentHashes": list(hashes),
            "ownerName": fields.owner_name,
            "ownerWalletAddress": fields.owner_wallet_address,
            "propertyAddress": fields.property_address,
            "propertyId": fields.property_id,
            "surveyNumber": fields.survey_number,
        }
        serialized = json.dumps(
            body,
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
        ).encode("utf-8")

        return CanonicalPayload(
            fields=fields,
            document_hashes=hashes,
            serialized=serialized,
            digest="0x" + keccak(serialized).hex(),
        )

    def digest(self, raw: Mapping[str, Any], document_hashes: Sequence[str]) -> str:
        """Shortcut: normalize then build, returning only the digest."""
        return self.build(self.normalize(raw), document_hashes).digest
