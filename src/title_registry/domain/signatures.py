"""Consent signature recovery.

Owners sign the 32-byte canonical payload digest with their wallet's
personal-message signing (EIP-191, the scheme behind `personal_sign`).
The verifier re-derives the signed message hash, recovers the public key and
compares the resulting address with the expected owner.
"""

from __future__ import annotations

from dataclasses import dataclass

from eth_keys import keys
from eth_utils import decode_hex, keccak

from title_registry.logging_config import get_logger

logger = get_logger(__name__)

_PERSONAL_MESSAGE_PREFIX = b"\x19Ethereum Signed Message:\n"
_SIGNATURE_LENGTH = 65


@dataclass(frozen=True)
class ConsentSignature:
    """An owner's signature over a payload hash, as returned by the wallet."""

    signature: str
    claimed_signer_address: str
    payload_hash: str


def personal_message_hash(payload_hash: str) -> bytes:
    """Hash that a wallet actually signs for a 32-byte payload digest."""
    message = decode_hex(payload_hash)
    if len(message) != 32:
        raise ValueError("payload hash must be 32 bytes")
    return keccak(_PERSONAL_MESSAGE_PREFIX + str(len(message)).encode() + message)


def recover_signer(payload_hash: str, signature: str) -> str:
    """Recover the checksum address that produced `signature` over `payload_hash`.

    Raises:
        ValueError / eth_keys errors on malformed input.
    """
    raw = decode_hex(signature)
    if len(raw) != _SIGNATURE_LENGTH:
        raise ValueError(f"signature must be {_SIGNATURE_LENGTH} bytes, got {len(raw)}")

    r = int.from_bytes(raw[0:32], "big")
    s = int.from_bytes(raw[32:64], "big")
    v = raw[64]
    if v >= 27:
        v -= 27

    sig = keys.Signature(vrs=(v, r, s))
    public_key = sig.recover_public_key_from_msg_hash(personal_message_hash(payload_hash))
    return public_key.to_checksum_address()


class SignatureVerifier:
    """Checks that a payload hash was signed by an expected wallet.

    Fails closed: anything that prevents a clean recovery is a failed
    verification, never an exception.
    """

    def verify(self, payload_hash: str, signature: str, expected_address: str) -> bool:
        try:
            recovered = recover_signer(payload_hash, signature)
        except Exception as exc:
            logger.warning(
                "signature.recovery_failed",
                payload_hash=payload_hash,
                error=str(exc),
            )
            return False

        matches = recovered.lower() == (expected_address or "").strip().lower()
        if not matches:
            logger.warning(
                "signature.signer_mismatch",
                payload_hash=payload_hash,
                recovered=recovered,
                expected=expected_address,
            )
        return matches

    def verify_consent(self, consent: ConsentSignature, expected_address: str) -> bool:
        return self.verify(consent.payload_hash, consent.signature, expected_address)
