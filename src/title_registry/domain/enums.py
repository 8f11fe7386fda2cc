"""Domain enumerations for the title registry.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

import enum


class PropertyStatus(enum.StrEnum):
    """Lifecycle states of a registered property title.

    State transitions are enforced by the PropertyStateMachine guard.
    See domain/state_machine.py for the transition table.
    """

    PENDING = "pending"
    VERIFIED = "verified"
    LISTED_FOR_SALE = "listed_for_sale"
    SOLD = "sold"


class RegistrationStatus(enum.StrEnum):
    """States of the prepare -> sign -> execute registration protocol."""

    DRAFTED = "drafted"
    HASH_PREPARED = "hash_prepared"
    SIGNED = "signed"
    CHAIN_SUBMITTED = "chain_submitted"
    RECORDED = "recorded"
    FAILED = "failed"


class FailureReason(enum.StrEnum):
    """Why a registration draft ended in FAILED.

    CHAIN_REJECTED is stored with the revert reason appended,
    e.g. "chain_rejected: title already exists".
    """

    SIGNATURE_MISMATCH = "signature_mismatch"
    INTEGRITY_MISMATCH = "integrity_mismatch"
    CHAIN_REJECTED = "chain_rejected"
    CHAIN_UNAVAILABLE = "chain_unavailable"
    EVENT_MISSING = "event_missing"


class EventType(enum.StrEnum):
    """Types of audit events recorded in the property_events table.

    Every property status change MUST produce exactly one event.
    """

    PROPERTY_REGISTERED = "PROPERTY_REGISTERED"
    PROPERTY_VERIFIED = "PROPERTY_VERIFIED"
    PROPERTY_LISTED = "PROPERTY_LISTED"
    PROPERTY_SOLD = "PROPERTY_SOLD"

    # Written when the ledger is brought back in line with the chain
    REGISTRATION_RECONCILED = "REGISTRATION_RECONCILED"
    STATUS_RECONCILED = "STATUS_RECONCILED"


class DocumentKind(enum.StrEnum):
    """The two documents every registration must carry, in signing order."""

    MOTHER_DEED = "mother_deed"
    ENCUMBRANCE_CERTIFICATE = "encumbrance_certificate"


class AccountRole(enum.StrEnum):
    SELLER = "seller"
    BUYER = "buyer"
    VERIFIER = "verifier"


class ChainContract(enum.StrEnum):
    """Contracts the service talks to."""

    PROPERTY_TITLE = "property_title"
    MARKETPLACE = "marketplace"
