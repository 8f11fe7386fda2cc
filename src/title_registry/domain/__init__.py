"""Domain layer: pure business logic with zero framework dependencies."""

from title_registry.domain.enums import (
    AccountRole,
    ChainContract,
    DocumentKind,
    EventType,
    FailureReason,
    PropertyStatus,
    RegistrationStatus,
)
from title_registry.domain.exceptions import (
    ConsistencyError,
    InvalidStateTransitionError,
    PayloadIntegrityError,
    PropertyNotFoundError,
    SignatureError,
    TitleRegistryError,
    ValidationError,
)
from title_registry.domain.payload import (
    CanonicalPayload,
    CanonicalPayloadBuilder,
    RegistrationFields,
)
from title_registry.domain.signatures import ConsentSignature, SignatureVerifier
from title_registry.domain.state_machine import (
    PropertyStateMachine,
    RegistrationStateMachine,
    validate_transition,
)

__all__ = [
    "AccountRole",
    "ChainContract",
    "DocumentKind",
    "EventType",
    "FailureReason",
    "PropertyStatus",
    "RegistrationStatus",
    "ConsistencyError",
    "InvalidStateTransitionError",
    "PayloadIntegrityError",
    "PropertyNotFoundError",
    "SignatureError",
    "TitleRegistryError",
    "ValidationError",
    "CanonicalPayload",
    "CanonicalPayloadBuilder",
    "RegistrationFields",
    "ConsentSignature",
    "SignatureVerifier",
    "PropertyStateMachine",
    "RegistrationStateMachine",
    "validate_transition",
]
