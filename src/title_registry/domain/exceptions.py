"""Domain exceptions for the title registry.

These exceptions are framework-agnostic and represent business rule violations
or failures of the external systems the registry depends on. They are caught
and translated to HTTP responses by the API layer's middleware.
"""


class TitleRegistryError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "TITLE_REGISTRY_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


# --- Input Errors ---


class ValidationError(TitleRegistryError):
    """Raised when registration or transfer input is missing or malformed."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message=message, code="VALIDATION_ERROR")
        self.field = field


class PayloadIntegrityError(TitleRegistryError):
    """Raised when the recomputed canonical payload hash differs from the signed one.

    Treated as tampering: inputs changed between prepare and execute.
    """

    def __init__(self, signed_hash: str, recomputed_hash: str) -> None:
        super().__init__(
            message=(
                f"Payload integrity check failed: signed {signed_hash}, "
                f"recomputed {recomputed_hash}"
            ),
            code="INTEGRITY_MISMATCH",
        )
        self.signed_hash = signed_hash
        self.recomputed_hash = recomputed_hash


class SignatureError(TitleRegistryError):
    """Raised when a consent signature cannot be attributed to the property owner."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="SIGNATURE_MISMATCH")


# --- State Machine Errors ---


class InvalidStateTransitionError(TitleRegistryError):
    """Raised when an attempted state transition is not allowed.

    Example: pending -> listed_for_sale (must be verified first).
    Also raised when an optimistic status update loses a race.
    """

    def __init__(self, current_state: str, attempted_state: str) -> None:
        super().__init__(
            message=f"Invalid state transition: {current_state} -> {attempted_state}",
            code="INVALID_STATE_TRANSITION",
        )
        self.current_state = current_state
        self.attempted_state = attempted_state


# --- Lookup / Uniqueness Errors ---


class PropertyNotFoundError(TitleRegistryError):
    """Raised when a property id does not exist in the ledger."""

    def __init__(self, property_id: str) -> None:
        super().__init__(
            message=f"Property not found: {property_id}",
            code="PROPERTY_NOT_FOUND",
        )
        self.property_id = property_id


class RegistrationNotFoundError(TitleRegistryError):
    """Raised when no prepared registration matches a payload hash or tx hash."""

    def __init__(self, reference: str) -> None:
        super().__init__(
            message=f"Registration not found: {reference}",
            code="REGISTRATION_NOT_FOUND",
        )
        self.reference = reference


class AccountNotFoundError(TitleRegistryError):
    """Raised when a wallet address has no local account."""

    def __init__(self, wallet_address: str) -> None:
        super().__init__(
            message=f"No local account for wallet: {wallet_address}",
            code="ACCOUNT_NOT_FOUND",
        )
        self.wallet_address = wallet_address


class DuplicatePropertyError(TitleRegistryError):
    """Raised when a property id (or asset id) is already in the ledger."""

    def __init__(self, property_id: str) -> None:
        super().__init__(
            message=f"Property already registered: {property_id}",
            code="DUPLICATE_PROPERTY",
        )
        self.property_id = property_id


class DuplicateAccountError(TitleRegistryError):
    """Raised when a wallet address or email is already bound to an account."""

    def __init__(self, wallet_address: str) -> None:
        super().__init__(
            message=f"Account already exists for wallet: {wallet_address}",
            code="DUPLICATE_ACCOUNT",
        )


class AuthorizationError(TitleRegistryError):
    """Raised when the caller is not the resolved owner of a property."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="NOT_AUTHORIZED")


# --- Document Store Errors ---


class DocumentUploadError(TitleRegistryError):
    """Raised when the document store fails to pin a file."""

    def __init__(self, message: str, filename: str | None = None) -> None:
        super().__init__(message=message, code="DOCUMENT_UPLOAD_FAILED")
        self.filename = filename


# --- Chain Errors ---


class ChainError(TitleRegistryError):
    """Base exception for chain failures. Not retried unless a subclass says so."""

    def __init__(
        self,
        message: str,
        code: str = "CHAIN_ERROR",
        tx_hash: str | None = None,
    ) -> None:
        super().__init__(message=message, code=code)
        self.tx_hash = tx_hash


class ChainTransientError(ChainError):
    """Network timeout, underpriced or stuck gas, nonce race. Retried with backoff."""

    def __init__(self, message: str, tx_hash: str | None = None) -> None:
        super().__init__(message=message, code="CHAIN_UNAVAILABLE", tx_hash=tx_hash)


class ChainRejectedError(ChainError):
    """Explicit revert or invalid argument encoding. Never retried."""

    def __init__(self, reason: str, tx_hash: str | None = None) -> None:
        super().__init__(
            message=f"Chain rejected transaction: {reason}",
            code="CHAIN_REJECTED",
            tx_hash=tx_hash,
        )
        self.reason = reason


class ConfirmationTimeoutError(ChainError):
    """Raised when a submitted transaction is not confirmed within the timeout.

    The transaction stays submitted; callers resume by tx_hash.
    """

    def __init__(self, tx_hash: str, timeout: float) -> None:
        super().__init__(
            message=f"Transaction {tx_hash} not confirmed within {timeout}s",
            code="CONFIRMATION_TIMEOUT",
            tx_hash=tx_hash,
        )
        self.timeout = timeout


class EventMissingError(ChainError):
    """Raised when a successful transaction lacks the expected event."""

    def __init__(self, event_name: str, tx_hash: str) -> None:
        super().__init__(
            message=f"Transaction {tx_hash} succeeded but emitted no {event_name} event",
            code="EVENT_MISSING",
            tx_hash=tx_hash,
        )
        self.event_name = event_name


# --- Consistency Errors ---


class ConsistencyError(TitleRegistryError):
    """The chain step succeeded but the ledger write failed (or the reverse).

    Needs reconciliation, not a plain retry.
    """

    def __init__(
        self,
        message: str,
        tx_hash: str | None = None,
        property_id: str | None = None,
    ) -> None:
        super().__init__(message=message, code="CONSISTENCY_ERROR")
        self.tx_hash = tx_hash
        self.property_id = property_id
