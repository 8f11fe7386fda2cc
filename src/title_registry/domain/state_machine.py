"""Lifecycle State Machine Guards.

Uses python-statemachine to enforce legal state transitions at the domain level.
No matter what the API or a reconciliation job does, an illegal transition
(e.g., pending -> sold) will raise TransitionNotAllowed.

Machines are instantiated per-record at the record's current status and
validate transitions before the ORM row's status column is updated.

Property transition table:
    pending          -> verified          (verify)
    verified         -> listed_for_sale   (list_for_sale)
    listed_for_sale  -> sold              (confirm_sale)

Registration transition table:
    drafted          -> hash_prepared     (prepare_hash)
    hash_prepared    -> hash_prepared     (prepare_hash, same inputs prepared again)
    failed           -> hash_prepared     (prepare_hash, retry after failure)
    hash_prepared    -> signed            (accept_signature)
    signed           -> signed            (accept_signature, execute re-run)
    signed           -> chain_submitted   (submit_to_chain)
    chain_submitted  -> recorded          (record_in_ledger)
    failed           -> chain_submitted   (reopen, a mint found on chain after all)
    any non-terminal -> failed            (mark_failed)
"""

from __future__ import annotations

from statemachine import State, StateMachine


class PropertyStateMachine(StateMachine):
    """State machine that guards the property title lifecycle.

    Usage:
        sm = PropertyStateMachine(current_status="verified")
        sm.list_for_sale()  # transitions to listed_for_sale
        sm.status           # "listed_for_sale"
    """

    # --- States ---
    PENDING = State("Pending", value="pending", initial=True)
    VERIFIED = State("Verified", value="verified")
    LISTED_FOR_SALE = State("Listed for sale", value="listed_for_sale")
    SOLD = State("Sold", value="sold", final=True)

    # --- Events / Transitions ---
    verify = PENDING.to(VERIFIED)
    list_for_sale = VERIFIED.to(LISTED_FOR_SALE)
    confirm_sale = LISTED_FOR_SALE.to(SOLD)

    def __init__(self, current_status: str = "pending") -> None:
        """Initialize the state machine at a given status.

        Args:
            current_status: The current PropertyStatus value (e.g., "verified").
        """
        _check_known_status(self, current_status)
        super().__init__(start_value=current_status)

    @property
    def status(self) -> str:
        """Return the current state value as a string (matches PropertyStatus)."""
        return str(self.current_state.value)

    def get_allowed_events(self) -> list[str]:
        """Return a list of event names that can fire from the current state."""
        return [event.name for event in self.allowed_events]


class RegistrationStateMachine(StateMachine):
    """State machine for the two-phase registration protocol.

    The signing step happens off-process, so a draft can sit in
    hash_prepared indefinitely. chain_submitted is resumable: a confirmation
    timeout leaves the draft there with its transaction hash.
    """

    DRAFTED = State("Drafted", value="drafted", initial=True)
    HASH_PREPARED = State("Hash prepared", value="hash_prepared")
    SIGNED = State("Signed", value="signed")
    CHAIN_SUBMITTED = State("Chain submitted", value="chain_submitted")
    RECORDED = State("Recorded", value="recorded", final=True)
    FAILED = State("Failed", value="failed")

    prepare_hash = (
        DRAFTED.to(HASH_PREPARED)
        | HASH_PREPARED.to(HASH_PREPARED)
        | FAILED.to(HASH_PREPARED)
    )
    accept_signature = HASH_PREPARED.to(SIGNED) | SIGNED.to(SIGNED)
    submit_to_chain = SIGNED.to(CHAIN_SUBMITTED)
    record_in_ledger = CHAIN_SUBMITTED.to(RECORDED)
    reopen = FAILED.to(CHAIN_SUBMITTED)
    mark_failed = (
        DRAFTED.to(FAILED)
        | HASH_PREPARED.to(FAILED)
        | SIGNED.to(FAILED)
        | CHAIN_SUBMITTED.to(FAILED)
    )

    def __init__(self, current_status: str = "drafted") -> None:
        _check_known_status(self, current_status)
        super().__init__(start_value=current_status)

    @property
    def status(self) -> str:
        return str(self.current_state.value)

    def get_allowed_events(self) -> list[str]:
        return [event.name for event in self.allowed_events]


def _check_known_status(machine: StateMachine, current_status: str) -> None:
    valid_values = {s.value for s in machine.states}
    if current_status not in valid_values:
        valid = ", ".join(sorted(valid_values))
        raise ValueError(
            f"Unknown status '{current_status}'. Valid states: {valid}"
        )


def validate_transition(
    current_status: str,
    event_name: str,
    machine_cls: type[PropertyStateMachine] | type[RegistrationStateMachine] = PropertyStateMachine,
) -> str:
    """Validate a state transition and return the new status.

    Creates a temporary state machine, fires the named event, and returns
    the resulting status string.

    Args:
        current_status: Current status value.
        event_name: The event to fire (e.g., "verify").
        machine_cls: Which lifecycle to validate against.

    Returns:
        The new status string after the transition.

    Raises:
        TransitionNotAllowed: If the transition is illegal.
        ValueError: If the status or event name is invalid.
    """
    sm = machine_cls(current_status=current_status)

    event_method = getattr(sm, event_name, None)
    if event_method is None or not callable(event_method):
        raise ValueError(
            f"Unknown event '{event_name}'. "
            f"Allowed events from {current_status}: {sm.get_allowed_events()}"
        )

    event_method()
    return sm.status
