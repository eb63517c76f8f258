"""Transfer State Machine Guard.

Uses python-statemachine to enforce legal state transitions at the domain level.
No matter what the API, a webhook or the expiry sweep asks for, an illegal
transition (e.g., funding -> released) raises TransitionNotAllowed before
the store is touched.

The machine is instantiated per transfer from the stored status and only
validates; the actual write is the store's conditional update.

Transition table:
    created   -> funding    (submit)                  amount > 0, payee set
    created   -> failed     (authorization_failed)
    funding   -> held       (capture_succeeded)       webhook only
    funding   -> failed     (capture_failed)          webhook only
    held      -> released   (release)                 release conditions hold
    held      -> expired    (expire)                  sweep, auto-return policy
    created   -> canceled   (cancel)
    funding   -> canceled   (cancel)
    held      -> canceled   (cancel)                  administrator only

Denied release attempts (time-lock, geofence) are not transitions: the
transfer stays held.
"""

from __future__ import annotations

from statemachine import State, StateMachine


class TransferStateMachine(StateMachine):
    """State machine that guards transfer lifecycle transitions.

    Usage:
        sm = TransferStateMachine(current_status="funding")
        sm.capture_succeeded()  # transitions to held
        sm.status               # "held"
    """

    # --- States ---
    CREATED = State("Created", value="created", initial=True)
    FUNDING = State("Funding", value="funding")
    HELD = State("Held", value="held")
    RELEASED = State("Released", value="released", final=True)
    EXPIRED = State("Expired", value="expired", final=True)
    FAILED = State("Failed", value="failed", final=True)
    CANCELED = State("Canceled", value="canceled", final=True)

    # --- Events / Transitions ---

    # Funding
    submit = CREATED.to(FUNDING)
    authorization_failed = CREATED.to(FAILED)

    # Gateway confirmation (WebhookIngestor)
    capture_succeeded = FUNDING.to(HELD)
    capture_failed = FUNDING.to(FAILED)

    # Settlement
    release = HELD.to(RELEASED)

    # Return to payer
    expire = HELD.to(EXPIRED)
    cancel = CREATED.to(CANCELED) | FUNDING.to(CANCELED) | HELD.to(CANCELED)

    def __init__(self, current_status: str = "created") -> None:
        """Initialize the state machine at a given status.

        Args:
            current_status: The current TransferStatus value (e.g., "held").
                           Must match one of the State values exactly.
        """
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(
                f"Unknown status '{current_status}'. Valid states: {valid}"
            )
        super().__init__(start_value=current_status)

    @property
    def status(self) -> str:
        """Return the current state value as a string (matches TransferStatus)."""
        return str(self.current_state.value)

    def get_allowed_events(self) -> list[str]:
        """Return a list of event names that can fire from the current state."""
        return [getattr(event, "id", None) or event.name for event in self.allowed_events]


def validate_transition(current_status: str, event_name: str) -> str:
    """Validate a state transition and return the new status.

    Creates a temporary state machine, fires the named event, and returns
    the resulting status string.

    Raises:
        TransitionNotAllowed: If the transition is illegal.
        ValueError: If the status or event name is invalid.
    """
    sm = TransferStateMachine(current_status=current_status)

    event_method = getattr(sm, event_name, None)
    if event_method is None or not callable(event_method):
        raise ValueError(
            f"Unknown event '{event_name}'. "
            f"Allowed events from {current_status}: {sm.get_allowed_events()}"
        )

    event_method()
    return sm.status
