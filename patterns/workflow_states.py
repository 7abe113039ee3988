"""Enum-based workflow state machine pattern.

Defines the provisioning saga states as a Python enum with explicit
transition validation. Creating a VIP rule touches two remote resources with
no shared transaction, so every step is recorded and only legal transitions
are accepted. The state definitions are independent of where the saga is
persisted.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


# ---------------------------------------------------------------------------
# State definitions
# ---------------------------------------------------------------------------

class ProvisioningState(str, Enum):
    """Lifecycle of one segment + discount pair."""

    STARTED = "started"
    SEGMENT_CREATED = "segment_created"
    DISCOUNT_CREATED = "discount_created"
    COMPLETED = "completed"
    COMPENSATED = "compensated"
    ORPHANED = "orphaned"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Transition rules
# ---------------------------------------------------------------------------

# Allowed transitions: {current_state: [allowed_next_states]}
_PROVISIONING_TRANSITIONS: dict[ProvisioningState, list[ProvisioningState]] = {
    ProvisioningState.STARTED: [ProvisioningState.SEGMENT_CREATED, ProvisioningState.FAILED],
    ProvisioningState.SEGMENT_CREATED: [
        ProvisioningState.DISCOUNT_CREATED,
        ProvisioningState.COMPENSATED,
        ProvisioningState.ORPHANED,
    ],
    ProvisioningState.DISCOUNT_CREATED: [
        ProvisioningState.COMPLETED,
        ProvisioningState.COMPENSATED,
        ProvisioningState.ORPHANED,
    ],
    # reconciliation sweep
    ProvisioningState.ORPHANED: [ProvisioningState.COMPENSATED, ProvisioningState.COMPLETED],
    ProvisioningState.COMPLETED: [],    # terminal
    ProvisioningState.COMPENSATED: [],  # terminal
    ProvisioningState.FAILED: [],       # terminal
}

UNFINISHED_STATES = frozenset(
    state for state, allowed in _PROVISIONING_TRANSITIONS.items() if allowed
)


def can_transition(from_state: ProvisioningState, to_state: ProvisioningState) -> bool:
    return to_state in _PROVISIONING_TRANSITIONS.get(from_state, [])


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------

@dataclass
class WorkflowTransition:
    """Record of a single state transition."""

    from_state: str
    to_state: str
    timestamp: datetime
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ProvisioningSaga:
    """In-memory view of one provisioning run.

    Usage::

        saga = ProvisioningSaga(saga_id="intent-1")
        saga.transition(ProvisioningState.SEGMENT_CREATED, segment_id=gid)
        saga.transition(ProvisioningState.DISCOUNT_CREATED, discount_id=gid)
        saga.transition(ProvisioningState.COMPLETED)
    """

    saga_id: str
    current_state: ProvisioningState = ProvisioningState.STARTED
    history: list[WorkflowTransition] = field(default_factory=list)

    def can_transition(self, to_state: ProvisioningState) -> bool:
        return can_transition(self.current_state, to_state)

    def transition(self, to_state: ProvisioningState, **metadata: Any) -> WorkflowTransition:
        """Execute a state transition.

        Raises ValueError if the transition is not allowed.
        """
        if not self.can_transition(to_state):
            allowed = [s.value for s in _PROVISIONING_TRANSITIONS.get(self.current_state, [])]
            raise ValueError(
                f"Cannot transition from {self.current_state.value} to {to_state.value}. "
                f"Allowed: {allowed}"
            )

        record = WorkflowTransition(
            from_state=self.current_state.value,
            to_state=to_state.value,
            timestamp=datetime.now(timezone.utc),
            metadata=metadata,
        )
        self.history.append(record)
        self.current_state = to_state
        return record

    @property
    def is_terminal(self) -> bool:
        return self.current_state not in UNFINISHED_STATES
