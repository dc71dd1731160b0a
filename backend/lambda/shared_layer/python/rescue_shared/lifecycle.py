"""rescue_shared.lifecycle — Sign-up review state machine.

A sign-up starts ``pending`` and is moved by manager decisions. Every
(status, action) pair has an explicit entry below, including the ones that
leave the status where it is, so no combination is decided by fallthrough.

Counter deltas say which event counters the decision moves:

    pending/rejected + approve  -> +1 on the target role
    approved         + reject   -> -1 on the role actually held
    approved         + approve  -> no change for the same role; for a new
                                   role the spot moves (-1 held, +1 target)
    pending/rejected + reject   -> no change
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from rescue_shared.models import (
    ACTION_APPROVE,
    ACTION_REJECT,
    STATUS_APPROVED,
    STATUS_PENDING,
    STATUS_REJECTED,
    VolunteerSignUp,
)

__all__ = [
    "ReviewPlan",
    "_STATUS_TRANSITIONS",
    "_next_status",
    "_plan_review",
]

_STATUS_TRANSITIONS: Dict[Tuple[str, str], str] = {
    (STATUS_PENDING, ACTION_APPROVE): STATUS_APPROVED,
    (STATUS_PENDING, ACTION_REJECT): STATUS_REJECTED,
    (STATUS_APPROVED, ACTION_APPROVE): STATUS_APPROVED,
    (STATUS_APPROVED, ACTION_REJECT): STATUS_REJECTED,
    (STATUS_REJECTED, ACTION_APPROVE): STATUS_APPROVED,
    (STATUS_REJECTED, ACTION_REJECT): STATUS_REJECTED,
}


@dataclass(frozen=True)
class ReviewPlan:
    from_status: str
    to_status: str
    target_role: str
    held_role: Optional[str] = None
    counter_deltas: Dict[str, int] = field(default_factory=dict)

    @property
    def increments(self) -> Tuple[str, ...]:
        return tuple(role for role, delta in self.counter_deltas.items() if delta > 0)

    @property
    def decrements(self) -> Tuple[str, ...]:
        return tuple(role for role, delta in self.counter_deltas.items() if delta < 0)

    @property
    def moves_counters(self) -> bool:
        return any(self.counter_deltas.values())


def _next_status(current_status: str, action: str) -> str:
    try:
        return _STATUS_TRANSITIONS[(current_status, action)]
    except KeyError:
        raise ValueError(f"No transition for status '{current_status}' on action '{action}'")


def _counter_deltas(
    current_status: str,
    held_role: Optional[str],
    action: str,
    target_role: str,
) -> Dict[str, int]:
    if current_status == STATUS_APPROVED:
        # An approved record always holds a role; older items without one
        # are treated as holding the role named in the request.
        held = held_role or target_role
        if action == ACTION_REJECT:
            return {held: -1}
        if held != target_role:
            return {held: -1, target_role: 1}
        return {}
    if action == ACTION_APPROVE:
        return {target_role: 1}
    return {}


def _plan_review(signup: VolunteerSignUp, action: str, target_role: str) -> ReviewPlan:
    """Decide the next status and counter movement for a manager decision."""
    current = signup.status
    return ReviewPlan(
        from_status=current,
        to_status=_next_status(current, action),
        target_role=target_role,
        held_role=signup.assigned_role,
        counter_deltas=_counter_deltas(current, signup.assigned_role, action, target_role),
    )
