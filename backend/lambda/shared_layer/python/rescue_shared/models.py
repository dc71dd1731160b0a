"""rescue_shared.models — Event and VolunteerSignUp records.

Items are stored with the attribute names the rest of the organization's
tooling already reads (``PK``/``SK`` keys, camelCase attributes), so the
dataclasses here only translate between those items and typed fields.
"""

from __future__ import annotations

import datetime as dt
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

from rescue_shared.errors import ValidationError

__all__ = [
    "ACTION_APPROVE",
    "ACTION_REJECT",
    "ROLE_EXEC",
    "ROLE_STANDARD",
    "STATUS_APPROVED",
    "STATUS_PENDING",
    "STATUS_REJECTED",
    "Event",
    "VolunteerSignUp",
    "_CAPACITY_FIELDS",
    "_COUNTER_FIELDS",
    "_VALID_ACTIONS",
    "_VALID_ROLES",
    "_VALID_STATUSES",
    "_parse_event_date",
    "_require_fields",
    "_validate_action",
    "_validate_event_id",
    "_validate_role",
    "_validate_status",
]

ROLE_EXEC = "exec"
ROLE_STANDARD = "standard"
_VALID_ROLES = (ROLE_EXEC, ROLE_STANDARD)

STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"
_VALID_STATUSES = (STATUS_PENDING, STATUS_APPROVED, STATUS_REJECTED)

ACTION_APPROVE = "approve"
ACTION_REJECT = "reject"
_VALID_ACTIONS = (ACTION_APPROVE, ACTION_REJECT)

# Per-role attribute names on the event item
_COUNTER_FIELDS = {ROLE_EXEC: "approvedExecCount", ROLE_STANDARD: "approvedStandardCount"}
_CAPACITY_FIELDS = {ROLE_EXEC: "availableSpotsExec", ROLE_STANDARD: "availableSpotsStandard"}


def _as_int(value: Any) -> int:
    if value is None or isinstance(value, bool):
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _parse_event_date(raw: Any) -> Optional[dt.datetime]:
    """Parse an ISO-8601 event date; naive values are taken as UTC."""
    if raw is None:
        return None
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return dt.datetime.fromtimestamp(raw, tz=dt.timezone.utc)
    text = str(raw).strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = dt.datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.timezone.utc)
    return parsed


@dataclass
class Event:
    event_id: str
    manager_id: str
    event_date: Any
    venue_id: str
    available_spots_exec: int
    available_spots_standard: int
    sign_up_open: bool
    approved_exec_count: int = 0
    approved_standard_count: int = 0

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "Event":
        return cls(
            event_id=str(item.get("PK") or ""),
            manager_id=str(item.get("managerId") or ""),
            event_date=item.get("eventDate"),
            venue_id=str(item.get("venueId") or ""),
            available_spots_exec=_as_int(item.get("availableSpotsExec")),
            available_spots_standard=_as_int(item.get("availableSpotsStandard")),
            # Anything but a real boolean true keeps sign-ups closed.
            sign_up_open=item.get("signUpOpen") is True,
            approved_exec_count=_as_int(item.get("approvedExecCount")),
            approved_standard_count=_as_int(item.get("approvedStandardCount")),
        )

    def capacity(self, role: str) -> int:
        if role == ROLE_EXEC:
            return self.available_spots_exec
        return self.available_spots_standard

    def approved(self, role: str) -> int:
        if role == ROLE_EXEC:
            return self.approved_exec_count
        return self.approved_standard_count

    def has_room(self, role: str) -> bool:
        return self.approved(role) < self.capacity(role)

    def starts_at(self) -> Optional[dt.datetime]:
        return _parse_event_date(self.event_date)


@dataclass
class VolunteerSignUp:
    event_id: str
    volunteer_id: str
    signup_epoch: int
    status: str = STATUS_PENDING
    assigned_role: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[int] = None

    @classmethod
    def new_pending(cls, event_id: str, volunteer_id: str, now_epoch: int) -> "VolunteerSignUp":
        return cls(event_id=event_id, volunteer_id=volunteer_id, signup_epoch=now_epoch)

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "VolunteerSignUp":
        reviewed_at = item.get("reviewedAt")
        return cls(
            event_id=str(item.get("PK") or ""),
            volunteer_id=str(item.get("SK") or ""),
            signup_epoch=_as_int(item.get("signupEpoch")),
            status=str(item.get("status") or STATUS_PENDING),
            assigned_role=item.get("assignedRole") or None,
            reviewed_by=item.get("reviewedBy") or None,
            reviewed_at=_as_int(reviewed_at) if reviewed_at is not None else None,
        )

    def to_item(self) -> Dict[str, Any]:
        """Item for the sign-up table; review fields are omitted until set."""
        item: Dict[str, Any] = {
            "PK": self.event_id,
            "SK": self.volunteer_id,
            "signupEpoch": self.signup_epoch,
            "status": self.status,
            "assignedRole": self.assigned_role,
        }
        if self.reviewed_by is not None:
            item["reviewedBy"] = self.reviewed_by
        if self.reviewed_at is not None:
            item["reviewedAt"] = self.reviewed_at
        return item

    def to_response(self) -> Dict[str, Any]:
        return {
            "eventId": self.event_id,
            "volunteerId": self.volunteer_id,
            "signupEpoch": self.signup_epoch,
            "status": self.status,
            "assignedRole": self.assigned_role,
            "reviewedBy": self.reviewed_by,
            "reviewedAt": self.reviewed_at,
        }


# ---------------------------------------------------------------------------
# Request validation
# ---------------------------------------------------------------------------


def _require_fields(body: Dict[str, Any], names: Iterable[str], message: str) -> None:
    for name in names:
        value = body.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValidationError(message)


def _validate_event_id(raw: Any) -> str:
    """Event ids are UUIDs; return the id stripped of surrounding whitespace."""
    if not isinstance(raw, str) or not raw.strip():
        raise ValidationError("Event ID is required.")
    try:
        uuid.UUID(raw.strip())
    except ValueError:
        raise ValidationError("Invalid Event ID format. It must be a valid UUID.")
    return raw.strip()


def _validate_role(raw: Any) -> str:
    role = str(raw or "").strip().lower()
    if role not in _VALID_ROLES:
        raise ValidationError(f"Assigned role must be one of: {', '.join(_VALID_ROLES)}.")
    return role


def _validate_action(raw: Any) -> str:
    action = str(raw or "").strip().lower()
    if action not in _VALID_ACTIONS:
        raise ValidationError("Action must be 'approve' or 'reject'.")
    return action


def _validate_status(raw: Any) -> str:
    status = str(raw or "").strip().lower()
    if status not in _VALID_STATUSES:
        raise ValidationError(f"Status filter must be one of: {', '.join(_VALID_STATUSES)}.")
    return status
