"""confirm_volunteer/lambda_function.py — Manager review of volunteer sign-ups

Approves or rejects a volunteer for an event and keeps the event's
per-role approved counters in step with the decision. The sign-up update
and the counter change are one DynamoDB transaction:

  * the sign-up write only applies if its status is still the one read here,
    so two managers reviewing the same volunteer cannot both win;
  * the counter ADD only applies while the counter stays within
    ``[0, capacity]``, so concurrent approvals for the last spot cannot
    both succeed.

Routes (via API Gateway):
  POST   /api/v1/signups/confirm
         body {"eventId", "volunteerId", "assignedRole": exec|standard,
               "action": approve|reject}
  OPTIONS *                               — CORS preflight

Auth:
  Caller must belong to MANAGER_GROUP (default: Managers).

Environment variables:
  EVENTS_TABLE_NAME             default: events
  VOLUNTEER_SIGNUP_TABLE_NAME   default: volunteer-signups
  MANAGER_GROUP                 default: Managers
"""

from __future__ import annotations

from typing import Any, Dict

from rescue_shared import config
from rescue_shared.auth import Identity, _require_group, _resolve_identity
from rescue_shared.config import logger
from rescue_shared.errors import (
    CapacityExceededError,
    ConflictError,
    NotFoundError,
    RescueError,
)
from rescue_shared.http_utils import (
    _error,
    _error_from_exception,
    _json_body,
    _path_method,
    _preflight,
    _response,
)
from rescue_shared.lifecycle import _plan_review
from rescue_shared.models import (
    _require_fields,
    _validate_action,
    _validate_event_id,
    _validate_role,
)
from rescue_shared.serialization import _emit_structured_observability, _unix_now
from rescue_shared.store import _apply_review, _get_event, _get_signup

_COMPONENT = "confirm_volunteer"
_REQUIRED_FIELDS = ("eventId", "volunteerId", "assignedRole", "action")


def _handle_confirm(identity: Identity, body: Dict[str, Any]) -> Dict[str, Any]:
    _require_fields(
        body,
        _REQUIRED_FIELDS,
        "Event ID, Volunteer ID, Assigned Role, and Action are required.",
    )
    event_id = _validate_event_id(body.get("eventId"))
    volunteer_id = str(body.get("volunteerId")).strip()
    action = _validate_action(body.get("action"))
    role = _validate_role(body.get("assignedRole"))
    manager_id = identity.caller_id

    record = _get_event(event_id)
    if record is None:
        raise NotFoundError(f"Event with ID {event_id} does not exist.")

    signup = _get_signup(event_id, volunteer_id)
    if signup is None:
        raise NotFoundError(
            f"Volunteer sign-up not found for event {event_id} and volunteer {volunteer_id}."
        )

    try:
        plan = _plan_review(signup, action, role)
    except ValueError as exc:
        logger.error("sign-up %s/%s has unknown status %r", event_id, volunteer_id, signup.status)
        raise ConflictError(f"Sign-up is in an unknown state '{signup.status}'.") from exc

    # Fail fast on a full role; the transaction condition re-checks at write time.
    for inc_role in plan.increments:
        if not record.has_room(inc_role):
            logger.warning(
                "manager %s approved %s for full %s role on event %s (%d/%d)",
                manager_id,
                volunteer_id,
                inc_role,
                event_id,
                record.approved(inc_role),
                record.capacity(inc_role),
            )
            raise CapacityExceededError(
                f"Cannot approve volunteer: No available spots for {inc_role} volunteers."
            )

    reviewed_at = _unix_now()
    _apply_review(event_id, volunteer_id, plan, manager_id, reviewed_at)

    logger.info(
        "manager %s moved sign-up %s/%s %s -> %s as %s",
        manager_id,
        event_id,
        volunteer_id,
        plan.from_status,
        plan.to_status,
        role,
    )
    _emit_structured_observability(
        component=_COMPONENT,
        event="signup_reviewed",
        event_id=event_id,
        volunteer_id=volunteer_id,
        extra={
            "action": action,
            "from_status": plan.from_status,
            "to_status": plan.to_status,
            "assigned_role": role,
            "counter_deltas": plan.counter_deltas,
            "reviewed_by": manager_id,
        },
    )
    return _response(200, {
        "success": True,
        "message": f"Volunteer {volunteer_id} {plan.to_status} for event {event_id} as {role}.",
        "status": plan.to_status,
        "previousStatus": plan.from_status,
        "assignedRole": role,
        "reviewedAt": reviewed_at,
        "counterDeltas": plan.counter_deltas,
    })


def lambda_handler(event: Dict, context: Any) -> Dict:
    method, path = _path_method(event)

    if method == "OPTIONS":
        return _preflight()
    if method != "POST":
        return _error(405, f"Method {method} not allowed. Use POST to confirm.")

    try:
        identity = _resolve_identity(event)
        _require_group(identity, config.MANAGER_GROUP, "confirm volunteers")
        body = _json_body(event)
        return _handle_confirm(identity, body)
    except RescueError as exc:
        return _error_from_exception(exc)
    except Exception:
        logger.exception("confirmation failed on %s %s", method, path)
        return _error(500, "Could not confirm volunteer.")
