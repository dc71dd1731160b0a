"""volunteer_signup/lambda_function.py — Volunteer sign-up request API

A volunteer asks to attend an event. The request is checked against the
event (exists, sign-ups open, not started, no earlier sign-up, roles not
full) and stored as a ``pending`` sign-up awaiting manager review.

Routes (via API Gateway):
  POST   /api/v1/signups                      — body {"eventId": "<uuid>"}
  POST   /api/v1/events/{eventId}/signups     — event id from the path
  OPTIONS *                                   — CORS preflight

Auth:
  Cognito authorizer claims (``sub`` is the volunteer id), or a Cognito ID
  token when no authorizer is attached.

Environment variables:
  EVENTS_TABLE_NAME             default: events
  VOLUNTEER_SIGNUP_TABLE_NAME   default: volunteer-signups
  DYNAMODB_REGION               default: us-west-2
"""

from __future__ import annotations

from typing import Any, Dict

from rescue_shared.auth import Identity, _resolve_identity
from rescue_shared.config import logger
from rescue_shared.errors import ConflictError, NotFoundError, RescueError, ValidationError
from rescue_shared.http_utils import (
    _error,
    _error_from_exception,
    _json_body,
    _path_method,
    _path_param,
    _preflight,
    _response,
)
from rescue_shared.models import (
    _VALID_ROLES,
    STATUS_PENDING,
    VolunteerSignUp,
    _validate_event_id,
)
from rescue_shared.serialization import _emit_structured_observability, _unix_now, _utc_now
from rescue_shared.store import _get_event, _get_signup, _put_signup

_COMPONENT = "volunteer_signup"


def _handle_signup(identity: Identity, event_id: str) -> Dict[str, Any]:
    volunteer_id = identity.caller_id

    record = _get_event(event_id)
    if record is None:
        logger.warning("volunteer %s signed up for missing event %s", volunteer_id, event_id)
        raise NotFoundError(f"Event with ID {event_id} does not exist.")

    if not record.sign_up_open:
        logger.warning("volunteer %s signed up for event %s with sign-ups closed", volunteer_id, event_id)
        raise ValidationError("Sign-ups for this event are currently closed.")

    starts_at = record.starts_at()
    if starts_at is None:
        logger.warning("event %s has an unreadable eventDate: %r", event_id, record.event_date)
        raise ValidationError("Event date is invalid; sign-ups are not available.")
    if starts_at < _utc_now():
        logger.warning("volunteer %s signed up for past event %s", volunteer_id, event_id)
        raise ValidationError("Cannot sign up for events that have already occurred.")

    # Advisory only; the conditional put below is what prevents duplicates.
    if _get_signup(event_id, volunteer_id) is not None:
        logger.warning("volunteer %s already signed up for event %s", volunteer_id, event_id)
        raise ConflictError("You have already signed up for this event.")

    # Best-effort; capacity is enforced when a manager approves.
    for role in _VALID_ROLES:
        if not record.has_room(role):
            logger.warning("no %s spots left for event %s", role, event_id)
            raise ValidationError(f"No available spots for {role} volunteers in this event.")

    signup = VolunteerSignUp.new_pending(event_id, volunteer_id, _unix_now())
    try:
        _put_signup(signup)
    except ConflictError:
        logger.warning("duplicate sign-up by volunteer %s for event %s", volunteer_id, event_id)
        raise

    logger.info("volunteer %s signed up for event %s", volunteer_id, event_id)
    _emit_structured_observability(
        component=_COMPONENT,
        event="signup_created",
        event_id=event_id,
        volunteer_id=volunteer_id,
        extra={"to_status": STATUS_PENDING},
    )
    return _response(201, {
        "success": True,
        "message": f"Volunteer sign-up submitted for event {event_id}. Awaiting Manager approval.",
        "signupStatus": STATUS_PENDING,
        "signupEpoch": signup.signup_epoch,
    })


def lambda_handler(event: Dict, context: Any) -> Dict:
    method, path = _path_method(event)

    if method == "OPTIONS":
        return _preflight()
    if method != "POST":
        return _error(405, f"Method {method} not allowed. Use POST to sign up.")

    try:
        identity = _resolve_identity(event)
        body = _json_body(event)
        raw_event_id = _path_param(event, "eventId") or body.get("eventId")
        if not raw_event_id:
            logger.warning("volunteer %s sent a sign-up without an eventId", identity.caller_id)
        event_id = _validate_event_id(raw_event_id)
        return _handle_signup(identity, event_id)
    except RescueError as exc:
        return _error_from_exception(exc)
    except Exception:
        logger.exception("sign-up failed on %s %s", method, path)
        return _error(500, "Could not sign up volunteer.")
