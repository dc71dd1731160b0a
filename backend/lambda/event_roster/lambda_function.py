"""event_roster/lambda_function.py — Volunteer roster for an event

Lists every sign-up recorded for an event, in storage key order.

Routes (via API Gateway):
  GET    /api/v1/events/{eventId}/volunteers?status=pending|approved|rejected
  OPTIONS *                                                — CORS preflight

Auth:
  Caller must belong to MANAGER_GROUP (default: Managers).

Environment variables:
  VOLUNTEER_SIGNUP_TABLE_NAME   default: volunteer-signups
"""

from __future__ import annotations

import re
from typing import Any, Dict, Optional

from rescue_shared import config
from rescue_shared.auth import _require_group, _resolve_identity
from rescue_shared.config import logger
from rescue_shared.errors import RescueError, ValidationError
from rescue_shared.http_utils import (
    _error,
    _error_from_exception,
    _path_method,
    _path_param,
    _preflight,
    _query_param,
    _response,
)
from rescue_shared.models import _validate_event_id, _validate_status
from rescue_shared.store import _query_signups

_RE_ROSTER = re.compile(r"^(?:/api/v1)?/events/(?P<event_id>[^/]+)/volunteers/?$")


def _event_id_from_request(event: Dict[str, Any], path: str) -> Optional[str]:
    event_id = _path_param(event, "eventId")
    if event_id:
        return event_id
    m = _RE_ROSTER.match(path)
    if m:
        return m.group("event_id")
    return None


def _handle_roster(event_id: str, status: Optional[str]) -> Dict[str, Any]:
    signups = _query_signups(event_id, status=status)
    return _response(200, {
        "success": True,
        "eventId": event_id,
        "count": len(signups),
        "volunteers": [s.to_response() for s in signups],
    })


def lambda_handler(event: Dict, context: Any) -> Dict:
    method, path = _path_method(event)

    if method == "OPTIONS":
        return _preflight()
    if method != "GET":
        return _error(405, f"Method {method} not allowed. Use GET to list volunteers.")

    try:
        identity = _resolve_identity(event)
        _require_group(identity, config.MANAGER_GROUP, "access this endpoint")
        raw_event_id = _event_id_from_request(event, path)
        if not raw_event_id:
            raise ValidationError("Event ID is required in the path parameters.")
        event_id = _validate_event_id(raw_event_id)
        raw_status = _query_param(event, "status")
        status = _validate_status(raw_status) if raw_status else None
        return _handle_roster(event_id, status)
    except RescueError as exc:
        return _error_from_exception(exc)
    except Exception:
        logger.exception("roster query failed on %s %s", method, path)
        return _error(500, "Could not retrieve volunteers.")
