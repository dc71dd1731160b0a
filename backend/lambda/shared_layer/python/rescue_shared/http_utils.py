"""rescue_shared.http_utils — HTTP response helpers with CORS.

Standard response envelope, body parsing and request-shape helpers used by
all volunteer API Lambda functions.
"""

from __future__ import annotations

import base64
import json
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from rescue_shared.config import CORS_ORIGIN, logger
from rescue_shared.errors import RescueError, ValidationError

__all__ = [
    "_cors_headers",
    "_error",
    "_error_from_exception",
    "_json_body",
    "_path_method",
    "_path_param",
    "_preflight",
    "_query_param",
    "_response",
]


def _cors_headers() -> Dict[str, str]:
    return {
        "Access-Control-Allow-Origin": CORS_ORIGIN,
        "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
        "Access-Control-Allow-Headers": "Authorization, Content-Type, Cookie",
        "Access-Control-Allow-Credentials": "true",
    }


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        if obj % 1 == 0:
            return int(obj)
        return float(obj)
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def _response(status_code: int, body: Any) -> Dict[str, Any]:
    """Build a standard API Gateway response with CORS headers."""
    return {
        "statusCode": status_code,
        "headers": {**_cors_headers(), "Content-Type": "application/json"},
        "body": json.dumps(body, default=_json_default),
    }


def _error(status_code: int, message: str, **extra: Any) -> Dict[str, Any]:
    """Build a standard error response.

    Args:
        status_code: HTTP status code.
        message: Human-readable error message.
        **extra: Additional fields merged into the response payload.
    """
    payload: Dict[str, Any] = {
        "success": False,
        "error": message,
    }
    if extra:
        payload.update(extra)
    return _response(status_code, payload)


def _error_from_exception(exc: RescueError) -> Dict[str, Any]:
    return _error(exc.status_code, exc.message, code=exc.code)


def _preflight() -> Dict[str, Any]:
    return {"statusCode": 204, "headers": _cors_headers(), "body": ""}


def _json_body(event: Dict[str, Any]) -> Dict[str, Any]:
    """Parse the JSON object body of an API Gateway event (handles base64)."""
    raw = event.get("body")
    if raw in (None, ""):
        return {}
    if event.get("isBase64Encoded"):
        try:
            raw = base64.b64decode(raw).decode("utf-8")
        except (ValueError, UnicodeDecodeError) as exc:
            raise ValidationError("Invalid JSON format in request body.") from exc
    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as exc:
        logger.warning("invalid JSON body: %s", exc)
        raise ValidationError("Invalid JSON format in request body.") from exc
    if not isinstance(parsed, dict):
        raise ValidationError("Request body must be a JSON object.")
    return parsed


def _path_method(event: Dict[str, Any]) -> Tuple[str, str]:
    """Extract HTTP method and path from an API Gateway v1 or v2 event."""
    rc = event.get("requestContext") or {}
    http = rc.get("http") or {}
    method = (http.get("method") or event.get("httpMethod") or "GET").upper()
    path = http.get("path") or event.get("rawPath") or event.get("path") or "/"
    return method, path


def _path_param(event: Dict[str, Any], name: str) -> Optional[str]:
    params = event.get("pathParameters") or {}
    value = params.get(name)
    if value is None:
        return None
    return str(value).strip() or None


def _query_param(event: Dict[str, Any], name: str) -> Optional[str]:
    params = event.get("queryStringParameters") or {}
    value = params.get(name)
    if value is None:
        return None
    return str(value).strip() or None
