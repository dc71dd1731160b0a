"""rescue_shared.serialization — DynamoDB serialization, timestamps, observability.

Provides TypeSerializer/TypeDeserializer wrappers, epoch helpers and the
structured log line emitted on every sign-up state change.
"""

from __future__ import annotations

import datetime as dt
import json
import time
from decimal import Decimal
from typing import Any, Dict, Optional

from boto3.dynamodb.types import TypeDeserializer, TypeSerializer

from rescue_shared.config import logger

__all__ = [
    "_deserialize",
    "_deserialize_value",
    "_emit_structured_observability",
    "_now_z",
    "_serialize",
    "_serialize_item",
    "_unix_now",
    "_utc_now",
]

_SER = TypeSerializer()
_DESER = TypeDeserializer()


def _serialize(value: Any) -> Dict[str, Any]:
    """Serialize a Python value for DynamoDB."""
    if isinstance(value, float):
        value = Decimal(str(value))
    return _SER.serialize(value)


def _serialize_item(item: Dict[str, Any]) -> Dict[str, Any]:
    return {k: _serialize(v) for k, v in item.items()}


def _deserialize_value(raw: Dict[str, Any]) -> Any:
    val = _DESER.deserialize(raw)
    if isinstance(val, Decimal):
        val = int(val) if val == int(val) else float(val)
    return val


def _deserialize(item: Dict[str, Any]) -> Dict[str, Any]:
    """Deserialize a DynamoDB item to a plain Python dict."""
    return {k: _deserialize_value(v) for k, v in item.items()}


def _utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _now_z() -> str:
    """Current UTC timestamp in ISO 8601 format with Z suffix."""
    return _utc_now().strftime("%Y-%m-%dT%H:%M:%SZ")


def _unix_now() -> int:
    """Current Unix epoch in whole seconds."""
    return int(time.time())


def _emit_structured_observability(
    *,
    component: str,
    event: str,
    event_id: Optional[str] = None,
    volunteer_id: Optional[str] = None,
    error_code: Optional[str] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> None:
    payload: Dict[str, Any] = {
        "timestamp": _now_z(),
        "component": component,
        "event": event,
        "event_id": str(event_id or ""),
        "volunteer_id": str(volunteer_id or ""),
        "error_code": str(error_code or ""),
    }
    if extra:
        payload.update(extra)
    logger.info("[OBSERVABILITY] %s", json.dumps(payload, sort_keys=True, default=str))
