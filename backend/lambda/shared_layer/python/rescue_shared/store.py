"""rescue_shared.store — DynamoDB persistence for events and sign-ups.

Two tables, both keyed ``PK``/``SK``:

    events             PK=<event id>  SK=EVENT_SORT_KEY
    volunteer-signups  PK=<event id>  SK=<volunteer id>

Counters on the event item are never written from application memory. A
review is one ``TransactWriteItems`` call: the sign-up update is conditioned
on the status and role read by the handler, and the counter ``ADD`` is
conditioned on the counter staying within ``[0, capacity]`` at write time.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from rescue_shared import config
from rescue_shared.aws_clients import _get_ddb
from rescue_shared.config import logger
from rescue_shared.errors import (
    CapacityExceededError,
    ConflictError,
    UnexpectedStoreError,
)
from rescue_shared.lifecycle import ReviewPlan
from rescue_shared.models import _CAPACITY_FIELDS, _COUNTER_FIELDS, Event, VolunteerSignUp
from rescue_shared.serialization import _deserialize, _serialize, _serialize_item

__all__ = [
    "_apply_review",
    "_build_event_counter_update",
    "_build_review_transaction",
    "_build_signup_review_update",
    "_event_key",
    "_get_event",
    "_get_signup",
    "_put_signup",
    "_query_signups",
    "_signup_key",
]


def _error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "")


def _is_conditional_check_failed(exc: Exception) -> bool:
    if not isinstance(exc, ClientError):
        return False
    return _error_code(exc) == "ConditionalCheckFailedException"


def _cancellation_codes(exc: ClientError) -> List[str]:
    reasons = exc.response.get("CancellationReasons") or []
    return [str((reason or {}).get("Code") or "None") for reason in reasons]


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------


def _event_key(event_id: str) -> Dict[str, Any]:
    return {"PK": _serialize(event_id), "SK": _serialize(config.EVENT_SORT_KEY)}


def _signup_key(event_id: str, volunteer_id: str) -> Dict[str, Any]:
    return {"PK": _serialize(event_id), "SK": _serialize(volunteer_id)}


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


def _get_event(event_id: str) -> Optional[Event]:
    """GetItem with ConsistentRead. Returns the event or None."""
    try:
        resp = _get_ddb().get_item(
            TableName=config.EVENTS_TABLE_NAME,
            Key=_event_key(event_id),
            ConsistentRead=True,
        )
    except (ClientError, BotoCoreError) as exc:
        logger.error("event get_item failed for %s: %s", event_id, exc)
        raise UnexpectedStoreError("Database read failed.") from exc
    item = resp.get("Item")
    if item is None:
        return None
    return Event.from_item(_deserialize(item))


def _get_signup(event_id: str, volunteer_id: str) -> Optional[VolunteerSignUp]:
    """GetItem with ConsistentRead. Returns the sign-up or None."""
    try:
        resp = _get_ddb().get_item(
            TableName=config.VOLUNTEER_SIGNUP_TABLE_NAME,
            Key=_signup_key(event_id, volunteer_id),
            ConsistentRead=True,
        )
    except (ClientError, BotoCoreError) as exc:
        logger.error("sign-up get_item failed for %s/%s: %s", event_id, volunteer_id, exc)
        raise UnexpectedStoreError("Database read failed.") from exc
    item = resp.get("Item")
    if item is None:
        return None
    return VolunteerSignUp.from_item(_deserialize(item))


def _query_signups(
    event_id: str,
    status: Optional[str] = None,
) -> List[VolunteerSignUp]:
    """Query every sign-up under the event's partition, in sort-key order.

    Follows ``LastEvaluatedKey`` until the partition is exhausted.
    """
    params: Dict[str, Any] = {
        "TableName": config.VOLUNTEER_SIGNUP_TABLE_NAME,
        "KeyConditionExpression": "PK = :event_id",
        "ExpressionAttributeValues": {":event_id": _serialize(event_id)},
        "ConsistentRead": True,
    }
    if status:
        params["FilterExpression"] = "#status = :status"
        params["ExpressionAttributeNames"] = {"#status": "status"}
        params["ExpressionAttributeValues"][":status"] = _serialize(status)

    signups: List[VolunteerSignUp] = []
    ddb = _get_ddb()
    try:
        while True:
            resp = ddb.query(**params)
            for raw in resp.get("Items", []):
                signups.append(VolunteerSignUp.from_item(_deserialize(raw)))
            last_key = resp.get("LastEvaluatedKey")
            if not last_key:
                return signups
            params["ExclusiveStartKey"] = last_key
    except (ClientError, BotoCoreError) as exc:
        logger.error("sign-up query failed for %s: %s", event_id, exc)
        raise UnexpectedStoreError("Database read failed.") from exc


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


def _put_signup(signup: VolunteerSignUp) -> None:
    """Insert a new sign-up; the key condition rejects a second one."""
    try:
        _get_ddb().put_item(
            TableName=config.VOLUNTEER_SIGNUP_TABLE_NAME,
            Item=_serialize_item(signup.to_item()),
            ConditionExpression="attribute_not_exists(PK) AND attribute_not_exists(SK)",
        )
    except ClientError as exc:
        if _is_conditional_check_failed(exc):
            raise ConflictError("You have already signed up for this event.") from exc
        logger.error("sign-up put_item failed for %s/%s: %s", signup.event_id, signup.volunteer_id, exc)
        raise UnexpectedStoreError("Database write failed.") from exc
    except BotoCoreError as exc:
        logger.error("sign-up put_item failed for %s/%s: %s", signup.event_id, signup.volunteer_id, exc)
        raise UnexpectedStoreError("Database write failed.") from exc


def _build_signup_review_update(
    event_id: str,
    volunteer_id: str,
    plan: ReviewPlan,
    reviewer_id: str,
    reviewed_at: int,
) -> Dict[str, Any]:
    """Update the sign-up only if status and held role are still as read.

    The counter deltas are derived from both, so a concurrent role move that
    leaves the status at ``approved`` must still fail this condition.
    """
    values: Dict[str, Any] = {
        ":next_status": _serialize(plan.to_status),
        ":role": _serialize(plan.target_role),
        ":reviewer": _serialize(reviewer_id),
        ":reviewed_at": _serialize(reviewed_at),
        ":expected_status": _serialize(plan.from_status),
    }
    if plan.held_role:
        role_condition = "assignedRole = :expected_role"
        values[":expected_role"] = _serialize(plan.held_role)
    else:
        role_condition = "(attribute_not_exists(assignedRole) OR attribute_type(assignedRole, :null_type))"
        values[":null_type"] = _serialize("NULL")
    return {
        "Update": {
            "TableName": config.VOLUNTEER_SIGNUP_TABLE_NAME,
            "Key": _signup_key(event_id, volunteer_id),
            "UpdateExpression": (
                "SET #status = :next_status, assignedRole = :role, "
                "reviewedBy = :reviewer, reviewedAt = :reviewed_at"
            ),
            "ConditionExpression": (
                f"attribute_exists(PK) AND #status = :expected_status AND {role_condition}"
            ),
            "ExpressionAttributeNames": {"#status": "status"},
            "ExpressionAttributeValues": values,
        }
    }


def _build_event_counter_update(event_id: str, plan: ReviewPlan) -> Dict[str, Any]:
    """ADD the plan's deltas to the event counters, bounded by capacity.

    An increment only applies while ``count < capacity`` (a missing counter
    counts as zero); a decrement only while ``count > 0``.
    """
    names: Dict[str, str] = {}
    values: Dict[str, Any] = {":zero": _serialize(0)}
    adds: List[str] = []
    conditions: List[str] = ["attribute_exists(PK)"]

    for role in plan.increments:
        count_ref, cap_ref = f"#inc_{role}_count", f"#inc_{role}_cap"
        names[count_ref] = _COUNTER_FIELDS[role]
        names[cap_ref] = _CAPACITY_FIELDS[role]
        values[":one"] = _serialize(1)
        adds.append(f"{count_ref} :one")
        conditions.append(
            f"({count_ref} < {cap_ref} OR (attribute_not_exists({count_ref}) AND {cap_ref} > :zero))"
        )

    for role in plan.decrements:
        count_ref = f"#dec_{role}_count"
        names[count_ref] = _COUNTER_FIELDS[role]
        values[":minus_one"] = _serialize(-1)
        adds.append(f"{count_ref} :minus_one")
        conditions.append(f"{count_ref} > :zero")

    return {
        "Update": {
            "TableName": config.EVENTS_TABLE_NAME,
            "Key": _event_key(event_id),
            "UpdateExpression": "ADD " + ", ".join(adds),
            "ConditionExpression": " AND ".join(conditions),
            "ExpressionAttributeNames": names,
            "ExpressionAttributeValues": values,
        }
    }


def _build_review_transaction(
    event_id: str,
    volunteer_id: str,
    plan: ReviewPlan,
    reviewer_id: str,
    reviewed_at: int,
) -> List[Dict[str, Any]]:
    items = [_build_signup_review_update(event_id, volunteer_id, plan, reviewer_id, reviewed_at)]
    if plan.moves_counters:
        items.append(_build_event_counter_update(event_id, plan))
    return items


def _apply_review(
    event_id: str,
    volunteer_id: str,
    plan: ReviewPlan,
    reviewer_id: str,
    reviewed_at: int,
) -> None:
    """Write a review decision atomically, or raise without any effect."""
    items = _build_review_transaction(event_id, volunteer_id, plan, reviewer_id, reviewed_at)
    try:
        _get_ddb().transact_write_items(TransactItems=items)
    except ClientError as exc:
        if _error_code(exc) != "TransactionCanceledException":
            logger.error("review transaction failed for %s/%s: %s", event_id, volunteer_id, exc)
            raise UnexpectedStoreError("Database write failed.") from exc
        codes = _cancellation_codes(exc)
        logger.warning(
            "review transaction cancelled for %s/%s: reasons=%s",
            event_id,
            volunteer_id,
            codes,
        )
        if codes and codes[0] == "ConditionalCheckFailed":
            raise ConflictError(
                "Sign-up was modified concurrently. Please refresh and try again."
            ) from exc
        if len(codes) > 1 and codes[1] == "ConditionalCheckFailed":
            if plan.increments:
                raise CapacityExceededError(
                    "Cannot approve volunteer: No available spots for "
                    f"{plan.target_role} volunteers."
                ) from exc
            raise ConflictError(
                "Event counters changed concurrently. Please refresh and try again."
            ) from exc
        if "TransactionConflict" in codes:
            raise ConflictError(
                "Another review for this event is in progress. Please try again."
            ) from exc
        raise UnexpectedStoreError("Database write failed.") from exc
    except BotoCoreError as exc:
        logger.error("review transaction failed for %s/%s: %s", event_id, volunteer_id, exc)
        raise UnexpectedStoreError("Database write failed.") from exc
