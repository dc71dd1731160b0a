"""test_confirm_volunteer.py — Tests for the manager confirmation Lambda.

Covers authorization, the review state machine end to end, counter
reversal, capacity enforcement at write time (including two managers
racing for the last spot) and optimistic-concurrency conflicts. The store
runs against an in-memory DynamoDB that evaluates the real condition
expressions.

Run: python3 -m pytest test_confirm_volunteer.py -v
"""

from __future__ import annotations

import importlib.util
import json
import os
import sys
import threading
import unittest
from unittest.mock import MagicMock, patch

_HERE = os.path.dirname(os.path.abspath(__file__))
_LAYER = os.path.join(os.path.dirname(_HERE), "shared_layer")
sys.path.insert(0, os.path.join(_LAYER, "python"))
sys.path.insert(0, _LAYER)

from botocore.exceptions import ClientError  # noqa: E402
from fake_dynamodb import FakeDynamoDB  # noqa: E402
from rescue_shared import config, store  # noqa: E402

_spec = importlib.util.spec_from_file_location(
    "confirm_volunteer",
    os.path.join(_HERE, "lambda_function.py"),
)
confirm_volunteer = importlib.util.module_from_spec(_spec)
_spec.loader.exec_module(confirm_volunteer)

EVENT_ID = "0b7e8a52-61f4-4d0e-9a3c-2f5d6e7a8b9c"
MANAGER_ID = "mgr-42"


def _make_event(volunteer_id="vol-1", role="exec", action="approve", groups=("Managers",), sub=MANAGER_ID, body=None):
    """Build a mock API Gateway HTTP API (v2) event with JWT authorizer claims."""
    claims = {"sub": sub, "cognito:groups": "[" + " ".join(groups) + "]"} if sub else {}
    payload = body if body is not None else {
        "eventId": EVENT_ID,
        "volunteerId": volunteer_id,
        "assignedRole": role,
        "action": action,
    }
    return {
        "requestContext": {
            "http": {"method": "POST", "path": "/api/v1/signups/confirm"},
            "authorizer": {"jwt": {"claims": claims}} if claims else {},
        },
        "headers": {"host": "example.com"},
        "rawPath": "/api/v1/signups/confirm",
        "body": json.dumps(payload),
    }


class _ConfirmTestCase(unittest.TestCase):
    def setUp(self):
        self.ddb = FakeDynamoDB()
        patcher = patch.object(store, "_get_ddb", return_value=self.ddb)
        patcher.start()
        self.addCleanup(patcher.stop)

    def seed_event(self, **overrides):
        item = {
            "PK": EVENT_ID,
            "SK": config.EVENT_SORT_KEY,
            "managerId": MANAGER_ID,
            "eventDate": "2099-06-01T10:00:00Z",
            "venueId": "venue-1",
            "availableSpotsExec": 1,
            "availableSpotsStandard": 3,
            "signUpOpen": True,
            "approvedExecCount": 0,
            "approvedStandardCount": 0,
        }
        item.update(overrides)
        self.ddb.seed(config.EVENTS_TABLE_NAME, item)

    def seed_signup(self, volunteer_id="vol-1", status="pending", role=None, **extra):
        item = {
            "PK": EVENT_ID,
            "SK": volunteer_id,
            "signupEpoch": 1700000000,
            "status": status,
            "assignedRole": role,
        }
        item.update(extra)
        self.ddb.seed(config.VOLUNTEER_SIGNUP_TABLE_NAME, item)

    def counters(self):
        event = self.ddb.item(config.EVENTS_TABLE_NAME, EVENT_ID, config.EVENT_SORT_KEY)
        return int(event.get("approvedExecCount", 0)), int(event.get("approvedStandardCount", 0))

    def signup(self, volunteer_id="vol-1"):
        return self.ddb.item(config.VOLUNTEER_SIGNUP_TABLE_NAME, EVENT_ID, volunteer_id)

    def call(self, **kwargs):
        resp = confirm_volunteer.lambda_handler(_make_event(**kwargs), None)
        return resp, json.loads(resp["body"]) if resp.get("body") else {}


class AuthTests(_ConfirmTestCase):
    def test_missing_identity_returns_401(self):
        resp, _ = self.call(sub=None)
        self.assertEqual(resp["statusCode"], 401)
        self.assertEqual(self.ddb.calls, [])

    def test_non_manager_returns_403_before_store_access(self):
        resp, body = self.call(groups=("Volunteers",))
        self.assertEqual(resp["statusCode"], 403)
        self.assertEqual(body["code"], "PERMISSION_DENIED")
        self.assertEqual(self.ddb.calls, [])


class ValidationTests(_ConfirmTestCase):
    def test_missing_fields_returns_400(self):
        resp, body = self.call(body={"eventId": EVENT_ID, "action": "approve"})
        self.assertEqual(resp["statusCode"], 400)
        self.assertIn("required", body["error"])

    def test_invalid_action_returns_400(self):
        resp, body = self.call(action="maybe")
        self.assertEqual(resp["statusCode"], 400)
        self.assertIn("approve", body["error"])

    def test_invalid_role_returns_400(self):
        resp, _ = self.call(role="vip")
        self.assertEqual(resp["statusCode"], 400)

    def test_missing_event_returns_404(self):
        self.seed_signup()
        resp, _ = self.call()
        self.assertEqual(resp["statusCode"], 404)

    def test_missing_signup_returns_404(self):
        self.seed_event()
        resp, body = self.call()
        self.assertEqual(resp["statusCode"], 404)
        self.assertIn("sign-up not found", body["error"])


class ApproveTests(_ConfirmTestCase):
    def test_approve_pending_increments_counter(self):
        self.seed_event()
        self.seed_signup()
        with patch.object(confirm_volunteer, "_unix_now", return_value=1700000500):
            resp, body = self.call()
        self.assertEqual(resp["statusCode"], 200)
        self.assertEqual(body["status"], "approved")
        self.assertEqual(body["counterDeltas"], {"exec": 1})
        self.assertEqual(self.counters(), (1, 0))
        item = self.signup()
        self.assertEqual(item["status"], "approved")
        self.assertEqual(item["assignedRole"], "exec")
        self.assertEqual(item["reviewedBy"], MANAGER_ID)
        self.assertEqual(int(item["reviewedAt"]), 1700000500)

    def test_approve_without_counter_attribute_starts_from_zero(self):
        self.seed_event()
        event = self.ddb.tables[config.EVENTS_TABLE_NAME][(EVENT_ID, config.EVENT_SORT_KEY)]
        del event["approvedStandardCount"]
        self.seed_signup()
        resp, _ = self.call(role="standard")
        self.assertEqual(resp["statusCode"], 200)
        self.assertEqual(self.counters(), (0, 1))

    def test_approve_full_role_returns_400_without_writes(self):
        self.seed_event(availableSpotsStandard=2, approvedStandardCount=2)
        self.seed_signup()
        resp, body = self.call(role="standard")
        self.assertEqual(resp["statusCode"], 400)
        self.assertEqual(body["code"], "CAPACITY_EXCEEDED")
        self.assertEqual(self.counters(), (0, 2))
        self.assertEqual(self.signup()["status"], "pending")
        self.assertFalse(any(name == "transact_write_items" for name, _ in self.ddb.calls))

    def test_reapprove_same_role_is_counter_noop(self):
        self.seed_event(approvedExecCount=1)
        self.seed_signup(status="approved", role="exec", reviewedBy="mgr-1", reviewedAt=1)
        resp, body = self.call()
        self.assertEqual(resp["statusCode"], 200)
        self.assertEqual(body["counterDeltas"], {})
        self.assertEqual(self.counters(), (1, 0))
        txn = [p for name, p in self.ddb.calls if name == "transact_write_items"]
        self.assertEqual(len(txn[0]["TransactItems"]), 1)

    def test_approve_twice_in_succession_moves_counter_once(self):
        self.seed_event(availableSpotsExec=5)
        self.seed_signup()
        first, _ = self.call()
        second, body = self.call()
        self.assertEqual(first["statusCode"], 200)
        self.assertEqual(second["statusCode"], 200)
        self.assertEqual(body["previousStatus"], "approved")
        self.assertEqual(self.counters(), (1, 0))

    def test_approve_previously_rejected(self):
        self.seed_event()
        self.seed_signup(status="rejected", role="exec", reviewedBy="mgr-1", reviewedAt=1)
        resp, _ = self.call()
        self.assertEqual(resp["statusCode"], 200)
        self.assertEqual(self.counters(), (1, 0))


class RoleChangeTests(_ConfirmTestCase):
    def test_reapprove_under_new_role_moves_the_spot(self):
        self.seed_event(approvedExecCount=1)
        self.seed_signup(status="approved", role="exec", reviewedBy="mgr-1", reviewedAt=1)
        resp, body = self.call(role="standard")
        self.assertEqual(resp["statusCode"], 200)
        self.assertEqual(body["counterDeltas"], {"exec": -1, "standard": 1})
        self.assertEqual(self.counters(), (0, 1))
        self.assertEqual(self.signup()["assignedRole"], "standard")

    def test_role_move_into_full_role_is_rejected(self):
        self.seed_event(approvedExecCount=1, availableSpotsStandard=1, approvedStandardCount=1)
        self.seed_signup(status="approved", role="exec", reviewedBy="mgr-1", reviewedAt=1)
        resp, _ = self.call(role="standard")
        self.assertEqual(resp["statusCode"], 400)
        self.assertEqual(self.counters(), (1, 1))
        self.assertEqual(self.signup()["assignedRole"], "exec")


class RejectTests(_ConfirmTestCase):
    def test_reject_pending_leaves_counter(self):
        self.seed_event()
        self.seed_signup()
        resp, body = self.call(action="reject")
        self.assertEqual(resp["statusCode"], 200)
        self.assertEqual(body["status"], "rejected")
        self.assertEqual(self.counters(), (0, 0))

    def test_reject_already_rejected_updates_review_time_only(self):
        self.seed_event(approvedExecCount=1)
        self.seed_signup(status="rejected", role="exec", reviewedBy="mgr-1", reviewedAt=100)
        with patch.object(confirm_volunteer, "_unix_now", return_value=1700000900):
            resp, body = self.call(action="reject")
        self.assertEqual(resp["statusCode"], 200)
        self.assertEqual(body["counterDeltas"], {})
        self.assertEqual(self.counters(), (1, 0))
        item = self.signup()
        self.assertEqual(item["status"], "rejected")
        self.assertEqual(int(item["reviewedAt"]), 1700000900)
        self.assertEqual(item["reviewedBy"], MANAGER_ID)

    def test_approve_then_reject_restores_counter(self):
        self.seed_event(availableSpotsStandard=3, approvedStandardCount=1)
        self.seed_signup()
        self.call(role="standard")
        self.assertEqual(self.counters(), (0, 2))
        resp, body = self.call(role="standard", action="reject")
        self.assertEqual(resp["statusCode"], 200)
        self.assertEqual(body["counterDeltas"], {"standard": -1})
        self.assertEqual(self.counters(), (0, 1))

    def test_reject_releases_the_role_actually_held(self):
        self.seed_event(approvedExecCount=1, approvedStandardCount=2)
        self.seed_signup(status="approved", role="exec", reviewedBy="mgr-1", reviewedAt=1)
        resp, _ = self.call(role="standard", action="reject")
        self.assertEqual(resp["statusCode"], 200)
        self.assertEqual(self.counters(), (0, 2))

    def test_release_never_drives_counter_negative(self):
        self.seed_event(approvedExecCount=0)
        self.seed_signup(status="approved", role="exec", reviewedBy="mgr-1", reviewedAt=1)
        resp, body = self.call(action="reject")
        self.assertEqual(resp["statusCode"], 409)
        self.assertEqual(body["code"], "CONFLICT")
        self.assertEqual(self.counters(), (0, 0))
        self.assertEqual(self.signup()["status"], "approved")


class ConcurrencyTests(_ConfirmTestCase):
    def _race(self, calls):
        """Run handler calls so every read happens before any transaction."""
        barrier = threading.Barrier(len(calls))
        original = self.ddb.transact_write_items

        def _after_all_reads(**params):
            barrier.wait(timeout=5)
            return original(**params)

        self.ddb.transact_write_items = _after_all_reads
        results = [None] * len(calls)

        def _run(index, kwargs):
            results[index] = self.call(**kwargs)

        threads = [threading.Thread(target=_run, args=(i, kw)) for i, kw in enumerate(calls)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)
        return results

    def test_two_approvals_for_last_exec_spot(self):
        self.seed_event(availableSpotsExec=1, approvedExecCount=0)
        self.seed_signup("vol-a")
        self.seed_signup("vol-b")
        results = self._race([{"volunteer_id": "vol-a"}, {"volunteer_id": "vol-b"}])

        codes = sorted(resp["statusCode"] for resp, _ in results)
        self.assertEqual(codes, [200, 400])
        loser = next(body for resp, body in results if resp["statusCode"] == 400)
        self.assertEqual(loser["code"], "CAPACITY_EXCEEDED")
        self.assertEqual(self.counters(), (1, 0))
        statuses = sorted(self.signup(v)["status"] for v in ("vol-a", "vol-b"))
        self.assertEqual(statuses, ["approved", "pending"])

    def test_many_concurrent_approvals_never_exceed_capacity(self):
        self.seed_event(availableSpotsStandard=3)
        volunteers = [f"vol-{i}" for i in range(8)]
        for v in volunteers:
            self.seed_signup(v)
        results = self._race([{"volunteer_id": v, "role": "standard"} for v in volunteers])

        self.assertEqual(sum(1 for resp, _ in results if resp["statusCode"] == 200), 3)
        self.assertEqual(self.counters(), (0, 3))

    def test_two_reviewers_same_signup_conflict(self):
        self.seed_event(availableSpotsExec=5)
        self.seed_signup("vol-a")
        results = self._race([
            {"volunteer_id": "vol-a", "action": "approve"},
            {"volunteer_id": "vol-a", "action": "reject"},
        ])
        codes = sorted(resp["statusCode"] for resp, _ in results)
        self.assertEqual(codes, [200, 409])
        final = self.signup("vol-a")["status"]
        self.assertEqual(self.counters(), (1 if final == "approved" else 0, 0))

    def test_concurrent_role_moves_move_the_spot_once(self):
        self.seed_event(availableSpotsExec=2, approvedExecCount=2, availableSpotsStandard=3)
        self.seed_signup("vol-a", status="approved", role="exec", reviewedBy="mgr-1", reviewedAt=1)
        self.seed_signup("vol-x", status="approved", role="exec", reviewedBy="mgr-1", reviewedAt=1)
        results = self._race([
            {"volunteer_id": "vol-a", "role": "standard"},
            {"volunteer_id": "vol-a", "role": "standard"},
        ])

        codes = sorted(resp["statusCode"] for resp, _ in results)
        self.assertEqual(codes, [200, 409])
        self.assertEqual(self.signup("vol-a")["assignedRole"], "standard")
        self.assertEqual(self.counters(), (1, 1))


class TransactionErrorTests(unittest.TestCase):
    def _mock_store(self, signup_status="pending"):
        mock_ddb = MagicMock()
        event_item = {
            "PK": {"S": EVENT_ID}, "SK": {"S": "EVENT"},
            "availableSpotsExec": {"N": "2"}, "availableSpotsStandard": {"N": "2"},
            "approvedExecCount": {"N": "0"}, "approvedStandardCount": {"N": "0"},
            "signUpOpen": {"BOOL": True}, "eventDate": {"S": "2099-01-01T00:00:00Z"},
        }
        signup_item = {
            "PK": {"S": EVENT_ID}, "SK": {"S": "vol-1"},
            "signupEpoch": {"N": "1"}, "status": {"S": signup_status},
            "assignedRole": {"NULL": True},
        }
        mock_ddb.get_item.side_effect = [{"Item": event_item}, {"Item": signup_item}]
        return mock_ddb

    def test_signup_condition_failure_is_409(self):
        mock_ddb = self._mock_store()
        mock_ddb.transact_write_items.side_effect = ClientError(
            {
                "Error": {"Code": "TransactionCanceledException", "Message": "cancelled"},
                "CancellationReasons": [{"Code": "ConditionalCheckFailed"}, {"Code": "None"}],
            },
            "TransactWriteItems",
        )
        with patch.object(store, "_get_ddb", return_value=mock_ddb):
            resp = confirm_volunteer.lambda_handler(_make_event(), None)
        self.assertEqual(resp["statusCode"], 409)
        self.assertIn("modified concurrently", json.loads(resp["body"])["error"])

    def test_unexpected_client_error_is_500(self):
        mock_ddb = self._mock_store()
        mock_ddb.transact_write_items.side_effect = ClientError(
            {"Error": {"Code": "ProvisionedThroughputExceededException", "Message": "slow down"}},
            "TransactWriteItems",
        )
        with patch.object(store, "_get_ddb", return_value=mock_ddb):
            resp = confirm_volunteer.lambda_handler(_make_event(), None)
        self.assertEqual(resp["statusCode"], 500)

    def test_unknown_stored_status_is_409(self):
        mock_ddb = self._mock_store(signup_status="withdrawn")
        with patch.object(store, "_get_ddb", return_value=mock_ddb):
            resp = confirm_volunteer.lambda_handler(_make_event(), None)
        self.assertEqual(resp["statusCode"], 409)
        mock_ddb.transact_write_items.assert_not_called()


if __name__ == "__main__":
    unittest.main()
