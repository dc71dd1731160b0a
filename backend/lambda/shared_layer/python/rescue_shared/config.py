"""rescue_shared.config — Environment variables, constants and logging.

Every value is read once at import time; tests override the module
attributes directly.
"""

from __future__ import annotations

import logging
import os

__all__ = [
    "COGNITO_CLIENT_ID",
    "COGNITO_USER_POOL_ID",
    "CORS_ORIGIN",
    "DYNAMODB_REGION",
    "EVENTS_TABLE_NAME",
    "EVENT_SORT_KEY",
    "ID_TOKEN_COOKIE",
    "MANAGER_GROUP",
    "VOLUNTEER_SIGNUP_TABLE_NAME",
    "logger",
]

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

EVENTS_TABLE_NAME = os.environ.get("EVENTS_TABLE_NAME", "events")
VOLUNTEER_SIGNUP_TABLE_NAME = os.environ.get("VOLUNTEER_SIGNUP_TABLE_NAME", "volunteer-signups")
DYNAMODB_REGION = os.environ.get("DYNAMODB_REGION", "us-west-2")

# Events are keyed PK=<event id>, SK=<EVENT_SORT_KEY>.
EVENT_SORT_KEY = os.environ.get("EVENT_SORT_KEY", "EVENT")

COGNITO_USER_POOL_ID = os.environ.get("COGNITO_USER_POOL_ID", "")
COGNITO_CLIENT_ID = os.environ.get("COGNITO_CLIENT_ID", "")
ID_TOKEN_COOKIE = os.environ.get("ID_TOKEN_COOKIE", "rescue_id_token")

MANAGER_GROUP = os.environ.get("MANAGER_GROUP", "Managers")

CORS_ORIGIN = os.environ.get("CORS_ORIGIN", "*")

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logger = logging.getLogger()
logger.setLevel(logging.INFO)
