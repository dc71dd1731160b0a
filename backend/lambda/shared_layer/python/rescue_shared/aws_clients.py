"""rescue_shared.aws_clients — Lazy-singleton DynamoDB client.

The boto3 client is built on first call and cached for the life of the
Lambda container, so cold starts only pay for it when a handler reaches
the store.
"""

from __future__ import annotations

from typing import Optional

import boto3
from botocore.config import Config

from rescue_shared.config import DYNAMODB_REGION

__all__ = ["_get_ddb"]

_ddb = None


def _get_ddb(region: Optional[str] = None):
    """Get (or create) the DynamoDB client singleton."""
    global _ddb
    if _ddb is None:
        _ddb = boto3.client(
            "dynamodb",
            region_name=region or DYNAMODB_REGION,
            config=Config(retries={"max_attempts": 5, "mode": "standard"}),
        )
    return _ddb
