"""rescue_shared — Shared utilities for the volunteer sign-up Lambda functions.

Provides:
    - Environment configuration and logging
    - DynamoDB client singleton
    - HTTP response helpers with CORS
    - DynamoDB serialization/deserialization
    - Caller identity resolution (Cognito authorizer claims / ID token)
    - Event and sign-up records, the review state machine, and the record store
"""

__version__ = "1.0.0"
