"""rescue_shared.auth — Caller identity for the volunteer Lambdas.

API Gateway normally runs the Cognito authorizer in front of every function
and hands the verified claims through ``requestContext.authorizer``
(``claims`` for REST APIs, ``jwt.claims`` for HTTP APIs). Those claims are
trusted as-is. When no authorizer is attached, the Cognito ID token is read
from the ``Authorization: Bearer`` header or the ``rescue_id_token`` cookie
and verified against the user pool JWKS.

Requires environment variables (token fallback only):
    COGNITO_USER_POOL_ID   — e.g. us-west-2_AbCdEfGhI
    COGNITO_CLIENT_ID      — app client id, checked as the token audience
"""

from __future__ import annotations

import json
import time
import urllib.request
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Iterable, List, Optional
from urllib.parse import unquote

import jwt
from jwt.algorithms import RSAAlgorithm

from rescue_shared import config
from rescue_shared.config import logger
from rescue_shared.errors import AuthenticationError, AuthorizationError, IdentityProviderError

__all__ = [
    "Identity",
    "_claims_from_authorizer",
    "_extract_token",
    "_get_jwks",
    "_jwks_url",
    "_load_signing_keys",
    "_parse_groups",
    "_require_group",
    "_resolve_identity",
    "_verify_token",
]

# ---------------------------------------------------------------------------
# JWKS cache
# ---------------------------------------------------------------------------

_jwks_cache: Dict[str, Any] = {}
_jwks_fetched_at: float = 0.0
_JWKS_TTL: float = 3600.0


@dataclass(frozen=True)
class Identity:
    """Authenticated caller as seen by the handlers."""

    caller_id: str
    groups: FrozenSet[str]

    def in_group(self, group: str) -> bool:
        return group in self.groups


def _parse_groups(raw: Any) -> FrozenSet[str]:
    """Normalize ``cognito:groups`` from any of its wire shapes.

    REST authorizers send a comma-separated string, HTTP API JWT authorizers
    send ``"[Managers Volunteers]"``, and decoded tokens carry a list.
    """
    if raw is None:
        return frozenset()
    if isinstance(raw, (list, tuple, set, frozenset)):
        parts: Iterable[str] = (str(g) for g in raw)
    else:
        text = str(raw).strip()
        if text.startswith("[") and text.endswith("]"):
            text = text[1:-1]
        parts = text.replace(",", " ").split()
    return frozenset(p.strip() for p in parts if p and p.strip())


def _claims_from_authorizer(event: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    authorizer = (event.get("requestContext") or {}).get("authorizer") or {}
    claims = authorizer.get("claims")
    if isinstance(claims, dict) and claims:
        return claims
    jwt_ctx = authorizer.get("jwt") or {}
    claims = jwt_ctx.get("claims")
    if isinstance(claims, dict) and claims:
        return claims
    return None


def _extract_token(event: Dict[str, Any]) -> Optional[str]:
    """Extract the ID token from the Authorization header or cookies."""
    headers = event.get("headers") or {}
    auth_header = headers.get("authorization") or headers.get("Authorization") or ""
    if auth_header.lower().startswith("bearer "):
        token = auth_header[len("bearer "):].strip()
        if token:
            return token

    cookie_header = headers.get("cookie") or headers.get("Cookie") or ""
    cookie_parts: List[str] = []
    if cookie_header:
        cookie_parts.extend(part.strip() for part in cookie_header.split(";") if part.strip())

    event_cookies = event.get("cookies") or []
    if isinstance(event_cookies, list):
        cookie_parts.extend(part.strip() for part in event_cookies if isinstance(part, str) and part.strip())
    elif isinstance(event_cookies, str) and event_cookies.strip():
        cookie_parts.append(event_cookies.strip())

    prefix = f"{config.ID_TOKEN_COOKIE}="
    for part in cookie_parts:
        if part.startswith(prefix):
            return unquote(part[len(prefix):])
    return None


def _jwks_url(user_pool_id: str) -> str:
    region = user_pool_id.split("_", 1)[0]
    return f"https://cognito-idp.{region}.amazonaws.com/{user_pool_id}/.well-known/jwks.json"


def _load_signing_keys(url: str) -> Dict[str, Any]:
    """Download the user pool JWKS and build RSA public keys by ``kid``."""
    try:
        with urllib.request.urlopen(url, timeout=5) as resp:
            document = json.loads(resp.read())
    except (OSError, ValueError) as exc:
        logger.error("JWKS fetch from %s failed: %s", url, exc)
        raise IdentityProviderError("Could not load the user pool signing keys.") from exc

    keys: Dict[str, Any] = {}
    for jwk in document.get("keys", []):
        if jwk.get("kty") != "RSA" or not jwk.get("kid"):
            continue
        keys[jwk["kid"]] = RSAAlgorithm.from_jwk(json.dumps(jwk))
    return keys


def _get_jwks() -> Dict[str, Any]:
    """Signing keys by ``kid``, refreshed once the cache is an hour old.

    A failed refresh keeps serving the previous keys; with nothing cached
    it raises IdentityProviderError.
    """
    global _jwks_cache, _jwks_fetched_at
    now = time.time()
    if _jwks_cache and (now - _jwks_fetched_at) < _JWKS_TTL:
        return _jwks_cache

    if not config.COGNITO_USER_POOL_ID:
        logger.error("COGNITO_USER_POOL_ID is not set; cannot verify tokens")
        raise IdentityProviderError("Token verification is not configured.")

    try:
        keys = _load_signing_keys(_jwks_url(config.COGNITO_USER_POOL_ID))
    except IdentityProviderError:
        if not _jwks_cache:
            raise
        logger.warning("JWKS refresh failed; keeping %d cached keys", len(_jwks_cache))
        return _jwks_cache

    _jwks_cache = keys
    _jwks_fetched_at = now
    return _jwks_cache


def _verify_token(token: str) -> Dict[str, Any]:
    """Verify a Cognito ID token (RS256) and return its claims.

    Raises ValueError for any token the caller has to sign in again for.
    """
    try:
        header = jwt.get_unverified_header(token)
    except jwt.PyJWTError as exc:
        raise ValueError(f"Invalid token header: {exc}") from exc

    if header.get("alg") != "RS256":
        raise ValueError(f"Unexpected token algorithm: {header.get('alg')}")

    key = _get_jwks().get(header.get("kid"))
    if key is None:
        raise ValueError("Token key ID not found in JWKS")

    try:
        claims = jwt.decode(token, key, algorithms=["RS256"], audience=config.COGNITO_CLIENT_ID)
    except jwt.ExpiredSignatureError as exc:
        raise ValueError("Token has expired. Please sign in again.") from exc
    except jwt.PyJWTError as exc:
        raise ValueError(f"Token validation failed: {exc}") from exc

    # Only ID tokens identify the caller.
    if claims.get("token_use", "id") != "id":
        raise ValueError("Token is not an ID token.")
    return claims


def _resolve_identity(event: Dict[str, Any]) -> Identity:
    """Resolve the caller id and group memberships of a request.

    Raises AuthenticationError when no caller can be established, and
    IdentityProviderError when the signing keys are unavailable.
    """
    claims = _claims_from_authorizer(event)
    if claims is None:
        token = _extract_token(event)
        if not token:
            raise AuthenticationError("Unauthorized: Invalid authentication token.")
        try:
            claims = _verify_token(token)
        except ValueError as exc:
            logger.warning("token verification failed: %s", exc)
            raise AuthenticationError(str(exc)) from exc

    caller_id = str(claims.get("sub") or "").strip()
    if not caller_id:
        logger.warning("authenticated request is missing the sub claim")
        raise AuthenticationError("Unauthorized: Invalid authentication token.")
    return Identity(caller_id=caller_id, groups=_parse_groups(claims.get("cognito:groups")))


def _require_group(identity: Identity, group: str, action: str) -> None:
    if not identity.in_group(group):
        logger.warning("caller %s lacks group %s for %s", identity.caller_id, group, action)
        raise AuthorizationError(f"Unauthorized: Only {group} can {action}.")
