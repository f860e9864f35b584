"""Decide who may trigger an alert sync run."""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

import httpx
from loguru import logger

from app.core.config import Settings
from app.errors import Unauthorized


class CallerClass(str, Enum):
    TRUSTED_INTERNAL = "trusted_internal"
    AUTHENTICATED_USER = "authenticated_user"
    UNAUTHENTICATED = "unauthenticated"


def extract_bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token or None


def _b64url_decode(segment: str) -> bytes:
    padding = "=" * (-len(segment) % 4)
    return base64.urlsafe_b64decode(segment + padding)


def decode_hs256_token(token: str, secret: str) -> dict[str, Any] | None:
    """Return the claims of an HS256 token whose signature matches ``secret``."""

    parts = token.split(".")
    if len(parts) != 3:
        return None
    header_segment, payload_segment, signature_segment = parts
    try:
        header = json.loads(_b64url_decode(header_segment))
        claims = json.loads(_b64url_decode(payload_segment))
        signature = _b64url_decode(signature_segment)
    except (ValueError, TypeError):
        return None
    if not isinstance(header, dict) or header.get("alg") != "HS256":
        return None
    if not isinstance(claims, dict):
        return None

    signing_input = f"{header_segment}.{payload_segment}".encode("ascii")
    expected = hmac.new(secret.encode("utf-8"), signing_input, hashlib.sha256).digest()
    if not hmac.compare_digest(expected, signature):
        return None
    return claims


class InvocationGate:
    """Single decision point classifying callers of the sync trigger.

    Trusted internal callers present either the configured service
    credential or a signed token from the configured issuer. Anyone else must
    hold a user token the auth provider accepts.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        http_client_factory: Callable[[], httpx.Client] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._settings = settings
        self._http_client_factory = http_client_factory or (
            lambda: httpx.Client(timeout=settings.auth_timeout_seconds)
        )
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def classify(self, authorization: str | None) -> CallerClass:
        token = extract_bearer_token(authorization)
        if token is None:
            return CallerClass.UNAUTHENTICATED
        if self._is_service_credential(token) or self._is_trusted_signed_token(token):
            return CallerClass.TRUSTED_INTERNAL
        if self._is_authenticated_user(token):
            return CallerClass.AUTHENTICATED_USER
        return CallerClass.UNAUTHENTICATED

    def authorize(self, authorization: str | None) -> CallerClass:
        caller = self.classify(authorization)
        logger.info("Invocation gate classified caller as {}", caller.value)
        if caller is CallerClass.UNAUTHENTICATED:
            raise Unauthorized()
        return caller

    def require_internal(self, authorization: str | None) -> CallerClass:
        caller = self.authorize(authorization)
        if caller is not CallerClass.TRUSTED_INTERNAL:
            raise Unauthorized()
        return caller

    # ------------------------------------------------------------------
    # Checks

    def _is_service_credential(self, token: str) -> bool:
        expected = self._settings.service_role_key
        if not expected:
            return False
        return hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8"))

    def _is_trusted_signed_token(self, token: str) -> bool:
        secret = self._settings.internal_jwt_secret
        issuer = self._settings.internal_jwt_issuer
        if not secret or not issuer:
            return False
        claims = decode_hs256_token(token, secret)
        if claims is None:
            return False
        if claims.get("iss") != issuer:
            return False
        if claims.get("role") not in self._settings.internal_trusted_roles:
            return False
        expires_at = claims.get("exp")
        if expires_at is not None:
            try:
                expiry = datetime.fromtimestamp(float(expires_at), tz=timezone.utc)
            except (TypeError, ValueError, OverflowError, OSError):
                return False
            if expiry <= self._clock():
                return False
        return True

    def _is_authenticated_user(self, token: str) -> bool:
        base_url = self._settings.auth_base_url
        if not base_url:
            return False
        headers = {"Authorization": f"Bearer {token}"}
        if self._settings.auth_api_key:
            headers["apikey"] = self._settings.auth_api_key
        url = f"{str(base_url).rstrip('/')}/auth/v1/user"
        try:
            with self._http_client_factory() as client:
                response = client.get(url, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("Auth provider lookup failed: {}", exc)
            return False
        if not response.is_success:
            return False
        try:
            payload = response.json()
        except ValueError:
            return False
        return isinstance(payload, dict) and bool(payload.get("id"))
