"""Session token verification.

The identity layer signs session tokens with a shared HS256 secret after
the OAuth flow completes.  This module only verifies those tokens and turns
their claims into a :class:`Principal`; it issues tokens solely for local
development and tests.

Claims used:

- ``sub``: stable user id
- ``email``: user e-mail (operator allow-list match)
- ``name``: display name (optional)
- ``tenant_id``: the user's clinic tenant
- ``role``: optional; ``operator`` grants the operator capability
- ``iss`` / ``iat`` / ``exp``: standard
"""

from __future__ import annotations

import logging
import secrets
import time
from typing import Any

import jwt
from pydantic import BaseModel, Field, SecretStr

from portal_api.config import PlatformEnv, PortalSettings

logger = logging.getLogger(__name__)

_ALGORITHM = "HS256"


class Principal(BaseModel):
    """The authenticated caller of a request."""

    sub: str = Field(..., min_length=1, description="User id.")
    email: str | None = Field(default=None, description="User e-mail.")
    name: str | None = None
    tenant_id: str | None = Field(default=None, description="The caller's clinic tenant.")
    role: str | None = Field(default=None, description="Role claim, e.g. 'operator'.")


class TokenManager:
    """Verify (and, for dev/tests, issue) HS256 session tokens."""

    def __init__(self, secret: SecretStr, *, issuer: str, ttl_seconds: int = 8 * 3600) -> None:
        if not secret.get_secret_value():
            raise ValueError("Session secret must not be empty")
        self._secret = secret
        self._issuer = issuer
        self._ttl_seconds = ttl_seconds

    @classmethod
    def from_settings(cls, settings: PortalSettings) -> TokenManager:
        """Build a manager from settings.

        In dev without a configured secret a random per-process secret is
        generated; tokens then do not survive restarts.
        """
        secret = settings.session_secret
        if not secret.get_secret_value():
            if settings.platform_env != PlatformEnv.DEV:
                raise RuntimeError(
                    f"PORTAL_SESSION_SECRET must be set in {settings.platform_env.value} mode. "
                    "Refusing to start with an insecure default secret."
                )
            secret = SecretStr(f"dev-{secrets.token_hex(32)}")
            logger.warning("PORTAL_SESSION_SECRET not set; generated random per-process dev secret")
        return cls(secret, issuer=settings.session_issuer, ttl_seconds=settings.session_ttl_seconds)

    def issue(
        self,
        *,
        sub: str,
        email: str | None = None,
        tenant_id: str | None = None,
        role: str | None = None,
        name: str | None = None,
    ) -> str:
        now = int(time.time())
        payload: dict[str, Any] = {
            "sub": sub,
            "iss": self._issuer,
            "iat": now,
            "exp": now + self._ttl_seconds,
        }
        for key, value in (("email", email), ("tenant_id", tenant_id), ("role", role), ("name", name)):
            if value is not None:
                payload[key] = value
        return jwt.encode(payload, self._secret.get_secret_value(), algorithm=_ALGORITHM)

    def validate(self, token: str) -> Principal:
        """Verify *token* and return its principal.

        Raises
        ------
        PermissionError
            If the token is expired, malformed, wrongly signed or issued by
            someone else.
        """
        try:
            claims = jwt.decode(
                token,
                self._secret.get_secret_value(),
                algorithms=[_ALGORITHM],
                issuer=self._issuer,
                options={"require": ["sub", "exp", "iat"]},
            )
        except jwt.ExpiredSignatureError as exc:
            raise PermissionError("Token has expired") from exc
        except jwt.InvalidTokenError as exc:
            raise PermissionError(str(exc)) from exc

        return Principal(
            sub=str(claims["sub"]),
            email=claims.get("email"),
            name=claims.get("name"),
            tenant_id=claims.get("tenant_id"),
            role=claims.get("role"),
        )
