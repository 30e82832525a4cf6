"""
application.services.authentication - Bearer token verification.

Users sign in with an external identity provider; this service only
verifies the HS256 JWT it issues and turns the claims into a
SessionContext. issue_token() mints compatible tokens for local tooling
(CLI, tests).

Claims:
    sub   - user id
    role  - "client" or "dietitian"
    name  - optional display name
    exp   - expiry (checked when present)
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from jose import jwt, JWTError

from application.context import SessionContext
from domain.exceptions import AuthenticationError
from domain.models import SenderRole

logger = logging.getLogger(__name__)


class AuthenticationService:
    """Verifies JWTs and maps them onto chat sessions."""

    def __init__(
        self,
        jwt_secret: str,
        jwt_algorithm: str = "HS256",
        jwt_expiry_hours: int = 24,
    ):
        self._jwt_secret = jwt_secret
        self._jwt_algorithm = jwt_algorithm
        self._jwt_expiry_hours = jwt_expiry_hours

    def verify_token(self, token: str) -> dict[str, Any]:
        """Decode and validate a JWT. Returns the payload dict."""
        try:
            payload = jwt.decode(
                token, self._jwt_secret, algorithms=[self._jwt_algorithm],
            )
        except JWTError as exc:
            raise AuthenticationError(f"Token verification failed: {exc}")
        if not payload.get("sub"):
            raise AuthenticationError("Invalid token payload.")
        return payload

    def session_for(self, token: str) -> SessionContext:
        """Verify *token* and build the viewer's SessionContext."""
        payload = self.verify_token(token)
        try:
            role = SenderRole(payload.get("role", ""))
        except ValueError:
            raise AuthenticationError(
                f"Token role must be 'client' or 'dietitian', got {payload.get('role')!r}."
            ) from None
        return SessionContext(
            user_id=str(payload["sub"]),
            role=role,
            display_name=payload.get("name") or "",
        )

    def issue_token(
        self, user_id: str, role: SenderRole, display_name: Optional[str] = None,
    ) -> str:
        expire = datetime.now(timezone.utc) + timedelta(hours=self._jwt_expiry_hours)
        payload: dict[str, Any] = {
            "sub": user_id,
            "role": SenderRole(role).value,
            "exp": expire,
        }
        if display_name:
            payload["name"] = display_name
        logger.debug("Issued token for %s %s", payload["role"], user_id)
        return jwt.encode(payload, self._jwt_secret, algorithm=self._jwt_algorithm)
