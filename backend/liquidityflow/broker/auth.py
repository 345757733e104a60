"""Identity token verification for subscriber connections.

Tokens are issued elsewhere; the broker only verifies them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import jwt

from ..errors import AuthenticationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Identity:
    user_id: str
    username: str | None = None
    claims: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"userId": self.user_id, "username": self.username}


class TokenVerifier(Protocol):
    def verify(self, token: str) -> Identity:
        """Return the identity behind ``token`` or raise AuthenticationError."""
        ...


class JWTTokenVerifier:
    """Verifies HMAC-signed JWTs. The user id is ``userId`` or ``sub``."""

    def __init__(self, secret: str, algorithm: str = "HS256") -> None:
        self._secret = secret
        self._algorithm = algorithm

    def verify(self, token: str) -> Identity:
        if not token:
            raise AuthenticationError("Authentication token required")
        try:
            claims = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except jwt.ExpiredSignatureError:
            raise AuthenticationError("Token expired") from None
        except jwt.InvalidTokenError as e:
            logger.debug("Rejected token: %s", e)
            raise AuthenticationError("Invalid token") from None

        user_id = claims.get("userId") or claims.get("sub")
        if not user_id:
            raise AuthenticationError("Token has no user id")
        return Identity(user_id=str(user_id), username=claims.get("username"), claims=claims)
