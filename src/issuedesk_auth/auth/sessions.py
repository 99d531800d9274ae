"""
Stateless session tokens for the issuance service.

A session token is a Fernet-sealed ``{user_id, access_token}`` record. The
Fernet key is derived from SESSION_SECRET, and the token's embedded timestamp
bounds its age, so the service keeps no session table.
"""

from __future__ import annotations

import base64
import hashlib
import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from cryptography.fernet import Fernet, InvalidToken

from ..config import SESSION_TTL_SECONDS
from ..errors import ConfigurationError, UnauthorizedError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackendSession:
    user_id: int
    access_token: str


class SessionSealer:
    """Seal and unseal session tokens handed to desktop clients."""

    def __init__(
        self,
        secret: str,
        ttl_seconds: int = SESSION_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        if not secret:
            raise ConfigurationError("SESSION_SECRET is not configured")
        key = base64.urlsafe_b64encode(hashlib.sha256(secret.encode("utf-8")).digest())
        self._fernet = Fernet(key)
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def seal(self, session: BackendSession) -> str:
        payload = json.dumps({"user_id": session.user_id, "access_token": session.access_token})
        return self._fernet.encrypt_at_time(payload.encode("utf-8"), int(self._clock())).decode(
            "ascii"
        )

    def unseal(self, token: str | None) -> BackendSession:
        """
        Recover the backend session from a token.

        Raises:
            UnauthorizedError: Missing, tampered or expired token
        """
        if not token:
            raise UnauthorizedError("Missing session token")
        try:
            raw = self._fernet.decrypt_at_time(
                token.encode("ascii"), ttl=self.ttl_seconds, current_time=int(self._clock())
            )
            data = json.loads(raw)
            return BackendSession(user_id=int(data["user_id"]), access_token=str(data["access_token"]))
        except (InvalidToken, UnicodeEncodeError, ValueError, KeyError, TypeError):
            logger.debug("Rejected session token")
            raise UnauthorizedError() from None
