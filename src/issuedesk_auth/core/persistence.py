#!/usr/bin/env python3
# MIT License
#
# Copyright (c) 2026 IssueDesk Contributors
#
# Permission is hereby granted, free of charge, to any person obtaining a copy
# of this software and associated documentation files (the "Software"), to deal
# in the Software without restriction, including without limitation the rights
# to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
# copies of the Software, and to permit persons to whom the Software is
# furnished to do so, subject to the following conditions:
#
# The above copyright notice and this permission notice shall be included in all
# copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
# IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
# FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
# AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
# LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
# OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
# SOFTWARE.

"""
Encrypted persistence for the single user session.

The record is a Fernet-encrypted JSON document ``{"session": ...}`` kept in
one file. The encryption key lives in the operating system credential vault
(macOS Keychain, Windows Credential Locker, Secret Service) via ``keyring``.
When no vault is usable the key is kept in a 0600 file beside the record and
``is_available()`` reports False so callers can warn the user.
"""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any

import keyring
from cryptography.fernet import Fernet, InvalidToken
from keyring.errors import KeyringError
from pydantic import ValidationError as PydanticValidationError

from ..errors import ValidationError
from .models import UserSession

logger = logging.getLogger(__name__)

STORE_NAME = "auth"
KEYRING_SERVICE = "issuedesk-auth"
KEYRING_USERNAME = "session-store-key"


class EncryptedSessionStore:
    """
    Disk-backed store holding at most one UserSession.

    There is no internal locking: writes only originate from the single
    active login or installation-selection flow, and the last writer wins.
    """

    def __init__(self, storage_path: str | Path | None = None, use_keyring: bool = True):
        """
        Initialize the store.

        Args:
            storage_path: Directory holding the encrypted record
            use_keyring: Keep the encryption key in the OS credential vault
        """
        if storage_path:
            self.storage_path = Path(storage_path)
        else:
            self.storage_path = Path.home() / ".issuedesk"

        self.storage_path.mkdir(parents=True, exist_ok=True)

        self._encryption_available = False
        self._fernet = Fernet(self._load_or_create_key(use_keyring))

        status = self.get_encryption_status()
        logger.info(f"Session store initialized: {status}")
        if not self._encryption_available:
            logger.warning(
                "OS credential vault unavailable; session encryption key is stored on disk"
            )

    @property
    def record_path(self) -> Path:
        return self.storage_path / f"{STORE_NAME}.json.enc"

    @property
    def _key_path(self) -> Path:
        return self.storage_path / f"{STORE_NAME}.key"

    def _load_or_create_key(self, use_keyring: bool) -> bytes:
        if use_keyring:
            try:
                stored = keyring.get_password(KEYRING_SERVICE, KEYRING_USERNAME)
                if stored is None:
                    stored = Fernet.generate_key().decode("ascii")
                    keyring.set_password(KEYRING_SERVICE, KEYRING_USERNAME, stored)
                    logger.info("Generated new session store key in OS credential vault")
                self._encryption_available = True
                return stored.encode("ascii")
            except KeyringError as e:
                logger.warning(f"Credential vault error, falling back to key file: {e}")

        if self._key_path.exists():
            return self._key_path.read_bytes().strip()

        key = Fernet.generate_key()
        fd = os.open(self._key_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(key)
        return key

    def is_available(self) -> bool:
        """Whether the key is protected by the platform credential vault."""
        return self._encryption_available

    def get_encryption_status(self) -> dict[str, Any]:
        """Encryption status details for diagnostics and security audits."""
        return {
            "enabled": True,
            "store_location": str(self.record_path),
            "is_available": self._encryption_available,
            "key_backend": "keyring" if self._encryption_available else "file",
        }

    async def get(self) -> UserSession | None:
        """
        Load and validate the stored session.

        Returns:
            The session, or None if absent. Invalid or undecryptable records
            are logged, deleted and reported as absent.
        """
        loop = asyncio.get_running_loop()
        try:
            payload = await loop.run_in_executor(None, self._read_record)
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.error(f"Stored session could not be read: {type(e).__name__}")
            return None
        except (InvalidToken, json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.error(f"Stored session could not be decrypted, discarding: {type(e).__name__}")
            await self.clear()
            return None

        raw_session = payload.get("session") if isinstance(payload, dict) else None
        if raw_session is None:
            return None

        try:
            return UserSession.model_validate(raw_session)
        except PydanticValidationError as e:
            logger.error(f"Invalid session format, discarding record: {e.error_count()} errors")
            await self.clear()
            return None

    async def set(self, session: UserSession) -> None:
        """
        Validate and persist the session.

        Raises:
            ValidationError: If the session fails schema validation; nothing is written
        """
        try:
            validated = UserSession.model_validate(
                session.model_dump() if isinstance(session, UserSession) else session
            )
        except PydanticValidationError as e:
            logger.error(f"Refusing to store invalid session: {e.error_count()} errors")
            raise ValidationError(f"Invalid session format: {e}") from e

        data = {"session": validated.model_dump(mode="json")}
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._write_record, data)
        logger.debug("Session saved")

    async def clear(self) -> None:
        """Remove the stored session (logout)."""
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._delete_record)

    def _read_record(self) -> Any:
        """Synchronous decrypt-and-parse for executor."""
        token = self.record_path.read_bytes()
        return json.loads(self._fernet.decrypt(token).decode("utf-8"))

    def _write_record(self, data: dict[str, Any]) -> None:
        """Synchronous encrypt-and-write for executor; atomic via temp file."""
        encrypted = self._fernet.encrypt(json.dumps(data).encode("utf-8"))
        temp_path = self.record_path.with_suffix(".tmp")
        fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(encrypted)
        os.replace(temp_path, self.record_path)

    def _delete_record(self) -> None:
        try:
            self.record_path.unlink()
            logger.debug("Session record deleted")
        except FileNotFoundError:
            pass
