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
HTTP client for the credential issuance service.

Every call carries a per-request timeout. Transport failures, timeouts and
unparsable bodies surface as NetworkError; structured error bodies are
rebuilt into their tagged AuthError.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import httpx
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from ..core.models import DeviceAuthorization, Installation, InstallationToken, User
from ..core.security import CredentialSanitizer
from ..errors import NetworkError, error_from_payload

logger = logging.getLogger(__name__)

SESSION_HEADER = "X-Session-Token"

_installation_list = TypeAdapter(list[Installation])


class PollStatus(Enum):
    """Outcome of a single device-flow poll."""

    PENDING = "pending"
    SLOW_DOWN = "slow_down"
    EXPIRED = "expired"
    DENIED = "denied"
    SUCCESS = "success"


@dataclass
class PollResult:
    status: PollStatus
    session_token: Optional[str] = None
    user: Optional[User] = None
    installations: list[Installation] = field(default_factory=list)


_POLL_STATUS_BY_HTTP = {
    202: PollStatus.PENDING,
    429: PollStatus.SLOW_DOWN,
    410: PollStatus.EXPIRED,
    403: PollStatus.DENIED,
}


class IssuanceClient:
    """Async client for the issuance service endpoints."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(
        self,
        path: str,
        payload: dict[str, Any] | None = None,
        session_token: str | None = None,
    ) -> httpx.Response:
        headers = {SESSION_HEADER: session_token} if session_token else None
        try:
            return await self._client.post(path, json=payload or {}, headers=headers)
        except httpx.TimeoutException as e:
            logger.warning(f"Request to {path} timed out")
            raise NetworkError(f"Request to {path} timed out") from e
        except httpx.HTTPError as e:
            message = CredentialSanitizer.sanitize_error(e)
            logger.warning(f"Request to {path} failed: {message}")
            raise NetworkError(f"Request to {path} failed: {message}") from e

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise NetworkError(
                f"Unparsable response (HTTP {response.status_code})",
                status_code=response.status_code,
            ) from e

    def _raise_for_error(self, response: httpx.Response) -> None:
        if response.is_success:
            return
        try:
            payload = response.json()
        except ValueError:
            payload = None
        error = error_from_payload(payload, response.status_code)
        logger.info(f"Issuance service returned {response.status_code}: {error.code.value}")
        raise error

    async def begin_device_flow(self) -> DeviceAuthorization:
        """Start the device flow and return the user code to display."""
        response = await self._post("/auth/device")
        self._raise_for_error(response)
        try:
            return DeviceAuthorization.model_validate(self._json(response))
        except PydanticValidationError as e:
            raise NetworkError("Malformed device authorization response") from e

    async def poll(self, device_code: str) -> PollResult:
        """
        Poll once for device-flow completion.

        Returns:
            PollResult; only SUCCESS carries a session

        Raises:
            NetworkError: On transport failure, a malformed body or an
                unexpected status
        """
        response = await self._post("/auth/poll", {"device_code": device_code})

        status = _POLL_STATUS_BY_HTTP.get(response.status_code)
        if status is not None:
            return PollResult(status=status)

        if response.status_code != 200:
            raise NetworkError(
                f"Unexpected poll response (HTTP {response.status_code})",
                status_code=response.status_code,
            )

        data = self._json(response)
        try:
            session_token = data["session_token"]
            if not isinstance(session_token, str) or not session_token:
                raise ValueError("empty session token")
            return PollResult(
                status=PollStatus.SUCCESS,
                session_token=session_token,
                user=User.model_validate(data["user"]),
                installations=_installation_list.validate_python(data.get("installations") or []),
            )
        except (KeyError, TypeError, ValueError) as e:
            # pydantic's ValidationError is a ValueError
            raise NetworkError("Malformed poll success response") from e

    async def exchange_installation(
        self, session_token: str, installation_id: int, refresh: bool = False
    ) -> InstallationToken:
        """Exchange the user session for a token scoped to one installation."""
        path = "/auth/refresh-installation-token" if refresh else "/auth/installation-token"
        response = await self._post(path, {"installation_id": installation_id}, session_token)
        self._raise_for_error(response)
        try:
            return InstallationToken.model_validate(self._json(response))
        except PydanticValidationError as e:
            raise NetworkError("Malformed installation token response") from e

    async def list_installations(self, session_token: str) -> list[Installation]:
        """Fetch the caller's current installation list."""
        response = await self._post("/auth/installations", session_token=session_token)
        self._raise_for_error(response)
        data = self._json(response)
        try:
            return _installation_list.validate_python(data["installations"])
        except (KeyError, TypeError, PydanticValidationError) as e:
            raise NetworkError("Malformed installations response") from e
