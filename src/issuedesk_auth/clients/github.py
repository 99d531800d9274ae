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
GitHub platform client used by the issuance service.

Covers the device-flow OAuth endpoints and the handful of REST endpoints
the service depends on. Calls other than the device-token poll are retried
on transport errors, 429 and 5xx.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from ..auth.app_jwt import AppAssertionSigner
from ..config import ServiceConfig
from ..core.retry import RetryConfig, retry
from ..core.security import CredentialSanitizer
from ..errors import GitHubApiError, NetworkError, UnauthorizedError

logger = logging.getLogger(__name__)

GITHUB_API_VERSION = "2022-11-28"
DEVICE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"


class GitHubClient:
    """Async GitHub client with retry on transient failures."""

    def __init__(
        self,
        config: ServiceConfig,
        signer: AppAssertionSigner,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_config: RetryConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self.signer = signer
        self.retry_config = retry_config or RetryConfig()
        self._sleep = sleep
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(config.http_timeout),
            transport=transport,
            headers={"User-Agent": config.user_agent},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def _api_headers(self, authorization: str) -> dict[str, str]:
        return {
            "Accept": "application/vnd.github+json",
            "Authorization": authorization,
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
        }

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise NetworkError(f"GitHub request timed out: {method} {url}") from e
        except httpx.HTTPError as e:
            message = CredentialSanitizer.sanitize_error(e)
            raise NetworkError(f"GitHub request failed: {message}") from e

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise GitHubApiError(
                "GitHub returned an unparsable response", upstream_status=response.status_code
            ) from e

    def _check(self, response: httpx.Response, what: str) -> Any:
        if response.is_success:
            return self._json(response)
        try:
            detail = response.json().get("message", "")
        except (ValueError, AttributeError):
            detail = ""
        logger.warning(f"GitHub {what} failed with HTTP {response.status_code}: {detail}")
        raise GitHubApiError(
            f"GitHub {what} failed (HTTP {response.status_code})",
            upstream_status=response.status_code,
        )

    async def _with_retry(self, func: Callable[[], Awaitable[Any]]) -> Any:
        return await retry(func, self.retry_config, sleep=self._sleep)

    async def initiate_device_flow(self) -> dict[str, Any]:
        """Request a device and user code for this app."""

        async def call() -> dict[str, Any]:
            response = await self._send(
                "POST",
                f"{self.config.github_oauth_url}/login/device/code",
                data={"client_id": self.config.github_client_id},
                headers={"Accept": "application/json"},
            )
            data = self._check(response, "device code request")
            if not isinstance(data, dict) or "error" in data:
                error = data.get("error") if isinstance(data, dict) else "malformed"
                raise GitHubApiError(f"Device code request rejected: {error}")
            return data

        return await self._with_retry(call)

    async def poll_device_flow(self, device_code: str) -> dict[str, Any]:
        """
        Exchange a device code for a user access token.

        GitHub answers HTTP 200 with an ``error`` field while the flow is
        unfinished, so the raw payload is returned for the caller to map.
        Not retried: the client's polling cadence is the retry.
        """
        data = {
            "client_id": self.config.github_client_id,
            "device_code": device_code,
            "grant_type": DEVICE_GRANT_TYPE,
        }
        if self.config.github_client_secret:
            data["client_secret"] = self.config.github_client_secret

        response = await self._send(
            "POST",
            f"{self.config.github_oauth_url}/login/oauth/access_token",
            data=data,
            headers={"Accept": "application/json"},
        )
        payload = self._check(response, "device token poll")
        if not isinstance(payload, dict):
            raise GitHubApiError("Malformed device token response")
        return payload

    async def _user_get(self, path: str, access_token: str, **params: Any) -> Any:
        async def call() -> Any:
            response = await self._send(
                "GET",
                f"{self.config.github_api_url}{path}",
                headers=self._api_headers(f"Bearer {access_token}"),
                params=params or None,
            )
            if response.status_code == 401:
                raise UnauthorizedError("GitHub rejected the user access token")
            return self._check(response, f"GET {path}")

        return await self._with_retry(call)

    async def get_user(self, access_token: str) -> dict[str, Any]:
        return await self._user_get("/user", access_token)

    async def get_user_installations(self, access_token: str) -> list[dict[str, Any]]:
        """Installations of this app that the user can access."""
        data = await self._user_get("/user/installations", access_token, per_page=100)
        installations = data.get("installations") if isinstance(data, dict) else None
        if not isinstance(installations, list):
            raise GitHubApiError("Malformed installations response")
        return installations

    async def create_installation_token(self, installation_id: int) -> dict[str, Any]:
        """Mint an installation access token using a fresh app assertion."""

        async def call() -> dict[str, Any]:
            assertion = self.signer.sign()
            response = await self._send(
                "POST",
                f"{self.config.github_api_url}/app/installations/{installation_id}/access_tokens",
                headers=self._api_headers(f"Bearer {assertion}"),
            )
            return self._check(response, "installation token request")

        return await self._with_retry(call)
