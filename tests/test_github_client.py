"""
Tests for the outbound GitHub client.
"""

import json
from unittest.mock import AsyncMock
from urllib.parse import parse_qs

import httpx
import jwt
import pytest

from issuedesk_auth.auth.app_jwt import AppAssertionSigner
from issuedesk_auth.clients.github import DEVICE_GRANT_TYPE, GitHubClient
from issuedesk_auth.errors import GitHubApiError, NetworkError, UnauthorizedError


def make_client(service_config, handler, sleep=None):
    signer = AppAssertionSigner(service_config.github_app_id, service_config.github_private_key)
    return GitHubClient(
        service_config,
        signer,
        transport=httpx.MockTransport(handler),
        sleep=sleep or AsyncMock(),
    )


class TestDeviceFlow:
    @pytest.mark.asyncio
    async def test_initiate_device_flow(self, service_config):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["form"] = parse_qs(request.content.decode())
            seen["user_agent"] = request.headers["user-agent"]
            return httpx.Response(
                200,
                json={
                    "device_code": "dc123",
                    "user_code": "ABCD-1234",
                    "verification_uri": "https://github.com/login/device",
                    "expires_in": 900,
                    "interval": 5,
                },
            )

        client = make_client(service_config, handler)
        data = await client.initiate_device_flow()

        assert data["user_code"] == "ABCD-1234"
        assert seen["url"] == "https://github.test/login/device/code"
        assert seen["form"] == {"client_id": ["Iv1.testclient"]}
        assert seen["user_agent"] == "IssueDesk/1.0.0"

    @pytest.mark.asyncio
    async def test_initiate_device_flow_error_payload(self, service_config):
        client = make_client(
            service_config, lambda r: httpx.Response(200, json={"error": "unauthorized_client"})
        )
        with pytest.raises(GitHubApiError):
            await client.initiate_device_flow()

    @pytest.mark.asyncio
    async def test_poll_sends_grant_type_and_returns_raw_payload(self, service_config):
        forms = []

        def handler(request):
            forms.append(parse_qs(request.content.decode()))
            return httpx.Response(200, json={"error": "authorization_pending"})

        client = make_client(service_config, handler)
        payload = await client.poll_device_flow("dc123")

        assert payload == {"error": "authorization_pending"}
        assert forms[0]["grant_type"] == [DEVICE_GRANT_TYPE]
        assert forms[0]["device_code"] == ["dc123"]
        assert "client_secret" not in forms[0]

    @pytest.mark.asyncio
    async def test_poll_includes_client_secret_when_configured(self, service_config):
        service_config.github_client_secret = "shh"
        forms = []

        def handler(request):
            forms.append(parse_qs(request.content.decode()))
            return httpx.Response(200, json={"access_token": "ghu_x"})

        client = make_client(service_config, handler)
        await client.poll_device_flow("dc123")
        assert forms[0]["client_secret"] == ["shh"]

    @pytest.mark.asyncio
    async def test_poll_not_retried(self, service_config):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503, json={"message": "unavailable"})

        client = make_client(service_config, handler)
        with pytest.raises(GitHubApiError):
            await client.poll_device_flow("dc123")
        assert len(calls) == 1


class TestRestCalls:
    @pytest.mark.asyncio
    async def test_get_user_headers(self, service_config, user_data):
        seen = {}

        def handler(request):
            seen.update(request.headers)
            seen["url"] = str(request.url)
            return httpx.Response(200, json=user_data)

        client = make_client(service_config, handler)
        assert (await client.get_user("ghu_token"))["login"] == "octocat"
        assert seen["authorization"] == "Bearer ghu_token"
        assert seen["accept"] == "application/vnd.github+json"
        assert seen["x-github-api-version"] == "2022-11-28"
        assert seen["url"] == "https://api.github.test/user"

    @pytest.mark.asyncio
    async def test_get_user_unauthorized(self, service_config):
        client = make_client(service_config, lambda r: httpx.Response(401, json={"message": "Bad"}))
        with pytest.raises(UnauthorizedError):
            await client.get_user("ghu_revoked")

    @pytest.mark.asyncio
    async def test_user_installations(self, service_config, installation_data):
        client = make_client(
            service_config,
            lambda r: httpx.Response(
                200, json={"total_count": 1, "installations": [installation_data(5)]}
            ),
        )
        installations = await client.get_user_installations("ghu_token")
        assert installations[0]["id"] == 5

    @pytest.mark.asyncio
    async def test_installation_token_signed_with_app_jwt(self, service_config, rsa_key, token_data):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["method"] = request.method
            seen["auth"] = request.headers["authorization"]
            return httpx.Response(201, json=token_data())

        client = make_client(service_config, handler)
        data = await client.create_installation_token(7)

        assert data["token"].startswith("ghs_")
        assert seen["method"] == "POST"
        assert seen["url"] == "https://api.github.test/app/installations/7/access_tokens"
        assertion = seen["auth"].removeprefix("Bearer ")
        claims = jwt.decode(assertion, rsa_key.public_key(), algorithms=["RS256"])
        assert claims["iss"] == "123456"

    @pytest.mark.asyncio
    async def test_retries_server_errors(self, service_config, token_data):
        responses = [httpx.Response(502), httpx.Response(500), httpx.Response(201, json=token_data())]
        sleep = AsyncMock()

        client = make_client(service_config, lambda r: responses.pop(0), sleep=sleep)
        data = await client.create_installation_token(7)

        assert data["token"].startswith("ghs_")
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, service_config):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(429, json={"message": "rate limited"})

        client = make_client(service_config, handler)
        with pytest.raises(GitHubApiError) as exc_info:
            await client.create_installation_token(7)
        assert exc_info.value.upstream_status == 429
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_client_errors_not_retried(self, service_config):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(404, json={"message": "Not Found"})

        client = make_client(service_config, handler)
        with pytest.raises(GitHubApiError):
            await client.create_installation_token(7)
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_transport_error_is_network_error(self, service_config):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(service_config, handler)
        with pytest.raises(NetworkError):
            await client.get_user("ghu_token")

    @pytest.mark.asyncio
    async def test_unparsable_body(self, service_config):
        client = make_client(service_config, lambda r: httpx.Response(200, content=b"<html>"))
        with pytest.raises(GitHubApiError):
            await client.get_user_installations("ghu_token")


@pytest.mark.asyncio
async def test_aclose(service_config):
    client = make_client(service_config, lambda r: httpx.Response(200, content=json.dumps({})))
    await client.aclose()
    assert client._client.is_closed
