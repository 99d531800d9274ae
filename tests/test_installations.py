"""
Tests for installation selection and token lifecycle.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, Mock

import pytest

from issuedesk_auth.clients.issuance import IssuanceClient
from issuedesk_auth.core.installations import InstallationTokenManager, is_expiring_soon
from issuedesk_auth.core.models import Installation, InstallationToken
from issuedesk_auth.errors import NetworkError, NotFoundError, UnauthorizedError


@pytest.fixture
def client():
    return Mock(spec=IssuanceClient)


@pytest.fixture
def issue_token(token_data):
    """Side effect minting a distinct token per exchange."""
    counter = {"n": 0}

    async def exchange(session_token, installation_id, refresh=False):
        counter["n"] += 1
        return InstallationToken.model_validate(
            token_data(token=f"ghs_{installation_id}_{counter['n']:032d}")
        )

    return exchange


@pytest.fixture
def manager(client, store):
    return InstallationTokenManager(client, store)


class TestIsExpiringSoon:
    NOW = datetime(2026, 1, 1, 12, tzinfo=timezone.utc)

    def test_more_than_five_minutes_left(self):
        assert not is_expiring_soon(self.NOW + timedelta(minutes=6), self.NOW)

    def test_exactly_five_minutes_left(self):
        assert not is_expiring_soon(self.NOW + timedelta(minutes=5), self.NOW)

    def test_less_than_five_minutes_left(self):
        assert is_expiring_soon(self.NOW + timedelta(minutes=4, seconds=59), self.NOW)

    def test_already_expired(self):
        assert is_expiring_soon(self.NOW - timedelta(seconds=1), self.NOW)

    def test_naive_timestamp(self):
        assert is_expiring_soon(datetime(2026, 1, 1, 12, 1), self.NOW)


class TestSelectInstallation:
    @pytest.mark.asyncio
    async def test_requires_session(self, manager):
        with pytest.raises(UnauthorizedError):
            await manager.select_installation(1)

    @pytest.mark.asyncio
    async def test_unknown_installation(self, manager, store, make_session):
        await store.set(make_session())
        with pytest.raises(NotFoundError):
            await manager.select_installation(99)

    @pytest.mark.asyncio
    async def test_select_sets_installation_and_token_together(
        self, manager, client, store, make_session, issue_token
    ):
        await store.set(make_session())
        client.exchange_installation = AsyncMock(side_effect=issue_token)

        await manager.select_installation(2)

        session = await store.get()
        assert session.current_installation.id == 2
        assert session.installation_token.token.startswith("ghs_2_")
        client.exchange_installation.assert_awaited_once_with("session-token", 2)

    @pytest.mark.asyncio
    async def test_reselecting_fresh_installation_is_noop(
        self, manager, client, store, make_session, issue_token
    ):
        await store.set(make_session())
        client.exchange_installation = AsyncMock(side_effect=issue_token)

        await manager.select_installation(1)
        first = (await store.get()).installation_token
        await manager.select_installation(1)

        assert (await store.get()).installation_token == first
        assert client.exchange_installation.await_count == 1

    @pytest.mark.asyncio
    async def test_reselecting_expiring_installation_exchanges(
        self, manager, client, store, make_session, issue_token
    ):
        await store.set(make_session(current=1, token_minutes=2))
        client.exchange_installation = AsyncMock(side_effect=issue_token)

        await manager.select_installation(1)

        client.exchange_installation.assert_awaited_once()
        assert (await store.get()).installation_token.token.startswith("ghs_1_")

    @pytest.mark.asyncio
    async def test_failed_exchange_leaves_session_unmodified(
        self, manager, client, store, make_session
    ):
        original = make_session(current=1)
        await store.set(original)
        client.exchange_installation = AsyncMock(side_effect=NetworkError("down"))

        with pytest.raises(NetworkError):
            await manager.select_installation(2)

        assert await store.get() == original


class TestAutoSelect:
    @pytest.mark.asyncio
    async def test_selects_first_installation(self, manager, client, store, make_session, issue_token):
        await store.set(make_session(installation_ids=(5, 6)))
        client.exchange_installation = AsyncMock(side_effect=issue_token)

        assert await manager.auto_select() is True
        assert (await store.get()).current_installation.id == 5

    @pytest.mark.asyncio
    async def test_skips_when_installation_already_current(self, manager, client, store, make_session):
        await store.set(make_session(current=2))
        client.exchange_installation = AsyncMock()

        assert await manager.auto_select() is False
        client.exchange_installation.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_installations(self, manager, client, store, make_session):
        await store.set(make_session(installation_ids=()))
        assert await manager.auto_select() is False

    @pytest.mark.asyncio
    async def test_failure_is_logged_only(self, manager, client, store, make_session, caplog):
        original = make_session()
        await store.set(original)
        client.exchange_installation = AsyncMock(side_effect=NetworkError("down"))

        assert await manager.auto_select() is False
        assert await store.get() == original
        assert "Auto-selection of installation 1 failed" in caplog.text


class TestCheckInstallations:
    @pytest.mark.asyncio
    async def test_saves_fresh_list_and_auto_selects(
        self, manager, client, store, make_session, installation_data, issue_token
    ):
        await store.set(make_session(installation_ids=(1,)))
        fresh = [Installation.model_validate(installation_data(i)) for i in (3, 4)]
        client.list_installations = AsyncMock(return_value=fresh)
        client.exchange_installation = AsyncMock(side_effect=issue_token)

        result = await manager.check_installations()

        session = await store.get()
        assert result == fresh
        assert [i.id for i in session.installations] == [3, 4]
        assert session.current_installation.id == 3

    @pytest.mark.asyncio
    async def test_drops_vanished_current_installation(
        self, manager, client, store, make_session, installation_data
    ):
        await store.set(make_session(installation_ids=(1, 2), current=2))
        client.list_installations = AsyncMock(
            return_value=[Installation.model_validate(installation_data(1))]
        )
        client.exchange_installation = AsyncMock(side_effect=NetworkError("down"))

        await manager.check_installations()

        session = await store.get()
        assert session.current_installation is None
        assert session.installation_token is None
        assert [i.id for i in session.installations] == [1]

    @pytest.mark.asyncio
    async def test_keeps_current_installation_still_present(
        self, manager, client, store, make_session, installation_data
    ):
        original = make_session(installation_ids=(1, 2), current=2)
        await store.set(original)
        client.list_installations = AsyncMock(
            return_value=[Installation.model_validate(installation_data(i, login=f"org-{i}")) for i in (1, 2)]
        )
        client.exchange_installation = AsyncMock()

        await manager.check_installations()

        assert (await store.get()).installation_token == original.installation_token
        client.exchange_installation.assert_not_awaited()


class TestTokenRefresh:
    @pytest.mark.asyncio
    async def test_refresh_replaces_token(self, manager, client, store, make_session, issue_token):
        await store.set(make_session(current=1))
        client.exchange_installation = AsyncMock(side_effect=issue_token)

        token = await manager.refresh_installation_token()

        assert (await store.get()).installation_token == token
        client.exchange_installation.assert_awaited_once_with("session-token", 1, refresh=True)

    @pytest.mark.asyncio
    async def test_refresh_without_selection(self, manager, store, make_session):
        await store.set(make_session())
        with pytest.raises(NotFoundError):
            await manager.refresh_installation_token()

    @pytest.mark.asyncio
    async def test_valid_token_returned_without_refresh(self, manager, client, store, make_session):
        session = make_session(current=1, token_minutes=30)
        await store.set(session)
        client.exchange_installation = AsyncMock()

        assert await manager.get_valid_installation_token() == session.installation_token
        client.exchange_installation.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_expiring_token_refreshed_on_use(
        self, manager, client, store, make_session, issue_token
    ):
        await store.set(make_session(current=1, token_minutes=4))
        client.exchange_installation = AsyncMock(side_effect=issue_token)

        token = await manager.get_valid_installation_token()

        assert token.token.startswith("ghs_1_")
        assert not manager.is_expiring_soon(token)
