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
Installation selection and installation token lifecycle.

Tokens are refreshed lazily: callers ask for a valid token and the manager
re-exchanges when fewer than five minutes remain.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Optional

from ..clients.issuance import IssuanceClient
from ..errors import AuthError, NotFoundError, UnauthorizedError
from .models import Installation, InstallationToken, UserSession
from .persistence import EncryptedSessionStore
from .security import mask_token

logger = logging.getLogger(__name__)

EXPIRY_MARGIN = timedelta(minutes=5)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_expiring_soon(expires_at: datetime, now: Optional[datetime] = None) -> bool:
    """True when fewer than five minutes remain before ``expires_at``."""
    now = now or _utcnow()
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return expires_at - now < EXPIRY_MARGIN


class InstallationTokenManager:
    """Select installations and keep the current installation token fresh."""

    def __init__(
        self,
        client: IssuanceClient,
        store: EncryptedSessionStore,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.client = client
        self.store = store
        self._clock = clock

    def is_expiring_soon(self, token: InstallationToken) -> bool:
        return is_expiring_soon(token.expires_at, self._clock())

    async def _require_session(self) -> UserSession:
        session = await self.store.get()
        if session is None or not session.user_token:
            raise UnauthorizedError("Not logged in")
        return session

    async def select_installation(self, installation_id: int) -> None:
        """
        Make ``installation_id`` the current installation.

        Selecting the already-current installation whose token is still fresh
        does nothing. On any failure the stored session is left untouched.

        Raises:
            UnauthorizedError: No session exists
            NotFoundError: The installation is not in the session's list
            AuthError: The exchange failed
        """
        session = await self._require_session()

        installation = session.find_installation(installation_id)
        if installation is None:
            raise NotFoundError(f"Installation {installation_id} not found")

        if (
            session.current_installation is not None
            and session.current_installation.id == installation_id
            and session.installation_token is not None
            and not self.is_expiring_soon(session.installation_token)
        ):
            logger.debug(f"Installation {installation_id} already selected")
            return

        token = await self.client.exchange_installation(session.user_token, installation_id)
        await self._save_selection(session, installation, token)
        logger.info(
            f"Selected installation {installation_id} ({installation.account.login}), "
            f"token {mask_token(token.token)} expires {token.expires_at.isoformat()}"
        )

    async def _save_selection(
        self, session: UserSession, installation: Installation, token: InstallationToken
    ) -> None:
        updated = session.model_copy(
            update={"current_installation": installation, "installation_token": token}
        )
        await self.store.set(updated)

    async def auto_select(self) -> bool:
        """
        Select the first installation when none is current.

        Best-effort: failures are logged and reported as False.
        """
        session = await self.store.get()
        if session is None or session.current_installation is not None:
            return False
        if not session.installations:
            logger.info("No installations available for auto-selection")
            return False

        first = session.installations[0]
        try:
            await self.select_installation(first.id)
            return True
        except AuthError as e:
            logger.warning(f"Auto-selection of installation {first.id} failed: {e.code.value}: {e}")
            return False

    async def check_installations(self) -> list[Installation]:
        """
        Refresh the installation list from the issuance service.

        A current installation that no longer appears is dropped together
        with its token, then auto-selection runs.
        """
        session = await self._require_session()
        installations = await self.client.list_installations(session.user_token)

        update: dict = {"installations": installations}
        current = session.current_installation
        if current is not None and not any(i.id == current.id for i in installations):
            logger.info(f"Current installation {current.id} is no longer available")
            update["current_installation"] = None
            update["installation_token"] = None

        await self.store.set(session.model_copy(update=update))
        await self.auto_select()
        return installations

    async def refresh_installation_token(self) -> InstallationToken:
        """
        Re-exchange the current installation and replace its token.

        Raises:
            UnauthorizedError: No session exists
            NotFoundError: No installation is selected
        """
        session = await self._require_session()
        installation = session.current_installation
        if installation is None:
            raise NotFoundError("No installation selected")

        token = await self.client.exchange_installation(
            session.user_token, installation.id, refresh=True
        )
        await self._save_selection(session, installation, token)
        logger.info(f"Refreshed token for installation {installation.id}")
        return token

    async def get_valid_installation_token(self) -> InstallationToken:
        """Current installation token, refreshed first when expiring soon."""
        session = await self._require_session()
        if session.installation_token is None:
            raise NotFoundError("No installation selected")
        if self.is_expiring_soon(session.installation_token):
            logger.debug("Installation token expiring soon, refreshing")
            return await self.refresh_installation_token()
        return session.installation_token
