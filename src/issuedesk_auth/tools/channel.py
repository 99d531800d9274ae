"""
Local request/response channel between the UI host and the auth core.

Every operation returns a structured dict ``{"success": bool, ...}``; failures
carry ``{"error": {"code", "message", "retryable"}}``. Secrets (user token,
installation token value) never cross the channel except through
``get_installation_token``.
"""

import logging
from typing import Any, Optional

from ..clients.issuance import IssuanceClient
from ..config import ClientConfig
from ..core.installations import InstallationTokenManager
from ..core.login import LoginOrchestrator, Notify
from ..core.models import UserSession
from ..core.persistence import EncryptedSessionStore
from ..decorators import handle_channel_errors

logger = logging.getLogger(__name__)


def session_summary(session: Optional[UserSession]) -> Optional[dict[str, Any]]:
    """Session view safe to hand to the UI: no bearer credentials."""
    if session is None:
        return None
    token = session.installation_token
    return {
        "user": session.user.model_dump(mode="json"),
        "installations": [i.model_dump(mode="json") for i in session.installations],
        "current_installation": (
            session.current_installation.model_dump(mode="json")
            if session.current_installation
            else None
        ),
        "installation_token_expires_at": token.expires_at.isoformat() if token else None,
    }


class AuthChannel:
    """Wires the store, client, token manager and login orchestrator together."""

    def __init__(
        self,
        client: IssuanceClient,
        store: EncryptedSessionStore,
        token_manager: InstallationTokenManager,
        orchestrator: LoginOrchestrator,
    ):
        self.client = client
        self.store = store
        self.token_manager = token_manager
        self.orchestrator = orchestrator

    @handle_channel_errors
    async def login(self) -> dict[str, Any]:
        outcome = await self.orchestrator.login()
        if not outcome.success:
            raise outcome.error
        return {"session": session_summary(outcome.session)}

    @handle_channel_errors
    async def cancel_login(self) -> dict[str, Any]:
        return {"cancelled": self.orchestrator.cancel()}

    @handle_channel_errors
    async def open_verification_uri(self) -> dict[str, Any]:
        return {"opened": self.orchestrator.open_verification_uri()}

    @handle_channel_errors
    async def get_session(self) -> dict[str, Any]:
        return {"session": session_summary(await self.store.get())}

    @handle_channel_errors
    async def select_installation(self, installation_id: int) -> dict[str, Any]:
        await self.token_manager.select_installation(installation_id)
        return {"session": session_summary(await self.store.get())}

    @handle_channel_errors
    async def check_installations(self) -> dict[str, Any]:
        await self.token_manager.check_installations()
        return {"session": session_summary(await self.store.get())}

    @handle_channel_errors
    async def refresh_installation_token(self) -> dict[str, Any]:
        token = await self.token_manager.refresh_installation_token()
        return {"expires_at": token.expires_at.isoformat()}

    @handle_channel_errors
    async def get_installation_token(self) -> dict[str, Any]:
        """Valid installation token for platform API calls, refreshed when stale."""
        token = await self.token_manager.get_valid_installation_token()
        return {"token": token.token, "expires_at": token.expires_at.isoformat()}

    @handle_channel_errors
    async def logout(self) -> dict[str, Any]:
        if self.orchestrator.cancel():
            await self.orchestrator.wait_until_idle()
        await self.store.clear()
        logger.info("Logged out")
        return {}

    @handle_channel_errors
    async def get_encryption_status(self) -> dict[str, Any]:
        return {"encryption": self.store.get_encryption_status()}

    async def aclose(self) -> None:
        await self.client.aclose()


def build_channel(config: Optional[ClientConfig] = None, notify: Optional[Notify] = None) -> AuthChannel:
    """Construct every collaborator explicitly and return the channel."""
    config = config or ClientConfig()
    store = EncryptedSessionStore(config.store_dir, use_keyring=config.use_keyring)
    client = IssuanceClient(config.worker_url, timeout=config.http_timeout)
    token_manager = InstallationTokenManager(client, store)
    orchestrator = LoginOrchestrator(
        client, store, token_manager, notify=notify, poll_timeout=config.poll_timeout
    )
    return AuthChannel(client, store, token_manager, orchestrator)
