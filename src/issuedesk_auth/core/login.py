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
Device-flow login orchestration.

The orchestrator drives one login attempt at a time through

    IDLE -> AWAITING_DEVICE_CODE -> DISPLAYING_CODE -> POLLING
         -> SUCCESS | DENIED | EXPIRED | NETWORK_ERROR | CANCELLED -> IDLE

and emits exactly one terminal notification per attempt. Waits between
polls are non-blocking and double as the cancellation point.
"""

import asyncio
import inspect
import logging
import time
import webbrowser
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from ..clients.issuance import IssuanceClient, PollResult, PollStatus
from ..errors import (
    AuthError,
    DeviceFlowDenied,
    DeviceFlowExpired,
    InternalError,
    InvalidRequestError,
    LoginCancelled,
    LoginInProgressError,
)
from .installations import InstallationTokenManager
from .models import DeviceAuthorization, UserSession
from .persistence import EncryptedSessionStore

logger = logging.getLogger(__name__)

EVENT_USER_CODE = "auth:user-code"
EVENT_LOGIN_SUCCESS = "auth:login-success"
EVENT_LOGIN_ERROR = "auth:login-error"

POLL_TIMEOUT_SECONDS = 15 * 60

Notify = Callable[[str, dict[str, Any]], Any]


class LoginState(Enum):
    IDLE = "idle"
    AWAITING_DEVICE_CODE = "awaiting_device_code"
    DISPLAYING_CODE = "displaying_code"
    POLLING = "polling"
    SUCCESS = "success"
    DENIED = "denied"
    EXPIRED = "expired"
    NETWORK_ERROR = "network_error"
    CANCELLED = "cancelled"


_TERMINAL_STATE_BY_ERROR: dict[type[AuthError], LoginState] = {
    DeviceFlowExpired: LoginState.EXPIRED,
    DeviceFlowDenied: LoginState.DENIED,
    LoginCancelled: LoginState.CANCELLED,
}


@dataclass
class LoginOutcome:
    """Result of one login attempt."""

    state: LoginState
    session: Optional[UserSession] = None
    error: Optional[AuthError] = None

    @property
    def success(self) -> bool:
        return self.state is LoginState.SUCCESS


class LoginOrchestrator:
    """Runs the device-flow state machine against the issuance service."""

    def __init__(
        self,
        client: IssuanceClient,
        store: EncryptedSessionStore,
        token_manager: InstallationTokenManager,
        notify: Optional[Notify] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        clock: Callable[[], float] = time.monotonic,
        poll_timeout: float = POLL_TIMEOUT_SECONDS,
    ):
        """
        Args:
            client: Issuance service client
            store: Where the resulting session is persisted
            token_manager: Performs post-login auto-selection
            notify: Receives ``(event, payload)`` notifications; may be async
            sleep: Replaces the cancellable wait between polls (tests)
            clock: Monotonic clock used for the polling ceiling
            poll_timeout: Polling ceiling in seconds
        """
        self.client = client
        self.store = store
        self.token_manager = token_manager
        self._notify = notify
        self._sleep = sleep
        self._clock = clock
        self.poll_timeout = poll_timeout

        self.state = LoginState.IDLE
        self.history: list[LoginState] = []
        self._device: Optional[DeviceAuthorization] = None
        self._cancel_event: Optional[asyncio.Event] = None
        self._finished: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None
        self._active = False

    @property
    def is_active(self) -> bool:
        return self._active

    def _transition(self, state: LoginState) -> None:
        logger.debug(f"Login state {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    async def _emit(self, event: str, payload: dict[str, Any]) -> None:
        if self._notify is None:
            return
        try:
            result = self._notify(event, payload)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception(f"Notification listener failed for {event}")

    async def login(self) -> LoginOutcome:
        """
        Run one full login attempt.

        Raises:
            LoginInProgressError: Another attempt is active
        """
        if self._active:
            raise LoginInProgressError()

        self._active = True
        self._cancel_event = asyncio.Event()
        self._finished = asyncio.Event()
        self._task = asyncio.current_task()
        self.history = []
        try:
            try:
                session = await self._run()
            except AuthError as e:
                return await self._fail(e)
            except Exception as e:
                logger.exception("Unexpected error during login")
                return await self._fail(InternalError(f"Unexpected error: {type(e).__name__}"))

            self._transition(LoginState.SUCCESS)
            logger.info(f"Login succeeded for {session.user.login}")
            await self._emit(
                EVENT_LOGIN_SUCCESS,
                {
                    "user": session.user.model_dump(mode="json"),
                    "installation_id": (
                        session.current_installation.id if session.current_installation else None
                    ),
                },
            )
            return LoginOutcome(state=LoginState.SUCCESS, session=session)
        finally:
            self._device = None
            self._cancel_event = None
            self._task = None
            self._active = False
            self._transition(LoginState.IDLE)
            self._finished.set()

    async def _fail(self, error: AuthError) -> LoginOutcome:
        state = _TERMINAL_STATE_BY_ERROR.get(type(error), LoginState.NETWORK_ERROR)
        self._transition(state)
        logger.warning(f"Login ended in {state.value}: {error.code.value}: {error.message}")
        await self._emit(EVENT_LOGIN_ERROR, error.to_dict())
        return LoginOutcome(state=state, error=error)

    async def _run(self) -> UserSession:
        self._transition(LoginState.AWAITING_DEVICE_CODE)
        device = await self.client.begin_device_flow()
        self._device = device
        self._check_cancelled()

        self._transition(LoginState.DISPLAYING_CODE)
        await self._emit(
            EVENT_USER_CODE,
            {
                "user_code": device.user_code,
                "verification_uri": device.verification_uri,
                "expires_in": device.expires_in,
            },
        )

        self._transition(LoginState.POLLING)
        result = await self._poll_until_complete(device)
        self._check_cancelled()

        session = UserSession(
            user_token=result.session_token,
            user=result.user,
            installations=result.installations,
        )
        await self.store.set(session)
        await self.token_manager.auto_select()
        if self._cancel_event.is_set():
            # cancelled while the session was being written
            await self.store.clear()
            raise LoginCancelled()
        return await self.store.get() or session

    async def _poll_until_complete(self, device: DeviceAuthorization) -> PollResult:
        started = self._clock()
        slow_downs = 0

        while True:
            remaining = self.poll_timeout - (self._clock() - started)
            if remaining <= 0:
                raise DeviceFlowExpired("Device code expired (timeout)")
            await self._wait(min(device.interval * (2**slow_downs), remaining))

            if self._clock() - started >= self.poll_timeout:
                raise DeviceFlowExpired("Device code expired (timeout)")

            result = await self.client.poll(device.device_code)

            if result.status is PollStatus.SLOW_DOWN:
                slow_downs += 1
                logger.info(f"Slow down requested, next poll in {device.interval * 2**slow_downs}s")
                continue
            slow_downs = 0

            if result.status is PollStatus.PENDING:
                continue
            if result.status is PollStatus.EXPIRED:
                raise DeviceFlowExpired()
            if result.status is PollStatus.DENIED:
                raise DeviceFlowDenied()
            return result

    async def _wait(self, seconds: float) -> None:
        if self._sleep is not None:
            await self._sleep(seconds)
        else:
            try:
                await asyncio.wait_for(self._cancel_event.wait(), timeout=seconds)
            except asyncio.TimeoutError:
                pass
        self._check_cancelled()

    def _check_cancelled(self) -> None:
        if self._cancel_event is not None and self._cancel_event.is_set():
            raise LoginCancelled()

    def cancel(self) -> bool:
        """Request cancellation; honored at the next wait boundary or before the session is kept."""
        if not self._active or self._cancel_event is None:
            return False
        logger.info("Login cancellation requested")
        self._cancel_event.set()
        return True

    async def wait_until_idle(self) -> None:
        """Wait for the active attempt, if any, to reach its terminal state."""
        finished = self._finished
        if not self._active or finished is None or asyncio.current_task() is self._task:
            return
        await finished.wait()

    def open_verification_uri(self) -> bool:
        """
        Open the verification URL of the active attempt in the external browser.

        Raises:
            InvalidRequestError: No device code is being displayed
        """
        if self._device is None:
            raise InvalidRequestError("No login in progress")
        return webbrowser.open(self._device.verification_uri)
