"""Core session model, persistence and login state machine"""

from .installations import InstallationTokenManager, is_expiring_soon
from .login import LoginOrchestrator, LoginOutcome, LoginState
from .models import (
    Account,
    DeviceAuthorization,
    Installation,
    InstallationToken,
    User,
    UserSession,
)
from .persistence import EncryptedSessionStore

__all__ = [
    "Account",
    "DeviceAuthorization",
    "EncryptedSessionStore",
    "Installation",
    "InstallationToken",
    "InstallationTokenManager",
    "LoginOrchestrator",
    "LoginOutcome",
    "LoginState",
    "User",
    "UserSession",
    "is_expiring_soon",
]
