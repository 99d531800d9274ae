"""
Shared fixtures for IssueDesk auth tests.
"""

from datetime import datetime, timedelta, timezone

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from issuedesk_auth.config import ServiceConfig
from issuedesk_auth.core.models import Installation, InstallationToken, User, UserSession
from issuedesk_auth.core.persistence import EncryptedSessionStore

AVATAR = "https://avatars.githubusercontent.com/u/583231"


@pytest.fixture(scope="session")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def pkcs8_pem(rsa_key):
    return rsa_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


@pytest.fixture(scope="session")
def pkcs1_pem(rsa_key):
    return rsa_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


@pytest.fixture
def service_config(pkcs8_pem):
    return ServiceConfig(
        github_app_id="123456",
        github_private_key=pkcs8_pem,
        github_client_id="Iv1.testclient",
        github_client_secret="",
        session_secret="test-session-secret",
        github_api_url="https://api.github.test",
        github_oauth_url="https://github.test",
        cors_allow_origins=["electron://issuedesk"],
    )


@pytest.fixture
def installation_data():
    """Factory for raw installation payloads as the platform returns them."""

    def make(installation_id=1, login="octo-org", account_type="Organization", **overrides):
        data = {
            "id": installation_id,
            "account": {
                "id": 1000 + installation_id,
                "login": login,
                "type": account_type,
                "avatar_url": AVATAR,
            },
            "repository_selection": "all",
            "permissions": {"issues": "write", "metadata": "read"},
        }
        data.update(overrides)
        return data

    return make


@pytest.fixture
def user_data():
    return {
        "id": 42,
        "login": "octocat",
        "name": "The Octocat",
        "avatar_url": AVATAR,
        "email": "octocat@example.com",
    }


@pytest.fixture
def token_data():
    """Factory for installation token payloads expiring ``minutes`` from now."""

    def make(token="ghs_" + "a" * 36, minutes=60):
        return {
            "token": token,
            "expires_at": (datetime.now(timezone.utc) + timedelta(minutes=minutes)).isoformat(),
            "permissions": {"issues": "write"},
            "repository_selection": "all",
        }

    return make


@pytest.fixture
def make_session(installation_data, user_data, token_data):
    """Factory for UserSession objects, optionally with a selected installation."""

    def make(installation_ids=(1, 2), current=None, token_minutes=60, user_token="session-token"):
        installations = [
            Installation.model_validate(installation_data(i, login=f"org-{i}"))
            for i in installation_ids
        ]
        kwargs = {}
        if current is not None:
            kwargs["current_installation"] = next(i for i in installations if i.id == current)
            kwargs["installation_token"] = InstallationToken.model_validate(
                token_data(token=f"ghs_{current:036d}", minutes=token_minutes)
            )
        return UserSession(
            user_token=user_token,
            user=User.model_validate(user_data),
            installations=installations,
            **kwargs,
        )

    return make


@pytest.fixture
def store(tmp_path):
    """Session store using a key file instead of the OS credential vault."""
    return EncryptedSessionStore(storage_path=tmp_path, use_keyring=False)
