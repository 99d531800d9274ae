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
Configuration module for IssueDesk authentication
Centralizes all configuration values and environment variables
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .errors import ConfigurationError

SESSION_TTL_SECONDS = 30 * 24 * 60 * 60


def _env_list(name: str, default: str) -> list[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


def _env_private_key() -> str:
    # Secrets managers often store PEM keys with escaped newlines
    return os.getenv("GITHUB_PRIVATE_KEY", "").replace("\\n", "\n")


@dataclass
class ServiceConfig:
    """Configuration for the credential issuance service"""

    # GitHub App credentials
    github_app_id: str = field(default_factory=lambda: os.getenv("GITHUB_APP_ID", ""))
    github_private_key: str = field(default_factory=_env_private_key)
    github_client_id: str = field(default_factory=lambda: os.getenv("GITHUB_CLIENT_ID", ""))
    github_client_secret: str = field(
        default_factory=lambda: os.getenv("GITHUB_CLIENT_SECRET", "")
    )

    # Key used to seal session tokens handed to desktop clients
    session_secret: str = field(default_factory=lambda: os.getenv("SESSION_SECRET", ""))
    session_ttl_seconds: int = SESSION_TTL_SECONDS

    # GitHub endpoints
    github_api_url: str = field(
        default_factory=lambda: os.getenv("GITHUB_API_URL", "https://api.github.com")
    )
    github_oauth_url: str = field(
        default_factory=lambda: os.getenv("GITHUB_OAUTH_URL", "https://github.com")
    )
    user_agent: str = "IssueDesk/1.0.0"

    # HTTP
    http_timeout: float = field(default_factory=lambda: float(os.getenv("HTTP_TIMEOUT", "15")))
    cors_allow_origins: list[str] = field(
        default_factory=lambda: _env_list("CORS_ALLOW_ORIGINS", "electron://issuedesk")
    )
    host: str = field(default_factory=lambda: os.getenv("AUTH_HTTP_HOST", "127.0.0.1"))
    port: int = field(default_factory=lambda: int(os.getenv("AUTH_HTTP_PORT", "8787")))

    # Per-user rate limiting on session endpoints
    rate_limit_requests: int = 5
    rate_limit_window: int = 60

    def missing_settings(self) -> list[str]:
        """Names of required environment variables that are not set."""
        required = {
            "GITHUB_APP_ID": self.github_app_id,
            "GITHUB_PRIVATE_KEY": self.github_private_key,
            "GITHUB_CLIENT_ID": self.github_client_id,
            "SESSION_SECRET": self.session_secret,
        }
        return [name for name, value in required.items() if not value]

    def validate(self) -> None:
        """
        Fail fast on missing configuration.

        Raises:
            ConfigurationError: If any required setting is missing
        """
        missing = self.missing_settings()
        if missing:
            raise ConfigurationError(
                f"Missing required environment variables: {', '.join(missing)}"
            )

    def to_dict(self) -> dict[str, Any]:
        """Convert config to dictionary (secrets excluded)"""
        return {
            "github_app_id": self.github_app_id,
            "github_client_id": self.github_client_id,
            "github_api_url": self.github_api_url,
            "github_oauth_url": self.github_oauth_url,
            "http_timeout": self.http_timeout,
            "cors_allow_origins": self.cors_allow_origins,
            "rate_limit_requests": self.rate_limit_requests,
            "rate_limit_window": self.rate_limit_window,
        }


@dataclass
class ClientConfig:
    """Configuration for the desktop-side login orchestrator"""

    worker_url: str = field(
        default_factory=lambda: os.getenv("AUTH_WORKER_URL", "http://localhost:8787")
    )
    store_dir: Path = field(
        default_factory=lambda: Path(
            os.getenv("AUTH_STORE_DIR", str(Path.home() / ".issuedesk"))
        )
    )
    http_timeout: float = field(default_factory=lambda: float(os.getenv("HTTP_TIMEOUT", "15")))

    # Device flow polling ceiling
    poll_timeout: float = 15 * 60

    # Use the OS credential vault for the store key
    use_keyring: bool = field(
        default_factory=lambda: os.getenv("AUTH_USE_KEYRING", "true").lower() == "true"
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert config to dictionary"""
        return {
            "worker_url": self.worker_url,
            "store_dir": str(self.store_dir),
            "http_timeout": self.http_timeout,
            "poll_timeout": self.poll_timeout,
            "use_keyring": self.use_keyring,
        }
