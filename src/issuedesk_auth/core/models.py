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
Session data model for GitHub App authentication.

These schemas validate data at runtime at every boundary: responses from
the issuance service, records read from the encrypted store and sessions
before they are written.
"""

from datetime import datetime, timezone
from typing import Annotated, Literal, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator, model_validator

RepositorySelection = Literal["all", "selected"]


def _require_https(value: str) -> str:
    if not value.startswith("https://"):
        raise ValueError("URL must use https")
    return value


HttpsUrl = Annotated[str, AfterValidator(_require_https)]


class Account(BaseModel):
    """GitHub account (user or organization) where the app is installed."""

    model_config = ConfigDict(extra="ignore")

    id: int = Field(gt=0)
    login: str = Field(min_length=1, max_length=39)
    type: Literal["User", "Organization"]
    avatar_url: HttpsUrl


class Installation(BaseModel):
    """One grant of the GitHub App onto an account or organization."""

    model_config = ConfigDict(extra="ignore")

    id: int = Field(gt=0)
    account: Account
    repository_selection: RepositorySelection
    permissions: dict[str, str]

    @field_validator("permissions")
    @classmethod
    def non_empty_permissions(cls, value: dict[str, str]) -> dict[str, str]:
        if not value:
            raise ValueError("permissions must have at least one entry")
        return value


class InstallationToken(BaseModel):
    """Short-lived access token scoped to a single installation."""

    model_config = ConfigDict(extra="ignore")

    token: str = Field(min_length=1)
    expires_at: datetime
    permissions: dict[str, str] = Field(default_factory=dict)
    repository_selection: RepositorySelection = "all"

    @field_validator("expires_at")
    @classmethod
    def ensure_aware(cls, value: datetime) -> datetime:
        # GitHub always answers in UTC
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class User(BaseModel):
    """Profile snapshot captured at authentication time."""

    model_config = ConfigDict(extra="ignore")

    id: int = Field(gt=0)
    login: str = Field(min_length=1, max_length=39)
    name: str = Field(min_length=1)
    avatar_url: HttpsUrl
    email: Optional[str] = None


class UserSession(BaseModel):
    """
    The single persisted session.

    ``current_installation`` and ``installation_token`` are set or cleared
    together; a token without its installation is rejected.
    """

    model_config = ConfigDict(extra="forbid")

    user_token: str = Field(min_length=1)
    user: User
    installations: list[Installation] = Field(default_factory=list)
    current_installation: Optional[Installation] = None
    installation_token: Optional[InstallationToken] = None

    @model_validator(mode="after")
    def token_requires_installation(self) -> "UserSession":
        if (self.current_installation is None) != (self.installation_token is None):
            raise ValueError("current_installation and installation_token must be set together")
        return self

    def find_installation(self, installation_id: int) -> Optional[Installation]:
        for installation in self.installations:
            if installation.id == installation_id:
                return installation
        return None


class DeviceAuthorization(BaseModel):
    """Device flow request. Lives for a single login attempt and is never persisted."""

    model_config = ConfigDict(extra="ignore")

    device_code: str = Field(min_length=1)
    user_code: str = Field(min_length=1)
    verification_uri: str = Field(min_length=1)
    expires_in: int = Field(gt=0)
    interval: int = Field(gt=0)
