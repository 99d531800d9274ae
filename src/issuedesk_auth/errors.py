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
Closed error taxonomy for the authentication core.

Every failure that crosses a boundary (HTTP response, local channel,
login notification) is one of these tagged errors and travels as the
structured ``{"code", "message", "retryable"}`` payload from ``to_dict()``.
"""

import logging
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """Wire-level error codes."""

    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    DEVICE_FLOW_EXPIRED = "DEVICE_FLOW_EXPIRED"
    DEVICE_FLOW_DENIED = "DEVICE_FLOW_DENIED"
    RATE_LIMITED = "RATE_LIMITED"
    UNAUTHORIZED = "UNAUTHORIZED"
    NOT_FOUND = "NOT_FOUND"
    INVALID_REQUEST = "INVALID_REQUEST"
    GITHUB_API_ERROR = "GITHUB_API_ERROR"
    LOGIN_IN_PROGRESS = "LOGIN_IN_PROGRESS"
    CANCELLED = "CANCELLED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class AuthError(Exception):
    """Base class for all tagged authentication errors."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    retryable: bool = False
    status_code: int = 500
    default_message: str = "Internal error"

    def __init__(
        self,
        message: str | None = None,
        *,
        retryable: bool | None = None,
        status_code: int | None = None,
    ):
        self.message = message or self.default_message
        super().__init__(self.message)
        if retryable is not None:
            self.retryable = retryable
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict[str, Any]:
        """Structured form used across process boundaries."""
        return {"code": self.code.value, "message": self.message, "retryable": self.retryable}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code.value}, message={self.message!r})"


class ConfigurationError(AuthError):
    """Missing or malformed service configuration (signing key, app id, ...)."""

    code = ErrorCode.CONFIGURATION_ERROR
    default_message = "Service is misconfigured"


class ValidationError(AuthError):
    """A session or payload failed schema validation."""

    code = ErrorCode.VALIDATION_ERROR
    status_code = 400
    default_message = "Invalid session data"


class NetworkError(AuthError):
    """Transport failure, timeout or unparsable response."""

    code = ErrorCode.NETWORK_ERROR
    retryable = True
    status_code = 502
    default_message = "Network error"


class DeviceFlowExpired(AuthError):
    code = ErrorCode.DEVICE_FLOW_EXPIRED
    status_code = 410
    default_message = "Device code expired. Please try again."


class DeviceFlowDenied(AuthError):
    code = ErrorCode.DEVICE_FLOW_DENIED
    status_code = 403
    default_message = "Access denied by user."


class RateLimited(AuthError):
    code = ErrorCode.RATE_LIMITED
    retryable = True
    status_code = 429
    default_message = "Rate limit exceeded"

    def __init__(self, message: str | None = None, *, retry_after: int | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class UnauthorizedError(AuthError):
    code = ErrorCode.UNAUTHORIZED
    status_code = 401
    default_message = "Invalid or expired session"


class NotFoundError(AuthError):
    code = ErrorCode.NOT_FOUND
    status_code = 404
    default_message = "Not found"


class InvalidRequestError(AuthError):
    code = ErrorCode.INVALID_REQUEST
    status_code = 400
    default_message = "Invalid request"


class GitHubApiError(AuthError):
    """Non-success response from the platform API."""

    code = ErrorCode.GITHUB_API_ERROR
    status_code = 502
    default_message = "GitHub API error"

    def __init__(self, message: str | None = None, *, upstream_status: int | None = None, **kwargs: Any):
        if "retryable" not in kwargs and upstream_status is not None:
            kwargs["retryable"] = upstream_status == 429 or upstream_status >= 500
        super().__init__(message, **kwargs)
        self.upstream_status = upstream_status


class LoginInProgressError(AuthError):
    code = ErrorCode.LOGIN_IN_PROGRESS
    status_code = 409
    default_message = "A login attempt is already in progress"


class LoginCancelled(AuthError):
    code = ErrorCode.CANCELLED
    default_message = "Login cancelled"


class InternalError(AuthError):
    code = ErrorCode.INTERNAL_ERROR


ERROR_TYPES: dict[ErrorCode, type[AuthError]] = {
    cls.code: cls
    for cls in (
        ConfigurationError,
        ValidationError,
        NetworkError,
        DeviceFlowExpired,
        DeviceFlowDenied,
        RateLimited,
        UnauthorizedError,
        NotFoundError,
        InvalidRequestError,
        GitHubApiError,
        LoginInProgressError,
        LoginCancelled,
        InternalError,
    )
}


def error_from_payload(payload: Any, status_code: int) -> AuthError:
    """
    Rebuild a tagged error from an HTTP error body.

    Args:
        payload: Decoded JSON body, expected ``{"error", "message", "retryable"}``
        status_code: HTTP status of the response

    Returns:
        The matching AuthError subclass, or NetworkError for unknown shapes
    """
    if not isinstance(payload, dict):
        return NetworkError(f"Unexpected response (HTTP {status_code})", status_code=status_code)

    message = payload.get("message") or f"Request failed (HTTP {status_code})"
    retryable = payload.get("retryable")
    try:
        code = ErrorCode(payload.get("error"))
    except ValueError:
        logger.debug(f"Unknown error code in response: {payload.get('error')!r}")
        return NetworkError(message, status_code=status_code)

    error_type = ERROR_TYPES[code]
    kwargs: dict[str, Any] = {"status_code": status_code}
    if isinstance(retryable, bool):
        kwargs["retryable"] = retryable
    return error_type(message, **kwargs)


def create_error_response(error: Exception, context: str) -> dict[str, Any]:
    """
    Build the channel response for a failed operation.

    Args:
        error: The exception that occurred
        context: Name of the operation that failed

    Returns:
        ``{"success": False, "error": {...}, "context": ...}``
    """
    if not isinstance(error, AuthError):
        error = InternalError(f"Unexpected error in {context}: {type(error).__name__}")
    return {"success": False, "error": error.to_dict(), "context": context}
