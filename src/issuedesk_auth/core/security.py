"""
Security utilities for sanitizing sensitive information from logs and error messages.
"""

import re
from typing import Any


class CredentialSanitizer:
    """Sanitizer for GitHub credentials and other sensitive data."""

    # Patterns for the credential formats that flow through this package
    PATTERNS = {
        "github_token": re.compile(r"\b(?:ghp|gho|ghu|ghs|ghr)_[A-Za-z0-9]{20,}\b"),
        "github_pat": re.compile(r"\bgithub_pat_[A-Za-z0-9_]{20,}\b"),
        "jwt": re.compile(r"\beyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+"),
        "private_key": re.compile(
            r"-----BEGIN [A-Z ]*PRIVATE KEY-----.*?-----END [A-Z ]*PRIVATE KEY-----",
            re.DOTALL,
        ),
        "authorization_header": re.compile(
            r"(?:Authorization|X-Session-Token)[\s:]+[\"\']?(?:Bearer\s+)?([^\s\"\']+)[\"\']?",
            re.IGNORECASE,
        ),
        "device_code": re.compile(r"device_code[\"\']?[\s=:]+[\"\']?([A-Za-z0-9]{20,})[\"\']?"),
    }

    # Sensitive field names to redact in structured data
    SENSITIVE_FIELDS = {
        "token",
        "secret",
        "private_key",
        "client_secret",
        "access_token",
        "session_token",
        "user_token",
        "device_code",
        "authorization",
        "x-session-token",
    }

    @classmethod
    def sanitize_string(cls, text: str) -> str:
        """
        Sanitize sensitive information from a string.

        Args:
            text: String to sanitize

        Returns:
            Sanitized string
        """
        if not text:
            return text

        sanitized = text
        for pattern_name, pattern in cls.PATTERNS.items():
            label = f"[REDACTED_{pattern_name.upper()}]"
            if pattern.groups:
                sanitized = pattern.sub(
                    lambda m, label=label: m.group(0).replace(m.group(1), label), sanitized
                )
            else:
                sanitized = pattern.sub(label, sanitized)

        return sanitized

    @classmethod
    def sanitize_dict(cls, data: dict[str, Any], max_depth: int = 10) -> dict[str, Any]:
        """
        Recursively sanitize sensitive fields in a dictionary.

        Args:
            data: Dictionary to sanitize
            max_depth: Maximum recursion depth

        Returns:
            Sanitized dictionary
        """
        if max_depth <= 0:
            return {"error": "Max recursion depth reached"}

        sanitized: dict[str, Any] = {}
        for key, value in data.items():
            lowered = str(key).lower()
            if isinstance(value, dict):
                sanitized[key] = cls.sanitize_dict(value, max_depth - 1)
            elif isinstance(value, list):
                sanitized[key] = [
                    cls.sanitize_dict(item, max_depth - 1) if isinstance(item, dict) else item
                    for item in value
                ]
            elif any(sensitive in lowered for sensitive in cls.SENSITIVE_FIELDS):
                sanitized[key] = "[REDACTED]"
            elif isinstance(value, str):
                sanitized[key] = cls.sanitize_string(value)
            else:
                sanitized[key] = value

        return sanitized

    @classmethod
    def sanitize_error(cls, error: Exception) -> str:
        """Sanitize an exception message."""
        return cls.sanitize_string(str(error))


def mask_token(token: str | None, visible: int = 4) -> str:
    """Short preview of a secret for log lines, e.g. ``ghs_...``."""
    if not token:
        return "<none>"
    if len(token) <= visible * 2:
        return "***"
    return f"{token[:visible]}..."
