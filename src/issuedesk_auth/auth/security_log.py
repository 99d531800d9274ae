"""
Security event logging for the issuance service.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from ..core.security import CredentialSanitizer

logger = logging.getLogger("issuedesk_auth.security")


class SecurityEventType(str, Enum):
    AUTH_ATTEMPT = "AUTH_ATTEMPT"
    AUTH_SUCCESS = "AUTH_SUCCESS"
    AUTH_FAILURE = "AUTH_FAILURE"
    TOKEN_GENERATED = "TOKEN_GENERATED"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    INSTALLATION_SELECTED = "INSTALLATION_SELECTED"
    SESSION_CREATED = "SESSION_CREATED"
    SESSION_EXPIRED = "SESSION_EXPIRED"
    RATE_LIMIT_HIT = "RATE_LIMIT_HIT"
    INVALID_REQUEST = "INVALID_REQUEST"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"


_LEVELS = {
    SecurityEventType.AUTH_FAILURE: logging.WARNING,
    SecurityEventType.RATE_LIMIT_HIT: logging.WARNING,
    SecurityEventType.INVALID_REQUEST: logging.WARNING,
    SecurityEventType.SESSION_EXPIRED: logging.WARNING,
    SecurityEventType.TOKEN_EXPIRED: logging.WARNING,
    SecurityEventType.CONFIGURATION_ERROR: logging.ERROR,
}


def log_security_event(
    event_type: SecurityEventType,
    user_id: int | str | None = None,
    ip: str | None = None,
    **details: Any,
) -> dict[str, Any]:
    """Emit one structured security event; details are sanitized first."""
    event: dict[str, Any] = {
        "type": event_type.value,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if user_id is not None:
        event["user_id"] = user_id
    if ip:
        event["ip"] = ip
    if details:
        event["details"] = CredentialSanitizer.sanitize_dict(details)

    level = _LEVELS.get(event_type, logging.INFO)
    logger.log(level, f"[SECURITY] {json.dumps(event, default=str)}")
    return event
