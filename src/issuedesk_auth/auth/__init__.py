"""
Issuance service security primitives.

- AppAssertionSigner: RS256 GitHub App JWTs
- SessionSealer: stateless, time-bounded session tokens
- RateLimiter: per-user sliding window
- log_security_event: structured security audit log
"""

from .app_jwt import AppAssertionSigner, load_private_key
from .rate_limit import RateLimiter, RateLimitResult
from .security_log import SecurityEventType, log_security_event
from .sessions import BackendSession, SessionSealer

__all__ = [
    "AppAssertionSigner",
    "BackendSession",
    "RateLimitResult",
    "RateLimiter",
    "SecurityEventType",
    "SessionSealer",
    "load_private_key",
    "log_security_event",
]
