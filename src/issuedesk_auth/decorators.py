"""
Custom decorators for the IssueDesk auth channel
"""

import logging
from collections.abc import Callable
from functools import wraps
from typing import Any, TypeVar

from .core.security import CredentialSanitizer
from .errors import AuthError, create_error_response

logger = logging.getLogger(__name__)

T = TypeVar("T")


def handle_channel_errors(func: Callable[..., T]) -> Callable[..., T]:
    """
    Decorator to handle standard error patterns for channel operations.

    Successful results are wrapped as ``{"success": True, ...}``; errors are
    returned as structured dicts instead of raised.
    """

    @wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        operation = func.__name__
        try:
            result = await func(*args, **kwargs)  # type: ignore[misc]
        except AuthError as e:
            logger.warning(f"{operation} failed: {e.code.value}: {CredentialSanitizer.sanitize_error(e)}")
            return create_error_response(e, operation)
        except Exception as e:
            logger.exception(f"Unexpected error in {operation}")
            return create_error_response(e, operation)

        if isinstance(result, dict):
            return {"success": True, **result}
        return {"success": True}

    return wrapper  # type: ignore[return-value]
