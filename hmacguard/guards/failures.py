"""
Backend Failure Handling
========================
Runs a storage operation under a timeout and applies the guard's
fail-open / fail-closed policy when the backend misbehaves.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional, Type, TypeVar

import structlog
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from ..config import GuardPolicy
from ..exceptions import BackendUnavailableError

logger = structlog.get_logger(__name__)

T = TypeVar("T")

BACKEND_ERRORS = (
    RedisError,
    SQLAlchemyError,
    ConnectionError,
    OSError,
    asyncio.TimeoutError,
)


async def run_guarded(
    operation: Callable[[], Awaitable[T]],
    *,
    default: T,
    policy: GuardPolicy,
    timeout: float,
    context: str,
    error_class: Type[BackendUnavailableError] = BackendUnavailableError,
    log_data: Optional[Dict[str, Any]] = None,
) -> T:
    """
    Execute a backend operation with a timeout and failure policy.

    Args:
        operation: Zero-argument coroutine factory
        default: Value returned on failure when failing open
        policy: FAIL_OPEN returns default, FAIL_CLOSED raises
        timeout: Seconds before the call is abandoned
        context: Operation name for logs (e.g., "NonceGuard.exists")
        error_class: Exception raised when failing closed
        log_data: Extra, already-sanitized log fields

    Returns:
        The operation result, or default when failing open

    Raises:
        BackendUnavailableError: On backend fault under FAIL_CLOSED
    """
    try:
        return await asyncio.wait_for(operation(), timeout=timeout)
    except BACKEND_ERRORS as e:
        logger.error(
            "backend_operation_failed",
            context=context,
            policy=policy.value,
            error_type=type(e).__name__,
            error=str(e),
            **(log_data or {}),
        )
        if policy == GuardPolicy.FAIL_CLOSED:
            raise error_class(f"{error_class.component} unavailable", operation=context) from e
        return default
