# clinic_booking/utils/retry.py
"""
Timeout and bounded-retry helpers for store calls.

The SQL store wraps each transaction with ``retry_transient``: the timeout
covers one store round trip and never the notification or reminder steps
that follow a commit. Store timeouts become TransientStoreError and are
retried a small, configured number of times before surfacing
``booking.transientFailure``. Semantic errors (SlotConflict,
DeadlineExceeded, ...) are never retried.
"""
import asyncio
from functools import wraps
from typing import Any, Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from clinic_booking.core.config import settings
from clinic_booking.core.errors import TransientStoreError
from clinic_booking.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


async def with_timeout(coro: Awaitable[T], timeout_seconds: Optional[float] = None) -> T:
    """
    Await ``coro`` for at most ``timeout_seconds``.

    Unlike a fallback-value timeout, a store call that runs out of time is a
    transient failure the caller may retry.
    """
    timeout_seconds = settings.STORE_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds
    try:
        return await asyncio.wait_for(coro, timeout=timeout_seconds)
    except asyncio.TimeoutError as e:
        logger.warning("store_call_timeout", timeout_seconds=timeout_seconds)
        raise TransientStoreError(f"store call timed out after {timeout_seconds}s") from e


def _log_retry(operation: str) -> Callable[[RetryCallState], None]:
    def before_sleep(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        logger.warning(
            "transient_failure_retry",
            operation=operation,
            attempt=state.attempt_number,
            error=str(exc) if exc else None,
        )
    return before_sleep


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    attempts: Optional[int] = None,
    timeout_seconds: Optional[float] = None,
    operation: str = "store_call",
    wait_multiplier: float = 0.05,
) -> T:
    """Run ``fn`` under a timeout, retrying TransientStoreError up to ``attempts`` times."""
    attempts = attempts or settings.STORE_RETRY_ATTEMPTS
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(max(1, attempts)),
        wait=wait_exponential(multiplier=wait_multiplier, max=1),
        retry=retry_if_exception_type(TransientStoreError),
        before_sleep=_log_retry(operation),
        reraise=True,
    ):
        with attempt:
            return await with_timeout(fn(), timeout_seconds)
    raise AssertionError("unreachable")  # pragma: no cover


def retry_transient(attempts: Optional[int] = None, operation: Optional[str] = None):
    """
    Decorator form of ``call_with_retry`` for async callables.

    Usage:
        @retry_transient(operation="list_slots")
        async def list_slots(self, start, end): ...

    ``attempts=1`` keeps the timeout but never repeats the call, for
    writes that are not idempotent.
    """
    def decorator(func: Callable[..., Awaitable[Any]]):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            return await call_with_retry(
                lambda: func(*args, **kwargs),
                attempts=attempts,
                operation=operation or func.__name__,
            )
        return wrapper
    return decorator
