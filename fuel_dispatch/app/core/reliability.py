"""
Reliability utilities.

Includes the Circuit Breaker pattern used around the event bus and a single
retry helper for idempotent reads.
"""

import time
import logging
from typing import Awaitable, Callable, Any, TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitOpenError(Exception):
    pass


class CircuitBreaker:
    """
    Simple Circuit Breaker implementation.
    If 'failure_threshold' failures occur, the circuit opens and rejects
    calls for 'reset_timeout' seconds, then lets one trial call through.
    """
    def __init__(self, failure_threshold: int = 5, reset_timeout: int = 60):
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.failures = 0
        self.last_failure_time = 0
        self.state = "CLOSED"  # CLOSED, OPEN, HALF_OPEN

    async def call(self, func: Callable, *args, **kwargs) -> Any:
        if self.state == "OPEN":
            if time.time() - self.last_failure_time > self.reset_timeout:
                self.state = "HALF_OPEN"
            else:
                raise CircuitOpenError("Circuit is OPEN")

        try:
            result = await func(*args, **kwargs)
        except Exception:
            self.record_failure()
            raise

        if self.state == "HALF_OPEN" or self.failures:
            self.reset_state()
        return result

    def record_failure(self):
        self.failures += 1
        self.last_failure_time = time.time()
        if self.state == "HALF_OPEN" or self.failures >= self.failure_threshold:
            self.state = "OPEN"

    def reset_state(self):
        self.failures = 0
        self.state = "CLOSED"


# Global instance for the Redis event fan-out
events_circuit_breaker = CircuitBreaker(failure_threshold=3, reset_timeout=30)


def _is_transient(exc: Exception) -> bool:
    if isinstance(exc, OperationalError):
        return True
    return isinstance(exc, DBAPIError) and bool(exc.connection_invalidated)


async def retry_read_once(func: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
    """
    Run an idempotent read, retrying exactly once on a transient store error.

    Never wrap write paths with this helper: a retried write could apply a
    balance change twice. When the first argument is a session it is rolled
    back before the retry.

    Raises:
        The second failure, or any non-transient error unchanged.
    """
    try:
        return await func(*args, **kwargs)
    except (OperationalError, DBAPIError) as e:
        if not _is_transient(e):
            raise
        logger.warning("Transient store error on read, retrying once: %s", e)
        if args and isinstance(args[0], AsyncSession):
            await args[0].rollback()
        return await func(*args, **kwargs)
