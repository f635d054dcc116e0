"""
Reliability Utilities.

Whole-operation retry for lock contention on hot entities.
"""

import asyncio
from typing import Awaitable, Callable, TypeVar

from ledger_backend.app.core.config import settings
from ledger_backend.app.core.exceptions import LockTimeoutError
from ledger_backend.app.core.observability import logger

T = TypeVar("T")


class LockRetryPolicy:
    """
    Retries an operation that failed with LockTimeoutError.

    The operation must be a complete unit (open its own transaction) so a
    retry never replays a half-applied document.
    """
    def __init__(self, attempts: int = None, backoff_seconds: float = None):
        self.attempts = max(1, attempts if attempts is not None else settings.lock_retry_attempts)
        self.backoff_seconds = (
            backoff_seconds if backoff_seconds is not None else settings.lock_retry_backoff_seconds
        )

    async def call(self, func: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
        attempt = 1
        while True:
            try:
                return await func(*args, **kwargs)
            except LockTimeoutError as e:
                if attempt >= self.attempts:
                    raise
                logger.warning(
                    "Lock Timeout, Retrying",
                    extra={"attempt": attempt, "error_code": e.error_code, **e.details}
                )
                await asyncio.sleep(self.backoff_seconds * attempt)
                attempt += 1
