# ballotledger/retry.py
import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from . import config
from .errors import AdapterError, AdapterErrorKind

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """
    Bounded retry for adapter calls.

    Only AdapterError UNREACHABLE/TIMEOUT is retried. Anything else (including a
    REJECTED adapter error) propagates on the first occurrence. When the bound
    is exhausted the last error is raised unchanged.
    """

    def __init__(
        self,
        max_attempts: int = config.RETRY_MAX_ATTEMPTS,
        delay: float = config.RETRY_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.delay = delay
        self._sleep = sleep

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        description: str,
        on_retryable_failure: Optional[Callable[[AdapterError], None]] = None,
    ) -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                return await operation()
            except AdapterError as e:
                if not e.retryable:
                    raise
                if on_retryable_failure is not None:
                    on_retryable_failure(e)
                if attempt >= self.max_attempts:
                    logger.error(f"{description} failed after {attempt} attempts: {e.message}")
                    raise
                logger.warning(f"Attempt {attempt} of {self.max_attempts} for {description} failed ({e.kind.value}), retrying")
                if self.delay > 0:
                    await self._sleep(self.delay)

    async def run_write(
        self,
        submit: Callable[[], Awaitable[T]],
        landed: Callable[[], Awaitable[Optional[T]]],
        description: str,
    ) -> T:
        """
        Bounded retry for a ledger write that is not safe to repeat.

        A TIMEOUT may hide a committed transaction, so every attempt after one
        first calls landed(). When that finds the earlier write on the ledger,
        its result is returned and nothing is resubmitted.
        """
        timed_out = False

        def note_failure(e: AdapterError):
            nonlocal timed_out
            if e.kind == AdapterErrorKind.TIMEOUT:
                timed_out = True

        async def attempt() -> T:
            if timed_out:
                found = await landed()
                if found is not None:
                    logger.info(f"{description} had already landed before its timeout")
                    return found
            return await submit()

        return await self.run(attempt, description, on_retryable_failure=note_failure)
