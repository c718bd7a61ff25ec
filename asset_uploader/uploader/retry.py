"""
Retry loop shared by chunk uploads and the completion call.

Failure classification:
- APIError with status 400-499: fatal, raised immediately
- APIError with status >= 500, httpx.TransportError, undecodable JSON body:
  retryable with exponential backoff until attempts are exhausted
- anything else: propagated unchanged
"""

import asyncio
import json
import logging
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

from asset_uploader.core.exceptions import APIError, UploadCancelledError
from asset_uploader.uploader.backoff import BackoffPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")
SleepFn = Callable[[float], Awaitable[None]]


def is_fatal(exc: BaseException) -> bool:
    """Client errors: retrying cannot help."""
    return isinstance(exc, APIError) and exc.is_client_error


def is_retryable(exc: BaseException) -> bool:
    """Server errors, network failures and garbled response bodies."""
    if isinstance(exc, APIError):
        return exc.is_server_error
    return isinstance(exc, (httpx.TransportError, json.JSONDecodeError))


class RetryRunner:
    """
    Runs one operation with up to max_retries + 1 attempts.

    A runner instance serves a single operation; `attempts` reports how many
    attempts were made once run() returns or raises.
    """

    def __init__(
        self,
        policy: BackoffPolicy,
        max_retries: int,
        sleep_fn: SleepFn = asyncio.sleep,
        cancel_event: Optional[asyncio.Event] = None,
        description: str = "request"
    ):
        self.policy = policy
        self.max_retries = max_retries
        self.sleep_fn = sleep_fn
        self.cancel_event = cancel_event
        self.description = description
        self.attempts = 0

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    async def run(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Execute operation, retrying retryable failures.

        Returns:
            The operation's result

        Raises:
            UploadCancelledError: If the cancel event fires before or between attempts
            Exception: The fatal error, or the last retryable error once exhausted
        """
        for attempt in range(self.max_retries + 1):
            if self.cancelled:
                raise UploadCancelledError(f"{self.description} cancelled")

            self.attempts = attempt + 1
            try:
                return await operation()
            except Exception as exc:
                if is_fatal(exc) or not is_retryable(exc):
                    raise
                if attempt >= self.max_retries:
                    logger.error(
                        f"{self.description} failed after {self.attempts} attempt(s): {exc}"
                    )
                    raise

                delay = self.policy.delay(attempt)
                logger.warning(
                    f"{self.description} attempt {self.attempts} failed ({exc}); "
                    f"retrying in {delay:.2f}s"
                )
                await self._wait(delay)

        # range() above always runs at least once and every path returns or raises
        raise AssertionError("unreachable")

    async def _wait(self, delay: float) -> None:
        """Sleep for delay, waking early if the cancel event fires."""
        if self.cancel_event is None:
            await self.sleep_fn(delay)
            return

        sleeper = asyncio.ensure_future(self.sleep_fn(delay))
        canceller = asyncio.ensure_future(self.cancel_event.wait())
        try:
            await asyncio.wait({sleeper, canceller}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, canceller):
                if not task.done():
                    task.cancel()

        if self.cancel_event.is_set():
            raise UploadCancelledError(f"{self.description} cancelled during backoff")
