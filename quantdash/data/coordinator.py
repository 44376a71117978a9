"""Request coordination — in-flight deduplication, retry and cancellation.

Concurrent callers asking for the same key share one upstream request.
Each upstream request is retried on retryable ``DataFetchError`` kinds
with a fixed backoff schedule; non-retryable kinds fail immediately.  Any
other exception raised by a fetch is classified from its message first,
usually as ``unknown``, so callers only ever see ``DataFetchError``.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Hashable, Optional, TypeVar

from quantdash.data.errors import DataFetchError, RequestCancelled, error_from_message

logger = logging.getLogger("quantdash")

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff delays (seconds) between attempts; one retry per delay."""

    delays: tuple[float, ...] = (1.0, 3.0)

    @property
    def max_retries(self) -> int:
        return len(self.delays)


class CancellationToken:
    """Marks a caller's request as abandoned.

    A cancelled caller never receives a result; the shared upstream request
    keeps running for any other waiters.
    """

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise RequestCancelled("request was abandoned by its caller")


class RequestCoordinator:
    """Per-key in-flight request map with retry.

    Args:
        retry_policy: Backoff schedule for retryable failures.
        sleep: Awaitable sleep function; injectable for tests.
    """

    def __init__(
        self,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep
        self._inflight: dict[Hashable, asyncio.Future] = {}

    # ── Queries ──────────────────────────────────────────────────────────

    def is_inflight(self, key: Hashable) -> bool:
        return key in self._inflight

    def __len__(self) -> int:
        return len(self._inflight)

    # ── Requests ─────────────────────────────────────────────────────────

    async def run(
        self,
        key: Hashable,
        fetch: Callable[[], Awaitable[T]],
        *,
        force: bool = False,
        token: Optional[CancellationToken] = None,
        on_success: Optional[Callable[[T], None]] = None,
    ) -> T:
        """Return the result of *fetch* for *key*, sharing in-flight requests.

        Args:
            key: Deduplication key.
            fetch: Zero-argument coroutine factory performing one attempt.
            force: Start a fresh request even if one is already in flight.
            token: Caller's cancellation token, checked before starting and
                after the result arrives.
            on_success: Called once with the result when a new request
                succeeds, even if every caller has since been cancelled.
                Never called for a failed request.

        Raises:
            DataFetchError: The terminal classified error once retries are
                exhausted (or immediately for non-retryable kinds).
            RequestCancelled: If *token* was cancelled.
        """
        if token is not None:
            token.raise_if_cancelled()

        pending = self._inflight.get(key)
        if pending is None or force:
            pending = asyncio.ensure_future(self._fetch_with_retry(key, fetch, on_success))
            self._inflight[key] = pending
            pending.add_done_callback(lambda fut, k=key: self._settle(k, fut))
        else:
            logger.debug("Joining in-flight request for %s", key)

        # Shield so one caller being cancelled does not cancel the others.
        result = await asyncio.shield(pending)
        if token is not None:
            token.raise_if_cancelled()
        return result

    def _settle(self, key: Hashable, future: asyncio.Future) -> None:
        if self._inflight.get(key) is future:
            del self._inflight[key]
        # Every waiter may have been cancelled; mark the failure as retrieved.
        if not future.cancelled():
            future.exception()

    async def _fetch_with_retry(
        self,
        key: Hashable,
        fetch: Callable[[], Awaitable[T]],
        on_success: Optional[Callable[[T], None]] = None,
    ) -> T:
        attempt = 0
        while True:
            try:
                result = await fetch()
            except DataFetchError as exc:
                error = exc
                cause = None
            except Exception as exc:
                # Malformed payloads and parser failures surface as raw errors.
                error = error_from_message(str(exc) or type(exc).__name__)
                cause = exc
                logger.warning("Fetch %s raised %s: %s", key, type(exc).__name__, exc)
            else:
                if on_success is not None:
                    on_success(result)
                return result

            if not error.retryable:
                logger.warning("Fetch %s failed (%s), not retryable", key, error.kind.value)
                raise error from cause
            if attempt >= self._retry_policy.max_retries:
                logger.error(
                    "Fetch %s failed (%s) after %d retries",
                    key, error.kind.value, attempt,
                )
                raise error from cause
            delay = self._retry_policy.delays[attempt]
            attempt += 1
            logger.warning(
                "Fetch %s failed (%s) — retry %d/%d in %.1fs",
                key, error.kind.value, attempt,
                self._retry_policy.max_retries, delay,
            )
            await self._sleep(delay)

    def clear(self) -> None:
        """Forget in-flight requests (running requests are left to finish)."""
        self._inflight.clear()
