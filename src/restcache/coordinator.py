"""Single-flight fetch coordination.

At most one fetch runs per fetch key. Concurrent callers get the same
``PendingFetch`` handle; its settlement is dispatched into the cache as a
receive or receive-error action before any waiter resumes.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Generator
from typing import Any, Generic, TypeVar

import structlog

from restcache.duration import now_ms
from restcache.errors import FetchError
from restcache.state import Action, ReceiveAction, ReceiveErrorAction, RequestAction

logger = structlog.get_logger(__name__)

T = TypeVar("T")

Dispatch = Callable[[Action], Any]
Clock = Callable[[], float]
SuccessHandler = Callable[[Any, float, float], None]


class PendingFetch(Generic[T]):
    """Awaitable handle on one in-flight fetch.

    Awaiting shields the underlying task: a cancelled waiter stops waiting
    but the fetch runs to completion and still updates the cache.
    """

    __slots__ = ("_fetch_key", "_task", "_waiters")

    def __init__(self, fetch_key: str) -> None:
        self._fetch_key = fetch_key
        self._task: asyncio.Task[T] | None = None
        self._waiters = 0

    @property
    def fetch_key(self) -> str:
        return self._fetch_key

    @property
    def waiters(self) -> int:
        """Number of callers currently awaiting this fetch."""
        return self._waiters

    @property
    def task(self) -> asyncio.Task[T]:
        if self._task is None:
            raise RuntimeError(f"Fetch for {self._fetch_key!r} has not started")
        return self._task

    def done(self) -> bool:
        return self.task.done()

    def result(self) -> T:
        return self.task.result()

    async def _wait(self) -> T:
        self._waiters += 1
        try:
            return await asyncio.shield(self.task)
        finally:
            self._waiters -= 1

    def __await__(self) -> Generator[Any, None, T]:
        return self._wait().__await__()

    def __repr__(self) -> str:
        return f"PendingFetch({self._fetch_key!r}, waiters={self._waiters})"


class FetchCoordinator:
    """Owns the fetch key -> pending fetch table."""

    def __init__(self, dispatch: Dispatch, *, clock: Clock | None = None) -> None:
        self._dispatch = dispatch
        self._clock = clock or now_ms
        self._in_flight: dict[str, PendingFetch[Any]] = {}
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def pending(self, fetch_key: str) -> PendingFetch[Any] | None:
        return self._in_flight.get(fetch_key)

    def acquire(
        self,
        fetch_key: str,
        perform_fetch: Callable[[], Awaitable[T]],
        *,
        schema: Any,
        expiry_length: float,
        error_expiry_length: float,
        on_success: SuccessHandler | None = None,
        coalesce: bool = True,
    ) -> PendingFetch[T]:
        """Return the pending fetch for ``fetch_key``, starting one if needed.

        Args:
            fetch_key: Join key into the results and meta tables
            perform_fetch: Zero-argument coroutine factory hitting the transport
            schema: Schema the payload is normalized against on success
            expiry_length: Milliseconds the received data stays fresh
            error_expiry_length: Milliseconds a recorded error blocks refetching
            on_success: Replaces the default receive dispatch (used by deletes)
            coalesce: Share an existing in-flight fetch for the same key

        Must be called from a running event loop.
        """
        if coalesce:
            existing = self._in_flight.get(fetch_key)
            if existing is not None:
                logger.debug("fetch_coalesced", fetch_key=fetch_key)
                return existing

        self._dispatch(RequestAction(fetch_key))
        pending: PendingFetch[T] = PendingFetch(fetch_key)
        task = asyncio.get_running_loop().create_task(
            self._run(
                pending,
                perform_fetch,
                schema,
                expiry_length,
                error_expiry_length,
                on_success,
            )
        )
        pending._task = task
        if coalesce:
            self._in_flight[fetch_key] = pending
        self._tasks.add(task)
        task.add_done_callback(self._settled)
        return pending

    async def _run(
        self,
        pending: PendingFetch[T],
        perform_fetch: Callable[[], Awaitable[T]],
        schema: Any,
        expiry_length: float,
        error_expiry_length: float,
        on_success: SuccessHandler | None,
    ) -> T:
        fetch_key = pending.fetch_key
        fetched_at = self._clock()
        logger.debug("fetch_started", fetch_key=fetch_key)
        try:
            try:
                payload = await perform_fetch()
            except Exception as exc:
                error = exc if isinstance(exc, FetchError) else FetchError(
                    str(exc) or type(exc).__name__
                )
                date = self._clock()
                self._dispatch(
                    ReceiveErrorAction(
                        fetch_key=fetch_key,
                        error=error,
                        date=date,
                        error_expiry_length=error_expiry_length,
                        fetched_at=fetched_at,
                    )
                )
                logger.warning("fetch_failed", fetch_key=fetch_key, error=str(error))
                if error is exc:
                    raise
                raise error from exc

            date = self._clock()
            if on_success is not None:
                on_success(payload, date, fetched_at)
            else:
                self._dispatch(
                    ReceiveAction(
                        fetch_key=fetch_key,
                        schema=schema,
                        payload=payload,
                        date=date,
                        expires_at=date + expiry_length,
                        fetched_at=fetched_at,
                    )
                )
            logger.debug("fetch_settled", fetch_key=fetch_key)
            return payload
        finally:
            if self._in_flight.get(fetch_key) is pending:
                del self._in_flight[fetch_key]

    def _settled(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        # Waiters may all have walked away; mark the outcome as observed.
        if not task.cancelled():
            task.exception()

    async def wait_all(self) -> None:
        """Wait for every in-flight fetch to settle, ignoring outcomes."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()


__all__ = ["FetchCoordinator", "PendingFetch"]
