"""RestCache - the cache client that owns the state container."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from types import TracebackType
from typing import Any
from weakref import WeakKeyDictionary

import structlog

from restcache.coordinator import FetchCoordinator, PendingFetch, SuccessHandler
from restcache.duration import now_ms, parse_duration
from restcache.errors import FetchError
from restcache.reducer import reduce
from restcache.schema import Entity, SchemaRegistry
from restcache.selectors import SchemaSelector, select_results
from restcache.shapes import RequestShape
from restcache.state import (
    Action,
    InvalidateAction,
    Meta,
    PurgeAction,
    ResetAction,
    State,
    initial_state,
)
from restcache.transport import HttpxTransport, Transport
from restcache.types import Duration, Params

logger = structlog.get_logger(__name__)

Listener = Callable[[State], None]


class Subscription:
    """Handle for a polling subscription; ``cancel()`` releases it."""

    __slots__ = ("_active", "_cache", "_fetch_key")

    def __init__(self, cache: RestCache, fetch_key: str) -> None:
        self._cache = cache
        self._fetch_key = fetch_key
        self._active = True

    @property
    def fetch_key(self) -> str:
        return self._fetch_key

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        if self._active:
            self._active = False
            self._cache._unsubscribe(self._fetch_key)


class _Poller:
    __slots__ = ("count", "task")

    def __init__(self, task: asyncio.Task[None]) -> None:
        self.task = task
        self.count = 0


class RestCache:
    """Normalized cache for REST resources.

    Owns the single state snapshot and applies actions strictly in dispatch
    order. Reads go through memoized selectors; misses and stale entries go
    through the single-flight coordinator.

    Usage:
        cache = RestCache(data_expiry_length="5m")
        article = await cache.resource(articles.detail_shape(), {"id": 5})
    """

    def __init__(
        self,
        *,
        transport: Transport | None = None,
        data_expiry_length: Duration = "60s",
        error_expiry_length: Duration = "1s",
        clock: Callable[[], float] | None = None,
        selector_cache_size: int = 256,
    ) -> None:
        if selector_cache_size < 1:
            raise ValueError("selector_cache_size must be at least 1")
        self._transport: Transport = transport or HttpxTransport()
        self._owns_transport = transport is None
        self._data_expiry_length = parse_duration(data_expiry_length)
        self._default_error_expiry_length = parse_duration(error_expiry_length)
        self._clock = clock or now_ms
        self._selector_cache_size = selector_cache_size
        self._state = initial_state()
        self._registry = SchemaRegistry()
        self._selectors: WeakKeyDictionary[RequestShape, SchemaSelector] = (
            WeakKeyDictionary()
        )
        self._listeners: list[Listener] = []
        self._pollers: dict[str, _Poller] = {}
        self._coordinator = FetchCoordinator(self.dispatch, clock=self._clock)

    @property
    def state(self) -> State:
        """Current snapshot. Treat it as immutable."""
        return self._state

    @property
    def registry(self) -> SchemaRegistry:
        return self._registry

    @property
    def coordinator(self) -> FetchCoordinator:
        return self._coordinator

    def dispatch(self, action: Action) -> State:
        """Apply one action and notify listeners if the snapshot changed."""
        state = reduce(self._state, action)
        if state is not self._state:
            self._state = state
            for listener in list(self._listeners):
                listener(state)
        return state

    def on_change(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` with every new snapshot. Returns an unsubscriber."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def cache(self, shape: RequestShape, params: Params | None) -> Any | None:
        """Select what is cached for ``params`` without ever fetching."""
        return self._selector(shape)(self._state, params, now=self._clock())

    def result_cache(
        self,
        shape: RequestShape,
        params: Params | None,
        defaults: Any = None,
    ) -> Any:
        """Raw normalized result (pagination fields included), or ``defaults``."""
        if params is None:
            return defaults
        results = select_results(self._state, shape.get_fetch_key(params))
        if results is None:
            return defaults
        return results

    def meta(self, shape: RequestShape, params: Params) -> Meta | None:
        return self._state.meta.get(shape.get_fetch_key(params))

    def read(
        self, shape: RequestShape, params: Params | None
    ) -> Any | PendingFetch[Any] | None:
        """Return the cached value, or a pending fetch the caller must await.

        A stale value is still returned (and refreshed in the background)
        unless the shape sets ``invalid_if_stale``. While a recorded error is
        inside its error window and nothing is cached, the error is raised.
        """
        if params is None:
            return None
        value = self.cache(shape, params)
        needs_fetch = self._needs_fetch(shape, params)
        if value is not None:
            if needs_fetch:
                logger.debug("stale_refresh", fetch_key=shape.get_fetch_key(params))
                self._start(shape, params)
            return value

        meta = self.meta(shape, params)
        if meta is not None and meta.error is not None and not needs_fetch:
            raise meta.error
        return self._start(shape, params)

    async def resource(self, shape: RequestShape, params: Params | None) -> Any | None:
        """Return the value for ``params``, fetching first when needed."""
        result = self.read(shape, params)
        if isinstance(result, PendingFetch):
            await result
            return self.cache(shape, params)
        return result

    async def resources(
        self, *requests: tuple[RequestShape, Params | None]
    ) -> list[Any]:
        """Like ``resource`` for several reads; fetches run concurrently."""
        results = [self.read(shape, params) for shape, params in requests]
        await asyncio.gather(
            *(result for result in results if isinstance(result, PendingFetch))
        )
        return [
            self.cache(shape, params) if isinstance(result, PendingFetch) else result
            for result, (shape, params) in zip(results, requests, strict=True)
        ]

    def retrieve(
        self, shape: RequestShape, params: Params | None
    ) -> PendingFetch[Any] | None:
        """Start a fetch only when the entry is missing or stale."""
        if params is None or not self._needs_fetch(shape, params):
            return None
        return self._start(shape, params)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def fetch(
        self,
        shape: RequestShape,
        params: Params,
        body: Any = None,
    ) -> Any:
        """Run any shape and return the response payload.

        Reads are coalesced per fetch key; mutations and deletes always hit
        the transport. Delete completion purges the deleted entity.
        """
        return await self._start(shape, params, body)

    def invalidate(self, shape: RequestShape, params: Params | None) -> None:
        """Mark the entry stale without dropping its data."""
        if params is None:
            return
        self.dispatch(InvalidateAction(shape.get_fetch_key(params)))

    # -------------------------------------------------------------------------
    # Polling
    # -------------------------------------------------------------------------

    def subscribe(self, shape: RequestShape, params: Params) -> Subscription:
        """Refetch every ``poll_frequency`` until the subscription is cancelled.

        Subscriptions to the same fetch key share one poller.
        """
        if shape.options.poll_frequency is None:
            raise ValueError("Shape has no poll_frequency configured")
        frequency = parse_duration(shape.options.poll_frequency)
        fetch_key = shape.get_fetch_key(params)

        poller = self._pollers.get(fetch_key)
        if poller is None:
            task = asyncio.get_running_loop().create_task(
                self._poll(shape, params, frequency)
            )
            task.add_done_callback(self._poll_done)
            poller = _Poller(task)
            self._pollers[fetch_key] = poller
            logger.debug("poll_started", fetch_key=fetch_key, frequency=frequency)
        poller.count += 1
        return Subscription(self, fetch_key)

    def _unsubscribe(self, fetch_key: str) -> None:
        poller = self._pollers.get(fetch_key)
        if poller is None:
            return
        poller.count -= 1
        if poller.count <= 0:
            del self._pollers[fetch_key]
            poller.task.cancel()
            logger.debug("poll_stopped", fetch_key=fetch_key)

    async def _poll(self, shape: RequestShape, params: Params, frequency: float) -> None:
        while True:
            try:
                await self._start(shape, params)
            except FetchError as exc:
                # Recorded in meta by the coordinator; keep polling.
                logger.info(
                    "poll_fetch_failed",
                    fetch_key=shape.get_fetch_key(params),
                    error=str(exc),
                )
            await asyncio.sleep(frequency / 1000)

    def _poll_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("poll_failed", error=str(exc), exc_info=exc)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def reset(self) -> None:
        """Drop all cached data and the schema registry."""
        self.dispatch(ResetAction())
        self._registry.clear()
        self._selectors.clear()

    async def aclose(self) -> None:
        """Stop pollers, wait for in-flight fetches, close the transport."""
        for poller in self._pollers.values():
            poller.task.cancel()
        self._pollers.clear()
        await self._coordinator.wait_all()
        if self._owns_transport and isinstance(self._transport, HttpxTransport):
            await self._transport.aclose()

    async def __aenter__(self) -> RestCache:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _selector(self, shape: RequestShape) -> SchemaSelector:
        selector = self._selectors.get(shape)
        if selector is None:
            self._registry.register(shape.schema)
            selector = SchemaSelector(
                shape.schema,
                shape.get_fetch_key,
                options=shape.options,
                max_entries=self._selector_cache_size,
            )
            self._selectors[shape] = selector
        return selector

    def _expiry_length(self, shape: RequestShape) -> float:
        if shape.options.data_expiry_length is None:
            return self._data_expiry_length
        return parse_duration(shape.options.data_expiry_length)

    def _error_expiry_length(self, shape: RequestShape) -> float:
        if shape.options.error_expiry_length is None:
            return self._default_error_expiry_length
        return parse_duration(shape.options.error_expiry_length)

    def _needs_fetch(self, shape: RequestShape, params: Params) -> bool:
        meta = self._state.meta.get(shape.get_fetch_key(params))
        return meta is None or meta.is_stale(self._clock())

    def _start(
        self,
        shape: RequestShape,
        params: Params,
        body: Any = None,
    ) -> PendingFetch[Any]:
        self._registry.register(shape.schema)
        fetch_key = shape.get_fetch_key(params)

        async def perform() -> Any:
            return await shape.fetch(self._transport, params, body)

        on_success: SuccessHandler | None = None
        if shape.type == "delete":
            on_success = self._purge_handler(shape, params, fetch_key)

        return self._coordinator.acquire(
            fetch_key,
            perform,
            schema=shape.schema,
            expiry_length=self._expiry_length(shape),
            error_expiry_length=self._error_expiry_length(shape),
            on_success=on_success,
            coalesce=shape.type == "read",
        )

    def _purge_handler(
        self, shape: RequestShape, params: Params, fetch_key: str
    ) -> SuccessHandler:
        schema = shape.schema

        def purge(payload: Any, date: float, fetched_at: float) -> None:
            if isinstance(schema, Entity):
                self.dispatch(PurgeAction(fetch_key, schema.key, schema.get_id(params)))
            else:
                self.dispatch(InvalidateAction(fetch_key))

        return purge


__all__ = ["RestCache", "Subscription"]
