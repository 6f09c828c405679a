"""Shared pytest fixtures."""

import asyncio
import copy
from typing import Any

import pytest

from restcache import FetchError, RestCache
from restcache.resource import Resource


class FakeTransport:
    """Transport double that serves canned payloads and records calls."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, Any]] = []
        self.responses: dict[tuple[str, str], Any] = {}
        self.gate: asyncio.Event | None = None

    def reply(self, method: str, url: str, payload: Any) -> None:
        self.responses[(method, url)] = payload

    def fail(self, method: str, url: str, error: BaseException | None = None) -> None:
        self.responses[(method, url)] = error or FetchError("boom", status_code=500)

    def count(self, method: str, url: str) -> int:
        return sum(1 for m, u, _ in self.calls if (m, u) == (method, url))

    async def __call__(self, method: str, url: str, body: Any = None) -> Any:
        self.calls.append((method, url, body))
        if self.gate is not None:
            await self.gate.wait()
        response = self.responses[(method, url)]
        if isinstance(response, BaseException):
            raise response
        return copy.deepcopy(response)


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, now: int = 1_000_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(transport: FakeTransport, clock: FakeClock) -> RestCache:
    """RestCache with 10s data expiry and 5s error expiry."""
    return RestCache(
        transport=transport,
        clock=clock,
        data_expiry_length="10s",
        error_expiry_length="5s",
    )


@pytest.fixture
def users() -> Resource:
    return Resource("http://test.com/user/")


@pytest.fixture
def articles(users: Resource) -> Resource:
    """Articles whose ``author`` field embeds a user."""
    return Resource("http://test.com/article/", nested={"author": users})


@pytest.fixture
def paginated() -> Resource:
    """Articles served inside ``{"results": [...]}`` / ``{"data": ...}`` envelopes."""
    return Resource(
        "http://test.com/article-paginated/",
        schema_overrides={
            "list": lambda entity: {"results": [entity]},
            "detail": lambda entity: {"data": entity},
        },
    )
