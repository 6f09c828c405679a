"""Tests for the httpx transport using mocked HTTP responses."""

import json
from collections.abc import AsyncIterator

import httpx
import pytest
import respx

from restcache import FetchError, HttpxTransport, Resource, RestCache, Transport


@pytest.fixture
async def http_transport() -> AsyncIterator[HttpxTransport]:
    """Create an HttpxTransport and close it after the test."""
    transport = HttpxTransport(headers={"Authorization": "Bearer token"})
    yield transport
    await transport.aclose()


class TestHttpxTransport:
    """Tests for HttpxTransport with mocked responses."""

    @respx.mock
    async def test_get_returns_json(self, http_transport: HttpxTransport) -> None:
        """Test that a JSON body is parsed."""
        route = respx.get("http://test.com/article/5").mock(
            return_value=httpx.Response(200, json={"id": 5, "title": "hi"})
        )

        assert await http_transport("get", "http://test.com/article/5") == {
            "id": 5,
            "title": "hi",
        }
        request = route.calls[0].request
        assert request.headers["accept"] == "application/json"
        assert request.headers["authorization"] == "Bearer token"

    @respx.mock
    async def test_body_sent_as_json(self, http_transport: HttpxTransport) -> None:
        """Test that the request body is encoded as JSON."""
        route = respx.post("http://test.com/article/").mock(
            return_value=httpx.Response(201, json={"id": 9, "title": "new"})
        )

        await http_transport("post", "http://test.com/article/", {"title": "new"})

        assert json.loads(route.calls[0].request.content) == {"title": "new"}

    @respx.mock
    async def test_error_status_raises(self, http_transport: HttpxTransport) -> None:
        """Test that a non-success status becomes a FetchError."""
        respx.get("http://test.com/article/5").mock(
            return_value=httpx.Response(404, json={"error": "Not found"})
        )

        with pytest.raises(FetchError, match="Not found") as exc_info:
            await http_transport("get", "http://test.com/article/5")
        assert exc_info.value.status_code == 404

    @respx.mock
    async def test_error_status_without_body(self, http_transport: HttpxTransport) -> None:
        respx.get("http://test.com/article/5").mock(return_value=httpx.Response(500))

        with pytest.raises(FetchError, match="HTTP 500"):
            await http_transport("get", "http://test.com/article/5")

    @respx.mock
    async def test_network_error_raises(self, http_transport: HttpxTransport) -> None:
        """Test that connection failures become a FetchError."""
        respx.get("http://test.com/article/5").mock(
            side_effect=httpx.ConnectError("connection refused")
        )

        with pytest.raises(FetchError, match="connection refused") as exc_info:
            await http_transport("get", "http://test.com/article/5")
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

    @respx.mock
    async def test_empty_body_is_none(self, http_transport: HttpxTransport) -> None:
        respx.delete("http://test.com/article/5").mock(return_value=httpx.Response(204))

        assert await http_transport("delete", "http://test.com/article/5") is None

    @respx.mock
    async def test_non_json_body_raises(self, http_transport: HttpxTransport) -> None:
        respx.get("http://test.com/article/5").mock(
            return_value=httpx.Response(200, text="<html>oops</html>")
        )

        with pytest.raises(FetchError, match="JSON expected"):
            await http_transport("get", "http://test.com/article/5")

    async def test_injected_client_left_open(self) -> None:
        client = httpx.AsyncClient()
        transport = HttpxTransport(client=client)

        await transport.aclose()
        assert not client.is_closed
        await client.aclose()

    async def test_satisfies_protocol(self, http_transport: HttpxTransport) -> None:
        assert isinstance(http_transport, Transport)


class TestEndToEnd:
    """Tests for a cache talking HTTP through respx."""

    @respx.mock
    async def test_detail_fetch(self) -> None:
        route = respx.get("http://test.com/user/7").mock(
            return_value=httpx.Response(200, json={"id": 7, "username": "bob"})
        )
        users = Resource("http://test.com/user/")

        async with RestCache() as cache:
            first = await cache.resource(users.detail_shape(), {"id": 7})
            second = await cache.resource(users.detail_shape(), {"id": 7})

        assert first == {"id": 7, "username": "bob"}
        assert second is first
        assert route.call_count == 1
