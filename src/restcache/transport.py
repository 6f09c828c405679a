"""HTTP transport for request shapes."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

import httpx
import structlog

from restcache.errors import FetchError
from restcache.types import JSON, Method

logger = structlog.get_logger(__name__)


@runtime_checkable
class Transport(Protocol):
    """Performs one request and resolves with the parsed JSON body."""

    async def __call__(self, method: Method, url: str, body: Any = None) -> JSON:
        ...


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return f"HTTP {response.status_code}"


class HttpxTransport:
    """Async transport backed by ``httpx.AsyncClient``.

    Failures are reported as ``FetchError``; HTTP status and headers are not
    inspected beyond success or failure.
    """

    def __init__(
        self,
        *,
        base_url: str = "",
        headers: Mapping[str, str] | None = None,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url
        self._headers = {"Accept": "application/json", **(headers or {})}
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers=self._headers,
                timeout=self._timeout,
            )
        return self._client

    async def __call__(self, method: Method, url: str, body: Any = None) -> JSON:
        client = self._get_client()
        try:
            response = await client.request(
                method.upper(),
                url,
                json=body,
            )
        except httpx.HTTPError as exc:
            logger.warning("transport_error", method=method, url=url, error=str(exc))
            raise FetchError(str(exc) or type(exc).__name__) from exc

        if not response.is_success:
            raise FetchError(_error_message(response), status_code=response.status_code)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise FetchError(
                "JSON expected but not returned from API",
                status_code=response.status_code,
            ) from exc

    async def aclose(self) -> None:
        """Close the HTTP client if this transport created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


__all__ = ["HttpxTransport", "Transport"]
