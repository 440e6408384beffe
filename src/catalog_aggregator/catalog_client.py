"""
Catalog Client for retrieving config source bodies.

This module provides the default async HTTP fetch capability used by the
fetch pipeline. Any object with a compatible ``fetch(url, timeout)``
coroutine can replace it.
"""

import time
from typing import Optional, Protocol, runtime_checkable
from urllib.parse import urlparse

import httpx

from .enums import FetchErrorCode
from .exceptions import SourceFetchError


@runtime_checkable
class Fetcher(Protocol):
    """Inbound HTTP capability: fetch raw bytes from a URL within a timeout."""

    async def fetch(self, url: str, timeout: float) -> bytes:
        ...


class CatalogClient:
    """
    Async HTTP client for config sources.

    Returns the response body for 2xx responses and raises SourceFetchError
    for everything else, with a code the retry manager can classify.
    """

    ACCEPT = "application/json,text/plain,*/*"

    def __init__(
        self,
        user_agent: str = "catalog-aggregator/0.1 ConfigLoader",
        max_body_bytes: int = 16 * 1024 * 1024,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize the catalog client.

        Args:
            user_agent: User-Agent header sent with every request
            max_body_bytes: Responses larger than this are rejected
            transport: Optional httpx transport replacing the network layer
        """
        self._user_agent = user_agent
        self._max_body_bytes = max_body_bytes
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "CatalogClient":
        self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                verify=True,
                follow_redirects=True,
                transport=self._transport,
                headers={"User-Agent": self._user_agent, "Accept": self.ACCEPT},
            )
        return self._client

    def _validate_url(self, url: str) -> None:
        parsed = urlparse(url)
        if parsed.scheme.lower() not in ("http", "https") or not parsed.netloc:
            raise SourceFetchError(
                code=FetchErrorCode.INVALID_URL.value,
                message=f"Config source URL must be http(s): {url}",
                details={"url": url, "scheme": parsed.scheme},
            )

    async def fetch(self, url: str, timeout: float) -> bytes:
        """
        Fetch a config source body.

        Args:
            url: Source URL
            timeout: Per-request timeout in seconds

        Returns:
            The raw response body

        Raises:
            SourceFetchError: On invalid URL, timeout, connection failure or non-2xx status
        """
        self._validate_url(url)
        client = self._ensure_client()
        start_time = time.perf_counter()

        try:
            async with client.stream("GET", url, timeout=httpx.Timeout(timeout)) as response:
                self._check_status(url, response.status_code)
                return await self._read_body(url, response)
        except httpx.TimeoutException:
            raise SourceFetchError(
                code=FetchErrorCode.TIMEOUT.value,
                message=f"Config source request timed out after {timeout}s",
                details={"url": url, "elapsed_ms": self._elapsed_ms(start_time)},
            )
        except httpx.HTTPError as e:
            raise SourceFetchError(
                code=FetchErrorCode.NETWORK_ERROR.value,
                message=f"Connection error: {e}",
                details={"url": url, "elapsed_ms": self._elapsed_ms(start_time)},
            )

    def _check_status(self, url: str, status_code: int) -> None:
        if status_code >= 500:
            raise SourceFetchError(
                code=FetchErrorCode.SERVER_ERROR.value,
                message=f"Config source server error: {status_code}",
                details={"url": url, "http_status_code": status_code},
            )
        if not 200 <= status_code < 300:
            raise SourceFetchError(
                code=FetchErrorCode.HTTP_ERROR.value,
                message=f"Unexpected HTTP status: {status_code}",
                details={"url": url, "http_status_code": status_code},
            )

    async def _read_body(self, url: str, response: httpx.Response) -> bytes:
        """Read the body, stopping as soon as it exceeds ``max_body_bytes``."""
        declared = response.headers.get("Content-Length")
        if declared is not None and declared.isdigit() and int(declared) > self._max_body_bytes:
            raise self._oversized(url, {"size": int(declared)})

        chunks = []
        received = 0
        async for chunk in response.aiter_bytes():
            received += len(chunk)
            if received > self._max_body_bytes:
                raise self._oversized(url, {"received_bytes": received})
            chunks.append(chunk)
        return b"".join(chunks)

    def _oversized(self, url: str, details: dict) -> SourceFetchError:
        return SourceFetchError(
            code=FetchErrorCode.HTTP_ERROR.value,
            message=f"Config source body exceeds {self._max_body_bytes} bytes",
            details={"url": url, **details},
        )

    def _elapsed_ms(self, start_time: float) -> float:
        return (time.perf_counter() - start_time) * 1000

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
