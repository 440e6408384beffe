"""
Shared fakes and builders for the catalog aggregator tests.

Every collaborator with side effects (network, clock, blob storage, resolver
plugins) has an in-memory stand-in here.
"""

import asyncio
import json
from pathlib import Path
from typing import Any, Optional, Union

from catalog_aggregator.config import (
    CacheConfig,
    FetchConfig,
    PersistenceConfig,
    ResolutionConfig,
    RetryConfig,
    SystemConfig,
)
from catalog_aggregator.enums import FetchErrorCode
from catalog_aggregator.exceptions import SourceFetchError
from catalog_aggregator.models import ConfigSource, ResolvedStream


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeFetcher:
    """
    Serves canned bodies per URL.

    A response may be bytes, an exception instance (raised), or a list of
    those consumed one per call (the last one repeats).
    """

    def __init__(self, responses: Optional[dict[str, Any]] = None) -> None:
        self.responses: dict[str, Any] = dict(responses or {})
        self.delays: dict[str, float] = {}
        self.calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    def set(self, url: str, response: Any) -> None:
        self.responses[url] = response

    async def fetch(self, url: str, timeout: float) -> bytes:
        self.calls.append(url)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            delay = self.delays.get(url, 0.0)
            await asyncio.sleep(delay)
            response = self.responses.get(url)
            if isinstance(response, list):
                response = response.pop(0) if len(response) > 1 else response[0]
            if response is None:
                raise SourceFetchError(
                    code=FetchErrorCode.HTTP_ERROR.value,
                    message="Unexpected HTTP status: 404",
                    details={"url": url, "http_status_code": 404},
                )
            if isinstance(response, Exception):
                raise response
            return response
        finally:
            self.in_flight -= 1

    def call_count(self, url: str) -> int:
        return sum(1 for called in self.calls if called == url)


class MemoryBlobStore:
    """BlobStore kept in a dict; blobs pass through JSON like the real store."""

    def __init__(self) -> None:
        self.blobs: dict[str, str] = {}
        self.saves = 0

    def load(self, name: str) -> Optional[dict]:
        raw = self.blobs.get(name)
        return json.loads(raw) if raw is not None else None

    def save(self, name: str, data: dict) -> None:
        self.saves += 1
        self.blobs[name] = json.dumps(data)


class FakeResolver:
    """
    Resolver plugin stand-in.

    ``behavior`` is one of "timeout" (never finishes in time), "none"
    (no match), "error" (raises) or a ResolvedStream to return.
    """

    def __init__(self, behavior: Union[str, ResolvedStream], delay: float = 0.0) -> None:
        self.behavior = behavior
        self.delay = delay
        self.calls = 0

    async def resolve(self, entry, hint):
        self.calls += 1
        if self.behavior == "timeout":
            await asyncio.sleep(3600)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.behavior == "none":
            return None
        if self.behavior == "error":
            raise RuntimeError("resolver crashed")
        return self.behavior


def http_error(code: FetchErrorCode = FetchErrorCode.HTTP_ERROR) -> SourceFetchError:
    return SourceFetchError(code=code.value, message=f"simulated {code.value}")


def site(key: str, name: Optional[str] = None, type_code: int = 0, **extra: Any) -> dict:
    """A raw site object as it appears in a catalog body."""
    raw = {
        "key": key,
        "name": name or key.upper(),
        "type": type_code,
        "api": f"https://api.example/{key}",
    }
    raw.update(extra)
    return raw


def catalog_body(sites: list[dict], **extra: Any) -> bytes:
    data = {"sites": sites}
    data.update(extra)
    return json.dumps(data).encode("utf-8")


def make_source(
    source_id: str,
    priority: int = 0,
    is_primary: bool = False,
    enabled: bool = True,
    url: Optional[str] = None,
) -> ConfigSource:
    return ConfigSource(
        id=source_id,
        url=url or f"https://{source_id}.example/config.json",
        name=source_id,
        priority=priority,
        enabled=enabled,
        is_primary=is_primary,
    )


def fast_fetch_config(timeout: float = 1.0, max_retries: int = 0) -> FetchConfig:
    return FetchConfig(
        timeout_seconds=timeout,
        retry=RetryConfig(
            max_retries=max_retries,
            base_delay_seconds=0.001,
            max_delay_seconds=0.002,
        ),
    )


def make_config(
    timeout: float = 1.0,
    attempt_timeout: float = 0.05,
    directory_ttl: float = 600.0,
    fragment_ttl: float = 1800.0,
) -> SystemConfig:
    return SystemConfig(
        persistence=PersistenceConfig(
            state_dir=Path("/nonexistent/catalog-aggregator-tests"),
            hmac_secret="test-secret",
        ),
        fetch=fast_fetch_config(timeout),
        cache=CacheConfig(
            fragment_ttl_seconds=fragment_ttl,
            directory_ttl_seconds=directory_ttl,
        ),
        resolution=ResolutionConfig(attempt_timeout_seconds=attempt_timeout),
    )
