"""
Cache Layer for the catalog aggregator.

Memoizes fragments and the aggregated directory with a time-to-live.
Rebuilds are single-flighted per key. When a rebuild fails and a previous
payload exists, that payload is served flagged as stale instead of
propagating the error. Registered keys are persisted to a blob store so the
stale fallback survives restarts.
"""

import asyncio
import time
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Optional

from .audit_logger import AuditLogger, ComponentLogging
from .exceptions import PersistenceError
from .models import CacheEntry
from .state_store import BlobStore


@dataclass
class CacheStatistics:
    """Counters for cache lookups."""

    hits: int = 0
    misses: int = 0
    stale_serves: int = 0
    rebuilds: int = 0

    @property
    def hit_rate(self) -> float:
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else 0.0


@dataclass
class _Flight:
    task: asyncio.Future
    waiters: int = 0


class SingleFlight:
    """
    Shares one running task per key between concurrent callers.

    A cancelled caller only stops its own wait. The shared task is cancelled
    once no caller is waiting on it any more.
    """

    def __init__(self) -> None:
        self._flights: dict[str, _Flight] = {}

    def __contains__(self, key: str) -> bool:
        return key in self._flights

    async def run(self, key: str, factory: Callable[[], Awaitable[Any]]) -> Any:
        """Await the task running for ``key``, starting it from ``factory`` if none is."""
        flight = self._flights.get(key)
        if flight is None:
            flight = _Flight(task=asyncio.ensure_future(factory()))
            self._flights[key] = flight
            flight.task.add_done_callback(lambda done: self._forget(key, flight))

        flight.waiters += 1
        try:
            return await asyncio.shield(flight.task)
        finally:
            flight.waiters -= 1
            if flight.waiters == 0 and not flight.task.done():
                self._forget(key, flight)
                flight.task.cancel()

    def _forget(self, key: str, flight: _Flight) -> None:
        if self._flights.get(key) is flight:
            del self._flights[key]


@dataclass
class _PersistentKey:
    encode: Callable[[Any], dict]
    decode: Callable[[dict], Any]


class CacheLayer(ComponentLogging):
    """TTL cache with single-flight rebuilds and stale fallback."""

    COMPONENT = "CacheLayer"

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        store: Optional[BlobStore] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initialize the cache.

        Args:
            clock: Returns the current time in epoch seconds
            store: Optional blob store for persistent keys
            logger: Optional audit logger
        """
        self._clock = clock
        self._store = store
        self._logger = logger
        self._entries: dict[str, CacheEntry] = {}
        self._invalidated: set[str] = set()
        self._flights = SingleFlight()
        self._persistent: dict[str, _PersistentKey] = {}
        self.stats = CacheStatistics()

    def register_persistent(
        self,
        key: str,
        encode: Callable[[Any], dict],
        decode: Callable[[dict], Any],
    ) -> None:
        """Persist ``key`` to the blob store whenever it is rebuilt or put."""
        self._persistent[key] = _PersistentKey(encode, decode)

    def restore(self) -> list[str]:
        """
        Load every registered persistent key from the blob store.

        Restored entries keep their original ``stored_at``, so an old
        snapshot is already expired and only serves as stale fallback.

        Returns:
            Keys that were restored
        """
        if self._store is None:
            return []

        restored = []
        for key, codec in self._persistent.items():
            try:
                blob = self._store.load(key)
                if blob is None:
                    continue
                payload = codec.decode(blob["payload"])
                entry = CacheEntry(
                    key=key,
                    payload=payload,
                    stored_at=float(blob["stored_at"]),
                    ttl=float(blob["ttl"]),
                )
            except (PersistenceError, KeyError, TypeError, ValueError) as e:
                self._log_error(f"Failed to restore cache entry {key}", error=e)
                continue
            self._entries[key] = entry
            restored.append(key)

        if restored:
            self._log_info("Restored cache entries", {"keys": restored})
        return restored

    def peek(self, key: str) -> Optional[CacheEntry]:
        """Return the current entry for ``key`` (live or not) without rebuilding."""
        return self._entries.get(key)

    def put(self, key: str, payload: Any, ttl: float) -> CacheEntry:
        entry = CacheEntry(key=key, payload=payload, stored_at=self._clock(), ttl=ttl)
        self._entries[key] = entry
        self._invalidated.discard(key)
        self._persist(entry)
        return entry

    def invalidate(self, key: str) -> None:
        """Force the next ``get`` to rebuild; the old payload stays as stale fallback."""
        if key in self._entries:
            self._invalidated.add(key)

    def invalidate_prefix(self, prefix: str) -> None:
        for key in self._entries:
            if key.startswith(prefix):
                self._invalidated.add(key)

    def discard(self, key: str) -> None:
        """Drop an entry entirely, including its stale fallback."""
        self._entries.pop(key, None)
        self._invalidated.discard(key)

    def clear(self) -> None:
        self._entries.clear()
        self._invalidated.clear()

    def is_live(self, key: str) -> bool:
        entry = self._entries.get(key)
        return (
            entry is not None
            and key not in self._invalidated
            and entry.is_live(self._clock())
        )

    async def get(
        self,
        key: str,
        producer: Callable[[], Awaitable[Any]],
        ttl: float,
    ) -> CacheEntry:
        """
        Return a live entry, rebuilding it through ``producer`` when needed.

        Concurrent callers for the same key share a single rebuild. Cancelling
        one caller leaves the rebuild running for the others.

        Returns:
            The live entry, or the previous entry flagged stale if the rebuild failed

        Raises:
            Exception: Whatever the producer raised, when no previous entry exists
        """
        if self.is_live(key):
            self.stats.hits += 1
            return self._entries[key]

        self.stats.misses += 1
        return await self._flights.run(key, lambda: self._rebuild(key, producer, ttl))

    async def _rebuild(
        self,
        key: str,
        producer: Callable[[], Awaitable[Any]],
        ttl: float,
    ) -> CacheEntry:
        self.stats.rebuilds += 1
        try:
            payload = await producer()
        except Exception as e:
            previous = self._entries.get(key)
            if previous is None:
                raise
            self.stats.stale_serves += 1
            self._log_warn(
                f"Rebuild failed, serving stale entry: {key}",
                {
                    "key": key,
                    "stored_at": previous.stored_at,
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                },
            )
            return replace(previous, stale=True)

        return self.put(key, payload, ttl)

    def _persist(self, entry: CacheEntry) -> None:
        codec = self._persistent.get(entry.key)
        if codec is None or self._store is None:
            return
        try:
            self._store.save(entry.key, {
                "stored_at": entry.stored_at,
                "ttl": entry.ttl,
                "payload": codec.encode(entry.payload),
            })
        except PersistenceError as e:
            self._log_error(f"Failed to persist cache entry {entry.key}", error=e)
