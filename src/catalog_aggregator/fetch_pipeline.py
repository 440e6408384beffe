"""
Fetch & Parse Pipeline for the catalog aggregator.

Retrieves the raw body of one config source, parses it into a
CatalogFragment, and records the outcome in the source's fetch history and
health status. Failures are raised as SourceFetchError / SourceParseError
for the caller to record; they never abort an aggregation cycle.
"""

import asyncio
import time
from collections import deque
from typing import Callable, Optional

from .audit_logger import AuditLogger, ComponentLogging
from .catalog_client import Fetcher
from .catalog_parser import CatalogParser
from .config import FetchConfig
from .enums import FetchErrorCode
from .exceptions import SourceFetchError
from .models import CatalogFragment, ConfigSource, FetchRecord
from .retry_manager import RetryManager
from .source_registry import SourceRegistry


class FetchPipeline(ComponentLogging):
    """Fetches and parses config sources, tracking per-source history."""

    COMPONENT = "FetchPipeline"

    def __init__(
        self,
        fetcher: Fetcher,
        registry: SourceRegistry,
        config: Optional[FetchConfig] = None,
        parser: Optional[CatalogParser] = None,
        clock: Callable[[], float] = time.time,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initialize the pipeline.

        Args:
            fetcher: HTTP capability used to retrieve source bodies
            registry: Registry whose health fields are updated after each fetch
            config: Fetch configuration (timeouts, retry, failure threshold)
            parser: Catalog parser (a default one is created if omitted)
            clock: Returns the current time in epoch seconds
            logger: Optional audit logger
        """
        self._fetcher = fetcher
        self._registry = registry
        self._config = config or FetchConfig()
        self._parser = parser or CatalogParser()
        self._clock = clock
        self._logger = logger
        self._retry_manager = RetryManager(self._config.retry, logger)
        self._history: dict[str, deque[FetchRecord]] = {}

    async def fetch_and_parse(
        self,
        source: ConfigSource,
        timeout: Optional[float] = None,
    ) -> CatalogFragment:
        """
        Fetch one source and parse it into a fragment.

        The fetch, its retries and the parse all share one overall timeout.

        Args:
            source: The config source to fetch
            timeout: Overall timeout in seconds (defaults to the configured one)

        Returns:
            The parsed fragment

        Raises:
            SourceFetchError: On network failure or timeout
            SourceParseError: On malformed content
        """
        timeout = timeout if timeout is not None else self._config.timeout_seconds
        start_time = time.perf_counter()

        try:
            fragment = await asyncio.wait_for(self._run(source, timeout), timeout)
        except asyncio.TimeoutError:
            error = SourceFetchError(
                code=FetchErrorCode.TIMEOUT.value,
                message=f"Config source did not complete within {timeout}s",
                details={"source_id": source.id, "url": source.url},
            )
            self._record_failure(source, error, start_time)
            raise error
        except Exception as e:
            self._record_failure(source, e, start_time)
            raise

        self._record(source.id, FetchRecord(
            timestamp=fragment.fetched_at,
            success=True,
            latency_ms=self._elapsed_ms(start_time),
        ))
        self._registry.record_fetch(
            source.id, True, fragment.fetched_at, self._config.failure_threshold
        )
        self._log_info(
            f"Loaded config source: {source.name}",
            {
                "source_id": source.id,
                "sites": len(fragment.sites),
                "parsers": len(fragment.resolvers),
                "skipped": fragment.skipped_entries,
                "latency_ms": round(self._elapsed_ms(start_time), 1),
            },
        )
        return fragment

    async def _run(self, source: ConfigSource, timeout: float) -> CatalogFragment:
        async def do_fetch() -> bytes:
            return await self._fetcher.fetch(source.url, timeout)

        result = await self._retry_manager.execute_with_retry(do_fetch)
        if not result.success:
            error = result.last_error
            if isinstance(error, SourceFetchError):
                raise error
            raise SourceFetchError(
                code=FetchErrorCode.NETWORK_ERROR.value,
                message=f"Unexpected fetch error: {error}",
                details={"source_id": source.id, "url": source.url},
            ) from error

        if result.attempts > 1:
            self._log_info(
                "Config source fetched after retry",
                {"source_id": source.id, "attempts": result.attempts},
            )
        return self._parser.parse(result.result, source, self._clock())

    def _record_failure(
        self,
        source: ConfigSource,
        error: Exception,
        start_time: float,
    ) -> None:
        code = getattr(error, "code", "error")
        now = self._clock()
        self._record(source.id, FetchRecord(
            timestamp=now,
            success=False,
            latency_ms=self._elapsed_ms(start_time),
            error_code=code,
        ))
        self._registry.record_fetch(source.id, False, now, self._config.failure_threshold)
        self._log_error(
            f"Failed to load config source {source.url}",
            error=error,
            data={"source_id": source.id},
        )

    def _record(self, source_id: str, record: FetchRecord) -> None:
        history = self._history.get(source_id)
        if history is None:
            history = deque(maxlen=self._config.history_size)
            self._history[source_id] = history
        history.append(record)

    def history(self, source_id: str) -> list[FetchRecord]:
        """Fetch records for a source, oldest first."""
        return list(self._history.get(source_id, ()))

    def forget(self, source_id: str) -> None:
        """Drop the history of a removed source."""
        self._history.pop(source_id, None)

    def all_records(self) -> list[FetchRecord]:
        return [record for history in self._history.values() for record in history]

    def average_latency_ms(self) -> float:
        records = self.all_records()
        if not records:
            return 0.0
        return sum(record.latency_ms for record in records) / len(records)

    def success_rate(self) -> float:
        records = self.all_records()
        if not records:
            return 0.0
        return sum(1 for record in records if record.success) / len(records)

    def _elapsed_ms(self, start_time: float) -> float:
        return (time.perf_counter() - start_time) * 1000
