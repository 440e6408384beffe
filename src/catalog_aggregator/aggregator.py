"""
Aggregation Engine for the catalog aggregator.

This module fans out the fetch pipeline across all enabled config sources
and merges the resulting fragments into one deduplicated directory. It
integrates:
- Bounded-parallel fetching with a per-source timeout
- Fragment caching with stale fallback per source
- Source scoring for conflict resolution
- Failure notes for sources that did not contribute fresh data

Conflicts on a site key are resolved by source precedence: higher priority,
then higher quality score, then the more recent fetch, then the primary
source, then the lexicographically smaller source id. Losers still add their
URL to the winner's origin set.
"""

import asyncio
import time
from dataclasses import dataclass
from functools import cmp_to_key
from typing import Callable, Iterable, Optional

from .audit_logger import AuditLogger, ComponentLogging
from .cache import CacheLayer, SingleFlight
from .config import CacheConfig, FetchConfig
from .exceptions import AggregationFailedError, SourceFetchError, SourceParseError
from .fetch_pipeline import FetchPipeline
from .models import (
    AggregatedDirectory,
    AggregatedSiteEntry,
    CatalogFragment,
    ConfigSource,
    FailureNote,
    ScoreCard,
    SiteEntry,
)
from .scorer import SourceScorer

DIRECTORY_KEY = "directory"


def fragment_key(source_id: str) -> str:
    return f"fragment:{source_id}"


@dataclass
class _Outcome:
    """What one source produced during a cycle."""

    source: ConfigSource
    fragment: Optional[CatalogFragment] = None
    note: Optional[FailureNote] = None
    fresh: bool = False


@dataclass
class _Contribution:
    """A fragment together with the precedence data of its source."""

    source: ConfigSource
    fragment: CatalogFragment
    card: ScoreCard

    def precedence(self) -> tuple:
        return (
            self.source.priority,
            self.card.quality,
            self.fragment.fetched_at,
            self.source.is_primary,
        )


def _compare(a: _Contribution, b: _Contribution) -> int:
    """Order contributions best-first."""
    pa, pb = a.precedence(), b.precedence()
    if pa != pb:
        return -1 if pa > pb else 1
    if a.source.id != b.source.id:
        return -1 if a.source.id < b.source.id else 1
    return 0


@dataclass
class AggregationStatistics:
    """Counters describing completed aggregation cycles."""

    cycles: int = 0
    failed_cycles: int = 0
    last_aggregation_at: Optional[float] = None
    last_duration_ms: float = 0.0
    last_total_site_entries: int = 0
    last_unique_sites: int = 0


class AggregationEngine(ComponentLogging):
    """Merges fragments from all enabled sources into an AggregatedDirectory."""

    COMPONENT = "AggregationEngine"

    def __init__(
        self,
        pipeline: FetchPipeline,
        cache: CacheLayer,
        scorer: Optional[SourceScorer] = None,
        fetch_config: Optional[FetchConfig] = None,
        cache_config: Optional[CacheConfig] = None,
        clock: Callable[[], float] = time.time,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initialize the aggregation engine.

        Args:
            pipeline: Fetch & parse pipeline for individual sources
            cache: Cache layer holding per-source fragments
            scorer: Source scorer (a default one is created if omitted)
            fetch_config: Parallelism and timeout settings
            cache_config: Fragment TTL
            clock: Returns the current time in epoch seconds
            logger: Optional audit logger
        """
        self._pipeline = pipeline
        self._cache = cache
        self._scorer = scorer or SourceScorer()
        self._fetch_config = fetch_config or FetchConfig()
        self._cache_config = cache_config or CacheConfig()
        self._clock = clock
        self._logger = logger
        self._flights = SingleFlight()
        self.stats = AggregationStatistics()

    async def aggregate(
        self,
        sources: Iterable[ConfigSource],
        force: bool = False,
        key: str = DIRECTORY_KEY,
    ) -> AggregatedDirectory:
        """
        Run one aggregation cycle over the enabled sources.

        A second caller for the same key while a cycle is running joins that
        cycle instead of starting another one.

        Args:
            sources: Candidate sources; disabled ones are ignored
            force: Re-fetch every source even if its fragment is still cached
            key: Directory key used for single-flighting

        Returns:
            The merged directory

        Raises:
            AggregationFailedError: If no enabled source produced fresh data
        """
        if key in self._flights:
            self._log_debug("Joining in-flight aggregation", {"key": key})
        sources = list(sources)
        return await self._flights.run(key, lambda: self._aggregate(sources, force))

    async def _aggregate(
        self,
        sources: list[ConfigSource],
        force: bool,
    ) -> AggregatedDirectory:
        start_time = time.perf_counter()
        enabled = [source for source in sources if source.enabled]

        if not enabled:
            self.stats.failed_cycles += 1
            raise AggregationFailedError(
                code="no_enabled_sources",
                message="No enabled config sources to aggregate",
            )

        if force:
            for source in enabled:
                self._cache.invalidate(fragment_key(source.id))

        self._log_info(
            "Starting aggregation",
            {"sources": len(enabled), "force": force},
        )

        semaphore = asyncio.Semaphore(self._fetch_config.max_parallel_fetches)
        outcomes = await asyncio.gather(
            *(self._collect(source, semaphore) for source in enabled)
        )

        notes = tuple(outcome.note for outcome in outcomes if outcome.note is not None)
        fresh = [outcome for outcome in outcomes if outcome.fresh]

        if not fresh:
            self.stats.failed_cycles += 1
            self._log_error(
                "All config sources failed to load",
                data={"failures": [note.to_dict() for note in notes]},
            )
            raise AggregationFailedError(
                code="all_sources_failed",
                message=f"All {len(enabled)} enabled config sources failed",
                details={"failed_sources": [note.source_id for note in notes]},
                notes=list(notes),
            )

        now = self._clock()
        contributions = [
            _Contribution(
                source=outcome.source,
                fragment=outcome.fragment,
                card=self._scorer.score(
                    outcome.source,
                    self._pipeline.history(outcome.source.id),
                    outcome.fragment.entry_timestamps(),
                    now,
                ),
            )
            for outcome in outcomes
            if outcome.fragment is not None
        ]

        directory = self._merge(contributions, notes, enabled, now)

        self.stats.cycles += 1
        self.stats.last_aggregation_at = now
        self.stats.last_duration_ms = (time.perf_counter() - start_time) * 1000
        self.stats.last_total_site_entries = directory.total_site_entries
        self.stats.last_unique_sites = len(directory)

        self._log_info(
            f"Aggregated {len(fresh)}/{len(enabled)} config sources",
            {
                "unique_sites": len(directory),
                "total_site_entries": directory.total_site_entries,
                "failures": len(notes),
                "duration_ms": round(self.stats.last_duration_ms, 1),
            },
        )
        return directory

    async def _collect(
        self,
        source: ConfigSource,
        semaphore: asyncio.Semaphore,
    ) -> _Outcome:
        async with semaphore:
            try:
                entry = await self._cache.get(
                    fragment_key(source.id),
                    lambda: self._pipeline.fetch_and_parse(
                        source, self._fetch_config.timeout_seconds
                    ),
                    self._cache_config.fragment_ttl_seconds,
                )
            except (SourceFetchError, SourceParseError) as e:
                return _Outcome(
                    source=source,
                    note=FailureNote(
                        source_id=source.id,
                        source_url=source.url,
                        code=e.code,
                        message=e.message,
                    ),
                )
            except Exception as e:
                self._log_error(
                    f"Unexpected error loading config source {source.url}",
                    error=e,
                    data={"source_id": source.id},
                )
                return _Outcome(
                    source=source,
                    note=FailureNote(
                        source_id=source.id,
                        source_url=source.url,
                        code="unexpected_error",
                        message=f"{type(e).__name__}: {e}",
                    ),
                )

        if entry.stale:
            return _Outcome(
                source=source,
                fragment=entry.payload,
                note=FailureNote(
                    source_id=source.id,
                    source_url=source.url,
                    code="stale_fragment",
                    message="Refresh failed; using the last fetched fragment",
                    stale=True,
                ),
            )
        return _Outcome(source=source, fragment=entry.payload, fresh=True)

    def _merge(
        self,
        contributions: list[_Contribution],
        notes: tuple[FailureNote, ...],
        enabled: list[ConfigSource],
        now: float,
    ) -> AggregatedDirectory:
        ranked = sorted(contributions, key=cmp_to_key(_compare))

        winners: dict[str, tuple[_Contribution, SiteEntry]] = {}
        origins: dict[str, set[str]] = {}
        last_seen: dict[str, float] = {}

        for contribution in ranked:
            fetched_at = contribution.fragment.fetched_at
            for site in contribution.fragment.sites:
                if site.key not in winners:
                    winners[site.key] = (contribution, site)
                    origins[site.key] = set()
                    last_seen[site.key] = fetched_at
                origins[site.key].add(contribution.source.url)
                last_seen[site.key] = max(last_seen[site.key], fetched_at)

        entries = [
            AggregatedSiteEntry(
                site=site,
                origin_urls=frozenset(origins[key]),
                source_id=contribution.source.id,
                quality_score=contribution.card.quality,
                reliability_score=contribution.card.reliability,
                last_seen=last_seen[key],
            )
            for key, (contribution, site) in winners.items()
        ]
        entries.sort(key=lambda e: (-e.quality_score, -e.reliability_score, e.key))

        category_index: dict[str, list[str]] = {}
        for entry in entries:
            category_index.setdefault(entry.kind.value, []).append(entry.key)

        primary = next((source.id for source in enabled if source.is_primary), None)

        return AggregatedDirectory(
            entries=tuple(entries),
            category_index={kind: tuple(keys) for kind, keys in category_index.items()},
            generated_at=now,
            failure_notes=notes,
            resolvers=self._first_wins(ranked, lambda f: f.resolvers, lambda r: r.name),
            rules=self._first_wins(ranked, lambda f: f.rules, lambda r: r.name),
            lives=self._first_wins(ranked, lambda f: f.lives, lambda l: l.name),
            wallpapers=self._first_wins(ranked, lambda f: f.wallpapers, lambda w: w),
            primary_source_id=primary,
            contributing_sources=tuple(c.source.id for c in ranked),
            total_site_entries=sum(len(c.fragment.sites) for c in contributions),
        )

    @staticmethod
    def _first_wins(ranked: list[_Contribution], items_of, identity) -> tuple:
        """Union of items across ranked contributions, the best source winning each identity."""
        seen = set()
        merged = []
        for contribution in ranked:
            for item in items_of(contribution.fragment):
                ident = identity(item)
                if ident in seen:
                    continue
                seen.add(ident)
                merged.append(item)
        return tuple(merged)
