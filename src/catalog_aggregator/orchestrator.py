"""
Catalog Service for the catalog aggregator.

This module provides the outbound interface that coordinates all components.
It integrates:
- Source registry mutations with directory invalidation and persistence
- Aggregation behind the directory cache (single-flight, stale fallback)
- Directory queries: filtering, sorting, relevance search and paging
- Resolver plugin loading and stream resolution
"""

import hashlib
import math
import time
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, TypeVar
from urllib.parse import urlparse

from .aggregator import DIRECTORY_KEY, AggregationEngine, fragment_key
from .audit_logger import AuditLogger, ComponentLogging
from .cache import CacheLayer
from .catalog_client import CatalogClient, Fetcher
from .config import SystemConfig
from .enums import SiteKind, SortOption
from .exceptions import ConfigurationError, PersistenceError, UnknownEntryError
from .fetch_pipeline import FetchPipeline
from .models import (
    AggregatedDirectory,
    AggregatedSiteEntry,
    ConfigSource,
    DirectoryView,
    PluginDescriptor,
    ResolutionHint,
    ResolutionResult,
    ResolverPlugin,
    ServiceStatistics,
)
from .plugin_registry import PluginLoader, ResolverPluginRegistry
from .resolution import ResolutionExecutor
from .scorer import SourceScorer
from .source_registry import SourceRegistry
from .state_store import BlobStore, StateStore

T = TypeVar("T")

SOURCES_BLOB = "sources"
SOURCES_VERSION = 1


def source_id_for(url: str) -> str:
    """Stable source id derived from the URL."""
    return hashlib.sha256(url.strip().encode("utf-8")).hexdigest()[:12]


@dataclass
class DirectoryPage:
    """One page of directory query results."""

    items: list
    page: int
    size: int
    total: int

    @property
    def total_pages(self) -> int:
        return max(1, math.ceil(self.total / self.size))

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages


class CatalogService(ComponentLogging):
    """
    Outbound interface of the catalog aggregator.

    Owns the registry, pipeline, aggregation engine, cache, plugin registry
    and resolution executor. Every collaborator with side effects (fetcher,
    blob store, clock, plugin loader) is injected.
    """

    COMPONENT = "CatalogService"

    def __init__(
        self,
        config: SystemConfig,
        fetcher: Optional[Fetcher] = None,
        store: Optional[BlobStore] = None,
        plugin_loader: Optional[PluginLoader] = None,
        clock: Callable[[], float] = time.time,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initialize the catalog service.

        Args:
            config: System configuration (validated here)
            fetcher: HTTP capability; a CatalogClient is created if omitted
            store: Blob store; a StateStore under the configured state dir if omitted
            plugin_loader: Turns verified plugin bytes into a resolver
            clock: Returns the current time in epoch seconds
            logger: Optional audit logger

        Raises:
            ConfigurationError: If the configuration is invalid
        """
        config.validate()
        self._config = config
        self._clock = clock
        self._logger = logger

        self._owns_fetcher = fetcher is None
        self._fetcher = fetcher or CatalogClient(user_agent=config.fetch.user_agent)
        self._store = store or StateStore(
            config.persistence.state_dir, config.persistence.hmac_secret
        )

        self._registry = SourceRegistry(logger=logger)
        self._pipeline = FetchPipeline(
            self._fetcher, self._registry, config.fetch, clock=clock, logger=logger
        )
        self._cache = CacheLayer(clock=clock, store=self._store, logger=logger)
        self._engine = AggregationEngine(
            self._pipeline,
            self._cache,
            scorer=SourceScorer(config.scoring),
            fetch_config=config.fetch,
            cache_config=config.cache,
            clock=clock,
            logger=logger,
        )
        self._plugins = ResolverPluginRegistry(plugin_loader, clock=clock, logger=logger)
        self._executor = ResolutionExecutor(self._plugins, config.resolution, logger=logger)

        self._cache.register_persistent(
            DIRECTORY_KEY,
            lambda directory: directory.to_dict(),
            AggregatedDirectory.from_dict,
        )
        self._registry.subscribe(self._on_registry_change)
        self._opened = False

    async def __aenter__(self) -> "CatalogService":
        """Async context manager entry."""
        self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

    @property
    def registry(self) -> SourceRegistry:
        return self._registry

    @property
    def plugins(self) -> ResolverPluginRegistry:
        return self._plugins

    @property
    def engine(self) -> AggregationEngine:
        return self._engine

    @property
    def cache(self) -> CacheLayer:
        return self._cache

    def open(self) -> None:
        """
        Restore persisted sources and the directory snapshot.

        Default sources from the configuration are registered when nothing
        was stored yet.

        Raises:
            TamperingError: If the stored sources fail HMAC validation
        """
        if self._opened:
            return

        stored = self._store.load(SOURCES_BLOB)
        if stored is not None:
            self._registry.load_records(stored.get("sources", []))
            self._log_info("Restored config sources", {"count": len(self._registry)})
        else:
            for seed in self._config.default_sources:
                self.register_source(
                    seed.url,
                    seed.name,
                    source_id=seed.id,
                    priority=seed.priority,
                    enabled=seed.enabled,
                )

        self._cache.restore()
        self._opened = True

    async def close(self) -> None:
        if self._owns_fetcher:
            await self._fetcher.close()
        self._opened = False

    # Source management

    def register_source(
        self,
        url: str,
        name: str,
        source_id: Optional[str] = None,
        priority: Optional[int] = None,
        enabled: bool = True,
        is_primary: bool = False,
    ) -> ConfigSource:
        """
        Register a new config source.

        Args:
            url: Catalog URL (http or https)
            name: Display name
            source_id: Explicit id (defaults to a digest of the URL)
            priority: Merge priority (defaults to the number of sources + 1)
            enabled: Whether the source takes part in aggregation
            is_primary: Mark as the primary source

        Returns:
            The registered source

        Raises:
            ConfigurationError: If the URL is not http(s)
            DuplicateSourceError: If the id or URL is already registered
        """
        url = url.strip()
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ConfigurationError(
                code="invalid_url",
                message=f"Config source URL must be http(s): {url}",
                details={"url": url},
            )

        source = ConfigSource(
            id=source_id or source_id_for(url),
            url=url,
            name=name.strip() or url,
            priority=priority if priority is not None else len(self._registry) + 1,
            enabled=enabled,
            is_primary=is_primary,
            added_at=self._clock(),
        )
        return self._registry.add(source)

    def remove_source(self, source_id: str) -> ConfigSource:
        return self._registry.remove(source_id)

    def set_source_enabled(self, source_id: str, enabled: bool) -> ConfigSource:
        return self._registry.set_enabled(source_id, enabled)

    def set_primary_source(self, source_id: str) -> ConfigSource:
        return self._registry.set_primary(source_id)

    def sources(self) -> tuple[ConfigSource, ...]:
        return self._registry.sources()

    def _on_registry_change(self, event: str, source: ConfigSource) -> None:
        if event == "remove":
            self._pipeline.forget(source.id)
            self._cache.discard(fragment_key(source.id))
        self._cache.invalidate(DIRECTORY_KEY)
        self._save_sources()

    def _save_sources(self) -> None:
        try:
            self._store.save(SOURCES_BLOB, {
                "version": SOURCES_VERSION,
                "sources": self._registry.to_records(),
            })
        except PersistenceError as e:
            self._log_error("Failed to persist config sources", error=e)

    # Directory

    async def get_directory(self, force_refresh: bool = False) -> DirectoryView:
        """
        Return the aggregated directory, rebuilding it when expired.

        Args:
            force_refresh: Ignore cached fragments and the cached directory

        Returns:
            DirectoryView; ``stale`` is True when the rebuild failed and the
            previous directory is served instead

        Raises:
            AggregationFailedError: If aggregation failed and no previous
                directory exists
        """
        if force_refresh:
            self._cache.invalidate(DIRECTORY_KEY)

        entry = await self._cache.get(
            DIRECTORY_KEY,
            lambda: self._rebuild_directory(force_refresh),
            self._config.cache.directory_ttl_seconds,
        )
        return DirectoryView(
            directory=entry.payload,
            stale=entry.stale,
            stored_at=entry.stored_at,
        )

    async def _rebuild_directory(self, force: bool) -> AggregatedDirectory:
        try:
            return await self._engine.aggregate(self._registry.sources(), force=force)
        finally:
            # Health fields changed during the cycle.
            self._save_sources()

    async def sites(
        self,
        kind: Optional[SiteKind] = None,
        sort_by: SortOption = SortOption.QUALITY,
        min_quality: float = 0.0,
    ) -> list[AggregatedSiteEntry]:
        """
        List directory entries.

        Args:
            kind: Only entries of this category
            sort_by: quality, reliability, recent or name
            min_quality: Drop entries scoring below this quality
        """
        view = await self.get_directory()
        directory = view.directory
        if kind is not None:
            entries = [directory.get(key) for key in directory.category_index.get(kind.value, ())]
        else:
            entries = list(directory.entries)
        entries = [e for e in entries if e is not None and e.quality_score >= min_quality]
        return sort_entries(entries, sort_by)

    async def search(
        self,
        term: str,
        kind: Optional[SiteKind] = None,
    ) -> list[AggregatedSiteEntry]:
        """Directory entries matching ``term``, most relevant first."""
        view = await self.get_directory()
        return search_entries(view.directory.entries, term, kind)

    @staticmethod
    def page(items: Sequence[T], page: int = 1, size: int = 20) -> DirectoryPage:
        return paginate(items, page, size)

    # Resolution

    async def resolve(
        self,
        entry_key: str,
        hint: Optional[ResolutionHint] = None,
    ) -> ResolutionResult:
        """
        Resolve a directory entry into stream URLs.

        Raises:
            UnknownEntryError: If the key is not in the current directory
            NoResolverAvailableError: If no loaded plugin can serve the entry
        """
        view = await self.get_directory()
        entry = view.directory.get(entry_key)
        if entry is None:
            raise UnknownEntryError(
                code="unknown_entry",
                message=f"Directory entry not found: {entry_key}",
                details={"entry_key": entry_key},
            )
        return await self._executor.resolve(entry.site, hint)

    def load_plugin(self, descriptor: PluginDescriptor, data: bytes) -> ResolverPlugin:
        return self._plugins.load(descriptor, data)

    def unload_plugin(self, plugin_id: str) -> bool:
        return self._plugins.unload(plugin_id)

    # Statistics

    def get_statistics(self) -> ServiceStatistics:
        cached = self._cache.peek(DIRECTORY_KEY)
        directory: Optional[AggregatedDirectory] = cached.payload if cached else None
        last_aggregation = self._engine.stats.last_aggregation_at
        if last_aggregation is None and directory is not None:
            last_aggregation = directory.generated_at

        return ServiceStatistics(
            total_sources=len(self._registry),
            active_sources=len(self._registry.enabled_sources()),
            total_sites=directory.total_site_entries if directory else 0,
            unique_sites=len(directory) if directory else 0,
            last_aggregation_at=last_aggregation,
            average_fetch_latency_ms=self._pipeline.average_latency_ms(),
            fetch_success_rate=self._pipeline.success_rate(),
            cache_hit_rate=self._cache.stats.hit_rate,
            resolution_success_rate=self._executor.stats.success_rate,
        )


def sort_entries(
    entries: Sequence[AggregatedSiteEntry],
    sort_by: SortOption = SortOption.QUALITY,
) -> list[AggregatedSiteEntry]:
    """Sort entries; every option falls back to the key for a stable order."""
    if sort_by == SortOption.RELIABILITY:
        key = lambda e: (-e.reliability_score, -e.quality_score, e.key)
    elif sort_by == SortOption.RECENT:
        key = lambda e: (-e.last_seen, e.key)
    elif sort_by == SortOption.NAME:
        key = lambda e: (e.name.lower(), e.key)
    else:
        key = lambda e: (-e.quality_score, -e.reliability_score, e.key)
    return sorted(entries, key=key)


def relevance(entry: AggregatedSiteEntry, term: str) -> float:
    """
    Relevance of an entry for a lowercase search term.

    3 for a name hit, 2 for a key hit, 1 for a hit in a text extension,
    plus twice the quality score. 0 when nothing matched.
    """
    score = 0.0
    if term in entry.name.lower():
        score += 3
    if term in entry.key.lower():
        score += 2
    ext = entry.site.extension.as_text()
    if ext and term in ext.lower():
        score += 1
    if score == 0:
        return 0.0
    return score + 2 * entry.quality_score


def search_entries(
    entries: Sequence[AggregatedSiteEntry],
    term: str,
    kind: Optional[SiteKind] = None,
) -> list[AggregatedSiteEntry]:
    needle = term.strip().lower()
    if not needle:
        return []
    scored = []
    for entry in entries:
        if kind is not None and entry.kind != kind:
            continue
        score = relevance(entry, needle)
        if score > 0:
            scored.append((score, entry))
    scored.sort(key=lambda pair: (-pair[0], pair[1].key))
    return [entry for _, entry in scored]


def paginate(items: Sequence[T], page: int = 1, size: int = 20) -> DirectoryPage:
    """
    Slice ``items`` into a 1-based page.

    Raises:
        ValueError: If page or size is below 1
    """
    if page < 1 or size < 1:
        raise ValueError("page and size must be at least 1")
    start = (page - 1) * size
    return DirectoryPage(
        items=list(items[start:start + size]),
        page=page,
        size=size,
        total=len(items),
    )
