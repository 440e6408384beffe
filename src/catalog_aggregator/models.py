"""
Data models for the catalog aggregator.

This module defines the data structures for config sources, parsed catalog
fragments, the aggregated directory, resolver plugins, resolution results,
and cache entries. Snapshot types are frozen; a new instance replaces the old
one on every change.
"""

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from .enums import (
    AttemptOutcome,
    DrmScheme,
    ExtensionKind,
    HealthStatus,
    LoadState,
    ResolutionState,
    SiteKind,
)


@dataclass(frozen=True)
class ConfigSource:
    """A subscribed remote catalog description."""

    id: str
    url: str
    name: str
    priority: int = 0
    enabled: bool = True
    is_primary: bool = False
    last_fetched_at: Optional[float] = None
    health_status: HealthStatus = HealthStatus.UNKNOWN
    consecutive_failures: int = 0
    added_at: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "url": self.url,
            "name": self.name,
            "priority": self.priority,
            "enabled": self.enabled,
            "is_primary": self.is_primary,
            "last_fetched_at": self.last_fetched_at,
            "health_status": self.health_status.value,
            "consecutive_failures": self.consecutive_failures,
            "added_at": self.added_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ConfigSource":
        return cls(
            id=data["id"],
            url=data["url"],
            name=data.get("name", data["id"]),
            priority=int(data.get("priority", 0)),
            enabled=bool(data.get("enabled", True)),
            is_primary=bool(data.get("is_primary", False)),
            last_fetched_at=data.get("last_fetched_at"),
            health_status=HealthStatus(data.get("health_status", "unknown")),
            consecutive_failures=int(data.get("consecutive_failures", 0)),
            added_at=data.get("added_at"),
        )


@dataclass(frozen=True)
class FetchRecord:
    """Outcome of a single fetch attempt for a source."""

    timestamp: float
    success: bool
    latency_ms: float = 0.0
    error_code: Optional[str] = None


@dataclass(frozen=True)
class ScoreCard:
    """Trust scores of one source for one aggregation cycle."""

    quality: float
    reliability: float


@dataclass(frozen=True)
class SiteExtension:
    """
    Tagged wrapper around a site's ``ext`` payload.

    The payload is carried through untouched; merge code only ever looks at
    ``kind``.
    """

    kind: ExtensionKind = ExtensionKind.NONE
    value: Any = None

    @classmethod
    def wrap(cls, raw: Any) -> "SiteExtension":
        if raw is None:
            return cls()
        if isinstance(raw, str):
            return cls(ExtensionKind.TEXT, raw)
        if isinstance(raw, Mapping):
            return cls(ExtensionKind.MAPPING, dict(raw))
        if isinstance(raw, (list, tuple)):
            return cls(ExtensionKind.SEQUENCE, list(raw))
        # Scalars (numbers, booleans) are kept as text.
        return cls(ExtensionKind.TEXT, str(raw))

    def as_text(self) -> Optional[str]:
        return self.value if self.kind is ExtensionKind.TEXT else None

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "value": self.value}

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "SiteExtension":
        if not data:
            return cls()
        return cls(ExtensionKind(data.get("kind", "none")), data.get("value"))


@dataclass(frozen=True)
class ResolutionHint:
    """Caller- or catalog-supplied hints for picking resolver plugins."""

    fallback_parsers: tuple[str, ...] = ()
    flags: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "fallback_parsers": list(self.fallback_parsers),
            "flags": list(self.flags),
        }

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> Optional["ResolutionHint"]:
        if data is None:
            return None
        return cls(
            fallback_parsers=tuple(data.get("fallback_parsers", ())),
            flags=tuple(data.get("flags", ())),
        )


@dataclass(frozen=True)
class SiteEntry:
    """A playable content site listed by a config source."""

    key: str
    name: str
    kind: SiteKind
    endpoint: str
    type_code: int = 0
    searchable: bool = False
    quick_search: bool = False
    filterable: bool = False
    extension: SiteExtension = field(default_factory=SiteExtension)
    extras: Mapping[str, Any] = field(default_factory=dict)
    resolver_hint: Optional[ResolutionHint] = None
    updated_at: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "name": self.name,
            "kind": self.kind.value,
            "endpoint": self.endpoint,
            "type_code": self.type_code,
            "searchable": self.searchable,
            "quick_search": self.quick_search,
            "filterable": self.filterable,
            "extension": self.extension.to_dict(),
            "extras": dict(self.extras),
            "resolver_hint": self.resolver_hint.to_dict() if self.resolver_hint else None,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SiteEntry":
        return cls(
            key=data["key"],
            name=data["name"],
            kind=SiteKind(data.get("kind", "other")),
            endpoint=data["endpoint"],
            type_code=int(data.get("type_code", 0)),
            searchable=bool(data.get("searchable", False)),
            quick_search=bool(data.get("quick_search", False)),
            filterable=bool(data.get("filterable", False)),
            extension=SiteExtension.from_dict(data.get("extension")),
            extras=dict(data.get("extras") or {}),
            resolver_hint=ResolutionHint.from_dict(data.get("resolver_hint")),
            updated_at=data.get("updated_at"),
        )


@dataclass(frozen=True)
class ResolverDescriptor:
    """A URL-resolution parser advertised by a catalog (``parses`` entry)."""

    name: str
    url: str
    type_code: int = 0
    flags: tuple[str, ...] = ()
    headers: Mapping[str, str] = field(default_factory=dict)
    extension: SiteExtension = field(default_factory=SiteExtension)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "url": self.url,
            "type_code": self.type_code,
            "flags": list(self.flags),
            "headers": dict(self.headers),
            "extension": self.extension.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ResolverDescriptor":
        return cls(
            name=data["name"],
            url=data["url"],
            type_code=int(data.get("type_code", 0)),
            flags=tuple(data.get("flags", ())),
            headers=dict(data.get("headers") or {}),
            extension=SiteExtension.from_dict(data.get("extension")),
        )


@dataclass(frozen=True)
class RuleEntry:
    """A host blocking/rewrite rule."""

    name: str
    hosts: tuple[str, ...] = ()
    regex: tuple[str, ...] = ()
    script: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "hosts": list(self.hosts),
            "regex": list(self.regex),
            "script": list(self.script),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RuleEntry":
        return cls(
            name=data["name"],
            hosts=tuple(data.get("hosts", ())),
            regex=tuple(data.get("regex", ())),
            script=tuple(data.get("script", ())),
        )


@dataclass(frozen=True)
class LiveEntry:
    """A live-stream playlist entry."""

    name: str
    url: str
    type_code: int = 0
    player_type: Optional[int] = None
    user_agent: Optional[str] = None
    epg: Optional[str] = None
    logo: Optional[str] = None
    timeout: Optional[float] = None
    boot: bool = False

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "url": self.url,
            "type_code": self.type_code,
            "player_type": self.player_type,
            "user_agent": self.user_agent,
            "epg": self.epg,
            "logo": self.logo,
            "timeout": self.timeout,
            "boot": self.boot,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LiveEntry":
        return cls(
            name=data["name"],
            url=data["url"],
            type_code=int(data.get("type_code", 0)),
            player_type=data.get("player_type"),
            user_agent=data.get("user_agent"),
            epg=data.get("epg"),
            logo=data.get("logo"),
            timeout=data.get("timeout"),
            boot=bool(data.get("boot", False)),
        )


@dataclass(frozen=True)
class SpiderDescriptor:
    """The spider bundle a catalog points to, with its declared md5."""

    path: str
    md5: Optional[str] = None


@dataclass(frozen=True)
class CatalogFragment:
    """Parsed output of one config source."""

    source_id: str
    source_url: str
    fetched_at: float
    sites: tuple[SiteEntry, ...] = ()
    resolvers: tuple[ResolverDescriptor, ...] = ()
    rules: tuple[RuleEntry, ...] = ()
    lives: tuple[LiveEntry, ...] = ()
    wallpapers: tuple[str, ...] = ()
    spider: Optional[SpiderDescriptor] = None
    skipped_entries: int = 0

    def entry_timestamps(self) -> list[float]:
        """Timestamp of every site, falling back to the fetch time."""
        return [
            site.updated_at if site.updated_at is not None else self.fetched_at
            for site in self.sites
        ]


@dataclass(frozen=True)
class AggregatedSiteEntry:
    """A site in the merged directory together with its provenance and scores."""

    site: SiteEntry
    origin_urls: frozenset[str]
    source_id: str
    quality_score: float
    reliability_score: float
    last_seen: float

    @property
    def key(self) -> str:
        return self.site.key

    @property
    def name(self) -> str:
        return self.site.name

    @property
    def kind(self) -> SiteKind:
        return self.site.kind

    def to_dict(self) -> dict:
        return {
            "site": self.site.to_dict(),
            "origin_urls": sorted(self.origin_urls),
            "source_id": self.source_id,
            "quality_score": self.quality_score,
            "reliability_score": self.reliability_score,
            "last_seen": self.last_seen,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AggregatedSiteEntry":
        return cls(
            site=SiteEntry.from_dict(data["site"]),
            origin_urls=frozenset(data.get("origin_urls", ())),
            source_id=data["source_id"],
            quality_score=float(data.get("quality_score", 0.0)),
            reliability_score=float(data.get("reliability_score", 0.0)),
            last_seen=float(data.get("last_seen", 0.0)),
        )


@dataclass(frozen=True)
class FailureNote:
    """Why a source did not contribute fresh data to a directory."""

    source_id: str
    source_url: str
    code: str
    message: str
    stale: bool = False

    def to_dict(self) -> dict:
        return {
            "source_id": self.source_id,
            "source_url": self.source_url,
            "code": self.code,
            "message": self.message,
            "stale": self.stale,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FailureNote":
        return cls(
            source_id=data["source_id"],
            source_url=data["source_url"],
            code=data["code"],
            message=data.get("message", ""),
            stale=bool(data.get("stale", False)),
        )


@dataclass(frozen=True)
class AggregatedDirectory:
    """Immutable snapshot of the merged, deduplicated, quality-ranked catalog."""

    entries: tuple[AggregatedSiteEntry, ...]
    category_index: Mapping[str, tuple[str, ...]]
    generated_at: float
    failure_notes: tuple[FailureNote, ...] = ()
    resolvers: tuple[ResolverDescriptor, ...] = ()
    rules: tuple[RuleEntry, ...] = ()
    lives: tuple[LiveEntry, ...] = ()
    wallpapers: tuple[str, ...] = ()
    primary_source_id: Optional[str] = None
    contributing_sources: tuple[str, ...] = ()
    total_site_entries: int = 0
    _by_key: Mapping[str, AggregatedSiteEntry] = field(
        init=False, repr=False, compare=False, default_factory=dict
    )

    def __post_init__(self) -> None:
        object.__setattr__(self, "_by_key", {entry.key: entry for entry in self.entries})

    def __len__(self) -> int:
        return len(self.entries)

    def get(self, key: str) -> Optional[AggregatedSiteEntry]:
        return self._by_key.get(key)

    def keys(self) -> list[str]:
        return [entry.key for entry in self.entries]

    def to_dict(self) -> dict:
        return {
            "entries": [entry.to_dict() for entry in self.entries],
            "category_index": {k: list(v) for k, v in self.category_index.items()},
            "generated_at": self.generated_at,
            "failure_notes": [note.to_dict() for note in self.failure_notes],
            "resolvers": [r.to_dict() for r in self.resolvers],
            "rules": [r.to_dict() for r in self.rules],
            "lives": [l.to_dict() for l in self.lives],
            "wallpapers": list(self.wallpapers),
            "primary_source_id": self.primary_source_id,
            "contributing_sources": list(self.contributing_sources),
            "total_site_entries": self.total_site_entries,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AggregatedDirectory":
        return cls(
            entries=tuple(AggregatedSiteEntry.from_dict(e) for e in data.get("entries", [])),
            category_index={
                k: tuple(v) for k, v in (data.get("category_index") or {}).items()
            },
            generated_at=float(data.get("generated_at", 0.0)),
            failure_notes=tuple(
                FailureNote.from_dict(n) for n in data.get("failure_notes", [])
            ),
            resolvers=tuple(ResolverDescriptor.from_dict(r) for r in data.get("resolvers", [])),
            rules=tuple(RuleEntry.from_dict(r) for r in data.get("rules", [])),
            lives=tuple(LiveEntry.from_dict(l) for l in data.get("lives", [])),
            wallpapers=tuple(data.get("wallpapers", [])),
            primary_source_id=data.get("primary_source_id"),
            contributing_sources=tuple(data.get("contributing_sources", [])),
            total_site_entries=int(data.get("total_site_entries", 0)),
        )


@dataclass(frozen=True)
class DirectoryView:
    """A directory as served to a caller, flagged stale when it is a fallback."""

    directory: AggregatedDirectory
    stale: bool
    stored_at: float


@dataclass(frozen=True)
class CacheEntry:
    """A memoized payload owned by the cache layer."""

    key: str
    payload: Any
    stored_at: float
    ttl: float
    stale: bool = False

    def is_live(self, now: float) -> bool:
        return now - self.stored_at < self.ttl


@dataclass(frozen=True)
class PluginDescriptor:
    """Declared identity of a resolver plugin, before its bytes are verified."""

    id: str
    checksum: str
    supported_formats: tuple[str, ...]
    priority: int = 0
    name: str = ""
    version: str = "1.0.0"


@dataclass(frozen=True)
class ResolverPlugin:
    """A registry entry for a resolver plugin."""

    descriptor: PluginDescriptor
    load_state: LoadState
    resolver: Any = None
    loaded_at: Optional[float] = None
    rejection_reason: Optional[str] = None

    @property
    def id(self) -> str:
        return self.descriptor.id

    @property
    def checksum(self) -> str:
        return self.descriptor.checksum

    @property
    def supported_formats(self) -> tuple[str, ...]:
        return self.descriptor.supported_formats

    @property
    def priority(self) -> int:
        return self.descriptor.priority


@dataclass(frozen=True)
class DrmDescriptor:
    """DRM information needed to play a resolved stream."""

    scheme: DrmScheme
    license_url: Optional[str] = None
    headers: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ResolvedStream:
    """A playable stream returned by a resolver."""

    urls: tuple[str, ...]
    headers: Mapping[str, str] = field(default_factory=dict)
    drm: Optional[DrmDescriptor] = None


@dataclass(frozen=True)
class ResolutionAttempt:
    """One plugin's turn in a fallback chain."""

    plugin_id: str
    outcome: AttemptOutcome
    elapsed_ms: float
    tries: int = 1
    detail: Optional[str] = None


@dataclass(frozen=True)
class ResolutionResult:
    """Final result of a resolve call, always carrying the full attempt trail."""

    entry_key: str
    state: ResolutionState
    attempts: tuple[ResolutionAttempt, ...]
    stream: Optional[ResolvedStream] = None
    error: Optional[Exception] = None

    @property
    def success(self) -> bool:
        return self.state is ResolutionState.SUCCEEDED

    @property
    def urls(self) -> tuple[str, ...]:
        return self.stream.urls if self.stream else ()

    @property
    def headers(self) -> Mapping[str, str]:
        return self.stream.headers if self.stream else {}

    @property
    def drm(self) -> Optional[DrmDescriptor]:
        return self.stream.drm if self.stream else None


@dataclass(frozen=True)
class ServiceStatistics:
    """Counters reported by the catalog service."""

    total_sources: int
    active_sources: int
    total_sites: int
    unique_sites: int
    last_aggregation_at: Optional[float]
    average_fetch_latency_ms: float
    fetch_success_rate: float
    cache_hit_rate: float
    resolution_success_rate: float
