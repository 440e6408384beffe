"""
Catalog Aggregator - merges video catalog config sources into one directory.

This package fetches TVBox-style JSON config sources in parallel, merges them
into a deduplicated, scored directory with stale fallback, and resolves
directory entries into stream URLs through checksum-verified resolver plugins.
"""

__version__ = "0.1.0"
__author__ = "Catalog Aggregator Team"

from catalog_aggregator.exceptions import (
    CatalogAggregatorError,
    ConfigurationError,
    DuplicateSourceError,
    UnknownSourceError,
    SourceFetchError,
    SourceParseError,
    AggregationFailedError,
    PluginChecksumError,
    PluginLoadError,
    NoResolverAvailableError,
    ResolutionExhaustedError,
    UnknownEntryError,
    PersistenceError,
    TamperingError,
)
from catalog_aggregator.enums import (
    HealthStatus,
    SiteKind,
    ExtensionKind,
    LoadState,
    AttemptOutcome,
    ResolutionState,
    DrmScheme,
    FetchErrorCode,
    ParseErrorCode,
    SortOption,
    LogLevel,
)
from catalog_aggregator.config import (
    RetryConfig,
    FetchConfig,
    ScoringConfig,
    CacheConfig,
    ResolutionConfig,
    SourceSeed,
    PersistenceConfig,
    LoggingConfig,
    SystemConfig,
    build_config,
)
from catalog_aggregator.models import (
    ConfigSource,
    FetchRecord,
    ScoreCard,
    SiteExtension,
    ResolutionHint,
    SiteEntry,
    ResolverDescriptor,
    RuleEntry,
    LiveEntry,
    SpiderDescriptor,
    CatalogFragment,
    AggregatedSiteEntry,
    FailureNote,
    AggregatedDirectory,
    DirectoryView,
    CacheEntry,
    PluginDescriptor,
    ResolverPlugin,
    DrmDescriptor,
    ResolvedStream,
    ResolutionAttempt,
    ResolutionResult,
    ServiceStatistics,
)
from catalog_aggregator.audit_logger import (
    AuditLogger,
    LogEntry,
)
from catalog_aggregator.state_store import (
    BlobStore,
    StateStore,
)
from catalog_aggregator.retry_manager import (
    RetryManager,
    RetryResult,
)
from catalog_aggregator.source_registry import SourceRegistry
from catalog_aggregator.catalog_client import (
    CatalogClient,
    Fetcher,
)
from catalog_aggregator.catalog_parser import CatalogParser
from catalog_aggregator.fetch_pipeline import FetchPipeline
from catalog_aggregator.scorer import SourceScorer
from catalog_aggregator.cache import (
    CacheLayer,
    CacheStatistics,
)
from catalog_aggregator.aggregator import (
    AggregationEngine,
    AggregationStatistics,
)
from catalog_aggregator.plugin_registry import (
    ResolverPluginRegistry,
    compute_checksum,
    verify_checksum,
)
from catalog_aggregator.resolution import (
    Resolver,
    ResolutionExecutor,
    ResolutionStatistics,
)
from catalog_aggregator.orchestrator import (
    CatalogService,
    DirectoryPage,
)

__all__ = [
    # Version info
    "__version__",
    "__author__",
    # Exceptions
    "CatalogAggregatorError",
    "ConfigurationError",
    "DuplicateSourceError",
    "UnknownSourceError",
    "SourceFetchError",
    "SourceParseError",
    "AggregationFailedError",
    "PluginChecksumError",
    "PluginLoadError",
    "NoResolverAvailableError",
    "ResolutionExhaustedError",
    "UnknownEntryError",
    "PersistenceError",
    "TamperingError",
    # Enums
    "HealthStatus",
    "SiteKind",
    "ExtensionKind",
    "LoadState",
    "AttemptOutcome",
    "ResolutionState",
    "DrmScheme",
    "FetchErrorCode",
    "ParseErrorCode",
    "SortOption",
    "LogLevel",
    # Config
    "RetryConfig",
    "FetchConfig",
    "ScoringConfig",
    "CacheConfig",
    "ResolutionConfig",
    "SourceSeed",
    "PersistenceConfig",
    "LoggingConfig",
    "SystemConfig",
    "build_config",
    # Models
    "ConfigSource",
    "FetchRecord",
    "ScoreCard",
    "SiteExtension",
    "ResolutionHint",
    "SiteEntry",
    "ResolverDescriptor",
    "RuleEntry",
    "LiveEntry",
    "SpiderDescriptor",
    "CatalogFragment",
    "AggregatedSiteEntry",
    "FailureNote",
    "AggregatedDirectory",
    "DirectoryView",
    "CacheEntry",
    "PluginDescriptor",
    "ResolverPlugin",
    "DrmDescriptor",
    "ResolvedStream",
    "ResolutionAttempt",
    "ResolutionResult",
    "ServiceStatistics",
    # Logging
    "AuditLogger",
    "LogEntry",
    # Persistence
    "BlobStore",
    "StateStore",
    # Retry
    "RetryManager",
    "RetryResult",
    # Sources
    "SourceRegistry",
    "CatalogClient",
    "Fetcher",
    "CatalogParser",
    "FetchPipeline",
    "SourceScorer",
    # Cache & aggregation
    "CacheLayer",
    "CacheStatistics",
    "AggregationEngine",
    "AggregationStatistics",
    # Resolution
    "ResolverPluginRegistry",
    "compute_checksum",
    "verify_checksum",
    "Resolver",
    "ResolutionExecutor",
    "ResolutionStatistics",
    # Service
    "CatalogService",
    "DirectoryPage",
]
