"""
Configuration dataclasses for the catalog aggregator.

This module defines all configuration structures used throughout the system,
including fetch behavior, retry logic, scoring, cache lifetimes, resolution
timeouts, persistence, and logging configuration.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .exceptions import ConfigurationError


@dataclass
class RetryConfig:
    """Retry behavior for transient fetch errors."""

    max_retries: int = 1
    base_delay_seconds: float = 0.5
    max_delay_seconds: float = 4.0
    retryable_errors: list[str] = field(
        default_factory=lambda: ["timeout", "server_error", "network_error"]
    )


@dataclass
class FetchConfig:
    """Config source fetch behavior."""

    timeout_seconds: float = 10.0
    max_parallel_fetches: int = 8
    failure_threshold: int = 3
    history_size: int = 50
    user_agent: str = "catalog-aggregator/0.1 ConfigLoader"
    retry: RetryConfig = field(default_factory=RetryConfig)


@dataclass
class ScoringConfig:
    """Quality/reliability scoring parameters."""

    window_size: int = 10
    decay_factor: float = 0.9
    staleness_threshold_seconds: float = 7 * 24 * 3600.0
    neutral_score: float = 0.5


@dataclass
class CacheConfig:
    """Cache lifetimes in seconds."""

    fragment_ttl_seconds: float = 30 * 60.0
    directory_ttl_seconds: float = 10 * 60.0


@dataclass
class ResolutionConfig:
    """Resolution fallback chain behavior."""

    attempt_timeout_seconds: float = 8.0
    timeout_retries: int = 1


@dataclass
class SourceSeed:
    """A config source registered on first start when none are stored."""

    id: str
    name: str
    url: str
    priority: int = 1
    enabled: bool = True


@dataclass
class PersistenceConfig:
    """Persistence and state storage configuration."""

    state_dir: Path
    hmac_secret: str


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "info"
    output_format: str = "text"  # 'json', 'text', 'both'


@dataclass
class SystemConfig:
    """Main system configuration combining all sub-configurations."""

    persistence: PersistenceConfig
    fetch: FetchConfig = field(default_factory=FetchConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    resolution: ResolutionConfig = field(default_factory=ResolutionConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    default_sources: list[SourceSeed] = field(default_factory=list)

    def validate(self) -> None:
        """
        Check cross-field invariants.

        Raises:
            ConfigurationError: If any invariant is violated
        """
        problems: list[str] = []

        if self.fetch.timeout_seconds <= 0:
            problems.append("fetch.timeout_seconds must be positive")
        if self.fetch.max_parallel_fetches < 1:
            problems.append("fetch.max_parallel_fetches must be at least 1")
        if self.fetch.failure_threshold < 1:
            problems.append("fetch.failure_threshold must be at least 1")
        if self.fetch.retry.max_retries < 0:
            problems.append("fetch.retry.max_retries must not be negative")
        if self.scoring.window_size < 1:
            problems.append("scoring.window_size must be at least 1")
        if not 0.0 < self.scoring.decay_factor <= 1.0:
            problems.append("scoring.decay_factor must be in (0, 1]")
        if self.scoring.staleness_threshold_seconds <= 0:
            problems.append("scoring.staleness_threshold_seconds must be positive")
        if self.cache.directory_ttl_seconds <= 0 or self.cache.fragment_ttl_seconds <= 0:
            problems.append("cache TTLs must be positive")
        if self.cache.directory_ttl_seconds > self.cache.fragment_ttl_seconds:
            problems.append("cache.directory_ttl_seconds must not exceed fragment_ttl_seconds")
        if self.resolution.attempt_timeout_seconds <= 0:
            problems.append("resolution.attempt_timeout_seconds must be positive")
        if self.resolution.timeout_retries not in (0, 1):
            problems.append("resolution.timeout_retries must be 0 or 1")
        if self.logging.output_format not in ("json", "text", "both"):
            problems.append(f"logging.output_format is invalid: {self.logging.output_format}")

        if problems:
            raise ConfigurationError(
                code="invalid_config",
                message="; ".join(problems),
                details={"problems": problems},
            )


def default_state_dir() -> Path:
    """Return the default directory for persisted state."""
    return Path.home() / ".catalog_aggregator"


def build_config(
    state_dir: Optional[Path] = None,
    hmac_secret: str = "default-secret-change-me",
) -> SystemConfig:
    """Build a SystemConfig with default settings."""
    return SystemConfig(
        persistence=PersistenceConfig(
            state_dir=state_dir or default_state_dir(),
            hmac_secret=hmac_secret,
        ),
    )
