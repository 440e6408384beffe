"""
Command-line interface for the catalog aggregator.

This module provides the main CLI entry point with commands for:
- sources: Manage config sources (list, add, remove, enable, disable, primary)
- directory: Show the aggregated directory
- stats: Show service statistics
- checksum: Compute a plugin checksum
- config: Configuration management

Environment overrides are read from the process environment and a ``.env``
file: CATALOG_HMAC_SECRET, CATALOG_STATE_DIR and CATALOG_LOG_LEVEL.
"""

import argparse
import asyncio
import json
import os
import sys
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable, Optional

from dotenv import load_dotenv

from . import __version__
from .audit_logger import AuditLogger
from .config import (
    CacheConfig,
    FetchConfig,
    LoggingConfig,
    PersistenceConfig,
    ResolutionConfig,
    RetryConfig,
    ScoringConfig,
    SourceSeed,
    SystemConfig,
    build_config,
    default_state_dir,
)
from .enums import LogLevel, SiteKind, SortOption
from .exceptions import CatalogAggregatorError
from .orchestrator import CatalogService, search_entries, sort_entries
from .plugin_registry import SUPPORTED_ALGORITHMS, compute_checksum

DEFAULT_HMAC_SECRET = "default-secret-change-me"


def default_config_path() -> Path:
    return default_state_dir() / "config.json"


def create_default_config(
    state_dir: Optional[Path] = None,
    hmac_secret: str = DEFAULT_HMAC_SECRET,
) -> SystemConfig:
    """
    Create a default system configuration.

    Args:
        state_dir: Directory for persisted state
        hmac_secret: Secret for HMAC protection

    Returns:
        SystemConfig with default settings
    """
    return build_config(state_dir=state_dir, hmac_secret=hmac_secret)


def load_config_from_file(config_path: Path) -> Optional[SystemConfig]:
    """
    Load configuration from a JSON file.

    Missing sections fall back to their defaults.

    Args:
        config_path: Path to the configuration file

    Returns:
        SystemConfig if successful, None otherwise
    """
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)

        persistence_data = data.get("persistence", {})
        state_dir = persistence_data.get("state_dir")
        persistence = PersistenceConfig(
            state_dir=Path(state_dir) if state_dir else default_state_dir(),
            hmac_secret=persistence_data.get("hmac_secret", DEFAULT_HMAC_SECRET),
        )

        fetch_data = dict(data.get("fetch", {}))
        retry = RetryConfig(**fetch_data.pop("retry", {}))
        fetch = FetchConfig(retry=retry, **fetch_data)

        seeds = [
            SourceSeed(
                id=seed["id"],
                name=seed.get("name", seed["url"]),
                url=seed["url"],
                priority=seed.get("priority", 1),
                enabled=seed.get("enabled", True),
            )
            for seed in data.get("default_sources", [])
        ]

        return SystemConfig(
            persistence=persistence,
            fetch=fetch,
            scoring=ScoringConfig(**data.get("scoring", {})),
            cache=CacheConfig(**data.get("cache", {})),
            resolution=ResolutionConfig(**data.get("resolution", {})),
            logging=LoggingConfig(**data.get("logging", {})),
            default_sources=seeds,
        )

    except (json.JSONDecodeError, KeyError, TypeError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        return None
    except FileNotFoundError:
        return None


def save_config_to_file(config: SystemConfig, config_path: Path) -> bool:
    """
    Save configuration to a JSON file.

    Args:
        config: SystemConfig to save
        config_path: Path to save the configuration

    Returns:
        True if successful, False otherwise
    """
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)

        fetch = config.fetch
        data = {
            "persistence": {
                "state_dir": str(config.persistence.state_dir),
                "hmac_secret": config.persistence.hmac_secret,
            },
            "fetch": {
                "timeout_seconds": fetch.timeout_seconds,
                "max_parallel_fetches": fetch.max_parallel_fetches,
                "failure_threshold": fetch.failure_threshold,
                "history_size": fetch.history_size,
                "user_agent": fetch.user_agent,
                "retry": {
                    "max_retries": fetch.retry.max_retries,
                    "base_delay_seconds": fetch.retry.base_delay_seconds,
                    "max_delay_seconds": fetch.retry.max_delay_seconds,
                    "retryable_errors": list(fetch.retry.retryable_errors),
                },
            },
            "scoring": {
                "window_size": config.scoring.window_size,
                "decay_factor": config.scoring.decay_factor,
                "staleness_threshold_seconds": config.scoring.staleness_threshold_seconds,
                "neutral_score": config.scoring.neutral_score,
            },
            "cache": {
                "fragment_ttl_seconds": config.cache.fragment_ttl_seconds,
                "directory_ttl_seconds": config.cache.directory_ttl_seconds,
            },
            "resolution": {
                "attempt_timeout_seconds": config.resolution.attempt_timeout_seconds,
                "timeout_retries": config.resolution.timeout_retries,
            },
            "logging": {
                "level": config.logging.level,
                "output_format": config.logging.output_format,
            },
            "default_sources": [
                {
                    "id": seed.id,
                    "name": seed.name,
                    "url": seed.url,
                    "priority": seed.priority,
                    "enabled": seed.enabled,
                }
                for seed in config.default_sources
            ],
        }

        with open(config_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)

        return True

    except (OSError, TypeError) as e:
        print(f"Error saving config: {e}", file=sys.stderr)
        return False


def apply_env_overrides(config: SystemConfig) -> SystemConfig:
    """Apply CATALOG_* environment variables on top of a loaded configuration."""
    persistence = config.persistence
    secret = os.getenv("CATALOG_HMAC_SECRET", "").strip()
    if secret:
        persistence = replace(persistence, hmac_secret=secret)
    state_dir = os.getenv("CATALOG_STATE_DIR", "").strip()
    if state_dir:
        persistence = replace(persistence, state_dir=Path(state_dir).expanduser())

    logging_config = config.logging
    level = os.getenv("CATALOG_LOG_LEVEL", "").strip().lower()
    if level:
        logging_config = replace(logging_config, level=level)

    return replace(config, persistence=persistence, logging=logging_config)


def resolve_config(args: argparse.Namespace) -> Optional[SystemConfig]:
    """Load the configuration named on the command line, or the default one."""
    if getattr(args, "config", None):
        config = load_config_from_file(Path(args.config))
        if config is None:
            print(f"Error: Could not load config from {args.config}", file=sys.stderr)
            return None
    else:
        config = load_config_from_file(default_config_path()) or create_default_config()

    return apply_env_overrides(config)


def create_logger(config: SystemConfig, verbose: bool) -> Optional[AuditLogger]:
    if not verbose:
        return None
    return AuditLogger(
        output_format=config.logging.output_format,
        level=LogLevel.DEBUG.value,
    )


def run_with_service(
    args: argparse.Namespace,
    action: Callable[[CatalogService], Awaitable[int]],
) -> int:
    """Open a CatalogService from the CLI arguments and run ``action`` on it."""
    config = resolve_config(args)
    if config is None:
        return 1

    async def runner() -> int:
        logger = create_logger(config, getattr(args, "verbose", False))
        async with CatalogService(config, logger=logger) as service:
            return await action(service)

    try:
        return asyncio.run(runner())
    except CatalogAggregatorError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1


def format_timestamp(ts: Optional[float]) -> str:
    if ts is None:
        return "never"
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def cmd_sources(args: argparse.Namespace) -> int:
    """Handle the 'sources' command."""
    if args.action != "list" and not args.target:
        print(f"Error: 'sources {args.action}' needs a URL or source id", file=sys.stderr)
        return 1

    async def action(service: CatalogService) -> int:
        if args.action == "list":
            sources = service.sources()
            if not sources:
                print("No config sources registered.")
                return 0
            for source in sources:
                marker = "*" if source.is_primary else " "
                state = "enabled" if source.enabled else "disabled"
                print(
                    f"{marker} {source.id}  p={source.priority:<3} {state:<8} "
                    f"{source.health_status.value:<8} {source.name} <{source.url}>"
                )
                print(f"    last fetched: {format_timestamp(source.last_fetched_at)}")
            return 0

        if args.action == "add":
            source = service.register_source(
                args.target,
                args.name or args.target,
                priority=args.priority,
                is_primary=args.primary,
            )
            print(f"Added config source {source.id}: {source.url}")
        elif args.action == "remove":
            source = service.remove_source(args.target)
            print(f"Removed config source {source.id}")
        elif args.action in ("enable", "disable"):
            source = service.set_source_enabled(args.target, args.action == "enable")
            print(f"Config source {source.id} {args.action}d")
        elif args.action == "primary":
            source = service.set_primary_source(args.target)
            print(f"Primary config source: {source.id}")
        return 0

    return run_with_service(args, action)


def cmd_directory(args: argparse.Namespace) -> int:
    """Handle the 'directory' command."""
    if args.page < 1 or args.size < 1:
        print("Error: --page and --size must be at least 1", file=sys.stderr)
        return 1

    async def action(service: CatalogService) -> int:
        view = await service.get_directory(force_refresh=args.refresh)
        directory = view.directory
        kind = SiteKind(args.kind) if args.kind else None

        if args.search:
            entries = search_entries(directory.entries, args.search, kind)
        else:
            entries = list(directory.entries)
            if kind is not None:
                entries = [e for e in entries if e.kind == kind]
            entries = sort_entries(entries, SortOption(args.sort))

        page = service.page(entries, args.page, args.size)

        if view.stale:
            print(
                f"Warning: serving stale directory from {format_timestamp(view.stored_at)}",
                file=sys.stderr,
            )
        for note in directory.failure_notes:
            print(f"Warning: {note.source_url}: {note.code} ({note.message})", file=sys.stderr)

        if args.json:
            print(json.dumps({
                "stale": view.stale,
                "generated_at": directory.generated_at,
                "page": page.page,
                "total": page.total,
                "entries": [entry.to_dict() for entry in page.items],
            }, indent=2, ensure_ascii=False))
            return 0

        for entry in page.items:
            print(
                f"{entry.key:<24} {entry.kind.value:<12} "
                f"q={entry.quality_score:.2f} r={entry.reliability_score:.2f}  {entry.name}"
            )
        print(f"\nPage {page.page}/{page.total_pages} - {page.total} site(s)")
        return 0

    return run_with_service(args, action)


def cmd_stats(args: argparse.Namespace) -> int:
    """Handle the 'stats' command."""

    async def action(service: CatalogService) -> int:
        stats = service.get_statistics()
        print(f"Sources: {stats.active_sources}/{stats.total_sources} active")
        print(f"Sites: {stats.unique_sites} unique of {stats.total_sites} listed")
        print(f"Last aggregation: {format_timestamp(stats.last_aggregation_at)}")
        print(f"Average fetch latency: {stats.average_fetch_latency_ms:.1f}ms")
        print(f"Fetch success rate: {stats.fetch_success_rate:.0%}")
        print(f"Cache hit rate: {stats.cache_hit_rate:.0%}")
        print(f"Resolution success rate: {stats.resolution_success_rate:.0%}")
        return 0

    return run_with_service(args, action)


def cmd_checksum(args: argparse.Namespace) -> int:
    """Handle the 'checksum' command."""
    try:
        data = Path(args.file).read_bytes()
    except OSError as e:
        print(f"Error reading file: {e}", file=sys.stderr)
        return 1

    print(f"{args.algo}:{compute_checksum(data, args.algo)}  {args.file}")
    return 0


def cmd_config(args: argparse.Namespace) -> int:
    """Handle the 'config' command."""
    config_path = Path(args.path) if args.path else default_config_path()

    if args.action == "show":
        config = load_config_from_file(config_path)
        if config is None:
            print(f"No configuration found at: {config_path}")
            print("Use 'config init' to create a default configuration.")
            return 1

        print(f"Configuration from: {config_path}")
        print(f"  State dir: {config.persistence.state_dir}")
        print(f"  Fetch timeout: {config.fetch.timeout_seconds}s")
        print(f"  Parallel fetches: {config.fetch.max_parallel_fetches}")
        print(f"  Directory TTL: {config.cache.directory_ttl_seconds}s")
        print(f"  Default sources: {len(config.default_sources)}")
        print(f"  Log level: {config.logging.level}")
        return 0

    elif args.action == "init":
        if config_path.exists() and not args.force:
            print(f"Configuration already exists at: {config_path}")
            print("Use --force to overwrite.")
            return 1

        if save_config_to_file(create_default_config(), config_path):
            print(f"Configuration created at: {config_path}")
            return 0
        return 1

    elif args.action == "validate":
        config = load_config_from_file(config_path)
        if config is None:
            print(f"Error: Could not load config from {config_path}", file=sys.stderr)
            return 1
        try:
            config.validate()
        except CatalogAggregatorError as e:
            print(f"Invalid configuration: {e.message}", file=sys.stderr)
            return 1

        print(f"Configuration at {config_path} is valid.")
        return 0

    return 1


def add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config", "-c",
        help="Path to configuration file",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose output",
    )


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="catalog-aggregator",
        description="Aggregate video catalog config sources into one directory",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # 'sources' command
    sources_parser = subparsers.add_parser(
        "sources",
        help="Manage config sources",
    )
    sources_parser.add_argument(
        "action",
        choices=["list", "add", "remove", "enable", "disable", "primary"],
        help="Source action",
    )
    sources_parser.add_argument(
        "target",
        nargs="?",
        help="URL (for add) or source id",
    )
    sources_parser.add_argument(
        "--name", "-n",
        help="Display name for a new source",
    )
    sources_parser.add_argument(
        "--priority", "-p",
        type=int,
        help="Merge priority for a new source (higher wins)",
    )
    sources_parser.add_argument(
        "--primary",
        action="store_true",
        help="Mark a new source as primary",
    )
    add_common_arguments(sources_parser)
    sources_parser.set_defaults(func=cmd_sources)

    # 'directory' command
    directory_parser = subparsers.add_parser(
        "directory",
        help="Show the aggregated directory",
    )
    directory_parser.add_argument(
        "--refresh", "-r",
        action="store_true",
        help="Re-fetch all sources instead of using cached data",
    )
    directory_parser.add_argument(
        "--kind", "-k",
        choices=[kind.value for kind in SiteKind],
        help="Only show sites of this category",
    )
    directory_parser.add_argument(
        "--sort", "-s",
        choices=[option.value for option in SortOption],
        default=SortOption.QUALITY.value,
        help="Sort order (default: quality)",
    )
    directory_parser.add_argument(
        "--search",
        help="Search sites by name, key or extension",
    )
    directory_parser.add_argument(
        "--page",
        type=int,
        default=1,
        help="Page number (default: 1)",
    )
    directory_parser.add_argument(
        "--size",
        type=int,
        default=50,
        help="Page size (default: 50)",
    )
    directory_parser.add_argument(
        "--json",
        action="store_true",
        help="Print JSON instead of a table",
    )
    add_common_arguments(directory_parser)
    directory_parser.set_defaults(func=cmd_directory)

    # 'stats' command
    stats_parser = subparsers.add_parser(
        "stats",
        help="Show service statistics",
    )
    add_common_arguments(stats_parser)
    stats_parser.set_defaults(func=cmd_stats)

    # 'checksum' command
    checksum_parser = subparsers.add_parser(
        "checksum",
        help="Compute the checksum of a resolver plugin file",
    )
    checksum_parser.add_argument(
        "file",
        help="Path to the plugin file",
    )
    checksum_parser.add_argument(
        "--algo", "-a",
        choices=list(SUPPORTED_ALGORITHMS),
        default="sha256",
        help="Digest algorithm (default: sha256)",
    )
    checksum_parser.set_defaults(func=cmd_checksum)

    # 'config' command
    config_parser = subparsers.add_parser(
        "config",
        help="Configuration management",
    )
    config_parser.add_argument(
        "action",
        choices=["show", "init", "validate"],
        help="Configuration action",
    )
    config_parser.add_argument(
        "path",
        nargs="?",
        help="Path to configuration file",
    )
    config_parser.add_argument(
        "--force", "-f",
        action="store_true",
        help="Force overwrite existing configuration",
    )
    config_parser.set_defaults(func=cmd_config)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for the CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    load_dotenv()

    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
