"""
Source Registry for the catalog aggregator.

Holds the set of subscribed config sources. Mutations are serialized by a
single writer lock and publish a new immutable snapshot; readers always see
the last committed snapshot without taking the lock.
"""

import threading
from dataclasses import replace
from typing import Callable, Iterable, Optional

from .audit_logger import AuditLogger, ComponentLogging
from .enums import HealthStatus
from .exceptions import DuplicateSourceError, UnknownSourceError
from .models import ConfigSource

RegistryListener = Callable[[str, ConfigSource], None]


class SourceRegistry(ComponentLogging):
    """Registry of config sources keyed by id."""

    COMPONENT = "SourceRegistry"

    def __init__(self, logger: Optional[AuditLogger] = None) -> None:
        self._logger = logger
        self._write_lock = threading.Lock()
        self._snapshot: tuple[ConfigSource, ...] = ()
        self._listeners: list[RegistryListener] = []

    def subscribe(self, listener: RegistryListener) -> None:
        """
        Register a callback invoked after every structural mutation.

        The callback receives the mutation name ('add', 'remove', 'enable',
        'disable', 'primary') and the affected source.
        """
        self._listeners.append(listener)

    def sources(self) -> tuple[ConfigSource, ...]:
        """Return the last committed snapshot, in registration order."""
        return self._snapshot

    def enabled_sources(self) -> list[ConfigSource]:
        return [source for source in self._snapshot if source.enabled]

    def get(self, source_id: str) -> Optional[ConfigSource]:
        for source in self._snapshot:
            if source.id == source_id:
                return source
        return None

    def primary(self) -> Optional[ConfigSource]:
        for source in self._snapshot:
            if source.is_primary:
                return source
        return None

    def __len__(self) -> int:
        return len(self._snapshot)

    def __contains__(self, source_id: object) -> bool:
        return any(source.id == source_id for source in self._snapshot)

    def add(self, source: ConfigSource) -> ConfigSource:
        """
        Register a new source.

        Raises:
            DuplicateSourceError: If the id or URL is already registered; the
                registry is left unchanged
        """
        with self._write_lock:
            current = self._snapshot
            for existing in current:
                if existing.id == source.id or existing.url == source.url:
                    field_name = "id" if existing.id == source.id else "url"
                    raise DuplicateSourceError(
                        code="duplicate_source",
                        message=f"Config source with the same {field_name} already exists",
                        details={
                            "field": field_name,
                            "id": source.id,
                            "url": source.url,
                            "existing_id": existing.id,
                        },
                    )

            if source.is_primary:
                current = tuple(replace(s, is_primary=False) if s.is_primary else s for s in current)
            self._snapshot = current + (source,)

        self._log_info(
            f"Added config source: {source.name}",
            {"source_id": source.id, "url": source.url, "priority": source.priority},
        )
        self._notify("add", source)
        return source

    def remove(self, source_id: str) -> ConfigSource:
        """
        Remove a source.

        Raises:
            UnknownSourceError: If no source has this id
        """
        with self._write_lock:
            removed = self._require(source_id)
            self._snapshot = tuple(s for s in self._snapshot if s.id != source_id)

        self._log_info(f"Removed config source: {source_id}", {"source_id": source_id})
        self._notify("remove", removed)
        return removed

    def set_enabled(self, source_id: str, enabled: bool) -> ConfigSource:
        """Enable or disable a source."""
        with self._write_lock:
            updated = replace(self._require(source_id), enabled=enabled)
            self._commit(updated)

        self._log_info(
            f"Updated config source status: {source_id} -> {enabled}",
            {"source_id": source_id, "enabled": enabled},
        )
        self._notify("enable" if enabled else "disable", updated)
        return updated

    def set_primary(self, source_id: str) -> ConfigSource:
        """Mark a source as primary, clearing the previous primary in the same commit."""
        with self._write_lock:
            self._require(source_id)
            self._snapshot = tuple(
                replace(s, is_primary=(s.id == source_id))
                if s.is_primary or s.id == source_id
                else s
                for s in self._snapshot
            )
            updated = self._require(source_id)

        self._log_info(f"Primary config source set: {source_id}", {"source_id": source_id})
        self._notify("primary", updated)
        return updated

    def record_fetch(
        self,
        source_id: str,
        success: bool,
        at: float,
        failure_threshold: int,
    ) -> Optional[ConfigSource]:
        """
        Apply a fetch outcome to a source's health.

        Success resets the failure count and marks the source healthy. A
        failure marks it as warning until ``failure_threshold`` consecutive
        failures are reached, then error. Listeners are not notified: a refresh
        outcome is not a structural change.

        Returns:
            The updated source, or None if it was removed in the meantime
        """
        with self._write_lock:
            source = self.get(source_id)
            if source is None:
                return None

            if success:
                updated = replace(
                    source,
                    last_fetched_at=at,
                    consecutive_failures=0,
                    health_status=HealthStatus.HEALTHY,
                )
            else:
                failures = source.consecutive_failures + 1
                updated = replace(
                    source,
                    consecutive_failures=failures,
                    health_status=(
                        HealthStatus.ERROR if failures >= failure_threshold else HealthStatus.WARNING
                    ),
                )
            self._commit(updated)

        if updated.health_status != source.health_status:
            self._log_info(
                f"Source health changed: {source.health_status.value} -> {updated.health_status.value}",
                {"source_id": source_id, "consecutive_failures": updated.consecutive_failures},
            )
        return updated

    def to_records(self) -> list[dict]:
        """Serialize the registry as an ordered list of records."""
        return [source.to_dict() for source in self._snapshot]

    def load_records(self, records: Iterable[dict]) -> None:
        """
        Replace the registry contents from persisted records.

        Records with duplicate ids or URLs are dropped, as are extra primaries.
        """
        loaded: list[ConfigSource] = []
        seen_ids: set[str] = set()
        seen_urls: set[str] = set()
        has_primary = False

        for record in records:
            source = ConfigSource.from_dict(record)
            if source.id in seen_ids or source.url in seen_urls:
                self._log_warn("Dropping duplicate persisted source", {"source_id": source.id})
                continue
            if source.is_primary:
                if has_primary:
                    source = replace(source, is_primary=False)
                has_primary = True
            seen_ids.add(source.id)
            seen_urls.add(source.url)
            loaded.append(source)

        with self._write_lock:
            self._snapshot = tuple(loaded)

    def _require(self, source_id: str) -> ConfigSource:
        source = self.get(source_id)
        if source is None:
            raise UnknownSourceError(
                code="unknown_source",
                message=f"Config source not found: {source_id}",
                details={"id": source_id},
            )
        return source

    def _commit(self, updated: ConfigSource) -> None:
        self._snapshot = tuple(updated if s.id == updated.id else s for s in self._snapshot)

    def _notify(self, event: str, source: ConfigSource) -> None:
        for listener in list(self._listeners):
            listener(event, source)
