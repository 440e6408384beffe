"""
Property-based tests for the Source Registry module.

Uses Hypothesis to verify registry invariants: unique ids and URLs, at most
one primary source, and health transitions driven by fetch outcomes.
"""

from hypothesis import given, settings
from hypothesis import strategies as st

import pytest

from catalog_aggregator.enums import HealthStatus
from catalog_aggregator.exceptions import DuplicateSourceError, UnknownSourceError
from catalog_aggregator.models import ConfigSource
from catalog_aggregator.source_registry import SourceRegistry

from helpers import make_source


source_id_strategy = st.text(
    alphabet=st.sampled_from("abcdefghijklmnopqrstuvwxyz0123456789"),
    min_size=1,
    max_size=12,
)


class TestDuplicateRegistrationProperty:
    """Registering a duplicate id or URL fails and leaves the registry unchanged."""

    @given(
        ids=st.lists(source_id_strategy, min_size=1, max_size=8, unique=True),
        data=st.data(),
    )
    @settings(max_examples=100)
    def test_duplicate_id_leaves_registry_unchanged(self, ids: list[str], data) -> None:
        registry = SourceRegistry()
        for source_id in ids:
            registry.add(make_source(source_id))

        before = registry.sources()
        duplicate_id = data.draw(st.sampled_from(ids))

        with pytest.raises(DuplicateSourceError) as exc_info:
            registry.add(make_source(duplicate_id, url="https://other.example/new.json"))

        assert exc_info.value.details["field"] == "id"
        assert registry.sources() == before

    @given(ids=st.lists(source_id_strategy, min_size=1, max_size=8, unique=True))
    @settings(max_examples=50)
    def test_duplicate_url_is_rejected(self, ids: list[str]) -> None:
        registry = SourceRegistry()
        for source_id in ids:
            registry.add(make_source(source_id))

        existing = registry.sources()[0]
        with pytest.raises(DuplicateSourceError) as exc_info:
            registry.add(ConfigSource(id="brand-new-id", url=existing.url, name="copy"))

        assert exc_info.value.details["field"] == "url"
        assert len(registry) == len(ids)


class TestSinglePrimaryProperty:
    """At most one source is primary after any sequence of mutations."""

    @given(
        ids=st.lists(source_id_strategy, min_size=2, max_size=6, unique=True),
        primary_flags=st.lists(st.booleans(), min_size=6, max_size=6),
        data=st.data(),
    )
    @settings(max_examples=100)
    def test_at_most_one_primary(self, ids: list[str], primary_flags: list[bool], data) -> None:
        registry = SourceRegistry()
        for source_id, is_primary in zip(ids, primary_flags):
            registry.add(make_source(source_id, is_primary=is_primary))
            assert sum(1 for s in registry.sources() if s.is_primary) <= 1

        chosen = data.draw(st.sampled_from(ids))
        registry.set_primary(chosen)

        primaries = [s for s in registry.sources() if s.is_primary]
        assert [s.id for s in primaries] == [chosen]
        assert registry.primary().id == chosen


class TestHealthTransitionsProperty:
    """Consecutive failures move a source from warning to error at the threshold."""

    @given(
        threshold=st.integers(min_value=1, max_value=5),
        failures=st.integers(min_value=1, max_value=8),
    )
    @settings(max_examples=100)
    def test_failures_escalate_to_error(self, threshold: int, failures: int) -> None:
        registry = SourceRegistry()
        registry.add(make_source("a"))

        for i in range(failures):
            registry.record_fetch("a", False, 100.0 + i, threshold)

        source = registry.get("a")
        assert source.consecutive_failures == failures
        expected = HealthStatus.ERROR if failures >= threshold else HealthStatus.WARNING
        assert source.health_status == expected
        assert source.last_fetched_at is None

    @given(failures=st.integers(min_value=0, max_value=8))
    @settings(max_examples=50)
    def test_success_resets_failures(self, failures: int) -> None:
        registry = SourceRegistry()
        registry.add(make_source("a"))
        for i in range(failures):
            registry.record_fetch("a", False, float(i), 3)

        registry.record_fetch("a", True, 500.0, 3)

        source = registry.get("a")
        assert source.consecutive_failures == 0
        assert source.health_status == HealthStatus.HEALTHY
        assert source.last_fetched_at == 500.0

    def test_record_fetch_for_removed_source_is_ignored(self) -> None:
        registry = SourceRegistry()
        assert registry.record_fetch("missing", True, 1.0, 3) is None


class TestRegistryMutations:
    """Mutations notify listeners and reject unknown ids."""

    def test_listeners_receive_structural_events(self) -> None:
        registry = SourceRegistry()
        events = []
        registry.subscribe(lambda event, source: events.append((event, source.id)))

        registry.add(make_source("a"))
        registry.add(make_source("b"))
        registry.set_enabled("a", False)
        registry.set_enabled("a", True)
        registry.set_primary("b")
        registry.record_fetch("b", True, 1.0, 3)
        registry.remove("a")

        assert events == [
            ("add", "a"),
            ("add", "b"),
            ("disable", "a"),
            ("enable", "a"),
            ("primary", "b"),
            ("remove", "a"),
        ]

    @pytest.mark.parametrize("operation", ["remove", "enable", "primary"])
    def test_unknown_id_raises(self, operation: str) -> None:
        registry = SourceRegistry()
        registry.add(make_source("a"))

        with pytest.raises(UnknownSourceError):
            if operation == "remove":
                registry.remove("zzz")
            elif operation == "enable":
                registry.set_enabled("zzz", True)
            else:
                registry.set_primary("zzz")

        assert [s.id for s in registry.sources()] == ["a"]

    def test_enabled_sources_excludes_disabled(self) -> None:
        registry = SourceRegistry()
        registry.add(make_source("a"))
        registry.add(make_source("b", enabled=False))

        assert [s.id for s in registry.enabled_sources()] == ["a"]
        assert "b" in registry
        assert "c" not in registry

    def test_snapshot_is_immutable_for_readers(self) -> None:
        registry = SourceRegistry()
        registry.add(make_source("a"))
        snapshot = registry.sources()

        registry.add(make_source("b"))

        assert [s.id for s in snapshot] == ["a"]
        assert [s.id for s in registry.sources()] == ["a", "b"]


class TestRecordPersistenceProperty:
    """to_records / load_records round-trip and repair bad input."""

    @given(ids=st.lists(source_id_strategy, min_size=0, max_size=8, unique=True))
    @settings(max_examples=50)
    def test_records_round_trip(self, ids: list[str]) -> None:
        registry = SourceRegistry()
        for priority, source_id in enumerate(ids):
            registry.add(make_source(source_id, priority=priority))
        if ids:
            registry.record_fetch(ids[0], True, 42.0, 3)

        restored = SourceRegistry()
        restored.load_records(registry.to_records())

        assert restored.sources() == registry.sources()

    def test_load_records_drops_duplicates_and_extra_primaries(self) -> None:
        records = [
            make_source("a", is_primary=True).to_dict(),
            make_source("a", url="https://elsewhere.example/a.json").to_dict(),
            make_source("b", url="https://a.example/config.json").to_dict(),
            make_source("c", is_primary=True).to_dict(),
        ]

        registry = SourceRegistry()
        registry.load_records(records)

        assert [s.id for s in registry.sources()] == ["a", "c"]
        assert [s.id for s in registry.sources() if s.is_primary] == ["a"]
