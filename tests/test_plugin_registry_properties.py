"""
Property-based tests for the Resolver Plugin Registry.

Verifies checksum validation across digest algorithms, frozen rejection of
(id, checksum) pairs, loader failures and candidate ordering.
"""

import hashlib

from hypothesis import assume, given, settings
from hypothesis import strategies as st

import pytest

from catalog_aggregator.enums import LoadState, SiteKind
from catalog_aggregator.exceptions import PluginChecksumError, PluginLoadError
from catalog_aggregator.models import PluginDescriptor
from catalog_aggregator.plugin_registry import (
    ResolverPluginRegistry,
    compute_checksum,
    split_checksum,
    verify_checksum,
)

from helpers import FakeClock, FakeResolver


class CountingLoader:
    """Loader that records every call and returns a FakeResolver."""

    def __init__(self, fail: bool = False) -> None:
        self.calls = 0
        self.fail = fail

    def __call__(self, descriptor: PluginDescriptor, data: bytes):
        self.calls += 1
        if self.fail:
            raise ValueError("bad plugin bytes")
        return FakeResolver("none")


def descriptor_for(
    plugin_id: str,
    data: bytes,
    algo: str = "sha256",
    formats=("video",),
    priority: int = 0,
) -> PluginDescriptor:
    return PluginDescriptor(
        id=plugin_id,
        checksum=compute_checksum(data, algo),
        supported_formats=tuple(formats),
        priority=priority,
    )


class TestChecksumValidationProperty:
    """Matching bytes load; the algorithm follows the digest length or prefix."""

    @given(
        data=st.binary(max_size=256),
        algo=st.sampled_from(["md5", "sha1", "sha256"]),
        upper=st.booleans(),
        prefixed=st.booleans(),
    )
    @settings(max_examples=100)
    def test_matching_checksum_loads(
        self,
        data: bytes,
        algo: str,
        upper: bool,
        prefixed: bool,
    ) -> None:
        digest = hashlib.new(algo, data).hexdigest()
        declared = digest.upper() if upper else digest
        if prefixed:
            declared = f"{algo}:{declared}"

        loader = CountingLoader()
        registry = ResolverPluginRegistry(loader, clock=FakeClock())
        plugin = registry.load(
            PluginDescriptor(id="p", checksum=declared, supported_formats=("video",)),
            data,
        )

        assert plugin.load_state == LoadState.LOADED
        assert registry.is_eligible("p")
        assert loader.calls == 1

    @given(data=st.binary(min_size=1, max_size=64), flip=st.integers(min_value=0, max_value=63))
    @settings(max_examples=100)
    def test_tampered_bytes_rejected(self, data: bytes, flip: int) -> None:
        tampered = bytearray(data)
        tampered[flip % len(data)] ^= 0xFF

        assert verify_checksum(data, compute_checksum(data)) is True
        assert verify_checksum(bytes(tampered), compute_checksum(data)) is False

    def test_unknown_digest_length_is_rejected(self) -> None:
        with pytest.raises(PluginChecksumError):
            split_checksum("abc123")
        with pytest.raises(PluginChecksumError):
            split_checksum("crc32:deadbeef")


class TestFrozenRejectionProperty:
    """A rejected (id, checksum) pair stays rejected without re-verification."""

    @given(
        data=st.binary(min_size=1, max_size=64),
        retries=st.integers(min_value=1, max_value=5),
    )
    @settings(max_examples=50)
    def test_mismatch_stays_rejected(self, data: bytes, retries: int) -> None:
        loader = CountingLoader()
        registry = ResolverPluginRegistry(loader, clock=FakeClock())
        descriptor = descriptor_for("p", data + b"-other")

        with pytest.raises(PluginChecksumError) as first:
            registry.load(descriptor, data)
        assert first.value.code == "checksum_mismatch"

        for _ in range(retries):
            # Even the correct bytes cannot revive the same pair.
            with pytest.raises(PluginChecksumError) as again:
                registry.load(descriptor, data + b"-other")
            assert again.value.code == "checksum_rejected"

        assert registry.get("p").load_state == LoadState.REJECTED
        assert not registry.is_eligible("p")
        assert loader.calls == 0

    def test_new_checksum_may_retry(self) -> None:
        loader = CountingLoader()
        registry = ResolverPluginRegistry(loader, clock=FakeClock())
        data = b"plugin v2"

        with pytest.raises(PluginChecksumError):
            registry.load(descriptor_for("p", b"plugin v1"), data)

        plugin = registry.load(descriptor_for("p", data), data)

        assert plugin.load_state == LoadState.LOADED
        assert registry.is_eligible("p")

    @given(
        current=st.binary(min_size=1, max_size=64),
        update=st.binary(min_size=1, max_size=64),
    )
    @settings(max_examples=50)
    def test_rejected_update_keeps_loaded_version(self, current: bytes, update: bytes) -> None:
        assume(current != update + b"-declared")
        loader = CountingLoader()
        registry = ResolverPluginRegistry(loader, clock=FakeClock())
        loaded = registry.load(descriptor_for("p", current), current)
        bad_update = descriptor_for("p", update + b"-declared")

        with pytest.raises(PluginChecksumError):
            registry.load(bad_update, update)
        with pytest.raises(PluginChecksumError) as again:
            registry.load(bad_update, update + b"-declared")

        assert again.value.code == "checksum_rejected"
        assert registry.get("p") is loaded
        assert registry.is_rejected(bad_update)
        assert not registry.is_rejected(descriptor_for("p", current))
        assert registry.is_eligible("p")
        assert loader.calls == 1

    def test_loader_failure_raises_load_error(self) -> None:
        registry = ResolverPluginRegistry(CountingLoader(fail=True), clock=FakeClock())
        data = b"plugin"

        with pytest.raises(PluginLoadError):
            registry.load(descriptor_for("p", data), data)

        assert registry.get("p") is None

    def test_missing_loader_raises_load_error(self) -> None:
        registry = ResolverPluginRegistry(clock=FakeClock())
        data = b"plugin"

        with pytest.raises(PluginLoadError) as exc_info:
            registry.load(descriptor_for("p", data), data)

        assert exc_info.value.code == "no_loader"


class TestCandidatesProperty:
    """Candidates are eligible plugins for the kind, by priority then id."""

    @given(
        plugins=st.lists(
            st.tuples(
                st.integers(min_value=0, max_value=5),
                st.sampled_from([("video",), ("video_api",), ("*",), ("video", "video_api")]),
            ),
            min_size=1,
            max_size=8,
        ),
    )
    @settings(max_examples=100)
    def test_candidate_order(self, plugins) -> None:
        registry = ResolverPluginRegistry(CountingLoader(), clock=FakeClock())
        for i, (priority, formats) in enumerate(plugins):
            data = f"plugin-{i}".encode()
            registry.load(descriptor_for(f"p{i}", data, formats=formats, priority=priority), data)

        candidates = registry.candidates(SiteKind.VIDEO)

        expected = sorted(
            (
                (-priority, f"p{i}")
                for i, (priority, formats) in enumerate(plugins)
                if "video" in formats or "*" in formats
            ),
        )
        assert [p.id for p in candidates] == [plugin_id for _, plugin_id in expected]

    def test_unload_removes_eligibility(self) -> None:
        registry = ResolverPluginRegistry(CountingLoader(), clock=FakeClock())
        data = b"plugin"
        registry.load(descriptor_for("p", data), data)

        assert registry.unload("p") is True
        assert registry.unload("p") is False
        assert not registry.is_eligible("p")
        assert registry.candidates(SiteKind.VIDEO) == []

    def test_rejected_plugins_are_never_candidates(self) -> None:
        registry = ResolverPluginRegistry(CountingLoader(), clock=FakeClock())
        with pytest.raises(PluginChecksumError):
            registry.load(descriptor_for("bad", b"x", formats=("*",)), b"y")

        assert registry.candidates(SiteKind.OTHER) == []
        assert [p.id for p in registry.plugins()] == ["bad"]
