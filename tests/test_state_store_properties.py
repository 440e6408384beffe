"""
Property-based tests for State Store module.

Uses Hypothesis to verify that blobs round-trip through the HMAC-protected
files and that any modification on disk is detected.
"""

import json
import tempfile
from pathlib import Path

from hypothesis import given, settings, assume
from hypothesis import strategies as st

import pytest

from catalog_aggregator.exceptions import PersistenceError, TamperingError
from catalog_aggregator.models import ConfigSource
from catalog_aggregator.state_store import BlobStore, StateStore


# Strategies for generating valid test data

json_values = st.recursive(
    st.one_of(
        st.none(),
        st.booleans(),
        st.integers(min_value=-10**9, max_value=10**9),
        st.text(max_size=20),
    ),
    lambda children: st.one_of(
        st.lists(children, max_size=4),
        st.dictionaries(st.text(max_size=8), children, max_size=4),
    ),
    max_leaves=20,
)


@st.composite
def blob_strategy(draw) -> dict:
    """Generate JSON-serializable blobs."""
    return draw(st.dictionaries(st.text(min_size=1, max_size=10), json_values, max_size=6))


@st.composite
def source_strategy(draw) -> ConfigSource:
    """Generate registry records like the ones persisted by the service."""
    source_id = draw(st.text(
        alphabet=st.sampled_from("abcdefghijklmnopqrstuvwxyz0123456789"),
        min_size=1,
        max_size=12,
    ))
    return ConfigSource(
        id=source_id,
        url=f"https://{source_id}.example/config.json",
        name=draw(st.text(max_size=20)),
        priority=draw(st.integers(min_value=0, max_value=100)),
        enabled=draw(st.booleans()),
        is_primary=draw(st.booleans()),
        consecutive_failures=draw(st.integers(min_value=0, max_value=10)),
    )


@st.composite
def hmac_secret_strategy(draw) -> str:
    """Generate valid HMAC secrets."""
    return draw(st.text(
        alphabet=st.sampled_from("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"),
        min_size=16,
        max_size=64,
    ))


class TestBlobRoundTripProperty:
    """Saved blobs load back unchanged."""

    @given(blob=blob_strategy(), secret=hmac_secret_strategy())
    @settings(max_examples=100)
    def test_blob_round_trip(self, blob: dict, secret: str) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = StateStore(Path(tmpdir), secret)

            store.save("directory", blob)

            assert store.load("directory") == blob

    @given(sources=st.lists(source_strategy(), max_size=5), secret=hmac_secret_strategy())
    @settings(max_examples=50)
    def test_source_records_round_trip(self, sources: list[ConfigSource], secret: str) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = StateStore(Path(tmpdir), secret)

            store.save("sources", {"version": 1, "sources": [s.to_dict() for s in sources]})
            loaded = store.load("sources")

            restored = [ConfigSource.from_dict(item) for item in loaded["sources"]]
            assert restored == sources

    def test_missing_blob_is_none(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = StateStore(Path(tmpdir) / "nested", "secret-secret-secret")
            assert store.load("sources") is None

    def test_delete_removes_blob(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = StateStore(Path(tmpdir), "secret-secret-secret")
            store.save("sources", {"a": 1})

            store.delete("sources")
            store.delete("sources")

            assert store.load("sources") is None

    def test_satisfies_blob_store_protocol(self) -> None:
        assert isinstance(StateStore(Path("."), "secret"), BlobStore)

    @given(name=st.sampled_from(["../escape", "Directory", "a b", "", "x.json"]))
    @settings(max_examples=10)
    def test_invalid_names_rejected(self, name: str) -> None:
        store = StateStore(Path("."), "secret")
        with pytest.raises(PersistenceError) as exc_info:
            store.path_for(name)
        assert exc_info.value.code == "invalid_name"


class TestTamperDetectionProperty:
    """Any change to a stored blob is reported as tampering."""

    @given(blob=blob_strategy(), secret=hmac_secret_strategy())
    @settings(max_examples=100)
    def test_modified_data_rejected(self, blob: dict, secret: str) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = StateStore(Path(tmpdir), secret)
            store.save("directory", blob)

            file_path = store.path_for("directory")
            with open(file_path, "r", encoding="utf-8") as f:
                raw_data = json.load(f)
            raw_data["data"]["__injected__"] = True
            with open(file_path, "w", encoding="utf-8") as f:
                json.dump(raw_data, f)

            with pytest.raises(TamperingError) as exc_info:
                store.load("directory")
            assert exc_info.value.code == "hmac_mismatch"

    @given(
        blob=blob_strategy(),
        secret=hmac_secret_strategy(),
        tampered_hmac=st.text(
            alphabet=st.sampled_from("0123456789abcdef"),
            min_size=64,
            max_size=64,
        ),
    )
    @settings(max_examples=100)
    def test_invalid_hmac_rejected(self, blob: dict, secret: str, tampered_hmac: str) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = StateStore(Path(tmpdir), secret)
            store.save("directory", blob)

            file_path = store.path_for("directory")
            with open(file_path, "r", encoding="utf-8") as f:
                raw_data = json.load(f)
            assume(tampered_hmac != raw_data["hmac"])
            raw_data["hmac"] = tampered_hmac
            with open(file_path, "w", encoding="utf-8") as f:
                json.dump(raw_data, f)

            with pytest.raises(TamperingError):
                store.load("directory")

    @given(
        blob=blob_strategy(),
        secret1=hmac_secret_strategy(),
        secret2=hmac_secret_strategy(),
    )
    @settings(max_examples=100)
    def test_wrong_secret_rejected(self, blob: dict, secret1: str, secret2: str) -> None:
        assume(secret1 != secret2)

        with tempfile.TemporaryDirectory() as tmpdir:
            StateStore(Path(tmpdir), secret1).save("directory", blob)

            with pytest.raises(TamperingError):
                StateStore(Path(tmpdir), secret2).load("directory")

    def test_garbage_file_is_parse_error(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = StateStore(Path(tmpdir), "secret-secret-secret")
            store.path_for("sources").write_text("{not json", encoding="utf-8")

            with pytest.raises(PersistenceError) as exc_info:
                store.load("sources")
            assert exc_info.value.code == "parse_error"
