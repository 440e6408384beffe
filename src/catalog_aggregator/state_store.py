"""
State Store module for persisting registry records and directory snapshots.

This module provides HMAC-protected storage of named JSON blobs, ensuring
data integrity and detecting tampering. Each blob lives in its own file
inside the state directory.
"""

import hashlib
import hmac
import json
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from .exceptions import PersistenceError, TamperingError

_BLOB_NAME = re.compile(r"^[a-z0-9_\-]+$")


@runtime_checkable
class BlobStore(Protocol):
    """Persistence capability: load and save opaque serialized blobs by name."""

    def load(self, name: str) -> Optional[dict]:
        ...

    def save(self, name: str, data: dict) -> None:
        ...


class StateStore:
    """
    File-backed blob store with HMAC protection.

    Each blob is written as ``{"version", "updated_at", "data", "hmac"}``
    where the HMAC covers the other three fields.
    """

    VERSION = 1

    def __init__(self, state_dir: Path, hmac_secret: str) -> None:
        """
        Initialize the state store.

        Args:
            state_dir: Directory holding one JSON file per blob
            hmac_secret: Secret key for HMAC computation
        """
        self._state_dir = Path(state_dir)
        self._hmac_secret = hmac_secret.encode("utf-8")

    def path_for(self, name: str) -> Path:
        if not _BLOB_NAME.match(name):
            raise PersistenceError(
                code="invalid_name",
                message=f"Invalid blob name: {name!r}",
                details={"name": name},
            )
        return self._state_dir / f"{name}.json"

    def load(self, name: str) -> Optional[dict]:
        """
        Load a blob and validate its HMAC.

        Returns:
            The stored data, or None if the blob does not exist

        Raises:
            TamperingError: If HMAC validation fails
            PersistenceError: If the file cannot be read or parsed
        """
        file_path = self.path_for(name)
        if not file_path.exists():
            return None

        try:
            with open(file_path, "r", encoding="utf-8") as f:
                raw_data = json.load(f)
        except json.JSONDecodeError as e:
            raise PersistenceError(
                code="parse_error",
                message=f"Failed to parse state file: {e}",
                details={"file_path": str(file_path)},
            )
        except OSError as e:
            raise PersistenceError(
                code="io_error",
                message=f"Failed to read state file: {e}",
                details={"file_path": str(file_path)},
            )

        if not isinstance(raw_data, dict):
            raise PersistenceError(
                code="parse_error",
                message="State file does not contain an object",
                details={"file_path": str(file_path)},
            )

        stored_hmac = raw_data.get("hmac", "")
        computed_hmac = self.compute_hmac({
            "version": raw_data.get("version"),
            "updated_at": raw_data.get("updated_at"),
            "data": raw_data.get("data"),
        })

        if not self.validate_hmac(stored_hmac, computed_hmac):
            raise TamperingError(
                code="hmac_mismatch",
                message="HMAC validation failed - data may have been tampered with",
                details={"file_path": str(file_path)},
            )

        data = raw_data.get("data")
        return data if isinstance(data, dict) else None

    def save(self, name: str, data: dict) -> None:
        """
        Save a blob with HMAC protection.

        Raises:
            PersistenceError: If the file cannot be written or data is not serializable
        """
        file_path = self.path_for(name)
        now = datetime.now(timezone.utc).isoformat()

        body = {
            "version": self.VERSION,
            "updated_at": now,
            "data": data,
        }
        try:
            computed_hmac = self.compute_hmac(body)
        except (TypeError, ValueError) as e:
            raise PersistenceError(
                code="serialize_error",
                message=f"Blob {name!r} is not JSON serializable: {e}",
                details={"name": name},
            )

        output_data = dict(body, hmac=computed_hmac)

        self._state_dir.mkdir(parents=True, exist_ok=True)

        # Write to a sibling file first so a crash never leaves a torn blob.
        tmp_path = file_path.with_suffix(".json.tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(output_data, f, indent=2, sort_keys=True)
            tmp_path.replace(file_path)
        except OSError as e:
            raise PersistenceError(
                code="io_error",
                message=f"Failed to write state file: {e}",
                details={"file_path": str(file_path)},
            )

    def delete(self, name: str) -> None:
        """Remove a blob if it exists."""
        file_path = self.path_for(name)
        try:
            file_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise PersistenceError(
                code="io_error",
                message=f"Failed to delete state file: {e}",
                details={"file_path": str(file_path)},
            )

    def compute_hmac(self, data: dict) -> str:
        """
        Compute HMAC-SHA256 over serialized data.

        Returns:
            Hexadecimal HMAC string
        """
        serialized = json.dumps(data, sort_keys=True, separators=(",", ":"))
        return hmac.new(
            self._hmac_secret,
            serialized.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    def validate_hmac(self, stored_hmac: str, computed_hmac: str) -> bool:
        """Validate HMAC using constant-time comparison."""
        if not isinstance(stored_hmac, str):
            return False
        return hmac.compare_digest(stored_hmac, computed_hmac)

    @property
    def state_dir(self) -> Path:
        """Get the state directory."""
        return self._state_dir
