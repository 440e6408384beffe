"""
Resolver Plugin Registry for the catalog aggregator.

Plugins arrive as a descriptor plus raw bytes. The bytes are verified against
the declared checksum before the injected loader turns them into a resolver.
A rejected (id, checksum) pair stays rejected: only a descriptor with a new
checksum may try again.
"""

import hashlib
import hmac
import threading
import time
from types import MappingProxyType
from typing import Callable, Mapping, Optional

from .audit_logger import AuditLogger, ComponentLogging
from .enums import LoadState, SiteKind
from .exceptions import PluginChecksumError, PluginLoadError
from .models import PluginDescriptor, ResolverPlugin

# Hex digest length -> hashlib algorithm
DIGEST_LENGTHS = {32: "md5", 40: "sha1", 64: "sha256"}
SUPPORTED_ALGORITHMS = ("md5", "sha1", "sha256")
WILDCARD_FORMAT = "*"

PluginLoader = Callable[[PluginDescriptor, bytes], object]


def split_checksum(declared: str) -> tuple[str, str]:
    """
    Split a declared checksum into (algorithm, lowercase hex digest).

    Accepts ``algo:digest`` or a bare digest whose length selects the algorithm.

    Raises:
        PluginChecksumError: If the algorithm cannot be determined
    """
    text = declared.strip()
    if ":" in text:
        algo, digest = text.split(":", 1)
        algo = algo.strip().lower()
        digest = digest.strip().lower()
    else:
        digest = text.lower()
        algo = DIGEST_LENGTHS.get(len(digest), "")

    if algo not in SUPPORTED_ALGORITHMS:
        raise PluginChecksumError(
            code="unsupported_checksum",
            message=f"Cannot determine checksum algorithm for '{declared}'",
            details={"supported": list(SUPPORTED_ALGORITHMS)},
        )
    return algo, digest


def compute_checksum(data: bytes, algo: str = "sha256") -> str:
    """Hex digest of ``data`` using the named algorithm."""
    if algo not in SUPPORTED_ALGORITHMS:
        raise ValueError(f"Unsupported checksum algorithm: {algo}")
    return hashlib.new(algo, data).hexdigest()


def verify_checksum(data: bytes, declared: str) -> bool:
    algo, expected = split_checksum(declared)
    return hmac.compare_digest(compute_checksum(data, algo), expected)


class ResolverPluginRegistry(ComponentLogging):
    """Holds verified resolver plugins indexed by id."""

    COMPONENT = "PluginRegistry"

    def __init__(
        self,
        loader: Optional[PluginLoader] = None,
        clock: Callable[[], float] = time.time,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initialize the plugin registry.

        Args:
            loader: Turns verified plugin bytes into a resolver object
            clock: Returns the current time in epoch seconds
            logger: Optional audit logger
        """
        self._loader = loader
        self._clock = clock
        self._logger = logger
        self._lock = threading.Lock()
        self._plugins: Mapping[str, ResolverPlugin] = MappingProxyType({})
        self._rejected: dict[tuple[str, str], str] = {}

    def load(self, descriptor: PluginDescriptor, data: bytes) -> ResolverPlugin:
        """
        Verify and load a resolver plugin.

        Args:
            descriptor: Declared plugin identity and checksum
            data: Raw plugin bytes

        Returns:
            The loaded registry entry

        Raises:
            PluginChecksumError: If the bytes do not match the declared checksum,
                or this (id, checksum) pair was rejected before
            PluginLoadError: If the loader fails
        """
        pair = (descriptor.id, descriptor.checksum.strip().lower())

        previous_reason = self._rejected.get(pair)
        if previous_reason is not None:
            raise PluginChecksumError(
                code="checksum_rejected",
                message=f"Plugin {descriptor.id} was already rejected for this checksum",
                details={"plugin_id": descriptor.id, "reason": previous_reason},
            )

        try:
            matches = verify_checksum(data, descriptor.checksum)
        except PluginChecksumError as e:
            self._reject(descriptor, pair, e.message)
            raise

        if not matches:
            reason = "Checksum mismatch"
            self._reject(descriptor, pair, reason)
            raise PluginChecksumError(
                code="checksum_mismatch",
                message=f"Checksum mismatch for plugin {descriptor.id}",
                details={"plugin_id": descriptor.id},
            )

        if self._loader is None:
            raise PluginLoadError(
                code="no_loader",
                message="No plugin loader configured",
                details={"plugin_id": descriptor.id},
            )

        try:
            resolver = self._loader(descriptor, data)
        except Exception as e:
            self._log_error(
                f"Plugin loader failed: {descriptor.id}",
                error=e,
                data={"plugin_id": descriptor.id},
            )
            raise PluginLoadError(
                code="loader_failed",
                message=f"Failed to load plugin {descriptor.id}: {e}",
                details={"plugin_id": descriptor.id},
            ) from e

        plugin = ResolverPlugin(
            descriptor=descriptor,
            load_state=LoadState.LOADED,
            resolver=resolver,
            loaded_at=self._clock(),
        )
        self._store(plugin)
        self._log_info(
            f"Loaded resolver plugin: {descriptor.id}",
            {
                "plugin_id": descriptor.id,
                "version": descriptor.version,
                "formats": list(descriptor.supported_formats),
                "priority": descriptor.priority,
            },
        )
        return plugin

    def _reject(
        self,
        descriptor: PluginDescriptor,
        pair: tuple[str, str],
        reason: str,
    ) -> None:
        self._rejected[pair] = reason
        # A failed update leaves an already loaded version in service.
        with self._lock:
            current = self._plugins.get(descriptor.id)
            kept = current is not None and current.load_state == LoadState.LOADED
            if not kept:
                plugins = dict(self._plugins)
                plugins[descriptor.id] = ResolverPlugin(
                    descriptor=descriptor,
                    load_state=LoadState.REJECTED,
                    rejection_reason=reason,
                )
                self._plugins = MappingProxyType(plugins)
        self._log_warn(
            f"Rejected resolver plugin: {descriptor.id}",
            {"plugin_id": descriptor.id, "reason": reason, "kept_loaded": kept},
        )

    def _store(self, plugin: ResolverPlugin) -> None:
        with self._lock:
            plugins = dict(self._plugins)
            plugins[plugin.id] = plugin
            self._plugins = MappingProxyType(plugins)

    def unload(self, plugin_id: str) -> bool:
        """
        Remove a plugin. In-flight resolutions keep their reference.

        Returns:
            True if the plugin was present
        """
        with self._lock:
            if plugin_id not in self._plugins:
                return False
            plugins = dict(self._plugins)
            del plugins[plugin_id]
            self._plugins = MappingProxyType(plugins)
        self._log_info(f"Unloaded resolver plugin: {plugin_id}", {"plugin_id": plugin_id})
        return True

    def get(self, plugin_id: str) -> Optional[ResolverPlugin]:
        return self._plugins.get(plugin_id)

    def plugins(self) -> list[ResolverPlugin]:
        return list(self._plugins.values())

    def is_rejected(self, descriptor: PluginDescriptor) -> bool:
        """Whether this exact (id, checksum) pair has been rejected."""
        return (descriptor.id, descriptor.checksum.strip().lower()) in self._rejected

    def is_eligible(self, plugin_id: str) -> bool:
        plugin = self._plugins.get(plugin_id)
        return plugin is not None and plugin.load_state == LoadState.LOADED

    def candidates(self, kind: SiteKind) -> list[ResolverPlugin]:
        """Loaded plugins supporting ``kind``, by priority descending then id."""
        eligible = [
            plugin for plugin in self._plugins.values()
            if plugin.load_state == LoadState.LOADED
            and (
                kind.value in plugin.supported_formats
                or WILDCARD_FORMAT in plugin.supported_formats
            )
        ]
        return sorted(eligible, key=lambda p: (-p.priority, p.id))
