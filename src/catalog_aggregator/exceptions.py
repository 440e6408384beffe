"""
Exception classes for the catalog aggregator.

All exceptions inherit from CatalogAggregatorError and provide structured
error information with codes, messages, and optional details.
"""

from typing import Optional


class CatalogAggregatorError(Exception):
    """Base exception for all catalog aggregator errors."""

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"

    def to_dict(self) -> dict:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(CatalogAggregatorError):
    """Raised when a configuration violates its invariants."""

    pass


class DuplicateSourceError(CatalogAggregatorError):
    """Raised when a config source with the same id or URL is already registered."""

    pass


class UnknownSourceError(CatalogAggregatorError):
    """Raised when a registry operation names a source id that does not exist."""

    pass


class SourceFetchError(CatalogAggregatorError):
    """Raised when a config source cannot be retrieved (network, timeout, HTTP status)."""

    pass


class SourceParseError(CatalogAggregatorError):
    """Raised when a config source body is malformed or fails schema validation."""

    pass


class AggregationFailedError(CatalogAggregatorError):
    """Raised when every enabled source failed during an aggregation cycle."""

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict] = None,
        notes: Optional[list] = None,
    ) -> None:
        super().__init__(code, message, details)
        self.notes = list(notes or [])


class PluginChecksumError(CatalogAggregatorError):
    """Raised when resolver plugin bytes do not match the declared checksum."""

    pass


class PluginLoadError(CatalogAggregatorError):
    """Raised when verified plugin bytes cannot be turned into a resolver."""

    pass


class NoResolverAvailableError(CatalogAggregatorError):
    """Raised when no loaded plugin can serve an entry; no network call is made."""

    pass


class ResolutionExhaustedError(CatalogAggregatorError):
    """
    Describes a fallback chain that ran out of plugins without success.

    This is attached to a ResolutionResult and never raised by the executor.
    """

    pass


class UnknownEntryError(CatalogAggregatorError):
    """Raised when a directory entry key is not present in the current directory."""

    pass


class PersistenceError(CatalogAggregatorError):
    """Raised when persistence operations fail (file I/O, HMAC validation)."""

    pass


class TamperingError(PersistenceError):
    """Raised when HMAC validation fails, indicating data tampering."""

    pass
