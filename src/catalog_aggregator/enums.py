"""
Enumeration types for the catalog aggregator.

These enums provide type-safe constants for health states, plugin states,
resolution outcomes and configuration options throughout the system.
"""

from enum import Enum


class HealthStatus(Enum):
    """Health of a config source derived from its recent fetch outcomes."""

    HEALTHY = "healthy"
    WARNING = "warning"
    ERROR = "error"
    UNKNOWN = "unknown"


class SiteKind(Enum):
    """Category of a catalog site, derived from its numeric type code."""

    VIDEO = "video"
    VIDEO_API = "video_api"
    VIDEO_SCRIPT = "video_script"
    OTHER = "other"

    @classmethod
    def from_type_code(cls, type_code: int) -> "SiteKind":
        """Map a catalog ``type`` code to a site kind."""
        if type_code == 0:
            return cls.VIDEO
        if type_code == 1:
            return cls.VIDEO_API
        if type_code == 3:
            return cls.VIDEO_SCRIPT
        return cls.OTHER


class ExtensionKind(Enum):
    """Discriminator for the opaque ``ext`` payload carried by catalog entries."""

    NONE = "none"
    TEXT = "text"
    MAPPING = "mapping"
    SEQUENCE = "sequence"


class LoadState(Enum):
    """Lifecycle state of a resolver plugin."""

    UNVERIFIED = "unverified"
    LOADED = "loaded"
    REJECTED = "rejected"


class AttemptOutcome(Enum):
    """Outcome of one plugin in a resolution fallback chain."""

    SUCCESS = "success"
    TIMEOUT = "timeout"
    NO_MATCH = "no_match"
    ERROR = "error"


class ResolutionState(Enum):
    """States of the resolution fallback chain."""

    PENDING = "pending"
    ATTEMPTING = "attempting"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"


class DrmScheme(Enum):
    """DRM schemes a resolver may report."""

    WIDEVINE = "widevine"
    PLAYREADY = "playready"
    FAIRPLAY = "fairplay"
    CLEARKEY = "clearkey"


class FetchErrorCode(Enum):
    """Error codes for catalog fetch operations."""

    NETWORK_ERROR = "network_error"
    TIMEOUT = "timeout"
    HTTP_ERROR = "http_error"
    SERVER_ERROR = "server_error"
    INVALID_URL = "invalid_url"


class ParseErrorCode(Enum):
    """Error codes for catalog parse operations."""

    DECODE_ERROR = "decode_error"
    INVALID_JSON = "invalid_json"
    INVALID_SCHEMA = "invalid_schema"


class SortOption(Enum):
    """Orderings available when listing directory sites."""

    QUALITY = "quality"
    RELIABILITY = "reliability"
    RECENT = "recent"
    NAME = "name"


class LogLevel(Enum):
    """Logging severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
