"""
Audit Logger module for the catalog aggregator.

Provides structured logging with dual-format output (JSON and human-readable
text), a minimum-level filter, and sensitive data masking so that tokens or
secrets embedded in source URLs and headers never reach the log stream.
"""

import json
import re
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, TextIO
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from catalog_aggregator.enums import LogLevel

_LEVEL_ORDER = {
    LogLevel.DEBUG: 0,
    LogLevel.INFO: 1,
    LogLevel.WARN: 2,
    LogLevel.ERROR: 3,
}

_URL_PATTERN = re.compile(r"^https?://", re.IGNORECASE)


@dataclass
class LogEntry:
    """One emitted log record."""

    timestamp: str
    level: LogLevel
    component: str
    message: str
    data: dict = field(default_factory=dict)


class AuditLogger:
    """
    Component-tagged structured logger.

    Every entry is kept in memory and written to the output stream as a JSON
    line, a text line, or both. Values under sensitive keys are replaced, and
    sensitive query parameters and userinfo are stripped from URL strings.
    """

    SENSITIVE_KEYS = frozenset({
        "token", "secret", "password", "api_key", "apikey", "hmac_secret",
        "auth", "authorization", "cookie", "credential", "private_key",
        "access_token", "refresh_token", "license_headers", "sign", "key_id",
    })

    MASK_VALUE = "***MASKED***"

    def __init__(
        self,
        output_format: str = "text",
        output_stream: Optional[TextIO] = None,
        level: str = "info",
    ):
        """
        Args:
            output_format: 'json', 'text', or 'both'
            output_stream: Destination stream (defaults to sys.stderr)
            level: Minimum level to emit ('debug', 'info', 'warn', 'error')
        """
        if output_format not in ("json", "text", "both"):
            raise ValueError(f"Invalid output_format: {output_format}")

        self._output_format = output_format
        self._output_stream = output_stream or sys.stderr
        self._min_level = LogLevel(level)
        self._entries: list[LogEntry] = []

    @property
    def output_format(self) -> str:
        return self._output_format

    @property
    def entries(self) -> list[LogEntry]:
        """Snapshot of every entry emitted so far."""
        return list(self._entries)

    def is_enabled_for(self, level: LogLevel) -> bool:
        return _LEVEL_ORDER[level] >= _LEVEL_ORDER[self._min_level]

    def log(
        self,
        level: LogLevel,
        component: str,
        message: str,
        data: Optional[dict] = None,
    ) -> Optional[LogEntry]:
        """
        Record and write an entry.

        Returns:
            The entry, or None when ``level`` is below the configured minimum
        """
        if not self.is_enabled_for(level):
            return None

        entry = LogEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            level=level,
            component=component,
            message=message,
            data=self.mask_sensitive_data(data or {}),
        )
        self._entries.append(entry)
        self._write(entry)
        return entry

    def log_error(
        self,
        component: str,
        message: str,
        error: Optional[Exception] = None,
        source_url: Optional[str] = None,
        additional_data: Optional[dict] = None,
    ) -> Optional[LogEntry]:
        """
        Log an error entry enriched with the exception's type, message and code.

        Args:
            component: Component name generating the log
            message: Human-readable error message
            error: Exception that caused the error
            source_url: Config source URL involved, if any
            additional_data: Extra context merged into the entry data
        """
        data = dict(additional_data or {})

        if error is not None:
            data["error_type"] = type(error).__name__
            data["error_message"] = str(error)
            code = getattr(error, "code", None)
            if code is not None:
                data["error_code"] = code

        if source_url is not None:
            data["source_url"] = source_url

        return self.log(LogLevel.ERROR, component, message, data)

    def is_sensitive_key(self, key: Any) -> bool:
        lowered = str(key).lower()
        return any(sensitive in lowered for sensitive in self.SENSITIVE_KEYS)

    def mask_sensitive_data(self, data: dict) -> dict:
        """Return a masked copy of ``data``; the input is left untouched."""
        if not isinstance(data, dict):
            return data
        return {
            key: self.MASK_VALUE if self.is_sensitive_key(key) else self._mask_value(value)
            for key, value in data.items()
        }

    def _mask_value(self, value: Any) -> Any:
        if isinstance(value, dict):
            return self.mask_sensitive_data(value)
        if isinstance(value, (list, tuple)):
            return [self._mask_value(item) for item in value]
        if isinstance(value, str) and _URL_PATTERN.match(value):
            return self.mask_url(value)
        return value

    def mask_url(self, url: str) -> str:
        """Mask userinfo and sensitive query parameters in a URL."""
        try:
            parts = urlsplit(url)
        except ValueError:
            return url

        netloc = parts.netloc
        if "@" in netloc:
            netloc = f"{self.MASK_VALUE}@{netloc.rsplit('@', 1)[1]}"

        query = parts.query
        if query:
            pairs = parse_qsl(query, keep_blank_values=True)
            if any(self.is_sensitive_key(name) for name, _ in pairs):
                query = urlencode([
                    (name, self.MASK_VALUE if self.is_sensitive_key(name) else value)
                    for name, value in pairs
                ])

        if netloc == parts.netloc and query == parts.query:
            return url
        return urlunsplit((parts.scheme, netloc, parts.path, query, parts.fragment))

    def _write(self, entry: LogEntry) -> None:
        lines = []
        if self._output_format in ("json", "both"):
            lines.append(self.format_json(entry))
        if self._output_format in ("text", "both"):
            lines.append(self.format_text(entry))

        for line in lines:
            self._output_stream.write(line + "\n")
        self._output_stream.flush()

    def format_json(self, entry: LogEntry) -> str:
        return json.dumps(
            {
                "timestamp": entry.timestamp,
                "level": entry.level.value,
                "component": entry.component,
                "message": entry.message,
                "data": entry.data,
            },
            ensure_ascii=False,
            default=str,
        )

    def format_text(self, entry: LogEntry) -> str:
        """``[TIMESTAMP] LEVEL [COMPONENT] MESSAGE {data}``"""
        line = f"[{entry.timestamp}] {entry.level.value.upper()} [{entry.component}] {entry.message}"
        if entry.data:
            line += " " + json.dumps(entry.data, ensure_ascii=False, default=str)
        return line


class ComponentLogging:
    """Mixin providing the optional-logger helpers used by every component."""

    _logger: Optional[AuditLogger] = None
    COMPONENT = "catalog"

    def _log_debug(self, message: str, data: Optional[dict] = None) -> None:
        if self._logger:
            self._logger.log(LogLevel.DEBUG, self.COMPONENT, message, data)

    def _log_info(self, message: str, data: Optional[dict] = None) -> None:
        if self._logger:
            self._logger.log(LogLevel.INFO, self.COMPONENT, message, data)

    def _log_warn(self, message: str, data: Optional[dict] = None) -> None:
        if self._logger:
            self._logger.log(LogLevel.WARN, self.COMPONENT, message, data)

    def _log_error(
        self,
        message: str,
        error: Optional[Exception] = None,
        data: Optional[dict] = None,
    ) -> None:
        if self._logger:
            self._logger.log_error(self.COMPONENT, message, error=error, additional_data=data)
