"""
Catalog Parser for config source bodies.

Turns the raw bytes of a config source into an immutable CatalogFragment.
Only known fields are interpreted; unknown top-level fields are ignored and
unknown site fields are carried through untouched in ``extras``.
"""

import json
from datetime import datetime
from typing import Any, Optional

from .enums import ParseErrorCode, SiteKind
from .exceptions import SourceParseError
from .models import (
    CatalogFragment,
    ConfigSource,
    LiveEntry,
    ResolutionHint,
    ResolverDescriptor,
    RuleEntry,
    SiteEntry,
    SiteExtension,
    SpiderDescriptor,
)


class CatalogParser:
    """Parser for the JSON catalog format (``sites``/``parses``/``rules``/``lives``)."""

    REQUIRED_FIELDS = ("sites",)

    # Site fields with a dedicated attribute; everything else goes to extras.
    KNOWN_SITE_FIELDS = frozenset({
        "key", "name", "type", "api", "searchable", "quickSearch",
        "filterable", "ext", "parsers", "fallbackParsers", "updatedAt",
        "updated_at",
    })

    def parse(
        self,
        raw: bytes,
        source: ConfigSource,
        fetched_at: float,
    ) -> CatalogFragment:
        """
        Parse a config source body.

        Args:
            raw: Raw response bytes
            source: The source the bytes came from
            fetched_at: Fetch timestamp (epoch seconds)

        Returns:
            The parsed CatalogFragment

        Raises:
            SourceParseError: If the body is not valid JSON or lacks required fields
        """
        data = self._decode(raw, source)

        if not isinstance(data, dict):
            raise SourceParseError(
                code=ParseErrorCode.INVALID_SCHEMA.value,
                message="Config source top level must be an object",
                details={"source_id": source.id, "type": type(data).__name__},
            )

        missing = [name for name in self.REQUIRED_FIELDS if name not in data]
        if missing:
            raise SourceParseError(
                code=ParseErrorCode.INVALID_SCHEMA.value,
                message=f"Missing required config fields: {', '.join(missing)}",
                details={"source_id": source.id, "missing": missing},
            )
        if not isinstance(data["sites"], list):
            raise SourceParseError(
                code=ParseErrorCode.INVALID_SCHEMA.value,
                message="Config field 'sites' must be a list",
                details={"source_id": source.id},
            )

        sites, skipped = self._parse_sites(data["sites"])

        return CatalogFragment(
            source_id=source.id,
            source_url=source.url,
            fetched_at=fetched_at,
            sites=tuple(sites),
            resolvers=tuple(self._parse_resolvers(self._as_list(data.get("parses")))),
            rules=tuple(self._parse_rules(self._as_list(data.get("rules")))),
            lives=tuple(self._parse_lives(self._as_list(data.get("lives")))),
            wallpapers=tuple(self._parse_wallpapers(data.get("wallpaper"))),
            spider=self._parse_spider(data.get("spider")),
            skipped_entries=skipped,
        )

    def _decode(self, raw: bytes, source: ConfigSource) -> Any:
        try:
            text = raw.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise SourceParseError(
                code=ParseErrorCode.DECODE_ERROR.value,
                message=f"Config source is not valid UTF-8: {e}",
                details={"source_id": source.id},
            )

        # Hand-edited catalogs often carry full-line // comments.
        lines = [line for line in text.splitlines() if not line.lstrip().startswith("//")]

        try:
            return json.loads("\n".join(lines))
        except json.JSONDecodeError as e:
            raise SourceParseError(
                code=ParseErrorCode.INVALID_JSON.value,
                message=f"Invalid JSON format: {e.msg}",
                details={"source_id": source.id, "line": e.lineno, "column": e.colno},
            )
        except (RecursionError, ValueError) as e:
            # Nesting deeper than the interpreter's recursion limit.
            raise SourceParseError(
                code=ParseErrorCode.INVALID_JSON.value,
                message=f"Invalid JSON format: {type(e).__name__}",
                details={"source_id": source.id},
            )

    def _parse_sites(self, raw_sites: list) -> tuple[list[SiteEntry], int]:
        sites: list[SiteEntry] = []
        seen: set[str] = set()
        skipped = 0

        for raw_site in raw_sites:
            site = self._parse_site(raw_site) if isinstance(raw_site, dict) else None
            if site is None or site.key in seen:
                skipped += 1
                continue
            seen.add(site.key)
            sites.append(site)

        return sites, skipped

    def _parse_site(self, raw: dict) -> Optional[SiteEntry]:
        key = self._as_text(raw.get("key"))
        name = self._as_text(raw.get("name"))
        endpoint = self._as_text(raw.get("api"))
        if not (key and name and endpoint):
            return None

        type_code = self._as_int(raw.get("type"))
        fallback = raw.get("fallbackParsers", raw.get("parsers"))
        hint = None
        if isinstance(fallback, list):
            names = tuple(str(item) for item in fallback if isinstance(item, (str, int)))
            if names:
                hint = ResolutionHint(fallback_parsers=names)

        return SiteEntry(
            key=key,
            name=name,
            kind=SiteKind.from_type_code(type_code),
            endpoint=endpoint,
            type_code=type_code,
            searchable=self._as_bool(raw.get("searchable")),
            quick_search=self._as_bool(raw.get("quickSearch")),
            filterable=self._as_bool(raw.get("filterable")),
            extension=SiteExtension.wrap(raw.get("ext")),
            extras={k: v for k, v in raw.items() if k not in self.KNOWN_SITE_FIELDS},
            resolver_hint=hint,
            updated_at=self._as_timestamp(raw.get("updatedAt", raw.get("updated_at"))),
        )

    def _parse_resolvers(self, raw_parsers: list) -> list[ResolverDescriptor]:
        resolvers = []
        for raw in raw_parsers:
            if not isinstance(raw, dict):
                continue
            name = self._as_text(raw.get("name"))
            url = self._as_text(raw.get("url"))
            if not (name and url):
                continue
            flags = raw.get("flag")
            headers = raw.get("header")
            resolvers.append(ResolverDescriptor(
                name=name,
                url=url,
                type_code=self._as_int(raw.get("type")),
                flags=tuple(str(f) for f in flags) if isinstance(flags, list) else (),
                headers=dict(headers) if isinstance(headers, dict) else {},
                extension=SiteExtension.wrap(raw.get("ext")),
            ))
        return resolvers

    def _parse_rules(self, raw_rules: list) -> list[RuleEntry]:
        rules = []
        for raw in raw_rules:
            if not isinstance(raw, dict):
                continue
            hosts = self._as_str_tuple(raw.get("hosts", raw.get("host")))
            regex = self._as_str_tuple(raw.get("regex"))
            if not hosts and not regex:
                continue
            rules.append(RuleEntry(
                name=self._as_text(raw.get("name")) or ",".join(hosts),
                hosts=hosts,
                regex=regex,
                script=self._as_str_tuple(raw.get("script")),
            ))
        return rules

    def _parse_lives(self, raw_lives: list) -> list[LiveEntry]:
        lives = []
        for raw in raw_lives:
            if not isinstance(raw, dict):
                continue
            name = self._as_text(raw.get("name"))
            url = self._as_text(raw.get("url") or raw.get("api"))
            if not (name and url):
                continue
            player_type = raw.get("playerType")
            timeout = raw.get("timeout")
            lives.append(LiveEntry(
                name=name,
                url=url,
                type_code=self._as_int(raw.get("type")),
                player_type=self._as_int(player_type) if player_type is not None else None,
                user_agent=self._as_text(raw.get("ua")),
                epg=self._as_text(raw.get("epg")),
                logo=self._as_text(raw.get("logo")),
                timeout=float(timeout) if isinstance(timeout, (int, float)) else None,
                boot=self._as_bool(raw.get("boot")),
            ))
        return lives

    def _parse_wallpapers(self, wallpaper: Any) -> list[str]:
        if isinstance(wallpaper, list):
            return [url.strip() for url in wallpaper if isinstance(url, str) and url.strip()]
        if isinstance(wallpaper, str) and wallpaper.strip():
            return [wallpaper.strip()]
        return []

    def _parse_spider(self, spider: Any) -> Optional[SpiderDescriptor]:
        if isinstance(spider, dict):
            path = self._as_text(spider.get("path"))
            return SpiderDescriptor(path=path, md5=self._as_text(spider.get("md5"))) if path else None
        if isinstance(spider, str) and spider.strip():
            # "path;md5;<digest>"
            parts = spider.strip().split(";")
            md5 = parts[2] if len(parts) >= 3 and parts[1].lower() == "md5" else None
            return SpiderDescriptor(path=parts[0], md5=md5)
        return None

    @staticmethod
    def _as_list(value: Any) -> list:
        return value if isinstance(value, list) else []

    @staticmethod
    def _as_text(value: Any) -> Optional[str]:
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    @staticmethod
    def _as_int(value: Any) -> int:
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, int):
            return value
        if isinstance(value, str) and value.strip().lstrip("-").isdigit():
            return int(value.strip())
        return 0

    @staticmethod
    def _as_bool(value: Any) -> bool:
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes")
        return bool(value)

    @staticmethod
    def _as_str_tuple(value: Any) -> tuple[str, ...]:
        if isinstance(value, str):
            return (value,) if value.strip() else ()
        if isinstance(value, list):
            return tuple(str(item) for item in value if isinstance(item, (str, int)))
        return ()

    @staticmethod
    def _as_timestamp(value: Any) -> Optional[float]:
        if isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            # Millisecond epochs are common in hand-written catalogs.
            return float(value) / 1000.0 if value > 1e12 else float(value)
        if isinstance(value, str) and value.strip():
            try:
                parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
            except ValueError:
                return None
            return parsed.timestamp()
        return None
