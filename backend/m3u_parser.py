"""
M3U Playlist Parser

Turns raw playlist bytes/text into an ordered list of PlaylistEntry objects
plus line-numbered diagnostics. Single pass over the lines; malformed items
are recorded as diagnostics and never abort the parse.

Recognised directives:
    #EXTM3U                      header (ignored)
    #EXTINF:<duration> k="v",T   metadata for the next URL line
    #EXTVLCOPT:key=value         per-entry HTTP options for the next URL line
    #EXTGRP:<group>              group override for the next entry
    #...                         any other comment is skipped
"""
import re
import time
import logging
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urlsplit, unquote

from log_utils import log_excerpt

logger = logging.getLogger(__name__)

EXTM3U_PREFIX = "#EXTM3U"
EXTINF_PREFIX = "#EXTINF:"
EXTVLCOPT_PREFIX = "#EXTVLCOPT:"
EXTGRP_PREFIX = "#EXTGRP:"

# key="value" or key='value'; the closing quote must match the opening one
_ATTRIBUTE_RE = re.compile(r"""([A-Za-z0-9_-]+)\s*=\s*(["'])(.*?)\2""")
_SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]*$")

_GROUP_OVERRIDE_KEY = "group-override"
_OPTION_ALIASES = {
    "http-referer": "http-referrer",
}


class PlaylistParseError(Exception):
    """Base class for fatal playlist parse failures."""


class NoValidEntriesError(PlaylistParseError):
    """Parsing finished but recovered zero entries."""

    def __init__(self, message: str = "Playlist contains no valid entries"):
        super().__init__(message)


class EmptyPlaylistError(NoValidEntriesError):
    """Input had no non-blank lines at all."""

    def __init__(self, message: str = "Playlist is empty"):
        super().__init__(message)


@dataclass
class PlaylistEntry:
    """One parsed playlist item, before it is assigned a catalog identity."""
    name: str
    url: str
    duration: Optional[int] = None
    tvg_id: Optional[str] = None
    tvg_name: Optional[str] = None
    tvg_logo: Optional[str] = None
    group_title: Optional[str] = None
    language: Optional[str] = None
    country: Optional[str] = None
    user_agent: Optional[str] = None
    referrer: Optional[str] = None
    extra_attributes: dict = field(default_factory=dict)

    @property
    def effective_name(self) -> str:
        """tvg-name when the playlist declares one, otherwise the title."""
        return self.tvg_name or self.name

    @property
    def logo_url(self) -> Optional[str]:
        return self.tvg_logo or None


@dataclass
class ParseDiagnostic:
    """A recoverable problem found on one line."""
    line: int
    message: str
    raw_content: Optional[str] = None


@dataclass
class ParsedPlaylist:
    entries: list
    parse_time: float
    errors: list = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return bool(self.entries)

    @property
    def unique_groups(self) -> set:
        return {e.group_title for e in self.entries if e.group_title}

    @property
    def unique_countries(self) -> set:
        return {e.country for e in self.entries if e.country}

    @property
    def unique_languages(self) -> set:
        return {e.language for e in self.entries if e.language}


@dataclass
class _ExtInf:
    duration: Optional[int]
    title: str
    attributes: dict


def decode_playlist(data: bytes) -> str:
    """Decode playlist bytes as UTF-8 (BOM tolerated), falling back to Latin-1."""
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        logger.debug("[M3U-PARSE] Payload is not UTF-8, decoding as Latin-1")
        return data.decode("latin-1")


def find_title_separator(content: str) -> int:
    """
    Index of the comma separating attributes from the title, or -1.

    Commas inside single- or double-quoted attribute values are skipped.
    """
    quote_char = None
    for index, char in enumerate(content):
        if quote_char is None:
            if char in ('"', "'"):
                quote_char = char
            elif char == ",":
                return index
        elif char == quote_char:
            quote_char = None
    return -1


def parse_attributes(text: str) -> dict:
    """Parse key="value" pairs; keys are lowercased, later keys win."""
    return {m.group(1).lower(): m.group(3) for m in _ATTRIBUTE_RE.finditer(text)}


def _parse_duration(token: str) -> Optional[int]:
    try:
        return int(token)
    except ValueError:
        pass
    try:
        return int(token.replace("-", ""))
    except ValueError:
        return None


def parse_extinf(line: str) -> _ExtInf:
    """Parse '#EXTINF:<duration> attrs...,Title'."""
    content = line[len(EXTINF_PREFIX):]

    separator = find_title_separator(content)
    if separator < 0:
        return _ExtInf(duration=_parse_duration(content.strip()), title="Unknown", attributes={})

    attribute_part = content[:separator].strip()
    title = content[separator + 1:].strip()

    parts = attribute_part.split(None, 1)
    duration = _parse_duration(parts[0]) if parts else None
    attribute_text = parts[1] if len(parts) > 1 else ""

    return _ExtInf(duration=duration, title=title, attributes=parse_attributes(attribute_text))


def parse_vlc_option(line: str) -> Optional[tuple]:
    """Parse '#EXTVLCOPT:key=value' into a (key, value) tuple."""
    content = line[len(EXTVLCOPT_PREFIX):]
    key, sep, value = content.partition("=")
    if not sep:
        return None
    key = key.strip().lower()
    return _OPTION_ALIASES.get(key, key), value.strip()


def is_valid_stream_url(text: str) -> bool:
    """Absolute URL with a scheme; whitespace and bare drive letters are rejected."""
    if not text or any(c.isspace() for c in text):
        return False
    try:
        parts = urlsplit(text)
        # Port is only validated on access
        parts.port
    except ValueError:
        return False
    scheme = parts.scheme
    if len(scheme) < 2 or not _SCHEME_RE.match(scheme):
        return False
    return bool(parts.netloc or parts.path)


def fallback_entry_name(url: str) -> str:
    """Name for a URL line without metadata: last path segment, else host."""
    parts = urlsplit(url)
    segment = unquote(parts.path.rstrip("/").rsplit("/", 1)[-1])
    if segment:
        return segment
    return parts.hostname or "Unknown"


class M3UParser:
    """
    Stateless M3U/M3U8 parser.

    Usage:
        parser = M3UParser()
        playlist = parser.parse_bytes(data)
        for entry in playlist.entries: ...
    """

    def parse_bytes(self, data: bytes) -> ParsedPlaylist:
        return self.parse_text(decode_playlist(data))

    def parse_text(self, content: str) -> ParsedPlaylist:
        start = time.perf_counter()

        lines = content.splitlines()
        if not content.strip():
            raise EmptyPlaylistError()

        entries = []
        errors = []
        current_extinf: Optional[_ExtInf] = None
        current_extras: dict = {}

        for index, raw_line in enumerate(lines):
            line = raw_line.strip()
            if not line:
                continue

            if line.startswith(EXTM3U_PREFIX):
                continue

            if line.startswith(EXTINF_PREFIX):
                current_extinf = parse_extinf(line)
                continue

            if line.startswith(EXTVLCOPT_PREFIX):
                option = parse_vlc_option(line)
                if option:
                    current_extras[option[0]] = option[1]
                continue

            if line.startswith(EXTGRP_PREFIX):
                group = line[len(EXTGRP_PREFIX):].strip()
                if group:
                    current_extras[_GROUP_OVERRIDE_KEY] = group
                continue

            if line.startswith("#"):
                continue

            if not is_valid_stream_url(line):
                if current_extinf is not None:
                    errors.append(ParseDiagnostic(
                        line=index + 1,
                        message="Invalid URL after EXTINF",
                        raw_content=line,
                    ))
                current_extinf = None
                current_extras = {}
                continue

            if current_extinf is not None:
                attrs = current_extinf.attributes
                entries.append(PlaylistEntry(
                    name=current_extinf.title,
                    url=line,
                    duration=current_extinf.duration,
                    tvg_id=attrs.get("tvg-id"),
                    tvg_name=attrs.get("tvg-name"),
                    tvg_logo=attrs.get("tvg-logo"),
                    group_title=current_extras.get(_GROUP_OVERRIDE_KEY) or attrs.get("group-title"),
                    language=attrs.get("tvg-language"),
                    country=attrs.get("tvg-country"),
                    user_agent=current_extras.get("http-user-agent"),
                    referrer=current_extras.get("http-referrer"),
                    extra_attributes=dict(attrs),
                ))
            else:
                entries.append(PlaylistEntry(name=fallback_entry_name(line), url=line))

            current_extinf = None
            current_extras = {}

        parse_time = time.perf_counter() - start

        if not entries:
            raise NoValidEntriesError()

        if errors:
            logger.info("[M3U-PARSE] Parsed %s entries with %s diagnostics", len(entries), len(errors))
            for diag in errors:
                logger.debug("[M3U-PARSE] line %s: %s (%s)", diag.line, diag.message, log_excerpt(diag.raw_content))
        else:
            logger.debug("[M3U-PARSE] Parsed %s entries in %.3fs", len(entries), parse_time)

        return ParsedPlaylist(entries=entries, parse_time=parse_time, errors=errors)
