"""
Factory functions for creating test data.

Each factory builds a catalog dataclass with sensible defaults that can be
overridden. Playlist helpers produce M3U text/bytes for parser and pipeline
tests, and StubFetcher stands in for PlaylistFetcher.
"""
from datetime import datetime, timedelta
from typing import Optional

from catalog_schema import (
    Channel, MediaStream, RefreshPolicy, Source, SourceType, StreamHealthStatus, utcnow,
)
from playlist_fetcher import FileAccessError


# Counter for generating unique names
_counter = {"value": 0}


def _next_id() -> int:
    """Generate a unique incrementing ID."""
    _counter["value"] += 1
    return _counter["value"]


def reset_counter() -> None:
    """Reset the counter (useful between tests)."""
    _counter["value"] = 0


# -----------------------------------------------------------------------------
# Playlists
# -----------------------------------------------------------------------------

SAMPLE_PLAYLIST = (
    "#EXTM3U\n"
    '#EXTINF:-1 tvg-id="test1" group-title="Sports",Channel 1\n'
    "http://example.com/stream1.m3u8\n"
    '#EXTINF:-1 tvg-id="test2" group-title="News",Channel 2\n'
    "http://example.com/stream2.m3u8"
)


def m3u_entry(
    name: str,
    url: str,
    tvg_id: Optional[str] = None,
    group: Optional[str] = None,
    **attributes,
) -> str:
    """One #EXTINF + URL pair. Extra attributes use underscores for dashes."""
    attrs = {}
    if tvg_id is not None:
        attrs["tvg-id"] = tvg_id
    if group is not None:
        attrs["group-title"] = group
    attrs.update({k.replace("_", "-"): v for k, v in attributes.items()})
    attr_text = "".join(f' {k}="{v}"' for k, v in attrs.items())
    return f"#EXTINF:-1{attr_text},{name}\n{url}\n"


def build_playlist(*entries: str) -> bytes:
    return ("#EXTM3U\n" + "".join(entries)).encode("utf-8")


def large_playlist(count: int) -> str:
    lines = ["#EXTM3U"]
    for i in range(count):
        lines.append(f'#EXTINF:-1 tvg-id="ch{i}" group-title="Group {i % 20}",Channel {i}')
        lines.append(f"http://example.com/live/{i}.ts")
    return "\n".join(lines)


# -----------------------------------------------------------------------------
# Catalog entities
# -----------------------------------------------------------------------------

def create_source(
    name: str = None,
    type: SourceType = SourceType.M3U_URL,
    url: str = None,
    refresh_policy: RefreshPolicy = RefreshPolicy.MANUAL,
    last_refresh_at: datetime = None,
    **kwargs
) -> Source:
    n = _next_id()
    if type == SourceType.M3U_URL and url is None:
        url = f"http://provider.example/list{n}.m3u"
    return Source(
        name=name or f"Source {n}",
        type=type,
        url=url,
        refresh_policy=refresh_policy,
        last_refresh_at=last_refresh_at,
        **kwargs
    )


def create_channel(
    source_id: str,
    name: str = None,
    id: str = None,
    group: str = None,
    playlist_order: int = 0,
    **kwargs
) -> Channel:
    n = _next_id()
    return Channel(
        id=id or f"tvg:channel{n}",
        name=name or f"Channel {n}",
        source_id=source_id,
        group=group,
        playlist_order=playlist_order,
        **kwargs
    )


def create_stream(
    channel_id: str,
    url: str = None,
    priority: int = 0,
    health_status: StreamHealthStatus = StreamHealthStatus.UNKNOWN,
    failure_count: int = 0,
    **kwargs
) -> MediaStream:
    n = _next_id()
    return MediaStream(
        channel_id=channel_id,
        url=url or f"http://cdn.example/live/{n}.ts",
        priority=priority,
        health_status=health_status,
        failure_count=failure_count,
        **kwargs
    )


def minutes_ago(minutes: int) -> datetime:
    return utcnow() - timedelta(minutes=minutes)


# -----------------------------------------------------------------------------
# Fetcher stub
# -----------------------------------------------------------------------------

class StubFetcher:
    """
    PlaylistFetcher stand-in serving canned bytes per location.

    Locations mapped to an exception instance raise it instead.
    """

    def __init__(self, responses: dict = None):
        self.responses = dict(responses or {})
        self.calls = []

    def set(self, location: str, payload) -> None:
        self.responses[location] = payload

    async def fetch(self, location: str) -> bytes:
        self.calls.append(location)
        return self._serve(location)

    async def read_file(self, path) -> bytes:
        self.calls.append(str(path))
        return self._serve(str(path))

    def _serve(self, location: str) -> bytes:
        if location not in self.responses:
            raise FileAccessError(f"Cannot access playlist file {location}")
        payload = self.responses[location]
        if isinstance(payload, Exception):
            raise payload
        if isinstance(payload, str):
            return payload.encode("utf-8")
        return payload
