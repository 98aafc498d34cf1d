"""
Import / Refresh Pipeline

Ingests a playlist into the catalog or re-ingests (refreshes) a known source:

    fetch bytes -> parse -> stable id per entry -> diff against stored
    channels -> one save_import() batch (source, channels, streams)

Nothing is written until fetch and parse have both succeeded. Refreshes of
one source are serialized with a per-source asyncio.Lock; different sources
proceed independently. Channels that drop out of a feed are counted in
channels_removed but never deleted, so folders, favorites and history that
reference them stay intact.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional
from urllib.parse import urlsplit, unquote

from catalog_schema import Channel, MediaStream, Source, SourceType, utcnow
from channel_identity import generate_channel_id
from library_store import LibraryStore
from log_utils import log_excerpt
from m3u_parser import M3UParser, ParsedPlaylist
from playlist_fetcher import PlaylistFetcher

logger = logging.getLogger(__name__)


class SourceConfigurationError(Exception):
    """A source cannot be refreshed because it has no URL / file path."""


class SourceNotFoundError(Exception):
    """No source with the requested id exists."""

    def __init__(self, source_id: str):
        super().__init__(f"Source not found: {source_id}")
        self.source_id = source_id


@dataclass
class ImportResult:
    """Outcome of one import or refresh pass."""
    source: Source
    channels_added: int = 0
    channels_updated: int = 0
    channels_removed: int = 0
    streams_added: int = 0
    errors: list = field(default_factory=list)
    duration: float = 0.0
    # Recoverable per-line parser problems; these do not affect is_success
    diagnostics: list = field(default_factory=list)

    @property
    def total_channels(self) -> int:
        return self.channels_added + self.channels_updated

    @property
    def is_success(self) -> bool:
        return not self.errors and self.total_channels > 0

    def to_dict(self) -> dict:
        return {
            "source": self.source.to_dict(),
            "channels_added": self.channels_added,
            "channels_updated": self.channels_updated,
            "channels_removed": self.channels_removed,
            "streams_added": self.streams_added,
            "total_channels": self.total_channels,
            "errors": list(self.errors),
            "diagnostics": [
                {"line": d.line, "message": d.message, "raw_content": d.raw_content}
                for d in self.diagnostics
            ],
            "duration": round(self.duration, 3),
            "is_success": self.is_success,
        }


def default_source_name(location: str) -> str:
    """Last path segment of a URL or path, else its host."""
    parts = urlsplit(location)
    segment = unquote(parts.path.rstrip("/").rsplit("/", 1)[-1])
    return segment or parts.hostname or location


class ImportPipeline:
    """
    Orchestrates ingestion against a LibraryStore.

    Usage:
        pipeline = ImportPipeline(store, PlaylistFetcher())
        result = await pipeline.import_from_url("https://provider.example/tv.m3u")
        result = await pipeline.refresh(result.source)
    """

    def __init__(
        self,
        store: LibraryStore,
        fetcher: Optional[PlaylistFetcher] = None,
        parser: Optional[M3UParser] = None,
    ):
        self.store = store
        self.fetcher = fetcher or PlaylistFetcher()
        self.parser = parser or M3UParser()
        self._source_locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, source_id: str) -> asyncio.Lock:
        return self._source_locks.setdefault(source_id, asyncio.Lock())

    # =========================================================================
    # Entry points
    # =========================================================================

    async def import_from_url(self, url: str, name: Optional[str] = None) -> ImportResult:
        """Import a new source from a remote playlist URL."""
        start = time.perf_counter()

        data = await self.fetcher.fetch(url)
        playlist = self.parser.parse_bytes(data)

        now = utcnow()
        source = Source(
            name=name or default_source_name(url),
            type=SourceType.M3U_URL,
            url=url,
            last_refresh_at=now,
            created_at=now,
            updated_at=now,
        )
        async with self._lock_for(source.id):
            return await self._process(playlist, source, is_refresh=False, start=start)

    async def import_from_file(self, data: bytes, name: str, file_path: Optional[str] = None) -> ImportResult:
        """
        Import a new source from playlist bytes the caller already read.

        file_path is stored on the source so it can be refreshed later.
        """
        start = time.perf_counter()

        playlist = self.parser.parse_bytes(data)

        now = utcnow()
        source = Source(
            name=name,
            type=SourceType.M3U_FILE,
            file_path=file_path,
            last_refresh_at=now,
            created_at=now,
            updated_at=now,
        )
        async with self._lock_for(source.id):
            return await self._process(playlist, source, is_refresh=False, start=start)

    async def import_from_path(self, path: str, name: Optional[str] = None) -> ImportResult:
        """Read a local playlist file and import it as a file source."""
        data = await self.fetcher.read_file(Path(path))
        return await self.import_from_file(data, name or default_source_name(str(path)), file_path=str(path))

    async def refresh(self, source: Source) -> ImportResult:
        """Re-ingest a known source, keeping its id and created_at."""
        if source.type == SourceType.M3U_URL and not source.url:
            raise SourceConfigurationError(f"Source {source.name!r} has no URL to refresh from")
        if source.type == SourceType.M3U_FILE and not source.file_path:
            raise SourceConfigurationError(f"Source {source.name!r} has no file path to refresh from")

        async with self._lock_for(source.id):
            start = time.perf_counter()

            if source.type == SourceType.M3U_URL:
                data = await self.fetcher.fetch(source.url)
            else:
                data = await self.fetcher.read_file(Path(source.file_path))
            playlist = self.parser.parse_bytes(data)

            now = utcnow()
            refreshed = replace(source, updated_at=now, last_refresh_at=now)
            return await self._process(playlist, refreshed, is_refresh=True, start=start)

    # =========================================================================
    # Reconciliation
    # =========================================================================

    async def _process(
        self,
        playlist: ParsedPlaylist,
        source: Source,
        is_refresh: bool,
        start: float,
    ) -> ImportResult:
        result = ImportResult(source=source, diagnostics=list(playlist.errors))

        # Pre-image, taken under the source lock
        previous_ids: set[str] = set()
        if is_refresh:
            previous_ids = {c.id for c in await self.store.fetch_channels(source.id)}

        existing = {c.id: c for c in await self.store.fetch_channels()}
        existing_streams = await self.store.fetch_streams_for_channels(list(existing)) if existing else {}

        now = utcnow()
        channels: dict[str, Channel] = {}
        streams: list[MediaStream] = []
        next_priority: dict[str, int] = {}
        claimed_stream_ids: set[str] = set()

        for index, entry in enumerate(playlist.entries):
            name = entry.effective_name
            channel_id = generate_channel_id(entry.tvg_id, name, entry.url)

            if channel_id not in channels:
                previous = existing.get(channel_id)
                channels[channel_id] = Channel(
                    id=channel_id,
                    name=name,
                    source_id=source.id,
                    tvg_id=entry.tvg_id,
                    logo_url=entry.logo_url,
                    group=entry.group_title,
                    country=entry.country,
                    language=entry.language,
                    playlist_order=index,
                    created_at=previous.created_at if previous else now,
                    updated_at=now,
                )
                if previous:
                    result.channels_updated += 1
                else:
                    result.channels_added += 1
            else:
                logger.debug("[IMPORT] Entry %s adds a fallback stream to %s", index, channel_id)

            priority = next_priority.get(channel_id, 0)
            next_priority[channel_id] = priority + 1
            stream = self._build_stream(
                channel_id, entry.url, priority, entry.user_agent, entry.referrer,
                existing_streams.get(channel_id, []), claimed_stream_ids,
            )
            claimed_stream_ids.add(stream.id)
            streams.append(stream)
            result.streams_added += 1

        await self.store.save_import(source, list(channels.values()), streams)

        if is_refresh:
            result.channels_removed = len(previous_ids - set(channels))

        result.duration = time.perf_counter() - start
        logger.info(
            "[IMPORT] %s %r: %s added, %s updated, %s removed, %s streams, %s diagnostics in %.2fs",
            "Refreshed" if is_refresh else "Imported", log_excerpt(source.name),
            result.channels_added, result.channels_updated, result.channels_removed,
            result.streams_added, len(result.diagnostics), result.duration,
        )
        return result

    @staticmethod
    def _build_stream(
        channel_id: str,
        url: str,
        priority: int,
        user_agent: Optional[str],
        referrer: Optional[str],
        previous_streams: list,
        claimed_ids: set,
    ) -> MediaStream:
        # A stream already known under this URL keeps its id and health data
        for previous in previous_streams:
            if previous.url == url and previous.id not in claimed_ids:
                return replace(previous, priority=priority, user_agent=user_agent, referrer=referrer)
        return MediaStream(
            channel_id=channel_id,
            url=url,
            priority=priority,
            user_agent=user_agent,
            referrer=referrer,
        )
