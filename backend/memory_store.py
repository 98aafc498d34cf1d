"""
In-memory LibraryStore.

Reference backend used by tests and by callers that do not need durability.
Records are copied on the way in and out so callers never alias stored
state. No method awaits anything, so each call (save_import included) runs
to completion without interleaving with other tasks.
"""
import logging
from copy import copy
from datetime import datetime
from typing import Optional

from catalog_schema import (
    Channel, Favorite, Folder, FolderItem, Hidden, HistoryEntry,
    MediaStream, Source, StreamHealthStatus, utcnow,
)
from library_store import LibraryStore

logger = logging.getLogger(__name__)


def _by_priority(streams) -> list[MediaStream]:
    return sorted((copy(s) for s in streams), key=lambda s: s.priority)


class InMemoryStore(LibraryStore):

    def __init__(self):
        self._sources: dict[str, Source] = {}
        self._channels: dict[str, Channel] = {}
        self._streams: dict[str, MediaStream] = {}
        self._folders: dict[str, Folder] = {}
        self._folder_items: dict[tuple, FolderItem] = {}
        self._favorites: dict[str, Favorite] = {}
        self._hidden: dict[str, Hidden] = {}
        self._history: dict[str, HistoryEntry] = {}

    # Sources

    async def fetch_sources(self) -> list[Source]:
        return sorted((copy(s) for s in self._sources.values()), key=lambda s: s.created_at)

    async def fetch_source(self, source_id: str) -> Optional[Source]:
        source = self._sources.get(source_id)
        return copy(source) if source else None

    async def save_source(self, source: Source) -> None:
        self._sources[source.id] = copy(source)

    async def delete_source(self, source_id: str) -> None:
        self._sources.pop(source_id, None)
        self._delete_channels(source_id)

    # Channels

    async def fetch_channels(self, source_id: Optional[str] = None) -> list[Channel]:
        channels = [
            copy(c) for c in self._channels.values()
            if source_id is None or c.source_id == source_id
        ]
        return sorted(channels, key=lambda c: c.playlist_order)

    async def fetch_channel(self, channel_id: str) -> Optional[Channel]:
        channel = self._channels.get(channel_id)
        return copy(channel) if channel else None

    async def save_channels(self, channels: list[Channel]) -> None:
        for channel in channels:
            self._channels[channel.id] = copy(channel)

    async def delete_channels(self, source_id: str) -> None:
        self._delete_channels(source_id)

    def _delete_channels(self, source_id: str) -> None:
        doomed = {cid for cid, c in self._channels.items() if c.source_id == source_id}
        for channel_id in doomed:
            del self._channels[channel_id]
        self._streams = {sid: s for sid, s in self._streams.items() if s.channel_id not in doomed}
        if doomed:
            logger.debug("[STORE] Deleted %s channels of source %s", len(doomed), source_id)

    # Streams

    async def fetch_streams(self, channel_id: str) -> list[MediaStream]:
        return _by_priority(s for s in self._streams.values() if s.channel_id == channel_id)

    async def fetch_streams_for_channels(self, channel_ids: list[str]) -> dict[str, list[MediaStream]]:
        wanted = set(channel_ids)
        grouped: dict[str, list[MediaStream]] = {cid: [] for cid in wanted}
        for stream in self._streams.values():
            if stream.channel_id in wanted:
                grouped[stream.channel_id].append(stream)
        return {cid: _by_priority(streams) for cid, streams in grouped.items()}

    async def fetch_stream(self, stream_id: str) -> Optional[MediaStream]:
        stream = self._streams.get(stream_id)
        return copy(stream) if stream else None

    async def save_streams(self, streams: list[MediaStream]) -> None:
        for stream in streams:
            self._streams[stream.id] = copy(stream)

    async def update_stream_health(
        self,
        stream_id: str,
        status: StreamHealthStatus,
        failure_count: int,
        checked_at: Optional[datetime] = None,
    ) -> None:
        stream = self._streams.get(stream_id)
        if stream is None:
            logger.debug("[STORE] Health update for unknown stream %s ignored", stream_id)
            return
        stream.health_status = status
        stream.failure_count = failure_count
        stream.last_check_at = checked_at or utcnow()

    # Import batch

    async def save_import(self, source: Source, channels: list[Channel], streams: list[MediaStream]) -> None:
        touched = {c.id for c in channels}
        self._sources[source.id] = copy(source)
        for channel in channels:
            self._channels[channel.id] = copy(channel)
        self._streams = {sid: s for sid, s in self._streams.items() if s.channel_id not in touched}
        for stream in streams:
            self._streams[stream.id] = copy(stream)

    # Folders

    async def fetch_folders(self) -> list[Folder]:
        return sorted((copy(f) for f in self._folders.values()), key=lambda f: (f.order, f.created_at))

    async def fetch_folder(self, folder_id: str) -> Optional[Folder]:
        folder = self._folders.get(folder_id)
        return copy(folder) if folder else None

    async def save_folder(self, folder: Folder) -> None:
        self._folders[folder.id] = copy(folder)

    async def delete_folder(self, folder_id: str) -> None:
        self._folders.pop(folder_id, None)
        self._folder_items = {k: v for k, v in self._folder_items.items() if k[0] != folder_id}

    async def fetch_folder_items(self, folder_id: str) -> list[FolderItem]:
        items = [copy(i) for (fid, _), i in self._folder_items.items() if fid == folder_id]
        return sorted(items, key=lambda i: i.order)

    async def save_folder_item(self, item: FolderItem) -> None:
        self._folder_items[(item.folder_id, item.channel_id)] = copy(item)

    async def delete_folder_item(self, folder_id: str, channel_id: str) -> None:
        self._folder_items.pop((folder_id, channel_id), None)

    # Favorites

    async def fetch_favorites(self) -> list[Favorite]:
        return sorted((copy(f) for f in self._favorites.values()), key=lambda f: f.added_at, reverse=True)

    async def save_favorite(self, favorite: Favorite) -> None:
        self._favorites[favorite.channel_id] = copy(favorite)

    async def delete_favorite(self, channel_id: str) -> None:
        self._favorites.pop(channel_id, None)

    async def is_favorite(self, channel_id: str) -> bool:
        return channel_id in self._favorites

    # Hidden

    async def fetch_hidden(self) -> list[Hidden]:
        return sorted((copy(h) for h in self._hidden.values()), key=lambda h: h.hidden_at, reverse=True)

    async def save_hidden(self, hidden: Hidden) -> None:
        self._hidden[hidden.channel_id] = copy(hidden)

    async def delete_hidden(self, channel_id: str) -> None:
        self._hidden.pop(channel_id, None)

    async def is_hidden(self, channel_id: str) -> bool:
        return channel_id in self._hidden

    # History

    def _history_newest_first(self) -> list[HistoryEntry]:
        return sorted(self._history.values(), key=lambda e: e.played_at, reverse=True)

    async def fetch_history(self, limit: int) -> list[HistoryEntry]:
        return [copy(e) for e in self._history_newest_first()[:limit]]

    async def save_history_entry(self, entry: HistoryEntry) -> None:
        # One entry per channel, keyed by channel id
        self._history[entry.channel_id] = copy(entry)

    async def trim_history(self, keep: int) -> int:
        stale = self._history_newest_first()[max(keep, 0):]
        for entry in stale:
            del self._history[entry.channel_id]
        return len(stale)

    async def clear_history(self) -> None:
        self._history.clear()
