"""
Library storage abstraction.

The import pipeline and the query layer depend only on this interface.
memory_store.InMemoryStore is the reference/test backend and
sql_store.SqlLibraryStore the durable SQLite backend.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from catalog_schema import (
    Channel, Favorite, Folder, FolderItem, Hidden, HistoryEntry,
    MediaStream, Source, StreamHealthStatus,
)


@dataclass
class ChannelSearchOptions:
    """
    Compound channel filter for Library.get_channels.

    Pagination (offset/limit) applies after every other filter.
    """
    query: Optional[str] = None
    source_id: Optional[str] = None
    group: Optional[str] = None
    country: Optional[str] = None
    language: Optional[str] = None
    health_status: Optional[StreamHealthStatus] = None
    exclude_hidden: bool = True
    only_favorites: bool = False
    limit: Optional[int] = None
    offset: Optional[int] = None


class LibraryStore(ABC):
    """Async CRUD over the catalog. Reads of channels are in playlist order."""

    # Sources

    @abstractmethod
    async def fetch_sources(self) -> list[Source]: ...

    @abstractmethod
    async def fetch_source(self, source_id: str) -> Optional[Source]: ...

    @abstractmethod
    async def save_source(self, source: Source) -> None: ...

    @abstractmethod
    async def delete_source(self, source_id: str) -> None:
        """Delete a source together with its channels and their streams."""

    # Channels

    @abstractmethod
    async def fetch_channels(self, source_id: Optional[str] = None) -> list[Channel]: ...

    @abstractmethod
    async def fetch_channel(self, channel_id: str) -> Optional[Channel]: ...

    @abstractmethod
    async def save_channels(self, channels: list[Channel]) -> None: ...

    @abstractmethod
    async def delete_channels(self, source_id: str) -> None: ...

    # Streams

    @abstractmethod
    async def fetch_streams(self, channel_id: str) -> list[MediaStream]:
        """Streams of one channel sorted by priority."""

    @abstractmethod
    async def fetch_streams_for_channels(self, channel_ids: list[str]) -> dict[str, list[MediaStream]]: ...

    @abstractmethod
    async def fetch_stream(self, stream_id: str) -> Optional[MediaStream]: ...

    @abstractmethod
    async def save_streams(self, streams: list[MediaStream]) -> None: ...

    @abstractmethod
    async def update_stream_health(
        self,
        stream_id: str,
        status: StreamHealthStatus,
        failure_count: int,
        checked_at: Optional[datetime] = None,
    ) -> None: ...

    # Import batch

    @abstractmethod
    async def save_import(self, source: Source, channels: list[Channel], streams: list[MediaStream]) -> None:
        """
        Persist one import pass as a single logical write.

        Order is source, channels, streams. The streams given replace the
        previous stream set of every channel in `channels`. Readers must never
        observe a partially applied batch.
        """

    # Folders

    @abstractmethod
    async def fetch_folders(self) -> list[Folder]: ...

    @abstractmethod
    async def fetch_folder(self, folder_id: str) -> Optional[Folder]: ...

    @abstractmethod
    async def save_folder(self, folder: Folder) -> None: ...

    @abstractmethod
    async def delete_folder(self, folder_id: str) -> None: ...

    @abstractmethod
    async def fetch_folder_items(self, folder_id: str) -> list[FolderItem]: ...

    @abstractmethod
    async def save_folder_item(self, item: FolderItem) -> None: ...

    @abstractmethod
    async def delete_folder_item(self, folder_id: str, channel_id: str) -> None: ...

    # Favorites

    @abstractmethod
    async def fetch_favorites(self) -> list[Favorite]: ...

    @abstractmethod
    async def save_favorite(self, favorite: Favorite) -> None: ...

    @abstractmethod
    async def delete_favorite(self, channel_id: str) -> None: ...

    @abstractmethod
    async def is_favorite(self, channel_id: str) -> bool: ...

    # Hidden

    @abstractmethod
    async def fetch_hidden(self) -> list[Hidden]: ...

    @abstractmethod
    async def save_hidden(self, hidden: Hidden) -> None: ...

    @abstractmethod
    async def delete_hidden(self, channel_id: str) -> None: ...

    @abstractmethod
    async def is_hidden(self, channel_id: str) -> bool: ...

    # History

    @abstractmethod
    async def fetch_history(self, limit: int) -> list[HistoryEntry]:
        """Most recent first."""

    @abstractmethod
    async def save_history_entry(self, entry: HistoryEntry) -> None:
        """Store a play event, replacing any earlier entry for the same channel."""

    @abstractmethod
    async def trim_history(self, keep: int) -> int:
        """Drop all but the `keep` most recent entries; returns how many were removed."""

    @abstractmethod
    async def clear_history(self) -> None: ...
