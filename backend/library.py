"""
Catalog Query Layer

Read-side and user-organization operations over a LibraryStore: source
management, channel search, manual and smart folders, favorites, hidden
channels and play history. Ingestion is delegated to ImportPipeline.

User data is keyed by channel id; ids that no longer resolve to a channel
(for example after a source was deleted) are skipped on read.
"""
import logging
from dataclasses import replace
from typing import Optional

from catalog_schema import (
    Channel, Favorite, Folder, FolderItem, FolderType, Hidden, HistoryEntry,
    MediaStream, Source, utcnow,
)
from import_pipeline import ImportPipeline, ImportResult, SourceNotFoundError
from library_store import ChannelSearchOptions, LibraryStore
from rule_engine import RuleEngine, RuleEvaluationContext
from rule_schema import FolderRules

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 100


class Library:
    """
    Facade the application talks to.

    Usage:
        library = Library(store)
        result = await library.import_source_url("https://provider.example/tv.m3u")
        sports = await library.get_channels(ChannelSearchOptions(group="Sports"))
    """

    def __init__(
        self,
        store: LibraryStore,
        pipeline: Optional[ImportPipeline] = None,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        smart_folder_stream_health: bool = False,
    ):
        self.store = store
        self.pipeline = pipeline or ImportPipeline(store)
        self.rule_engine = RuleEngine()
        self.history_limit = history_limit
        self.smart_folder_stream_health = smart_folder_stream_health

    async def _resolve_channels(self, channel_ids) -> list[Channel]:
        channels = []
        for channel_id in channel_ids:
            channel = await self.store.fetch_channel(channel_id)
            if channel is not None:
                channels.append(channel)
        return channels

    # =========================================================================
    # Sources
    # =========================================================================

    async def get_sources(self) -> list[Source]:
        return await self.store.fetch_sources()

    async def get_source(self, source_id: str) -> Optional[Source]:
        return await self.store.fetch_source(source_id)

    async def import_source_url(self, url: str, name: Optional[str] = None) -> ImportResult:
        return await self.pipeline.import_from_url(url, name=name)

    async def import_source_data(self, data: bytes, name: str, file_path: Optional[str] = None) -> ImportResult:
        return await self.pipeline.import_from_file(data, name, file_path=file_path)

    async def import_source_path(self, path: str, name: Optional[str] = None) -> ImportResult:
        return await self.pipeline.import_from_path(path, name=name)

    async def refresh_source(self, source_id: str) -> ImportResult:
        source = await self.store.fetch_source(source_id)
        if source is None:
            raise SourceNotFoundError(source_id)
        return await self.pipeline.refresh(source)

    async def delete_source(self, source_id: str) -> None:
        await self.store.delete_source(source_id)
        logger.info("[LIBRARY] Deleted source %s", source_id)

    # =========================================================================
    # Channels
    # =========================================================================

    async def get_channels(self, options: Optional[ChannelSearchOptions] = None) -> list[Channel]:
        """Channels in playlist order matching every filter in options."""
        options = options or ChannelSearchOptions()
        channels = await self.store.fetch_channels(options.source_id)

        query = (options.query or "").strip().lower()
        if query:
            channels = [
                c for c in channels
                if query in c.name.lower()
                or (c.group is not None and query in c.group.lower())
                or (c.tvg_id is not None and query in c.tvg_id.lower())
            ]

        if options.group is not None:
            channels = [c for c in channels if c.group == options.group]
        if options.country is not None:
            channels = [c for c in channels if c.country == options.country]
        if options.language is not None:
            channels = [c for c in channels if c.language == options.language]

        if options.exclude_hidden:
            hidden_ids = {h.channel_id for h in await self.store.fetch_hidden()}
            channels = [c for c in channels if c.id not in hidden_ids]

        if options.only_favorites:
            favorite_ids = {f.channel_id for f in await self.store.fetch_favorites()}
            channels = [c for c in channels if c.id in favorite_ids]

        if options.health_status is not None:
            streams = await self.store.fetch_streams_for_channels([c.id for c in channels])
            channels = [
                c for c in channels
                if RuleEvaluationContext(channel=c, streams=streams.get(c.id)).best_health_status
                == options.health_status
            ]

        # Pagination applies last
        if options.offset:
            channels = channels[options.offset:]
        if options.limit is not None:
            channels = channels[:options.limit]
        return channels

    async def get_channel(self, channel_id: str) -> Optional[Channel]:
        return await self.store.fetch_channel(channel_id)

    async def get_streams(self, channel_id: str) -> list[MediaStream]:
        return await self.store.fetch_streams(channel_id)

    # =========================================================================
    # Folders
    # =========================================================================

    async def get_folders(self) -> list[Folder]:
        return await self.store.fetch_folders()

    async def _next_folder_order(self) -> int:
        folders = await self.store.fetch_folders()
        return max((f.order for f in folders), default=0) + 1

    async def create_folder(self, name: str, icon_name: Optional[str] = None) -> Folder:
        folder = Folder(name=name, order=await self._next_folder_order(), icon_name=icon_name)
        await self.store.save_folder(folder)
        logger.info("[LIBRARY] Created folder %r", name)
        return folder

    async def create_smart_folder(self, name: str, rules: FolderRules, icon_name: Optional[str] = None) -> Folder:
        problems = rules.validate()
        if problems:
            raise ValueError(f"Invalid smart folder rules: {'; '.join(problems)}")
        folder = Folder.smart(name, rules, order=await self._next_folder_order(), icon_name=icon_name)
        await self.store.save_folder(folder)
        logger.info("[LIBRARY] Created smart folder %r", name)
        return folder

    async def update_folder(self, folder: Folder) -> Folder:
        updated = replace(folder, updated_at=utcnow())
        await self.store.save_folder(updated)
        return updated

    async def delete_folder(self, folder_id: str) -> None:
        await self.store.delete_folder(folder_id)

    async def get_channels_in_folder(self, folder: Folder) -> list[Channel]:
        """
        Effective membership of a folder.

        Manual folders resolve their items in order. Smart folders run their
        rules over the whole catalog; stream lists are only loaded when
        smart_folder_stream_health is on, otherwise health conditions see
        "unknown".
        """
        if folder.type == FolderType.MANUAL:
            items = await self.store.fetch_folder_items(folder.id)
            return await self._resolve_channels(i.channel_id for i in items)

        if not folder.rule_json:
            return []
        rules = FolderRules.from_json(folder.rule_json)

        channels = await self.store.fetch_channels()
        favorite_ids = {f.channel_id for f in await self.store.fetch_favorites()}
        hidden_ids = {h.channel_id for h in await self.store.fetch_hidden()}
        streams = {}
        if self.smart_folder_stream_health:
            streams = await self.store.fetch_streams_for_channels([c.id for c in channels])

        return self.rule_engine.filter(
            channels,
            rules,
            lambda channel: RuleEvaluationContext(
                channel=channel,
                streams=streams.get(channel.id),
                is_favorite=channel.id in favorite_ids,
                is_hidden=channel.id in hidden_ids,
            ),
        )

    async def add_channel_to_folder(self, channel_id: str, folder_id: str) -> FolderItem:
        items = await self.store.fetch_folder_items(folder_id)
        item = FolderItem(
            folder_id=folder_id,
            channel_id=channel_id,
            order=max((i.order for i in items), default=0) + 1,
        )
        await self.store.save_folder_item(item)
        return item

    async def remove_channel_from_folder(self, channel_id: str, folder_id: str) -> None:
        await self.store.delete_folder_item(folder_id, channel_id)

    # =========================================================================
    # Favorites / Hidden
    # =========================================================================

    async def get_favorites(self) -> list[Channel]:
        return await self._resolve_channels(f.channel_id for f in await self.store.fetch_favorites())

    async def toggle_favorite(self, channel_id: str) -> bool:
        """Flip the favorite flag; returns the new state."""
        if await self.store.is_favorite(channel_id):
            await self.store.delete_favorite(channel_id)
            return False
        await self.store.save_favorite(Favorite(channel_id=channel_id))
        return True

    async def is_favorite(self, channel_id: str) -> bool:
        return await self.store.is_favorite(channel_id)

    async def get_hidden(self) -> list[Channel]:
        return await self._resolve_channels(h.channel_id for h in await self.store.fetch_hidden())

    async def toggle_hidden(self, channel_id: str) -> bool:
        """Flip the hidden flag; returns the new state."""
        if await self.store.is_hidden(channel_id):
            await self.store.delete_hidden(channel_id)
            return False
        await self.store.save_hidden(Hidden(channel_id=channel_id))
        return True

    async def is_hidden(self, channel_id: str) -> bool:
        return await self.store.is_hidden(channel_id)

    # =========================================================================
    # History
    # =========================================================================

    async def get_history(self, limit: int = 20) -> list[Channel]:
        """Recently played channels, most recent first."""
        entries = await self.store.fetch_history(limit)
        return await self._resolve_channels(e.channel_id for e in entries)

    async def record_play(self, channel_id: str, duration: Optional[float] = None) -> HistoryEntry:
        entry = HistoryEntry(channel_id=channel_id, duration=duration)
        await self.store.save_history_entry(entry)
        await self.store.trim_history(self.history_limit)
        return entry

    async def clear_history(self) -> None:
        await self.store.clear_history()

    # =========================================================================
    # Facets
    # =========================================================================

    async def get_groups(self) -> list[str]:
        return sorted({c.group for c in await self.store.fetch_channels() if c.group})

    async def get_countries(self) -> list[str]:
        return sorted({c.country for c in await self.store.fetch_channels() if c.country})

    async def get_languages(self) -> list[str]:
        return sorted({c.language for c in await self.store.fetch_channels() if c.language})
