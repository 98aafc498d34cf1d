"""
Store contract tests.

Every test in the contract classes runs against both InMemoryStore and
SqlLibraryStore (any_store fixture); the SQLite-only classes cover
transactional behavior and the import pipeline end to end on a real
database.
"""
from dataclasses import replace
from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from catalog_schema import (
    Favorite, Folder, FolderItem, Hidden, HistoryEntry, StreamHealthStatus, utcnow,
)
from import_pipeline import ImportPipeline
from library import Library
from library_store import ChannelSearchOptions
from models import ChannelRecord, StreamRecord
from rule_schema import FolderRules, RuleCondition
from tests.fixtures.factories import (
    SAMPLE_PLAYLIST, StubFetcher, build_playlist, create_channel, create_source,
    create_stream, m3u_entry,
)

FEED_URL = "http://provider.example/tv.m3u"


async def seed(store, channel_count: int = 2, streams_per_channel: int = 1):
    source = create_source()
    channels = [create_channel(source.id, playlist_order=i) for i in range(channel_count)]
    streams = [
        create_stream(c.id, priority=p)
        for c in channels
        for p in range(streams_per_channel)
    ]
    await store.save_import(source, channels, streams)
    return source, channels, streams


class TestSourceContract:

    @pytest.mark.asyncio
    async def test_save_fetch_update(self, any_store):
        source = create_source(name="Provider")
        await any_store.save_source(source)

        fetched = await any_store.fetch_source(source.id)
        assert fetched == source

        await any_store.save_source(replace(source, name="Renamed"))
        assert (await any_store.fetch_source(source.id)).name == "Renamed"
        assert len(await any_store.fetch_sources()) == 1

    @pytest.mark.asyncio
    async def test_fetch_missing(self, any_store):
        assert await any_store.fetch_source("missing") is None

    @pytest.mark.asyncio
    async def test_sources_in_creation_order(self, any_store):
        older = create_source(name="Old", created_at=utcnow() - timedelta(days=1))
        newer = create_source(name="New")
        await any_store.save_source(newer)
        await any_store.save_source(older)

        assert [s.name for s in await any_store.fetch_sources()] == ["Old", "New"]

    @pytest.mark.asyncio
    async def test_delete_cascades_to_channels_and_streams(self, any_store):
        source, channels, streams = await seed(any_store)
        other, other_channels, _ = await seed(any_store)

        await any_store.delete_source(source.id)

        assert await any_store.fetch_source(source.id) is None
        assert await any_store.fetch_channels(source.id) == []
        assert await any_store.fetch_stream(streams[0].id) is None
        assert [c.id for c in await any_store.fetch_channels()] == [c.id for c in other_channels]


class TestChannelContract:

    @pytest.mark.asyncio
    async def test_playlist_order(self, any_store):
        source = create_source()
        await any_store.save_source(source)
        channels = [
            create_channel(source.id, name="Second", playlist_order=1),
            create_channel(source.id, name="First", playlist_order=0),
        ]
        await any_store.save_channels(channels)

        assert [c.name for c in await any_store.fetch_channels(source.id)] == ["First", "Second"]

    @pytest.mark.asyncio
    async def test_channel_fields_survive(self, any_store):
        source = create_source()
        await any_store.save_source(source)
        channel = create_channel(
            source.id, id="tvg:bbc", group="News", tvg_id="bbc",
            country="UK", language="English", logo_url="http://logo.example/bbc.png",
        )
        await any_store.save_channels([channel])

        assert await any_store.fetch_channel("tvg:bbc") == channel

    @pytest.mark.asyncio
    async def test_delete_channels_of_source(self, any_store):
        source, channels, streams = await seed(any_store)

        await any_store.delete_channels(source.id)

        assert await any_store.fetch_channels() == []
        assert await any_store.fetch_streams(channels[0].id) == []
        assert await any_store.fetch_source(source.id) is not None


class TestStreamContract:

    @pytest.mark.asyncio
    async def test_streams_by_priority(self, any_store):
        source, channels, streams = await seed(any_store, channel_count=1, streams_per_channel=3)

        fetched = await any_store.fetch_streams(channels[0].id)
        assert [s.priority for s in fetched] == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_streams_for_channels(self, any_store):
        source, channels, streams = await seed(any_store, channel_count=2, streams_per_channel=2)

        grouped = await any_store.fetch_streams_for_channels([channels[0].id, "tvg:none"])

        assert set(grouped) == {channels[0].id, "tvg:none"}
        assert len(grouped[channels[0].id]) == 2
        assert grouped["tvg:none"] == []

    @pytest.mark.asyncio
    async def test_update_health(self, any_store):
        source, channels, streams = await seed(any_store, channel_count=1)
        checked = utcnow()

        await any_store.update_stream_health(streams[0].id, StreamHealthStatus.FLAKY, 1, checked)

        stored = await any_store.fetch_stream(streams[0].id)
        assert stored.health_status == StreamHealthStatus.FLAKY
        assert stored.failure_count == 1
        assert stored.last_check_at == checked

    @pytest.mark.asyncio
    async def test_update_health_unknown_stream_ignored(self, any_store):
        await any_store.update_stream_health("missing", StreamHealthStatus.DEAD, 3)

    @pytest.mark.asyncio
    async def test_save_import_replaces_streams_of_touched_channels(self, any_store):
        source, channels, streams = await seed(any_store, channel_count=2)
        replacement = create_stream(channels[0].id, url="http://cdn.example/new.ts")

        await any_store.save_import(source, [channels[0]], [replacement])

        assert [s.url for s in await any_store.fetch_streams(channels[0].id)] == ["http://cdn.example/new.ts"]
        assert len(await any_store.fetch_streams(channels[1].id)) == 1


class TestFolderContract:

    @pytest.mark.asyncio
    async def test_folders_sorted_by_order(self, any_store):
        await any_store.save_folder(Folder(name="B", order=2))
        await any_store.save_folder(Folder(name="A", order=1))

        assert [f.name for f in await any_store.fetch_folders()] == ["A", "B"]

    @pytest.mark.asyncio
    async def test_smart_folder_rules_persist(self, any_store):
        rules = FolderRules.all([RuleCondition.group_equals("Sports")])
        folder = Folder.smart("Sports", rules)
        await any_store.save_folder(folder)

        assert (await any_store.fetch_folder(folder.id)).rules == rules

    @pytest.mark.asyncio
    async def test_items_ordered_and_removable(self, any_store):
        folder = Folder(name="Mine")
        await any_store.save_folder(folder)
        await any_store.save_folder_item(FolderItem(folder_id=folder.id, channel_id="tvg:b", order=2))
        await any_store.save_folder_item(FolderItem(folder_id=folder.id, channel_id="tvg:a", order=1))

        assert [i.channel_id for i in await any_store.fetch_folder_items(folder.id)] == ["tvg:a", "tvg:b"]

        await any_store.delete_folder_item(folder.id, "tvg:a")
        assert [i.channel_id for i in await any_store.fetch_folder_items(folder.id)] == ["tvg:b"]

    @pytest.mark.asyncio
    async def test_delete_folder_removes_items(self, any_store):
        folder = Folder(name="Mine")
        await any_store.save_folder(folder)
        await any_store.save_folder_item(FolderItem(folder_id=folder.id, channel_id="tvg:a"))

        await any_store.delete_folder(folder.id)

        assert await any_store.fetch_folder(folder.id) is None
        assert await any_store.fetch_folder_items(folder.id) == []


class TestUserDataContract:

    @pytest.mark.asyncio
    async def test_favorites_newest_first(self, any_store):
        now = utcnow()
        await any_store.save_favorite(Favorite(channel_id="tvg:a", added_at=now - timedelta(minutes=5)))
        await any_store.save_favorite(Favorite(channel_id="tvg:b", added_at=now))

        assert [f.channel_id for f in await any_store.fetch_favorites()] == ["tvg:b", "tvg:a"]
        assert await any_store.is_favorite("tvg:a")

        await any_store.delete_favorite("tvg:a")
        assert not await any_store.is_favorite("tvg:a")

    @pytest.mark.asyncio
    async def test_hidden(self, any_store):
        await any_store.save_hidden(Hidden(channel_id="tvg:a"))
        assert await any_store.is_hidden("tvg:a")
        await any_store.delete_hidden("tvg:a")
        assert await any_store.fetch_hidden() == []

    @pytest.mark.asyncio
    async def test_history_one_entry_per_channel(self, any_store):
        now = utcnow()
        await any_store.save_history_entry(HistoryEntry(channel_id="tvg:a", played_at=now - timedelta(minutes=2)))
        await any_store.save_history_entry(HistoryEntry(channel_id="tvg:b", played_at=now - timedelta(minutes=1)))
        await any_store.save_history_entry(HistoryEntry(channel_id="tvg:a", played_at=now))

        history = await any_store.fetch_history(10)
        assert [e.channel_id for e in history] == ["tvg:a", "tvg:b"]

    @pytest.mark.asyncio
    async def test_trim_history(self, any_store):
        now = utcnow()
        for i in range(5):
            await any_store.save_history_entry(
                HistoryEntry(channel_id=f"tvg:{i}", played_at=now + timedelta(seconds=i))
            )

        assert await any_store.trim_history(2) == 3
        assert [e.channel_id for e in await any_store.fetch_history(10)] == ["tvg:4", "tvg:3"]

        await any_store.clear_history()
        assert await any_store.fetch_history(10) == []


class TestSqlTransactions:

    @pytest.mark.asyncio
    async def test_failed_import_rolls_back(self, sql_store):
        source, channels, streams = await seed(sql_store, channel_count=1)
        renamed = replace(channels[0], name="Renamed")
        duplicate = create_stream(channels[0].id)
        clash = replace(duplicate, url="http://cdn.example/clash.ts")

        with pytest.raises(IntegrityError):
            await sql_store.save_import(source, [renamed], [duplicate, clash])

        assert (await sql_store.fetch_channel(channels[0].id)).name == channels[0].name
        assert [s.id for s in await sql_store.fetch_streams(channels[0].id)] == [streams[0].id]

    @pytest.mark.asyncio
    async def test_delete_source_leaves_no_orphan_rows(self, sql_store, test_session):
        source, channels, streams = await seed(sql_store, channel_count=3, streams_per_channel=2)

        await sql_store.delete_source(source.id)

        assert test_session.query(ChannelRecord).count() == 0
        assert test_session.query(StreamRecord).count() == 0


class TestLibraryOnSqlite:

    @pytest.mark.asyncio
    async def test_import_search_and_refresh(self, sql_store):
        fetcher = StubFetcher({FEED_URL: SAMPLE_PLAYLIST})
        library = Library(sql_store, pipeline=ImportPipeline(sql_store, fetcher))

        first = await library.import_source_url(FEED_URL)
        assert first.channels_added == 2
        await library.toggle_favorite("tvg:test1")

        fetcher.set(FEED_URL, build_playlist(
            m3u_entry("Channel 1", "http://example.com/stream1.m3u8", tvg_id="test1", group="Sports"),
            m3u_entry("Channel 3", "http://example.com/stream3.m3u8", tvg_id="test3", group="Movies"),
        ))
        second = await library.refresh_source(first.source.id)

        assert second.channels_updated == 1
        assert second.channels_added == 1
        assert second.channels_removed == 1
        assert [c.id for c in await library.get_channels(ChannelSearchOptions(group="Sports"))] == ["tvg:test1"]
        assert [c.id for c in await library.get_favorites()] == ["tvg:test1"]
        # Channels absent from the feed are retained
        assert await library.get_channel("tvg:test2") is not None
