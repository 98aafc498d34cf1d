"""
SQLite-backed LibraryStore.

Each method opens a short-lived session from the injected factory, converts
rows to catalog_schema dataclasses and closes the session. Sessions are
synchronous; no method yields to the event loop mid-write.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from catalog_schema import (
    Channel, Favorite, Folder, FolderItem, FolderType, Hidden, HistoryEntry,
    MediaStream, RefreshPolicy, Source, SourceType, StreamHealthStatus, utcnow,
)
from library_store import LibraryStore
from models import (
    ChannelRecord, FavoriteRecord, FolderItemRecord, FolderRecord,
    HiddenRecord, HistoryRecord, SourceRecord, StreamRecord,
)

logger = logging.getLogger(__name__)

# Keeps IN (...) lists under SQLite's bound-parameter limit
_IN_CHUNK = 500


def _chunks(items: list, size: int = _IN_CHUNK):
    for start in range(0, len(items), size):
        yield items[start:start + size]


# =============================================================================
# Row <-> dataclass conversion
# =============================================================================

def _source_from_row(row: SourceRecord) -> Source:
    return Source(
        id=row.id,
        name=row.name,
        type=SourceType(row.type),
        url=row.url,
        file_path=row.file_path,
        refresh_policy=RefreshPolicy(row.refresh_policy),
        last_refresh_at=row.last_refresh_at,
        epg_url=row.epg_url,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _source_to_row(source: Source) -> SourceRecord:
    return SourceRecord(
        id=source.id,
        name=source.name,
        type=source.type.value,
        url=source.url,
        file_path=source.file_path,
        refresh_policy=source.refresh_policy.value,
        last_refresh_at=source.last_refresh_at,
        epg_url=source.epg_url,
        created_at=source.created_at,
        updated_at=source.updated_at,
    )


def _channel_from_row(row: ChannelRecord) -> Channel:
    return Channel(
        id=row.id,
        name=row.name,
        source_id=row.source_id,
        tvg_id=row.tvg_id,
        logo_url=row.logo_url,
        group=row.group,
        country=row.country,
        language=row.language,
        playlist_order=row.playlist_order,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _channel_to_row(channel: Channel) -> ChannelRecord:
    return ChannelRecord(
        id=channel.id,
        name=channel.name,
        source_id=channel.source_id,
        tvg_id=channel.tvg_id,
        logo_url=channel.logo_url,
        group=channel.group,
        country=channel.country,
        language=channel.language,
        playlist_order=channel.playlist_order,
        created_at=channel.created_at,
        updated_at=channel.updated_at,
    )


def _stream_from_row(row: StreamRecord) -> MediaStream:
    return MediaStream(
        id=row.id,
        channel_id=row.channel_id,
        url=row.url,
        priority=row.priority,
        health_status=StreamHealthStatus(row.health_status),
        failure_count=row.failure_count,
        last_check_at=row.last_check_at,
        user_agent=row.user_agent,
        referrer=row.referrer,
    )


def _stream_to_row(stream: MediaStream) -> StreamRecord:
    return StreamRecord(
        id=stream.id,
        channel_id=stream.channel_id,
        url=stream.url,
        priority=stream.priority,
        health_status=stream.health_status.value,
        failure_count=stream.failure_count,
        last_check_at=stream.last_check_at,
        user_agent=stream.user_agent,
        referrer=stream.referrer,
    )


def _folder_from_row(row: FolderRecord) -> Folder:
    return Folder(
        id=row.id,
        name=row.name,
        order=row.order,
        type=FolderType(row.type),
        rule_json=row.rule_json,
        icon_name=row.icon_name,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class SqlLibraryStore(LibraryStore):
    """
    Durable LibraryStore over SQLAlchemy.

    Usage:
        init_db()
        store = SqlLibraryStore(get_session_factory())
    """

    def __init__(self, session_factory):
        self._session_factory = session_factory

    def _session(self) -> Session:
        return self._session_factory()

    # Sources

    async def fetch_sources(self) -> list[Source]:
        session = self._session()
        try:
            rows = session.query(SourceRecord).order_by(SourceRecord.created_at).all()
            return [_source_from_row(r) for r in rows]
        finally:
            session.close()

    async def fetch_source(self, source_id: str) -> Optional[Source]:
        session = self._session()
        try:
            row = session.get(SourceRecord, source_id)
            return _source_from_row(row) if row else None
        finally:
            session.close()

    async def save_source(self, source: Source) -> None:
        session = self._session()
        try:
            session.merge(_source_to_row(source))
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    async def delete_source(self, source_id: str) -> None:
        session = self._session()
        try:
            self._delete_channel_rows(session, source_id)
            session.query(SourceRecord).filter(SourceRecord.id == source_id).delete(synchronize_session=False)
            session.commit()
            logger.info("[STORE] Deleted source %s", source_id)
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # Channels

    async def fetch_channels(self, source_id: Optional[str] = None) -> list[Channel]:
        session = self._session()
        try:
            query = session.query(ChannelRecord)
            if source_id is not None:
                query = query.filter(ChannelRecord.source_id == source_id)
            rows = query.order_by(ChannelRecord.playlist_order, ChannelRecord.id).all()
            return [_channel_from_row(r) for r in rows]
        finally:
            session.close()

    async def fetch_channel(self, channel_id: str) -> Optional[Channel]:
        session = self._session()
        try:
            row = session.get(ChannelRecord, channel_id)
            return _channel_from_row(row) if row else None
        finally:
            session.close()

    async def save_channels(self, channels: list[Channel]) -> None:
        session = self._session()
        try:
            for channel in channels:
                session.merge(_channel_to_row(channel))
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    async def delete_channels(self, source_id: str) -> None:
        session = self._session()
        try:
            self._delete_channel_rows(session, source_id)
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @staticmethod
    def _delete_channel_rows(session: Session, source_id: str) -> None:
        # Explicit stream delete; the FK cascade only fires with PRAGMA foreign_keys on
        channel_ids = [
            cid for (cid,) in
            session.query(ChannelRecord.id).filter(ChannelRecord.source_id == source_id).all()
        ]
        for chunk in _chunks(channel_ids):
            session.query(StreamRecord).filter(StreamRecord.channel_id.in_(chunk)).delete(synchronize_session=False)
        session.query(ChannelRecord).filter(ChannelRecord.source_id == source_id).delete(synchronize_session=False)
        if channel_ids:
            logger.debug("[STORE] Deleted %s channels of source %s", len(channel_ids), source_id)

    # Streams

    async def fetch_streams(self, channel_id: str) -> list[MediaStream]:
        session = self._session()
        try:
            rows = session.query(StreamRecord).filter(
                StreamRecord.channel_id == channel_id
            ).order_by(StreamRecord.priority).all()
            return [_stream_from_row(r) for r in rows]
        finally:
            session.close()

    async def fetch_streams_for_channels(self, channel_ids: list[str]) -> dict[str, list[MediaStream]]:
        grouped: dict[str, list[MediaStream]] = {cid: [] for cid in channel_ids}
        session = self._session()
        try:
            for chunk in _chunks(list(grouped)):
                rows = session.query(StreamRecord).filter(
                    StreamRecord.channel_id.in_(chunk)
                ).order_by(StreamRecord.priority).all()
                for row in rows:
                    grouped[row.channel_id].append(_stream_from_row(row))
            return grouped
        finally:
            session.close()

    async def fetch_stream(self, stream_id: str) -> Optional[MediaStream]:
        session = self._session()
        try:
            row = session.get(StreamRecord, stream_id)
            return _stream_from_row(row) if row else None
        finally:
            session.close()

    async def save_streams(self, streams: list[MediaStream]) -> None:
        session = self._session()
        try:
            for stream in streams:
                session.merge(_stream_to_row(stream))
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    async def update_stream_health(
        self,
        stream_id: str,
        status: StreamHealthStatus,
        failure_count: int,
        checked_at: Optional[datetime] = None,
    ) -> None:
        session = self._session()
        try:
            row = session.get(StreamRecord, stream_id)
            if row is None:
                logger.debug("[STORE] Health update for unknown stream %s ignored", stream_id)
                return
            row.health_status = status.value
            row.failure_count = failure_count
            row.last_check_at = checked_at or utcnow()
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # Import batch

    async def save_import(self, source: Source, channels: list[Channel], streams: list[MediaStream]) -> None:
        session = self._session()
        try:
            session.merge(_source_to_row(source))
            session.flush()

            for channel in channels:
                session.merge(_channel_to_row(channel))
            session.flush()

            touched = [c.id for c in channels]
            for chunk in _chunks(touched):
                session.query(StreamRecord).filter(
                    StreamRecord.channel_id.in_(chunk)
                ).delete(synchronize_session=False)
            session.add_all(_stream_to_row(s) for s in streams)

            session.commit()
            logger.debug(
                "[STORE] Committed import for source %s: %s channels, %s streams",
                source.id, len(channels), len(streams),
            )
        except Exception as e:
            session.rollback()
            logger.error("[STORE] Import for source %s rolled back: %s", source.id, e)
            raise
        finally:
            session.close()

    # Folders

    async def fetch_folders(self) -> list[Folder]:
        session = self._session()
        try:
            rows = session.query(FolderRecord).order_by(FolderRecord.order, FolderRecord.created_at).all()
            return [_folder_from_row(r) for r in rows]
        finally:
            session.close()

    async def fetch_folder(self, folder_id: str) -> Optional[Folder]:
        session = self._session()
        try:
            row = session.get(FolderRecord, folder_id)
            return _folder_from_row(row) if row else None
        finally:
            session.close()

    async def save_folder(self, folder: Folder) -> None:
        session = self._session()
        try:
            session.merge(FolderRecord(
                id=folder.id,
                name=folder.name,
                order=folder.order,
                type=folder.type.value,
                rule_json=folder.rule_json,
                icon_name=folder.icon_name,
                created_at=folder.created_at,
                updated_at=folder.updated_at,
            ))
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    async def delete_folder(self, folder_id: str) -> None:
        session = self._session()
        try:
            session.query(FolderItemRecord).filter(
                FolderItemRecord.folder_id == folder_id
            ).delete(synchronize_session=False)
            session.query(FolderRecord).filter(FolderRecord.id == folder_id).delete(synchronize_session=False)
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    async def fetch_folder_items(self, folder_id: str) -> list[FolderItem]:
        session = self._session()
        try:
            rows = session.query(FolderItemRecord).filter(
                FolderItemRecord.folder_id == folder_id
            ).order_by(FolderItemRecord.order).all()
            return [
                FolderItem(folder_id=r.folder_id, channel_id=r.channel_id, order=r.order, added_at=r.added_at)
                for r in rows
            ]
        finally:
            session.close()

    async def save_folder_item(self, item: FolderItem) -> None:
        session = self._session()
        try:
            session.merge(FolderItemRecord(
                folder_id=item.folder_id,
                channel_id=item.channel_id,
                order=item.order,
                added_at=item.added_at,
            ))
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    async def delete_folder_item(self, folder_id: str, channel_id: str) -> None:
        session = self._session()
        try:
            session.query(FolderItemRecord).filter(
                FolderItemRecord.folder_id == folder_id,
                FolderItemRecord.channel_id == channel_id,
            ).delete(synchronize_session=False)
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # Favorites

    async def fetch_favorites(self) -> list[Favorite]:
        session = self._session()
        try:
            rows = session.query(FavoriteRecord).order_by(FavoriteRecord.added_at.desc()).all()
            return [Favorite(channel_id=r.channel_id, added_at=r.added_at) for r in rows]
        finally:
            session.close()

    async def save_favorite(self, favorite: Favorite) -> None:
        session = self._session()
        try:
            session.merge(FavoriteRecord(channel_id=favorite.channel_id, added_at=favorite.added_at))
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    async def delete_favorite(self, channel_id: str) -> None:
        session = self._session()
        try:
            session.query(FavoriteRecord).filter(
                FavoriteRecord.channel_id == channel_id
            ).delete(synchronize_session=False)
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    async def is_favorite(self, channel_id: str) -> bool:
        session = self._session()
        try:
            return session.get(FavoriteRecord, channel_id) is not None
        finally:
            session.close()

    # Hidden

    async def fetch_hidden(self) -> list[Hidden]:
        session = self._session()
        try:
            rows = session.query(HiddenRecord).order_by(HiddenRecord.hidden_at.desc()).all()
            return [Hidden(channel_id=r.channel_id, hidden_at=r.hidden_at) for r in rows]
        finally:
            session.close()

    async def save_hidden(self, hidden: Hidden) -> None:
        session = self._session()
        try:
            session.merge(HiddenRecord(channel_id=hidden.channel_id, hidden_at=hidden.hidden_at))
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    async def delete_hidden(self, channel_id: str) -> None:
        session = self._session()
        try:
            session.query(HiddenRecord).filter(
                HiddenRecord.channel_id == channel_id
            ).delete(synchronize_session=False)
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    async def is_hidden(self, channel_id: str) -> bool:
        session = self._session()
        try:
            return session.get(HiddenRecord, channel_id) is not None
        finally:
            session.close()

    # History

    async def fetch_history(self, limit: int) -> list[HistoryEntry]:
        session = self._session()
        try:
            rows = session.query(HistoryRecord).order_by(HistoryRecord.played_at.desc()).limit(limit).all()
            return [
                HistoryEntry(id=r.id, channel_id=r.channel_id, played_at=r.played_at, duration=r.duration)
                for r in rows
            ]
        finally:
            session.close()

    async def save_history_entry(self, entry: HistoryEntry) -> None:
        session = self._session()
        try:
            session.query(HistoryRecord).filter(
                HistoryRecord.channel_id == entry.channel_id
            ).delete(synchronize_session=False)
            session.add(HistoryRecord(
                id=entry.id,
                channel_id=entry.channel_id,
                played_at=entry.played_at,
                duration=entry.duration,
            ))
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    async def trim_history(self, keep: int) -> int:
        session = self._session()
        try:
            keep_ids = [
                hid for (hid,) in
                session.query(HistoryRecord.id).order_by(HistoryRecord.played_at.desc()).limit(max(keep, 0)).all()
            ]
            query = session.query(HistoryRecord)
            if keep_ids:
                query = query.filter(HistoryRecord.id.notin_(keep_ids))
            removed = query.delete(synchronize_session=False)
            session.commit()
            if removed:
                logger.debug("[STORE] Trimmed %s history entries", removed)
            return removed
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    async def clear_history(self) -> None:
        session = self._session()
        try:
            session.query(HistoryRecord).delete(synchronize_session=False)
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
