"""
SQLAlchemy ORM models for the channel catalog.

Channels cascade from their source and streams from their channel. Per-channel
user data (favorites, hidden, folder items, history) carries no foreign key to
channels so it survives a channel disappearing from its source.
"""
from datetime import datetime
from sqlalchemy import Column, Integer, String, Text, DateTime, Float, Index, ForeignKey
from database import Base


def _iso(value):
    return value.isoformat() + "Z" if value else None


class SourceRecord(Base):
    """A playlist origin (remote URL or local file)."""
    __tablename__ = "sources"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    type = Column(String(20), nullable=False)  # "m3u_url", "m3u_file"
    url = Column(Text, nullable=True)
    file_path = Column(Text, nullable=True)
    refresh_policy = Column(String(20), default="manual", nullable=False)  # manual/hourly/daily/weekly
    last_refresh_at = Column(DateTime, nullable=True)
    epg_url = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "url": self.url,
            "file_path": self.file_path,
            "refresh_policy": self.refresh_policy,
            "last_refresh_at": _iso(self.last_refresh_at),
            "epg_url": self.epg_url,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<SourceRecord(id={self.id}, name={self.name}, type={self.type})>"


class ChannelRecord(Base):
    """
    A catalog channel. The primary key is the stable id ("tvg:..." or
    "hash:..."), never an autoincrement value.
    """
    __tablename__ = "channels"

    id = Column(String(255), primary_key=True)
    name = Column(String(255), nullable=False)
    source_id = Column(String(64), ForeignKey("sources.id", ondelete="CASCADE"), nullable=False)
    tvg_id = Column(String(255), nullable=True)
    logo_url = Column(Text, nullable=True)
    group = Column("group_title", String(255), nullable=True)
    country = Column(String(64), nullable=True)
    language = Column(String(64), nullable=True)
    playlist_order = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("idx_channel_source_order", source_id, playlist_order),
        Index("idx_channel_group", group),
    )

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "id": self.id,
            "name": self.name,
            "source_id": self.source_id,
            "tvg_id": self.tvg_id,
            "logo_url": self.logo_url,
            "group": self.group,
            "country": self.country,
            "language": self.language,
            "playlist_order": self.playlist_order,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<ChannelRecord(id={self.id}, name={self.name}, source={self.source_id})>"


class StreamRecord(Base):
    """One playable URL for a channel. Lower priority is preferred."""
    __tablename__ = "streams"

    id = Column(String(64), primary_key=True)
    channel_id = Column(String(255), ForeignKey("channels.id", ondelete="CASCADE"), nullable=False)
    url = Column(Text, nullable=False)
    priority = Column(Integer, default=0, nullable=False)
    health_status = Column(String(20), default="unknown", nullable=False)  # unknown/ok/flaky/dead
    failure_count = Column(Integer, default=0, nullable=False)
    last_check_at = Column(DateTime, nullable=True)
    user_agent = Column(Text, nullable=True)
    referrer = Column(Text, nullable=True)

    __table_args__ = (
        Index("idx_stream_channel_priority", channel_id, priority),
    )

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "id": self.id,
            "channel_id": self.channel_id,
            "url": self.url,
            "priority": self.priority,
            "health_status": self.health_status,
            "failure_count": self.failure_count,
            "last_check_at": _iso(self.last_check_at),
            "user_agent": self.user_agent,
            "referrer": self.referrer,
        }

    def __repr__(self):
        return f"<StreamRecord(id={self.id}, channel={self.channel_id}, priority={self.priority}, health={self.health_status})>"


class FolderRecord(Base):
    """User folder. Smart folders keep their rule document as JSON text."""
    __tablename__ = "folders"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    order = Column("sort_order", Integer, default=0, nullable=False)
    type = Column(String(20), default="manual", nullable=False)  # "manual", "smart"
    rule_json = Column(Text, nullable=True)
    icon_name = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "id": self.id,
            "name": self.name,
            "order": self.order,
            "type": self.type,
            "rule_json": self.rule_json,
            "icon_name": self.icon_name,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<FolderRecord(id={self.id}, name={self.name}, type={self.type})>"


class FolderItemRecord(Base):
    """Membership of one channel in one manual folder."""
    __tablename__ = "folder_items"

    folder_id = Column(String(64), ForeignKey("folders.id", ondelete="CASCADE"), primary_key=True)
    channel_id = Column(String(255), primary_key=True)
    order = Column("sort_order", Integer, default=0, nullable=False)
    added_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("idx_folder_item_order", folder_id, order),
    )

    def __repr__(self):
        return f"<FolderItemRecord(folder={self.folder_id}, channel={self.channel_id}, order={self.order})>"


class FavoriteRecord(Base):
    __tablename__ = "favorites"

    channel_id = Column(String(255), primary_key=True)
    added_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<FavoriteRecord(channel={self.channel_id})>"


class HiddenRecord(Base):
    __tablename__ = "hidden_channels"

    channel_id = Column(String(255), primary_key=True)
    hidden_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<HiddenRecord(channel={self.channel_id})>"


class HistoryRecord(Base):
    """A play event. At most one row per channel (the latest play)."""
    __tablename__ = "play_history"

    id = Column(String(64), primary_key=True)
    channel_id = Column(String(255), nullable=False, unique=True)
    played_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    duration = Column(Float, nullable=True)  # Seconds watched, if known

    __table_args__ = (
        Index("idx_history_played_at", played_at.desc()),
    )

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "id": self.id,
            "channel_id": self.channel_id,
            "played_at": _iso(self.played_at),
            "duration": self.duration,
        }

    def __repr__(self):
        return f"<HistoryRecord(channel={self.channel_id}, played_at={self.played_at})>"
