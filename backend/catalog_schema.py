"""
Catalog Data Model

Plain dataclasses for the persisted catalog entities (sources, channels,
streams, folders and per-channel user data). These are the shapes that flow
between the import pipeline, the query layer and any LibraryStore backend.
"""
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


def utcnow() -> datetime:
    """Naive UTC timestamp (SQLite stores datetimes without tzinfo)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() + "Z" if value else None


# =============================================================================
# Enums
# =============================================================================

class SourceType(str, Enum):
    """Where a playlist comes from."""
    M3U_URL = "m3u_url"
    M3U_FILE = "m3u_file"


class RefreshPolicy(str, Enum):
    """How often a source should be re-ingested."""
    MANUAL = "manual"
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"


class StreamHealthStatus(str, Enum):
    UNKNOWN = "unknown"
    OK = "ok"
    FLAKY = "flaky"
    DEAD = "dead"


class FolderType(str, Enum):
    MANUAL = "manual"
    SMART = "smart"


# =============================================================================
# Entities
# =============================================================================

@dataclass
class Source:
    """A playlist origin (remote URL or local file)."""
    name: str
    type: SourceType
    id: str = field(default_factory=new_id)
    url: Optional[str] = None
    file_path: Optional[str] = None
    refresh_policy: RefreshPolicy = RefreshPolicy.MANUAL
    last_refresh_at: Optional[datetime] = None
    epg_url: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "url": self.url,
            "file_path": self.file_path,
            "refresh_policy": self.refresh_policy.value,
            "last_refresh_at": _iso(self.last_refresh_at),
            "epg_url": self.epg_url,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass
class Channel:
    """
    A catalog channel with a stable identifier.

    The id comes from channel_identity.generate_channel_id, so re-importing
    the same logical channel always lands on the same record.
    """
    id: str
    name: str
    source_id: str
    tvg_id: Optional[str] = None
    logo_url: Optional[str] = None
    group: Optional[str] = None
    country: Optional[str] = None
    language: Optional[str] = None
    playlist_order: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["created_at"] = _iso(self.created_at)
        data["updated_at"] = _iso(self.updated_at)
        return data


@dataclass
class MediaStream:
    """One playable URL for a channel. Lower priority is preferred."""
    channel_id: str
    url: str
    id: str = field(default_factory=new_id)
    priority: int = 0
    health_status: StreamHealthStatus = StreamHealthStatus.UNKNOWN
    failure_count: int = 0
    last_check_at: Optional[datetime] = None
    user_agent: Optional[str] = None
    referrer: Optional[str] = None

    @property
    def is_hls(self) -> bool:
        return ".m3u8" in self.url.lower()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "channel_id": self.channel_id,
            "url": self.url,
            "priority": self.priority,
            "health_status": self.health_status.value,
            "failure_count": self.failure_count,
            "last_check_at": _iso(self.last_check_at),
            "user_agent": self.user_agent,
            "referrer": self.referrer,
        }


@dataclass
class Folder:
    """
    A user folder. Manual folders own FolderItem rows; smart folders carry a
    serialized FolderRules document in rule_json and store no membership.
    """
    name: str
    id: str = field(default_factory=new_id)
    order: int = 0
    type: FolderType = FolderType.MANUAL
    rule_json: Optional[str] = None
    icon_name: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def rules(self):
        """Decoded FolderRules, or None for manual/undecodable folders."""
        from rule_schema import FolderRules, RuleDecodeError

        if not self.rule_json:
            return None
        try:
            return FolderRules.from_json(self.rule_json)
        except RuleDecodeError:
            return None

    @classmethod
    def smart(cls, name: str, rules, order: int = 0, icon_name: Optional[str] = None) -> "Folder":
        """Build a smart folder, serializing the rule document at this boundary."""
        return cls(
            name=name,
            order=order,
            type=FolderType.SMART,
            rule_json=rules.to_json(),
            icon_name=icon_name,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "order": self.order,
            "type": self.type.value,
            "rule_json": self.rule_json,
            "icon_name": self.icon_name,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass
class FolderItem:
    """Membership of one channel in one manual folder."""
    folder_id: str
    channel_id: str
    order: int = 0
    added_at: datetime = field(default_factory=utcnow)

    @property
    def id(self) -> str:
        return f"{self.folder_id}-{self.channel_id}"


@dataclass
class Favorite:
    channel_id: str
    added_at: datetime = field(default_factory=utcnow)


@dataclass
class Hidden:
    channel_id: str
    hidden_at: datetime = field(default_factory=utcnow)


@dataclass
class HistoryEntry:
    """A play event. Duration is the watched time in seconds, if known."""
    channel_id: str
    id: str = field(default_factory=new_id)
    played_at: datetime = field(default_factory=utcnow)
    duration: Optional[float] = None
