"""
Data models for the directory cache.

This module defines the records held in the cache, the usage statistics overlay,
the results returned by loaders and the synchronization metadata singleton.
"""

from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

MEMBER_USER_TYPE = "Member"


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def format_datetime(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime to an ISO-8601 string, assuming UTC for naive values."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (or pass through a datetime) into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class SyncStatus(str, Enum):
    """Outcome of the last synchronization attempt."""

    NOT_RUN = "not_run"
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class UsageStats:
    """Last-activity timestamps per tracked application surface."""

    last_activity: Optional[datetime] = None
    chat: Optional[datetime] = None
    teams: Optional[datetime] = None
    word: Optional[datetime] = None
    excel: Optional[datetime] = None
    powerpoint: Optional[datetime] = None
    outlook: Optional[datetime] = None
    onenote: Optional[datetime] = None
    loop: Optional[datetime] = None
    last_stats_update: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {f.name: format_datetime(getattr(self, f.name)) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UsageStats":
        """Create from dictionary."""
        return cls(**{f.name: parse_datetime(data.get(f.name)) for f in fields(cls)})


@dataclass
class StatsRecord:
    """One row of the usage report, keyed by principal name."""

    user_principal_name: str
    last_activity: Optional[datetime] = None
    chat: Optional[datetime] = None
    teams: Optional[datetime] = None
    word: Optional[datetime] = None
    excel: Optional[datetime] = None
    powerpoint: Optional[datetime] = None
    outlook: Optional[datetime] = None
    onenote: Optional[datetime] = None
    loop: Optional[datetime] = None

    def to_usage(self) -> UsageStats:
        """Convert the report row into the overlay block stored on a record."""
        return UsageStats(
            last_activity=self.last_activity,
            chat=self.chat,
            teams=self.teams,
            word=self.word,
            excel=self.excel,
            powerpoint=self.powerpoint,
            outlook=self.outlook,
            onenote=self.onenote,
            loop=self.loop,
        )


@dataclass
class StatsResult:
    """Result of fetching the usage report. Failure is reported, not raised."""

    records: List[StatsRecord] = field(default_factory=list)
    success: bool = False
    error_message: Optional[str] = None
    status_code: Optional[int] = None

    def by_key(self) -> Dict[str, UsageStats]:
        """Index the records by principal name; later rows win on duplicates."""
        return {record.user_principal_name: record.to_usage() for record in self.records}


@dataclass
class IdentityRecord:
    """
    Cached snapshot of one directory user.

    Records are keyed by ``user_principal_name``. A record removed upstream is
    kept with ``is_deleted`` set and hidden from active listings.
    """

    id: str
    user_principal_name: str
    display_name: Optional[str] = None
    given_name: Optional[str] = None
    surname: Optional[str] = None
    mail: Optional[str] = None
    department: Optional[str] = None
    job_title: Optional[str] = None
    office_location: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    company_name: Optional[str] = None
    employee_type: Optional[str] = None
    hire_date: Optional[datetime] = None
    manager_upn: Optional[str] = None
    manager_display_name: Optional[str] = None
    account_enabled: Optional[bool] = None
    user_type: Optional[str] = None
    is_deleted: bool = False
    last_synced: Optional[datetime] = None
    usage: Optional[UsageStats] = None

    def __post_init__(self):
        """Post-initialization validation."""
        if not self.user_principal_name:
            raise ValueError("user_principal_name cannot be empty")

    @property
    def key(self) -> str:
        """Storage key of the record."""
        return self.user_principal_name

    def is_active_member(self) -> bool:
        """Whether the record is known to be an enabled regular member.

        Unknown values (common on delta entries) count as active.
        """
        if self.account_enabled is False:
            return False
        if self.user_type is not None and self.user_type != MEMBER_USER_TYPE:
            return False
        return True

    def to_summary(self) -> str:
        """Render a one-line description used by downstream matchers."""
        parts = [
            f"UPN: {self.user_principal_name}",
            f"Name: {self.display_name or 'Unknown'}",
        ]
        labelled = [
            ("Job Title", self.job_title),
            ("Department", self.department),
            ("Office", self.office_location),
            ("City", self.city),
            ("State", self.state),
            ("Country", self.country),
            ("Company", self.company_name),
            ("Manager", self.manager_display_name),
            ("Employee Type", self.employee_type),
        ]
        parts.extend(f"{label}: {value}" for label, value in labelled if value)
        return " | ".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        data: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name == "usage":
                data[f.name] = value.to_dict() if value else None
            elif isinstance(value, datetime):
                data[f.name] = format_datetime(value)
            else:
                data[f.name] = value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IdentityRecord":
        """Create from dictionary."""
        kwargs = {f.name: data.get(f.name) for f in fields(cls) if f.name in data}
        for name in ("hire_date", "last_synced"):
            if name in kwargs:
                kwargs[name] = parse_datetime(kwargs[name])
        if kwargs.get("usage"):
            kwargs["usage"] = UsageStats.from_dict(kwargs["usage"])
        kwargs["is_deleted"] = bool(kwargs.get("is_deleted", False))
        return cls(**kwargs)


@dataclass
class LoadResult:
    """Records returned by a directory load plus the continuation cursor.

    ``removed_ids`` lists removals the upstream reported by id only; the
    manager resolves them to tombstones against the stored records.
    """

    records: List[IdentityRecord] = field(default_factory=list)
    cursor: Optional[str] = None
    removed_ids: List[str] = field(default_factory=list)


@dataclass
class SyncMetadata:
    """
    Synchronization state of one cache instance.

    ``version`` is the optimistic concurrency token maintained by storage; a
    metadata object that was never stored has version 0.
    """

    cursor: Optional[str] = None
    last_full_sync: Optional[datetime] = None
    last_delta_sync: Optional[datetime] = None
    last_stats_update: Optional[datetime] = None
    last_sync_status: SyncStatus = SyncStatus.NOT_RUN
    last_sync_error: Optional[str] = None
    last_sync_count: int = 0
    version: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "cursor": self.cursor,
            "last_full_sync": format_datetime(self.last_full_sync),
            "last_delta_sync": format_datetime(self.last_delta_sync),
            "last_stats_update": format_datetime(self.last_stats_update),
            "last_sync_status": self.last_sync_status.value,
            "last_sync_error": self.last_sync_error,
            "last_sync_count": self.last_sync_count,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SyncMetadata":
        """Create from dictionary."""
        return cls(
            cursor=data.get("cursor") or None,
            last_full_sync=parse_datetime(data.get("last_full_sync")),
            last_delta_sync=parse_datetime(data.get("last_delta_sync")),
            last_stats_update=parse_datetime(data.get("last_stats_update")),
            last_sync_status=SyncStatus(data.get("last_sync_status") or SyncStatus.NOT_RUN.value),
            last_sync_error=data.get("last_sync_error"),
            last_sync_count=int(data.get("last_sync_count") or 0),
            version=int(data.get("version") or 0),
        )
