# services/analytics_models.py
"""Shared data structures for the analytics sync engine."""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class Platform(str, Enum):
    """Social platforms supported by the profile provider."""

    INSTAGRAM = "instagram"
    TIKTOK = "tiktok"
    YOUTUBE = "youtube"

    @classmethod
    def parse(cls, value: Any) -> "Platform":
        """Case-insensitive lookup ('INSTAGRAM' and 'instagram' both work)."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unsupported platform: {value!r}") from None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp from the store into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass(frozen=True)
class NormalizedMetrics:
    """Canonical metrics shape, whatever the provider payload looked like."""

    followers: int = 0
    engagement_rate: float = 0.0
    avg_views: float = 0.0
    avg_likes: Optional[float] = None
    avg_comments: Optional[float] = None
    username: str = "unknown"
    profile_url: Optional[str] = None
    picture: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "NormalizedMetrics":
        data = data or {}
        known = {k: data[k] for k in cls.__dataclass_fields__ if k in data}
        return cls(**known)


@dataclass(frozen=True)
class CacheEntry:
    """One normalized snapshot of a (platform, external user id, owner) key."""

    platform: Platform
    external_user_id: str
    metrics: NormalizedMetrics
    raw_payload: Any
    fetched_at: datetime
    expires_at: datetime
    owner_id: Optional[str] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.expires_at <= (now or utcnow())


@dataclass
class CacheStats:
    total_entries: int = 0
    expired_count: int = 0
    by_platform: Dict[str, int] = field(default_factory=dict)
    last_fetched_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_entries": self.total_entries,
            "expired_count": self.expired_count,
            "by_platform": dict(self.by_platform),
            "last_fetched_at": (
                self.last_fetched_at.isoformat() if self.last_fetched_at else None
            ),
        }


@dataclass
class PlatformLink:
    """A creator's connection to one platform."""

    influencer_id: str
    platform: Platform
    external_user_id: Optional[str] = None
    is_connected: bool = False
    followers: Optional[int] = None
    engagement_rate: Optional[float] = None
    avg_views: Optional[float] = None
    last_synced: Optional[datetime] = None


@dataclass(frozen=True)
class CreatorRollup:
    """Per-creator cross-platform totals."""

    total_followers: int = 0
    total_engagement_rate: float = 0.0
    total_avg_views: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CreditBucket:
    limit: float = 0
    used: float = 0

    @property
    def remaining(self) -> float:
        return max(0, self.limit - self.used)

    def to_dict(self) -> Dict[str, Any]:
        return {"limit": self.limit, "used": self.used, "remaining": self.remaining}


@dataclass(frozen=True)
class CreditLedger:
    """Provider-side credit usage. Read-only: the provider is authoritative."""

    discovery: CreditBucket
    raw: CreditBucket
    general: CreditBucket
    reset_date: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "discovery": self.discovery.to_dict(),
            "raw": self.raw.to_dict(),
            "general": self.general.to_dict(),
            "reset_date": self.reset_date.isoformat() if self.reset_date else None,
        }


@dataclass(frozen=True)
class MediaInfo:
    """Per-post engagement counts from the raw media endpoint."""

    shortcode: str
    likes: int = 0
    comments: int = 0
    views: int = 0
    caption: str = ""
    taken_at: Optional[datetime] = None
    username: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["taken_at"] = self.taken_at.isoformat() if self.taken_at else None
        return data


@dataclass(frozen=True)
class RefreshResult:
    """Outcome of one successful profile refresh."""

    platform: Platform
    external_user_id: str
    owner_id: Optional[str]
    metrics: NormalizedMetrics
    refreshed_at: datetime
    rollup: Optional[CreatorRollup] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "platform": self.platform.value,
            "external_user_id": self.external_user_id,
            "owner_id": self.owner_id,
            "metrics": self.metrics.to_dict(),
            "refreshed_at": self.refreshed_at.isoformat(),
            "totals": self.rollup.to_dict() if self.rollup else None,
        }


@dataclass
class BulkRefreshResult:
    """Summary of a bulk sweep. Ephemeral, never persisted."""

    total_processed: int = 0
    success_count: int = 0
    error_count: int = 0
    skipped_count: int = 0
    credits_used: int = 0
    credit_budget: Optional[int] = None
    errors: List[str] = field(default_factory=list)
    completed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_processed": self.total_processed,
            "successful_refreshes": self.success_count,
            "failed_refreshes": self.error_count,
            "skipped": self.skipped_count,
            "credits_used": self.credits_used,
            "credit_budget": self.credit_budget,
            "errors": list(self.errors),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
