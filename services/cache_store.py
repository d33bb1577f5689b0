"""
Profile analytics cache backed by Supabase.

Staleness policy:
- Each entry carries expires_at = fetched_at + TTL (default 4 weeks).
- Expired entries are refresh *candidates*, never evicted: they stay
  readable as last-known-good until a successful refresh overwrites them.
- One live entry per (platform, external_user_id, owner_id); writes upsert.

Table: analytics_profile_cache
    platform, external_user_id, owner_id  (unique together; owner_id '' when unowned)
    metrics (jsonb), raw_payload (jsonb)
    followers, engagement_rate, avg_views, username  (flat copies for queries)
    fetched_at, expires_at
"""

import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from constants import (
    CACHE_TTL_DAYS,
    PROFILE_CACHE_CONFLICT_FIELDS,
    PROFILE_CACHE_TABLE,
    TIER_TTL_DAYS,
)
from db import SupabaseLike, upsert_row
from services.analytics_errors import PersistenceError
from services.analytics_models import (
    CacheEntry,
    CacheStats,
    NormalizedMetrics,
    Platform,
    parse_timestamp,
    utcnow,
)

logger = logging.getLogger(__name__)


def ttl_for_tier(tier: Optional[str], default: Optional[timedelta] = None) -> timedelta:
    """
    Refresh interval for an influencer tier.

    GOLD 4 weeks, SILVER / PARTNERED 6 weeks, BRONZE 8 weeks;
    anything else gets the default TTL.
    """
    days = TIER_TTL_DAYS.get((tier or "").upper())
    if days is None:
        return default or timedelta(days=CACHE_TTL_DAYS)
    return timedelta(days=days)


def _owner_key(owner_id: Optional[str]) -> str:
    return owner_id or ""


class CacheStore:
    """
    Read/write access to cached profile snapshots.

    Args:
        client: Supabase (or fake) client
        ttl: Default time-to-live for new entries
        clock: Returns the current aware UTC datetime
    """

    def __init__(
        self,
        client: SupabaseLike,
        ttl: timedelta = timedelta(days=CACHE_TTL_DAYS),
        clock: Callable[[], datetime] = utcnow,
    ):
        self.client = client
        self.ttl = ttl
        self._clock = clock

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_entry(row: Dict[str, Any]) -> CacheEntry:
        return CacheEntry(
            platform=Platform.parse(row["platform"]),
            external_user_id=row["external_user_id"],
            owner_id=row.get("owner_id") or None,
            metrics=NormalizedMetrics.from_dict(row.get("metrics")),
            raw_payload=row.get("raw_payload"),
            fetched_at=parse_timestamp(row.get("fetched_at")),
            expires_at=parse_timestamp(row.get("expires_at")),
        )

    # ------------------------------------------------------------------
    # PUBLIC
    # ------------------------------------------------------------------

    def upsert(
        self,
        platform: Platform,
        external_user_id: str,
        metrics: NormalizedMetrics,
        raw_payload: Any,
        owner_id: Optional[str] = None,
        ttl: Optional[timedelta] = None,
    ) -> CacheEntry:
        """
        Replace the live entry for the key with a fresh snapshot.

        Raises:
            PersistenceError: If the store rejects the write. The previous
                entry (if any) is left as it was.
        """
        platform = Platform.parse(platform)
        now = self._clock()
        expires_at = now + (ttl or self.ttl)

        payload = {
            "platform": platform.value,
            "external_user_id": external_user_id,
            "owner_id": _owner_key(owner_id),
            "metrics": metrics.to_dict(),
            "raw_payload": raw_payload,
            "followers": metrics.followers,
            "engagement_rate": metrics.engagement_rate,
            "avg_views": metrics.avg_views,
            "username": metrics.username,
            "fetched_at": now.isoformat(),
            "expires_at": expires_at.isoformat(),
        }

        try:
            rows = upsert_row(
                self.client, PROFILE_CACHE_TABLE, payload, PROFILE_CACHE_CONFLICT_FIELDS
            )
        except Exception as e:
            logger.exception(
                f"[Cache] Upsert failed for {platform.value}:{external_user_id}: {e}"
            )
            raise PersistenceError(
                f"Cache write failed for {platform.value}:{external_user_id}: {e}"
            ) from e

        if not rows:
            raise PersistenceError(
                f"Cache write returned no rows for {platform.value}:{external_user_id}"
            )

        logger.info(
            f"[Cache] Stored {platform.value}:{external_user_id} "
            f"(expires {expires_at.date().isoformat()})"
        )
        return CacheEntry(
            platform=platform,
            external_user_id=external_user_id,
            owner_id=owner_id,
            metrics=metrics,
            raw_payload=raw_payload,
            fetched_at=now,
            expires_at=expires_at,
        )

    def get(
        self,
        platform: Platform,
        external_user_id: str,
        owner_id: Optional[str] = None,
    ) -> Optional[CacheEntry]:
        """
        Return the cached entry (stale or not), or None if never cached.

        owner_id None reads the unowned entry only, never another
        creator's snapshot of the same external id.
        """
        platform = Platform.parse(platform)
        response = (
            self.client.table(PROFILE_CACHE_TABLE)
            .select("*")
            .eq("platform", platform.value)
            .eq("external_user_id", external_user_id)
            .eq("owner_id", _owner_key(owner_id))
            .order("fetched_at", desc=True)
            .limit(1)
            .execute()
        )
        if not response.data:
            logger.debug(f"[Cache] Miss for {platform.value}:{external_user_id}")
            return None
        return self._row_to_entry(response.data[0])

    def list_expired(self, before: Optional[datetime] = None) -> List[CacheEntry]:
        """Entries whose expires_at <= before (default now), oldest first."""
        cutoff = before or self._clock()
        response = (
            self.client.table(PROFILE_CACHE_TABLE)
            .select("*")
            .lte("expires_at", cutoff.isoformat())
            .order("expires_at", desc=False)
            .execute()
        )
        entries = [self._row_to_entry(row) for row in response.data or []]
        # The store compares ISO strings; re-check on real datetimes
        return [e for e in entries if e.expires_at <= cutoff]

    def stats(self) -> CacheStats:
        """Totals, expired count, per-platform counts and the latest fetch."""
        response = (
            self.client.table(PROFILE_CACHE_TABLE)
            .select("platform,fetched_at,expires_at")
            .execute()
        )
        rows = response.data or []
        now = self._clock()

        by_platform: Counter = Counter()
        expired = 0
        last_fetched = None
        for row in rows:
            by_platform[Platform.parse(row["platform"]).value] += 1
            if parse_timestamp(row["expires_at"]) <= now:
                expired += 1
            fetched = parse_timestamp(row.get("fetched_at"))
            if fetched and (last_fetched is None or fetched > last_fetched):
                last_fetched = fetched

        return CacheStats(
            total_entries=len(rows),
            expired_count=expired,
            by_platform=dict(by_platform),
            last_fetched_at=last_fetched,
        )
