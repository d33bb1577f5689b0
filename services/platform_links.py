"""
Supabase access for platform links and creator rows.

Tables:
    influencer_platforms  one row per (influencer_id, platform)
    influencers           creator rows carrying the total_* rollup columns
    users                 role lookup for authorization
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from constants import INFLUENCERS_TABLE, PLATFORM_LINKS_TABLE, USERS_TABLE
from db import SupabaseLike, upsert_row
from services.analytics_errors import PersistenceError
from services.analytics_models import (
    CreatorRollup,
    NormalizedMetrics,
    Platform,
    PlatformLink,
    parse_timestamp,
)

logger = logging.getLogger(__name__)


def _row_to_link(row: Dict[str, Any]) -> PlatformLink:
    return PlatformLink(
        influencer_id=row["influencer_id"],
        platform=Platform.parse(row["platform"]),
        external_user_id=row.get("external_user_id"),
        is_connected=bool(row.get("is_connected")),
        followers=row.get("followers"),
        engagement_rate=row.get("engagement_rate"),
        avg_views=row.get("avg_views"),
        last_synced=parse_timestamp(row.get("last_synced")),
    )


class PlatformLinkRepository:
    """Read/write access to influencer_platforms rows."""

    def __init__(self, client: SupabaseLike):
        self.client = client

    def list_for_creator(self, influencer_id: str) -> List[PlatformLink]:
        response = (
            self.client.table(PLATFORM_LINKS_TABLE)
            .select("*")
            .eq("influencer_id", influencer_id)
            .execute()
        )
        return [_row_to_link(row) for row in response.data or []]

    def get(self, influencer_id: str, platform: Platform) -> Optional[PlatformLink]:
        platform = Platform.parse(platform)
        response = (
            self.client.table(PLATFORM_LINKS_TABLE)
            .select("*")
            .eq("influencer_id", influencer_id)
            .eq("platform", platform.value)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return _row_to_link(response.data[0])

    def list_connected(self) -> List[PlatformLink]:
        """Every connected link, in a stable order (influencer, platform)."""
        response = (
            self.client.table(PLATFORM_LINKS_TABLE)
            .select("*")
            .eq("is_connected", True)
            .order("influencer_id", desc=False)
            .execute()
        )
        links = [_row_to_link(row) for row in response.data or []]
        return sorted(links, key=lambda l: (str(l.influencer_id), l.platform.value))

    def record_refresh(
        self,
        influencer_id: str,
        platform: Platform,
        external_user_id: str,
        metrics: NormalizedMetrics,
        synced_at: datetime,
    ) -> PlatformLink:
        """
        Upsert the link's cached metrics after a successful refresh.

        Raises:
            PersistenceError: If the store rejects the write
        """
        platform = Platform.parse(platform)
        payload = {
            "influencer_id": influencer_id,
            "platform": platform.value,
            "external_user_id": external_user_id,
            "username": metrics.username,
            "profile_url": metrics.profile_url,
            "followers": metrics.followers,
            "engagement_rate": metrics.engagement_rate,
            "avg_views": metrics.avg_views,
            "is_connected": True,
            "last_synced": synced_at.isoformat(),
            "updated_at": synced_at.isoformat(),
        }
        try:
            rows = upsert_row(
                self.client, PLATFORM_LINKS_TABLE, payload, ["influencer_id", "platform"]
            )
        except Exception as e:
            logger.exception(
                f"[Links] Update failed for {influencer_id}/{platform.value}: {e}"
            )
            raise PersistenceError(
                f"Platform link write failed for {influencer_id}/{platform.value}: {e}"
            ) from e

        if not rows:
            raise PersistenceError(
                f"Platform link write returned no rows for {influencer_id}/{platform.value}"
            )
        return _row_to_link(rows[0])


class CreatorRepository:
    """Creator-level reads and the rollup write."""

    def __init__(self, client: SupabaseLike):
        self.client = client

    def write_rollup(self, creator_id: str, rollup: CreatorRollup) -> None:
        """
        Replace the creator's total_* columns with the given rollup.

        Raises:
            PersistenceError: If the store rejects the write
        """
        try:
            (
                self.client.table(INFLUENCERS_TABLE)
                .update(
                    {
                        "total_followers": rollup.total_followers,
                        "total_engagement_rate": rollup.total_engagement_rate,
                        "total_avg_views": rollup.total_avg_views,
                    }
                )
                .eq("id", creator_id)
                .execute()
            )
        except Exception as e:
            logger.exception(f"[Creators] Rollup write failed for {creator_id}: {e}")
            raise PersistenceError(
                f"Rollup write failed for creator {creator_id}: {e}"
            ) from e

    def get_tiers(self, creator_ids: List[str]) -> Dict[str, str]:
        """Upper-cased tier per creator id; creators without a tier are omitted."""
        if not creator_ids:
            return {}
        response = (
            self.client.table(INFLUENCERS_TABLE)
            .select("id,tier")
            .in_("id", list(creator_ids))
            .execute()
        )
        return {
            row["id"]: row["tier"].upper()
            for row in response.data or []
            if isinstance(row.get("tier"), str) and row["tier"].strip()
        }

    def get_tier(self, creator_id: str) -> Optional[str]:
        return self.get_tiers([creator_id]).get(creator_id)

    def get_owner_user_id(self, creator_id: str) -> Optional[str]:
        """User account that owns the creator row, if any."""
        response = (
            self.client.table(INFLUENCERS_TABLE)
            .select("user_id")
            .eq("id", creator_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return response.data[0].get("user_id")

    def get_user_role(self, user_id: str) -> Optional[str]:
        response = (
            self.client.table(USERS_TABLE)
            .select("role")
            .eq("id", user_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        role = response.data[0].get("role")
        return role.upper() if isinstance(role, str) else None
