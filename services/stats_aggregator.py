"""
Creator stats aggregation.

Rolls every platform link of a creator up into the total_* columns.
Always recomputed from the full current set of links, never patched.
"""

import logging
from typing import Iterable

from services.analytics_models import CreatorRollup, PlatformLink
from services.platform_links import CreatorRepository, PlatformLinkRepository

logger = logging.getLogger(__name__)


def _num(value) -> float:
    try:
        return float(value) if value is not None else 0.0
    except (TypeError, ValueError):
        return 0.0


def compute_rollup(links: Iterable[PlatformLink]) -> CreatorRollup:
    """
    Aggregate platform links into a CreatorRollup.

    - total_followers: sum of followers over links with followers > 0
    - total_engagement_rate: follower-weighted mean over links with
      followers > 0 and engagement_rate > 0
    - total_avg_views: simple mean over links with avg_views > 0

    Returns exact zeros when no link has usable data.
    """
    total_followers = 0
    weighted_engagement = 0.0
    weight = 0
    views = []

    for link in links:
        followers = int(_num(link.followers))
        rate = _num(link.engagement_rate)
        avg_views = _num(link.avg_views)

        if followers > 0:
            total_followers += followers
            if rate > 0:
                weighted_engagement += rate * followers
                weight += followers
        if avg_views > 0:
            views.append(avg_views)

    return CreatorRollup(
        total_followers=total_followers,
        total_engagement_rate=weighted_engagement / weight if weight > 0 else 0.0,
        total_avg_views=sum(views) / len(views) if views else 0.0,
    )


class StatsAggregator:
    """Recomputes and stores a creator's rollup."""

    def __init__(self, links: PlatformLinkRepository, creators: CreatorRepository):
        self.links = links
        self.creators = creators

    def recompute(self, creator_id: str) -> CreatorRollup:
        """Read all links for the creator, compute, and replace the stored rollup."""
        rollup = compute_rollup(self.links.list_for_creator(creator_id))
        self.creators.write_rollup(creator_id, rollup)
        logger.info(
            f"📊 Rollup for {creator_id}: followers={rollup.total_followers:,}, "
            f"engagement={rollup.total_engagement_rate * 100:.2f}%, "
            f"avg_views={round(rollup.total_avg_views):,}"
        )
        return rollup
