"""
metrics_normalizer.py
---------------------
Collapses the provider's inconsistent field names into NormalizedMetrics.

The provider answers with different keys depending on platform and endpoint
version (avgViews / averageViews / avg_views / avg_reels_views ...). Each
canonical field has a fixed priority list of source keys; each platform
variant extends those lists with its own aliases.

Everything here is pure: same input, same output.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Tuple

from services.analytics_errors import NormalizationFailure
from services.analytics_models import MediaInfo, NormalizedMetrics, Platform

logger = logging.getLogger(__name__)


# --- Canonical field → source keys, highest priority first ---
BASE_FIELD_PRIORITY: Dict[str, Tuple[str, ...]] = {
    "followers": ("followers", "followersCount", "followers_count"),
    "engagement_rate": ("engagementRate", "engagement_rate"),
    "avg_views": ("avgViews", "averageViews", "avg_views", "avg_reels_views"),
    "avg_likes": ("avgLikes", "avg_likes"),
    "avg_comments": ("avgComments", "avg_comments"),
    "username": ("username", "handle"),
    "profile_url": ("url", "profileUrl"),
    "picture": ("picture",),
}

# Fields a provider report must carry at least one usable value for
REQUIRED_REPORT_FIELDS = ("followers",)


@dataclass(frozen=True)
class ReportVariant:
    """One member of the per-platform payload union."""

    platform: Platform
    extra_priority: Dict[str, Tuple[str, ...]] = field(default_factory=dict)

    def priority(self, canonical: str) -> Tuple[str, ...]:
        return BASE_FIELD_PRIORITY[canonical] + self.extra_priority.get(canonical, ())


REPORT_VARIANTS: Dict[Platform, ReportVariant] = {
    Platform.INSTAGRAM: ReportVariant(
        Platform.INSTAGRAM, {"avg_views": ("avgReelsPlays",)}
    ),
    Platform.TIKTOK: ReportVariant(Platform.TIKTOK, {"avg_views": ("avgPlays",)}),
    Platform.YOUTUBE: ReportVariant(
        Platform.YOUTUBE, {"followers": ("subscribers", "subscriberCount")}
    ),
}


@dataclass(frozen=True)
class MetricsFallbacks:
    """Caller-supplied values used when no source field is usable."""

    followers: Optional[int] = None
    engagement_rate: Optional[float] = None
    avg_views: Optional[float] = None
    avg_likes: Optional[float] = None
    avg_comments: Optional[float] = None
    username: Optional[str] = None
    profile_url: Optional[str] = None
    picture: Optional[str] = None


def coerce_number(value: Any) -> Optional[float]:
    """Return value as a finite, non-negative float, or None if unusable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        num = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            num = float(text)
        except ValueError:
            return None
    else:
        return None

    if not math.isfinite(num) or num < 0:
        return None
    return num


def coerce_string(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _first_number(raw: Mapping[str, Any], keys: Tuple[str, ...]) -> Optional[float]:
    for key in keys:
        num = coerce_number(raw.get(key))
        if num is not None:
            return num
    return None


def _first_string(raw: Mapping[str, Any], keys: Tuple[str, ...]) -> Optional[str]:
    for key in keys:
        text = coerce_string(raw.get(key))
        if text is not None:
            return text
    return None


def _pick(*values):
    for value in values:
        if value is not None:
            return value
    return None


def normalize(
    raw: Optional[Mapping[str, Any]],
    fallbacks: Optional[MetricsFallbacks] = None,
    platform: Optional[Platform] = None,
) -> NormalizedMetrics:
    """
    Normalize a raw metrics mapping into NormalizedMetrics.

    Resolution order per field: first usable source key, then the
    caller's fallback, then the default (0 for followers / engagement rate /
    avg views, None for avg likes / avg comments, "unknown" for username).

    Args:
        raw: Flat metrics mapping (provider block or request payload)
        fallbacks: Optional caller-supplied fallback values
        platform: Selects the platform variant's extra source keys

    Returns:
        NormalizedMetrics
    """
    raw = raw or {}
    fb = fallbacks or MetricsFallbacks()
    variant = REPORT_VARIANTS.get(platform) if platform else None

    def keys(canonical: str) -> Tuple[str, ...]:
        return variant.priority(canonical) if variant else BASE_FIELD_PRIORITY[canonical]

    followers = _pick(_first_number(raw, keys("followers")), fb.followers, 0)

    return NormalizedMetrics(
        followers=int(followers),
        engagement_rate=float(
            _pick(_first_number(raw, keys("engagement_rate")), fb.engagement_rate, 0.0)
        ),
        avg_views=float(
            _pick(_first_number(raw, keys("avg_views")), fb.avg_views, 0.0)
        ),
        avg_likes=_pick(_first_number(raw, keys("avg_likes")), fb.avg_likes),
        avg_comments=_pick(_first_number(raw, keys("avg_comments")), fb.avg_comments),
        username=_pick(_first_string(raw, keys("username")), fb.username, "unknown"),
        profile_url=_pick(_first_string(raw, keys("profile_url")), fb.profile_url),
        picture=_pick(_first_string(raw, keys("picture")), fb.picture),
    )


def unwrap_profile_report(
    platform: Platform, response: Optional[Mapping[str, Any]]
) -> Dict[str, Any]:
    """
    Locate the metrics block inside a provider profile report.

    Reports nest the block as ``{"profile": {"profile": {...}}}``; older
    payloads put it one level up or at the root.

    Raises:
        NormalizationFailure: No profile block, or no usable value for a
            required metric (a report whose followers are "NaN" must not
            overwrite a good snapshot with zeros)
    """
    variant = REPORT_VARIANTS[platform]
    every_key = tuple(k for name in BASE_FIELD_PRIORITY for k in variant.priority(name))

    def has_metrics(block: Any) -> bool:
        return isinstance(block, Mapping) and any(k in block for k in every_key)

    block = None
    if isinstance(response, Mapping):
        outer = response.get("profile")
        if isinstance(outer, Mapping) and has_metrics(outer.get("profile")):
            block = outer["profile"]
        elif has_metrics(outer):
            block = outer
        elif has_metrics(response):
            block = response

    if block is None:
        raise NormalizationFailure(
            f"No profile block in {platform.value} report", fields_tried=every_key
        )

    for canonical in REQUIRED_REPORT_FIELDS:
        tried = variant.priority(canonical)
        if _first_number(block, tried) is None:
            raise NormalizationFailure(
                f"{platform.value} report has no usable value for '{canonical}'",
                fields_tried=tried,
            )

    return dict(block)


def normalize_media_info(
    shortcode: str, response: Optional[Mapping[str, Any]]
) -> MediaInfo:
    """
    Normalize a raw media-info payload (first item) into MediaInfo.

    Raises:
        NormalizationFailure: The payload holds no media item
    """
    items = (response or {}).get("items") if isinstance(response, Mapping) else None
    if not items or not isinstance(items[0], Mapping):
        raise NormalizationFailure(
            f"No media item for shortcode {shortcode}", fields_tried=("items",)
        )

    post = items[0]
    caption = post.get("caption")
    if isinstance(caption, Mapping):
        caption = caption.get("text")

    taken_at = None
    ts = coerce_number(post.get("taken_at"))
    if ts is not None:
        taken_at = datetime.fromtimestamp(ts, tz=timezone.utc)

    user = post.get("user") if isinstance(post.get("user"), Mapping) else {}

    return MediaInfo(
        shortcode=shortcode,
        likes=int(_first_number(post, ("like_count", "likes")) or 0),
        comments=int(_first_number(post, ("comment_count", "comments")) or 0),
        views=int(
            _first_number(post, ("view_count", "play_count", "video_view_count")) or 0
        ),
        caption=coerce_string(caption) or "",
        taken_at=taken_at,
        username=coerce_string(user.get("username")),
    )
