import math

import pytest

from services.analytics_errors import NormalizationFailure
from services.analytics_models import NormalizedMetrics, Platform
from services.metrics_normalizer import (
    MetricsFallbacks,
    coerce_number,
    normalize,
    normalize_media_info,
    unwrap_profile_report,
)


class TestNormalize:
    def test_priority_order_picks_first_usable_key(self):
        raw = {"avgViews": None, "averageViews": "NaN", "avg_views": 900, "avg_reels_views": 5}
        assert normalize(raw).avg_views == 900.0

    @pytest.mark.parametrize("key", ["avgViews", "averageViews", "avg_views", "avg_reels_views"])
    def test_every_avg_views_variant_is_recognized(self, key):
        assert normalize({key: 1234}).avg_views == 1234.0

    def test_platform_variant_adds_aliases(self):
        assert normalize({"avgReelsPlays": 77}, platform=Platform.INSTAGRAM).avg_views == 77.0
        assert normalize({"avgPlays": 55}, platform=Platform.TIKTOK).avg_views == 55.0
        assert normalize({"subscribers": 9000}, platform=Platform.YOUTUBE).followers == 9000
        # aliases stay scoped to their platform
        assert normalize({"avgPlays": 55}, platform=Platform.INSTAGRAM).avg_views == 0.0

    def test_numeric_strings_are_coerced(self):
        metrics = normalize({"followers": "15000", "engagementRate": "0.042"})
        assert metrics.followers == 15000
        assert metrics.engagement_rate == pytest.approx(0.042)

    @pytest.mark.parametrize("bad", [float("nan"), float("inf"), "Infinity", "abc", -5, True])
    def test_unusable_values_fall_through_to_default(self, bad):
        metrics = normalize({"followers": bad, "engagementRate": bad, "avgViews": bad})
        assert metrics.followers == 0
        assert metrics.engagement_rate == 0.0
        assert metrics.avg_views == 0.0
        for value in (metrics.followers, metrics.engagement_rate, metrics.avg_views):
            assert math.isfinite(value)

    def test_defaults_when_nothing_present(self):
        assert normalize({}) == NormalizedMetrics(
            followers=0,
            engagement_rate=0.0,
            avg_views=0.0,
            avg_likes=None,
            avg_comments=None,
            username="unknown",
            profile_url=None,
            picture=None,
        )

    def test_optional_fields_stay_absent_not_zero(self):
        metrics = normalize({"followers": 10})
        assert metrics.avg_likes is None
        assert metrics.avg_comments is None

    def test_fallbacks_used_only_when_source_unusable(self):
        fb = MetricsFallbacks(followers=500, username="cached_name", profile_url="https://x")
        metrics = normalize({"followers": 42, "username": "  "}, fb)
        assert metrics.followers == 42
        assert metrics.username == "cached_name"
        assert metrics.profile_url == "https://x"

    def test_avg_likes_and_comments_fall_back(self):
        fb = MetricsFallbacks(avg_likes=120.0, avg_comments=8.0)
        metrics = normalize({"followers": 10, "avgLikes": "NaN", "avg_comments": 3}, fb)
        assert metrics.avg_likes == 120.0
        assert metrics.avg_comments == 3.0
        # Without a fallback the optional fields stay None rather than 0
        assert normalize({"followers": 10, "avgLikes": -1}).avg_likes is None

    def test_is_pure(self):
        raw = {"followers": "100", "avgLikes": 3.5, "handle": "h"}
        first, second = normalize(raw), normalize(raw)
        assert first == second
        assert repr(first.to_dict()) == repr(second.to_dict())
        assert raw == {"followers": "100", "avgLikes": 3.5, "handle": "h"}


def test_coerce_number_rejects_bool_and_none():
    assert coerce_number(None) is None
    assert coerce_number(False) is None
    assert coerce_number(" 12.5 ") == 12.5


class TestUnwrapProfileReport:
    def test_nested_profile_block(self):
        block = unwrap_profile_report(
            Platform.INSTAGRAM, {"profile": {"userId": "1", "profile": {"followers": 10}}}
        )
        assert block == {"followers": 10}

    def test_single_level_and_root_blocks(self):
        assert unwrap_profile_report(Platform.TIKTOK, {"profile": {"followers": 3}}) == {
            "followers": 3
        }
        assert unwrap_profile_report(Platform.TIKTOK, {"followers": 4}) == {"followers": 4}

    def test_youtube_subscribers_satisfy_followers(self):
        block = unwrap_profile_report(Platform.YOUTUBE, {"profile": {"subscribers": 8}})
        assert normalize(block, platform=Platform.YOUTUBE).followers == 8

    def test_missing_block_raises_with_fields_tried(self):
        with pytest.raises(NormalizationFailure) as exc:
            unwrap_profile_report(Platform.INSTAGRAM, {"error": False})
        assert "followers" in exc.value.fields_tried

    def test_missing_required_field_raises(self):
        with pytest.raises(NormalizationFailure) as exc:
            unwrap_profile_report(Platform.INSTAGRAM, {"profile": {"profile": {"avgViews": 3}}})
        assert exc.value.fields_tried == ["followers", "followersCount", "followers_count"]
        assert "tried: followers, followersCount" in str(exc.value)

    @pytest.mark.parametrize("bad", ["NaN", -5, "n/a", None])
    def test_unusable_followers_value_raises(self, bad):
        with pytest.raises(NormalizationFailure):
            unwrap_profile_report(
                Platform.INSTAGRAM,
                {"profile": {"profile": {"followers": bad, "avgViews": 3}}},
            )

    def test_later_usable_followers_key_is_accepted(self):
        block = unwrap_profile_report(
            Platform.TIKTOK, {"profile": {"followers": "NaN", "followersCount": "900"}}
        )
        assert normalize(block, platform=Platform.TIKTOK).followers == 900


class TestMediaInfo:
    def test_first_item_is_normalized(self):
        info = normalize_media_info(
            "Abc123",
            {
                "items": [
                    {
                        "like_count": 120,
                        "comment_count": "14",
                        "play_count": 3000,
                        "caption": {"text": "launch day"},
                        "taken_at": 1700000000,
                        "user": {"username": "jane.doe"},
                    }
                ]
            },
        )
        assert (info.likes, info.comments, info.views) == (120, 14, 3000)
        assert info.caption == "launch day"
        assert info.username == "jane.doe"
        assert info.taken_at.year == 2023

    def test_no_items_raises(self):
        with pytest.raises(NormalizationFailure):
            normalize_media_info("Abc123", {"items": []})
