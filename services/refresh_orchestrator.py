"""
Analytics refresh orchestration.

Two entry points share one inner routine:

    refresh_one(platform, external_user_id, owner_id)
        validate → throttle → fetch → normalize → cache upsert
        → platform link update → creator rollup

    refresh_single(...)  authorization gate, then refresh_one
    refresh_all(...)     sequential, tier-ordered sweep over every eligible
                         link within the credit budget, isolating
                         per-item failures

Within one refresh the steps are strictly sequential. Across refreshes there
is no locking: concurrent refreshes of the same key both upsert, and the one
whose fetch finishes last wins.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, List, Optional, Set, Tuple

from constants import ELEVATED_ROLES, TIER_SWEEP_ORDER
from db import SupabaseLike, get_supabase
from services.analytics_config import AnalyticsConfig
from services.analytics_errors import (
    AnalyticsSyncError,
    Forbidden,
    InvalidIdentifier,
    UpstreamError,
)
from services.analytics_models import (
    BulkRefreshResult,
    CacheStats,
    CreditLedger,
    MediaInfo,
    Platform,
    PlatformLink,
    RefreshResult,
    utcnow,
)
from services.cache_store import CacheStore, ttl_for_tier
from services.identifier_validator import ExternalIdValidator
from services.metrics_normalizer import (
    MetricsFallbacks,
    normalize,
    normalize_media_info,
    unwrap_profile_report,
)
from services.platform_links import CreatorRepository, PlatformLinkRepository
from services.provider_client import ProfileProviderClient
from services.rate_limiter import TokenBucket
from services.stats_aggregator import StatsAggregator

logger = logging.getLogger("rs_orchestrator")


class RefreshOrchestrator:
    """
    Coordinates profile refreshes across validator, limiter, client,
    normalizer, cache store and aggregator.

    Args:
        client: Provider client (carries the shared TokenBucket)
        cache: Profile cache store
        links: Platform link repository
        creators: Creator repository (rollups, ownership, roles)
        config: AnalyticsConfig (timeouts, bulk delay, error sample size)
        clock: Returns the current aware UTC datetime
        sleep: Awaitable sleep used between bulk items
    """

    def __init__(
        self,
        client: ProfileProviderClient,
        cache: CacheStore,
        links: PlatformLinkRepository,
        creators: CreatorRepository,
        config: Optional[AnalyticsConfig] = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.cache = cache
        self.links = links
        self.creators = creators
        self.aggregator = StatsAggregator(links, creators)
        self.validator = ExternalIdValidator
        self.config = config or AnalyticsConfig()
        self._clock = clock
        self._sleep = sleep

    @property
    def limiter(self) -> TokenBucket:
        return self.client.limiter

    # ------------------------------------------------------------------
    # Single refresh
    # ------------------------------------------------------------------

    def _parse_platform(self, platform) -> Platform:
        try:
            return Platform.parse(platform)
        except ValueError as e:
            raise InvalidIdentifier(str(platform), str(e)) from e

    async def refresh_one(
        self,
        platform,
        external_user_id: Optional[str],
        owner_id: Optional[str],
        tier: Optional[str] = None,
    ) -> RefreshResult:
        """
        Refresh one (platform, external user id) snapshot.

        The cache entry's lifetime follows the owner's tier (looked up when
        not given); unowned or untiered snapshots get the store's default TTL.

        Raises:
            InvalidIdentifier: Malformed id or platform (no network call made)
            UpstreamError: Provider failure or timeout
            NormalizationFailure: Report had no usable profile block
            PersistenceError: Cache / link / rollup write failed
        """
        platform = self._parse_platform(platform)

        result = self.validator.validate(external_user_id)
        if not result.valid:
            logger.warning(
                f"[Refresh] Rejected {platform.value} id {external_user_id!r}: {result.reason}"
            )
            raise InvalidIdentifier(external_user_id, result.reason)
        user_id = result.value
        tag = f"[Refresh {platform.value}:{user_id}]"

        # Waiting for a token is not part of the provider timeout
        await self.limiter.acquire()

        logger.info(f"{tag} Fetching profile report (owner={owner_id})")
        try:
            response = await asyncio.wait_for(
                self.client.fetch_profile_report(platform, user_id, throttle=False),
                timeout=self.config.provider_timeout,
            )
        except asyncio.TimeoutError as e:
            raise UpstreamError(
                f"Provider timeout after {self.config.provider_timeout}s for "
                f"{platform.value}:{user_id}"
            ) from e

        block = unwrap_profile_report(platform, response)

        previous = self.cache.get(platform, user_id, owner_id)
        fallbacks = None
        if previous is not None:
            fallbacks = MetricsFallbacks(
                username=previous.metrics.username,
                profile_url=previous.metrics.profile_url,
                picture=previous.metrics.picture,
            )
        metrics = normalize(block, fallbacks, platform)

        if tier is None and owner_id:
            tier = self.creators.get_tier(owner_id)
        ttl = ttl_for_tier(tier, default=self.cache.ttl)

        now = self._clock()
        self.cache.upsert(platform, user_id, metrics, response, owner_id=owner_id, ttl=ttl)

        rollup = None
        if owner_id:
            self.links.record_refresh(owner_id, platform, user_id, metrics, now)
            rollup = self.aggregator.recompute(owner_id)

        logger.info(
            f"{tag} ✅ followers={metrics.followers:,}, "
            f"engagement={metrics.engagement_rate:.4f}, avg_views={metrics.avg_views:,.0f}"
        )
        return RefreshResult(
            platform=platform,
            external_user_id=user_id,
            owner_id=owner_id,
            metrics=metrics,
            refreshed_at=now,
            rollup=rollup,
        )

    def authorize(self, owner_id: Optional[str], caller_id: Optional[str]) -> None:
        """
        Allow the owner of the profile, or any caller with an elevated role.

        Raises:
            Forbidden: Otherwise
        """
        if not caller_id:
            raise Forbidden("Authentication required to refresh analytics")

        if owner_id and caller_id == owner_id:
            return

        role = self.creators.get_user_role(caller_id)
        if role in ELEVATED_ROLES:
            return

        if owner_id and self.creators.get_owner_user_id(owner_id) == caller_id:
            return

        logger.warning(
            f"[Refresh] Caller {caller_id} (role={role}) may not refresh profile {owner_id}"
        )
        raise Forbidden("You can only refresh your own profiles")

    async def refresh_single(
        self,
        platform,
        external_user_id: Optional[str],
        owner_id: Optional[str],
        caller_id: Optional[str],
    ) -> RefreshResult:
        """
        On-demand refresh: authorization first, then refresh_one.

        The external id is the first valid one of: the request's id, the id
        stored on the creator's link for that platform.
        """
        self.authorize(owner_id, caller_id)
        user_id = self.resolve_external_id(platform, external_user_id, owner_id)
        return await self.refresh_one(platform, user_id, owner_id)

    def resolve_external_id(
        self, platform, external_user_id: Optional[str], owner_id: Optional[str]
    ) -> str:
        """
        Raises:
            InvalidIdentifier: Neither source holds a valid provider id
        """
        platform = self._parse_platform(platform)
        candidates = [(external_user_id, "payload")]
        if owner_id:
            link = self.links.get(owner_id, platform)
            if link is not None:
                candidates.append((link.external_user_id, "platform-specific"))

        resolved = self.validator.resolve_external_id(candidates)
        if resolved is None:
            logger.warning(
                f"[Refresh] No valid {platform.value} id for creator {owner_id} "
                f"(request id {external_user_id!r})"
            )
            raise InvalidIdentifier(
                external_user_id,
                "no valid provider id in the request or on the platform link",
            )
        if resolved.source != "payload":
            logger.info(
                f"[Refresh] Using {resolved.source} id {resolved.user_id} for creator {owner_id}"
            )
        return resolved.user_id

    # ------------------------------------------------------------------
    # Bulk sweep
    # ------------------------------------------------------------------

    def _enumerate_targets(
        self, expired_only: bool
    ) -> Tuple[List[PlatformLink], int, Dict[str, str]]:
        """
        Connected links with an external id, optionally only expired ones,
        ordered GOLD, SILVER, PARTNERED, BRONZE, then untiered creators.
        """
        links = self.links.list_connected()
        usable = [l for l in links if l.external_user_id and l.external_user_id.strip()]
        skipped = len(links) - len(usable)

        if expired_only:
            expired: Set[Tuple[Platform, str, Optional[str]]] = {
                (e.platform, e.external_user_id, e.owner_id)
                for e in self.cache.list_expired()
            }
            usable = [
                l
                for l in usable
                if (l.platform, l.external_user_id.strip(), l.influencer_id) in expired
            ]

        tiers = self.creators.get_tiers(sorted({l.influencer_id for l in usable}))
        untiered = len(TIER_SWEEP_ORDER)
        usable.sort(key=lambda l: TIER_SWEEP_ORDER.get(tiers.get(l.influencer_id), untiered))
        return usable, skipped, tiers

    async def _credit_budget(self, max_credits: Optional[int]) -> int:
        """Profile reports the sweep may spend: remaining credits, capped by max_credits."""
        ledger = await self.get_credit_usage()
        bucket = ledger.discovery if ledger.discovery.limit > 0 else ledger.general
        remaining = int(bucket.remaining)
        logger.info(
            f"📊 Credits: {bucket.used:,.0f}/{bucket.limit:,.0f} ({remaining:,} remaining)"
        )
        if max_credits is None:
            return remaining
        if remaining < max_credits:
            logger.warning(
                f"⚠️ Not enough credits remaining: {remaining} < {max_credits}"
            )
        return max(0, min(remaining, max_credits))

    async def refresh_all(
        self, expired_only: bool = False, max_credits: Optional[int] = None
    ) -> BulkRefreshResult:
        """
        Refresh every eligible link sequentially, highest tier first.

        Each successful refresh spends one credit of the sweep's budget
        (remaining provider credits, optionally capped by max_credits). Once
        the budget is spent the rest of the targets are counted as skipped.

        Per-item failures are counted and sampled, never raised. Only a
        failure to enumerate targets or read the credit ledger propagates.
        """
        targets, skipped, tiers = self._enumerate_targets(expired_only)
        budget = await self._credit_budget(max_credits)
        summary = BulkRefreshResult(skipped_count=skipped, credit_budget=budget)

        logger.info(
            f"🔄 Bulk refresh starting: {len(targets)} target(s), "
            f"{skipped} skipped without external id, expired_only={expired_only}, "
            f"credit budget={budget}"
        )

        for i, link in enumerate(targets, 1):
            if summary.credits_used >= budget:
                left = len(targets) - i + 1
                summary.skipped_count += left
                logger.warning(
                    f"🛑 Credit budget reached ({summary.credits_used}/{budget}), "
                    f"skipping {left} remaining target(s)"
                )
                break

            if i > 1 and self.config.bulk_item_delay > 0:
                await self._sleep(self.config.bulk_item_delay)

            summary.total_processed += 1
            label = f"{link.platform.value}:{link.external_user_id} (creator {link.influencer_id})"
            try:
                await self.refresh_one(
                    link.platform,
                    link.external_user_id,
                    link.influencer_id,
                    tier=tiers.get(link.influencer_id),
                )
                summary.success_count += 1
                summary.credits_used += 1
            except AnalyticsSyncError as e:
                summary.error_count += 1
                self._record_error(summary, f"Failed to refresh {label}: {e}")
                logger.error(f"[Bulk {i}/{len(targets)}] ❌ {label}: {e}")
            except Exception as e:
                summary.error_count += 1
                self._record_error(summary, f"Failed to refresh {label}: {e}")
                logger.exception(f"[Bulk {i}/{len(targets)}] ❌ Unexpected error for {label}")

        summary.completed_at = self._clock()
        logger.info(
            f"🎯 Bulk refresh completed: {summary.success_count} success, "
            f"{summary.error_count} errors, {summary.credits_used} credit(s) used"
        )
        return summary

    def _record_error(self, summary: BulkRefreshResult, message: str) -> None:
        if len(summary.errors) < self.config.bulk_error_sample_size:
            summary.errors.append(message)

    # ------------------------------------------------------------------
    # Read-only operations
    # ------------------------------------------------------------------

    def get_cache_stats(self) -> CacheStats:
        return self.cache.stats()

    async def get_credit_usage(self) -> CreditLedger:
        return await self.client.get_credit_usage()

    async def get_media_info(self, url: str) -> MediaInfo:
        """
        Per-post engagement for an Instagram post or reel URL.

        Raises:
            InvalidIdentifier: URL holds no shortcode
            UpstreamError / NormalizationFailure: as for refresh_one
        """
        shortcode = self.validator.extract_instagram_shortcode(url)
        if not shortcode:
            raise InvalidIdentifier(url, "not an Instagram post or reel URL")
        response = await self.client.fetch_media_info(shortcode)
        return normalize_media_info(shortcode, response)

    async def close(self):
        await self.client.close()


def build_orchestrator(
    client: Optional[SupabaseLike] = None,
    config: Optional[AnalyticsConfig] = None,
    api_key: Optional[str] = None,
) -> RefreshOrchestrator:
    """
    Wire an orchestrator from configuration.

    The token bucket is created here and shared by everything the
    orchestrator drives; there is no module-level limiter.
    """
    config = config or AnalyticsConfig()
    client = client or get_supabase()
    if client is None:
        raise RuntimeError("Supabase client not initialized")

    limiter = TokenBucket(config.rate_limit_capacity, config.rate_limit_interval)
    provider = ProfileProviderClient(limiter, api_key=api_key, config=config)
    return RefreshOrchestrator(
        client=provider,
        cache=CacheStore(client, ttl=timedelta(days=config.cache_ttl_days)),
        links=PlatformLinkRepository(client),
        creators=CreatorRepository(client),
        config=config,
    )
