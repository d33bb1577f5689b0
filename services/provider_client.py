"""
Thin async client for the external profile provider (Modash API).

Three call shapes:
├─ profile report   GET /v1/{platform}/profile/{userId}/report   (discovery credits)
├─ raw media info   GET /v1/raw/ig/media-info?code={shortcode}   (raw credits)
└─ account info     GET /user/info                               (free)

Every metered call goes through the shared TokenBucket first (profile
reports may be pre-throttled by the caller). Non-2xx responses,
transport failures, timeouts and non-JSON bodies surface as UpstreamError
with the original status and body preserved.
"""

import logging
from typing import Any, Dict, Mapping, Optional

import httpx

from constants import DEFAULT_CREDIT_LIMIT
from services.analytics_config import AnalyticsConfig, get_provider_api_key
from services.analytics_errors import UpstreamError
from services.analytics_models import (
    CreditBucket,
    CreditLedger,
    Platform,
    parse_timestamp,
)
from services.metrics_normalizer import coerce_number
from services.rate_limiter import TokenBucket

logger = logging.getLogger(__name__)


class ProfileProviderClient:
    """
    Provider API wrapper.

    Args:
        limiter: Shared token bucket (owned by the orchestrator)
        api_key: Bearer token; read from MODASH_API_KEY when omitted
        config: AnalyticsConfig for base URL and timeout
        http_client: Optional preconfigured httpx.AsyncClient (tests inject
            one built on httpx.MockTransport)
    """

    def __init__(
        self,
        limiter: TokenBucket,
        api_key: Optional[str] = None,
        config: Optional[AnalyticsConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or AnalyticsConfig()
        self.limiter = limiter
        self._api_key = api_key
        self._client = http_client

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the persistent HTTP client."""
        if self._client is None or self._client.is_closed:
            api_key = self._api_key or get_provider_api_key()
            self._client = httpx.AsyncClient(
                base_url=self.config.base_url,
                headers={
                    "Authorization": f"Bearer {api_key}",
                    "Content-Type": "application/json",
                },
                timeout=httpx.Timeout(self.config.provider_timeout, connect=5.0),
                limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
            )
        return self._client

    async def close(self):
        """Close the persistent HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _request(
        self, endpoint: str, params: Optional[Dict[str, Any]] = None, throttle: bool = True
    ) -> Dict[str, Any]:
        if throttle:
            await self.limiter.acquire()

        client = self._get_client()
        logger.debug(f"[Provider] GET {endpoint} params={params}")

        try:
            response = await client.get(endpoint, params=params)
        except httpx.TimeoutException as e:
            raise UpstreamError(f"Provider timeout on {endpoint}: {e}") from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"Provider request failed on {endpoint}: {e}") from e

        if not response.is_success:
            body = response.text
            logger.error(
                f"[Provider] {endpoint} -> HTTP {response.status_code}: {body[:500]}"
            )
            raise UpstreamError(
                f"Provider API error: {response.status_code} {response.reason_phrase} - {body}",
                status_code=response.status_code,
                body=body,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamError(
                f"Invalid JSON response from provider on {endpoint}",
                status_code=response.status_code,
                body=response.text,
            ) from e

        if not isinstance(data, dict):
            raise UpstreamError(
                f"Unexpected payload type from provider on {endpoint}: {type(data).__name__}",
                status_code=response.status_code,
                body=response.text,
            )
        return data

    async def fetch_profile_report(
        self, platform: Platform, external_user_id: str, throttle: bool = True
    ) -> Dict[str, Any]:
        """
        Fetch the full profile report for one provider user id.

        Pass throttle=False only when the caller has already taken a token
        from the shared limiter for this request.
        """
        platform = Platform.parse(platform)
        return await self._request(
            f"/v1/{platform.value}/profile/{external_user_id}/report", throttle=throttle
        )

    async def fetch_media_info(self, shortcode: str) -> Dict[str, Any]:
        """Fetch raw per-post engagement for an Instagram shortcode."""
        return await self._request("/v1/raw/ig/media-info", params={"code": shortcode})

    async def fetch_account_info(self) -> Dict[str, Any]:
        """Fetch account/billing info. Free, so not throttled."""
        return await self._request("/user/info", throttle=False)

    async def get_credit_usage(self) -> CreditLedger:
        return parse_credit_ledger(await self.fetch_account_info())


def _as_mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _first_present(*values) -> float:
    for value in values:
        num = coerce_number(value)
        if num is not None and num != 0:
            return num
    return 0


def parse_credit_ledger(info: Mapping[str, Any]) -> CreditLedger:
    """
    Split /user/info billing data into discovery / raw / general buckets.

    The provider has shipped several billing layouts; each bucket checks
    the known locations in order. The general pool falls back to the flat
    credits_* fields and the default plan limit.
    """
    billing = _as_mapping(info.get("billing"))
    plan = _as_mapping(billing.get("plan"))
    usage = _as_mapping(billing.get("usage"))
    credits = _as_mapping(billing.get("credits"))
    discovery_credits = _as_mapping(billing.get("discoveryCredits"))
    raw_credits = _as_mapping(billing.get("rawCredits"))

    discovery = CreditBucket(
        limit=_first_present(
            discovery_credits.get("limit"), plan.get("discoveryCredits"), credits.get("discovery")
        ),
        used=_first_present(discovery_credits.get("used"), usage.get("discovery")),
    )
    raw = CreditBucket(
        limit=_first_present(raw_credits.get("limit"), plan.get("rawCredits"), credits.get("raw")),
        used=_first_present(
            raw_credits.get("used"), billing.get("rawRequests"), usage.get("raw")
        ),
    )
    general = CreditBucket(
        limit=_first_present(
            billing.get("credits") if not credits else None,
            billing.get("creditLimit"),
            plan.get("credits"),
            info.get("credits_limit"),
        )
        or DEFAULT_CREDIT_LIMIT,
        used=_first_present(
            billing.get("requestsUsed"), usage.get("total"), info.get("credits_used")
        ),
    )

    period = _as_mapping(billing.get("period"))
    reset_raw = (
        billing.get("resetAt")
        or period.get("resetAt")
        or billing.get("nextReset")
        or info.get("reset_date")
    )
    try:
        reset_date = parse_timestamp(reset_raw)
    except (TypeError, ValueError):
        logger.warning(f"[Provider] Unparseable credit reset date: {reset_raw!r}")
        reset_date = None

    return CreditLedger(discovery=discovery, raw=raw, general=general, reset_date=reset_date)
