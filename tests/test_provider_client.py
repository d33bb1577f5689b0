import json

import httpx
import pytest

from services.analytics_config import AnalyticsConfig
from services.analytics_errors import UpstreamError
from services.analytics_models import Platform
from services.provider_client import ProfileProviderClient, parse_credit_ledger
from services.rate_limiter import TokenBucket


def make_client(handler, monotonic):
    limiter = TokenBucket(10, 1.0, clock=monotonic, sleep=monotonic.sleep)
    http = httpx.AsyncClient(
        base_url="https://api.modash.test",
        transport=httpx.MockTransport(handler),
        headers={"Authorization": "Bearer test-key"},
    )
    return ProfileProviderClient(limiter, api_key="test-key", config=AnalyticsConfig(), http_client=http)


@pytest.mark.asyncio
async def test_profile_report_path_and_auth(monotonic):
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["auth"] = request.headers.get("authorization")
        return httpx.Response(200, json={"profile": {"profile": {"followers": 5}}})

    client = make_client(handler, monotonic)
    data = await client.fetch_profile_report(Platform.TIKTOK, "12345678")

    assert seen == {"path": "/v1/tiktok/profile/12345678/report", "auth": "Bearer test-key"}
    assert data["profile"]["profile"]["followers"] == 5
    assert client.limiter.peek() == pytest.approx(9.0)


@pytest.mark.asyncio
async def test_pre_throttled_report_takes_no_token(monotonic):
    client = make_client(
        lambda request: httpx.Response(200, json={"profile": {"followers": 5}}), monotonic
    )
    await client.fetch_profile_report(Platform.TIKTOK, "12345678", throttle=False)
    assert client.limiter.peek() == pytest.approx(10.0)


@pytest.mark.asyncio
async def test_media_info_sends_shortcode(monotonic):
    def handler(request):
        assert request.url.path == "/v1/raw/ig/media-info"
        assert request.url.params["code"] == "Abc123"
        return httpx.Response(200, json={"items": []})

    client = make_client(handler, monotonic)
    assert await client.fetch_media_info("Abc123") == {"items": []}


@pytest.mark.asyncio
async def test_non_2xx_preserves_status_and_body(monotonic):
    def handler(request):
        return httpx.Response(404, text='{"error":true,"message":"account not found"}')

    client = make_client(handler, monotonic)
    with pytest.raises(UpstreamError) as exc:
        await client.fetch_profile_report(Platform.INSTAGRAM, "12345678")

    assert exc.value.status_code == 404
    assert "account not found" in exc.value.body
    assert exc.value.http_status == 502


@pytest.mark.asyncio
async def test_invalid_json_is_upstream_error(monotonic):
    client = make_client(lambda request: httpx.Response(200, text="<html>oops</html>"), monotonic)
    with pytest.raises(UpstreamError) as exc:
        await client.fetch_profile_report(Platform.INSTAGRAM, "12345678")
    assert exc.value.status_code == 200


@pytest.mark.asyncio
async def test_transport_failure_is_upstream_error(monotonic):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = make_client(handler, monotonic)
    with pytest.raises(UpstreamError):
        await client.fetch_profile_report(Platform.INSTAGRAM, "12345678")


@pytest.mark.asyncio
async def test_account_info_is_not_throttled(monotonic):
    payload = {"billing": {"credits": 3000, "requestsUsed": 120}}
    client = make_client(lambda request: httpx.Response(200, content=json.dumps(payload)), monotonic)

    ledger = await client.get_credit_usage()

    assert client.limiter.peek() == pytest.approx(10.0)
    assert ledger.general.limit == 3000
    assert ledger.general.used == 120
    assert ledger.general.remaining == 2880


def test_parse_credit_ledger_split_buckets():
    ledger = parse_credit_ledger(
        {
            "billing": {
                "discoveryCredits": {"limit": 500, "used": 620},
                "rawCredits": {"limit": 1000, "used": 10},
                "credits": {"discovery": 400},
                "creditLimit": 3000,
                "requestsUsed": 630,
                "resetAt": "2025-04-01T00:00:00Z",
            }
        }
    )
    assert ledger.discovery.limit == 500
    assert ledger.discovery.remaining == 0
    assert ledger.raw.remaining == 990
    assert ledger.general.limit == 3000
    assert ledger.reset_date.isoformat() == "2025-04-01T00:00:00+00:00"


def test_parse_credit_ledger_defaults():
    ledger = parse_credit_ledger({"billing": "n/a", "reset_date": "not a date"})
    assert ledger.general.limit == 3000
    assert ledger.general.used == 0
    assert ledger.discovery.limit == 0
    assert ledger.reset_date is None
