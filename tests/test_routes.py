from datetime import datetime, timezone

import pytest
from starlette.testclient import TestClient

import main
from routes import analytics
from services.analytics_errors import (
    Forbidden,
    InvalidIdentifier,
    NormalizationFailure,
    PersistenceError,
    UpstreamError,
)
from services.analytics_models import (
    BulkRefreshResult,
    CacheStats,
    CreatorRollup,
    CreditBucket,
    CreditLedger,
    NormalizedMetrics,
    Platform,
    RefreshResult,
)

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


class StubOrchestrator:
    def __init__(self):
        self.raise_on_refresh = None
        self.calls = []

    async def refresh_single(self, platform, external_user_id, owner_id, caller_id):
        self.calls.append(("refresh_single", platform, external_user_id, owner_id, caller_id))
        if self.raise_on_refresh:
            raise self.raise_on_refresh
        return RefreshResult(
            platform=Platform.parse(platform),
            external_user_id=external_user_id,
            owner_id=owner_id,
            metrics=NormalizedMetrics(followers=1200, engagement_rate=0.04),
            refreshed_at=NOW,
            rollup=CreatorRollup(1200, 0.04, 0.0),
        )

    async def refresh_all(self, expired_only=False, max_credits=None):
        self.calls.append(("refresh_all", expired_only, max_credits))
        return BulkRefreshResult(
            total_processed=5, success_count=4, error_count=1, errors=["x"], completed_at=NOW
        )

    def get_cache_stats(self):
        return CacheStats(total_entries=3, expired_count=1, by_platform={"instagram": 3})

    async def get_credit_usage(self):
        return CreditLedger(
            discovery=CreditBucket(500, 100), raw=CreditBucket(100, 150), general=CreditBucket(3000, 250)
        )

    async def get_media_info(self, url):
        raise InvalidIdentifier(url, "not an Instagram post or reel URL")


@pytest.fixture
def stub():
    orchestrator = StubOrchestrator()
    analytics.set_orchestrator(orchestrator)
    yield orchestrator
    analytics.set_orchestrator(None)


@pytest.fixture
def client(stub):
    return TestClient(main.app)


REFRESH_BODY = {"platform": "instagram", "external_user_id": "12345678", "influencer_id": "creator-1"}


def test_refresh_success(client, stub):
    resp = client.post("/api/analytics/refresh", json=REFRESH_BODY, headers={"X-User-Id": "user-1"})

    assert resp.status_code == 200
    data = resp.json()
    assert data["success"] is True
    assert data["metrics"]["followers"] == 1200
    assert data["totals"]["total_followers"] == 1200
    assert stub.calls == [("refresh_single", "instagram", "12345678", "creator-1", "user-1")]


@pytest.mark.parametrize(
    "error,status",
    [
        (InvalidIdentifier("x", "empty identifier"), 400),
        (Forbidden("You can only refresh your own profiles"), 403),
        (NormalizationFailure("no followers", ["followers"]), 422),
        (UpstreamError("Provider API error", status_code=429, body="slow down"), 502),
        (PersistenceError("write failed"), 500),
        (RuntimeError("unexpected"), 500),
    ],
)
def test_refresh_error_mapping(client, stub, error, status):
    stub.raise_on_refresh = error
    resp = client.post("/api/analytics/refresh", json=REFRESH_BODY, headers={"X-User-Id": "user-1"})
    assert resp.status_code == status
    assert "error" in resp.json()


def test_upstream_status_is_reported(client, stub):
    stub.raise_on_refresh = UpstreamError("Provider API error", status_code=429, body="slow down")
    resp = client.post("/api/analytics/refresh", json=REFRESH_BODY)
    assert resp.json()["upstream_status"] == 429


def test_refresh_requires_platform(client):
    resp = client.post("/api/analytics/refresh", json={"external_user_id": "12345678"})
    assert resp.status_code == 400


def test_refresh_rejects_bad_json(client):
    resp = client.post(
        "/api/analytics/refresh",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )
    assert resp.status_code == 400


def test_refresh_all_requires_cron_secret(client, stub, monkeypatch):
    monkeypatch.setenv("CRON_SECRET", "s3cret")

    assert client.post("/api/analytics/refresh-all").status_code == 401
    wrong = client.post("/api/analytics/refresh-all", headers={"Authorization": "Bearer nope"})
    assert wrong.status_code == 401
    assert stub.calls == []

    resp = client.post(
        "/api/analytics/refresh-all",
        json={"expired_only": True},
        headers={"Authorization": "Bearer s3cret"},
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["successful_refreshes"] == 4
    assert data["failed_refreshes"] == 1
    assert stub.calls == [("refresh_all", True, None)]


def test_refresh_all_forwards_credit_cap(client, stub, monkeypatch):
    monkeypatch.setenv("CRON_SECRET", "s3cret")
    auth = {"Authorization": "Bearer s3cret"}

    bad = client.post("/api/analytics/refresh-all", json={"max_credits": -1}, headers=auth)
    assert bad.status_code == 400
    assert stub.calls == []

    resp = client.post("/api/analytics/refresh-all", json={"max_credits": 20}, headers=auth)
    assert resp.status_code == 200
    assert stub.calls == [("refresh_all", False, 20)]


def test_refresh_all_disabled_without_secret(client, monkeypatch):
    monkeypatch.setenv("CRON_SECRET", "")
    resp = client.post("/api/analytics/refresh-all", headers={"Authorization": "Bearer "})
    assert resp.status_code == 401


def test_cache_stats(client):
    resp = client.get("/api/analytics/cache-stats")
    assert resp.status_code == 200
    assert resp.json() == {
        "total_entries": 3,
        "expired_count": 1,
        "by_platform": {"instagram": 3},
        "last_fetched_at": None,
    }


def test_credits(client):
    data = client.get("/api/analytics/credits").json()
    assert data["discovery"]["remaining"] == 400
    assert data["raw"]["remaining"] == 0
    assert data["general"]["remaining"] == 2750


def test_media_info_errors(client):
    assert client.get("/api/analytics/media-info").status_code == 400
    resp = client.get("/api/analytics/media-info", params={"url": "https://example.com"})
    assert resp.status_code == 400
