"""
routes/analytics.py - JSON API for analytics refreshes

Routes:
    POST /api/analytics/refresh        on-demand refresh (caller from X-User-Id)
    POST /api/analytics/refresh-all    bulk sweep, guarded by CRON_SECRET
    GET  /api/analytics/cache-stats    cache totals
    GET  /api/analytics/credits        provider credit usage
    GET  /api/analytics/media-info     per-post engagement (?url=)

Errors from the engine map to their http_status; anything unexpected is
logged and answered with 500.
"""

import hmac
import json
import logging
from typing import Optional

from fasthtml.common import APIRouter
from starlette.responses import JSONResponse

from services.analytics_config import get_cron_secret
from services.analytics_errors import AnalyticsSyncError
from services.refresh_orchestrator import RefreshOrchestrator, build_orchestrator

logger = logging.getLogger(__name__)

ar = APIRouter()

_orchestrator: Optional[RefreshOrchestrator] = None


def set_orchestrator(orchestrator: Optional[RefreshOrchestrator]) -> None:
    """Dependency injection hook for tests."""
    global _orchestrator
    _orchestrator = orchestrator


def get_orchestrator() -> RefreshOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = build_orchestrator()
    return _orchestrator


def _error_response(exc: Exception) -> JSONResponse:
    if isinstance(exc, AnalyticsSyncError):
        body = {"error": str(exc), "type": type(exc).__name__}
        status = getattr(exc, "status_code", None)
        if status is not None:
            body["upstream_status"] = status
        return JSONResponse(body, status_code=exc.http_status)

    logger.exception(f"Unhandled analytics error: {exc}")
    return JSONResponse(
        {"error": "Internal server error", "type": "InternalError"}, status_code=500
    )


async def _read_json(req) -> dict:
    raw = await req.body()
    if not raw:
        return {}
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("Request body must be a JSON object")
    return data


def _bearer_token(req) -> str:
    header = req.headers.get("authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip()
    return ""


@ar("/api/analytics/refresh", methods=["post"])
async def refresh_profile(req):
    """
    Refresh one profile for its owner.

    Body: {"platform": "instagram", "external_user_id": "...", "influencer_id": "..."}
    """
    try:
        body = await _read_json(req)
    except ValueError as e:
        return JSONResponse({"error": f"Invalid JSON body: {e}"}, status_code=400)

    platform = body.get("platform")
    external_user_id = body.get("external_user_id")
    owner_id = body.get("influencer_id") or body.get("owner_id")
    caller_id = req.headers.get("x-user-id")

    if not platform:
        return JSONResponse({"error": "platform is required"}, status_code=400)

    try:
        result = await get_orchestrator().refresh_single(
            platform, external_user_id, owner_id, caller_id
        )
    except Exception as e:
        return _error_response(e)

    return JSONResponse({"success": True, **result.to_dict()})


@ar("/api/analytics/refresh-all", methods=["post"])
async def refresh_all_profiles(req):
    """
    Bulk refresh for the scheduler.

    Body (optional): {"expired_only": false, "max_credits": 100}
    """
    secret = get_cron_secret()
    if not secret or not hmac.compare_digest(_bearer_token(req), secret):
        logger.warning("Rejected bulk refresh: missing or invalid cron secret")
        return JSONResponse({"error": "Unauthorized"}, status_code=401)

    try:
        body = await _read_json(req)
    except ValueError as e:
        return JSONResponse({"error": f"Invalid JSON body: {e}"}, status_code=400)

    max_credits = body.get("max_credits")
    if max_credits is not None and (
        not isinstance(max_credits, int) or isinstance(max_credits, bool) or max_credits < 0
    ):
        return JSONResponse(
            {"error": "max_credits must be a non-negative integer"}, status_code=400
        )

    try:
        summary = await get_orchestrator().refresh_all(
            expired_only=bool(body.get("expired_only", False)), max_credits=max_credits
        )
    except Exception as e:
        return _error_response(e)

    return JSONResponse({"success": True, **summary.to_dict()})


@ar("/api/analytics/cache-stats")
def cache_stats():
    try:
        stats = get_orchestrator().get_cache_stats()
    except Exception as e:
        return _error_response(e)
    return JSONResponse(stats.to_dict())


@ar("/api/analytics/credits")
async def credits():
    try:
        ledger = await get_orchestrator().get_credit_usage()
    except Exception as e:
        return _error_response(e)
    return JSONResponse(ledger.to_dict())


@ar("/api/analytics/media-info")
async def media_info(url: str = ""):
    if not url:
        return JSONResponse({"error": "url is required"}, status_code=400)
    try:
        info = await get_orchestrator().get_media_info(url)
    except Exception as e:
        return _error_response(e)
    return JSONResponse(info.to_dict())
