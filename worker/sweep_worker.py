"""
Scheduled analytics sweep worker.

This worker:
1. Wakes every SWEEP_INTERVAL seconds
2. Runs a bulk refresh over connected platform links (expired cache
   entries only, unless told otherwise)
3. Tracks sweep metrics and logs a summary per sweep
4. Stops gracefully on SIGINT / SIGTERM: a sweep already in progress runs
   to completion, then the loop exits instead of waiting for the next one

Run as: python -m worker.sweep_worker
"""

import asyncio
import logging
import signal
import time
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from db import init_supabase, setup_logging
from services.analytics_config import AnalyticsConfig
from services.analytics_models import BulkRefreshResult
from services.refresh_orchestrator import RefreshOrchestrator, build_orchestrator

logger = logging.getLogger("rs_sweep")


@dataclass
class SweepMetrics:
    """Metrics tracking for worker health."""

    sweeps_run: int = 0
    sweeps_failed: int = 0
    profiles_refreshed: int = 0
    profiles_failed: int = 0
    start_time: float = 0.0

    def uptime(self) -> float:
        """Return uptime in seconds."""
        return time.time() - self.start_time

    def success_rate(self) -> float:
        """Return success rate percentage."""
        total = self.profiles_refreshed + self.profiles_failed
        if total == 0:
            return 0.0
        return (self.profiles_refreshed / total) * 100


async def run_sweep(
    orchestrator: RefreshOrchestrator,
    metrics: SweepMetrics,
    expired_only: bool = True,
) -> Optional[BulkRefreshResult]:
    """
    Run one bulk refresh and fold its outcome into metrics.

    Returns None when target enumeration itself failed.
    """
    metrics.sweeps_run += 1
    try:
        summary = await orchestrator.refresh_all(expired_only=expired_only)
    except Exception as e:
        metrics.sweeps_failed += 1
        logger.exception(f"❌ Sweep {metrics.sweeps_run} failed before any refresh: {e}")
        return None

    metrics.profiles_refreshed += summary.success_count
    metrics.profiles_failed += summary.error_count
    for message in summary.errors:
        logger.warning(f"  ↳ {message}")
    return summary


async def sweep_loop(
    orchestrator: RefreshOrchestrator,
    stop_event: asyncio.Event,
    interval: float,
    metrics: Optional[SweepMetrics] = None,
    expired_only: bool = True,
    max_sweeps: Optional[int] = None,
) -> SweepMetrics:
    """Sweep until stop_event is set (or max_sweeps is reached)."""
    metrics = metrics or SweepMetrics(start_time=time.time())
    logger.info(
        f"Starting sweep loop | interval={interval}s, expired_only={expired_only}"
    )

    while not stop_event.is_set():
        await run_sweep(orchestrator, metrics, expired_only=expired_only)

        logger.info(
            f"-- Sweep status | "
            f"Sweeps: {metrics.sweeps_run} ({metrics.sweeps_failed} failed) | "
            f"Refreshed: {metrics.profiles_refreshed}, "
            f"Failed: {metrics.profiles_failed} | "
            f"Success rate: {metrics.success_rate():.1f}%"
        )

        if max_sweeps is not None and metrics.sweeps_run >= max_sweeps:
            break

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass

    return metrics


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()

    def _handle(sig):
        logger.info(f"Received signal {sig.name}, initiating graceful shutdown...")
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _handle, sig)


async def main(expired_only: bool = True, once: bool = False):
    """Main entry point."""
    load_dotenv()
    setup_logging()
    logger.info("🚀 Starting RosterSync analytics sweep worker")

    client = init_supabase()
    if client is None:
        logger.error(
            "❌ NEXT_PUBLIC_SUPABASE_URL or NEXT_PUBLIC_SUPABASE_ANON_KEY not set"
        )
        raise SystemExit(1)

    config = AnalyticsConfig()
    orchestrator = build_orchestrator(client, config)
    stop_event = asyncio.Event()
    _install_signal_handlers(stop_event)
    metrics = SweepMetrics(start_time=time.time())

    try:
        await sweep_loop(
            orchestrator,
            stop_event,
            interval=config.sweep_interval,
            metrics=metrics,
            expired_only=expired_only,
            max_sweeps=1 if once else None,
        )
    finally:
        await orchestrator.close()
        logger.info(
            f"Worker shutdown complete | "
            f"Uptime: {metrics.uptime():.0f}s | "
            f"Sweeps: {metrics.sweeps_run} | "
            f"Refreshed: {metrics.profiles_refreshed} | "
            f"Failed: {metrics.profiles_failed}"
        )


if __name__ == "__main__":
    asyncio.run(main())
