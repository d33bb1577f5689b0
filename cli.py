import asyncio
import json
import logging

import click
from dotenv import load_dotenv

from constants import SUPPORTED_PLATFORMS
from db import init_supabase, setup_logging
from services.analytics_config import AnalyticsConfig
from services.analytics_errors import AnalyticsSyncError
from services.refresh_orchestrator import build_orchestrator

# --- Setup logging once for CLI ---
load_dotenv()
setup_logging()
logger = logging.getLogger("rs_cli")


def _orchestrator():
    client = init_supabase()
    if not client:
        raise click.ClickException(
            "Failed to initialize Supabase client. "
            "Set NEXT_PUBLIC_SUPABASE_URL and NEXT_PUBLIC_SUPABASE_ANON_KEY."
        )
    return build_orchestrator(client, AnalyticsConfig())


def _run(coro_factory):
    """Build an orchestrator, run one coroutine against it, always close it."""
    orchestrator = _orchestrator()

    async def _main():
        try:
            return await coro_factory(orchestrator)
        finally:
            await orchestrator.close()

    try:
        return asyncio.run(_main())
    except AnalyticsSyncError as e:
        logger.error(f"{type(e).__name__}: {e}")
        raise click.ClickException(str(e))


def _echo_json(data):
    click.echo(json.dumps(data, indent=2, default=str))


@click.group()
def cli():
    """RosterSync analytics CLI for local refreshes and sweeps."""


@cli.command()
@click.argument("platform", type=click.Choice(SUPPORTED_PLATFORMS, case_sensitive=False))
@click.argument("external_user_id")
@click.option("--influencer-id", default=None, help="Creator that owns the profile")
def refresh(platform, external_user_id, influencer_id):
    """Refresh a single profile (operator action, no ownership check)."""
    result = _run(
        lambda orch: orch.refresh_one(platform, external_user_id, influencer_id)
    )
    click.echo(f"✅ Refreshed {platform}:{result.external_user_id}")
    _echo_json(result.to_dict())


@cli.command("refresh-all")
@click.option("--expired-only", is_flag=True, help="Only refresh expired cache entries")
@click.option(
    "--max-credits",
    type=click.IntRange(min=0),
    default=None,
    help="Stop after this many profile reports (never more than the credits left)",
)
def refresh_all(expired_only, max_credits):
    """Refresh every connected platform link sequentially, highest tier first."""
    summary = _run(
        lambda orch: orch.refresh_all(expired_only=expired_only, max_credits=max_credits)
    )
    _echo_json(summary.to_dict())


@cli.command("cache-stats")
def cache_stats():
    """Show cache totals, expired count and per-platform counts."""

    async def _stats(orch):
        return orch.get_cache_stats()

    _echo_json(_run(_stats).to_dict())


@cli.command()
def credits():
    """Show provider credit usage."""
    ledger = _run(lambda orch: orch.get_credit_usage())
    _echo_json(ledger.to_dict())


@cli.command("media-info")
@click.argument("url")
def media_info(url):
    """Fetch per-post engagement for an Instagram post or reel URL."""
    info = _run(lambda orch: orch.get_media_info(url))
    _echo_json(info.to_dict())


@cli.command()
@click.option("--all-links", is_flag=True, help="Sweep every link, not only expired ones")
@click.option("--once", is_flag=True, help="Run a single sweep and exit")
def sweep(all_links, once):
    """Run the scheduled sweep worker in the foreground."""
    from worker.sweep_worker import main as sweep_main

    asyncio.run(sweep_main(expired_only=not all_links, once=once))


if __name__ == "__main__":
    cli()
