#!/usr/bin/env python3
"""
Management script for the trading engine.

Usage (direct DB access):
    python manage.py db init
    python manage.py db clear
    python manage.py db status
    python manage.py jobs settle
    python manage.py jobs daily-reset
    python manage.py jobs audit

Usage (via API):
    python manage.py api settle [--base-url http://localhost:8000]

Usage (shared state):
    python manage.py breaker status MARKET_ID
    python manage.py breaker clear MARKET_ID
"""

import asyncio

import click
import httpx
from sqlalchemy import func, select

from propdesk.config import settings
from propdesk.database import AsyncSessionLocal, Base, engine
from propdesk.models import Challenge, Position, Trade, Trader
from propdesk.oracle import CachedPriceOracle
from propdesk.services.audit import audit_balances
from propdesk.services.circuit_breaker import ArbitrageSentinel
from propdesk.services.lifecycle import run_daily_reset
from propdesk.services.settlement import settle_resolved_positions
from propdesk.state import MemoryStore, RedisStore, SharedStore


DEFAULT_BASE_URL = "http://localhost:8000"


# ============================================================================
# Direct database operations (internal)
# ============================================================================


async def _init_db():
    """Initialize the database tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def _clear_db():
    """Drop and recreate all tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)


async def _count_records():
    """Count records in each table."""
    async with AsyncSessionLocal() as session:
        counts = {}
        for model, name in [
            (Trader, "traders"),
            (Challenge, "challenges"),
            (Position, "positions"),
            (Trade, "trades"),
        ]:
            counts[name] = await session.scalar(select(func.count()).select_from(model))
        return counts


def _store() -> SharedStore:
    if not settings.redis_url:
        raise click.ClickException(
            "REDIS_URL is not set; the in-process store of a running server is not reachable"
        )
    return RedisStore.from_url(settings.redis_url)


def _job_store() -> SharedStore:
    # Settlement only acts on resolutions it can read, so an empty store settles nothing
    return RedisStore.from_url(settings.redis_url) if settings.redis_url else MemoryStore()


# ============================================================================
# CLI: Main group
# ============================================================================


@click.group()
def cli():
    """Trading engine management commands."""
    pass


# ============================================================================
# CLI: db (direct database access)
# ============================================================================


@cli.group()
def db():
    """Direct database management (bypasses API)."""
    pass


@db.command("init")
def db_init():
    """Create tables that do not exist yet."""
    asyncio.run(_init_db())
    click.echo("Database initialized.")


@db.command("clear")
@click.confirmation_option(prompt="Are you sure you want to clear all data?")
def db_clear():
    """Clear all data from the database (destructive!)."""
    click.echo("Clearing database...")
    asyncio.run(_clear_db())
    click.echo("Database cleared and tables recreated.")


@db.command("status")
def db_status():
    """Show database status and record counts."""

    async def run():
        await _init_db()
        return await _count_records()

    counts = asyncio.run(run())

    click.echo("\nDatabase Status:")
    click.echo("-" * 30)
    for table, count in counts.items():
        click.echo(f"  {table:<15} {count:>10,}")
    click.echo("-" * 30)
    click.echo(f"  {'Total':<15} {sum(counts.values()):>10,}")


# ============================================================================
# CLI: jobs (direct database access)
# ============================================================================


@cli.group()
def jobs():
    """Run scheduled jobs in-process against the database."""
    pass


@jobs.command("settle")
def jobs_settle():
    """Settle open positions on resolved markets."""

    async def run():
        store = _job_store()
        try:
            oracle = CachedPriceOracle(store, max_age_seconds=settings.price_max_age_seconds)
            async with AsyncSessionLocal() as session:
                return await settle_resolved_positions(session, oracle)
        finally:
            await store.close()

    result = asyncio.run(run())
    click.echo(
        f"Checked {result.positions_checked}, settled {result.positions_settled}, "
        f"P&L ${result.total_pnl_settled:,.2f}"
    )
    for error in result.errors:
        click.echo(f"  {error}", err=True)


@jobs.command("daily-reset")
def jobs_daily_reset():
    """Snapshot start-of-day balance and equity.

    Needs the shared store: without live prices every open position would be
    carried at cost and the baseline would be wrong for the whole day.
    """
    store = _store()

    async def run():
        try:
            oracle = CachedPriceOracle(store, max_age_seconds=settings.price_max_age_seconds)
            async with AsyncSessionLocal() as session:
                return await run_daily_reset(session, oracle)
        finally:
            await store.close()

    result = asyncio.run(run())
    click.echo(
        f"Checked {result.challenges_checked}: {result.challenges_reset} reset, "
        f"{result.challenges_skipped} skipped, {result.challenges_expired} expired"
    )
    for error in result.errors:
        click.echo(f"  {error}", err=True)


@jobs.command("audit")
def jobs_audit():
    """Compare stored balances with trade history."""

    async def run():
        async with AsyncSessionLocal() as session:
            return await audit_balances(session)

    report = asyncio.run(run())
    click.echo(f"Audited {report.challenges_audited} active challenges")
    if report.healthy:
        click.echo("All balances match trade history.")
        return

    click.echo(f"\n{'Challenge':<38} {'Stored':>12} {'Expected':>12} {'Diff':>10}  Severity")
    click.echo("-" * 86)
    for d in report.discrepancies:
        click.echo(
            f"{d.challenge_id:<38} {d.stored_balance:>12,.2f} {d.expected_balance:>12,.2f} "
            f"{d.discrepancy:>10,.2f}  {d.severity}"
        )
    raise SystemExit(1)


# ============================================================================
# CLI: api (remote via HTTP)
# ============================================================================


@cli.group()
def api():
    """Trigger jobs on a running server."""
    pass


@api.command("settle")
@click.option(
    "--base-url", "-u",
    default=DEFAULT_BASE_URL,
    help=f"API base URL (default: {DEFAULT_BASE_URL})",
)
def api_settle(base_url):
    """Run the settlement sweep via API."""
    secret = settings.cron_secret
    if not secret:
        raise click.ClickException("CRON_SECRET must be set")

    try:
        with httpx.Client(base_url=base_url, timeout=120) as client:
            response = client.post(
                "/jobs/settlement", headers={"Authorization": f"Bearer {secret}"}
            )
    except httpx.ConnectError:
        click.echo(f"\nError: Could not connect to {base_url}", err=True)
        click.echo("Is the server running? Start it with: uvicorn propdesk.main:app", err=True)
        raise SystemExit(1)

    if response.status_code != 200:
        raise click.ClickException(f"Settlement failed ({response.status_code}): {response.text}")

    data = response.json()
    click.echo(
        f"Checked {data['positions_checked']}, settled {data['positions_settled']}, "
        f"P&L ${float(data['total_pnl_settled']):,.2f}"
    )
    for error in data["errors"]:
        click.echo(f"  {error}", err=True)


# ============================================================================
# CLI: breaker (shared state)
# ============================================================================


@cli.group()
def breaker():
    """Inspect and clear market freezes."""
    pass


@breaker.command("status")
@click.argument("market_id")
def breaker_status(market_id):
    """Show whether a market is frozen."""

    async def run():
        store = _store()
        try:
            return await ArbitrageSentinel(store, settings.breaker).is_market_frozen(market_id)
        finally:
            await store.close()

    status = asyncio.run(run())
    if not status.frozen:
        click.echo(f"{market_id}: trading normally")
        return
    click.echo(f"{market_id}: FROZEN ({status.reason})")
    if status.expires_at is not None:
        click.echo(f"  expires at {status.expires_at_iso()}")


@breaker.command("clear")
@click.argument("market_id")
def breaker_clear(market_id):
    """Lift a freeze before its cooldown ends."""

    async def run():
        store = _store()
        try:
            await ArbitrageSentinel(store, settings.breaker).clear(market_id)
        finally:
            await store.close()

    asyncio.run(run())
    click.echo(f"{market_id}: cleared")


if __name__ == "__main__":
    cli()
