"""
Command-line interface for market-monitor.

Provides commands to run the alert pipeline, evaluate snapshots, drive
the release scheduler, manage the release calendar, serve the API and
run diagnostic checks.

Usage:
    market-monitor run                 # Run scheduler + deferred delivery loops
    market-monitor detect snap.json    # Evaluate one metric snapshot
    market-monitor tick                # Run one release scheduler tick
    market-monitor init-db             # Initialize database
    market-monitor releases generate   # Seed the default CPI/PCE calendar
    market-monitor serve               # Start the HTTP API
    market-monitor health              # Check service health
"""

import asyncio
import json
import signal
import sys
from datetime import datetime, timezone

import click

from market_monitor.config.settings import get_settings
from market_monitor.observability.logging import setup_logging
from market_monitor.observability.metrics import get_metrics


def _format_release(release) -> str:
    local = release.scheduled_at.astimezone(timezone.utc)
    return (
        f"  {local.strftime('%Y-%m-%d %H:%M UTC')}  "
        f"[{release.impact:<6}] {release.title}  ({release.id})"
    )


async def _drain_deferred(service) -> None:
    """Wait for parked free-tier deliveries before a one-shot command exits."""
    queue = service.deferred_queue
    if queue.uses_redis or await queue.depth() == 0:
        return
    click.echo(f"Waiting {queue.delay.total_seconds():.0f}s for deferred deliveries...")
    while await queue.depth() > 0:
        await asyncio.sleep(1.0)
        await queue.flush_due()


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def main(debug: bool) -> None:
    """Market Monitor - threshold and release alerts with tiered delivery."""
    if debug:
        import os
        os.environ["LOG_LEVEL"] = "DEBUG"
        get_settings.cache_clear()

    setup_logging()


@main.command()
@click.option("--metrics/--no-metrics", default=True, help="Enable metrics server")
@click.option("--metrics-port", default=None, type=int, help="Metrics server port")
def run(metrics: bool, metrics_port: int | None) -> None:
    """Run the release scheduler and deferred delivery loops.

    Set SNAPSHOT_SOURCE_URL to also poll a metric collector for threshold alerts.
    """
    from market_monitor.services.monitor_service import MonitorService
    from market_monitor.storage.database import Database

    async def _run():
        db = Database()
        await db.connect()

        try:
            service = MonitorService(db)

            if metrics:
                get_metrics().start_server(port=metrics_port)

            # Handle shutdown signals
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, lambda: asyncio.create_task(service.stop()))

            await service.start()
        finally:
            await db.close()

    asyncio.run(_run())


@main.command()
@click.argument("snapshot", type=click.File("r"))
@click.option("--notify/--no-notify", default=True, help="Route emitted alerts to subscribers")
def detect(snapshot, notify: bool) -> None:
    """Evaluate a metric snapshot (JSON file, or - for stdin).

    Example:
        market-monitor detect snapshot.json
        echo '{"ssr": 1.5}' | market-monitor detect -
    """
    from market_monitor.alerts.schemas import MetricSnapshot
    from market_monitor.services.monitor_service import MonitorService
    from market_monitor.storage.database import Database

    try:
        snap = MetricSnapshot.from_dict(json.load(snapshot))
    except (json.JSONDecodeError, AttributeError) as e:
        raise click.BadParameter(f"Invalid snapshot JSON: {e}", param_hint="SNAPSHOT")

    async def _run():
        db = Database()
        await db.connect()

        try:
            service = MonitorService(db, channels=None if notify else [])
            emitted = await service.alert_service.process_snapshot(snap)

            if not emitted:
                click.echo("No new alerts.")
            for alert in emitted:
                click.echo(f"[{alert.severity.upper():<6}] {alert.alert_type}: {alert.message}")

            if notify:
                await _drain_deferred(service)
        finally:
            await db.close()

    asyncio.run(_run())


@main.command()
@click.option(
    "--at",
    "at",
    default=None,
    help="Evaluate the tick at this ISO-8601 instant instead of now",
)
def tick(at: str | None) -> None:
    """Run a single release scheduler tick."""
    from market_monitor.services.monitor_service import MonitorService
    from market_monitor.storage.database import Database

    now = None
    if at:
        try:
            now = datetime.fromisoformat(at)
        except ValueError:
            raise click.BadParameter(f"Not an ISO-8601 instant: {at}", param_hint="--at")
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)

    async def _run():
        db = Database()
        await db.connect()

        try:
            service = MonitorService(db)
            fired = await service.scheduler.tick(now)

            if not fired:
                click.echo("No release notifications due.")
            for release_id, flag in fired:
                click.echo(f"Fired {flag.value} for {release_id}")

            await _drain_deferred(service)
        finally:
            await db.close()

    asyncio.run(_run())


@main.command("init-db")
def init_db() -> None:
    """Initialize the database schema."""
    from market_monitor.services.monitor_service import MonitorService
    from market_monitor.storage.database import Database

    async def _run():
        db = Database()
        await db.connect()

        try:
            service = MonitorService(db, channels=[])
            await service.init_db()
            click.echo("Database initialized successfully")
        finally:
            await db.close()

    asyncio.run(_run())


@main.command()
@click.option("--days", default=90, help="Days of alerts to keep")
def cleanup(days: int) -> None:
    """Remove alerts older than the given number of days."""
    from market_monitor.alerts.repository import AlertRepository
    from market_monitor.storage.database import Database

    async def _run():
        db = Database()
        await db.connect()

        try:
            deleted = await AlertRepository(db).cleanup_older_than(days)
            click.echo(f"Deleted {deleted} alerts older than {days} days")
        finally:
            await db.close()

    asyncio.run(_run())


@main.group()
def releases() -> None:
    """Release calendar commands."""


@releases.command("generate")
@click.option("--year", default=None, type=int, help="First year (default: current year)")
@click.option("--years", default=2, type=int, help="Number of years to generate")
def releases_generate(year: int | None, years: int) -> None:
    """Seed the calendar with default CPI and PCE releases.

    Existing releases keep their fired notification flags.
    """
    from market_monitor.releases.calendar import generate_default_releases
    from market_monitor.releases.repository import ReleaseRepository
    from market_monitor.storage.database import Database

    async def _run():
        db = Database()
        await db.connect()

        try:
            generated = generate_default_releases(start_year=year, years=years)
            saved = await ReleaseRepository(db).save_releases(generated)
            click.echo(f"Saved {saved} releases")
        finally:
            await db.close()

    asyncio.run(_run())


@releases.command("upcoming")
@click.option("--limit", default=10, help="Maximum releases to show")
def releases_upcoming(limit: int) -> None:
    """List upcoming releases."""
    from market_monitor.releases import calendar
    from market_monitor.releases.repository import ReleaseRepository
    from market_monitor.storage.database import Database

    async def _run():
        db = Database()
        await db.connect()

        try:
            all_releases = await ReleaseRepository(db).load_releases()
            upcoming = calendar.upcoming(all_releases, datetime.now(timezone.utc), limit)

            if not upcoming:
                click.echo("No upcoming releases.")
                return

            click.echo(f"\nUpcoming releases ({len(upcoming)}):")
            for release in upcoming:
                click.echo(_format_release(release))
        finally:
            await db.close()

    asyncio.run(_run())


@releases.command("stats")
def releases_stats() -> None:
    """Show calendar statistics."""
    from market_monitor.releases import calendar
    from market_monitor.releases.repository import ReleaseRepository
    from market_monitor.storage.database import Database

    async def _run():
        db = Database()
        await db.connect()

        try:
            all_releases = await ReleaseRepository(db).load_releases()
            stats = calendar.stats(all_releases, datetime.now(timezone.utc))

            click.echo("\nRelease Calendar")
            click.echo("-" * 40)
            click.echo(f"  Total:                {stats.total}")
            click.echo(f"  Upcoming:             {stats.upcoming}")
            click.echo(f"  Past:                 {stats.past}")
            click.echo(f"  High impact upcoming: {stats.high_impact_upcoming}")
            if stats.next_release:
                click.echo("  Next:")
                click.echo(_format_release(stats.next_release))
        finally:
            await db.close()

    asyncio.run(_run())


@main.command()
@click.option("--host", default=None, help="API server host")
@click.option("--port", default=None, type=int, help="API server port")
@click.option("--reload", is_flag=True, help="Enable auto-reload (dev only)")
@click.option("--metrics-port", default=None, type=int, help="Metrics server port")
def serve(host: str | None, port: int | None, reload: bool, metrics_port: int | None) -> None:
    """Start the HTTP API server."""
    import uvicorn

    settings = get_settings()
    host = host or settings.api_host
    port = port or settings.api_port
    metrics_port = metrics_port or settings.metrics_port

    get_metrics().start_server(port=metrics_port)

    click.echo(f"Starting API server on {host}:{port}")
    click.echo(f"Metrics available on http://localhost:{metrics_port}/metrics")
    click.echo(f"API docs available on http://localhost:{port}/docs")

    uvicorn.run(
        "market_monitor.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level="info",
    )


@main.command()
def health() -> None:
    """Check health of all dependencies."""
    import structlog
    logger = structlog.get_logger()

    async def check():
        results: dict[str, bool] = {}
        settings = get_settings()

        # Check PostgreSQL
        try:
            from market_monitor.storage.database import Database
            db = Database()
            await db.connect()
            results["postgres"] = await db.health_check()
            await db.close()
        except Exception as e:
            results["postgres"] = False
            logger.error("Postgres health check failed", error=str(e))

        # Check Redis only when it backs the deferred queue
        if settings.deferred_queue_use_redis:
            try:
                import redis.asyncio as redis
                client = redis.from_url(str(settings.redis_url))
                results["redis"] = bool(await client.ping())
                await client.aclose()
            except Exception as e:
                results["redis"] = False
                logger.error("Redis health check failed", error=str(e))

        results["mail_configured"] = settings.mail_configured
        results["push_configured"] = settings.push_configured
        results["chat_configured"] = settings.chat_configured

        click.echo("\nHealth Check Results:")
        click.echo("-" * 40)

        all_healthy = True
        for name, status in results.items():
            icon = "✓" if status else "✗"
            color = "green" if status else "red"
            click.echo(click.style(f"  {icon} {name}: {status}", fg=color))
            if name in ("redis", "postgres") and not status:
                all_healthy = False

        click.echo("-" * 40)

        if all_healthy:
            click.echo(click.style("All core services healthy!", fg="green"))
            sys.exit(0)
        else:
            click.echo(click.style("Some services unhealthy!", fg="red"))
            sys.exit(1)

    asyncio.run(check())


if __name__ == "__main__":
    main()
