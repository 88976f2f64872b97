"""CLI entry-point: python -m ingestion [run|backfill|clear|init-db]."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import typer

from api.database import EventStore, get_db, init_db
from api.logging import configure_logging
from api.main import build_geocoder, build_source
from api.settings import Settings
from ingestion.models import IngestionQuery, IngestionReport, IngestionStatus
from ingestion.normalizer import EventNormalizer
from ingestion.orchestrator import IngestionOrchestrator

app = typer.Typer(help="Event Map – Ticketmaster ingestion CLI")


def _settings() -> Settings:
    settings = Settings()
    configure_logging(settings.log_level)
    return settings


def _echo_report(report: IngestionReport) -> None:
    typer.echo(
        f"{report.start:%Y-%m-%d} → {report.end:%Y-%m-%d}  "
        f"{report.status.value:<15} {report.persisted:>4} stored  {report.message}"
    )


async def _with_orchestrator(settings: Settings, work):
    source = build_source(settings)
    if source is None:
        typer.echo("TICKETMASTER_API_KEY is not set.", err=True)
        raise typer.Exit(1)
    geocoder = build_geocoder(settings)
    await init_db(settings.database_path)
    db = await get_db(settings.database_path)
    try:
        store = EventStore(db)
        orchestrator = IngestionOrchestrator(
            source,
            EventNormalizer(store, geocoder),
            store,
            max_pages=settings.max_pages,
            max_concurrency=settings.max_concurrency,
        )
        return await work(orchestrator)
    finally:
        await db.close()
        await source.aclose()


@app.command()
def run(
    country_code: str = typer.Option(..., "--country", "-c", help="ISO country code, e.g. GB."),
    city: str = typer.Option(..., "--city", help="City name as Ticketmaster spells it."),
    event_type: str = typer.Option("Music", "--type", "-t", help="Classification name."),
    start: datetime | None = typer.Option(None, help="Window start (default: now, UTC)."),
    end: datetime | None = typer.Option(None, help="Window end (default: start + 1 week)."),
) -> None:
    """Ingest a single window."""
    settings = _settings()
    window_start = start or datetime.now(timezone.utc)
    query = IngestionQuery(
        country_code=country_code,
        city=city,
        event_type=event_type,
        start=window_start,
        end=end or window_start + timedelta(weeks=1),
    )
    report = asyncio.run(
        _with_orchestrator(settings, lambda o: o.ingest_window(query))
    )
    _echo_report(report)
    if report.status == IngestionStatus.FAILED:
        raise typer.Exit(1)


@app.command()
def backfill(
    country_code: str = typer.Option(..., "--country", "-c", help="ISO country code, e.g. GB."),
    city: str = typer.Option(..., "--city", help="City name as Ticketmaster spells it."),
    event_type: str = typer.Option("Music", "--type", "-t", help="Classification name."),
    weeks: int | None = typer.Option(None, help="Number of one-week windows."),
    clear: bool = typer.Option(False, "--clear", help="Wipe all events first."),
) -> None:
    """Ingest consecutive one-week windows starting now."""
    settings = _settings()

    async def work(orchestrator: IngestionOrchestrator) -> list[IngestionReport]:
        if clear:
            await orchestrator.store.clear()
        return await orchestrator.backfill(
            country_code, city, event_type, weeks=weeks or settings.backfill_weeks
        )

    reports = asyncio.run(_with_orchestrator(settings, work))
    for report in reports:
        _echo_report(report)
    typer.echo(f"Stored {sum(r.persisted for r in reports)} event(s).")


@app.command()
def clear(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
) -> None:
    """Delete every event and sub-entity."""
    settings = _settings()
    if not yes:
        typer.confirm(f"Delete all events from {settings.database_path}?", abort=True)

    async def wipe() -> None:
        await init_db(settings.database_path)
        db = await get_db(settings.database_path)
        try:
            await EventStore(db).clear()
        finally:
            await db.close()

    asyncio.run(wipe())
    typer.echo("Database cleared.")


@app.command(name="init-db")
def init_database() -> None:
    """Create the database schema."""
    settings = _settings()
    asyncio.run(init_db(settings.database_path))
    typer.echo(f"Initialised {settings.database_path}.")


if __name__ == "__main__":
    app()
