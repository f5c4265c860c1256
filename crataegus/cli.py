"""Command line interface for the Crataegus location logger."""

from __future__ import annotations

import asyncio
import logging
import sys
import tempfile
from datetime import datetime
from pathlib import Path

import click
import structlog

from crataegus.config import DatabaseSettings, Settings, load_settings
from crataegus.errors import PayloadError, StoreError
from crataegus.export import Format, create_exporter, export_stream
from crataegus.ingest.csv_import import import_csv
from crataegus.store import LocationStore


def run_async(coro):
    """Run an async function in a new event loop."""
    return asyncio.run(coro)


def configure_logging(level: str) -> None:
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level.upper())),
        logger_factory=structlog.PrintLoggerFactory(sys.stderr),
        cache_logger_on_first_use=False,
    )


class AwareDateTime(click.ParamType):
    """ISO 8601 date/time; values without an offset are taken as local time."""

    name = "datetime"

    def convert(self, value, param, ctx):
        if isinstance(value, datetime):
            parsed = value
        else:
            try:
                parsed = datetime.fromisoformat(value)
            except ValueError:
                self.fail(f"{value!r} is not an ISO 8601 date/time", param, ctx)
        if parsed.tzinfo is None:
            parsed = parsed.astimezone()
        return parsed


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="TOML config file (env vars CRATAEGUS_* apply otherwise)",
)
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"]),
    default="info",
    show_default=True,
)
@click.pass_context
def cli(ctx, config_path, log_level):
    """Crataegus GPS location logger."""
    configure_logging(log_level)
    try:
        ctx.obj = load_settings(config_path)
    except FileNotFoundError as e:
        raise click.ClickException(str(e))


async def _with_store(settings: Settings, action):
    store = await LocationStore.open(settings.db)
    try:
        return await action(store)
    finally:
        await store.close()


# --- Server ---


@cli.command()
@click.pass_obj
def serve(settings: Settings):
    """Run the HTTPS ingest server."""
    from crataegus.server import serve as serve_app

    click.echo(f"Starting Crataegus server on {settings.server.host}:{settings.server.port}")
    try:
        run_async(_with_store(settings, lambda store: serve_app(store, settings.server)))
    except (StoreError, FileNotFoundError) as e:
        raise click.ClickException(str(e))


# --- Users ---


@cli.command()
@click.option("--username", prompt=True)
@click.password_option("--password", confirmation_prompt=True)
@click.pass_obj
def useradd(settings: Settings, username, password):
    """Add a user who may push locations."""
    try:
        run_async(_with_store(settings, lambda store: store.user_add(username, password)))
    except StoreError as e:
        raise click.ClickException(f"Failed to add user: {e}")
    click.echo(f"User added: {username}")


# --- Data ---


@cli.command()
@click.pass_obj
def backup(settings: Settings):
    """Snapshot the database and prune old snapshots."""
    try:
        path = run_async(_with_store(settings, lambda store: store.backup()))
    except StoreError as e:
        raise click.ClickException(f"Failed to back up database: {e}")
    click.echo(f"Database backed up to {path}")


@cli.command()
@click.option("--username", default=None, help="Only count this user's locations")
@click.pass_obj
def count(settings: Settings, username):
    """Print the number of stored locations."""
    try:
        total = run_async(_with_store(settings, lambda store: store.count(username)))
    except StoreError as e:
        raise click.ClickException(str(e))
    click.echo(total)


@cli.command("import")
@click.option(
    "--format",
    "fmt",
    type=click.Choice(["gpslogger-csv"]),
    default="gpslogger-csv",
    show_default=True,
)
@click.option("--username", required=True)
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_obj
def import_(settings: Settings, fmt, username, path):
    """Import locations from a file."""
    click.echo(f"Importing\n  format: {fmt}\n  path: {path}")
    try:
        added, skipped = run_async(
            _with_store(settings, lambda store: import_csv(store, path, username))
        )
    except (StoreError, PayloadError) as e:
        raise click.ClickException(f"Import failed: {e}")
    click.echo(f"Found {added + skipped} locations. Added {added}, skipped {skipped}")


@cli.command()
@click.option(
    "--format",
    "fmt",
    type=click.Choice([f.value for f in Format]),
    default=Format.GPX.value,
    show_default=True,
)
@click.option("--username", required=True)
@click.option("--start", type=AwareDateTime(), required=True, help="Inclusive, ISO 8601")
@click.option("--stop", type=AwareDateTime(), required=True, help="Exclusive, ISO 8601")
@click.argument("path", type=click.Path(dir_okay=False, path_type=Path))
@click.pass_obj
def export(settings: Settings, fmt, username, start, stop, path):
    """Export a user's locations in [start, stop) to a file."""
    click.echo(
        f"Exporting\n  format: {fmt}\n  path: {path}\n"
        f"  start: {start.isoformat()}\n  stop: {stop.isoformat()}"
    )
    name = f"crataegus_export_{start.isoformat()}_{stop.isoformat()}"

    async def _export(store: LocationStore) -> int:
        exporter = create_exporter(Format(fmt), name, path)
        return await export_stream(store.stream(username, start, stop), exporter)

    try:
        written = run_async(_with_store(settings, _export))
    except StoreError as e:
        raise click.ClickException(f"Export failed: {e}")
    click.echo(f"Exported {written} locations")


# --- Diagnostics ---


@cli.command()
@click.option("--writers", default=100, show_default=True, help="Concurrent writer tasks")
@click.option("--inserts", default=1000, show_default=True, help="Inserts per writer")
@click.option(
    "--path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Database file to create (default: a temporary file)",
)
@click.pass_obj
def stress(settings: Settings, writers, inserts, path):
    """Hammer a fresh database with concurrent writers and verify every row landed."""
    from crataegus.stress import run_stress

    with tempfile.TemporaryDirectory() as tmp:
        db_path = path or Path(tmp) / "stress.db"
        if db_path.exists():
            raise click.ClickException(f"Refusing to reuse existing database: {db_path}")
        db_settings = DatabaseSettings(**{**settings.db.model_dump(), "path": db_path})
        try:
            result = run_async(run_stress(db_settings, writers, inserts))
        except StoreError as e:
            raise click.ClickException(f"Stress run failed: {e}")

    click.echo(
        f"Inserted {result.inserted}/{result.expected}, "
        f"counted {result.counted_after_reopen} after reopen "
        f"in {result.elapsed_seconds:.1f}s"
    )
    if not result.ok:
        raise click.ClickException("Stress run lost inserts")


if __name__ == "__main__":
    cli()
