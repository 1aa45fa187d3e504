from __future__ import annotations

import json
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import psycopg
import typer

from ranksync.config import Settings, get_settings
from ranksync.domain.errors import SyncError
from ranksync.engine.maintenance import backfill_timestamps
from ranksync.engine.reindexer import Reindexer
from ranksync.jobs.sync_job import JOB_TYPE, SyncJob
from ranksync.orchestrator import default_owner
from ranksync.reporter import print_new_records, print_run_summary
from ranksync.store.abstract import DocumentStore
from ranksync.store.db_factory import get_sync_connection
from ranksync.store.postgres import PostgresDocumentStore, build_store
from ranksync.utils.logging import configure_logging

app = typer.Typer(help="BGG Rank Sync CLI.")


def _setup_logging() -> None:
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)


def _open_store(settings: Settings) -> PostgresDocumentStore:
    try:
        return build_store(settings)
    except SyncError as exc:
        typer.echo(f"Store unavailable: {exc}", err=True)
        raise typer.Exit(code=1)


@contextmanager
def _run_lease(store: DocumentStore, settings: Settings, command: str) -> Iterator[None]:
    """
    Hold the sync lease while a maintenance command rewrites collections.

    Exits with code 1 when a sync (or another maintenance command) holds it.
    """
    if not settings.lease_enabled:
        yield
        return
    key = f"sync:{settings.games_collection}"
    owner = f"{default_owner()}:{command}"
    try:
        acquired = store.try_acquire_lease(key, owner, settings.lease_ttl_seconds)
    except SyncError as exc:
        typer.echo(f"Could not take lease '{key}': {exc}", err=True)
        raise typer.Exit(code=1)
    if not acquired:
        typer.echo(f"Another run holds the lease '{key}'; try again later.", err=True)
        raise typer.Exit(code=1)
    try:
        yield
    finally:
        try:
            store.release_lease(key, owner)
        except SyncError as exc:
            typer.echo(f"Lease release failed, it will expire on its own: {exc}", err=True)


@app.command()
def info(
    check: bool = typer.Option(False, "--check", help="Also verify the store is reachable."),
) -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    typer.echo(
        f"DB={settings.db_user}@{settings.db_host}:{settings.db_port}/{settings.db_name} | "
        f"batch={settings.effective_batch_size()} workers={settings.write_workers} "
        f"collections={settings.games_collection},{settings.search_collection}"
    )
    if not check:
        return
    try:
        with get_sync_connection(settings) as conn:
            conn.execute("SELECT 1")
    except psycopg.Error as exc:
        typer.echo(f"Store unreachable: {exc}", err=True)
        raise typer.Exit(code=1)
    typer.echo("Store reachable.")


@app.command()
def sync(
    path: Optional[Path] = typer.Argument(
        None,
        help="CSV dump to synchronize (defaults to SYNC_DATA_FILE).",
    ),
    preview: bool = typer.Option(
        True,
        "--preview/--no-preview",
        help="Show the first and last new records after the run.",
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the run result as JSON instead of tables."),
) -> None:
    """
    Run one sync of the store against a CSV dump.
    """
    _setup_logging()
    settings = get_settings()
    store = _open_store(settings)
    job = SyncJob(store, store, settings)

    try:
        result = job.run_now(path)
    except (SyncError, ValueError) as exc:
        typer.echo(f"Sync failed: {exc}", err=True)
        raise typer.Exit(code=1)

    if as_json:
        typer.echo(json.dumps(result, indent=2, default=str))
        return
    print_run_summary(result)
    change_set = job.orchestrator.last_change_set
    if preview and change_set is not None:
        print_new_records(change_set.new)


@app.command()
def resort() -> None:
    """
    Rewrite both collections in collated name order.
    """
    _setup_logging()
    settings = get_settings()
    store = _open_store(settings)
    reindexer = Reindexer(store, batch_size=settings.reindex_batch_size)

    with _run_lease(store, settings, "resort"):
        for collection in (settings.games_collection, settings.search_collection):
            try:
                outcome = reindexer.resort(collection)
            except SyncError as exc:
                typer.echo(f"Resort of '{collection}' failed: {exc}", err=True)
                raise typer.Exit(code=1)
            typer.echo(f"{collection}: {outcome.documents:,} documents ({outcome.strategy})")


@app.command("backfill-timestamps")
def backfill() -> None:
    """
    Give date_created/date_updated to documents missing them.
    """
    _setup_logging()
    settings = get_settings()
    store = _open_store(settings)

    with _run_lease(store, settings, "backfill"):
        for collection in (settings.games_collection, settings.search_collection):
            try:
                updated = backfill_timestamps(store, collection, batch_size=settings.reindex_batch_size)
            except SyncError as exc:
                typer.echo(f"Backfill of '{collection}' failed: {exc}", err=True)
                raise typer.Exit(code=1)
            typer.echo(f"{collection}: {updated:,} documents updated")


@app.command()
def status() -> None:
    """
    Show the last recorded job status.
    """
    _setup_logging()
    store = _open_store(get_settings())
    try:
        current = store.get_job_status(JOB_TYPE)
    except SyncError as exc:
        typer.echo(f"Could not read job status: {exc}", err=True)
        raise typer.Exit(code=1)
    if current is None:
        typer.echo("No sync has been recorded yet.")
        return
    typer.echo(json.dumps(current, indent=2, default=str))


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
