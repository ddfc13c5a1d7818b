"""Transfer commands for backupferry CLI.

Commands:
- enqueue: Create transfer records for backup files
- run: Advance pending transfers
- status: List transfer records and their progress
"""

from __future__ import annotations

import contextlib
import logging
import sys
import time
from collections.abc import Iterator
from pathlib import Path
from typing import TYPE_CHECKING

import click

from backupferry.client.cli.config import get_staging_dir, get_state_db, load_config

if TYPE_CHECKING:
    from backupferry.client.engine import PassSummary, TransferEngine


def configure_logging(verbose: bool) -> None:
    """Send backupferry logs to stderr."""
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    package_logger = logging.getLogger("backupferry")
    package_logger.handlers.clear()
    package_logger.addHandler(handler)
    package_logger.setLevel(logging.DEBUG if verbose else logging.INFO)


@contextlib.contextmanager
def open_engine() -> Iterator[TransferEngine]:
    """Build a transfer engine from the config file.

    Exits with an error if no archive endpoint is configured.
    """
    from backupferry.client.api import ArchiveClient
    from backupferry.client.engine import TransferEngine
    from backupferry.client.staging import StagingArea
    from backupferry.client.state import TransferCatalog
    from backupferry.core.config import TransferConfig

    config = load_config()
    if not config.get("server_url"):
        click.echo("Error: No archive endpoint. Run 'backupferry configure --server URL' first.",
                   err=True)
        sys.exit(1)

    try:
        transfer_config = TransferConfig.from_dict(config)
    except (TypeError, ValueError) as e:
        click.echo(f"Error: Invalid configuration: {e}", err=True)
        sys.exit(1)

    client = ArchiveClient(transfer_config, session_token=config.get("session_token"))
    catalog = TransferCatalog(get_state_db())
    try:
        yield TransferEngine(client, catalog, StagingArea(get_staging_dir()))
    finally:
        catalog.close()
        client.close()


@click.command()
@click.argument(
    "paths",
    nargs=-1,
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option("--chunk-size-kb", type=click.IntRange(min=1), default=None,
              help="Chunk size for these transfers (default: configured).")
def enqueue(paths: tuple[Path, ...], chunk_size_kb: int | None) -> None:
    """Create transfer records for backup files."""
    with open_engine() as engine:
        for path in paths:
            try:
                record = engine.enqueue(path, chunk_size_kb=chunk_size_kb)
            except OSError as e:
                click.echo(f"Error: Cannot read {path}: {e}", err=True)
                sys.exit(1)
            click.echo(f"{record.id}  {path}  ({record.total_chunks} chunks)")


@click.command()
@click.option("--watch", "-w", is_flag=True, help="Keep running passes until interrupted.")
@click.option("--interval", type=click.FloatRange(min=1), default=60.0, show_default=True,
              help="Seconds between passes in watch mode.")
@click.option("--verbose", "-v", is_flag=True, help="Log every chunk and request.")
def run(watch: bool, interval: float, verbose: bool) -> None:
    """Advance pending transfers.

    Sends the remaining chunks of every unfinished transfer and cleans up
    staged copies of finished ones. Interrupted transfers resume at their
    next chunk.
    """
    configure_logging(verbose)

    with open_engine() as engine:
        try:
            while True:
                summary = engine.run_once()
                _echo_summary(summary)
                if not watch:
                    break
                time.sleep(interval)
        except KeyboardInterrupt:
            click.echo("\nStopping...")
            engine.stop()
            sys.exit(130)

    if summary.has_errors:
        sys.exit(1)


def _echo_summary(summary: PassSummary) -> None:
    """Print the result of one pass."""
    for record_id in summary.finished:
        click.echo(f"  ✓ {record_id} finished")
    for record_id in summary.pruned:
        click.echo(f"  - {record_id} dropped (source disappeared)")
    for record_id, kind in summary.failed.items():
        click.echo(click.style(f"  ✗ {record_id} {kind.value} failure", fg="red"))
    if not (summary.finished or summary.failed or summary.pruned):
        click.echo("Nothing to transfer.")


@click.command()
def status() -> None:
    """List transfer records and their progress."""
    from backupferry.client.state import TransferCatalog

    db_path = get_state_db()
    if not db_path.exists():
        click.echo("No transfers yet.")
        return

    with TransferCatalog(db_path) as catalog:
        records = catalog.list_all()

    if not records:
        click.echo("No transfers yet.")
        return

    for record in records:
        line = (
            f"{record.id}  {record.status.value:<11}  "
            f"{record.next_chunk_index}/{record.total_chunks} chunks  {record.file_name}"
        )
        if record.retry_count:
            line += f"  (retries: {record.retry_count})"
        if record.is_finished and record.staged_copy_present:
            line += "  (cleanup pending)"
        click.echo(line)
