"""Command-line interface for backupferry.

This module provides the main CLI entry point and assembles all commands.

Commands:
- configure: Set the archive endpoint and transfer settings
- login: Start a session with the archive endpoint
- enqueue: Create transfer records for backup files
- run: Advance pending transfers
- status: List transfer records and their progress
"""

from __future__ import annotations

import click

from backupferry.client.cli.config import (
    get_config_dir,
    get_config_file,
    get_staging_dir,
    get_state_db,
    load_config,
    save_config,
)
from backupferry.client.cli.setup import configure, login
from backupferry.client.cli.transfer import enqueue, run, status


@click.group()
@click.version_option(package_name="backupferry")
def cli() -> None:
    """backupferry - Resumable chunked transfer of backups to a remote archive."""


# Setup commands
cli.add_command(configure)
cli.add_command(login)

# Transfer commands
cli.add_command(enqueue)
cli.add_command(run)
cli.add_command(status)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    "cli",
    "main",
    "get_config_dir",
    "get_config_file",
    "get_staging_dir",
    "get_state_db",
    "load_config",
    "save_config",
]
