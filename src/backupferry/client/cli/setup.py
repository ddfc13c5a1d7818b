"""Endpoint setup commands for backupferry CLI.

Commands:
- configure: Set the archive endpoint and transfer settings
- login: Start a session with the archive endpoint
"""

from __future__ import annotations

import sys
from typing import Any

import click

from backupferry.client.cli.config import load_config, save_config


@click.command()
@click.option("--server", "server_url", default=None, help="Archive endpoint base URL.")
@click.option("--chunk-size-kb", type=click.IntRange(min=1), default=None,
              help="Chunk size for new transfers, in kilobytes.")
@click.option("--retries", "request_retries", type=click.IntRange(min=1), default=None,
              help="Attempts per request before a chunk fails.")
@click.option("--connect-timeout", type=click.FloatRange(min=0, min_open=True), default=None,
              help="Connection timeout in seconds.")
@click.option("--request-timeout", type=click.FloatRange(min=0, min_open=True), default=None,
              help="Request timeout in seconds.")
@click.option("--workers", "max_workers", type=click.IntRange(min=1), default=None,
              help="Files transferred in parallel.")
@click.option("--staging-dir", default=None, help="Directory for staged copies.")
def configure(**options: Any) -> None:
    """Set the archive endpoint and transfer settings.

    Only the given options are changed.
    """
    config = load_config()
    changes = {key: value for key, value in options.items() if value is not None}

    if not changes:
        if not config:
            click.echo("Nothing configured yet. Use --server to set the archive endpoint.")
        for key, value in sorted(config.items()):
            if key == "session_token":
                value = "********"
            click.echo(f"{key}: {value}")
        return

    if "server_url" in changes:
        changes["server_url"] = changes["server_url"].rstrip("/")
        if not changes["server_url"].startswith(("http://", "https://")):
            click.echo("Error: --server must be an http:// or https:// URL.", err=True)
            sys.exit(1)

    config.update(changes)
    save_config(config)
    for key in sorted(changes):
        click.echo(f"Set {key} = {changes[key]}")


@click.command()
@click.argument("username")
def login(username: str) -> None:
    """Start a session with the archive endpoint.

    The session token is stored in the config file and attached to
    every transfer request.
    """
    from backupferry.client.api import ArchiveClient
    from backupferry.core.config import TransferConfig
    from backupferry.core.crypto import hash_credential

    config = load_config()
    if not config.get("server_url"):
        click.echo("Error: No archive endpoint. Run 'backupferry configure --server URL' first.",
                   err=True)
        sys.exit(1)

    secret = click.prompt("Password", hide_input=True)

    with ArchiveClient(TransferConfig.from_dict(config)) as client:
        token = client.start_session(hash_credential(secret), username)

    if token is None:
        click.echo("Error: The archive endpoint refused the credentials.", err=True)
        sys.exit(1)

    config["username"] = username
    config["session_token"] = token
    save_config(config)
    click.echo(f"Logged in as {username}.")
