"""Configuration utilities for backupferry CLI.

This module provides shared configuration functions used across CLI commands.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any


def get_config_dir() -> Path:
    """Get the configuration directory for backupferry.

    Returns:
        Path to ~/.backupferry or equivalent.
    """
    return Path.home() / ".backupferry"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def load_config() -> dict[str, Any]:
    """Load configuration from config file."""
    config_file = get_config_file()
    if config_file.exists():
        return dict(json.loads(config_file.read_text()))
    return {}


def save_config(config: dict[str, Any]) -> None:
    """Save configuration to config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2))


def get_state_db() -> Path:
    """Get the transfer catalog database path.

    Returns:
        Path to the configured database or ~/.backupferry/transfers.db.
    """
    config = load_config()
    if config.get("state_db"):
        return Path(config["state_db"]).expanduser().resolve()
    return get_config_dir() / "transfers.db"


def get_staging_dir() -> Path:
    """Get the staging directory path.

    Returns:
        Path to the configured staging directory or ~/.backupferry/staging.
    """
    config = load_config()
    if config.get("staging_dir"):
        return Path(config["staging_dir"]).expanduser().resolve()
    return get_config_dir() / "staging"
