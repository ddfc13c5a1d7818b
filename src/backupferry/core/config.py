"""Shared configuration classes for backupferry.

This module defines the configuration consumed by the transfer core.
How values are loaded (config file, CLI flags) is left to the caller.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

# One kilobyte as understood by the archive endpoint
BYTES_PER_KB = 1000


@dataclass
class TransferConfig:
    """Configuration for talking to a remote archive endpoint.

    Attributes:
        base_url: Base URL of the archive endpoint (e.g., "https://archive.example.com/api").
        connect_timeout: Connection timeout in seconds.
        request_timeout: Read/write timeout for a whole request in seconds.
        request_retries: Attempts made within a single request before giving up.
        chunk_size_kb: Chunk size for newly created transfers, in kilobytes.
        initial_backoff: Delay after the first failed attempt, in seconds.
        max_backoff: Upper bound for the delay between attempts, in seconds.
        backoff_multiplier: Growth factor of the delay between attempts.
        max_workers: Number of records transferred in parallel.
        verify_ssl: Whether to verify SSL certificates (default True).
    """

    base_url: str
    connect_timeout: float = 10.0
    request_timeout: float = 60.0
    request_retries: int = 5
    chunk_size_kb: int = 1000
    initial_backoff: float = 1.0
    max_backoff: float = 30.0
    backoff_multiplier: float = 2.0
    max_workers: int = 2
    verify_ssl: bool = True

    def __post_init__(self) -> None:
        """Normalize base URL and validate numeric settings."""
        self.base_url = self.base_url.rstrip("/")
        if self.request_retries < 1:
            raise ValueError(f"request_retries must be >= 1, got {self.request_retries}")
        if self.chunk_size_kb <= 0:
            raise ValueError(f"chunk_size_kb must be > 0, got {self.chunk_size_kb}")
        if self.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {self.max_workers}")
        if self.connect_timeout <= 0 or self.request_timeout <= 0:
            raise ValueError("Timeouts must be positive")

    @property
    def chunk_size_bytes(self) -> int:
        """Chunk size normalized to bytes."""
        return self.chunk_size_kb * BYTES_PER_KB

    @property
    def is_secure(self) -> bool:
        """Check if using HTTPS.

        Returns:
            True if the endpoint uses HTTPS.
        """
        return self.base_url.startswith("https://")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TransferConfig:
        """Create from a config file dictionary.

        Unknown keys are ignored so the same file can hold CLI-only settings.

        Raises:
            KeyError: If "server_url" is missing.
            ValueError: If a value cannot be converted.
        """
        kwargs: dict[str, Any] = {"base_url": data["server_url"]}
        for key, cast in (
            ("connect_timeout", float),
            ("request_timeout", float),
            ("request_retries", int),
            ("chunk_size_kb", int),
            ("initial_backoff", float),
            ("max_backoff", float),
            ("max_workers", int),
        ):
            if data.get(key) is not None:
                kwargs[key] = cast(data[key])
        if "verify_ssl" in data:
            kwargs["verify_ssl"] = parse_bool(data["verify_ssl"])
        return cls(**kwargs)


_TRUE_STRINGS = {"true", "yes", "on", "1"}
_FALSE_STRINGS = {"false", "no", "off", "0"}


def parse_bool(value: Any) -> bool:
    """Read a boolean setting from a JSON value.

    Hand-edited files may hold strings like "false"; those are parsed
    rather than taken as truthy.

    Raises:
        ValueError: If the value is not a recognized boolean.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    raise ValueError(f"Expected a boolean, got {value!r}")
