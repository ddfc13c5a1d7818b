"""Retry timing with capped exponential backoff.

This module provides:
- backoff_delay: Delay before a given retry attempt
- backoff_schedule: Delays between a bounded number of attempts
"""

from __future__ import annotations

from collections.abc import Iterator

# Default retry configuration
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_INITIAL_BACKOFF = 1.0  # seconds
DEFAULT_MAX_BACKOFF = 30.0  # seconds
DEFAULT_BACKOFF_MULTIPLIER = 2.0


def backoff_delay(
    retry: int,
    initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
    max_backoff: float = DEFAULT_MAX_BACKOFF,
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
) -> float:
    """Delay to wait before a retry.

    Args:
        retry: 1 for the first retry (second attempt), 2 for the next, ...
        initial_backoff: Delay before the first retry.
        max_backoff: Upper bound of any delay.
        backoff_multiplier: Growth factor between consecutive delays.

    Returns:
        Delay in seconds, never above max_backoff.
    """
    if retry < 1 or initial_backoff <= 0:
        return 0.0
    delay = initial_backoff * (backoff_multiplier ** (retry - 1))
    return min(delay, max_backoff)


def backoff_schedule(
    max_attempts: int,
    initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
    max_backoff: float = DEFAULT_MAX_BACKOFF,
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
) -> Iterator[float]:
    """Yield the delays between max_attempts attempts (max_attempts - 1 values)."""
    for retry in range(1, max_attempts):
        yield backoff_delay(retry, initial_backoff, max_backoff, backoff_multiplier)
