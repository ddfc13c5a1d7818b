"""Shared types for backupferry.

This module defines the closed enumerations used by the transfer core.
"""

from __future__ import annotations

from enum import Enum


class TransferStatus(str, Enum):
    """Status of a transfer record.

    Transitions:
        NOT_STARTED -> IN_PROGRESS -> FINISHED
                    -> ERROR <-> IN_PROGRESS

    ERROR is not terminal: the record resumes from its next chunk index.
    """

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    ERROR = "error"
    FINISHED = "finished"


class FailureKind(str, Enum):
    """Classification of a failed transfer attempt."""

    CONNECTIVITY = "connectivity"  # Endpoint unreachable or liveness check failed
    CHUNK_TRANSFER = "chunk_transfer"  # Retry budget exhausted for one chunk
    STAGING = "staging"  # Source unreadable or staging area not writable
    CLEANUP = "cleanup"  # Staged copy could not be removed after completion
    CATALOG = "catalog"  # Transfer record could not be persisted

    @property
    def retryable(self) -> bool:
        """Whether re-invoking the driver later may succeed without intervention."""
        return self is not FailureKind.STAGING
