"""Shared types for transfer operations.

This module provides:
- TransferError and subclasses: One exception per failure kind
- TransferOutcome: Result/record pair returned by every driver call
- TransferProgress: Progress snapshot passed to progress callbacks
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from backupferry.core.types import FailureKind

if TYPE_CHECKING:
    from backupferry.client.state import TransferRecord


class TransferError(Exception):
    """Base exception for transfer errors."""

    kind: FailureKind = FailureKind.CHUNK_TRANSFER

    def __init__(self, message: str, record_id: str | None = None) -> None:
        super().__init__(message)
        self.record_id = record_id

    @property
    def retryable(self) -> bool:
        """Whether re-invoking the driver later may succeed."""
        return self.kind.retryable


class ConnectivityError(TransferError):
    """Endpoint unreachable or liveness check failed."""

    kind = FailureKind.CONNECTIVITY


class ChunkTransferError(TransferError):
    """A chunk exhausted its retry budget.

    Attributes:
        chunk_index: Index of the chunk that failed.
        status_code: Last HTTP status received, None if no response.
    """

    kind = FailureKind.CHUNK_TRANSFER

    def __init__(
        self,
        message: str,
        record_id: str | None = None,
        chunk_index: int | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, record_id)
        self.chunk_index = chunk_index
        self.status_code = status_code


class StagingError(TransferError):
    """Source unreadable or staging area not writable."""

    kind = FailureKind.STAGING


class CleanupError(TransferError):
    """Staged copy could not be removed after completion."""

    kind = FailureKind.CLEANUP


class CatalogError(TransferError):
    """Transfer record could not be written to the catalog."""

    kind = FailureKind.CATALOG


@dataclass
class TransferOutcome:
    """Result of one driver invocation.

    Attributes:
        record: The record as persisted after the invocation.
        failure: The classified failure, None on success.
        cancelled: Whether the invocation stopped on a cancellation request.
        chunks_sent: Number of chunks acknowledged during this invocation.
    """

    record: TransferRecord
    failure: TransferError | None = None
    cancelled: bool = False
    chunks_sent: int = 0

    @property
    def ok(self) -> bool:
        """True when the invocation ended without failure or cancellation."""
        return self.failure is None and not self.cancelled

    @property
    def failure_kind(self) -> FailureKind | None:
        """Kind of the failure, if any."""
        return self.failure.kind if self.failure else None


@dataclass
class TransferProgress:
    """Progress information for a transfer.

    Attributes:
        record_id: Record being transferred.
        chunk_index: Index of the chunk just acknowledged.
        total_chunks: Total number of chunks in the file.
        bytes_sent: Bytes acknowledged so far.
        file_size: Total bytes to send.
    """

    record_id: str
    chunk_index: int
    total_chunks: int
    bytes_sent: int
    file_size: int

    @property
    def percent(self) -> float:
        """Percentage of bytes acknowledged."""
        if self.file_size == 0:
            return 100.0
        return (self.bytes_sent / self.file_size) * 100


ProgressCallback = Callable[[TransferProgress], None]
CancelCheck = Callable[[], bool]
