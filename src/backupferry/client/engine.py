"""Transfer engine: one scheduling pass over the catalog.

This module provides:
- TransferEngine: Reconciles, cleans up and advances eligible records
- PassSummary: What a pass did
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from backupferry.client.state import TransferRecord
from backupferry.client.transfer.driver import TransferDriver
from backupferry.client.transfer.pool import WorkerPool
from backupferry.client.transfer.types import (
    CleanupError,
    ProgressCallback,
    TransferOutcome,
)
from backupferry.client.transfer.worker import TransferWorker
from backupferry.core.crypto import compute_file_hash
from backupferry.core.types import FailureKind

if TYPE_CHECKING:
    from backupferry.client.api import ArchiveClient
    from backupferry.client.staging import StagingArea
    from backupferry.client.state import TransferCatalog

logger = logging.getLogger(__name__)


@dataclass
class PassSummary:
    """Result of one engine pass.

    Attributes:
        finished: Record ids that reached FINISHED during the pass.
        cleaned: Record ids whose staged copy was removed.
        failed: Failure kind per record id.
        cancelled: Record ids stopped by a cancellation request.
        pruned: Record ids removed because their source disappeared.
        skipped: Record ids not processed (claimed elsewhere or staging blocked).
    """

    finished: list[str] = field(default_factory=list)
    cleaned: list[str] = field(default_factory=list)
    failed: dict[str, FailureKind] = field(default_factory=dict)
    cancelled: list[str] = field(default_factory=list)
    pruned: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        """Check if any record failed."""
        return bool(self.failed)


class TransferEngine:
    """Runs scheduling passes over a transfer catalog.

    A pass:
    1. removes not-yet-staged records whose source file disappeared,
    2. retries cleanup of finished records that still hold a staged copy,
    3. advances new and resumable records through a bounded worker pool.

    Records that failed staging are reported once and not retried by this
    engine until clear_staging_failures() is called.
    """

    def __init__(
        self,
        client: ArchiveClient,
        catalog: TransferCatalog,
        staging: StagingArea,
        max_workers: int | None = None,
        owner: str | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            client: Archive client shared by all workers.
            catalog: Store of transfer records.
            staging: Staging area for private copies.
            max_workers: Concurrent transfers (default: client config).
            owner: Claim owner name (default: unique per process).
            progress_callback: Optional per-chunk progress callback.
        """
        self._client = client
        self._catalog = catalog
        self._staging = staging
        self._max_workers = max_workers or client.config.max_workers
        self._driver = TransferDriver(
            client, catalog, staging, progress_callback=progress_callback
        )
        self._worker = TransferWorker(catalog, staging, self._driver, owner=owner)
        self._pool: WorkerPool | None = None
        self._pool_lock = threading.Lock()
        self._staging_failures: set[str] = set()

    @property
    def staging_failures(self) -> set[str]:
        """Record ids blocked on a staging failure."""
        return set(self._staging_failures)

    def clear_staging_failures(self) -> None:
        """Allow records blocked on staging to be tried again."""
        self._staging_failures.clear()

    # === Catalog entry ===

    def enqueue(self, path: Path, chunk_size_kb: int | None = None) -> TransferRecord:
        """Create a transfer record for a file unless one is already open.

        An unfinished record for the same path and content is reused. An
        unfinished record whose source changed before it was staged can
        never be staged again, so it is replaced.

        Args:
            path: Backup file to transfer.
            chunk_size_kb: Chunk size (default: client config).

        Returns:
            The new or existing record.

        Raises:
            FileNotFoundError: If the file does not exist.
        """
        path = Path(path).resolve()
        if not path.is_file():
            raise FileNotFoundError(f"File not found: {path}")

        existing = self._catalog.find_by_source(path)
        if existing and not existing.is_finished:
            if existing.content_hash == compute_file_hash(path):
                logger.info(f"{path} already has open transfer {existing.id}")
                return existing
            if not existing.staged_copy_present:
                logger.info(
                    f"{path} changed before transfer {existing.id} was staged, replacing it"
                )
                self._catalog.delete(existing)

        record = TransferRecord.for_file(
            path, chunk_size_kb or self._client.config.chunk_size_kb
        )
        self._catalog.create(record)
        logger.info(
            f"Queued {path} as transfer {record.id} "
            f"({record.total_chunks} chunks of {record.chunk_size_bytes} bytes)"
        )
        return record

    # === Passes ===

    def run_once(self) -> PassSummary:
        """Run one pass and wait for it to complete."""
        summary = PassSummary()

        self.reconcile(summary)
        eligible = self._catalog.classify()
        already_finished = {record.id for record in eligible.pending_cleanup}

        pool = WorkerPool(self._worker.process, max_workers=self._max_workers)
        with self._pool_lock:
            self._pool = pool
        pool.start()
        try:
            for record in eligible.pending_cleanup + eligible.to_send():
                if record.id in self._staging_failures:
                    summary.skipped.append(record.id)
                    continue
                pool.submit(
                    record.id,
                    on_done=lambda outcome, rid=record.id: self._record_outcome(
                        rid, outcome, summary, rid in already_finished
                    ),
                )
            pool.wait()
        finally:
            pool.stop()
            with self._pool_lock:
                self._pool = None

        logger.info(
            f"Pass complete: {len(summary.finished)} finished, "
            f"{len(summary.failed)} failed, {len(summary.cleaned)} cleaned up"
        )
        return summary

    def stop(self) -> None:
        """Stop a running pass; transfers halt between chunks."""
        with self._pool_lock:
            pool = self._pool
        if pool is not None:
            pool.stop()

    def reconcile(self, summary: PassSummary | None = None) -> list[str]:
        """Remove unstaged records whose source file has disappeared.

        A source whose size no longer matches the record counts as gone.
        Staged records keep transferring from their staged copy.

        Returns:
            Ids of removed records.
        """
        pruned: list[str] = []
        for record in self._catalog.list_new() + self._catalog.list_resumable():
            if record.staged_copy_present:
                continue
            source = Path(record.source_path)
            if source.is_file() and source.stat().st_size == record.file_size:
                continue
            logger.info(
                f"Source {record.source_path} disappeared or changed, "
                f"dropping transfer {record.id}"
            )
            self._catalog.delete(record)
            pruned.append(record.id)
        if summary is not None:
            summary.pruned.extend(pruned)
        return pruned

    def _record_outcome(
        self,
        record_id: str,
        outcome: TransferOutcome | None,
        summary: PassSummary,
        was_finished: bool = False,
    ) -> None:
        """Fold one worker outcome into the pass summary."""
        if outcome is None:
            summary.skipped.append(record_id)
            return

        if outcome.cancelled:
            summary.cancelled.append(record_id)
        if outcome.record.is_finished and not was_finished:
            summary.finished.append(record_id)
        if outcome.record.is_finished and not outcome.record.staged_copy_present:
            summary.cleaned.append(record_id)

        if outcome.failure is None:
            return

        summary.failed[record_id] = outcome.failure.kind
        if outcome.failure.kind is FailureKind.STAGING:
            self._staging_failures.add(record_id)
            logger.error(f"Transfer {record_id} needs attention: {outcome.failure}")
        elif isinstance(outcome.failure, CleanupError):
            logger.warning(f"Cleanup of {record_id} will be retried: {outcome.failure}")
