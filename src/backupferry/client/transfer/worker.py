"""Transfer worker: one record, start to end of one invocation.

This module provides:
- TransferWorker: Claims a record, stages it, advances it and cleans up
"""

from __future__ import annotations

import logging
import os
import socket
import uuid
from typing import TYPE_CHECKING

from backupferry.client.transfer.types import (
    CancelCheck,
    CleanupError,
    StagingError,
    TransferOutcome,
)

if TYPE_CHECKING:
    from backupferry.client.staging import StagingArea
    from backupferry.client.state import TransferCatalog, TransferRecord
    from backupferry.client.transfer.driver import TransferDriver

logger = logging.getLogger(__name__)


def default_owner() -> str:
    """Claim owner name unique to this process."""
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class TransferWorker:
    """Runs one invocation of the transfer protocol for a record.

    Usage:
        worker = TransferWorker(catalog, staging, driver)
        outcome = worker.process(record_id, cancel_check=stop_event.is_set)
    """

    def __init__(
        self,
        catalog: TransferCatalog,
        staging: StagingArea,
        driver: TransferDriver,
        owner: str | None = None,
    ) -> None:
        """Initialize the worker.

        Args:
            catalog: Store of transfer records.
            staging: Staging area for private copies.
            driver: Driver running the chunked send loop.
            owner: Claim owner name (default: unique per process).
        """
        self._catalog = catalog
        self._staging = staging
        self._driver = driver
        self._owner = owner or default_owner()

    @property
    def owner(self) -> str:
        """Claim owner name used by this worker."""
        return self._owner

    def process(
        self,
        record_id: str,
        cancel_check: CancelCheck | None = None,
    ) -> TransferOutcome | None:
        """Advance one record while holding its claim.

        The driver renews the claim with every write and stops if another
        process has taken it over.

        Args:
            record_id: Record to process.
            cancel_check: Optional function returning True to stop between chunks.

        Returns:
            The outcome, or None if the record is gone or claimed by
            another process.
        """
        if not self._catalog.try_claim(record_id, self._owner):
            logger.debug(f"Transfer {record_id} is claimed elsewhere, skipping")
            return None

        try:
            # Reload under the claim: the caller's copy may be stale
            record = self._catalog.get(record_id)
            if record is None:
                return None

            if record.is_finished:
                outcome = TransferOutcome(record)
            else:
                try:
                    self._stage(record)
                except StagingError as e:
                    return TransferOutcome(record, failure=e)
                outcome = self._driver.advance(record, cancel_check, owner=self._owner)

            if outcome.ok and outcome.record.is_finished and outcome.record.staged_copy_present:
                cleanup_error = self.cleanup(outcome.record)
                if cleanup_error is not None:
                    outcome.failure = cleanup_error
            return outcome
        finally:
            self._catalog.release(record_id, self._owner)

    def cleanup(self, record: TransferRecord) -> CleanupError | None:
        """Confirm completion remotely, then remove the staged copy.

        The record stays FINISHED whatever happens; a failed cleanup is
        retried by a later pass.

        Returns:
            The cleanup error, None on success.
        """
        if not self._driver.acknowledge_completion(record):
            return CleanupError(
                f"Archive endpoint has not acknowledged completion of {record.id}",
                record.id,
            )
        try:
            self._staging.remove_staged(record)
        except CleanupError as e:
            return e
        self._catalog.update(record, owner=self._owner)
        return None

    def _stage(self, record: TransferRecord) -> None:
        """Stage the record's source if no staged copy exists yet.

        Raises:
            StagingError: If staging fails (record left untouched).
        """
        if record.staged_copy_present and self._staging.staged_path(record).exists():
            return
        self._staging.ensure_staged(record)
        self._catalog.update(record, owner=self._owner)
