"""Transfer driver: the chunked send loop.

This module provides:
- TransferDriver: Advances a transfer record chunk by chunk

One call to advance() checks liveness, then sends chunks in index order
from record.next_chunk_index until the file is done, a chunk exhausts
its retry budget, cancellation is requested, or the record's claim is
lost. The record is persisted after every acknowledged chunk, so an
interrupted transfer resumes at the first unacknowledged chunk.

Status transitions:
    NOT_STARTED -> IN_PROGRESS    liveness check passed
    any         -> ERROR          liveness failed or a chunk exhausted its retries
    ERROR       -> IN_PROGRESS    a later chunk succeeded (retry_count reset)
    IN_PROGRESS -> FINISHED       last chunk acknowledged (terminal)
"""

from __future__ import annotations

import logging
import sqlite3
import time
from collections.abc import Callable
from dataclasses import fields, replace
from typing import TYPE_CHECKING, Any

from backupferry.client.transfer.types import (
    CancelCheck,
    CatalogError,
    ChunkTransferError,
    ConnectivityError,
    ProgressCallback,
    StagingError,
    TransferError,
    TransferOutcome,
    TransferProgress,
)
from backupferry.core.chunking import encode_chunk, iter_chunks
from backupferry.core.types import TransferStatus

if TYPE_CHECKING:
    from backupferry.client.api import ArchiveClient
    from backupferry.client.staging import StagingArea
    from backupferry.client.state import TransferCatalog, TransferRecord

logger = logging.getLogger(__name__)


class TransferDriver:
    """Drives transfer records through the chunked send protocol."""

    def __init__(
        self,
        client: ArchiveClient,
        catalog: TransferCatalog,
        staging: StagingArea,
        progress_callback: ProgressCallback | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the driver.

        Args:
            client: Archive client used for every request.
            catalog: Store the record is persisted to after each step.
            staging: Staging area holding the record's private copy.
            progress_callback: Optional callback after each acknowledged chunk.
            clock: Time source for record timestamps.
        """
        self._client = client
        self._catalog = catalog
        self._staging = staging
        self._progress_callback = progress_callback
        self._clock = clock

    def advance(
        self,
        record: TransferRecord,
        cancel_check: CancelCheck | None = None,
        owner: str | None = None,
    ) -> TransferOutcome:
        """Send as many chunks of a record as possible.

        Never raises for transfer or catalog failures: they are classified
        and returned in the outcome together with the record as last
        persisted.

        Args:
            record: Record to advance (mutated in place).
            cancel_check: Optional function returning True to stop between chunks.
            owner: Claim owner. When given, every write requires the claim
                and renews its lease; losing the claim stops the loop.

        Returns:
            TransferOutcome with the record and the failure, if any.
        """
        start_index = record.next_chunk_index
        try:
            return self._advance(record, cancel_check, owner)
        except CatalogError as e:
            logger.error(f"{e}; transfer {record.id} stops at chunk {record.next_chunk_index}")
            return TransferOutcome(
                record,
                failure=e,
                chunks_sent=record.next_chunk_index - start_index,
            )

    def _advance(
        self,
        record: TransferRecord,
        cancel_check: CancelCheck | None,
        owner: str | None,
    ) -> TransferOutcome:
        if record.is_finished:
            logger.debug(f"Transfer {record.id} already finished")
            return TransferOutcome(record)

        staged = self._staging.staged_path(record)
        if not record.staged_copy_present or not staged.exists():
            # Precondition: nothing is read before the source is staged
            return TransferOutcome(
                record,
                failure=StagingError(f"Transfer {record.id} has no staged copy", record.id),
            )

        if not self._client.check_liveness():
            return self._fail(
                record,
                ConnectivityError(
                    f"Archive endpoint {self._client.config.base_url} failed the liveness check",
                    record.id,
                ),
                owner=owner,
            )

        snapshot = replace(record)
        if record.status is TransferStatus.NOT_STARTED:
            record.transition_to(TransferStatus.IN_PROGRESS)
            logger.info(
                f"Starting transfer {record.id}: {record.file_name} "
                f"({record.total_chunks} chunks)"
            )
        else:
            logger.info(
                f"Resuming transfer {record.id} at chunk "
                f"{record.next_chunk_index + 1}/{record.total_chunks}"
            )

        if record.remote_id is None:
            remote_id = self._client.create_backup(self._backup_metadata(record))
            if remote_id is None:
                return self._fail(
                    record,
                    ConnectivityError(
                        f"Could not create the backup resource for {record.id}", record.id
                    ),
                    owner=owner,
                    snapshot=snapshot,
                )
            record.remote_id = remote_id
        if not self._persist(record, owner, snapshot):
            return TransferOutcome(record, cancelled=True)

        chunks_sent = 0
        try:
            with staged.open("rb") as handle:
                for chunk in iter_chunks(handle, record.chunk_size_bytes, record.next_chunk_index):
                    if cancel_check and cancel_check():
                        logger.info(
                            f"Transfer {record.id} cancelled before chunk "
                            f"{chunk.index + 1}/{record.total_chunks}"
                        )
                        return TransferOutcome(record, cancelled=True, chunks_sent=chunks_sent)
                    if not self._renew_claim(record, owner):
                        return TransferOutcome(record, cancelled=True, chunks_sent=chunks_sent)

                    snapshot = replace(record)
                    encoded = encode_chunk(chunk.data)
                    record.chunk_sent_at = self._clock()
                    result = self._client.send_chunk(
                        record.remote_id,
                        chunk.index,
                        encoded,
                        size=chunk.size,
                        is_last=chunk.is_last,
                    )
                    if not result.ok:
                        return self._fail(
                            record,
                            ChunkTransferError(
                                f"Chunk {chunk.index + 1}/{record.total_chunks} of "
                                f"{record.id} failed: {result.describe()}",
                                record.id,
                                chunk_index=chunk.index,
                                status_code=result.status_code,
                            ),
                            chunks_sent,
                            owner=owner,
                        )

                    self._chunk_succeeded(record)
                    if not self._persist(record, owner, snapshot):
                        return TransferOutcome(record, cancelled=True, chunks_sent=chunks_sent)
                    chunks_sent += 1
                    logger.debug(
                        f"Sent chunk {chunk.index + 1}/{record.total_chunks} of {record.id}"
                    )
                    self._report_progress(record, chunk.index)
        except OSError as e:
            logger.error(f"Cannot read staged copy of {record.id}: {e}")
            return TransferOutcome(
                record,
                failure=StagingError(f"Cannot read staged copy {staged}: {e}", record.id),
                chunks_sent=chunks_sent,
            )

        if record.next_chunk_index < record.total_chunks:
            logger.error(
                f"Staged copy of {record.id} ended at chunk "
                f"{record.next_chunk_index}/{record.total_chunks}"
            )
            return TransferOutcome(
                record,
                failure=StagingError(f"Staged copy {staged} is shorter than recorded", record.id),
                chunks_sent=chunks_sent,
            )

        if not record.is_finished:
            # Only reachable for records with no chunks (empty files)
            snapshot = replace(record)
            self._mark_finished(record)
            if not self._persist(record, owner, snapshot):
                return TransferOutcome(record, cancelled=True, chunks_sent=chunks_sent)

        logger.info(f"Transfer {record.id} finished ({record.total_chunks} chunks)")
        return TransferOutcome(record, chunks_sent=chunks_sent)

    def acknowledge_completion(self, record: TransferRecord) -> bool:
        """Tell the archive endpoint a finished backup is complete.

        Returns:
            True if the endpoint acknowledged (HTTP 200).
        """
        if not record.is_finished or record.remote_id is None:
            return False
        result = self._client.update_backup(
            record.remote_id,
            {
                "status": "finished",
                "contenthash": record.content_hash,
                "totalchunks": record.total_chunks,
            },
        )
        if not result.ok:
            logger.warning(
                f"Archive endpoint did not acknowledge completion of {record.id}: "
                f"{result.describe()}"
            )
        return result.ok

    def _chunk_succeeded(self, record: TransferRecord) -> None:
        """Apply the state changes of an acknowledged chunk."""
        record.chunk_completed_at = self._clock()
        record.next_chunk_index += 1
        if record.status is TransferStatus.ERROR:
            record.retry_count = 0
            record.transition_to(TransferStatus.IN_PROGRESS)
            logger.info(f"Transfer {record.id} recovered from error")
        if record.next_chunk_index == record.total_chunks:
            self._mark_finished(record)

    def _mark_finished(self, record: TransferRecord) -> None:
        if record.status is TransferStatus.ERROR:
            record.retry_count = 0
            record.transition_to(TransferStatus.IN_PROGRESS)
        record.transition_to(TransferStatus.FINISHED)
        record.completed_at = self._clock()

    def _fail(
        self,
        record: TransferRecord,
        error: TransferError,
        chunks_sent: int = 0,
        owner: str | None = None,
        snapshot: TransferRecord | None = None,
    ) -> TransferOutcome:
        """Mark a record as failed, persist it and build the outcome.

        The first failure only moves the record to ERROR; retry_count
        counts failures that happen while already in ERROR.
        """
        if snapshot is None:
            snapshot = replace(record)
        if record.status is TransferStatus.ERROR:
            record.retry_count += 1
        else:
            record.transition_to(TransferStatus.ERROR)
        logger.error(f"{error} (retry count {record.retry_count})")
        self._persist(record, owner, snapshot)
        return TransferOutcome(record, failure=error, chunks_sent=chunks_sent)

    def _persist(
        self,
        record: TransferRecord,
        owner: str | None,
        snapshot: TransferRecord,
    ) -> bool:
        """Write the record, rolling it back to snapshot if the write fails.

        Returns:
            False if the record is gone or another process holds its claim.

        Raises:
            CatalogError: If the catalog cannot be written.
        """
        try:
            written = self._catalog.update(record, owner=owner)
        except sqlite3.Error as e:
            _restore(record, snapshot)
            raise CatalogError(f"Cannot persist transfer {record.id}: {e}", record.id) from e
        if not written:
            _restore(record, snapshot)
            logger.warning(f"Transfer {record.id} was removed or claimed by another process")
        return written

    def _renew_claim(self, record: TransferRecord, owner: str | None) -> bool:
        if owner is None:
            return True
        try:
            renewed = self._catalog.renew_claim(record.id, owner)
        except sqlite3.Error as e:
            raise CatalogError(f"Cannot renew claim on {record.id}: {e}", record.id) from e
        if not renewed:
            logger.warning(f"Transfer {record.id} lost its claim to another process")
        return renewed

    def _report_progress(self, record: TransferRecord, chunk_index: int) -> None:
        if self._progress_callback:
            self._progress_callback(TransferProgress(
                record_id=record.id,
                chunk_index=chunk_index,
                total_chunks=record.total_chunks,
                bytes_sent=record.bytes_sent,
                file_size=record.file_size,
            ))

    @staticmethod
    def _backup_metadata(record: TransferRecord) -> dict[str, Any]:
        return {
            "filename": record.file_name,
            "contenthash": record.content_hash,
            "filesize": record.file_size,
            "chunksize": record.chunk_size_bytes,
            "totalchunks": record.total_chunks,
        }


def _restore(record: TransferRecord, snapshot: TransferRecord) -> None:
    for f in fields(record):
        setattr(record, f.name, getattr(snapshot, f.name))
