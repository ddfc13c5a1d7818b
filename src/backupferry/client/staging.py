"""Staging area for backup files under transfer.

This module provides:
- StagingArea: Private, transfer-local copies of source files

A transfer may span many invocations. The staged copy insulates it from
the source file being modified or deleted in the meantime.
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

from backupferry.client.state import TransferRecord
from backupferry.client.transfer.types import CleanupError, StagingError
from backupferry.core.crypto import compute_file_hash

logger = logging.getLogger(__name__)

STAGED_SUFFIX = ".staged"
PARTIAL_SUFFIX = ".partial"


class StagingArea:
    """Directory holding one staged copy per transfer record."""

    def __init__(self, staging_dir: Path) -> None:
        """Initialize the staging area.

        Args:
            staging_dir: Directory for staged copies (created on first use).
        """
        self._dir = Path(staging_dir)

    @property
    def directory(self) -> Path:
        """Directory holding the staged copies."""
        return self._dir

    def staged_path(self, record: TransferRecord) -> Path:
        """Path of the staged copy of a record."""
        return self._dir / f"{record.id}{STAGED_SUFFIX}"

    def ensure_staged(self, record: TransferRecord) -> Path:
        """Make sure a byte-identical private copy of the source exists.

        Sets record.staged_copy_present on success; the caller persists it.
        Chunk progress is never modified.

        Args:
            record: Record whose source should be staged.

        Returns:
            Path of the staged copy.

        Raises:
            StagingError: If the source is unreadable or changed since the
                record was created, or the staging area is not writable.
        """
        staged = self.staged_path(record)
        if record.staged_copy_present and staged.exists():
            return staged

        if record.staged_copy_present:
            logger.warning(f"Staged copy of {record.id} is missing, staging again")

        source = Path(record.source_path)
        partial = staged.with_name(staged.name + PARTIAL_SUFFIX)
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, partial)
            size = partial.stat().st_size
            content_hash = compute_file_hash(partial)
        except OSError as e:
            _unlink_quietly(partial)
            logger.error(f"Cannot stage {source} for {record.id}: {e}")
            raise StagingError(f"Cannot stage {source}: {e}", record.id) from e

        if size != record.file_size or content_hash != record.content_hash:
            _unlink_quietly(partial)
            logger.error(f"Source {source} changed since transfer {record.id} was created")
            raise StagingError(
                f"Source {source} no longer matches its transfer record "
                f"(size {size}, expected {record.file_size})",
                record.id,
            )

        try:
            os.replace(partial, staged)
        except OSError as e:
            _unlink_quietly(partial)
            raise StagingError(f"Cannot finalize staged copy {staged}: {e}", record.id) from e

        record.staged_copy_present = True
        logger.info(f"Staged {source} as {staged.name}")
        return staged

    def remove_staged(self, record: TransferRecord) -> None:
        """Delete the staged copy of a record.

        Clears record.staged_copy_present on success; the caller persists it.

        Raises:
            CleanupError: If the copy exists but cannot be removed.
        """
        staged = self.staged_path(record)
        try:
            staged.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Cannot remove staged copy {staged}: {e}")
            raise CleanupError(f"Cannot remove staged copy {staged}: {e}", record.id) from e
        record.staged_copy_present = False
        logger.info(f"Removed staged copy of {record.id}")


def _unlink_quietly(path: Path) -> None:
    """Remove a leftover partial copy, ignoring errors."""
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.debug(f"Could not remove {path}: {e}")
