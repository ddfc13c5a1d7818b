"""Tests for the staging area."""

from collections.abc import Callable
from pathlib import Path
from unittest.mock import patch

import pytest

from backupferry.client.staging import PARTIAL_SUFFIX, StagingArea
from backupferry.client.state import TransferRecord
from backupferry.client.transfer.types import CleanupError, StagingError
from backupferry.core.types import FailureKind


class TestEnsureStaged:
    """Tests for staging source files."""

    def test_copies_source(
        self, staging: StagingArea, make_record: Callable[..., TransferRecord]
    ) -> None:
        """Should create a byte-identical copy and flag the record."""
        record = make_record(2500)

        staged = staging.ensure_staged(record)

        assert staged == staging.staged_path(record)
        assert staged.read_bytes() == Path(record.source_path).read_bytes()
        assert record.staged_copy_present is True
        assert not staged.with_name(staged.name + PARTIAL_SUFFIX).exists()

    def test_progress_untouched(
        self, staging: StagingArea, make_record: Callable[..., TransferRecord]
    ) -> None:
        """Staging never changes chunk progress."""
        record = make_record(2500)
        record.next_chunk_index = 2

        staging.ensure_staged(record)

        assert record.next_chunk_index == 2

    def test_existing_copy_reused(
        self, staging: StagingArea, make_record: Callable[..., TransferRecord]
    ) -> None:
        """An existing staged copy is not copied again, even if the source is gone."""
        record = make_record(100)
        staged = staging.ensure_staged(record)
        Path(record.source_path).unlink()

        assert staging.ensure_staged(record) == staged

    def test_missing_copy_restaged(
        self, staging: StagingArea, make_record: Callable[..., TransferRecord]
    ) -> None:
        """A flagged record whose copy vanished is staged again."""
        record = make_record(100)
        staged = staging.ensure_staged(record)
        staged.unlink()

        staging.ensure_staged(record)

        assert staged.exists()

    def test_missing_source(
        self, staging: StagingArea, make_record: Callable[..., TransferRecord]
    ) -> None:
        """A vanished source is a staging failure; the record is untouched."""
        record = make_record(100)
        Path(record.source_path).unlink()

        with pytest.raises(StagingError) as exc_info:
            staging.ensure_staged(record)

        assert exc_info.value.kind is FailureKind.STAGING
        assert exc_info.value.retryable is False
        assert record.staged_copy_present is False
        assert not staging.staged_path(record).exists()

    def test_modified_source(
        self, staging: StagingArea, make_record: Callable[..., TransferRecord]
    ) -> None:
        """A source whose content changed is rejected."""
        record = make_record(100)
        Path(record.source_path).write_bytes(b"different content")

        with pytest.raises(StagingError):
            staging.ensure_staged(record)

        assert record.staged_copy_present is False
        assert list(staging.directory.iterdir()) == []

    def test_unwritable_staging_area(
        self, tmp_path: Path, make_record: Callable[..., TransferRecord]
    ) -> None:
        """A staging directory that cannot be created is a staging failure."""
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        staging = StagingArea(blocker / "staging")
        record = make_record(100)

        with pytest.raises(StagingError):
            staging.ensure_staged(record)


class TestRemoveStaged:
    """Tests for removing staged copies."""

    def test_removes_copy(
        self, staging: StagingArea, make_record: Callable[..., TransferRecord]
    ) -> None:
        """Should delete the copy and clear the flag."""
        record = make_record(100)
        staged = staging.ensure_staged(record)

        staging.remove_staged(record)

        assert not staged.exists()
        assert record.staged_copy_present is False

    def test_missing_copy_is_fine(
        self, staging: StagingArea, make_record: Callable[..., TransferRecord]
    ) -> None:
        """Removing an already missing copy succeeds."""
        record = make_record(100)
        record.staged_copy_present = True

        staging.remove_staged(record)

        assert record.staged_copy_present is False

    def test_unlink_failure(
        self, staging: StagingArea, make_record: Callable[..., TransferRecord]
    ) -> None:
        """A copy that cannot be removed raises CleanupError."""
        record = make_record(100)
        staging.ensure_staged(record)

        with patch.object(Path, "unlink", side_effect=PermissionError("denied")):
            with pytest.raises(CleanupError):
                staging.remove_staged(record)

        assert record.staged_copy_present is True
