"""Tests for the transfer worker."""

from collections.abc import Callable
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from backupferry.client.api import SendResult
from backupferry.client.staging import StagingArea
from backupferry.client.state import DEFAULT_CLAIM_LEASE, TransferCatalog, TransferRecord
from backupferry.client.transfer.driver import TransferDriver
from backupferry.client.transfer.types import CleanupError, StagingError
from backupferry.client.transfer.worker import TransferWorker, default_owner
from backupferry.core.types import TransferStatus


@pytest.fixture
def worker(archive: MagicMock, catalog: TransferCatalog, staging: StagingArea) -> TransferWorker:
    """Worker with a fixed owner name."""
    driver = TransferDriver(archive, catalog, staging)
    return TransferWorker(catalog, staging, driver, owner="test-worker")


class TestProcess:
    """Tests for TransferWorker.process."""

    def test_full_lifecycle(
        self,
        worker: TransferWorker,
        archive: MagicMock,
        catalog: TransferCatalog,
        staging: StagingArea,
        make_record: Callable[..., TransferRecord],
    ) -> None:
        """Stage, send every chunk, acknowledge, then remove the staged copy."""
        record = make_record(2500)

        outcome = worker.process(record.id)

        assert outcome is not None
        assert outcome.ok
        stored = catalog.get(record.id)
        assert stored is not None
        assert stored.status is TransferStatus.FINISHED
        assert stored.staged_copy_present is False
        assert not staging.staged_path(record).exists()
        assert Path(record.source_path).exists()
        archive.update_backup.assert_called_once()

    def test_claim_released(
        self,
        worker: TransferWorker,
        catalog: TransferCatalog,
        make_record: Callable[..., TransferRecord],
    ) -> None:
        """The claim is released after processing."""
        record = make_record(100)

        worker.process(record.id)

        assert catalog.claimed_by(record.id) is None

    def test_claimed_elsewhere_skipped(
        self,
        worker: TransferWorker,
        archive: MagicMock,
        catalog: TransferCatalog,
        make_record: Callable[..., TransferRecord],
    ) -> None:
        """A record claimed by another process is left alone."""
        record = make_record(100)
        catalog.try_claim(record.id, "other-process")

        assert worker.process(record.id) is None
        archive.check_liveness.assert_not_called()
        assert catalog.claimed_by(record.id) == "other-process"

    def test_missing_record(self, worker: TransferWorker) -> None:
        """Unknown records are skipped."""
        assert worker.process("ghost") is None

    def test_staging_failure_leaves_record(
        self,
        worker: TransferWorker,
        archive: MagicMock,
        catalog: TransferCatalog,
        make_record: Callable[..., TransferRecord],
    ) -> None:
        """A source that vanished before staging fails without touching the record."""
        record = make_record(2500)
        Path(record.source_path).unlink()

        outcome = worker.process(record.id)

        assert outcome is not None
        assert isinstance(outcome.failure, StagingError)
        stored = catalog.get(record.id)
        assert stored == record
        archive.check_liveness.assert_not_called()

    def test_staged_transfer_survives_source_removal(
        self,
        worker: TransferWorker,
        archive: MagicMock,
        catalog: TransferCatalog,
        make_record: Callable[..., TransferRecord],
    ) -> None:
        """Once staged, a transfer resumes even if the source is gone."""
        record = make_record(2500)
        archive.send_chunk.side_effect = [
            SendResult(ok=True, status_code=200),
            SendResult(ok=False, status_code=503),
        ]
        worker.process(record.id)
        Path(record.source_path).unlink()
        archive.send_chunk.side_effect = None

        outcome = worker.process(record.id)

        assert outcome is not None
        assert outcome.ok
        stored = catalog.get(record.id)
        assert stored is not None
        assert stored.status is TransferStatus.FINISHED

    def test_cleanup_failure_keeps_staged_copy(
        self,
        worker: TransferWorker,
        archive: MagicMock,
        catalog: TransferCatalog,
        staging: StagingArea,
        make_record: Callable[..., TransferRecord],
    ) -> None:
        """Without acknowledgement the staged copy stays for a later pass."""
        archive.update_backup.return_value = SendResult(ok=False, status_code=500)
        record = make_record(2500)

        outcome = worker.process(record.id)

        assert outcome is not None
        assert isinstance(outcome.failure, CleanupError)
        stored = catalog.get(record.id)
        assert stored is not None
        assert stored.status is TransferStatus.FINISHED
        assert stored.staged_copy_present is True
        assert staging.staged_path(record).exists()

    def test_finished_record_cleanup_retried(
        self,
        worker: TransferWorker,
        archive: MagicMock,
        catalog: TransferCatalog,
        make_record: Callable[..., TransferRecord],
    ) -> None:
        """Processing a finished record with a staged copy only cleans up."""
        archive.update_backup.return_value = SendResult(ok=False, status_code=500)
        record = make_record(2500)
        worker.process(record.id)
        archive.send_chunk.reset_mock()
        archive.update_backup.return_value = SendResult(ok=True, status_code=200)

        outcome = worker.process(record.id)

        assert outcome is not None
        assert outcome.ok
        archive.send_chunk.assert_not_called()
        stored = catalog.get(record.id)
        assert stored is not None
        assert stored.staged_copy_present is False


class TestClaimLease:
    """Tests for keeping the claim while a long transfer runs."""

    def test_claim_renewed_while_sending(
        self,
        worker: TransferWorker,
        archive: MagicMock,
        catalog: TransferCatalog,
        make_record: Callable[..., TransferRecord],
    ) -> None:
        """A transfer longer than the lease keeps its claim chunk after chunk."""
        record = make_record(5000)
        taken: list[bool] = []

        with patch("backupferry.client.state.time") as clock:
            clock.time.return_value = 1000.0

            def slow_send(*args: object, **kwargs: object) -> SendResult:
                clock.time.return_value += DEFAULT_CLAIM_LEASE * 0.6
                taken.append(catalog.try_claim(record.id, "other-process"))
                return SendResult(ok=True, status_code=200)

            archive.send_chunk.side_effect = slow_send
            outcome = worker.process(record.id)

        assert taken == [False] * 5
        assert outcome is not None
        assert outcome.ok
        stored = catalog.get(record.id)
        assert stored is not None
        assert stored.status is TransferStatus.FINISHED

    def test_stops_when_claim_taken_over(
        self,
        worker: TransferWorker,
        archive: MagicMock,
        catalog: TransferCatalog,
        make_record: Callable[..., TransferRecord],
    ) -> None:
        """Once another process holds the claim, nothing more is sent or written."""
        record = make_record(5000)
        calls = iter(range(5))

        def send(*args: object, **kwargs: object) -> SendResult:
            if next(calls) == 2:
                # Another process treats the claim as expired
                assert catalog.try_claim(record.id, "other-process", lease=-1.0)
            return SendResult(ok=True, status_code=200)

        archive.send_chunk.side_effect = send

        outcome = worker.process(record.id)

        assert outcome is not None
        assert outcome.cancelled is True
        assert outcome.record.next_chunk_index == 2
        assert archive.send_chunk.call_count == 3
        archive.update_backup.assert_not_called()
        stored = catalog.get(record.id)
        assert stored is not None
        assert stored.next_chunk_index == 2
        assert catalog.claimed_by(record.id) == "other-process"


def test_default_owner_unique() -> None:
    """Each call names a distinct owner."""
    assert default_owner() != default_owner()
