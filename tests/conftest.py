"""Shared fixtures for backupferry tests."""

from __future__ import annotations

import os
from collections.abc import Callable, Iterator
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from backupferry.client.api import ArchiveClient, SendResult
from backupferry.client.staging import StagingArea
from backupferry.client.state import TransferCatalog, TransferRecord
from backupferry.core.config import TransferConfig


@pytest.fixture
def config() -> TransferConfig:
    """Config with no backoff so retries run instantly."""
    return TransferConfig(
        base_url="http://archive.test/api",
        request_retries=3,
        chunk_size_kb=1,
        initial_backoff=0.0,
    )


@pytest.fixture
def catalog(tmp_path: Path) -> Iterator[TransferCatalog]:
    """Create a TransferCatalog instance."""
    c = TransferCatalog(tmp_path / "transfers.db")
    yield c
    c.close()


@pytest.fixture
def staging(tmp_path: Path) -> StagingArea:
    """Create a StagingArea in a temporary directory."""
    return StagingArea(tmp_path / "staging")


@pytest.fixture
def make_file(tmp_path: Path) -> Callable[..., Path]:
    """Factory writing a source file of a given size with random content."""

    def _make(size: int, name: str = "backup.mbz") -> Path:
        path = tmp_path / "source" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(os.urandom(size))
        return path

    return _make


@pytest.fixture
def make_record(
    catalog: TransferCatalog,
    make_file: Callable[..., Path],
) -> Callable[..., TransferRecord]:
    """Factory creating a file and its stored transfer record."""

    def _make(size: int, chunk_size_kb: int = 1, name: str = "backup.mbz") -> TransferRecord:
        path = make_file(size, name)
        record = TransferRecord.for_file(path, chunk_size_kb)
        catalog.create(record)
        return record

    return _make


@pytest.fixture
def archive(config: TransferConfig) -> MagicMock:
    """Mock archive client that accepts everything."""
    client = MagicMock(spec=ArchiveClient)
    client.config = config
    client.check_liveness.return_value = True
    client.create_backup.return_value = "12"
    client.send_chunk.return_value = SendResult(ok=True, status_code=200, attempts=1)
    client.update_backup.return_value = SendResult(ok=True, status_code=200, attempts=1)
    return client
