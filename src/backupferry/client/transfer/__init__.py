"""Chunked transfer machinery.

This package provides:
- TransferDriver: State machine sending a record's chunks in order
- TransferWorker: Claim, stage, advance and clean up one record
- WorkerPool: Bounded pool advancing different records concurrently
- TransferError and subclasses, TransferOutcome: Failure classification

Usage:
    from backupferry.client.transfer import TransferDriver, TransferWorker, WorkerPool

    driver = TransferDriver(client, catalog, staging)
    worker = TransferWorker(catalog, staging, driver)
    pool = WorkerPool(worker.process, max_workers=2)
    pool.start()
    pool.submit(record.id)
    pool.wait()
    pool.stop()
"""

from backupferry.client.transfer.driver import TransferDriver
from backupferry.client.transfer.pool import PoolState, WorkerPool, WorkerTask
from backupferry.client.transfer.types import (
    ChunkTransferError,
    CleanupError,
    ConnectivityError,
    StagingError,
    TransferError,
    TransferOutcome,
    TransferProgress,
)
from backupferry.client.transfer.worker import TransferWorker, default_owner

__all__ = [
    # Driver
    "TransferDriver",
    "TransferWorker",
    "default_owner",
    # Pool
    "PoolState",
    "WorkerPool",
    "WorkerTask",
    # Types
    "ChunkTransferError",
    "CleanupError",
    "ConnectivityError",
    "StagingError",
    "TransferError",
    "TransferOutcome",
    "TransferProgress",
]
