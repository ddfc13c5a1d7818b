"""Persistent transfer state for backupferry.

This module provides:
- TransferRecord: Progress record of one file's chunked transfer
- TransferCatalog: SQLite-backed store of transfer records
- EligibleTransfers: The three categories of records a pass works on

Architecture:
    Each chunk iteration persists the whole record with a single UPDATE
    statement, so a crash loses at most the chunk in flight. The
    record's chunk geometry (chunk size, total chunks) is fixed when the
    record is created.

    Records are claimed before being advanced so that two processes
    never drive the same record at once.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import threading
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path

from backupferry.core.chunking import count_chunks, kb_to_bytes
from backupferry.core.crypto import compute_file_hash
from backupferry.core.types import TransferStatus

logger = logging.getLogger(__name__)

# Claims older than this are considered abandoned (crashed process)
DEFAULT_CLAIM_LEASE = 3600.0  # seconds

# Valid status transitions
VALID_TRANSITIONS: dict[TransferStatus, set[TransferStatus]] = {
    TransferStatus.NOT_STARTED: {TransferStatus.IN_PROGRESS, TransferStatus.ERROR},
    TransferStatus.IN_PROGRESS: {TransferStatus.ERROR, TransferStatus.FINISHED},
    TransferStatus.ERROR: {TransferStatus.IN_PROGRESS},
    TransferStatus.FINISHED: set(),  # Terminal
}

_COLUMNS = (
    "source_path",
    "content_hash",
    "file_size",
    "chunk_size_bytes",
    "total_chunks",
    "next_chunk_index",
    "status",
    "retry_count",
    "staged_copy_present",
    "remote_id",
    "created_at",
    "chunk_sent_at",
    "chunk_completed_at",
    "completed_at",
)


class InvalidTransitionError(Exception):
    """Raised when attempting an invalid status transition."""


@dataclass
class TransferRecord:
    """Progress record for one file under transfer.

    Attributes:
        id: Opaque identifier, stable for the life of the transfer.
        source_path: Absolute path of the source backup file.
        content_hash: SHA-256 of the source content when the record was created.
        file_size: Source size in bytes.
        chunk_size_bytes: Chunk size, fixed at creation.
        total_chunks: ceil(file_size / chunk_size_bytes), fixed at creation.
        next_chunk_index: Zero-based index of the next chunk to send.
        status: Transfer status.
        retry_count: Consecutive failures while already in ERROR.
        staged_copy_present: Whether the private staged copy exists.
        remote_id: Identifier of the backup resource on the archive endpoint.
        created_at: Record creation time.
        chunk_sent_at: When the last chunk was sent.
        chunk_completed_at: When the last chunk was acknowledged.
        completed_at: When the record reached FINISHED.
    """

    id: str
    source_path: str
    content_hash: str
    file_size: int
    chunk_size_bytes: int
    total_chunks: int
    next_chunk_index: int = 0
    status: TransferStatus = TransferStatus.NOT_STARTED
    retry_count: int = 0
    staged_copy_present: bool = False
    remote_id: str | None = None
    created_at: float = field(default_factory=time.time)
    chunk_sent_at: float | None = None
    chunk_completed_at: float | None = None
    completed_at: float | None = None

    def __post_init__(self) -> None:
        self.status = TransferStatus(self.status)
        if self.chunk_size_bytes <= 0:
            raise ValueError(f"chunk_size_bytes must be positive, got {self.chunk_size_bytes}")
        if not 0 <= self.next_chunk_index <= self.total_chunks:
            raise ValueError(
                f"next_chunk_index {self.next_chunk_index} outside 0..{self.total_chunks}"
            )
        if self.status is TransferStatus.FINISHED and self.next_chunk_index != self.total_chunks:
            raise ValueError("A finished record must have sent all of its chunks")

    @classmethod
    def new(
        cls,
        source_path: str | Path,
        content_hash: str,
        file_size: int,
        chunk_size_kb: int,
        record_id: str | None = None,
    ) -> TransferRecord:
        """Create a record for a file, computing its chunk geometry.

        Args:
            source_path: Path of the source file.
            content_hash: Hash of the source content.
            file_size: Source size in bytes.
            chunk_size_kb: Configured chunk size in kilobytes.
            record_id: Identifier to use (default: random UUID).
        """
        chunk_size_bytes = kb_to_bytes(chunk_size_kb)
        return cls(
            id=record_id or str(uuid.uuid4()),
            source_path=str(source_path),
            content_hash=content_hash,
            file_size=file_size,
            chunk_size_bytes=chunk_size_bytes,
            total_chunks=count_chunks(file_size, chunk_size_bytes),
        )

    @classmethod
    def for_file(
        cls,
        path: Path,
        chunk_size_kb: int,
        record_id: str | None = None,
    ) -> TransferRecord:
        """Create a record by hashing and measuring a file on disk.

        Raises:
            FileNotFoundError: If the file does not exist.
        """
        path = Path(path).resolve()
        return cls.new(
            source_path=path,
            content_hash=compute_file_hash(path),
            file_size=path.stat().st_size,
            chunk_size_kb=chunk_size_kb,
            record_id=record_id,
        )

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> TransferRecord:
        """Create TransferRecord from database row."""
        return cls(
            id=row["id"],
            source_path=row["source_path"],
            content_hash=row["content_hash"],
            file_size=row["file_size"],
            chunk_size_bytes=row["chunk_size_bytes"],
            total_chunks=row["total_chunks"],
            next_chunk_index=row["next_chunk_index"],
            status=TransferStatus(row["status"]),
            retry_count=row["retry_count"],
            staged_copy_present=bool(row["staged_copy_present"]),
            remote_id=row["remote_id"],
            created_at=row["created_at"],
            chunk_sent_at=row["chunk_sent_at"],
            chunk_completed_at=row["chunk_completed_at"],
            completed_at=row["completed_at"],
        )

    def to_values(self) -> tuple[object, ...]:
        """Column values in _COLUMNS order."""
        return (
            self.source_path,
            self.content_hash,
            self.file_size,
            self.chunk_size_bytes,
            self.total_chunks,
            self.next_chunk_index,
            self.status.value,
            self.retry_count,
            int(self.staged_copy_present),
            self.remote_id,
            self.created_at,
            self.chunk_sent_at,
            self.chunk_completed_at,
            self.completed_at,
        )

    @property
    def is_finished(self) -> bool:
        """Check if every chunk has been sent."""
        return self.status is TransferStatus.FINISHED

    @property
    def bytes_sent(self) -> int:
        """Bytes acknowledged by the endpoint so far."""
        return min(self.next_chunk_index * self.chunk_size_bytes, self.file_size)

    @property
    def file_name(self) -> str:
        """Base name of the source file."""
        return os.path.basename(self.source_path)

    def transition_to(self, new_status: TransferStatus) -> None:
        """Transition to a new status with validation.

        Staying in the current status is always allowed.
        """
        if new_status is self.status:
            return
        if new_status not in VALID_TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"Cannot transition from {self.status.name} to {new_status.name}"
            )
        self.status = new_status


@dataclass
class EligibleTransfers:
    """Records a scheduling pass works on, by category."""

    new: list[TransferRecord] = field(default_factory=list)
    resumable: list[TransferRecord] = field(default_factory=list)
    pending_cleanup: list[TransferRecord] = field(default_factory=list)

    def to_send(self) -> list[TransferRecord]:
        """Records that still have chunks to send, oldest first."""
        return sorted(self.new + self.resumable, key=lambda r: r.created_at)

    def __len__(self) -> int:
        return len(self.new) + len(self.resumable) + len(self.pending_cleanup)


class TransferCatalog:
    """SQLite-based store of transfer records."""

    def __init__(self, db_path: Path) -> None:
        """Initialize the catalog database.

        Args:
            db_path: Path to SQLite database file.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        # Lock for thread-safe database access
        self._lock = threading.RLock()

        self._conn = sqlite3.connect(
            str(self._db_path),
            check_same_thread=False,
            isolation_level=None,  # Autocommit mode
        )
        self._conn.row_factory = sqlite3.Row

        # WAL lets other processes read while a worker writes
        self._conn.execute("PRAGMA journal_mode=WAL")

        self._create_tables()

    def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS transfers (
                id TEXT PRIMARY KEY,
                source_path TEXT NOT NULL,
                content_hash TEXT NOT NULL,
                file_size INTEGER NOT NULL,
                chunk_size_bytes INTEGER NOT NULL,
                total_chunks INTEGER NOT NULL,
                next_chunk_index INTEGER NOT NULL DEFAULT 0,
                status TEXT NOT NULL,
                retry_count INTEGER NOT NULL DEFAULT 0,
                staged_copy_present INTEGER NOT NULL DEFAULT 0,
                remote_id TEXT,
                created_at REAL NOT NULL,
                chunk_sent_at REAL,
                chunk_completed_at REAL,
                completed_at REAL,
                claimed_by TEXT,
                claimed_at REAL
            );

            CREATE INDEX IF NOT EXISTS idx_transfers_status ON transfers(status);
            CREATE INDEX IF NOT EXISTS idx_transfers_source ON transfers(source_path);
        """)

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def __enter__(self) -> TransferCatalog:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    # === Record operations ===

    def create(self, record: TransferRecord) -> None:
        """Insert a new record.

        Raises:
            sqlite3.IntegrityError: If a record with this id already exists.
        """
        placeholders = ", ".join("?" for _ in range(len(_COLUMNS) + 1))
        with self._lock:
            self._conn.execute(
                f"INSERT INTO transfers (id, {', '.join(_COLUMNS)}) VALUES ({placeholders})",
                (record.id, *record.to_values()),
            )
        logger.debug(f"Created transfer record {record.id} for {record.source_path}")

    def update(self, record: TransferRecord, owner: str | None = None) -> bool:
        """Replace the stored state of a record in one statement.

        With an owner, the write only happens while owner holds the
        record's claim, and it renews the claim's lease.

        Returns:
            True if the record exists (and, with an owner, is still
            claimed by it) and was written.
        """
        assignments = ", ".join(f"{column} = ?" for column in _COLUMNS)
        values = record.to_values()
        with self._lock:
            if owner is None:
                cursor = self._conn.execute(
                    f"UPDATE transfers SET {assignments} WHERE id = ?",
                    (*values, record.id),
                )
            else:
                cursor = self._conn.execute(
                    f"UPDATE transfers SET {assignments}, claimed_at = ? "
                    "WHERE id = ? AND claimed_by = ?",
                    (*values, time.time(), record.id, owner),
                )
        return cursor.rowcount == 1

    def get(self, record_id: str) -> TransferRecord | None:
        """Get a record by id."""
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM transfers WHERE id = ?", (record_id,)
            ).fetchone()
        return TransferRecord.from_row(row) if row else None

    def delete(self, record: TransferRecord) -> None:
        """Remove a record."""
        with self._lock:
            self._conn.execute("DELETE FROM transfers WHERE id = ?", (record.id,))
        logger.debug(f"Deleted transfer record {record.id}")

    def find_by_source(self, source_path: str | Path) -> TransferRecord | None:
        """Get the most recent record for a source file, if any."""
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM transfers WHERE source_path = ? "
                "ORDER BY created_at DESC LIMIT 1",
                (str(source_path),),
            ).fetchone()
        return TransferRecord.from_row(row) if row else None

    def list_all(self) -> list[TransferRecord]:
        """List every record, oldest first."""
        return self._select("1 = 1", ())

    # === Eligibility queries ===

    def list_new(self) -> list[TransferRecord]:
        """Records that have not started yet."""
        return self._select("status = ?", (TransferStatus.NOT_STARTED.value,))

    def list_resumable(self) -> list[TransferRecord]:
        """Records interrupted in progress or left in error."""
        return self._select(
            "status IN (?, ?)",
            (TransferStatus.IN_PROGRESS.value, TransferStatus.ERROR.value),
        )

    def list_pending_cleanup(self) -> list[TransferRecord]:
        """Finished records whose staged copy still exists."""
        return self._select(
            "status = ? AND staged_copy_present = 1",
            (TransferStatus.FINISHED.value,),
        )

    def classify(self) -> EligibleTransfers:
        """Run the three eligibility queries."""
        return EligibleTransfers(
            new=self.list_new(),
            resumable=self.list_resumable(),
            pending_cleanup=self.list_pending_cleanup(),
        )

    def list_eligible(self) -> list[TransferRecord]:
        """Records with chunks left to send, oldest first."""
        return self.classify().to_send()

    def _select(self, where: str, params: tuple[object, ...]) -> list[TransferRecord]:
        with self._lock:
            rows = self._conn.execute(
                f"SELECT * FROM transfers WHERE {where} ORDER BY created_at, id",
                params,
            ).fetchall()
        return [TransferRecord.from_row(row) for row in rows]

    # === Claims ===

    def try_claim(
        self,
        record_id: str,
        owner: str,
        lease: float = DEFAULT_CLAIM_LEASE,
    ) -> bool:
        """Claim a record for advancing.

        A claim succeeds if the record is unclaimed, already held by owner,
        or held by a claim older than lease seconds.

        Returns:
            True if owner now holds the claim.
        """
        now = time.time()
        with self._lock:
            cursor = self._conn.execute(
                """
                UPDATE transfers SET claimed_by = ?, claimed_at = ?
                WHERE id = ?
                  AND (claimed_by IS NULL OR claimed_by = ? OR claimed_at < ?)
                """,
                (owner, now, record_id, owner, now - lease),
            )
        return cursor.rowcount == 1

    def renew_claim(self, record_id: str, owner: str) -> bool:
        """Restart the lease of a claim held by owner.

        Returns:
            False if owner no longer holds the claim.
        """
        with self._lock:
            cursor = self._conn.execute(
                "UPDATE transfers SET claimed_at = ? WHERE id = ? AND claimed_by = ?",
                (time.time(), record_id, owner),
            )
        return cursor.rowcount == 1

    def release(self, record_id: str, owner: str) -> None:
        """Release a claim held by owner."""
        with self._lock:
            self._conn.execute(
                "UPDATE transfers SET claimed_by = NULL, claimed_at = NULL "
                "WHERE id = ? AND claimed_by = ?",
                (record_id, owner),
            )

    def claimed_by(self, record_id: str) -> str | None:
        """Current claim owner of a record."""
        with self._lock:
            row = self._conn.execute(
                "SELECT claimed_by FROM transfers WHERE id = ?", (record_id,)
            ).fetchone()
        return row["claimed_by"] if row else None
