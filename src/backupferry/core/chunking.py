"""Fixed-size chunking for backupferry.

This module provides:
- Fixed-size partitioning of a file (the last chunk may be shorter)
- Transport encoding of chunk bytes (base64)
- A checksum of the encoded payload for transport corruption detection
"""

from __future__ import annotations

import base64
import hashlib
import math
import os
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from backupferry.core.config import BYTES_PER_KB


@dataclass
class Chunk:
    """Represents a chunk of file data.

    Attributes:
        index: Zero-based position of the chunk in the file.
        offset: Byte offset of the first byte of the chunk.
        data: Raw chunk bytes.
        is_last: True when the chunk reaches end of file.
    """

    index: int
    offset: int
    data: bytes
    is_last: bool

    @property
    def size(self) -> int:
        """Return the size of this chunk in bytes."""
        return len(self.data)


@dataclass(frozen=True)
class EncodedChunk:
    """Transport-ready form of a chunk."""

    payload: str
    checksum: str


def kb_to_bytes(chunk_size_kb: int) -> int:
    """Normalize a chunk size in kilobytes to bytes.

    Raises:
        ValueError: If the size is not a positive integer.
    """
    if chunk_size_kb <= 0:
        raise ValueError(f"Chunk size must be positive, got {chunk_size_kb} KB")
    return chunk_size_kb * BYTES_PER_KB


def count_chunks(file_size: int, chunk_size_bytes: int) -> int:
    """Number of chunks needed to send a file.

    Args:
        file_size: File size in bytes.
        chunk_size_bytes: Chunk size in bytes.

    Returns:
        ceil(file_size / chunk_size_bytes). An empty file has no chunks.
    """
    if chunk_size_bytes <= 0:
        raise ValueError(f"Chunk size must be positive, got {chunk_size_bytes}")
    if file_size < 0:
        raise ValueError(f"File size cannot be negative, got {file_size}")
    return math.ceil(file_size / chunk_size_bytes)


def get_checksum(payload: str | bytes) -> str:
    """Compute the checksum of an encoded payload.

    The receiver compares it to detect transport corruption.

    Returns:
        Hex-encoded MD5 digest (32 characters).
    """
    if isinstance(payload, str):
        payload = payload.encode("ascii")
    return hashlib.md5(payload).hexdigest()


def encode_chunk(data: bytes) -> EncodedChunk:
    """Encode chunk bytes for a JSON request body.

    Args:
        data: Raw chunk bytes.

    Returns:
        EncodedChunk with base64 payload and checksum of that payload.
    """
    payload = base64.b64encode(data).decode("ascii")
    return EncodedChunk(payload=payload, checksum=get_checksum(payload))


def decode_chunk(payload: str) -> bytes:
    """Decode a base64 payload back into raw chunk bytes."""
    return base64.b64decode(payload.encode("ascii"), validate=True)


def read_chunk(handle: BinaryIO, index: int, chunk_size_bytes: int) -> Chunk:
    """Read one chunk from an open binary file.

    Reading past end of file returns only the remaining bytes (possibly none),
    never padding.

    Args:
        handle: File opened in binary mode, seekable.
        index: Zero-based chunk index.
        chunk_size_bytes: Chunk size in bytes.

    Returns:
        Chunk with its data and end-of-file flag.
    """
    if index < 0:
        raise ValueError(f"Chunk index cannot be negative, got {index}")
    offset = index * chunk_size_bytes
    end = handle.seek(0, os.SEEK_END)
    handle.seek(offset)
    data = handle.read(chunk_size_bytes)
    return Chunk(
        index=index,
        offset=offset,
        data=data,
        is_last=offset + len(data) >= end,
    )


def iter_chunks(
    handle: BinaryIO,
    chunk_size_bytes: int,
    start_index: int = 0,
) -> Iterator[Chunk]:
    """Yield chunks in index order starting at start_index.

    Stops at the first empty read.
    """
    index = start_index
    while True:
        chunk = read_chunk(handle, index, chunk_size_bytes)
        if not chunk.data:
            return
        yield chunk
        if chunk.is_last:
            return
        index += 1


def chunk_file(path: Path, chunk_size_bytes: int, start_index: int = 0) -> Iterator[Chunk]:
    """Split a file into fixed-size chunks.

    Args:
        path: Path to the file to chunk.
        chunk_size_bytes: Chunk size in bytes.
        start_index: First chunk to yield.

    Yields:
        Chunk objects in index order.

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    with path.open("rb") as handle:
        yield from iter_chunks(handle, chunk_size_bytes, start_index)
