"""Core module - Shared chunking, hashing, config and types."""

from backupferry.core.chunking import (
    Chunk,
    EncodedChunk,
    chunk_file,
    count_chunks,
    decode_chunk,
    encode_chunk,
    get_checksum,
    iter_chunks,
    kb_to_bytes,
    read_chunk,
)
from backupferry.core.config import BYTES_PER_KB, TransferConfig
from backupferry.core.crypto import compute_file_hash, hash_credential
from backupferry.core.types import FailureKind, TransferStatus

__all__ = [
    # Chunking
    "Chunk",
    "EncodedChunk",
    "chunk_file",
    "count_chunks",
    "decode_chunk",
    "encode_chunk",
    "get_checksum",
    "iter_chunks",
    "kb_to_bytes",
    "read_chunk",
    # Config
    "BYTES_PER_KB",
    "TransferConfig",
    # Hashing
    "compute_file_hash",
    "hash_credential",
    # Types
    "FailureKind",
    "TransferStatus",
]
