"""Hashing functions for backupferry.

This module provides:
- Content hashing of backup files (the file reference of a transfer)
- Credential hashing for session start
"""

import hashlib
from pathlib import Path

# Read size when hashing files
HASH_BLOCK_SIZE = 1024 * 1024


def compute_file_hash(path: Path) -> str:
    """Compute SHA-256 hash of a file.

    Reads the file in blocks to handle large backups.

    Args:
        path: Path to the file to hash.

    Returns:
        Hexadecimal SHA-256 hash string.
    """
    hasher = hashlib.sha256()
    with open(path, "rb") as f:
        for block in iter(lambda: f.read(HASH_BLOCK_SIZE), b""):
            hasher.update(block)
    return hasher.hexdigest()


def hash_credential(secret: str) -> str:
    """Hash a credential before it is submitted to the session endpoint.

    Args:
        secret: The shared secret or password.

    Returns:
        Hexadecimal SHA-256 hash string.
    """
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()
