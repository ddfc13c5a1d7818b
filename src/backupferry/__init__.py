"""backupferry - Resumable chunked transfer of backup files to a remote archive."""

__version__ = "0.1.0"
