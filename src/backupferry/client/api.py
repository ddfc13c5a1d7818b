"""HTTP client for the remote archive endpoint.

This module provides:
- ArchiveClient: JSON-over-HTTP client with per-request retry
- SendResult: Outcome of one request after its retry budget
- Named wire operations (liveness, sessions, backups, chunks)

HTTP-level failures never raise: they are reported through
SendResult.ok and SendResult.status_code.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Collection
from dataclasses import dataclass
from typing import Any

import httpx

from backupferry.client.retry import backoff_delay
from backupferry.core.chunking import EncodedChunk
from backupferry.core.config import TransferConfig

logger = logging.getLogger(__name__)

# Header carrying the session token on authenticated requests
SESSION_HEADER = "X-Session-Key"

# Data operations only accept exactly 200
DATA_SUCCESS_CODES: frozenset[int] = frozenset({200})
# Liveness also accepts 202 Accepted
LIVENESS_SUCCESS_CODES: frozenset[int] = frozenset({200, 202})
# A chunk queued by the endpoint (202) is acknowledged too
CHUNK_SUCCESS_CODES: frozenset[int] = frozenset({200, 202})

HTTP_METHODS = ("GET", "POST", "PUT", "DELETE")

# Sentinel meaning "use the client's current session token"
_SESSION = object()


@dataclass
class SendResult:
    """Result of a request after all attempts.

    Attributes:
        ok: Whether the last response had a success status.
        status_code: Status of the last response, None if no response was received.
        data: Decoded JSON body of the last response, if any.
        error: Description of the last transport error, if any.
        attempts: Number of attempts made.
    """

    ok: bool
    status_code: int | None = None
    data: Any = None
    error: str | None = None
    attempts: int = 0

    def describe(self) -> str:
        """Short human-readable description of the failure."""
        if self.ok:
            return f"HTTP {self.status_code}"
        if self.status_code is None:
            return f"no response after {self.attempts} attempts ({self.error})"
        return f"HTTP {self.status_code} after {self.attempts} attempts"


def backup_path(backup_id: str | int | None = None) -> str:
    """Resource path of a backup ("backup" for creation)."""
    return "backup" if backup_id is None else f"backup{backup_id}"


def chunk_path(backup_id: str | int, index: int | None = None) -> str:
    """Resource path of a backup's chunks or of one chunk."""
    if index is None:
        return f"chunks{backup_id}"
    return f"chunks{backup_id}/{index}"


class ArchiveClient:
    """HTTP client for the remote archive endpoint.

    One client owns one pooled httpx connection pool. It is safe to share
    between worker threads.
    """

    def __init__(
        self,
        config: TransferConfig,
        session_token: str | None = None,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the archive client.

        Args:
            config: Endpoint, timeouts, retry and backoff settings.
            session_token: Opaque session token attached to authenticated requests.
            transport: Optional httpx transport (for tests).
            sleep: Function used to wait between attempts.
        """
        self._config = config
        self._base_url = config.base_url
        self._session_token = session_token
        self._sleep = sleep
        self._client = httpx.Client(
            timeout=httpx.Timeout(config.request_timeout, connect=config.connect_timeout),
            limits=httpx.Limits(max_connections=max(config.max_workers, 1) * 2),
            verify=config.verify_ssl,
            transport=transport,
        )

    @property
    def config(self) -> TransferConfig:
        """Configuration this client was built with."""
        return self._config

    @property
    def session_token(self) -> str | None:
        """Current session token."""
        return self._session_token

    @session_token.setter
    def session_token(self, token: str | None) -> None:
        self._session_token = token

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> ArchiveClient:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    # === Generic request ===

    def send(
        self,
        resource_path: str,
        body: Any = None,
        method: str = "GET",
        auth_token: Any = _SESSION,
        max_attempts: int | None = None,
        success_codes: Collection[int] = DATA_SUCCESS_CODES,
    ) -> SendResult:
        """Send a JSON request, retrying within this call.

        Args:
            resource_path: Path relative to the base URL (e.g., "chunks12/3").
            body: JSON-serializable request body (None for an empty body).
            method: One of GET, POST, PUT, DELETE.
            auth_token: Session token to attach; defaults to the client's
                session, None sends the request unauthenticated.
            max_attempts: Attempts before giving up (default: config.request_retries).
            success_codes: Status codes counted as success.

        Returns:
            SendResult describing the last attempt.
        """
        method = method.upper()
        if method not in HTTP_METHODS:
            raise ValueError(f"Unsupported HTTP method: {method}")

        attempts = max_attempts if max_attempts is not None else self._config.request_retries
        attempts = max(attempts, 1)

        token = self._session_token if auth_token is _SESSION else auth_token
        content = b"" if body is None else json.dumps(body).encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            "Content-Length": str(len(content)),
        }
        if token:
            headers[SESSION_HEADER] = str(token)

        url = f"{self._base_url}/{resource_path.lstrip('/')}"

        result = SendResult(ok=False)
        for attempt in range(1, attempts + 1):
            if attempt > 1:
                delay = backoff_delay(
                    attempt - 1,
                    initial_backoff=self._config.initial_backoff,
                    max_backoff=self._config.max_backoff,
                    backoff_multiplier=self._config.backoff_multiplier,
                )
                if delay > 0:
                    self._sleep(delay)

            result.attempts = attempt
            try:
                response = self._client.request(method, url, content=content, headers=headers)
            except httpx.RequestError as e:
                result.status_code = None
                result.data = None
                result.error = f"{type(e).__name__}: {e}"
                logger.warning(
                    f"{method} {resource_path} attempt {attempt}/{attempts} failed: {result.error}"
                )
                continue

            result.status_code = response.status_code
            result.data = _decode_json(response)
            result.error = None
            if response.status_code in success_codes:
                result.ok = True
                logger.debug(f"{method} {resource_path} -> {response.status_code}")
                return result

            logger.warning(
                f"{method} {resource_path} attempt {attempt}/{attempts} "
                f"returned HTTP {response.status_code}"
            )

        logger.error(f"{method} {resource_path} failed: {result.describe()}")
        return result

    # === Liveness ===

    def check_connection(self, max_attempts: int = 1) -> bool:
        """Check that the endpoint answers at all (unauthenticated).

        Returns:
            True if the endpoint answered 200 or 202.
        """
        result = self.send(
            "test",
            auth_token=None,
            max_attempts=max_attempts,
            success_codes=LIVENESS_SUCCESS_CODES,
        )
        return result.ok

    def check_liveness(self) -> bool:
        """Check that the endpoint is reachable and accepts our session.

        Returns:
            True if the endpoint answered 200 or 202.
        """
        result = self.send("test", success_codes=LIVENESS_SUCCESS_CODES)
        return result.ok

    # === Sessions ===

    def start_session(self, credential_hash: str, username: str) -> str | None:
        """Start a session and use its token for subsequent requests.

        Args:
            credential_hash: Hash of the credential (see core.crypto.hash_credential).
            username: Identity the credential belongs to.

        Returns:
            Session token, or None if the endpoint refused or did not return one.
        """
        result = self.send(
            "sessions",
            body={"hash": credential_hash, "username": username},
            method="POST",
            auth_token=None,
        )
        if not result.ok or not isinstance(result.data, dict):
            return None
        token = result.data.get("token") or result.data.get("sessionkey")
        if not token:
            logger.warning("Session endpoint answered without a token")
            return None
        self._session_token = str(token)
        logger.info(f"Session started for {username}")
        return self._session_token

    # === Backup operations ===

    def create_backup(self, metadata: dict[str, Any]) -> str | None:
        """Create a backup resource.

        Args:
            metadata: Backup description (file name, hash, sizes, chunk count).

        Returns:
            Identifier of the created resource, or None on failure.
        """
        result = self.send(backup_path(), body=metadata, method="POST")
        if not result.ok or not isinstance(result.data, dict) or result.data.get("id") is None:
            return None
        return str(result.data["id"])

    def get_backup(self, backup_id: str | int) -> SendResult:
        """Read a backup resource."""
        return self.send(backup_path(backup_id))

    def update_backup(self, backup_id: str | int, data: dict[str, Any]) -> SendResult:
        """Update a backup resource."""
        return self.send(backup_path(backup_id), body=data, method="PUT")

    # === Chunk operations ===

    def get_latest_chunk(self, backup_id: str | int) -> SendResult:
        """Read the status of the most recent chunk of a backup."""
        return self.send(chunk_path(backup_id))

    def get_chunk(self, backup_id: str | int, index: int) -> SendResult:
        """Read one chunk resource."""
        return self.send(chunk_path(backup_id, index))

    def send_chunk(
        self,
        backup_id: str | int,
        index: int,
        encoded: EncodedChunk,
        size: int,
        is_last: bool = False,
    ) -> SendResult:
        """Transfer one encoded chunk.

        Args:
            backup_id: Remote backup identifier.
            index: Zero-based chunk index.
            encoded: Base64 payload and its checksum.
            size: Size of the raw (unencoded) chunk in bytes.
            is_last: Whether this is the final chunk of the file.

        Returns:
            SendResult, ok on HTTP 200 or 202.
        """
        return self.send(
            chunk_path(backup_id, index),
            body={
                "index": index,
                "data": encoded.payload,
                "checksum": encoded.checksum,
                "size": size,
                "last": is_last,
            },
            method="PUT",
            success_codes=CHUNK_SUCCESS_CODES,
        )

    def confirm_chunk(self, backup_id: str | int, index: int, checksum: str) -> SendResult:
        """Confirm a chunk the endpoint already holds, by checksum."""
        return self.send(
            chunk_path(backup_id, index),
            body={"index": index, "checksum": checksum, "confirm": True},
            method="PUT",
        )

    def delete_chunk(self, backup_id: str | int, index: int) -> SendResult:
        """Delete one chunk (e.g., to force it to be sent again)."""
        return self.send(chunk_path(backup_id, index), method="DELETE")


def _decode_json(response: httpx.Response) -> Any:
    """Decode a JSON body, None when empty or not JSON."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None
