"""Tests for core configuration classes."""

from __future__ import annotations

import pytest

from backupferry.core.config import TransferConfig, parse_bool


class TestTransferConfig:
    """Tests for TransferConfig class."""

    def test_init_defaults(self) -> None:
        """Should initialize with defaults."""
        config = TransferConfig(base_url="https://archive.example.com")
        assert config.base_url == "https://archive.example.com"
        assert config.connect_timeout == 10.0
        assert config.request_timeout == 60.0
        assert config.request_retries == 5
        assert config.chunk_size_kb == 1000
        assert config.verify_ssl is True

    def test_url_trailing_slash_removed(self) -> None:
        """Should strip trailing slash from base URL."""
        config = TransferConfig(base_url="https://archive.example.com/api/")
        assert config.base_url == "https://archive.example.com/api"

    def test_chunk_size_bytes(self) -> None:
        """Chunk size is normalized with 1 KB = 1000 bytes."""
        config = TransferConfig(base_url="http://a", chunk_size_kb=250)
        assert config.chunk_size_bytes == 250_000

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"request_retries": 0},
            {"chunk_size_kb": 0},
            {"chunk_size_kb": -5},
            {"max_workers": 0},
            {"connect_timeout": 0},
        ],
    )
    def test_invalid_values_rejected(self, kwargs: dict[str, float]) -> None:
        """Should reject non-positive settings."""
        with pytest.raises(ValueError):
            TransferConfig(base_url="http://a", **kwargs)

    def test_is_secure(self) -> None:
        """Should detect HTTPS endpoints."""
        assert TransferConfig(base_url="https://a").is_secure is True
        assert TransferConfig(base_url="http://a").is_secure is False

    def test_from_dict(self) -> None:
        """Should build from config file keys, ignoring unknown ones."""
        config = TransferConfig.from_dict({
            "server_url": "http://archive.test/",
            "request_retries": "7",
            "chunk_size_kb": 512,
            "connect_timeout": 3,
            "session_token": "secret",
        })
        assert config.base_url == "http://archive.test"
        assert config.request_retries == 7
        assert config.chunk_size_kb == 512
        assert config.connect_timeout == 3.0

    def test_from_dict_requires_server_url(self) -> None:
        """Should fail without a server URL."""
        with pytest.raises(KeyError):
            TransferConfig.from_dict({"chunk_size_kb": 10})

    @pytest.mark.parametrize(
        ("value", "expected"),
        [(False, False), ("false", False), ("No", False), ("0", False), (True, True), ("TRUE", True)],
    )
    def test_from_dict_verify_ssl(self, value: object, expected: bool) -> None:
        """Hand-edited string booleans are parsed, not taken as truthy."""
        config = TransferConfig.from_dict({"server_url": "https://a", "verify_ssl": value})
        assert config.verify_ssl is expected


class TestParseBool:
    """Tests for parse_bool."""

    @pytest.mark.parametrize("value", ["maybe", 1, None, ""])
    def test_rejects_unknown_values(self, value: object) -> None:
        """Anything that is not a boolean or a known string is rejected."""
        with pytest.raises(ValueError):
            parse_bool(value)
