# tests/unit/logging/test_unit_handlers.py — v1
"""Tests for logging/handlers.py."""

from __future__ import annotations

import logging

import pytest

from gradecache.logging.handlers import create_rotating_handler, parse_size


class TestParseSize:
    @pytest.mark.parametrize(
        ("text", "expected"),
        [("10MB", 10 * 1024**2), ("512 KB", 512 * 1024), ("1gb", 1024**3), ("2048", 2048)],
    )
    def test_valid(self, text, expected):
        assert parse_size(text) == expected

    def test_invalid(self):
        with pytest.raises(ValueError, match="Invalid size"):
            parse_size("ten megs")


class TestRotatingHandler:
    def test_creates_parent_and_writes(self, tmp_path):
        path = tmp_path / "logs" / "gradecache.log"
        handler = create_rotating_handler(
            path, logging.Formatter("%(message)s"), rotation="1KB", retention=2
        )
        try:
            assert handler.maxBytes == 1024
            assert handler.backupCount == 2
            handler.emit(logging.makeLogRecord({"msg": "hello", "levelno": logging.INFO}))
            handler.flush()
            assert "hello" in path.read_text()
        finally:
            handler.close()
