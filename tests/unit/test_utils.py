"""
Unit tests for courier.utils and courier.sanitization modules.

Tests utility functions for formatting, validation, and display safety.
"""

import re

from courier.constants import MAX_TEXT_MESSAGE_SIZE, MAX_USERNAME_LENGTH
from courier.sanitization import sanitize_for_display, sanitize_username
from courier.utils import (
    format_timestamp,
    short_id,
    utc_timestamp,
    validate_port,
)


class TestPortValidation:
    """Test port number validation."""

    def test_valid_ports(self):
        """Test that valid port numbers are accepted."""
        assert validate_port(1024) is True
        assert validate_port(8080) is True
        assert validate_port(65535) is True

    def test_invalid_ports(self):
        """Test that invalid port numbers are rejected."""
        assert validate_port(0) is False
        assert validate_port(1023) is False
        assert validate_port(65536) is False


class TestTimestamps:
    """Test timestamp helpers."""

    def test_utc_timestamp_format(self):
        stamp = utc_timestamp()
        assert stamp.endswith("Z")
        assert re.match(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}", stamp)

    def test_format_timestamp(self):
        formatted = format_timestamp("2025-01-01T12:34:56Z", "%Y-%m-%d")
        assert formatted in ("2024-12-31", "2025-01-01", "2025-01-02")

    def test_format_unparseable_timestamp(self):
        assert format_timestamp("yesterday") == "yesterday"
        assert format_timestamp(None) is None


class TestStringUtilities:
    """Test string utility functions."""

    def test_short_id(self):
        assert short_id("0123456789abcdef") == "01234567"
        assert short_id("abc") == "abc"


class TestSanitization:
    """Test display sanitization of peer-supplied text."""

    def test_plain_text_unchanged(self):
        assert sanitize_for_display("hello, world") == "hello, world"
        assert sanitize_for_display("línea\tdos\nlines") == "línea\tdos\nlines"

    def test_ansi_sequences_removed(self):
        assert sanitize_for_display("\x1b[31mred\x1b[0m") == "red"
        assert sanitize_for_display("\x1b]0;title\x07x") != "\x1b]0;title\x07x"

    def test_control_characters_removed(self):
        assert sanitize_for_display("bell\x07 null\x00 del\x7f") == "bell null del"

    def test_c1_control_characters_removed(self):
        assert sanitize_for_display("a\x9b31mb") == "a31mb"
        assert sanitize_for_display("\x80x\x9fy\x85") == "xy"
        assert sanitize_for_display("caf\xe9 \xa0ok") == "caf\xe9 \xa0ok"

    def test_max_length(self):
        assert len(sanitize_for_display("x" * 10000)) == 10000
        assert len(sanitize_for_display("x" * (MAX_TEXT_MESSAGE_SIZE + 1))) == MAX_TEXT_MESSAGE_SIZE
        assert sanitize_for_display("abcdef", max_length=3) == "abc"

    def test_username(self):
        assert sanitize_username("  alice \n smith ") == "alice smith"
        assert sanitize_username("\x1b[1m") == "?"
        assert len(sanitize_username("a" * 500)) == MAX_USERNAME_LENGTH
