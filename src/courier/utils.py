"""
Courier - Utility functions.

Provides formatting and validation helpers shared by the client,
the relay and the terminal display.
"""

import logging
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


def utc_timestamp() -> str:
    """Current time as an ISO 8601 UTC string, as sent in chat frames."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def format_timestamp(iso_timestamp: str, format_str: str = "%H:%M:%S") -> str:
    """
    Format an ISO timestamp to a local, human-readable time.

    Args:
        iso_timestamp: ISO 8601 timestamp string
        format_str: strftime format string

    Returns:
        Formatted timestamp string, or original if parsing fails
    """
    try:
        dt = datetime.fromisoformat(iso_timestamp.replace("Z", "+00:00"))
        if dt.tzinfo is not None:
            dt = dt.astimezone()
        return dt.strftime(format_str)
    except (ValueError, TypeError, AttributeError) as e:
        logger.debug(f"Failed to parse timestamp '{iso_timestamp}': {e}")
        return iso_timestamp


def validate_port(port: int) -> bool:
    """
    Validate a port number.

    Args:
        port: Port number to validate

    Returns:
        True if valid, False otherwise
    """
    return 1024 <= port <= 65535


def short_id(uid: str, length: int = 8) -> str:
    """Leading characters of an id, for log lines and display."""
    return uid[:length]
