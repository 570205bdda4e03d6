"""
Courier - Display Sanitization

Usernames and decrypted message text come from other participants and
are printed to a terminal, so control sequences are stripped first.
"""

import re

from .constants import MAX_TEXT_MESSAGE_SIZE, MAX_USERNAME_LENGTH

ANSI_ESCAPE = re.compile(r"\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])")


def _is_control(char: str) -> bool:
    """C0, DEL or C1 control character."""
    code = ord(char)
    return code < 32 or 127 <= code < 160


def sanitize_for_display(text: str, max_length: int = MAX_TEXT_MESSAGE_SIZE) -> str:
    """
    Sanitize text for terminal display.

    Removes ANSI escape sequences and control characters
    that could manipulate the terminal.

    Args:
        text: Input text to sanitize
        max_length: Maximum allowed length

    Returns:
        Display-safe text
    """
    if not isinstance(text, str):
        text = str(text)

    text = text[:max_length]
    text = ANSI_ESCAPE.sub("", text)

    return "".join(char for char in text if char in "\n\t" or not _is_control(char))


def sanitize_username(username: str) -> str:
    """Single-line, length-limited form of a display name."""
    cleaned = " ".join(sanitize_for_display(username, MAX_USERNAME_LENGTH * 4).split())
    return cleaned[:MAX_USERNAME_LENGTH] or "?"
