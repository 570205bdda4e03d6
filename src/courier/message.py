"""
Courier - Chat messages as shown to the user.

A ChatMessage is what the display receives. A message that could not be
decrypted is a distinct FAILED state carrying a fixed placeholder, never
ciphertext or partially decrypted text.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .constants import FAILED_TO_DECRYPT_PLACEHOLDER
from .utils import utc_timestamp


class MessageState(Enum):
    """Display state of a message."""

    SENT = "sent"
    RECEIVED = "received"
    FAILED = "failed"
    SYSTEM = "system"


@dataclass(frozen=True)
class ChatMessage:
    """One line of the conversation view."""

    sender: str
    content: str
    state: MessageState
    peer_id: Optional[str] = None
    timestamp: str = field(default_factory=utc_timestamp)

    @classmethod
    def sent(cls, sender: str, content: str, peer_id: str, timestamp: Optional[str] = None) -> "ChatMessage":
        return cls(sender, content, MessageState.SENT, peer_id, timestamp or utc_timestamp())

    @classmethod
    def received(cls, sender: str, content: str, peer_id: str, timestamp: Optional[str] = None) -> "ChatMessage":
        return cls(sender, content, MessageState.RECEIVED, peer_id, timestamp or utc_timestamp())

    @classmethod
    def failed(cls, sender: str, peer_id: Optional[str], timestamp: Optional[str] = None) -> "ChatMessage":
        return cls(
            sender, FAILED_TO_DECRYPT_PLACEHOLDER, MessageState.FAILED, peer_id, timestamp or utc_timestamp()
        )

    @classmethod
    def system(cls, content: str) -> "ChatMessage":
        return cls("System", content, MessageState.SYSTEM)

    @property
    def is_failed(self) -> bool:
        return self.state == MessageState.FAILED
