"""
Courier - Relay wire protocol definitions.

Frames are JSON objects, one per line (newline-delimited JSON), over a
persistent TCP stream between each client and the relay:

- register     client -> relay   from, content (username), publicKey
- welcome      relay -> client   content (greeting)
- userList     relay -> client   users: [{id, username, publicKey}]
- keyExchange  client -> client  from, to, content (base64 wrapped key)
- chat         client -> client  from, to, content (base64 blob), timestamp

The relay forwards keyExchange and chat verbatim to "to".
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .constants import MAX_FRAME_SIZE, WELCOME_TEXT
from .errors import ErrorCode, ProtocolError
from .utils import utc_timestamp


class MessageType(str, Enum):
    """Frame type definitions."""

    REGISTER = "register"
    WELCOME = "welcome"
    USER_LIST = "userList"
    KEY_EXCHANGE = "keyExchange"
    CHAT = "chat"


# Frame types the relay forwards to a single recipient
DIRECTED_TYPES = frozenset({MessageType.KEY_EXCHANGE, MessageType.CHAT})

REQUIRED_FIELDS: Dict[MessageType, Tuple[str, ...]] = {
    MessageType.REGISTER: ("from", "content", "publicKey"),
    MessageType.WELCOME: (),
    MessageType.USER_LIST: ("users",),
    MessageType.KEY_EXCHANGE: ("from", "to", "content"),
    MessageType.CHAT: ("from", "to", "content"),
}


@dataclass(frozen=True)
class PeerIdentity:
    """One entry of a presence snapshot."""

    id: str
    username: str
    public_key: str

    def to_dict(self) -> Dict[str, str]:
        return {"id": self.id, "username": self.username, "publicKey": self.public_key}

    @staticmethod
    def from_dict(data: Any) -> "PeerIdentity":
        """
        Build a peer from a userList entry.

        Raises:
            ProtocolError: If a field is missing or not a string
        """
        if not isinstance(data, dict):
            raise ProtocolError(message="userList entry is not an object")

        values = []
        for name in ("id", "username", "publicKey"):
            value = data.get(name)
            if not isinstance(value, str):
                raise ProtocolError(
                    message=f"userList entry has invalid field: {name}",
                    details={"field": name},
                )
            values.append(value)

        return PeerIdentity(*values)


@dataclass(frozen=True)
class Envelope:
    """An immutable relay frame."""

    type: MessageType
    from_id: Optional[str] = None
    to_id: Optional[str] = None
    content: Optional[str] = None
    public_key: Optional[str] = None
    timestamp: Optional[str] = None
    users: Tuple[PeerIdentity, ...] = field(default_factory=tuple)

    @property
    def is_directed(self) -> bool:
        return self.type in DIRECTED_TYPES

    def to_dict(self) -> Dict[str, Any]:
        """Wire form; absent optional fields are omitted."""
        data: Dict[str, Any] = {"type": self.type.value}
        if self.from_id is not None:
            data["from"] = self.from_id
        if self.to_id is not None:
            data["to"] = self.to_id
        if self.content is not None:
            data["content"] = self.content
        if self.public_key is not None:
            data["publicKey"] = self.public_key
        if self.timestamp is not None:
            data["timestamp"] = self.timestamp
        if self.type == MessageType.USER_LIST:
            data["users"] = [user.to_dict() for user in self.users]
        return data


class Protocol:
    """Relay frame codec.

    pack and unpack take the frame limit of the caller's configuration
    (limits.max_frame_size); MAX_FRAME_SIZE is the default.
    """

    MAX_FRAME_SIZE = MAX_FRAME_SIZE

    @staticmethod
    def _check_size(size: int, max_size: Optional[int]) -> None:
        limit = max_size or Protocol.MAX_FRAME_SIZE
        if size > limit:
            raise ProtocolError(
                ErrorCode.E207_MESSAGE_TOO_LARGE,
                f"Frame too large: {size} bytes",
                {"size": size, "max_size": limit},
            )

    @staticmethod
    def pack(envelope: Envelope, max_size: Optional[int] = None) -> bytes:
        """
        Encode a frame as one newline-terminated JSON line.

        Raises:
            ProtocolError: If the frame is invalid or too large
        """
        data = envelope.to_dict()
        Protocol.validate_message(envelope.type, data)

        line = json.dumps(data, separators=(",", ":")).encode("utf-8")
        Protocol._check_size(len(line), max_size)

        return line + b"\n"

    @staticmethod
    def unpack(line: bytes, max_size: Optional[int] = None) -> Envelope:
        """
        Decode one received line into an Envelope.

        Raises:
            ProtocolError: If the line is oversized, not a JSON object,
                has an unknown type, or lacks a required field
        """
        Protocol._check_size(len(line), max_size)

        try:
            data = json.loads(line.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ProtocolError(message=f"Failed to parse frame: {e}", details={"error": str(e)}) from e

        if not isinstance(data, dict):
            raise ProtocolError(message="Frame is not a JSON object")

        raw_type = data.get("type")
        try:
            msg_type = MessageType(raw_type)
        except ValueError as e:
            raise ProtocolError(
                message=f"Unknown frame type: {raw_type!r}", details={"type": raw_type}
            ) from e

        Protocol.validate_message(msg_type, data)

        users: Tuple[PeerIdentity, ...] = ()
        if msg_type == MessageType.USER_LIST:
            users = tuple(PeerIdentity.from_dict(entry) for entry in data["users"])

        return Envelope(
            type=msg_type,
            from_id=data.get("from"),
            to_id=data.get("to"),
            content=data.get("content"),
            public_key=data.get("publicKey"),
            timestamp=data.get("timestamp"),
            users=users,
        )

    @staticmethod
    def validate_message(msg_type: MessageType, data: Dict[str, Any]) -> None:
        """
        Check the required fields of a frame.

        Raises:
            ProtocolError: If validation fails
        """
        for name in REQUIRED_FIELDS[msg_type]:
            if name not in data:
                raise ProtocolError(
                    message=f"Missing required field: {name}",
                    details={"message_type": msg_type.value, "field": name},
                )

        if msg_type == MessageType.USER_LIST:
            if not isinstance(data["users"], list):
                raise ProtocolError(message="userList.users is not a list")
            return

        for name in ("from", "to", "content", "publicKey", "timestamp"):
            if name in data and not isinstance(data[name], str):
                raise ProtocolError(
                    message=f"Field {name} must be a string",
                    details={"message_type": msg_type.value, "field": name},
                )

    @staticmethod
    def create_register(uid: str, username: str, public_key: str) -> Envelope:
        """Create registration frame."""
        return Envelope(MessageType.REGISTER, from_id=uid, content=username, public_key=public_key)

    @staticmethod
    def create_welcome(text: str = WELCOME_TEXT) -> Envelope:
        """Create registration acknowledgment."""
        return Envelope(MessageType.WELCOME, content=text)

    @staticmethod
    def create_user_list(users: List[PeerIdentity]) -> Envelope:
        """Create presence snapshot."""
        return Envelope(MessageType.USER_LIST, users=tuple(users))

    @staticmethod
    def create_key_exchange(from_id: str, to_id: str, wrapped_key: str) -> Envelope:
        """Create directed key-exchange frame carrying a base64 wrapped key."""
        return Envelope(MessageType.KEY_EXCHANGE, from_id=from_id, to_id=to_id, content=wrapped_key)

    @staticmethod
    def create_chat(
        from_id: str, to_id: str, blob: str, timestamp: Optional[str] = None
    ) -> Envelope:
        """Create directed chat frame carrying an encrypted payload blob."""
        return Envelope(
            MessageType.CHAT,
            from_id=from_id,
            to_id=to_id,
            content=blob,
            timestamp=timestamp or utc_timestamp(),
        )
