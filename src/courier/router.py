"""
Courier - Envelope router.

Classifies every frame the relay delivers and hands it to the matching
handler. Frames are dispatched one at a time to completion, so a key
install and a chat decrypt for the same peer never interleave.

A bad frame or a failing handler is logged and dropped; it never tears
down the connection.
"""

import asyncio
import logging
from typing import Any, Callable, List, Optional

from . import crypto
from .connection_fsm import ConnectionEvent, ConnectionStateMachine
from .constants import CONNECTED_NOTICE
from .errors import CourierError, DecryptionFailed, ProtocolError, SessionError, UnwrapFailed
from .key_exchange import KeyExchangeProtocol
from .message import ChatMessage
from .protocol import Envelope, MessageType, Protocol
from .session import KnownPeer, SessionContext
from .utils import short_id

logger = logging.getLogger(__name__)


class EnvelopeRouter:
    """Inbound frame dispatcher for one participant.

    Attributes:
        on_message: Called with each ChatMessage to display
        on_peers: Called with the new peer list after a presence update
    """

    def __init__(
        self,
        context: SessionContext,
        key_exchange: KeyExchangeProtocol,
        fsm: ConnectionStateMachine,
        max_frame_size: Optional[int] = None,
    ):
        self.context = context
        self.key_exchange = key_exchange
        self.fsm = fsm
        self.max_frame_size = max_frame_size

        self.on_message: Optional[Callable[[ChatMessage], Any]] = None
        self.on_peers: Optional[Callable[[List[KnownPeer]], Any]] = None

        self.handlers = {
            MessageType.WELCOME: self._handle_welcome,
            MessageType.USER_LIST: self._handle_user_list,
            MessageType.KEY_EXCHANGE: self._handle_key_exchange,
            MessageType.CHAT: self._handle_chat,
        }

    async def dispatch(self, line: bytes) -> Optional[Envelope]:
        """
        Decode one frame and run its handler.

        Returns:
            The decoded envelope, or None if it was dropped
        """
        try:
            envelope = Protocol.unpack(line, self.max_frame_size)
        except ProtocolError as e:
            logger.warning(f"Dropping malformed frame: {e}")
            return None

        handler = self.handlers.get(envelope.type)
        if handler is None:
            logger.warning(f"Dropping unexpected {envelope.type.value} frame")
            return None

        try:
            await handler(envelope)
        except CourierError as e:
            logger.error(f"Error handling {envelope.type.value} frame: {e}")
            return None
        except Exception as e:
            logger.error(f"Unexpected error handling {envelope.type.value} frame: {e}", exc_info=True)
            return None

        return envelope

    async def _emit(self, callback: Optional[Callable], *args: Any) -> None:
        if callback is None:
            return
        try:
            result = callback(*args)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            logger.error(f"Error in router callback: {e}", exc_info=True)

    async def _notice(self, text: str) -> None:
        await self._emit(self.on_message, ChatMessage.system(text))

    async def _handle_welcome(self, envelope: Envelope) -> None:
        if not self.fsm.transition(ConnectionEvent.WELCOME_RECEIVED):
            return
        self.context.connected = True
        await self._notice(CONNECTED_NOTICE)

    async def _handle_user_list(self, envelope: Envelope) -> None:
        peers = self.context.replace_peers(envelope.users)
        logger.debug(f"Presence update: {len(peers)} peer(s)")
        await self._emit(self.on_peers, peers)

    async def _handle_key_exchange(self, envelope: Envelope) -> None:
        try:
            self.key_exchange.respond(envelope)
        except UnwrapFailed as e:
            sender = self.context.display_name(envelope.from_id)
            logger.warning(f"Key exchange from {sender} failed: {e}")
            await self._notice(f"Could not establish a session key with {sender}")
        except SessionError as e:
            logger.warning(f"Ignoring key exchange: {e}")

    async def _handle_chat(self, envelope: Envelope) -> None:
        sender_id = envelope.from_id
        sender = self.context.display_name(sender_id)

        if envelope.to_id != self.context.uid:
            logger.warning(f"Ignoring chat addressed to {short_id(envelope.to_id or '')}")
            return

        key = self.context.keys.inbound(sender_id)
        try:
            if key is None:
                raise DecryptionFailed(
                    f"No session key for sender {short_id(sender_id)}", {"from": sender_id}
                )
            plaintext = crypto.decrypt(envelope.content, key)
        except DecryptionFailed as e:
            logger.warning(f"Failed to decrypt message from {sender}: {e}")
            await self._emit(self.on_message, ChatMessage.failed(sender, sender_id, envelope.timestamp))
            return

        await self._emit(
            self.on_message, ChatMessage.received(sender, plaintext, sender_id, envelope.timestamp)
        )
