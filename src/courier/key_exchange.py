"""
Courier - Session key exchange.

Establishment is optimistic and one-directional:

Initiator (first message to a peer with no key):
    NO_KEY -> KEY_PENDING: generate a session key, install it locally
    wrap it with the peer's published identity key, send keyExchange
    KEY_PENDING -> ESTABLISHED once the frame is handed to the relay

Responder (keyExchange addressed to us):
    NO_KEY -> ESTABLISHED: unwrap with our private key and install it
    under the sender, replacing whatever was there

There is no acknowledgment. A chat sent before the peer installs the key
arrives undecryptable and is reported as such on the receiving side.
"""

import logging
from typing import Awaitable, Callable

from .crypto import SessionKey, b64encode
from .errors import ErrorCode, SessionError
from .identity import PublicKey
from .protocol import Envelope, MessageType, Protocol
from .session import SessionContext
from .utils import short_id

logger = logging.getLogger(__name__)

SendFrame = Callable[[Envelope], Awaitable[None]]


class KeyExchangeProtocol:
    """Runs both sides of the handshake for one SessionContext."""

    def __init__(self, context: SessionContext, send: SendFrame):
        """
        Args:
            context: Session state of the current connection
            send: Coroutine that writes a frame to the relay
        """
        self.context = context
        self.send = send
        context.keys.initiator = self.initiate

    async def initiate(self, peer_id: str, peer_public_key: PublicKey) -> SessionKey:
        """
        Create a session key for a peer and ship it.

        The key is installed once it has been wrapped and before the frame
        is sent, so local encryption can start immediately. If wrapping
        fails nothing is installed. If sending fails the key stays
        installed and the NetworkError propagates.

        Returns:
            The newly generated key
        """
        store = self.context.keys
        key = SessionKey.generate()
        wrapped = b64encode(peer_public_key.wrap(key))
        store.begin_outbound(peer_id, key)

        frame = Protocol.create_key_exchange(self.context.uid, peer_id, wrapped)

        await self.send(frame)
        store.mark_established(peer_id)

        logger.info(f"Sent session key to {self.context.display_name(peer_id)}")
        return key

    def respond(self, envelope: Envelope) -> SessionKey:
        """
        Install the session key carried by a keyExchange frame.

        Raises:
            SessionError: If the frame is not a keyExchange addressed to us
            UnwrapFailed: If the wrapped key cannot be recovered
        """
        if envelope.type != MessageType.KEY_EXCHANGE:
            raise SessionError(
                ErrorCode.E002_INVALID_ARGUMENT,
                f"Not a key exchange frame: {envelope.type.value}",
            )

        if envelope.to_id != self.context.uid:
            raise SessionError(
                ErrorCode.E002_INVALID_ARGUMENT,
                f"Key exchange addressed to {short_id(envelope.to_id or '')}, not us",
                {"to": envelope.to_id},
            )

        key = self.context.identity.unwrap_session_key(envelope.content)
        self.context.keys.install(envelope.from_id, key)

        logger.info(f"Session key established with {self.context.display_name(envelope.from_id)}")
        return key
