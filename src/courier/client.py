"""
Courier - Participant client for the relay using asyncio.

One ChatClient is one participant: it generates an identity, registers
with the relay, establishes session keys with peers on demand and
exchanges encrypted chat frames. All handlers run on the event loop of
the receive task, one frame at a time.
"""

import asyncio
import contextlib
import logging
from typing import Any, Callable, List, Optional

from . import crypto
from .config import Config
from .connection_fsm import ConnectionEvent, ConnectionState, ConnectionStateMachine
from .constants import DISCONNECTED_NOTICE
from .errors import CryptoUnavailable, ErrorCode, NetworkError, ProtocolError, SessionError
from .identity import IdentityKeyManager
from .key_exchange import KeyExchangeProtocol
from .message import ChatMessage
from .protocol import Envelope, Protocol
from .router import EnvelopeRouter
from .sanitization import sanitize_username
from .session import KnownPeer, SessionContext

logger = logging.getLogger(__name__)


class ChatClient:
    """Async relay client for one participant."""

    def __init__(
        self,
        username: str,
        host: Optional[str] = None,
        port: Optional[int] = None,
        config: Optional[Config] = None,
    ):
        """
        Initialize client.

        Args:
            username: Display name announced at registration
            host: Relay host (default: relay.host from config)
            port: Relay port (default: relay.port from config)
            config: Loaded configuration (default: Config())
        """
        self.config = config or Config()
        self.username = sanitize_username(username)
        self.host = host or self.config.get("relay", "host")
        self.port = port if port is not None else self.config.get("relay", "port")
        self.timeout = self.config.get("relay", "connect_timeout")
        self.max_frame_size = self.config.get("limits", "max_frame_size")
        self.max_text_length = self.config.get("limits", "max_text_length")

        self.reader: Optional[asyncio.StreamReader] = None
        self.writer: Optional[asyncio.StreamWriter] = None
        self.receive_task: Optional[asyncio.Task] = None
        self.write_lock = asyncio.Lock()

        self.fsm = ConnectionStateMachine()
        self.context: Optional[SessionContext] = None
        self.key_exchange: Optional[KeyExchangeProtocol] = None
        self.router: Optional[EnvelopeRouter] = None

        # Event sinks
        self.on_message: Optional[Callable[[ChatMessage], Any]] = None
        self.on_peers: Optional[Callable[[List[KnownPeer]], Any]] = None
        self.on_status: Optional[Callable[[bool], Any]] = None

        self.fsm.on_connected = lambda: self._notify_status(True)
        self.fsm.on_disconnected = lambda: self._notify_status(False)

    @property
    def connected(self) -> bool:
        return self.fsm.is_connected()

    @property
    def uid(self) -> Optional[str]:
        return self.context.uid if self.context else None

    def _notify_status(self, connected: bool) -> None:
        if self.on_status:
            self.on_status(connected)

    async def connect(self) -> None:
        """
        Create a fresh identity, open the relay stream and register.

        Returns once the register frame is written; the welcome frame
        moves the client to CONNECTED (see wait_until_connected).

        Raises:
            CryptoUnavailable: If no identity key pair can be generated
            NetworkError: If the relay cannot be reached
        """
        if self.fsm.get_state() in (ConnectionState.ERROR, ConnectionState.CLOSED):
            self.fsm.transition(ConnectionEvent.RESET)
        if not self.fsm.transition(ConnectionEvent.CONNECT_REQUESTED):
            raise SessionError(
                ErrorCode.E300_SESSION_ERROR, f"Cannot connect from state {self.fsm.get_state().name}"
            )

        identity = IdentityKeyManager(self.config.get("crypto", "rsa_key_size"))
        try:
            # RSA generation is CPU bound; keep the loop responsive
            await asyncio.get_running_loop().run_in_executor(None, identity.generate_identity_key_pair)
        except CryptoUnavailable as e:
            logger.error(f"Cannot establish identity: {e}")
            self.fsm.transition(ConnectionEvent.ERROR_OCCURRED, str(e))
            raise

        context = SessionContext(self.username, crypto.generate_uid(), identity)

        try:
            self.reader, self.writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port, limit=self.max_frame_size + 1),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            identity.discard()
            self.fsm.transition(ConnectionEvent.ERROR_OCCURRED, "Connection timeout")
            raise NetworkError(
                ErrorCode.E202_CONNECTION_TIMEOUT,
                f"Timed out connecting to relay {self.host}:{self.port}",
            ) from e
        except OSError as e:
            identity.discard()
            self.fsm.transition(ConnectionEvent.ERROR_OCCURRED, str(e))
            raise NetworkError(
                ErrorCode.E201_CONNECTION_FAILED,
                f"Failed to connect to relay {self.host}:{self.port}: {e}",
                {"host": self.host, "port": self.port},
            ) from e

        self.context = context
        self.key_exchange = KeyExchangeProtocol(context, self._send)
        self.router = EnvelopeRouter(context, self.key_exchange, self.fsm, self.max_frame_size)
        self.router.on_message = self._emit_message
        self.router.on_peers = self._emit_peers

        self.fsm.transition(ConnectionEvent.TRANSPORT_OPENED)
        logger.info(f"Connected to relay at {self.host}:{self.port} as {self.username}")

        try:
            await self._send(
                Protocol.create_register(context.uid, self.username, identity.export_public_key())
            )
        except NetworkError:
            await self._connection_lost()
            raise
        self.receive_task = asyncio.create_task(self._receive_loop())

    async def wait_until_connected(self, timeout: Optional[float] = None) -> None:
        """
        Wait for the relay's welcome.

        Raises:
            NetworkError: On timeout or if the connection drops first
        """
        deadline = asyncio.get_running_loop().time() + (timeout or self.timeout)
        while not self.fsm.is_connected():
            if not self.fsm.is_connecting():
                raise NetworkError(ErrorCode.E203_CONNECTION_CLOSED, "Connection closed during registration")
            if asyncio.get_running_loop().time() > deadline:
                raise NetworkError(ErrorCode.E202_CONNECTION_TIMEOUT, "Timed out waiting for welcome")
            await asyncio.sleep(0.01)

    async def _send(self, envelope: Envelope) -> None:
        """Write one frame to the relay."""
        if self.writer is None or self.writer.is_closing():
            raise NetworkError(ErrorCode.E203_CONNECTION_CLOSED, "Not connected to relay")

        data = Protocol.pack(envelope, self.max_frame_size)
        try:
            async with self.write_lock:
                self.writer.write(data)
                await self.writer.drain()
        except (ConnectionError, OSError) as e:
            raise NetworkError(ErrorCode.E204_SEND_FAILED, f"Failed to send frame: {e}") from e

    async def _receive_loop(self) -> None:
        """Read frames and dispatch each one to completion before the next."""
        logger.debug("Receive loop started")
        try:
            while True:
                try:
                    line = await self.reader.readline()
                except ValueError as e:
                    # readline already discarded the oversized line
                    logger.warning(f"Dropping oversized frame from relay: {e}")
                    continue
                except (ConnectionError, OSError) as e:
                    logger.warning(f"Relay connection error: {e}")
                    break

                if not line:
                    logger.warning("Relay closed connection")
                    break

                line = line.strip()
                if line:
                    await self.router.dispatch(line)
        except asyncio.CancelledError:
            raise
        finally:
            logger.debug("Receive loop ended")
            await self._connection_lost()

    async def _connection_lost(self) -> None:
        """Tear down after the stream ends; keys never outlive the connection."""
        if self.context is None:
            return

        self.context.destroy()
        self.context = None
        self.key_exchange = None
        self.router = None

        if self.writer is not None:
            self.writer.close()
            with contextlib.suppress(ConnectionError, OSError):
                await self.writer.wait_closed()
        self.writer = None
        self.reader = None

        if self.fsm.get_state() in (ConnectionState.CONNECTED, ConnectionState.REGISTERING):
            self.fsm.transition(ConnectionEvent.CONNECTION_LOST)
        await self._emit_message(ChatMessage.system(DISCONNECTED_NOTICE))

    async def disconnect(self) -> None:
        """Close the relay connection and discard all session state."""
        if self.fsm.get_state() not in (ConnectionState.DISCONNECTED, ConnectionState.CLOSED):
            self.fsm.transition(ConnectionEvent.CLOSE_REQUESTED)

        if self.receive_task and not self.receive_task.done():
            self.receive_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self.receive_task
        self.receive_task = None

        await self._connection_lost()

    def _require_context(self) -> SessionContext:
        if self.context is None or not self.fsm.is_connected():
            raise SessionError(ErrorCode.E303_NOT_CONNECTED, "Not connected to relay")
        return self.context

    @property
    def peers(self) -> List[KnownPeer]:
        return list(self.context.peers.values()) if self.context else []

    async def select_peer(self, peer_id: str) -> KnownPeer:
        """
        Choose the chat partner and make sure a session key exists.

        Raises:
            SessionError: If not connected, or the peer is unknown or disabled
        """
        context = self._require_context()
        peer = context.get_peer(peer_id)
        context.selected_peer_id = peer.id
        await context.keys.ensure(peer.id, peer.public_key)
        return peer

    async def send_chat(self, text: str, peer_id: Optional[str] = None) -> Optional[ChatMessage]:
        """
        Encrypt and send a message to a peer (default: the selected peer).

        Returns:
            The SENT ChatMessage, or None for blank input

        Raises:
            SessionError: If not connected or no usable peer
            ProtocolError: If the text is too long
            NetworkError: If the frame cannot be written
        """
        text = text.strip()
        if not text:
            return None

        if len(text) > self.max_text_length:
            raise ProtocolError(
                ErrorCode.E207_MESSAGE_TOO_LARGE,
                f"Message too long: {len(text)} > {self.max_text_length}",
                {"size": len(text), "max_size": self.max_text_length},
            )

        context = self._require_context()
        target = peer_id or context.selected_peer_id
        if target is None:
            raise SessionError(ErrorCode.E304_NO_PEER_SELECTED, "No peer selected")

        peer = context.get_peer(target)
        key = await context.keys.ensure(peer.id, peer.public_key)

        payload = crypto.encrypt(text, key)
        envelope = Protocol.create_chat(context.uid, peer.id, payload.encode())
        await self._send(envelope)

        message = ChatMessage.sent(context.username, text, peer.id, envelope.timestamp)
        await self._emit_message(message)
        return message

    async def _emit_message(self, message: ChatMessage) -> None:
        await self._call(self.on_message, message)

    async def _emit_peers(self, peers: List[KnownPeer]) -> None:
        await self._call(self.on_peers, peers)

    async def _call(self, callback: Optional[Callable], *args: Any) -> None:
        if callback is None:
            return
        try:
            result = callback(*args)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            logger.error(f"Error in event callback: {e}", exc_info=True)
