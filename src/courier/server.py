"""
Courier - Relay server using asyncio.

The relay tracks connected identities, broadcasts the presence list and
forwards directed frames between participants. It never holds a session
key and never looks inside a keyExchange or chat payload: directed frames
are written to the recipient byte for byte as they arrived.
"""

import asyncio
import contextlib
import logging
import signal
import sys
from dataclasses import dataclass
from typing import Dict, List, Optional

from .config import Config
from .constants import REGISTRATION_TIMEOUT
from .errors import ErrorCode, ProtocolError, RelayError
from .protocol import MessageType, PeerIdentity, Protocol
from .utils import short_id

logger = logging.getLogger(__name__)


@dataclass
class RelayClient:
    """A registered connection."""

    id: str
    username: str
    public_key: str
    writer: asyncio.StreamWriter

    def identity(self) -> PeerIdentity:
        return PeerIdentity(self.id, self.username, self.public_key)


class RelayServer:
    """Untrusted relay between Courier participants."""

    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        config: Optional[Config] = None,
    ):
        """
        Initialize relay.

        Args:
            host: Bind address (default: relay.host from config)
            port: Bind port, 0 for an ephemeral port (default: relay.port)
            config: Loaded configuration (default: Config())
        """
        self.config = config or Config()
        self.host = host or self.config.get("relay", "host")
        self.port = port if port is not None else self.config.get("relay", "port")
        self.registration_timeout = REGISTRATION_TIMEOUT
        self.max_frame_size = self.config.get("limits", "max_frame_size")

        self.server: Optional[asyncio.AbstractServer] = None
        self.running = False

        # Registered clients in registration order
        self.clients: Dict[str, RelayClient] = {}
        self.client_lock = asyncio.Lock()

    @property
    def bound_port(self) -> Optional[int]:
        """Actual listening port, useful when started with port 0."""
        if self.server is None or not self.server.sockets:
            return None
        return self.server.sockets[0].getsockname()[1]

    async def start(self) -> None:
        """
        Start listening.

        Raises:
            RelayError: If the socket cannot be bound
        """
        try:
            self.server = await asyncio.start_server(
                self._handle_client, self.host, self.port, limit=self.max_frame_size + 1
            )
        except OSError as e:
            raise RelayError(
                ErrorCode.E801_RELAY_START_FAILED,
                f"Failed to start relay on {self.host}:{self.port}: {e}",
                {"host": self.host, "port": self.port},
            ) from e

        self.running = True
        logger.info(f"Relay listening on {self.host}:{self.bound_port}")

    async def stop(self) -> None:
        """Close every client connection and the listening socket."""
        logger.info("Stopping relay...")
        self.running = False

        if self.server:
            self.server.close()

        async with self.client_lock:
            writers = [client.writer for client in self.clients.values()]
            self.clients.clear()

        for writer in writers:
            writer.close()
            with contextlib.suppress(ConnectionError, OSError):
                await writer.wait_closed()

        if self.server:
            await self.server.wait_closed()
            self.server = None

        logger.info("Relay stopped")

    async def run(self) -> None:
        """Serve until stopped or interrupted."""
        try:
            while self.running:
                await asyncio.sleep(1)
        finally:
            await self.stop()

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        """
        Lifecycle of one connection: register, then forward until EOF.

        The first frame must be a valid register frame or the connection
        is closed without a reply.
        """
        address = writer.get_extra_info("peername")
        logger.debug(f"Connection from {address}")

        client: Optional[RelayClient] = None
        try:
            client = await self._register(reader, writer)
            if client is None:
                return

            while self.running:
                try:
                    line = await reader.readline()
                except ValueError as e:
                    # readline already discarded the oversized line
                    logger.warning(f"Dropping oversized frame from {short_id(client.id)}: {e}")
                    continue

                if not line:
                    break

                line = line.strip()
                if line:
                    await self._route(client, line)

        except (ConnectionError, OSError) as e:
            logger.debug(f"Connection error from {address}: {e}")
        finally:
            if client is not None:
                await self._unregister(client)

            writer.close()
            with contextlib.suppress(ConnectionError, OSError):
                await writer.wait_closed()

    async def _register(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> Optional[RelayClient]:
        try:
            line = await asyncio.wait_for(reader.readline(), timeout=self.registration_timeout)
        except asyncio.TimeoutError:
            logger.info("Registration timeout, closing connection")
            return None
        except ValueError as e:
            logger.warning(f"Oversized registration frame: {e}")
            return None

        try:
            envelope = Protocol.unpack(line.strip(), self.max_frame_size)
        except ProtocolError as e:
            logger.warning(f"Rejecting connection with invalid first frame: {e}")
            return None

        if envelope.type != MessageType.REGISTER:
            logger.warning(f"Rejecting connection: first frame was {envelope.type.value}")
            return None

        client = RelayClient(envelope.from_id, envelope.content, envelope.public_key, writer)

        async with self.client_lock:
            replaced = self.clients.pop(client.id, None)
            self.clients[client.id] = client

        if replaced is not None:
            logger.info(f"Id {short_id(client.id)} re-registered, dropping older connection")
            replaced.writer.close()

        logger.info(f"Client registered: {client.username} ({short_id(client.id)})")

        await self._write(client, Protocol.pack(Protocol.create_welcome()))
        await self._broadcast_user_list()
        return client

    async def _unregister(self, client: RelayClient) -> None:
        async with self.client_lock:
            if self.clients.get(client.id) is not client:
                return
            del self.clients[client.id]

        logger.info(f"Client unregistered: {client.username} ({short_id(client.id)})")
        await self._broadcast_user_list()

    async def _route(self, sender: RelayClient, line: bytes) -> None:
        """Forward a directed frame verbatim; drop everything else."""
        try:
            envelope = Protocol.unpack(line, self.max_frame_size)
        except ProtocolError as e:
            logger.warning(f"Invalid frame from {short_id(sender.id)}: {e}")
            return

        if not envelope.is_directed:
            logger.warning(f"Dropping {envelope.type.value} frame from {short_id(sender.id)}")
            return

        async with self.client_lock:
            recipient = self.clients.get(envelope.to_id)

        if recipient is None:
            logger.debug(f"Recipient {short_id(envelope.to_id)} not connected, dropping {envelope.type.value}")
            return

        await self._write(recipient, line + b"\n")

    async def _broadcast_user_list(self) -> None:
        async with self.client_lock:
            clients: List[RelayClient] = list(self.clients.values())

        try:
            frame = Protocol.pack(
                Protocol.create_user_list([c.identity() for c in clients]), self.max_frame_size
            )
        except ProtocolError as e:
            logger.error(f"User list for {len(clients)} clients not sent: {e}")
            return

        for client in clients:
            await self._write(client, frame)

    async def _write(self, client: RelayClient, data: bytes) -> None:
        try:
            client.writer.write(data)
            await client.writer.drain()
        except (ConnectionError, OSError) as e:
            logger.debug(f"Error writing to {short_id(client.id)}: {e}")


async def async_main():
    """Async main entry point for the relay."""
    import argparse

    from .logging_setup import setup_logging

    parser = argparse.ArgumentParser(description="Courier relay - forwards encrypted envelopes")
    parser.add_argument("--host", type=str, default=None, help="Bind address (default: from config)")
    parser.add_argument("--port", type=int, default=None, help="Bind port (default: 8080)")
    parser.add_argument("--config", type=str, default=None, help="Path to config.toml")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    config = Config(args.config)
    setup_logging(config, debug=args.debug)

    relay = RelayServer(args.host, args.port, config)
    try:
        await relay.start()
    except RelayError as e:
        logger.error(str(e))
        sys.exit(1)

    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(signum, lambda: setattr(relay, "running", False))

    await relay.run()


def main():
    """Main entry point - runs async_main."""
    asyncio.run(async_main())


if __name__ == "__main__":
    main()
