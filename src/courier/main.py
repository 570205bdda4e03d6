"""
Courier - Main entry point for the chat client.

Reads lines from stdin:

  /users            list online participants
  /select <name>    choose the chat partner (name, id or id prefix)
  /help             list commands
  /quit             disconnect and exit
  anything else     sent, encrypted, to the selected partner

Other lines starting with "/" are rejected as unknown commands.
"""

import argparse
import asyncio
import logging
import sys

from rich.markup import escape

from . import __version__
from .client import ChatClient
from .config import Config
from .display import ConsoleDisplay
from .errors import ConfigError, CourierError, CryptoUnavailable, NetworkError
from .logging_setup import setup_logging
from .sanitization import sanitize_username

logger = logging.getLogger(__name__)

HELP_TEXT = "Commands: /users, /select <name|id>, /help, /quit"


async def handle_line(client: ChatClient, display: ConsoleDisplay, line: str) -> bool:
    """
    Run one line of user input.

    Lines starting with "/" are commands and are never sent as chat.

    Returns:
        False when the user asked to quit
    """
    line = line.strip()
    if not line:
        return True

    if not line.startswith("/"):
        await client.send_chat(line)
        return True

    parts = line.split(maxsplit=1)
    command = parts[0]
    argument = parts[1] if len(parts) > 1 else ""

    if command == "/quit":
        return False

    if command == "/help":
        display.console.print(HELP_TEXT)
        return True

    selected = client.context.selected_peer_id if client.context else None

    if command == "/users":
        display.show_peers(client.peers, selected)
        return True

    if command == "/select":
        peer = client.context.find_peer(argument) if client.context and argument else None
        if peer is None:
            display.show_error(f"No such user: {argument}")
            return True
        await client.select_peer(peer.id)
        name = escape(sanitize_username(peer.username))
        display.console.print(f"Chatting with [bold]{name}[/bold] (end-to-end encrypted)")
        return True

    display.show_error(f"Unknown command: {command}")
    display.console.print(HELP_TEXT)
    return True


async def run_client(args: argparse.Namespace, config: Config, display: ConsoleDisplay) -> int:
    client = ChatClient(args.username, args.host, args.port, config)
    client.on_message = display.show_message
    client.on_peers = lambda peers: display.show_peers(
        peers, client.context.selected_peer_id if client.context else None
    )
    client.on_status = display.show_status

    try:
        await client.connect()
        await client.wait_until_connected()
    except CryptoUnavailable as e:
        display.show_error(f"Cannot create identity keys: {e.message}")
        return 1
    except NetworkError as e:
        display.show_error(f"Failed to connect: {e.message}")
        await client.disconnect()
        return 1

    display.console.print(HELP_TEXT)
    loop = asyncio.get_running_loop()

    try:
        while client.connected:
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                break
            if not client.connected:
                break
            try:
                if not await handle_line(client, display, line):
                    break
            except CourierError as e:
                logger.debug(f"Command failed: {e}")
                display.show_error(e.message)
    finally:
        await client.disconnect()

    return 0


def main():
    """Main entry point for the Courier client."""
    parser = argparse.ArgumentParser(
        description="Courier - end-to-end encrypted chat through an untrusted relay",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  courier --username alice                    # Relay from config (default 127.0.0.1:8080)
  courier --username bob --host relay.lan --port 9000
        """,
    )
    parser.add_argument("--version", action="version", version=f"Courier {__version__}")
    parser.add_argument("--username", type=str, required=True, help="Display name to announce")
    parser.add_argument("--host", type=str, default=None, help="Relay host")
    parser.add_argument("--port", type=int, default=None, help="Relay port")
    parser.add_argument("--config", type=str, default=None, help="Path to config.toml")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    try:
        config = Config(args.config)
    except ConfigError as e:
        print(f"Configuration error: {e.message}", file=sys.stderr)
        sys.exit(2)

    setup_logging(config, debug=args.debug)
    display = ConsoleDisplay(max_text_length=config.get("limits", "max_text_length"))

    try:
        sys.exit(asyncio.run(run_client(args, config, display)))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
