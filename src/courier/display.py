"""
Courier - Terminal display.

Renders conversation lines, the peer list and connection status with
rich. Everything that originates from another participant goes through
sanitize_for_display first, and rich markup in it is escaped.
"""

from typing import Iterable, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.text import Text

from .constants import MAX_TEXT_MESSAGE_SIZE
from .message import ChatMessage, MessageState
from .sanitization import sanitize_for_display, sanitize_username
from .session import KnownPeer
from .utils import format_timestamp, short_id

STYLES = {
    MessageState.SENT: "bold cyan",
    MessageState.RECEIVED: "bold green",
    MessageState.FAILED: "bold red",
    MessageState.SYSTEM: "dim italic",
}


class ConsoleDisplay:
    """Console renderer for one participant."""

    def __init__(self, console: Optional[Console] = None, max_text_length: int = MAX_TEXT_MESSAGE_SIZE):
        self.console = console or Console()
        self.max_text_length = max_text_length

    def render_message(self, message: ChatMessage) -> Text:
        """Build the rich Text for one conversation line."""
        style = STYLES[message.state]

        if message.state == MessageState.SYSTEM:
            return Text(f"* {sanitize_for_display(message.content, self.max_text_length)}", style=style)

        text = Text()
        text.append(f"[{format_timestamp(message.timestamp)}] ", style="dim")
        text.append(sanitize_username(message.sender), style=style)
        text.append(": ")
        if message.state == MessageState.FAILED:
            text.append(message.content, style="red italic")
        else:
            text.append(sanitize_for_display(message.content, self.max_text_length))
            if len(message.content) > self.max_text_length:
                text.append(" (truncated)", style="dim")
        return text

    def show_message(self, message: ChatMessage) -> None:
        self.console.print(self.render_message(message))

    def render_peers(self, peers: Iterable[KnownPeer], selected: Optional[str] = None) -> Table:
        table = Table(title="Online", show_header=True, header_style="bold")
        table.add_column("User")
        table.add_column("Id", style="dim")
        table.add_column("Status")

        for peer in peers:
            name = escape(sanitize_username(peer.username))
            if peer.id == selected:
                name = f"[bold]{name}[/bold] *"
            if peer.messaging_enabled:
                status = "[green]online[/green]"
            else:
                status = "[red]key rejected[/red]"
            table.add_row(name, short_id(peer.id), status)

        return table

    def show_peers(self, peers: Iterable[KnownPeer], selected: Optional[str] = None) -> None:
        self.console.print(self.render_peers(peers, selected))

    def show_status(self, connected: bool) -> None:
        if connected:
            self.console.print("[bold green]Connected[/bold green]")
        else:
            self.console.print("[bold red]Disconnected[/bold red]")

    def show_error(self, text: str) -> None:
        self.console.print(Text(text, style="bold red"))
