"""
Pastewire - Plain line console.

Created by orpheus497

A line-oriented alternative to the Textual UI, for terminals where a full
screen application is unwanted (or for piping envelopes through scripts).

Commands:
    /start            start a session and print the offer envelope
    /accept           paste an envelope, finish with an empty line
    /status           show the session status
    /rotate           rotate the session key
    /quit             close the session and exit
    /send <text>      send a message (plain text without a slash also sends)
"""

import asyncio
import logging
from typing import List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .errors import PastewireError
from .session import Session, SessionEvent, SessionEventType
from .utils import format_fingerprint, format_timestamp

logger = logging.getLogger(__name__)

HELP_TEXT = """Commands: /start, /accept (paste envelope, end with an empty line),
/send <text> or just type, /status, /rotate, /quit"""


class PlainConsole:
    """Rich-rendered line console driving one Session."""

    def __init__(self, session: Session, console: Optional[Console] = None):
        self.session = session
        self.console = console or Console()
        self.running = False
        self._unsubscribe = session.subscribe(self._on_event)

    def _on_event(self, event: SessionEvent) -> None:
        data = event.data
        if event.type == SessionEventType.ENVELOPE_READY:
            self.console.print(
                Panel(
                    Text(data["text"]),
                    title=f"Your {data['kind']}: copy everything inside this box to the other side",
                    border_style="red",
                )
            )
        elif event.type == SessionEventType.MESSAGE_RECEIVED:
            line = Text()
            line.append("Peer", style="yellow")
            line.append(f" ({format_timestamp(event.timestamp)}): ", style="dim")
            line.append(data["text"], style=None if data["ok"] else "red")
            self.console.print(line)
        elif event.type == SessionEventType.CHANNEL_OPEN:
            self.console.print("[green]Connected to peer[/]")
        elif event.type == SessionEventType.KEY_ESTABLISHED:
            self.console.print(f"[green]Encryption active[/] (key {format_fingerprint(data['fingerprint'])})")
        elif event.type == SessionEventType.KEY_ROTATED:
            self.console.print(f"[green]Key rotated to v{data['version']}[/] (key {format_fingerprint(data['fingerprint'])})")
        elif event.type == SessionEventType.CHANNEL_CLOSED:
            self.console.print("[yellow]Channel closed. Restart for a new session.[/]")
        elif event.type == SessionEventType.ERROR:
            self.console.print(Text(f"Error: {data['message']}. {data.get('hint', '')}", style="red"))

    async def _read_line(self, prompt: str = "") -> str:
        try:
            return await asyncio.to_thread(self.console.input, prompt)
        except EOFError:
            return "/quit"

    async def _read_block(self) -> str:
        lines: List[str] = []
        while True:
            line = await self._read_line()
            if not line.strip():
                break
            lines.append(line)
        return "\n".join(lines)

    def _print_status(self) -> None:
        status = self.session.status()
        table = Table(show_header=False, box=None)
        table.add_column(style="dim")
        table.add_column()
        table.add_row("Phase", status.phase.name)
        table.add_row("Role", status.role.value)
        table.add_row("Envelope", status.variant.value)
        table.add_row("Channel", status.channel_state.value if status.channel_state else "-")
        table.add_row("Encrypted", "yes" if status.encrypted else "no")
        if status.encrypted:
            table.add_row("Key", f"v{status.key_version} {format_fingerprint(status.key_fingerprint)}")
        table.add_row("In phase", f"{status.time_in_phase:.0f}s after {status.transitions} transitions")
        if status.error:
            table.add_row("Last error", Text(status.error, style="red"))
        self.console.print(table)

    async def handle(self, line: str) -> bool:
        """Run one command line. Returns False when the console should stop."""
        command, _, argument = line.strip().partition(" ")

        try:
            if command == "/quit":
                return False
            elif command == "/start":
                await self.session.create_session()
            elif command == "/accept":
                self.console.print("[dim]Paste the envelope, then an empty line:[/]")
                answer = await self.session.receive_envelope(await self._read_block())
                if answer is None:
                    self.console.print("Answer applied, waiting for the peer to connect")
            elif command == "/status":
                self._print_status()
            elif command == "/rotate":
                await self.session.rotate_key()
            elif command == "/help":
                self.console.print(HELP_TEXT)
            elif command == "/send":
                await self._send(argument)
            elif command.startswith("/"):
                self.console.print(f"Unknown command {command}. {HELP_TEXT}")
            elif line.strip():
                await self._send(line.strip())
        except PastewireError as e:
            logger.warning(f"Console command {command} failed: {e}")
            self.console.print(Text(f"{e.message}. {e.hint}.", style="red"))

        return True

    async def _send(self, text: str) -> None:
        if not text:
            return
        await self.session.send(text)
        line = Text()
        line.append("You", style="cyan")
        line.append(": ")
        line.append(text)
        self.console.print(line)

    async def run(self) -> None:
        """Read and run commands until /quit or end of input."""
        self.running = True
        self.console.print(HELP_TEXT)
        try:
            while self.running:
                line = await self._read_line("> ")
                self.running = await self.handle(line)
        finally:
            self._unsubscribe()
            await self.session.close()
