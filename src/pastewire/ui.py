"""
Pastewire - Textual-based terminal user interface.

Created by orpheus497
"""

import logging
from typing import Optional

from rich.markup import escape
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Container, Horizontal, ScrollableContainer, Vertical
from textual.message import Message
from textual.widgets import Button, Footer, Header, Input, Label, TextArea

from .config import Config
from .constants import APP_NAME, UI_MAX_MESSAGE_HISTORY, UI_NOTIFICATION_TIMEOUT
from .errors import PastewireError
from .session import Session, SessionEvent, SessionEventType, SessionStatus
from .utils import format_fingerprint, format_timestamp

logger = logging.getLogger(__name__)


def format_chat_line(sender: str, text: str, timestamp: str, ok: bool = True) -> str:
    """Render one chat line as Rich markup; message text is escaped."""
    colour = "cyan" if sender == "You" else "yellow"
    body = escape(text) if ok else f"[red]{escape(text)}[/]"
    return f"[{colour}]{sender}[/] ([dim]{format_timestamp(timestamp)}[/]): {body}"


def format_status(status: SessionStatus, show_fingerprint: bool = True) -> str:
    """Render the session status line as Rich markup."""
    line = escape(status.describe())
    if show_fingerprint and status.key_fingerprint:
        line += f"  [dim]key {format_fingerprint(status.key_fingerprint)}[/]"
    colour = "green" if status.encrypted else "#ff4444"
    return f"[{colour}]●[/] {line}"


class SessionUpdate(Message):
    """Posted for every SessionEvent so widgets update on the UI loop."""

    def __init__(self, event: SessionEvent) -> None:
        super().__init__()
        self.event = event


class ChatView(ScrollableContainer):
    """Chat message view."""

    def __init__(self, max_messages: int = UI_MAX_MESSAGE_HISTORY):
        super().__init__()
        self.max_messages = max_messages

    def add_line(self, markup: str) -> None:
        """Append a line and drop the oldest beyond the history limit."""
        self.mount(Label(markup))
        overflow = len(self.children) - self.max_messages
        for child in list(self.children)[: max(overflow, 0)]:
            child.remove()
        self.scroll_end(animate=False)


class PastewireApp(App):
    """Main Pastewire application with Textual UI."""

    TITLE = APP_NAME

    CSS = """
    Screen {
        background: #000000;
    }

    Label {
        color: #cccccc;
    }

    #main-container {
        layout: horizontal;
        height: 100%;
        background: #000000;
    }

    #negotiation-panel {
        width: 60;
        border-right: solid #8b0000;
        background: #0a0a0a;
        padding: 0 1;
    }

    #chat-panel {
        width: 1fr;
        background: #000000;
    }

    .section-header {
        color: #ff4444;
        text-style: bold;
        margin-top: 1;
    }

    TextArea {
        height: 1fr;
        background: #0a0a0a;
        border: solid #444444;
    }

    TextArea:focus {
        border: solid #8b0000;
    }

    .button-row {
        height: auto;
        align: center middle;
    }

    Button {
        margin: 0 1;
        background: #2a0a0a;
        color: #ff4444;
        border: solid #8b0000;
    }

    Button:hover {
        background: #8b0000;
        color: #ffffff;
    }

    Button.-primary {
        background: #8b0000;
        color: #ffffff;
    }

    #session-status {
        background: #1a1a1a;
        padding: 1;
        width: 100%;
    }

    ChatView {
        height: 1fr;
        border-bottom: solid #8b0000;
        background: #000000;
    }

    #message-input-container {
        height: 3;
        dock: bottom;
        background: #0a0a0a;
    }

    #message-input {
        width: 1fr;
        background: #0a0a0a;
        border: solid #444444;
    }

    Header {
        background: #1a1a1a;
        color: #ff4444;
    }

    Footer {
        background: #1a1a1a;
        color: #cccccc;
    }
    """

    BINDINGS = [
        Binding("ctrl+n", "start_session", "Start Session"),
        Binding("ctrl+a", "accept_envelope", "Accept Envelope"),
        Binding("ctrl+y", "copy_envelope", "Copy Envelope"),
        Binding("ctrl+r", "rotate_key", "Rotate Key"),
        Binding("ctrl+q", "quit", "Quit"),
    ]

    def __init__(self, session: Session, config: Optional[Config] = None):
        super().__init__()
        self.session = session
        self.config = config
        self.show_fingerprint = config.get("ui", "show_key_fingerprint", True) if config else True
        self.max_messages = config.get("ui", "max_messages", UI_MAX_MESSAGE_HISTORY) if config else UI_MAX_MESSAGE_HISTORY
        self._unsubscribe = None

    def compose(self) -> ComposeResult:
        """Compose the main application layout."""
        yield Header()
        with Container(id="main-container"):
            with Vertical(id="negotiation-panel"):
                yield Label("Your envelope (copy to the other side)", classes="section-header")
                yield TextArea(id="outbound-envelope", read_only=True)
                with Horizontal(classes="button-row"):
                    yield Button("Start Session", variant="primary", id="start-btn")
                    yield Button("Copy", id="copy-btn")
                yield Label("Their envelope (paste here)", classes="section-header")
                yield TextArea(id="inbound-envelope")
                with Horizontal(classes="button-row"):
                    yield Button("Accept Envelope", variant="primary", id="accept-btn")
                    yield Button("Rotate Key", id="rotate-btn")
            with Vertical(id="chat-panel"):
                yield Label("", id="session-status")
                yield ChatView(self.max_messages)
                with Horizontal(id="message-input-container"):
                    yield Input(placeholder="Type a message...", id="message-input")
                    yield Button("Send", variant="primary", id="send-btn")
        yield Footer()

    def on_mount(self) -> None:
        """Subscribe to the session and show the initial status."""
        self._unsubscribe = self.session.subscribe(lambda event: self.post_message(SessionUpdate(event)))
        self._refresh_status()

    def _refresh_status(self) -> None:
        status_label = self.query_one("#session-status", Label)
        status_label.update(format_status(self.session.status(), self.show_fingerprint))

    def _report(self, error: PastewireError) -> None:
        logger.warning(f"User action failed: {error}")
        self.notify(f"{error.message}. {error.hint}.", severity="error", timeout=UI_NOTIFICATION_TIMEOUT * 2)
        self._refresh_status()

    def on_session_update(self, message: SessionUpdate) -> None:
        """Reflect one session event in the widgets."""
        event = message.event
        data = event.data
        chat_view = self.query_one(ChatView)

        if event.type == SessionEventType.ENVELOPE_READY:
            self.query_one("#outbound-envelope", TextArea).load_text(data["text"])
            self.notify(f"Your {data['kind']} is ready, copy it to the other side", severity="information")
        elif event.type == SessionEventType.MESSAGE_SENT:
            chat_view.add_line(format_chat_line("You", data["text"], event.timestamp))
        elif event.type == SessionEventType.MESSAGE_RECEIVED:
            chat_view.add_line(format_chat_line("Peer", data["text"], event.timestamp, data["ok"]))
        elif event.type == SessionEventType.KEY_ESTABLISHED:
            self.notify("End-to-end encryption active", severity="information")
        elif event.type == SessionEventType.KEY_ROTATED:
            self.notify(f"Session key rotated to v{data['version']}", severity="information")
        elif event.type == SessionEventType.CHANNEL_OPEN:
            self.notify("Connected to peer", severity="information")
            self.query_one("#message-input", Input).focus()
        elif event.type == SessionEventType.CHANNEL_CLOSED:
            self.notify("Channel closed. Restart the application for a new session.", severity="warning")
        elif event.type == SessionEventType.ERROR:
            self.notify(f"{data['message']}. {data.get('hint', '')}", severity="error")

        self._refresh_status()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        """Dispatch button presses to actions."""
        if event.button.id == "start-btn":
            self.action_start_session()
        elif event.button.id == "copy-btn":
            self.action_copy_envelope()
        elif event.button.id == "accept-btn":
            self.action_accept_envelope()
        elif event.button.id == "rotate-btn":
            self.action_rotate_key()
        elif event.button.id == "send-btn":
            self._send_current_message()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        """Handle message input submission."""
        if event.input.id == "message-input":
            self._send_current_message()

    def action_start_session(self) -> None:
        """Create the offer."""
        self.run_worker(self._start_session(), group="negotiation")

    async def _start_session(self) -> None:
        try:
            await self.session.create_session()
        except PastewireError as e:
            self._report(e)

    def action_accept_envelope(self) -> None:
        """Apply the pasted envelope."""
        text = self.query_one("#inbound-envelope", TextArea).text
        if not text.strip():
            self.notify("Paste the other side's envelope first", severity="warning")
            return
        self.run_worker(self._accept_envelope(text), group="negotiation")

    async def _accept_envelope(self, text: str) -> None:
        try:
            answer = await self.session.receive_envelope(text)
        except PastewireError as e:
            self._report(e)
            return

        self.query_one("#inbound-envelope", TextArea).load_text("")
        if answer is None:
            self.notify("Answer applied, waiting for the peer to connect", severity="information")

    def action_copy_envelope(self) -> None:
        """Copy the outbound envelope to the clipboard."""
        text = self.query_one("#outbound-envelope", TextArea).text
        if not text:
            self.notify("Nothing to copy yet", severity="warning")
            return
        self.copy_to_clipboard(text)
        self.notify("Envelope copied", severity="information")

    def action_rotate_key(self) -> None:
        """Replace the session key."""
        self.run_worker(self._rotate_key())

    async def _rotate_key(self) -> None:
        try:
            await self.session.rotate_key()
        except PastewireError as e:
            self._report(e)

    def _send_current_message(self) -> None:
        message_input = self.query_one("#message-input", Input)
        content = message_input.value.strip()
        if not content:
            return
        message_input.value = ""
        self.run_worker(self._send(content))

    async def _send(self, content: str) -> None:
        try:
            await self.session.send(content)
        except PastewireError as e:
            self._report(e)

    async def action_quit(self) -> None:
        """Close the session and exit."""
        if self._unsubscribe is not None:
            self._unsubscribe()
        await self.session.close()
        self.exit()
