"""
Pastewire - UI tests.

Created by orpheus497

Tests for chat line and status formatting, the line console commands and
a headless run of the Textual application.
"""

import asyncio
import io

import pytest
from rich.console import Console
from textual.widgets import TextArea

from conftest import make_memory_pair, make_slow_session
from pastewire.channel import ChannelState
from pastewire.codec import EnvelopeVariant
from pastewire.console import PlainConsole
from pastewire.negotiation import NegotiationPhase, Role
from pastewire.session import SessionEventType, SessionStatus
from pastewire.ui import PastewireApp, format_chat_line, format_status


def _console() -> Console:
    return Console(file=io.StringIO(), width=120, color_system=None)


def test_chat_line_escapes_markup():
    """Test that peer text cannot inject Rich markup."""
    line = format_chat_line("Peer", "[bold]not bold[/bold]", "2025-01-01T00:00:00+00:00")
    assert "\\[bold]" in line
    assert line.startswith("[yellow]Peer[/]")


def test_chat_line_failure_is_highlighted():
    """Test that undecryptable messages are shown in red."""
    line = format_chat_line("Peer", "[MESSAGE COULD NOT BE DECRYPTED: x]", "2025-01-01T00:00:00+00:00", ok=False)
    assert "[red]" in line


def test_status_line():
    """Test the status line for encrypted and unencrypted sessions."""
    encrypted = SessionStatus(
        phase=NegotiationPhase.CONNECTED,
        role=Role.INITIATOR,
        variant=EnvelopeVariant.KEYED,
        encrypted=True,
        key_fingerprint="0123456789abcdef",
        key_version=1,
        channel_state=ChannelState.OPEN,
    )
    line = format_status(encrypted)
    assert "as initiator" in line
    assert "0123 4567 89ab cdef" in line
    assert "[green]" in line

    assert "0123" not in format_status(encrypted, show_fingerprint=False)

    idle = SessionStatus(NegotiationPhase.IDLE, Role.UNINITIATED, EnvelopeVariant.KEYED, encrypted=False)
    assert "not encrypted" in format_status(idle)


class TestPlainConsole:
    """Test line console commands."""

    def test_status_and_help(self):
        """Test informational commands."""

        async def scenario():
            alice, _, _, _ = make_memory_pair()
            console = _console()
            plain = PlainConsole(alice, console)

            assert await plain.handle("/status") is True
            assert await plain.handle("/help") is True
            assert await plain.handle("/bogus") is True
            output = console.file.getvalue()

            assert "IDLE" in output
            assert "0 transitions" in output
            assert "Commands:" in output
            assert "Unknown command /bogus" in output

        asyncio.run(scenario())

    def test_start_prints_envelope(self):
        """Test that /start prints the offer envelope."""

        async def scenario():
            alice, _, _, _ = make_memory_pair()
            console = _console()
            plain = PlainConsole(alice, console)

            await plain.handle("/start")
            assert '"dhKey"' in console.file.getvalue()
            assert alice.phase is NegotiationPhase.AWAITING_ANSWER
            await alice.close()

        asyncio.run(scenario())

    def test_errors_are_reported(self):
        """Test that session errors print message and hint instead of raising."""

        async def scenario():
            alice, _, _, _ = make_memory_pair()
            console = _console()
            plain = PlainConsole(alice, console)

            assert await plain.handle("hello?") is True
            assert "No open channel yet" in console.file.getvalue()

        asyncio.run(scenario())

    def test_quit(self):
        """Test that /quit stops the console."""

        async def scenario():
            alice, _, _, _ = make_memory_pair()
            assert await PlainConsole(alice, _console()).handle("/quit") is False

        asyncio.run(scenario())


def test_app_start_session_shows_offer():
    """Test that starting a session in the app fills the outbound envelope."""

    async def scenario():
        alice, _, _, _ = make_memory_pair()
        app = PastewireApp(alice)

        async with app.run_test() as pilot:
            outbound = app.query_one("#outbound-envelope", TextArea)
            assert outbound.text == ""

            app.action_start_session()
            for _ in range(100):
                await pilot.pause(0.02)
                if outbound.text:
                    break

            assert '"dhKey"' in outbound.text
            assert alice.phase is NegotiationPhase.AWAITING_ANSWER

        await alice.close()

    asyncio.run(scenario())


def test_app_second_start_does_not_cancel_first():
    """Test that pressing Start twice keeps the first offer and reports the second."""

    async def scenario():
        alice, events = make_slow_session(gather_delay=0.1)
        app = PastewireApp(alice)

        async with app.run_test() as pilot:
            outbound = app.query_one("#outbound-envelope", TextArea)
            app.action_start_session()
            app.action_start_session()
            for _ in range(100):
                await pilot.pause(0.02)
                if outbound.text:
                    break

            assert '"dhKey"' in outbound.text
            assert alice.phase is NegotiationPhase.AWAITING_ANSWER
            assert len(events.of_type(SessionEventType.ENVELOPE_READY)) == 1

        await alice.close()

    asyncio.run(scenario())


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
