"""
Pastewire - Direct TCP connectivity tests.

Created by orpheus497

Tests for the connectivity descriptor text, candidate gathering and the
HELLO handshake between initiator and responder.
"""

import asyncio

import pytest

from conftest import make_loopback_connectivity
from pastewire.codec import DescriptorKind, SessionDescriptor
from pastewire.constants import LOCALHOST
from pastewire.errors import ChannelError, DecodeError, ErrorCode, ProtocolError
from pastewire.protocol import HELLO_READY, HELLO_REJECT, HELLO_WAIT, MessageType
from pastewire.transport import (
    SETUP_ACTIVE,
    SETUP_PASSIVE,
    Candidate,
    TcpConnectivity,
    parse_description,
    render_description,
)


class TestDescription:
    """Test descriptor text rendering and parsing."""

    def test_render_and_parse(self):
        """Test that a rendered description parses back to its parts."""
        candidates = [Candidate("192.168.1.20", 5050), Candidate(LOCALHOST, 5050)]
        sdp = render_description("sess", "tok", SETUP_PASSIVE, candidates)
        parsed = parse_description(sdp)

        assert parsed.session_id == "sess"
        assert parsed.token == "tok"
        assert parsed.setup == SETUP_PASSIVE
        assert parsed.candidates == candidates
        assert parsed.complete is True

    def test_incomplete_gathering_is_marked(self):
        """Test that an incomplete candidate list has no end marker."""
        sdp = render_description("sess", "tok", SETUP_PASSIVE, [], complete=False)
        assert "end-of-candidates" not in sdp
        assert parse_description(sdp).complete is False

    def test_ignores_unknown_lines(self):
        """Test that unrelated lines and CRLF endings are tolerated."""
        sdp = "v=0\r\nx=whatever\r\na=session:s\r\na=token:t\r\na=setup:active\r\na=foo:bar\r\n"
        parsed = parse_description(sdp)
        assert parsed.setup == SETUP_ACTIVE
        assert parsed.candidates == []

    @pytest.mark.parametrize("missing", ["session", "token", "setup"])
    def test_missing_attribute(self, missing):
        """Test that each required attribute is enforced."""
        lines = [f"a={name}:value" for name in ("session", "token", "setup") if name != missing]
        with pytest.raises(DecodeError) as exc_info:
            parse_description("\n".join(lines))
        assert exc_info.value.code == ErrorCode.E101_MALFORMED
        assert exc_info.value.details["attribute"] == missing

    @pytest.mark.parametrize(
        "line",
        ["a=candidate:10.0.0.1", "a=candidate:10.0.0.1 port", "a=candidate:10.0.0.1 70000", "a=candidate:bad_host! 5050"],
    )
    def test_bad_candidate(self, line):
        """Test that unusable candidate lines are rejected."""
        sdp = render_description("s", "t", SETUP_PASSIVE, []) + line + "\n"
        with pytest.raises(DecodeError):
            parse_description(sdp)


class TestValidation:
    """Test checks on remote descriptors."""

    def test_offer_needs_candidates(self):
        """Test that an offer without candidates cannot be dialed."""
        connectivity = TcpConnectivity()
        offer = SessionDescriptor(DescriptorKind.OFFER, render_description("s", "t", SETUP_PASSIVE, []))
        with pytest.raises(DecodeError):
            connectivity.validate_remote_description(offer)

    def test_answer_for_other_session(self):
        """Test that an answer for a different session is refused."""
        connectivity = TcpConnectivity()
        connectivity.session_id = "mine"
        answer = SessionDescriptor(DescriptorKind.ANSWER, render_description("theirs", "t", SETUP_ACTIVE, []))
        with pytest.raises(ProtocolError) as exc_info:
            connectivity.validate_remote_description(answer)
        assert exc_info.value.code == ErrorCode.E201_UNEXPECTED_MESSAGE

    def test_answer_must_be_active(self):
        """Test that an answer claiming the listening side is refused."""
        connectivity = TcpConnectivity()
        connectivity.session_id = "mine"
        answer = SessionDescriptor(DescriptorKind.ANSWER, render_description("mine", "t", SETUP_PASSIVE, []))
        with pytest.raises(DecodeError) as exc_info:
            connectivity.validate_remote_description(answer)
        assert exc_info.value.code == ErrorCode.E101_MALFORMED

    def test_local_description_before_create(self):
        """Test that there is nothing to describe before an offer or answer."""
        with pytest.raises(ProtocolError):
            TcpConnectivity().local_description()


class TestHelloCheck:
    """Test the initiator's vetting of incoming HELLO frames."""

    def _initiator(self) -> TcpConnectivity:
        connectivity = TcpConnectivity()
        connectivity.session_id = "sess"
        return connectivity

    def _apply_answer(self, connectivity: TcpConnectivity, token: str = "answer-token") -> None:
        connectivity.remote = parse_description(render_description("sess", token, SETUP_ACTIVE, []))
        connectivity._answer_applied = True

    def test_unknown_session(self):
        """Test that a HELLO for another session is rejected."""
        status, _ = self._initiator()._check_hello(MessageType.HELLO, {"session": "other", "token": "x"})
        assert status == HELLO_REJECT

    def test_wait_until_answer_applied(self):
        """Test that the responder is told to wait before the answer is pasted."""
        status, _ = self._initiator()._check_hello(MessageType.HELLO, {"session": "sess", "token": "x"})
        assert status == HELLO_WAIT

    def test_token_mismatch(self):
        """Test that a wrong answer token is rejected."""
        connectivity = self._initiator()
        self._apply_answer(connectivity)
        status, reason = connectivity._check_hello(MessageType.HELLO, {"session": "sess", "token": "guess"})
        assert status == HELLO_REJECT
        assert reason == "token mismatch"

    def test_ready(self):
        """Test that the right token is accepted."""
        connectivity = self._initiator()
        self._apply_answer(connectivity)
        status, _ = connectivity._check_hello(MessageType.HELLO, {"session": "sess", "token": "answer-token"})
        assert status == HELLO_READY


def test_discover_hosts_for_specific_address():
    """Test that a specific listen address is used as the only candidate."""
    connectivity = TcpConnectivity(host=LOCALHOST, advertise_host="203.0.113.7")
    assert connectivity._discover_hosts() == ["203.0.113.7", LOCALHOST]


def test_offer_gathers_loopback_candidate():
    """Test that creating an offer listens and describes the bound port."""

    async def scenario():
        connectivity = make_loopback_connectivity()
        await connectivity.create_offer()
        try:
            assert await connectivity.wait_gathering_complete(5.0) is True
            descriptor = connectivity.local_description()
            parsed = parse_description(descriptor.sdp)

            assert descriptor.kind is DescriptorKind.OFFER
            assert parsed.setup == SETUP_PASSIVE
            assert parsed.complete is True
            assert parsed.candidates == [Candidate(LOCALHOST, connectivity.bound_port)]
        finally:
            await connectivity.close()

    asyncio.run(scenario())


def test_handshake_waits_for_answer_then_connects():
    """Test that the responder retries on WAIT and connects once the answer is applied."""

    async def scenario():
        initiator = make_loopback_connectivity()
        responder = make_loopback_connectivity()
        try:
            await initiator.create_offer()
            await initiator.wait_gathering_complete(5.0)
            await responder.apply_remote_description(initiator.local_description())
            await responder.create_answer()

            # Let the responder hit WAIT at least once
            await asyncio.sleep(0.2)
            assert initiator._channel_future is None or not initiator._channel_future.done()

            await initiator.apply_remote_description(responder.local_description())
            left = await asyncio.wait_for(initiator.channel_ready(), 5)
            right = await asyncio.wait_for(responder.channel_ready(), 5)

            assert left.label == right.label == "chat"
            await left.start()
            await right.start()
            received = []
            right.on_message = received.append
            await left.send("hello")

            async def _poll():
                while not received:
                    await asyncio.sleep(0.01)

            await asyncio.wait_for(_poll(), 5)
            assert received == ["hello"]
            await left.close()
            await right.close()
        finally:
            await initiator.close()
            await responder.close()

    asyncio.run(scenario())


def test_dial_fails_when_nobody_listens():
    """Test that the responder gives up after the dial window."""

    async def scenario():
        initiator = make_loopback_connectivity()
        await initiator.create_offer()
        await initiator.wait_gathering_complete(5.0)
        offer = initiator.local_description()
        await initiator.close()

        responder = make_loopback_connectivity(dial_window=0.3)
        await responder.apply_remote_description(offer)
        await responder.create_answer()
        with pytest.raises(ChannelError) as exc_info:
            await asyncio.wait_for(responder.channel_ready(), 5)
        assert exc_info.value.code == ErrorCode.E504_CONNECT_FAILED
        await responder.close()

    asyncio.run(scenario())


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
