"""
Pastewire - Channel framing tests.

Created by orpheus497

Tests for the length-prefixed JSON frames used on the data channel.
"""

import struct

import pytest

from pastewire.errors import ChannelError, ErrorCode
from pastewire.protocol import MessageType, Protocol


def test_chat_frame_layout():
    """Test header fields of a packed chat frame."""
    frame = Protocol.pack_message(MessageType.CHAT_MESSAGE, {"data": "dG9rZW4="})
    version, msg_type, length = struct.unpack(Protocol.HEADER_FORMAT, frame[: Protocol.HEADER_SIZE])

    assert version == Protocol.VERSION
    assert msg_type == MessageType.CHAT_MESSAGE
    assert length == len(frame) - Protocol.HEADER_SIZE


def test_decode_hello_frame():
    """Test that a packed hello decodes back to its fields."""
    frame = Protocol.create_hello("session-1", "secret")
    msg_type_int, length = Protocol.parse_header(frame[: Protocol.HEADER_SIZE])
    msg_type, payload = Protocol.decode_payload(msg_type_int, frame[Protocol.HEADER_SIZE :])

    assert msg_type == MessageType.HELLO
    assert payload["session"] == "session-1"
    assert payload["token"] == "secret"
    assert length == len(frame) - Protocol.HEADER_SIZE


def test_version_mismatch():
    """Test that frames from another protocol version are rejected."""
    frame = bytearray(Protocol.create_disconnect())
    frame[0] = Protocol.VERSION + 1

    with pytest.raises(ChannelError) as exc_info:
        Protocol.parse_header(bytes(frame))
    assert exc_info.value.code == ErrorCode.E507_INVALID_FRAME


def test_oversize_header():
    """Test that a header announcing a huge payload is rejected."""
    header = struct.pack(Protocol.HEADER_FORMAT, Protocol.VERSION, MessageType.CHAT_MESSAGE, Protocol.MAX_PAYLOAD_SIZE + 1)
    with pytest.raises(ChannelError) as exc_info:
        Protocol.parse_header(header)
    assert exc_info.value.code == ErrorCode.E506_MESSAGE_TOO_LARGE


def test_oversize_pack():
    """Test that packing an oversize payload fails."""
    with pytest.raises(ChannelError) as exc_info:
        Protocol.pack_message(MessageType.CHAT_MESSAGE, {"data": "x" * (Protocol.MAX_PAYLOAD_SIZE + 1)})
    assert exc_info.value.code == ErrorCode.E506_MESSAGE_TOO_LARGE


@pytest.mark.parametrize(
    "msg_type,payload",
    [
        (99, b"{}"),
        (MessageType.CHAT_MESSAGE, b"not json"),
        (MessageType.CHAT_MESSAGE, b"[1]"),
        (MessageType.CHAT_MESSAGE, b"{}"),
        (MessageType.CHAT_MESSAGE, b'{"data": 5}'),
        (MessageType.HELLO_ACK, b'{"status": "maybe"}'),
        (MessageType.REKEY_REQUEST, b'{"public_key": {}}'),
    ],
)
def test_invalid_payloads(msg_type, payload):
    """Test that unknown types, bad JSON and missing fields are rejected."""
    with pytest.raises(ChannelError) as exc_info:
        Protocol.decode_payload(int(msg_type), payload)
    assert exc_info.value.code == ErrorCode.E507_INVALID_FRAME


def test_control_frames_validate_fields():
    """Test that key management frames need their fields."""
    Protocol.validate_message(MessageType.KEY_EXCHANGE, {"public_key": {"kty": "EC"}})
    with pytest.raises(ChannelError):
        Protocol.pack_message(MessageType.KEY_EXCHANGE, {})


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
