"""
Pastewire - Channel wire protocol definitions.

Created by orpheus497

This module defines the framing used on the peer-to-peer data channel.
All frames are prefixed with a header containing:
- Protocol version (1 byte)
- Message type (2 bytes)
- Payload length (4 bytes)

Total header size: 7 bytes, followed by a UTF-8 JSON payload.

Chat messages carry a single opaque token (the encrypted message or the
no-key sentinel) in the "data" field; nothing else about a chat message
travels in the clear.
"""

import json
import struct
from enum import IntEnum
from typing import Any, Dict, Tuple

from .constants import MAX_MESSAGE_SIZE, PROTOCOL_VERSION
from .errors import ChannelError, ErrorCode

HELLO_READY = "ready"
HELLO_WAIT = "wait"
HELLO_REJECT = "reject"


class MessageType(IntEnum):
    """Message type definitions."""

    # Connection management
    HELLO = 1
    HELLO_ACK = 2
    DISCONNECT = 5

    # Chat
    CHAT_MESSAGE = 10

    # Key management
    KEY_EXCHANGE = 20
    REKEY_REQUEST = 21
    REKEY_RESPONSE = 22


REQUIRED_FIELDS = {
    MessageType.HELLO: ("session", "token"),
    MessageType.HELLO_ACK: ("status",),
    MessageType.CHAT_MESSAGE: ("data",),
    MessageType.KEY_EXCHANGE: ("public_key",),
    MessageType.REKEY_REQUEST: ("public_key", "version"),
    MessageType.REKEY_RESPONSE: ("public_key", "version"),
}

# Frames the session layer handles; the rest belong to the connection handshake
CONTROL_TYPES = (MessageType.KEY_EXCHANGE, MessageType.REKEY_REQUEST, MessageType.REKEY_RESPONSE)


class Protocol:
    """Channel framing handler."""

    VERSION = PROTOCOL_VERSION
    HEADER_FORMAT = "!BHI"
    HEADER_SIZE = 7
    MAX_PAYLOAD_SIZE = MAX_MESSAGE_SIZE

    @staticmethod
    def pack_message(msg_type: MessageType, payload: Dict[str, Any]) -> bytes:
        """
        Pack a message with protocol header.

        Raises:
            ChannelError: If the payload is invalid or too large
        """
        Protocol.validate_message(msg_type, payload)

        payload_bytes = json.dumps(payload).encode("utf-8")

        if len(payload_bytes) > Protocol.MAX_PAYLOAD_SIZE:
            raise ChannelError(
                ErrorCode.E506_MESSAGE_TOO_LARGE,
                f"Payload too large: {len(payload_bytes)} bytes",
                {"size": len(payload_bytes), "max_size": Protocol.MAX_PAYLOAD_SIZE},
            )

        header = struct.pack(Protocol.HEADER_FORMAT, Protocol.VERSION, int(msg_type), len(payload_bytes))
        return header + payload_bytes

    @staticmethod
    def parse_header(header: bytes) -> Tuple[int, int]:
        """
        Parse and check a frame header.

        Returns:
            (message type number, payload length)

        Raises:
            ChannelError: On version mismatch or oversize payload
        """
        version, msg_type_int, length = struct.unpack(Protocol.HEADER_FORMAT, header[: Protocol.HEADER_SIZE])

        if version != Protocol.VERSION:
            raise ChannelError(
                ErrorCode.E507_INVALID_FRAME,
                f"Unsupported protocol version: {version}",
                {"version": version, "expected": Protocol.VERSION},
            )

        if length > Protocol.MAX_PAYLOAD_SIZE:
            raise ChannelError(
                ErrorCode.E506_MESSAGE_TOO_LARGE,
                f"Payload too large: {length} bytes",
                {"size": length, "max_size": Protocol.MAX_PAYLOAD_SIZE},
            )

        return msg_type_int, length

    @staticmethod
    def decode_payload(msg_type_int: int, payload_bytes: bytes) -> Tuple[MessageType, Dict[str, Any]]:
        """Decode and validate a frame payload."""
        try:
            msg_type = MessageType(msg_type_int)
        except ValueError:
            raise ChannelError(
                ErrorCode.E507_INVALID_FRAME,
                f"Invalid message type: {msg_type_int}",
                {"type": msg_type_int},
            )

        try:
            payload = json.loads(payload_bytes.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ChannelError(ErrorCode.E507_INVALID_FRAME, f"Failed to parse message: {e}", {"error": str(e)})

        if not isinstance(payload, dict):
            raise ChannelError(ErrorCode.E507_INVALID_FRAME, "Message payload must be a JSON object")

        Protocol.validate_message(msg_type, payload)
        return msg_type, payload

    @staticmethod
    def validate_message(msg_type: MessageType, payload: Dict[str, Any]) -> None:
        """
        Validate message structure.

        Raises:
            ChannelError: If a required field is missing
        """
        for field in REQUIRED_FIELDS.get(msg_type, ()):
            if field not in payload:
                raise ChannelError(
                    ErrorCode.E507_INVALID_FRAME,
                    f"Missing required field: {field}",
                    {"message_type": msg_type.name, "field": field},
                )

        if msg_type == MessageType.CHAT_MESSAGE and not isinstance(payload["data"], str):
            raise ChannelError(ErrorCode.E507_INVALID_FRAME, "Chat message data must be text")

        if msg_type == MessageType.HELLO_ACK and payload["status"] not in (HELLO_READY, HELLO_WAIT, HELLO_REJECT):
            raise ChannelError(
                ErrorCode.E507_INVALID_FRAME,
                f"Unknown hello status: {payload['status']!r}",
            )

    @staticmethod
    def create_hello(session_id: str, token: str) -> bytes:
        """Create the responder's connection hello."""
        payload = {"session": session_id, "token": token, "protocol_version": Protocol.VERSION}
        return Protocol.pack_message(MessageType.HELLO, payload)

    @staticmethod
    def create_hello_ack(status: str, reason: str = "") -> bytes:
        """Create the initiator's answer to a hello."""
        return Protocol.pack_message(MessageType.HELLO_ACK, {"status": status, "reason": reason})

    @staticmethod
    def create_disconnect(reason: str = "") -> bytes:
        """Create disconnect message."""
        return Protocol.pack_message(MessageType.DISCONNECT, {"reason": reason})
