"""
Pastewire - Data channel adapters.

Created by orpheus497

The channel adapter binds the session core to whatever byte transport
carries chat traffic once negotiation has finished. The core only sees:

- on_open()                    channel is usable
- on_message(token)            one chat token arrived
- on_control(type, payload)    a key management frame arrived
- on_close()                   channel is gone, fired exactly once

and calls send(token), send_control(type, payload) and close().
Sending on a closed channel raises ChannelError; nothing is retried.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Union

from .errors import ChannelError, ErrorCode
from .protocol import CONTROL_TYPES, MessageType, Protocol

logger = logging.getLogger(__name__)

Callback = Callable[..., Union[None, Awaitable[None]]]


class ChannelState(Enum):
    """Data channel lifecycle."""

    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class ChannelAdapter:
    """
    Base class for data channels.

    Subclasses implement _send_frame and _close_transport; state handling,
    callback dispatch and close-once semantics live here.
    """

    def __init__(self, label: str = "chat"):
        self.label = label
        self.state = ChannelState.CONNECTING
        self.close_reason: Optional[str] = None

        # Callbacks
        self.on_open: Optional[Callback] = None
        self.on_message: Optional[Callback] = None
        self.on_control: Optional[Callback] = None
        self.on_close: Optional[Callback] = None

    @property
    def is_open(self) -> bool:
        return self.state == ChannelState.OPEN

    @property
    def is_closed(self) -> bool:
        return self.state == ChannelState.CLOSED

    async def start(self) -> None:
        """Mark the channel open and notify the owner."""
        if self.state != ChannelState.CONNECTING:
            return
        self.state = ChannelState.OPEN
        logger.info(f"Channel '{self.label}' open")
        await self._invoke(self.on_open)

    async def send(self, token: str) -> None:
        """Send one chat token."""
        self._check_sendable()
        await self._send_frame(MessageType.CHAT_MESSAGE, {"data": token})

    async def send_control(self, msg_type: MessageType, payload: Dict[str, Any]) -> None:
        """Send a key management frame."""
        if msg_type not in CONTROL_TYPES:
            raise ChannelError(ErrorCode.E507_INVALID_FRAME, f"{msg_type.name} is not a control frame")
        self._check_sendable()
        await self._send_frame(msg_type, payload)

    async def close(self, reason: str = "closed locally", notify_peer: bool = True) -> None:
        """Close the channel. Safe to call more than once."""
        if self.state == ChannelState.CLOSED:
            return
        self.state = ChannelState.CLOSED
        self.close_reason = reason
        logger.info(f"Channel '{self.label}' closed: {reason}")
        await self._close_transport(reason, notify_peer)
        await self._invoke(self.on_close)

    def _check_sendable(self) -> None:
        if self.state == ChannelState.CLOSED:
            raise ChannelError(
                ErrorCode.E501_CLOSED,
                "Channel is closed",
                {"reason": self.close_reason},
            )
        if self.state != ChannelState.OPEN:
            raise ChannelError(ErrorCode.E502_NOT_OPEN, "Channel is not open yet")

    async def _dispatch(self, msg_type: MessageType, payload: Dict[str, Any]) -> None:
        """Route one received frame to the owner's callbacks."""
        try:
            if msg_type == MessageType.CHAT_MESSAGE:
                await self._invoke(self.on_message, payload["data"])
            elif msg_type in CONTROL_TYPES:
                await self._invoke(self.on_control, msg_type, payload)
            elif msg_type == MessageType.DISCONNECT:
                await self.close(f"peer disconnected {payload.get('reason', '')}".strip(), notify_peer=False)
            else:
                logger.warning(f"Ignoring unexpected {msg_type.name} frame on open channel")
        except Exception as e:
            logger.error(f"Error handling {msg_type.name} on channel '{self.label}': {e}", exc_info=True)

    @staticmethod
    async def _invoke(callback: Optional[Callback], *args: Any) -> None:
        if callback is None:
            return
        result = callback(*args)
        if asyncio.iscoroutine(result):
            await result

    async def _send_frame(self, msg_type: MessageType, payload: Dict[str, Any]) -> None:
        raise NotImplementedError

    async def _close_transport(self, reason: str, notify_peer: bool) -> None:
        raise NotImplementedError


class StreamChannel(ChannelAdapter):
    """Channel over an asyncio stream pair using length-prefixed frames."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        label: str = "chat",
    ):
        super().__init__(label)
        self.reader = reader
        self.writer = writer
        self.peer = writer.get_extra_info("peername")
        self.receive_task: Optional[asyncio.Task] = None
        self._send_lock = asyncio.Lock()

    async def start(self) -> None:
        if self.state != ChannelState.CONNECTING:
            return
        self.receive_task = asyncio.ensure_future(self._receive_loop())
        await super().start()

    async def _receive_loop(self) -> None:
        """Background task for receiving frames."""
        logger.debug(f"Receive loop started for {self.peer}")
        reason = "connection lost"

        try:
            while self.state == ChannelState.OPEN:
                header = await self.reader.readexactly(Protocol.HEADER_SIZE)
                msg_type_int, length = Protocol.parse_header(header)
                payload_bytes = await self.reader.readexactly(length)
                msg_type, payload = Protocol.decode_payload(msg_type_int, payload_bytes)
                await self._dispatch(msg_type, payload)
        except asyncio.IncompleteReadError:
            reason = "connection closed by peer"
        except ChannelError as e:
            logger.error(f"Invalid frame from {self.peer}: {e}")
            reason = f"protocol error {e.code.value}"
        except (ConnectionError, OSError) as e:
            logger.warning(f"Connection error from {self.peer}: {e}")
        except asyncio.CancelledError:
            logger.debug(f"Receive loop cancelled for {self.peer}")
            return
        finally:
            logger.debug(f"Receive loop ended for {self.peer}")

        await self.close(reason, notify_peer=False)

    async def _send_frame(self, msg_type: MessageType, payload: Dict[str, Any]) -> None:
        frame = Protocol.pack_message(msg_type, payload)
        async with self._send_lock:
            try:
                self.writer.write(frame)
                await self.writer.drain()
            except (ConnectionError, OSError) as e:
                asyncio.ensure_future(self.close("send failed", notify_peer=False))
                raise ChannelError(ErrorCode.E503_SEND_FAILED, f"Send failed: {e}")

    async def _close_transport(self, reason: str, notify_peer: bool) -> None:
        if self.receive_task and self.receive_task is not asyncio.current_task() and not self.receive_task.done():
            self.receive_task.cancel()

        try:
            if notify_peer:
                self.writer.write(Protocol.create_disconnect(reason))
                await self.writer.drain()
            self.writer.close()
            await self.writer.wait_closed()
        except (ConnectionError, OSError) as e:
            logger.debug(f"Error closing writer for {self.peer}: {e}")


class MemoryChannel(ChannelAdapter):
    """In-process channel; MemoryChannel.pair() returns two connected ends."""

    def __init__(self, label: str = "memory"):
        super().__init__(label)
        self._peer: Optional["MemoryChannel"] = None
        self._inbox: "asyncio.Queue[Tuple[MessageType, Dict[str, Any]]]" = asyncio.Queue()
        self._pump_task: Optional[asyncio.Task] = None

    @classmethod
    def pair(cls) -> Tuple["MemoryChannel", "MemoryChannel"]:
        left, right = cls("memory-left"), cls("memory-right")
        left._peer, right._peer = right, left
        return left, right

    async def start(self) -> None:
        if self.state != ChannelState.CONNECTING:
            return
        self._pump_task = asyncio.ensure_future(self._pump())
        await super().start()

    async def _pump(self) -> None:
        try:
            while self.state == ChannelState.OPEN:
                msg_type, payload = await self._inbox.get()
                await self._dispatch(msg_type, payload)
        except asyncio.CancelledError:
            logger.debug(f"Pump cancelled for '{self.label}'")

    async def _send_frame(self, msg_type: MessageType, payload: Dict[str, Any]) -> None:
        Protocol.validate_message(msg_type, payload)
        if self._peer is None or self._peer.is_closed:
            raise ChannelError(ErrorCode.E503_SEND_FAILED, "Peer end is gone")
        self._peer._inbox.put_nowait((msg_type, dict(payload)))

    async def _close_transport(self, reason: str, notify_peer: bool) -> None:
        if self._pump_task and self._pump_task is not asyncio.current_task() and not self._pump_task.done():
            self._pump_task.cancel()
        if notify_peer and self._peer is not None and not self._peer.is_closed:
            self._peer._inbox.put_nowait((MessageType.DISCONNECT, {"reason": reason}))
