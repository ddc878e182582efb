"""
Pastewire - Direct TCP connectivity.

Created by orpheus497

This module produces and consumes the opaque connectivity descriptor that
travels inside the pasted envelope, and turns a finished negotiation into
an open StreamChannel.

Descriptor text (one attribute per line):
    v=0
    s=pastewire
    a=session:<random session id>
    a=token:<per-side secret>
    a=setup:passive|active
    a=candidate:<host> <port>      (offer only, one per reachable address)
    a=end-of-candidates

The initiator listens and gathers host candidates; the responder dials
those candidates after producing its answer and proves it is the party
that pasted the offer by presenting its answer token in a HELLO frame.
Until the answer has been pasted on the initiator, HELLO is answered with
"wait" and the responder retries.
"""

import asyncio
import hmac
import logging
import secrets
import socket
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .channel import ChannelAdapter, StreamChannel
from .codec import DescriptorKind, SessionDescriptor
from .constants import (
    CONNECT_TIMEOUT,
    DEFAULT_HOST,
    DEFAULT_LISTEN_PORT,
    DIAL_RETRY_INTERVAL,
    DIAL_WINDOW,
    HELLO_TIMEOUT,
    LOCALHOST,
)
from .errors import ChannelError, DecodeError, ErrorCode, ProtocolError
from .protocol import HELLO_READY, HELLO_REJECT, HELLO_WAIT, MessageType, Protocol
from .utils import validate_hostname, validate_ip

logger = logging.getLogger(__name__)

SETUP_PASSIVE = "passive"
SETUP_ACTIVE = "active"
WILDCARD_HOSTS = ("", "0.0.0.0", "::")

# Address used only to pick the outbound interface; UDP connect sends nothing
ROUTE_PROBE_ADDRESS = ("192.0.2.1", 9)


@dataclass(frozen=True)
class Candidate:
    """One address the initiator can be reached on."""

    host: str
    port: int

    def to_line(self) -> str:
        return f"a=candidate:{self.host} {self.port}"


@dataclass
class ParsedDescription:
    """Connectivity descriptor content."""

    session_id: str
    token: str
    setup: str
    candidates: List[Candidate] = field(default_factory=list)
    complete: bool = False


def render_description(
    session_id: str,
    token: str,
    setup: str,
    candidates: List[Candidate],
    complete: bool = True,
) -> str:
    """Render descriptor text."""
    lines = ["v=0", "s=pastewire", f"a=session:{session_id}", f"a=token:{token}", f"a=setup:{setup}"]
    lines.extend(candidate.to_line() for candidate in candidates)
    if complete:
        lines.append("a=end-of-candidates")
    return "\n".join(lines) + "\n"


def _is_valid_host(host: str) -> bool:
    return validate_ip(host, allow_loopback=True) or validate_hostname(host)


def parse_description(sdp: str) -> ParsedDescription:
    """
    Parse descriptor text.

    Raises:
        DecodeError: E101_MALFORMED if required attributes are missing or a
            candidate line cannot be parsed
    """
    values = {}
    candidates = []
    complete = False

    for raw_line in sdp.splitlines():
        line = raw_line.strip()
        if not line.startswith("a="):
            continue
        attribute, _, value = line[2:].partition(":")

        if attribute == "candidate":
            parts = value.split()
            if len(parts) != 2 or not parts[1].isdigit():
                raise DecodeError(ErrorCode.E101_MALFORMED, f"Bad candidate line: {line!r}")
            host, port = parts[0], int(parts[1])
            if not _is_valid_host(host) or not 0 < port <= 65535:
                raise DecodeError(ErrorCode.E101_MALFORMED, f"Bad candidate address: {line!r}")
            candidates.append(Candidate(host, port))
        elif attribute == "end-of-candidates":
            complete = True
        elif attribute in ("session", "token", "setup"):
            values[attribute] = value

    for name in ("session", "token", "setup"):
        if not values.get(name):
            raise DecodeError(
                ErrorCode.E101_MALFORMED,
                f"Connectivity descriptor has no '{name}' attribute",
                {"attribute": name},
            )

    return ParsedDescription(values["session"], values["token"], values["setup"], candidates, complete)


class ConnectivityProvider:
    """
    Transport negotiation collaborator used by the session.

    Produces the local descriptor, applies the remote one, signals when
    candidate gathering is complete and hands over the opened channel.
    """

    async def create_offer(self) -> None:
        raise NotImplementedError

    async def create_answer(self) -> None:
        raise NotImplementedError

    def validate_remote_description(self, descriptor: SessionDescriptor) -> ParsedDescription:
        raise NotImplementedError

    async def apply_remote_description(self, descriptor: SessionDescriptor) -> None:
        raise NotImplementedError

    async def wait_gathering_complete(self, timeout: float) -> bool:
        raise NotImplementedError

    def local_description(self) -> SessionDescriptor:
        raise NotImplementedError

    async def channel_ready(self) -> ChannelAdapter:
        raise NotImplementedError

    async def close(self) -> None:
        raise NotImplementedError


class TcpConnectivity(ConnectivityProvider):
    """Direct TCP connectivity: the initiator listens, the responder dials."""

    def __init__(
        self,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_LISTEN_PORT,
        advertise_host: str = "",
        connect_timeout: float = CONNECT_TIMEOUT,
        dial_retry_interval: float = DIAL_RETRY_INTERVAL,
        dial_window: float = DIAL_WINDOW,
        hello_timeout: float = HELLO_TIMEOUT,
    ):
        self.host = host
        self.port = port
        self.advertise_host = advertise_host
        self.connect_timeout = connect_timeout
        self.dial_retry_interval = dial_retry_interval
        self.dial_window = dial_window
        self.hello_timeout = hello_timeout

        self.kind: Optional[DescriptorKind] = None
        self.session_id: Optional[str] = None
        self.token: Optional[str] = None
        self.candidates: List[Candidate] = []
        self.remote: Optional[ParsedDescription] = None
        self.server: Optional[asyncio.AbstractServer] = None
        self.bound_port: Optional[int] = None

        self._gathering_complete = asyncio.Event()
        self._channel_future: Optional[asyncio.Future] = None
        self._gather_task: Optional[asyncio.Task] = None
        self._dial_task: Optional[asyncio.Task] = None
        self._answer_applied = False

    @property
    def gathering_complete(self) -> bool:
        return self._gathering_complete.is_set()

    async def create_offer(self) -> None:
        """Start listening and begin gathering host candidates."""
        self.kind = DescriptorKind.OFFER
        self.session_id = secrets.token_urlsafe(12)
        self.token = secrets.token_urlsafe(16)

        try:
            self.server = await asyncio.start_server(self._handle_client, self.host or None, self.port)
        except OSError as e:
            raise ChannelError(
                ErrorCode.E504_CONNECT_FAILED,
                f"Failed to listen on {self.host}:{self.port}: {e}",
                {"host": self.host, "port": self.port},
            )

        self.bound_port = self.server.sockets[0].getsockname()[1]
        logger.info(f"Listening for the peer on port {self.bound_port}")
        self._gather_task = asyncio.ensure_future(self._gather(self.bound_port))

    async def _gather(self, port: int) -> None:
        try:
            loop = asyncio.get_running_loop()
            hosts = await loop.run_in_executor(None, self._discover_hosts)
            self.candidates = [Candidate(host, port) for host in hosts]
            logger.info(f"Gathered {len(self.candidates)} candidate(s): {', '.join(hosts)}")
        finally:
            self._gathering_complete.set()

    def _discover_hosts(self) -> List[str]:
        """Collect addresses the listener is reachable on (blocking)."""
        hosts = []
        if self.advertise_host:
            hosts.append(self.advertise_host)

        if self.host not in WILDCARD_HOSTS:
            hosts.append(self.host)
        else:
            probe = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            try:
                probe.connect(ROUTE_PROBE_ADDRESS)
                hosts.append(probe.getsockname()[0])
            except OSError as e:
                logger.debug(f"No default route for candidate discovery: {e}")
            finally:
                probe.close()

            try:
                hosts.extend(socket.gethostbyname_ex(socket.gethostname())[2])
            except OSError as e:
                logger.debug(f"Hostname lookup failed during candidate discovery: {e}")

            hosts.append(LOCALHOST)

        unique = []
        for host in hosts:
            if host not in unique and _is_valid_host(host):
                unique.append(host)
        return unique

    async def wait_gathering_complete(self, timeout: float) -> bool:
        """Wait for the gathering-complete signal, at most timeout seconds."""
        try:
            await asyncio.wait_for(self._gathering_complete.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False

    def local_description(self) -> SessionDescriptor:
        if self.kind is None:
            raise ProtocolError(ErrorCode.E201_UNEXPECTED_MESSAGE, "No local description created yet")
        setup = SETUP_PASSIVE if self.kind is DescriptorKind.OFFER else SETUP_ACTIVE
        sdp = render_description(self.session_id, self.token, setup, self.candidates, self.gathering_complete)
        return SessionDescriptor(self.kind, sdp)

    def validate_remote_description(self, descriptor: SessionDescriptor) -> ParsedDescription:
        """Parse and check a remote descriptor without applying it."""
        parsed = parse_description(descriptor.sdp)

        if descriptor.kind is DescriptorKind.OFFER:
            if parsed.setup != SETUP_PASSIVE or not parsed.candidates:
                raise DecodeError(ErrorCode.E101_MALFORMED, "Offer carries no connection candidates")
        else:
            if parsed.setup != SETUP_ACTIVE:
                raise DecodeError(ErrorCode.E101_MALFORMED, "Answer must dial in with setup:active")
            if self.session_id is not None and parsed.session_id != self.session_id:
                raise ProtocolError(
                    ErrorCode.E201_UNEXPECTED_MESSAGE,
                    "Answer belongs to a different session",
                    {"session": parsed.session_id},
                )

        return parsed

    async def apply_remote_description(self, descriptor: SessionDescriptor) -> None:
        self.remote = self.validate_remote_description(descriptor)
        if descriptor.kind is DescriptorKind.OFFER:
            self.session_id = self.remote.session_id
            logger.info(f"Applied remote offer with {len(self.remote.candidates)} candidate(s)")
        else:
            self._answer_applied = True
            logger.info("Applied remote answer, waiting for the peer to connect")

    async def create_answer(self) -> None:
        """Create the answer and start dialing the offer's candidates."""
        if self.remote is None:
            raise ProtocolError(ErrorCode.E201_UNEXPECTED_MESSAGE, "Cannot answer before an offer is applied")
        self.kind = DescriptorKind.ANSWER
        self.token = secrets.token_urlsafe(16)
        self._gathering_complete.set()
        self._dial_task = asyncio.ensure_future(self._dial_loop())

    async def channel_ready(self) -> ChannelAdapter:
        """Wait for the data channel to be established."""
        return await self._future()

    def _future(self) -> asyncio.Future:
        if self._channel_future is None:
            self._channel_future = asyncio.get_running_loop().create_future()
        return self._channel_future

    def _resolve(self, channel: ChannelAdapter) -> None:
        future = self._future()
        if not future.done():
            future.set_result(channel)

    def _fail(self, error: ChannelError) -> None:
        future = self._future()
        if not future.done():
            future.set_exception(error)

    async def _read_frame(self, reader: asyncio.StreamReader) -> Tuple[MessageType, dict]:
        header = await reader.readexactly(Protocol.HEADER_SIZE)
        msg_type_int, length = Protocol.parse_header(header)
        payload = await reader.readexactly(length)
        return Protocol.decode_payload(msg_type_int, payload)

    async def _dial_loop(self) -> None:
        """Responder: dial candidates until one answers ready or the window closes."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.dial_window
        candidates = list(self.remote.candidates)

        while loop.time() < deadline:
            for candidate in candidates:
                try:
                    status, reader, writer = await self._try_candidate(candidate)
                except (OSError, asyncio.TimeoutError, asyncio.IncompleteReadError, ChannelError) as e:
                    logger.debug(f"Candidate {candidate.host}:{candidate.port} failed: {e}")
                    continue

                if status == HELLO_READY:
                    logger.info(f"Connected to peer at {candidate.host}:{candidate.port}")
                    self._resolve(StreamChannel(reader, writer))
                    return

                if status == HELLO_REJECT:
                    self._fail(ChannelError(ErrorCode.E505_HANDSHAKE_FAILED, "Peer rejected the connection"))
                    return

                # Reachable but the answer is not pasted yet; stick to this one
                candidates = [candidate]
                break

            await asyncio.sleep(self.dial_retry_interval)

        self._fail(
            ChannelError(
                ErrorCode.E504_CONNECT_FAILED,
                f"Peer did not accept a connection within {self.dial_window:.0f}s",
            )
        )

    async def _try_candidate(self, candidate: Candidate):
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(candidate.host, candidate.port),
            timeout=self.connect_timeout,
        )
        try:
            writer.write(Protocol.create_hello(self.session_id, self.token))
            await writer.drain()
            msg_type, payload = await asyncio.wait_for(self._read_frame(reader), timeout=self.hello_timeout)
            if msg_type != MessageType.HELLO_ACK:
                raise ChannelError(ErrorCode.E505_HANDSHAKE_FAILED, f"Expected HELLO_ACK, got {msg_type.name}")
        except BaseException:
            await self._close_writer(writer)
            raise

        status = payload["status"]
        if status != HELLO_READY:
            logger.debug(f"Peer answered {status}: {payload.get('reason', '')}")
            await self._close_writer(writer)
        return status, reader, writer

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        """Initiator: vet an incoming HELLO."""
        address = writer.get_extra_info("peername")
        logger.debug(f"Incoming connection from {address}")

        try:
            msg_type, payload = await asyncio.wait_for(self._read_frame(reader), timeout=self.hello_timeout)
            status, reason = self._check_hello(msg_type, payload)
            writer.write(Protocol.create_hello_ack(status, reason))
            await writer.drain()
        except (asyncio.TimeoutError, asyncio.IncompleteReadError, ChannelError, ConnectionError, OSError) as e:
            logger.warning(f"Dropped connection from {address}: {e}")
            await self._close_writer(writer)
            return

        if status != HELLO_READY:
            logger.info(f"Answered {status} to {address}: {reason}")
            await self._close_writer(writer)
            return

        logger.info(f"Peer connected from {address}")
        self._resolve(StreamChannel(reader, writer))
        if self.server is not None:
            self.server.close()

    def _check_hello(self, msg_type: MessageType, payload: dict) -> Tuple[str, str]:
        if msg_type != MessageType.HELLO or payload.get("session") != self.session_id:
            return HELLO_REJECT, "unknown session"
        if self._channel_future is not None and self._channel_future.done():
            return HELLO_REJECT, "session already connected"
        if not self._answer_applied:
            return HELLO_WAIT, "answer not applied yet"
        token = payload.get("token")
        if not isinstance(token, str) or not hmac.compare_digest(
            token.encode("utf-8"), self.remote.token.encode("utf-8")
        ):
            return HELLO_REJECT, "token mismatch"
        return HELLO_READY, ""

    @staticmethod
    async def _close_writer(writer: asyncio.StreamWriter) -> None:
        try:
            writer.close()
            await writer.wait_closed()
        except (ConnectionError, OSError) as e:
            logger.debug(f"Error closing connection: {e}")

    async def close(self) -> None:
        """Stop listening and dialing."""
        for task in (self._gather_task, self._dial_task):
            if task is not None and not task.done():
                task.cancel()

        if self.server is not None:
            self.server.close()
            try:
                await asyncio.wait_for(self.server.wait_closed(), timeout=self.connect_timeout)
            except asyncio.TimeoutError:
                logger.debug("Listener did not finish closing in time")
            self.server = None

        if self._channel_future is not None and not self._channel_future.done():
            self._channel_future.cancel()
