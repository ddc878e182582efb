"""
Pastewire - Chat Session

This module drives one copy-paste negotiated chat session. A Session owns
the negotiation state machine, the key agreement engine and the message
cipher, and turns discrete inputs (user actions, pasted envelopes,
channel callbacks) into state changes and SessionEvents for the UI.

Key agreement happens inside the envelopes for the keyed variant. For the
descriptor-only variant the two public keys are exchanged in-band as soon
as the channel opens; messages sent before that carry the no-key sentinel.

Author: orpheus497
Version: 1.0.0
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from .channel import ChannelAdapter, ChannelState
from .cipher import DisplayMessage, MessageCipher
from .codec import (
    DescriptorEnvelope,
    DescriptorKind,
    EnvelopeCodec,
    EnvelopeVariant,
    KeyedEnvelope,
    SessionDescriptor,
)
from .constants import GATHER_TIMEOUT, MAX_TEXT_MESSAGE_SIZE, NO_KEY_SENTINEL
from .crypto import (
    EphemeralKeyPair,
    KeyAgreementEngine,
    SharedKey,
    derive_shared_key,
    generate_key_pair,
    public_key_from_jwk,
)
from .errors import ChannelError, ErrorCode, KeyAgreementError, PastewireError, ProtocolError
from .negotiation import NegotiationEvent, NegotiationPhase, NegotiationStateMachine, Role
from .protocol import MessageType
from .transport import ConnectivityProvider
from .utils import utc_now_iso

logger = logging.getLogger(__name__)


class SessionEventType(Enum):
    """Kinds of session output."""

    PHASE_CHANGED = "phase_changed"
    ENVELOPE_READY = "envelope_ready"
    KEY_ESTABLISHED = "key_established"
    KEY_ROTATED = "key_rotated"
    CHANNEL_OPEN = "channel_open"
    MESSAGE_SENT = "message_sent"
    MESSAGE_RECEIVED = "message_received"
    CHANNEL_CLOSED = "channel_closed"
    ERROR = "error"


@dataclass
class SessionEvent:
    """One session output delivered to subscribers."""

    type: SessionEventType
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=utc_now_iso)


@dataclass
class SessionStatus:
    """Snapshot answering the user's status query."""

    phase: NegotiationPhase
    role: Role
    variant: EnvelopeVariant
    encrypted: bool
    key_fingerprint: Optional[str] = None
    key_version: Optional[int] = None
    channel_state: Optional[ChannelState] = None
    error: Optional[str] = None
    time_in_phase: float = 0.0
    transitions: int = 0

    def describe(self) -> str:
        """One-line human readable status."""
        parts = [f"{self.phase.name.replace('_', ' ').lower()}"]
        if self.role is not Role.UNINITIATED:
            parts.append(f"as {self.role.value}")
        if self.channel_state is not None:
            parts.append(f"channel {self.channel_state.value}")
        if self.encrypted:
            parts.append(f"encrypted (key v{self.key_version})")
        else:
            parts.append("not encrypted")
        if self.error:
            parts.append(f"error: {self.error}")
        return ", ".join(parts)


class Session:
    """A single chat session between two peers.

    Attributes:
        connectivity: Transport negotiation collaborator
        codec: Envelope codec for this build's protocol variant
        fsm: Negotiation state machine
        engine: Key agreement engine
        cipher: Message cipher holding the session key
        channel: Data channel once connectivity has produced one
        local_envelope: Last envelope text handed to the user
    """

    def __init__(
        self,
        connectivity: ConnectivityProvider,
        codec: Optional[EnvelopeCodec] = None,
        gather_timeout: float = GATHER_TIMEOUT,
    ):
        self.connectivity = connectivity
        self.codec = codec or EnvelopeCodec()
        self.gather_timeout = gather_timeout

        self.fsm = NegotiationStateMachine()
        self.fsm.on_phase_change = self._on_phase_change
        self.engine = KeyAgreementEngine()
        self.cipher = MessageCipher()
        self.channel: Optional[ChannelAdapter] = None
        self.local_envelope: Optional[str] = None
        self.last_error: Optional[str] = None

        self._in_band = self.codec.variant is EnvelopeVariant.DESCRIPTOR_ONLY
        self._remote_fingerprint: Optional[str] = None
        self._key_ready = asyncio.Event()
        self._lock = asyncio.Lock()
        self._channel_task: Optional[asyncio.Task] = None
        self._pending_rekey: Optional[Tuple[int, EphemeralKeyPair]] = None
        self._key_offered = False
        self._subscribers: List[Callable[[SessionEvent], None]] = []

    @property
    def role(self) -> Role:
        return self.fsm.role

    @property
    def phase(self) -> NegotiationPhase:
        return self.fsm.current_phase

    @property
    def shared_key(self) -> Optional[SharedKey]:
        return self.cipher.key

    def subscribe(self, callback: Callable[[SessionEvent], None]) -> Callable[[], None]:
        """Register an event callback. Returns a function that unsubscribes."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _emit(self, event_type: SessionEventType, **data: Any) -> None:
        event = SessionEvent(event_type, data)
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Session event callback error ({event_type.value}): {e}")

    def _on_phase_change(self, old_phase: NegotiationPhase, new_phase: NegotiationPhase) -> None:
        self._emit(SessionEventType.PHASE_CHANGED, old=old_phase.name, new=new_phase.name)

    async def create_session(self) -> str:
        """Start a session as initiator.

        Returns:
            The Offer envelope text for the user to copy

        Raises:
            ProtocolError: If this session already started or answered
            ChannelError: If the local listener cannot be started
        """
        async with self._lock:
            if not self.fsm.can_handle(NegotiationEvent.CREATE_REQUESTED):
                raise ProtocolError(
                    ErrorCode.E201_UNEXPECTED_MESSAGE,
                    f"Cannot start a session while {self.phase.name} as {self.role.value}",
                )

            self.fsm.transition(NegotiationEvent.CREATE_REQUESTED)
            try:
                self.engine.generate()
                await self.connectivity.create_offer()
                self._check_progress()
                await self._await_gathering()
                self._check_progress()
                text = self._publish_envelope(self.connectivity.local_description())
            except asyncio.CancelledError:
                await self._teardown()
                raise
            except PastewireError as e:
                await self._fail(e)
                raise

            self.fsm.transition(NegotiationEvent.OFFER_READY)
            self._watch_channel()
            return text

    async def receive_envelope(self, text: str) -> Optional[str]:
        """Apply an envelope pasted from the other peer.

        Returns:
            The Answer envelope text when an offer was accepted, None when
            an answer completed the initiator's negotiation

        Raises:
            DecodeError: The text is not a usable envelope; state unchanged
            ProtocolError: E202_ALREADY_APPLIED for a repeated envelope,
                E201_UNEXPECTED_MESSAGE when it does not fit the current phase
            KeyAgreementError: The envelope's public key is unusable
        """
        async with self._lock:
            envelope = self.codec.decode(text)
            descriptor = envelope.descriptor

            if self._remote_fingerprint is not None and descriptor.fingerprint() == self._remote_fingerprint:
                raise ProtocolError(
                    ErrorCode.E202_ALREADY_APPLIED,
                    f"This {descriptor.kind.value} was already applied",
                )

            if descriptor.kind is DescriptorKind.OFFER and self.fsm.can_handle(NegotiationEvent.OFFER_RECEIVED):
                return await self._accept_offer(envelope)

            if (
                descriptor.kind is DescriptorKind.ANSWER
                and self.role is Role.INITIATOR
                and self.phase is NegotiationPhase.AWAITING_ANSWER
            ):
                await self._accept_answer(envelope)
                return None

            raise ProtocolError(
                ErrorCode.E201_UNEXPECTED_MESSAGE,
                f"Unexpected {descriptor.kind.value} while {self.phase.name} as {self.role.value}",
                {"phase": self.phase.name, "role": self.role.value},
            )

    def _check_remote(self, envelope) -> None:
        """Validate everything about a remote envelope before any state changes."""
        self.connectivity.validate_remote_description(envelope.descriptor)
        if isinstance(envelope, KeyedEnvelope):
            public_key_from_jwk(envelope.public_key)

    async def _accept_offer(self, envelope) -> str:
        self._check_remote(envelope)
        if isinstance(envelope, DescriptorEnvelope):
            self._in_band = True

        self.fsm.transition(NegotiationEvent.OFFER_RECEIVED)
        self._remote_fingerprint = envelope.descriptor.fingerprint()

        try:
            await self.connectivity.apply_remote_description(envelope.descriptor)
            self._check_progress()
            self.engine.generate()
            if isinstance(envelope, KeyedEnvelope):
                self._install_key(self.engine.derive(envelope.public_key))
            self.fsm.transition(NegotiationEvent.OFFER_APPLIED)

            await self.connectivity.create_answer()
            self._check_progress()
            await self._await_gathering()
            self._check_progress()
            text = self._publish_envelope(self.connectivity.local_description())
        except asyncio.CancelledError:
            await self._teardown()
            raise
        except PastewireError as e:
            await self._fail(e)
            raise

        self.fsm.transition(NegotiationEvent.ANSWER_READY)
        self._watch_channel()
        return text

    async def _accept_answer(self, envelope) -> None:
        self._check_remote(envelope)
        if isinstance(envelope, DescriptorEnvelope):
            self._in_band = True

        self._remote_fingerprint = envelope.descriptor.fingerprint()
        try:
            await self.connectivity.apply_remote_description(envelope.descriptor)
            self._check_progress()
            if isinstance(envelope, KeyedEnvelope):
                self._install_key(self.engine.derive(envelope.public_key))
        except asyncio.CancelledError:
            await self._teardown()
            raise
        except PastewireError as e:
            await self._fail(e)
            raise

        self.fsm.transition(NegotiationEvent.ANSWER_APPLIED)

    def _check_progress(self) -> None:
        """Stop a negotiation step that was closed or overran its phase while suspended."""
        if self.fsm.is_closed():
            raise ChannelError(ErrorCode.E501_CLOSED, "Session closed during negotiation")
        if self.fsm.is_timeout_exceeded():
            raise ProtocolError(
                ErrorCode.E203_NEGOTIATION_FAILED,
                f"{self.phase.name} did not finish within {self.fsm.PHASE_TIMEOUTS[self.phase]}s",
            )

    async def _await_gathering(self) -> None:
        if not await self.connectivity.wait_gathering_complete(self.gather_timeout):
            logger.warning(
                f"Candidate gathering did not finish within {self.gather_timeout}s, "
                "the envelope may lack some candidates"
            )

    def _publish_envelope(self, descriptor: SessionDescriptor) -> str:
        if self._in_band:
            envelope = DescriptorEnvelope(descriptor)
        else:
            envelope = KeyedEnvelope(descriptor, self.engine.export_public_key())

        text = self.codec.encode(envelope)
        self.local_envelope = text
        self._emit(SessionEventType.ENVELOPE_READY, text=text, kind=descriptor.kind.value)
        return text

    def _install_key(self, key: SharedKey, rotated: bool = False) -> None:
        self.cipher.install_key(key)
        self._key_ready.set()
        event_type = SessionEventType.KEY_ROTATED if rotated else SessionEventType.KEY_ESTABLISHED
        self._emit(event_type, fingerprint=key.fingerprint(), version=key.version)

    async def wait_until_encrypted(self, timeout: Optional[float] = None) -> bool:
        """Wait until a session key is installed."""
        try:
            await asyncio.wait_for(self._key_ready.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False

    def _watch_channel(self) -> None:
        if self._channel_task is None:
            self._channel_task = asyncio.ensure_future(self._bind_channel())

    async def _bind_channel(self) -> None:
        try:
            channel = await self.connectivity.channel_ready()
        except ChannelError as e:
            logger.error(f"Channel could not be established: {e}")
            self.last_error = e.message
            self._emit(SessionEventType.ERROR, message=e.message, code=e.code.value, hint=e.hint)
            await self.close()
            return

        self.channel = channel
        channel.on_open = self.on_channel_open
        channel.on_message = self.on_channel_message
        channel.on_control = self.on_channel_control
        channel.on_close = self.on_channel_close
        await channel.start()

    async def on_channel_open(self) -> None:
        """Channel became usable."""
        self._emit(SessionEventType.CHANNEL_OPEN)
        if self._in_band and not self._key_offered:
            self._key_offered = True
            await self.channel.send_control(
                MessageType.KEY_EXCHANGE,
                {"public_key": self.engine.export_public_key()},
            )

    def on_channel_message(self, token: str) -> DisplayMessage:
        """One chat token arrived."""
        display = self.cipher.render(token)
        self._emit(
            SessionEventType.MESSAGE_RECEIVED,
            text=display.text,
            status=display.status.value,
            ok=display.ok,
        )
        return display

    async def on_channel_control(self, msg_type: MessageType, payload: Dict[str, Any]) -> None:
        """Key management frame arrived."""
        try:
            if msg_type == MessageType.KEY_EXCHANGE:
                self._handle_key_exchange(payload)
            elif msg_type == MessageType.REKEY_REQUEST:
                await self._handle_rekey_request(payload)
            elif msg_type == MessageType.REKEY_RESPONSE:
                self._handle_rekey_response(payload)
        except KeyAgreementError as e:
            logger.error(f"Key management failed: {e}")
            self.last_error = e.message
            self._emit(SessionEventType.ERROR, message=e.message, code=e.code.value, hint=e.hint)

    def _handle_key_exchange(self, payload: Dict[str, Any]) -> None:
        if not self._in_band or self.cipher.has_key:
            logger.warning("Ignoring in-band key exchange, session key already settled")
            return
        self._install_key(self.engine.derive(payload["public_key"]))

    async def rotate_key(self) -> None:
        """Ask the peer to replace the session key with a fresh one.

        Raises:
            ChannelError: If there is no open channel
            KeyAgreementError: If there is no key to rotate yet
            ProtocolError: If a rotation is already in progress
        """
        if self.channel is None or not self.channel.is_open:
            raise ChannelError(ErrorCode.E502_NOT_OPEN, "Key rotation needs an open channel")
        if not self.cipher.has_key:
            raise KeyAgreementError(ErrorCode.E300_KEY_AGREEMENT_ERROR, "No session key to rotate yet")
        if self._pending_rekey is not None:
            raise ProtocolError(ErrorCode.E200_PROTOCOL_ERROR, "Key rotation already in progress")

        version = self.cipher.key.version + 1
        key_pair = generate_key_pair()
        self._pending_rekey = (version, key_pair)
        logger.info(f"Requesting key rotation to v{version}")
        await self.channel.send_control(
            MessageType.REKEY_REQUEST,
            {"public_key": key_pair.to_jwk(), "version": version},
        )

    async def _handle_rekey_request(self, payload: Dict[str, Any]) -> None:
        if self._pending_rekey is not None:
            if self.role is Role.INITIATOR:
                logger.info("Ignoring peer key rotation, ours takes precedence")
                return
            logger.info("Dropping our key rotation in favour of the initiator's")
            self._pending_rekey = None

        version = payload["version"]
        if not self.cipher.has_key or version != self.cipher.key.version + 1:
            logger.warning(f"Ignoring key rotation to unexpected version {version!r}")
            return

        key_pair = generate_key_pair()
        key = derive_shared_key(key_pair.private_key, public_key_from_jwk(payload["public_key"]), version)
        await self.channel.send_control(
            MessageType.REKEY_RESPONSE,
            {"public_key": key_pair.to_jwk(), "version": version},
        )
        self._install_key(key, rotated=True)

    def _handle_rekey_response(self, payload: Dict[str, Any]) -> None:
        if self._pending_rekey is None or payload["version"] != self._pending_rekey[0]:
            logger.warning(f"Ignoring unsolicited key rotation response v{payload['version']!r}")
            return

        version, key_pair = self._pending_rekey
        key = derive_shared_key(key_pair.private_key, public_key_from_jwk(payload["public_key"]), version)
        self._pending_rekey = None
        self._install_key(key, rotated=True)

    async def send(self, text: str) -> str:
        """Encrypt and send one chat message.

        Returns:
            The token put on the wire

        Raises:
            ChannelError: E502_NOT_OPEN before the channel opens, E501_CLOSED
                after it closed, E506_MESSAGE_TOO_LARGE for oversize text
        """
        if self.channel is None:
            if self.phase is NegotiationPhase.CLOSED:
                raise ChannelError(ErrorCode.E501_CLOSED, "Session is closed")
            raise ChannelError(ErrorCode.E502_NOT_OPEN, "No open channel yet")

        size = len(text.encode("utf-8"))
        if size > MAX_TEXT_MESSAGE_SIZE:
            raise ChannelError(
                ErrorCode.E506_MESSAGE_TOO_LARGE,
                f"Message too large: {size} > {MAX_TEXT_MESSAGE_SIZE} bytes",
            )

        token = self.cipher.encrypt(text)
        await self.channel.send(token)
        self._emit(SessionEventType.MESSAGE_SENT, text=text, encrypted=token != NO_KEY_SENTINEL)
        return token

    def status(self) -> SessionStatus:
        key = self.cipher.key
        stats = self.fsm.get_statistics()
        return SessionStatus(
            phase=self.phase,
            role=self.role,
            variant=self.codec.variant,
            encrypted=key is not None,
            key_fingerprint=key.fingerprint() if key else None,
            key_version=key.version if key else None,
            channel_state=self.channel.state if self.channel else None,
            error=self.last_error,
            time_in_phase=stats["time_in_phase"],
            transitions=stats["total_transitions"],
        )

    async def on_channel_close(self) -> None:
        """Channel is gone; drop key material and finish the session."""
        reason = self.channel.close_reason if self.channel else None
        await self._teardown()
        self._emit(SessionEventType.CHANNEL_CLOSED, reason=reason)

    async def close(self) -> None:
        """Close the channel and stop all negotiation work."""
        if self.channel is not None and not self.channel.is_closed:
            await self.channel.close()
        await self._teardown()

    async def _fail(self, error: PastewireError) -> None:
        if self.fsm.is_closed():
            logger.info(f"Negotiation stopped: {error}")
            return
        logger.error(f"Negotiation failed: {error}")
        self.last_error = error.message
        self.fsm.transition(NegotiationEvent.NEGOTIATION_FAILED, error.message)
        self._emit(SessionEventType.ERROR, message=error.message, code=error.code.value, hint=error.hint)
        await self._teardown()

    async def _teardown(self) -> None:
        self.cipher.clear()
        self.engine.clear()
        self._key_ready.clear()
        self._pending_rekey = None

        if self.fsm.can_handle(NegotiationEvent.CHANNEL_CLOSED):
            self.fsm.transition(NegotiationEvent.CHANNEL_CLOSED)

        if (
            self._channel_task is not None
            and self._channel_task is not asyncio.current_task()
            and not self._channel_task.done()
        ):
            self._channel_task.cancel()

        await self.connectivity.close()
