"""
Pastewire - Negotiation state machine.

Created by orpheus497

This module implements the finite state machine for the copy-paste session
negotiation. The two roles walk different paths to the same terminal phase:

    initiator:  IDLE -> INITIATING -> AWAITING_ANSWER -> CONNECTED
    responder:  IDLE -> AWAITING_OFFER -> ANSWERING -> CONNECTED

Any phase moves to CLOSED when the channel closes or negotiation fails.
The role is fixed by the first event and never changes afterwards.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable, Dict, Optional

from .constants import STATE_ANSWERING_TIMEOUT, STATE_HISTORY_SIZE, STATE_INITIATING_TIMEOUT

logger = logging.getLogger(__name__)


class Role(Enum):
    """Which side of the negotiation this instance plays."""

    UNINITIATED = "uninitiated"
    INITIATOR = "initiator"
    RESPONDER = "responder"


class NegotiationPhase(Enum):
    """Negotiation phases."""

    IDLE = auto()  # Nothing started
    INITIATING = auto()  # Offer being built, candidates gathering
    AWAITING_ANSWER = auto()  # Offer handed to the user, waiting for the answer paste
    AWAITING_OFFER = auto()  # Offer pasted, being applied
    ANSWERING = auto()  # Answer being built
    CONNECTED = auto()  # Signaling finished
    CLOSED = auto()  # Channel closed or negotiation failed


class NegotiationEvent(Enum):
    """Inputs that drive the negotiation."""

    CREATE_REQUESTED = auto()  # User started a session
    OFFER_READY = auto()  # Local offer rendered
    OFFER_RECEIVED = auto()  # Remote offer pasted
    OFFER_APPLIED = auto()  # Remote offer applied, key derived
    ANSWER_READY = auto()  # Local answer rendered
    ANSWER_APPLIED = auto()  # Remote answer applied, key derived
    NEGOTIATION_FAILED = auto()  # Unrecoverable error mid-negotiation
    CHANNEL_CLOSED = auto()  # Channel closed or user quit


ROLE_BY_EVENT = {
    NegotiationEvent.CREATE_REQUESTED: Role.INITIATOR,
    NegotiationEvent.OFFER_RECEIVED: Role.RESPONDER,
}


@dataclass
class PhaseTransition:
    """Represents a phase transition."""

    from_phase: NegotiationPhase
    event: NegotiationEvent
    to_phase: NegotiationPhase
    timestamp: float = field(default_factory=time.time)


class NegotiationStateMachine:
    """
    Finite state machine for one negotiation.

    Enforces valid transitions, assigns the role, tracks history and
    provides timeouts for the phases that wait on local work.
    """

    TRANSITIONS: Dict[NegotiationPhase, Dict[NegotiationEvent, NegotiationPhase]] = {
        NegotiationPhase.IDLE: {
            NegotiationEvent.CREATE_REQUESTED: NegotiationPhase.INITIATING,
            NegotiationEvent.OFFER_RECEIVED: NegotiationPhase.AWAITING_OFFER,
            NegotiationEvent.CHANNEL_CLOSED: NegotiationPhase.CLOSED,
        },
        NegotiationPhase.INITIATING: {
            NegotiationEvent.OFFER_READY: NegotiationPhase.AWAITING_ANSWER,
            NegotiationEvent.NEGOTIATION_FAILED: NegotiationPhase.CLOSED,
            NegotiationEvent.CHANNEL_CLOSED: NegotiationPhase.CLOSED,
        },
        NegotiationPhase.AWAITING_ANSWER: {
            NegotiationEvent.ANSWER_APPLIED: NegotiationPhase.CONNECTED,
            NegotiationEvent.NEGOTIATION_FAILED: NegotiationPhase.CLOSED,
            NegotiationEvent.CHANNEL_CLOSED: NegotiationPhase.CLOSED,
        },
        NegotiationPhase.AWAITING_OFFER: {
            NegotiationEvent.OFFER_APPLIED: NegotiationPhase.ANSWERING,
            NegotiationEvent.NEGOTIATION_FAILED: NegotiationPhase.CLOSED,
            NegotiationEvent.CHANNEL_CLOSED: NegotiationPhase.CLOSED,
        },
        NegotiationPhase.ANSWERING: {
            NegotiationEvent.ANSWER_READY: NegotiationPhase.CONNECTED,
            NegotiationEvent.NEGOTIATION_FAILED: NegotiationPhase.CLOSED,
            NegotiationEvent.CHANNEL_CLOSED: NegotiationPhase.CLOSED,
        },
        NegotiationPhase.CONNECTED: {
            NegotiationEvent.NEGOTIATION_FAILED: NegotiationPhase.CLOSED,
            NegotiationEvent.CHANNEL_CLOSED: NegotiationPhase.CLOSED,
        },
        NegotiationPhase.CLOSED: {},
    }

    # Phase timeouts (seconds); phases waiting on a human have none
    PHASE_TIMEOUTS: Dict[NegotiationPhase, Optional[float]] = {
        NegotiationPhase.IDLE: None,
        NegotiationPhase.INITIATING: STATE_INITIATING_TIMEOUT,
        NegotiationPhase.AWAITING_ANSWER: None,
        NegotiationPhase.AWAITING_OFFER: STATE_ANSWERING_TIMEOUT,
        NegotiationPhase.ANSWERING: STATE_ANSWERING_TIMEOUT,
        NegotiationPhase.CONNECTED: None,
        NegotiationPhase.CLOSED: None,
    }

    def __init__(self):
        self.current_phase = NegotiationPhase.IDLE
        self.previous_phase: Optional[NegotiationPhase] = None
        self.role = Role.UNINITIATED
        self.phase_entry_time = time.time()
        self.error_message: Optional[str] = None
        self.transition_history: list[PhaseTransition] = []
        self.max_history = STATE_HISTORY_SIZE

        # Callbacks
        self.on_phase_change: Optional[Callable[[NegotiationPhase, NegotiationPhase], None]] = None

        logger.debug("Negotiation state machine initialized")

    def can_handle(self, event: NegotiationEvent) -> bool:
        """Check whether event is acceptable in the current phase."""
        return self.is_valid_transition(self.current_phase, event)

    def is_valid_transition(self, from_phase: NegotiationPhase, event: NegotiationEvent) -> bool:
        """
        Check if a transition is valid.

        Args:
            from_phase: Source phase
            event: Event triggering transition

        Returns:
            True if valid, False otherwise
        """
        if event in ROLE_BY_EVENT and self.role is not Role.UNINITIATED:
            return False
        return event in self.TRANSITIONS.get(from_phase, {})

    def transition(self, event: NegotiationEvent, error_msg: Optional[str] = None) -> bool:
        """
        Attempt a phase transition.

        Args:
            event: Event triggering transition
            error_msg: Reason, for NEGOTIATION_FAILED

        Returns:
            True if transition successful, False otherwise
        """
        if not self.is_valid_transition(self.current_phase, event):
            logger.warning(f"Invalid transition: {self.current_phase.name} + {event.name}")
            return False

        new_phase = self.TRANSITIONS[self.current_phase][event]

        if event in ROLE_BY_EVENT:
            self.role = ROLE_BY_EVENT[event]
            logger.info(f"Negotiation role: {self.role.value}")

        if event == NegotiationEvent.NEGOTIATION_FAILED:
            self.error_message = error_msg or "Unknown error"

        old_phase = self.current_phase
        self.previous_phase = old_phase
        self.current_phase = new_phase
        self.phase_entry_time = time.time()

        self.transition_history.append(PhaseTransition(old_phase, event, new_phase))
        if len(self.transition_history) > self.max_history:
            self.transition_history = self.transition_history[-self.max_history :]

        logger.info(f"Negotiation phase: {old_phase.name} -> {new_phase.name} (event: {event.name})")

        if self.on_phase_change:
            try:
                self.on_phase_change(old_phase, new_phase)
            except Exception as e:
                logger.error(f"Phase change callback error: {e}")

        return True

    def get_time_in_phase(self) -> float:
        """Get time spent in current phase (seconds)."""
        return time.time() - self.phase_entry_time

    def is_timeout_exceeded(self) -> bool:
        """Check if the current phase has exceeded its timeout."""
        timeout = self.PHASE_TIMEOUTS.get(self.current_phase)
        if timeout is None:
            return False
        return self.get_time_in_phase() > timeout

    def is_closed(self) -> bool:
        return self.current_phase == NegotiationPhase.CLOSED

    def get_statistics(self) -> Dict[str, Any]:
        """
        Get state machine statistics.

        Returns:
            Dictionary with statistics
        """
        event_counts: Dict[str, int] = {}
        for transition in self.transition_history:
            event_counts[transition.event.name] = event_counts.get(transition.event.name, 0) + 1

        return {
            "current_phase": self.current_phase.name,
            "previous_phase": self.previous_phase.name if self.previous_phase else None,
            "role": self.role.value,
            "time_in_phase": self.get_time_in_phase(),
            "timeout_exceeded": self.is_timeout_exceeded(),
            "error_message": self.error_message,
            "total_transitions": len(self.transition_history),
            "event_counts": event_counts,
        }

    def __repr__(self) -> str:
        return (
            f"NegotiationStateMachine(role={self.role.value}, phase={self.current_phase.name}, "
            f"time_in_phase={self.get_time_in_phase():.1f}s)"
        )
