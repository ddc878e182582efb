"""
Pytest configuration and fixtures for Pastewire tests.

Created by orpheus497

Provides common fixtures and test utilities for unit and integration tests.
"""

import asyncio
import os
import shutil
import tempfile
from pathlib import Path
from typing import Dict, Generator, List, Optional

import pytest

from pastewire.channel import MemoryChannel
from pastewire.codec import DescriptorKind, EnvelopeCodec, EnvelopeVariant, SessionDescriptor
from pastewire.constants import LOCALHOST
from pastewire.session import Session, SessionEvent, SessionEventType
from pastewire.transport import (
    SETUP_ACTIVE,
    SETUP_PASSIVE,
    Candidate,
    ConnectivityProvider,
    ParsedDescription,
    TcpConnectivity,
    parse_description,
    render_description,
)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """
    Create a temporary directory for test data.

    Yields:
        Path: Temporary directory path

    Cleanup:
        Automatically removes directory after test
    """
    tmp = Path(tempfile.mkdtemp(prefix="pastewire_test_"))
    try:
        yield tmp
    finally:
        shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def clean_env(monkeypatch) -> None:
    """Remove PASTEWIRE_* overrides that would leak into config tests."""
    for name in list(os.environ):
        if name.startswith("PASTEWIRE_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def sample_offer_sdp() -> str:
    """Descriptor text of an offer reachable on loopback."""
    return render_description("sess-1", "token-offer", SETUP_PASSIVE, [Candidate(LOCALHOST, 5050)])


class Switchboard:
    """Connects two MemoryConnectivity instances once the answer is applied."""

    def __init__(self):
        self._ends: Dict[DescriptorKind, asyncio.Future] = {}

    def end(self, kind: DescriptorKind) -> asyncio.Future:
        if kind not in self._ends:
            self._ends[kind] = asyncio.get_running_loop().create_future()
        return self._ends[kind]

    def connect(self) -> None:
        left, right = MemoryChannel.pair()
        self.end(DescriptorKind.OFFER).set_result(left)
        self.end(DescriptorKind.ANSWER).set_result(right)


class MemoryConnectivity(ConnectivityProvider):
    """In-process connectivity; the channel opens when the answer is applied."""

    def __init__(self, switchboard: Switchboard, name: str):
        self.switchboard = switchboard
        self.name = name
        self.kind: Optional[DescriptorKind] = None
        self.session_id: Optional[str] = None
        self.remote: Optional[ParsedDescription] = None
        self.closed = False

    async def create_offer(self) -> None:
        self.kind = DescriptorKind.OFFER
        self.session_id = f"memory-{self.name}"

    async def create_answer(self) -> None:
        self.kind = DescriptorKind.ANSWER

    def validate_remote_description(self, descriptor: SessionDescriptor) -> ParsedDescription:
        return parse_description(descriptor.sdp)

    async def apply_remote_description(self, descriptor: SessionDescriptor) -> None:
        self.remote = self.validate_remote_description(descriptor)
        if descriptor.kind is DescriptorKind.OFFER:
            self.session_id = self.remote.session_id
        else:
            self.switchboard.connect()

    async def wait_gathering_complete(self, timeout: float) -> bool:
        return True

    def local_description(self) -> SessionDescriptor:
        setup = SETUP_PASSIVE if self.kind is DescriptorKind.OFFER else SETUP_ACTIVE
        candidates = [Candidate(LOCALHOST, 9)] if self.kind is DescriptorKind.OFFER else []
        return SessionDescriptor(self.kind, render_description(self.session_id, self.name, setup, candidates))

    async def channel_ready(self):
        return await self.switchboard.end(self.kind)

    async def close(self) -> None:
        self.closed = True


class SlowConnectivity(MemoryConnectivity):
    """Memory connectivity whose offer setup and gathering take a while."""

    def __init__(self, switchboard: Switchboard, name: str, offer_delay: float = 0.0, gather_delay: float = 0.0):
        super().__init__(switchboard, name)
        self.offer_delay = offer_delay
        self.gather_delay = gather_delay

    async def create_offer(self) -> None:
        await asyncio.sleep(self.offer_delay)
        await super().create_offer()

    async def wait_gathering_complete(self, timeout: float) -> bool:
        await asyncio.sleep(min(self.gather_delay, timeout))
        return self.gather_delay <= timeout


class EventRecorder:
    """Collects SessionEvents and lets a test wait for them."""

    def __init__(self, session: Session):
        self.events: List[SessionEvent] = []
        session.subscribe(self.events.append)

    def of_type(self, event_type: SessionEventType) -> List[SessionEvent]:
        return [event for event in self.events if event.type == event_type]

    async def wait_for(self, event_type: SessionEventType, count: int = 1, timeout: float = 5.0) -> SessionEvent:
        async def _poll():
            while len(self.of_type(event_type)) < count:
                await asyncio.sleep(0.01)

        await asyncio.wait_for(_poll(), timeout)
        return self.of_type(event_type)[count - 1]


def make_memory_pair(variant: EnvelopeVariant = EnvelopeVariant.KEYED, strict: bool = True):
    """Two sessions joined by a switchboard, with recorders attached."""
    switchboard = Switchboard()
    alice = Session(MemoryConnectivity(switchboard, "alice"), EnvelopeCodec(variant, strict))
    bob = Session(MemoryConnectivity(switchboard, "bob"), EnvelopeCodec(variant, strict))
    return alice, bob, EventRecorder(alice), EventRecorder(bob)


def make_slow_session(offer_delay: float = 0.0, gather_delay: float = 0.0):
    """A lone session whose connectivity is slow to gather."""
    session = Session(SlowConnectivity(Switchboard(), "slow", offer_delay, gather_delay))
    return session, EventRecorder(session)


def make_loopback_connectivity(**overrides) -> TcpConnectivity:
    """TcpConnectivity bound to loopback with test-friendly timings."""
    options = dict(
        host=LOCALHOST,
        port=0,
        connect_timeout=2.0,
        dial_retry_interval=0.05,
        dial_window=10.0,
        hello_timeout=2.0,
    )
    options.update(overrides)
    return TcpConnectivity(**options)


async def connect_pair(alice: Session, bob: Session, alice_events: EventRecorder, bob_events: EventRecorder) -> None:
    """Run the full copy-paste negotiation and wait until both channels are open."""
    offer = await alice.create_session()
    answer = await bob.receive_envelope(offer)
    assert await alice.receive_envelope(answer) is None
    await alice_events.wait_for(SessionEventType.CHANNEL_OPEN)
    await bob_events.wait_for(SessionEventType.CHANNEL_OPEN)


# Pytest marks
def pytest_configure(config):
    """
    Configure pytest markers.

    Args:
        config: Pytest configuration object
    """
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


# Test collection hooks
def pytest_collection_modifyitems(config, items):
    """
    Modify test collection to add markers based on test location.

    Args:
        config: Pytest configuration
        items: List of collected test items
    """
    for item in items:
        # Add unit marker to tests in unit/ directory
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)

        # Add integration marker to tests in integration/ directory
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
