"""
Shared fixtures.

Everything runs on the in-memory store and a controllable clock; no Redis,
no network. The LogMessageSender records every outbound message so tests
can assert on what the user would have received.
"""

import pytest

from permit_session.config.settings import Settings
from permit_session.container.service_container import ServiceContainer
from permit_session.core.security import SecurityValidator
from permit_session.core.session_store import SessionStore
from permit_session.core.state_machine import StateMachine
from permit_session.pipeline.dialogue import DialogueFlow
from permit_session.pipeline.schemas import InboundMessage
from permit_session.providers.messaging.log import LogMessageSender
from permit_session.providers.store.memory import MemoryStoreBackend

IDENTITY = "5215512345678"
START_TIME = 1_700_000_000.0


class FakeClock:
    """Callable clock the tests move by hand."""

    def __init__(self, start: float = START_TIME):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return Settings(
        store_backend="memory",
        extraction_provider="pattern",
        messaging_provider="log",
        schedule_restore_notice=False,
        store_retry_delay_seconds=0.0,
        lock_wait_seconds=0.2,
    )


@pytest.fixture
async def backend(clock):
    store = MemoryStoreBackend(clock=clock)
    await store.initialize()
    yield store
    await store.shutdown()


@pytest.fixture
def session_store(backend, settings, clock):
    return SessionStore(backend, settings, clock=clock)


@pytest.fixture
def state_machine(clock):
    return StateMachine(clock=clock)


@pytest.fixture
def validator():
    return SecurityValidator(current_year=2025)


@pytest.fixture
def dialogue(state_machine, session_store, validator, settings):
    return DialogueFlow(state_machine, session_store, validator, settings)


@pytest.fixture
def sender():
    return LogMessageSender()


@pytest.fixture
async def container(settings, clock, sender):
    built = ServiceContainer(
        settings,
        backend=MemoryStoreBackend(clock=clock),
        sender=sender,
        clock=clock,
    )
    await built.initialize()
    yield built
    await built.shutdown()


@pytest.fixture
def engine(container):
    return container.get_engine()


@pytest.fixture
def say(engine, clock):
    """Send one message as IDENTITY after moving the clock forward."""

    async def _say(text, identity=IDENTITY, advance=2.0, message_id=None):
        clock.advance(advance)
        return await engine.handle_message(
            InboundMessage(identity=identity, text=text, message_id=message_id)
        )

    return _say
