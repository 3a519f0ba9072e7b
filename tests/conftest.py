from __future__ import annotations

import pytest

from fakes import FakeChannelFactory
from webosctl.core.credentials import MemoryCredentialStore
from webosctl.core.session import Session
from webosctl.core.settings import Settings

TV_ADDRESS = "192.168.1.20"


@pytest.fixture
def factory() -> FakeChannelFactory:
    return FakeChannelFactory()


@pytest.fixture
def store() -> MemoryCredentialStore:
    return MemoryCredentialStore()


@pytest.fixture
def events() -> list:
    return []


@pytest.fixture
def settings() -> Settings:
    return Settings(heartbeat_enabled=False, request_timeout_s=1.0)


@pytest.fixture
def session(factory, store, events, settings) -> Session:
    return Session(
        TV_ADDRESS,
        settings=settings,
        credentials=store,
        channel_factory=factory,
        on_event=events.append,
    )
