"""Stable public API for building tooling on top of webosctl.

This module is the supported integration surface for third-party callers
(GUI/TUI/services/scripts). Avoid importing from private/internal modules
unless intentionally depending on non-stable internals.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from webosctl.core.credentials import (
    CLIENT_KEY_NAME,
    CredentialStore,
    MemoryCredentialStore,
    YamlCredentialStore,
)
from webosctl.core.errors import (
    CodecError,
    CommandArgumentError,
    ConfigLoadError,
    ConfigValidationError,
    CredentialStoreError,
    DeviceRequestError,
    DiscoveryError,
    InvalidPinError,
    ProtocolError,
    SessionError,
    SessionStateError,
    TransportConnectError,
    TransportError,
    TransportSendError,
    TransportTimeoutError,
    WebosctlError,
)
from webosctl.core.events import CommandRejected, EventHandler, SessionEvent, ignore_event
from webosctl.core.model import (
    ConnectionPhase,
    DeviceDescriptor,
    InboundResponse,
    RemoteCommand,
    ScanResult,
    SessionStatus,
)
from webosctl.core.scanner import NetworkScanner, Prober
from webosctl.core.session import Session
from webosctl.core.settings import Settings, load_settings
from webosctl.transports.base import ChannelFactory

LOGGER = logging.getLogger(__name__)

__all__ = [
    "WebosctlError",
    "ConfigLoadError",
    "ConfigValidationError",
    "CredentialStoreError",
    "DiscoveryError",
    "CodecError",
    "CommandArgumentError",
    "ProtocolError",
    "SessionError",
    "SessionStateError",
    "InvalidPinError",
    "DeviceRequestError",
    "TransportError",
    "TransportConnectError",
    "TransportSendError",
    "TransportTimeoutError",
    "ConnectionPhase",
    "DeviceDescriptor",
    "InboundResponse",
    "RemoteCommand",
    "ScanResult",
    "SessionStatus",
    "SessionEvent",
    "CredentialStore",
    "MemoryCredentialStore",
    "YamlCredentialStore",
    "Settings",
    "Client",
]


class Client:
    """Public client for discovering, pairing with, and driving a TV.

    One `Client` holds at most one live :class:`Session`. Every state change
    is delivered to ``on_event``; the same state is readable through the
    ``phase``/``status``/``last_error`` properties.
    """

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        credentials: CredentialStore | None = None,
        channel_factory: ChannelFactory | None = None,
        prober: Prober | None = None,
        on_event: EventHandler = ignore_event,
    ) -> None:
        self.settings = settings or load_settings()
        self.credentials = credentials or YamlCredentialStore(self.settings.credentials_file)
        self._channel_factory = channel_factory
        self._prober = prober
        self._on_event = on_event
        self._session: Session | None = None

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def phase(self) -> ConnectionPhase:
        return self._session.phase if self._session else ConnectionPhase.IDLE

    @property
    def status(self) -> SessionStatus:
        return self._session.status if self._session else SessionStatus.DISCONNECTED

    @property
    def last_error(self) -> str | None:
        return self._session.last_error if self._session else None

    @property
    def has_credential(self) -> bool:
        return self.credentials.get(CLIENT_KEY_NAME) is not None

    @property
    def paired_address(self) -> str | None:
        if self._session is not None and self._session.is_paired:
            return self._session.address
        return None

    async def scan(self, on_found: Callable[[DeviceDescriptor], None] | None = None) -> ScanResult:
        scanner = NetworkScanner(
            port=self.settings.port,
            host_range=self.settings.host_range,
            probe_timeout_s=self.settings.probe_timeout_s,
            max_concurrent_probes=self.settings.max_concurrent_probes,
            prober=self._prober,
            on_event=self._on_event,
        )
        return await scanner.discover(on_found)

    async def connect(self, address: str) -> bool:
        if self._session is not None:
            await self._session.disconnect()
        self._session = Session(
            address,
            settings=self.settings,
            credentials=self.credentials,
            channel_factory=self._channel_factory,
            on_event=self._on_event,
        )
        return await self._session.connect()

    async def disconnect(self) -> None:
        if self._session is not None:
            await self._session.disconnect()

    async def submit_pin(self, pin: str) -> str | None:
        return await self._require_session().submit_pin(pin)

    async def send_command(self, command: RemoteCommand, argument: str | None = None) -> str | None:
        if self._session is None:
            self._emit(CommandRejected(command=command, status=SessionStatus.NOT_CONNECTED, reason="no session"))
            return None
        return await self._session.send_command(command, argument)

    async def list_inputs(self) -> list[dict[str, Any]]:
        return await self._require_session().list_inputs()

    async def wait_for_phase(
        self,
        *phases: ConnectionPhase,
        timeout_s: float | None = None,
    ) -> ConnectionPhase:
        return await self._require_session().wait_for_phase(*phases, timeout_s=timeout_s)

    def _require_session(self) -> Session:
        if self._session is None:
            raise SessionStateError("Not connected: call connect() first")
        return self._session

    def _emit(self, event: SessionEvent) -> None:
        try:
            self._on_event(event)
        except Exception:  # noqa: BLE001
            LOGGER.exception("Error in client event handler")
