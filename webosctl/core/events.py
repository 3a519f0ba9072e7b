"""Notifications delivered from the session and scanner to their observer."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Union

from webosctl.core.model import (
    ConnectionPhase,
    DeviceDescriptor,
    InboundResponse,
    PairingType,
    RemoteCommand,
    ScanResult,
    SessionStatus,
)


@dataclass(frozen=True)
class PhaseChanged:
    phase: ConnectionPhase
    status: SessionStatus


@dataclass(frozen=True)
class PairingRequired:
    pairing_type: PairingType


@dataclass(frozen=True)
class Registered:
    client_key: str


@dataclass(frozen=True)
class InputChannelReady:
    url: str


@dataclass(frozen=True)
class ResponseReceived:
    response: InboundResponse


@dataclass(frozen=True)
class RequestFailed:
    request_id: str | None
    message: str
    status: SessionStatus


@dataclass(frozen=True)
class ProtocolViolation:
    message: str


@dataclass(frozen=True)
class NetworkError:
    message: str
    status: SessionStatus


@dataclass(frozen=True)
class CommandRejected:
    command: RemoteCommand | None
    status: SessionStatus
    reason: str


@dataclass(frozen=True)
class Disconnected:
    status: SessionStatus
    error: str | None = None


@dataclass(frozen=True)
class DeviceFound:
    device: DeviceDescriptor


@dataclass(frozen=True)
class ScanFinished:
    result: ScanResult


SessionEvent = Union[
    PhaseChanged,
    PairingRequired,
    Registered,
    InputChannelReady,
    ResponseReceived,
    RequestFailed,
    ProtocolViolation,
    NetworkError,
    CommandRejected,
    Disconnected,
    DeviceFound,
    ScanFinished,
]

EventHandler = Callable[[SessionEvent], None]


def ignore_event(_: SessionEvent) -> None:
    return None
