"""Core data models used across codec, session, scanner, and CLI."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

DEFAULT_PORT = 3001


class RemoteCommand(str, Enum):
    POWER = "power"
    VOLUME_UP = "volume_up"
    VOLUME_DOWN = "volume_down"
    MUTE = "mute"
    UNMUTE = "unmute"
    CHANNEL_UP = "channel_up"
    CHANNEL_DOWN = "channel_down"
    UP = "up"
    DOWN = "down"
    LEFT = "left"
    RIGHT = "right"
    ENTER = "enter"
    BACK = "back"
    HOME = "home"
    MENU = "menu"
    INFO = "info"
    PLAY = "play"
    PAUSE = "pause"
    STOP = "stop"
    REWIND = "rewind"
    FAST_FORWARD = "fast_forward"
    LAUNCH_APP = "launch_app"
    LIST_INPUTS = "list_inputs"
    SELECT_INPUT = "select_input"


class RequestType(str, Enum):
    REGISTER = "register"
    REQUEST = "request"
    SUBSCRIBE = "subscribe"
    UNSUBSCRIBE = "unsubscribe"


class ResponseType(str, Enum):
    RESPONSE = "response"
    REGISTERED = "registered"
    ERROR = "error"


class PairingType(str, Enum):
    PROMPT = "PROMPT"
    PIN = "PIN"


class ConnectionPhase(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    AWAITING_REGISTRATION = "awaiting_registration"
    AWAITING_PAIRING_PROMPT = "awaiting_pairing_prompt"
    AWAITING_PIN = "awaiting_pin"
    PAIRED = "paired"
    DISCONNECTED = "disconnected"


class SessionStatus(str, Enum):
    DISCONNECTED = "Disconnected"
    CONNECTING = "Connecting..."
    CONNECTED = "Connected"
    PAIRING_REQUIRED = "Pairing required"
    ENTER_PIN = "Enter PIN from TV"
    PAIRED = "Connected & Paired"
    CANNOT_REACH_DEVICE = "Cannot reach device"
    PAIRING_REJECTED = "Pairing rejected - wrong PIN"
    PAIRING_TIMED_OUT = "Pairing cancelled - timeout"
    CONNECTION_LOST = "Connection lost"
    REQUEST_FAILED = "Request failed"
    PROTOCOL_ERROR = "Protocol error"
    NOT_CONNECTED = "Not connected to TV"
    NO_NETWORK = "No network connection"
    NO_DEVICES_FOUND = "No TVs found"
    DEVICES_FOUND = "Found TV(s)"


@dataclass(frozen=True)
class DeviceDescriptor:
    address: str
    port: int = DEFAULT_PORT
    name: str = ""

    def __post_init__(self) -> None:
        if not self.name:
            object.__setattr__(self, "name", f"LG webOS TV ({self.address})")


@dataclass(frozen=True)
class ScanResult:
    devices: tuple[DeviceDescriptor, ...]
    status: SessionStatus
    subnet_prefix: str | None = None


@dataclass(frozen=True)
class OutboundRequest:
    type: RequestType
    id: str | None = None
    uri: str | None = None
    payload: dict[str, Any] | None = None


@dataclass(frozen=True)
class ResponsePayload:
    client_key: str | None = None
    pairing_type: PairingType | None = None
    socket_path: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class InboundResponse:
    type: ResponseType
    id: str | None = None
    error: str | None = None
    payload: ResponsePayload = field(default_factory=ResponsePayload)


@dataclass(frozen=True)
class KeyPress:
    button: str
