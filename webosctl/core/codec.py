"""Wire encoding and decoding for the SSAP command protocol.

Everything here is pure: requests become JSON strings, key presses become the
line-oriented frames the pointer input socket expects, and inbound frames are
parsed into :class:`InboundResponse` values. No I/O happens in this module.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass
from typing import Any

from webosctl.core.errors import CodecError, CommandArgumentError, ProtocolError
from webosctl.core.model import (
    InboundResponse,
    KeyPress,
    OutboundRequest,
    PairingType,
    RemoteCommand,
    RequestType,
    ResponsePayload,
    ResponseType,
)

PAIRING_URI = "ssap://pairing/setPin"
POINTER_SOCKET_URI = "ssap://com.webos.service.networkinput/getPointerInputSocket"
CLIENT_KEY_FIELD = "client-key"

PERMISSIONS: tuple[str, ...] = (
    "LAUNCH",
    "LAUNCH_WEBAPP",
    "APP_TO_APP",
    "CLOSE",
    "TEST_OPEN",
    "TEST_PROTECTED",
    "CONTROL_AUDIO",
    "CONTROL_DISPLAY",
    "CONTROL_INPUT_JOYSTICK",
    "CONTROL_INPUT_MEDIA_RECORDING",
    "CONTROL_INPUT_MEDIA_PLAYBACK",
    "CONTROL_INPUT_TV",
    "CONTROL_POWER",
    "READ_APP_STATUS",
    "READ_CURRENT_CHANNEL",
    "READ_INPUT_DEVICE_LIST",
    "READ_NETWORK_STATE",
    "READ_RUNNING_APPS",
    "READ_TV_CHANNEL_LIST",
    "WRITE_NOTIFICATION_TOAST",
    "READ_POWER_STATE",
    "READ_COUNTRY_INFO",
)


@dataclass(frozen=True)
class CommandRoute:
    """Where a :class:`RemoteCommand` goes on the wire.

    Exactly one of ``uri`` (primary channel request) or ``button`` (secondary
    channel key frame) is set. ``argument_field`` names the payload key that
    receives the caller-supplied argument, if the command takes one.
    """

    uri: str | None = None
    button: str | None = None
    payload: tuple[tuple[str, Any], ...] = ()
    argument_field: str | None = None

    @property
    def is_key(self) -> bool:
        return self.button is not None


COMMAND_TABLE: dict[RemoteCommand, CommandRoute] = {
    RemoteCommand.POWER: CommandRoute(uri="ssap://system/turnOff", payload=(("standbyMode", "active"),)),
    RemoteCommand.VOLUME_UP: CommandRoute(uri="ssap://audio/volumeUp"),
    RemoteCommand.VOLUME_DOWN: CommandRoute(uri="ssap://audio/volumeDown"),
    RemoteCommand.MUTE: CommandRoute(uri="ssap://audio/setMute", payload=(("mute", True),)),
    RemoteCommand.UNMUTE: CommandRoute(uri="ssap://audio/setMute", payload=(("mute", False),)),
    RemoteCommand.CHANNEL_UP: CommandRoute(uri="ssap://tv/channelUp"),
    RemoteCommand.CHANNEL_DOWN: CommandRoute(uri="ssap://tv/channelDown"),
    RemoteCommand.PLAY: CommandRoute(uri="ssap://media.controls/play"),
    RemoteCommand.PAUSE: CommandRoute(uri="ssap://media.controls/pause"),
    RemoteCommand.STOP: CommandRoute(uri="ssap://media.controls/stop"),
    RemoteCommand.REWIND: CommandRoute(uri="ssap://media.controls/rewind"),
    RemoteCommand.FAST_FORWARD: CommandRoute(uri="ssap://media.controls/fastForward"),
    RemoteCommand.LAUNCH_APP: CommandRoute(uri="ssap://system.launcher/launch", argument_field="id"),
    RemoteCommand.LIST_INPUTS: CommandRoute(uri="ssap://tv/getExternalInputList"),
    RemoteCommand.SELECT_INPUT: CommandRoute(uri="ssap://tv/switchInput", argument_field="inputId"),
    RemoteCommand.UP: CommandRoute(button="UP"),
    RemoteCommand.DOWN: CommandRoute(button="DOWN"),
    RemoteCommand.LEFT: CommandRoute(button="LEFT"),
    RemoteCommand.RIGHT: CommandRoute(button="RIGHT"),
    RemoteCommand.ENTER: CommandRoute(button="ENTER"),
    RemoteCommand.BACK: CommandRoute(button="BACK"),
    RemoteCommand.HOME: CommandRoute(button="HOME"),
    RemoteCommand.MENU: CommandRoute(button="MENU"),
    RemoteCommand.INFO: CommandRoute(button="INFO"),
}


def _check_command_table() -> None:
    missing = [command.value for command in RemoteCommand if command not in COMMAND_TABLE]
    if missing:
        raise CodecError(f"Command table has no route for: {', '.join(missing)}")
    for command, route in COMMAND_TABLE.items():
        if (route.uri is None) == (route.button is None):
            raise CodecError(f"Command '{command.value}' must map to exactly one of uri/button")


_check_command_table()


def new_request_id() -> str:
    return uuid.uuid4().hex


def manifest() -> dict[str, Any]:
    return {"manifestVersion": 1, "permissions": list(PERMISSIONS)}


def encode_register(
    client_key: str | None = None,
    *,
    pairing_type: PairingType = PairingType.PIN,
    request_id: str | None = None,
) -> OutboundRequest:
    payload: dict[str, Any] = {
        "forcePairing": False,
        "pairingType": pairing_type.value,
        "manifest": manifest(),
    }
    if client_key:
        payload[CLIENT_KEY_FIELD] = client_key
    return OutboundRequest(type=RequestType.REGISTER, id=request_id, payload=payload)


def encode_set_pin(pin: str, *, request_id: str) -> OutboundRequest:
    return OutboundRequest(
        type=RequestType.REQUEST,
        id=request_id,
        uri=PAIRING_URI,
        payload={"pin": pin},
    )


def encode_pointer_socket_request(*, request_id: str) -> OutboundRequest:
    return OutboundRequest(type=RequestType.REQUEST, id=request_id, uri=POINTER_SOCKET_URI)


def encode_command(
    command: RemoteCommand,
    argument: str | None = None,
    *,
    request_id: str | None = None,
) -> OutboundRequest | KeyPress:
    """Map a remote command to either a primary request or a key press.

    Raises:
        CommandArgumentError: if ``argument`` is missing for a command that
            needs one, or supplied to a command that takes none.
    """
    route = COMMAND_TABLE[command]
    if route.argument_field is None and argument is not None:
        raise CommandArgumentError(f"Command '{command.value}' does not take an argument")
    if route.argument_field is not None and not argument:
        raise CommandArgumentError(
            f"Command '{command.value}' requires an argument ({route.argument_field})"
        )

    if route.is_key:
        return KeyPress(button=route.button or "")

    payload = dict(route.payload)
    if route.argument_field is not None:
        payload[route.argument_field] = argument
    return OutboundRequest(
        type=RequestType.REQUEST,
        id=request_id or new_request_id(),
        uri=route.uri,
        payload=payload or None,
    )


def serialize_request(request: OutboundRequest) -> str:
    doc: dict[str, Any] = {"type": request.type.value}
    if request.id is not None:
        doc["id"] = request.id
    if request.uri is not None:
        doc["uri"] = request.uri
    if request.payload is not None:
        doc["payload"] = request.payload
    return json.dumps(doc, separators=(",", ":"))


def encode_key_frame(button: str) -> str:
    return "\n".join(("type:button", f"name:{button}", "", ""))


def _parse_pairing_type(value: Any) -> PairingType | None:
    if not isinstance(value, str):
        return None
    try:
        return PairingType(value.upper())
    except ValueError:
        return None


def _optional_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def decode_response(frame: str | bytes) -> InboundResponse:
    """Parse an inbound primary-channel frame.

    Raises:
        ProtocolError: if the frame is not a JSON object or its ``type`` is
            missing or not one of ``response``, ``registered``, ``error``.
    """
    if isinstance(frame, bytes):
        frame = frame.decode("utf-8", "replace")
    try:
        doc = json.loads(frame)
    except (ValueError, RecursionError) as exc:
        raise ProtocolError(f"Inbound frame is not valid JSON: {exc}") from exc

    if not isinstance(doc, dict):
        raise ProtocolError("Inbound frame must be a JSON object")

    raw_type = doc.get("type")
    if raw_type is None:
        raise ProtocolError("Inbound frame has no 'type' field")
    try:
        response_type = ResponseType(raw_type)
    except ValueError as exc:
        raise ProtocolError(f"Unknown response type '{raw_type}'") from exc

    raw_payload = doc.get("payload")
    if not isinstance(raw_payload, dict):
        raw_payload = {}

    payload = ResponsePayload(
        client_key=_optional_str(raw_payload.get(CLIENT_KEY_FIELD)),
        pairing_type=_parse_pairing_type(raw_payload.get("pairingType")),
        socket_path=_optional_str(raw_payload.get("socketPath")),
        raw=raw_payload,
    )
    response_id = doc.get("id")
    return InboundResponse(
        type=response_type,
        id=str(response_id) if response_id is not None else None,
        error=_optional_str(doc.get("error")),
        payload=payload,
    )
