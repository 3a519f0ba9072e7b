from __future__ import annotations

import asyncio

import pytest

from fakes import FakeChannelFactory, wait_until
from webosctl.core.credentials import CLIENT_KEY_NAME, MemoryCredentialStore
from webosctl.core.errors import (
    DeviceRequestError,
    InvalidPinError,
    SessionStateError,
    TransportConnectError,
    TransportSendError,
    TransportTimeoutError,
)
from webosctl.core.events import (
    CommandRejected,
    Disconnected,
    InputChannelReady,
    NetworkError,
    PairingRequired,
    ProtocolViolation,
    Registered,
    RequestFailed,
)
from webosctl.core.model import ConnectionPhase, PairingType, RemoteCommand, SessionStatus
from webosctl.core.session import Session
from webosctl.core.settings import Settings

POINTER_URI = "ssap://com.webos.service.networkinput/getPointerInputSocket"
SOCKET_PATH = "wss://192.168.1.20:3001/resources/abc/netinput.pointer.sock"


def _register_id(factory: FakeChannelFactory) -> str:
    return factory.primary.sent_json()[0]["id"]


async def _pair(session: Session, factory: FakeChannelFactory, client_key: str = "abc") -> None:
    assert await session.connect()
    await factory.primary.deliver(
        {"type": "registered", "id": _register_id(factory), "payload": {"client-key": client_key}}
    )
    await factory.primary.deliver(
        {"type": "response", "id": session.pointer_request_id, "payload": {"socketPath": SOCKET_PATH}}
    )


@pytest.mark.asyncio
async def test_connect_sends_register_without_credential(session, factory) -> None:
    assert await session.connect()

    assert factory.primary.url == "wss://192.168.1.20:3001"
    assert session.phase is ConnectionPhase.AWAITING_REGISTRATION
    sent = factory.primary.sent_json()
    assert len(sent) == 1
    assert sent[0]["type"] == "register"
    assert sent[0]["payload"]["forcePairing"] is False
    assert "client-key" not in sent[0]["payload"]


@pytest.mark.asyncio
async def test_pin_pairing_type_moves_to_awaiting_pin(session, factory, events) -> None:
    await session.connect()
    await factory.primary.deliver(
        {"type": "response", "id": _register_id(factory), "payload": {"pairingType": "PIN", "returnValue": True}}
    )

    assert session.phase is ConnectionPhase.AWAITING_PIN
    assert session.status is SessionStatus.ENTER_PIN
    assert PairingRequired(pairing_type=PairingType.PIN) in events


@pytest.mark.asyncio
async def test_prompt_pairing_type_moves_to_awaiting_prompt(session, factory) -> None:
    await session.connect()
    await factory.primary.deliver(
        {"type": "response", "id": _register_id(factory), "payload": {"pairingType": "PROMPT"}}
    )
    assert session.phase is ConnectionPhase.AWAITING_PAIRING_PROMPT


@pytest.mark.asyncio
async def test_pin_then_registered_pairs_and_requests_pointer_socket(session, factory, store, events) -> None:
    await session.connect()
    register_id = _register_id(factory)
    await factory.primary.deliver({"type": "response", "id": register_id, "payload": {"pairingType": "PIN"}})

    pin_id = await session.submit_pin("12345678")
    pin_request = factory.primary.sent_json()[-1]
    assert pin_request == {
        "type": "request",
        "id": pin_id,
        "uri": "ssap://pairing/setPin",
        "payload": {"pin": "12345678"},
    }

    await factory.primary.deliver({"type": "registered", "id": register_id, "payload": {"client-key": "abc"}})

    assert store.get(CLIENT_KEY_NAME) == "abc"
    assert session.phase is ConnectionPhase.PAIRED
    assert session.status is SessionStatus.PAIRED
    assert Registered(client_key="abc") in events
    pointer_request = factory.primary.sent_json()[-1]
    assert pointer_request["uri"] == POINTER_URI
    assert pointer_request["id"] == session.pointer_request_id


@pytest.mark.asyncio
async def test_stored_credential_is_sent_and_replaced(factory, events, settings) -> None:
    store = MemoryCredentialStore({CLIENT_KEY_NAME: "old-key"})
    session = Session("192.168.1.20", settings=settings, credentials=store, channel_factory=factory, on_event=events.append)

    await session.connect()
    register = factory.primary.sent_json()[0]
    assert register["payload"]["client-key"] == "old-key"

    await factory.primary.deliver({"type": "registered", "id": register["id"], "payload": {"client-key": "new-key"}})
    assert session.phase is ConnectionPhase.PAIRED
    assert store.get(CLIENT_KEY_NAME) == "new-key"


@pytest.mark.asyncio
async def test_socket_path_opens_input_channel_only_for_pointer_request(session, factory, events) -> None:
    await session.connect()
    await factory.primary.deliver(
        {"type": "registered", "id": _register_id(factory), "payload": {"client-key": "abc"}}
    )

    await factory.primary.deliver({"type": "response", "id": "unrelated", "payload": {"socketPath": SOCKET_PATH}})
    assert factory.secondary is None

    await factory.primary.deliver(
        {"type": "response", "id": session.pointer_request_id, "payload": {"socketPath": SOCKET_PATH}}
    )
    assert factory.secondary is not None
    assert factory.secondary.url == SOCKET_PATH
    assert session.has_input_channel
    assert InputChannelReady(url=SOCKET_PATH) in events


@pytest.mark.asyncio
async def test_relative_socket_path_is_resolved_against_device(session, factory) -> None:
    await session.connect()
    await factory.primary.deliver(
        {"type": "registered", "id": _register_id(factory), "payload": {"client-key": "abc"}}
    )
    await factory.primary.deliver(
        {"type": "response", "id": session.pointer_request_id, "payload": {"socketPath": "/resources/x/pointer.sock"}}
    )
    assert factory.secondary.url == "wss://192.168.1.20:3001/resources/x/pointer.sock"


@pytest.mark.asyncio
async def test_rejected_pairing_keeps_awaiting_pin(session, factory, events) -> None:
    await session.connect()
    register_id = _register_id(factory)
    await factory.primary.deliver({"type": "response", "id": register_id, "payload": {"pairingType": "PIN"}})
    pin_id = await session.submit_pin("87654321")

    await factory.primary.deliver({"type": "error", "id": pin_id, "error": "403 User rejected pairing"})

    assert session.phase is ConnectionPhase.AWAITING_PIN
    assert session.status is SessionStatus.PAIRING_REJECTED
    assert session.last_error == "403 User rejected pairing"
    assert any(isinstance(e, RequestFailed) and e.request_id == pin_id for e in events)
    assert factory.primary.close_calls == 0


@pytest.mark.asyncio
async def test_cancelled_pairing_reports_timeout(session, factory) -> None:
    await session.connect()
    await factory.primary.deliver({"type": "error", "id": _register_id(factory), "error": "409 register request cancelled"})
    assert session.status is SessionStatus.PAIRING_TIMED_OUT
    assert session.phase is ConnectionPhase.AWAITING_REGISTRATION


@pytest.mark.asyncio
async def test_protocol_violation_leaves_state_unchanged(session, factory, events) -> None:
    await session.connect()
    await factory.primary.deliver({"type": "hello", "id": "1"})
    await factory.primary.deliver("{{not json")

    assert session.phase is ConnectionPhase.AWAITING_REGISTRATION
    assert sum(isinstance(e, ProtocolViolation) for e in events) == 2
    assert session.status is SessionStatus.PROTOCOL_ERROR


@pytest.mark.asyncio
async def test_deeply_nested_frame_is_dropped(session, factory, events) -> None:
    await _pair(session, factory)

    await factory.primary.deliver("[" * 100000 + "]" * 100000)

    assert session.phase is ConnectionPhase.PAIRED
    assert session.status is SessionStatus.PROTOCOL_ERROR
    assert isinstance(events[-1], ProtocolViolation)
    assert await session.send_command(RemoteCommand.VOLUME_UP) is not None


@pytest.mark.asyncio
async def test_register_send_failure_releases_channels(session, factory, events) -> None:
    factory.fail_send["primary"] = TransportSendError("broken pipe")
    session.settings = Settings(heartbeat_enabled=True, heartbeat_interval_s=0.01)

    assert await session.connect() is False

    assert factory.primary.close_calls == 1
    assert session.phase is ConnectionPhase.DISCONNECTED
    assert session.status is SessionStatus.CONNECTION_LOST
    assert session.pending_request_ids == ()
    assert Disconnected(status=SessionStatus.CONNECTION_LOST, error="broken pipe") in events
    assert all(task.done() for task in asyncio.all_tasks() if task is not asyncio.current_task())

    factory.fail_send.clear()
    assert await session.connect() is True
    await session.disconnect()


@pytest.mark.asyncio
async def test_volume_up_sends_one_primary_request(session, factory) -> None:
    await _pair(session, factory)
    before = len(factory.primary.sent)

    request_id = await session.send_command(RemoteCommand.VOLUME_UP)

    sent = factory.primary.sent_json()[before:]
    assert sent == [{"type": "request", "id": request_id, "uri": "ssap://audio/volumeUp"}]
    assert factory.secondary.sent == []


@pytest.mark.asyncio
async def test_key_command_goes_to_input_channel(session, factory) -> None:
    await _pair(session, factory)
    before = len(factory.primary.sent)

    assert await session.send_command(RemoteCommand.UP) is None

    assert factory.secondary.sent == ["type:button\nname:UP\n\n"]
    assert len(factory.primary.sent) == before


@pytest.mark.asyncio
async def test_command_while_unpaired_is_rejected(session, factory, events) -> None:
    assert await session.send_command(RemoteCommand.VOLUME_UP) is None
    await session.connect()
    assert await session.send_command(RemoteCommand.MUTE) is None

    assert len(factory.primary.sent) == 1
    rejected = [e for e in events if isinstance(e, CommandRejected)]
    assert [e.command for e in rejected] == [RemoteCommand.VOLUME_UP, RemoteCommand.MUTE]
    assert all(e.status is SessionStatus.NOT_CONNECTED for e in rejected)
    assert session.phase is ConnectionPhase.AWAITING_REGISTRATION


@pytest.mark.asyncio
async def test_key_command_without_input_channel_is_rejected(session, factory, events) -> None:
    await session.connect()
    await factory.primary.deliver(
        {"type": "registered", "id": _register_id(factory), "payload": {"client-key": "abc"}}
    )
    assert await session.send_command(RemoteCommand.HOME) is None
    assert any(isinstance(e, CommandRejected) and e.command is RemoteCommand.HOME for e in events)


@pytest.mark.parametrize("pin", ["", "1234", "123456789"])
@pytest.mark.asyncio
async def test_wrong_length_pin_rejected_before_io(session, factory, pin: str) -> None:
    with pytest.raises(InvalidPinError):
        await session.submit_pin(pin)
    assert factory.channels == []

    await session.connect()
    with pytest.raises(InvalidPinError):
        await session.submit_pin(pin)
    assert len(factory.primary.sent) == 1


@pytest.mark.asyncio
async def test_disconnect_is_idempotent(session, factory, events) -> None:
    await session.disconnect()
    assert session.phase is ConnectionPhase.IDLE
    assert events == []

    await _pair(session, factory)
    await session.disconnect()
    first = (session.phase, session.status)
    await session.disconnect()

    assert (session.phase, session.status) == first == (ConnectionPhase.IDLE, SessionStatus.DISCONNECTED)
    assert factory.primary.close_calls == 1
    assert factory.secondary.close_calls == 1


@pytest.mark.asyncio
async def test_disconnect_closes_primary_even_if_secondary_close_fails(session, factory) -> None:
    await _pair(session, factory)
    factory.secondary.fail_close = TransportSendError("boom")

    await session.disconnect()

    assert factory.primary.close_calls == 1
    assert session.phase is ConnectionPhase.IDLE


@pytest.mark.asyncio
async def test_unreachable_device(factory, store, events, settings) -> None:
    factory.fail_open["primary"] = TransportConnectError("refused")
    session = Session("192.168.1.99", settings=settings, credentials=store, channel_factory=factory, on_event=events.append)

    assert await session.connect() is False
    assert session.phase is ConnectionPhase.DISCONNECTED
    assert session.status is SessionStatus.CANNOT_REACH_DEVICE
    assert any(isinstance(e, NetworkError) for e in events)

    factory.fail_open.clear()
    assert await session.connect() is True


@pytest.mark.asyncio
async def test_transport_failure_tears_down_session(session, factory, events) -> None:
    await _pair(session, factory)

    await factory.primary.drop(ConnectionResetError("reset by peer"))

    assert session.phase is ConnectionPhase.DISCONNECTED
    assert session.status is SessionStatus.CONNECTION_LOST
    assert factory.secondary.close_calls == 1
    assert Disconnected(status=SessionStatus.CONNECTION_LOST, error="reset by peer") in events
    assert await session.send_command(RemoteCommand.VOLUME_UP) is None


@pytest.mark.asyncio
async def test_connect_twice_raises(session) -> None:
    await session.connect()
    with pytest.raises(SessionStateError):
        await session.connect()


@pytest.mark.asyncio
async def test_request_resolves_with_correlated_reply(session, factory) -> None:
    await _pair(session, factory)
    before = len(factory.primary.sent)

    task = asyncio.create_task(session.list_inputs())
    await wait_until(lambda: len(factory.primary.sent) > before)
    request = factory.primary.sent_json()[-1]
    assert request["uri"] == "ssap://tv/getExternalInputList"

    await factory.primary.deliver(
        {"type": "response", "id": "someone-else", "payload": {"devices": []}}
    )
    await factory.primary.deliver(
        {"type": "response", "id": request["id"], "payload": {"devices": [{"id": "HDMI_1", "label": "Console"}]}}
    )

    assert await task == [{"id": "HDMI_1", "label": "Console"}]
    assert request["id"] not in session.pending_request_ids


@pytest.mark.asyncio
async def test_request_error_reply_raises(session, factory) -> None:
    await _pair(session, factory)
    before = len(factory.primary.sent)

    task = asyncio.create_task(session.request(RemoteCommand.SELECT_INPUT, "HDMI_9"))
    await wait_until(lambda: len(factory.primary.sent) > before)
    request_id = factory.primary.sent_json()[-1]["id"]
    await factory.primary.deliver({"type": "error", "id": request_id, "error": "500 Application error"})

    with pytest.raises(DeviceRequestError):
        await task
    assert session.status is SessionStatus.REQUEST_FAILED
    assert session.phase is ConnectionPhase.PAIRED


@pytest.mark.asyncio
async def test_request_times_out(session, factory) -> None:
    await _pair(session, factory)

    with pytest.raises(TransportTimeoutError):
        await session.request(RemoteCommand.LIST_INPUTS, timeout_s=0.01)
    assert session.pending_request_ids == ()


@pytest.mark.asyncio
async def test_disconnect_fails_waiting_requests(session, factory) -> None:
    await _pair(session, factory)
    before = len(factory.primary.sent)

    task = asyncio.create_task(session.request(RemoteCommand.LIST_INPUTS, timeout_s=None))
    await wait_until(lambda: len(factory.primary.sent) > before)
    await session.disconnect()

    with pytest.raises(SessionStateError):
        await task


@pytest.mark.asyncio
async def test_heartbeat_pings_both_channels(factory, store, events) -> None:
    settings = Settings(heartbeat_enabled=True, heartbeat_interval_s=0.01)
    session = Session("192.168.1.20", settings=settings, credentials=store, channel_factory=factory, on_event=events.append)
    await _pair(session, factory)

    await wait_until(lambda: factory.primary.pings >= 2 and factory.secondary.pings >= 2)

    factory.primary.fail_ping = TransportSendError("ping failed")
    await wait_until(lambda: any(isinstance(e, NetworkError) for e in events))
    assert session.phase is ConnectionPhase.PAIRED
    assert session.status is SessionStatus.CONNECTION_LOST

    await session.disconnect()
    pings = factory.secondary.pings
    await asyncio.sleep(0.05)
    assert factory.secondary.pings == pings


@pytest.mark.asyncio
async def test_failing_observer_does_not_break_session(factory, store, settings) -> None:
    def _explode(_event) -> None:
        raise RuntimeError("observer bug")

    session = Session("192.168.1.20", settings=settings, credentials=store, channel_factory=factory, on_event=_explode)
    await _pair(session, factory)
    assert session.is_paired
    assert session.has_input_channel


@pytest.mark.asyncio
async def test_wait_for_phase(session, factory) -> None:
    await session.connect()
    waiter = asyncio.create_task(session.wait_for_phase(ConnectionPhase.PAIRED, timeout_s=1.0))
    await asyncio.sleep(0)
    await factory.primary.deliver(
        {"type": "registered", "id": _register_id(factory), "payload": {"client-key": "abc"}}
    )
    assert await waiter is ConnectionPhase.PAIRED

    with pytest.raises(TransportTimeoutError):
        await session.wait_for_phase(ConnectionPhase.AWAITING_PIN, timeout_s=0.01)
