"""Connection, pairing, and request correlation for one device.

A :class:`Session` owns two channels. The primary channel carries JSON
requests and responses; the secondary (pointer input) channel carries key
press frames and is opened only after the device answers the
``getPointerInputSocket`` request that registration triggers.

Phases::

    IDLE -> CONNECTING -> AWAITING_REGISTRATION -> AWAITING_PAIRING_PROMPT | AWAITING_PIN -> PAIRED

Any phase may drop to DISCONNECTED when the primary transport closes, and
:meth:`Session.disconnect` always returns the session to IDLE.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any
from urllib.parse import urljoin

from webosctl.core.codec import (
    decode_response,
    encode_command,
    encode_key_frame,
    encode_pointer_socket_request,
    encode_register,
    encode_set_pin,
    new_request_id,
    serialize_request,
)
from webosctl.core.credentials import CLIENT_KEY_NAME, CredentialStore, MemoryCredentialStore
from webosctl.core.errors import (
    CommandArgumentError,
    CredentialStoreError,
    DeviceRequestError,
    InvalidPinError,
    ProtocolError,
    SessionStateError,
    TransportError,
    TransportSendError,
    TransportTimeoutError,
)
from webosctl.core.events import (
    CommandRejected,
    Disconnected,
    EventHandler,
    InputChannelReady,
    NetworkError,
    PairingRequired,
    PhaseChanged,
    ProtocolViolation,
    Registered,
    RequestFailed,
    ResponseReceived,
    SessionEvent,
    ignore_event,
)
from webosctl.core.model import (
    ConnectionPhase,
    InboundResponse,
    KeyPress,
    OutboundRequest,
    PairingType,
    RemoteCommand,
    ResponseType,
    SessionStatus,
)
from webosctl.core.settings import Settings
from webosctl.transports.base import Channel, ChannelFactory
from webosctl.transports.websocket import WebSocketChannel

LOGGER = logging.getLogger(__name__)

PIN_LENGTH = 8

_INACTIVE_PHASES = (ConnectionPhase.IDLE, ConnectionPhase.DISCONNECTED)
_USE_SETTINGS: Any = object()


def classify_device_error(message: str) -> SessionStatus:
    lowered = message.lower()
    if "rejected pairing" in lowered:
        return SessionStatus.PAIRING_REJECTED
    if "cancelled" in lowered or "canceled" in lowered:
        return SessionStatus.PAIRING_TIMED_OUT
    return SessionStatus.REQUEST_FAILED


class Session:
    def __init__(
        self,
        address: str,
        *,
        settings: Settings | None = None,
        credentials: CredentialStore | None = None,
        channel_factory: ChannelFactory | None = None,
        on_event: EventHandler = ignore_event,
    ) -> None:
        self.address = address
        self.settings = settings or Settings()
        self.credentials = credentials or MemoryCredentialStore()
        self._channel_factory = channel_factory or self._websocket_channel
        self._on_event = on_event

        self._primary: Channel | None = None
        self._secondary: Channel | None = None
        self._phase = ConnectionPhase.IDLE
        self._status = SessionStatus.DISCONNECTED
        self.last_error: str | None = None
        self.client_key: str | None = None
        self._pointer_request_id: str | None = None
        self._pending: dict[str, asyncio.Future[InboundResponse] | None] = {}
        self._heartbeat: asyncio.Task[None] | None = None
        self._lock = asyncio.Lock()
        self._phase_changed = asyncio.Event()

    def _websocket_channel(self, name: str) -> Channel:
        return WebSocketChannel(name, open_timeout_s=self.settings.open_timeout_s)

    @property
    def phase(self) -> ConnectionPhase:
        return self._phase

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def is_paired(self) -> bool:
        return self._phase is ConnectionPhase.PAIRED

    @property
    def has_input_channel(self) -> bool:
        return self._secondary is not None and not self._secondary.closed

    @property
    def pointer_request_id(self) -> str | None:
        return self._pointer_request_id

    @property
    def pending_request_ids(self) -> tuple[str, ...]:
        return tuple(self._pending)

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    async def connect(self) -> bool:
        """Open the primary channel and send the register request.

        Returns False (with ``status`` set to ``CANNOT_REACH_DEVICE``) when the
        device cannot be reached, or ``CONNECTION_LOST`` when the register
        request cannot be sent. Either way no channel is left open.

        Raises:
            SessionStateError: if the session is already active.
        """
        async with self._lock:
            if self._phase not in _INACTIVE_PHASES:
                raise SessionStateError(f"Session to {self.address} is already {self._phase.value}")

            stored_key = self.credentials.get(CLIENT_KEY_NAME)
            self.last_error = None
            self._set_phase(ConnectionPhase.CONNECTING, SessionStatus.CONNECTING)

            url = self.settings.device_url(self.address)
            LOGGER.info("Connecting to %s", url)
            primary = self._channel_factory("primary")
            try:
                await primary.open(url, on_message=self._on_primary_message, on_close=self._on_primary_closed)
            except TransportError as exc:
                self.last_error = str(exc)
                LOGGER.warning("Cannot reach %s: %s", url, exc)
                self._set_phase(ConnectionPhase.DISCONNECTED, SessionStatus.CANNOT_REACH_DEVICE)
                self._emit(NetworkError(message=str(exc), status=SessionStatus.CANNOT_REACH_DEVICE))
                return False

            self._primary = primary
            self._start_heartbeat()
            self._set_phase(ConnectionPhase.AWAITING_REGISTRATION, SessionStatus.CONNECTED)

            register = encode_register(stored_key, request_id=new_request_id())
            try:
                await self._issue(register)
            except TransportSendError as exc:
                self._primary = None
                await self._teardown()
                try:
                    await primary.close()
                except TransportError as close_exc:
                    LOGGER.warning("Closing primary channel failed: %s", close_exc)
                self._report_network_error(exc)
                self._set_phase(ConnectionPhase.DISCONNECTED, SessionStatus.CONNECTION_LOST)
                self._emit(Disconnected(status=SessionStatus.CONNECTION_LOST, error=self.last_error))
                return False
            return True

    async def disconnect(self) -> None:
        """Stop heartbeats, close both channels, and return to IDLE.

        Idempotent and safe to call in any phase.
        """
        async with self._lock:
            if self._phase is ConnectionPhase.IDLE and self._primary is None and self._secondary is None:
                return

            primary, self._primary = self._primary, None
            await self._teardown()
            if primary is not None:
                try:
                    await primary.close()
                except TransportError as exc:
                    LOGGER.warning("Closing primary channel failed: %s", exc)

            LOGGER.info("Disconnected from %s", self.address)
            self._set_phase(ConnectionPhase.IDLE, SessionStatus.DISCONNECTED)
            self._emit(Disconnected(status=SessionStatus.DISCONNECTED))

    async def submit_pin(self, pin: str) -> str | None:
        """Send the PIN shown on the TV. Returns the request id, or None if not sent.

        Raises:
            InvalidPinError: if ``pin`` is not exactly eight characters.
        """
        if len(pin) != PIN_LENGTH:
            raise InvalidPinError(f"PIN must be exactly {PIN_LENGTH} characters, got {len(pin)}")

        async with self._lock:
            if self._primary is None or self._phase in _INACTIVE_PHASES:
                self._reject(None, "no open connection to submit a PIN on")
                return None

            request = encode_set_pin(pin, request_id=new_request_id())
            try:
                await self._issue(request)
            except TransportSendError as exc:
                self._report_network_error(exc)
                return None
            LOGGER.info("Submitted pairing PIN")
            return request.id

    async def send_command(self, command: RemoteCommand, argument: str | None = None) -> str | None:
        """Send ``command`` without waiting for a reply.

        Returns the correlation id for primary-channel requests and None for
        key presses. When the session is not paired nothing is sent, a
        :class:`CommandRejected` event is emitted, and None is returned.
        """
        async with self._lock:
            if not self.is_paired or self._primary is None:
                self._reject(command, "session is not paired")
                return None

            encoded = encode_command(command, argument)
            if isinstance(encoded, KeyPress):
                return await self._send_key(command, encoded)

            try:
                await self._issue(encoded)
            except TransportSendError as exc:
                self._report_network_error(exc)
                return None
            return encoded.id

    async def request(
        self,
        command: RemoteCommand,
        argument: str | None = None,
        *,
        timeout_s: float | None = _USE_SETTINGS,
    ) -> InboundResponse:
        """Send ``command`` and wait for its correlated reply.

        Raises:
            SessionStateError: if the session is not paired.
            DeviceRequestError: if the device answers with an error frame.
            TransportTimeoutError: if no reply arrives within ``timeout_s``.
            TransportSendError: if the request could not be sent.
        """
        loop = asyncio.get_running_loop()
        async with self._lock:
            if not self.is_paired or self._primary is None:
                self._reject(command, "session is not paired")
                raise SessionStateError(SessionStatus.NOT_CONNECTED.value)

            encoded = encode_command(command, argument)
            if isinstance(encoded, KeyPress):
                raise CommandArgumentError(f"Command '{command.value}' is a key press and has no reply")

            future: asyncio.Future[InboundResponse] = loop.create_future()
            try:
                await self._issue(encoded, future)
            except TransportSendError as exc:
                self._report_network_error(exc)
                raise

        timeout = self.settings.request_timeout_s if timeout_s is _USE_SETTINGS else timeout_s
        try:
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError as exc:
            if encoded.id is not None:
                self._pending.pop(encoded.id, None)
            raise TransportTimeoutError(
                f"No reply to {encoded.uri} within {timeout}s"
            ) from exc

    async def list_inputs(self) -> list[dict[str, Any]]:
        response = await self.request(RemoteCommand.LIST_INPUTS)
        devices = response.payload.raw.get("devices", [])
        return [d for d in devices if isinstance(d, dict)] if isinstance(devices, list) else []

    async def wait_for_phase(
        self,
        *phases: ConnectionPhase,
        timeout_s: float | None = None,
    ) -> ConnectionPhase:
        async def _wait() -> ConnectionPhase:
            while self._phase not in phases:
                self._phase_changed.clear()
                await self._phase_changed.wait()
            return self._phase

        try:
            return await asyncio.wait_for(_wait(), timeout_s)
        except asyncio.TimeoutError as exc:
            wanted = ", ".join(p.value for p in phases)
            raise TransportTimeoutError(
                f"Session stayed {self._phase.value} instead of reaching {wanted} within {timeout_s}s"
            ) from exc

    # ------------------------------------------------------------------ #
    # Inbound handling
    # ------------------------------------------------------------------ #

    async def _on_primary_message(self, frame: str) -> None:
        LOGGER.debug("<- %s", frame)
        try:
            response = decode_response(frame)
        except ProtocolError as exc:
            LOGGER.warning("Dropping inbound frame: %s", exc)
            self.last_error = str(exc)
            self._status = SessionStatus.PROTOCOL_ERROR
            self._emit(ProtocolViolation(message=str(exc)))
            return

        async with self._lock:
            if self._primary is None:
                return
            await self._handle_response(response)

    async def _handle_response(self, response: InboundResponse) -> None:
        if response.type is ResponseType.ERROR:
            self._handle_error(response)
            return

        if response.id is not None and response.id in self._pending:
            future = self._pending.pop(response.id)
            if future is not None and not future.done():
                future.set_result(response)

        payload = response.payload
        if response.type is ResponseType.REGISTERED:
            if payload.client_key:
                await self._complete_registration(payload.client_key)
            else:
                LOGGER.warning("Registered response without a client key")

        if payload.pairing_type is PairingType.PROMPT:
            self._set_phase(ConnectionPhase.AWAITING_PAIRING_PROMPT, SessionStatus.PAIRING_REQUIRED)
            self._emit(PairingRequired(pairing_type=PairingType.PROMPT))
        elif payload.pairing_type is PairingType.PIN:
            self._set_phase(ConnectionPhase.AWAITING_PIN, SessionStatus.ENTER_PIN)
            self._emit(PairingRequired(pairing_type=PairingType.PIN))

        if (
            payload.socket_path
            and response.id is not None
            and response.id == self._pointer_request_id
        ):
            await self._open_input_channel(payload.socket_path)

        self._emit(ResponseReceived(response=response))

    def _handle_error(self, response: InboundResponse) -> None:
        message = response.error or "Unknown error"
        status = classify_device_error(message)
        LOGGER.warning("Device reported error for request %s: %s", response.id, message)
        self.last_error = message
        self._status = status

        future = self._pending.pop(response.id, None) if response.id is not None else None
        if future is not None and not future.done():
            future.set_exception(DeviceRequestError(message))
        self._emit(RequestFailed(request_id=response.id, message=message, status=status))

    async def _complete_registration(self, client_key: str) -> None:
        try:
            self.credentials.set(CLIENT_KEY_NAME, client_key)
        except CredentialStoreError as exc:
            LOGGER.warning("Could not persist client key: %s", exc)
        self.client_key = client_key
        self.last_error = None
        LOGGER.info("Registered with %s", self.address)
        self._set_phase(ConnectionPhase.PAIRED, SessionStatus.PAIRED)
        self._emit(Registered(client_key=client_key))

        request = encode_pointer_socket_request(request_id=new_request_id())
        self._pointer_request_id = request.id
        try:
            await self._issue(request)
        except TransportSendError as exc:
            self._report_network_error(exc)

    async def _open_input_channel(self, socket_path: str) -> None:
        url = urljoin(self.settings.device_url(self.address) + "/", socket_path)
        if self._secondary is not None:
            await self._close_secondary()

        channel = self._channel_factory("secondary")
        try:
            await channel.open(url, on_message=self._on_secondary_message, on_close=self._on_secondary_closed)
        except TransportError as exc:
            self._report_network_error(exc)
            return
        self._secondary = channel
        LOGGER.info("Input channel open: %s", url)
        self._emit(InputChannelReady(url=url))

    async def _on_secondary_message(self, frame: str) -> None:
        LOGGER.debug("<- (input) %s", frame)

    async def _on_secondary_closed(self, error: BaseException | None) -> None:
        self._secondary = None
        self._report_network_error(error or TransportSendError("input channel closed by device"))

    async def _on_primary_closed(self, error: BaseException | None) -> None:
        async with self._lock:
            if self._primary is None:
                return
            self._primary = None
            await self._teardown()

            status = SessionStatus.CONNECTION_LOST if error is not None else SessionStatus.DISCONNECTED
            message = str(error) if error is not None else None
            if message:
                self.last_error = message
            LOGGER.warning("Connection to %s closed (%s)", self.address, message or "by device")
            self._set_phase(ConnectionPhase.DISCONNECTED, status)
            self._emit(Disconnected(status=status, error=message))

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    async def _issue(
        self,
        request: OutboundRequest,
        future: asyncio.Future[InboundResponse] | None = None,
    ) -> None:
        if self._primary is None:
            raise TransportSendError("primary channel is not open")
        if request.id is not None:
            self._pending[request.id] = future
        frame = serialize_request(request)
        LOGGER.debug("-> %s", frame)
        try:
            await self._primary.send_text(frame)
        except TransportSendError:
            if request.id is not None:
                self._pending.pop(request.id, None)
            raise

    async def _send_key(self, command: RemoteCommand, key: KeyPress) -> None:
        secondary = self._secondary
        if secondary is None or secondary.closed:
            self._reject(command, "input channel is not ready")
            return None
        try:
            await secondary.send_text(encode_key_frame(key.button))
        except TransportSendError as exc:
            self._report_network_error(exc)
        return None

    def _start_heartbeat(self) -> None:
        if not self.settings.heartbeat_enabled or self._heartbeat is not None:
            return
        self._heartbeat = asyncio.create_task(self._heartbeat_loop())

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.heartbeat_interval_s)
            for channel in (self._secondary, self._primary):
                if channel is None or channel.closed:
                    continue
                try:
                    await channel.ping()
                except TransportError as exc:
                    self._report_network_error(exc)

    async def _stop_heartbeat(self) -> None:
        task, self._heartbeat = self._heartbeat, None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _close_secondary(self) -> None:
        secondary, self._secondary = self._secondary, None
        if secondary is None:
            return
        try:
            await secondary.close()
        except TransportError as exc:
            LOGGER.warning("Closing input channel failed: %s", exc)

    async def _teardown(self) -> None:
        await self._stop_heartbeat()
        await self._close_secondary()
        pending, self._pending = self._pending, {}
        for future in pending.values():
            if future is not None and not future.done():
                future.set_exception(SessionStateError("Session closed before a reply arrived"))
        self._pointer_request_id = None

    def _set_phase(self, phase: ConnectionPhase, status: SessionStatus) -> None:
        changed = phase is not self._phase or status is not self._status
        self._phase = phase
        self._status = status
        self._phase_changed.set()
        if changed:
            LOGGER.info("Session %s: %s (%s)", self.address, phase.value, status.value)
            self._emit(PhaseChanged(phase=phase, status=status))

    def _reject(self, command: RemoteCommand | None, reason: str) -> None:
        LOGGER.warning("Not sending %s: %s", command.value if command else "PIN", reason)
        self._emit(CommandRejected(command=command, status=SessionStatus.NOT_CONNECTED, reason=reason))

    def _report_network_error(self, error: BaseException) -> None:
        message = str(error) or error.__class__.__name__
        LOGGER.warning("Network error on %s: %s", self.address, message)
        self.last_error = message
        self._status = SessionStatus.CONNECTION_LOST
        self._emit(NetworkError(message=message, status=SessionStatus.CONNECTION_LOST))

    def _emit(self, event: SessionEvent) -> None:
        try:
            self._on_event(event)
        except Exception:  # noqa: BLE001
            LOGGER.exception("Error in session event handler")
