"""Local-subnet discovery of devices listening on the control port.

A sweep probes ``<prefix>.<n>`` for every ``n`` in the configured host range
with a bounded TCP connect. Probes run concurrently behind a semaphore, and
every hit goes through a lock-guarded accumulator so the caller sees it as
soon as it is known. Once all probes have finished the accumulator is sealed
and the sorted result is returned.
"""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import socket
from collections.abc import Awaitable, Callable, Iterable

from webosctl.core.errors import DiscoveryError
from webosctl.core.events import DeviceFound, EventHandler, ScanFinished, ignore_event
from webosctl.core.model import DEFAULT_PORT, DeviceDescriptor, ScanResult, SessionStatus

LOGGER = logging.getLogger(__name__)

DEFAULT_HOST_RANGE = range(1, 21)
DEFAULT_PROBE_TIMEOUT_S = 0.2
DEFAULT_MAX_CONCURRENT_PROBES = 50

Prober = Callable[[str, int, float], Awaitable[bool]]


async def probe_tcp(address: str, port: int, timeout_s: float) -> bool:
    """Return True iff a TCP connection to ``address:port`` completes in time."""
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(address, port), timeout=timeout_s)
    except (OSError, asyncio.TimeoutError):
        return False
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return True


def local_ipv4_address() -> str | None:
    """Best-effort LAN address of this machine, or None without a usable network."""
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    except OSError:
        return None
    try:
        # UDP connect only selects a route; nothing is sent.
        sock.connect(("10.255.255.255", 1))
        address = sock.getsockname()[0]
    except OSError:
        return None
    finally:
        sock.close()
    return address if _is_usable(address) else None


def _is_usable(address: str) -> bool:
    try:
        ip = ipaddress.IPv4Address(address)
    except ValueError:
        return False
    return not (ip.is_loopback or ip.is_unspecified or ip.is_link_local)


def subnet_prefix(address: str) -> str:
    try:
        ipaddress.IPv4Address(address)
    except ValueError as exc:
        raise DiscoveryError(f"'{address}' is not an IPv4 address") from exc
    return address.rsplit(".", 1)[0]


class _ResultAccumulator:
    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._found: dict[str, DeviceDescriptor] = {}
        self._sealed = False

    async def add(self, device: DeviceDescriptor) -> bool:
        async with self._lock:
            if self._sealed:
                raise DiscoveryError("Scan already finished; result set is sealed")
            if device.address in self._found:
                return False
            self._found[device.address] = device
            return True

    async def seal(self) -> tuple[DeviceDescriptor, ...]:
        async with self._lock:
            self._sealed = True
            return tuple(sorted(self._found.values(), key=lambda d: ipaddress.IPv4Address(d.address)))


class NetworkScanner:
    """One-shot sweep of the local subnet for open control ports."""

    def __init__(
        self,
        *,
        port: int = DEFAULT_PORT,
        host_range: Iterable[int] = DEFAULT_HOST_RANGE,
        probe_timeout_s: float = DEFAULT_PROBE_TIMEOUT_S,
        max_concurrent_probes: int = DEFAULT_MAX_CONCURRENT_PROBES,
        prober: Prober | None = None,
        local_address: Callable[[], str | None] | None = None,
        on_event: EventHandler = ignore_event,
    ) -> None:
        if max_concurrent_probes < 1:
            raise DiscoveryError("max_concurrent_probes must be at least 1")
        self.port = port
        self.hosts = tuple(host_range)
        for host in self.hosts:
            if not 1 <= host <= 254:
                raise DiscoveryError(f"Host number {host} is outside 1-254")
        self.probe_timeout_s = probe_timeout_s
        self.max_concurrent_probes = max_concurrent_probes
        self._prober = prober or probe_tcp
        self._local_address = local_address
        self._on_event = on_event
        self._started = False

    async def discover(
        self,
        on_found: Callable[[DeviceDescriptor], None] | None = None,
    ) -> ScanResult:
        if self._started:
            raise DiscoveryError("This scanner has already run; create a new one to scan again")
        self._started = True

        local = (self._local_address or local_ipv4_address)()
        if local is None:
            LOGGER.warning("No usable local IPv4 address; skipping scan")
            return self._finish(ScanResult(devices=(), status=SessionStatus.NO_NETWORK))

        prefix = subnet_prefix(local)
        LOGGER.info(
            "Scanning %s.%d-%d on port %d",
            prefix,
            min(self.hosts, default=0),
            max(self.hosts, default=0),
            self.port,
        )

        accumulator = _ResultAccumulator()
        permits = asyncio.Semaphore(self.max_concurrent_probes)

        async def _probe_one(host: int) -> None:
            address = f"{prefix}.{host}"
            async with permits:
                is_open = await self._prober(address, self.port, self.probe_timeout_s)
            if not is_open:
                return
            device = DeviceDescriptor(address=address, port=self.port)
            if await accumulator.add(device):
                LOGGER.info("Found device at %s:%d", address, self.port)
                self._emit(DeviceFound(device=device))
                if on_found is not None:
                    try:
                        on_found(device)
                    except Exception:  # noqa: BLE001
                        LOGGER.exception("Error in on_found callback for %s", address)

        outcomes = await asyncio.gather(*(_probe_one(host) for host in self.hosts), return_exceptions=True)
        for host, outcome in zip(self.hosts, outcomes):
            if isinstance(outcome, Exception):
                LOGGER.warning("Probe of %s.%d failed: %s", prefix, host, outcome)
        devices = await accumulator.seal()

        status = SessionStatus.DEVICES_FOUND if devices else SessionStatus.NO_DEVICES_FOUND
        LOGGER.info("Scan complete. Found %d device(s)", len(devices))
        return self._finish(ScanResult(devices=devices, status=status, subnet_prefix=prefix))

    def _finish(self, result: ScanResult) -> ScanResult:
        self._emit(ScanFinished(result=result))
        return result

    def _emit(self, event: DeviceFound | ScanFinished) -> None:
        try:
            self._on_event(event)
        except Exception:  # noqa: BLE001
            LOGGER.exception("Error in scan event handler")
