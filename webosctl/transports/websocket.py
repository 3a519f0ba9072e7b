"""WebSocket channel implementation using aiohttp."""

from __future__ import annotations

import asyncio
import logging

import aiohttp

from webosctl.core.errors import (
    TransportConnectError,
    TransportSendError,
    TransportTimeoutError,
)
from webosctl.transports.base import CloseHandler, MessageHandler

LOGGER = logging.getLogger(__name__)


class WebSocketChannel:
    def __init__(
        self,
        name: str = "primary",
        *,
        open_timeout_s: float = 5.0,
        verify_ssl: bool = False,
    ) -> None:
        self.name = name
        self._open_timeout_s = open_timeout_s
        self._verify_ssl = verify_ssl
        self._session: aiohttp.ClientSession | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._reader: asyncio.Task[None] | None = None
        self._closing = False

    @property
    def closed(self) -> bool:
        return self._ws is None or self._ws.closed

    async def open(
        self,
        url: str,
        *,
        on_message: MessageHandler,
        on_close: CloseHandler,
    ) -> None:
        if self._ws is not None:
            raise TransportConnectError(f"{self.name} channel is already open")

        self._closing = False
        self._session = aiohttp.ClientSession()
        try:
            self._ws = await asyncio.wait_for(
                self._session.ws_connect(
                    url,
                    ssl=None if self._verify_ssl else False,
                    autoping=True,
                    heartbeat=None,
                ),
                timeout=self._open_timeout_s,
            )
        except asyncio.TimeoutError as exc:
            await self._release_session()
            raise TransportTimeoutError(
                f"Opening {self.name} channel to {url} timed out after {self._open_timeout_s}s"
            ) from exc
        except (aiohttp.ClientError, OSError) as exc:
            await self._release_session()
            raise TransportConnectError(f"Could not open {self.name} channel to {url}: {exc}") from exc

        LOGGER.debug("%s channel open: %s", self.name, url)
        self._reader = asyncio.create_task(self._receive_loop(on_message, on_close))

    async def _receive_loop(self, on_message: MessageHandler, on_close: CloseHandler) -> None:
        ws = self._ws
        if ws is None:
            return

        error: BaseException | None = None
        try:
            while True:
                msg = await ws.receive()
                if msg.type == aiohttp.WSMsgType.TEXT:
                    await on_message(msg.data)
                elif msg.type == aiohttp.WSMsgType.BINARY:
                    await on_message(msg.data.decode("utf-8", "replace"))
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    error = ws.exception()
                    break
                elif msg.type in (
                    aiohttp.WSMsgType.CLOSE,
                    aiohttp.WSMsgType.CLOSING,
                    aiohttp.WSMsgType.CLOSED,
                ):
                    error = ws.exception()
                    break
        except (aiohttp.ClientError, OSError) as exc:
            error = exc
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("%s channel message handler failed", self.name)
            error = exc

        if self._closing:
            return
        LOGGER.debug("%s channel closed (error=%s)", self.name, error)
        if not ws.closed:
            try:
                await ws.close()
            except (aiohttp.ClientError, OSError) as exc:
                LOGGER.debug("Closing %s channel after failure: %s", self.name, exc)
        self._ws = None
        self._reader = None
        await self._release_session()
        await on_close(error)

    async def send_text(self, data: str) -> None:
        ws = self._ws
        if ws is None or ws.closed:
            raise TransportSendError(f"{self.name} channel is not open")
        try:
            await ws.send_str(data)
        except (aiohttp.ClientError, ConnectionError, RuntimeError) as exc:
            raise TransportSendError(f"Send on {self.name} channel failed: {exc}") from exc

    async def ping(self) -> None:
        ws = self._ws
        if ws is None or ws.closed:
            raise TransportSendError(f"{self.name} channel is not open")
        try:
            await ws.ping()
        except (aiohttp.ClientError, ConnectionError, RuntimeError) as exc:
            raise TransportSendError(f"Ping on {self.name} channel failed: {exc}") from exc

    async def close(self) -> None:
        self._closing = True
        ws, self._ws = self._ws, None
        try:
            if ws is not None and not ws.closed:
                await ws.close()
        except (aiohttp.ClientError, OSError) as exc:
            raise TransportSendError(f"Closing {self.name} channel failed: {exc}") from exc
        finally:
            reader, self._reader = self._reader, None
            if reader is not None and reader is not asyncio.current_task():
                reader.cancel()
                try:
                    await reader
                except asyncio.CancelledError:
                    pass
            await self._release_session()

    async def _release_session(self) -> None:
        session, self._session = self._session, None
        if session is not None and not session.closed:
            await session.close()
