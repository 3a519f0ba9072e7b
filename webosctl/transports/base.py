"""Transport interfaces."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Protocol

MessageHandler = Callable[[str], Awaitable[None]]
CloseHandler = Callable[[BaseException | None], Awaitable[None]]


class Channel(Protocol):
    @property
    def closed(self) -> bool:
        """True once the channel was closed locally or by the peer."""

    async def open(
        self,
        url: str,
        *,
        on_message: MessageHandler,
        on_close: CloseHandler,
    ) -> None:
        """Open the channel and start delivering inbound frames to ``on_message``.

        ``on_close`` fires once if the peer closes or the connection fails. It
        does not fire for a locally initiated :meth:`close`.
        """

    async def send_text(self, data: str) -> None:
        """Send one text frame."""

    async def ping(self) -> None:
        """Send a keep-alive ping."""

    async def close(self) -> None:
        """Close the channel. Safe to call more than once."""


ChannelFactory = Callable[[str], Channel]
