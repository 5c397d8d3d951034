"""Push-update transport over the CLOB websocket."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from typing import Any, Protocol

import websockets
from loguru import logger


class TransportError(ConnectionError):
    """Connecting to, sending on or reading from the push source failed."""


class Connection(Protocol):
    async def send(self, message: dict[str, Any]) -> None:
        ...

    def messages(self) -> AsyncIterator[str | bytes]:
        ...

    async def close(self) -> None:
        ...


class Transport(Protocol):
    async def connect(self) -> Connection:
        ...


class WebsocketConnection:
    def __init__(self, socket: Any, url: str) -> None:
        self._socket = socket
        self.url = url

    async def send(self, message: dict[str, Any]) -> None:
        try:
            await self._socket.send(json.dumps(message))
        except (websockets.exceptions.WebSocketException, OSError) as exc:
            raise TransportError(f"send failed on {self.url}: {exc}") from exc

    async def messages(self) -> AsyncIterator[str | bytes]:
        """Yield inbound frames until the peer closes cleanly."""

        try:
            async for message in self._socket:
                yield message
        except websockets.exceptions.ConnectionClosedOK:
            return
        except (websockets.exceptions.WebSocketException, OSError) as exc:
            raise TransportError(f"connection to {self.url} lost: {exc}") from exc

    async def close(self) -> None:
        try:
            await self._socket.close()
        except (websockets.exceptions.WebSocketException, OSError) as exc:
            logger.warning("Error closing websocket {}: {}", self.url, exc)


class WebsocketTransport:
    def __init__(
        self,
        url: str,
        *,
        open_timeout: float = 10.0,
        ping_interval: float | None = 30.0,
        ping_timeout: float | None = 10.0,
    ) -> None:
        self.url = url
        self.open_timeout = open_timeout
        self.ping_interval = ping_interval
        self.ping_timeout = ping_timeout

    async def connect(self) -> WebsocketConnection:
        logger.info("Connecting to websocket {}", self.url)
        try:
            socket = await asyncio.wait_for(
                websockets.connect(
                    self.url,
                    ping_interval=self.ping_interval,
                    ping_timeout=self.ping_timeout,
                    close_timeout=5,
                ),
                timeout=self.open_timeout,
            )
        except (websockets.exceptions.WebSocketException, OSError, asyncio.TimeoutError) as exc:
            raise TransportError(f"could not connect to {self.url}: {exc}") from exc
        return WebsocketConnection(socket, self.url)


__all__ = [
    "Connection",
    "Transport",
    "TransportError",
    "WebsocketConnection",
    "WebsocketTransport",
]
