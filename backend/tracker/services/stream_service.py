"""Long-lived push-update channel with exponential-backoff reconnects."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Sequence
from enum import Enum
from typing import Any, Protocol

from loguru import logger

from ingestion.websocket import Connection, Transport, TransportError
from tracker.domain import DomainEvent, MarketSnapshot

from .fanout import SubscriberHub
from .market_state import MarketStateTable


PRICE_EVENT_TYPES = frozenset({"price_change", "last_trade_price"})
RESOLVED_STATUSES = frozenset({"resolved", "closed"})


class SnapshotSink(Protocol):
    def save(self, snapshot: MarketSnapshot) -> None:
        ...


class ChannelState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    GIVEN_UP = "given_up"


class StreamingUpdateChannel:
    """Keep one connection to the push source and fan its updates out.

    ``run()`` is the only control loop. Each scheduled reconnect bumps the
    attempt counter and waits ``base_delay_ms * 2 ** (attempt - 1)``; a
    successful handshake resets it. Once the budget is spent the channel
    stays in ``GIVEN_UP`` until ``restart()`` is called. ``stop()`` suppresses
    further reconnects and closes the live connection, including one whose
    handshake was still in flight.
    """

    def __init__(
        self,
        transport: Transport,
        state: MarketStateTable,
        hub: SubscriberHub,
        *,
        store: SnapshotSink | None = None,
        base_delay_ms: int = 5000,
        max_attempts: int = 10,
        channel: str = "market",
        message_types: Sequence[str] = ("price_change", "last_trade_price", "book"),
    ) -> None:
        self._transport = transport
        self._state = state
        self._hub = hub
        self._store = store
        self.base_delay_ms = base_delay_ms
        self.max_attempts = max_attempts
        self.channel = channel
        self.message_types = list(message_types)
        self.status = ChannelState.DISCONNECTED
        self.reconnect_attempts = 0
        self._connection: Connection | None = None
        self._stopping = asyncio.Event()

    @property
    def is_connected(self) -> bool:
        return self.status is ChannelState.CONNECTED

    def reconnect_delay_ms(self, attempt: int) -> int:
        return self.base_delay_ms * 2 ** (attempt - 1)

    def subscription_message(self) -> dict[str, Any]:
        return {"auth": {}, "channel": self.channel, "types": list(self.message_types)}

    def _schedule_reconnect(self) -> int | None:
        if self.reconnect_attempts >= self.max_attempts:
            return None
        self.reconnect_attempts += 1
        return self.reconnect_delay_ms(self.reconnect_attempts)

    async def run(self) -> ChannelState:
        self.reconnect_attempts = 0
        while not self._stopping.is_set():
            await self._connect_once()
            self.status = ChannelState.DISCONNECTED
            if self._stopping.is_set():
                break

            delay_ms = self._schedule_reconnect()
            if delay_ms is None:
                self.status = ChannelState.GIVEN_UP
                logger.error(
                    "Websocket gave up after {} reconnect attempts", self.reconnect_attempts
                )
                break
            logger.info(
                "Reconnecting in {}ms (attempt {}/{})",
                delay_ms,
                self.reconnect_attempts,
                self.max_attempts,
            )
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=delay_ms / 1000)
            except asyncio.TimeoutError:
                continue
        return self.status

    async def _connect_once(self) -> None:
        self.status = ChannelState.CONNECTING
        try:
            connection = await self._transport.connect()
        except TransportError as exc:
            logger.warning("Websocket connection failed: {}", exc)
            return

        if self._stopping.is_set():
            logger.info("Stop requested while connecting; closing new connection")
            await connection.close()
            return

        self._connection = connection
        self.status = ChannelState.CONNECTED
        self.reconnect_attempts = 0
        logger.info("Websocket connected, subscribing to {} {}", self.channel, self.message_types)
        try:
            await connection.send(self.subscription_message())
            async for raw in connection.messages():
                await self.handle_message(raw)
        except TransportError as exc:
            logger.warning("Websocket disconnected: {}", exc)
        finally:
            self._connection = None
            await connection.close()
        logger.info("Websocket disconnected")

    async def stop(self) -> None:
        self._stopping.set()
        connection = self._connection
        if connection is not None:
            await connection.close()

    async def restart(self) -> ChannelState:
        """Clear a previous stop and run the control loop again."""

        self._stopping.clear()
        return await self.run()

    # ------------------------------------------------------------------
    # Message handling

    async def handle_message(self, raw: str | bytes) -> list[DomainEvent]:
        """Apply one inbound frame; unparseable frames are dropped."""

        try:
            message = json.loads(raw)
        except (TypeError, ValueError) as exc:
            logger.warning("Dropping unparseable websocket message: {}", exc)
            return []

        emitted: list[DomainEvent] = []
        for payload in self._payloads(message):
            emitted.extend(await self._apply(payload))
        return emitted

    def _payloads(self, message: Any) -> list[dict[str, Any]]:
        if isinstance(message, list):
            return [item for entry in message for item in self._payloads(entry)]
        if not isinstance(message, dict):
            return []
        if "data" in message:
            if message.get("channel") != self.channel:
                return []
            data = message["data"]
            items = data if isinstance(data, list) else [data]
            return [item for item in items if isinstance(item, dict)]
        if message.get("asset_id"):
            return [message]
        return []

    async def _apply(self, payload: dict[str, Any]) -> list[DomainEvent]:
        asset_id = payload.get("asset_id")
        if not asset_id:
            return []
        asset_id = str(asset_id)
        emitted: list[DomainEvent] = []

        if payload.get("event_type") in PRICE_EVENT_TYPES and payload.get("price") is not None:
            try:
                price = float(payload["price"])
            except (TypeError, ValueError):
                logger.warning("Dropping price update with bad price {!r}", payload.get("price"))
            else:
                update = await self._state.apply_price_update(asset_id, price)
                if update is not None:
                    self._hub.publish(update)
                    emitted.append(update)

        if payload.get("status") in RESOLVED_STATUSES:
            resolved = await self._state.mark_resolved(asset_id)
            if resolved is not None:
                await self._persist()
                self._hub.publish(resolved)
                emitted.append(resolved)
        return emitted

    async def _persist(self) -> None:
        if self._store is None:
            return
        snapshot = self._state.snapshot()
        try:
            await asyncio.to_thread(self._store.save, snapshot)
        except Exception:  # noqa: BLE001 - the stream keeps running on the in-memory state
            logger.exception("Failed to persist snapshot after resolution")


__all__ = ["ChannelState", "SnapshotSink", "StreamingUpdateChannel"]
