"""Wire the dispatcher, clients, state table, channel and services together."""

from __future__ import annotations

import asyncio
from pathlib import Path

from loguru import logger

from ingestion.client import GammaClient
from ingestion.dispatcher import RequestDispatcher
from ingestion.service import MarketRefreshService
from ingestion.transfers import TransferLogClient
from ingestion.websocket import WebsocketTransport

from .core.config import Settings, get_settings
from .repositories import SnapshotStore
from .services.balance_service import BalanceReconstructor
from .services.fanout import SubscriberHub
from .services.market_state import MarketStateTable
from .services.stream_service import StreamingUpdateChannel
from .services.winner_service import WinnerService


_file_sinks: dict[str, int] = {}


def configure_logging(log_file: str | None) -> None:
    if not log_file or log_file in _file_sinks:
        return
    Path(log_file).parent.mkdir(parents=True, exist_ok=True)
    _file_sinks[log_file] = logger.add(log_file, rotation="10 MB", enqueue=True)


class TrackerRuntime:
    """Own every long-lived component of the tracker process."""

    def __init__(
        self,
        config: Settings | None = None,
        *,
        dispatcher: RequestDispatcher | None = None,
        store: SnapshotStore | None = None,
        transport: WebsocketTransport | None = None,
        persist: bool | None = None,
    ) -> None:
        self.settings = config or get_settings()
        cfg = self.settings
        self.dispatcher = dispatcher or RequestDispatcher(
            min_interval=cfg.request_min_interval_seconds,
            retry_delay=cfg.request_retry_delay_seconds,
            max_retries=cfg.request_max_retries,
            timeout=cfg.request_timeout_seconds,
            user_agent=cfg.user_agent,
        )
        self.state = MarketStateTable()
        self.hub = SubscriberHub()
        if persist is None:
            persist = cfg.persist_snapshots
        if store is None and persist:
            store = SnapshotStore()
        self.store = store if persist else None

        self.gamma = GammaClient(
            self.dispatcher,
            base_url=str(cfg.gamma_base_url),
            events_path=cfg.events_path,
            markets_path=cfg.markets_path,
            page_size=cfg.ingestion_page_size,
        )
        self.transfers = TransferLogClient(
            self.dispatcher,
            rpc_url=str(cfg.polygon_rpc_url),
            contract_address=cfg.ctf_contract_address,
        )
        self.refresh = MarketRefreshService(
            self.gamma,
            self.state,
            store=self.store,
            resolved_since=cfg.resolved_since,
            winner_threshold=cfg.winner_price_threshold,
        )
        self.reconstructor = BalanceReconstructor(
            self.transfers,
            window_size=cfg.transfer_window_size,
            start_sequence=cfg.transfer_start_block,
        )
        self.winners = WinnerService(self.reconstructor, state=self.state, chain=self.transfers)
        self.channel = StreamingUpdateChannel(
            transport or WebsocketTransport(cfg.websocket_url),
            self.state,
            self.hub,
            store=self.store,
            base_delay_ms=cfg.ws_reconnect_delay,
            max_attempts=cfg.ws_max_reconnect_attempts,
            channel=cfg.ws_channel,
            message_types=cfg.ws_message_types,
        )
        self._tasks: list[asyncio.Task[object]] = []
        self.started = False

    async def load_snapshot(self) -> None:
        if self.store is None:
            return
        try:
            snapshot = await asyncio.to_thread(self.store.load)
        except Exception:  # noqa: BLE001 - start empty rather than refuse to boot
            logger.exception("Failed to load market snapshot, starting empty")
            return
        await self.state.restore(snapshot)

    async def save_snapshot(self) -> bool:
        if self.store is None:
            return False
        try:
            await asyncio.to_thread(self.store.save, self.state.snapshot())
        except Exception:  # noqa: BLE001
            logger.exception("Failed to save market snapshot")
            return False
        return True

    async def start(self) -> None:
        if self.started:
            return
        configure_logging(self.settings.log_file)
        await self.load_snapshot()
        loop = asyncio.get_running_loop()
        if self.settings.enable_realtime:
            self._tasks.append(loop.create_task(self.channel.run(), name="stream-channel"))
        if self.settings.enable_scheduler:
            self._tasks.append(loop.create_task(self._scheduler(), name="refresh-scheduler"))
        self.started = True
        logger.info(
            "Tracker started (realtime={}, scheduler={})",
            self.settings.enable_realtime,
            self.settings.enable_scheduler,
        )

    async def _scheduler(self) -> None:
        interval = self.settings.refresh_interval_seconds
        while True:
            try:
                await self.refresh.perform_full_update()
            except Exception:  # noqa: BLE001 - next tick retries
                logger.exception("Scheduled full update failed")
            await asyncio.sleep(interval)

    async def stop(self) -> None:
        if not self.started:
            return
        await self.channel.stop()
        for task in self._tasks:
            task.cancel()
        results = await asyncio.gather(*self._tasks, return_exceptions=True)
        for task, result in zip(self._tasks, results):
            if isinstance(result, Exception):
                logger.error("Background task {} failed: {}", task.get_name(), result)
        self._tasks.clear()
        await self.save_snapshot()
        await self.dispatcher.aclose()
        self.started = False
        logger.info("Tracker stopped")


__all__ = ["TrackerRuntime", "configure_logging"]
