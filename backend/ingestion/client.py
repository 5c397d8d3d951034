from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from typing import Any

from loguru import logger

from tracker.core.config import settings

from .dispatcher import RequestDispatcher


ALLOWED_FILTER_KEYS = {
    "limit",
    "offset",
    "order",
    "ascending",
    "id",
    "slug",
    "tag_id",
    "related_tags",
    "active",
    "archived",
    "closed",
    "featured",
    "liquidity_min",
    "liquidity_max",
    "volume_min",
    "volume_max",
    "start_date_min",
    "start_date_max",
    "end_date_min",
    "end_date_max",
    "clob_token_ids",
    "condition_ids",
}


class GammaClient:
    """Paginated access to Gamma events and markets through the shared dispatcher."""

    def __init__(
        self,
        dispatcher: RequestDispatcher,
        *,
        base_url: str | None = None,
        events_path: str | None = None,
        markets_path: str | None = None,
        page_size: int | None = None,
    ) -> None:
        self._dispatcher = dispatcher
        self.base_url = (base_url or str(settings.gamma_base_url)).rstrip("/")
        self.events_path = events_path or settings.events_path
        self.markets_path = markets_path or settings.markets_path
        self.page_size = page_size or settings.ingestion_page_size

    def _build_params(self, params: dict[str, Any]) -> dict[str, str]:
        built: dict[str, str] = {}
        dropped: list[str] = []
        for key, value in params.items():
            if key not in ALLOWED_FILTER_KEYS:
                dropped.append(key)
                continue
            serialized = self._serialize_filter_value(value)
            if serialized is not None:
                built[key] = serialized
        if dropped:
            logger.warning(
                "Dropped unsupported Gamma query filters: {}", ", ".join(sorted(dropped))
            )
        return built

    @staticmethod
    def _serialize_filter_value(value: Any) -> str | None:
        if value is None:
            return None
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, (int, float)):
            return str(value)
        if isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
            parts: list[str] = []
            for item in value:
                serialized = GammaClient._serialize_filter_value(item)
                if serialized is not None:
                    parts.append(serialized)
            return ",".join(parts) if parts else None
        return str(value)

    @staticmethod
    def _extract_records(payload: Any) -> list[dict[str, Any]]:
        if isinstance(payload, list):
            raw_records = payload
        elif isinstance(payload, dict):
            candidates: tuple[Any, ...] = (
                payload.get("data"),
                payload.get("events"),
                payload.get("markets"),
                payload.get("result"),
            )
            raw_records = next((value for value in candidates if isinstance(value, list)), [])
        else:
            raw_records = []
        return [record for record in raw_records if isinstance(record, dict)]

    async def fetch(self, resource: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        path = resource if resource.startswith("/") else f"/{resource}"
        query = self._build_params(params or {})
        logger.info("Gamma GET {} params={}", path, query)
        payload = await self._dispatcher.get(f"{self.base_url}{path}", params=query)
        return self._extract_records(payload)

    async def fetch_events(
        self, *, limit: int | None = None, offset: int = 0, **filters: Any
    ) -> list[dict[str, Any]]:
        params = {"limit": limit or self.page_size, "offset": offset, **filters}
        return await self.fetch(self.events_path, params)

    async def fetch_markets(
        self, *, limit: int | None = None, offset: int = 0, **filters: Any
    ) -> list[dict[str, Any]]:
        params = {"limit": limit or self.page_size, "offset": offset, **filters}
        return await self.fetch(self.markets_path, params)

    async def iter_events(self, **filters: Any) -> AsyncIterator[list[dict[str, Any]]]:
        """Yield pages of events until the API returns a short or empty page."""

        offset = 0
        while True:
            page = await self.fetch_events(limit=self.page_size, offset=offset, **filters)
            if not page:
                break
            yield page
            offset += len(page)
            if len(page) < self.page_size:
                break


__all__ = ["ALLOWED_FILTER_KEYS", "GammaClient"]
