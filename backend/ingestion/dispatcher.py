"""Single-worker outbound request queue shared by every upstream client."""

from __future__ import annotations

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any

import httpx
from loguru import logger

from .errors import (
    ConnectionReset,
    DispatchError,
    DispatchTimeout,
    MalformedResponse,
    RateLimited,
    RetriesExhausted,
    TransientDispatchError,
    UpstreamError,
)


@dataclass(slots=True)
class DispatchRequest:
    target: httpx.Request
    remaining_retries: int
    future: asyncio.Future[Any]
    attempts: int = field(default=0)

    @property
    def label(self) -> str:
        return f"{self.target.method} {self.target.url}"


class RequestDispatcher:
    """Serialize outbound calls behind one worker.

    Requests are processed FIFO with no concurrency, spaced at least
    ``min_interval`` seconds apart. Rate-limit and connection-reset failures
    go back to the *front* of the queue after ``retry_delay`` seconds until the
    request's retry budget runs out; every other failure is handed straight to
    the caller.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        min_interval: float = 0.1,
        retry_delay: float = 2.0,
        max_retries: int = 3,
        timeout: float = 30.0,
        user_agent: str | None = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=timeout, headers={"Accept": "application/json"}
        )
        if user_agent:
            self._client.headers["User-Agent"] = user_agent
        self.min_interval = max(0.0, float(min_interval))
        self.retry_delay = max(0.0, float(retry_delay))
        self.max_retries = max(0, int(max_retries))
        self._queue: deque[DispatchRequest] = deque()
        self._worker: asyncio.Task[None] | None = None
        self._last_dispatch: float | None = None

    @property
    def pending(self) -> int:
        return len(self._queue)

    @property
    def is_draining(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def build_request(self, method: str, url: str, **kwargs: Any) -> httpx.Request:
        return self._client.build_request(method, url, **kwargs)

    async def enqueue(self, target: httpx.Request, max_retries: int | None = None) -> Any:
        loop = asyncio.get_running_loop()
        future: asyncio.Future[Any] = loop.create_future()
        budget = self.max_retries if max_retries is None else max(0, int(max_retries))
        self._queue.append(DispatchRequest(target=target, remaining_retries=budget, future=future))
        if not self.is_draining:
            self._worker = loop.create_task(self._drain())
        return await future

    async def get(
        self,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        max_retries: int | None = None,
    ) -> Any:
        return await self.enqueue(self.build_request("GET", url, params=params), max_retries)

    async def post(
        self,
        url: str,
        *,
        json: Any = None,
        max_retries: int | None = None,
    ) -> Any:
        return await self.enqueue(self.build_request("POST", url, json=json), max_retries)

    async def _drain(self) -> None:
        while self._queue:
            pending = self._queue.popleft()
            if pending.future.done():
                continue
            await self._wait_for_spacing()
            try:
                result = await self._send(pending)
            except TransientDispatchError as exc:
                if pending.remaining_retries > 0:
                    logger.warning(
                        "{} for {}, retrying in {}s ({} retries left)",
                        type(exc).__name__,
                        pending.label,
                        self.retry_delay,
                        pending.remaining_retries,
                    )
                    await asyncio.sleep(self.retry_delay)
                    pending.remaining_retries -= 1
                    self._queue.appendleft(pending)
                    continue
                logger.error("Request failed after {} attempts: {}", pending.attempts, exc)
                exhausted = RetriesExhausted(exc, attempts=pending.attempts)
                exhausted.__cause__ = exc
                _reject(pending.future, exhausted)
            except DispatchError as exc:
                logger.error("Request failed: {}", exc)
                _reject(pending.future, exc)
            except Exception as exc:  # noqa: BLE001 - every request must settle exactly once
                logger.exception("Unexpected failure dispatching {}", pending.label)
                _reject(pending.future, exc)
            else:
                if not pending.future.done():
                    pending.future.set_result(result)

    async def _wait_for_spacing(self) -> None:
        if self._last_dispatch is None:
            return
        elapsed = time.monotonic() - self._last_dispatch
        if elapsed < self.min_interval:
            await asyncio.sleep(self.min_interval - elapsed)

    async def _send(self, pending: DispatchRequest) -> Any:
        label = pending.label
        pending.attempts += 1
        self._last_dispatch = time.monotonic()
        try:
            response = await self._client.send(pending.target)
        except httpx.TimeoutException as exc:
            raise DispatchTimeout(f"timed out ({type(exc).__name__})", target=label) from exc
        except (httpx.ReadError, httpx.WriteError, httpx.RemoteProtocolError) as exc:
            raise ConnectionReset(f"connection reset ({exc})", target=label) from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(f"transport failure ({exc})", target=label) from exc

        if response.status_code == 429:
            raise RateLimited("rate limited (429)", target=label)
        if response.status_code >= 400:
            raise UpstreamError(
                f"http_error status={response.status_code} body={response.text[:400]}",
                target=label,
                status_code=response.status_code,
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise MalformedResponse(
                "response body is not JSON", target=label, status_code=response.status_code
            ) from exc

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "RequestDispatcher":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


def _reject(future: asyncio.Future[Any], exc: BaseException) -> None:
    if not future.done():
        future.set_exception(exc)


__all__ = ["DispatchRequest", "RequestDispatcher"]
