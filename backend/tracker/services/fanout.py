"""Fan-out of domain events to a dynamic set of subscribers."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Protocol, runtime_checkable

from loguru import logger

from tracker.domain import DomainEvent


@runtime_checkable
class Subscriber(Protocol):
    def receive(self, event: DomainEvent) -> None:
        ...


class SubscriberHub:
    """Deliver every published event once to every current subscriber.

    A subscriber whose ``receive`` raises is removed on the spot; delivery to
    the others carries on.
    """

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []

    def __len__(self) -> int:
        return len(self._subscribers)

    def __contains__(self, subscriber: object) -> bool:
        return subscriber in self._subscribers

    def subscribe(self, subscriber: Subscriber) -> Subscriber:
        if subscriber not in self._subscribers:
            self._subscribers.append(subscriber)
        return subscriber

    def unsubscribe(self, subscriber: Subscriber) -> None:
        try:
            self._subscribers.remove(subscriber)
        except ValueError:
            pass

    def publish(self, event: DomainEvent) -> int:
        delivered = 0
        for subscriber in list(self._subscribers):
            try:
                subscriber.receive(event)
            except Exception as exc:  # noqa: BLE001 - one bad subscriber must not stop the rest
                logger.warning(
                    "Removing subscriber {} after failed {} delivery: {}",
                    subscriber,
                    event.type,
                    exc,
                )
                self.unsubscribe(subscriber)
            else:
                delivered += 1
        return delivered


class CallbackSubscriber:
    def __init__(self, callback: Callable[[DomainEvent], None]) -> None:
        self._callback = callback

    def receive(self, event: DomainEvent) -> None:
        self._callback(event)

    def __repr__(self) -> str:
        return f"CallbackSubscriber({getattr(self._callback, '__name__', self._callback)!r})"


class SubscriberOverflow(RuntimeError):
    pass


class QueueSubscriber:
    """Buffer events for one streaming client.

    ``receive`` never blocks: a full or closed queue raises, which makes the
    hub drop this client instead of stalling the publisher.
    """

    def __init__(self, maxsize: int = 100, name: str | None = None) -> None:
        self.queue: asyncio.Queue[DomainEvent] = asyncio.Queue(maxsize=maxsize)
        self.name = name or f"queue-{id(self):x}"
        self.closed = False

    def receive(self, event: DomainEvent) -> None:
        if self.closed:
            raise SubscriberOverflow(f"{self.name} is closed")
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull as exc:
            self.closed = True
            raise SubscriberOverflow(f"{self.name} buffer is full") from exc

    async def get(self, timeout: float | None = None) -> DomainEvent | None:
        if timeout is None:
            return await self.queue.get()
        try:
            return await asyncio.wait_for(self.queue.get(), timeout)
        except asyncio.TimeoutError:
            return None

    def close(self) -> None:
        self.closed = True

    def __repr__(self) -> str:
        return f"QueueSubscriber({self.name!r})"


__all__ = [
    "CallbackSubscriber",
    "QueueSubscriber",
    "Subscriber",
    "SubscriberHub",
    "SubscriberOverflow",
]
