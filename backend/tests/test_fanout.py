from __future__ import annotations

import asyncio

from tracker.domain import PriceUpdate
from tracker.services.fanout import CallbackSubscriber, QueueSubscriber, SubscriberHub


def _update(price: float) -> PriceUpdate:
    return PriceUpdate(event_id="e1", market_id="m1", asset_id="101", price=price, old_price=0.5)


def test_every_subscriber_receives_each_event_once():
    hub = SubscriberHub()
    first, second = [], []
    hub.subscribe(CallbackSubscriber(first.append))
    hub.subscribe(CallbackSubscriber(second.append))

    assert hub.publish(_update(0.6)) == 2
    assert [e.price for e in first] == [0.6]
    assert [e.price for e in second] == [0.6]


def test_failing_subscriber_is_removed_and_others_continue():
    hub = SubscriberHub()
    healthy = []

    def explode(event):
        raise RuntimeError("client went away")

    broken = hub.subscribe(CallbackSubscriber(explode))
    hub.subscribe(CallbackSubscriber(healthy.append))

    assert hub.publish(_update(0.6)) == 1
    assert broken not in hub
    assert len(hub) == 1

    hub.publish(_update(0.7))
    assert [e.price for e in healthy] == [0.6, 0.7]


def test_unsubscribe_is_idempotent():
    hub = SubscriberHub()
    subscriber = hub.subscribe(CallbackSubscriber(lambda event: None))
    hub.unsubscribe(subscriber)
    hub.unsubscribe(subscriber)
    assert len(hub) == 0
    assert hub.publish(_update(0.6)) == 0


def test_subscriber_may_unsubscribe_during_delivery():
    hub = SubscriberHub()
    seen = []

    class OneShot:
        def receive(self, event):
            seen.append(event)
            hub.unsubscribe(self)

    hub.subscribe(OneShot())
    hub.subscribe(CallbackSubscriber(seen.append))
    hub.publish(_update(0.6))
    hub.publish(_update(0.7))
    assert len(seen) == 3


def test_full_queue_drops_the_slow_client():
    hub = SubscriberHub()
    slow = hub.subscribe(QueueSubscriber(maxsize=1, name="slow"))

    hub.publish(_update(0.6))
    hub.publish(_update(0.7))

    assert slow not in hub
    assert slow.closed
    assert slow.queue.qsize() == 1


def test_queue_subscriber_get_times_out():
    subscriber = QueueSubscriber(maxsize=2)

    async def scenario():
        subscriber.receive(_update(0.6))
        first = await subscriber.get(timeout=0.1)
        second = await subscriber.get(timeout=0.01)
        return first, second

    first, second = asyncio.run(scenario())
    assert first.price == 0.6
    assert second is None
