"""Live item snapshots pushed to subscribers after every committed change."""

from __future__ import annotations

import logging
import queue
import threading
from typing import Any, Callable, Iterator

from flask import Flask, current_app

from stockroom.models import Item
from stockroom.services.store import add_commit_listener, read_only


logger = logging.getLogger(__name__)

Snapshot = list[dict[str, Any]]
SnapshotCallback = Callable[[Snapshot], None]

_EXTENSION_KEY = "stockroom.item_feed"


class Subscription:
    def __init__(self, feed: "ItemFeed", callback: SnapshotCallback):
        self._feed = feed
        self._callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self._feed._remove(self)

    def deliver(self, snapshot: Snapshot) -> None:
        if self.active:
            self._callback(snapshot)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.unsubscribe()


class ItemFeed:
    def __init__(self, app: Flask | None = None):
        self._subscriptions: list[Subscription] = []
        self._lock = threading.Lock()
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        app.extensions[_EXTENSION_KEY] = self
        add_commit_listener(self._on_commit, app)

    def snapshot(self) -> Snapshot:
        def _load(session) -> Snapshot:
            items = session.query(Item).order_by(Item.name, Item.id).all()
            return [item.to_dict() for item in items]

        return read_only(_load, label="item_snapshot")

    def subscribe(self, callback: SnapshotCallback, *, deliver_current: bool = True) -> Subscription:
        subscription = Subscription(self, callback)
        with self._lock:
            self._subscriptions.append(subscription)
        if deliver_current:
            subscription.deliver(self.snapshot())
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def publish(self) -> None:
        with self._lock:
            subscriptions = list(self._subscriptions)
        if not subscriptions:
            return

        snapshot = self.snapshot()
        for subscription in subscriptions:
            try:
                subscription.deliver(snapshot)
            except Exception:
                logger.exception("Item subscriber %r failed", subscription)

    def stream(self, timeout: float | None = None) -> Iterator[Snapshot]:
        """Yield the current snapshot, then one snapshot per committed change.

        Each call starts a fresh subscription on first iteration; closing the
        generator unsubscribes it. With ``timeout`` set, the stream ends once
        no change arrives within that many seconds.
        """

        updates: "queue.Queue[Snapshot]" = queue.Queue()
        subscription = self.subscribe(updates.put)
        try:
            while True:
                try:
                    yield updates.get(timeout=timeout)
                except queue.Empty:
                    return
        finally:
            subscription.unsubscribe()

    def _on_commit(self, changed_models: frozenset) -> None:
        if Item in changed_models:
            self.publish()


def get_item_feed() -> ItemFeed:
    feed = current_app.extensions.get(_EXTENSION_KEY)
    if feed is None:
        feed = ItemFeed(current_app._get_current_object())
    return feed
