"""Listener threads feeding a single dispatcher thread."""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable
from typing import Any

from bluetui.core.events import EventSource, NoOp
from bluetui.core.router import SignalRouter
from bluetui.transports.base import Notification, Subscription

LOGGER = logging.getLogger(__name__)

_STOP = object()


class SignalPump:
    """Serializes bus notifications through the router.

    Any number of subscriptions may be attached; each gets a listener thread
    that only enqueues. One dispatcher thread applies queued items in arrival
    order and fires the resulting events, so the store has a single writer on
    the bus side. Callables may be queued too, to run a resync in sequence.
    """

    def __init__(self, router: SignalRouter, events: EventSource) -> None:
        self.router = router
        self.events = events
        self._queue: queue.Queue[Any] = queue.Queue()
        self._dispatcher: threading.Thread | None = None
        self._listeners: list[tuple[Subscription, threading.Thread]] = []

    def start(self) -> None:
        if self._dispatcher is not None:
            return
        self._dispatcher = threading.Thread(target=self._dispatch_loop, name="bluetui-dispatch", daemon=True)
        self._dispatcher.start()

    def attach(self, subscription: Subscription, *, name: str = "bus") -> threading.Thread:
        listener = threading.Thread(
            target=self._listen,
            args=(subscription, name),
            name=f"bluetui-listen-{name}",
            daemon=True,
        )
        self._listeners.append((subscription, listener))
        listener.start()
        return listener

    def submit(self, item: Notification | Callable[[], object]) -> None:
        self._queue.put(item)

    def wait_idle(self) -> None:
        """Block until everything queued so far has been dispatched."""
        self._queue.join()

    def stop(self) -> None:
        for subscription, _ in self._listeners:
            subscription.close()
        for _, listener in self._listeners:
            listener.join(timeout=1.0)
        self._listeners.clear()
        if self._dispatcher is not None:
            self._queue.put(_STOP)
            self._dispatcher.join(timeout=1.0)
            self._dispatcher = None

    def _listen(self, subscription: Subscription, name: str) -> None:
        for notification in subscription:
            self._queue.put(notification)
        LOGGER.info("%s signal stream closed", name)

    def _dispatch_loop(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self._apply(item)
            finally:
                self._queue.task_done()

    def _apply(self, item: Notification | Callable[[], object]) -> None:
        if isinstance(item, Notification):
            event = self.router.dispatch(item)
            if not isinstance(event, NoOp):
                self.events.fire(event)
            return
        try:
            item()
        except Exception:
            LOGGER.exception("Queued task failed")
