# src/transfer/events.py — v1
"""Publish/subscribe channel decoupling a batch from whoever displays it."""

from __future__ import annotations

import logging
from collections.abc import Callable

from batchxfer.transfer.models import BatchEvent

logger = logging.getLogger(__name__)

Listener = Callable[[BatchEvent], None]


class EventChannel:
    """Synchronous fan-out of BatchEvents to subscribed listeners.

    Listeners run inline on the event loop and must return quickly. A failing
    listener is logged and does not affect the batch or other listeners.
    """

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener``; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self, event: BatchEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Event listener %r failed on %s event", listener, event.kind)

    def __len__(self) -> int:
        return len(self._listeners)
