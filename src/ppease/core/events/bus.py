"""In-process broadcast channel between the core and the presentation layer.

The store and services publish; whatever renders state subscribes. A failing
subscriber is logged and does not affect the publisher or other subscribers.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

ONBOARDING_COMPLETED = "onboarding_completed"
STORE_COMMITTED = "store_committed"

Handler = Callable[[Any], None]


class EventBus:
    """Topic-based publish/subscribe.

    Usage::

        bus = EventBus()
        unsubscribe = bus.subscribe(ONBOARDING_COMPLETED, lambda _: refresh())
        bus.publish(ONBOARDING_COMPLETED)
        unsubscribe()
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = defaultdict(list)

    def subscribe(self, topic: str, handler: Handler) -> Callable[[], None]:
        """Register ``handler`` for ``topic``; returns a callable that removes it."""
        self._handlers[topic].append(handler)

        def unsubscribe() -> None:
            try:
                self._handlers[topic].remove(handler)
            except ValueError:
                pass

        return unsubscribe

    def publish(self, topic: str, payload: Any = None) -> int:
        """Deliver ``payload`` to every subscriber of ``topic``.

        Returns:
            Number of handlers that ran without raising.
        """
        delivered = 0
        for handler in list(self._handlers.get(topic, ())):
            try:
                handler(payload)
            except Exception:
                logger.exception("Subscriber for %s failed", topic)
                continue
            delivered += 1
        logger.debug("Published %s to %d subscriber(s)", topic, delivered)
        return delivered

    def subscriber_count(self, topic: str) -> int:
        return len(self._handlers.get(topic, ()))
