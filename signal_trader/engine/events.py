"""In-process async pub/sub used for pipeline lifecycle events."""

import asyncio
import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

Handler = Callable[[str, dict[str, Any]], Awaitable[None] | None]

WILDCARD = "*"


class EventBus:
    def __init__(self):
        self._subs: dict[str, list[Handler]] = defaultdict(list)

    def subscribe(self, topic: str, handler: Handler):
        """Register ``handler`` for ``topic``; ``"*"`` receives every event."""
        self._subs[topic].append(handler)

    def unsubscribe(self, topic: str, handler: Handler):
        if handler in self._subs.get(topic, []):
            self._subs[topic].remove(handler)

    async def publish(self, topic: str, payload: dict[str, Any] | None = None):
        payload = payload or {}
        for handler in [*self._subs.get(topic, []), *self._subs.get(WILDCARD, [])]:
            try:
                result = handler(topic, payload)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                # A broken subscriber must not break the publisher
                logger.error(f"Event handler for '{topic}' failed: {e}")
