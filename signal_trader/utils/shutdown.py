"""Ordered graceful shutdown."""

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

ShutdownHandler = Callable[[], Awaitable[None]]


class ShutdownManager:
    """Runs registered handlers in reverse registration order.

    Components register in start-up order, so consumers are stopped
    before the connections they depend on.
    """

    def __init__(self, timeout: float = 30.0):
        self.timeout = timeout
        self._handlers: list[tuple[str, ShutdownHandler]] = []
        self._started = False

    def register(self, name: str, handler: ShutdownHandler):
        self._handlers.append((name, handler))
        logger.debug(f"Shutdown handler registered: {name} ({len(self._handlers)} total)")

    def unregister(self, name: str):
        self._handlers = [(n, h) for n, h in self._handlers if n != name]

    @property
    def in_progress(self) -> bool:
        return self._started

    async def run(self):
        if self._started:
            logger.warning("Shutdown already in progress")
            return
        self._started = True
        logger.info(f"Starting graceful shutdown ({len(self._handlers)} handlers)")
        try:
            await asyncio.wait_for(self._run_handlers(), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error(f"Shutdown timed out after {self.timeout}s, remaining handlers skipped")
            return
        logger.info("Graceful shutdown complete")

    async def _run_handlers(self):
        for name, handler in reversed(self._handlers):
            try:
                logger.debug(f"Running shutdown handler: {name}")
                await handler()
            except Exception as e:
                logger.error(f"Shutdown handler '{name}' failed: {e}")
