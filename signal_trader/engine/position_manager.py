"""In-memory view of open positions, backed by the position table.

Keyed by ``SYMBOL_SIDE``. A separate pending-open set closes the window
between the open check and the database write, so two executions for the
same key racing on the event loop cannot both create a position.
"""

import logging

from signal_trader.engine.repositories import PositionRepository
from signal_trader.models.position import Position
from signal_trader.schemas.common import PositionStatus
from signal_trader.utils.errors import PositionAlreadyOpenError

logger = logging.getLogger(__name__)


def position_key(symbol: str, side: str) -> str:
    return f"{symbol.upper()}_{side}"


class PositionManager:
    def __init__(self, repository: PositionRepository):
        self.repository = repository
        self._open: dict[str, Position] = {}
        self._pending: set[str] = set()

    async def sync_from_database(self):
        """Rebuild the cache from all open rows. Called on startup."""
        positions = await self.repository.find_all_open()
        self._open.clear()
        for pos in positions:
            self._open[position_key(pos.symbol, pos.side)] = pos
        logger.info(f"Positions synced from database: {len(self._open)} open")

    def can_open_position(self, symbol: str, side: str) -> bool:
        key = position_key(symbol, side)
        if key in self._open or key in self._pending:
            logger.debug(f"Position already open or opening: {key}")
            return False
        return True

    async def try_open_position(self, position: Position) -> Position | None:
        """Persist and cache ``position``; None if the key is taken or being opened."""
        key = position_key(position.symbol, position.side)
        # Check and reserve with no await in between
        if key in self._open or key in self._pending:
            logger.warning(f"Refusing to open {key}: already open or in progress")
            return None
        self._pending.add(key)
        try:
            saved = await self.repository.create(position)
            self._open[key] = saved
        finally:
            self._pending.discard(key)

        logger.info(
            f"Position opened: {saved.symbol} {saved.side} qty={saved.quantity} "
            f"@ {saved.entry_price} ({saved.id})"
        )
        return saved

    async def open_position(self, position: Position) -> Position:
        saved = await self.try_open_position(position)
        if saved is None:
            raise PositionAlreadyOpenError(position.symbol, position.side)
        return saved

    async def update_position(self, symbol: str, side: str, **updates) -> Position | None:
        key = position_key(symbol, side)
        existing = self._open.get(key)
        if existing is None:
            logger.warning(f"Position not found for update: {key}")
            return None

        updated = await self.repository.update(existing.id, **updates)
        if updated is not None:
            if updated.status == PositionStatus.CLOSED:
                self._open.pop(key, None)
                logger.info(f"Position closed: {key}")
            else:
                self._open[key] = updated
                logger.debug(f"Position updated: {key} {updates}")
        return updated

    async def close_position(self, symbol: str, side: str) -> Position | None:
        key = position_key(symbol, side)
        existing = self._open.get(key)
        if existing is None:
            logger.warning(f"Position not found for closing: {key}")
            return None

        closed = await self.repository.close_position(existing.id)
        if closed is not None:
            self._open.pop(key, None)
            logger.info(f"Position closed: {closed.symbol} {closed.side} ({closed.id})")
        return closed

    # Read accessors only see the cache

    def get_position(self, symbol: str, side: str) -> Position | None:
        return self._open.get(position_key(symbol, side))

    def get_all_open_positions(self) -> list[Position]:
        return list(self._open.values())

    def get_open_position_count(self) -> int:
        return len(self._open)

    def has_open_position(self, symbol: str, side: str) -> bool:
        return position_key(symbol, side) in self._open

    def clear(self):
        self._open.clear()
        self._pending.clear()
        logger.debug("Position cache cleared")
