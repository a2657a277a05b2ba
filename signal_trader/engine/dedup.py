"""Content-hash deduplication backed by the signal table."""

import logging

from sqlalchemy.exc import IntegrityError

from signal_trader.engine.repositories import SignalRepository
from signal_trader.models.signal import Signal
from signal_trader.schemas.signal import RawSignal

logger = logging.getLogger(__name__)


class DedupStore:
    def __init__(self, repository: SignalRepository):
        self.repository = repository

    async def exists(self, hash: str) -> bool:
        return await self.repository.exists(hash)

    async def find_by_hash(self, hash: str) -> Signal | None:
        return await self.repository.find_by_hash(hash)

    async def create(self, raw: RawSignal) -> Signal | None:
        """Persist a new PENDING signal, or return None if the hash is already stored."""
        try:
            return await self.repository.create(raw)
        except IntegrityError:
            if not await self.repository.exists(raw.hash):
                raise
            logger.info(f"Signal {raw.hash[:16]} inserted concurrently, treating as duplicate")
            return None
