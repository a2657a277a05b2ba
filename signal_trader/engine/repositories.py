"""Persistence for signals, trades and positions.

Methods are async so callers on the event loop can await them; each one
opens a short-lived sync SQLModel session.
"""

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from signal_trader.models.position import Position
from signal_trader.models.signal import Signal
from signal_trader.models.trade import Trade
from signal_trader.schemas.common import PositionStatus, SignalStatus, TradeStatus
from signal_trader.schemas.signal import ParsedSignal, RawSignal
from signal_trader.schemas.trade import OrderInfo
from signal_trader.utils.errors import PositionAlreadyOpenError

logger = logging.getLogger(__name__)

OPEN_TRADE_STATUSES = (TradeStatus.PENDING, TradeStatus.OPEN, TradeStatus.PARTIALLY_FILLED)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _order_by(model, sort: str):
    """``"created_at"`` sorts ascending, ``"-created_at"`` descending."""
    descending = sort.startswith("-")
    column = getattr(model, sort.lstrip("-"), None)
    if column is None:
        raise ValueError(f"Unknown sort field: {sort}")
    return column.desc() if descending else column.asc()


class SignalRepository:
    def __init__(self, engine: Engine):
        self.engine = engine

    async def create(self, raw: RawSignal) -> Signal:
        signal = Signal(
            id=raw.id,
            source=raw.source,
            raw_content=raw.raw_content,
            image_base64=raw.image_base64,
            image_mime_type=raw.image_mime_type,
            channel_id=raw.channel_id,
            user_id=raw.user_id,
            message_id=raw.message_id,
            hash=raw.hash,
            received_at=raw.received_at,
            status=SignalStatus.PENDING,
        )
        with Session(self.engine) as session:
            session.add(signal)
            session.commit()
            session.refresh(signal)
        return signal

    async def find_by_hash(self, hash: str) -> Signal | None:
        with Session(self.engine) as session:
            return session.exec(select(Signal).where(Signal.hash == hash)).first()

    async def find_by_id(self, signal_id: str) -> Signal | None:
        with Session(self.engine) as session:
            return session.get(Signal, signal_id)

    async def exists(self, hash: str) -> bool:
        with Session(self.engine) as session:
            return session.exec(select(Signal.id).where(Signal.hash == hash)).first() is not None

    async def update_status(
        self, signal_id: str, status: SignalStatus, reason: str | None = None
    ) -> Signal | None:
        with Session(self.engine) as session:
            signal = session.get(Signal, signal_id)
            if signal is None:
                return None
            signal.status = status
            if reason is not None:
                signal.status_reason = reason
            signal.processed_at = _now()
            session.add(signal)
            session.commit()
            session.refresh(signal)
            return signal

    async def update_parsed(
        self, signal_id: str, parsed: ParsedSignal, status: SignalStatus = SignalStatus.PARSED
    ) -> Signal | None:
        with Session(self.engine) as session:
            signal = session.get(Signal, signal_id)
            if signal is None:
                return None
            signal.parsed = parsed.to_dict()
            signal.status = status
            session.add(signal)
            session.commit()
            session.refresh(signal)
            return signal

    async def find_many(
        self,
        status: SignalStatus | None = None,
        limit: int = 50,
        offset: int = 0,
        sort: str = "-created_at",
    ) -> list[Signal]:
        stmt = select(Signal)
        if status is not None:
            stmt = stmt.where(Signal.status == status)
        stmt = stmt.order_by(_order_by(Signal, sort)).offset(offset).limit(limit)
        with Session(self.engine) as session:
            return list(session.exec(stmt).all())

    async def find_recent(self, limit: int = 10) -> list[Signal]:
        return await self.find_many(limit=limit)

    async def count(self, status: SignalStatus | None = None) -> int:
        stmt = select(func.count()).select_from(Signal)
        if status is not None:
            stmt = stmt.where(Signal.status == status)
        with Session(self.engine) as session:
            return session.exec(stmt).one()

    async def status_counts(self) -> dict[str, int]:
        """Count per status; every status is present, zero when unused."""
        counts = {status.value: 0 for status in SignalStatus}
        with Session(self.engine) as session:
            rows = session.exec(select(Signal.status, func.count()).group_by(Signal.status)).all()
        for status, n in rows:
            counts[status] = n
        return counts


class TradeRepository:
    def __init__(self, engine: Engine):
        self.engine = engine

    async def create(self, trade: Trade) -> Trade:
        with Session(self.engine) as session:
            session.add(trade)
            session.commit()
            session.refresh(trade)
        logger.info(f"Trade recorded: {trade.symbol} {trade.side} qty={trade.quantity} ({trade.id})")
        return trade

    async def find_by_id(self, trade_id: str) -> Trade | None:
        with Session(self.engine) as session:
            return session.get(Trade, trade_id)

    async def find_by_signal_id(self, signal_id: str) -> list[Trade]:
        with Session(self.engine) as session:
            return list(session.exec(select(Trade).where(Trade.signal_id == signal_id)).all())

    async def update_status(self, trade_id: str, status: TradeStatus) -> Trade | None:
        return await self._update(trade_id, status=status)

    async def add_order(self, trade_id: str, order: OrderInfo) -> Trade | None:
        with Session(self.engine) as session:
            trade = session.get(Trade, trade_id)
            if trade is None:
                return None
            # Reassign so the JSON column is flagged dirty
            trade.orders = [*trade.orders, order.model_dump(mode="json")]
            trade.updated_at = _now()
            session.add(trade)
            session.commit()
            session.refresh(trade)
            return trade

    async def close_trade(
        self,
        trade_id: str,
        pnl: float | None = None,
        pnl_percentage: float | None = None,
        reason: str | None = None,
    ) -> Trade | None:
        return await self._update(
            trade_id,
            status=TradeStatus.CLOSED,
            pnl=pnl,
            pnl_percentage=pnl_percentage,
            close_reason=reason,
            closed_at=_now(),
        )

    async def find_open_trades(self) -> list[Trade]:
        stmt = select(Trade).where(Trade.status.in_(OPEN_TRADE_STATUSES))  # type: ignore[attr-defined]
        with Session(self.engine) as session:
            return list(session.exec(stmt).all())

    async def find_many(
        self,
        status: TradeStatus | None = None,
        symbol: str | None = None,
        limit: int = 50,
        offset: int = 0,
        sort: str = "-created_at",
    ) -> list[Trade]:
        stmt = select(Trade)
        if status is not None:
            stmt = stmt.where(Trade.status == status)
        if symbol is not None:
            stmt = stmt.where(Trade.symbol == symbol.upper())
        stmt = stmt.order_by(_order_by(Trade, sort)).offset(offset).limit(limit)
        with Session(self.engine) as session:
            return list(session.exec(stmt).all())

    async def count(self, status: TradeStatus | None = None) -> int:
        stmt = select(func.count()).select_from(Trade)
        if status is not None:
            stmt = stmt.where(Trade.status == status)
        with Session(self.engine) as session:
            return session.exec(stmt).one()

    async def _update(self, trade_id: str, **fields: Any) -> Trade | None:
        with Session(self.engine) as session:
            trade = session.get(Trade, trade_id)
            if trade is None:
                return None
            for key, value in fields.items():
                setattr(trade, key, value)
            trade.updated_at = _now()
            session.add(trade)
            session.commit()
            session.refresh(trade)
            return trade


class PositionRepository:
    def __init__(self, engine: Engine):
        self.engine = engine

    async def create(self, position: Position) -> Position:
        """Insert an open position.

        Raises PositionAlreadyOpenError when the partial unique index on
        open (symbol, side) rejects the row.
        """
        with Session(self.engine) as session:
            session.add(position)
            try:
                session.commit()
            except IntegrityError as e:
                session.rollback()
                raise PositionAlreadyOpenError(position.symbol, position.side) from e
            session.refresh(position)
        return position

    async def find_by_id(self, position_id: str) -> Position | None:
        with Session(self.engine) as session:
            return session.get(Position, position_id)

    async def find_by_trade_id(self, trade_id: str) -> Position | None:
        with Session(self.engine) as session:
            return session.exec(select(Position).where(Position.trade_id == trade_id)).first()

    async def find_open_position(self, symbol: str, side: str) -> Position | None:
        stmt = select(Position).where(
            Position.symbol == symbol.upper(),
            Position.side == side,
            Position.status == PositionStatus.OPEN,
        )
        with Session(self.engine) as session:
            return session.exec(stmt).first()

    async def has_open_position(self, symbol: str, side: str) -> bool:
        return await self.find_open_position(symbol, side) is not None

    async def update(self, position_id: str, **fields: Any) -> Position | None:
        with Session(self.engine) as session:
            position = session.get(Position, position_id)
            if position is None:
                return None
            for key, value in fields.items():
                setattr(position, key, value)
            position.updated_at = _now()
            session.add(position)
            session.commit()
            session.refresh(position)
            return position

    async def close_position(self, position_id: str) -> Position | None:
        now = _now()
        return await self.update(position_id, status=PositionStatus.CLOSED, closed_at=now)

    async def find_all_open(self) -> list[Position]:
        stmt = select(Position).where(Position.status == PositionStatus.OPEN)
        with Session(self.engine) as session:
            return list(session.exec(stmt).all())

    async def find_many(
        self,
        status: PositionStatus | None = None,
        limit: int = 50,
        offset: int = 0,
        sort: str = "-opened_at",
    ) -> list[Position]:
        stmt = select(Position)
        if status is not None:
            stmt = stmt.where(Position.status == status)
        stmt = stmt.order_by(_order_by(Position, sort)).offset(offset).limit(limit)
        with Session(self.engine) as session:
            return list(session.exec(stmt).all())

    async def count(self, status: PositionStatus | None = None) -> int:
        stmt = select(func.count()).select_from(Position)
        if status is not None:
            stmt = stmt.where(Position.status == status)
        with Session(self.engine) as session:
            return session.exec(stmt).one()
