"""Position model: at most one open row per (symbol, side)."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Index, text
from sqlmodel import Field, SQLModel

from signal_trader.schemas.common import PositionStatus

OPEN_POSITION_INDEX = "ix_position_symbol_side_open"


class Position(SQLModel, table=True):
    __tablename__ = "position"
    __table_args__ = (
        Index(
            OPEN_POSITION_INDEX,
            "symbol",
            "side",
            unique=True,
            sqlite_where=text("status = 'open'"),
            postgresql_where=text("status = 'open'"),
        ),
    )

    id: str = Field(default_factory=lambda: uuid.uuid4().hex, primary_key=True)
    trade_id: str = Field(index=True)
    exchange: str
    market: str
    symbol: str
    side: str  # "LONG" or "SHORT"
    quantity: float
    entry_price: float
    current_price: float | None = None
    stop_loss: float | None = None
    take_profit: float | None = None
    leverage: float = 1.0
    unrealized_pnl: float | None = None
    unrealized_pnl_percentage: float | None = None
    status: str = Field(default=PositionStatus.OPEN, index=True)
    opened_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    closed_at: datetime | None = None
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
