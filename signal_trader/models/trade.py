"""Trade model: venue execution record for a signal."""

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON
from sqlmodel import Column, Field, SQLModel

from signal_trader.schemas.common import TradeStatus


class Trade(SQLModel, table=True):
    __tablename__ = "trade"

    id: str = Field(default_factory=lambda: uuid.uuid4().hex, primary_key=True)
    signal_id: str = Field(index=True)
    exchange: str
    market: str
    symbol: str = Field(index=True)
    side: str  # "BUY" or "SELL"
    quantity: float
    entry_price: float
    stop_loss: float | None = None
    take_profit: float | None = None
    leverage: float = 1.0
    status: str = Field(default=TradeStatus.PENDING, index=True)
    orders: list[dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    pnl: float | None = None
    pnl_percentage: float | None = None
    close_reason: str | None = None  # "manual", "stop_loss", "take_profit"
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    closed_at: datetime | None = None
