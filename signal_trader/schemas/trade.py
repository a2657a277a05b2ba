"""Schemas for trades, orders and positions."""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

from signal_trader.schemas.common import OrderSide, OrderType, PositionSide


class OrderInfo(BaseModel):
    """Single venue order attached to a trade."""

    order_id: str
    type: OrderType
    side: OrderSide
    price: float | None = None
    quantity: float
    status: str
    filled_quantity: float | None = None
    avg_price: float | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class TradeRead(BaseModel):
    id: str
    signal_id: str
    exchange: str
    market: str
    symbol: str
    side: str
    quantity: float
    entry_price: float
    stop_loss: float | None = None
    take_profit: float | None = None
    leverage: float
    status: str
    orders: list[dict[str, Any]] = []
    pnl: float | None = None
    pnl_percentage: float | None = None
    close_reason: str | None = None
    created_at: datetime
    updated_at: datetime
    closed_at: datetime | None = None

    model_config = {"from_attributes": True}


class PositionRead(BaseModel):
    id: str
    trade_id: str
    exchange: str
    market: str
    symbol: str
    side: str
    quantity: float
    entry_price: float
    current_price: float | None = None
    stop_loss: float | None = None
    take_profit: float | None = None
    leverage: float
    unrealized_pnl: float | None = None
    unrealized_pnl_percentage: float | None = None
    status: str
    opened_at: datetime
    closed_at: datetime | None = None

    model_config = {"from_attributes": True}


class ClosePositionRequest(BaseModel):
    side: PositionSide
