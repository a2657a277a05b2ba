"""Venue-neutral exchange interface."""

from dataclasses import dataclass
from typing import Protocol


@dataclass
class OrderResult:
    order_id: str
    symbol: str
    side: str
    type: str
    quantity: float
    status: str
    executed_qty: float | None = None
    avg_price: float | None = None
    price: float | None = None


@dataclass
class VenuePosition:
    symbol: str
    quantity: float  # signed: positive long, negative short
    entry_price: float
    mark_price: float | None = None
    unrealized_pnl: float | None = None
    leverage: float | None = None


class ExchangeClient(Protocol):
    """What the executor needs from a venue. Errors raise ExchangeError."""

    def is_ready(self) -> bool: ...

    async def set_leverage(self, symbol: str, leverage: float) -> None: ...

    async def place_market_order(self, symbol: str, side: str, quantity: float) -> OrderResult: ...

    async def place_stop_order(
        self, symbol: str, side: str, quantity: float, stop_price: float
    ) -> OrderResult: ...

    async def place_take_profit_order(
        self, symbol: str, side: str, quantity: float, stop_price: float
    ) -> OrderResult: ...

    async def get_position(self, symbol: str) -> VenuePosition | None: ...

    async def close_position(self, symbol: str) -> OrderResult | None: ...

    async def close(self) -> None: ...
