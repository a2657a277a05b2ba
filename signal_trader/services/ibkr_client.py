"""Interactive Brokers equities client over TWS / IB Gateway."""

import asyncio
import logging

from ib_async import IB, LimitOrder, MarketOrder, Stock, StopOrder

from signal_trader.services.exchange import OrderResult, VenuePosition
from signal_trader.utils.errors import ExchangeError, ExchangeNotReadyError

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT_SECONDS = 10
STATUS_POLL_SECONDS = 0.2

# A market order is accepted once the gateway has taken it
ACCEPTED_STATUSES = {"Filled", "Submitted", "PreSubmitted"}
REJECTED_STATUSES = {"Cancelled", "ApiCancelled", "Inactive"}


def stock_contract(symbol: str) -> Stock:
    return Stock(symbol.upper(), "SMART", "USD")


class IBKRClient:
    """Stock orders and positions through an ``ib_async.IB`` connection.

    There is no leverage on this venue; take profits are resting limit
    orders and stop losses are plain stop orders.
    """

    def __init__(self, host: str, port: int, client_id: int, ib: IB | None = None):
        self.host = host
        self.port = port
        self.client_id = client_id
        self._ib = ib if ib is not None else IB()
        logger.info(f"IBKR client configured (host={host}, port={port}, client_id={client_id})")

    def is_ready(self) -> bool:
        return self._ib.isConnected()

    async def connect(self):
        if self.is_ready():
            logger.debug("Already connected to IBKR")
            return
        logger.info("Connecting to IBKR...")
        await self._ib.connectAsync(
            self.host, self.port, clientId=self.client_id, timeout=CONNECT_TIMEOUT_SECONDS
        )
        logger.info("Connected to IBKR")

    async def close(self):
        if self.is_ready():
            logger.info("Disconnecting from IBKR")
            self._ib.disconnect()

    def _require_connection(self):
        if not self.is_ready():
            raise ExchangeNotReadyError("IBKR not connected")

    async def set_leverage(self, symbol: str, leverage: float):
        logger.debug(f"Ignoring leverage {leverage}x for {symbol}: cash equities")

    async def _submit(self, symbol: str, order, wait: bool, price: float | None = None) -> OrderResult:
        self._require_connection()
        trade = self._ib.placeOrder(stock_contract(symbol), order)
        if wait:
            while trade.orderStatus.status not in ACCEPTED_STATUSES:
                if trade.orderStatus.status in REJECTED_STATUSES:
                    raise ExchangeError(f"IBKR order {trade.order.orderId} {trade.orderStatus.status}")
                await asyncio.sleep(STATUS_POLL_SECONDS)

        status = trade.orderStatus
        return OrderResult(
            order_id=str(trade.order.orderId),
            symbol=symbol.upper(),
            side=order.action,
            type=order.orderType,
            quantity=order.totalQuantity,
            status=status.status or "Submitted",
            executed_qty=status.filled or None,
            avg_price=status.avgFillPrice or None,
            price=price,
        )

    async def place_market_order(self, symbol: str, side: str, quantity: float) -> OrderResult:
        logger.info(f"Placing IBKR market order {symbol} {side} qty={quantity}")
        return await self._submit(symbol, MarketOrder(side, quantity), wait=True)

    async def place_stop_order(self, symbol: str, side: str, quantity: float, stop_price: float) -> OrderResult:
        logger.info(f"Placing IBKR stop order {symbol} {side} qty={quantity} stop={stop_price}")
        return await self._submit(symbol, StopOrder(side, quantity, stop_price), wait=False, price=stop_price)

    async def place_take_profit_order(
        self, symbol: str, side: str, quantity: float, stop_price: float
    ) -> OrderResult:
        logger.info(f"Placing IBKR limit take profit {symbol} {side} qty={quantity} limit={stop_price}")
        return await self._submit(symbol, LimitOrder(side, quantity, stop_price), wait=False, price=stop_price)

    async def get_position(self, symbol: str) -> VenuePosition | None:
        self._require_connection()
        symbol = symbol.upper()
        for pos in self._ib.positions():
            if pos.contract.symbol == symbol and pos.position:
                return VenuePosition(symbol=symbol, quantity=float(pos.position), entry_price=float(pos.avgCost))
        return None

    async def close_position(self, symbol: str) -> OrderResult | None:
        position = await self.get_position(symbol)
        if position is None:
            logger.info(f"No IBKR position to close for {symbol}")
            return None
        side = "SELL" if position.quantity > 0 else "BUY"
        return await self.place_market_order(symbol, side, abs(position.quantity))
