"""Enumerations shared by models, schemas and the pipeline."""

from enum import StrEnum


class SignalSource(StrEnum):
    TEXT = "text"
    IMAGE = "image"
    WEBHOOK = "webhook"


class SignalStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    PARSED = "parsed"
    EXECUTED = "executed"
    SKIPPED = "skipped"
    FAILED = "failed"


class SignalAction(StrEnum):
    LONG = "LONG"
    SHORT = "SHORT"


class Exchange(StrEnum):
    BINANCE = "binance"
    IBKR = "ibkr"


class Market(StrEnum):
    SPOT = "spot"
    FUTURES = "futures"
    STOCK = "stock"


class OrderSide(StrEnum):
    BUY = "BUY"
    SELL = "SELL"


class OrderType(StrEnum):
    MARKET = "MARKET"
    LIMIT = "LIMIT"
    STOP_LOSS = "STOP_LOSS"
    TAKE_PROFIT = "TAKE_PROFIT"


class TradeStatus(StrEnum):
    PENDING = "pending"
    OPEN = "open"
    PARTIALLY_FILLED = "partially_filled"
    FILLED = "filled"
    CANCELLED = "cancelled"
    FAILED = "failed"
    CLOSED = "closed"


class PositionSide(StrEnum):
    LONG = "LONG"
    SHORT = "SHORT"


class PositionStatus(StrEnum):
    OPEN = "open"
    CLOSED = "closed"


def entry_side(side: PositionSide | SignalAction | str) -> OrderSide:
    return OrderSide.BUY if side == "LONG" else OrderSide.SELL


def closing_side(side: PositionSide | SignalAction | str) -> OrderSide:
    return OrderSide.SELL if side == "LONG" else OrderSide.BUY
