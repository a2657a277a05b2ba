"""Database models."""

from signal_trader.models.signal import Signal
from signal_trader.models.trade import Trade
from signal_trader.models.position import Position
from signal_trader.models.queue_job import QueueJob

__all__ = [
    "Signal",
    "Trade",
    "Position",
    "QueueJob",
]
