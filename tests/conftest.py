"""Shared fixtures: in-memory database, repositories, fake venue clients."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import create_engine

from signal_trader.database import create_db_and_tables
from signal_trader.engine.repositories import PositionRepository, SignalRepository, TradeRepository
from signal_trader.services.exchange import OrderResult


@pytest.fixture
def engine():
    """Fresh in-memory SQLite database shared across sessions."""
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_db_and_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def signal_repo(engine):
    return SignalRepository(engine)


@pytest.fixture
def trade_repo(engine):
    return TradeRepository(engine)


@pytest.fixture
def position_repo(engine):
    return PositionRepository(engine)


def make_order(order_id="1", symbol="BTCUSDT", side="BUY", type="MARKET", quantity=0.01,
               executed_qty=None, avg_price=None) -> OrderResult:
    return OrderResult(
        order_id=order_id,
        symbol=symbol,
        side=side,
        type=type,
        quantity=quantity,
        status="FILLED",
        executed_qty=executed_qty,
        avg_price=avg_price,
    )


def make_exchange_client(fill_qty=None, avg_price=None) -> MagicMock:
    """ExchangeClient double whose orders all fill."""
    client = MagicMock()
    client.is_ready.return_value = True
    client.set_leverage = AsyncMock()
    client.place_market_order = AsyncMock(
        return_value=make_order("entry-1", executed_qty=fill_qty, avg_price=avg_price)
    )
    client.place_stop_order = AsyncMock(return_value=make_order("sl-1", type="STOP_MARKET"))
    client.place_take_profit_order = AsyncMock(return_value=make_order("tp-1", type="TAKE_PROFIT_MARKET"))
    client.close_position = AsyncMock(return_value=None)
    client.get_position = AsyncMock(return_value=None)
    client.connect = AsyncMock()
    client.close = AsyncMock()
    return client


@pytest.fixture
def notifier():
    n = MagicMock()
    n.notify = AsyncMock()
    return n
