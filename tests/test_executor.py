"""Tests for the trade executor: simulation, live venues, closing."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from conftest import make_exchange_client, make_order
from signal_trader.engine.executor import ExecutorConfig, TradeExecutor
from signal_trader.engine.position_manager import PositionManager
from signal_trader.models.position import Position
from signal_trader.models.signal import Signal
from signal_trader.schemas.common import (
    Exchange,
    OrderSide,
    PositionSide,
    PositionStatus,
    SignalAction,
    SignalSource,
    TradeStatus,
)
from signal_trader.schemas.signal import ParsedSignal, validate_parsed_signal
from signal_trader.services.notifications import NotificationEvent
from signal_trader.utils.errors import (
    ExchangeError,
    ExchangeNotReadyError,
    InsufficientQuantityError,
    OrderTimeoutError,
    PositionAlreadyOpenError,
    SignalValidationError,
)

SIGNAL = Signal(id="sig-1", source=SignalSource.TEXT, raw_content="LONG BTC 45000", hash="h1")


def _parsed(symbol="BTC", action=SignalAction.LONG, entry=45000.0, **kw) -> ParsedSignal:
    kw.setdefault("confidence", 0.9)
    return ParsedSignal(symbol=symbol, action=action, entry=entry, **kw)


def _events(notifier) -> list:
    return [c.args[0] for c in notifier.notify.await_args_list]


@pytest.fixture
def position_manager(position_repo):
    return PositionManager(position_repo)


@pytest.fixture
def make_executor(position_manager, trade_repo, notifier):
    def _make(exchanges=None, **config):
        config.setdefault("simulation_mode", False)
        return TradeExecutor(
            ExecutorConfig(**config), position_manager, trade_repo, exchanges or {}, notifier
        )
    return _make


# ---------------------------------------------------------------------------
# 1. Gates before any venue call
# ---------------------------------------------------------------------------

class TestGates:
    @pytest.mark.asyncio
    async def test_simulation_places_no_orders(self, make_executor, notifier, trade_repo):
        client = make_exchange_client()
        executor = make_executor({Exchange.BINANCE: client}, simulation_mode=True)

        assert await executor.execute_signal(SIGNAL, _parsed()) is None

        client.place_market_order.assert_not_awaited()
        assert _events(notifier) == [NotificationEvent.SIGNAL_RECEIVED, NotificationEvent.SIMULATED_TRADE]
        assert await trade_repo.count() == 0

    @pytest.mark.asyncio
    async def test_low_confidence(self, make_executor, notifier):
        client = make_exchange_client()
        executor = make_executor({Exchange.BINANCE: client}, confidence_threshold=0.7)

        assert await executor.execute_signal(SIGNAL, _parsed(confidence=0.5)) is None

        client.place_market_order.assert_not_awaited()
        assert _events(notifier)[-1] == NotificationEvent.LOW_CONFIDENCE

    @pytest.mark.asyncio
    async def test_invalid_signal_raises(self, make_executor, notifier):
        executor = make_executor({Exchange.BINANCE: make_exchange_client()})
        with pytest.raises(SignalValidationError):
            await executor.execute_signal(SIGNAL, _parsed(entry=-1.0))
        assert _events(notifier) == [NotificationEvent.ERROR]

    @pytest.mark.parametrize("symbol", ["BTC; DROP", "BTC$!", "<script>", "A" * 21])
    def test_symbol_pattern_is_enforced(self, symbol):
        with pytest.raises(SignalValidationError):
            validate_parsed_signal(_parsed(symbol=symbol))

    @pytest.mark.parametrize("symbol", ["BTC", "BTC/USDT", "BRK-B", "1000_PEPE"])
    def test_venue_symbol_forms_are_accepted(self, symbol):
        assert validate_parsed_signal(_parsed(symbol=symbol)).symbol == symbol

    @pytest.mark.asyncio
    async def test_malformed_symbol_never_reaches_venue(self, make_executor, notifier):
        client = make_exchange_client()
        executor = make_executor({Exchange.BINANCE: client})
        with pytest.raises(SignalValidationError):
            await executor.execute_signal(SIGNAL, _parsed(symbol="BTC; DROP"))
        client.place_market_order.assert_not_awaited()
        assert _events(notifier) == [NotificationEvent.ERROR]

    @pytest.mark.asyncio
    async def test_missing_venue(self, make_executor):
        with pytest.raises(ExchangeNotReadyError):
            await make_executor({}).execute_signal(SIGNAL, _parsed())

    @pytest.mark.asyncio
    async def test_venue_not_ready(self, make_executor):
        client = make_exchange_client()
        client.is_ready.return_value = False
        with pytest.raises(ExchangeNotReadyError):
            await make_executor({Exchange.BINANCE: client}).execute_signal(SIGNAL, _parsed())
        client.place_market_order.assert_not_awaited()


# ---------------------------------------------------------------------------
# 2. Live futures
# ---------------------------------------------------------------------------

class TestFutures:
    @pytest.mark.asyncio
    async def test_full_execution(self, make_executor, notifier, position_manager):
        client = make_exchange_client(fill_qty=0.02, avg_price=45010.0)
        executor = make_executor({Exchange.BINANCE: client}, default_position_size=100.0, default_leverage=1.0)

        trade = await executor.execute_signal(
            SIGNAL, _parsed(stop_loss=44000.0, take_profit=[47000.0, 48000.0], leverage=9.0)
        )

        client.set_leverage.assert_awaited_once_with("BTCUSDT", 9.0)
        symbol, side, qty = client.place_market_order.await_args.args
        assert (symbol, side) == ("BTCUSDT", OrderSide.BUY)
        assert qty == pytest.approx(100.0 * 9.0 / 45000.0)
        client.place_stop_order.assert_awaited_once_with("BTCUSDT", OrderSide.SELL, 0.02, 44000.0)
        client.place_take_profit_order.assert_awaited_once_with("BTCUSDT", OrderSide.SELL, 0.02, 47000.0)

        assert trade.status == TradeStatus.OPEN
        assert trade.quantity == 0.02
        assert trade.entry_price == 45010.0
        assert trade.take_profit == 47000.0
        assert [o["type"] for o in trade.orders] == ["MARKET", "STOP_LOSS", "TAKE_PROFIT"]

        position = position_manager.get_position("BTCUSDT", PositionSide.LONG)
        assert position.trade_id == trade.id
        assert position.status == PositionStatus.OPEN
        assert _events(notifier)[-1] == NotificationEvent.TRADE_EXECUTED

    @pytest.mark.asyncio
    async def test_short_uses_opposite_sides(self, make_executor):
        client = make_exchange_client()
        executor = make_executor({Exchange.BINANCE: client})

        await executor.execute_signal(SIGNAL, _parsed(action=SignalAction.SHORT, stop_loss=46000.0))

        assert client.place_market_order.await_args.args[1] == OrderSide.SELL
        assert client.place_stop_order.await_args.args[1] == OrderSide.BUY

    @pytest.mark.asyncio
    async def test_protective_order_failure_is_not_fatal(self, make_executor, position_manager, caplog):
        client = make_exchange_client()
        client.place_stop_order = AsyncMock(side_effect=ExchangeError("would immediately trigger"))
        executor = make_executor({Exchange.BINANCE: client})

        trade = await executor.execute_signal(SIGNAL, _parsed(stop_loss=44000.0, take_profit=47000.0))

        assert [o["type"] for o in trade.orders] == ["MARKET", "TAKE_PROFIT"]
        assert position_manager.has_open_position("BTCUSDT", PositionSide.LONG)
        assert "Failed to place stop loss" in caplog.text

    @pytest.mark.asyncio
    async def test_entry_failure_propagates(self, make_executor, notifier, position_manager):
        client = make_exchange_client()
        client.place_market_order = AsyncMock(side_effect=ExchangeError("insufficient margin"))
        executor = make_executor({Exchange.BINANCE: client})

        with pytest.raises(ExchangeError):
            await executor.execute_signal(SIGNAL, _parsed())

        assert position_manager.get_open_position_count() == 0
        assert _events(notifier)[-1] == NotificationEvent.ERROR

    @pytest.mark.asyncio
    async def test_no_pyramiding(self, make_executor, notifier):
        client = make_exchange_client()
        executor = make_executor({Exchange.BINANCE: client})
        await executor.execute_signal(SIGNAL, _parsed())
        notifier.notify.reset_mock()

        with pytest.raises(PositionAlreadyOpenError):
            await executor.execute_signal(SIGNAL, _parsed())

        assert client.place_market_order.await_count == 1
        assert _events(notifier) == [NotificationEvent.SIGNAL_RECEIVED, NotificationEvent.ERROR]

    @pytest.mark.asyncio
    async def test_slot_taken_during_fill_notifies(self, make_executor, notifier, position_manager, trade_repo):
        client = make_exchange_client()

        async def fill_while_manual_open(symbol, side, quantity):
            await position_manager.open_position(Position(
                trade_id="manual", exchange="binance", market="futures", symbol=symbol,
                side=PositionSide.LONG, quantity=quantity, entry_price=45000.0,
            ))
            return make_order("entry-1")

        client.place_market_order = AsyncMock(side_effect=fill_while_manual_open)
        executor = make_executor({Exchange.BINANCE: client})

        with pytest.raises(PositionAlreadyOpenError):
            await executor.execute_signal(SIGNAL, _parsed())

        assert _events(notifier) == [NotificationEvent.SIGNAL_RECEIVED, NotificationEvent.ERROR]
        assert await trade_repo.count() == 1
        assert position_manager.get_position("BTCUSDT", PositionSide.LONG).trade_id == "manual"

    @pytest.mark.asyncio
    async def test_order_timeout(self, make_executor):
        client = make_exchange_client()

        async def hang(*args):
            await asyncio.sleep(5)

        client.place_market_order = AsyncMock(side_effect=hang)
        executor = make_executor({Exchange.BINANCE: client}, order_timeout=0.05)

        with pytest.raises(OrderTimeoutError):
            await executor.execute_signal(SIGNAL, _parsed())


# ---------------------------------------------------------------------------
# 3. Live equities
# ---------------------------------------------------------------------------

class TestEquities:
    @pytest.mark.asyncio
    async def test_whole_shares_no_leverage(self, make_executor):
        client = make_exchange_client()
        executor = make_executor({Exchange.IBKR: client}, default_position_size=1000.0)

        trade = await executor.execute_signal(SIGNAL, _parsed("AAPL", entry=190.0, leverage=5.0))

        client.set_leverage.assert_not_awaited()
        assert client.place_market_order.await_args.args == ("AAPL", OrderSide.BUY, 5)
        assert trade.leverage == 1.0
        assert trade.exchange == Exchange.IBKR

    @pytest.mark.asyncio
    async def test_zero_shares_rejected(self, make_executor):
        client = make_exchange_client()
        executor = make_executor({Exchange.IBKR: client}, default_position_size=100.0)

        with pytest.raises(InsufficientQuantityError):
            await executor.execute_signal(SIGNAL, _parsed("NVDA", entry=900.0))
        client.place_market_order.assert_not_awaited()


# ---------------------------------------------------------------------------
# 4. Closing
# ---------------------------------------------------------------------------

class TestClose:
    @pytest.mark.asyncio
    async def test_close_live_position_with_pnl(self, make_executor, notifier, trade_repo):
        client = make_exchange_client(fill_qty=0.02, avg_price=45000.0)
        client.close_position = AsyncMock(return_value=make_order("close-1", side="SELL", avg_price=46000.0))
        executor = make_executor({Exchange.BINANCE: client})
        trade = await executor.execute_signal(SIGNAL, _parsed())

        closed = await executor.close_position("BTCUSDT", PositionSide.LONG)

        client.close_position.assert_awaited_once_with("BTCUSDT")
        assert closed.status == PositionStatus.CLOSED
        stored = await trade_repo.find_by_id(trade.id)
        assert stored.status == TradeStatus.CLOSED
        assert stored.pnl == pytest.approx(20.0)
        assert stored.close_reason == "manual"
        assert _events(notifier)[-1] == NotificationEvent.TRADE_CLOSED

    @pytest.mark.asyncio
    async def test_close_missing_position(self, make_executor):
        assert await make_executor({}).close_position("BTCUSDT", PositionSide.LONG) is None
