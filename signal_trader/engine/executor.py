"""Turns a validated signal into venue orders, a Trade row and an open Position."""

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Any, Awaitable, TypeVar

from signal_trader.engine.position_manager import PositionManager
from signal_trader.engine.repositories import TradeRepository
from signal_trader.engine.router import RouteDecision, route_signal
from signal_trader.models.position import Position
from signal_trader.models.signal import Signal
from signal_trader.models.trade import Trade
from signal_trader.schemas.common import (
    Exchange,
    OrderType,
    PositionSide,
    PositionStatus,
    TradeStatus,
    closing_side,
    entry_side,
)
from signal_trader.schemas.signal import ParsedSignal, validate_parsed_signal
from signal_trader.schemas.trade import OrderInfo
from signal_trader.services.exchange import ExchangeClient, OrderResult
from signal_trader.services.notifications import NotificationEvent, Notifier
from signal_trader.utils.errors import (
    ExchangeNotReadyError,
    InsufficientQuantityError,
    OrderTimeoutError,
    PositionAlreadyOpenError,
    TradingError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class ExecutorConfig:
    simulation_mode: bool = True
    default_position_size: float = 100.0
    default_leverage: float = 1.0
    confidence_threshold: float = 0.7
    order_timeout: float = 30.0


class TradeExecutor:
    def __init__(
        self,
        config: ExecutorConfig,
        position_manager: PositionManager,
        trade_repository: TradeRepository,
        exchanges: dict[Exchange, ExchangeClient],
        notifier: Notifier,
    ):
        self.config = config
        self.position_manager = position_manager
        self.trade_repository = trade_repository
        self.exchanges = exchanges
        self.notifier = notifier
        logger.info(
            f"Executor configured: simulation={config.simulation_mode} "
            f"size={config.default_position_size} leverage={config.default_leverage} "
            f"threshold={config.confidence_threshold} venues={[str(e) for e in exchanges]}"
        )

    async def _notify(self, event: NotificationEvent, **payload: Any):
        try:
            await self.notifier.notify(event, payload)
        except Exception as e:
            logger.warning(f"Notifier failed for {event}: {e}")

    async def _fail(self, signal: Signal, error: Exception):
        logger.error(f"Trade execution failed for signal {signal.id}: {error}")
        await self._notify(NotificationEvent.ERROR, error=error, context="Trade Execution")

    async def _bounded(self, call: Awaitable[T], what: str) -> T:
        try:
            return await asyncio.wait_for(call, timeout=self.config.order_timeout)
        except asyncio.TimeoutError as e:
            raise OrderTimeoutError(f"{what} timed out after {self.config.order_timeout}s") from e

    # ── Public API ───────────────────────────────────────

    async def execute_signal(self, signal: Signal, parsed: ParsedSignal) -> Trade | None:
        """Execute ``parsed`` for ``signal``.

        Returns the Trade for live executions, None when the signal was
        skipped or simulated. Raises on any live-path failure after
        sending an error notification.
        """
        logger.info(
            f"Executing signal {signal.id}: {parsed.symbol} {parsed.action} "
            f"(confidence {parsed.confidence:.2f})"
        )
        try:
            parsed = validate_parsed_signal(parsed)
            await self._notify(NotificationEvent.SIGNAL_RECEIVED, parsed=parsed, source=signal.source)

            if parsed.confidence < self.config.confidence_threshold:
                logger.info(
                    f"Signal below confidence threshold ({parsed.confidence:.2f} < "
                    f"{self.config.confidence_threshold:.2f}), not executing"
                )
                await self._notify(
                    NotificationEvent.LOW_CONFIDENCE,
                    parsed=parsed,
                    threshold=self.config.confidence_threshold,
                )
                return None

            route = route_signal(parsed)
        except Exception as e:
            await self._fail(signal, e)
            raise

        side = PositionSide(parsed.action)
        if not self.position_manager.can_open_position(route.symbol, side):
            error = PositionAlreadyOpenError(route.symbol, side)
            logger.warning(str(error))
            await self._notify(NotificationEvent.ERROR, error=error, context="Trade Execution")
            raise error

        try:
            if self.config.simulation_mode:
                await self._simulate(signal, parsed, route)
                return None

            client = self.exchanges.get(route.exchange)
            if client is None or not client.is_ready():
                raise ExchangeNotReadyError(f"{route.exchange} client not connected")

            if route.exchange == Exchange.BINANCE:
                trade = await self._execute_futures(client, signal, parsed, route)
            elif route.exchange == Exchange.IBKR:
                trade = await self._execute_equities(client, signal, parsed, route)
            else:
                raise TradingError(f"Unsupported exchange: {route.exchange}")
        except Exception as e:
            await self._fail(signal, e)
            raise

        logger.info(f"Trade executed: {trade.symbol} {trade.side} on {trade.exchange} ({trade.id})")
        await self._notify(NotificationEvent.TRADE_EXECUTED, trade=trade)
        return trade

    async def close_position(self, symbol: str, side: PositionSide | str, reason: str = "manual") -> Position | None:
        """Flatten the venue position, then close the Trade and Position rows."""
        position = self.position_manager.get_position(symbol, side)
        if position is None:
            logger.warning(f"No open position for {symbol} {side}")
            return None

        exit_price = None
        if not self.config.simulation_mode:
            client = self.exchanges.get(Exchange(position.exchange))
            if client is None or not client.is_ready():
                raise ExchangeNotReadyError(f"{position.exchange} client not connected")
            result = await self._bounded(client.close_position(position.symbol), "Close order")
            if result is not None:
                exit_price = result.avg_price

        pnl = pnl_pct = None
        if exit_price:
            direction = 1 if position.side == PositionSide.LONG else -1
            pnl = (exit_price - position.entry_price) * position.quantity * direction
            notional = position.entry_price * position.quantity
            pnl_pct = pnl / notional * 100 * position.leverage if notional else None

        trade = await self.trade_repository.close_trade(position.trade_id, pnl, pnl_pct, reason)
        closed = await self.position_manager.close_position(position.symbol, position.side)
        if trade is not None:
            await self._notify(NotificationEvent.TRADE_CLOSED, trade=trade, exit_price=exit_price)
        return closed

    # ── Paths ────────────────────────────────────────────

    async def _simulate(self, signal: Signal, parsed: ParsedSignal, route: RouteDecision):
        leverage = parsed.leverage or self.config.default_leverage
        logger.info(
            f"SIMULATION: would {parsed.action} {route.symbol} on {route.exchange}/{route.market} "
            f"entry={parsed.entry} sl={parsed.stop_loss} tp={parsed.first_take_profit} "
            f"leverage={leverage} size={self.config.default_position_size} (signal {signal.id})"
        )
        await self._notify(
            NotificationEvent.SIMULATED_TRADE, parsed=parsed, route=route, leverage=leverage
        )

    async def _execute_futures(
        self, client: ExchangeClient, signal: Signal, parsed: ParsedSignal, route: RouteDecision
    ) -> Trade:
        leverage = parsed.leverage or self.config.default_leverage
        quantity = (self.config.default_position_size * leverage) / parsed.entry
        logger.info(f"Executing futures trade {route.symbol} {parsed.action} qty={quantity} {leverage}x")

        await self._bounded(client.set_leverage(route.symbol, leverage), "Set leverage")
        return await self._open(client, signal, parsed, route, quantity, leverage)

    async def _execute_equities(
        self, client: ExchangeClient, signal: Signal, parsed: ParsedSignal, route: RouteDecision
    ) -> Trade:
        quantity = math.floor(self.config.default_position_size / parsed.entry)
        if quantity <= 0:
            raise InsufficientQuantityError(
                f"Position size {self.config.default_position_size} buys no shares of "
                f"{route.symbol} at {parsed.entry}"
            )
        logger.info(f"Executing equities trade {route.symbol} {parsed.action} qty={quantity}")
        return await self._open(client, signal, parsed, route, quantity, 1.0)

    async def _open(
        self,
        client: ExchangeClient,
        signal: Signal,
        parsed: ParsedSignal,
        route: RouteDecision,
        quantity: float,
        leverage: float,
    ) -> Trade:
        side = entry_side(parsed.action)
        exit_side = closing_side(parsed.action)
        take_profit = parsed.first_take_profit

        entry = await self._bounded(
            client.place_market_order(route.symbol, side, quantity), "Entry order"
        )
        filled_qty = entry.executed_qty or quantity
        orders = [_order_info(entry, OrderType.MARKET, side, filled_qty)]

        # Protective orders are best effort; the position is open on entry fill
        if parsed.stop_loss:
            try:
                sl = await self._bounded(
                    client.place_stop_order(route.symbol, exit_side, filled_qty, parsed.stop_loss),
                    "Stop loss order",
                )
                orders.append(_order_info(sl, OrderType.STOP_LOSS, exit_side, filled_qty, parsed.stop_loss))
            except Exception as e:
                logger.error(f"Failed to place stop loss for {route.symbol}: {e}")
        if take_profit:
            try:
                tp = await self._bounded(
                    client.place_take_profit_order(route.symbol, exit_side, filled_qty, take_profit),
                    "Take profit order",
                )
                orders.append(_order_info(tp, OrderType.TAKE_PROFIT, exit_side, filled_qty, take_profit))
            except Exception as e:
                logger.error(f"Failed to place take profit for {route.symbol}: {e}")

        entry_price = entry.avg_price or parsed.entry
        trade = await self.trade_repository.create(Trade(
            signal_id=signal.id,
            exchange=route.exchange,
            market=route.market,
            symbol=route.symbol,
            side=side,
            quantity=filled_qty,
            entry_price=entry_price,
            stop_loss=parsed.stop_loss,
            take_profit=take_profit,
            leverage=leverage,
            status=TradeStatus.OPEN,
            orders=[o.model_dump(mode="json") for o in orders],
        ))

        try:
            await self.position_manager.open_position(Position(
                trade_id=trade.id,
                exchange=route.exchange,
                market=route.market,
                symbol=route.symbol,
                side=PositionSide(parsed.action),
                quantity=filled_qty,
                entry_price=entry_price,
                stop_loss=parsed.stop_loss,
                take_profit=take_profit,
                leverage=leverage,
                status=PositionStatus.OPEN,
            ))
        except PositionAlreadyOpenError:
            logger.error(
                f"Entry for {route.symbol} filled but the position slot was taken; "
                f"trade {trade.id} needs manual reconciliation"
            )
            raise
        return trade


def _order_info(
    result: OrderResult, order_type: OrderType, side: str, quantity: float, price: float | None = None
) -> OrderInfo:
    return OrderInfo(
        order_id=result.order_id,
        type=order_type,
        side=side,
        price=price,
        quantity=quantity,
        status=result.status,
        filled_quantity=result.executed_qty,
        avg_price=result.avg_price,
    )
