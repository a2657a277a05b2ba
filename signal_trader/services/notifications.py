"""Operator notifications for pipeline events."""

import asyncio
import logging
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, Callable, Protocol

from signal_trader.utils.errors import error_message

logger = logging.getLogger(__name__)


class NotificationEvent(StrEnum):
    SIGNAL_RECEIVED = "signal_received"
    TRADE_EXECUTED = "trade_executed"
    TRADE_CLOSED = "trade_closed"
    LOW_CONFIDENCE = "low_confidence"
    SIMULATED_TRADE = "simulated_trade"
    ERROR = "error"


class Notifier(Protocol):
    """Fire-and-forget sink. Implementations never raise."""

    async def notify(self, event: NotificationEvent, payload: dict[str, Any]) -> None: ...


def _price(value) -> str:
    if isinstance(value, list):
        value = value[0] if value else None
    return f"${value}" if value else "N/A"


def _pct(value: float) -> str:
    return f"{value * 100:.0f}%"


def format_message(event: NotificationEvent, payload: dict[str, Any]) -> str:
    """Telegram Markdown text for ``event``."""
    if event == NotificationEvent.SIGNAL_RECEIVED:
        parsed = payload["parsed"]
        return (
            "📨 *New Signal Received*\n\n"
            f"*Symbol:* {parsed.symbol}\n"
            f"*Action:* {parsed.action}\n"
            f"*Entry:* ${parsed.entry}\n"
            f"*Stop Loss:* {_price(parsed.stop_loss)}\n"
            f"*Take Profit:* {_price(parsed.take_profit)}\n"
            f"*Confidence:* {_pct(parsed.confidence)}\n"
            f"*Source:* {payload.get('source', 'unknown')}"
        )

    if event == NotificationEvent.TRADE_EXECUTED:
        trade = payload["trade"]
        emoji = "🟢" if trade.side == "BUY" else "🔴"
        return (
            f"{emoji} *Trade Executed*\n\n"
            f"*Symbol:* {trade.symbol}\n"
            f"*Side:* {trade.side}\n"
            f"*Exchange:* {str(trade.exchange).upper()}\n"
            f"*Entry:* ${trade.entry_price}\n"
            f"*Quantity:* {trade.quantity}\n"
            f"*Leverage:* {trade.leverage}x\n"
            f"*Stop Loss:* {_price(trade.stop_loss)}\n"
            f"*Take Profit:* {_price(trade.take_profit)}"
        )

    if event == NotificationEvent.TRADE_CLOSED:
        trade = payload["trade"]
        lines = [
            "🏁 *Trade Closed*\n",
            f"*Symbol:* {trade.symbol}",
            f"*Side:* {trade.side}",
            f"*Entry:* ${trade.entry_price}",
        ]
        if payload.get("exit_price"):
            lines.append(f"*Exit:* ${payload['exit_price']}")
        if trade.pnl is not None:
            lines.append(f"*P&L:* ${trade.pnl:.2f}")
        if trade.pnl_percentage is not None:
            lines.append(f"*P&L %:* {trade.pnl_percentage:.2f}%")
        lines.append(f"*Reason:* {trade.close_reason or 'unknown'}")
        return "\n".join(lines)

    if event == NotificationEvent.LOW_CONFIDENCE:
        parsed = payload["parsed"]
        return (
            "⚠️ *Low Confidence Signal*\n\n"
            f"*Symbol:* {parsed.symbol}\n"
            f"*Action:* {parsed.action}\n"
            f"*Confidence:* {_pct(parsed.confidence)}\n"
            f"*Threshold:* {_pct(payload['threshold'])}\n\n"
            "_Signal was logged but NOT executed_"
        )

    if event == NotificationEvent.SIMULATED_TRADE:
        parsed = payload["parsed"]
        route = payload.get("route")
        venue = f"\n*Venue:* {route.exchange} {route.market} ({route.symbol})" if route else ""
        return (
            "🧪 *Simulated Trade*\n\n"
            f"*Symbol:* {parsed.symbol}\n"
            f"*Action:* {parsed.action}\n"
            f"*Entry:* ${parsed.entry}\n"
            f"*Stop Loss:* {_price(parsed.stop_loss)}\n"
            f"*Take Profit:* {_price(parsed.take_profit)}\n"
            f"*Leverage:* {payload.get('leverage') or parsed.leverage or 1}x"
            f"{venue}\n\n"
            "_SIMULATION MODE - No real trade executed_"
        )

    if event == NotificationEvent.ERROR:
        error = payload.get("error")
        context = payload.get("context")
        kind = type(error).__name__ if isinstance(error, BaseException) else "Error"
        text = (
            "🚨 *Error Alert*\n\n"
            f"*Type:* {kind}\n"
            f"*Message:* {error_message(error)}\n"
        )
        if context:
            text += f"*Context:* {context}\n"
        return text + f"*Time:* {datetime.now(timezone.utc):%Y-%m-%d %H:%M:%S} UTC"

    return f"{event}: {payload}"


class LoggingNotifier:
    """Used when no Telegram bot is configured."""

    async def notify(self, event: NotificationEvent, payload: dict[str, Any]) -> None:
        try:
            logger.info(f"[notify:{event}] {format_message(event, payload)}")
        except Exception as e:
            logger.warning(f"Failed to format {event} notification: {e}")


class TelegramNotifier:
    """Hands formatted messages to the Telegram bot thread without waiting."""

    def __init__(self, bot_getter: Callable[[], Any] | None = None):
        if bot_getter is None:
            from signal_trader.services.telegram_bot import get_bot
            bot_getter = get_bot
        self._get_bot = bot_getter

    async def notify(self, event: NotificationEvent, payload: dict[str, Any]) -> None:
        try:
            message = format_message(event, payload)
            bot = self._get_bot()
            if bot is None or bot.loop is None:
                logger.debug(f"Telegram bot not running, dropping {event} notification")
                return
            asyncio.run_coroutine_threadsafe(bot.send_notification(message), bot.loop)
        except Exception as e:
            logger.warning(f"Failed to send {event} notification: {e}")
