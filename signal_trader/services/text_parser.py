"""Regex parser for free-text trading signals."""

import logging
import math
import re
from typing import Callable

from signal_trader.schemas.common import SignalAction
from signal_trader.schemas.signal import ParsedSignal
from signal_trader.utils.constants import (
    CONFIDENCE_BASE,
    CONFIDENCE_HAS_ENTRY,
    CONFIDENCE_HAS_STOP_LOSS,
    CONFIDENCE_HAS_TAKE_PROFIT,
    CONFIDENCE_SYMBOL_RECOGNIZED,
)

logger = logging.getLogger(__name__)

# Tickers the text parser treats as well-formed (adds confidence)
KNOWN_CRYPTO = frozenset({
    "BTC", "ETH", "SOL", "XRP", "BNB", "ADA", "DOGE", "DOT", "MATIC", "LINK",
    "AVAX", "SHIB", "LTC", "UNI", "ATOM", "XLM", "ALGO", "VET", "FIL", "AAVE",
    "APE", "SAND", "MANA", "AXS", "NEAR", "FTM", "HBAR", "ICP", "EOS", "XMR",
})
KNOWN_STOCKS = frozenset({
    "AAPL", "MSFT", "GOOGL", "AMZN", "META", "TSLA", "NVDA", "AMD", "INTC", "SPY",
    "QQQ", "DIA", "IWM", "NFLX", "BABA", "V", "JPM", "WMT", "DIS", "PYPL",
})

_NUM = r"(\d+(?:\.\d+)?)"
_SYM = r"([A-Z]{2,10})(?:/USDT?)?"

# (symbol, action, entry, stop_loss, take_profit) as raw strings
Fields = tuple[str, str, str, str | None, str | None]

PATTERNS: tuple[tuple[str, re.Pattern, Callable[[re.Match], Fields]], ...] = (
    (
        # BTC LONG @ 45000, SL 44000, TP 47000
        "symbol_first",
        re.compile(
            rf"{_SYM}\s+(LONG|SHORT|BUY|SELL)\s*@?\s*{_NUM}"
            rf"\s*(?:,?\s*(?:SL|STOP|STOPLOSS)[:\s]*{_NUM})?"
            rf"\s*(?:,?\s*(?:TP|TARGET|TAKEPROFIT)[:\s]*{_NUM})?",
            re.IGNORECASE,
        ),
        lambda m: (m[1], m[2], m[3], m[4], m[5]),
    ),
    (
        # LONG BTC 45000 SL:44000 TP:47000
        "action_first",
        re.compile(
            rf"(LONG|SHORT|BUY|SELL)\s+{_SYM}\s+{_NUM}"
            rf"\s*(?:(?:SL|STOP)[:\s]*{_NUM})?"
            rf"\s*(?:(?:TP|TARGET)[:\s]*{_NUM})?",
            re.IGNORECASE,
        ),
        lambda m: (m[2], m[1], m[3], m[4], m[5]),
    ),
    (
        # BTC/USDT LONG Entry: 45000 Stop: 44000 Target: 47000
        "labelled",
        re.compile(
            rf"{_SYM}\s+(LONG|SHORT)\s+(?:Entry|Price)[:\s]*{_NUM}"
            rf"\s*(?:(?:Stop|StopLoss)[:\s]*{_NUM})?"
            rf"\s*(?:(?:Target|TP|TakeProfit)[:\s]*{_NUM})?",
            re.IGNORECASE,
        ),
        lambda m: (m[1], m[2], m[3], m[4], m[5]),
    ),
    (
        # BTC 45000 LONG
        "simple",
        re.compile(rf"{_SYM}\s+{_NUM}\s+(LONG|SHORT)", re.IGNORECASE),
        lambda m: (m[1], m[3], m[2], None, None),
    ),
    (
        # 45000 BTC LONG
        "reverse",
        re.compile(rf"{_NUM}\s+{_SYM}\s+(LONG|SHORT)", re.IGNORECASE),
        lambda m: (m[2], m[3], m[1], None, None),
    ),
)

_PRICE = re.compile(r"\d+(?:\.\d+)?")


def normalize_action(action: str) -> SignalAction:
    action = action.upper()
    if action in ("SELL", "SHORT"):
        return SignalAction.SHORT
    return SignalAction.LONG


def normalize_symbol(symbol: str) -> str:
    return re.sub(r"/USDT?$", "", symbol.upper())


def is_known_symbol(symbol: str) -> bool:
    return symbol in KNOWN_CRYPTO or symbol in KNOWN_STOCKS


def _to_price(value: str | None) -> float | None:
    if value is None:
        return None
    price = float(value)
    return price if math.isfinite(price) and price > 0 else None


def score_confidence(
    entry: float | None, stop_loss: float | None, take_profit: float | None, symbol: str
) -> float:
    confidence = CONFIDENCE_BASE
    if entry:
        confidence += CONFIDENCE_HAS_ENTRY
    if stop_loss:
        confidence += CONFIDENCE_HAS_STOP_LOSS
    if take_profit:
        confidence += CONFIDENCE_HAS_TAKE_PROFIT
    if is_known_symbol(symbol):
        confidence += CONFIDENCE_SYMBOL_RECOGNIZED
    return round(min(confidence, 1.0), 2)


class TextSignalParser:
    """Tries each pattern in order; the first acceptable match wins."""

    def parse(self, text: str | None) -> ParsedSignal | None:
        if not text or not text.strip():
            return None

        for name, pattern, extract in PATTERNS:
            match = pattern.search(text)
            if match is None:
                continue

            raw_symbol, raw_action, raw_entry, raw_sl, raw_tp = extract(match)
            entry = _to_price(raw_entry)
            if entry is None:
                logger.debug(f"Pattern '{name}' matched with unusable entry {raw_entry!r}")
                continue

            symbol = normalize_symbol(raw_symbol)
            stop_loss = _to_price(raw_sl)
            take_profit = _to_price(raw_tp)
            parsed = ParsedSignal(
                symbol=symbol,
                action=normalize_action(raw_action),
                entry=entry,
                stop_loss=stop_loss,
                take_profit=take_profit,
                confidence=score_confidence(entry, stop_loss, take_profit, symbol),
            )
            logger.info(f"Text matched pattern '{name}': {parsed.symbol} {parsed.action} @ {entry}")
            return parsed

        return None

    def extract_prices(self, text: str) -> list[float]:
        """Every positive number in ``text``, in order of appearance."""
        prices = []
        for token in _PRICE.findall(text or ""):
            value = float(token)
            if value > 0:
                prices.append(value)
        return prices
