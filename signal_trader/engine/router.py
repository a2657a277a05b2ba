"""Venue routing for parsed signals."""

import logging
from dataclasses import dataclass

from signal_trader.schemas.common import Exchange, Market
from signal_trader.schemas.signal import ParsedSignal
from signal_trader.utils.constants import (
    ROUTE_CONFIDENCE_AMBIGUOUS,
    ROUTE_CONFIDENCE_CLEAR,
    ROUTE_CONFIDENCE_HINTED,
    ROUTE_CONFIDENCE_UNKNOWN,
)
from signal_trader.utils.symbols import parse_symbol, to_binance_symbol, to_ibkr_symbol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RouteDecision:
    exchange: Exchange
    market: Market
    symbol: str  # venue-normalised
    confidence: float


def _venue_symbol(exchange: Exchange, symbol: str) -> str:
    return to_binance_symbol(symbol) if exchange == Exchange.BINANCE else to_ibkr_symbol(symbol)


def route_signal(parsed: ParsedSignal) -> RouteDecision:
    """Pick a venue. Unclassifiable symbols default to crypto futures."""
    if parsed.exchange and parsed.market:
        return RouteDecision(
            exchange=parsed.exchange,
            market=parsed.market,
            symbol=_venue_symbol(parsed.exchange, parsed.symbol),
            confidence=ROUTE_CONFIDENCE_HINTED,
        )

    info = parse_symbol(parsed.symbol)

    if info.is_crypto and not info.is_stock:
        decision = RouteDecision(
            Exchange.BINANCE, Market.FUTURES, to_binance_symbol(parsed.symbol), ROUTE_CONFIDENCE_CLEAR
        )
    elif info.is_stock and not info.is_crypto:
        decision = RouteDecision(
            Exchange.IBKR, Market.STOCK, to_ibkr_symbol(parsed.symbol), ROUTE_CONFIDENCE_CLEAR
        )
    else:
        # parse_symbol never sets both flags, so only the unknown confidence occurs today
        confidence = ROUTE_CONFIDENCE_AMBIGUOUS if info.is_crypto else ROUTE_CONFIDENCE_UNKNOWN
        logger.warning(f"Could not classify {parsed.symbol}, defaulting to binance futures")
        decision = RouteDecision(
            Exchange.BINANCE, Market.FUTURES, to_binance_symbol(parsed.symbol), confidence
        )

    logger.info(
        f"Routed {parsed.symbol} -> {decision.exchange}/{decision.market} "
        f"as {decision.symbol} (confidence {decision.confidence})"
    )
    return decision


def should_route_to_binance(symbol: str) -> bool:
    return parse_symbol(symbol).is_crypto


def should_route_to_ibkr(symbol: str) -> bool:
    info = parse_symbol(symbol)
    return info.is_stock and not info.is_crypto
