"""Ticker classification and per-venue normalisation.

Pure functions, no I/O.
"""

import re
from dataclasses import dataclass

from signal_trader.utils.constants import CRYPTO_QUOTE_SUFFIXES, CRYPTO_SYMBOLS, STOCK_SYMBOLS

_SEPARATORS = re.compile(r"[/\-_\s]")


@dataclass(frozen=True)
class SymbolInfo:
    base: str
    normalized: str
    is_crypto: bool
    is_stock: bool
    quote: str | None = None


def parse_symbol(raw: str) -> SymbolInfo:
    """Split a raw ticker ("btc/usdt", "ETH-BTC", "AAPL") into base and quote."""
    clean = _SEPARATORS.sub("", raw.upper().strip())

    base = clean
    quote = None
    for suffix in CRYPTO_QUOTE_SUFFIXES:
        if clean.endswith(suffix) and len(clean) > len(suffix):
            base = clean[: -len(suffix)]
            quote = suffix
            break

    is_crypto = base in CRYPTO_SYMBOLS or quote is not None
    is_stock = base in STOCK_SYMBOLS and not is_crypto

    return SymbolInfo(
        base=base,
        quote=quote,
        normalized=f"{base}{quote}" if quote else base,
        is_crypto=is_crypto,
        is_stock=is_stock,
    )


def to_binance_symbol(raw: str) -> str:
    """Futures symbol; USDT-margined unless a quote is already present."""
    info = parse_symbol(raw)
    return info.normalized if info.quote else f"{info.base}USDT"


def to_ibkr_symbol(raw: str) -> str:
    return parse_symbol(raw).base


def is_crypto_symbol(raw: str) -> bool:
    return parse_symbol(raw).is_crypto


def is_stock_symbol(raw: str) -> bool:
    return parse_symbol(raw).is_stock


def clean_symbol(raw: str) -> str:
    """Uppercase, drop separators and a trailing USD(T)/PERP marker."""
    text = _SEPARATORS.sub("", raw.upper())
    text = re.sub(r"USDT?$", "", text)
    text = re.sub(r"PERP$", "", text)
    return text.strip()
