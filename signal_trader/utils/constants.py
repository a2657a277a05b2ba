"""Shared constants: recognised symbol lists, confidence weights, queue defaults."""

CRYPTO_SYMBOLS = frozenset({
    "BTC", "ETH", "BNB", "XRP", "ADA", "DOGE", "SOL", "DOT", "AVAX", "MATIC",
    "LINK", "UNI", "ATOM", "LTC", "ETC", "FIL", "NEAR", "APT", "ARB", "OP",
    "INJ", "SUI", "SEI", "TIA", "JUP", "WIF", "PEPE", "SHIB", "BONK", "FLOKI",
    "AAVE", "MKR", "CRV", "LDO", "SNX", "COMP", "SAND", "MANA", "AXS", "GALA",
})

STOCK_SYMBOLS = frozenset({
    "AAPL", "MSFT", "GOOGL", "GOOG", "AMZN", "NVDA", "META", "TSLA", "BRK",
    "UNH", "JNJ", "V", "WMT", "JPM", "PG", "MA", "HD", "CVX", "MRK", "ABBV",
    "PEP", "KO", "COST", "AVGO", "TMO", "MCD", "CSCO", "ABT", "DHR", "ACN",
    "LLY", "VZ", "ADBE", "NKE", "NFLX", "CRM", "INTC", "AMD", "QCOM", "TXN",
    "SPY", "QQQ", "IWM", "DIA", "VTI", "VOO",
})

# Checked in order; first suffix that leaves a non-empty base wins
CRYPTO_QUOTE_SUFFIXES = ("USDT", "BUSD", "BTC", "ETH", "BNB", "USDC")

# Text parser confidence weights
CONFIDENCE_BASE = 0.3
CONFIDENCE_HAS_ENTRY = 0.2
CONFIDENCE_HAS_STOP_LOSS = 0.2
CONFIDENCE_HAS_TAKE_PROFIT = 0.15
CONFIDENCE_SYMBOL_RECOGNIZED = 0.15

# Router confidences
ROUTE_CONFIDENCE_HINTED = 1.0
ROUTE_CONFIDENCE_CLEAR = 0.95
ROUTE_CONFIDENCE_AMBIGUOUS = 0.7
ROUTE_CONFIDENCE_UNKNOWN = 0.5

SIGNAL_QUEUE_NAME = "trading-signals"
SIGNAL_JOB_NAME = "process-signal"

MAX_LEVERAGE = 125
