"""Domain exceptions and error helpers."""


class TradingError(Exception):
    """Base class for all signal trader errors."""


class SignalValidationError(TradingError):
    """Parsed signal failed schema validation. Never retried."""


class PositionAlreadyOpenError(TradingError):
    """An open position already exists (or is being opened) for symbol/side."""

    def __init__(self, symbol: str, side: str):
        self.symbol = symbol
        self.side = side
        super().__init__(f"Position already exists for {symbol} {side}")


class ExchangeNotReadyError(TradingError):
    """Venue client missing or not connected."""


class InsufficientQuantityError(TradingError):
    """Computed order quantity rounds to zero."""


class ExchangeError(TradingError):
    """Transport-level failure talking to a venue."""

    def __init__(self, message: str, status: int | None = None, code: int | None = None):
        self.status = status
        self.code = code
        super().__init__(message)


class RateLimitError(ExchangeError):
    """Venue or AI provider rejected the call with a rate limit."""


class OrderTimeoutError(ExchangeError):
    """No terminal response from the venue within the allotted time."""


def error_message(error: BaseException | str | None) -> str:
    if error is None:
        return "Unknown error"
    if isinstance(error, str):
        return error
    return str(error) or type(error).__name__


def is_rate_limit_error(error: BaseException) -> bool:
    if isinstance(error, RateLimitError):
        return True
    message = error_message(error).lower()
    return (
        "rate limit" in message
        or "429" in message
        or "too many requests" in message
        or "resource exhausted" in message
    )


def is_retryable_error(error: BaseException) -> bool:
    if is_rate_limit_error(error) or isinstance(error, (TimeoutError, ConnectionError)):
        return True
    message = error_message(error).lower()
    return any(
        token in message
        for token in ("timeout", "econnreset", "econnrefused", "connection reset", "network")
    )
