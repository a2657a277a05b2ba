"""Combine image- and text-derived signals into one candidate."""

from signal_trader.schemas.signal import ParsedSignal


def _first_present(preferred, fallback):
    return preferred if preferred is not None else fallback


def merge_signal_results(image: ParsedSignal | None, text: ParsedSignal | None) -> ParsedSignal | None:
    """Image wins for symbol/action/entry unless falsy; optionals fall back only when absent."""
    if image is None and text is None:
        return None
    if image is None:
        return text
    if text is None:
        return image

    return ParsedSignal(
        symbol=image.symbol or text.symbol,
        action=image.action or text.action,
        entry=image.entry or text.entry,
        stop_loss=_first_present(image.stop_loss, text.stop_loss),
        take_profit=_first_present(image.take_profit, text.take_profit),
        leverage=_first_present(image.leverage, text.leverage),
        exchange=_first_present(image.exchange, text.exchange),
        market=_first_present(image.market, text.market),
        confidence=max(image.confidence, text.confidence),
    )
