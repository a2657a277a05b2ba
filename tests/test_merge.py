"""Tests for combining image and text parse results."""

from signal_trader.schemas.common import SignalAction
from signal_trader.schemas.signal import ParsedSignal
from signal_trader.services.merge import merge_signal_results


def _signal(**overrides) -> ParsedSignal:
    fields = dict(symbol="BTC", action=SignalAction.LONG, entry=45000.0, confidence=0.8)
    fields.update(overrides)
    return ParsedSignal(**fields)


def test_both_missing():
    assert merge_signal_results(None, None) is None


def test_single_source_returned_unchanged():
    text = _signal(confidence=0.65)
    image = _signal(confidence=0.9)
    assert merge_signal_results(None, text) is text
    assert merge_signal_results(image, None) is image


def test_image_wins_core_fields():
    image = _signal(symbol="ETH", action=SignalAction.SHORT, entry=3000.0, confidence=0.6)
    text = _signal(symbol="BTC", action=SignalAction.LONG, entry=45000.0, confidence=0.9)

    merged = merge_signal_results(image, text)

    assert merged.symbol == "ETH"
    assert merged.action == SignalAction.SHORT
    assert merged.entry == 3000.0
    assert merged.confidence == 0.9


def test_falsy_image_core_fields_fall_back_to_text():
    merged = merge_signal_results(_signal(symbol="", entry=0.0), _signal(symbol="SOL", entry=150.0))
    assert merged.symbol == "SOL"
    assert merged.entry == 150.0


def test_optionals_fall_back_only_when_absent():
    image = _signal(stop_loss=None, take_profit=47000.0, leverage=None)
    text = _signal(stop_loss=44000.0, take_profit=48000.0, leverage=5.0)

    merged = merge_signal_results(image, text)

    assert merged.stop_loss == 44000.0
    assert merged.take_profit == 47000.0
    assert merged.leverage == 5.0
