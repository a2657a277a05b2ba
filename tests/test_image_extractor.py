"""Tests for chart-image extraction with a mocked vision model."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from signal_trader.schemas.common import SignalAction
from signal_trader.services.image_extractor import (
    SIGNAL_EXTRACTION_PROMPT,
    ImageSignalExtractor,
    extract_json_block,
)
from signal_trader.utils.errors import RateLimitError

IMAGE = b"\x89PNG fake bytes"


def _client(*responses) -> MagicMock:
    client = MagicMock()
    client.generate_from_image = AsyncMock(side_effect=list(responses))
    return client


def _extractor(client) -> ImageSignalExtractor:
    return ImageSignalExtractor(client, max_attempts=3, initial_delay=0)


@pytest.mark.asyncio
async def test_extracts_signal_from_fenced_json():
    body = {"symbol": "btc/usdt", "action": "long", "entry": 45000, "stopLoss": 44000,
            "takeProfit": 47000, "leverage": 10, "confidence": 0.9}
    client = _client(f"Here you go:\n```json\n{json.dumps(body)}\n```")

    parsed = await _extractor(client).extract(IMAGE, "image/jpeg")

    assert parsed.symbol == "BTC"
    assert parsed.action == SignalAction.LONG
    assert parsed.entry == 45000
    assert parsed.stop_loss == 44000
    assert parsed.take_profit == 47000
    assert parsed.leverage == 10
    assert parsed.confidence == 0.9
    client.generate_from_image.assert_awaited_once_with(SIGNAL_EXTRACTION_PROMPT, IMAGE, "image/jpeg")


@pytest.mark.asyncio
async def test_optional_fields_may_be_omitted():
    client = _client('{"symbol": "ETH", "action": "SHORT", "entry": 3000, "confidence": 0.5}')
    parsed = await _extractor(client).extract(IMAGE)
    assert parsed.action == SignalAction.SHORT
    assert parsed.stop_loss is None
    assert parsed.take_profit is None


@pytest.mark.asyncio
async def test_rate_limit_is_retried():
    client = _client(
        RateLimitError("429 Too Many Requests"),
        '{"symbol": "SOL", "action": "LONG", "entry": 150, "confidence": 0.8}',
    )
    parsed = await _extractor(client).extract(IMAGE)
    assert parsed.symbol == "SOL"
    assert client.generate_from_image.await_count == 2


@pytest.mark.asyncio
async def test_other_errors_are_not_retried():
    client = _client(RuntimeError("invalid image"))
    assert await _extractor(client).extract(IMAGE) is None
    assert client.generate_from_image.await_count == 1


@pytest.mark.asyncio
async def test_rate_limit_exhaustion_returns_none():
    client = _client(*[RateLimitError("rate limit")] * 3)
    assert await _extractor(client).extract(IMAGE) is None
    assert client.generate_from_image.await_count == 3


@pytest.mark.asyncio
@pytest.mark.parametrize("response", [
    "",
    "I could not find a trading signal in this image.",
    "{not json}",
    '{"symbol": "BTC", "action": "HOLD", "entry": 45000, "confidence": 0.9}',
    '{"symbol": "BTC", "action": "LONG", "entry": -5, "confidence": 0.9}',
    '{"symbol": "BTC", "action": "LONG", "entry": 45000, "confidence": 1.5}',
    '{"action": "LONG", "entry": 45000, "confidence": 0.9}',
])
async def test_unusable_responses_return_none(response):
    assert await _extractor(_client(response)).extract(IMAGE) is None


def test_extract_json_block_is_greedy():
    text = 'prefix {"a": {"b": 1}} suffix'
    assert extract_json_block(text) == '{"a": {"b": 1}}'
    assert extract_json_block("no braces") is None
