"""Chart-image signal extraction through a multimodal model."""

import json
import logging
import re
from typing import Protocol

import google.generativeai as genai
from pydantic import ValidationError

from signal_trader.schemas.signal import ImageSignalResponse, ParsedSignal
from signal_trader.utils.errors import is_rate_limit_error
from signal_trader.utils.retry import retry

logger = logging.getLogger(__name__)

SIGNAL_EXTRACTION_PROMPT = """Analyze this trading signal image and extract the following information:

1. **Symbol**: The trading pair or stock symbol (e.g., BTC, ETH, AAPL, BTCUSDT)
2. **Action**: Whether this is a LONG (buy) or SHORT (sell) signal
3. **Entry Price**: The recommended entry price
4. **Stop Loss**: The stop loss price (if visible)
5. **Take Profit**: The take profit price(s) (if visible)
6. **Leverage**: The recommended leverage (if mentioned)

Look for chart annotations showing entry, SL and TP levels, text overlays
with trading instructions, and direction indicators (arrows, lines).

Return ONLY valid JSON with these exact fields. If a field is not found, omit it (don't use null):

{
  "symbol": "string - trading symbol",
  "action": "LONG or SHORT",
  "entry": number,
  "stopLoss": number (optional),
  "takeProfit": number (optional),
  "leverage": number (optional),
  "confidence": number between 0 and 1
}

Important:
- confidence should reflect how certain you are about the extracted data
- If you cannot determine the action, default to LONG
- Normalize symbols (remove /USDT suffix)
- All prices should be positive numbers"""

SIGNAL_EXTRACTION_SYSTEM = (
    "You are a trading signal extraction AI. Your job is to analyze trading chart "
    "images and extract structured signal data. Be precise with numbers and "
    "conservative with confidence scores. If information is unclear or ambiguous, "
    "reflect that in a lower confidence score."
)

# Greedy: spans from the first "{" to the last "}"
_JSON_BLOCK = re.compile(r"\{.*\}", re.DOTALL)


class AIImageClient(Protocol):
    async def generate_from_image(self, prompt: str, image: bytes, mime_type: str) -> str: ...


class GeminiClient:
    """google-generativeai backed implementation of AIImageClient."""

    def __init__(self, api_key: str, model: str = "gemini-2.0-flash"):
        genai.configure(api_key=api_key)
        self.model_name = model
        self.model = genai.GenerativeModel(model, system_instruction=SIGNAL_EXTRACTION_SYSTEM)
        logger.info(f"Gemini client initialised (model={model})")

    async def generate_from_image(self, prompt: str, image: bytes, mime_type: str) -> str:
        response = await self.model.generate_content_async(
            [prompt, {"mime_type": mime_type, "data": image}]
        )
        return response.text


def extract_json_block(text: str) -> str | None:
    match = _JSON_BLOCK.search(text)
    return match.group(0) if match else None


class ImageSignalExtractor:
    def __init__(self, ai_client: AIImageClient, max_attempts: int = 3, initial_delay: float = 2.0):
        self.ai_client = ai_client
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay

    async def extract(self, image: bytes, mime_type: str = "image/png") -> ParsedSignal | None:
        """Return the signal shown in ``image`` or None if nothing usable came back."""
        logger.info(f"Extracting signal from image ({mime_type}, {len(image)} bytes)")
        try:
            text = await retry(
                lambda: self.ai_client.generate_from_image(SIGNAL_EXTRACTION_PROMPT, image, mime_type),
                max_attempts=self.max_attempts,
                initial_delay=self.initial_delay,
                retryable=is_rate_limit_error,
                on_retry=lambda e, attempt, delay: logger.warning(f"Image model retry {attempt}: {e}"),
            )
        except Exception as e:
            logger.error(f"Error extracting signal from image: {e}")
            return None

        if not text:
            logger.warning("Empty response from image model")
            return None
        logger.debug(f"Image model raw response: {text[:200]}")

        block = extract_json_block(text)
        if block is None:
            logger.warning(f"No JSON found in image model response: {text[:200]}")
            return None

        try:
            data = json.loads(block)
        except json.JSONDecodeError:
            logger.error(f"Failed to parse image model JSON: {block[:200]}")
            return None

        try:
            response = ImageSignalResponse.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Image model response failed validation: {e.errors()}")
            return None

        signal = ParsedSignal(
            symbol=re.sub(r"/USDT?$", "", response.symbol.upper().strip()),
            action=response.action,
            entry=response.entry,
            stop_loss=response.stop_loss,
            take_profit=response.take_profit,
            leverage=response.leverage,
            confidence=response.confidence,
        )
        logger.info(
            f"Signal extracted from image: {signal.symbol} {signal.action} @ {signal.entry} "
            f"(confidence {signal.confidence:.2f})"
        )
        return signal
