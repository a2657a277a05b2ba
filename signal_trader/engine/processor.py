"""Signal processing state machine.

PENDING -> PARSED -> EXECUTED | SKIPPED, or FAILED at the parse or
execution step. Run by the queue worker one job at a time.
"""

import asyncio
import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Protocol

from signal_trader.engine.dedup import DedupStore
from signal_trader.engine.events import EventBus
from signal_trader.models.queue_job import QueueJob
from signal_trader.models.signal import Signal
from signal_trader.schemas.common import SignalStatus
from signal_trader.schemas.signal import ParsedSignal, RawSignal
from signal_trader.services.image_extractor import ImageSignalExtractor
from signal_trader.services.merge import merge_signal_results
from signal_trader.services.text_parser import TextSignalParser
from signal_trader.utils.errors import error_message

logger = logging.getLogger(__name__)

PARSE_FAILED_REASON = "Failed to parse signal content"


class SignalExecutor(Protocol):
    async def execute_signal(self, signal: Signal, parsed: ParsedSignal) -> Any: ...


@dataclass
class SignalJobResult:
    success: bool
    signal_id: str | None = None
    error: str | None = None
    executed: bool = False


def skip_reason(confidence: float, threshold: float) -> str:
    return f"Confidence {confidence * 100:.0f}% below threshold {threshold * 100:.0f}%"


class SignalProcessor:
    def __init__(
        self,
        dedup: DedupStore,
        text_parser: TextSignalParser,
        image_extractor: ImageSignalExtractor | None = None,
        executor: SignalExecutor | None = None,
        confidence_threshold: float = 0.7,
        events: EventBus | None = None,
    ):
        self.dedup = dedup
        self.text_parser = text_parser
        self.image_extractor = image_extractor
        self.executor = executor
        self.events = events or EventBus()
        self._confidence_threshold = min(max(confidence_threshold, 0.0), 1.0)
        self._paused = False

    # ── Runtime controls ─────────────────────────────────

    def pause(self):
        self._paused = True
        logger.warning("Signal processing paused")

    def resume(self):
        self._paused = False
        logger.info("Signal processing resumed")

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def confidence_threshold(self) -> float:
        return self._confidence_threshold

    def set_confidence_threshold(self, threshold: float) -> float:
        self._confidence_threshold = min(max(threshold, 0.0), 1.0)
        logger.info(f"Confidence threshold set to {self._confidence_threshold:.2f}")
        return self._confidence_threshold

    # ── Pipeline ─────────────────────────────────────────

    async def handle_job(self, job: QueueJob) -> SignalJobResult:
        """Queue adapter: rebuild the RawSignal from the job payload."""
        raw = RawSignal.model_validate(job.data)
        return await self.process(raw)

    async def process(self, raw: RawSignal) -> SignalJobResult:
        logger.info(f"Processing signal {raw.hash[:16]} (source={raw.source})")

        if self._paused:
            logger.warning(f"Processing paused, skipping signal {raw.hash[:16]}")
            return SignalJobResult(success=False, error="Processing paused")

        try:
            return await self._process(raw)
        except Exception as e:
            # Repository or other infrastructure failure; the queue retries
            logger.error(f"Unexpected error processing {raw.hash[:16]}: {e}", exc_info=True)
            return SignalJobResult(success=False, error=error_message(e))

    async def _process(self, raw: RawSignal) -> SignalJobResult:
        existing = await self.dedup.find_by_hash(raw.hash)
        if existing is not None:
            logger.info(f"Duplicate signal {raw.hash[:16]}, already recorded as {existing.id}")
            return SignalJobResult(success=True, signal_id=existing.id, executed=False)

        signal = await self.dedup.create(raw)
        if signal is None:
            existing = await self.dedup.find_by_hash(raw.hash)
            logger.info(f"Duplicate signal {raw.hash[:16]} stored by another worker")
            return SignalJobResult(
                success=True, signal_id=existing.id if existing else None, executed=False
            )
        await self._publish(signal.id, SignalStatus.PENDING)

        image_parsed, text_parsed = await asyncio.gather(
            self._parse_image(raw), self._parse_text(raw)
        )
        parsed = merge_signal_results(image_parsed, text_parsed)

        if parsed is None:
            logger.warning(f"Failed to parse signal {signal.id} from image or text")
            await self._set_status(signal.id, SignalStatus.FAILED, PARSE_FAILED_REASON)
            return SignalJobResult(success=False, signal_id=signal.id, error=PARSE_FAILED_REASON)

        signal = await self.dedup.repository.update_parsed(signal.id, parsed)
        await self._publish(signal.id, SignalStatus.PARSED, parsed=parsed.to_dict())
        logger.info(
            f"Signal {signal.id} parsed: {parsed.symbol} {parsed.action} @ {parsed.entry} "
            f"(confidence {parsed.confidence:.2f}, image={image_parsed is not None}, "
            f"text={text_parsed is not None})"
        )

        threshold = self._confidence_threshold
        if parsed.confidence < threshold:
            reason = skip_reason(parsed.confidence, threshold)
            logger.info(f"Signal {signal.id} skipped: {reason}")
            await self._set_status(signal.id, SignalStatus.SKIPPED, reason)
            return SignalJobResult(success=True, signal_id=signal.id, executed=False)

        if self.executor is None:
            logger.info(f"No executor registered, signal {signal.id} parsed only")
            return SignalJobResult(success=True, signal_id=signal.id, executed=False)

        try:
            await self.executor.execute_signal(signal, parsed)
        except Exception as e:
            message = error_message(e)
            logger.error(f"Error executing signal {signal.id}: {message}")
            await self._set_status(signal.id, SignalStatus.FAILED, f"Execution failed: {message}")
            return SignalJobResult(success=False, signal_id=signal.id, error=message)

        await self._set_status(signal.id, SignalStatus.EXECUTED)
        logger.info(f"Signal {signal.id} executed")
        return SignalJobResult(success=True, signal_id=signal.id, executed=True)

    async def _parse_image(self, raw: RawSignal) -> ParsedSignal | None:
        if not raw.image_base64 or self.image_extractor is None:
            return None
        try:
            image = base64.b64decode(raw.image_base64, validate=True)
        except (binascii.Error, ValueError) as e:
            logger.error(f"Invalid image payload on {raw.hash[:16]}: {e}")
            return None
        return await self._swallow(
            self.image_extractor.extract(image, raw.image_mime_type or "image/png"), "image"
        )

    async def _parse_text(self, raw: RawSignal) -> ParsedSignal | None:
        if not raw.raw_content or not raw.raw_content.strip():
            return None
        try:
            return self.text_parser.parse(raw.raw_content)
        except Exception as e:
            logger.error(f"Text parse failed for {raw.hash[:16]}: {e}")
            return None

    @staticmethod
    async def _swallow(call: Awaitable[ParsedSignal | None], branch: str) -> ParsedSignal | None:
        try:
            return await call
        except Exception as e:
            logger.error(f"{branch.capitalize()} parse failed: {e}")
            return None

    async def _set_status(self, signal_id: str, status: SignalStatus, reason: str | None = None):
        await self.dedup.repository.update_status(signal_id, status, reason)
        await self._publish(signal_id, status, reason=reason)

    async def _publish(self, signal_id: str, status: SignalStatus, **extra: Any):
        await self.events.publish("signal.status", {"signal_id": signal_id, "status": str(status), **extra})
