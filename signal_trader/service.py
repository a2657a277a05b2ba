"""Composition root: wires repositories, queue, processor and executor."""

import logging
from typing import Any

from sqlalchemy.engine import Engine

from signal_trader.config import Settings, settings as default_settings
from signal_trader.engine.dedup import DedupStore
from signal_trader.engine.events import WILDCARD, EventBus
from signal_trader.engine.executor import ExecutorConfig, TradeExecutor
from signal_trader.engine.position_manager import PositionManager
from signal_trader.engine.processor import SignalProcessor
from signal_trader.engine.queue import QueueOptions, SignalQueue
from signal_trader.engine.repositories import PositionRepository, SignalRepository, TradeRepository
from signal_trader.schemas.common import Exchange
from signal_trader.schemas.signal import RawSignal
from signal_trader.services.exchange import ExchangeClient
from signal_trader.services.image_extractor import AIImageClient, ImageSignalExtractor
from signal_trader.services.notifications import LoggingNotifier, Notifier, TelegramNotifier
from signal_trader.services.text_parser import TextSignalParser
from signal_trader.utils.shutdown import ShutdownManager

logger = logging.getLogger(__name__)


class TradingService:
    def __init__(
        self,
        engine: Engine | None = None,
        config: Settings | None = None,
        exchanges: dict[Exchange, ExchangeClient] | None = None,
        image_client: AIImageClient | None = None,
        notifier: Notifier | None = None,
        broadcaster: Any = None,
    ):
        if engine is None:
            from signal_trader.database import engine
        self.engine = engine
        self.config = config = config or default_settings
        self.broadcaster = broadcaster

        self.events = EventBus()
        self.signals = SignalRepository(engine)
        self.trades = TradeRepository(engine)
        self.positions = PositionRepository(engine)
        self.dedup = DedupStore(self.signals)
        self.position_manager = PositionManager(self.positions)

        self.queue = SignalQueue(engine, self.events, QueueOptions(
            attempts=config.queue_attempts,
            backoff_delay=config.queue_backoff_seconds,
            limiter_max=config.queue_rate_limit_max,
            limiter_duration=config.queue_rate_limit_seconds,
        ))

        if notifier is None:
            notifier = TelegramNotifier() if config.telegram_bot_token else LoggingNotifier()
        self.notifier = notifier

        if exchanges is None:
            exchanges = self._default_exchanges(config)
        self.exchanges = exchanges

        self.executor = TradeExecutor(
            ExecutorConfig(
                simulation_mode=config.simulation_mode,
                default_position_size=config.default_position_size,
                default_leverage=config.default_leverage,
                confidence_threshold=config.confidence_threshold,
                order_timeout=config.order_timeout_seconds,
            ),
            self.position_manager,
            self.trades,
            exchanges,
            notifier,
        )

        if image_client is None and config.gemini_api_key:
            from signal_trader.services.image_extractor import GeminiClient
            image_client = GeminiClient(config.gemini_api_key, config.gemini_model)
        image_extractor = ImageSignalExtractor(image_client) if image_client is not None else None
        if image_extractor is None:
            logger.warning("No image model configured, image signals will be text-parsed only")

        self.processor = SignalProcessor(
            dedup=self.dedup,
            text_parser=TextSignalParser(),
            image_extractor=image_extractor,
            executor=self.executor,
            confidence_threshold=config.confidence_threshold,
            events=self.events,
        )
        self.shutdown = ShutdownManager(timeout=config.shutdown_timeout_seconds)

    @staticmethod
    def _default_exchanges(config: Settings) -> dict[Exchange, ExchangeClient]:
        exchanges: dict[Exchange, ExchangeClient] = {}
        if config.binance_api_key and config.binance_api_secret:
            from signal_trader.services.binance_client import BinanceFuturesClient
            exchanges[Exchange.BINANCE] = BinanceFuturesClient(
                config.binance_api_key, config.binance_api_secret, testnet=config.binance_testnet
            )
        if config.ibkr_enabled:
            from signal_trader.services.ibkr_client import IBKRClient
            exchanges[Exchange.IBKR] = IBKRClient(
                config.ibkr_host, config.ibkr_port, config.ibkr_client_id
            )
        if not config.simulation_mode and not exchanges:
            logger.warning("Live mode without any configured venue; executions will fail")
        return exchanges

    # ── Lifecycle ────────────────────────────────────────

    async def start(self, run_scheduler: bool = True):
        mode = "SIMULATION" if self.config.simulation_mode else "LIVE"
        logger.info(f"Starting trading service ({mode})")

        await self.position_manager.sync_from_database()
        await self._connect_exchanges()
        self.shutdown.register("exchanges", self._close_exchanges)

        await self.queue.start(self.processor.handle_job)
        self.shutdown.register("queue", self.queue.close)

        if self.broadcaster is not None:
            self.events.subscribe(WILDCARD, self.broadcaster.forward_event)
        if run_scheduler:
            from signal_trader.engine.scheduler import add_snapshot_job, start_scheduler, stop_scheduler
            add_snapshot_job(self.broadcast_snapshot, self.config.snapshot_interval_seconds)
            start_scheduler()

            async def _stop_scheduler():
                stop_scheduler()

            self.shutdown.register("scheduler", _stop_scheduler)

        logger.info("Trading service started")

    async def stop(self):
        await self.shutdown.run()

    async def _connect_exchanges(self):
        """Open session-based venues; a failed venue stays not-ready."""
        for exchange, client in self.exchanges.items():
            connect = getattr(client, "connect", None)
            if connect is None:
                continue
            try:
                await connect()
            except Exception as e:
                logger.warning(f"{exchange} connection failed, trading on it is disabled: {e}")

    async def _close_exchanges(self):
        for exchange, client in self.exchanges.items():
            try:
                await client.close()
            except Exception as e:
                logger.error(f"Failed to close {exchange} client: {e}")

    # ── Operations ───────────────────────────────────────

    async def submit(self, raw: RawSignal) -> dict[str, Any]:
        """Ingest a raw signal: fast-fail known hashes, otherwise enqueue."""
        if await self.dedup.exists(raw.hash):
            logger.info(f"Duplicate signal {raw.hash[:16]} rejected at ingestion")
            return {"queued": False, "duplicate": True, "hash": raw.hash}
        queued = await self.queue.add(raw)
        return {"queued": queued, "duplicate": not queued, "hash": raw.hash}

    async def pause(self):
        self.processor.pause()
        await self.events.publish("processing.status", {"paused": True})

    async def resume(self):
        self.processor.resume()
        await self.events.publish("processing.status", {"paused": False})

    def set_confidence_threshold(self, threshold: float) -> float:
        value = self.processor.set_confidence_threshold(threshold)
        self.executor.config.confidence_threshold = value
        return value

    async def status(self) -> dict[str, Any]:
        return {
            "paused": self.processor.is_paused,
            "simulation_mode": self.executor.config.simulation_mode,
            "confidence_threshold": self.processor.confidence_threshold,
            "queue_running": self.queue.is_running,
            "queue": await self.queue.get_stats(),
            "open_positions": self.position_manager.get_open_position_count(),
            "venues": {str(e): client.is_ready() for e, client in self.exchanges.items()},
            "signals": await self.signals.status_counts(),
        }

    async def broadcast_snapshot(self):
        if self.broadcaster is None:
            return
        positions = [p.model_dump() for p in self.position_manager.get_all_open_positions()]
        await self.broadcaster.broadcast("positions:update", positions)
        await self.broadcaster.broadcast("queue:update", await self.queue.get_stats())
