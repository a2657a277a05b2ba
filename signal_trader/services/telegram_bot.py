"""Telegram bot for trade notifications and remote control."""

import asyncio
import logging
import threading
from typing import TYPE_CHECKING, Optional

from telegram import Update
from telegram.constants import ParseMode
from telegram.ext import Application, CommandHandler, ContextTypes

from signal_trader.config import settings

if TYPE_CHECKING:
    from signal_trader.service import TradingService

logger = logging.getLogger(__name__)

_bot_instance: Optional["TelegramBot"] = None


class TelegramBot:
    """Telegram bot running in a background thread with its own event loop.

    Command handlers touch the trading service, which lives on the main
    loop, so they hop back to it with ``run_coroutine_threadsafe``.
    """

    def __init__(self, token: str, chat_ids: list[int], service: "TradingService", main_loop=None):
        self.token = token
        self.chat_ids = set(chat_ids)
        self.service = service
        self._main_loop = main_loop
        self._app: Optional[Application] = None
        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def loop(self) -> Optional[asyncio.AbstractEventLoop]:
        return self._loop

    def _is_authorized(self, chat_id: int) -> bool:
        return chat_id in self.chat_ids

    async def _check_auth(self, update: Update) -> bool:
        chat = update.effective_chat
        if not chat or not self._is_authorized(chat.id):
            if update.message:
                await update.message.reply_text("Unauthorized.")
            return False
        return True

    async def _on_main(self, coro):
        """Run ``coro`` on the service loop and await its result from the bot loop."""
        if self._main_loop is None:
            return await coro
        future = asyncio.run_coroutine_threadsafe(coro, self._main_loop)
        return await asyncio.wrap_future(future)

    async def _cmd_status(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self._check_auth(update):
            return

        status = await self._on_main(self.service.status())
        queue = status["queue"]
        mode = "SIMULATION" if status["simulation_mode"] else "LIVE"
        text = (
            "📊 *System Status*\n\n"
            f"*Mode:* {mode}\n"
            f"*Processing:* {'paused' if status['paused'] else 'running'}\n"
            f"*Confidence threshold:* {status['confidence_threshold'] * 100:.0f}%\n"
            f"*Open positions:* {status['open_positions']}\n"
            f"*Queue:* {queue['waiting']} waiting, {queue['active']} active, "
            f"{queue['delayed']} delayed, {queue['failed']} failed"
        )
        await update.message.reply_text(text, parse_mode=ParseMode.MARKDOWN)

    async def _cmd_positions(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self._check_auth(update):
            return

        positions = self.service.position_manager.get_all_open_positions()
        if not positions:
            await update.message.reply_text("No open positions.")
            return

        lines = [
            f"{pos.symbol} {pos.side} | qty={pos.quantity:g} @ {pos.entry_price:g} | {pos.leverage:g}x"
            for pos in positions
        ]
        await update.message.reply_text("\n".join(lines))

    async def _cmd_stop(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self._check_auth(update):
            return
        await self._on_main(self.service.pause())
        await update.message.reply_text("⏸ Signal processing paused. Use /resume to continue.")

    async def _cmd_resume(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self._check_auth(update):
            return
        await self._on_main(self.service.resume())
        await update.message.reply_text("▶️ Signal processing resumed.")

    async def send_notification(self, message: str):
        """Send a message to all whitelisted chat IDs."""
        if not self._app or not self._app.bot:
            return
        for chat_id in self.chat_ids:
            try:
                await self._app.bot.send_message(chat_id=chat_id, text=message, parse_mode=ParseMode.MARKDOWN)
            except Exception as e:
                logger.warning(f"Failed to send Telegram notification to {chat_id}: {e}")

    def _run_bot(self):
        """Run the bot in a background thread with its own event loop."""
        self._loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self._loop)

        self._app = (
            Application.builder()
            .token(self.token)
            .build()
        )

        self._app.add_handler(CommandHandler("status", self._cmd_status))
        self._app.add_handler(CommandHandler("positions", self._cmd_positions))
        self._app.add_handler(CommandHandler("stop", self._cmd_stop))
        self._app.add_handler(CommandHandler(["resume", "start"], self._cmd_resume))

        logger.info("Telegram bot starting...")
        self._loop.run_until_complete(self._app.initialize())
        self._loop.run_until_complete(self._app.start())
        self._loop.run_until_complete(self._app.updater.start_polling())
        self._loop.run_forever()

    def start(self):
        self._thread = threading.Thread(target=self._run_bot, daemon=True)
        self._thread.start()

    def stop(self):
        if self._loop and self._app:
            async def _shutdown():
                await self._app.updater.stop()
                await self._app.stop()
                await self._app.shutdown()

            asyncio.run_coroutine_threadsafe(_shutdown(), self._loop).result(timeout=10)
            self._loop.call_soon_threadsafe(self._loop.stop)


def init_bot(service: "TradingService", main_loop=None) -> TelegramBot:
    """Initialize and return the bot singleton."""
    global _bot_instance
    _bot_instance = TelegramBot(
        token=settings.telegram_bot_token,
        chat_ids=settings.telegram_chat_ids,
        service=service,
        main_loop=main_loop,
    )
    return _bot_instance


def get_bot() -> Optional[TelegramBot]:
    """Get the bot singleton, or None if not initialized."""
    return _bot_instance
