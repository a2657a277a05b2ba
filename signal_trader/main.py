"""FastAPI application entry point."""

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from signal_trader.config import settings
from signal_trader.database import create_db_and_tables
from signal_trader.utils.logging import setup_logging
from signal_trader.api import positions, signals, system, trades, websocket


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    setup_logging()
    create_db_and_tables()

    from signal_trader.service import TradingService
    service = TradingService(broadcaster=websocket.manager)
    app.state.service = service
    await service.start()

    # Start Telegram bot if configured
    telegram_bot = None
    if settings.telegram_bot_token:
        from signal_trader.services.telegram_bot import init_bot
        telegram_bot = init_bot(service, main_loop=asyncio.get_running_loop())
        telegram_bot.start()

    yield

    if telegram_bot:
        telegram_bot.stop()
    await service.stop()


app = FastAPI(
    title="Signal Trader",
    description="Trading signal ingestion, parsing and execution service",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount routers
app.include_router(system.router)
app.include_router(signals.router)
app.include_router(trades.router)
app.include_router(positions.router)
app.include_router(websocket.router)
