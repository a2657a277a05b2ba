"""Application configuration via environment variables."""

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./signal_trader.db"
    log_level: str = "INFO"
    cors_origins: list[str] = ["http://localhost:5173"]  # Vite dev server

    # API key for the control surface; empty disables auth
    api_key: str = ""

    # Telegram
    telegram_bot_token: str = ""
    telegram_chat_ids: list[int] = []

    # Gemini (image signal extraction)
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.0-flash"

    # Binance USD-M futures
    binance_api_key: str = ""
    binance_api_secret: str = ""
    binance_testnet: bool = True

    # Interactive Brokers (TWS / IB Gateway)
    ibkr_enabled: bool = False
    ibkr_host: str = "127.0.0.1"
    ibkr_port: int = 4002
    ibkr_client_id: int = 0

    # Trading
    simulation_mode: bool = True
    confidence_threshold: float = Field(default=0.7, ge=0, le=1)
    default_position_size: float = Field(default=100.0, gt=0)
    default_leverage: float = Field(default=1.0, ge=1, le=125)
    order_timeout_seconds: float = Field(default=30.0, gt=0)

    # Signal queue
    queue_attempts: int = Field(default=3, ge=1)
    queue_backoff_seconds: float = Field(default=1.0, ge=0)
    queue_rate_limit_max: int = Field(default=10, ge=1)
    queue_rate_limit_seconds: float = Field(default=10.0, gt=0)

    # Runtime
    shutdown_timeout_seconds: float = Field(default=30.0, gt=0)
    snapshot_interval_seconds: int = Field(default=5, ge=1)

    model_config = {"env_prefix": "ST_", "env_file": ".env"}


settings = Settings()
