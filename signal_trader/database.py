"""SQLModel database engine and session management."""

import logging

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine

from signal_trader.config import settings
from signal_trader.models.position import OPEN_POSITION_INDEX
from signal_trader.utils.logging import mask_url

logger = logging.getLogger(__name__)


def build_engine(database_url: str) -> Engine:
    # SQLite needs check_same_thread=False; PostgreSQL does not
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(database_url, echo=False, connect_args=connect_args)


engine = build_engine(settings.database_url)


def _run_migrations(bind: Engine):
    """Bring databases created by older releases up to the current schema."""
    inspector = inspect(bind)

    # Partial unique index enforcing one open position per (symbol, side)
    if "position" in inspector.get_table_names():
        existing_indexes = inspector.get_indexes("position")
        if not any(idx["name"] == OPEN_POSITION_INDEX for idx in existing_indexes):
            logger.info(f"Migrating: creating {OPEN_POSITION_INDEX}")
            with bind.connect() as conn:
                conn.execute(text(
                    f"CREATE UNIQUE INDEX IF NOT EXISTS {OPEN_POSITION_INDEX} "
                    "ON position (symbol, side) WHERE status = 'open'"
                ))
                conn.commit()

    if "signal" in inspector.get_table_names():
        columns = {col["name"] for col in inspector.get_columns("signal")}
        if "status_reason" not in columns:
            logger.info("Migrating: adding signal.status_reason")
            with bind.connect() as conn:
                conn.execute(text("ALTER TABLE signal ADD COLUMN status_reason VARCHAR"))
                conn.commit()


def create_db_and_tables(bind: Engine | None = None):
    """Create all tables. Called on startup."""
    bind = bind or engine
    # Import registers the table metadata
    import signal_trader.models  # noqa: F401

    logger.info(f"Initialising database at {mask_url(str(bind.url))}")
    SQLModel.metadata.create_all(bind)
    _run_migrations(bind)
