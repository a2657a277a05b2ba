"""Signal model: one row per unique inbound message, never deleted."""

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON
from sqlmodel import Column, Field, SQLModel

from signal_trader.schemas.common import SignalStatus


class Signal(SQLModel, table=True):
    __tablename__ = "signal"

    id: str = Field(default_factory=lambda: uuid.uuid4().hex, primary_key=True)
    source: str
    raw_content: str = ""
    image_base64: str | None = None
    image_mime_type: str | None = None
    channel_id: str = ""
    user_id: str = ""
    message_id: str = ""
    hash: str = Field(index=True, unique=True)  # idempotency key
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    parsed: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    status: str = Field(default=SignalStatus.PENDING, index=True)
    status_reason: str | None = None
    processed_at: datetime | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), index=True)
