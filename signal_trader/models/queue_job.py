"""QueueJob model: durable storage for the signal queue."""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON
from sqlmodel import Column, Field, SQLModel


class JobStatus:
    WAITING = "waiting"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class QueueJob(SQLModel, table=True):
    __tablename__ = "queue_job"

    id: str = Field(primary_key=True)  # signal hash
    queue_name: str = Field(index=True)
    name: str
    data: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    status: str = Field(default=JobStatus.WAITING, index=True)
    attempts_made: int = 0
    max_attempts: int = 3
    next_attempt_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), index=True)
    result: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    error: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    started_at: datetime | None = None
    finished_at: datetime | None = None
