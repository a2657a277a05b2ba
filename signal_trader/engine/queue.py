"""Durable signal queue stored in the ``queue_job`` table.

One worker task processes jobs strictly one at a time. Job ids are the
signal content hash, so re-adding a retained job is a silent no-op.
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import asdict, dataclass, is_dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable

from sqlalchemy import delete, func
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from signal_trader.engine.events import EventBus
from signal_trader.models.queue_job import JobStatus, QueueJob
from signal_trader.schemas.signal import RawSignal
from signal_trader.utils.constants import SIGNAL_JOB_NAME, SIGNAL_QUEUE_NAME
from signal_trader.utils.errors import error_message

logger = logging.getLogger(__name__)

JobHandler = Callable[[QueueJob], Awaitable[Any]]


@dataclass
class QueueOptions:
    name: str = SIGNAL_QUEUE_NAME
    attempts: int = 3
    backoff_delay: float = 1.0  # seconds, doubled per failed attempt
    remove_on_complete_count: int = 1000
    remove_on_complete_age: float = 86400.0  # seconds
    remove_on_fail_count: int = 500
    limiter_max: int = 10
    limiter_duration: float = 10.0  # seconds
    poll_interval: float = 1.0


class RateLimiter:
    """Allow at most ``max_jobs`` starts in any rolling ``duration`` window."""

    def __init__(self, max_jobs: int, duration: float, clock: Callable[[], float] = time.monotonic):
        self.max_jobs = max_jobs
        self.duration = duration
        self._clock = clock
        self._starts: deque[float] = deque()

    def _prune(self, now: float):
        while self._starts and self._starts[0] <= now - self.duration:
            self._starts.popleft()

    def try_acquire(self) -> float:
        """Record a start and return 0, or return seconds to wait."""
        now = self._clock()
        self._prune(now)
        if len(self._starts) < self.max_jobs:
            self._starts.append(now)
            return 0.0
        return self._starts[0] + self.duration - now

    async def acquire(self):
        while True:
            wait = self.try_acquire()
            if wait <= 0:
                return
            logger.debug(f"Rate limit reached, waiting {wait:.2f}s")
            await asyncio.sleep(wait)


def backoff_seconds(base: float, attempts_made: int) -> float:
    return base * 2 ** (attempts_made - 1)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SignalQueue:
    def __init__(self, engine: Engine, events: EventBus | None = None, options: QueueOptions | None = None):
        self.engine = engine
        self.events = events or EventBus()
        self.options = options or QueueOptions()
        self.limiter = RateLimiter(self.options.limiter_max, self.options.limiter_duration)
        self._handler: JobHandler | None = None
        self._task: asyncio.Task | None = None
        self._wakeup = asyncio.Event()
        self._closing = False

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ── Producer side ────────────────────────────────────

    async def add(self, raw: RawSignal) -> bool:
        """Enqueue a signal. Returns False if a job with its hash is retained."""
        job = QueueJob(
            id=raw.hash,
            queue_name=self.options.name,
            name=SIGNAL_JOB_NAME,
            data=raw.model_dump(mode="json"),
            max_attempts=self.options.attempts,
        )
        with Session(self.engine) as session:
            if session.get(QueueJob, raw.hash) is not None:
                logger.debug(f"Job {raw.hash[:16]} already queued, skipping")
                return False
            session.add(job)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                return False

        logger.info(f"Signal queued: {raw.hash[:16]} (source={raw.source})")
        await self.events.publish("job.waiting", {"job_id": raw.hash})
        self._wakeup.set()
        return True

    async def get_job(self, job_id: str) -> QueueJob | None:
        with Session(self.engine) as session:
            return session.get(QueueJob, job_id)

    async def retry_job(self, job_id: str) -> bool:
        """Move a parked failed job back to waiting with a fresh attempt budget."""
        with Session(self.engine) as session:
            job = session.get(QueueJob, job_id)
            if job is None or job.status != JobStatus.FAILED:
                return False
            job.status = JobStatus.WAITING
            job.attempts_made = 0
            job.error = None
            job.finished_at = None
            job.next_attempt_at = _now()
            session.add(job)
            session.commit()
        logger.info(f"Job {job_id[:16]} re-queued by operator")
        await self.events.publish("job.waiting", {"job_id": job_id})
        self._wakeup.set()
        return True

    async def get_stats(self) -> dict[str, int]:
        stats = {
            JobStatus.WAITING: 0,
            JobStatus.ACTIVE: 0,
            JobStatus.DELAYED: 0,
            JobStatus.COMPLETED: 0,
            JobStatus.FAILED: 0,
        }
        stmt = (
            select(QueueJob.status, func.count())
            .where(QueueJob.queue_name == self.options.name)
            .group_by(QueueJob.status)
        )
        with Session(self.engine) as session:
            for status, n in session.exec(stmt).all():
                stats[status] = n
        return stats

    # ── Worker side ──────────────────────────────────────

    async def start(self, handler: JobHandler):
        if self.is_running:
            logger.warning("Queue worker already running")
            return
        self._handler = handler
        self._closing = False
        recovered = self._recover_active()
        if recovered:
            logger.warning(f"Recovered {recovered} job(s) left active by a previous run")
        self._task = asyncio.create_task(self._run(), name=f"queue-worker:{self.options.name}")
        logger.info(f"Queue worker started: {self.options.name}")

    async def close(self):
        """Stop taking new jobs; the in-flight job runs to completion."""
        if self._task is None:
            return
        self._closing = True
        self._wakeup.set()
        await self._task
        self._task = None
        logger.info(f"Queue worker stopped: {self.options.name}")

    def _recover_active(self) -> int:
        with Session(self.engine) as session:
            jobs = session.exec(
                select(QueueJob).where(
                    QueueJob.queue_name == self.options.name,
                    QueueJob.status == JobStatus.ACTIVE,
                )
            ).all()
            for job in jobs:
                job.status = JobStatus.WAITING
                job.next_attempt_at = _now()
                session.add(job)
            session.commit()
            return len(jobs)

    def _next_due_job_id(self) -> str | None:
        stmt = (
            select(QueueJob.id)
            .where(
                QueueJob.queue_name == self.options.name,
                QueueJob.status.in_((JobStatus.WAITING, JobStatus.DELAYED)),  # type: ignore[attr-defined]
                QueueJob.next_attempt_at <= _now(),
            )
            .order_by(QueueJob.next_attempt_at, QueueJob.created_at)
            .limit(1)
        )
        with Session(self.engine) as session:
            return session.exec(stmt).first()

    def _mark_active(self, job_id: str) -> QueueJob | None:
        with Session(self.engine) as session:
            job = session.get(QueueJob, job_id)
            if job is None or job.status not in (JobStatus.WAITING, JobStatus.DELAYED):
                return None
            job.status = JobStatus.ACTIVE
            job.started_at = _now()
            session.add(job)
            session.commit()
            session.refresh(job)
            return job

    async def _wait_for_work(self):
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=self.options.poll_interval)
        except asyncio.TimeoutError:
            pass
        self._wakeup.clear()

    async def _run(self):
        while not self._closing:
            try:
                job_id = self._next_due_job_id()
                if job_id is None:
                    await self._wait_for_work()
                    continue
                await self.limiter.acquire()
                if self._closing:
                    break
                job = self._mark_active(job_id)
                if job is not None:
                    await self._process(job)
            except Exception as e:
                logger.error(f"Queue worker error: {e}", exc_info=True)
                await asyncio.sleep(self.options.poll_interval)

    async def _process(self, job: QueueJob):
        attempt = job.attempts_made + 1
        logger.info(f"Processing job {job.id[:16]} (attempt {attempt}/{job.max_attempts})")
        await self.events.publish("job.started", {"job_id": job.id, "attempt": attempt})
        try:
            result = await self._handler(job)
        except Exception as e:
            logger.error(f"Job {job.id[:16]} raised: {e}")
            await self._record_failure(job.id, error_message(e))
            return

        result_data = asdict(result) if is_dataclass(result) else result
        if result_data is not None and getattr(result, "success", True) is False:
            await self._record_failure(job.id, getattr(result, "error", None) or "Job reported failure")
            return
        await self._record_success(job.id, result_data)

    async def _record_success(self, job_id: str, result: dict[str, Any] | None):
        with Session(self.engine) as session:
            job = session.get(QueueJob, job_id)
            job.status = JobStatus.COMPLETED
            job.attempts_made += 1
            job.result = result
            job.error = None
            job.finished_at = _now()
            session.add(job)
            session.commit()
        logger.info(f"Job {job_id[:16]} completed")
        await self.events.publish("job.completed", {"job_id": job_id, "result": result})
        self._prune()

    async def _record_failure(self, job_id: str, error: str):
        with Session(self.engine) as session:
            job = session.get(QueueJob, job_id)
            job.attempts_made += 1
            job.error = error
            attempts_made = job.attempts_made
            if attempts_made >= job.max_attempts:
                job.status = JobStatus.FAILED
                job.finished_at = _now()
                parked = True
            else:
                delay = backoff_seconds(self.options.backoff_delay, attempts_made)
                job.status = JobStatus.DELAYED
                job.next_attempt_at = _now() + timedelta(seconds=delay)
                parked = False
            session.add(job)
            session.commit()

        if parked:
            logger.error(f"Job {job_id[:16]} failed permanently after {attempts_made} attempts: {error}")
            await self.events.publish(
                "job.failed", {"job_id": job_id, "error": error, "attempts": attempts_made}
            )
            self._prune()
        else:
            logger.warning(f"Job {job_id[:16]} attempt {attempts_made} failed, retrying in {delay:.2f}s: {error}")
            await self.events.publish(
                "job.retrying",
                {"job_id": job_id, "error": error, "attempts": attempts_made, "delay": delay},
            )

    def _prune(self):
        """Apply retention limits to finished jobs."""
        opts = self.options
        cutoff = _now() - timedelta(seconds=opts.remove_on_complete_age)
        with Session(self.engine) as session:
            stale = select(QueueJob.id).where(
                QueueJob.queue_name == opts.name,
                QueueJob.status == JobStatus.COMPLETED,
                QueueJob.finished_at < cutoff,
            )
            ids = set(session.exec(stale).all())
            for status, keep in ((JobStatus.COMPLETED, opts.remove_on_complete_count),
                                 (JobStatus.FAILED, opts.remove_on_fail_count)):
                overflow = (
                    select(QueueJob.id)
                    .where(QueueJob.queue_name == opts.name, QueueJob.status == status)
                    .order_by(QueueJob.finished_at.desc())
                    .offset(keep)
                )
                ids.update(session.exec(overflow).all())
            if ids:
                session.exec(delete(QueueJob).where(QueueJob.id.in_(ids)))  # type: ignore[attr-defined]
                session.commit()
                logger.debug(f"Pruned {len(ids)} finished job(s)")
