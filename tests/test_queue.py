"""Tests for the durable signal queue."""

import asyncio
from unittest.mock import AsyncMock

import pytest
from sqlmodel import Session

from signal_trader.engine.events import WILDCARD, EventBus
from signal_trader.engine.processor import SignalJobResult
from signal_trader.engine.queue import QueueOptions, RateLimiter, SignalQueue, backoff_seconds
from signal_trader.models.queue_job import JobStatus, QueueJob
from signal_trader.schemas.signal import RawSignal


def _raw(message_id="1") -> RawSignal:
    return RawSignal.build(content="LONG BTC 45000 SL:44000 TP:47000", message_id=message_id)


class Recorder:
    """Collects bus events and lets a test wait for one."""

    def __init__(self, bus: EventBus):
        self.events: list[tuple[str, dict]] = []
        self._changed = asyncio.Event()
        bus.subscribe(WILDCARD, self._on_event)

    async def _on_event(self, topic, payload):
        self.events.append((topic, payload))
        self._changed.set()

    def topics(self) -> list[str]:
        return [t for t, _ in self.events]

    async def wait_for(self, topic: str, count: int = 1, timeout: float = 3.0):
        async def _wait():
            while self.topics().count(topic) < count:
                self._changed.clear()
                await self._changed.wait()
        await asyncio.wait_for(_wait(), timeout)


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def make_queue(engine, bus):
    queues = []

    def _make(**overrides):
        opts = dict(attempts=3, backoff_delay=0.01, poll_interval=0.01, limiter_max=100, limiter_duration=1.0)
        opts.update(overrides)
        queue = SignalQueue(engine, bus, QueueOptions(**opts))
        queues.append(queue)
        return queue

    return _make


# ---------------------------------------------------------------------------
# 1. Producer side
# ---------------------------------------------------------------------------

class TestAdd:
    @pytest.mark.asyncio
    async def test_same_hash_is_added_once(self, make_queue, bus):
        recorder = Recorder(bus)
        queue = make_queue()
        raw = _raw()

        assert await queue.add(raw) is True
        assert await queue.add(raw) is False

        stats = await queue.get_stats()
        assert stats[JobStatus.WAITING] == 1
        assert recorder.topics() == ["job.waiting"]

        job = await queue.get_job(raw.hash)
        assert job.data["hash"] == raw.hash
        assert job.max_attempts == 3

    @pytest.mark.asyncio
    async def test_stats_start_at_zero(self, make_queue):
        stats = await make_queue().get_stats()
        assert stats == {"waiting": 0, "active": 0, "delayed": 0, "completed": 0, "failed": 0}


# ---------------------------------------------------------------------------
# 2. Worker side
# ---------------------------------------------------------------------------

class TestWorker:
    @pytest.mark.asyncio
    async def test_successful_job_completes(self, make_queue, bus):
        recorder = Recorder(bus)
        queue = make_queue()
        handler = AsyncMock(return_value=SignalJobResult(success=True, signal_id="s1", executed=True))
        raw = _raw()

        await queue.start(handler)
        await queue.add(raw)
        await recorder.wait_for("job.completed")
        await queue.close()

        job = await queue.get_job(raw.hash)
        assert job.status == JobStatus.COMPLETED
        assert job.attempts_made == 1
        assert job.result["signal_id"] == "s1"
        assert handler.await_args.args[0].id == raw.hash
        assert recorder.topics() == ["job.waiting", "job.started", "job.completed"]

    @pytest.mark.asyncio
    async def test_failures_retry_with_backoff_then_park(self, make_queue, bus):
        recorder = Recorder(bus)
        queue = make_queue(attempts=3)
        handler = AsyncMock(side_effect=RuntimeError("db down"))
        raw = _raw()

        await queue.start(handler)
        await queue.add(raw)
        await recorder.wait_for("job.failed")
        await queue.close()

        assert handler.await_count == 3
        assert recorder.topics().count("job.retrying") == 2
        retry_delays = [p["delay"] for t, p in recorder.events if t == "job.retrying"]
        assert retry_delays == [pytest.approx(0.01), pytest.approx(0.02)]

        job = await queue.get_job(raw.hash)
        assert job.status == JobStatus.FAILED
        assert job.attempts_made == 3
        assert job.error == "db down"

    @pytest.mark.asyncio
    async def test_unsuccessful_result_counts_as_failure(self, make_queue, bus):
        recorder = Recorder(bus)
        queue = make_queue(attempts=1)
        handler = AsyncMock(return_value=SignalJobResult(success=False, error="Processing paused"))

        await queue.start(handler)
        await queue.add(_raw())
        await recorder.wait_for("job.failed")
        await queue.close()

        failed = [p for t, p in recorder.events if t == "job.failed"]
        assert failed[0]["error"] == "Processing paused"

    @pytest.mark.asyncio
    async def test_retry_job_requeues_parked_failure(self, make_queue, bus):
        recorder = Recorder(bus)
        queue = make_queue(attempts=1)
        handler = AsyncMock(side_effect=[RuntimeError("boom"), SignalJobResult(success=True)])
        raw = _raw()

        await queue.start(handler)
        await queue.add(raw)
        await recorder.wait_for("job.failed")

        assert await queue.retry_job(raw.hash) is True
        await recorder.wait_for("job.completed")
        await queue.close()

        job = await queue.get_job(raw.hash)
        assert job.status == JobStatus.COMPLETED
        assert job.error is None

    @pytest.mark.asyncio
    async def test_retry_job_ignores_non_failed(self, make_queue):
        queue = make_queue()
        raw = _raw()
        await queue.add(raw)
        assert await queue.retry_job(raw.hash) is False
        assert await queue.retry_job("unknown") is False

    @pytest.mark.asyncio
    async def test_jobs_run_one_at_a_time(self, make_queue, bus):
        recorder = Recorder(bus)
        queue = make_queue()
        running = 0
        peak = 0

        async def handler(job):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1
            return SignalJobResult(success=True)

        await queue.start(handler)
        for i in range(3):
            await queue.add(_raw(str(i)))
        await recorder.wait_for("job.completed", count=3)
        await queue.close()

        assert peak == 1

    @pytest.mark.asyncio
    async def test_active_jobs_recovered_on_start(self, make_queue, bus, engine):
        recorder = Recorder(bus)
        queue = make_queue()
        raw = _raw()
        with Session(engine) as session:
            session.add(QueueJob(
                id=raw.hash, queue_name=queue.options.name, name="process-signal",
                data=raw.model_dump(mode="json"), status=JobStatus.ACTIVE,
            ))
            session.commit()

        await queue.start(AsyncMock(return_value=SignalJobResult(success=True)))
        await recorder.wait_for("job.completed")
        await queue.close()

        assert (await queue.get_job(raw.hash)).status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_close_lets_in_flight_job_finish(self, make_queue, bus):
        recorder = Recorder(bus)
        queue = make_queue()
        raw = _raw()

        async def slow(job):
            await asyncio.sleep(0.05)
            return SignalJobResult(success=True)

        await queue.start(slow)
        await queue.add(raw)
        await recorder.wait_for("job.started")
        await queue.close()

        assert not queue.is_running
        assert (await queue.get_job(raw.hash)).status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_completed_jobs_pruned_past_retention(self, make_queue, bus):
        recorder = Recorder(bus)
        queue = make_queue(remove_on_complete_count=1)

        await queue.start(AsyncMock(return_value=SignalJobResult(success=True)))
        for i in range(3):
            await queue.add(_raw(str(i)))
        await recorder.wait_for("job.completed", count=3)
        await queue.close()

        assert (await queue.get_stats())[JobStatus.COMPLETED] == 1


# ---------------------------------------------------------------------------
# 3. Rate limiting and backoff
# ---------------------------------------------------------------------------

class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


def test_rate_limiter_rolling_window():
    clock = FakeClock()
    limiter = RateLimiter(max_jobs=2, duration=10.0, clock=clock)

    assert limiter.try_acquire() == 0
    clock.now += 4
    assert limiter.try_acquire() == 0
    assert limiter.try_acquire() == pytest.approx(6.0)

    clock.now += 6
    assert limiter.try_acquire() == 0


def test_backoff_doubles():
    assert [backoff_seconds(1.0, n) for n in (1, 2, 3)] == [1.0, 2.0, 4.0]
