"""Tests for Stopable and TaskWorker."""

import asyncio

import pytest

from lanpeers.util.stopable import Stopable, TaskWorker


class GoodStopable(Stopable):
    """A concrete implementation of Stopable that correctly implements stop."""

    async def stop(self) -> None:
        pass


class BadStopable(Stopable):
    """A concrete implementation of Stopable that does not implement stop."""


class TickingWorker(TaskWorker):
    """Counts ticks every `interval` seconds until stopped."""

    def __init__(self, interval: float) -> None:
        super().__init__("ticking-worker")
        self.interval = interval
        self.ticks = 0

    async def _run(self) -> None:
        while True:
            self.ticks += 1
            if await self.wait_or_stopped(self.interval):
                return


class BlockedWorker(TaskWorker):
    """Blocks forever on an await that only cancellation can interrupt."""

    def __init__(self) -> None:
        super().__init__("blocked-worker")
        self.entered = asyncio.Event()

    async def _run(self) -> None:
        self.entered.set()
        await asyncio.Event().wait()


class SelfStoppingWorker(TaskWorker):
    """Stops itself from inside its own task after the first tick."""

    def __init__(self) -> None:
        super().__init__("self-stopping-worker")
        self.ticks = 0

    async def _run(self) -> None:
        while True:
            self.ticks += 1
            await self.stop()
            if await self.wait_or_stopped(3600.0):
                return


class SlowExitWorker(TaskWorker):
    """Takes a while to finish once cancelled."""

    def __init__(self) -> None:
        super().__init__("slow-exit-worker")
        self.entered = asyncio.Event()

    async def _run(self) -> None:
        self.entered.set()
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            await asyncio.sleep(0.2)
            raise


class CrashingWorker(TaskWorker):

    def __init__(self) -> None:
        super().__init__("crashing-worker")

    async def _run(self) -> None:
        raise ValueError("worker crashed")


def test_good_stopable_instantiation():
    """Tests that GoodStopable can be instantiated."""
    assert isinstance(GoodStopable(), Stopable)


def test_bad_stopable_instantiation():
    """Tests that BadStopable cannot be instantiated due to missing stop method."""
    with pytest.raises(TypeError):
        BadStopable()


@pytest.mark.asyncio
async def test_worker_runs_until_stopped():
    worker = TickingWorker(0.01)
    assert not worker.is_running
    worker.start()
    assert worker.is_running
    assert worker.name == "ticking-worker"

    await asyncio.sleep(0.05)
    await worker.stop()

    assert worker.ticks >= 2
    assert not worker.is_running
    assert worker.is_stopping


@pytest.mark.asyncio
async def test_stop_wakes_timer_wait():
    worker = TickingWorker(3600.0)
    worker.start()
    await asyncio.sleep(0)
    await asyncio.wait_for(worker.stop(), 1.0)
    assert worker.ticks == 1


@pytest.mark.asyncio
async def test_stop_cancels_blocking_await():
    worker = BlockedWorker()
    worker.start()
    await asyncio.wait_for(worker.entered.wait(), 1.0)
    await asyncio.wait_for(worker.stop(), 1.0)
    assert not worker.is_running


@pytest.mark.asyncio
async def test_start_twice_raises():
    worker = TickingWorker(1.0)
    worker.start()
    try:
        with pytest.raises(RuntimeError):
            worker.start()
    finally:
        await worker.stop()


@pytest.mark.asyncio
async def test_stop_before_start_is_noop():
    worker = TickingWorker(1.0)
    await worker.stop()
    assert not worker.is_running


@pytest.mark.asyncio
async def test_stop_is_idempotent():
    worker = TickingWorker(1.0)
    worker.start()
    await worker.stop()
    await worker.stop()


@pytest.mark.asyncio
async def test_unexpected_error_logged(caplog):
    worker = CrashingWorker()
    worker.start()
    await asyncio.sleep(0.01)

    assert not worker.is_running
    assert "crashing-worker failed unexpectedly" in caplog.text
    await worker.stop()


@pytest.mark.asyncio
async def test_stop_from_inside_run():
    worker = SelfStoppingWorker()
    worker.start()

    for _ in range(100):
        if not worker.is_running:
            break
        await asyncio.sleep(0.01)

    assert not worker.is_running
    assert worker.is_stopping
    assert worker.ticks == 1
    await worker.stop()


@pytest.mark.asyncio
async def test_cancelled_caller_of_stop_stays_cancelled():
    worker = SlowExitWorker()
    worker.start()
    await asyncio.wait_for(worker.entered.wait(), 1.0)

    stopper = asyncio.create_task(worker.stop())
    await asyncio.sleep(0.05)
    stopper.cancel()

    with pytest.raises(asyncio.CancelledError):
        await stopper
    assert stopper.cancelled()
    await worker.stop()
    assert not worker.is_running
