import asyncio

import pytest

from modstream.scheduler.periodic_task import PeriodicTask


@pytest.mark.asyncio
async def test_run_once_supports_sync_and_async_jobs() -> None:
    async def async_job() -> str:
        return "async"

    sync_task = PeriodicTask("SYNC", lambda: 3, lambda: 1)
    async_task = PeriodicTask("ASYNC", async_job, lambda: 1)

    assert await sync_task.run_once() == 3
    assert await async_task.run_once() == "async"
    assert sync_task.runs == 1


@pytest.mark.asyncio
async def test_loop_runs_repeatedly_until_shutdown() -> None:
    calls = []
    task = PeriodicTask("TICK", lambda: calls.append(1), lambda: 0.01)

    task.start()
    await asyncio.sleep(0.1)
    assert task.running
    await task.shutdown()

    assert not task.running
    assert len(calls) >= 2
    runs = task.runs
    await asyncio.sleep(0.05)
    assert task.runs == runs


@pytest.mark.asyncio
async def test_failing_job_does_not_stop_loop() -> None:
    attempts = {"count": 0}

    def flaky() -> None:
        attempts["count"] += 1
        raise RuntimeError("transient")

    task = PeriodicTask("FLAKY", flaky, lambda: 0.01)
    task.start()
    await asyncio.sleep(0.1)
    await task.shutdown()

    assert attempts["count"] >= 2


@pytest.mark.asyncio
async def test_start_twice_keeps_single_task() -> None:
    task = PeriodicTask("ONCE", lambda: None, lambda: 10)

    task.start()
    first = task._task
    task.start()

    assert task._task is first
    await task.shutdown()


@pytest.mark.asyncio
async def test_shutdown_without_start_is_noop() -> None:
    await PeriodicTask("IDLE", lambda: None, lambda: 1).shutdown()
