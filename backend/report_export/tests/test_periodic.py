import anyio
import pytest

from report_export.services.periodic import PeriodicTask


@pytest.mark.anyio
async def test_run_once_accepts_sync_and_async_ticks():
    calls = []

    async def async_tick():
        calls.append("async")
        return 1

    sync_task = PeriodicTask("sync", 10, lambda: calls.append("sync") or 2)
    async_task = PeriodicTask("async", 10, async_tick)

    assert await sync_task.run_once() == 2
    assert await async_task.run_once() == 1
    assert calls == ["sync", "async"]
    assert sync_task.ticks == 1


@pytest.mark.anyio
async def test_start_and_stop():
    calls = []
    task = PeriodicTask("fast", 0.01, lambda: calls.append(1))

    task.start()
    assert task.running
    await anyio.sleep(0.1)
    await task.stop()

    assert not task.running
    assert len(calls) >= 1
    seen = len(calls)
    await anyio.sleep(0.03)
    assert len(calls) == seen


@pytest.mark.anyio
async def test_failing_tick_does_not_kill_the_loop():
    calls = []

    def tick():
        calls.append(1)
        raise RuntimeError("boom")

    task = PeriodicTask("flaky", 0.01, tick)
    task.start()
    await anyio.sleep(0.1)
    assert task.running
    await task.stop()

    assert len(calls) >= 2


@pytest.mark.anyio
async def test_first_tick_waits_one_interval():
    calls = []
    task = PeriodicTask("slow", 10, lambda: calls.append(1))

    task.start()
    await anyio.sleep(0.05)
    await task.stop()

    assert calls == []
    assert task.ticks == 0


@pytest.mark.anyio
async def test_stop_before_start_is_a_no_op():
    task = PeriodicTask("idle", 1, lambda: None)
    await task.stop()
    assert not task.running


def test_interval_must_be_positive():
    with pytest.raises(ValueError):
        PeriodicTask("bad", 0, lambda: None)
