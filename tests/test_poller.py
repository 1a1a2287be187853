import asyncio

import httpx

from splat_scanner.work.models import JobStatus
from splat_scanner.work.poller import PollScheduler


def _processing(stage="reconstructing"):
    return {"status": "processing", "stage": stage, "progress": 10, "message": "working"}


async def test_start_is_idempotent(client, server):
    server.statuses["t1"] = [_processing()]
    scheduler = PollScheduler(client, lambda tid, job: None, interval=0.01)

    assert scheduler.start("t1") is True
    assert scheduler.start("t1") is False
    assert scheduler.start("t1") is False
    assert scheduler.active() == ["t1"]

    await scheduler.shutdown()
    assert scheduler.active() == []


async def test_ticks_forward_results(client, server, wait_until):
    server.statuses["t1"] = [_processing("sfm"), _processing("training")]
    results = []
    scheduler = PollScheduler(client, lambda tid, job: results.append((tid, job)), interval=0.01)

    scheduler.start("t1")
    await wait_until(lambda: len(results) >= 2)
    await scheduler.shutdown()

    assert [tid for tid, _ in results[:2]] == ["t1", "t1"]
    assert [job.stage for _, job in results[:2]] == ["sfm", "training"]
    assert all(job.status is JobStatus.PROCESSING for _, job in results)


async def test_stop_cancels_future_ticks(client, server, wait_until):
    server.statuses["t1"] = [_processing()]
    results = []
    scheduler = PollScheduler(client, lambda tid, job: results.append(job), interval=0.01)

    scheduler.start("t1")
    await wait_until(lambda: len(results) >= 1)
    assert scheduler.stop("t1") is True
    seen = len(results)
    await asyncio.sleep(0.05)

    assert len(results) == seen
    assert not scheduler.is_running("t1")
    assert scheduler.stop("t1") is False


async def test_tick_failures_keep_polling(client, server, wait_until):
    server.statuses["t1"] = [
        httpx.Response(500, json={"error": "busy"}),
        httpx.ConnectError("reset by peer"),
        {"status": "paused", "progress": 0, "message": ""},
        _processing(),
    ]
    results = []
    scheduler = PollScheduler(client, lambda tid, job: results.append(job), interval=0.01)

    scheduler.start("t1")
    await wait_until(lambda: len(results) >= 1)
    assert scheduler.is_running("t1")
    await scheduler.shutdown()

    assert len(server.calls("GET", "/status/t1")) >= 4


async def test_late_result_after_stop_is_discarded(client, server, wait_until):
    server.statuses["t1"] = [_processing()]
    server.status_started = asyncio.Event()
    server.status_gate = asyncio.Event()
    results = []
    scheduler = PollScheduler(client, lambda tid, job: results.append(job), interval=0.01)

    scheduler.start("t1")
    await asyncio.wait_for(server.status_started.wait(), timeout=2)
    scheduler.stop("t1")
    server.status_gate.set()
    await asyncio.sleep(0.05)

    assert results == []


async def test_restart_after_stop_creates_fresh_entry(client, server, wait_until):
    server.statuses["t1"] = [_processing()]
    results = []
    scheduler = PollScheduler(client, lambda tid, job: results.append(job), interval=0.01)

    scheduler.start("t1")
    scheduler.stop("t1")
    assert scheduler.start("t1") is True
    await wait_until(lambda: len(results) >= 1)
    assert scheduler.active() == ["t1"]
    await scheduler.shutdown()


async def test_failing_result_handler_keeps_polling(client, server, wait_until):
    server.statuses["t1"] = [_processing()]
    seen = []

    def handler(tid, job):
        seen.append(job)
        if len(seen) == 1:
            raise OSError(28, "No space left on device")

    scheduler = PollScheduler(client, handler, interval=0.01)
    scheduler.start("t1")
    await wait_until(lambda: len(seen) >= 3)
    assert scheduler.is_running("t1")
    await scheduler.shutdown()
