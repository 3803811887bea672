# tests/test_task_queue.py
import asyncio

import pytest
from playwright.async_api import Error as PlaywrightError

from core.exceptions import BrowserUnavailable, QueueFull
from models.scrape import ScrapeKind
from services.browser.supervisor import BrowserSupervisor
from services.scraper.task_queue import TaskQueue

from conftest import CLOSED_MESSAGE, FakeBackend

KIND = ScrapeKind.ARTIST_LISTENERS


@pytest.mark.asyncio
async def test_active_count_never_exceeds_bound(started_supervisor):
    queue = TaskQueue(started_supervisor, max_concurrent=2)
    peak = 0

    async def work(n):
        nonlocal peak
        peak = max(peak, queue.active_count)
        await asyncio.sleep(0.01 * (n % 3 + 1))
        return n

    try:
        results = await asyncio.gather(
            *(queue.submit(KIND, str(n), lambda n=n: work(n)) for n in range(8))
        )
    finally:
        await queue.stop()

    assert results == list(range(8))
    assert peak == 2
    assert queue.active_count == 0


@pytest.mark.asyncio
async def test_tasks_admitted_in_submission_order(started_supervisor):
    queue = TaskQueue(started_supervisor, max_concurrent=3)
    admitted = []
    completed = []
    delays = [0.06, 0.01, 0.04, 0.02, 0.05, 0.01, 0.03]

    async def work(n):
        admitted.append(n)
        await asyncio.sleep(delays[n])
        completed.append(n)

    try:
        await asyncio.gather(
            *(queue.submit(KIND, str(n), lambda n=n: work(n)) for n in range(len(delays)))
        )
    finally:
        await queue.stop()

    assert admitted == list(range(len(delays)))
    assert completed != admitted


@pytest.mark.asyncio
async def test_backlog_bound_rejects_with_queue_full(started_supervisor):
    queue = TaskQueue(started_supervisor, max_concurrent=1, max_size=2)
    release = asyncio.Event()

    async def blocked():
        await release.wait()
        return "done"

    try:
        running = asyncio.ensure_future(queue.submit(KIND, "a", blocked))
        await asyncio.sleep(0.01)                  # "a" now holds the only slot
        waiting = [asyncio.ensure_future(queue.submit(KIND, s, blocked)) for s in "bc"]
        await asyncio.sleep(0.01)
        assert queue.length == 2

        with pytest.raises(QueueFull):
            await queue.submit(KIND, "d", blocked)

        release.set()
        assert await running == "done"
        assert await asyncio.gather(*waiting) == ["done", "done"]
    finally:
        await queue.stop()


@pytest.mark.asyncio
async def test_failure_rejects_only_that_task(started_supervisor):
    queue = TaskQueue(started_supervisor, max_concurrent=2)

    async def fail():
        raise ValueError("selector exploded")

    async def ok():
        return 1

    try:
        with pytest.raises(ValueError):
            await queue.submit(KIND, "x", fail)
        assert await queue.submit(KIND, "y", ok) == 1
    finally:
        await queue.stop()
    assert queue.active_count == 0


@pytest.mark.asyncio
async def test_browser_fault_restarts_and_retries(backend, started_supervisor):
    queue = TaskQueue(started_supervisor, max_concurrent=1, max_attempts=2)
    used = []

    async def work():
        browser = started_supervisor.handle.browser
        used.append(browser)
        if len(used) == 1:
            browser.crash()
            raise PlaywrightError(CLOSED_MESSAGE)
        return "recovered"

    try:
        assert await queue.submit(KIND, "x", work) == "recovered"
    finally:
        await queue.stop()

    assert len(backend.browsers) == 2
    assert used == backend.browsers


@pytest.mark.asyncio
async def test_non_browser_errors_are_not_retried(backend, started_supervisor):
    queue = TaskQueue(started_supervisor, max_concurrent=1, max_attempts=3)
    calls = 0

    async def work():
        nonlocal calls
        calls += 1
        raise ValueError("nope")

    try:
        with pytest.raises(ValueError):
            await queue.submit(KIND, "x", work)
    finally:
        await queue.stop()
    assert calls == 1
    assert len(backend.browsers) == 1


@pytest.mark.asyncio
async def test_missing_browser_is_started_before_running(backend):
    supervisor = BrowserSupervisor(backend)
    queue = TaskQueue(supervisor, max_concurrent=1)

    async def work():
        return supervisor.is_running

    try:
        assert await queue.submit(KIND, "x", work) is True
    finally:
        await queue.stop()
        await supervisor.shutdown()
    assert len(backend.browsers) == 1


@pytest.mark.asyncio
async def test_browser_unavailable_when_relaunch_fails():
    supervisor = BrowserSupervisor(FakeBackend(fail_launches=5))
    queue = TaskQueue(supervisor, max_concurrent=1)
    ran = False

    async def work():
        nonlocal ran
        ran = True

    try:
        with pytest.raises(BrowserUnavailable):
            await queue.submit(KIND, "x", work)
    finally:
        await queue.stop()
    assert ran is False


@pytest.mark.asyncio
async def test_stop_cancels_waiting_tasks(started_supervisor):
    queue = TaskQueue(started_supervisor, max_concurrent=1)
    never = asyncio.Event()

    running = asyncio.ensure_future(queue.submit(KIND, "a", never.wait))
    waiting = asyncio.ensure_future(queue.submit(KIND, "b", never.wait))
    await asyncio.sleep(0.01)

    await queue.stop()
    with pytest.raises(asyncio.CancelledError):
        await running
    with pytest.raises(asyncio.CancelledError):
        await waiting
