# services/scraper/task_queue.py
"""
Admission-controlled task queue.

A bounded ``asyncio.Queue`` feeds a fixed pool of workers, one per
concurrency slot, so at most ``max_concurrent`` scrapes run at once and
tasks are admitted strictly in submission order.  Completion order is not
guaranteed.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional

from loguru import logger
from prometheus_client import Counter, Gauge
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt

from core.exceptions import QueueFull, is_browser_fault, sanitize_message
from models.scrape import ScrapeKind
from services.browser.supervisor import BrowserSupervisor

QUEUE_LENGTH = Gauge('scrape_queue_length', 'Tasks waiting for a concurrency slot')
ACTIVE_TASKS = Gauge('scrape_active_tasks', 'Tasks currently holding a concurrency slot')
QUEUE_REJECTIONS = Counter('scrape_queue_rejections_total', 'Submissions rejected with QueueFull')
BROWSER_FAULT_RESTARTS = Counter(
    'browser_fault_restarts_total',
    'Browser restarts triggered by a task failing on a dead browser',
)


class TaskState(str, Enum):
    QUEUED = "queued"
    ADMITTED = "admitted"
    DONE = "done"


@dataclass
class ScrapeTask:
    kind: ScrapeKind
    subject_id: str
    execute: Callable[[], Awaitable[Any]]
    future: asyncio.Future
    enqueued_at: float = field(default_factory=time.monotonic)
    state: TaskState = TaskState.QUEUED


class TaskQueue:
    def __init__(
        self,
        supervisor: BrowserSupervisor,
        max_concurrent: int = 3,
        max_size: int = 100,
        max_attempts: int = 2,
    ):
        self._supervisor = supervisor
        self.max_concurrent = max_concurrent
        self.max_attempts = max_attempts
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_size)
        self._workers: List[asyncio.Task] = []
        self.active_count = 0

    @property
    def length(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return bool(self._workers)

    def start(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(n), name=f"scrape-worker-{n}")
            for n in range(self.max_concurrent)
        ]
        logger.info(f"Task queue started with {self.max_concurrent} workers")

    async def submit(
        self,
        kind: ScrapeKind,
        subject_id: str,
        execute: Callable[[], Awaitable[Any]],
    ) -> Any:
        """
        Enqueue ``execute`` and wait for its outcome.  Raises ``QueueFull``
        immediately when the backlog is at capacity.
        """
        self.start()
        task = ScrapeTask(
            kind=kind,
            subject_id=subject_id,
            execute=execute,
            future=asyncio.get_running_loop().create_future(),
        )
        try:
            self._queue.put_nowait(task)
        except asyncio.QueueFull:
            QUEUE_REJECTIONS.inc()
            logger.warning(f"Queue full, rejecting {kind.value}:{subject_id}")
            raise QueueFull() from None

        QUEUE_LENGTH.set(self._queue.qsize())
        logger.debug(f"Queued {kind.value}:{subject_id} (backlog {self._queue.qsize()})")
        return await task.future

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------
    async def _worker(self, number: int) -> None:
        while True:
            task: ScrapeTask = await self._queue.get()
            QUEUE_LENGTH.set(self._queue.qsize())
            try:
                if task.future.done():
                    # caller went away before admission
                    continue
                await self._process(task)
            finally:
                self._queue.task_done()

    async def _process(self, task: ScrapeTask) -> None:
        task.state = TaskState.ADMITTED
        self.active_count += 1
        ACTIVE_TASKS.set(self.active_count)
        try:
            result = await self._run(task)
        except asyncio.CancelledError:
            if not task.future.done():
                task.future.cancel()
            raise
        except Exception as exc:  # pylint: disable=broad-except
            if not task.future.done():
                task.future.set_exception(exc)
        else:
            if not task.future.done():
                task.future.set_result(result)
        finally:
            task.state = TaskState.DONE
            self.active_count -= 1
            ACTIVE_TASKS.set(self.active_count)

    async def _run(self, task: ScrapeTask) -> Any:
        result = None
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            retry=retry_if_exception(is_browser_fault),
            reraise=True,
        ):
            with attempt:
                handle = await self._supervisor.ensure_started()
                try:
                    result = await task.execute()
                except Exception as exc:
                    if is_browser_fault(exc):
                        BROWSER_FAULT_RESTARTS.inc()
                        logger.warning(
                            f"Browser fault on {task.kind.value}:{task.subject_id}, "
                            f"restarting browser: {sanitize_message(exc)}"
                        )
                        await self._supervisor.start(stale=handle)
                    raise
        return result

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------
    async def stop(self) -> None:
        for worker in self._workers:
            worker.cancel()
        if self._workers:
            await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []

        while not self._queue.empty():
            task: Optional[ScrapeTask] = self._queue.get_nowait()
            if task is not None and not task.future.done():
                task.future.cancel()
            self._queue.task_done()
        QUEUE_LENGTH.set(0)
        logger.info("Task queue stopped")
