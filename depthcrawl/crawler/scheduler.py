"""
Crawl scheduler: a fixed-size pool of asyncio workers pulling crawl tasks
from one FIFO queue.

The scheduler knows nothing about pages or links. Each dispatched task is
handed to a handler coroutine, which may submit further tasks back to the
scheduler. Outstanding work is counted per agent so an agent can wait for
its whole subtree to finish.
"""

import asyncio
import logging
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional

from .errors import SchedulerClosed
from .tasks import CrawlTask, TaskState
from ..utils.monitoring import CrawlerMonitor


TaskHandler = Callable[[CrawlTask, 'CrawlScheduler'], Awaitable[None]]


@dataclass
class SchedulerStats:
    """Task counters for one scheduler."""
    start_time: float
    submitted: int = 0
    succeeded: int = 0
    failed: int = 0
    rejected: int = 0

    @property
    def completed(self) -> int:
        return self.succeeded + self.failed

    @property
    def elapsed_time(self) -> float:
        return time.time() - self.start_time

    @property
    def tasks_per_minute(self) -> float:
        elapsed_minutes = self.elapsed_time / 60
        return self.completed / elapsed_minutes if elapsed_minutes > 0 else 0


class CrawlScheduler:
    """
    Bounded worker pool for crawl tasks.

    At most ``max_workers`` handlers run at once; everything else waits in
    the queue in submission order. Counter updates happen between awaits,
    which makes them atomic under the event loop.
    """

    def __init__(self, handler: TaskHandler, max_workers: int = 8,
                 monitor: Optional[CrawlerMonitor] = None):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")

        self.handler = handler
        self.max_workers = max_workers
        self.monitor = monitor
        self.logger = logging.getLogger(__name__)

        self.queue: asyncio.Queue = asyncio.Queue()
        self.workers: List[asyncio.Task] = []
        self.active_tasks = 0
        self.stats = SchedulerStats(start_time=time.time())

        self._closed = False
        self._stopped = asyncio.Event()
        self._outstanding: Dict[int, int] = defaultdict(int)
        self._agent_idle: Dict[int, asyncio.Event] = {}
        self._agent_stats: Dict[int, Dict[str, int]] = defaultdict(
            lambda: {'submitted': 0, 'succeeded': 0, 'failed': 0}
        )

    @property
    def is_closed(self) -> bool:
        return self._closed

    def start(self):
        """Spawn the worker pool. Calling it again is a no-op."""
        if self.workers:
            return

        for i in range(self.max_workers):
            worker = asyncio.create_task(self._worker(f"worker-{i}"))
            self.workers.append(worker)

        self.logger.info(f"Scheduler started with {self.max_workers} workers")

    def submit(self, task: CrawlTask) -> asyncio.Future:
        """
        Queue a task for execution.

        Returns:
            Future resolved with the task once it reaches a terminal state

        Raises:
            SchedulerClosed: if shutdown has begun
        """
        if self._closed:
            self.stats.rejected += 1
            raise SchedulerClosed(f"Scheduler is shut down, rejected {task.url}")

        handle = asyncio.get_running_loop().create_future()
        task.state = TaskState.PENDING

        self._outstanding[task.agent_id] += 1
        self._idle_event(task.agent_id).clear()
        self._agent_stats[task.agent_id]['submitted'] += 1
        self.stats.submitted += 1

        self.queue.put_nowait((task, handle))
        if self.monitor:
            self.monitor.update_queue_size(self.queue.qsize())

        self.logger.debug(f"Queued {task.url} (agent {task.agent_id}, depth {task.depth})")
        return handle

    def outstanding(self, agent_id: int) -> int:
        """Number of this agent's tasks that are queued or running."""
        return self._outstanding.get(agent_id, 0)

    async def wait_agent(self, agent_id: int):
        """Block until every task submitted for ``agent_id`` has finished."""
        await self._idle_event(agent_id).wait()

    async def join(self):
        """Wait until the queue is empty and no task is running."""
        await self.queue.join()

    async def shutdown(self):
        """
        Stop accepting tasks, drain queued and in-flight work, then stop
        the workers. In-flight fetches are not cancelled.
        """
        if self._closed:
            await self._stopped.wait()
            return

        self._closed = True
        self.logger.info("Scheduler shutting down, draining queue...")

        if not self.workers and not self.queue.empty():
            self.start()

        await self.queue.join()
        await self._cleanup_workers()

        self._stopped.set()
        self.logger.info(
            f"Scheduler stopped: {self.stats.succeeded} succeeded, "
            f"{self.stats.failed} failed, {self.stats.rejected} rejected"
        )

    def _idle_event(self, agent_id: int) -> asyncio.Event:
        event = self._agent_idle.get(agent_id)
        if event is None:
            event = asyncio.Event()
            if self._outstanding.get(agent_id, 0) == 0:
                event.set()
            self._agent_idle[agent_id] = event
        return event

    async def _worker(self, worker_id: str):
        """Worker coroutine that runs queued tasks one at a time."""
        self.logger.debug(f"Worker {worker_id} started")

        while True:
            task, handle = await self.queue.get()
            try:
                await self._run_task(task, worker_id)
            finally:
                self._finish_task(task, handle)
                self.queue.task_done()

    async def _run_task(self, task: CrawlTask, worker_id: str):
        """Run the handler for one task; failures stay with this task."""
        task.mark_running()
        self.active_tasks += 1
        if self.monitor:
            self.monitor.update_active_workers(self.active_tasks)

        try:
            await self.handler(task, self)
        except asyncio.CancelledError:
            task.mark_failed("Cancelled")
            raise
        except Exception as e:
            self.logger.error(f"Worker {worker_id} error processing {task.url}: {e}",
                              exc_info=True)
            task.mark_failed(f"Unexpected error: {e}")
        else:
            if not task.state.is_terminal:
                task.mark_succeeded()
        finally:
            self.active_tasks -= 1
            if self.monitor:
                self.monitor.update_active_workers(self.active_tasks)

    def _finish_task(self, task: CrawlTask, handle: asyncio.Future):
        agent_stats = self._agent_stats[task.agent_id]
        if task.state == TaskState.SUCCEEDED:
            self.stats.succeeded += 1
            agent_stats['succeeded'] += 1
        else:
            self.stats.failed += 1
            agent_stats['failed'] += 1

        self._outstanding[task.agent_id] -= 1
        if self._outstanding[task.agent_id] == 0:
            self._idle_event(task.agent_id).set()

        if not handle.done():
            handle.set_result(task)

        if self.monitor:
            self.monitor.record_task_finished(task.state.value)
            self.monitor.update_queue_size(self.queue.qsize())

    async def _cleanup_workers(self):
        """Cancel and cleanup worker tasks."""
        if self.workers:
            for worker in self.workers:
                if not worker.done():
                    worker.cancel()

            await asyncio.gather(*self.workers, return_exceptions=True)
            self.workers.clear()

    def agent_stats(self, agent_id: int) -> Dict[str, int]:
        """Submitted/succeeded/failed counts for one agent."""
        return dict(self._agent_stats[agent_id])

    def get_stats(self) -> Dict:
        """Get current scheduler statistics."""
        return {
            'submitted': self.stats.submitted,
            'succeeded': self.stats.succeeded,
            'failed': self.stats.failed,
            'rejected': self.stats.rejected,
            'queued': self.queue.qsize(),
            'active': self.active_tasks,
            'workers': len(self.workers),
            'elapsed_time': self.stats.elapsed_time,
            'tasks_per_minute': self.stats.tasks_per_minute,
            'is_closed': self._closed
        }
