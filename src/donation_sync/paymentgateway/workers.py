"""Bounded, keyed asyncio worker pool.

Every job is submitted with an ordering key. The key is hashed to one of N
workers, each with its own bounded queue, so jobs sharing a key run one at a
time in submission order while unrelated keys run concurrently. A full queue
rejects the job immediately (asyncio.QueueFull) instead of blocking the
caller.
"""

from __future__ import annotations

import asyncio
import zlib
from collections.abc import Awaitable, Callable

import structlog

from src.donation_sync.core.monitoring import webhook_queue_depth

logger = structlog.get_logger(__name__)

Job = Callable[[], Awaitable[None]]


class KeyedWorkerPool:
    """Fixed set of asyncio workers fed by per-worker bounded queues.

    Args:
        worker_count: Number of workers (and queues).
        queue_size: Maximum pending jobs per worker.
    """

    def __init__(self, worker_count: int = 4, queue_size: int = 1000) -> None:
        if worker_count < 1:
            raise ValueError("worker_count must be at least 1")
        self._queues: list[asyncio.Queue[tuple[str, Job]]] = [
            asyncio.Queue(maxsize=queue_size) for _ in range(worker_count)
        ]
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def worker_for(self, key: str) -> int:
        """Stable worker index for ``key`` (crc32, not the salted builtin hash)."""
        return zlib.crc32(key.encode("utf-8")) % len(self._queues)

    def depth(self) -> int:
        return sum(q.qsize() for q in self._queues)

    def submit(self, key: str, job: Job) -> None:
        """Queue ``job`` behind every earlier job with the same key.

        Raises:
            asyncio.QueueFull: The worker owning ``key`` has no free slot.
        """
        self._queues[self.worker_for(key)].put_nowait((key, job))
        webhook_queue_depth.set(self.depth())

    async def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._run(index), name=f"webhook-worker-{index}")
            for index in range(len(self._queues))
        ]
        logger.info("workers.started", worker_count=len(self._queues))

    async def join(self) -> None:
        """Wait until every queued job has finished."""
        for queue in self._queues:
            await queue.join()

    async def stop(self, drain: bool = True) -> None:
        """Stop all workers, by default after finishing queued jobs."""
        if drain and self._tasks:
            await self.join()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("workers.stopped", pending=self.depth())

    async def _run(self, index: int) -> None:
        queue = self._queues[index]
        while True:
            key, job = await queue.get()
            webhook_queue_depth.set(self.depth())
            try:
                await job()
            except Exception as exc:
                # Jobs handle their own failures; this only guards the worker loop.
                logger.error(
                    "workers.job_failed",
                    worker=index,
                    key=key,
                    error=str(exc),
                    exc_info=True,
                )
            finally:
                queue.task_done()
