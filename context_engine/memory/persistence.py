"""Best-effort background persistence.

Work that must not add latency to a response (conversation-entry writes,
behavior-model updates) is queued here after the response is composed.
Each job is retried with exponential backoff; a job that keeps failing is
logged and dropped. Failures never reach the request that queued them.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

JobFactory = Callable[[], Awaitable[Any]]


@dataclass
class PersistenceJob:
    """A named unit of deferred work."""

    name: str
    factory: JobFactory
    context: dict[str, Any] = field(default_factory=dict)
    attempts: int = 0


class PersistenceQueue:
    """Single-worker asyncio queue with an independent retry policy.

    Args:
        max_attempts: Attempts per job before it is dropped.
        backoff_seconds: Delay before the first retry; doubles each retry.
    """

    def __init__(self, max_attempts: int = 3, backoff_seconds: float = 0.5) -> None:
        self._max_attempts = max(1, max_attempts)
        self._backoff_seconds = backoff_seconds
        self._queue: asyncio.Queue[PersistenceJob | None] = asyncio.Queue()
        self._worker: asyncio.Task[None] | None = None
        self._processed = 0
        self._failed = 0

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def get_stats(self) -> dict[str, Any]:
        return {
            "processed": self._processed,
            "failed": self._failed,
            "pending": self._queue.qsize(),
            "running": self.running,
        }

    async def start(self) -> None:
        """Start the background worker (idempotent)."""
        if self.running:
            return
        self._worker = asyncio.create_task(self._run(), name="persistence-queue")
        logger.info("Persistence queue started")

    async def stop(self) -> None:
        """Drain queued jobs, then stop the worker."""
        if not self.running:
            return
        await self._queue.put(None)
        assert self._worker is not None
        await self._worker
        self._worker = None
        logger.info("Persistence queue stopped", extra=self.get_stats())

    def enqueue(self, name: str, factory: JobFactory, **context: Any) -> None:
        """Queue a job. *factory* is called once per attempt to build a fresh awaitable."""
        self._queue.put_nowait(PersistenceJob(name=name, factory=factory, context=context))

    async def join(self) -> None:
        """Wait until every queued job has been handled."""
        await self._queue.join()

    async def _run(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                if job is None:
                    return
                await self._process(job)
            finally:
                self._queue.task_done()

    async def _process(self, job: PersistenceJob) -> None:
        delay = self._backoff_seconds
        while job.attempts < self._max_attempts:
            job.attempts += 1
            try:
                await job.factory()
            except Exception as e:
                if job.attempts >= self._max_attempts:
                    self._failed += 1
                    logger.error(
                        "Persistence job dropped after %d attempts: %s",
                        job.attempts,
                        e,
                        extra={"job": job.name, **job.context},
                    )
                    return
                logger.warning(
                    "Persistence job failed, retrying in %.2fs",
                    delay,
                    extra={"job": job.name, "attempt": job.attempts, **job.context},
                )
                await asyncio.sleep(delay)
                delay *= 2
            else:
                self._processed += 1
                return
