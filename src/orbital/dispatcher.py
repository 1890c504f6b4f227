"""Worker pool: claims queue entries and runs them through the executor.

`Dispatcher.run` starts ``concurrency`` worker tasks and one recovery task on
the current event loop. Each worker claims an entry, runs its job under the
wall-clock budget, then drops the entry from the queue. An entry is only
dropped once its job has been handled; if the worker dies first the entry
stays in flight until the recovery task moves it back to pending.

The job store and queue clients are blocking, so every call into them runs in
a worker thread via `asyncio.to_thread`. The event loop may be shared with the
HTTP server when the dispatcher is embedded.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

from orbital.artifacts import ArtifactStorage
from orbital.automation.playwright_session import PlaywrightSessionFactory
from orbital.automation.session import SessionFactory
from orbital.config import OrbitalSettings
from orbital.errors import JobNotFoundError, PersistenceError
from orbital.executor import WorkflowExecutor
from orbital.jobs.state_machine import IllegalTransitionError, JobStatus
from orbital.jobs.store import JobStore
from orbital.queue.base import QueueEntry, WorkQueue

logger = logging.getLogger(__name__)


async def run_with_budget(
    executor: WorkflowExecutor, store: JobStore, job_id: str, budget_seconds: float
) -> None:
    """Run one job; past `budget_seconds` cancel it and mark it as timed out.

    Cancellation unwinds the executor, which closes the automation session on
    the way out.
    """

    try:
        await asyncio.wait_for(executor.execute(job_id), timeout=budget_seconds)
    except TimeoutError:
        try:
            job = await asyncio.to_thread(store.get, job_id)
        except JobNotFoundError:
            return
        if job.status is not JobStatus.RUNNING:
            return
        try:
            await asyncio.to_thread(store.mark_timeout, job_id)
        except IllegalTransitionError:
            logger.warning("Job finished while timing out", extra={"job_id": job_id})
            return
        logger.warning(
            "Job exceeded its time budget",
            extra={"job_id": job_id, "budget_seconds": budget_seconds},
        )


class Dispatcher:
    def __init__(
        self,
        queue: WorkQueue,
        executor: WorkflowExecutor,
        store: JobStore,
        *,
        concurrency: int = 5,
        poll_interval: float = 1.0,
        job_timeout: float = 120.0,
        stale_after: float = 600.0,
        recovery_interval: float = 60.0,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.queue = queue
        self.executor = executor
        self.store = store
        self.concurrency = concurrency
        self.poll_interval = poll_interval
        self.job_timeout = job_timeout
        self.stale_after = stale_after
        self.recovery_interval = recovery_interval
        self._stopping = asyncio.Event()

    @classmethod
    def from_settings(
        cls,
        settings: OrbitalSettings,
        *,
        queue: WorkQueue,
        executor: WorkflowExecutor,
        store: JobStore,
    ) -> Dispatcher:
        return cls(
            queue,
            executor,
            store,
            concurrency=settings.worker_concurrency,
            poll_interval=settings.poll_interval_seconds,
            job_timeout=settings.job_timeout_seconds,
            stale_after=settings.stale_after_seconds,
            recovery_interval=settings.recovery_interval_seconds,
        )

    def is_resolved(self, job_id: str) -> bool:
        """True if the job needs no further execution (terminal or unknown)."""

        try:
            return self.store.get(job_id).is_terminal
        except JobNotFoundError:
            return True

    def recover(self) -> int:
        moved = self.queue.requeue_stale(self.stale_after, is_resolved=self.is_resolved)
        if moved:
            logger.info("Recovered stale queue entries", extra={"count": moved})
        return moved

    async def process(self, entry: QueueEntry) -> None:
        try:
            await self._handle(entry)
            await asyncio.to_thread(self.queue.complete, entry.job_id)
        except Exception:
            logger.exception(
                "Job processing failed; entry left in flight", extra={"job_id": entry.job_id}
            )

    async def _handle(self, entry: QueueEntry) -> None:
        try:
            payload = entry.decode()
        except ValueError as e:
            logger.error(
                "Dropping unparseable queue entry",
                extra={"job_id": entry.job_id, "error": str(e)},
            )
            return

        job_id = payload.get("id", entry.job_id)
        if job_id != entry.job_id:
            logger.error(
                "Dropping queue entry with mismatched job id",
                extra={"job_id": entry.job_id, "payload_id": job_id},
            )
            return

        await run_with_budget(self.executor, self.store, job_id, self.job_timeout)

    async def _idle(self, seconds: float) -> None:
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)

    async def _worker(self, worker_id: int) -> None:
        while not self._stopping.is_set():
            try:
                entry = await asyncio.to_thread(self.queue.dequeue)
            except PersistenceError:
                logger.exception("Queue unavailable", extra={"worker": worker_id})
                entry = None

            if entry is None:
                await self._idle(self.poll_interval)
                continue
            await self.process(entry)

    async def _recovery_loop(self) -> None:
        while not self._stopping.is_set():
            try:
                await asyncio.to_thread(self.recover)
            except PersistenceError:
                logger.exception("Stale entry recovery failed")
            await self._idle(self.recovery_interval)

    async def run(self) -> None:
        """Run until `stop` is called."""

        self._stopping.clear()
        tasks = [
            asyncio.create_task(self._worker(i), name=f"orbital-worker-{i}")
            for i in range(self.concurrency)
        ]
        tasks.append(asyncio.create_task(self._recovery_loop(), name="orbital-recovery"))
        logger.info("Dispatcher started", extra={"concurrency": self.concurrency})
        try:
            await asyncio.gather(*tasks)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Dispatcher stopped")

    def stop(self) -> None:
        self._stopping.set()

    async def run_until_idle(self) -> int:
        """Recover stale entries, then drain the queue once. Returns entries processed."""

        await asyncio.to_thread(self.recover)
        processed = 0

        async def drain() -> None:
            nonlocal processed
            while True:
                entry = await asyncio.to_thread(self.queue.dequeue)
                if entry is None:
                    return
                await self.process(entry)
                processed += 1

        await asyncio.gather(*(drain() for _ in range(self.concurrency)))
        return processed


def build_dispatcher(
    settings: OrbitalSettings,
    *,
    store: JobStore,
    queue: WorkQueue,
    session_factory: SessionFactory | None = None,
) -> Dispatcher:
    """Wire an executor and a dispatcher from settings and the shared handles."""

    executor = WorkflowExecutor(
        store,
        session_factory or PlaywrightSessionFactory(headless=settings.browser_headless),
        ArtifactStorage(settings.storage_path, settings.app_url),
        user_agent=settings.user_agent,
    )
    return Dispatcher.from_settings(settings, queue=queue, executor=executor, store=store)
