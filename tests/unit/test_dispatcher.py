from __future__ import annotations

import asyncio
import os
import threading
import time

import pytest

from orbital.dispatcher import Dispatcher, run_with_budget
from orbital.executor import WorkflowExecutor
from orbital.jobs.state_machine import JobStatus
from orbital.jobs.store import TIMEOUT_MESSAGE, JobStore
from orbital.queue.filesystem import FilesystemQueue
from orbital.workflow.steps import WorkflowDescriptor


def _submit(store: JobStore, queue: FilesystemQueue, *steps: dict) -> str:
    descriptor = WorkflowDescriptor.from_payload({"workflow": {"steps": list(steps)}})
    job = store.create(descriptor)
    queue.enqueue(job.job_id, {"id": job.job_id, **descriptor.to_payload()})
    return job.job_id


def _dispatcher(
    fs_queue: FilesystemQueue, executor: WorkflowExecutor, store: JobStore, **kwargs
) -> Dispatcher:
    kwargs.setdefault("concurrency", 2)
    kwargs.setdefault("poll_interval", 0.01)
    return Dispatcher(fs_queue, executor, store, **kwargs)


@pytest.mark.asyncio
async def test_run_until_idle_executes_and_completes_entries(
    fs_queue: FilesystemQueue, executor: WorkflowExecutor, store: JobStore
) -> None:
    ids = [_submit(store, fs_queue, {"action": "wait", "duration": 1}) for _ in range(3)]

    processed = await _dispatcher(fs_queue, executor, store).run_until_idle()

    assert processed == 3
    assert all(store.get(job_id).status is JobStatus.COMPLETED for job_id in ids)
    assert fs_queue.stats() == {"pending": 0, "in_flight": 0}


@pytest.mark.asyncio
async def test_budget_expiry_marks_timeout_and_closes_session(
    executor: WorkflowExecutor, store: JobStore, session_factory
) -> None:
    session_factory.hang_on = "navigate"
    descriptor = WorkflowDescriptor.from_payload(
        {"workflow": {"steps": [{"action": "goto", "url": "https://slow.example"}]}}
    )
    job_id = store.create(descriptor).job_id

    await run_with_budget(executor, store, job_id, budget_seconds=0.05)

    job = store.get(job_id)
    assert job.status is JobStatus.TIMEOUT
    assert job.error_message == TIMEOUT_MESSAGE
    assert job.result is None
    assert session_factory.sessions[0].closed


@pytest.mark.asyncio
async def test_unparseable_entry_is_dropped(
    fs_queue: FilesystemQueue, executor: WorkflowExecutor, store: JobStore
) -> None:
    fs_queue.enqueue("corrupt", "{not json")

    processed = await _dispatcher(fs_queue, executor, store).run_until_idle()

    assert processed == 1
    assert fs_queue.stats() == {"pending": 0, "in_flight": 0}


@pytest.mark.asyncio
async def test_entry_for_unknown_job_is_dropped(
    fs_queue: FilesystemQueue, executor: WorkflowExecutor, store: JobStore, session_factory
) -> None:
    fs_queue.enqueue("ghost", {"id": "ghost"})

    await _dispatcher(fs_queue, executor, store).run_until_idle()

    assert session_factory.sessions == []
    assert fs_queue.stats() == {"pending": 0, "in_flight": 0}


@pytest.mark.asyncio
async def test_recovery_requeues_abandoned_job_and_drops_finished_one(
    fs_queue: FilesystemQueue, executor: WorkflowExecutor, store: JobStore
) -> None:
    crashed = _submit(store, fs_queue, {"action": "wait", "duration": 1})
    finished = _submit(store, fs_queue, {"action": "wait", "duration": 1})
    fs_queue.dequeue()
    fs_queue.dequeue()
    store.mark_running(crashed)
    store.mark_running(finished)
    store.mark_failed(finished, "boom")
    past = time.time() - 3600
    for job_id in (crashed, finished):
        os.utime(fs_queue.in_flight_dir / f"{job_id}.json", (past, past))

    processed = await _dispatcher(fs_queue, executor, store, stale_after=600).run_until_idle()

    assert processed == 1
    job = store.get(crashed)
    assert job.status is JobStatus.COMPLETED
    assert job.attempts == 2
    assert store.get(finished).status is JobStatus.FAILED
    assert fs_queue.stats() == {"pending": 0, "in_flight": 0}


@pytest.mark.asyncio
async def test_run_stops_on_request(
    fs_queue: FilesystemQueue, executor: WorkflowExecutor, store: JobStore
) -> None:
    dispatcher = _dispatcher(fs_queue, executor, store)
    job_id = _submit(store, fs_queue, {"action": "wait", "duration": 1})

    task = asyncio.create_task(dispatcher.run())
    for _ in range(200):
        if store.get(job_id).status is JobStatus.COMPLETED:
            break
        await asyncio.sleep(0.01)
    dispatcher.stop()
    await asyncio.wait_for(task, timeout=2)

    assert store.get(job_id).status is JobStatus.COMPLETED


@pytest.mark.asyncio
async def test_busy_job_store_does_not_stall_the_event_loop(
    fs_queue: FilesystemQueue, executor: WorkflowExecutor, store: JobStore
) -> None:
    job_id = _submit(store, fs_queue, {"action": "wait", "duration": 1})
    dispatcher = _dispatcher(fs_queue, executor, store, concurrency=1)

    # Another thread (an API request, say) holds the store for half a second.
    store._lock.acquire()
    threading.Timer(0.5, store._lock.release).start()

    task = asyncio.create_task(dispatcher.run_until_idle())
    started = time.monotonic()
    await asyncio.sleep(0.05)
    elapsed = time.monotonic() - started

    assert elapsed < 0.4
    assert not task.done()
    assert await asyncio.wait_for(task, timeout=5) == 1
    assert store.get(job_id).status is JobStatus.COMPLETED


@pytest.mark.asyncio
async def test_timed_out_job_is_recorded_and_its_entry_completed(
    fs_queue: FilesystemQueue, executor: WorkflowExecutor, store: JobStore, session_factory
) -> None:
    session_factory.hang_on = "wait_ms"
    slow = _submit(store, fs_queue, {"action": "wait", "duration": 60_000})

    processed = await _dispatcher(
        fs_queue, executor, store, concurrency=1, job_timeout=0.05
    ).run_until_idle()

    assert processed == 1
    assert store.get(slow).status is JobStatus.TIMEOUT
    assert fs_queue.stats() == {"pending": 0, "in_flight": 0}
