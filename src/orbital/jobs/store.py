"""Durable job records in SQLite.

Every lifecycle operation is a single conditional UPDATE: the row only changes
if its current status is a legal predecessor of the target status, so a job
that reached a terminal state can never be moved again, even by a worker
racing on a requeued entry.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from orbital.errors import JobNotFoundError, PersistenceError
from orbital.jobs.models import Job, JobResult
from orbital.jobs.state_machine import (
    IllegalTransitionError,
    JobStatus,
    allowed_sources,
    check_transition,
)
from orbital.workflow.steps import WorkflowDescriptor

logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "Execution timed out"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS jobs (
    job_id TEXT PRIMARY KEY,
    status TEXT NOT NULL DEFAULT 'pending'
        CHECK(status IN ('pending', 'running', 'completed', 'failed', 'timeout')),
    workflow_json TEXT NOT NULL,
    result_json TEXT,
    error_message TEXT,
    attempts INTEGER NOT NULL DEFAULT 0,
    started_at TEXT,
    finished_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs(status);
CREATE INDEX IF NOT EXISTS idx_jobs_created_at ON jobs(created_at);
"""


def utc_now_iso() -> str:
    return datetime.now(tz=UTC).isoformat()


def _row_to_job(row: sqlite3.Row) -> Job:
    result_raw = row["result_json"]
    return Job(
        job_id=row["job_id"],
        status=JobStatus(row["status"]),
        workflow=WorkflowDescriptor.from_payload(json.loads(row["workflow_json"])),
        result=JobResult.model_validate(json.loads(result_raw)) if result_raw else None,
        error_message=row["error_message"],
        attempts=int(row["attempts"]),
        started_at=row["started_at"],
        finished_at=row["finished_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class JobStore:
    """Job Store backed by a single SQLite database.

    The connection is shared between the API threads and the worker pool, so
    all access is serialised with a lock. Pass ``":memory:"`` for an
    in-process store in tests.
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        try:
            self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self.conn.row_factory = sqlite3.Row
            if self.db_path != ":memory:":
                self.conn.execute("PRAGMA journal_mode = WAL")
            self.conn.executescript(_SCHEMA)
            self.conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open job store at {self.db_path}: {e}") from e

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    @contextmanager
    def _locked(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self.conn
            except sqlite3.Error as e:
                self.conn.rollback()
                raise PersistenceError(f"Job store operation failed: {e}") from e

    def _get_unlocked(self, conn: sqlite3.Connection, job_id: str) -> Job | None:
        row = conn.execute("SELECT * FROM jobs WHERE job_id = ?", (job_id,)).fetchone()
        return _row_to_job(row) if row is not None else None

    def create(self, descriptor: WorkflowDescriptor, job_id: str | None = None) -> Job:
        job_id = job_id or str(uuid.uuid4())
        now = utc_now_iso()
        with self._locked() as conn:
            conn.execute(
                """
                INSERT INTO jobs(job_id, status, workflow_json, attempts, created_at, updated_at)
                VALUES (?, ?, ?, 0, ?, ?)
                """,
                (
                    job_id,
                    JobStatus.PENDING.value,
                    json.dumps(descriptor.to_payload(), sort_keys=True),
                    now,
                    now,
                ),
            )
            conn.commit()
            job = self._get_unlocked(conn, job_id)
        assert job is not None
        logger.info("Job created", extra={"job_id": job_id, "steps": len(descriptor.steps)})
        return job

    def get(self, job_id: str) -> Job:
        with self._locked() as conn:
            job = self._get_unlocked(conn, job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def list_jobs(self, *, limit: int = 100, offset: int = 0) -> list[Job]:
        with self._locked() as conn:
            rows = conn.execute(
                "SELECT * FROM jobs ORDER BY created_at DESC LIMIT ? OFFSET ?",
                (limit, offset),
            ).fetchall()
        return [_row_to_job(row) for row in rows]

    def counts(self) -> dict[str, int]:
        with self._locked() as conn:
            rows = conn.execute(
                "SELECT status, COUNT(*) AS count FROM jobs GROUP BY status"
            ).fetchall()
        output = {status.value: 0 for status in JobStatus}
        for row in rows:
            output[str(row["status"])] = int(row["count"])
        return output

    def mark_running(self, job_id: str) -> Job:
        now = utc_now_iso()
        return self._transition(
            job_id,
            JobStatus.RUNNING,
            {"started_at": now, "finished_at": None},
            increment_attempts=True,
        )

    def mark_completed(self, job_id: str, result: JobResult | dict[str, Any]) -> Job:
        if isinstance(result, dict):
            result = JobResult.model_validate(result)
        return self._transition(
            job_id,
            JobStatus.COMPLETED,
            {
                "result_json": json.dumps(result.model_dump(mode="json"), sort_keys=True),
                "error_message": None,
                "finished_at": utc_now_iso(),
            },
        )

    def mark_failed(self, job_id: str, message: str) -> Job:
        return self._transition(
            job_id,
            JobStatus.FAILED,
            {"error_message": message, "result_json": None, "finished_at": utc_now_iso()},
        )

    def mark_timeout(self, job_id: str) -> Job:
        return self._transition(
            job_id,
            JobStatus.TIMEOUT,
            {"error_message": TIMEOUT_MESSAGE, "result_json": None, "finished_at": utc_now_iso()},
        )

    def _transition(
        self,
        job_id: str,
        to: JobStatus,
        assignments: dict[str, object],
        *,
        increment_attempts: bool = False,
    ) -> Job:
        sources = allowed_sources(to)
        sets = ["status = ?", "updated_at = ?"]
        values: list[object] = [to.value, utc_now_iso()]
        for column, value in assignments.items():
            sets.append(f"{column} = ?")
            values.append(value)
        if increment_attempts:
            sets.append("attempts = attempts + 1")

        placeholders = ", ".join("?" for _ in sources)
        query = (
            f"UPDATE jobs SET {', '.join(sets)} "
            f"WHERE job_id = ? AND status IN ({placeholders})"
        )
        values.append(job_id)
        values.extend(status.value for status in sources)

        with self._locked() as conn:
            cursor = conn.execute(query, values)
            conn.commit()
            job = self._get_unlocked(conn, job_id)

        if job is None:
            raise JobNotFoundError(job_id)
        if cursor.rowcount != 1:
            check_transition(current=job.status, to=to)
            raise IllegalTransitionError(
                f"Job {job_id} changed concurrently; now {job.status.value}"
            )
        logger.info(
            "Job status changed",
            extra={"job_id": job_id, "status": to.value, "attempts": job.attempts},
        )
        return job
