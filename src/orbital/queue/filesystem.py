"""Queue backed by two directories on a local filesystem.

Layout below the queue root::

    pending/<job_id>.json     waiting to be claimed
    in_flight/<job_id>.json   claimed by a worker, job not yet resolved
    .tmp/                     staging area for atomic writes

Every move between locations is a single `rename`, which POSIX guarantees to
be atomic within one filesystem. When two workers race for the same file only
one rename succeeds; the other sees `FileNotFoundError` and moves on to the
next candidate.
"""

from __future__ import annotations

import logging
import os
import re
import time
import uuid
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

from orbital.errors import PersistenceError
from orbital.queue.base import QueueEntry, WorkQueue, encode_payload

logger = logging.getLogger(__name__)

_JOB_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_SUFFIX = ".json"


class FilesystemQueue(WorkQueue):
    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self.pending_dir = self.root / "pending"
        self.in_flight_dir = self.root / "in_flight"
        self._tmp_dir = self.root / ".tmp"
        for directory in (self.pending_dir, self.in_flight_dir, self._tmp_dir):
            directory.mkdir(parents=True, exist_ok=True)

    def _filename(self, job_id: str) -> str:
        if not _JOB_ID_RE.match(job_id):
            raise ValueError(f"Job id is not safe to use as a queue filename: {job_id!r}")
        return job_id + _SUFFIX

    def enqueue(self, job_id: str, payload: Mapping[str, Any] | str) -> bool:
        name = self._filename(job_id)
        if (self.pending_dir / name).exists() or (self.in_flight_dir / name).exists():
            logger.warning("Job already queued; ignoring enqueue", extra={"job_id": job_id})
            return False

        staging = self._tmp_dir / f"{job_id}.{uuid.uuid4().hex}"
        try:
            with staging.open("w", encoding="utf-8") as fh:
                fh.write(encode_payload(payload))
                fh.flush()
                os.fsync(fh.fileno())
            # link() refuses to overwrite, so a concurrent enqueue of the same id loses cleanly.
            os.link(staging, self.pending_dir / name)
        except FileExistsError:
            logger.warning("Job already queued; ignoring enqueue", extra={"job_id": job_id})
            return False
        except OSError as e:
            raise PersistenceError(f"Cannot enqueue job {job_id}: {e}") from e
        finally:
            staging.unlink(missing_ok=True)

        logger.info("Job enqueued", extra={"job_id": job_id, "backend": "filesystem"})
        return True

    def _pending_in_order(self) -> list[Path]:
        candidates: list[tuple[int, str, Path]] = []
        for path in self.pending_dir.glob(f"*{_SUFFIX}"):
            try:
                mtime = path.stat().st_mtime_ns
            except FileNotFoundError:
                continue
            candidates.append((mtime, path.name, path))
        return [path for _, _, path in sorted(candidates)]

    def dequeue(self) -> QueueEntry | None:
        for source in self._pending_in_order():
            target = self.in_flight_dir / source.name
            try:
                source.rename(target)
            except FileNotFoundError:
                # Claimed by another worker between listing and rename.
                continue
            except OSError as e:
                raise PersistenceError(f"Cannot claim {source.name}: {e}") from e

            # rename() keeps the enqueue mtime; the in-flight mtime records the claim time.
            try:
                os.utime(target)
                payload = target.read_text(encoding="utf-8")
            except OSError as e:
                raise PersistenceError(f"Cannot read claimed entry {target.name}: {e}") from e

            job_id = target.name.removesuffix(_SUFFIX)
            logger.info("Job claimed", extra={"job_id": job_id})
            return QueueEntry(job_id=job_id, payload=payload)
        return None

    def complete(self, job_id: str) -> None:
        try:
            (self.in_flight_dir / self._filename(job_id)).unlink(missing_ok=True)
        except OSError as e:
            raise PersistenceError(f"Cannot complete job {job_id}: {e}") from e

    def requeue_stale(
        self,
        max_age: float,
        *,
        is_resolved: Callable[[str], bool] | None = None,
    ) -> int:
        now = time.time()
        moved = 0
        for path in sorted(self.in_flight_dir.glob(f"*{_SUFFIX}")):
            try:
                age = now - path.stat().st_mtime
            except FileNotFoundError:
                continue
            if age < max_age:
                continue

            job_id = path.name.removesuffix(_SUFFIX)
            if is_resolved is not None and is_resolved(job_id):
                path.unlink(missing_ok=True)
                logger.info("Dropped stale entry of resolved job", extra={"job_id": job_id})
                continue

            try:
                path.rename(self.pending_dir / path.name)
            except FileNotFoundError:
                continue
            moved += 1
            logger.warning(
                "Requeued stale in-flight job", extra={"job_id": job_id, "age_seconds": age}
            )
        return moved

    def stats(self) -> dict[str, int]:
        return {
            "pending": sum(1 for _ in self.pending_dir.glob(f"*{_SUFFIX}")),
            "in_flight": sum(1 for _ in self.in_flight_dir.glob(f"*{_SUFFIX}")),
        }
