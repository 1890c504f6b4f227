"""Queue backed by Redis lists.

Keys (``<name>`` is the configured queue name)::

    <name>:pending     LIST  job ids waiting; new ids are pushed on the left
    <name>:in_flight   LIST  claimed job ids
    <name>:payloads    HASH  job id -> payload
    <name>:claimed_at  HASH  job id -> claim time (unix seconds)

Multi-key moves run as Lua scripts so each one is atomic on the server.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from typing import Any

import redis

from orbital.errors import PersistenceError
from orbital.queue.base import QueueEntry, WorkQueue, encode_payload

logger = logging.getLogger(__name__)

# KEYS: payloads, pending. ARGV: job_id, payload
_ENQUEUE_LUA = """
if redis.call('HSETNX', KEYS[1], ARGV[1], ARGV[2]) == 1 then
    redis.call('LPUSH', KEYS[2], ARGV[1])
    return 1
end
return 0
"""

# KEYS: pending, in_flight, claimed_at, payloads. ARGV: now
_CLAIM_LUA = """
local job_id = redis.call('RPOPLPUSH', KEYS[1], KEYS[2])
if not job_id then
    return false
end
redis.call('HSET', KEYS[3], job_id, ARGV[1])
local payload = redis.call('HGET', KEYS[4], job_id)
return {job_id, payload or ''}
"""

# KEYS: in_flight, pending, claimed_at. ARGV: job_id
_REQUEUE_LUA = """
if redis.call('LREM', KEYS[1], 1, ARGV[1]) > 0 then
    redis.call('RPUSH', KEYS[2], ARGV[1])
    redis.call('HDEL', KEYS[3], ARGV[1])
    return 1
end
return 0
"""


class RedisQueue(WorkQueue):
    def __init__(self, client: redis.Redis, name: str = "orbital:jobs") -> None:
        self._client = client
        self.name = name
        self._pending = f"{name}:pending"
        self._in_flight = f"{name}:in_flight"
        self._payloads = f"{name}:payloads"
        self._claimed_at = f"{name}:claimed_at"
        self._enqueue_script = client.register_script(_ENQUEUE_LUA)
        self._claim_script = client.register_script(_CLAIM_LUA)
        self._requeue_script = client.register_script(_REQUEUE_LUA)

    @classmethod
    def from_url(cls, url: str, name: str = "orbital:jobs") -> RedisQueue:
        return cls(redis.Redis.from_url(url, decode_responses=True), name=name)

    def enqueue(self, job_id: str, payload: Mapping[str, Any] | str) -> bool:
        try:
            added = self._enqueue_script(
                keys=[self._payloads, self._pending], args=[job_id, encode_payload(payload)]
            )
        except redis.RedisError as e:
            raise PersistenceError(f"Cannot enqueue job {job_id}: {e}") from e
        if not added:
            logger.warning("Job already queued; ignoring enqueue", extra={"job_id": job_id})
            return False
        logger.info("Job enqueued", extra={"job_id": job_id, "backend": "redis"})
        return True

    def dequeue(self) -> QueueEntry | None:
        try:
            claimed = self._claim_script(
                keys=[self._pending, self._in_flight, self._claimed_at, self._payloads],
                args=[time.time()],
            )
        except redis.RedisError as e:
            raise PersistenceError(f"Cannot claim from queue {self.name}: {e}") from e
        if not claimed:
            return None
        job_id, payload = (_text(part) for part in claimed)
        logger.info("Job claimed", extra={"job_id": job_id})
        return QueueEntry(job_id=job_id, payload=payload)

    def complete(self, job_id: str) -> None:
        try:
            pipe = self._client.pipeline(transaction=True)
            pipe.lrem(self._in_flight, 0, job_id)
            pipe.hdel(self._payloads, job_id)
            pipe.hdel(self._claimed_at, job_id)
            pipe.execute()
        except redis.RedisError as e:
            raise PersistenceError(f"Cannot complete job {job_id}: {e}") from e

    def requeue_stale(
        self,
        max_age: float,
        *,
        is_resolved: Callable[[str], bool] | None = None,
    ) -> int:
        try:
            job_ids = [_text(raw) for raw in self._client.lrange(self._in_flight, 0, -1)]
            if not job_ids:
                return 0
            claimed = self._client.hmget(self._claimed_at, job_ids)
        except redis.RedisError as e:
            raise PersistenceError(f"Cannot scan queue {self.name}: {e}") from e

        now = time.time()
        moved = 0
        for job_id, claimed_raw in zip(job_ids, claimed, strict=True):
            claimed_at = float(_text(claimed_raw)) if claimed_raw is not None else 0.0
            age = now - claimed_at
            if age < max_age:
                continue

            if is_resolved is not None and is_resolved(job_id):
                self.complete(job_id)
                logger.info("Dropped stale entry of resolved job", extra={"job_id": job_id})
                continue

            try:
                requeued = self._requeue_script(
                    keys=[self._in_flight, self._pending, self._claimed_at], args=[job_id]
                )
            except redis.RedisError as e:
                raise PersistenceError(f"Cannot requeue job {job_id}: {e}") from e
            if requeued:
                moved += 1
                logger.warning(
                    "Requeued stale in-flight job",
                    extra={"job_id": job_id, "age_seconds": age},
                )
        return moved

    def stats(self) -> dict[str, int]:
        try:
            return {
                "pending": int(self._client.llen(self._pending)),
                "in_flight": int(self._client.llen(self._in_flight)),
            }
        except redis.RedisError as e:
            raise PersistenceError(f"Cannot read queue stats: {e}") from e


def _text(value: object) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)
