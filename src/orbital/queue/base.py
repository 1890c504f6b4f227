"""Abstract base class for queue backends."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, slots=True)
class QueueEntry:
    """A claimed queue entry.

    `payload` is kept exactly as it was enqueued; decoding is left to the
    consumer so a corrupt entry can be reported and skipped instead of breaking
    the claim.
    """

    job_id: str
    payload: str

    def decode(self) -> dict[str, Any]:
        data = json.loads(self.payload)
        if not isinstance(data, dict):
            raise ValueError(f"Queue payload for {self.job_id} is not a JSON object")
        return data


def encode_payload(payload: Mapping[str, Any] | str) -> str:
    if isinstance(payload, str):
        return payload
    return json.dumps(payload, ensure_ascii=False, sort_keys=True)


class WorkQueue(ABC):
    """Durable work queue with two locations per entry: pending and in-flight.

    While its job is unresolved an entry lives in exactly one of the two.
    Claiming moves an entry from pending to in-flight in a single atomic
    operation, so no two consumers can hold the same job id.
    """

    @abstractmethod
    def enqueue(self, job_id: str, payload: Mapping[str, Any] | str) -> bool:
        """Record a pending entry.

        Returns:
            True if the entry was written, False if the job id was already queued.
        """

    @abstractmethod
    def dequeue(self) -> QueueEntry | None:
        """Claim the oldest pending entry, or return None if nothing is pending."""

    @abstractmethod
    def complete(self, job_id: str) -> None:
        """Drop the in-flight entry of a job that reached a terminal state."""

    @abstractmethod
    def requeue_stale(
        self,
        max_age: float,
        *,
        is_resolved: Callable[[str], bool] | None = None,
    ) -> int:
        """Move in-flight entries claimed at least `max_age` seconds ago back to pending.

        Args:
            max_age: Minimum claim age in seconds.
            is_resolved: Optional reconciliation hook. Stale entries whose job it
                reports as resolved (terminal or unknown) are removed instead of
                requeued, so a finished job is not executed again.

        Returns:
            Number of entries moved back to pending.
        """

    @abstractmethod
    def stats(self) -> dict[str, int]:
        """Return ``{"pending": n, "in_flight": m}``."""
