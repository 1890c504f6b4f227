"""Durable handoff of accepted jobs from the API to the worker pool."""

from orbital.queue.base import QueueEntry, WorkQueue
from orbital.queue.factory import QueueFactory

__all__ = [
    "QueueEntry",
    "QueueFactory",
    "WorkQueue",
]
