"""Factory for creating queue backends."""

import logging

from orbital.config import OrbitalSettings
from orbital.queue.base import WorkQueue
from orbital.queue.filesystem import FilesystemQueue
from orbital.queue.redis_queue import RedisQueue

logger = logging.getLogger(__name__)


class QueueFactory:
    """Factory for creating work queue instances."""

    @staticmethod
    def create(settings: OrbitalSettings) -> WorkQueue:
        """Create a queue backend based on configuration.

        Args:
            settings: Service settings selecting the backend.

        Returns:
            Configured queue instance.

        Raises:
            ValueError: If the backend is not supported.
        """
        logger.info(f"Creating queue backend: {settings.queue_backend}")

        if settings.queue_backend == "filesystem":
            return FilesystemQueue(settings.queue_path)
        elif settings.queue_backend == "redis":
            return RedisQueue.from_url(settings.redis_url, name=settings.redis_queue_name)
        else:
            raise ValueError(f"Unsupported queue backend: {settings.queue_backend}")
