"""Abstract automation capability.

The executor only depends on these interfaces. `PlaywrightSessionFactory`
provides the production implementation; tests substitute in-memory fakes.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SessionConfig:
    viewport_width: int
    viewport_height: int
    default_timeout_ms: int
    user_agent: str | None = None


class Download(ABC):
    """A file download observed by a session."""

    @property
    @abstractmethod
    def suggested_filename(self) -> str: ...

    @abstractmethod
    async def save_to(self, path: Path) -> None: ...


class AutomationSession(ABC):
    """One isolated browser session, owned by a single job for its lifetime."""

    @abstractmethod
    async def navigate(self, url: str) -> None:
        """Load `url` and wait until the network is idle."""

    @abstractmethod
    async def wait_ms(self, duration: int) -> None: ...

    @abstractmethod
    async def click(self, selector: str) -> None: ...

    @abstractmethod
    async def fill(self, selector: str, value: str) -> None: ...

    @abstractmethod
    async def wait_for_selector(self, selector: str) -> None: ...

    @abstractmethod
    async def capture_screenshot(self, path: Path, full_page: bool) -> None: ...

    @abstractmethod
    async def await_next_download(self) -> Download: ...

    @abstractmethod
    async def evaluate_script(self, script: str) -> object: ...

    @abstractmethod
    async def close(self) -> None: ...


class SessionFactory(ABC):
    @abstractmethod
    async def start(self, config: SessionConfig) -> AutomationSession:
        """Start a new session. The caller owns it and must close it."""

    @asynccontextmanager
    async def open(self, config: SessionConfig) -> AsyncIterator[AutomationSession]:
        """Scoped session: closed on every exit path, cancellation included."""

        session = await self.start(config)
        try:
            yield session
        finally:
            await session.close()
            logger.debug("Automation session closed")
