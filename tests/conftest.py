"""Test configuration and fixtures."""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from pathlib import Path

import pytest

from orbital.artifacts import ArtifactStorage
from orbital.automation.session import AutomationSession, Download, SessionConfig, SessionFactory
from orbital.config import OrbitalSettings
from orbital.executor import WorkflowExecutor
from orbital.jobs.store import JobStore
from orbital.queue.filesystem import FilesystemQueue
from orbital.workflow.validation import UrlPolicy, Validator

PUBLIC_ADDRESS = "93.184.216.34"
API_KEY = "test-key"


class FakeResolver:
    """DNS stand-in: unknown hosts resolve to a public address."""

    def __init__(self) -> None:
        self.records: dict[str, list[str]] = {}
        self.unresolvable: set[str] = set()
        self.lookups: list[str] = []

    def __call__(self, hostname: str) -> list[str]:
        self.lookups.append(hostname)
        if hostname in self.unresolvable:
            raise OSError(f"Name or service not known: {hostname}")
        return self.records.get(hostname, [PUBLIC_ADDRESS])


class FakeDownload(Download):
    def __init__(self, name: str, content: bytes = b"downloaded") -> None:
        self._name = name
        self._content = content

    @property
    def suggested_filename(self) -> str:
        return self._name

    async def save_to(self, path: Path) -> None:
        path.write_bytes(self._content)


class FakeSession(AutomationSession):
    def __init__(self, factory: FakeSessionFactory) -> None:
        self._factory = factory
        self.calls: list[tuple[object, ...]] = []
        self.closed = False

    async def _record(self, action: str, *args: object) -> None:
        self.calls.append((action, *args))
        if self._factory.fail_on == action:
            raise RuntimeError(f"{action} exploded")
        if self._factory.hang_on == action:
            await asyncio.sleep(3600)

    async def navigate(self, url: str) -> None:
        await self._record("navigate", url)

    async def wait_ms(self, duration: int) -> None:
        await self._record("wait_ms", duration)

    async def click(self, selector: str) -> None:
        await self._record("click", selector)

    async def fill(self, selector: str, value: str) -> None:
        await self._record("fill", selector, value)

    async def wait_for_selector(self, selector: str) -> None:
        await self._record("wait_for_selector", selector)

    async def capture_screenshot(self, path: Path, full_page: bool) -> None:
        await self._record("capture_screenshot", path.name, full_page)
        path.write_bytes(b"\x89PNG fake")

    async def await_next_download(self) -> Download:
        await self._record("await_next_download")
        return FakeDownload(self._factory.download_name)

    async def evaluate_script(self, script: str) -> object:
        await self._record("evaluate_script", script)
        return {"title": "Example"}

    async def close(self) -> None:
        self.closed = True


class FakeSessionFactory(SessionFactory):
    """Records every session it starts. Set `fail_on`/`hang_on` to an action name."""

    def __init__(self) -> None:
        self.sessions: list[FakeSession] = []
        self.configs: list[SessionConfig] = []
        self.fail_on: str | None = None
        self.hang_on: str | None = None
        self.fail_start = False
        self.download_name = "report.pdf"

    async def start(self, config: SessionConfig) -> AutomationSession:
        self.configs.append(config)
        if self.fail_start:
            raise RuntimeError("browser did not launch")
        session = FakeSession(self)
        self.sessions.append(session)
        return session


@pytest.fixture
def resolver() -> FakeResolver:
    return FakeResolver()


@pytest.fixture
def validator(resolver: FakeResolver) -> Validator:
    return Validator(url_policy=UrlPolicy(resolver=resolver))


@pytest.fixture
def store() -> Iterator[JobStore]:
    job_store = JobStore(":memory:")
    yield job_store
    job_store.close()


@pytest.fixture
def fs_queue(tmp_path: Path) -> FilesystemQueue:
    return FilesystemQueue(tmp_path / "queue")


@pytest.fixture
def artifacts(tmp_path: Path) -> ArtifactStorage:
    return ArtifactStorage(tmp_path / "artifacts", "http://testserver")


@pytest.fixture
def session_factory() -> FakeSessionFactory:
    return FakeSessionFactory()


@pytest.fixture
def executor(
    store: JobStore, session_factory: FakeSessionFactory, artifacts: ArtifactStorage
) -> WorkflowExecutor:
    return WorkflowExecutor(store, session_factory, artifacts, user_agent="orbital-tests")


@pytest.fixture
def settings(tmp_path: Path) -> OrbitalSettings:
    """Provide settings pointing every path into a temporary directory."""
    return OrbitalSettings(
        _env_file=None,
        api_keys=API_KEY,
        app_url="http://testserver",
        db_path=tmp_path / "orbital.sqlite",
        storage_path=tmp_path / "artifacts",
        queue_path=tmp_path / "queue",
    )
