"""Workflow executor: runs one job's steps against one automation session.

State changes go through the job store only::

    pending -> running -> completed | failed

The wall-clock budget (``running -> timeout``) is enforced by the caller, see
`orbital.dispatcher.run_with_budget`.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Literal, assert_never

from orbital.artifacts import ArtifactStorage, download_filename, screenshot_filename
from orbital.automation.session import AutomationSession, SessionConfig, SessionFactory
from orbital.errors import ExecutionError, JobNotFoundError
from orbital.jobs.models import Artifact, JobResult
from orbital.jobs.store import JobStore
from orbital.workflow.steps import (
    ClickStep,
    EvaluateStep,
    GotoStep,
    ScreenshotStep,
    Step,
    TypeStep,
    WaitForDownloadStep,
    WaitForSelectorStep,
    WaitStep,
)

logger = logging.getLogger(__name__)

_RESULT_PREVIEW_CHARS = 2000


def _preview(value: object) -> str:
    try:
        text = json.dumps(value, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        text = repr(value)
    return text[:_RESULT_PREVIEW_CHARS]


class WorkflowExecutor:
    def __init__(
        self,
        store: JobStore,
        sessions: SessionFactory,
        artifacts: ArtifactStorage,
        *,
        user_agent: str | None = None,
    ) -> None:
        self.store = store
        self.sessions = sessions
        self.artifacts = artifacts
        self.user_agent = user_agent

    async def execute(self, job_id: str) -> None:
        try:
            job = await asyncio.to_thread(self.store.get, job_id)
        except JobNotFoundError:
            logger.error("Job not found; nothing to execute", extra={"job_id": job_id})
            return

        if job.is_terminal:
            logger.warning(
                "Job already finished; skipping", extra={"job_id": job_id, "status": job.status}
            )
            return

        job = await asyncio.to_thread(self.store.mark_running, job_id)
        descriptor = job.workflow
        config = SessionConfig(
            viewport_width=descriptor.viewport.width,
            viewport_height=descriptor.viewport.height,
            default_timeout_ms=descriptor.timeout_ms,
            user_agent=self.user_agent,
        )
        logger.info(
            "Executing workflow",
            extra={"job_id": job_id, "steps": len(descriptor.steps), "attempt": job.attempts},
        )

        artifacts: list[Artifact] = []
        try:
            async with self.sessions.open(config) as session:
                for index, step in enumerate(descriptor.steps):
                    artifact = await self._run_step(session, job_id, index, step)
                    if artifact is not None:
                        artifacts.append(artifact)
        except ExecutionError as e:
            logger.warning(
                "Workflow failed",
                extra={"job_id": job_id, "step_index": e.step_index, "error": e.message},
            )
            await asyncio.to_thread(self.store.mark_failed, job_id, e.message)
            return
        except Exception as e:
            # Browser launch or teardown failed outside any single step.
            logger.exception("Automation session failed", extra={"job_id": job_id})
            await asyncio.to_thread(
                self.store.mark_failed, job_id, f"Automation session failed: {e}"
            )
            return

        await asyncio.to_thread(
            self.store.mark_completed,
            job_id,
            JobResult(artifacts=artifacts, steps_completed=len(descriptor.steps)),
        )
        logger.info(
            "Workflow completed", extra={"job_id": job_id, "artifacts": len(artifacts)}
        )

    async def _run_step(
        self, session: AutomationSession, job_id: str, index: int, step: Step
    ) -> Artifact | None:
        logger.info(
            "Executing step", extra={"job_id": job_id, "step_index": index, "action": step.action}
        )
        try:
            return await self._perform(session, job_id, index, step)
        except Exception as e:
            raise ExecutionError(
                f"Step {index} ({step.action}) failed: {e}", step_index=index
            ) from e

    async def _perform(
        self, session: AutomationSession, job_id: str, index: int, step: Step
    ) -> Artifact | None:
        match step:
            case GotoStep(url=url):
                await session.navigate(url)
            case WaitStep(duration=duration):
                await session.wait_ms(duration)
            case ClickStep(selector=selector):
                await session.click(selector)
            case TypeStep(selector=selector, value=value):
                await session.fill(selector, value)
            case WaitForSelectorStep(selector=selector):
                await session.wait_for_selector(selector)
            case ScreenshotStep(full_page=full_page):
                filename = screenshot_filename(index)
                await session.capture_screenshot(
                    self.artifacts.job_dir(job_id) / filename, full_page
                )
                return self._artifact("screenshot", job_id, index, filename)
            case WaitForDownloadStep():
                download = await session.await_next_download()
                filename = download_filename(index, download.suggested_filename)
                await download.save_to(self.artifacts.job_dir(job_id) / filename)
                return self._artifact("download", job_id, index, filename)
            case EvaluateStep(script=script):
                result = await session.evaluate_script(script)
                logger.info(
                    "Evaluate result",
                    extra={"job_id": job_id, "step_index": index, "result": _preview(result)},
                )
            case _:
                assert_never(step)
        return None

    def _artifact(
        self,
        kind: Literal["screenshot", "download"],
        job_id: str,
        index: int,
        filename: str,
    ) -> Artifact:
        logger.info(
            "Artifact saved", extra={"job_id": job_id, "step_index": index, "filename": filename}
        )
        return Artifact(
            type=kind,
            filename=filename,
            step_index=index,
            url=self.artifacts.url_for(job_id, filename),
        )
