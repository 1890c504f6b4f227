"""FastAPI app factory.

Endpoints are thin wrappers over `JobService`, the job store and the queue.
Error bodies always have the shape ``{"error": ..., "details"?: {...}}``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import FileResponse, JSONResponse
from starlette.concurrency import run_in_threadpool

from orbital import __version__
from orbital.artifacts import ArtifactStorage
from orbital.automation.session import SessionFactory
from orbital.config import OrbitalSettings
from orbital.dispatcher import build_dispatcher
from orbital.errors import (
    AuthenticationError,
    NotFoundError,
    PayloadTooLargeError,
    PersistenceError,
    ValidationError,
)
from orbital.jobs.store import JobStore, utc_now_iso
from orbital.queue.base import WorkQueue
from orbital.queue.factory import QueueFactory
from orbital.server.auth import require_api_key
from orbital.server.models import JobCreated, JobView, QueueStats, TemplateJobRequest
from orbital.service import JobService
from orbital.workflow.templates import TemplateEngine, load_catalog
from orbital.workflow.validation import Validator

logger = logging.getLogger(__name__)


def _error(status_code: int, message: str, details: object | None = None) -> JSONResponse:
    body: dict[str, object] = {"error": message}
    if details is not None:
        body["details"] = details
    return JSONResponse(status_code=status_code, content=body)


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(PayloadTooLargeError)
    async def payload_too_large(_: Request, exc: PayloadTooLargeError) -> JSONResponse:
        return _error(413, exc.message)

    @app.exception_handler(ValidationError)
    async def validation_failed(_: Request, exc: ValidationError) -> JSONResponse:
        return _error(422, "Validation failed", exc.details())

    @app.exception_handler(RequestValidationError)
    async def request_invalid(_: Request, exc: RequestValidationError) -> JSONResponse:
        details: dict[str, list[str]] = {}
        for err in exc.errors():
            field = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
            details.setdefault(field or "body", []).append(str(err.get("msg", "is invalid")))
        return _error(422, "Validation failed", details)

    @app.exception_handler(AuthenticationError)
    async def unauthorized(_: Request, exc: AuthenticationError) -> JSONResponse:
        return _error(401, str(exc))

    @app.exception_handler(NotFoundError)
    async def not_found(_: Request, exc: NotFoundError) -> JSONResponse:
        return _error(404, str(exc))

    @app.exception_handler(PersistenceError)
    async def unavailable(_: Request, exc: PersistenceError) -> JSONResponse:
        logger.error("Persistence failure", extra={"error": str(exc)})
        return _error(503, "Service temporarily unavailable")


def create_app(
    settings: OrbitalSettings | None = None,
    *,
    store: JobStore | None = None,
    queue: WorkQueue | None = None,
    validator: Validator | None = None,
    session_factory: SessionFactory | None = None,
) -> FastAPI:
    settings = settings or OrbitalSettings()
    store = store or JobStore(settings.db_path)
    queue = queue or QueueFactory.create(settings)
    validator = validator or Validator.from_settings(settings)
    templates = TemplateEngine(load_catalog(), validator)
    service = JobService(validator, store, queue, templates)
    artifacts = ArtifactStorage(settings.storage_path, settings.app_url)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        if not settings.embedded_worker:
            yield
            return

        dispatcher = build_dispatcher(
            settings, store=store, queue=queue, session_factory=session_factory
        )
        task = asyncio.create_task(dispatcher.run(), name="orbital-dispatcher")
        try:
            yield
        finally:
            dispatcher.stop()
            await task

    app = FastAPI(
        title="Orbital",
        version=__version__,
        description="Queue and run declarative browser automation workflows.",
        lifespan=lifespan,
    )

    # Expose settings and handles for request handlers and tests.
    app.state.settings = settings
    app.state.store = store
    app.state.queue = queue
    app.state.service = service

    _install_error_handlers(app)

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "timestamp": utc_now_iso()}

    @app.get("/artifacts/{job_id}/{filename}", response_model=None)
    def get_artifact(job_id: str, filename: str) -> FileResponse:
        path = artifacts.resolve(job_id, filename)
        if path is None:
            raise NotFoundError("Artifact not found")
        return FileResponse(path)

    api = APIRouter(prefix="/api/v1", dependencies=[Depends(require_api_key)])

    @api.post(
        "/jobs", status_code=201, response_model=JobCreated, response_model_exclude_none=True
    )
    async def create_job(request: Request) -> JobCreated:
        # Refuse oversized bodies before reading them when the client declares a length.
        declared = request.headers.get("content-length", "")
        if declared.isdigit() and int(declared) > validator.max_payload_bytes:
            raise PayloadTooLargeError(
                f"Payload of {declared} bytes exceeds the "
                f"{validator.max_payload_bytes} byte limit"
            )
        raw = await request.body()
        # DNS resolution in the URL policy blocks; keep it off the event loop.
        job = await run_in_threadpool(service.submit, raw)
        return JobCreated(job_id=job.job_id, status=job.status)

    @api.get("/jobs")
    def list_jobs(
        limit: int = Query(default=50, ge=1, le=500),
        offset: int = Query(default=0, ge=0),
    ) -> dict[str, list[dict[str, object]]]:
        jobs = store.list_jobs(limit=limit, offset=offset)
        return {
            "jobs": [
                JobView.from_job(job).model_dump(mode="json", exclude_none=True) for job in jobs
            ]
        }

    @api.get("/jobs/{job_id}", response_model=JobView, response_model_exclude_none=True)
    def get_job(job_id: str) -> JobView:
        return JobView.from_job(service.get(job_id))

    @api.get("/templates")
    def list_templates() -> dict[str, list[dict[str, object]]]:
        return {"templates": [t.summary() for t in templates.list_templates()]}

    @api.get("/templates/{template_id}")
    def get_template(template_id: str) -> dict[str, object]:
        return templates.get(template_id).detail()

    @api.post(
        "/templates/{template_id}/jobs",
        status_code=201,
        response_model=JobCreated,
        response_model_exclude_none=True,
    )
    async def create_template_job(
        template_id: str, body: TemplateJobRequest | None = None
    ) -> JobCreated:
        params = body.parameters if body is not None else {}
        job = await run_in_threadpool(service.submit_template, template_id, params)
        return JobCreated(job_id=job.job_id, status=job.status, template_used=template_id)

    @api.get("/queue", response_model=QueueStats)
    def queue_stats() -> QueueStats:
        return QueueStats(**queue.stats(), jobs=store.counts())

    app.include_router(api)
    return app
