"""Configuration for the Orbital service.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

The same settings object drives the HTTP server, the worker pool and the CLI.
Handles built from it (job store, queue, validator) are constructed once at
process start and passed explicitly to the components that need them.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0 Safari/537.36"
)


class OrbitalSettings(BaseSettings):
    """Settings for the API server and the worker pool.

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `OrbitalSettings(_env_file=path_to_env)`. Fields can also be passed
        by name, e.g. `OrbitalSettings(db_path=tmp_path / "jobs.sqlite")`.
    """

    api_keys: str = Field(
        default="default-key-change-me",
        validation_alias="ORBITAL_API_KEYS",
        description="Comma-separated list of accepted API keys.",
    )
    app_url: str = Field(
        default="http://localhost:8058",
        validation_alias="ORBITAL_APP_URL",
        description="Public base URL used to build artifact retrieval links.",
    )
    host: str = Field(default="0.0.0.0", validation_alias="ORBITAL_HOST")
    port: int = Field(default=8058, validation_alias="ORBITAL_PORT", ge=1, le=65535)

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    db_path: Path = Field(
        default=Path("data/orbital.sqlite"),
        validation_alias="ORBITAL_DB_PATH",
        description="SQLite database holding job records",
    )
    storage_path: Path = Field(
        default=Path("data/artifacts"),
        validation_alias="ORBITAL_STORAGE_PATH",
        description="Directory where screenshots and downloads are written, one folder per job",
    )

    queue_backend: Literal["filesystem", "redis"] = Field(
        default="filesystem",
        validation_alias="ORBITAL_QUEUE_BACKEND",
        description="Which queue implementation carries work from the API to the workers.",
    )
    queue_path: Path = Field(
        default=Path("data/queue"),
        validation_alias="ORBITAL_QUEUE_PATH",
        description="Root of the filesystem queue (pending/ and in_flight/ live below it)",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0", validation_alias="ORBITAL_REDIS_URL"
    )
    redis_queue_name: str = Field(
        default="orbital:jobs",
        validation_alias="ORBITAL_REDIS_QUEUE_NAME",
        description="Key prefix for the Redis queue lists and hashes.",
    )

    max_payload_bytes: int = Field(
        default=50 * 1024,
        validation_alias="ORBITAL_MAX_PAYLOAD_BYTES",
        ge=1024,
        le=10 * 1024 * 1024,
    )
    max_steps: int = Field(default=25, validation_alias="ORBITAL_MAX_STEPS", ge=1, le=500)

    worker_concurrency: int = Field(
        default=5, validation_alias="ORBITAL_WORKER_CONCURRENCY", ge=1, le=64
    )
    poll_interval_seconds: float = Field(
        default=1.0,
        validation_alias="ORBITAL_POLL_INTERVAL_SECONDS",
        gt=0,
        description="How long an idle worker waits before polling the queue again.",
    )
    job_timeout_seconds: float = Field(
        default=120.0,
        validation_alias="ORBITAL_JOB_TIMEOUT_SECONDS",
        gt=0,
        description="Wall-clock budget for one job, browser start-up included.",
    )
    stale_after_seconds: float = Field(
        default=600.0,
        validation_alias="ORBITAL_STALE_AFTER_SECONDS",
        ge=0,
        description=(
            "In-flight queue entries claimed longer ago than this are considered abandoned "
            "by a crashed worker and are moved back to pending."
        ),
    )
    recovery_interval_seconds: float = Field(
        default=60.0, validation_alias="ORBITAL_RECOVERY_INTERVAL_SECONDS", gt=0
    )

    browser_headless: bool = Field(default=True, validation_alias="ORBITAL_BROWSER_HEADLESS")
    user_agent: str = Field(default=DEFAULT_USER_AGENT, validation_alias="ORBITAL_USER_AGENT")

    embedded_worker: bool = Field(
        default=False,
        validation_alias="ORBITAL_EMBEDDED_WORKER",
        description="If true, `serve` also runs the dispatcher inside the API process.",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    def parsed_api_keys(self) -> set[str]:
        return {k.strip() for k in self.api_keys.split(",") if k.strip()}
