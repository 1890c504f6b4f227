"""CLI entrypoint for the Orbital service."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys

import uvicorn
from pydantic import ValidationError

from orbital import __version__
from orbital.config import OrbitalSettings
from orbital.dispatcher import Dispatcher, build_dispatcher
from orbital.errors import OrbitalError
from orbital.jobs.store import JobStore
from orbital.logging import configure_logging
from orbital.queue.factory import QueueFactory
from orbital.server.app import create_app
from orbital.workflow.templates import load_catalog

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="orbital",
        description="Queue and run declarative browser automation workflows",
    )
    parser.add_argument("--version", action="version", version=f"orbital {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default=None, help="Bind address (defaults to ORBITAL_HOST)")
    serve.add_argument("--port", type=int, default=None, help="Port (defaults to ORBITAL_PORT)")

    worker = subparsers.add_parser("worker", help="Run the worker pool")
    worker.add_argument(
        "--once",
        action="store_true",
        help="Drain the queue once and exit instead of polling forever",
    )

    requeue = subparsers.add_parser(
        "requeue-stale",
        help="Move abandoned in-flight queue entries back to pending",
    )
    requeue.add_argument(
        "--max-age",
        type=float,
        default=None,
        help="Claim age in seconds (defaults to ORBITAL_STALE_AFTER_SECONDS)",
    )

    subparsers.add_parser("templates", help="List the workflow template catalog")

    return parser


async def _run_worker(dispatcher: Dispatcher) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, dispatcher.stop)
    await dispatcher.run()


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = OrbitalSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(settings.log_level)

    try:
        if args.command == "serve":
            uvicorn.run(
                create_app(settings),
                host=args.host or settings.host,
                port=args.port or settings.port,
                log_config=None,
            )
            return 0

        if args.command == "templates":
            for template_id, template in load_catalog().items():
                required = [n for n, p in template.parameters.items() if p.required]
                print(f"{template_id}: {template.name} (parameters: {', '.join(required)})")
            return 0

        store = JobStore(settings.db_path)
        queue = QueueFactory.create(settings)
        dispatcher = build_dispatcher(settings, store=store, queue=queue)

        if args.command == "requeue-stale":
            if args.max_age is not None:
                dispatcher.stale_after = args.max_age
            moved = dispatcher.recover()
            print(f"Requeued {moved} stale entries")
            return 0

        if args.command == "worker":
            if args.once:
                processed = asyncio.run(dispatcher.run_until_idle())
                print(f"Processed {processed} queue entries")
            else:
                asyncio.run(_run_worker(dispatcher))
            return 0

        logger.error("Unknown command", extra={"command": args.command})
        return 2

    except OrbitalError as e:
        logger.error(str(e))
        print(str(e), file=sys.stderr)
        return 3

    except Exception:
        logger.exception("Command failed")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
