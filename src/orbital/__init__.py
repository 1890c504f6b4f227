"""Orbital browser workflow orchestration service.

Accepts declarative browser-automation workflows, validates them, queues them
durably and executes each one against an isolated browser session.
"""

__version__ = "0.1.0"

from orbital.config import OrbitalSettings

__all__ = ["__version__", "OrbitalSettings"]
