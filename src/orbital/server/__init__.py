"""FastAPI server for the Orbital service.

Design intent:
- Keep business logic in `orbital.service`, `orbital.jobs` and `orbital.workflow`
- Keep server-specific concerns (routing, auth, error bodies) here
"""

from __future__ import annotations

__all__ = ["create_app"]

from orbital.server.app import create_app
