"""API key authentication for the `/api/v1` routes."""

from __future__ import annotations

import hmac

from fastapi import Request

from orbital.errors import AuthenticationError


def _supplied_key(request: Request) -> str | None:
    key = request.headers.get("x-api-key")
    if key:
        return key.strip()
    authorization = request.headers.get("authorization", "")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()
    return None


def require_api_key(request: Request) -> None:
    """FastAPI dependency: accept `X-API-Key: <key>` or `Authorization: Bearer <key>`."""

    supplied = _supplied_key(request)
    accepted = request.app.state.settings.parsed_api_keys()
    if supplied is None or not any(
        hmac.compare_digest(supplied.encode(), key.encode()) for key in accepted
    ):
        raise AuthenticationError("Unauthorized: Invalid or missing API key")
