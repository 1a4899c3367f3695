import secrets
from typing import Optional

from fastapi import HTTPException, Request

# Endpoints that don't require API key auth (health checks, asset serving)
_PUBLIC_PATHS = frozenset(["/healthz", "/assets"])


def path_is_public(path: str) -> bool:
    """Check if a request path is public (no auth required)."""
    if path in _PUBLIC_PATHS:
        return True
    return path.startswith("/assets/")


def api_key_dependency(expected: Optional[str]):
    """Build a FastAPI dependency checking ``X-API-Key`` against ``expected``.

    With no key configured every request is let through (dev mode).
    """

    async def verify_api_key(request: Request):
        if not expected:
            return
        if path_is_public(request.url.path):
            return
        api_key = request.headers.get("x-api-key")
        if not api_key:
            raise HTTPException(status_code=401, detail="Missing API key")
        # Timing-safe comparison
        if not secrets.compare_digest(api_key, expected):
            raise HTTPException(status_code=401, detail="Invalid API key")

    return verify_api_key
