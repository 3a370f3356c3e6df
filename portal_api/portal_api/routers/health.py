"""Liveness endpoint, registered under ``/api/v1/health``."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from portal_api import __version__

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict[str, Any]:
    """Return 200 while the process is serving requests."""
    return {"status": "healthy", "version": __version__}
