"""
Health endpoints for operational monitoring. No secrets are exposed.
"""

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from scribe.core.database import check_connection


router = APIRouter(tags=["health"])


@router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@router.get("/readyz")
def readyz():
    """Readiness check: database reachable."""
    if not check_connection():
        return JSONResponse(status_code=503, content={"status": "unavailable", "db": False})
    return {"status": "ok", "db": True}
