"""Liveness, readiness and component status."""

from typing import Any, Dict

from fastapi import APIRouter, HTTPException, Request, status

from serenis import __version__
from serenis.core.config import settings
from serenis.persistence.database import check_database_health

router = APIRouter(prefix="/health", tags=["system"])


async def storage_status() -> Dict[str, Any]:
    if settings.storage_backend == "memory":
        return {"backend": "memory", "status": "healthy"}
    report = await check_database_health()
    report["backend"] = "sqlite"
    return report


def _controller_ready(request: Request) -> bool:
    return getattr(request.app.state, "flow_controller", None) is not None


@router.get("")
async def health_check(request: Request):
    storage = await storage_status()
    return {
        "status": storage["status"],
        "version": __version__,
        "debug": settings.debug,
        "components": {
            "storage": storage,
            "ai": {"configured": settings.llm_configured},
            "sync": {"configured": settings.sync_configured},
            "flow_controller": {"ready": _controller_ready(request)},
        },
    }


@router.get("/live")
async def liveness():
    return {"status": "alive"}


@router.get("/ready")
async def readiness(request: Request):
    """503 until storage answers and the active session is loaded."""
    if (await storage_status())["status"] != "healthy":
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, detail="Storage not ready")
    if not _controller_ready(request):
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, detail="Session not loaded")
    return {"status": "ready"}
