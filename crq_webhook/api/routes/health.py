from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse


router = APIRouter(tags=["health"])


@router.get("/healthz", summary="Liveness probe")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz", summary="Readiness probe")
async def readyz(request: Request) -> JSONResponse:
    """Check that the webhook can reach the cluster API."""

    health_status: dict[str, Any] = {
        "status": "healthy",
        "dependencies": {
            "kubernetes": "unknown",
        },
    }

    try:
        await request.app.state.cluster_reader.ping()
        if request.app.state.settings.kube_api_url == "memory://":
            health_status["dependencies"]["kubernetes"] = "healthy (in-memory)"
        else:
            health_status["dependencies"]["kubernetes"] = "healthy"
    except Exception as e:
        health_status["dependencies"]["kubernetes"] = f"unhealthy: {str(e)}"
        health_status["status"] = "degraded"

    status_code = 200 if health_status["status"] == "healthy" else 503
    return JSONResponse(status_code=status_code, content=health_status)
