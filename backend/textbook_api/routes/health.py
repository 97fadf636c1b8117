"""
Textbook API — Health Check and Service Banner
===============================================

What:  GET /health (liveness probe) and GET / (service banner).
Why:   Platforms probe /health to decide whether to keep an instance. It
       touches no dependency: a cold database must not get a healthy
       instance recycled.
"""

import time
from datetime import datetime, timezone

from fastapi import APIRouter, Request

from textbook_api import __version__
from textbook_api.schemas.common import HealthResponse

router = APIRouter(tags=["Health"])

SERVICE_NAME = "robotics-textbook-api"

# Initialized once when the module loads
_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Liveness probe",
)
async def health_check(request: Request) -> HealthResponse:
    return HealthResponse(
        status="ok",
        timestamp=datetime.now(timezone.utc),
        service=SERVICE_NAME,
        environment=request.app.state.settings.environment,
        version=__version__,
        uptime_seconds=round(time.time() - _start_time, 2),
    )


@router.get("/", summary="Service banner")
async def root() -> dict:
    return {
        "service": SERVICE_NAME,
        "version": __version__,
        "status": "running",
        "endpoints": {
            "health": "GET /health",
            "auth": "/auth/*",
            "profile": "GET|PUT /user/profile",
            "personalize": "POST /personalize",
            "chat": "POST /chat",
        },
    }
