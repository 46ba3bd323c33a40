# ==============================================================================
# HEALTH ENDPOINT
# ==============================================================================

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from basicapi import __version__

router = APIRouter(tags=["Health"])


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = Field(description="healthy or degraded")
    version: str
    backend: str
    database: str = Field(description="connected or disconnected")
    schema_state: str
    schema_revision: Optional[str] = None


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check database connectivity and schema state.",
)
async def health_check(request: Request) -> HealthResponse:
    """Application health check."""
    services = request.app.state.services

    db_healthy = await services.storage.health_check()
    revision = await services.lifecycle.current_revision() if db_healthy else None

    return HealthResponse(
        status="healthy" if db_healthy else "degraded",
        version=__version__,
        backend=services.storage.backend.value,
        database="connected" if db_healthy else "disconnected",
        schema_state=services.lifecycle.state.value,
        schema_revision=revision,
    )
