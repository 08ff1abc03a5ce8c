from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from app.models.api import HealthResponse
from app.services.config import AppConfig
from app.services.dependencies import get_app_config, get_system_service
from app.services.system_service import SystemService

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health(
    config: AppConfig = Depends(get_app_config),
    system: SystemService = Depends(get_system_service),
) -> HealthResponse:
    """Liveness probe used by the ECS task and the Kubernetes deployment."""

    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        environment=config.environment,
        uptime=system.process_uptime(),
    )
