from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from app.models.api import InfoResponse, SystemInfoResponse
from app.services.config import AppConfig
from app.services.dependencies import get_app_config, get_system_service
from app.services.system_service import SystemService

router = APIRouter(prefix="/api", tags=["api"])


@router.get("/info", response_model=InfoResponse)
async def info(
    config: AppConfig = Depends(get_app_config),
    system: SystemService = Depends(get_system_service),
) -> InfoResponse:
    return InfoResponse(
        app=config.app_name,
        version=config.app_version,
        environment=config.environment,
        timestamp=datetime.now(timezone.utc),
        python_version=system.python_version(),
    )


@router.get("/system", response_model=SystemInfoResponse)
async def system_info(system: SystemService = Depends(get_system_service)) -> SystemInfoResponse:
    return system.system_info()
