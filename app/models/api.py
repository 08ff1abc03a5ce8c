from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class HealthResponse(BaseModel):
    status: str = "healthy"
    timestamp: datetime
    environment: str
    uptime: float = Field(..., description="Process uptime in seconds")


class InfoResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    app: str
    version: str
    environment: str
    timestamp: datetime
    python_version: str = Field(..., alias="pythonVersion")


class SystemInfoResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    hostname: str
    platform: str
    architecture: str
    total_memory: int = Field(..., alias="totalMemory")
    free_memory: int = Field(..., alias="freeMemory")
    cpus: int
    uptime: float = Field(..., description="Host uptime in seconds")
    loadavg: list[float]
