from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class NotFoundResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    error: str = "Endpoint not found"
    path: str
    available_endpoints: list[str] = Field(..., alias="availableEndpoints")


class ErrorResponse(BaseModel):
    error: str = "Internal server error"
    message: str
