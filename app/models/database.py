from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class DbCheckResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: str = "connected"
    db_time: datetime = Field(..., alias="dbTime")


class DbErrorResponse(BaseModel):
    status: str = "error"
    message: str
