from __future__ import annotations

from fastapi import APIRouter, Depends

from app.models.database import DbCheckResponse
from app.services.database_service import DatabaseService
from app.services.dependencies import get_database_service

router = APIRouter(tags=["database"])


@router.get("/db-check", response_model=DbCheckResponse)
async def db_check(db: DatabaseService = Depends(get_database_service)) -> DbCheckResponse:
    db_time = await db.now()
    return DbCheckResponse(status="connected", db_time=db_time)
