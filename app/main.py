from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette import status
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.models.database import DbErrorResponse
from app.models.errors import ErrorResponse, NotFoundResponse
from app.routes.api import router as api_router
from app.routes.database import router as database_router
from app.routes.health import router as health_router
from app.routes.pages import router as pages_router
from app.services.config import AppConfig, DatabaseConfig, ensure_logging
from app.services.database_service import DatabaseService, DatabaseServiceError
from app.services.dependencies import get_app_config_from_app, get_database_service_from_app

logger = logging.getLogger(__name__)

AVAILABLE_ENDPOINTS = ["/", "/health", "/api/info", "/api/system", "/db-check"]


def create_app(
    config: Optional[AppConfig] = None,
    *,
    database: Optional[DatabaseService] = None,
) -> FastAPI:
    """Build the web app. Tests pass their own config/database; servers read the environment."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        ensure_logging()
        cfg = get_app_config_from_app(app)
        logger.info("App starting (environment=%s, port=%d)", cfg.environment, cfg.port)
        db = get_database_service_from_app(app)
        await db.startup_check()
        yield
        logger.info("Shutting down gracefully")
        await db.close()

    app = FastAPI(title="My AWS DevOps Web App", version=AppConfig.app_version, lifespan=lifespan)
    app.state.config = config or AppConfig.from_env()
    app.state.database = database or DatabaseService(DatabaseConfig.from_env())

    app.include_router(pages_router)
    app.include_router(health_router)
    app.include_router(api_router)
    app.include_router(database_router)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.info(
            "%s - %s %s",
            datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            request.method,
            request.url.path,
        )
        return await call_next(request)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        # Unsupported methods on known paths get the same 404 envelope.
        if exc.status_code in (status.HTTP_404_NOT_FOUND, status.HTTP_405_METHOD_NOT_ALLOWED):
            body = NotFoundResponse(path=request.url.path, available_endpoints=AVAILABLE_ENDPOINTS)
            return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content=body.model_dump(by_alias=True))
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=exc.headers)

    @app.exception_handler(DatabaseServiceError)
    async def database_error_handler(request: Request, exc: DatabaseServiceError) -> JSONResponse:
        """Map database failures to the `/db-check` error payload: {"status": "error", "message": "..."}."""

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=DbErrorResponse(message=str(exc)).model_dump(),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        """Last-resort handler: hide exception details from clients in production."""

        logger.error("Unhandled error: %s", exc, exc_info=exc)
        cfg = get_app_config_from_app(request.app)
        message = "Something went wrong" if cfg.is_production else str(exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorResponse(message=message).model_dump(),
        )

    return app


app = create_app()
