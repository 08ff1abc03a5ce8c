from __future__ import annotations

import logging
import ssl
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

import asyncpg

from app.services.config import DatabaseConfig

logger = logging.getLogger(__name__)


class DatabaseServiceError(RuntimeError):
    pass


PoolFactory = Callable[..., Awaitable[Any]]


class DatabaseService:
    """Thin wrapper over an asyncpg pool used for the `/db-check` probe.

    The pool is created with ``min_size=0`` so opening it never touches the
    network; a dead database only shows up in `startup_check` and `now`.
    """

    def __init__(self, config: DatabaseConfig, *, pool_factory: PoolFactory = asyncpg.create_pool) -> None:
        self._config = config
        self._pool_factory = pool_factory
        self._pool: Optional[Any] = None

    @property
    def configured(self) -> bool:
        return self._config.configured

    def _ssl_argument(self) -> Any:
        if not self._config.ssl:
            return False
        # Managed databases (RDS) present certificates the container does not trust.
        context = ssl.create_default_context()
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
        return context

    async def connect(self) -> None:
        if not self._config.configured or self._pool is not None:
            return

        try:
            self._pool = await self._pool_factory(
                dsn=self._config.url,
                min_size=0,
                max_size=5,
                ssl=self._ssl_argument(),
                timeout=self._config.timeout_seconds,
            )
        except Exception as exc:
            logger.exception("Failed to create database pool")
            raise DatabaseServiceError(f"Failed to create database pool: {exc}") from exc

    async def close(self) -> None:
        if self._pool is None:
            return
        pool, self._pool = self._pool, None
        await pool.close()

    async def now(self) -> datetime:
        if not self._config.configured:
            raise DatabaseServiceError("DATABASE_URL is not configured")
        if self._pool is None:
            await self.connect()

        try:
            return await self._pool.fetchval("SELECT NOW()", timeout=self._config.timeout_seconds)
        except Exception as exc:
            logger.error("DB check failed: %s", exc)
            raise DatabaseServiceError(str(exc)) from exc

    async def startup_check(self) -> None:
        """Open the pool and log the database time; failures are logged, not raised."""

        if not self._config.configured:
            logger.warning("DATABASE_URL not set, skipping database connection check")
            return

        try:
            await self.connect()
            db_time = await self.now()
        except DatabaseServiceError as exc:
            logger.error("Failed to connect to database: %s", exc)
            return

        logger.info("Connected to database")
        logger.info("DB Time: %s", db_time)
