import asyncio
import ssl
from datetime import datetime, timezone

import pytest

from app.services.config import DatabaseConfig
from app.services.database_service import DatabaseService, DatabaseServiceError


class FakePool:
    def __init__(self, value=None, error=None):
        self.value = value or datetime(2024, 1, 1, tzinfo=timezone.utc)
        self.error = error
        self.queries = []
        self.closed = False

    async def fetchval(self, query, timeout=None):
        self.queries.append((query, timeout))
        if self.error is not None:
            raise self.error
        return self.value

    async def close(self):
        self.closed = True


class PoolFactory:
    def __init__(self, pool=None, error=None):
        self.pool = pool or FakePool()
        self.error = error
        self.calls = []

    async def __call__(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.pool


CONFIGURED = DatabaseConfig(url="postgres://app@db/app", timeout_seconds=3)


def test_now_requires_url():
    service = DatabaseService(DatabaseConfig(), pool_factory=PoolFactory())

    with pytest.raises(DatabaseServiceError, match="DATABASE_URL is not configured"):
        asyncio.run(service.now())


def test_now_opens_pool_lazily():
    factory = PoolFactory()
    service = DatabaseService(CONFIGURED, pool_factory=factory)

    value = asyncio.run(service.now())

    assert value == factory.pool.value
    assert factory.pool.queries == [("SELECT NOW()", 3)]
    assert factory.calls[0]["dsn"] == "postgres://app@db/app"
    assert factory.calls[0]["min_size"] == 0
    assert factory.calls[0]["ssl"] is False


def test_production_ssl_skips_verification():
    factory = PoolFactory()
    config = DatabaseConfig(url="postgres://app@db/app", ssl=True)

    asyncio.run(DatabaseService(config, pool_factory=factory).connect())

    context = factory.calls[0]["ssl"]
    assert isinstance(context, ssl.SSLContext)
    assert context.verify_mode == ssl.CERT_NONE
    assert not context.check_hostname


def test_pool_creation_failure():
    service = DatabaseService(CONFIGURED, pool_factory=PoolFactory(error=OSError("no route to host")))

    with pytest.raises(DatabaseServiceError, match="no route to host"):
        asyncio.run(service.connect())


def test_query_failure():
    service = DatabaseService(CONFIGURED, pool_factory=PoolFactory(pool=FakePool(error=TimeoutError("timed out"))))

    with pytest.raises(DatabaseServiceError, match="timed out"):
        asyncio.run(service.now())


def test_startup_check_logs_and_never_raises(caplog):
    service = DatabaseService(CONFIGURED, pool_factory=PoolFactory(error=OSError("refused")))

    asyncio.run(service.startup_check())

    assert "Failed to connect to database" in caplog.text


def test_close():
    factory = PoolFactory()
    service = DatabaseService(CONFIGURED, pool_factory=factory)

    async def scenario():
        await service.connect()
        await service.close()
        await service.close()

    asyncio.run(scenario())

    assert factory.pool.closed
