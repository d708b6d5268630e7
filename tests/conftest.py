"""
Shared fixtures and fakes for the dashboard tests.

FakeConnection stands in for a Vertica session: it answers the probe queries,
serves canned results per SQL fragment and can be told to fail or stall.
"""
import asyncio
import os
from typing import Dict, List, Optional

import pytest

# Set environment variables BEFORE importing the server (for CI without .env)
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("CORS_ALLOWED_ORIGINS", "http://localhost:3000")
os.environ.setdefault("VERTICA_HOST", "localhost")
os.environ.setdefault("VERTICA_DATABASE", "analytics")
os.environ.setdefault("VERTICA_USER", "dashboard")
os.environ.setdefault("VERTICA_PASSWORD", "test_password_for_ci_only")  # pragma: allowlist secret

from vertica_dash.common.cache import ResponseCache
from vertica_dash.common.config import PoolConfig
from vertica_dash.common.database import ConnectionPool, QueryResult


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeConnection:
    """In-memory DriverConnection."""

    def __init__(self, database: "FakeDatabase"):
        self.database = database
        self.executed: List[str] = []
        self.closed = False
        self.healthy = True
        self.delay = 0.0
        self.error: Optional[Exception] = None

    async def execute(self, sql: str) -> QueryResult:
        self.executed.append(sql)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if sql.startswith("SELECT 1 as test"):
            return QueryResult(["test"], [(1,)] if self.healthy else [])
        if sql.startswith("SELECT 1 as result"):
            return QueryResult(["result"], [(1,)])
        for fragment, result in self.database.results.items():
            if fragment in sql:
                return result
        return QueryResult()

    async def close(self) -> None:
        if self.database.close_error is not None:
            raise self.database.close_error
        self.closed = True


class FakeDatabase:
    """Connection factory plus canned results shared by every FakeConnection."""

    def __init__(self):
        self.results: Dict[str, QueryResult] = {}
        self.connections: List[FakeConnection] = []
        self.connect_error: Optional[Exception] = None
        self.connect_delay = 0.0
        self.close_error: Optional[Exception] = None

    async def connect(self) -> FakeConnection:
        if self.connect_delay:
            await asyncio.sleep(self.connect_delay)
        if self.connect_error is not None:
            raise self.connect_error
        conn = FakeConnection(self)
        self.connections.append(conn)
        return conn

    def queries_matching(self, fragment: str) -> List[str]:
        return [sql for conn in self.connections for sql in conn.executed if fragment in sql]


def fast_pool_config(**overrides) -> PoolConfig:
    """Pool settings scaled down so tests finish in milliseconds."""
    values = dict(
        min_size=0,
        max_size=2,
        acquire_timeout=0.5,
        idle_timeout=300.0,
        soft_idle_timeout=120.0,
        eviction_interval=60.0,
        query_timeout=1.0,
        validation_timeout=0.2,
        drain_timeout=0.5,
        retry_attempts=3,
        retry_base_delay=0.01,
        retry_max_delay=0.04,
    )
    values.update(overrides)
    return PoolConfig(**values)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def database() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def make_pool(database, clock):
    """Build a pool over the fake database; keyword args override PoolConfig."""

    def _make(**overrides) -> ConnectionPool:
        return ConnectionPool(database.connect, fast_pool_config(**overrides), connect_timeout=0.5, clock=clock)

    return _make


@pytest.fixture
def cache(clock) -> ResponseCache:
    return ResponseCache(default_ttl=300, max_keys=100, clock=clock)
