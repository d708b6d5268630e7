"""
Vertica driver adapter.

vertica_python is a blocking DB-API driver, so every call runs in a worker
thread via asyncio.to_thread. The pool only sees the small async surface
defined by DriverConnection.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, List, Protocol, Sequence

import vertica_python
from vertica_python import errors as vertica_errors

from ..config import VerticaConfig

logger = logging.getLogger(__name__)

# Errors after which a session cannot be trusted and must not return to idle.
# The driver's ConnectionError is not a subclass of the builtin one.
DISCONNECT_ERRORS = (ConnectionError, OSError, vertica_errors.ConnectionError)


@dataclass
class QueryResult:
    """Raw result: column names plus positional row values."""
    fields: List[str] = field(default_factory=list)
    rows: List[Sequence[Any]] = field(default_factory=list)


class DriverConnection(Protocol):
    """What the pool needs from a live database session."""

    async def execute(self, sql: str) -> QueryResult:
        ...

    async def close(self) -> None:
        ...


class VerticaConnection:
    """A single vertica_python session exposed through the DriverConnection surface."""

    def __init__(self, raw):
        self._raw = raw

    @classmethod
    async def connect(cls, settings: VerticaConfig) -> "VerticaConnection":
        raw = await asyncio.to_thread(vertica_python.connect, **settings.connection_info())
        logger.info("Vertica connection created (%s:%s/%s)", settings.host, settings.port, settings.database)
        return cls(raw)

    async def execute(self, sql: str) -> QueryResult:
        return await asyncio.to_thread(self._execute, sql)

    def _execute(self, sql: str) -> QueryResult:
        cursor = self._raw.cursor()
        try:
            cursor.execute(sql)
            if cursor.description is None:
                return QueryResult()
            fields = [column.name for column in cursor.description]
            return QueryResult(fields=fields, rows=cursor.fetchall())
        finally:
            cursor.close()

    async def close(self) -> None:
        await asyncio.to_thread(self._raw.close)
        logger.info("Vertica connection closed")


def vertica_connection_factory(settings: VerticaConfig):
    """Build the zero-argument coroutine factory the pool uses to open sessions."""

    async def factory() -> VerticaConnection:
        return await VerticaConnection.connect(settings)

    return factory
