"""
Bounded asyncio connection pool.

Connections move through a small state machine:

    created -> idle -> borrowed -> idle ...
    idle -> validating -> idle | destroyed
    borrowed -> destroyed        (query timeout, broken session, drain)

A borrowed connection is never probed. Everything runs on one event loop, so
the bookkeeping collections need no locking; only the awaits inside acquire,
validate, release and close interleave with other requests.

Example:
    pool = ConnectionPool(vertica_connection_factory(settings), PoolConfig())
    await pool.start()
    rows = await pool.query_with_retry("SELECT 1 AS x")   # [{'x': 1}]
    await pool.close()
"""
import asyncio
import itertools
import logging
import time
from collections import deque
from contextlib import asynccontextmanager, suppress
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Set

from ..config import PoolConfig
from ..constants import HEALTH_CHECK_QUERY, VALIDATION_QUERY
from ..errors import (
    ConnectionFailed,
    DatabaseError,
    PoolClosed,
    PoolExhausted,
    PoolShutdownError,
    QueryFailed,
    QueryTimeout,
    RowShapeError,
)
from .vertica import DISCONNECT_ERRORS, DriverConnection, QueryResult

logger = logging.getLogger(__name__)

ConnectionFactory = Callable[[], Awaitable[DriverConnection]]

_connection_ids = itertools.count(1)


class PooledConnection:
    """A driver connection plus the pool's bookkeeping for it."""

    def __init__(self, driver: DriverConnection, now: float):
        self.id = next(_connection_ids)
        self.driver = driver
        self.created_at = now
        self.last_used_at = now
        self.last_validated_at = now
        self.broken = False

    def __repr__(self) -> str:
        return f"<PooledConnection #{self.id}>"


@dataclass(frozen=True)
class PoolStats:
    size: int
    available: int
    pending: int
    borrowed: int
    min: int
    max: int

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def backoff_delay(attempt: int, base: float = 1.0, cap: float = 10.0) -> float:
    """Seconds to wait after the given zero-based failed attempt."""
    return min(base * (2 ** attempt), cap)


def rows_to_dicts(result: Optional[QueryResult]) -> List[Dict[str, Any]]:
    """Zip column names with positional row values, in column order."""
    if result is None or not result.rows:
        return []
    fields = list(result.fields)
    records = []
    for index, row in enumerate(result.rows):
        if len(row) != len(fields):
            raise RowShapeError(
                f"Row {index} has {len(row)} values but the result has {len(fields)} columns"
            )
        records.append(dict(zip(fields, row)))
    return records


class ConnectionPool:
    """Bounded pool of database connections with validation, timeouts and retry."""

    def __init__(
        self,
        factory: ConnectionFactory,
        config: Optional[PoolConfig] = None,
        connect_timeout: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            factory: Coroutine function opening a new DriverConnection
            config: Pool sizing, timeouts and retry policy
            connect_timeout: Seconds allowed for a single connection attempt
            clock: Monotonic clock used for idle bookkeeping
        """
        self.config = config or PoolConfig()
        self._factory = factory
        self._connect_timeout = connect_timeout
        self._clock = clock

        self._all: Set[PooledConnection] = set()
        self._idle: Deque[PooledConnection] = deque()
        self._borrowed: Set[PooledConnection] = set()
        self._waiters: Deque[asyncio.Future] = deque()
        self._creating = 0
        self._pending = 0

        self._closing = False
        self._closed = False
        self._drained = asyncio.Event()
        self._closed_event = asyncio.Event()
        self._eviction_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Pre-create min_size connections and start the eviction sweep."""
        if self._closing:
            raise PoolClosed("Connection pool is closed")
        await self._ensure_min()
        if self._eviction_task is None:
            self._eviction_task = asyncio.create_task(self._eviction_loop())
        logger.info(
            "Vertica connection pool initialized (min: %d, max: %d)",
            self.config.min_size, self.config.max_size,
        )

    async def close(self) -> None:
        """
        Drain and clear the pool. Safe to call more than once.

        New acquires fail with PoolClosed immediately. Borrowed connections get
        up to drain_timeout seconds to come back before they are destroyed.

        Raises:
            PoolShutdownError: If any connection failed to disconnect
        """
        if self._closed:
            return
        if self._closing:
            await self._closed_event.wait()
            return

        self._closing = True
        logger.info("Draining connection pool...")

        if self._eviction_task is not None:
            self._eviction_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._eviction_task
            self._eviction_task = None

        self._notify_all()
        self._check_drained()
        if self._borrowed:
            try:
                await asyncio.wait_for(self._drained.wait(), self.config.drain_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "%d connection(s) still borrowed after %.1fs, destroying them",
                    len(self._borrowed), self.config.drain_timeout,
                )

        failures = 0
        for conn in list(self._all):
            if not await self._destroy(conn):
                failures += 1

        self._closed = True
        self._closed_event.set()

        if failures:
            raise PoolShutdownError(f"{failures} connection(s) failed to close cleanly")
        logger.info("Vertica connection pool closed")

    @property
    def closed(self) -> bool:
        return self._closing

    # ------------------------------------------------------------------
    # Acquire / release
    # ------------------------------------------------------------------

    async def acquire(self, timeout: Optional[float] = None) -> PooledConnection:
        """
        Borrow a connection.

        Idle connections are preferred; a new one is created while the pool is
        below max_size; otherwise the caller waits for a release. Waiters are
        not served in any guaranteed order.

        Args:
            timeout: Seconds to wait for capacity (defaults to acquire_timeout)

        Raises:
            PoolExhausted: No connection became available in time
            ConnectionFailed: Opening a new connection failed
            PoolClosed: The pool is draining or closed
        """
        if self._closing:
            raise PoolClosed("Connection pool is closed")

        timeout = self.config.acquire_timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        self._pending += 1
        try:
            while True:
                if self._closing:
                    raise PoolClosed("Connection pool is closed")

                conn = await self._take_idle()
                if conn is not None:
                    return self._lend(conn)

                if self._has_capacity():
                    return self._lend(await self._create())

                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise PoolExhausted(
                        f"Timed out acquiring a connection after {int(timeout * 1000)}ms"
                    )

                waiter = loop.create_future()
                self._waiters.append(waiter)
                try:
                    await asyncio.wait_for(waiter, remaining)
                except asyncio.TimeoutError:
                    raise PoolExhausted(
                        f"Timed out acquiring a connection after {int(timeout * 1000)}ms"
                    ) from None
                finally:
                    with suppress(ValueError):
                        self._waiters.remove(waiter)
        finally:
            self._pending -= 1

    async def release(self, conn: PooledConnection, discard: bool = False) -> None:
        """
        Return a borrowed connection. Never raises.

        Args:
            conn: Connection obtained from acquire()
            discard: Destroy the connection instead of returning it to idle
        """
        if conn not in self._borrowed:
            logger.warning("Ignoring release of %r: not currently borrowed from this pool", conn)
            return

        self._borrowed.discard(conn)
        if discard or conn.broken or self._closing:
            await self._destroy(conn)
            return

        conn.last_used_at = self._clock()
        self._idle.append(conn)
        self._notify()
        logger.debug("Connection released, pool stats: %s", self.get_stats())

    @asynccontextmanager
    async def connection(self, timeout: Optional[float] = None):
        """Borrow a connection for the duration of an ``async with`` block."""
        conn = await self.acquire(timeout)
        try:
            yield conn
        except asyncio.CancelledError:
            # The session may be mid-statement; it cannot be reused
            conn.broken = True
            raise
        finally:
            await self.release(conn)

    async def validate(self, conn: PooledConnection) -> bool:
        """Probe a connection with a trivial query. Returns False on any failure."""
        try:
            result = await asyncio.wait_for(
                conn.driver.execute(VALIDATION_QUERY), self.config.validation_timeout
            )
        except asyncio.TimeoutError:
            logger.warning("Connection %s validation timeout", conn.id)
            return False
        except Exception as e:
            logger.warning("Connection %s validation failed: %s", conn.id, e)
            return False

        if result is None or not result.rows:
            logger.warning("Connection %s validation returned no rows", conn.id)
            return False

        conn.last_validated_at = self._clock()
        return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def query(self, sql: str) -> List[Dict[str, Any]]:
        """
        Run one query on a pooled connection. No retry.

        Returns:
            Rows as column-name to value dicts

        Raises:
            QueryTimeout: The query exceeded query_timeout (connection discarded)
            QueryFailed: The driver reported an error
            PoolExhausted, ConnectionFailed, PoolClosed: From acquire()
        """
        loop = asyncio.get_running_loop()
        start = loop.time()
        logger.debug("Pool stats before acquire: %s", self.get_stats())

        async with self.connection() as conn:
            logger.debug("Connection %s acquired in %.0fms", conn.id, (loop.time() - start) * 1000)
            try:
                result = await asyncio.wait_for(
                    conn.driver.execute(sql), self.config.query_timeout
                )
            except asyncio.TimeoutError:
                conn.broken = True
                logger.error("Query timeout after %.0fms", (loop.time() - start) * 1000)
                raise QueryTimeout(self.config.query_timeout) from None
            except Exception as e:
                if isinstance(e, DISCONNECT_ERRORS):
                    conn.broken = True
                logger.error("Query error after %.0fms: %s", (loop.time() - start) * 1000, e)
                raise QueryFailed(str(e)) from e

            rows = rows_to_dicts(result)
            logger.info(
                "Query completed in %.0fms, returned %d rows",
                (loop.time() - start) * 1000, len(rows),
            )
            return rows

    async def query_with_retry(self, sql: str, max_attempts: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        Run a query, retrying failures with capped exponential backoff.

        The delay after failed attempt n (zero-based) is
        min(retry_base_delay * 2**n, retry_max_delay).

        Raises:
            DatabaseError: The last error once all attempts are exhausted
        """
        attempts = self.config.retry_attempts if max_attempts is None else max_attempts
        if attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        last_error: Optional[DatabaseError] = None
        for attempt in range(attempts):
            try:
                return await self.query(sql)
            except DatabaseError as e:
                last_error = e
                logger.warning("Query attempt %d/%d failed: %s", attempt + 1, attempts, e)
                if not e.retryable:
                    raise
                if attempt < attempts - 1:
                    await asyncio.sleep(
                        backoff_delay(attempt, self.config.retry_base_delay, self.config.retry_max_delay)
                    )

        raise last_error

    async def health_check(self) -> bool:
        """Run a trivial query through the full pool path."""
        try:
            rows = await self.query(HEALTH_CHECK_QUERY)
        except Exception as e:
            logger.error("Health check failed: %s", e)
            return False
        return len(rows) > 0 and rows[0].get("result") == 1

    def get_stats(self) -> PoolStats:
        size = len(self._all)
        available = len(self._idle)
        return PoolStats(
            size=size,
            available=available,
            pending=self._pending,
            borrowed=size - available,
            min=self.config.min_size,
            max=self.config.max_size,
        )

    # ------------------------------------------------------------------
    # Eviction
    # ------------------------------------------------------------------

    async def evict(self) -> int:
        """
        One eviction run over the oldest idle connections.

        Connections idle past idle_timeout are destroyed while the pool is above
        min_size; connections idle past soft_idle_timeout are probed and
        destroyed if the probe fails. The pool is then topped up to min_size.

        Returns:
            Number of connections destroyed
        """
        destroyed = 0
        now = self._clock()
        for conn in list(self._idle)[: self.config.evictions_per_run]:
            if conn not in self._idle:
                continue
            idle_for = now - conn.last_used_at
            if idle_for >= self.config.idle_timeout and len(self._all) > self.config.min_size:
                logger.debug("Evicting %r idle for %.0fs", conn, idle_for)
                await self._destroy(conn)
                destroyed += 1
            elif now - conn.last_validated_at >= self.config.soft_idle_timeout:
                self._idle.remove(conn)
                valid = await self.validate(conn)
                if conn not in self._all:
                    continue
                if valid and not self._closing:
                    self._idle.appendleft(conn)
                    self._notify()
                else:
                    await self._destroy(conn)
                    destroyed += 1

        await self._ensure_min()
        return destroyed

    async def _eviction_loop(self) -> None:
        while not self._closing:
            await asyncio.sleep(self.config.eviction_interval)
            try:
                await self.evict()
            except Exception as e:
                logger.error("Error during pool eviction run: %s", e)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _has_capacity(self) -> bool:
        return len(self._all) + self._creating < self.config.max_size

    def _lend(self, conn: PooledConnection) -> PooledConnection:
        self._borrowed.add(conn)
        return conn

    async def _take_idle(self) -> Optional[PooledConnection]:
        while self._idle:
            conn = self._idle.popleft()
            if self._clock() - max(conn.last_used_at, conn.last_validated_at) >= self.config.soft_idle_timeout:
                try:
                    valid = await self.validate(conn)
                except asyncio.CancelledError:
                    self._idle.appendleft(conn)
                    raise
                if conn not in self._all:
                    continue
                if not valid:
                    await self._destroy(conn)
                    continue
            return conn
        return None

    async def _create(self) -> PooledConnection:
        self._creating += 1
        failed = True
        try:
            driver = await asyncio.wait_for(self._factory(), self._connect_timeout)
            failed = False
        except asyncio.TimeoutError:
            logger.error("Vertica connection attempt timed out after %.1fs", self._connect_timeout)
            raise ConnectionFailed(
                f"Connection attempt timed out after {int(self._connect_timeout * 1000)}ms"
            ) from None
        except Exception as e:
            logger.error("Vertica connection error: %s", e)
            raise ConnectionFailed(str(e)) from e
        finally:
            self._creating -= 1
            if failed:
                self._notify()

        conn = PooledConnection(driver, self._clock())
        self._all.add(conn)
        logger.info("Connection %s created in pool (size: %d)", conn.id, len(self._all))

        if self._closing:
            await self._destroy(conn)
            raise PoolClosed("Connection pool is closed")
        return conn

    async def _destroy(self, conn: PooledConnection) -> bool:
        self._all.discard(conn)
        self._borrowed.discard(conn)
        with suppress(ValueError):
            self._idle.remove(conn)
        try:
            await asyncio.wait_for(conn.driver.close(), self.config.validation_timeout)
            logger.info("Connection %s destroyed from pool", conn.id)
            return True
        except Exception as e:
            logger.error("Error disconnecting connection %s: %s", conn.id, e)
            return False
        finally:
            self._notify()
            self._check_drained()

    async def _ensure_min(self) -> None:
        while not self._closing and len(self._all) + self._creating < self.config.min_size:
            try:
                conn = await self._create()
            except DatabaseError as e:
                logger.warning("Could not create connection to reach min pool size: %s", e)
                return
            self._idle.append(conn)
            self._notify()

    def _notify(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return

    def _notify_all(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)

    def _check_drained(self) -> None:
        if self._closing and not self._borrowed:
            self._drained.set()
