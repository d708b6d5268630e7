"""Retry policy: backoff schedule and attempt counting."""
import asyncio

import pytest
from vertica_python import errors as vertica_errors

from vertica_dash.common.database import backoff_delay
from vertica_dash.common.errors import ConnectionFailed, PoolClosed, QueryFailed


class TestBackoffDelay:

    def test_doubles_from_base(self):
        assert [backoff_delay(n) for n in range(4)] == [1.0, 2.0, 4.0, 8.0]

    def test_capped(self):
        assert backoff_delay(4) == 10.0
        assert backoff_delay(10) == 10.0

    def test_custom_base_and_cap(self):
        assert backoff_delay(0, base=0.5, cap=3.0) == 0.5
        assert backoff_delay(3, base=0.5, cap=3.0) == 3.0


class TestQueryWithRetry:

    @pytest.mark.asyncio
    async def test_makes_exactly_n_attempts_then_raises_last_error(self, make_pool, database):
        pool = make_pool()
        conn = await pool.acquire()
        conn.driver.error = RuntimeError("permission denied for schema trc")
        await pool.release(conn)

        with pytest.raises(QueryFailed, match="permission denied"):
            await pool.query_with_retry("SELECT * FROM trc.publishers", max_attempts=3)

        assert len(database.queries_matching("trc.publishers")) == 3
        await pool.close()

    @pytest.mark.asyncio
    async def test_waits_between_attempts(self, make_pool, database):
        pool = make_pool(retry_base_delay=0.02, retry_max_delay=0.5)
        database.connect_error = OSError("host unreachable")

        loop = asyncio.get_running_loop()
        started = loop.time()
        with pytest.raises(ConnectionFailed):
            await pool.query_with_retry("SELECT 1", max_attempts=3)
        elapsed = loop.time() - started

        # 0.02 + 0.04 of backoff, nothing after the last attempt
        assert 0.05 <= elapsed < 0.5
        await pool.close()

    @pytest.mark.asyncio
    async def test_sleeps_follow_capped_backoff(self, make_pool, database, monkeypatch):
        pool = make_pool(retry_base_delay=0.01, retry_max_delay=0.04)
        database.connect_error = OSError("host unreachable")
        delays = []

        async def record_sleep(seconds):
            delays.append(seconds)

        monkeypatch.setattr(asyncio, "sleep", record_sleep)

        with pytest.raises(ConnectionFailed):
            await pool.query_with_retry("SELECT 1", max_attempts=5)

        assert delays == [0.01, 0.02, 0.04, 0.04]
        assert delays == [backoff_delay(n, 0.01, 0.04) for n in range(4)]
        await pool.close()

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failure(self, make_pool, database):
        pool = make_pool()
        conn = await pool.acquire()
        conn.driver.error = ConnectionResetError("connection reset by peer")
        await pool.release(conn)

        rows = await pool.query_with_retry("SELECT 1 as result")

        assert rows == [{"result": 1}]
        # The reset connection was discarded and replaced
        assert conn.driver.closed
        assert len(database.connections) == 2
        await pool.close()

    @pytest.mark.asyncio
    async def test_lost_vertica_session_is_replaced(self, make_pool, database):
        pool = make_pool()
        conn = await pool.acquire()
        conn.driver.error = vertica_errors.ConnectionError("Connection to server lost")
        await pool.release(conn)

        rows = await pool.query_with_retry("SELECT 1 as result", max_attempts=3)

        assert rows == [{"result": 1}]
        assert conn.driver.closed
        assert len(conn.driver.executed) == 1
        assert len(database.connections) == 2
        assert pool.get_stats().size == 1
        await pool.close()

    @pytest.mark.asyncio
    async def test_closed_pool_is_not_retried(self, make_pool, database):
        pool = make_pool()
        await pool.close()

        with pytest.raises(PoolClosed):
            await pool.query_with_retry("SELECT 1", max_attempts=5)

        assert database.connections == []

    @pytest.mark.asyncio
    async def test_rejects_zero_attempts(self, make_pool):
        pool = make_pool()
        with pytest.raises(ValueError):
            await pool.query_with_retry("SELECT 1", max_attempts=0)
