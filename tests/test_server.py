"""HTTP routes end to end over a fake Vertica."""
from datetime import date, datetime

import pytest
from fastapi.testclient import TestClient

from vertica_dash.api.app_context import AppContext
from vertica_dash.api.error_handler import handle_api_error
from vertica_dash.api.server import app, main
from vertica_dash.common.config import AppConfig, ServerConfig, VerticaConfig
from vertica_dash.common.constants import ADVERTISERS_CACHE_CONTROL, DEFAULT_CACHE_CONTROL
from vertica_dash.common.database import QueryResult
from vertica_dash.common.errors import PoolExhausted, QueryTimeout


def make_config(app_env: str = "production") -> AppConfig:
    return AppConfig(
        vertica=VerticaConfig(host="localhost", database="analytics", user="dashboard", password="x"),
        server=ServerConfig(app_env=app_env),
    )


@pytest.fixture
def context(make_pool, cache):
    context = AppContext(config=make_config(), pool=make_pool(), cache=cache)
    AppContext.set_instance(context)
    yield context
    AppContext.reset()


@pytest.fixture
def client(context):
    with TestClient(app) as client:
        yield client


@pytest.fixture
def advertiser_rows(database):
    database.results["trc.publisher_config"] = QueryResult(
        ["id", "description", "feature_date"], [(3, "Acme", date(2024, 2, 1))]
    )


@pytest.fixture
def campaign_rows(database):
    database.results["trc.sp_campaigns"] = QueryResult(
        ["id", "name", "advertiser_id", "status"], [(11, "Spring", 5, "RUNNING")]
    )


class TestCachedRoutes:

    def test_miss_then_hit(self, client, database, clock, advertiser_rows):
        miss = client.get("/api/burst-protection/advertisers")

        assert miss.status_code == 200
        assert miss.headers["X-Cache"] == "MISS"
        assert miss.headers["Cache-Control"] == ADVERTISERS_CACHE_CONTROL
        body = miss.json()
        assert body["success"] is True
        assert body["cached"] is False
        assert "query_time_ms" in body
        assert "cache_age_ms" not in body
        assert body["advertisers"] == [{"id": 3, "description": "Acme", "feature_date": "2024-02-01"}]

        clock.advance(5)
        hit = client.get("/api/burst-protection/advertisers")

        assert hit.headers["X-Cache"] == "HIT"
        body = hit.json()
        assert body["cached"] is True
        assert body["cache_age_ms"] == 5000
        assert "query_time_ms" not in body
        assert body["advertisers"] == miss.json()["advertisers"]
        assert len(database.queries_matching("trc.publisher_config")) == 1

    def test_nocache_bypasses_read_but_refreshes_entry(self, client, database, advertiser_rows):
        client.get("/api/burst-protection/advertisers")

        by_param = client.get("/api/burst-protection/advertisers", params={"nocache": "true"})
        by_header = client.get("/api/burst-protection/advertisers", headers={"Cache-Control": "no-cache"})

        assert by_param.headers["X-Cache"] == "MISS"
        assert by_header.headers["X-Cache"] == "MISS"
        assert len(database.queries_matching("trc.publisher_config")) == 3
        assert client.get("/api/burst-protection/advertisers").headers["X-Cache"] == "HIT"

    def test_expired_entry_is_reloaded(self, client, database, clock, campaign_rows):
        client.get("/api/burst-protection/campaigns", params={"advertiserId": 5})
        clock.advance(301)

        response = client.get("/api/burst-protection/campaigns", params={"advertiserId": 5})

        assert response.headers["X-Cache"] == "MISS"
        assert len(database.queries_matching("trc.sp_campaigns")) == 2

    def test_campaigns_payload_and_key(self, client, cache, campaign_rows):
        response = client.get("/api/burst-protection/campaigns", params={"advertiserId": 5})

        assert response.status_code == 200
        assert response.headers["Cache-Control"] == DEFAULT_CACHE_CONTROL
        body = response.json()
        assert body["count"] == 1
        assert body["campaigns"][0]["name"] == "Spring"
        assert body["filters"] == {"advertiserId": 5, "startDate": None, "endDate": None}
        assert cache.keys() == ["bp:campaigns:advertiserId:5"]

    def test_campaigns_are_cached_per_advertiser(self, client, database, campaign_rows):
        client.get("/api/burst-protection/campaigns", params={"advertiserId": 5})
        other = client.get("/api/burst-protection/campaigns", params={"advertiserId": 7})

        assert other.headers["X-Cache"] == "MISS"
        assert len(database.queries_matching("trc.sp_campaigns")) == 2

    def test_windows_with_empty_filters(self, client, database):
        response = client.get("/api/burst-protection/windows", params={"advertiserId": ""})

        assert response.status_code == 200
        assert response.json()["metadata"]["total_windows"] == 0
        (sql,) = database.queries_matching("blocking_windows")
        assert "WHERE" not in sql

    def test_windows_payload_and_metadata(self, client, database):
        database.results["blocking_windows"] = QueryResult(
            [
                "syndicator_id", "campaign_id", "start_time", "end_time",
                "avg_expected_hourly_spend", "avg_current_period_spend",
            ],
            [
                (5, 9, datetime(2024, 1, 3, 10, 0), datetime(2024, 1, 3, 11, 30), 12.5, 40.0),
                (5, 9, datetime(2024, 1, 4, 8, 0), datetime(2024, 1, 4, 8, 15), None, None),
                (5, 11, datetime(2024, 1, 5, 23, 0), datetime(2024, 1, 5, 23, 45), 3.0, 9.0),
            ],
        )

        response = client.get(
            "/api/burst-protection/windows",
            params={"advertiserId": 5, "startDate": "2024-01-01", "endDate": "2024-01-31"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["data"][0] == {
            "source": "database",
            "syndicator_id": 5,
            "campaign_id": 9,
            "start_time": "2024-01-03T10:00:00",
            "end_time": "2024-01-03T11:30:00",
            "avg_expected_hourly_spend": 12.5,
            "avg_current_period_spend": 40.0,
            "window_duration_minutes": 90.0,
        }
        metadata = body["metadata"]
        assert metadata["total_windows"] == 3
        assert metadata["campaign_count"] == 2
        assert metadata["date_range"] == {"start": "2024-01-01", "end": "2024-01-31"}
        assert "query_time_ms" in metadata


class TestErrors:

    def test_missing_advertiser_is_a_bad_request(self, client):
        response = client.get("/api/burst-protection/campaigns")

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "Invalid request parameters"
        assert body["details"]

    def test_invalid_date_is_a_bad_request(self, client):
        response = client.get(
            "/api/burst-protection/campaigns", params={"advertiserId": 5, "startDate": "yesterday"}
        )
        assert response.status_code == 400

    def test_unreachable_database_is_unavailable(self, client, database, cache):
        database.connect_error = OSError("connection refused")

        response = client.get("/api/burst-protection/advertisers")

        assert response.status_code == 503
        body = response.json()
        assert body["error"] == "Database connection failed"
        assert body["message"] == "Unable to connect to Vertica database"
        assert "details" not in body
        assert len(cache) == 0

    def test_bad_rows_are_an_internal_error(self, client, database):
        database.results["trc.publisher_config"] = QueryResult(
            ["id", "description", "feature_date"], [(0, "Nobody", "not a date")]
        )

        response = client.get("/api/burst-protection/advertisers")

        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error", "success": False}

    def test_development_exposes_details(self, make_pool, cache, database):
        context = AppContext(config=make_config("development"), pool=make_pool(), cache=cache)
        AppContext.set_instance(context)
        database.connect_error = OSError("connection refused")
        try:
            with TestClient(app) as client:
                response = client.get("/api/burst-protection/advertisers")
        finally:
            AppContext.reset()

        assert response.status_code == 503
        assert "connection refused" in response.json()["details"]

    def test_pool_timeout_mapping(self):
        response = handle_api_error(PoolExhausted("Timed out acquiring a connection after 10000ms"))
        assert response.status_code == 503
        assert b"Connection pool timeout" in response.body

    def test_query_timeout_mapping(self):
        response = handle_api_error(QueryTimeout(120))
        assert response.status_code == 503
        assert b"Query timeout" in response.body


class TestOperationalRoutes:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["pool"]["max"] == 2
        assert body["cache_size"] == 0

    def test_pool_stats(self, client):
        body = client.get("/api/pool-stats").json()

        assert body["success"] is True
        assert body["healthy"] is True
        assert body["pool"]["size"] == body["pool"]["available"] + body["pool"]["borrowed"]
        assert body["pool"]["pending"] == 0

    def test_test_db(self, client, database):
        database.results["NOW()"] = QueryResult(["current_time"], [("2024-03-01 12:00:00",)])

        body = client.get("/api/test-db").json()

        assert body["tests"] == {
            "healthCheck": True,
            "currentTime": {"current_time": "2024-03-01 12:00:00"},
        }

    def test_cache_stats_and_invalidation(self, client, cache, advertiser_rows, campaign_rows):
        client.get("/api/burst-protection/advertisers")
        client.get("/api/burst-protection/campaigns", params={"advertiserId": 5})
        client.get("/api/burst-protection/campaigns", params={"advertiserId": 7})

        stats = client.get("/api/cache/stats").json()["cache"]
        assert stats["keys"] == 3
        assert stats["misses"] == 3

        deleted = client.delete("/api/cache", params={"prefix": "bp:campaigns"}).json()
        assert deleted == {"success": True, "prefix": "bp:campaigns", "deleted": 2}
        assert cache.keys() == ["bp:advertisers"]

        flushed = client.delete("/api/cache").json()
        assert flushed["deleted"] == 1
        assert len(cache) == 0

    def test_shutdown_closes_pool(self, context):
        with TestClient(app) as client:
            client.get("/api/pool-stats")

        assert context.get_pool().closed
        assert app.state.shutdown_clean is True

    def test_cors_allows_configured_origin(self, client):
        response = client.get("/health", headers={"Origin": "http://localhost:3000"})

        assert response.headers["access-control-allow-origin"] == "http://localhost:3000"

    def test_cors_ignores_unknown_origin(self, client):
        response = client.get("/health", headers={"Origin": "https://elsewhere.example"})

        assert "access-control-allow-origin" not in response.headers


class TestAppContext:

    def test_keeps_injected_empty_cache_and_pool(self, make_pool, cache):
        pool = make_pool()
        config = make_config()

        context = AppContext(config=config, pool=pool, cache=cache)

        assert len(cache) == 0
        assert context.get_cache() is cache
        assert context.get_pool() is pool
        assert context.config is config

    def test_builds_resources_from_config(self):
        context = AppContext(config=make_config())

        assert context.get_cache().max_keys == 100
        assert context.get_pool().config.max_size == 10


class TestMain:

    @pytest.fixture
    def run_server(self, monkeypatch):
        calls = []

        def _install(shutdown_clean):
            def fake_run(target, host, port):
                calls.append((host, port))
                if shutdown_clean is not None:
                    target.state.shutdown_clean = shutdown_clean

            monkeypatch.setattr("uvicorn.run", fake_run)
            return calls

        return _install

    def test_clean_shutdown_exits_zero(self, run_server):
        calls = run_server(True)

        assert main(["--port", "9000"]) == 0
        assert calls == [("0.0.0.0", 9000)]

    def test_failed_pool_close_exits_one(self, run_server):
        run_server(False)
        assert main([]) == 1

    def test_missing_shutdown_result_exits_one(self, run_server):
        app.state.shutdown_clean = True
        run_server(None)
        assert main([]) == 1
