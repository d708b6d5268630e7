"""
FastAPI server for the burst-protection dashboard.

Provides:
- Cached burst-protection data routes (/api/burst-protection/*)
- Pool statistics and database probes (/api/pool-stats, /api/test-db)
- Cache inspection and invalidation (/api/cache)
- Liveness (/health)

The process owns exactly one connection pool and one response cache, created
in the lifespan handler and closed on shutdown (uvicorn turns SIGTERM/SIGINT
into a lifespan shutdown).
"""

# ================================
# IMPORTS
# ================================

import asyncio
import logging
import sys
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from ..common.env import load_environment

# Load environment variables before reading configuration
load_environment()

from ..common.cache import ResponseCache
from ..common.config import ServerConfig
from ..common.constants import (
    ADVERTISERS_CACHE_CONTROL,
    ADVERTISERS_TTL_SECONDS,
    CACHE_PREFIX_ADVERTISERS,
    CACHE_PREFIX_CAMPAIGNS,
    CACHE_PREFIX_WINDOWS,
    CAMPAIGNS_TTL_SECONDS,
    WINDOWS_TTL_SECONDS,
)
from ..common.database import ConnectionPool
from ..queries.burst_protection import get_advertisers, get_blocking_windows, get_campaigns
from ..queries.schemas import CampaignFilters, WindowFilters
from .app_context import AppContext
from .cache_handler import CacheOptions, cached_response
from .error_handler import register_error_handlers

# ================================
# CONFIGURATION & SETUP
# ================================

server_config = ServerConfig.from_env()
logging.basicConfig(level=server_config.log_level)
logger = logging.getLogger(__name__)


# ================================
# DEPENDENCIES
# ================================

def get_pool() -> ConnectionPool:
    return AppContext.get_instance().get_pool()


def get_cache() -> ResponseCache:
    return AppContext.get_instance().get_cache()


def query_params(request: Request) -> Dict[str, str]:
    """Non-empty query string values; empty parameters count as absent."""
    return {key: value for key, value in request.query_params.items() if value != ""}


# ================================
# LIFECYCLE
# ================================

async def cleanup_expired_cache(cache: ResponseCache, interval: float):
    """Background task that sweeps expired response cache entries."""
    while True:
        await asyncio.sleep(interval)
        try:
            cache.purge_expired()
        except Exception as e:
            logger.error(f"Error in cache cleanup: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle."""
    logger.info("Initializing resources...")

    context = AppContext.get_instance()
    app.state.development = context.config.server.is_development
    app.state.shutdown_clean = None
    await context.startup()

    cleanup_task = asyncio.create_task(
        cleanup_expired_cache(context.get_cache(), context.config.cache.check_period)
    )

    logger.info("Application ready!")

    yield

    cleanup_task.cancel()
    try:
        await cleanup_task
    except asyncio.CancelledError:
        pass

    app.state.shutdown_clean = await context.cleanup()
    if app.state.shutdown_clean:
        logger.info("Vertica connection pool closed successfully")
    logger.info("Application shutdown complete")


# ================================
# FASTAPI APP SETUP
# ================================

app = FastAPI(
    title="Vertica Dashboard API",
    description="Cached analytics API for the burst-protection dashboard",
    version="1.0.0",
    lifespan=lifespan,
)
app.state.development = False

app.add_middleware(
    CORSMiddleware,
    allow_origins=server_config.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)


# ================================
# BURST PROTECTION ENDPOINTS
# ================================

@app.get("/api/burst-protection/advertisers")
async def advertisers_endpoint(
    request: Request,
    pool: ConnectionPool = Depends(get_pool),
    cache: ResponseCache = Depends(get_cache),
):
    """Advertisers with burst protection enabled."""
    options = CacheOptions(
        key_prefix=CACHE_PREFIX_ADVERTISERS,
        ttl=ADVERTISERS_TTL_SECONDS,
        cache_control=ADVERTISERS_CACHE_CONTROL,
    )

    async def load() -> Dict[str, Any]:
        return {"advertisers": await get_advertisers(pool)}

    return await cached_response(request, cache, options, load)


@app.get("/api/burst-protection/campaigns")
async def campaigns_endpoint(
    request: Request,
    pool: ConnectionPool = Depends(get_pool),
    cache: ResponseCache = Depends(get_cache),
):
    """Campaigns of one advertiser, optionally limited to a date range with activity."""
    filters = CampaignFilters.model_validate(query_params(request))
    options = CacheOptions(
        key_prefix=CACHE_PREFIX_CAMPAIGNS,
        key_params={
            "advertiserId": filters.advertiser_id,
            "startDate": filters.start_date,
            "endDate": filters.end_date,
        },
        ttl=CAMPAIGNS_TTL_SECONDS,
    )

    async def load() -> Dict[str, Any]:
        campaigns = await get_campaigns(pool, filters)
        return {
            "campaigns": campaigns,
            "count": len(campaigns),
            "filters": filters.model_dump(by_alias=True),
        }

    return await cached_response(request, cache, options, load)


@app.get("/api/burst-protection/windows")
async def windows_endpoint(
    request: Request,
    pool: ConnectionPool = Depends(get_pool),
    cache: ResponseCache = Depends(get_cache),
):
    """Spending burst-protection blocking windows."""
    filters = WindowFilters.model_validate(query_params(request))
    options = CacheOptions(
        key_prefix=CACHE_PREFIX_WINDOWS,
        key_params=filters.model_dump(by_alias=True),
        ttl=WINDOWS_TTL_SECONDS,
    )

    async def load() -> Dict[str, Any]:
        start = time.perf_counter()
        windows = await get_blocking_windows(pool, filters)
        date_range = None
        if filters.start_date and filters.end_date:
            date_range = {"start": filters.start_date, "end": filters.end_date}
        return {
            "data": [{"source": "database", **window.model_dump()} for window in windows],
            "metadata": {
                "total_windows": len(windows),
                "query_time_ms": int((time.perf_counter() - start) * 1000),
                "campaign_count": len({window.campaign_id for window in windows}),
                "date_range": date_range,
            },
        }

    return await cached_response(request, cache, options, load)


# ================================
# OPERATIONAL ENDPOINTS
# ================================

@app.get("/api/pool-stats")
async def pool_stats_endpoint(pool: ConnectionPool = Depends(get_pool)):
    """Connection pool statistics plus a live health probe."""
    stats = pool.get_stats().to_dict()
    healthy = await pool.health_check()
    return {
        "success": True,
        "pool": stats,
        "healthy": healthy,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.get("/api/test-db")
async def test_db_endpoint(pool: ConnectionPool = Depends(get_pool)):
    """Database connectivity probe: health check plus server time."""
    healthy = await pool.health_check()
    current_time = await pool.query("SELECT NOW() as current_time")
    return {
        "success": True,
        "tests": {
            "healthCheck": healthy,
            "currentTime": current_time[0] if current_time else None,
        },
    }


@app.get("/api/cache/stats")
async def cache_stats_endpoint(cache: ResponseCache = Depends(get_cache)):
    return {"success": True, "cache": cache.stats()}


@app.delete("/api/cache")
async def invalidate_cache_endpoint(
    prefix: Optional[str] = None,
    cache: ResponseCache = Depends(get_cache),
):
    """Invalidate cached responses by key prefix, or flush everything without one."""
    if prefix:
        deleted = cache.delete_by_prefix(prefix)
        return {"success": True, "prefix": prefix, "deleted": deleted}

    deleted = len(cache)
    cache.flush()
    return {"success": True, "prefix": None, "deleted": deleted}


@app.get("/health")
async def health_check(
    pool: ConnectionPool = Depends(get_pool),
    cache: ResponseCache = Depends(get_cache),
):
    """Liveness check. Does not touch the database."""
    return {
        "status": "healthy",
        "pool": pool.get_stats().to_dict(),
        "cache_size": len(cache),
    }


def main(argv=None) -> int:
    """Run the server; the exit code reflects whether the pool closed cleanly."""
    import argparse
    import uvicorn

    parser = argparse.ArgumentParser(description="Vertica Dashboard API Server")
    parser.add_argument("--port", type=int, default=8000, help="Port to run the server on (default: 8000)")
    parser.add_argument("--host", type=str, default="0.0.0.0", help="Host to bind to (default: 0.0.0.0)")
    args = parser.parse_args(argv)

    logger.info(f"Starting Vertica Dashboard API on {args.host}:{args.port}")
    app.state.shutdown_clean = None
    uvicorn.run(app, host=args.host, port=args.port)

    return 0 if getattr(app.state, "shutdown_clean", None) else 1


if __name__ == "__main__":
    sys.exit(main())
