"""
Request-level caching for route handlers.

Sequence per request: build the key, honour the no-cache signal, serve a hit
with its age, or run the loader, store the payload and report the live query
time. A failed store never breaks the response.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from ..common.cache import CacheEntry, ResponseCache, build_cache_key
from ..common.constants import DEFAULT_CACHE_CONTROL, DEFAULT_RESPONSE_TTL_SECONDS

logger = logging.getLogger(__name__)


@dataclass
class CacheOptions:
    key_prefix: str
    key_params: Dict[str, Any] = field(default_factory=dict)
    ttl: int = DEFAULT_RESPONSE_TTL_SECONDS
    cache_control: str = DEFAULT_CACHE_CONTROL

    @property
    def key(self) -> str:
        return build_cache_key(self.key_prefix, self.key_params)


def wants_live_data(request: Request) -> bool:
    """True when the caller asked to skip the cache (?nocache=true or Cache-Control: no-cache)."""
    if request.query_params.get("nocache", "").lower() == "true":
        return True
    return "no-cache" in request.headers.get("cache-control", "").lower()


def check_cache(request: Request, cache: ResponseCache, options: CacheOptions) -> Optional[CacheEntry]:
    if wants_live_data(request):
        logger.debug("Cache bypass requested for %s", options.key)
        return None
    return cache.get_entry(options.key)


def set_cache(cache: ResponseCache, data: Any, options: CacheOptions) -> bool:
    try:
        return cache.set(options.key, data, options.ttl)
    except Exception as e:
        logger.error("Failed to cache %s: %s", options.key, e)
        return False


def create_cached_response(
    data: Dict[str, Any],
    cached: bool,
    query_time_ms: Optional[int] = None,
    cache_age_ms: Optional[int] = None,
    cache_control: str = DEFAULT_CACHE_CONTROL,
) -> JSONResponse:
    """Wrap a payload with success/cached flags and freshness metadata."""
    body = {**data, "success": True, "cached": cached}
    if cached:
        body["cache_age_ms"] = cache_age_ms or 0
    else:
        body["query_time_ms"] = query_time_ms or 0

    return JSONResponse(
        content=jsonable_encoder(body),
        headers={
            "Cache-Control": cache_control,
            "X-Cache": "HIT" if cached else "MISS",
        },
    )


async def cached_response(
    request: Request,
    cache: ResponseCache,
    options: CacheOptions,
    loader: Callable[[], Awaitable[Dict[str, Any]]],
) -> JSONResponse:
    """
    Serve a route payload from cache or from loader().

    Args:
        request: Incoming request (carries the no-cache signal)
        cache: Shared response cache
        options: Key prefix/params, TTL and Cache-Control header
        loader: Coroutine producing the payload dict on a miss

    Returns:
        JSONResponse with ``cached`` plus either ``cache_age_ms`` or ``query_time_ms``
    """
    start = time.perf_counter()

    entry = check_cache(request, cache, options)
    if entry is not None:
        return create_cached_response(
            entry.value,
            cached=True,
            cache_age_ms=int(cache.age(entry) * 1000),
            cache_control=options.cache_control,
        )

    data = jsonable_encoder(await loader())
    set_cache(cache, data, options)

    return create_cached_response(
        data,
        cached=False,
        query_time_ms=int((time.perf_counter() - start) * 1000),
        cache_control=options.cache_control,
    )
