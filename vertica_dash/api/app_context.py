"""
Application context with singleton pattern for shared resources.

One AppContext per process owns the Vertica connection pool and the response
cache. Route handlers receive them through FastAPI dependencies rather than
reaching for module globals.
"""
import logging
from typing import Optional

from ..common.cache import ResponseCache
from ..common.config import AppConfig
from ..common.database import ConnectionPool, vertica_connection_factory

logger = logging.getLogger(__name__)


class AppContext:
    """
    Singleton application context managing shared resources.

    Construction only builds objects; no connection is opened until startup().
    Configuration is validated eagerly, so a ConfigInvalid surfaces before the
    server accepts traffic.
    """

    _instance: Optional['AppContext'] = None

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        pool: Optional[ConnectionPool] = None,
        cache: Optional[ResponseCache] = None,
    ):
        self.config = config if config is not None else AppConfig.from_env()

        self._pool = pool if pool is not None else ConnectionPool(
            vertica_connection_factory(self.config.vertica),
            self.config.pool,
            connect_timeout=self.config.vertica.connection_timeout,
        )
        self._cache = cache if cache is not None else ResponseCache(
            default_ttl=self.config.cache.default_ttl,
            max_keys=self.config.cache.max_keys,
        )
        self._started = False

    @classmethod
    def get_instance(cls) -> 'AppContext':
        """Get the singleton instance of AppContext."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def set_instance(cls, context: 'AppContext') -> None:
        """Install a pre-built context (tests, embedding)."""
        cls._instance = context

    @classmethod
    def reset(cls):
        """Forget the singleton instance (useful for testing). Does not close it."""
        cls._instance = None

    def get_pool(self) -> ConnectionPool:
        return self._pool

    def get_cache(self) -> ResponseCache:
        return self._cache

    async def startup(self) -> None:
        """Warm the pool and start its eviction sweep."""
        if self._started:
            return
        await self._pool.start()
        self._started = True
        logger.info("  Connection pool ready (%s)", self._pool.get_stats().to_dict())

    async def cleanup(self) -> bool:
        """
        Close the pool and drop cached responses.

        Call this on application shutdown.

        Returns:
            True if every connection closed cleanly
        """
        logger.info("Shutting down resources...")
        clean = True
        try:
            await self._pool.close()
        except Exception as e:
            logger.error("Error closing Vertica connection pool: %s", e)
            clean = False

        self._cache.flush()
        logger.info("Resources cleaned up")
        return clean
