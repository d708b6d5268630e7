"""Response cache and cache-key construction."""
from .keys import build_cache_key
from .response_cache import CacheEntry, ResponseCache

__all__ = ['CacheEntry', 'ResponseCache', 'build_cache_key']
