"""
Cache package for the Products Service.

Provides a Redis-backed look-aside cache for product payloads. The cache
is optional at runtime: reads degrade to misses when Redis is down.
"""

from .redis_cache import CacheLookup, CacheStatus, ProductCache

__all__ = ["CacheLookup", "CacheStatus", "ProductCache"]
