"""Cache layer: content-addressed memoization of model calls."""

from evalrig.cache.keys import generate_cache_key
from evalrig.cache.model import CachedModel
from evalrig.cache.store import CacheStore, FileCacheStore, InMemoryCacheStore

__all__ = [
    "CacheStore",
    "CachedModel",
    "FileCacheStore",
    "InMemoryCacheStore",
    "generate_cache_key",
]
