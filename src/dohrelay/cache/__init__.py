"""Answer cache, cache keys and in-flight request coalescing."""

from .dedup import DedupCoordinator
from .keys import json_cache_key, wire_cache_key
from .ttl_store import CacheStore

__all__ = ["CacheStore", "DedupCoordinator", "json_cache_key", "wire_cache_key"]
