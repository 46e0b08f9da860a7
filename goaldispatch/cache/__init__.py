"""Goal artifact caching."""

from goaldispatch.cache.backend import (
    FileSystemGoalCache,
    GoalCacheBackend,
    InMemoryGoalCache,
    NoOpGoalCache,
    backend_from_config,
)
from goaldispatch.cache.cleanup import prune_cache
from goaldispatch.cache.goal_cache import (
    CacheEntry,
    GoalCache,
    GoalCacheOptions,
    cache_put,
    cache_remove,
    cache_restore,
    fallback,
    is_cache_enabled,
)

__all__ = [
    "CacheEntry",
    "FileSystemGoalCache",
    "GoalCache",
    "GoalCacheBackend",
    "GoalCacheOptions",
    "InMemoryGoalCache",
    "NoOpGoalCache",
    "backend_from_config",
    "cache_put",
    "cache_remove",
    "cache_restore",
    "fallback",
    "is_cache_enabled",
    "prune_cache",
]
