from .cache_store import CacheStore
from .tables import CacheTable

__all__ = ["CacheStore", "CacheTable"]
