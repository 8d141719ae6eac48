from storage.db import ContentStore, StorageUnavailable
from storage.cache import DiskCache, CacheWriteFailed, DownloadFailed
from storage.eviction import EvictionPolicy, EvictionReport

__all__ = [
    "ContentStore",
    "StorageUnavailable",
    "DiskCache",
    "CacheWriteFailed",
    "DownloadFailed",
    "EvictionPolicy",
    "EvictionReport",
]
