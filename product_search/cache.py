import hashlib
import threading
import time
from typing import Callable, Dict, Iterable, Optional, Tuple

import orjson
from pydantic import BaseModel, ConfigDict

from .schema import Product, SearchQuery

Clock = Callable[[], float]


def key_for(payload) -> str:
    return hashlib.sha1(orjson.dumps(payload)).hexdigest()


def query_signature(discriminator: str, query: SearchQuery) -> str:
    """Cache key of a query; remote and local answers live under different discriminators."""
    return key_for([
        discriminator,
        query.term,
        query.category or "",
        query.max_price if query.max_price is not None else "",
        query.limit,
    ])


class CacheEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    ts: float
    items: Tuple[Product, ...] = ()
    urls: Tuple[str, ...] = ()
    source_url: str = ""
    stage: str = ""


class ResultCache:
    """
    Resolved result sets per query signature. Expiry is lazy: a stale entry
    is dropped by the lookup that finds it.
    """

    def __init__(self, ttl_seconds: float, clock: Clock = time.monotonic):
        self.ttl = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() - entry.ts >= self.ttl:
                del self._entries[key]
                return None
            return entry

    def put(self, key: str, items: Iterable[Product], source_url: str = "", stage: str = "") -> CacheEntry:
        entry = CacheEntry(ts=self._clock(), items=tuple(items), source_url=source_url, stage=stage)
        with self._lock:
            self._entries[key] = entry
        return entry

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self):
        with self._lock:
            return len(self._entries)


class SitemapIndex:
    """Single shared slot for the crawled product URL set, on its own TTL."""

    def __init__(self, ttl_seconds: float, clock: Clock = time.monotonic):
        self.ttl = ttl_seconds
        self._clock = clock
        self._entry: Optional[CacheEntry] = None
        self._lock = threading.Lock()

    def get(self) -> Optional[Tuple[str, ...]]:
        with self._lock:
            if self._entry is None:
                return None
            if self._clock() - self._entry.ts >= self.ttl:
                self._entry = None
                return None
            return self._entry.urls

    def replace(self, urls: Iterable[str], source_url: str = "") -> CacheEntry:
        entry = CacheEntry(ts=self._clock(), urls=tuple(urls), source_url=source_url)
        with self._lock:
            self._entry = entry
        return entry
