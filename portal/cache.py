"""
Keyed data cache with revalidation.

A ``DataCache`` is built explicitly around a ``Fetcher`` and handed to the code
that reads API data; ``close()`` tears it down. Entries are stored in a Django
cache backend, keyed by request URL.
"""
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from django.core.cache import caches

from . import conf
from .errors import FetchError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    """Last known outcome for one key. Exactly one of value/error is current."""

    key: str
    value: Any = None
    error: Optional[FetchError] = None
    updated_at: float = field(default_factory=time.time)

    @classmethod
    def success(cls, key, value, now=None):
        return cls(key=key, value=value, error=None, updated_at=time.time() if now is None else now)

    @classmethod
    def failure(cls, key, error, now=None):
        return cls(key=key, value=None, error=error, updated_at=time.time() if now is None else now)

    @property
    def ok(self) -> bool:
        return self.error is None

    def age(self, now=None) -> float:
        now = time.time() if now is None else now
        return now - self.updated_at


class DataCache:
    """
    Supplies the fetcher as the default retrieval function for keyed data.

    ``get`` returns a cached value while it is younger than the dedupe
    interval and revalidates otherwise; callers asking for the same key at
    the same time share one request.
    """

    def __init__(
        self,
        fetcher: Callable[[str], Any],
        cache_alias: Optional[str] = None,
        dedupe_interval: Optional[float] = None,
        timeout: Optional[int] = None,
        key_prefix: str = "portal:data",
        clock: Callable[[], float] = time.time,
    ):
        self.fetcher = fetcher
        self.backend = caches[cache_alias or conf.fetch_setting("CACHE_ALIAS")]
        self.dedupe_interval = (
            conf.fetch_setting("DEDUPE_INTERVAL") if dedupe_interval is None else dedupe_interval
        )
        self.timeout = conf.fetch_setting("CACHE_TIMEOUT") if timeout is None else timeout
        self.key_prefix = key_prefix
        self.clock = clock

        self._lock = threading.Lock()
        self._key_locks: Dict[str, threading.Lock] = {}
        self._subscribers: Dict[str, List[Callable[[CacheEntry], None]]] = {}
        self._keys = set()
        self._closed = False

    def _cache_key(self, key):
        return f"{self.key_prefix}:{key}"

    def _key_lock(self, key):
        with self._lock:
            if key not in self._key_locks:
                self._key_locks[key] = threading.Lock()
            return self._key_locks[key]

    def _ensure_open(self):
        if self._closed:
            raise RuntimeError("DataCache has been closed")

    def read(self, key) -> Optional[CacheEntry]:
        """Current entry for key, without any I/O"""
        return self.backend.get(self._cache_key(key))

    def is_fresh(self, entry: Optional[CacheEntry]) -> bool:
        return entry is not None and entry.ok and entry.age(self.clock()) < self.dedupe_interval

    def get(self, key) -> Any:
        """Cached value for key, revalidating when stale. Failures are raised."""
        self._ensure_open()
        with self._key_lock(key):
            entry = self.read(key)
            if self.is_fresh(entry):
                return entry.value
            entry = self._revalidate(key)

        if entry.error is not None:
            raise entry.error
        return entry.value

    def revalidate(self, key) -> CacheEntry:
        """Fetch key again, store the outcome and notify subscribers"""
        self._ensure_open()
        with self._key_lock(key):
            return self._revalidate(key)

    def _revalidate(self, key) -> CacheEntry:
        logger.debug(f"Revalidating {key}")
        try:
            value = self.fetcher(key)
        except FetchError as e:
            entry = CacheEntry.failure(key, e, now=self.clock())
        else:
            entry = CacheEntry.success(key, value, now=self.clock())
        self._store(entry)
        return entry

    def revalidate_all(self):
        """Revalidate every key that has subscribers, e.g. on window focus"""
        with self._lock:
            keys = list(self._subscribers)
        return [self.revalidate(key) for key in keys]

    def mutate(self, key, value, revalidate=False):
        """Replace the cached value locally; optionally refetch afterwards"""
        self._ensure_open()
        self._store(CacheEntry.success(key, value, now=self.clock()))
        if revalidate:
            return self.revalidate(key)
        return self.read(key)

    def _store(self, entry: CacheEntry):
        with self._lock:
            # A fetch still in flight at close() must not repopulate the backend
            if self._closed:
                return
            self.backend.set(self._cache_key(entry.key), entry, timeout=self.timeout)
            self._keys.add(entry.key)
            callbacks = list(self._subscribers.get(entry.key, ()))
        for callback in callbacks:
            callback(entry)

    def subscribe(self, key, callback: Callable[[CacheEntry], None]) -> Callable[[], None]:
        """
        Register callback for updates to key. The returned function
        unsubscribes; when the last subscriber leaves, the entry is evicted.
        """
        self._ensure_open()
        with self._lock:
            self._subscribers.setdefault(key, []).append(callback)

        def unsubscribe():
            with self._lock:
                callbacks = self._subscribers.get(key)
                if not callbacks or callback not in callbacks:
                    return
                callbacks.remove(callback)
                unmounted = not callbacks
                if unmounted:
                    del self._subscribers[key]
            if unmounted:
                self.evict(key)

        return unsubscribe

    def evict(self, key):
        self.backend.delete(self._cache_key(key))
        with self._lock:
            self._keys.discard(key)
            lock = self._key_locks.get(key)
            # Callers waiting on a held lock must keep sharing it
            if lock is not None and not lock.locked():
                del self._key_locks[key]

    def close(self, evict=True):
        """
        Drop subscribers and release the fetcher. With evict=False the
        stored entries outlive this cache object until they time out.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            keys = list(self._keys) if evict else []
            self._subscribers.clear()
        for key in keys:
            self.evict(key)
        close_fetcher = getattr(self.fetcher, "close", None)
        if close_fetcher is not None:
            close_fetcher()
