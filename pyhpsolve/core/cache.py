# pyhpsolve/core/cache.py
import logging
import threading
from typing import Any, Callable, Dict, Hashable, Tuple

logger = logging.getLogger(__name__)

_MISSING = object()


class MatrixCache:
    """
    Compute-once, reuse-many store for element matrices and their
    static-condensation blocks.

    get_or_compute(key, factory, kind) -> value

    ``kind`` separates namespaces ("matrix", "static_cond", ...) that share
    a key.  Concurrent first access to one key runs ``factory`` exactly
    once; other callers block on that key's lock and then read the stored
    value.  Entries are never evicted; ``clear()`` drops everything when
    the mesh or the orders change.
    """

    def __init__(self) -> None:
        self.in_memory_cache: Dict[Tuple[str, Hashable], Any] = {}
        self._locks: Dict[Tuple[str, Hashable], threading.Lock] = {}
        self._guard = threading.Lock()
        self.hits = 0
        self.misses = 0

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------
    def get_or_compute(self, key: Hashable, factory: Callable[[], Any], kind: str = "matrix"):
        slot = (kind, key)

        # fast path: already computed
        value = self.in_memory_cache.get(slot, _MISSING)
        if value is not _MISSING:
            self._count(hit=True)
            return value

        with self._guard:
            lock = self._locks.setdefault(slot, threading.Lock())

        with lock:
            value = self.in_memory_cache.get(slot, _MISSING)
            if value is not _MISSING:
                self._count(hit=True)
                return value
            logger.debug(f"cache miss [{kind}] {key}")
            value = factory()
            self.in_memory_cache[slot] = value
            self._count(hit=False)
        return value

    def __contains__(self, slot) -> bool:
        return slot in self.in_memory_cache

    def __len__(self) -> int:
        return len(self.in_memory_cache)

    def clear(self) -> None:
        with self._guard:
            self.in_memory_cache.clear()
            self._locks.clear()
            self.hits = 0
            self.misses = 0

    def stats(self) -> Dict[str, int]:
        return {"entries": len(self.in_memory_cache), "hits": self.hits, "misses": self.misses}

    # ------------------------------------------------------------------
    def _count(self, hit: bool) -> None:
        with self._guard:
            if hit:
                self.hits += 1
            else:
                self.misses += 1
