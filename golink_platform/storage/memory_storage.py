"""
In-memory route store for Golink Platform.

Responsibilities:
    - Keep routes as encoded JSON strings in a dict (same codec path as real backends)
    - Provide lexical prefix listing with keyset pagination over a sorted key snapshot
    - Provide a lock-protected ID counter

Design:
    - This is a reference implementation that satisfies the RouteStore contract.
    - It is intentionally simple to keep unit/integration tests fast and deterministic.
    - For production, select a persistent backend (postgres, redis, firestore).

LLM Prompt Example:
    "Explain how this in-memory store can be swapped for a database-backed layer
     without changing the manager or API code, by adhering to the RouteStore interface."
"""

import bisect
import threading
from typing import Dict, Optional, Tuple

from .base import Batch, RouteIterator, RouteStore


class MemoryRouteIterator(RouteIterator):
    """Ordered traversal; each page re-reads the live key set after the last key seen."""

    def __init__(self, store: "MemoryStorage", prefix: str = "", batch_size: int = 100):
        super().__init__(store, prefix, batch_size)
        self._after: Optional[str] = None

    def _fetch(self) -> Tuple[Batch, bool]:
        store: MemoryStorage = self._store  # type: ignore[assignment]
        with store._lock:
            keys = sorted(store.routes)
            start = bisect.bisect_left(keys, self.prefix)
            if self._after is not None:
                start = max(start, bisect.bisect_right(keys, self._after))
            batch = []
            for key in keys[start:]:
                if not key.startswith(self.prefix) or len(batch) == self.batch_size:
                    break
                batch.append((key, store.routes[key]))
        done = len(batch) < self.batch_size
        if batch:
            self._after = batch[-1][0]
        return batch, done


class MemoryStorage(RouteStore):
    backend_name = "memory"

    def __init__(self, timeout: float = 5.0, debug: bool = False):
        """
        Initialize empty storage.

        Internal schema:
            self.routes = {name: '{"url": ..., "time": ...}'}
            self.counter = int  (value of the reserved COUNTER_KEY)
        """
        super().__init__(timeout=timeout, debug=debug)
        self.routes: Dict[str, str] = {}
        self.counter = 0
        self._lock = threading.Lock()

    def ping(self) -> None:
        self._check_open()

    def _read(self, key: str) -> Optional[str]:
        return self.routes.get(key)

    def _write(self, key: str, raw: str) -> None:
        with self._lock:
            self.routes[key] = raw

    def _remove(self, key: str) -> None:
        with self._lock:
            self.routes.pop(key, None)

    def _increment(self) -> int:
        with self._lock:
            self.counter += 1
            return self.counter

    def _iterator(self, prefix: str, batch_size: int) -> RouteIterator:
        return MemoryRouteIterator(self, prefix, batch_size)

    def _close(self) -> None:
        # Nothing to release; contents stay readable for post-mortem inspection.
        pass

    def __len__(self) -> int:
        return len(self.routes)
