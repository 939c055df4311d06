"""
Base storage interface for Golink Platform.

Purpose:
    Define a small, stable contract that multiple storage backends
    (in-memory, PostgreSQL, Redis, Firestore) implement without requiring
    changes to the HTTP layer or the route manager.

Layout:
    - `RouteStore` owns the public contract (get / put / delete / list / get_all /
      next_id / close) and the invariants every backend shares: key validation,
      the reserved counter key, not-found vs. decode vs. transport errors, and
      idempotent close. Backends only fill in small native primitives
      (`_read`, `_write`, `_remove`, `_increment`, `_iterator`, `_close`).
    - `RouteIterator` is the cursor-driven lazy sequence layered over each
      backend's native pagination. Backends only implement `_fetch`, which returns
      the next native batch and whether the native cursor reports completion.

Consistency:
    Iteration holds no lock over the keyspace. Keys inserted or deleted during a
    traversal may or may not be observed by it. A key that disappears between
    enumeration and resolution is skipped, never treated as the end of the traversal.

Testing & Coverage:
    Abstract methods are not executed directly in tests and are annotated with
    `# pragma: no cover`.

LLM Prompt Example:
    "Show how a template-method base class keeps cross-backend invariants in one
    place while each backend only translates its native cursor into batches."
"""

import enum
import logging
from abc import ABC, abstractmethod
from collections import deque
from typing import Any, Deque, Dict, Iterator, List, Optional, Set, Tuple

from pydantic import ValidationError

from ..route import Route
from .errors import DecodeError, NotFoundError, StoreError

log = logging.getLogger(__name__)

# Reserved key holding the ID allocator counter. It lives outside the route
# namespace: writes to it are rejected and it never shows up in listings.
COUNTER_KEY = "__golink_next_id__"

DEFAULT_BATCH_SIZE = 100

# (key, raw value or None). None means the backend enumerated the key only and
# the iterator has to resolve it with a get-equivalent lookup.
Batch = List[Tuple[str, Any]]


class IteratorState(enum.Enum):
    READY = "ready"
    POSITIONED = "positioned"
    EXHAUSTED = "exhausted"


class RouteIterator(ABC):
    """
    Lazy, prefix-filtered traversal over a RouteStore.

    States:
        READY      -> pending cursor, nothing materialized (initial)
        POSITIONED -> `name` and `route` are available
        EXHAUSTED  -> terminal; `error` tells a clean end from a fault

    The iterator performs no internal locking; drive it from one caller at a time.
    Always call `release()` (or use it as a context manager), including when
    abandoning a traversal early.
    """

    # Backends whose native enumeration may repeat keys across pages turn this on.
    dedupe = False

    def __init__(self, store: "RouteStore", prefix: str = "", batch_size: int = DEFAULT_BATCH_SIZE):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._store = store
        self.prefix = prefix
        self.batch_size = batch_size
        self.state = IteratorState.READY
        self._pending: Deque[Tuple[str, Any]] = deque()
        self._native_done = False
        self._seen: Set[str] = set()
        self._name: Optional[str] = None
        self._route: Optional[Route] = None
        self._error: Optional[Exception] = None
        self._released = False

    # ---- Backend hooks -----------------------------------------------------

    @abstractmethod  # pragma: no cover
    def _fetch(self) -> Tuple[Batch, bool]:
        """
        Pull the next native page.

        Returns:
            (batch, done): candidate keys (optionally with raw values) and True once
            the native cursor reports that no further pages exist.

        Raises:
            StoreError: on any backend fault.
        """
        raise NotImplementedError

    def _release(self) -> None:
        """Free backend resources held by this iterator (default: none)."""

    # ---- Public surface ----------------------------------------------------

    def next(self) -> bool:
        """Advance to the next route. Returns False once exhausted (cleanly or on error)."""
        if self.state is IteratorState.EXHAUSTED:
            return False
        self._name, self._route = None, None

        while True:
            if not self._pending:
                if self._native_done:
                    self.state = IteratorState.EXHAUSTED
                    return False
                try:
                    batch, self._native_done = self._fetch()
                except StoreError as exc:
                    self._fail(exc)
                    return False
                self._pending.extend(batch)
                continue

            key, raw = self._pending.popleft()
            if not self._accepts(key):
                continue
            if self.dedupe:
                self._seen.add(key)

            try:
                route = self._store._load(key, raw)
            except NotFoundError:
                # Deleted between enumeration and resolution.
                self._store._trace("iterator skipped vanished key %r", key)
                continue
            except (DecodeError, StoreError) as exc:
                self._fail(exc)
                return False

            self._name, self._route = key, route
            self.state = IteratorState.POSITIONED
            return True

    @property
    def name(self) -> str:
        """Current key. Only valid while positioned."""
        self._require_positioned()
        return self._name  # type: ignore[return-value]

    @property
    def route(self) -> Route:
        """Current decoded route. Only valid while positioned."""
        self._require_positioned()
        return self._route  # type: ignore[return-value]

    @property
    def error(self) -> Optional[Exception]:
        """Last fault hit by the traversal, if any."""
        return self._error

    def release(self) -> None:
        """Release backend resources. Safe to call more than once."""
        if self._released:
            return
        self._released = True
        self._pending.clear()
        self._seen.clear()
        self._native_done = True
        self.state = IteratorState.EXHAUSTED
        self._release()

    # ---- Python protocol sugar ---------------------------------------------

    def __enter__(self) -> "RouteIterator":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.release()
        return False

    def __iter__(self) -> Iterator[Tuple[str, Route]]:
        """Yield (name, route) pairs; re-raises the traversal fault at the end."""
        while self.next():
            yield self._name, self._route  # type: ignore[misc]
        if self._error is not None:
            raise self._error

    # ---- Internals ---------------------------------------------------------

    def _accepts(self, key: str) -> bool:
        if key == COUNTER_KEY or not key.startswith(self.prefix):
            return False
        return not (self.dedupe and key in self._seen)

    def _fail(self, exc: Exception) -> None:
        self._error = exc
        self.state = IteratorState.EXHAUSTED

    def _require_positioned(self) -> None:
        if self.state is not IteratorState.POSITIONED:
            raise RuntimeError(f"iterator is {self.state.value}, not positioned on a route")


class RouteStore(ABC):
    """
    Abstract base class for route storage backends.

    Every backend converges on the same externally observable behavior:
        - get(key)     -> Route, or NotFoundError; DecodeError/StoreError on faults
        - put(key, r)  -> unconditional overwrite (last writer wins)
        - delete(key)  -> idempotent; deleting an absent key is a no-op
        - list(prefix) -> lazy RouteIterator
        - get_all()    -> {key: Route}, excluding the counter key; aborts on any fault
        - next_id()    -> 1, 2, 3, ... atomically, using the backend's native increment
        - close()      -> idempotent
    """

    backend_name = "abstract"

    def __init__(self, timeout: float = 5.0, debug: bool = False) -> None:
        self.timeout = timeout
        self.debug = debug
        self._closed = False

    # ---- Backend primitives ------------------------------------------------

    @abstractmethod  # pragma: no cover
    def ping(self) -> None:
        """Liveness check. Raises StoreError when the backend is unreachable."""
        raise NotImplementedError

    @abstractmethod  # pragma: no cover
    def _read(self, key: str) -> Any:
        """Return the raw stored value for `key`, or None when absent."""
        raise NotImplementedError

    @abstractmethod  # pragma: no cover
    def _write(self, key: str, raw: Any) -> None:
        raise NotImplementedError

    @abstractmethod  # pragma: no cover
    def _remove(self, key: str) -> None:
        """Delete `key`; must not fail when the key is absent."""
        raise NotImplementedError

    @abstractmethod  # pragma: no cover
    def _increment(self) -> int:
        """Atomically increment the counter and return the new value."""
        raise NotImplementedError

    @abstractmethod  # pragma: no cover
    def _iterator(self, prefix: str, batch_size: int) -> RouteIterator:
        raise NotImplementedError

    @abstractmethod  # pragma: no cover
    def _close(self) -> None:
        raise NotImplementedError

    # ---- Codec (overridable per backend) -----------------------------------

    def _encode(self, route: Route) -> Any:
        return route.to_json()

    def _decode(self, key: str, raw: Any) -> Route:
        try:
            return Route.from_json(raw)
        except ValidationError as exc:
            log.error("Stored route %r failed to decode: %s", key, exc)
            raise DecodeError(key, str(exc)) from exc

    def _load(self, key: str, raw: Any = None) -> Route:
        """Resolve a key enumerated by an iterator (raw=None means look it up)."""
        if raw is None:
            return self.get(key)
        return self._decode(key, raw)

    # ---- Public contract ---------------------------------------------------

    def get(self, key: str) -> Route:
        """Fetch and decode exactly one route. Raises NotFoundError when absent."""
        self._check_open()
        if not key or key == COUNTER_KEY:
            raise NotFoundError(key)
        raw = self._read(key)
        self._trace("%s get %r -> %s", self.backend_name, key, "miss" if raw is None else "hit")
        if raw is None:
            raise NotFoundError(key)
        return self._decode(key, raw)

    def put(self, key: str, route: Route) -> None:
        """Encode and write `route` under `key`, replacing any existing value."""
        self._check_open()
        self._check_writable_key(key)
        self._write(key, self._encode(route))
        self._trace("%s put %r -> %s", self.backend_name, key, route.destination)

    def delete(self, key: str) -> None:
        """Delete `key` if present. Absent keys are a no-op."""
        self._check_open()
        self._check_writable_key(key)
        self._remove(key)
        self._trace("%s delete %r", self.backend_name, key)

    def list(self, prefix: str = "", batch_size: int = DEFAULT_BATCH_SIZE) -> RouteIterator:
        """Begin a lazy traversal of routes whose key starts with `prefix`."""
        self._check_open()
        self._trace("%s list prefix=%r", self.backend_name, prefix)
        return self._iterator(prefix, batch_size)

    def get_all(self) -> Dict[str, Route]:
        """
        Dump every route for backup purposes.

        Keys that vanish mid-dump are skipped; a DecodeError or StoreError on any
        single key aborts the whole dump, since a silently incomplete backup is worse
        than a failed one.
        """
        routes: Dict[str, Route] = {}
        with self.list("") as it:
            while it.next():
                routes[it.name] = it.route
            if it.error is not None:
                raise it.error
        self._trace("%s get_all -> %d routes", self.backend_name, len(routes))
        return routes

    def next_id(self) -> int:
        """Atomically increment and return the allocator counter (first call -> 1)."""
        self._check_open()
        value = int(self._increment())
        self._trace("%s next_id -> %d", self.backend_name, value)
        return value

    def close(self) -> None:
        """Release held connections/handles. Calling it twice is harmless."""
        if self._closed:
            return
        self._closed = True
        self._close()
        log.info("%s route store closed", self.backend_name)

    def __enter__(self) -> "RouteStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.close()
        return False

    # ---- Helpers -----------------------------------------------------------

    def _trace(self, msg: str, *args: Any) -> None:
        if self.debug:
            log.info(msg, *args)

    def _check_open(self) -> None:
        if self._closed:
            raise StoreError(f"{self.backend_name} route store is closed")

    @staticmethod
    def _check_writable_key(key: str) -> None:
        if not key:
            raise ValueError("Route name must not be empty")
        if key == COUNTER_KEY:
            raise ValueError("Route name is reserved")


def prefix_upper_bound(prefix: str) -> Optional[str]:
    """
    Smallest string greater than every string starting with `prefix`.

    Increments the last code point, carrying past U+10FFFF and stepping over the
    surrogate block so the bound stays encodable as UTF-8. Returns None when no
    upper bound exists (empty prefix, or a prefix made only of U+10FFFF).

    >>> prefix_upper_bound("a/")
    'a0'
    """
    chars = list(prefix)
    while chars:
        last = ord(chars.pop())
        if last < 0x10FFFF:
            chars.append(chr(0xE000 if last == 0xD7FF else last + 1))
            return "".join(chars)
    return None
