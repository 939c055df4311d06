"""
RedisStorage – Redis-backed route store for Golink Platform.

Routes are plain string keys holding the JSON-encoded Route. The allocator counter
is the reserved key, bumped with INCR (atomic server-side, creates the key at 0 first).

Prefix listing rides on SCAN with `MATCH <prefix>*`:
    - SCAN returns keys in no particular order and may return a key more than once
      across pages, so the iterator keeps a seen-set for the traversal.
    - A page may be empty while the cursor is still non-zero; only cursor 0 means done.
      The iterator keeps issuing SCAN calls until then.
    - Each page is resolved with one MGET; keys deleted in between come back as None,
      are looked up again through `get` and skipped when absent.

The client runs in bytes mode: values are decoded in `_decode`, so a stored value that
is not valid UTF-8 is a DecodeError for that key. Keys that are not valid UTF-8 can
never be route names and are skipped by the scan.

Glob metacharacters in the prefix are escaped so a prefix like "a*" matches literally.
"""

import contextlib
import logging
import re
from typing import Iterator, Optional, Tuple

import redis
from redis.exceptions import RedisError

from ..route import Route
from .base import COUNTER_KEY, Batch, RouteIterator, RouteStore
from .errors import DecodeError, StoreError

log = logging.getLogger(__name__)

_GLOB_SPECIAL = re.compile(r"([\\*?\[\]])")


def match_pattern(prefix: str) -> str:
    """SCAN MATCH pattern selecting keys that start with `prefix` literally."""
    return _GLOB_SPECIAL.sub(r"\\\1", prefix) + "*"


def _text(value):
    return value.decode("utf-8") if isinstance(value, bytes) else value


class RedisRouteIterator(RouteIterator):
    dedupe = True

    def __init__(self, store: "RedisStorage", prefix: str = "", batch_size: int = 100):
        super().__init__(store, prefix, batch_size)
        self._cursor = 0
        self._pattern = match_pattern(prefix)

    def _fetch(self) -> Tuple[Batch, bool]:
        store: RedisStorage = self._store  # type: ignore[assignment]
        with store._errors("scan", self.prefix):
            cursor, raw_keys = store.client.scan(cursor=self._cursor, match=self._pattern, count=self.batch_size)
        keys, native = [], []
        for raw in raw_keys:
            try:
                key = _text(raw)
            except UnicodeDecodeError:
                log.warning("Skipping Redis key that is not valid UTF-8: %r", raw)
                continue
            if key != COUNTER_KEY:
                keys.append(key)
                native.append(raw)
        with store._errors("mget", self.prefix):
            values = store.client.mget(native) if native else []
        self._cursor = int(cursor)
        return list(zip(keys, values)), self._cursor == 0


class RedisStorage(RouteStore):
    """Redis implementation of the route store contract.

    Args:
        addr: "host:port" of the Redis server.
        password: optional AUTH password.
        db: logical database number.
        timeout: socket connect/read deadline in seconds.
        client: pre-built client (tests pass a fakeredis instance here).
    """

    backend_name = "redis"

    def __init__(
        self,
        addr: str = "localhost:6379",
        password: str = "",
        db: int = 0,
        timeout: float = 5.0,
        debug: bool = False,
        client: Optional[redis.Redis] = None,
    ) -> None:
        super().__init__(timeout=timeout, debug=debug)
        owned = client is None
        if owned:
            host, _, port = addr.rpartition(":")
            client = redis.Redis(
                host=host or "localhost",
                port=int(port or 6379),
                password=password or None,
                db=db,
                socket_timeout=timeout,
                socket_connect_timeout=timeout,
            )
        self.client = client
        try:
            self.ping()
        except StoreError:
            # Only a client built here is ours to close.
            if owned:
                client.close()
            raise

    @contextlib.contextmanager
    def _errors(self, op: str, key: str = "") -> Iterator[None]:
        try:
            yield
        except RedisError as exc:
            log.error("Redis %s failed for key %r: %s", op, key, exc)
            raise StoreError(f"Redis {op} failed for key {key!r}") from exc

    def _decode(self, key: str, raw) -> Route:
        if isinstance(raw, bytes):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError as exc:
                log.error("Stored route %r is not valid UTF-8: %s", key, exc)
                raise DecodeError(key, f"value is not valid UTF-8: {exc}") from exc
        return super()._decode(key, raw)

    def ping(self) -> None:
        with self._errors("ping"):
            self.client.ping()
        log.info("Redis: PONG")

    def _read(self, key: str):
        with self._errors("get", key):
            return self.client.get(key)

    def _write(self, key: str, raw: str) -> None:
        with self._errors("put", key):
            self.client.set(key, raw)

    def _remove(self, key: str) -> None:
        with self._errors("delete", key):
            removed = self.client.delete(key)
        self._trace("Route %s deleted (removed=%s)", key, removed)

    def _increment(self) -> int:
        with self._errors("next_id", COUNTER_KEY):
            return int(self.client.incr(COUNTER_KEY))

    def _iterator(self, prefix: str, batch_size: int) -> RouteIterator:
        return RedisRouteIterator(self, prefix, batch_size)

    def _close(self) -> None:
        with self._errors("close"):
            self.client.close()
