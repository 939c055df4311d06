"""
Storage factory – pick the route store backend from config (lazy env version)
============================================================================

This module centralizes selection of the storage backend so the rest of the app
(manager, HTTP layer) stays ignorant of where routes live. It is called once at
startup; the returned store is the single instance for the process lifetime and
is closed at shutdown.

Key points
----------
- Reads environment **at call time** to avoid stale values in tests.
- Imports a backend module **only if** that backend is selected, so missing
  optional client libraries never break the default in-memory setup.
- Every backend performs a liveness check in its constructor, so a misconfigured
  or unreachable store fails fast here (as `StoreError`).

Environment variables
---------------------
- GOLINK_BACKEND:            "memory" (default), "postgres", "redis", "firestore"
- GOLINK_DB_DSN:             DSN string if backend=="postgres"
- GOLINK_REDIS_ADDR / _PW / _DB
- GOLINK_FIRESTORE_PROJECT
- GOLINK_STORE_TIMEOUT, GOLINK_STORE_DEBUG

LLM Prompt
----------
You are extending storage backends. Keep defaults safe ("memory"). Read env lazily
inside the factory function. Don't import heavy client modules unless needed.
"""

import logging
import os
from typing import Optional

from golink_platform.config import redis_db, store_debug, store_timeout
from golink_platform.storage.base import RouteStore
from golink_platform.storage.memory_storage import MemoryStorage

log = logging.getLogger(__name__)

BACKENDS = ("memory", "postgres", "redis", "firestore")


def get_storage(backend: Optional[str] = None, **kwargs) -> RouteStore:
    """
    Return a RouteStore for the configured backend.

    Parameters
    ----------
    backend : str, optional
        One of BACKENDS. If omitted, reads GOLINK_BACKEND.
    kwargs : dict
        Backend constructor overrides (dsn=..., addr=..., password=..., db=...,
        project=..., client=..., pool=..., timeout=..., debug=...).

    Raises
    ------
    ValueError
        Unknown backend or missing required parameter.
    StoreError
        Backend unreachable at startup.
    """
    be = (backend or os.getenv("GOLINK_BACKEND", "memory")).strip().lower()
    timeout = kwargs.pop("timeout", None)
    if timeout is None:
        timeout = store_timeout()
    debug = kwargs.pop("debug", None)
    if debug is None:
        debug = store_debug()

    log.info("Selected storage backend: %r", be)

    if be == "memory":
        return MemoryStorage(timeout=timeout, debug=debug)

    if be == "postgres":
        dsn = kwargs.pop("dsn", None) or os.getenv("GOLINK_DB_DSN", "")
        if not dsn:
            raise ValueError("DB_DSN is required for postgres backend (env GOLINK_DB_DSN)")
        from golink_platform.storage.db_storage import DBStorage
        return DBStorage(dsn=dsn, timeout=timeout, debug=debug, **kwargs)

    if be == "redis":
        from golink_platform.storage.redis_storage import RedisStorage
        db = kwargs.pop("db", None)
        return RedisStorage(
            addr=kwargs.pop("addr", None) or os.getenv("GOLINK_REDIS_ADDR", "localhost:6379"),
            password=kwargs.pop("password", None) or os.getenv("GOLINK_REDIS_PW", ""),
            db=redis_db() if db is None else db,
            timeout=timeout,
            debug=debug,
            **kwargs,
        )

    if be == "firestore":
        from golink_platform.storage.firestore_storage import FirestoreStorage
        return FirestoreStorage(
            project=kwargs.pop("project", None) or os.getenv("GOLINK_FIRESTORE_PROJECT", ""),
            timeout=timeout,
            debug=debug,
            **kwargs,
        )

    raise ValueError(f"Unknown storage backend: {be!r}")
