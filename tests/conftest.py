"""
Global pytest fixtures for the Golink Platform test suite.

Responsibilities:
    - Provide one fresh, isolated route store per backend (memory, postgres double,
      fakeredis, Firestore double) and a parametrized `any_store` fixture so the
      RouteStore contract is exercised identically against every backend
    - Provide a RouteManager and a FastAPI TestClient wired to an in-memory store

Doubles:
    - Postgres: `DummyPool` hands out `DummyConnection`s backed by a dict, understanding
      exactly the statements `DBStorage` issues (same approach as a cursor stub, but with
      state so pagination and upserts behave).
    - Redis: `fakeredis` with a private FakeServer per test.
    - Firestore: `FakeFirestoreClient` implements the handful of client calls the backend
      uses (document get/set/delete, where/order_by/start_after/limit/stream, transactions,
      the Increment transform).
    - Set GOLINK_DB_DSN to also run the contract against a real PostgreSQL.

LLM Prompt Example:
    "Show how to structure pytest fixtures so one contract test module runs against
    several storage backends without external services."
"""

import contextlib
import operator
import os
import threading
from collections import defaultdict

import fakeredis
import psycopg
import pytest
from fastapi.testclient import TestClient
from google.cloud.firestore_v1.transforms import Increment

from main import create_app
from golink_platform.manager.route_manager import RouteManager
from golink_platform.storage import firestore_storage
from golink_platform.storage.db_storage import DBStorage
from golink_platform.storage.firestore_storage import FirestoreStorage
from golink_platform.storage.memory_storage import MemoryStorage
from golink_platform.storage.redis_storage import RedisStorage


# ---------------------------------------------------------------------
# PostgreSQL double
# ---------------------------------------------------------------------

class DummyCursor:
    def __init__(self, conn):
        self.conn = conn
        self._rows = []
        self.rowcount = 0

    def execute(self, query, params=None):
        table = self.conn.table
        self.conn.queries.append((" ".join(query.split()), params))
        if self.conn.fail is not None:
            raise self.conn.fail
        params = list(params or [])
        q = " ".join(query.split())
        with self.conn.lock:
            if q.startswith("SELECT 1"):
                self._rows = [(1,)]
            elif q.startswith("CREATE TABLE"):
                self._rows = []
            elif q.startswith("SELECT value FROM routes WHERE key"):
                self._rows = [(table[params[0]],)] if params[0] in table else []
            elif q.startswith("SELECT key, value FROM routes"):
                lower, counter = params[0], params[1]
                idx = 2
                upper = after = None
                if "key < %s" in q:
                    upper = params[idx]
                    idx += 1
                if "key > %s" in q:
                    after = params[idx]
                    idx += 1
                limit = params[idx]
                keys = sorted(
                    k for k in table
                    if k >= lower and k != counter
                    and (upper is None or k < upper)
                    and (after is None or k > after)
                )
                self._rows = [(k, table[k]) for k in keys[:limit]]
            elif "VALUES (%s, '1')" in q:
                key = params[0]
                table[key] = str(int(table.get(key, "0")) + 1)
                self._rows = [(table[key],)]
            elif q.startswith("INSERT INTO routes"):
                table[params[0]] = params[1]
                self._rows = []
            elif q.startswith("DELETE FROM routes"):
                self.rowcount = 1 if table.pop(params[0], None) is not None else 0
                self._rows = []
            else:  # pragma: no cover
                raise AssertionError(f"unexpected query: {q}")
        return self

    def fetchone(self):
        return self._rows[0] if self._rows else None

    def fetchall(self):
        return list(self._rows)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class DummyConnection:
    def __init__(self, pool):
        self.pool = pool

    @property
    def table(self):
        return self.pool.table

    @property
    def queries(self):
        return self.pool.queries

    @property
    def fail(self):
        return self.pool.fail

    @property
    def lock(self):
        return self.pool.lock

    def cursor(self, row_factory=None):
        return DummyCursor(self)


class DummyPool:
    """Stands in for psycopg_pool.ConnectionPool."""

    def __init__(self):
        self.table = {}
        self.queries = []
        self.fail = None
        self.checkout_fail = None
        self.opened = False
        self.closed = False
        self.lock = threading.Lock()

    @contextlib.contextmanager
    def connection(self, timeout=None):
        if self.closed:
            raise psycopg.OperationalError("the pool is closed")
        if self.checkout_fail is not None:
            raise self.checkout_fail
        yield DummyConnection(self)

    def open(self, wait=False, timeout=None):
        self.opened = True

    def close(self):
        self.closed = True


# ---------------------------------------------------------------------
# Firestore double
# ---------------------------------------------------------------------

_OPS = {
    "<": operator.lt,
    "<=": operator.le,
    "==": operator.eq,
    ">=": operator.ge,
    ">": operator.gt,
}


class FakeSnapshot:
    def __init__(self, doc_id, data):
        self.id = doc_id
        self._data = data

    @property
    def exists(self):
        return self._data is not None

    def to_dict(self):
        return dict(self._data) if self._data is not None else None


class FakeDocRef:
    def __init__(self, client, collection, doc_id):
        self.client = client
        self.collection = collection
        self.id = doc_id

    def get(self, timeout=None, transaction=None):
        self.client.check()
        self.client.timeouts.append(timeout)
        return FakeSnapshot(self.id, self.client.data[self.collection].get(self.id))

    def set(self, data, merge=False, timeout=None):
        self.client.check()
        self.client.timeouts.append(timeout)
        self.client.apply(self.collection, self.id, data, merge)

    def delete(self, timeout=None):
        self.client.check()
        self.client.timeouts.append(timeout)
        with self.client.lock:
            self.client.data[self.collection].pop(self.id, None)


class FakeQuery:
    def __init__(self, client, collection, filters=(), order=None, after=None, n=None):
        self.client = client
        self.collection = collection
        self.filters = tuple(filters)
        self.order = order
        self.after = after
        self.n = n

    def _copy(self, **changes):
        state = dict(filters=self.filters, order=self.order, after=self.after, n=self.n)
        state.update(changes)
        return FakeQuery(self.client, self.collection, **state)

    def where(self, filter):
        return self._copy(filters=self.filters + (filter,))

    def order_by(self, field):
        return self._copy(order=field)

    def start_after(self, values):
        return self._copy(after=values)

    def limit(self, n):
        return self._copy(n=n)

    def stream(self, timeout=None):
        self.client.check()
        self.client.timeouts.append(timeout)
        with self.client.lock:
            self.client.streams += 1
            docs = sorted(self.client.data[self.collection].items())
        for f in self.filters:
            op = _OPS[f.op_string]
            docs = [(i, d) for i, d in docs if f.field_path in d and op(d[f.field_path], f.value)]
        if self.order:
            docs = sorted((p for p in docs if self.order in p[1]), key=lambda p: p[1][self.order])
            if self.after is not None:
                docs = [(i, d) for i, d in docs if d[self.order] > self.after[self.order]]
        if self.n is not None:
            docs = docs[: self.n]
        return iter([FakeSnapshot(i, dict(d)) for i, d in docs])


class FakeCollection(FakeQuery):
    def __init__(self, client, name):
        super().__init__(client, name)

    def document(self, doc_id):
        return FakeDocRef(self.client, self.collection, doc_id)


class FakeTransaction:
    def __init__(self, client):
        self.client = client

    def set(self, ref, data, merge=False):
        self.client.check()
        self.client.apply(ref.collection, ref.id, data, merge)


class FakeFirestoreClient:
    def __init__(self):
        self.data = defaultdict(dict)
        self.fail = None
        self.closed = False
        self.streams = 0
        self.timeouts = []
        self.lock = threading.RLock()

    def check(self):
        if self.fail is not None:
            raise self.fail

    def collection(self, name):
        return FakeCollection(self, name)

    def transaction(self):
        return FakeTransaction(self)

    def apply(self, collection, doc_id, data, merge):
        with self.lock:
            self._apply(collection, doc_id, data, merge)

    def _apply(self, collection, doc_id, data, merge):
        current = dict(self.data[collection].get(doc_id) or {}) if merge else {}
        for key, value in data.items():
            if isinstance(value, Increment):
                value = current.get(key, 0) + value.value
            current[key] = value
        self.data[collection][doc_id] = current

    def close(self):
        self.closed = True


def fake_transactional(fn):
    """Replacement for firestore.transactional: run fn once under the client lock."""
    def run(transaction):
        with transaction.client.lock:
            return fn(transaction)
    return run


# ---------------------------------------------------------------------
# Store fixtures
# ---------------------------------------------------------------------

@pytest.fixture
def storage() -> MemoryStorage:
    """Fresh in-memory route store."""
    return MemoryStorage()


@pytest.fixture
def db_pool() -> DummyPool:
    return DummyPool()


@pytest.fixture
def db_store(db_pool) -> DBStorage:
    store = DBStorage("postgresql://fake", pool=db_pool)
    yield store
    store.close()


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(server=fakeredis.FakeServer())


@pytest.fixture
def redis_store(redis_client) -> RedisStorage:
    store = RedisStorage(client=redis_client)
    yield store
    store.close()


@pytest.fixture
def firestore_client(monkeypatch) -> FakeFirestoreClient:
    monkeypatch.setattr(firestore_storage.firestore, "transactional", fake_transactional)
    return FakeFirestoreClient()


@pytest.fixture
def firestore_store(firestore_client) -> FirestoreStorage:
    store = FirestoreStorage(client=firestore_client)
    yield store
    store.close()


def _real_postgres_store():
    store = DBStorage(os.environ["GOLINK_DB_DSN"])
    with store._conn() as con, con.cursor() as cur:
        cur.execute("TRUNCATE routes")
    return store


STORE_KINDS = ["memory", "postgres", "redis", "firestore"] + (
    ["postgres-live"] if os.getenv("GOLINK_DB_DSN") else []
)


@pytest.fixture(params=STORE_KINDS)
def any_store(request):
    """The same fresh, empty store contract over every backend."""
    kind = request.param
    if kind == "postgres-live":
        store = _real_postgres_store()
        yield store
        store.close()
        return
    fixture = {
        "memory": "storage",
        "postgres": "db_store",
        "redis": "redis_store",
        "firestore": "firestore_store",
    }[kind]
    yield request.getfixturevalue(fixture)


# ---------------------------------------------------------------------
# Service / app fixtures
# ---------------------------------------------------------------------

@pytest.fixture
def manager(storage: MemoryStorage) -> RouteManager:
    """RouteManager wired to the in-memory storage fixture."""
    return RouteManager(storage=storage)


@pytest.fixture
def client(storage: MemoryStorage) -> TestClient:
    """TestClient over a fresh app with admin requests enabled."""
    app = create_app(storage=storage, admin=True)
    return TestClient(app)
