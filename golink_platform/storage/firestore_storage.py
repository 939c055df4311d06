"""
FirestoreStorage – Cloud Firestore document-store backend for Golink Platform.

Document layout
---------------
- `routes/{doc_id}`   : {"name": <route key>, "url": <destination>, "time": <ISO timestamp>}
- `golink_counters/next_id` : {"value": <int>}

Firestore document IDs cannot contain "/" (go-link names often do) and reject "." / ".."
and `__x__`-style IDs, so the route key is kept in the `name` field and the document ID
is an escaped form of it. All queries go through `name`.

Prefix listing
--------------
A range query `name >= prefix AND name < prefix+1 ORDER BY name LIMIT n`, continued with
`start_after({"name": last})` until a short page comes back. Values arrive with the keys,
so no per-key lookup is needed.

Counter
-------
`next_id` runs a transaction that reads the counter document and applies the server-side
`Increment(1)` transform. Increment alone would not tell us the resulting value; the
transaction makes the read and the increment one atomic unit (Firestore retries it on
contention), so concurrent callers never get the same value.
"""

import contextlib
import logging
from typing import Any, Dict, Iterator, Optional, Tuple
from urllib.parse import quote

from google.api_core.exceptions import GoogleAPIError
from google.auth.exceptions import GoogleAuthError
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter
from pydantic import ValidationError

from ..route import Route
from .base import COUNTER_KEY, Batch, RouteIterator, RouteStore, prefix_upper_bound
from .errors import DecodeError, StoreError

log = logging.getLogger(__name__)

ROUTES_COLLECTION = "routes"
COUNTERS_COLLECTION = "golink_counters"
COUNTER_DOC = "next_id"


def document_id(key: str) -> str:
    """Escape a route key into a valid Firestore document ID."""
    return "r:" + quote(key, safe="")


class FirestoreRouteIterator(RouteIterator):
    def __init__(self, store: "FirestoreStorage", prefix: str = "", batch_size: int = 100):
        super().__init__(store, prefix, batch_size)
        self._upper = prefix_upper_bound(prefix)
        self._after: Optional[str] = None

    def _fetch(self) -> Tuple[Batch, bool]:
        store: FirestoreStorage = self._store  # type: ignore[assignment]
        query = store.routes.order_by("name")
        if self.prefix:
            query = query.where(filter=FieldFilter("name", ">=", self.prefix))
        if self._upper is not None:
            query = query.where(filter=FieldFilter("name", "<", self._upper))
        if self._after is not None:
            query = query.start_after({"name": self._after})
        query = query.limit(self.batch_size)

        with store._errors("scan", self.prefix):
            docs = list(query.stream(timeout=store.timeout))

        batch = []
        for doc in docs:
            data = doc.to_dict() or {}
            batch.append((data.get("name", doc.id), data))
        if batch:
            self._after = batch[-1][0]
        return batch, len(docs) < self.batch_size


class FirestoreStorage(RouteStore):
    """Firestore implementation of the route store contract.

    Args:
        project: GCP project id; empty string uses application default credentials.
        timeout: per-RPC deadline in seconds.
        client: pre-built `firestore.Client` (tests pass a fake here).
    """

    backend_name = "firestore"

    def __init__(
        self,
        project: str = "",
        timeout: float = 5.0,
        debug: bool = False,
        client: Optional[firestore.Client] = None,
    ) -> None:
        super().__init__(timeout=timeout, debug=debug)
        if client is None:
            with self._errors("connect"):
                client = firestore.Client(project=project or None)
        self.client = client
        self.routes = client.collection(ROUTES_COLLECTION)
        self.counter_ref = client.collection(COUNTERS_COLLECTION).document(COUNTER_DOC)
        self.ping()

    @contextlib.contextmanager
    def _errors(self, op: str, key: str = "") -> Iterator[None]:
        try:
            yield
        except (GoogleAPIError, GoogleAuthError) as exc:
            log.error("Firestore %s failed for key %r: %s", op, key, exc)
            raise StoreError(f"Firestore {op} failed for key {key!r}") from exc

    def _doc(self, key: str):
        return self.routes.document(document_id(key))

    # ---- Codec: documents instead of JSON strings ------------------------------

    def _encode(self, route: Route) -> Dict[str, Any]:
        return route.to_dict()

    def _decode(self, key: str, raw: Dict[str, Any]) -> Route:
        data = {k: v for k, v in raw.items() if k != "name"}
        try:
            return Route.from_dict(data)
        except ValidationError as exc:
            log.error("Stored route %r failed to decode: %s", key, exc)
            raise DecodeError(key, str(exc)) from exc

    # ---- Contract primitives ----------------------------------------------------

    def ping(self) -> None:
        with self._errors("ping"):
            list(self.routes.limit(1).stream(timeout=self.timeout))
        log.info("Firestore: collection %r reachable", ROUTES_COLLECTION)

    def _read(self, key: str) -> Optional[Dict[str, Any]]:
        with self._errors("get", key):
            snap = self._doc(key).get(timeout=self.timeout)
        if not snap.exists:
            return None
        return snap.to_dict() or {}

    def _write(self, key: str, raw: Dict[str, Any]) -> None:
        with self._errors("put", key):
            self._doc(key).set(dict(raw, name=key), timeout=self.timeout)

    def _remove(self, key: str) -> None:
        # Deleting a missing document succeeds in Firestore.
        with self._errors("delete", key):
            self._doc(key).delete(timeout=self.timeout)

    def _increment(self) -> int:
        ref = self.counter_ref

        def bump(transaction) -> int:
            snap = ref.get(transaction=transaction, timeout=self.timeout)
            current = (snap.to_dict() or {}).get("value", 0) if snap.exists else 0
            transaction.set(ref, {"value": firestore.Increment(1)}, merge=True)
            return int(current) + 1

        with self._errors("next_id", COUNTER_KEY):
            return firestore.transactional(bump)(self.client.transaction())

    def _iterator(self, prefix: str, batch_size: int) -> RouteIterator:
        return FirestoreRouteIterator(self, prefix, batch_size)

    def _close(self) -> None:
        with self._errors("close"):
            self.client.close()
