"""
RouteManager module for Golink Platform.

Responsibilities:
    - Validate destination URLs and user-chosen names
    - Create named routes (create-or-overwrite) and auto-named routes via the ID allocator
    - Resolve incoming paths to destinations, including "name/extra/path" forwarding
    - List, dump and delete routes through the injected RouteStore

Design notes:
    - The store is an injected dependency; the manager never knows which backend is active.
    - Auto-named routes use `":" + base62(next_id())`; user names may not start with ":",
      so the two namespaces never collide.
    - Store errors are not caught here; the HTTP layer maps them to status codes.

LLM Prompt Example:
    "Show how a thin service layer keeps validation rules out of the storage
    backends so every backend can stay a dumb, contract-only key/value adapter."
"""

import logging
import re
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlparse

import requests

from ..route import Route
from ..storage.base import COUNTER_KEY, RouteStore
from ..storage.errors import NotFoundError
from .naming import generated_name, is_generated

log = logging.getLogger(__name__)

NamePattern = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.~+\-/]*$")
MAX_NAME_LENGTH = 255
RESERVED_NAMES = {"api", "health"}
MAX_LIST_LIMIT = 1000


class RouteManager:
    """Coordinates creation, lookup and listing rules for go-links."""

    def __init__(self, storage: RouteStore, timeout: float = 5.0):
        """
        Args:
            storage (RouteStore): Backend store instance.
            timeout (float): Reachability check timeout in seconds.
        """
        self.storage = storage
        self.timeout = timeout

    # ---------------------------------------------------------------------
    # Validation Helpers
    # ---------------------------------------------------------------------
    def _validate_url(self, url: str) -> None:
        """
        Validate that a URL has an http/https scheme and a netloc.

        Raises:
            ValueError: If the URL is malformed.
        """
        parsed = urlparse(url or "")
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValueError("Invalid URL format")

    def _validate_name(self, name: str) -> None:
        """
        Validate a user-chosen route name.

        Raises:
            ValueError: If the name is malformed, too long, or reserved.
        """
        if is_generated(name):
            raise ValueError("Names starting with ':' are reserved for generated links")
        if len(name) > MAX_NAME_LENGTH:
            raise ValueError("Name too long")
        if not NamePattern.match(name):
            raise ValueError("Name contains invalid characters")
        if name == COUNTER_KEY or name.split("/", 1)[0] in RESERVED_NAMES:
            raise ValueError("Name is reserved")

    def _is_reachable(self, url: str) -> bool:
        """
        Best-effort link reachability check.
        HEAD first (allow redirects); fall back to a streamed GET when the server
        rejects HEAD (403/405). 2xx/3xx means reachable.
        """
        try:
            resp = requests.head(url, allow_redirects=True, timeout=self.timeout)
            if resp.status_code in (403, 405):
                resp = requests.get(url, allow_redirects=True, timeout=self.timeout, stream=True)
                resp.close()
        except requests.RequestException as exc:
            log.info("Reachability check failed for %s: %s", url, exc)
            return False
        return 200 <= resp.status_code < 400

    # ---------------------------------------------------------------------
    # Public API
    # ---------------------------------------------------------------------
    def create(self, url: str, name: Optional[str] = None, check_reachable: bool = False) -> Tuple[str, Route]:
        """
        Create (or overwrite) a route.

        Rules:
            - Destination must be an http/https URL with a host.
            - With a name: validated, then written unconditionally (last writer wins).
            - Without a name: the store allocates the next ID and the route is saved
              under the generated name.

        Returns:
            (name, route)

        Raises:
            ValueError: invalid URL/name, or unreachable URL when check_reachable.
            StoreError / DecodeError: propagated from the store.
        """
        self._validate_url(url)
        if name:
            self._validate_name(name)
        if check_reachable and not self._is_reachable(url):
            raise ValueError("URL is not reachable (HEAD/GET failed)")

        if not name:
            name = generated_name(self.storage.next_id())

        route = Route.create(url)
        self.storage.put(name, route)
        log.info("Route %s -> %s saved", name, url)
        return name, route

    def get(self, name: str) -> Route:
        """Return the route stored under `name`. Raises NotFoundError."""
        return self.storage.get(name)

    def resolve(self, path: str) -> str:
        """
        Map a request path to a destination URL.

        An exact match wins. Otherwise the first path segment is looked up and the
        remainder is appended to its destination: with `docs -> https://x/wiki`,
        "docs/setup" resolves to "https://x/wiki/setup".

        Raises:
            NotFoundError: neither the full path nor its first segment is a route.
        """
        path = path.strip("/")
        try:
            return self.storage.get(path).destination
        except NotFoundError:
            if "/" not in path:
                raise
        head, rest = path.split("/", 1)
        destination = self.storage.get(head).destination
        return destination.rstrip("/") + "/" + rest

    def delete(self, name: str) -> None:
        """Delete a route; absent names are a no-op."""
        self.storage.delete(name)
        log.info("Route %s deleted", name)

    def list(self, prefix: str = "", limit: int = 100) -> List[Tuple[str, Route]]:
        """
        Up to `limit` routes whose name starts with `prefix`.

        The iterator is released on every exit path, including the early stop at `limit`.
        Raises the traversal fault (StoreError/DecodeError) if one occurred.
        """
        limit = max(1, min(MAX_LIST_LIMIT, limit))
        results: List[Tuple[str, Route]] = []
        with self.storage.list(prefix, batch_size=min(limit, 100)) as it:
            while len(results) < limit and it.next():
                results.append((it.name, it.route))
            if it.error is not None:
                raise it.error
        return results

    def dump(self) -> Dict[str, Route]:
        """Full backup of every route."""
        return self.storage.get_all()
