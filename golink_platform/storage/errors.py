"""
Error taxonomy shared by every route store backend.

- NotFoundError: the key is absent. An expected outcome, never logged as a fault.
- DecodeError:   stored bytes do not deserialize into a Route (corruption or version skew).
- StoreError:    transport/connectivity/backend failure, including deadline expiry.
                 Never retried inside the store; retry policy belongs to the caller.

Backend-native exceptions are always chained (`raise StoreError(...) from exc`) so the
original fault stays visible in tracebacks.
"""


class RouteStoreError(Exception):
    """Base class for all route store errors."""


class NotFoundError(RouteStoreError):
    """Raised by `get` when no route is stored under the key."""

    def __init__(self, key: str):
        super().__init__(f"Route not found: {key!r}")
        self.key = key


class DecodeError(RouteStoreError):
    """Raised when a stored value cannot be decoded into a Route."""

    def __init__(self, key: str, reason: str = ""):
        msg = f"Stored route {key!r} could not be decoded"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)
        self.key = key


class StoreError(RouteStoreError):
    """Raised when the backing technology fails or is unreachable."""
