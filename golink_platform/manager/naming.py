"""
Short-name generation for auto-named routes.

The allocator hands out 1, 2, 3, ...; each ID is rendered in Base62 and prefixed
with ":" so generated names can never collide with user-chosen names (which may
not start with ":").

    1  -> ":1"
    61 -> ":Z"
    62 -> ":10"
"""

_BASE62_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"
_BASE62_BASE = len(_BASE62_ALPHABET)

GENERATED_PREFIX = ":"


def base62_encode(num: int) -> str:
    """
    Convert a non-negative integer to a Base62 string using the global alphabet.
    0 -> "0", 61 -> "Z", 62 -> "10"
    """
    if num < 0:
        raise ValueError("num must be non-negative")
    if num == 0:
        return "0"
    out = []
    while num > 0:
        num, rem = divmod(num, _BASE62_BASE)
        out.append(_BASE62_ALPHABET[rem])
    return "".join(reversed(out))


def base62_decode(code: str) -> int:
    """Inverse of base62_encode."""
    if not code:
        raise ValueError("code must not be empty")
    num = 0
    for ch in code:
        idx = _BASE62_ALPHABET.find(ch)
        if idx < 0:
            raise ValueError(f"invalid Base62 character: {ch!r}")
        num = num * _BASE62_BASE + idx
    return num


def generated_name(route_id: int) -> str:
    """Short name for an allocator ID."""
    if route_id < 1:
        raise ValueError("route ids start at 1")
    return GENERATED_PREFIX + base62_encode(route_id)


def is_generated(name: str) -> bool:
    return name.startswith(GENERATED_PREFIX)
