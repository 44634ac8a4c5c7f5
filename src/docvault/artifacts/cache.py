"""
Read-through cache collaborator.

The lifecycle manager caches resolved serving entries and file headers.
The cache is best-effort and never a source of truth: a miss only costs a
store listing, and every publish purges the keys it invalidates.
"""

import threading
import time
from typing import Any, Callable, Protocol, runtime_checkable

LATEST = "latest"


def entry_key(package_name: str, version: str) -> str:
    return f"docvault/entry/{package_name}/{version}"


def api_summary_key(package_name: str) -> str:
    return f"docvault/api-summary/{package_name}"


def file_info_key(object_name: str) -> str:
    return f"docvault/file-info/{object_name}"


@runtime_checkable
class Cache(Protocol):
    """Protocol for the key-value cache used by the lifecycle manager."""

    def get(self, key: str) -> Any | None:
        """Return the cached value, or None on a miss."""
        ...

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store ``value`` under ``key`` for ``ttl`` seconds."""
        ...

    def purge(self, key: str) -> None:
        """Remove ``key`` from the cache."""
        ...


class MemoryCache:
    """
    Thread-safe in-process TTL cache.

    Expired values are dropped lazily on access.
    """

    def __init__(
        self,
        default_ttl: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the cache.

        Args:
            default_ttl: TTL in seconds used when ``set`` gets none
            clock: Monotonic time source
        """
        self._default_ttl = default_ttl
        self._clock = clock
        self._values: dict[str, tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            item = self._values.get(key)
            if item is None:
                return None
            expires_at, value = item
            if expires_at <= self._clock():
                del self._values[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        expires_at = self._clock() + (ttl if ttl is not None else self._default_ttl)
        with self._lock:
            self._values[key] = (expires_at, value)

    def purge(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._values.clear()

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None
