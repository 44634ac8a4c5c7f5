"""
In-process object store.

Keeps objects in a dictionary guarded by a lock. Used by the test suite
and by embedders that do not need durable storage.
"""

import hashlib
import io
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import BinaryIO, Callable, Iterator

from docvault.core.exceptions import ObjectNotFoundError
from docvault.storage.base import ObjectInfo, ObjectStore


@dataclass
class _StoredObject:
    data: bytes
    updated_at: datetime
    content_type: str | None


class MemoryObjectStore(ObjectStore):
    """Thread-safe dictionary-backed object store."""

    scheme = "memory"

    def __init__(self, clock: Callable[[], datetime] | None = None):
        """
        Initialize the store.

        Args:
            clock: Returns the update time recorded on writes (default: UTC now)
        """
        self._objects: dict[str, _StoredObject] = {}
        self._lock = threading.Lock()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def __len__(self) -> int:
        with self._lock:
            return len(self._objects)

    def names(self) -> list[str]:
        """Return all object names, sorted."""
        with self._lock:
            return sorted(self._objects)

    def list(self, prefix: str) -> Iterator[ObjectInfo]:
        with self._lock:
            snapshot = {
                name: obj for name, obj in self._objects.items() if name.startswith(prefix)
            }

        directories: set[str] = set()
        entries: list[ObjectInfo] = []
        for name, obj in snapshot.items():
            rest = name[len(prefix):]
            if "/" in rest:
                directories.add(prefix + rest.split("/", 1)[0] + "/")
            else:
                entries.append(self._info(name, obj))

        entries.extend(ObjectInfo(name=d, is_directory=True) for d in directories)
        entries.sort(key=lambda info: info.name)
        yield from entries

    def stat(self, name: str) -> ObjectInfo:
        with self._lock:
            obj = self._objects.get(name)
        if obj is None:
            raise ObjectNotFoundError(f"No such object: {name}", object_name=name)
        return self._info(name, obj)

    def open_read(self, name: str) -> BinaryIO:
        with self._lock:
            obj = self._objects.get(name)
        if obj is None:
            raise ObjectNotFoundError(f"No such object: {name}", object_name=name)
        return io.BytesIO(obj.data)

    def write(
        self,
        name: str,
        source: BinaryIO,
        *,
        length: int,
        content_type: str | None = None,
    ) -> ObjectInfo:
        data = source.read(length)
        obj = _StoredObject(data=data, updated_at=self._clock(), content_type=content_type)
        with self._lock:
            self._objects[name] = obj
        return self._info(name, obj)

    def delete(self, name: str) -> None:
        with self._lock:
            if self._objects.pop(name, None) is None:
                raise ObjectNotFoundError(f"No such object: {name}", object_name=name)

    @staticmethod
    def _info(name: str, obj: _StoredObject) -> ObjectInfo:
        return ObjectInfo(
            name=name,
            size=len(obj.data),
            updated_at=obj.updated_at,
            etag=hashlib.sha256(obj.data).hexdigest(),
            content_type=obj.content_type,
        )
