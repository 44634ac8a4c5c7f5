"""
Object store interface.

The artifact lifecycle manager talks to remote blob storage only through
this interface: list-by-prefix, stat, read, write and delete. Every
operation either succeeds or raises an ObjectStoreError subclass that
classifies the failure (not-found, transient or fatal).
"""

import io
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import BinaryIO, Iterator

from docvault.core.exceptions import ObjectNotFoundError


@dataclass(frozen=True)
class ObjectInfo:
    """Metadata of a stored object, or of a directory in a listing."""

    name: str
    is_directory: bool = False
    size: int = 0
    updated_at: datetime | None = None
    etag: str | None = None
    content_type: str | None = None


class ObjectStore(ABC):
    """
    Abstract key-value blob store.

    Object names use ``/`` as the path separator. ``list`` is
    delimiter-style: it yields the immediate children of a prefix, with
    child directories reported as names ending in ``/``.
    """

    scheme: str = "store"

    @abstractmethod
    def list(self, prefix: str) -> Iterator[ObjectInfo]:
        """Yield the objects and directories directly under ``prefix``."""

    @abstractmethod
    def stat(self, name: str) -> ObjectInfo:
        """
        Return object metadata.

        Raises:
            ObjectNotFoundError: If the object does not exist
        """

    @abstractmethod
    def open_read(self, name: str) -> BinaryIO:
        """
        Open an object for reading.

        Raises:
            ObjectNotFoundError: If the object does not exist
        """

    @abstractmethod
    def write(
        self,
        name: str,
        source: BinaryIO,
        *,
        length: int,
        content_type: str | None = None,
    ) -> ObjectInfo:
        """Write ``length`` bytes from ``source`` to ``name``, replacing any existing object."""

    @abstractmethod
    def delete(self, name: str) -> None:
        """
        Delete an object.

        Raises:
            ObjectNotFoundError: If the object does not exist
        """

    def read_bytes(self, name: str) -> bytes:
        """Read the full content of an object."""
        with self.open_read(name) as stream:
            return stream.read()

    def write_bytes(
        self, name: str, data: bytes, content_type: str | None = None
    ) -> ObjectInfo:
        """Write ``data`` to ``name``."""
        return self.write(
            name, io.BytesIO(data), length=len(data), content_type=content_type
        )

    def exists(self, name: str) -> bool:
        """Return True if an object exists at ``name``."""
        try:
            self.stat(name)
            return True
        except ObjectNotFoundError:
            return False

    def uri(self, name: str) -> str:
        """Return a URI identifying ``name`` in this store."""
        return f"{self.scheme}://{name}"
