"""
Filesystem object store.

Maps object names onto files below a root directory (default:
var/docvault/). Writes go through a temporary file and an atomic rename,
so readers never see a partially written object.
"""

import hashlib
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, Iterator

from docvault.core.exceptions import (
    FatalStoreError,
    ObjectNotFoundError,
    ObjectStoreError,
    TransientStoreError,
)
from docvault.storage.base import ObjectInfo, ObjectStore


class LocalObjectStore(ObjectStore):
    """
    Object store backed by a local directory.

    Layout mirrors object names:
    - {root}/{package}/{version}/{runtime_version}/{uuid}.completed.json
    - {root}/{package}/{version}/{runtime_version}/{uuid}/{relative_path}

    Empty directories are pruned on delete so that listings only report
    directories that still hold objects.
    """

    scheme = "file"

    def __init__(self, root: Path | None = None, chunk_size: int = 8192):
        """
        Initialize the store.

        Args:
            root: Base directory for objects (default: var/docvault/)
            chunk_size: Chunk size for streaming copies and hashing
        """
        self._root = (root or Path("var/docvault")).absolute()
        self._chunk_size = chunk_size
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        """Base directory of the store."""
        return self._root

    def _path(self, name: str) -> Path:
        """Resolve an object name to a path below the root."""
        parts = [p for p in name.split("/") if p]
        if not parts or any(p in (".", "..") for p in parts):
            raise FatalStoreError(
                f"Invalid object name: {name!r}", status=400, object_name=name
            )
        return self._root.joinpath(*parts)

    def _compute_hash_streaming(self, file_path: Path) -> str:
        """Compute SHA256 hash of a file with streaming."""
        hasher = hashlib.sha256()
        with open(file_path, "rb") as f:
            for chunk in iter(lambda: f.read(self._chunk_size), b""):
                hasher.update(chunk)
        return hasher.hexdigest()

    def _translate(self, err: OSError, name: str) -> ObjectStoreError:
        if isinstance(err, FileNotFoundError):
            return ObjectNotFoundError(f"No such object: {name}", object_name=name)
        if isinstance(err, PermissionError):
            return FatalStoreError(f"Permission denied: {name}", object_name=name)
        return ObjectStoreError(f"I/O error on {name}: {err}", object_name=name)

    def list(self, prefix: str) -> Iterator[ObjectInfo]:
        # A prefix is either a directory ("a/b/") or a directory plus a
        # name fragment ("a/b/2020.").
        if prefix and not prefix.endswith("/"):
            directory_name, _, fragment = prefix.rpartition("/")
        else:
            directory_name, fragment = prefix.rstrip("/"), ""
        directory = self._path(directory_name) if directory_name else self._root
        base = f"{directory_name}/" if directory_name else ""

        try:
            children = sorted(directory.iterdir(), key=lambda p: p.name)
        except FileNotFoundError:
            return
        except OSError as e:
            raise self._translate(e, prefix) from e

        for child in children:
            if not child.name.startswith(fragment) or child.name.startswith(".tmp-"):
                continue
            if child.is_dir():
                yield ObjectInfo(name=f"{base}{child.name}/", is_directory=True)
            else:
                yield self._info(f"{base}{child.name}", child, with_hash=False)

    def _info(self, name: str, path: Path, with_hash: bool = True) -> ObjectInfo:
        stat = path.stat()
        return ObjectInfo(
            name=name,
            size=stat.st_size,
            updated_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            etag=self._compute_hash_streaming(path) if with_hash else None,
        )

    def stat(self, name: str) -> ObjectInfo:
        path = self._path(name)
        if path.is_dir():
            raise ObjectNotFoundError(f"No such object: {name}", object_name=name)
        try:
            return self._info(name, path)
        except OSError as e:
            raise self._translate(e, name) from e

    def open_read(self, name: str) -> BinaryIO:
        path = self._path(name)
        try:
            return open(path, "rb")
        except IsADirectoryError as e:
            raise ObjectNotFoundError(f"No such object: {name}", object_name=name) from e
        except OSError as e:
            raise self._translate(e, name) from e

    def write(
        self,
        name: str,
        source: BinaryIO,
        *,
        length: int,
        content_type: str | None = None,
    ) -> ObjectInfo:
        path = self._path(name)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=".tmp-", dir=path.parent)
            try:
                remaining = length
                with os.fdopen(fd, "wb") as dst:
                    while remaining > 0:
                        chunk = source.read(min(self._chunk_size, remaining))
                        if not chunk:
                            break
                        dst.write(chunk)
                        remaining -= len(chunk)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
            return self._info(name, path)
        except FileNotFoundError as e:
            # A concurrent delete pruned the parent directory; safe to retry.
            raise TransientStoreError(
                f"Parent directory vanished while writing {name}", object_name=name
            ) from e
        except OSError as e:
            raise self._translate(e, name) from e

    def delete(self, name: str) -> None:
        path = self._path(name)
        try:
            path.unlink()
        except IsADirectoryError as e:
            raise ObjectNotFoundError(f"No such object: {name}", object_name=name) from e
        except OSError as e:
            raise self._translate(e, name) from e
        self._prune_empty_parents(path.parent)

    def _prune_empty_parents(self, directory: Path) -> None:
        while directory != self._root and self._root in directory.parents:
            try:
                directory.rmdir()
            except OSError:
                # Not empty, or removed concurrently.
                return
            directory = directory.parent

    def uri(self, name: str) -> str:
        return self._path(name).as_uri()
