"""
Versioned JSON snapshots.

A snapshot is a single gzip-compressed JSON document stored at
``{prefix}{runtime_version}.json.gz``. Each runtime version writes its
own snapshot; older ones are kept for rollback and pruned once they are
both older than the GC threshold version and older than a minimum age.
"""

import gzip
import json
import logging
import random
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from docvault.core.exceptions import ObjectStoreError, SnapshotError
from docvault.core.versions import (
    DEFAULT_RUNTIME_VERSIONS,
    RuntimeVersions,
    is_runtime_version,
)
from docvault.storage.base import ObjectStore
from docvault.storage.transfer import (
    RetryingOperation,
    delete_object,
    upload_bytes_with_retry,
)

logger = logging.getLogger(__name__)

_random = random.SystemRandom()

DEFAULT_GC_MIN_AGE = timedelta(days=182)
DEFAULT_GC_MAX_DELAY_MINUTES = 360


class VersionedSnapshotStore:
    """Access to versioned JSON data named ``{prefix}{version}.json.gz``."""

    EXTENSION = ".json.gz"

    def __init__(
        self,
        store: ObjectStore,
        prefix: str,
        runtime: RuntimeVersions = DEFAULT_RUNTIME_VERSIONS,
        retrying: RetryingOperation | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """
        Initialize the snapshot store.

        Args:
            store: Object store holding the snapshots
            prefix: Directory prefix, must end with ``/``
            runtime: Runtime version policy (current version and GC threshold)
            retrying: Retry policy for uploads and deletes
            clock: Returns the current time, used for age checks
        """
        if not prefix.endswith("/"):
            raise ValueError("Directory prefix must end with `/`.")
        self._store = store
        self._prefix = prefix
        self._runtime = runtime
        self._retrying = retrying or RetryingOperation()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def prefix(self) -> str:
        return self._prefix

    def object_name(self, version: str | None = None) -> str:
        """Object name of the snapshot for ``version`` (default: current)."""
        return f"{self._prefix}{version or self._runtime.current}{self.EXTENSION}"

    def object_uri(self, version: str | None = None) -> str:
        """URI of the snapshot for ``version`` (default: current)."""
        return self._store.uri(self.object_name(version))

    def has_current(self) -> bool:
        """Whether a snapshot exists for the current runtime version."""
        # TODO: regenerate the snapshot once it is older than a configurable age
        return self._store.exists(self.object_name())

    def upload(self, data: dict[str, Any]) -> bool:
        """
        Upload ``data`` as the snapshot of the current runtime version.

        Failures are logged, not raised: a missing refresh only means the
        previous snapshot keeps being served.

        Returns:
            True if the upload succeeded
        """
        object_name = self.object_name()
        payload = gzip.compress(
            json.dumps(data, separators=(",", ":")).encode("utf-8")
        )
        try:
            upload_bytes_with_retry(
                self._store, object_name, payload, retrying=self._retrying
            )
            return True
        except ObjectStoreError as e:
            logger.warning(f"Unable to upload data file: {object_name}", exc_info=e)
            return False

    def read(self, version: str | None = None) -> dict[str, Any]:
        """
        Read and decode a snapshot.

        Args:
            version: Snapshot version (default: current runtime version)

        Raises:
            ObjectNotFoundError: If no snapshot exists for the version
            SnapshotError: If the snapshot cannot be decoded
        """
        object_name = self.object_name(version)
        logger.info(f"Loading snapshot: {object_name}")
        raw = self._store.read_bytes(object_name)
        try:
            data = json.loads(gzip.decompress(raw).decode("utf-8"))
        except (OSError, EOFError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise SnapshotError(
                f"Unable to decode snapshot: {e}", object_name=object_name
            ) from e
        if not isinstance(data, dict):
            raise SnapshotError(
                "Snapshot is not a JSON object", object_name=object_name
            )
        return data

    def find_latest_version_at_or_before(self, current: str | None = None) -> str | None:
        """
        Return the newest stored version not newer than ``current``.

        Args:
            current: Upper bound (default: current runtime version)

        Returns:
            The version string, or None when no snapshot qualifies
        """
        upper = current or self._runtime.current
        candidates = []
        for info in self._store.list(self._prefix):
            version = self._version_of(info.name)
            if version is not None and version <= upper:
                candidates.append(version)
        return max(candidates) if candidates else None

    def delete_old_data(self, min_age: timedelta | None = None) -> int:
        """
        Delete snapshots that predate the GC threshold version.

        When ``min_age`` is given, only snapshots last updated longer ago
        are deleted: a runtime version that is still running refreshes its
        snapshot periodically, and such files must survive.

        Returns:
            Number of snapshots deleted
        """
        deleted = 0
        now = self._clock()
        for info in self._store.list(self._prefix):
            if info.is_directory:
                continue
            version = self._version_of(info.name)
            if version is None or not self._runtime.should_gc(version):
                continue
            try:
                updated_at = info.updated_at or self._store.stat(info.name).updated_at
                if min_age is not None and (
                    updated_at is None or now - updated_at <= min_age
                ):
                    continue
                if delete_object(self._store, info.name, retrying=self._retrying):
                    deleted += 1
            except ObjectStoreError as e:
                logger.warning(f"Unable to delete old data file: {info.name}", exc_info=e)
        if deleted:
            logger.info(f"{self._prefix}: {deleted} old data files deleted.")
        return deleted

    def schedule_background_prune(
        self,
        min_age: timedelta | None = None,
        max_delay_minutes: int = DEFAULT_GC_MAX_DELAY_MINUTES,
    ) -> threading.Timer:
        """
        Run ``delete_old_data`` once, after a random delay.

        The delay spreads the sweeps of many processes over
        ``max_delay_minutes`` so they do not all hit the store together.

        Returns:
            The started timer
        """
        delay_seconds = _random.randint(0, max_delay_minutes) * 60

        def sweep() -> None:
            try:
                self.delete_old_data(min_age=min_age or DEFAULT_GC_MIN_AGE)
            except Exception as e:
                logger.warning("Error while deleting old data.", exc_info=e)

        timer = threading.Timer(delay_seconds, sweep)
        timer.name = f"snapshot-gc:{self._prefix}"
        timer.daemon = True
        timer.start()
        return timer

    def _version_of(self, object_name: str) -> str | None:
        """Extract the version from a snapshot object name, if it is one."""
        if not object_name.startswith(self._prefix) or not object_name.endswith(self.EXTENSION):
            return None
        version = object_name[len(self._prefix):-len(self.EXTENSION)]
        return version if is_runtime_version(version) else None
