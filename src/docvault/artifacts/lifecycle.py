"""
Artifact lifecycle management.

Handles publishing documentation trees, choosing the generation to serve,
and garbage collection of generations produced by obsolete runtime
versions.
"""

import json
import logging
import threading
import time
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, BinaryIO, Callable

from docvault.artifacts import cache as cache_keys
from docvault.artifacts import paths
from docvault.artifacts.cache import LATEST, Cache, MemoryCache
from docvault.artifacts.lookup import InMemoryVersionLookup, VersionLookup
from docvault.artifacts.models import ArtifactEntry, FileInfo, PublishResult
from docvault.artifacts.resolution import select_serving_entry
from docvault.config import DocVaultConfig
from docvault.core.exceptions import (
    ConfigurationError,
    EntryParseError,
    ObjectNotFoundError,
    ObjectStoreError,
    PublishError,
    SnapshotError,
)
from docvault.core.versions import DEFAULT_RUNTIME_VERSIONS, RuntimeVersions
from docvault.storage.base import ObjectStore
from docvault.storage.local import LocalObjectStore
from docvault.storage.snapshots import (
    DEFAULT_GC_MAX_DELAY_MINUTES,
    DEFAULT_GC_MIN_AGE,
    VersionedSnapshotStore,
)
from docvault.storage.transfer import (
    BoundedTransferExecutor,
    RetryingOperation,
    delete_folder_recursively,
    delete_object,
    upload_bytes_with_retry,
    upload_with_retry,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GCTask:
    """A pending garbage collection of one package version."""

    package_name: str
    package_version: str


class ArtifactLifecycleManager:
    """
    Artifact lifecycle manager.

    Publishing follows a marker protocol:
    - write the in-progress marker
    - upload every file of the tree
    - write the completed marker (the commit point)
    - delete the in-progress marker

    Only generations with a completed marker are ever served. Content
    prefixes are unique per generation, so concurrent publishes never
    write the same objects and no locking is needed.

    Garbage collection work is kept in an in-memory set. It is not
    persisted: pending tasks are lost on restart, and later publishes of
    the same package version schedule them again.
    """

    DEFAULT_UPLOAD_CONCURRENCY = 8
    DEFAULT_DELETE_CONCURRENCY = 8
    GC_POLL_INTERVAL_SECONDS = 30.0
    ENTRY_CACHE_TTL_SECONDS = 24 * 60 * 60
    RECENT_VERSION_FALLBACKS = 2

    def __init__(
        self,
        store: ObjectStore,
        *,
        runtime: RuntimeVersions = DEFAULT_RUNTIME_VERSIONS,
        cache: Cache | None = None,
        version_lookup: VersionLookup | None = None,
        retrying: RetryingOperation | None = None,
        upload_concurrency: int = DEFAULT_UPLOAD_CONCURRENCY,
        delete_concurrency: int = DEFAULT_DELETE_CONCURRENCY,
        gc_poll_interval: float = GC_POLL_INTERVAL_SECONDS,
        entry_cache_ttl: float = ENTRY_CACHE_TTL_SECONDS,
        snapshot_prefix: str = "sdk-snapshots/",
        snapshot_gc_min_age: timedelta = DEFAULT_GC_MIN_AGE,
        snapshot_gc_max_delay_minutes: int = DEFAULT_GC_MAX_DELAY_MINUTES,
    ):
        """
        Initialize the lifecycle manager.

        Args:
            store: Object store holding markers and content
            runtime: Accepted runtime versions, current first
            cache: Read-through cache for serving entries and file headers
            version_lookup: Package version metadata, needed to resolve ``latest``
            retrying: Retry policy for uploads and deletes
            upload_concurrency: Uploads in flight during a publish
            delete_concurrency: Deletes in flight when removing a package
            gc_poll_interval: Seconds the GC worker sleeps when idle
            entry_cache_ttl: TTL of cached serving entries
            snapshot_prefix: Prefix of the SDK documentation snapshots
            snapshot_gc_min_age: Minimum age of snapshots removed by GC
            snapshot_gc_max_delay_minutes: Upper bound of the snapshot GC delay
        """
        self._store = store
        self._runtime = runtime
        self._cache: Cache = cache if cache is not None else MemoryCache()
        self._version_lookup = version_lookup
        self._retrying = retrying or RetryingOperation()
        # Listings and stats get a single retry.
        self._read_retrying = RetryingOperation(
            is_transient=self._retrying.is_transient,
            max_attempts=2,
            sleep_seconds=self._retrying.sleep_seconds,
        )
        self._upload_concurrency = upload_concurrency
        self._delete_concurrency = delete_concurrency
        self._gc_poll_interval = gc_poll_interval
        self._entry_cache_ttl = entry_cache_ttl
        self._snapshot_gc_min_age = snapshot_gc_min_age
        self._snapshot_gc_max_delay_minutes = snapshot_gc_max_delay_minutes
        self._sdk_snapshots = VersionedSnapshotStore(
            store, snapshot_prefix, runtime=runtime, retrying=self._retrying
        )

        # Ordered for FIFO processing; values are unused.
        self._gc_tasks: dict[GCTask, None] = {}
        self._gc_lock = threading.Lock()
        self._gc_thread: threading.Thread | None = None
        self._gc_stop = threading.Event()

    @classmethod
    def from_config(
        cls,
        config: DocVaultConfig,
        store: ObjectStore | None = None,
        cache: Cache | None = None,
        version_lookup: VersionLookup | None = None,
    ) -> "ArtifactLifecycleManager":
        """
        Create a manager from a DocVaultConfig.

        Without an explicit store, a LocalObjectStore rooted at
        ``config.store_root`` is used. Without an explicit version lookup,
        one is loaded from ``config.versions_file`` when it is set.
        """
        if store is None:
            store = LocalObjectStore(config.store_root)
        if version_lookup is None and config.versions_file is not None:
            version_lookup = InMemoryVersionLookup.from_yaml(config.versions_file)
        return cls(
            store,
            runtime=config.runtime_versions,
            cache=cache,
            version_lookup=version_lookup,
            retrying=RetryingOperation(
                max_attempts=config.retry_max_attempts,
                sleep_seconds=config.retry_sleep_seconds,
            ),
            upload_concurrency=config.upload_concurrency,
            delete_concurrency=config.delete_concurrency,
            gc_poll_interval=config.gc_poll_interval_seconds,
            entry_cache_ttl=config.entry_cache_ttl_seconds,
            snapshot_prefix=config.snapshot_prefix,
            snapshot_gc_min_age=timedelta(days=config.snapshot_gc_min_age_days),
            snapshot_gc_max_delay_minutes=config.snapshot_gc_max_delay_minutes,
        )

    @property
    def store(self) -> ObjectStore:
        return self._store

    @property
    def runtime(self) -> RuntimeVersions:
        return self._runtime

    @property
    def sdk_snapshots(self) -> VersionedSnapshotStore:
        return self._sdk_snapshots

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def publish(self, entry: ArtifactEntry, source_dir: Path) -> PublishResult:
        """
        Upload a directory as a new generation of documentation.

        Re-running a publish for the same entry overwrites its markers and
        is safe after a crash.

        Args:
            entry: Entry describing the generation
            source_dir: Directory holding the generated files

        Returns:
            PublishResult with upload counts

        Raises:
            PublishError: If any step before the commit point fails
        """
        if not source_dir.is_dir():
            raise PublishError(
                f"Source directory not found: {source_dir}",
                package_name=entry.package_name,
                package_version=entry.package_version,
            )

        started = time.monotonic()
        self._write_marker(entry, entry.in_progress_object_name)

        counts = {"uploaded": 0, "skipped": 0}
        counts_lock = threading.Lock()

        def upload(file_path: Path, relative_path: str) -> None:
            object_name = entry.object_name(relative_path)
            if paths.is_shared_asset(relative_path):
                if self.get_file_info(entry, relative_path) is not None:
                    logger.debug(f"Shared asset already present: {object_name}")
                    with counts_lock:
                        counts["skipped"] += 1
                    return
            upload_with_retry(
                self._store,
                object_name,
                file_path.stat().st_size,
                lambda: open(file_path, "rb"),
                retrying=self._retrying,
            )
            with counts_lock:
                counts["uploaded"] += 1
                count = counts["uploaded"]
            if count % 100 == 0:
                logger.info(f"Upload completed: {object_name} (item #{count})")

        with BoundedTransferExecutor(self._upload_concurrency, name="upload") as executor:
            for file_path in sorted(p for p in source_dir.rglob("*") if p.is_file()):
                relative_path = file_path.relative_to(source_dir).as_posix()
                executor.submit(
                    lambda f=file_path, r=relative_path: upload(f, r),
                    label=entry.object_name(relative_path),
                )
            result = executor.wait_and_close()

        if not result.ok:
            first = result.failures[0]
            logger.warning(
                f"{entry.package_name} {entry.package_version}: "
                f"{result.failed} of {result.failed + result.succeeded} uploads failed."
            )
            raise PublishError(
                f"Upload failed: {first.error}",
                package_name=entry.package_name,
                package_version=entry.package_version,
                object_name=first.label,
            ) from first.error

        logger.info(
            f"{entry.package_name} {entry.package_version}: "
            f"{counts['uploaded']} files uploaded in {result.elapsed_seconds:.2f}s."
        )

        # Commit point: from here on the generation is servable.
        self._write_marker(entry, entry.completed_object_name)

        # If this fails the marker is left behind; GC removes it later.
        try:
            delete_object(self._store, entry.in_progress_object_name, retrying=self._retrying)
        except ObjectStoreError as e:
            logger.warning(
                f"Unable to delete in-progress marker: {entry.in_progress_object_name}",
                exc_info=e,
            )

        self._purge_entry_caches(entry.package_name, entry.package_version)

        return PublishResult(
            entry=entry,
            uploaded_count=counts["uploaded"],
            skipped_count=counts["skipped"],
            elapsed_seconds=time.monotonic() - started,
        )

    def _write_marker(self, entry: ArtifactEntry, object_name: str) -> None:
        try:
            upload_bytes_with_retry(
                self._store, object_name, entry.as_bytes(), retrying=self._retrying
            )
        except ObjectStoreError as e:
            raise PublishError(
                f"Unable to write marker: {e}",
                package_name=entry.package_name,
                package_version=entry.package_version,
                object_name=object_name,
            ) from e

    def update_entry_status(self, old: ArtifactEntry, current: ArtifactEntry) -> ArtifactEntry:
        """
        Copy the serving flags of ``current`` onto ``old``.

        Only the completed marker of ``old`` is rewritten; its content is
        untouched.

        Returns:
            The updated entry
        """
        new_entry = old.with_status(is_latest=current.is_latest, is_obsolete=current.is_obsolete)
        upload_bytes_with_retry(
            self._store,
            new_entry.completed_object_name,
            new_entry.as_bytes(),
            retrying=self._retrying,
        )
        self._purge_entry_caches(old.package_name, old.package_version)
        return new_entry

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve_serving_entry(self, package_name: str, version: str) -> ArtifactEntry | None:
        """
        Return the entry that should be used to serve the content.

        ``version`` is either a concrete version or ``latest``. For
        ``latest`` the package's latest version is tried first, then up to
        two other recent versions.

        Returns:
            The serving entry, or None when nothing can be served

        Raises:
            ObjectStoreError: If listing the store fails
            ConfigurationError: If ``latest`` is requested without a version lookup
        """
        key = cache_keys.entry_key(package_name, version)
        cached = self._cache_get(key)
        if cached is not None:
            logger.debug(f"Serving entry cache hit: {key}")
            return cached

        if version != LATEST:
            entry = self._load_serving_entry(package_name, version)
        else:
            latest_version = self.get_latest_version(package_name)
            if latest_version is None:
                return None
            entry = self._load_serving_entry(package_name, latest_version)

            if entry is None:
                candidates = [
                    v for v in self.get_latest_versions(package_name) if v != latest_version
                ]
                for candidate in candidates[: self.RECENT_VERSION_FALLBACKS]:
                    entry = self._load_serving_entry(package_name, candidate)
                    if entry is not None:
                        break

        # Entries of older runtime versions are not cached, so a
        # coordinated upgrade is picked up as soon as new entries exist.
        if entry is not None and entry.runtime_version == self._runtime.current:
            self._cache_set(key, entry, self._entry_cache_ttl)
        return entry

    def _load_serving_entry(self, package_name: str, version: str) -> ArtifactEntry | None:
        entries = self.list_entries(
            package_name, version, runtime_filter=self._runtime.should_serve
        )
        return select_serving_entry(entries, self._runtime)

    def get_latest_entry(self, package_name: str, version: str) -> ArtifactEntry | None:
        """Return the most recently created completed entry, of any runtime version."""
        entries = self.list_entries(package_name, version)
        if not entries:
            return None
        return max(entries, key=lambda e: e.timestamp)

    def list_entries(
        self,
        package_name: str,
        version: str,
        in_progress: bool = False,
        runtime_filter: Callable[[str], bool] | None = None,
    ) -> list[ArtifactEntry]:
        """
        List the entries of a package version.

        Markers that fail to parse are logged and skipped; markers removed
        by a concurrent cleanup during the listing are skipped silently.

        Args:
            package_name: Package to list
            version: Package version to list
            in_progress: List in-progress markers instead of completed ones
            runtime_filter: Only read markers below matching runtime versions

        Returns:
            The decoded entries
        """
        prefix = paths.version_prefix(package_name, version)
        suffix = paths.IN_PROGRESS_SUFFIX if in_progress else paths.COMPLETED_SUFFIX

        def load() -> list[ArtifactEntry]:
            entries = []
            for runtime_dir in self._store.list(prefix):
                if not runtime_dir.is_directory:
                    continue
                runtime_version = runtime_dir.name[len(prefix):].rstrip("/")
                if runtime_filter is not None and not runtime_filter(runtime_version):
                    continue
                for info in self._store.list(runtime_dir.name):
                    if info.is_directory or not info.name.endswith(suffix):
                        continue
                    try:
                        data = self._store.read_bytes(info.name)
                        entries.append(ArtifactEntry.from_bytes(data, object_name=info.name))
                    except ObjectNotFoundError:
                        continue
                    except EntryParseError as e:
                        logger.warning(f"Unable to read entry: {info.name}.", exc_info=e)
            return entries

        return self._read_retrying.run(load, description=f"List entries of {prefix}")

    # ------------------------------------------------------------------
    # Content access
    # ------------------------------------------------------------------

    def get_file_info(self, entry: ArtifactEntry, relative_path: str) -> FileInfo | None:
        """Return the header of a file, or None when it does not exist."""
        object_name = entry.object_name(relative_path)
        key = cache_keys.file_info_key(object_name)
        cached = self._cache_get(key)
        if cached is not None:
            return cached

        def stat() -> FileInfo | None:
            try:
                info = self._store.stat(object_name)
            except ObjectNotFoundError:
                logger.info(f"Requested path {object_name} does not exist.")
                return None
            return FileInfo(last_modified=info.updated_at, etag=info.etag)

        file_info = self._read_retrying.run(stat, description=f"Stat {object_name}")
        if file_info is not None:
            self._cache_set(key, file_info, self._entry_cache_ttl)
        return file_info

    def read_content(self, entry: ArtifactEntry, relative_path: str) -> BinaryIO:
        """Open a file of an entry for reading."""
        object_name = entry.object_name(relative_path)
        logger.info(f"Retrieving {object_name} from store.")
        return self._store.open_read(object_name)

    def get_text_content(self, entry: ArtifactEntry, relative_path: str) -> str:
        """Read a file of an entry as UTF-8 text."""
        with self.read_content(entry, relative_path) as stream:
            return stream.read().decode("utf-8")

    # ------------------------------------------------------------------
    # Version lookup
    # ------------------------------------------------------------------

    def _require_version_lookup(self) -> VersionLookup:
        if self._version_lookup is None:
            raise ConfigurationError(
                "A version lookup is required to resolve the latest version",
                config_key="versions_file",
            )
        return self._version_lookup

    def get_latest_version(self, package_name: str) -> str | None:
        """Return the latest stable version of a package."""
        return self._require_version_lookup().latest_stable_version(package_name)

    def get_latest_versions(self, package_name: str, limit: int = 10) -> list[str]:
        """Return recent versions, stable first, newest created first."""
        return self._require_version_lookup().recent_versions(package_name, limit=limit)

    # ------------------------------------------------------------------
    # Deletion and garbage collection
    # ------------------------------------------------------------------

    def remove_all(
        self,
        package_name: str,
        version: str | None = None,
        concurrency: int | None = None,
    ) -> int:
        """
        Remove all files of a package, or of one of its versions.

        Removing a whole package also purges the cached entries of every
        version stored under it at the time of the call.

        Returns:
            Number of objects deleted
        """
        if version is None:
            prefix = paths.package_prefix(package_name)
            versions = self._list_versions(package_name)
        else:
            prefix = paths.version_prefix(package_name, version)
            versions = [version]
        count = self._delete_all_with_prefix(prefix, concurrency=concurrency)
        for removed in versions:
            self._purge_entry_caches(package_name, removed)
        # Nothing was listed, the shared keys still go.
        if not versions:
            self._cache_purge(cache_keys.entry_key(package_name, LATEST))
            self._cache_purge(cache_keys.api_summary_key(package_name))
        return count

    def _list_versions(self, package_name: str) -> list[str]:
        prefix = paths.package_prefix(package_name)

        def load() -> list[str]:
            return [
                info.name[len(prefix):].rstrip("/")
                for info in self._store.list(prefix)
                if info.is_directory
            ]

        return self._read_retrying.run(load, description=f"List versions of {prefix}")

    def schedule_gc(self, package_name: str, version: str) -> bool:
        """
        Queue the garbage collection of a package version.

        Returns:
            True if queued, False if the same task was already pending
        """
        task = GCTask(package_name, version)
        with self._gc_lock:
            if task in self._gc_tasks:
                return False
            self._gc_tasks[task] = None
            return True

    @property
    def pending_gc_tasks(self) -> list[GCTask]:
        with self._gc_lock:
            return list(self._gc_tasks)

    def _pop_gc_task(self) -> GCTask | None:
        with self._gc_lock:
            if not self._gc_tasks:
                return None
            task = next(iter(self._gc_tasks))
            del self._gc_tasks[task]
            return task

    def run_pending_gc_task(self) -> bool:
        """
        Process one pending GC task, if any.

        Failures are logged; they never propagate.

        Returns:
            True if a task was processed
        """
        task = self._pop_gc_task()
        if task is None:
            return False
        try:
            # Serialized deletes keep GC overhead low next to serving traffic.
            self.remove_obsolete(task.package_name, task.package_version, concurrency=1)
        except Exception as e:
            logger.warning(
                f"Unable to GC files of {task.package_name} {task.package_version}.",
                exc_info=e,
            )
        return True

    def process_scheduled_gc_tasks(self, stop_event: threading.Event | None = None) -> None:
        """
        Run scheduled GC tasks one at a time.

        Polls the queue every ``gc_poll_interval`` seconds while it is
        empty. Returns only once ``stop_event`` is set.
        """
        stop_event = stop_event or threading.Event()
        while not stop_event.is_set():
            if not self.run_pending_gc_task():
                stop_event.wait(self._gc_poll_interval)

    def start_gc_worker(self) -> threading.Thread:
        """Start the GC loop on a daemon thread (at most one per manager)."""
        if self._gc_thread is not None and self._gc_thread.is_alive():
            return self._gc_thread
        self._gc_stop.clear()
        self._gc_thread = threading.Thread(
            target=self.process_scheduled_gc_tasks,
            args=(self._gc_stop,),
            name="DocVaultGC",
            daemon=True,
        )
        self._gc_thread.start()
        return self._gc_thread

    def stop_gc_worker(self, timeout: float | None = None) -> None:
        """Signal the GC loop to exit and wait for it."""
        self._gc_stop.set()
        if self._gc_thread is not None:
            self._gc_thread.join(timeout=timeout)
            self._gc_thread = None

    @property
    def gc_worker_running(self) -> bool:
        return self._gc_thread is not None and self._gc_thread.is_alive()

    def remove_obsolete(
        self,
        package_name: str,
        version: str,
        concurrency: int | None = None,
    ) -> int:
        """
        Remove incomplete uploads and old outputs of a package version.

        Deletes every generation (completed or abandoned) produced by a
        runtime version older than the GC threshold, and the leftover
        in-progress markers of generations that were committed.

        Returns:
            Number of objects deleted
        """
        completed = self.list_entries(package_name, version)
        in_progress = self.list_entries(package_name, version, in_progress=True)

        obsolete: dict[str, ArtifactEntry] = {}
        for entry in completed + in_progress:
            if self._runtime.should_gc(entry.runtime_version):
                obsolete.setdefault(entry.completed_object_name, entry)

        count = 0
        for entry in obsolete.values():
            count += self._delete_entry(entry, concurrency=concurrency)

        committed = {e.completed_object_name for e in completed}
        for entry in in_progress:
            if entry.completed_object_name in obsolete:
                continue
            if entry.completed_object_name in committed:
                if delete_object(self._store, entry.in_progress_object_name, retrying=self._retrying):
                    count += 1
        return count

    def _delete_entry(self, entry: ArtifactEntry, concurrency: int | None = None) -> int:
        count = self._delete_all_with_prefix(entry.content_prefix, concurrency=concurrency)
        for object_name in (entry.completed_object_name, entry.in_progress_object_name):
            if delete_object(self._store, object_name, retrying=self._retrying):
                count += 1
        return count

    def _delete_all_with_prefix(self, prefix: str, concurrency: int | None = None) -> int:
        started = time.monotonic()
        count = delete_folder_recursively(
            self._store,
            prefix,
            concurrency=concurrency or self._delete_concurrency,
            retrying=self._retrying,
        )
        logger.info(f"{prefix}: {count} files deleted in {time.monotonic() - started:.2f}s.")
        return count

    # ------------------------------------------------------------------
    # SDK snapshots
    # ------------------------------------------------------------------

    def has_valid_sdk_snapshot(self) -> bool:
        """Whether the SDK snapshot of the current runtime version exists."""
        return self._sdk_snapshots.has_current()

    def upload_sdk_snapshot(self, path: Path) -> bool:
        """Upload a JSON file as the SDK snapshot of the current runtime version."""
        try:
            data = json.loads(path.read_text())
        except json.JSONDecodeError as e:
            raise SnapshotError(f"Invalid JSON in {path}: {e}") from e
        if not isinstance(data, dict):
            raise SnapshotError(f"Snapshot data must be a JSON object: {path}")
        return self._sdk_snapshots.upload(data)

    def read_sdk_snapshot(self, version: str | None = None) -> dict[str, Any]:
        """Read the SDK snapshot (default: current runtime version)."""
        return self._sdk_snapshots.read(version)

    def schedule_old_snapshot_gc(self) -> threading.Timer:
        """Schedule the removal of old SDK snapshots."""
        return self._sdk_snapshots.schedule_background_prune(
            min_age=self._snapshot_gc_min_age,
            max_delay_minutes=self._snapshot_gc_max_delay_minutes,
        )

    # ------------------------------------------------------------------
    # Cache helpers
    # ------------------------------------------------------------------

    def _purge_entry_caches(self, package_name: str, version: str) -> None:
        self._cache_purge(cache_keys.entry_key(package_name, version))
        self._cache_purge(cache_keys.entry_key(package_name, LATEST))
        self._cache_purge(cache_keys.api_summary_key(package_name))

    def _cache_get(self, key: str) -> Any | None:
        try:
            return self._cache.get(key)
        except Exception as e:
            logger.warning(f"Cache read failed for {key}", exc_info=e)
            return None

    def _cache_set(self, key: str, value: Any, ttl: float) -> None:
        try:
            self._cache.set(key, value, ttl)
        except Exception as e:
            logger.warning(f"Cache write failed for {key}", exc_info=e)

    def _cache_purge(self, key: str) -> None:
        try:
            self._cache.purge(key)
        except Exception as e:
            logger.warning(f"Cache purge failed for {key}", exc_info=e)
