"""Tests for the artifact lifecycle manager."""

import json
import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import BinaryIO, Callable
from unittest.mock import patch

import pytest

from docvault.artifacts.cache import MemoryCache, entry_key
from docvault.artifacts.lifecycle import ArtifactLifecycleManager, GCTask
from docvault.artifacts.lookup import InMemoryVersionLookup
from docvault.artifacts.models import ArtifactEntry
from docvault.config import DocVaultConfig
from docvault.core.exceptions import (
    ConfigurationError,
    FatalStoreError,
    ObjectNotFoundError,
    PublishError,
    SnapshotError,
    TransientStoreError,
)
from docvault.storage.base import ObjectInfo
from docvault.storage.local import LocalObjectStore
from docvault.storage.memory import MemoryObjectStore

from conftest import FlakyStore

T1 = datetime(2020, 5, 30, 12, 0, tzinfo=timezone.utc)
T2 = T1 + timedelta(hours=1)

DOC_FILES = {
    "index.html": "<h1>pkgA</h1>",
    "api/index.html": "<ul></ul>",
    "api/pkgA/Foo.html": "<p>Foo</p>",
}


def _entry(
    runtime_version: str = "2020.05.29",
    timestamp: datetime = T1,
    package_version: str = "1.0.0",
    has_content: bool = True,
    **kwargs,
) -> ArtifactEntry:
    return ArtifactEntry(
        package_name="pkgA",
        package_version=package_version,
        runtime_version=runtime_version,
        timestamp=timestamp,
        has_content=has_content,
        **kwargs,
    )


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def publish(
    manager: ArtifactLifecycleManager, make_tree: Callable[..., Path]
) -> Callable[..., ArtifactEntry]:
    """Publish an entry with the standard documentation tree."""

    def factory(entry: ArtifactEntry, files: dict[str, str] | None = None) -> ArtifactEntry:
        manager.publish(entry, make_tree(files if files is not None else DOC_FILES))
        return entry

    return factory


# =============================================================================
# Publish
# =============================================================================


class TestPublish:
    """Tests for the publish protocol."""

    def test_uploads_content_and_markers(
        self,
        manager: ArtifactLifecycleManager,
        memory_store: MemoryObjectStore,
        make_tree: Callable[..., Path],
    ) -> None:
        """A publish leaves the content and the completed marker only."""
        entry = _entry(uuid="u1")
        result = manager.publish(entry, make_tree(DOC_FILES))

        assert result.uploaded_count == 3
        assert result.skipped_count == 0
        assert result.entry == entry
        assert memory_store.names() == [
            "pkgA/1.0.0/2020.05.29/u1.completed.json",
            "pkgA/1.0.0/2020.05.29/u1/api/index.html",
            "pkgA/1.0.0/2020.05.29/u1/api/pkgA/Foo.html",
            "pkgA/1.0.0/2020.05.29/u1/index.html",
        ]
        marker = ArtifactEntry.from_bytes(memory_store.read_bytes(entry.completed_object_name))
        assert marker == entry

    def test_content_types(
        self,
        manager: ArtifactLifecycleManager,
        memory_store: MemoryObjectStore,
        make_tree: Callable[..., Path],
    ) -> None:
        """Uploaded objects carry content types guessed from their names."""
        entry = _entry(uuid="u1")
        manager.publish(entry, make_tree({"index.html": "x", "data.json": "{}"}))
        assert memory_store.stat(entry.object_name("index.html")).content_type == "text/html"
        assert memory_store.stat(entry.object_name("data.json")).content_type == "application/json"

    def test_missing_source_dir(self, manager: ArtifactLifecycleManager, temp_dir: Path) -> None:
        """Publishing a missing directory fails before touching the store."""
        with pytest.raises(PublishError, match="Source directory not found"):
            manager.publish(_entry(), temp_dir / "missing")
        assert len(manager.store.names()) == 0

    def test_fatal_upload_aborts(
        self,
        flaky_store: FlakyStore,
        make_manager: Callable[..., ArtifactLifecycleManager],
        make_tree: Callable[..., Path],
    ) -> None:
        """A fatal upload error aborts before the commit point."""
        manager = make_manager(flaky_store)
        flaky_store.fail("write", lambda n: n.endswith("Foo.html"), FatalStoreError)
        entry = _entry(uuid="u1")

        with pytest.raises(PublishError) as exc_info:
            manager.publish(entry, make_tree(DOC_FILES))

        assert isinstance(exc_info.value.__cause__, FatalStoreError)
        assert exc_info.value.object_name == entry.object_name("api/pkgA/Foo.html")
        assert flaky_store.count("write", entry.object_name("api/pkgA/Foo.html")) == 1
        assert not flaky_store.exists(entry.completed_object_name)
        assert flaky_store.exists(entry.in_progress_object_name)
        assert manager.resolve_serving_entry("pkgA", "1.0.0") is None

    def test_transient_upload_retried(
        self,
        flaky_store: FlakyStore,
        make_manager: Callable[..., ArtifactLifecycleManager],
        make_tree: Callable[..., Path],
    ) -> None:
        """Transient upload errors are retried and the publish completes."""
        manager = make_manager(flaky_store)
        flaky_store.fail("write", lambda n: n.endswith("index.html"), TransientStoreError, times=2)
        entry = _entry()

        manager.publish(entry, make_tree(DOC_FILES))

        assert flaky_store.exists(entry.completed_object_name)
        assert manager.resolve_serving_entry("pkgA", "1.0.0") == entry

    def test_transient_upload_exhausted(
        self,
        flaky_store: FlakyStore,
        make_manager: Callable[..., ArtifactLifecycleManager],
        make_tree: Callable[..., Path],
    ) -> None:
        """A transient error that outlasts the retry cap fails the publish."""
        manager = make_manager(flaky_store)
        flaky_store.fail("write", lambda n: n.endswith("/index.html"), TransientStoreError)
        entry = _entry(uuid="u1")

        with pytest.raises(PublishError) as exc_info:
            manager.publish(entry, make_tree({"index.html": "x"}))

        assert isinstance(exc_info.value.__cause__, TransientStoreError)
        assert flaky_store.count("write", entry.object_name("index.html")) == 3
        assert not flaky_store.exists(entry.completed_object_name)

    def test_marker_write_failure(
        self,
        flaky_store: FlakyStore,
        make_manager: Callable[..., ArtifactLifecycleManager],
        make_tree: Callable[..., Path],
    ) -> None:
        """Without an in-progress marker nothing is uploaded."""
        manager = make_manager(flaky_store)
        flaky_store.fail("write", lambda n: n.endswith(".in-progress.json"), FatalStoreError)

        with pytest.raises(PublishError, match="Unable to write marker"):
            manager.publish(_entry(), make_tree(DOC_FILES))
        assert len(flaky_store) == 0

    def test_in_progress_delete_failure_tolerated(
        self,
        flaky_store: FlakyStore,
        make_manager: Callable[..., ArtifactLifecycleManager],
        make_tree: Callable[..., Path],
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """Failing to remove the in-progress marker does not fail the publish."""
        manager = make_manager(flaky_store)
        flaky_store.fail("delete", lambda n: n.endswith(".in-progress.json"), FatalStoreError)
        entry = _entry()

        with caplog.at_level(logging.WARNING):
            manager.publish(entry, make_tree(DOC_FILES))

        assert "Unable to delete in-progress marker" in caplog.text
        assert flaky_store.exists(entry.in_progress_object_name)
        assert manager.resolve_serving_entry("pkgA", "1.0.0") == entry

    def test_republish_is_idempotent(
        self,
        manager: ArtifactLifecycleManager,
        memory_store: MemoryObjectStore,
        make_tree: Callable[..., Path],
    ) -> None:
        """Publishing the same entry twice produces the same objects."""
        entry = _entry(uuid="u1")
        tree = make_tree(DOC_FILES)
        manager.publish(entry, tree)
        names = memory_store.names()
        manager.publish(entry, tree)
        assert memory_store.names() == names

    def test_shared_assets_uploaded_once(
        self,
        manager: ArtifactLifecycleManager,
        memory_store: MemoryObjectStore,
        make_tree: Callable[..., Path],
    ) -> None:
        """Shared assets already in the store are not uploaded again."""
        files = {"index.html": "x", "static-assets/css/main.css": "body {}"}
        first = manager.publish(_entry(generator_version="0.30.4"), make_tree(files))
        second = manager.publish(
            _entry(timestamp=T2, generator_version="0.30.4"), make_tree(files)
        )

        assert first.uploaded_count == 2 and first.skipped_count == 0
        assert second.uploaded_count == 1 and second.skipped_count == 1
        assert memory_store.read_bytes("shared-assets/0.30.4/static-assets/css/main.css") == b"body {}"

    def test_not_servable_before_commit(
        self,
        make_manager: Callable[..., ArtifactLifecycleManager],
        make_tree: Callable[..., Path],
    ) -> None:
        """A resolution before the completed marker is written never sees the entry."""
        observed: list[ArtifactEntry | None] = []

        class ObservingStore(MemoryObjectStore):
            def write(self, name: str, source: BinaryIO, *, length: int, content_type=None) -> ObjectInfo:
                if name.endswith(".completed.json"):
                    observed.append(manager.resolve_serving_entry("pkgA", "1.0.0"))
                return super().write(name, source, length=length, content_type=content_type)

        manager = make_manager(ObservingStore())
        entry = _entry()
        manager.publish(entry, make_tree(DOC_FILES))

        assert observed == [None]
        assert manager.resolve_serving_entry("pkgA", "1.0.0") == entry

    def test_concurrent_publishes(
        self,
        manager: ArtifactLifecycleManager,
        make_tree: Callable[..., Path],
    ) -> None:
        """Concurrent publishes of one version never collide."""
        entries = [_entry(timestamp=T1 + timedelta(minutes=i)) for i in range(4)]
        trees = [make_tree(DOC_FILES) for _ in entries]
        threads = [
            threading.Thread(target=manager.publish, args=(entry, tree))
            for entry, tree in zip(entries, trees)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(manager.list_entries("pkgA", "1.0.0")) == 4
        assert manager.resolve_serving_entry("pkgA", "1.0.0") == entries[-1]


class TestUpdateEntryStatus:
    """Tests for update_entry_status."""

    def test_rewrites_marker_only(
        self,
        manager: ArtifactLifecycleManager,
        memory_store: MemoryObjectStore,
        publish: Callable[..., ArtifactEntry],
    ) -> None:
        """Flags are copied onto the old entry; content is untouched."""
        old = publish(_entry(uuid="u1"))
        content_before = {
            name: memory_store.read_bytes(name) for name in memory_store.names() if "/u1/" in name
        }
        current = _entry(timestamp=T2, is_latest=True, is_obsolete=True)

        updated = manager.update_entry_status(old, current)

        assert updated.uuid == "u1"
        assert updated.timestamp == old.timestamp
        assert updated.is_latest and updated.is_obsolete
        stored = ArtifactEntry.from_bytes(memory_store.read_bytes(old.completed_object_name))
        assert stored == updated
        for name, data in content_before.items():
            assert memory_store.read_bytes(name) == data

    def test_purges_cached_entry(
        self, manager: ArtifactLifecycleManager, publish: Callable[..., ArtifactEntry]
    ) -> None:
        """Resolution reflects the new flags right away."""
        old = publish(_entry())
        assert manager.resolve_serving_entry("pkgA", "1.0.0") == old
        manager.update_entry_status(old, _entry(is_obsolete=True))
        assert manager.resolve_serving_entry("pkgA", "1.0.0").is_obsolete


# =============================================================================
# Resolution
# =============================================================================


class TestResolveServingEntry:
    """Tests for serving entry resolution."""

    def test_newer_generation_wins(
        self, manager: ArtifactLifecycleManager, publish: Callable[..., ArtifactEntry]
    ) -> None:
        """Of two generations of one runtime version, the newer is served."""
        publish(_entry(timestamp=T1))
        second = publish(_entry(timestamp=T2))
        assert manager.resolve_serving_entry("pkgA", "1.0.0") == second

    def test_not_found(self, manager: ArtifactLifecycleManager) -> None:
        """Unknown versions resolve to None."""
        assert manager.resolve_serving_entry("pkgA", "9.9.9") is None

    def test_unaccepted_runtime_version_ignored(
        self, manager: ArtifactLifecycleManager, publish: Callable[..., ArtifactEntry]
    ) -> None:
        """Entries from unknown or obsolete runtime versions are never served."""
        publish(_entry(runtime_version="2020.06.15", timestamp=T2))
        publish(_entry(runtime_version="2020.04.01", timestamp=T2))
        assert manager.resolve_serving_entry("pkgA", "1.0.0") is None

        fallback = publish(_entry(runtime_version="2020.05.08"))
        assert manager.resolve_serving_entry("pkgA", "1.0.0") == fallback

    def test_content_preferred(
        self, manager: ArtifactLifecycleManager, publish: Callable[..., ArtifactEntry]
    ) -> None:
        """A content-bearing fallback beats a metadata-only current entry."""
        with_content = publish(_entry(runtime_version="2020.05.26"))
        publish(_entry(has_content=False, timestamp=T2), files={})
        assert manager.resolve_serving_entry("pkgA", "1.0.0") == with_content

    def test_current_runtime_entry_cached(
        self,
        manager: ArtifactLifecycleManager,
        cache: MemoryCache,
        publish: Callable[..., ArtifactEntry],
    ) -> None:
        """Entries of the current runtime version are cached."""
        entry = publish(_entry())
        assert manager.resolve_serving_entry("pkgA", "1.0.0") == entry
        assert cache.get(entry_key("pkgA", "1.0.0")) == entry

    def test_cache_hit_skips_listing(
        self,
        flaky_store: FlakyStore,
        make_manager: Callable[..., ArtifactLifecycleManager],
        make_tree: Callable[..., Path],
    ) -> None:
        """A cached entry is returned without listing the store."""
        manager = make_manager(flaky_store)
        manager.publish(_entry(), make_tree(DOC_FILES))
        manager.resolve_serving_entry("pkgA", "1.0.0")
        listings = flaky_store.count("list", "pkgA/1.0.0/")

        manager.resolve_serving_entry("pkgA", "1.0.0")

        assert flaky_store.count("list", "pkgA/1.0.0/") == listings

    def test_fallback_runtime_entry_not_cached(
        self,
        manager: ArtifactLifecycleManager,
        cache: MemoryCache,
        publish: Callable[..., ArtifactEntry],
    ) -> None:
        """Entries of older accepted runtime versions are served but not cached."""
        fallback = publish(_entry(runtime_version="2020.05.26"))
        assert manager.resolve_serving_entry("pkgA", "1.0.0") == fallback
        assert cache.get(entry_key("pkgA", "1.0.0")) is None

        current = publish(_entry(timestamp=T2))
        assert manager.resolve_serving_entry("pkgA", "1.0.0") == current

    def test_publish_purges_cache(
        self,
        manager: ArtifactLifecycleManager,
        cache: MemoryCache,
        publish: Callable[..., ArtifactEntry],
    ) -> None:
        """A new generation replaces the cached one."""
        publish(_entry(timestamp=T1))
        manager.resolve_serving_entry("pkgA", "1.0.0")
        cache.set("docvault/api-summary/pkgA", "summary")

        newer = publish(_entry(timestamp=T2))

        assert cache.get(entry_key("pkgA", "1.0.0")) is None
        assert cache.get("docvault/api-summary/pkgA") is None
        assert manager.resolve_serving_entry("pkgA", "1.0.0") == newer

    def test_malformed_marker_skipped(
        self,
        manager: ArtifactLifecycleManager,
        memory_store: MemoryObjectStore,
        publish: Callable[..., ArtifactEntry],
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """Unreadable markers are logged and skipped."""
        entry = publish(_entry())
        memory_store.write_bytes("pkgA/1.0.0/2020.05.29/broken.completed.json", b"{not json")

        with caplog.at_level(logging.WARNING):
            assert manager.resolve_serving_entry("pkgA", "1.0.0") == entry
        assert "Unable to read entry" in caplog.text

    def test_listing_failure_propagates(
        self,
        flaky_store: FlakyStore,
        make_manager: Callable[..., ArtifactLifecycleManager],
    ) -> None:
        """Remote errors while listing are hard failures."""
        manager = make_manager(flaky_store)
        flaky_store.fail("list", lambda n: n == "pkgA/1.0.0/", FatalStoreError)
        with pytest.raises(FatalStoreError):
            manager.resolve_serving_entry("pkgA", "1.0.0")

    def test_transient_listing_failure_retried(
        self,
        flaky_store: FlakyStore,
        make_manager: Callable[..., ArtifactLifecycleManager],
        make_tree: Callable[..., Path],
    ) -> None:
        """A single transient listing failure is retried."""
        manager = make_manager(flaky_store)
        entry = _entry()
        manager.publish(entry, make_tree(DOC_FILES))
        flaky_store.fail("list", lambda n: n == "pkgA/1.0.0/", TransientStoreError, times=1)
        assert manager.resolve_serving_entry("pkgA", "1.0.0") == entry


class TestResolveLatest:
    """Tests for resolving the ``latest`` version."""

    @pytest.fixture
    def lookup(self, version_lookup: InMemoryVersionLookup) -> InMemoryVersionLookup:
        """pkgA with 1.3.0 latest, then 1.2.0, 1.1.0, 1.0.0 and a pre-release."""
        base = datetime(2020, 1, 1, tzinfo=timezone.utc)
        for days, version in enumerate(["1.0.0", "1.1.0", "1.2.0", "1.3.0"]):
            version_lookup.add("pkgA", version, base + timedelta(days=days))
        version_lookup.add("pkgA", "2.0.0-dev", base + timedelta(days=10))
        return version_lookup

    def test_latest_version(
        self,
        manager: ArtifactLifecycleManager,
        lookup: InMemoryVersionLookup,
        publish: Callable[..., ArtifactEntry],
    ) -> None:
        """latest resolves through the latest stable version."""
        publish(_entry(package_version="1.2.0"))
        latest = publish(_entry(package_version="1.3.0"))
        assert manager.resolve_serving_entry("pkgA", "latest") == latest

    def test_falls_back_to_recent_versions(
        self,
        manager: ArtifactLifecycleManager,
        lookup: InMemoryVersionLookup,
        publish: Callable[..., ArtifactEntry],
    ) -> None:
        """Without an entry for the latest version, the next recent ones are tried."""
        fallback = publish(_entry(package_version="1.1.0"))
        assert manager.resolve_serving_entry("pkgA", "latest") == fallback

    def test_fallback_depth_is_two(
        self,
        manager: ArtifactLifecycleManager,
        lookup: InMemoryVersionLookup,
        publish: Callable[..., ArtifactEntry],
    ) -> None:
        """Versions beyond the two fallbacks are not tried."""
        publish(_entry(package_version="1.0.0"))
        assert manager.resolve_serving_entry("pkgA", "latest") is None

    def test_latest_cached_under_sentinel(
        self,
        manager: ArtifactLifecycleManager,
        lookup: InMemoryVersionLookup,
        cache: MemoryCache,
        publish: Callable[..., ArtifactEntry],
    ) -> None:
        """The resolved latest entry is cached under the latest key."""
        latest = publish(_entry(package_version="1.3.0"))
        manager.resolve_serving_entry("pkgA", "latest")
        assert cache.get(entry_key("pkgA", "latest")) == latest

    def test_unknown_package(self, manager: ArtifactLifecycleManager) -> None:
        """Packages without versions resolve to None."""
        assert manager.resolve_serving_entry("unknown", "latest") is None

    def test_requires_version_lookup(
        self,
        memory_store: MemoryObjectStore,
        make_manager: Callable[..., ArtifactLifecycleManager],
    ) -> None:
        """latest cannot be resolved without a version lookup."""
        manager = make_manager(memory_store, version_lookup=None)
        with pytest.raises(ConfigurationError):
            manager.resolve_serving_entry("pkgA", "latest")

    def test_latest_versions_passthrough(
        self, manager: ArtifactLifecycleManager, lookup: InMemoryVersionLookup
    ) -> None:
        """Version lookups are delegated to the collaborator."""
        assert manager.get_latest_version("pkgA") == "1.3.0"
        assert manager.get_latest_versions("pkgA", limit=3) == ["1.3.0", "1.2.0", "1.1.0"]
        assert manager.get_latest_versions("pkgA")[-1] == "2.0.0-dev"


# =============================================================================
# Entry Listing and Content
# =============================================================================


class TestEntriesAndContent:
    """Tests for entry listing and content access."""

    def test_list_entries(
        self, manager: ArtifactLifecycleManager, publish: Callable[..., ArtifactEntry]
    ) -> None:
        """Completed entries of every runtime version are listed."""
        a = publish(_entry(runtime_version="2020.05.26"))
        b = publish(_entry(runtime_version="2020.06.15"))
        found = manager.list_entries("pkgA", "1.0.0")
        assert sorted(e.uuid for e in found) == sorted([a.uuid, b.uuid])
        assert manager.list_entries("pkgA", "1.0.0", in_progress=True) == []

    def test_get_latest_entry(
        self, manager: ArtifactLifecycleManager, publish: Callable[..., ArtifactEntry]
    ) -> None:
        """The newest entry by timestamp, of any runtime version."""
        publish(_entry(timestamp=T1))
        newest = publish(_entry(runtime_version="2020.06.15", timestamp=T2))
        assert manager.get_latest_entry("pkgA", "1.0.0") == newest
        assert manager.get_latest_entry("pkgA", "2.0.0") is None

    def test_get_file_info(
        self,
        manager: ArtifactLifecycleManager,
        cache: MemoryCache,
        publish: Callable[..., ArtifactEntry],
    ) -> None:
        """File headers are read from the store and cached."""
        entry = publish(_entry())
        info = manager.get_file_info(entry, "index.html")
        assert info is not None
        assert info.etag
        assert info.last_modified is not None
        assert cache.get(f"docvault/file-info/{entry.object_name('index.html')}") == info
        assert manager.get_file_info(entry, "missing.html") is None

    def test_read_content(
        self, manager: ArtifactLifecycleManager, publish: Callable[..., ArtifactEntry]
    ) -> None:
        """File content is readable as bytes and text."""
        entry = publish(_entry())
        with manager.read_content(entry, "api/pkgA/Foo.html") as stream:
            assert stream.read() == b"<p>Foo</p>"
        assert manager.get_text_content(entry, "index.html") == "<h1>pkgA</h1>"
        with pytest.raises(ObjectNotFoundError):
            manager.read_content(entry, "missing.html")


# =============================================================================
# Deletion and Garbage Collection
# =============================================================================


class TestRemoveAll:
    """Tests for remove_all."""

    def test_remove_version(
        self,
        manager: ArtifactLifecycleManager,
        memory_store: MemoryObjectStore,
        publish: Callable[..., ArtifactEntry],
    ) -> None:
        """Removing a version keeps the other versions."""
        publish(_entry(package_version="1.0.0"))
        publish(_entry(package_version="1.1.0"))
        count = manager.remove_all("pkgA", "1.0.0")
        assert count == 4
        assert all(name.startswith("pkgA/1.1.0/") for name in memory_store.names())
        assert manager.resolve_serving_entry("pkgA", "1.0.0") is None

    def test_remove_package(
        self,
        manager: ArtifactLifecycleManager,
        memory_store: MemoryObjectStore,
        publish: Callable[..., ArtifactEntry],
    ) -> None:
        """Removing a package removes every version."""
        publish(_entry(package_version="1.0.0"))
        publish(_entry(package_version="1.1.0"))
        memory_store.write_bytes("pkgB/1.0.0/x", b"x")
        assert manager.remove_all("pkgA") == 8
        assert memory_store.names() == ["pkgB/1.0.0/x"]

    def test_remove_package_purges_entry_caches(
        self,
        manager: ArtifactLifecycleManager,
        cache: MemoryCache,
        publish: Callable[..., ArtifactEntry],
    ) -> None:
        """Cached serving entries of every removed version are dropped."""
        publish(_entry(package_version="1.0.0"))
        publish(_entry(package_version="1.1.0"))
        for version in ("1.0.0", "1.1.0"):
            assert manager.resolve_serving_entry("pkgA", version) is not None
            assert cache.get(entry_key("pkgA", version)) is not None
        cache.set("docvault/api-summary/pkgA", "summary")

        manager.remove_all("pkgA")

        assert cache.get(entry_key("pkgA", "1.0.0")) is None
        assert cache.get(entry_key("pkgA", "1.1.0")) is None
        assert cache.get("docvault/api-summary/pkgA") is None
        assert manager.resolve_serving_entry("pkgA", "1.1.0") is None

    def test_remove_missing_package(
        self, manager: ArtifactLifecycleManager, cache: MemoryCache
    ) -> None:
        """Removing an unknown package still drops its shared cache keys."""
        cache.set(entry_key("pkgA", "latest"), "stale")
        assert manager.remove_all("pkgA") == 0
        assert cache.get(entry_key("pkgA", "latest")) is None


class TestRemoveObsolete:
    """Tests for the GC deletion routine."""

    def test_removes_generations_before_threshold(
        self,
        manager: ArtifactLifecycleManager,
        memory_store: MemoryObjectStore,
        publish: Callable[..., ArtifactEntry],
    ) -> None:
        """Generations older than the oldest accepted version are deleted."""
        obsolete = publish(_entry(runtime_version="2020.05.02"))
        oldest_accepted = publish(_entry(runtime_version="2020.05.03"))
        current = publish(_entry(runtime_version="2020.05.29"))

        count = manager.remove_obsolete("pkgA", "1.0.0")

        assert count == 4
        names = memory_store.names()
        assert not any(name.startswith(obsolete.entry_prefix) for name in names)
        assert oldest_accepted.completed_object_name in names
        assert current.completed_object_name in names
        assert len(names) == 8

    def test_removes_abandoned_publish(
        self,
        flaky_store: FlakyStore,
        make_manager: Callable[..., ArtifactLifecycleManager],
        make_tree: Callable[..., Path],
    ) -> None:
        """Half-published generations of obsolete runtime versions are reclaimed."""
        manager = make_manager(flaky_store)
        abandoned = _entry(runtime_version="2020.04.01")
        flaky_store.fail("write", lambda n: n.endswith("Foo.html"), FatalStoreError, times=1)
        with pytest.raises(PublishError):
            manager.publish(abandoned, make_tree(DOC_FILES))
        assert flaky_store.exists(abandoned.in_progress_object_name)

        count = manager.remove_obsolete("pkgA", "1.0.0")

        assert count == 3
        assert len(flaky_store) == 0

    def test_removes_leftover_in_progress_marker(
        self,
        manager: ArtifactLifecycleManager,
        memory_store: MemoryObjectStore,
        publish: Callable[..., ArtifactEntry],
    ) -> None:
        """In-progress markers of committed generations are removed, content kept."""
        entry = publish(_entry())
        memory_store.write_bytes(entry.in_progress_object_name, entry.as_bytes())

        assert manager.remove_obsolete("pkgA", "1.0.0") == 1
        assert not memory_store.exists(entry.in_progress_object_name)
        assert memory_store.exists(entry.completed_object_name)
        assert manager.resolve_serving_entry("pkgA", "1.0.0") == entry

    def test_keeps_in_progress_publish_of_current_version(
        self,
        manager: ArtifactLifecycleManager,
        memory_store: MemoryObjectStore,
    ) -> None:
        """An ongoing publish of an accepted runtime version is left alone."""
        entry = _entry()
        memory_store.write_bytes(entry.in_progress_object_name, entry.as_bytes())
        memory_store.write_bytes(entry.object_name("index.html"), b"x")

        assert manager.remove_obsolete("pkgA", "1.0.0") == 0
        assert len(memory_store) == 2

    def test_nothing_to_remove(self, manager: ArtifactLifecycleManager) -> None:
        """An unknown version removes nothing."""
        assert manager.remove_obsolete("pkgA", "0.0.1") == 0


class TestGCQueue:
    """Tests for the GC work queue and worker."""

    def test_schedule_deduplicates(self, manager: ArtifactLifecycleManager) -> None:
        """Scheduling a pending task again is a no-op."""
        assert manager.schedule_gc("pkgA", "1.0.0") is True
        assert manager.schedule_gc("pkgA", "1.0.0") is False
        assert manager.schedule_gc("pkgA", "1.1.0") is True
        assert manager.pending_gc_tasks == [GCTask("pkgA", "1.0.0"), GCTask("pkgA", "1.1.0")]

    def test_single_deletion_pass(self, manager: ArtifactLifecycleManager) -> None:
        """A task scheduled twice runs once, with serialized deletes."""
        manager.schedule_gc("pkgA", "1.0.0")
        manager.schedule_gc("pkgA", "1.0.0")

        with patch.object(manager, "remove_obsolete", return_value=0) as remove_obsolete:
            assert manager.run_pending_gc_task() is True
            assert manager.run_pending_gc_task() is False

        remove_obsolete.assert_called_once_with("pkgA", "1.0.0", concurrency=1)
        assert manager.pending_gc_tasks == []

    def test_failure_swallowed(
        self,
        flaky_store: FlakyStore,
        make_manager: Callable[..., ArtifactLifecycleManager],
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """GC failures are logged and the next task still runs."""
        manager = make_manager(flaky_store)
        flaky_store.fail("list", lambda n: n == "pkgA/1.0.0/", FatalStoreError)
        manager.schedule_gc("pkgA", "1.0.0")
        manager.schedule_gc("pkgA", "1.1.0")

        with caplog.at_level(logging.WARNING):
            assert manager.run_pending_gc_task() is True
            assert manager.run_pending_gc_task() is True

        assert "Unable to GC files of pkgA 1.0.0" in caplog.text
        assert manager.pending_gc_tasks == []

    def test_process_loop_stops_on_event(self, manager: ArtifactLifecycleManager) -> None:
        """The loop returns once its stop event is set."""
        stop = threading.Event()
        stop.set()
        manager.schedule_gc("pkgA", "1.0.0")
        manager.process_scheduled_gc_tasks(stop)
        assert manager.pending_gc_tasks == [GCTask("pkgA", "1.0.0")]

    def test_worker_drains_queue(
        self,
        manager: ArtifactLifecycleManager,
        memory_store: MemoryObjectStore,
        publish: Callable[..., ArtifactEntry],
    ) -> None:
        """The background worker processes scheduled tasks."""
        obsolete = publish(_entry(runtime_version="2020.05.02"))
        thread = manager.start_gc_worker()
        try:
            assert thread.daemon
            assert manager.start_gc_worker() is thread
            assert manager.gc_worker_running

            manager.schedule_gc("pkgA", "1.0.0")
            deadline = time.monotonic() + 5
            while memory_store.exists(obsolete.completed_object_name) and time.monotonic() < deadline:
                time.sleep(0.01)
        finally:
            manager.stop_gc_worker(timeout=5)

        assert not memory_store.exists(obsolete.completed_object_name)
        assert not manager.gc_worker_running


# =============================================================================
# SDK Snapshots
# =============================================================================


class TestSdkSnapshots:
    """Tests for the SDK snapshot passthroughs."""

    def test_upload_and_read(self, manager: ArtifactLifecycleManager, temp_dir: Path) -> None:
        """A JSON file becomes the current snapshot."""
        path = temp_dir / "sdk.json"
        path.write_text(json.dumps({"libraries": ["dart:async"]}))

        assert not manager.has_valid_sdk_snapshot()
        assert manager.upload_sdk_snapshot(path)
        assert manager.has_valid_sdk_snapshot()
        assert manager.read_sdk_snapshot() == {"libraries": ["dart:async"]}
        assert manager.store.exists("sdk-snapshots/2020.05.29.json.gz")

    @pytest.mark.parametrize("text", ["{broken", "[1, 2]"])
    def test_invalid_file(self, manager: ArtifactLifecycleManager, temp_dir: Path, text: str) -> None:
        """Only JSON objects are accepted."""
        path = temp_dir / "sdk.json"
        path.write_text(text)
        with pytest.raises(SnapshotError):
            manager.upload_sdk_snapshot(path)

    def test_schedule_old_snapshot_gc(
        self,
        memory_store: MemoryObjectStore,
        make_manager: Callable[..., ArtifactLifecycleManager],
    ) -> None:
        """Snapshot GC runs on a daemon timer with the configured delay bound."""
        manager = make_manager(memory_store, snapshot_gc_max_delay_minutes=0)
        timer = manager.schedule_old_snapshot_gc()
        timer.join(timeout=5)
        assert timer.daemon
        assert not timer.is_alive()


# =============================================================================
# Construction
# =============================================================================


class TestFromConfig:
    """Tests for building a manager from configuration."""

    def test_defaults_to_local_store(self, temp_dir: Path) -> None:
        """Without a store, a local store under store_root is used."""
        versions = temp_dir / "versions.yaml"
        versions.write_text(
            "packages:\n  pkgA:\n    versions:\n"
            "      - version: 1.0.0\n        created: 2020-05-01T00:00:00Z\n"
        )
        config = DocVaultConfig(
            store_root=temp_dir / "store",
            accepted_runtime_versions=("2021.01.01", "2020.12.01"),
            retry_sleep_seconds=0,
            versions_file=versions,
            snapshot_prefix="snapshots/",
        )

        manager = ArtifactLifecycleManager.from_config(config)

        assert isinstance(manager.store, LocalObjectStore)
        assert manager.store.root == (temp_dir / "store").absolute()
        assert manager.runtime.current == "2021.01.01"
        assert manager.get_latest_version("pkgA") == "1.0.0"
        assert manager.sdk_snapshots.object_name() == "snapshots/2021.01.01.json.gz"

    def test_publish_on_local_store(self, temp_dir: Path, make_tree: Callable[..., Path]) -> None:
        """The full cycle works against the filesystem store."""
        config = DocVaultConfig(store_root=temp_dir / "store", retry_sleep_seconds=0)
        manager = ArtifactLifecycleManager.from_config(config, cache=MemoryCache())
        obsolete = _entry(runtime_version="2020.04.01")
        current = _entry(timestamp=T2)
        manager.publish(obsolete, make_tree(DOC_FILES))
        manager.publish(current, make_tree(DOC_FILES))

        assert manager.resolve_serving_entry("pkgA", "1.0.0") == current
        assert manager.remove_obsolete("pkgA", "1.0.0") == 4
        assert not (temp_dir / "store" / "pkgA" / "1.0.0" / "2020.04.01").exists()
        assert manager.get_text_content(current, "api/pkgA/Foo.html") == "<p>Foo</p>"
