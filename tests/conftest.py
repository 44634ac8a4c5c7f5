"""Pytest configuration and fixtures."""

import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Callable, Generator

import pytest

from docvault.artifacts.cache import MemoryCache
from docvault.artifacts.lifecycle import ArtifactLifecycleManager
from docvault.artifacts.lookup import InMemoryVersionLookup
from docvault.core.versions import DEFAULT_RUNTIME_VERSIONS
from docvault.storage.base import ObjectInfo
from docvault.storage.memory import MemoryObjectStore
from docvault.storage.transfer import RetryingOperation


@dataclass
class _FailureRule:
    operation: str
    matches: Callable[[str], bool]
    error: Callable[[str], Exception]
    remaining: int | None


class FlakyStore(MemoryObjectStore):
    """In-memory store that fails selected calls on request."""

    def __init__(self) -> None:
        super().__init__()
        self.calls: list[tuple[str, str]] = []
        self._rules: list[_FailureRule] = []
        self._rules_lock = threading.Lock()

    def fail(
        self,
        operation: str,
        matches: Callable[[str], bool],
        error: Callable[[str], Exception],
        times: int | None = None,
    ) -> None:
        """Raise ``error(name)`` for matching calls, ``times`` times (None: always)."""
        self._rules.append(_FailureRule(operation, matches, error, times))

    def _check(self, operation: str, name: str) -> None:
        with self._rules_lock:
            self.calls.append((operation, name))
            for rule in self._rules:
                if rule.operation != operation or not rule.matches(name):
                    continue
                if rule.remaining is None:
                    raise rule.error(name)
                if rule.remaining > 0:
                    rule.remaining -= 1
                    raise rule.error(name)

    def count(self, operation: str, name: str) -> int:
        return sum(1 for call in self.calls if call == (operation, name))

    def list(self, prefix: str):
        self._check("list", prefix)
        return super().list(prefix)

    def stat(self, name: str) -> ObjectInfo:
        self._check("stat", name)
        return super().stat(name)

    def write(
        self,
        name: str,
        source: BinaryIO,
        *,
        length: int,
        content_type: str | None = None,
    ) -> ObjectInfo:
        self._check("write", name)
        return super().write(name, source, length=length, content_type=content_type)

    def delete(self, name: str) -> None:
        self._check("delete", name)
        super().delete(name)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory that is cleaned up after the test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def memory_store() -> MemoryObjectStore:
    """Provide an empty in-memory object store."""
    return MemoryObjectStore()


@pytest.fixture
def flaky_store() -> FlakyStore:
    """Provide an in-memory object store with fault injection."""
    return FlakyStore()


@pytest.fixture
def retrying() -> RetryingOperation:
    """Retry policy without sleeps between attempts."""
    return RetryingOperation(max_attempts=3, sleep_seconds=0)


@pytest.fixture
def cache() -> MemoryCache:
    """Provide an empty in-memory cache."""
    return MemoryCache()


@pytest.fixture
def version_lookup() -> InMemoryVersionLookup:
    """Provide an empty version lookup."""
    return InMemoryVersionLookup()


@pytest.fixture
def make_manager(
    cache: MemoryCache,
    version_lookup: InMemoryVersionLookup,
    retrying: RetryingOperation,
) -> Callable[..., ArtifactLifecycleManager]:
    """Factory for managers wired to the in-memory collaborators."""

    def factory(store, **kwargs) -> ArtifactLifecycleManager:
        kwargs.setdefault("runtime", DEFAULT_RUNTIME_VERSIONS)
        kwargs.setdefault("cache", cache)
        kwargs.setdefault("version_lookup", version_lookup)
        kwargs.setdefault("retrying", retrying)
        kwargs.setdefault("gc_poll_interval", 0.01)
        return ArtifactLifecycleManager(store, **kwargs)

    return factory


@pytest.fixture
def manager(
    memory_store: MemoryObjectStore,
    make_manager: Callable[..., ArtifactLifecycleManager],
) -> ArtifactLifecycleManager:
    """Provide a lifecycle manager over an in-memory store."""
    return make_manager(memory_store)


@pytest.fixture
def make_tree(temp_dir: Path) -> Callable[..., Path]:
    """Factory writing a documentation tree from a {relative_path: text} mapping."""
    counter = {"n": 0}

    def factory(files: dict[str, str]) -> Path:
        counter["n"] += 1
        root = temp_dir / f"tree-{counter['n']}"
        root.mkdir()
        for relative_path, text in files.items():
            path = root / relative_path
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text)
        return root

    return factory
