"""
DocVault Artifacts Module.

Entry models, object naming, serving entry selection, and the lifecycle
manager that publishes, resolves and garbage-collects documentation.
"""

from docvault.artifacts.paths import (
    COMPLETED_SUFFIX,
    IN_PROGRESS_SUFFIX,
    SHARED_ASSETS_DIR,
    SHARED_ASSETS_PREFIX,
)
from docvault.artifacts.cache import LATEST, Cache, MemoryCache
from docvault.artifacts.models import ArtifactEntry, FileInfo, PublishResult
from docvault.artifacts.lookup import (
    InMemoryVersionLookup,
    PackageVersionRecord,
    VersionLookup,
)
from docvault.artifacts.resolution import select_serving_entry, serving_order_key
from docvault.artifacts.lifecycle import ArtifactLifecycleManager, GCTask

__all__ = [
    # Naming
    "COMPLETED_SUFFIX",
    "IN_PROGRESS_SUFFIX",
    "SHARED_ASSETS_DIR",
    "SHARED_ASSETS_PREFIX",
    # Models
    "ArtifactEntry",
    "FileInfo",
    "PublishResult",
    # Collaborators
    "LATEST",
    "Cache",
    "MemoryCache",
    "InMemoryVersionLookup",
    "PackageVersionRecord",
    "VersionLookup",
    # Resolution
    "select_serving_entry",
    "serving_order_key",
    # Lifecycle
    "ArtifactLifecycleManager",
    "GCTask",
]
