"""
DocVault Core Module.

Provides the error taxonomy and the runtime version policy.
"""

__all__ = [
    # Versions
    "ACCEPTED_RUNTIME_VERSIONS",
    "DEFAULT_RUNTIME_VERSIONS",
    "RuntimeVersions",
    "is_runtime_version",
    # Exceptions
    "DocVaultError",
    "ObjectStoreError",
    "ObjectNotFoundError",
    "TransientStoreError",
    "FatalStoreError",
    "EntryParseError",
    "PublishError",
    "SnapshotError",
    "ConfigurationError",
]

from docvault.core.exceptions import (
    ConfigurationError,
    DocVaultError,
    EntryParseError,
    FatalStoreError,
    ObjectNotFoundError,
    ObjectStoreError,
    PublishError,
    SnapshotError,
    TransientStoreError,
)
from docvault.core.versions import (
    ACCEPTED_RUNTIME_VERSIONS,
    DEFAULT_RUNTIME_VERSIONS,
    RuntimeVersions,
    is_runtime_version,
)
