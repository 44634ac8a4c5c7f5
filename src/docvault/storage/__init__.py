"""
DocVault Storage Module.

Object store interface and implementations, bounded-concurrency transfer
primitives, and versioned JSON snapshots.
"""

from .base import ObjectInfo, ObjectStore
from .local import LocalObjectStore
from .memory import MemoryObjectStore
from .snapshots import VersionedSnapshotStore
from .transfer import (
    BoundedTransferExecutor,
    RetryingOperation,
    TransferFailure,
    TransferResult,
    content_type,
    delete_folder_recursively,
    delete_object,
    is_transient_error,
    run_bounded,
    upload_bytes_with_retry,
    upload_with_retry,
)

__all__ = [
    # Interface
    "ObjectInfo",
    "ObjectStore",
    # Implementations
    "LocalObjectStore",
    "MemoryObjectStore",
    # Transfer
    "BoundedTransferExecutor",
    "RetryingOperation",
    "TransferFailure",
    "TransferResult",
    "content_type",
    "delete_folder_recursively",
    "delete_object",
    "is_transient_error",
    "run_bounded",
    "upload_bytes_with_retry",
    "upload_with_retry",
    # Snapshots
    "VersionedSnapshotStore",
]
