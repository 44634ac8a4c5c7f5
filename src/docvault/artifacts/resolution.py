"""
Serving entry selection.

Given every completed entry of a package version, pick the one to serve:
1. drop entries whose runtime version is not accepted
2. if any entry has content, drop the metadata-only ones
3. newest runtime version wins; within a runtime version, newest timestamp wins
"""

from typing import Iterable

from docvault.artifacts.models import ArtifactEntry
from docvault.core.versions import DEFAULT_RUNTIME_VERSIONS, RuntimeVersions


def serving_order_key(entry: ArtifactEntry) -> tuple[str, float]:
    """Sort key, larger is preferred."""
    return (entry.runtime_version, entry.timestamp.timestamp())


def select_serving_entry(
    entries: Iterable[ArtifactEntry],
    runtime: RuntimeVersions = DEFAULT_RUNTIME_VERSIONS,
) -> ArtifactEntry | None:
    """Return the entry to serve, or None when no candidate qualifies."""
    candidates = [e for e in entries if runtime.should_serve(e.runtime_version)]
    if any(e.has_content for e in candidates):
        candidates = [e for e in candidates if e.has_content]
    if not candidates:
        return None
    return max(candidates, key=serving_order_key)
