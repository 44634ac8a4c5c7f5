"""
Documentation endpoints.

Resolve the generation to serve for a package version and stream its
files. ``latest`` is accepted as a version.
"""

import logging
from contextlib import contextmanager
from email.utils import format_datetime
from typing import Iterator

from fastapi import APIRouter, Request, Response
from fastapi.responses import StreamingResponse

from docvault.api.schemas.exceptions import NotFoundError
from docvault.artifacts.lifecycle import ArtifactLifecycleManager
from docvault.artifacts.models import ArtifactEntry
from docvault.core.exceptions import ObjectStoreError
from docvault.storage.transfer import content_type

router = APIRouter()
logger = logging.getLogger(__name__)

# Store statuses that mean "no such object" rather than "store unavailable".
NOT_FOUND_STATUSES = frozenset({400, 404})


@contextmanager
def _not_found_on_missing(message: str) -> Iterator[None]:
    """Report missing objects and invalid object names as 404."""
    try:
        yield
    except ObjectStoreError as e:
        if e.status not in NOT_FOUND_STATUSES:
            raise
        logger.info(f"{message}: {e}")
        raise NotFoundError(message=message) from e


def _resolve(request: Request, package: str, version: str) -> ArtifactEntry:
    manager: ArtifactLifecycleManager = request.app.state.manager
    with _not_found_on_missing(f"No documentation for {package} {version}"):
        entry = manager.resolve_serving_entry(package, version)
    if entry is None:
        raise NotFoundError(
            message=f"No documentation for {package} {version}",
            detail=f"Accepted runtime versions: {', '.join(manager.runtime.accepted)}",
        )
    return entry


@router.get("/{package}/{version}", response_model=ArtifactEntry)
def get_serving_entry(request: Request, package: str, version: str) -> ArtifactEntry:
    """Return the entry that serves a package version."""
    return _resolve(request, package, version)


@router.get("/{package}/{version}/files/{path:path}")
def get_file(request: Request, package: str, version: str, path: str) -> Response:
    """
    Stream a file of the serving generation.

    Responds with ``304`` when ``If-None-Match`` matches the object's
    content hash.
    """
    manager: ArtifactLifecycleManager = request.app.state.manager
    entry = _resolve(request, package, version)

    with _not_found_on_missing(f"File not found: {path}"):
        file_info = manager.get_file_info(entry, path)
    if file_info is None:
        raise NotFoundError(message=f"File not found: {path}")

    headers: dict[str, str] = {}
    if file_info.etag:
        headers["ETag"] = f'"{file_info.etag}"'
    if file_info.last_modified:
        headers["Last-Modified"] = format_datetime(file_info.last_modified, usegmt=True)

    if file_info.etag and request.headers.get("if-none-match") == headers["ETag"]:
        return Response(status_code=304, headers=headers)

    # The object may be removed between the stat and the read.
    with _not_found_on_missing(f"File not found: {path}"):
        stream = manager.read_content(entry, path)

    def chunks():
        with stream:
            for chunk in iter(lambda: stream.read(64 * 1024), b""):
                yield chunk

    return StreamingResponse(chunks(), media_type=content_type(path), headers=headers)
