"""
Health check endpoints.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request

from docvault import __version__
from docvault.api.schemas.responses import HealthResponse
from docvault.artifacts.lifecycle import ArtifactLifecycleManager
from docvault.core.exceptions import ObjectStoreError

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("", response_model=HealthResponse)
@router.get("/", response_model=HealthResponse)
def health_check(request: Request) -> HealthResponse:
    """
    Report the status of the object store and the GC worker.

    The store check lists the SDK snapshot prefix; a failure marks the
    service unhealthy. A stopped GC worker only degrades it.
    """
    manager: ArtifactLifecycleManager = request.app.state.manager
    status = "healthy"
    components: dict[str, str] = {}

    try:
        next(iter(manager.store.list(manager.sdk_snapshots.prefix)), None)
        components["store"] = "healthy"
    except ObjectStoreError as e:
        components["store"] = f"unhealthy: {e}"
        status = "unhealthy"
        logger.warning(f"Store health check failed: {e}")

    if manager.gc_worker_running:
        components["gc_worker"] = f"running ({len(manager.pending_gc_tasks)} pending)"
    else:
        components["gc_worker"] = "stopped"
        if request.app.state.config.gc_worker_enabled and status == "healthy":
            status = "degraded"

    return HealthResponse(
        status=status,
        version=__version__,
        timestamp=datetime.now(timezone.utc).isoformat(),
        runtime_version=manager.runtime.current,
        components=components,
    )


@router.get("/live")
async def liveness() -> dict[str, str]:
    """Liveness check; always succeeds while the process is up."""
    return {
        "alive": "true",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
