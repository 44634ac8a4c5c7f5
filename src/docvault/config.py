"""
DocVault configuration.

Settings are read from ``DV_*`` environment variables. Numeric values that
fail to parse fall back to their defaults; an invalid runtime version list
is a hard configuration error.
"""

import logging
import math
import os
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field

from docvault.core.versions import ACCEPTED_RUNTIME_VERSIONS, RuntimeVersions

logger = logging.getLogger(__name__)


class DocVaultConfig(BaseModel):
    """Configuration for the artifact lifecycle manager and its surfaces."""

    store_root: Path = Field(
        default=Path("var/docvault"), description="Root of the local object store"
    )
    accepted_runtime_versions: tuple[str, ...] = Field(
        default=ACCEPTED_RUNTIME_VERSIONS,
        description="Accepted runtime versions, newest (current) first",
    )
    upload_concurrency: int = Field(default=8, ge=1)
    delete_concurrency: int = Field(default=8, ge=1)
    retry_max_attempts: int = Field(default=3, ge=1)
    retry_sleep_seconds: float = Field(default=10.0, ge=0)
    gc_poll_interval_seconds: float = Field(default=30.0, gt=0)
    entry_cache_ttl_seconds: float = Field(default=24 * 60 * 60, gt=0)
    snapshot_prefix: str = Field(default="sdk-snapshots/")
    snapshot_gc_min_age_days: int = Field(default=182, ge=0)
    snapshot_gc_max_delay_minutes: int = Field(default=360, ge=0)
    versions_file: Path | None = Field(
        default=None, description="YAML file listing known package versions"
    )
    gc_worker_enabled: bool = True

    @property
    def runtime_versions(self) -> RuntimeVersions:
        """Runtime version policy built from the accepted list."""
        return RuntimeVersions(tuple(self.accepted_runtime_versions))


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        parsed = int(value)
    except ValueError:
        logger.warning(f"Invalid {name}: {value}, using default {default}")
        return default
    if parsed < minimum:
        logger.warning(f"{name} must be at least {minimum}, got {value}, using default {default}")
        return default
    return parsed


def _env_float(name: str, default: float, positive: bool = False) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        parsed = float(value)
    except ValueError:
        logger.warning(f"Invalid {name}: {value}, using default {default}")
        return default
    if math.isnan(parsed) or parsed < 0 or (positive and parsed == 0):
        bound = "greater than 0" if positive else "at least 0"
        logger.warning(f"{name} must be {bound}, got {value}, using default {default}")
        return default
    return parsed


def load_config() -> DocVaultConfig:
    """Load configuration from environment."""
    accepted_str = os.getenv("DV_ACCEPTED_RUNTIME_VERSIONS")
    if accepted_str:
        accepted = tuple(v.strip() for v in accepted_str.split(",") if v.strip())
    else:
        accepted = ACCEPTED_RUNTIME_VERSIONS
    # Validates ordering and format before the config is handed out.
    RuntimeVersions(accepted)

    versions_file = os.getenv("DV_VERSIONS_FILE")

    return DocVaultConfig(
        store_root=Path(os.getenv("DV_STORE_ROOT", "var/docvault")),
        accepted_runtime_versions=accepted,
        upload_concurrency=_env_int("DV_UPLOAD_CONCURRENCY", 8, minimum=1),
        delete_concurrency=_env_int("DV_DELETE_CONCURRENCY", 8, minimum=1),
        retry_max_attempts=_env_int("DV_RETRY_MAX_ATTEMPTS", 3, minimum=1),
        retry_sleep_seconds=_env_float("DV_RETRY_SLEEP_SECONDS", 10.0),
        gc_poll_interval_seconds=_env_float("DV_GC_POLL_INTERVAL_SECONDS", 30.0, positive=True),
        entry_cache_ttl_seconds=_env_float("DV_ENTRY_CACHE_TTL_SECONDS", 24 * 60 * 60, positive=True),
        snapshot_prefix=os.getenv("DV_SNAPSHOT_PREFIX", "sdk-snapshots/"),
        snapshot_gc_min_age_days=_env_int("DV_SNAPSHOT_GC_MIN_AGE_DAYS", 182),
        snapshot_gc_max_delay_minutes=_env_int("DV_SNAPSHOT_GC_MAX_DELAY_MINUTES", 360),
        versions_file=Path(versions_file) if versions_file else None,
        gc_worker_enabled=os.getenv("DV_GC_WORKER", "true").lower() == "true",
    )


@lru_cache(maxsize=1)
def get_config() -> DocVaultConfig:
    """Get the process-wide configuration."""
    return load_config()
