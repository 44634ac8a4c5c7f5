"""
Package version lookup collaborator.

Resolving the ``latest`` documentation needs two answers the object store
cannot give: which version of a package is the latest stable one, and
which versions were published most recently. Production deployments back
this with their package metadata database; this module defines the
protocol plus an in-memory implementation that can be loaded from YAML.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Protocol, runtime_checkable

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from docvault.core.exceptions import ConfigurationError


@runtime_checkable
class VersionLookup(Protocol):
    """Protocol for package version metadata."""

    def latest_stable_version(self, package_name: str) -> str | None:
        """Return the latest version of a package, or None if unknown."""
        ...

    def recent_versions(self, package_name: str, limit: int = 10) -> list[str]:
        """
        Return up to ``limit`` versions of a package.

        Stable versions come before pre-releases; within each group the
        most recently created version comes first.
        """
        ...


class PackageVersionRecord(BaseModel):
    """A published version of a package."""

    version: str = Field(description="Version string (semver)")
    created: datetime = Field(description="Publication time")

    @field_validator("created")
    @classmethod
    def validate_created(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @property
    def is_prerelease(self) -> bool:
        """Whether the version carries a pre-release suffix (``1.0.0-dev``)."""
        return "-" in self.version.split("+", 1)[0]


def sort_recent(records: Iterable[PackageVersionRecord]) -> list[PackageVersionRecord]:
    """Order records stable first, newest created first within each group."""
    return sorted(records, key=lambda r: (r.is_prerelease, -r.created.timestamp()))


def _version_string(package_name: str, key: str, value: Any) -> str:
    if not isinstance(value, str) or not value:
        raise ConfigurationError(
            f"'{key}' of {package_name} must be a quoted version string, got {value!r}",
            config_key="versions_file",
            config_value=value,
        )
    return value


class InMemoryVersionLookup:
    """
    Version lookup over records held in memory.

    When no latest version is set explicitly for a package, the most
    recently created stable version is used, falling back to the most
    recent pre-release when the package has no stable version.
    """

    def __init__(self) -> None:
        self._records: dict[str, dict[str, PackageVersionRecord]] = {}
        self._latest: dict[str, str] = {}

    def add(
        self,
        package_name: str,
        version: str,
        created: datetime | None = None,
    ) -> PackageVersionRecord:
        """Register a published version."""
        record = PackageVersionRecord(
            version=version, created=created or datetime.now(timezone.utc)
        )
        self._records.setdefault(package_name, {})[version] = record
        return record

    def set_latest(self, package_name: str, version: str) -> None:
        """Pin the latest version of a package."""
        self._latest[package_name] = version

    def latest_stable_version(self, package_name: str) -> str | None:
        if package_name in self._latest:
            return self._latest[package_name]
        ordered = sort_recent(self._records.get(package_name, {}).values())
        return ordered[0].version if ordered else None

    def recent_versions(self, package_name: str, limit: int = 10) -> list[str]:
        ordered = sort_recent(self._records.get(package_name, {}).values())
        return [r.version for r in ordered[:limit]]

    def packages(self) -> list[str]:
        return sorted(self._records)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InMemoryVersionLookup":
        """
        Build a lookup from a mapping shaped like::

            packages:
              foo:
                latest: "1.2.0"      # optional
                versions:
                  - version: "1.2.0"
                    created: 2020-05-01T10:00:00Z

        Versions must be strings. YAML reads an unquoted ``1.10`` as the
        number 1.1, so such values are rejected instead of converted.

        Raises:
            ConfigurationError: If the mapping does not have this shape
        """
        lookup = cls()
        packages = data.get("packages") or {}
        if not isinstance(packages, dict):
            raise ConfigurationError("'packages' must be a mapping", config_key="packages")
        for package_name, spec in packages.items():
            spec = spec or {}
            if not isinstance(spec, dict):
                raise ConfigurationError(
                    f"Package {package_name} must be a mapping", config_key="versions_file"
                )
            versions = spec.get("versions") or []
            if not isinstance(versions, list):
                raise ConfigurationError(
                    f"Versions of {package_name} must be a list", config_key="versions_file"
                )
            for item in versions:
                if not isinstance(item, dict) or "version" not in item:
                    raise ConfigurationError(
                        f"Version entry of {package_name} needs a 'version' key: {item!r}",
                        config_key="versions_file",
                    )
                version = _version_string(package_name, "version", item["version"])
                try:
                    lookup.add(package_name, version, item.get("created"))
                except ValidationError as e:
                    raise ConfigurationError(
                        f"Invalid version entry {package_name} {version}: "
                        f"{e.error_count()} error(s)",
                        config_key="versions_file",
                        config_value=item.get("created"),
                    ) from e
            if spec.get("latest") is not None:
                lookup.set_latest(
                    package_name, _version_string(package_name, "latest", spec["latest"])
                )
        return lookup

    @classmethod
    def from_yaml(cls, path: Path) -> "InMemoryVersionLookup":
        """Load a lookup from a YAML file."""
        try:
            data = yaml.safe_load(path.read_text())
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(
                f"Unable to load versions file: {e}", config_key="versions_file", config_value=path
            ) from e
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Invalid YAML structure in {path}", config_key="versions_file", config_value=path
            )
        return cls.from_dict(data)
