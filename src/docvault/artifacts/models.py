"""
Pydantic models for documentation artifact entries.

An entry describes one generation of the documentation of a package
version, produced by one runtime version of the toolchain. Marker
objects in the store hold the JSON form of the entry.
"""

import uuid as uuid_lib
from datetime import datetime, timezone

from pydantic import BaseModel, Field, ValidationError, field_validator

from docvault.artifacts import paths
from docvault.core.exceptions import EntryParseError
from docvault.core.versions import is_runtime_version


class ArtifactEntry(BaseModel):
    """One generation of a package version's documentation."""

    model_config = {"frozen": True}

    uuid: str = Field(
        default_factory=lambda: str(uuid_lib.uuid4()),
        description="Generation id, names the content prefix",
    )
    package_name: str = Field(description="Documented package")
    package_version: str = Field(description="Documented package version")
    is_latest: bool = Field(default=False, description="Serving hint: latest stable version")
    is_obsolete: bool = Field(default=False, description="Serving hint: superseded version")
    uses_flutter: bool = Field(default=False, description="Generated with the Flutter SDK")
    runtime_version: str = Field(description="Toolchain generation (YYYY.MM.DD)")
    sdk_version: str | None = Field(default=None, description="SDK used for generation")
    generator_version: str | None = Field(
        default=None, description="Documentation generator version, keys shared assets"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Creation time of this generation",
    )
    deps_resolved: bool = Field(default=True, description="Dependencies resolved during generation")
    has_content: bool = Field(default=False, description="Whether the artifact tree is non-empty")
    archive_size: int | None = Field(default=None, description="Size of the packed archive")
    total_size: int | None = Field(default=None, description="Total size of the artifact tree")

    @field_validator("package_name", "package_version", "uuid")
    @classmethod
    def validate_path_segment(cls, v: str) -> str:
        """Values become object name segments: non-empty, no separators."""
        if not v or "/" in v or v in (".", ".."):
            raise ValueError(f"Invalid path segment: {v!r}")
        return v

    @field_validator("runtime_version")
    @classmethod
    def validate_runtime_version(cls, v: str) -> str:
        """Ensure runtime_version is date-coded."""
        if not is_runtime_version(v):
            raise ValueError(f"runtime_version must match YYYY.MM.DD: {v!r}")
        return v

    @field_validator("timestamp")
    @classmethod
    def validate_timestamp(cls, v: datetime) -> datetime:
        """Naive timestamps are taken as UTC so all entries compare."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @property
    def entry_prefix(self) -> str:
        return paths.entry_prefix(self.package_name, self.package_version, self.runtime_version)

    @property
    def content_prefix(self) -> str:
        return paths.content_prefix(
            self.package_name, self.package_version, self.runtime_version, self.uuid
        )

    @property
    def completed_object_name(self) -> str:
        return paths.completed_object_name(
            self.package_name, self.package_version, self.runtime_version, self.uuid
        )

    @property
    def in_progress_object_name(self) -> str:
        return paths.in_progress_object_name(
            self.package_name, self.package_version, self.runtime_version, self.uuid
        )

    def object_name(self, relative_path: str) -> str:
        """Object name of a file of this entry's artifact tree."""
        relative_path = relative_path.lstrip("/")
        if self.generator_version and paths.is_shared_asset(relative_path):
            return paths.shared_asset_object_name(self.generator_version, relative_path)
        return f"{self.content_prefix}{relative_path}"

    def with_status(self, is_latest: bool, is_obsolete: bool) -> "ArtifactEntry":
        """Return a copy with the serving flags replaced."""
        return self.model_copy(update={"is_latest": is_latest, "is_obsolete": is_obsolete})

    def as_bytes(self) -> bytes:
        """Serialize for a marker object."""
        return self.model_dump_json().encode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes, object_name: str | None = None) -> "ArtifactEntry":
        """
        Decode a marker object.

        Raises:
            EntryParseError: If the data is not a valid entry
        """
        try:
            return cls.model_validate_json(data)
        except ValidationError as e:
            raise EntryParseError(
                f"Invalid entry data: {e.error_count()} error(s)",
                object_name=object_name,
            ) from e


class FileInfo(BaseModel):
    """Header information of a served file."""

    last_modified: datetime | None = Field(default=None, description="Last update of the object")
    etag: str | None = Field(default=None, description="Content hash of the object")


class PublishResult(BaseModel):
    """Result of a publish run."""

    entry: ArtifactEntry = Field(description="The published entry")
    uploaded_count: int = Field(default=0, description="Files uploaded")
    skipped_count: int = Field(default=0, description="Shared assets already present")
    elapsed_seconds: float = Field(default=0.0, description="Wall-clock duration")
