"""
DocVault Exception Hierarchy.

Defines all custom exceptions used across the DocVault system.
Object store failures carry a status-code-like signal so callers can
classify them as not-found, transient or fatal.
"""

from typing import Any


class DocVaultError(Exception):
    """
    Base exception for all DocVault errors.

    All custom exceptions inherit from this class, allowing
    generic catch blocks and consistent error handling.
    """

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        """
        Initialize a DocVaultError.

        Args:
            message: Human-readable error message
            details: Optional structured data for debugging
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return string representation with details."""
        base = self.message
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{base} ({details_str})"
        return base

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ObjectStoreError(DocVaultError):
    """
    Errors reported by an object store.

    The ``status`` attribute mirrors the HTTP status of the remote call
    (404 for missing objects, 502/503 for unavailable backends, 403 for
    permission problems) and drives retry classification.
    """

    default_status: int = 500

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        object_name: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        """
        Initialize an ObjectStoreError.

        Args:
            message: Human-readable error message
            status: Status code of the failed remote call
            object_name: Name of the object involved
            details: Optional structured data for debugging
        """
        status = status if status is not None else self.default_status
        details = details or {}
        details["status"] = status
        if object_name:
            details["object_name"] = object_name

        super().__init__(message, details=details)
        self.status = status
        self.object_name = object_name


class ObjectNotFoundError(ObjectStoreError):
    """Raised when a requested object does not exist in the store."""

    default_status = 404

    def __init__(self, message: str = "Object not found", **kwargs):
        super().__init__(message, **kwargs)


class TransientStoreError(ObjectStoreError):
    """
    Raised when the store is temporarily unable to serve a request.

    Covers throttling and backend unavailability. Calls failing with this
    error are safe to retry.
    """

    default_status = 503


class FatalStoreError(ObjectStoreError):
    """
    Raised for failures that will not go away on retry.

    Includes permission errors and malformed requests.
    """

    default_status = 403


class EntryParseError(DocVaultError):
    """Raised when a marker object cannot be decoded into an entry."""

    def __init__(self, message: str, *, object_name: str | None = None):
        details = {"object_name": object_name} if object_name else None
        super().__init__(message, details=details)
        self.object_name = object_name


class PublishError(DocVaultError):
    """
    Raised when a publish run is aborted.

    The in-progress marker is left behind; it is never served and is
    reclaimed by garbage collection.
    """

    def __init__(
        self,
        message: str,
        *,
        package_name: str | None = None,
        package_version: str | None = None,
        object_name: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if package_name:
            details["package_name"] = package_name
        if package_version:
            details["package_version"] = package_version
        if object_name:
            details["object_name"] = object_name

        super().__init__(message, details=details)
        self.package_name = package_name
        self.package_version = package_version
        self.object_name = object_name


class SnapshotError(DocVaultError):
    """Raised when a versioned snapshot cannot be decoded."""

    def __init__(self, message: str, *, object_name: str | None = None):
        details = {"object_name": object_name} if object_name else None
        super().__init__(message, details=details)
        self.object_name = object_name


class ConfigurationError(DocVaultError):
    """
    Errors in configuration.

    Raised when configuration is invalid or missing.
    """

    def __init__(
        self,
        message: str,
        *,
        config_key: str | None = None,
        config_value: Any = None,
        details: dict[str, Any] | None = None,
    ):
        """
        Initialize a ConfigurationError.

        Args:
            message: Human-readable error message
            config_key: The configuration key that caused the error
            config_value: The invalid configuration value
            details: Optional structured data for debugging
        """
        details = details or {}
        if config_key:
            details["config_key"] = config_key
        if config_value is not None:
            details["config_value"] = str(config_value)

        super().__init__(message, details=details)
        self.config_key = config_key
        self.config_value = config_value
