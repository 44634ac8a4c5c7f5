"""
Object naming scheme for documentation artifacts.

Layout in the object store:
- {package}/{version}/{runtime_version}/{uuid}.in-progress.json
- {package}/{version}/{runtime_version}/{uuid}.completed.json
- {package}/{version}/{runtime_version}/{uuid}/{relative_path}
- shared-assets/{generator_version}/{relative_path}

The names are shared with every other reader and writer of the store and
must not change.
"""

COMPLETED_SUFFIX = ".completed.json"
IN_PROGRESS_SUFFIX = ".in-progress.json"

SHARED_ASSETS_DIR = "static-assets/"
SHARED_ASSETS_PREFIX = "shared-assets/"


def package_prefix(package_name: str) -> str:
    return f"{package_name}/"


def version_prefix(package_name: str, package_version: str) -> str:
    return f"{package_name}/{package_version}/"


def entry_prefix(package_name: str, package_version: str, runtime_version: str) -> str:
    """Directory holding the markers of every generation of one runtime version."""
    return f"{package_name}/{package_version}/{runtime_version}/"


def content_prefix(
    package_name: str, package_version: str, runtime_version: str, uuid: str
) -> str:
    """Directory holding the files of a single generation."""
    return f"{entry_prefix(package_name, package_version, runtime_version)}{uuid}/"


def completed_object_name(
    package_name: str, package_version: str, runtime_version: str, uuid: str
) -> str:
    return f"{entry_prefix(package_name, package_version, runtime_version)}{uuid}{COMPLETED_SUFFIX}"


def in_progress_object_name(
    package_name: str, package_version: str, runtime_version: str, uuid: str
) -> str:
    return f"{entry_prefix(package_name, package_version, runtime_version)}{uuid}{IN_PROGRESS_SUFFIX}"


def is_shared_asset(relative_path: str) -> bool:
    """Whether the file is a content-addressed asset reused across entries."""
    return relative_path.startswith(SHARED_ASSETS_DIR)


def shared_asset_object_name(generator_version: str, relative_path: str) -> str:
    return f"{SHARED_ASSETS_PREFIX}{generator_version}/{relative_path}"
