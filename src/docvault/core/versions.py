"""
Runtime version policy.

A runtime version is a date-coded string (``YYYY.MM.DD``) identifying the
toolchain generation that produced a piece of data. Versions compare
lexicographically, which for this format matches chronological order.

The accepted list is ordered newest first: the first element is the
current runtime version, the rest are fallbacks that may still be served
while a coordinated upgrade is in progress. Anything older than the last
accepted version is eligible for garbage collection.
"""

import re
from dataclasses import dataclass

from docvault.core.exceptions import ConfigurationError

RUNTIME_VERSION_PATTERN = re.compile(r"^\d{4}\.\d{2}\.\d{2}$")

# Keep at least two versions here so there is a fallback candidate when
# the current version switches.
ACCEPTED_RUNTIME_VERSIONS: tuple[str, ...] = (
    "2020.05.29",  # current
    "2020.05.26",
    "2020.05.08",
    "2020.05.03",
)


def is_runtime_version(value: str | None) -> bool:
    """Return True if value has the ``YYYY.MM.DD`` shape."""
    return value is not None and RUNTIME_VERSION_PATTERN.match(value) is not None


@dataclass(frozen=True)
class RuntimeVersions:
    """Ordered set of accepted runtime versions."""

    accepted: tuple[str, ...] = ACCEPTED_RUNTIME_VERSIONS

    def __post_init__(self) -> None:
        if not self.accepted:
            raise ConfigurationError(
                "At least one accepted runtime version is required",
                config_key="accepted_runtime_versions",
            )
        for version in self.accepted:
            if not is_runtime_version(version):
                raise ConfigurationError(
                    f"Invalid runtime version: {version}",
                    config_key="accepted_runtime_versions",
                    config_value=version,
                )
        if list(self.accepted) != sorted(self.accepted, reverse=True):
            raise ConfigurationError(
                "Accepted runtime versions must be ordered newest first",
                config_key="accepted_runtime_versions",
                config_value=",".join(self.accepted),
            )

    @property
    def current(self) -> str:
        """The runtime version of this process."""
        return self.accepted[0]

    @property
    def fallbacks(self) -> tuple[str, ...]:
        """Older runtime versions whose data is still accepted."""
        return self.accepted[1:]

    @property
    def gc_before(self) -> str:
        """Data strictly older than this version may be deleted."""
        return self.accepted[-1]

    def should_serve(self, version: str | None) -> bool:
        """Whether data produced by ``version`` may be served."""
        return version is not None and version in self.accepted

    def should_gc(self, version: str) -> bool:
        """Whether data produced by ``version`` is obsolete."""
        return version < self.gc_before


DEFAULT_RUNTIME_VERSIONS = RuntimeVersions()
