"""Data models and error types used by the update service."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Tuple, Union


class UpdateError(RuntimeError):
    """Base class for every failure surfaced by the update service."""


class NetworkError(UpdateError):
    """Raised when a host is unreachable, times out or answers with an error status."""

    def __init__(self, message: str, *, url: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code

    @property
    def user_message(self) -> str:
        """Return a message suitable for showing to the user."""

        status = self.status_code
        if status is None or 400 <= status < 500 or status in (503, 504):
            return (
                "Unable to check for updates. "
                "You might be experiencing network issues."
            )
        return (
            "An error occurred while checking for updates. Please try again later. "
            f"Error: {self}"
        )


class InvalidVersionError(UpdateError, ValueError):
    """Raised when a version string cannot be parsed."""


class CatalogError(UpdateError):
    """Raised when a parsed catalog cannot be planned against."""


class ArchiveExtractionError(UpdateError):
    """Raised when a downloaded package cannot be extracted."""


class ElevationDeclinedError(UpdateError):
    """Raised when elevated privileges were requested but not granted."""


class FilesystemError(UpdateError):
    """Raised when the marker, temporary files or install folders cannot be written."""


class UpdateCancelledError(UpdateError):
    """Raised when an update was cancelled before it completed."""


@dataclass(frozen=True)
class CatalogEntry:
    """One downloadable package listed in the update catalog."""

    version: str
    package_url: str
    install_path: str
    description: str


@dataclass(frozen=True)
class UpToDate:
    version: str


@dataclass(frozen=True)
class Chain:
    """Packages to apply, strictly ascending by version."""

    entries: Tuple[CatalogEntry, ...]

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)

    @property
    def target_version(self) -> str:
        return self.entries[-1].version


@dataclass(frozen=True)
class FullReinstallRequired:
    installed: str
    reason: str


PlanResult = Union[UpToDate, Chain, FullReinstallRequired]


@dataclass(frozen=True)
class ApplySuccess:
    final_version: str


@dataclass(frozen=True)
class PartialFailure:
    """The chain stopped at ``failed_entry``; earlier entries stay applied."""

    last_applied_version: str
    failed_entry: CatalogEntry
    cause: UpdateError


ApplyResult = Union[ApplySuccess, PartialFailure]


@dataclass(frozen=True)
class ReleaseMetadata:
    """Metadata describing the newest published release of the host application."""

    tag: str
    version: str
    download_url: str
    asset_name: str | None = None
    release_notes: str | None = None


@dataclass(frozen=True)
class SelfUpToDate:
    current: str


@dataclass(frozen=True)
class SelfUpdateAvailable:
    current: str
    version: str
    download_url: str


SelfUpdateCheck = Union[SelfUpToDate, SelfUpdateAvailable]


class SelfUpdateOutcome(enum.Enum):
    HANDOFF_SCHEDULED = "handoff_scheduled"
    RELAUNCHED_ELEVATED = "relaunched_elevated"
