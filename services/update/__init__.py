"""Public API for the update service package."""

from __future__ import annotations

from services.update.applier import NullProgressSink, ProgressSink, UpdateApplier
from services.update.archive import ArchiveExtractor, ZipArchiveExtractor, extract_zip_safely
from services.update.builder import build_update_service, schedule_startup_update_check
from services.update.catalog import Catalog, iter_catalog_entries, parse_catalog
from services.update.constants import (
    API_URL,
    DEFAULT_FLOOR_VERSION,
    GITHUB_REPO,
    INSTALL_ROOT_ENV,
    LOCAL_RELEASE_ENV,
    NOT_INSTALLED,
    SERVER_URL_ENV,
    UPDATE_FAILURE_MARKER_SUFFIX,
    VERSION_FILE_NAME,
)
from services.update.full_install import FullInstaller
from services.update.installed_state import VersionMarker
from services.update.models import (
    ApplyResult,
    ApplySuccess,
    ArchiveExtractionError,
    CatalogEntry,
    CatalogError,
    Chain,
    ElevationDeclinedError,
    FilesystemError,
    FullReinstallRequired,
    InvalidVersionError,
    NetworkError,
    PartialFailure,
    PlanResult,
    ReleaseMetadata,
    SelfUpdateAvailable,
    SelfUpdateCheck,
    SelfUpdateOutcome,
    SelfUpToDate,
    UpdateCancelledError,
    UpdateError,
    UpToDate,
)
from services.update.planner import UpdatePlanner, latest_version, validate_catalog
from services.update.providers import GitHubReleaseProvider, LocalFolderReleaseProvider, ReleaseProvider
from services.update.recovery import consume_update_failure_notice
from services.update.self_update import SelfUpdateBootstrap
from services.update.service import UpdateService
from services.update.transport import Transport, UrllibTransport
from services.update.versioning import (
    compare_content_versions,
    compare_release_versions,
    is_release_newer,
    parse_content_version,
)

__all__ = [
    "API_URL",
    "DEFAULT_FLOOR_VERSION",
    "GITHUB_REPO",
    "INSTALL_ROOT_ENV",
    "LOCAL_RELEASE_ENV",
    "NOT_INSTALLED",
    "SERVER_URL_ENV",
    "UPDATE_FAILURE_MARKER_SUFFIX",
    "VERSION_FILE_NAME",
    "ApplyResult",
    "ApplySuccess",
    "ArchiveExtractionError",
    "ArchiveExtractor",
    "Catalog",
    "CatalogEntry",
    "CatalogError",
    "Chain",
    "ElevationDeclinedError",
    "FilesystemError",
    "FullInstaller",
    "FullReinstallRequired",
    "GitHubReleaseProvider",
    "InvalidVersionError",
    "LocalFolderReleaseProvider",
    "NetworkError",
    "NullProgressSink",
    "PartialFailure",
    "PlanResult",
    "ProgressSink",
    "ReleaseMetadata",
    "ReleaseProvider",
    "SelfUpdateAvailable",
    "SelfUpdateBootstrap",
    "SelfUpdateCheck",
    "SelfUpdateOutcome",
    "SelfUpToDate",
    "Transport",
    "UpToDate",
    "UpdateApplier",
    "UpdateCancelledError",
    "UpdateError",
    "UpdatePlanner",
    "UpdateService",
    "UrllibTransport",
    "VersionMarker",
    "ZipArchiveExtractor",
    "build_update_service",
    "compare_content_versions",
    "compare_release_versions",
    "consume_update_failure_notice",
    "extract_zip_safely",
    "is_release_newer",
    "iter_catalog_entries",
    "latest_version",
    "parse_catalog",
    "parse_content_version",
    "schedule_startup_update_check",
    "validate_catalog",
]
