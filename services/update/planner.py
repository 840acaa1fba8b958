"""Work out which catalog packages bring an installation up to date."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from services.update.constants import DEFAULT_FLOOR_VERSION, NOT_INSTALLED
from services.update.models import (
    CatalogEntry,
    CatalogError,
    Chain,
    FullReinstallRequired,
    PlanResult,
    UpToDate,
)
from services.update.versioning import (
    compare_content_versions,
    content_sort_key,
    parse_content_version,
)


_LOGGER = logging.getLogger(__name__)

__all__ = ["UpdatePlanner", "latest_version", "validate_catalog"]


def validate_catalog(catalog: Iterable[CatalogEntry]) -> list[CatalogEntry]:
    """Return the catalog entries after checking every version.

    Raises :class:`InvalidVersionError` for unparsable versions and
    :class:`CatalogError` for an empty catalog or duplicate versions.
    """

    entries = list(catalog)
    if not entries:
        raise CatalogError("Update catalog does not list any packages")

    seen: dict[tuple[int, ...], CatalogEntry] = {}
    for entry in entries:
        key = content_sort_key(entry.version)
        previous = seen.get(key)
        if previous is not None:
            raise CatalogError(
                f"Update catalog lists version {entry.version} more than once "
                f"({previous.package_url} and {entry.package_url})"
            )
        seen[key] = entry
    return entries


def latest_version(catalog: Iterable[CatalogEntry]) -> str:
    """Return the newest version listed in ``catalog``."""

    entries = validate_catalog(catalog)
    return max(entries, key=lambda entry: content_sort_key(entry.version)).version


class UpdatePlanner:
    """Compute the ordered package chain for an installed version.

    ``floor_version`` is the oldest installed version the server's incremental
    packages can still upgrade; anything older needs a full reinstall.
    """

    def __init__(self, floor_version: str = DEFAULT_FLOOR_VERSION) -> None:
        parse_content_version(floor_version)
        self._floor_version = floor_version

    @property
    def floor_version(self) -> str:
        return self._floor_version

    def plan(self, installed: str, catalog: Iterable[CatalogEntry]) -> PlanResult:
        installed = installed.strip()
        if not installed or installed == NOT_INSTALLED:
            _LOGGER.info("No installed version found; a full install is required")
            return FullReinstallRequired(installed or NOT_INSTALLED, "not installed")

        parse_content_version(installed)
        entries = validate_catalog(catalog)

        if compare_content_versions(installed, self._floor_version) < 0:
            _LOGGER.info(
                "Installed version %s is older than the incremental floor %s",
                installed,
                self._floor_version,
            )
            return FullReinstallRequired(installed, f"older than {self._floor_version}")

        entries.sort(key=lambda entry: content_sort_key(entry.version), reverse=True)
        chain: list[CatalogEntry] = []
        for entry in entries:
            if compare_content_versions(entry.version, installed) <= 0:
                break
            chain.append(entry)
        chain.reverse()

        if chain:
            _LOGGER.info(
                "Planned %s update(s) from %s to %s",
                len(chain),
                installed,
                chain[-1].version,
            )
            return Chain(tuple(chain))

        newest = entries[0].version
        if compare_content_versions(installed, newest) > 0:
            _LOGGER.warning(
                "Installed version %s is newer than the catalog's latest %s",
                installed,
                newest,
            )
        else:
            _LOGGER.debug("Installed version %s is up to date", installed)
        return UpToDate(installed)
