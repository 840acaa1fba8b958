"""Service coordinating content updates and application self-update."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Callable

from app.version import get_app_version
from services.update.applier import ProgressSink, UpdateApplier
from services.update.archive import ArchiveExtractor
from services.update.catalog import Catalog, parse_catalog
from services.update.constants import NOT_INSTALLED, SERVER_PROBE_TIMEOUT
from services.update.full_install import FullInstaller
from services.update.installed_state import VersionMarker
from services.update.models import (
    ApplyResult,
    Chain,
    PlanResult,
    SelfUpdateCheck,
    SelfUpdateOutcome,
    UpdateError,
)
from services.update.planner import UpdatePlanner, latest_version
from services.update.self_update import SelfUpdateBootstrap
from services.update.transport import Transport
from shared.result import Result


_LOGGER = logging.getLogger(__name__)

__all__ = ["UpdateService"]


class UpdateService:
    """Entry point the host application uses for every update operation."""

    def __init__(
        self,
        transport: Transport,
        extractor: ArchiveExtractor,
        *,
        install_root: Path,
        product_subpath: str,
        server_url: str,
        catalog_url: str,
        full_package_url: str,
        planner: UpdatePlanner | None = None,
        self_updater: SelfUpdateBootstrap | None = None,
        progress: ProgressSink | None = None,
        preserve_globs: tuple[str, ...] | None = None,
        current_release: Callable[[], str] | None = None,
    ) -> None:
        self._transport = transport
        self._extractor = extractor
        self._install_root = Path(install_root)
        self._marker = VersionMarker(self._install_root, product_subpath)
        self._server_url = server_url
        self._catalog_url = catalog_url
        self._full_package_url = full_package_url
        self._planner = planner or UpdatePlanner()
        self._self_updater = self_updater
        self._progress = progress
        self._preserve_globs = preserve_globs
        self._current_release = current_release

    @property
    def marker(self) -> VersionMarker:
        return self._marker

    def installed_version(self) -> str:
        return self._marker.read()

    def check_for_content_update(self, installed: str | None = None) -> Result[PlanResult, UpdateError]:
        """Plan the packages needed to bring ``installed`` up to date.

        ``installed`` defaults to the version recorded in the marker file.
        """

        try:
            if installed is None:
                installed = self._marker.read()
            if installed.strip() in ("", NOT_INSTALLED):
                return Result.ok(self._planner.plan(installed, ()))

            catalog = self._fetch_catalog()
            if catalog.is_err():
                return Result.err(catalog.unwrap_error())
            plan = self._planner.plan(installed, catalog.unwrap())
        except UpdateError as exc:
            _LOGGER.warning("Content update check failed: %s", exc)
            return Result.err(exc)
        return Result.ok(plan)

    def apply_content_update(
        self,
        plan: Chain,
        cancel_event: threading.Event | None = None,
    ) -> ApplyResult:
        applier = UpdateApplier(
            self._transport,
            self._extractor,
            self._marker,
            self._install_root,
            progress=self._progress,
        )
        return applier.apply(plan, cancel_event)

    def install_full(self, confirm: Callable[[str], bool]) -> Result[str, UpdateError]:
        kwargs = {} if self._preserve_globs is None else {"preserve_globs": self._preserve_globs}
        installer = FullInstaller(
            self._transport,
            self._extractor,
            self._marker,
            self._install_root,
            self._full_package_url,
            progress=self._progress,
            **kwargs,
        )
        return installer.install(confirm)

    def latest_content_version(self) -> Result[str, UpdateError]:
        catalog = self._fetch_catalog()
        if catalog.is_err():
            return Result.err(catalog.unwrap_error())
        try:
            return Result.ok(latest_version(catalog.unwrap()))
        except UpdateError as exc:
            return Result.err(exc)

    def is_server_enabled(self) -> bool:
        status = self._transport.probe(self._server_url, timeout=SERVER_PROBE_TIMEOUT)
        if status.is_err():
            _LOGGER.info("Update server %s is unreachable: %s", self._server_url, status.unwrap_error())
            return False
        code = status.unwrap()
        _LOGGER.debug("Update server %s answered with status %s", self._server_url, code)
        return 200 <= code < 300

    def check_for_self_update(self, current_release: str | None = None) -> Result[SelfUpdateCheck, UpdateError]:
        if self._self_updater is None:
            return Result.err(UpdateError("Self-update is not configured"))
        if current_release is None:
            current_release = self._resolve_current_release()
        return self._self_updater.check_self_update(current_release)

    def apply_self_update(self, url: str) -> Result[SelfUpdateOutcome, UpdateError]:
        if self._self_updater is None:
            return Result.err(UpdateError("Self-update is not configured"))
        return self._self_updater.apply_self_update(url)

    def _resolve_current_release(self) -> str:
        if self._current_release is not None:
            return self._current_release()
        return get_app_version()

    def _fetch_catalog(self) -> Result[Catalog, UpdateError]:
        _LOGGER.debug("Fetching update catalog from %s", self._catalog_url)
        text = self._transport.fetch_text(self._catalog_url)
        if text.is_err():
            return Result.err(text.unwrap_error())
        return Result.ok(parse_catalog(text.unwrap()))
