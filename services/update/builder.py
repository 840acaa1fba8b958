"""Helpers for constructing and scheduling the update service."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Callable

from services.update.applier import ProgressSink
from services.update.archive import ZipArchiveExtractor
from services.update.models import Chain, PlanResult, UpdateError
from services.update.planner import UpdatePlanner
from services.update.privileges import SystemPrivileges
from services.update.providers import GitHubReleaseProvider, LocalFolderReleaseProvider, ReleaseProvider
from services.update.self_update import SelfUpdateBootstrap
from services.update.service import UpdateService
from services.update.transport import Transport, UrllibTransport
from shared.logging_config import get_log_path

if TYPE_CHECKING:
    from app.config import UpdaterConfig


_LOGGER = logging.getLogger(__name__)


def _never_confirm(_prompt: str) -> bool:
    return False


def _build_release_provider(config: UpdaterConfig, transport: Transport) -> ReleaseProvider:
    local_dir = config.local_release_dir
    if local_dir is not None:
        if local_dir.exists():
            _LOGGER.info("Using local release source at %s", local_dir)
            return LocalFolderReleaseProvider(local_dir)
        _LOGGER.warning("Configured local release directory does not exist: %s", local_dir)
    return GitHubReleaseProvider(transport, config.release_api_url)


def build_update_service(
    config: UpdaterConfig | None = None,
    *,
    transport: Transport | None = None,
    progress: ProgressSink | None = None,
    confirm: Callable[[str], bool] | None = None,
) -> UpdateService | None:
    """Construct an :class:`UpdateService` for the configured installation.

    Returns ``None`` when no content server or install root is configured.
    """

    if config is None:
        from app.config import get_updater_config

        config = get_updater_config()

    if not config.server_url:
        _LOGGER.debug("No content update server configured")
        return None
    if config.install_root is None:
        _LOGGER.warning("No install root configured; content updates are unavailable")
        return None

    transport = transport or UrllibTransport(timeout=config.request_timeout)
    self_updater = SelfUpdateBootstrap(
        _build_release_provider(config, transport),
        transport,
        SystemPrivileges(),
        confirm or _never_confirm,
        log_path=get_log_path(),
    )
    return UpdateService(
        transport,
        ZipArchiveExtractor(),
        install_root=config.install_root,
        product_subpath=config.product_subpath,
        server_url=config.server_url,
        catalog_url=config.catalog_url,
        full_package_url=config.full_package_url,
        planner=UpdatePlanner(config.floor_version),
        self_updater=self_updater,
        progress=progress,
        preserve_globs=config.preserve_globs,
    )


def _run_update_check(
    service: UpdateService,
    on_plan_ready: Callable[[UpdateService, Chain], None] | None,
    on_complete: Callable[[PlanResult | None], None] | None,
) -> None:
    plan: PlanResult | None = None
    try:
        result = service.check_for_content_update()
        if result.is_err():
            _LOGGER.warning("Automatic update check failed: %s", result.unwrap_error())
            return

        plan = result.unwrap()
        if not isinstance(plan, Chain):
            _LOGGER.info("Automatic update check finished: %s", type(plan).__name__)
            return

        if on_plan_ready is not None:
            on_plan_ready(service, plan)
            return

        outcome = service.apply_content_update(plan)
        _LOGGER.info("Automatic update finished: %s", outcome)
    except UpdateError as exc:
        _LOGGER.warning("Automatic update failed: %s", exc)
    except Exception:  # pragma: no cover
        _LOGGER.exception("Unexpected error while checking for updates")
    finally:
        if on_complete:
            on_complete(plan)


def schedule_startup_update_check(
    service: UpdateService | None = None,
    *,
    enabled: bool | None = None,
    on_plan_ready: Callable[[UpdateService, Chain], None] | None = None,
    on_complete: Callable[[PlanResult | None], None] | None = None,
) -> threading.Thread | None:
    """Check for content updates on a background thread.

    A chain is handed to ``on_plan_ready`` when given, otherwise it is applied
    directly. ``on_complete`` receives the plan (or ``None`` on failure).
    ``enabled`` defaults to the configured ``auto_check`` setting.
    """

    if enabled is None:
        from app.config import get_updater_config

        enabled = get_updater_config().auto_check
    if not enabled:
        _LOGGER.debug("Automatic update checks are disabled")
        return None

    service = service or build_update_service()
    if service is None:
        return None

    thread = threading.Thread(
        target=_run_update_check,
        args=(service, on_plan_ready, on_complete),
        name="chain-updater-check",
        daemon=True,
    )
    thread.start()
    return thread


__all__ = [
    "build_update_service",
    "schedule_startup_update_check",
]
