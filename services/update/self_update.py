"""Check for and install new releases of the running application binary."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Callable

from services.update.constants import NEW_BINARY_SUFFIX
from services.update.handoff import DetachedLauncher, HandoffLauncher, build_handoff_plan
from services.update.models import (
    ElevationDeclinedError,
    FilesystemError,
    SelfUpdateAvailable,
    SelfUpdateCheck,
    SelfUpdateOutcome,
    SelfUpToDate,
    UpdateError,
)
from services.update.privileges import PrivilegeManager, can_write_directory
from services.update.providers import ReleaseProvider
from services.update.recovery import find_running_executable, get_failure_marker_path
from services.update.transport import Transport
from services.update.versioning import compare_release_versions
from shared.result import Result


_LOGGER = logging.getLogger(__name__)

__all__ = ["SelfUpdateBootstrap", "exit_current_process", "new_binary_path"]

ELEVATION_PROMPT = (
    "Updating may require administrator rights.\n"
    "Restart as administrator to install the update?"
)


def exit_current_process() -> None:  # pragma: no cover - terminates the interpreter
    """Release the lock on our own executable by terminating immediately."""

    logging.shutdown()
    os._exit(0)


def new_binary_path(executable: Path) -> Path:
    """Return the sibling path the new binary is downloaded to."""

    return executable.with_name(f"{executable.stem}{NEW_BINARY_SUFFIX}{executable.suffix}")


class SelfUpdateBootstrap:
    """Replace the running executable with a newer published release.

    The new binary is downloaded next to the running one, then a detached
    handoff script waits for this process to exit, swaps the files and starts
    the new build.
    """

    def __init__(
        self,
        provider: ReleaseProvider,
        transport: Transport,
        privileges: PrivilegeManager,
        confirm: Callable[[str], bool],
        *,
        executable_path: Path | None = None,
        launcher: HandoffLauncher | None = None,
        exit_process: Callable[[], None] | None = None,
        log_path: Path | None = None,
    ) -> None:
        self._provider = provider
        self._transport = transport
        self._privileges = privileges
        self._confirm = confirm
        self._executable_path = executable_path
        self._launcher = launcher or DetachedLauncher()
        self._exit_process = exit_process or exit_current_process
        self._log_path = log_path

    def check_self_update(self, current_release: str) -> Result[SelfUpdateCheck, UpdateError]:
        release = self._provider.fetch_latest()
        if release.is_err():
            _LOGGER.warning("Release check failed: %s", release.unwrap_error())
            return Result.err(release.unwrap_error())
        metadata = release.unwrap()
        try:
            newer = compare_release_versions(current_release, metadata.version) > 0
        except UpdateError as exc:
            return Result.err(exc)

        if not newer:
            _LOGGER.debug("Application release %s is up to date", current_release)
            return Result.ok(SelfUpToDate(current_release))
        _LOGGER.info("Application update available: %s -> %s", current_release, metadata.version)
        return Result.ok(SelfUpdateAvailable(current_release, metadata.version, metadata.download_url))

    def apply_self_update(self, url: str) -> Result[SelfUpdateOutcome, UpdateError]:
        executable = self._executable_path or find_running_executable()
        if executable is None:
            return Result.err(UpdateError("Self-update requires a packaged application build"))
        executable = Path(executable)

        if not self._privileges.is_elevated() and not can_write_directory(executable.parent):
            if self._confirm(ELEVATION_PROMPT):
                return self._relaunch_elevated()
            return Result.err(
                FilesystemError(
                    f"Unable to update: {executable.parent} cannot be written to without administrator rights"
                )
            )

        return self._download_and_handoff(url, executable)

    def _relaunch_elevated(self) -> Result[SelfUpdateOutcome, UpdateError]:
        relaunched = self._privileges.relaunch_elevated()
        if relaunched.is_err():
            error = relaunched.unwrap_error()
            _LOGGER.warning("Elevated restart was not granted: %s", error)
            if isinstance(error, ElevationDeclinedError):
                return Result.err(error)
            return Result.err(ElevationDeclinedError(str(error)))
        _LOGGER.info("Restarted with elevated rights; exiting current process")
        self._exit_process()
        return Result.ok(SelfUpdateOutcome.RELAUNCHED_ELEVATED)

    def _download_and_handoff(self, url: str, executable: Path) -> Result[SelfUpdateOutcome, UpdateError]:
        staged = new_binary_path(executable)
        downloaded = self._transport.download(url, staged)
        if downloaded.is_err():
            _discard(staged)
            return Result.err(downloaded.unwrap_error())
        try:
            if os.name != "nt":
                staged.chmod(staged.stat().st_mode | 0o111)
            plan = build_handoff_plan(
                executable,
                staged,
                log_path=self._log_path,
                failure_marker=get_failure_marker_path(executable),
            )
            self._launcher.launch(plan)
        except OSError as exc:
            _discard(staged)
            return Result.err(FilesystemError(f"Failed to prepare update handoff: {exc}"))
        except UpdateError as exc:
            _discard(staged)
            return Result.err(exc)

        _LOGGER.info("Update handoff scheduled for %s; exiting", executable)
        self._exit_process()
        return Result.ok(SelfUpdateOutcome.HANDOFF_SCHEDULED)


def _discard(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        return
    except OSError:
        _LOGGER.warning("Failed to remove staged binary %s", path, exc_info=True)
