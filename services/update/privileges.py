"""Privilege checks and elevated relaunch for self-update."""

from __future__ import annotations

import logging
import os
import subprocess
import sys
import tempfile
from pathlib import Path
from typing import Protocol, Sequence

from services.update.models import ElevationDeclinedError, UpdateError
from shared.result import Result


_LOGGER = logging.getLogger(__name__)

__all__ = ["PrivilegeManager", "SystemPrivileges", "can_write_directory"]

# ShellExecuteW codes for "access denied" and "the operation was cancelled by the user".
_DECLINED_CODES = {5, 1223}


class PrivilegeManager(Protocol):
    def is_elevated(self) -> bool:
        """Return ``True`` when the process may overwrite its own install location."""

    def relaunch_elevated(self) -> Result[None, UpdateError]:
        """Start a new elevated copy of the application."""


class SystemPrivileges:
    """:class:`PrivilegeManager` for the running operating system."""

    def __init__(self, argv: Sequence[str] | None = None, executable: Path | None = None) -> None:
        self._argv = list(argv if argv is not None else sys.argv[1:])
        self._executable = Path(executable or sys.executable)

    def is_elevated(self) -> bool:
        if os.name == "nt":  # pragma: no cover - exercised on Windows
            try:
                import ctypes

                return bool(ctypes.windll.shell32.IsUserAnAdmin())  # type: ignore[attr-defined]
            except (AttributeError, OSError):
                return False
        if hasattr(os, "geteuid"):
            return os.geteuid() == 0
        return False

    def relaunch_elevated(self) -> Result[None, UpdateError]:
        if os.name != "nt":
            return Result.err(
                ElevationDeclinedError("Restarting with elevated rights is only supported on Windows")
            )
        return self._shell_execute_runas()  # pragma: no cover - requires Windows

    def _shell_execute_runas(self) -> Result[None, UpdateError]:  # pragma: no cover - requires Windows
        import ctypes

        _LOGGER.info("Requesting elevated restart of %s", self._executable)
        try:
            code = int(
                ctypes.windll.shell32.ShellExecuteW(  # type: ignore[attr-defined]
                    None,
                    "runas",
                    str(self._executable),
                    subprocess.list2cmdline(self._argv),
                    str(Path.cwd()),
                    1,
                )
            )
        except (AttributeError, OSError) as exc:
            return Result.err(UpdateError(f"Unable to request administrator privileges: {exc}"))
        if code <= 32:
            if code in _DECLINED_CODES:
                return Result.err(ElevationDeclinedError("Administrator permission was denied"))
            return Result.err(UpdateError(f"Failed to restart with administrator rights (code {code})"))
        return Result.ok(None)


def can_write_directory(directory: Path) -> bool:
    """Return ``True`` if a file can be created inside ``directory``."""

    try:
        with tempfile.TemporaryFile(dir=directory):
            return True
    except OSError:
        return False
