"""Read and write the installed content version marker."""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from services.update.constants import NOT_INSTALLED, VERSION_FILE_NAME
from services.update.models import FilesystemError
from shared.result import Result


_LOGGER = logging.getLogger(__name__)

__all__ = ["VersionMarker"]


class VersionMarker:
    """The ``version.txt`` file recording the last successfully applied package.

    A missing file reads as :data:`NOT_INSTALLED`. Writes replace the file
    atomically so a crash never leaves a truncated marker behind.
    """

    def __init__(self, install_root: Path, product_subpath: str) -> None:
        self._product_dir = Path(install_root) / product_subpath
        self._path = self._product_dir / VERSION_FILE_NAME

    @property
    def path(self) -> Path:
        return self._path

    @property
    def product_dir(self) -> Path:
        return self._product_dir

    def exists(self) -> bool:
        return self._path.is_file()

    def read(self) -> str:
        try:
            text = self._path.read_text(encoding="utf-8-sig")
        except FileNotFoundError:
            return NOT_INSTALLED
        except OSError as exc:
            raise FilesystemError(f"Failed to read version marker {self._path}: {exc}") from exc
        version = text.strip()
        return version or NOT_INSTALLED

    def write(self, version: str) -> Result[None, FilesystemError]:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_name = tempfile.mkstemp(
                prefix=f".{VERSION_FILE_NAME}.", dir=self._path.parent
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(version)
                    handle.flush()
                    os.fsync(handle.fileno())
                os.replace(temp_name, self._path)
            except BaseException:
                _remove_quietly(Path(temp_name))
                raise
        except OSError as exc:
            _LOGGER.error("Failed to record installed version %s at %s: %s", version, self._path, exc)
            return Result.err(
                FilesystemError(f"Failed to write version marker {self._path}: {exc}")
            )
        _LOGGER.info("Recorded installed version %s", version)
        return Result.ok(None)


def _remove_quietly(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        return
    except OSError:
        _LOGGER.warning("Unable to remove temporary marker file %s", path, exc_info=True)
