"""Install the complete content package from scratch."""

from __future__ import annotations

import logging
import shutil
import tempfile
from collections.abc import Iterable
from pathlib import Path
from typing import Callable

from services.update.applier import NullProgressSink, ProgressSink, scoped_temp_file
from services.update.archive import ArchiveExtractor
from services.update.constants import DEFAULT_PRESERVE_GLOBS, NOT_INSTALLED, TEMP_FILE_PREFIX
from services.update.installed_state import VersionMarker
from services.update.models import ArchiveExtractionError, FilesystemError, UpdateCancelledError, UpdateError
from services.update.transport import Transport
from shared.result import Result


_LOGGER = logging.getLogger(__name__)

__all__ = ["FullInstaller"]

REINSTALL_PROMPT = (
    "There are already files in your {name} folder. "
    "Would you like to reinstall?"
)


class FullInstaller:
    """Download the full package and unpack it over a clean product folder.

    Files under the product folder that match ``preserve_globs`` (save data)
    survive the reinstall.
    """

    def __init__(
        self,
        transport: Transport,
        extractor: ArchiveExtractor,
        marker: VersionMarker,
        install_root: Path,
        package_url: str,
        *,
        preserve_globs: Iterable[str] = DEFAULT_PRESERVE_GLOBS,
        progress: ProgressSink | None = None,
    ) -> None:
        self._transport = transport
        self._extractor = extractor
        self._marker = marker
        self._install_root = Path(install_root)
        self._package_url = package_url
        self._preserve_globs = tuple(preserve_globs)
        self._progress = progress or NullProgressSink()

    def install(self, confirm: Callable[[str], bool]) -> Result[str, UpdateError]:
        product_dir = self._marker.product_dir
        if product_dir.exists() and not confirm(REINSTALL_PROMPT.format(name=product_dir.name)):
            _LOGGER.info("Full install declined by user")
            return Result.err(UpdateCancelledError("Reinstall declined"))

        stash_dir = Path(tempfile.mkdtemp(prefix=f"{TEMP_FILE_PREFIX}preserve-"))
        try:
            return self._install(product_dir, stash_dir)
        finally:
            shutil.rmtree(stash_dir, ignore_errors=True)

    def _install(self, product_dir: Path, stash_dir: Path) -> Result[str, UpdateError]:
        self._progress.report_progress(1, 1, "Downloading full package...")
        try:
            with scoped_temp_file() as download_path:
                downloaded = self._transport.download(
                    self._package_url, download_path, self._progress.report_transfer
                )
                if downloaded.is_err():
                    return Result.err(downloaded.unwrap_error())

                preserved = self._stash(product_dir, stash_dir)
                try:
                    if product_dir.exists():
                        _LOGGER.info("Removing existing installation at %s", product_dir)
                        shutil.rmtree(product_dir)
                    self._progress.report_progress(1, 1, "Extracting package...")
                    extracted = self._extractor.extract(download_path, self._install_root, True)
                finally:
                    self._restore(preserved, stash_dir, product_dir)
                if extracted.is_err():
                    return Result.err(extracted.unwrap_error())
            version = self._marker.read()
        except OSError as exc:
            return Result.err(FilesystemError(f"Failed to install full package: {exc}"))
        except FilesystemError as exc:
            return Result.err(exc)

        if version == NOT_INSTALLED:
            _LOGGER.error("Full package from %s did not provide %s", self._package_url, self._marker.path)
            return Result.err(
                ArchiveExtractionError(f"Full package did not contain a version file at {self._marker.path}")
            )

        _LOGGER.info("Full install complete; installed version is %s", version)
        return Result.ok(version)

    def _stash(self, product_dir: Path, stash_dir: Path) -> list[Path]:
        preserved: list[Path] = []
        if not product_dir.is_dir():
            return preserved
        for pattern in self._preserve_globs:
            for source in product_dir.glob(pattern):
                if not source.is_file():
                    continue
                relative = source.relative_to(product_dir)
                target = stash_dir / relative
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(source, target)
                preserved.append(relative)
                _LOGGER.debug("Preserving %s across reinstall", relative)
        return preserved

    def _restore(self, preserved: list[Path], stash_dir: Path, product_dir: Path) -> None:
        for relative in preserved:
            target = product_dir / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(stash_dir / relative, target)
        if preserved:
            _LOGGER.info("Restored %s preserved file(s)", len(preserved))
