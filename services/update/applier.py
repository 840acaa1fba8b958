"""Apply a planned chain of update packages one at a time."""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from collections.abc import Iterable
from pathlib import Path
from typing import Protocol

from services.update.archive import ArchiveExtractor
from services.update.constants import TEMP_FILE_PREFIX
from services.update.installed_state import VersionMarker
from services.update.models import (
    ApplyResult,
    ApplySuccess,
    CatalogEntry,
    FilesystemError,
    PartialFailure,
    UpdateCancelledError,
    UpdateError,
)
from services.update.transport import Transport
from shared.result import Result


_LOGGER = logging.getLogger(__name__)

__all__ = ["NullProgressSink", "ProgressSink", "UpdateApplier", "scoped_temp_file"]


class ProgressSink(Protocol):
    """Receives progress while a chain is applied."""

    def report_progress(self, current: int, total: int, label: str) -> None:
        """Report that package ``current`` of ``total`` is being processed."""

    def report_transfer(self, received: int, expected: int | None) -> None:
        """Report bytes received for the package currently downloading."""


class NullProgressSink:
    def report_progress(self, current: int, total: int, label: str) -> None:
        return None

    def report_transfer(self, received: int, expected: int | None) -> None:
        return None


class scoped_temp_file:
    """Context manager yielding a fresh temporary file path, deleted on exit.

    Cleanup failures are logged and never replace an exception raised inside
    the ``with`` block.
    """

    def __init__(self, prefix: str = TEMP_FILE_PREFIX, suffix: str = ".zip") -> None:
        self._prefix = prefix
        self._suffix = suffix
        self._path: Path | None = None

    def __enter__(self) -> Path:
        fd, name = tempfile.mkstemp(prefix=self._prefix, suffix=self._suffix)
        os.close(fd)
        self._path = Path(name)
        return self._path

    def __exit__(self, exc_type, exc, tb) -> None:
        path = self._path
        self._path = None
        if path is None:
            return
        try:
            path.unlink()
        except FileNotFoundError:
            return
        except OSError:
            _LOGGER.warning("Failed to remove temporary update file %s", path, exc_info=True)


class UpdateApplier:
    """Download, extract and record each package of a chain in ascending order.

    The chain stops at the first failure. Packages applied before the failure
    stay applied and the version marker names the last one, so planning again
    resumes from there.
    """

    def __init__(
        self,
        transport: Transport,
        extractor: ArchiveExtractor,
        marker: VersionMarker,
        install_root: Path,
        progress: ProgressSink | None = None,
    ) -> None:
        self._transport = transport
        self._extractor = extractor
        self._marker = marker
        self._install_root = Path(install_root)
        self._progress = progress or NullProgressSink()

    def apply(
        self,
        plan: Iterable[CatalogEntry],
        cancel_event: threading.Event | None = None,
    ) -> ApplyResult:
        """Apply ``plan`` and return how far it got.

        An empty plan only reads the marker; if that read fails the
        :class:`FilesystemError` propagates since there is no entry to blame.
        """

        entries = tuple(plan)
        try:
            last_applied = self._marker.read()
        except FilesystemError as exc:
            if not entries:
                raise
            return PartialFailure(last_applied_version="", failed_entry=entries[0], cause=exc)

        if not entries:
            _LOGGER.debug("Nothing to apply; installed version remains %s", last_applied)
            return ApplySuccess(last_applied)

        total = len(entries)
        _LOGGER.info("Applying %s update(s) starting from %s", total, last_applied)
        for index, entry in enumerate(entries, start=1):
            if cancel_event is not None and cancel_event.is_set():
                return self._failure(last_applied, entry, UpdateCancelledError("Update cancelled"))

            result = self._apply_entry(entry, index, total, cancel_event)
            if result.is_err():
                return self._failure(last_applied, entry, result.unwrap_error())
            last_applied = entry.version

        _LOGGER.info("All updates applied; installed version is now %s", last_applied)
        return ApplySuccess(last_applied)

    def _apply_entry(
        self,
        entry: CatalogEntry,
        index: int,
        total: int,
        cancel_event: threading.Event | None,
    ) -> Result[None, UpdateError]:
        label = f"Update {index}/{total}: {entry.description}"
        self._progress.report_progress(index, total, label)
        _LOGGER.info("Applying update %s (%s/%s) from %s", entry.version, index, total, entry.package_url)

        try:
            with scoped_temp_file() as download_path:
                downloaded = self._transport.download(
                    entry.package_url,
                    download_path,
                    self._progress.report_transfer,
                    cancel_event,
                )
                if downloaded.is_err():
                    return Result.err(downloaded.unwrap_error())

                self._progress.report_progress(index, total, "Extracting update...")
                extracted = self._extractor.extract(download_path, self._install_root, True)
                if extracted.is_err():
                    return Result.err(extracted.unwrap_error())
        except OSError as exc:
            return Result.err(FilesystemError(f"Failed to stage update {entry.version}: {exc}"))

        recorded = self._marker.write(entry.version)
        if recorded.is_err():
            return Result.err(recorded.unwrap_error())
        return Result.ok(None)

    def _failure(self, last_applied: str, entry: CatalogEntry, cause: UpdateError) -> PartialFailure:
        _LOGGER.error(
            "Update %s failed (%s); installed version remains %s",
            entry.version,
            cause,
            last_applied,
        )
        return PartialFailure(last_applied_version=last_applied, failed_entry=entry, cause=cause)
