"""Archive extraction for downloaded update packages."""

from __future__ import annotations

import logging
import shutil
import zipfile
from pathlib import Path
from typing import Protocol

from services.update import constants
from services.update.models import ArchiveExtractionError
from shared.result import Result


_LOGGER = logging.getLogger(__name__)

__all__ = ["ArchiveExtractor", "ZipArchiveExtractor", "extract_zip_safely"]


class ArchiveExtractor(Protocol):
    """Capability that unpacks a downloaded package."""

    def extract(
        self, archive: Path, destination: Path, overwrite: bool
    ) -> Result[Path, ArchiveExtractionError]:
        """Unpack ``archive`` into ``destination`` and return ``destination``."""


class ZipArchiveExtractor:
    """Extract zip packages while enforcing size and path safety limits."""

    def __init__(
        self,
        *,
        max_total_bytes: int = constants.MAX_ARCHIVE_TOTAL_BYTES,
        max_file_size: int = constants.MAX_ARCHIVE_FILE_SIZE,
        max_entries: int = constants.MAX_ARCHIVE_ENTRIES,
        max_compression_ratio: int = constants.MAX_COMPRESSION_RATIO,
    ) -> None:
        self._max_total_bytes = max_total_bytes
        self._max_file_size = max_file_size
        self._max_entries = max_entries
        self._max_compression_ratio = max_compression_ratio

    def extract(
        self, archive: Path, destination: Path, overwrite: bool
    ) -> Result[Path, ArchiveExtractionError]:
        _LOGGER.info("Extracting update archive %s into %s", archive, destination)
        try:
            Path(destination).mkdir(parents=True, exist_ok=True)
            with zipfile.ZipFile(archive) as handle:
                extract_zip_safely(
                    handle,
                    Path(destination),
                    overwrite=overwrite,
                    max_total_bytes=self._max_total_bytes,
                    max_file_size=self._max_file_size,
                    max_entries=self._max_entries,
                    max_compression_ratio=self._max_compression_ratio,
                )
        except ArchiveExtractionError as exc:
            return Result.err(exc)
        except (OSError, zipfile.BadZipFile, zipfile.LargeZipFile) as exc:
            return Result.err(ArchiveExtractionError(f"Failed to extract update archive: {exc}"))
        return Result.ok(Path(destination))


def extract_zip_safely(
    archive: zipfile.ZipFile,
    target_dir: Path,
    *,
    overwrite: bool = True,
    max_total_bytes: int = constants.MAX_ARCHIVE_TOTAL_BYTES,
    max_file_size: int = constants.MAX_ARCHIVE_FILE_SIZE,
    max_entries: int = constants.MAX_ARCHIVE_ENTRIES,
    max_compression_ratio: int = constants.MAX_COMPRESSION_RATIO,
) -> None:
    root = target_dir.resolve()
    members = _checked_members(
        archive,
        root,
        overwrite=overwrite,
        max_total_bytes=max_total_bytes,
        max_file_size=max_file_size,
        max_entries=max_entries,
        max_compression_ratio=max_compression_ratio,
    )

    total_bytes = 0
    for member, destination in members:
        if member.is_dir():
            destination.mkdir(parents=True, exist_ok=True)
            continue
        destination.parent.mkdir(parents=True, exist_ok=True)
        with archive.open(member) as source, destination.open("wb") as target:
            shutil.copyfileobj(source, target)
        total_bytes += member.file_size
        _LOGGER.debug("Extracted archive member %s to %s", member.filename, destination)

    _LOGGER.info("Extracted %s entries totalling %s bytes", len(members), total_bytes)


def _checked_members(
    archive: zipfile.ZipFile,
    root: Path,
    *,
    overwrite: bool,
    max_total_bytes: int,
    max_file_size: int,
    max_entries: int,
    max_compression_ratio: int,
) -> list[tuple[zipfile.ZipInfo, Path]]:
    """Validate every member before anything is written to ``root``."""

    checked: list[tuple[zipfile.ZipInfo, Path]] = []
    total_bytes = 0
    for member in archive.infolist():
        name = member.filename
        if not name:
            continue
        if len(checked) >= max_entries:
            _LOGGER.error("Archive entry count exceeded limit %s", max_entries)
            raise ArchiveExtractionError("Update archive contained too many entries")
        path = Path(name)
        if path.is_absolute() or name.startswith(("/", "\\")):
            raise ArchiveExtractionError("Update archive contained an absolute path entry")
        destination = (root / path).resolve()
        try:
            destination.relative_to(root)
        except ValueError:
            raise ArchiveExtractionError("Update archive contained an unsafe relative path")
        if member.is_dir():
            checked.append((member, destination))
            continue
        if member.file_size > max_file_size:
            _LOGGER.error(
                "Archive member %s exceeded file size limit (%s > %s)",
                name,
                member.file_size,
                max_file_size,
            )
            raise ArchiveExtractionError("Update archive contained an oversized file")
        if member.compress_size == 0 and member.file_size > 0:
            _LOGGER.error("Archive member %s reported zero compression size", name)
            raise ArchiveExtractionError("Update archive contained a suspiciously compressed file")
        if (
            member.compress_size > 0
            and member.file_size > member.compress_size * max_compression_ratio
        ):
            _LOGGER.error(
                "Archive member %s exceeded compression ratio limit (%s > %s)",
                name,
                member.file_size,
                member.compress_size * max_compression_ratio,
            )
            raise ArchiveExtractionError("Update archive exceeded safe compression ratio")
        total_bytes += member.file_size
        if total_bytes > max_total_bytes:
            _LOGGER.error(
                "Archive expanded to %s bytes which exceeds limit %s",
                total_bytes,
                max_total_bytes,
            )
            raise ArchiveExtractionError("Update archive expanded beyond safe limits")
        if not overwrite and destination.exists():
            raise ArchiveExtractionError(f"Refusing to overwrite existing file {destination}")
        checked.append((member, destination))
    return checked
