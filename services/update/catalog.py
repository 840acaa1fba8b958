"""Parse the plain-text update catalog published by the content server."""

from __future__ import annotations

import logging
from typing import Callable, Iterator

from services.update.models import CatalogEntry


_LOGGER = logging.getLogger(__name__)

__all__ = ["Catalog", "iter_catalog_entries", "parse_catalog"]

_FIELD_COUNT = 4


def iter_catalog_entries(
    raw_text: str,
    on_skip: Callable[[int, str], None] | None = None,
) -> Iterator[CatalogEntry]:
    """Yield catalog entries from ``raw_text`` in line order.

    Each non-empty line holds ``<version> <url> <path> <description...>``. Lines
    with fewer than four fields are skipped and reported through ``on_skip``.
    """

    for line_number, line in enumerate(raw_text.splitlines(), start=1):
        stripped = line.strip()
        if not stripped:
            continue
        parts = stripped.split(None, _FIELD_COUNT - 1)
        if len(parts) < _FIELD_COUNT:
            _LOGGER.debug("Skipping malformed catalog line %s: %r", line_number, stripped)
            if on_skip is not None:
                on_skip(line_number, stripped)
            continue
        version, url, path, description = (part.strip() for part in parts)
        yield CatalogEntry(
            version=version,
            package_url=url,
            install_path=path,
            description=description,
        )


class Catalog:
    """Restartable view over raw catalog text.

    Every iteration parses the text again, so the catalog can be walked any
    number of times with identical results.
    """

    def __init__(self, raw_text: str) -> None:
        self._raw_text = raw_text

    def __iter__(self) -> Iterator[CatalogEntry]:
        return iter_catalog_entries(self._raw_text)

    def __repr__(self) -> str:
        return f"Catalog(entries={len(self.entries())}, skipped_lines={self.skipped_lines})"

    @property
    def raw_text(self) -> str:
        return self._raw_text

    def entries(self) -> tuple[CatalogEntry, ...]:
        return tuple(self)

    @property
    def skipped_lines(self) -> int:
        skipped: list[int] = []
        for _ in iter_catalog_entries(self._raw_text, lambda number, _line: skipped.append(number)):
            pass
        return len(skipped)


def parse_catalog(raw_text: str) -> Catalog:
    """Return a :class:`Catalog` for ``raw_text``."""

    catalog = Catalog(raw_text)
    skipped = catalog.skipped_lines
    if skipped:
        _LOGGER.info("Ignored %s malformed catalog line(s)", skipped)
    return catalog
