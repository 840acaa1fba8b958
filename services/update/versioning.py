"""Helpers for comparing content and release versions.

Content versions are plain dotted integers (``3.2.6``) and identify installed
package states. Release versions follow semantic versioning and identify
builds of the host application. The two families never share a comparator.
"""

from __future__ import annotations

import re

from packaging.version import InvalidVersion, Version

from services.update.models import InvalidVersionError


__all__ = [
    "compare_content_versions",
    "compare_release_versions",
    "content_sort_key",
    "is_release_newer",
    "normalize_release_tag",
    "parse_content_version",
]


_RELEASE_PREFIX = re.compile(r"^[^0-9]+")
_SEMVER = re.compile(
    r"^(?P<core>\d+(?:\.\d+)*)"
    r"(?:-(?P<pre>[0-9A-Za-z.-]+))?"
    r"(?:\+[0-9A-Za-z.-]+)?$"
)


def parse_content_version(text: str) -> tuple[int, ...]:
    """Return the integer components of the dotted content version ``text``."""

    if not isinstance(text, str):
        raise InvalidVersionError(f"Version must be a string, got {type(text).__name__}")
    stripped = text.strip()
    if not stripped:
        raise InvalidVersionError("Version string is empty")
    components: list[int] = []
    for part in stripped.split("."):
        if not part.isdigit() or not part.isascii():
            raise InvalidVersionError(f"Invalid version component {part!r} in {text!r}")
        components.append(int(part))
    return tuple(components)


def compare_content_versions(a: str, b: str) -> int:
    """Return ``-1``, ``0`` or ``1`` as content version ``a`` is older, equal or newer than ``b``.

    The shorter version is padded with zeros, so ``3.2`` equals ``3.2.0``.
    """

    left = parse_content_version(a)
    right = parse_content_version(b)
    length = max(len(left), len(right))
    for index in range(length):
        left_part = left[index] if index < len(left) else 0
        right_part = right[index] if index < len(right) else 0
        if left_part != right_part:
            return 1 if left_part > right_part else -1
    return 0


def content_sort_key(text: str) -> tuple[int, ...]:
    """Sort key for content versions; equal versions produce equal keys."""

    components = list(parse_content_version(text))
    while len(components) > 1 and components[-1] == 0:
        components.pop()
    return tuple(components)


def normalize_release_tag(tag: str) -> str:
    """Strip a leading non-numeric prefix such as ``v`` from a release tag."""

    return _RELEASE_PREFIX.sub("", tag.strip())


def compare_release_versions(current: str, candidate: str) -> int:
    """Compare release ``candidate`` against ``current``.

    Returns ``1`` when ``candidate`` is newer, ``-1`` when it is older and ``0``
    when both have the same precedence. Plain tags are parsed with
    ``packaging``; hyphenated SemVer tags and strings PEP 440 rejects use
    SemVer 2.0 precedence.
    """

    current_text = normalize_release_tag(current)
    candidate_text = normalize_release_tag(candidate)
    if candidate_text == current_text:
        return 0

    # ``-pre`` and ``+build`` suffixes follow SemVer, not PEP 440 post/local rules.
    if any(marker in text for text in (current_text, candidate_text) for marker in "-+"):
        return _compare_semver(current_text, candidate_text)

    try:
        current_version = Version(current_text)
        candidate_version = Version(candidate_text)
    except InvalidVersion:
        return _compare_semver(current_text, candidate_text)

    if candidate_version == current_version:
        return 0
    if candidate_version > current_version:
        return 1
    return -1


def is_release_newer(current: str, candidate: str) -> bool:
    """Return ``True`` if release ``candidate`` is newer than ``current``."""

    return compare_release_versions(current, candidate) > 0


def _compare_semver(current: str, candidate: str) -> int:
    current_core, current_pre = _split_semver(current)
    candidate_core, candidate_pre = _split_semver(candidate)

    length = max(len(current_core), len(candidate_core), 3)
    current_padded = current_core + (0,) * (length - len(current_core))
    candidate_padded = candidate_core + (0,) * (length - len(candidate_core))
    if candidate_padded != current_padded:
        return 1 if candidate_padded > current_padded else -1

    # A release without a pre-release label outranks any pre-release of it.
    if current_pre == candidate_pre:
        return 0
    if not candidate_pre:
        return 1
    if not current_pre:
        return -1
    return _compare_prerelease(current_pre, candidate_pre)


def _split_semver(text: str) -> tuple[tuple[int, ...], tuple[str, ...]]:
    match = _SEMVER.match(text)
    if match is None:
        raise InvalidVersionError(f"Invalid release version {text!r}")
    core = tuple(int(part) for part in match.group("core").split("."))
    pre = match.group("pre")
    identifiers = tuple(pre.split(".")) if pre else ()
    return core, identifiers


def _compare_prerelease(current: tuple[str, ...], candidate: tuple[str, ...]) -> int:
    for current_id, candidate_id in zip(current, candidate):
        if current_id == candidate_id:
            continue
        current_numeric = current_id.isdigit()
        candidate_numeric = candidate_id.isdigit()
        if current_numeric and candidate_numeric:
            return 1 if int(candidate_id) > int(current_id) else -1
        if current_numeric != candidate_numeric:
            # Numeric identifiers have lower precedence than alphanumeric ones.
            return 1 if current_numeric else -1
        return 1 if candidate_id > current_id else -1
    if len(candidate) == len(current):
        return 0
    return 1 if len(candidate) > len(current) else -1
