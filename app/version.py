"""Release version of the running application."""

from __future__ import annotations

from functools import lru_cache
import os
import subprocess
import sys
from importlib import resources
from pathlib import Path

_FALLBACK_VERSION = "0.0.0-dev"
_VERSION_ENV = "CHAIN_UPDATER_APP_VERSION"
_VERSION_FILE = "VERSION"


def _read_version_file() -> str | None:
    try:
        text = resources.files(__package__).joinpath(_VERSION_FILE).read_text(encoding="utf-8")
    except (FileNotFoundError, ModuleNotFoundError, TypeError):
        return None
    return text.strip() or None


def _version_beside_executable() -> str | None:
    # A self-update swaps the frozen binary together with the stamp next to it.
    if not getattr(sys, "frozen", False):
        return None
    stamp = Path(sys.executable).resolve().with_name(_VERSION_FILE)
    try:
        text = stamp.read_text(encoding="utf-8")
    except OSError:
        return None
    return _normalize(text) if text.strip() else None


def _version_from_env() -> str | None:
    env_version = os.environ.get(_VERSION_ENV) or os.environ.get("GITHUB_REF_NAME")
    if not env_version or not env_version.strip():
        return None
    return _normalize(env_version)


def _version_from_git() -> str | None:
    try:
        output = subprocess.check_output(
            ["git", "describe", "--tags", "--abbrev=0"],
            stderr=subprocess.DEVNULL,
            text=True,
        )
    except (OSError, subprocess.CalledProcessError):
        return None
    tag = output.strip()
    return _normalize(tag) if tag else None


def _normalize(raw_version: str) -> str:
    version = raw_version.strip()
    if version[:1] in ("v", "V"):
        version = version[1:]
    return version


@lru_cache(maxsize=1)
def get_app_version() -> str:
    """Return the release version compared against published releases.

    Sources are tried in order: ``CHAIN_UPDATER_APP_VERSION`` or
    ``GITHUB_REF_NAME``, a ``VERSION`` stamp beside a frozen executable, the
    ``VERSION`` resource packaged with :mod:`app`, the latest tag reachable from
    a source checkout, and finally ``0.0.0-dev``.
    """

    for resolver in (_version_from_env, _version_beside_executable, _read_version_file, _version_from_git):
        version = resolver()
        if version:
            return version
    return _FALLBACK_VERSION


__all__ = ["get_app_version"]
