"""Updater configuration loaded from JSON resources and the environment."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, replace
from importlib import resources
from math import isfinite
from pathlib import Path
from typing import Any, Mapping

from services.update import constants

_CONFIG_RESOURCE = "updater.json"
_UPDATER_CONFIG_CACHE: UpdaterConfig | None = None


@dataclass(frozen=True)
class UpdaterConfig:
    """Structured configuration values for the updater."""

    server_url: str
    catalog_path: str
    full_package_path: str
    install_root: Path | None
    product_subpath: str
    floor_version: str
    release_api_url: str
    local_release_dir: Path | None
    request_timeout: float
    preserve_globs: tuple[str, ...]
    auto_check: bool

    @property
    def catalog_url(self) -> str:
        return _join_url(self.server_url, self.catalog_path)

    @property
    def full_package_url(self) -> str:
        return _join_url(self.server_url, self.full_package_path)


def get_updater_config() -> UpdaterConfig:
    """Return the cached updater configuration."""

    global _UPDATER_CONFIG_CACHE
    if _UPDATER_CONFIG_CACHE is None:
        _UPDATER_CONFIG_CACHE = load_updater_config()
    return _UPDATER_CONFIG_CACHE


def reset_updater_config_cache() -> None:
    """Reset the cached configuration for subsequent reloads."""

    global _UPDATER_CONFIG_CACHE
    _UPDATER_CONFIG_CACHE = None


def load_updater_config(
    path: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> UpdaterConfig:
    """Load configuration from ``path`` or the bundled JSON resource.

    ``CHAIN_UPDATER_SERVER_URL``, ``CHAIN_UPDATER_INSTALL_ROOT`` and
    ``CHAIN_UPDATER_LOCAL_RELEASE_DIR`` override the file values.
    """

    data = _read_config_data(path)
    config = _parse_config(data)
    return _apply_environment(config, os.environ if environ is None else environ)


def _parse_config(data: Mapping[str, Any]) -> UpdaterConfig:
    content = data.get("content") if isinstance(data.get("content"), Mapping) else {}
    release = data.get("release") if isinstance(data.get("release"), Mapping) else {}
    network = data.get("network") if isinstance(data.get("network"), Mapping) else {}

    return UpdaterConfig(
        server_url=_coerce_text(content.get("server_url"), default=""),
        catalog_path=_coerce_text(content.get("catalog_path"), default=constants.DEFAULT_CATALOG_PATH),
        full_package_path=_coerce_text(
            content.get("full_package_path"), default=constants.DEFAULT_FULL_PACKAGE_PATH
        ),
        install_root=_coerce_path(content.get("install_root")),
        product_subpath=_coerce_text(
            content.get("product_subpath"), default=constants.DEFAULT_PRODUCT_SUBPATH
        ),
        floor_version=_coerce_text(content.get("floor_version"), default=constants.DEFAULT_FLOOR_VERSION),
        release_api_url=_coerce_text(release.get("api_url"), default=constants.API_URL),
        local_release_dir=_coerce_path(release.get("local_dir")),
        request_timeout=_coerce_positive_float(
            network.get("timeout_seconds"), default=constants.DEFAULT_REQUEST_TIMEOUT
        ),
        preserve_globs=_coerce_text_tuple(
            content.get("preserve_globs"), default=constants.DEFAULT_PRESERVE_GLOBS
        ),
        auto_check=_coerce_bool(data.get("auto_check"), default=True),
    )


def _apply_environment(config: UpdaterConfig, environ: Mapping[str, str]) -> UpdaterConfig:
    overrides: dict[str, Any] = {}
    server_url = environ.get(constants.SERVER_URL_ENV)
    if server_url and server_url.strip():
        overrides["server_url"] = server_url.strip()
    install_root = _coerce_path(environ.get(constants.INSTALL_ROOT_ENV))
    if install_root is not None:
        overrides["install_root"] = install_root
    local_dir = _coerce_path(environ.get(constants.LOCAL_RELEASE_ENV))
    if local_dir is not None:
        overrides["local_release_dir"] = local_dir
    return replace(config, **overrides) if overrides else config


def _read_config_data(path: str | Path | None) -> Mapping[str, Any]:
    if path is not None:
        return _load_json_from_path(Path(path).expanduser())
    return _load_default_config_data()


def _load_json_from_path(path: Path) -> Mapping[str, Any]:
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError:
        return {}
    return _parse_json(raw)


def _load_default_config_data() -> Mapping[str, Any]:
    try:
        resource = resources.files(__package__).joinpath(_CONFIG_RESOURCE)
        raw = resource.read_text(encoding="utf-8")
    except (FileNotFoundError, OSError):
        return {}
    return _parse_json(raw)


def _parse_json(raw: str) -> Mapping[str, Any]:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    if isinstance(parsed, Mapping):
        return parsed
    return {}


def _coerce_text(value: Any, *, default: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def _coerce_path(value: Any) -> Path | None:
    if isinstance(value, str) and value.strip():
        return Path(value.strip()).expanduser()
    return None


def _coerce_text_tuple(value: Any, *, default: tuple[str, ...]) -> tuple[str, ...]:
    if not isinstance(value, list):
        return default
    return tuple(item.strip() for item in value if isinstance(item, str) and item.strip())


def _coerce_bool(value: Any, *, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    return default


def _coerce_positive_float(value: Any, *, default: float) -> float:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        candidate = float(value)
    elif isinstance(value, str):
        try:
            candidate = float(value.strip())
        except ValueError:
            return default
    else:
        return default
    if not isfinite(candidate) or candidate <= 0:
        return default
    return candidate


def _join_url(base: str, path: str) -> str:
    if not base:
        return ""
    if path.startswith(("http://", "https://")):
        return path
    return f"{base.rstrip('/')}/{path.lstrip('/')}"


__all__ = [
    "UpdaterConfig",
    "get_updater_config",
    "load_updater_config",
    "reset_updater_config_cache",
]
