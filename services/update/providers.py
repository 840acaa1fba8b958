"""Release metadata providers for application self-update."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Protocol

from services.update.constants import API_URL
from services.update.models import ReleaseMetadata, UpdateError
from services.update.transport import Transport
from services.update.versioning import normalize_release_tag
from shared.result import Result


_LOGGER = logging.getLogger(__name__)

__all__ = ["GitHubReleaseProvider", "LocalFolderReleaseProvider", "ReleaseProvider"]


class ReleaseProvider(Protocol):
    """Protocol describing release metadata providers."""

    def fetch_latest(self) -> Result[ReleaseMetadata, UpdateError]:
        """Return the newest published release."""


class GitHubReleaseProvider:
    """Fetch release metadata from the GitHub Releases API.

    The first published asset is taken as the application binary; asset
    names are not inspected.
    """

    def __init__(self, transport: Transport, api_url: str = API_URL) -> None:
        self._transport = transport
        self._api_url = api_url

    def fetch_latest(self) -> Result[ReleaseMetadata, UpdateError]:
        response = self._transport.fetch_text(self._api_url)
        if response.is_err():
            return Result.err(response.unwrap_error())
        try:
            payload = json.loads(response.unwrap())
        except json.JSONDecodeError as exc:
            return Result.err(UpdateError(f"Release metadata was not valid JSON: {exc}"))
        return parse_release_payload(payload)


def parse_release_payload(payload: object) -> Result[ReleaseMetadata, UpdateError]:
    """Build :class:`ReleaseMetadata` from a GitHub release JSON object."""

    if not isinstance(payload, dict):
        return Result.err(UpdateError("Release metadata was not a JSON object"))

    tag = str(payload.get("tag_name") or "").strip()
    if not tag:
        return Result.err(UpdateError("Release metadata is missing a tag name"))

    assets = payload.get("assets") or []
    if not isinstance(assets, list) or not assets or not isinstance(assets[0], dict):
        return Result.err(UpdateError(f"Release {tag} does not publish any assets"))
    asset = assets[0]
    download_url = asset.get("browser_download_url")
    if not isinstance(download_url, str) or not download_url.strip():
        return Result.err(UpdateError(f"Release {tag} asset is missing a download URL"))

    _LOGGER.info("GitHub release %s publishes asset %s", tag, asset.get("name"))
    return Result.ok(
        ReleaseMetadata(
            tag=tag,
            version=normalize_release_tag(tag),
            download_url=download_url.strip(),
            asset_name=str(asset.get("name")) if asset.get("name") else None,
            release_notes=_clean_release_notes(payload.get("body")),
        )
    )


class LocalFolderReleaseProvider:
    """Serve release metadata from a local directory for testing."""

    def __init__(self, folder: Path) -> None:
        self._folder = Path(folder)

    def fetch_latest(self) -> Result[ReleaseMetadata, UpdateError]:
        metadata_path = self._folder / "release.json"
        try:
            data = json.loads(metadata_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return Result.err(UpdateError(f"Local release metadata missing: {metadata_path}"))
        except (OSError, json.JSONDecodeError) as exc:
            return Result.err(UpdateError(f"Failed to read local release metadata: {exc}"))

        if not isinstance(data, dict):
            return Result.err(UpdateError("Local release metadata was not a JSON object"))
        tag = str(data.get("version", "")).strip()
        binary_name = str(data.get("binary", "")).strip()
        if not tag or not binary_name:
            return Result.err(
                UpdateError(f"Local release metadata incomplete: version={tag!r} binary={binary_name!r}")
            )

        binary_path = self._folder / binary_name
        if not binary_path.is_file():
            return Result.err(UpdateError(f"Local release binary missing: {binary_path}"))

        _LOGGER.info("Local release %s will supply binary %s", tag, binary_name)
        return Result.ok(
            ReleaseMetadata(
                tag=tag,
                version=normalize_release_tag(tag),
                download_url=binary_path.resolve().as_uri(),
                asset_name=binary_name,
                release_notes=_clean_release_notes(data.get("release_notes") or data.get("notes")),
            )
        )


def _clean_release_notes(raw: object) -> str | None:
    if not isinstance(raw, str):
        return None
    cleaned = raw.strip()
    return cleaned or None
