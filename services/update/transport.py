"""HTTP transport used to fetch catalogs, release metadata and packages."""

from __future__ import annotations

import logging
import threading
from http.client import HTTPException
from pathlib import Path
from typing import Callable, Protocol
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from services.update.constants import DEFAULT_REQUEST_TIMEOUT, DOWNLOAD_CHUNK_SIZE, USER_AGENT
from services.update.models import FilesystemError, NetworkError, UpdateCancelledError, UpdateError
from shared.result import Result


_LOGGER = logging.getLogger(__name__)

__all__ = ["Transport", "TransferCallback", "UrllibTransport"]


# Raised by urllib for unparsable URLs (ValueError) and broken HTTP framing.
_CONNECTION_ERRORS = (URLError, OSError, HTTPException, ValueError)


TransferCallback = Callable[[int, "int | None"], None]


class Transport(Protocol):
    """Network capability the update components depend on."""

    def fetch_text(self, url: str) -> Result[str, NetworkError]:
        """Return the body of ``url`` decoded as UTF-8."""

    def fetch_bytes(self, url: str) -> Result[bytes, NetworkError]:
        """Return the raw body of ``url``."""

    def download(
        self,
        url: str,
        destination: Path,
        on_progress: TransferCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> Result[Path, UpdateError]:
        """Stream ``url`` into ``destination``, reporting received bytes."""

    def probe(self, url: str, timeout: float | None = None) -> Result[int, NetworkError]:
        """Return the HTTP status code ``url`` answers with."""


class UrllibTransport:
    """:class:`Transport` backed by :mod:`urllib.request`.

    Instances are owned by the caller; nothing is shared between them.
    """

    def __init__(
        self,
        *,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        user_agent: str = USER_AGENT,
        chunk_size: int = DOWNLOAD_CHUNK_SIZE,
    ) -> None:
        self._timeout = timeout
        self._user_agent = user_agent
        self._chunk_size = chunk_size

    @property
    def timeout(self) -> float:
        return self._timeout

    def fetch_text(self, url: str) -> Result[str, NetworkError]:
        result = self.fetch_bytes(url)
        if result.is_err():
            return Result.err(result.unwrap_error())
        try:
            return Result.ok(result.unwrap().decode("utf-8-sig"))
        except UnicodeDecodeError as exc:
            return Result.err(NetworkError(f"Response from {url} was not UTF-8 text: {exc}", url=url))

    def fetch_bytes(self, url: str) -> Result[bytes, NetworkError]:
        _LOGGER.debug("Fetching %s", url)
        try:
            with urlopen(self._request(url), timeout=self._timeout) as response:  # nosec - configured update host
                return Result.ok(response.read())
        except HTTPError as exc:
            return Result.err(self._status_error(url, exc))
        except _CONNECTION_ERRORS as exc:
            return Result.err(self._connection_error(url, exc))

    def download(
        self,
        url: str,
        destination: Path,
        on_progress: TransferCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> Result[Path, UpdateError]:
        _LOGGER.info("Downloading %s to %s", url, destination)
        try:
            response = urlopen(self._request(url), timeout=self._timeout)  # nosec - configured update host
        except HTTPError as exc:
            return Result.err(self._status_error(url, exc))
        except _CONNECTION_ERRORS as exc:
            return Result.err(self._connection_error(url, exc))

        with response:
            expected = _content_length(response)
            received = 0
            try:
                target = Path(destination).open("wb")
            except OSError as exc:
                return Result.err(FilesystemError(f"Failed to open {destination} for writing: {exc}"))
            with target:
                while True:
                    if cancel_event is not None and cancel_event.is_set():
                        _LOGGER.info("Download of %s cancelled after %s bytes", url, received)
                        return Result.err(UpdateCancelledError("Download cancelled"))
                    try:
                        chunk = response.read(self._chunk_size)
                    except (OSError, HTTPException) as exc:
                        return Result.err(self._connection_error(url, exc))
                    if not chunk:
                        break
                    try:
                        target.write(chunk)
                    except OSError as exc:
                        return Result.err(FilesystemError(f"Failed to write {destination}: {exc}"))
                    received += len(chunk)
                    if on_progress is not None:
                        on_progress(received, expected)

        if expected is not None and received < expected:
            return Result.err(
                NetworkError(
                    f"Download of {url} ended after {received} of {expected} bytes",
                    url=url,
                )
            )
        _LOGGER.debug("Downloaded %s bytes from %s", received, url)
        return Result.ok(Path(destination))

    def probe(self, url: str, timeout: float | None = None) -> Result[int, NetworkError]:
        try:
            with urlopen(self._request(url), timeout=timeout or self._timeout) as response:  # nosec - configured update host
                status = getattr(response, "status", None)
                return Result.ok(int(status) if status is not None else 200)
        except HTTPError as exc:
            return Result.ok(int(exc.code))
        except _CONNECTION_ERRORS as exc:
            return Result.err(self._connection_error(url, exc))

    def _request(self, url: str) -> Request:
        return Request(url, headers={"User-Agent": self._user_agent})

    def _status_error(self, url: str, exc: HTTPError) -> NetworkError:
        _LOGGER.warning("Request to %s failed with status %s", url, exc.code)
        return NetworkError(
            f"Request to {url} failed with status {exc.code} {exc.reason}",
            url=url,
            status_code=exc.code,
        )

    def _connection_error(self, url: str, exc: BaseException) -> NetworkError:
        reason = getattr(exc, "reason", exc)
        _LOGGER.warning("Request to %s failed: %s", url, reason)
        return NetworkError(f"Request to {url} failed: {reason}", url=url)


def _content_length(response) -> int | None:
    raw = response.headers.get("Content-Length") if response.headers else None
    if raw is None:
        return None
    try:
        length = int(raw)
    except ValueError:
        return None
    return length if length >= 0 else None
