from __future__ import annotations

import io
import threading
from http.client import IncompleteRead
from pathlib import Path
from urllib.error import HTTPError

import pytest

from services.update.models import NetworkError, UpdateCancelledError
from services.update.transport import UrllibTransport


class _FakeResponse(io.BytesIO):
    def __init__(self, payload: bytes, headers: dict[str, str] | None = None, status: int = 200) -> None:
        super().__init__(payload)
        self.headers = headers or {}
        self.status = status


def _serve(monkeypatch: pytest.MonkeyPatch, response) -> list:
    requests: list = []

    def fake_urlopen(request, timeout=None):
        requests.append((request, timeout))
        if isinstance(response, BaseException):
            raise response
        return response

    monkeypatch.setattr("services.update.transport.urlopen", fake_urlopen)
    return requests


def test_fetch_text_reads_file_urls(tmp_path: Path) -> None:
    catalog = tmp_path / "RetroRewindVersion.txt"
    catalog.write_bytes("\ufeff3.2.7 u p desc\n".encode("utf-8"))

    result = UrllibTransport().fetch_text(catalog.as_uri())

    assert result.unwrap() == "3.2.7 u p desc\n"


def test_missing_file_is_a_network_error(tmp_path: Path) -> None:
    url = (tmp_path / "missing.txt").as_uri()

    result = UrllibTransport().fetch_bytes(url)

    error = result.unwrap_error()
    assert isinstance(error, NetworkError)
    assert error.url == url
    assert error.status_code is None


def test_http_error_status_is_preserved(monkeypatch: pytest.MonkeyPatch) -> None:
    url = "https://updates.example.test/RetroRewind/RetroRewindVersion.txt"
    _serve(monkeypatch, HTTPError(url, 503, "Service Unavailable", None, None))

    error = UrllibTransport().fetch_text(url).unwrap_error()

    assert error.status_code == 503
    assert "network issues" in error.user_message


def test_server_error_user_message_is_generic() -> None:
    error = NetworkError("boom", url="https://x", status_code=500)

    assert error.user_message.startswith("An error occurred while checking for updates.")


def test_requests_carry_user_agent_and_timeout(monkeypatch: pytest.MonkeyPatch) -> None:
    requests = _serve(monkeypatch, _FakeResponse(b"ok"))

    UrllibTransport(timeout=12.5, user_agent="tester").fetch_bytes("https://x/file")

    request, timeout = requests[0]
    assert request.get_header("User-agent") == "tester"
    assert timeout == 12.5


def test_download_streams_chunks_and_reports_progress(tmp_path: Path) -> None:
    source = tmp_path / "package.zip"
    source.write_bytes(b"x" * 10)
    destination = tmp_path / "download.zip"
    progress: list[tuple[int, int | None]] = []

    result = UrllibTransport(chunk_size=4).download(
        source.as_uri(), destination, lambda received, expected: progress.append((received, expected))
    )

    assert result.unwrap() == destination
    assert destination.read_bytes() == b"x" * 10
    assert progress == [(4, 10), (8, 10), (10, 10)]


def test_download_honours_cancel_event(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    _serve(monkeypatch, _FakeResponse(b"payload", {"Content-Length": "7"}))
    cancel_event = threading.Event()
    cancel_event.set()

    result = UrllibTransport().download("https://x/p.zip", tmp_path / "p.zip", cancel_event=cancel_event)

    assert isinstance(result.unwrap_error(), UpdateCancelledError)


def test_download_detects_truncated_body(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    _serve(monkeypatch, _FakeResponse(b"part", {"Content-Length": "10"}))

    result = UrllibTransport().download("https://x/p.zip", tmp_path / "p.zip")

    error = result.unwrap_error()
    assert isinstance(error, NetworkError)
    assert "4 of 10 bytes" in str(error)


def test_probe_returns_status_codes(monkeypatch: pytest.MonkeyPatch) -> None:
    _serve(monkeypatch, HTTPError("https://x", 404, "Not Found", None, None))

    assert UrllibTransport().probe("https://x", timeout=5.0).unwrap() == 404


def test_probe_reports_unreachable_hosts(tmp_path: Path) -> None:
    result = UrllibTransport().probe((tmp_path / "nowhere").as_uri())

    assert isinstance(result.unwrap_error(), NetworkError)


@pytest.mark.parametrize("url", ["notaurl", "", "ftp-less/path/p.zip"])
def test_unparsable_urls_are_network_errors(tmp_path: Path, url: str) -> None:
    transport = UrllibTransport()

    assert isinstance(transport.fetch_text(url).unwrap_error(), NetworkError)
    assert isinstance(transport.probe(url).unwrap_error(), NetworkError)
    download = transport.download(url, tmp_path / "p.zip")
    assert isinstance(download.unwrap_error(), NetworkError)
    assert download.unwrap_error().url == url
    assert not (tmp_path / "p.zip").exists()


def test_broken_http_framing_during_download_is_a_network_error(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    class _BrokenResponse(_FakeResponse):
        def read(self, size: int = -1) -> bytes:
            raise IncompleteRead(b"par", 7)

    _serve(monkeypatch, _BrokenResponse(b"", {"Content-Length": "10"}))

    result = UrllibTransport().download("https://x/p.zip", tmp_path / "p.zip")

    assert isinstance(result.unwrap_error(), NetworkError)
