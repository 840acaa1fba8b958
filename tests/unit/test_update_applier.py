from __future__ import annotations

import os
import tempfile
import threading
from pathlib import Path

import pytest

from services.update.applier import UpdateApplier, scoped_temp_file
from services.update.archive import ZipArchiveExtractor
from services.update.catalog import parse_catalog
from services.update.installed_state import VersionMarker
from services.update.models import (
    ApplySuccess,
    ArchiveExtractionError,
    CatalogEntry,
    Chain,
    FilesystemError,
    NetworkError,
    PartialFailure,
    UpdateCancelledError,
)
from services.update.planner import UpdatePlanner
from services.update.transport import UrllibTransport
from tests.unit.update_service_test_utils import (
    FakeTransport,
    RecordingProgressSink,
    build_catalog,
    build_package,
    package_url,
    write_marker,
)


@pytest.fixture
def scratch_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(scratch))
    return scratch


def _setup(tmp_path: Path, versions: list[str], broken: set[str] = frozenset()):
    install_root = tmp_path / "install"
    write_marker(install_root, "3.2.6")
    responses: dict[str, bytes] = {}
    for version in versions:
        responses[package_url(version)] = b"not a zip" if version in broken else build_package(version)
    transport = FakeTransport(responses)
    marker = VersionMarker(install_root, "RetroRewind6")
    catalog = parse_catalog(build_catalog("3.2.6", *versions))
    return install_root, transport, marker, catalog


def test_apply_chain_extracts_each_package_and_records_progress(tmp_path: Path, scratch_dir: Path) -> None:
    install_root, transport, marker, catalog = _setup(tmp_path, ["3.2.7", "3.2.8"])
    progress = RecordingProgressSink()
    plan = UpdatePlanner().plan(marker.read(), catalog)
    applier = UpdateApplier(transport, ZipArchiveExtractor(), marker, install_root, progress=progress)

    result = applier.apply(plan)

    assert result == ApplySuccess("3.2.8")
    assert marker.read() == "3.2.8"
    assert (install_root / "RetroRewind6" / "patch-3.2.7.txt").exists()
    assert (install_root / "RetroRewind6" / "patch-3.2.8.txt").exists()
    assert progress.labels == [
        "Update 1/2: Update to 3.2.7",
        "Extracting update...",
        "Update 2/2: Update to 3.2.8",
        "Extracting update...",
    ]
    assert progress.transfers
    assert list(scratch_dir.iterdir()) == []


def test_failure_mid_chain_keeps_earlier_packages_and_resumes(tmp_path: Path, scratch_dir: Path) -> None:
    install_root, transport, marker, catalog = _setup(
        tmp_path, ["3.2.7", "3.2.8", "3.2.9"], broken={"3.2.8"}
    )
    planner = UpdatePlanner()
    applier = UpdateApplier(transport, ZipArchiveExtractor(), marker, install_root)

    result = applier.apply(planner.plan(marker.read(), catalog))

    assert isinstance(result, PartialFailure)
    assert result.last_applied_version == "3.2.7"
    assert result.failed_entry.version == "3.2.8"
    assert isinstance(result.cause, ArchiveExtractionError)
    assert marker.read() == "3.2.7"
    assert package_url("3.2.9") not in transport.requested
    assert list(scratch_dir.iterdir()) == []

    resumed = planner.plan(marker.read(), catalog)
    assert isinstance(resumed, Chain)
    assert [entry.version for entry in resumed] == ["3.2.8", "3.2.9"]


def test_download_failure_on_first_entry_leaves_marker_untouched(tmp_path: Path, scratch_dir: Path) -> None:
    install_root, transport, marker, catalog = _setup(tmp_path, ["3.2.7"])
    transport.responses[package_url("3.2.7")] = NetworkError("timed out", url=package_url("3.2.7"))
    applier = UpdateApplier(transport, ZipArchiveExtractor(), marker, install_root)

    result = applier.apply(UpdatePlanner().plan(marker.read(), catalog))

    assert isinstance(result, PartialFailure)
    assert result.last_applied_version == "3.2.6"
    assert isinstance(result.cause, NetworkError)
    assert marker.read() == "3.2.6"
    assert list(scratch_dir.iterdir()) == []


def test_unparsable_package_url_stops_chain_without_raising(tmp_path: Path, scratch_dir: Path) -> None:
    install_root = tmp_path / "install"
    write_marker(install_root, "3.2.6")
    marker = VersionMarker(install_root, "RetroRewind6")
    entry = CatalogEntry("3.2.7", "notaurl", "/RetroRewind6", "Fix tracks")
    applier = UpdateApplier(UrllibTransport(), ZipArchiveExtractor(), marker, install_root)

    result = applier.apply(Chain((entry,)))

    assert isinstance(result, PartialFailure)
    assert result.failed_entry == entry
    assert result.last_applied_version == "3.2.6"
    assert isinstance(result.cause, NetworkError)
    assert result.cause.url == "notaurl"
    assert marker.read() == "3.2.6"
    assert list(scratch_dir.iterdir()) == []


def test_marker_write_failure_is_reported_as_filesystem_error(
    tmp_path: Path, scratch_dir: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    install_root, transport, marker, catalog = _setup(tmp_path, ["3.2.7"])
    plan = UpdatePlanner().plan(marker.read(), catalog)

    def fail_replace(src, dst):
        raise PermissionError("read-only")

    monkeypatch.setattr(os, "replace", fail_replace)
    applier = UpdateApplier(transport, ZipArchiveExtractor(), marker, install_root)

    result = applier.apply(plan)

    assert isinstance(result, PartialFailure)
    assert isinstance(result.cause, FilesystemError)
    assert result.last_applied_version == "3.2.6"


def test_empty_chain_is_a_no_op(tmp_path: Path) -> None:
    install_root, transport, marker, _catalog = _setup(tmp_path, ["3.2.7"])
    applier = UpdateApplier(transport, ZipArchiveExtractor(), marker, install_root)

    first = applier.apply(Chain(()))
    second = applier.apply([])

    assert first == second == ApplySuccess("3.2.6")
    assert transport.downloads == []


def test_cancelled_apply_stops_before_downloading(tmp_path: Path, scratch_dir: Path) -> None:
    install_root, transport, marker, catalog = _setup(tmp_path, ["3.2.7", "3.2.8"])
    cancel_event = threading.Event()
    cancel_event.set()
    applier = UpdateApplier(transport, ZipArchiveExtractor(), marker, install_root)

    result = applier.apply(UpdatePlanner().plan(marker.read(), catalog), cancel_event)

    assert isinstance(result, PartialFailure)
    assert isinstance(result.cause, UpdateCancelledError)
    assert result.failed_entry.version == "3.2.7"
    assert transport.downloads == []


def test_scoped_temp_file_is_removed_when_block_raises(scratch_dir: Path) -> None:
    with pytest.raises(RuntimeError):
        with scoped_temp_file() as path:
            path.write_bytes(b"partial")
            raise RuntimeError("boom")

    assert not path.exists()
    assert list(scratch_dir.iterdir()) == []


def test_scoped_temp_file_cleanup_failure_does_not_mask_error(
    scratch_dir: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    def refuse_unlink(self, missing_ok=False):
        raise PermissionError("in use")

    with pytest.raises(ValueError, match="original"):
        with scoped_temp_file():
            monkeypatch.setattr(Path, "unlink", refuse_unlink)
            raise ValueError("original")
