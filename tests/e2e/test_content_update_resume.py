from __future__ import annotations

import tempfile
from dataclasses import dataclass, field
from pathlib import Path

import pytest
from pytest_bdd import given, parsers, scenarios, then, when

from services.update import (
    ApplyResult,
    Chain,
    FullReinstallRequired,
    PartialFailure,
    PlanResult,
    UpdateService,
    ZipArchiveExtractor,
)
from tests.unit.update_service_test_utils import (
    SERVER,
    FakeTransport,
    build_catalog,
    build_package,
    package_url,
    write_marker,
)


pytestmark = [pytest.mark.e2e]

scenarios("content_update_resume.feature")


CATALOG_URL = f"{SERVER}/RetroRewind/RetroRewindVersion.txt"


@dataclass
class UpdaterWorld:
    install_root: Path
    scratch: Path
    transport: FakeTransport = field(default_factory=FakeTransport)
    plan: PlanResult | None = None
    outcome: ApplyResult | None = None

    def service(self) -> UpdateService:
        return UpdateService(
            self.transport,
            ZipArchiveExtractor(),
            install_root=self.install_root,
            product_subpath="RetroRewind6",
            server_url=SERVER,
            catalog_url=CATALOG_URL,
            full_package_url=f"{SERVER}/RetroRewind/zip/RetroRewind.zip",
        )


@pytest.fixture
def world(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> UpdaterWorld:
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(scratch))
    return UpdaterWorld(install_root=tmp_path / "install", scratch=scratch)


@given(parsers.parse('the installed content version is "{version}"'))
def installed_version(world: UpdaterWorld, version: str) -> None:
    write_marker(world.install_root, version)


@given(parsers.parse('the server publishes versions "{versions}"'))
def published_versions(world: UpdaterWorld, versions: str) -> None:
    listed = [version.strip() for version in versions.split(",")]
    world.transport.responses[CATALOG_URL] = build_catalog(*listed)
    for version in listed:
        world.transport.responses[package_url(version)] = build_package(version)


@given(parsers.parse('the package for "{version}" is corrupt'))
def corrupt_package(world: UpdaterWorld, version: str) -> None:
    world.transport.responses[package_url(version)] = b"truncated download"


@when(parsers.parse('the package for "{version}" is repaired'))
def repair_package(world: UpdaterWorld, version: str) -> None:
    world.transport.responses[package_url(version)] = build_package(version)


@when("the updater applies pending updates")
def apply_pending_updates(world: UpdaterWorld) -> None:
    service = world.service()
    world.plan = service.check_for_content_update().unwrap()
    world.outcome = None
    if isinstance(world.plan, Chain):
        world.outcome = service.apply_content_update(world.plan)


@then(parsers.parse('the update stops at "{failed}" with "{installed}" installed'))
def update_stopped(world: UpdaterWorld, failed: str, installed: str) -> None:
    assert isinstance(world.outcome, PartialFailure)
    assert world.outcome.failed_entry.version == failed
    assert world.outcome.last_applied_version == installed
    assert world.service().installed_version() == installed


@then(parsers.parse('the installed content version is "{version}"'))
def installed_version_is(world: UpdaterWorld, version: str) -> None:
    assert world.service().installed_version() == version


@then("no temporary update files remain")
def no_temporary_files(world: UpdaterWorld) -> None:
    assert list(world.scratch.iterdir()) == []


@then("no packages were downloaded")
def nothing_downloaded(world: UpdaterWorld) -> None:
    assert world.transport.downloads == []


@then("a full install is required")
def full_install_required(world: UpdaterWorld) -> None:
    assert isinstance(world.plan, FullReinstallRequired)
    assert world.outcome is None
