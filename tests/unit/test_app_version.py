from __future__ import annotations

import subprocess

import pytest

import app.version as version_module
from app.version import get_app_version


@pytest.fixture(autouse=True)
def _reset_cache():
    get_app_version.cache_clear()  # type: ignore[attr-defined]
    yield
    get_app_version.cache_clear()  # type: ignore[attr-defined]


def test_get_app_version_prefers_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CHAIN_UPDATER_APP_VERSION", "v1.2.3")
    monkeypatch.setenv("GITHUB_REF_NAME", "v9.9.9")

    assert get_app_version() == "1.2.3"


def test_get_app_version_uses_git_tag(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("CHAIN_UPDATER_APP_VERSION", raising=False)
    monkeypatch.delenv("GITHUB_REF_NAME", raising=False)
    monkeypatch.setattr(version_module, "_read_version_file", lambda: None)
    monkeypatch.setattr(subprocess, "check_output", lambda *args, **kwargs: "V2.0.1\n")

    assert get_app_version() == "2.0.1"


def test_get_app_version_falls_back_to_dev_version(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("CHAIN_UPDATER_APP_VERSION", raising=False)
    monkeypatch.delenv("GITHUB_REF_NAME", raising=False)
    monkeypatch.setattr(version_module, "_read_version_file", lambda: None)

    def no_git(*args, **kwargs):
        raise FileNotFoundError("git")

    monkeypatch.setattr(subprocess, "check_output", no_git)

    assert get_app_version() == "0.0.0-dev"


def test_get_app_version_reads_stamp_beside_frozen_executable(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("CHAIN_UPDATER_APP_VERSION", raising=False)
    monkeypatch.delenv("GITHUB_REF_NAME", raising=False)
    executable = tmp_path / "chain-updater.exe"
    executable.write_bytes(b"")
    (tmp_path / "VERSION").write_text("v3.1.0\n", encoding="utf-8")
    monkeypatch.setattr(version_module.sys, "frozen", True, raising=False)
    monkeypatch.setattr(version_module.sys, "executable", str(executable))

    assert get_app_version() == "3.1.0"
