from __future__ import annotations

import sys
from pathlib import Path

import pytest


def _ensure_project_root_on_path() -> None:
    """Guarantee the repository root is discoverable for absolute imports."""

    root = Path(__file__).resolve().parent.parent
    root_str = str(root)
    if root_str not in sys.path:
        sys.path.insert(0, root_str)

    tests_dir = root / "tests"
    tests_str = str(tests_dir)
    if tests_str not in sys.path:
        sys.path.insert(1, tests_str)


_ensure_project_root_on_path()


@pytest.fixture(autouse=True)
def _updater_env(monkeypatch: pytest.MonkeyPatch, tmp_path_factory: pytest.TempPathFactory):
    """Keep updater settings and log files away from the real user profile."""

    for name in (
        "CHAIN_UPDATER_SERVER_URL",
        "CHAIN_UPDATER_INSTALL_ROOT",
        "CHAIN_UPDATER_LOCAL_RELEASE_DIR",
        "CHAIN_UPDATER_LOG_FILE",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("CHAIN_UPDATER_LOG_DIR", str(tmp_path_factory.mktemp("logs")))
    yield
