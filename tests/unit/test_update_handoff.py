from __future__ import annotations

import os
import shutil
import subprocess
from pathlib import Path

import pytest

from services.update.handoff import DetachedLauncher, HandoffPlan, build_handoff_plan, write_handoff_script
from services.update.models import UpdateError


def test_powershell_script_waits_for_process_and_removes_itself(tmp_path: Path) -> None:
    script = write_handoff_script(tmp_path, windows=True)
    content = script.read_text(encoding="utf-8")

    assert script.name == "update-handoff.ps1"
    assert "while (Get-Process -Id $ProcessId" in content
    assert "Start-Sleep -Seconds" not in content
    assert "Invoke-WithRetry { Move-Item" in content
    assert "Write-FailureMarker" in content
    assert "Remove-Item -LiteralPath $PSCommandPath" in content


def test_posix_script_polls_pid_and_removes_itself(tmp_path: Path) -> None:
    script = write_handoff_script(tmp_path, windows=False)
    content = script.read_text(encoding="utf-8")

    assert content.startswith("#!/bin/sh\n")
    assert 'while kill -0 "$PROCESS_ID"' in content
    assert 'mv -f "$NEW_EXECUTABLE_PATH" "$EXECUTABLE_PATH"' in content
    assert 'rm -f "$SCRIPT_PATH"' in content
    if os.name != "nt":
        assert os.access(script, os.X_OK)


def test_windows_plan_runs_hidden_powershell(tmp_path: Path) -> None:
    exe = tmp_path / "WheelWizard.exe"
    staged = tmp_path / "WheelWizard_new.exe"
    log_path = tmp_path / "updater.log"
    marker = tmp_path / "WheelWizard.exe.update_failed.json"

    plan = build_handoff_plan(
        exe, staged, process_id=4242, log_path=log_path, failure_marker=marker, windows=True
    )

    command = list(plan.command)
    assert command[0] == "powershell"
    assert command[command.index("-WindowStyle") + 1] == "Hidden"
    assert command[command.index("-File") + 1] == str(plan.script_path)
    assert command[command.index("-ProcessId") + 1] == "4242"
    assert command[command.index("-NewExecutablePath") + 1] == str(staged)
    assert command[command.index("-LogPath") + 1] == str(log_path)
    assert command[command.index("-FailureMarkerPath") + 1] == str(marker)
    assert plan.working_directory == tmp_path


def test_windows_plan_omits_optional_arguments(tmp_path: Path) -> None:
    plan = build_handoff_plan(tmp_path / "a.exe", tmp_path / "a_new.exe", process_id=1, windows=True)

    assert "-LogPath" not in plan.command
    assert "-FailureMarkerPath" not in plan.command


def test_posix_plan_passes_positional_arguments(tmp_path: Path) -> None:
    exe = tmp_path / "wheelwizard"
    plan = build_handoff_plan(exe, tmp_path / "wheelwizard_new", process_id=77, windows=False)

    assert plan.command == (
        "/bin/sh",
        str(tmp_path / "update-handoff.sh"),
        "77",
        str(exe),
        str(tmp_path / "wheelwizard_new"),
        "",
        "",
    )


@pytest.mark.skipif(os.name == "nt" or shutil.which("sh") is None, reason="requires a POSIX shell")
def test_posix_handoff_swaps_binary_after_process_exit(tmp_path: Path) -> None:
    exe = tmp_path / "wheelwizard"
    staged = tmp_path / "wheelwizard_new"
    exe.write_text("#!/bin/sh\nexit 0\n", encoding="utf-8")
    staged.write_text("#!/bin/sh\n# new build\nexit 0\n", encoding="utf-8")
    exe.chmod(0o755)
    log_path = tmp_path / "updater.log"

    finished = subprocess.Popen(["/bin/sh", "-c", "exit 0"])
    finished.wait()
    plan = build_handoff_plan(exe, staged, process_id=finished.pid, log_path=log_path, windows=False)

    subprocess.run(list(plan.command), check=True, timeout=30)

    assert "# new build" in exe.read_text(encoding="utf-8")
    assert not staged.exists()
    assert not plan.script_path.exists()
    assert "Handoff completed successfully." in log_path.read_text(encoding="utf-8")


def test_detached_launcher_wraps_spawn_errors(tmp_path: Path) -> None:
    plan = HandoffPlan(command=(str(tmp_path / "does-not-exist"),), script_path=tmp_path / "x.sh")

    with pytest.raises(UpdateError, match="Failed to launch update handoff"):
        DetachedLauncher().launch(plan)
