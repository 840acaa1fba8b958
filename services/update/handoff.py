"""Generate and launch the detached process that swaps in a new executable."""

from __future__ import annotations

import logging
import os
import subprocess
import textwrap
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, Tuple

from services.update.constants import HANDOFF_SCRIPT_STEM
from services.update.models import UpdateError


__all__ = [
    "HandoffLauncher",
    "HandoffPlan",
    "DetachedLauncher",
    "build_handoff_plan",
    "write_handoff_script",
]


_LOGGER = logging.getLogger(__name__)


_POWERSHELL_SCRIPT = textwrap.dedent(
    """
    param(
        [int]$ProcessId,
        [string]$ExecutablePath,
        [string]$NewExecutablePath,
        [string]$LogPath = '',
        [string]$FailureMarkerPath = ''
    )

    $ErrorActionPreference = 'Stop'

    function Write-Log {
        param([string]$Message)

        $timestamp = Get-Date -Format 'yyyy-MM-dd HH:mm:ss'
        $line = "$timestamp [handoff] $Message"

        if ($LogPath -ne '') {
            try {
                Add-Content -LiteralPath $LogPath -Value $line
            }
            catch {
                # Logging must never stop the swap.
            }
        }

        Write-Output $line
    }

    function Write-FailureMarker {
        param([string]$Reason, [string]$Advice)

        if ($FailureMarkerPath -eq '') {
            return
        }

        try {
            $payload = @{
                reason = $Reason
                advice = $Advice
                recorded_at = (Get-Date -Format 'o')
            } | ConvertTo-Json -Compress

            $encoding = New-Object System.Text.UTF8Encoding($false)
            [System.IO.File]::WriteAllText($FailureMarkerPath, $payload, $encoding)
        }
        catch {
            Write-Log ("Failed to record failure marker: " + $_.Exception.Message)
        }
    }

    function Invoke-WithRetry {
        param([scriptblock]$Action, [string]$Description)

        $maxAttempts = 8
        $delay = 250

        for ($attempt = 1; $attempt -le $maxAttempts; $attempt++) {
            try {
                & $Action
                return
            }
            catch {
                if ($attempt -eq $maxAttempts) {
                    throw
                }

                $wait = [Math]::Min($delay, 4000)
                Write-Log ($Description + " attempt $attempt failed: " + $_.Exception.Message + ". Retrying in " + $wait + " ms.")
                Start-Sleep -Milliseconds $wait
                $delay = $delay * 2
            }
        }
    }

    Write-Log "Waiting for process $ProcessId to exit before replacing $ExecutablePath."
    while (Get-Process -Id $ProcessId -ErrorAction SilentlyContinue) {
        Start-Sleep -Milliseconds 250
    }
    Write-Log "Process $ProcessId has exited."

    if ($FailureMarkerPath -ne '' -and (Test-Path -LiteralPath $FailureMarkerPath)) {
        Remove-Item -LiteralPath $FailureMarkerPath -Force -ErrorAction SilentlyContinue
    }

    $exeDir = Split-Path -Path $ExecutablePath
    try {
        if (Test-Path -LiteralPath $ExecutablePath) {
            Write-Log "Deleting previous executable $ExecutablePath."
            Invoke-WithRetry { Remove-Item -LiteralPath $ExecutablePath -Force -ErrorAction Stop } "Deleting previous executable"
        }

        Write-Log "Renaming $NewExecutablePath to $ExecutablePath."
        Invoke-WithRetry { Move-Item -LiteralPath $NewExecutablePath -Destination $ExecutablePath -Force -ErrorAction Stop } "Renaming new executable"
    }
    catch {
        $rawMessage = $_.Exception.Message
        Write-Log ("Handoff failed: " + $rawMessage)

        $advice = 'Please download the latest release manually.'
        if ($rawMessage -match 'access is denied') {
            $advice = 'Restart the application as administrator and try the update again.'
        }
        elseif ($rawMessage -match 'in use' -or $rawMessage -match 'used by another process') {
            $advice = 'Close other programs using the application folder and try again.'
        }
        Write-FailureMarker $rawMessage $advice

        if (Test-Path -LiteralPath $ExecutablePath) {
            Write-Log "Relaunching previous executable $ExecutablePath."
            Start-Process -FilePath $ExecutablePath -WorkingDirectory $exeDir
        }
        Remove-Item -LiteralPath $PSCommandPath -Force -ErrorAction SilentlyContinue
        exit 1
    }

    Write-Log "Launching updated executable $ExecutablePath."
    Start-Process -FilePath $ExecutablePath -WorkingDirectory $exeDir
    Write-Log "Handoff completed successfully."
    Remove-Item -LiteralPath $PSCommandPath -Force -ErrorAction SilentlyContinue
    """
).strip()


_POSIX_SCRIPT = textwrap.dedent(
    """
    #!/bin/sh
    PROCESS_ID="$1"
    EXECUTABLE_PATH="$2"
    NEW_EXECUTABLE_PATH="$3"
    LOG_PATH="$4"
    FAILURE_MARKER_PATH="$5"
    SCRIPT_PATH="$0"

    write_log() {
        line="$(date '+%Y-%m-%d %H:%M:%S') [handoff] $1"
        if [ -n "$LOG_PATH" ]; then
            echo "$line" >> "$LOG_PATH" 2>/dev/null
        fi
        echo "$line"
    }

    write_failure_marker() {
        if [ -n "$FAILURE_MARKER_PATH" ]; then
            printf '{"reason": "%s", "advice": "%s"}' "$1" "$2" > "$FAILURE_MARKER_PATH" 2>/dev/null
        fi
    }

    fail() {
        write_log "Handoff failed: $1"
        write_failure_marker "$1" "Please download the latest release manually."
        if [ -x "$EXECUTABLE_PATH" ]; then
            write_log "Relaunching previous executable $EXECUTABLE_PATH."
            nohup "$EXECUTABLE_PATH" >/dev/null 2>&1 &
        fi
        rm -f "$SCRIPT_PATH"
        exit 1
    }

    write_log "Waiting for process $PROCESS_ID to exit before replacing $EXECUTABLE_PATH."
    while kill -0 "$PROCESS_ID" 2>/dev/null; do
        sleep 0.25
    done
    write_log "Process $PROCESS_ID has exited."

    if [ -n "$FAILURE_MARKER_PATH" ]; then
        rm -f "$FAILURE_MARKER_PATH"
    fi

    attempt=1
    until mv -f "$NEW_EXECUTABLE_PATH" "$EXECUTABLE_PATH" 2>/dev/null; do
        if [ "$attempt" -ge 8 ]; then
            fail "Could not move $NEW_EXECUTABLE_PATH to $EXECUTABLE_PATH"
        fi
        write_log "Renaming new executable attempt $attempt failed. Retrying."
        attempt=$((attempt + 1))
        sleep 1
    done
    chmod +x "$EXECUTABLE_PATH"

    write_log "Launching updated executable $EXECUTABLE_PATH."
    nohup "$EXECUTABLE_PATH" >/dev/null 2>&1 &
    write_log "Handoff completed successfully."
    rm -f "$SCRIPT_PATH"
    """
).strip()


@dataclass(frozen=True)
class HandoffPlan:
    """Command that runs the handoff script, and where to run it."""

    command: Tuple[str, ...]
    script_path: Path
    working_directory: Path | None = None


class HandoffLauncher(Protocol):
    def launch(self, plan: HandoffPlan) -> None:
        """Start the handoff process without waiting for it."""


def write_handoff_script(directory: Path, *, windows: bool | None = None) -> Path:
    """Write the handoff script into ``directory`` and return its path."""

    windows = os.name == "nt" if windows is None else windows
    suffix, content = (".ps1", _POWERSHELL_SCRIPT) if windows else (".sh", _POSIX_SCRIPT)
    script_path = Path(directory) / f"{HANDOFF_SCRIPT_STEM}{suffix}"
    script_path.write_text(content + "\n", encoding="utf-8")
    if not windows:
        script_path.chmod(0o755)
    _LOGGER.debug("Wrote handoff script to %s", script_path)
    return script_path


def build_handoff_plan(
    executable: Path,
    new_executable: Path,
    *,
    process_id: int | None = None,
    log_path: Path | None = None,
    failure_marker: Path | None = None,
    windows: bool | None = None,
) -> HandoffPlan:
    """Write the handoff script beside ``executable`` and return the command to run it."""

    windows = os.name == "nt" if windows is None else windows
    pid = os.getpid() if process_id is None else process_id
    script_path = write_handoff_script(executable.parent, windows=windows)
    if windows:
        command: list[str] = [
            "powershell",
            "-NoProfile",
            "-WindowStyle",
            "Hidden",
            "-ExecutionPolicy",
            "Bypass",
            "-File",
            str(script_path),
            "-ProcessId",
            str(pid),
            "-ExecutablePath",
            str(executable),
            "-NewExecutablePath",
            str(new_executable),
        ]
        if log_path is not None:
            command.extend(["-LogPath", str(log_path)])
        if failure_marker is not None:
            command.extend(["-FailureMarkerPath", str(failure_marker)])
    else:
        command = [
            "/bin/sh",
            str(script_path),
            str(pid),
            str(executable),
            str(new_executable),
            str(log_path) if log_path is not None else "",
            str(failure_marker) if failure_marker is not None else "",
        ]
    return HandoffPlan(tuple(command), script_path, working_directory=executable.parent)


class DetachedLauncher:
    """Start the handoff process detached from the current one."""

    def launch(self, plan: HandoffPlan) -> None:
        _LOGGER.info("Launching update handoff %s", plan.script_path)
        popen_kwargs: dict[str, Any] = {
            "stdin": subprocess.DEVNULL,
            "stdout": subprocess.DEVNULL,
            "stderr": subprocess.DEVNULL,
            "close_fds": True,
        }
        if os.name == "nt":  # pragma: no cover - exercised on Windows
            creationflags = 0
            for flag in ("CREATE_NEW_PROCESS_GROUP", "DETACHED_PROCESS"):
                creationflags |= int(getattr(subprocess, flag, 0))
            popen_kwargs["creationflags"] = creationflags
        else:
            popen_kwargs["start_new_session"] = True
        try:
            subprocess.Popen(
                list(plan.command),
                cwd=str(plan.working_directory) if plan.working_directory else None,
                **popen_kwargs,
            )
        except OSError as exc:
            raise UpdateError(f"Failed to launch update handoff: {exc}") from exc
