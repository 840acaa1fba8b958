"""Console entry point for checking and applying content and application updates."""

from __future__ import annotations

import argparse
import logging
import sys
import threading
from dataclasses import replace
from pathlib import Path
from typing import Callable

from app.config import UpdaterConfig, load_updater_config
from services.update import (
    ApplySuccess,
    Chain,
    FullReinstallRequired,
    NetworkError,
    SelfUpdateAvailable,
    UpdateError,
    UpdateService,
    build_update_service,
    consume_update_failure_notice,
)
from shared.logging_config import LogVerbosity, ensure_app_logging, set_file_log_verbosity

_LOGGER = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_NOT_CONFIGURED = 2
EXIT_UPDATE_AVAILABLE = 3


class LoggingProgressSink:
    """Progress sink that reports through the log and, optionally, a console stream."""

    def __init__(self, stream=None) -> None:
        self._stream = stream
        self._last_percent: int | None = None

    def report_progress(self, current: int, total: int, label: str) -> None:
        self._last_percent = None
        _LOGGER.info("[%s/%s] %s", current, total, label)
        if self._stream is not None:
            print(label, file=self._stream)

    def report_transfer(self, received: int, expected: int | None) -> None:
        if not expected:
            return
        percent = min(100, received * 100 // expected)
        if percent == self._last_percent or percent % 10:
            return
        self._last_percent = percent
        _LOGGER.debug("Downloaded %s%% (%s of %s bytes)", percent, received, expected)


def console_confirm(prompt: str, *, input_func: Callable[[str], str] = input) -> bool:
    """Ask a yes/no question on the console; anything but yes declines."""

    try:
        answer = input_func(f"{prompt} [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in {"y", "yes"}


def _assume_yes(_prompt: str) -> bool:
    return True


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="chain-updater", description=__doc__)
    parser.add_argument("--config", type=Path, help="Path to an updater JSON configuration file.")
    parser.add_argument("--server", help="Content server base URL (overrides the configuration).")
    parser.add_argument("--install-root", type=Path, help="Folder that holds the installed product.")
    parser.add_argument(
        "--log-level",
        choices=[level.value for level in LogVerbosity],
        help="Minimum severity written to the log file.",
    )
    parser.add_argument("-y", "--yes", action="store_true", help="Answer yes to every prompt.")

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("check", help="Report which content updates are available.")
    commands.add_parser("apply", help="Download and apply pending content updates.")
    commands.add_parser("install", help="Download and install the full content package.")
    self_check = commands.add_parser("self-check", help="Check for a newer application release.")
    self_check.add_argument("--current", help="Release version to compare against.")
    self_update = commands.add_parser("self-update", help="Install the newest application release.")
    self_update.add_argument("--current", help="Release version to compare against.")
    return parser.parse_args(argv)


def _load_config(args: argparse.Namespace) -> UpdaterConfig:
    config = load_updater_config(args.config)
    overrides = {}
    if args.server:
        overrides["server_url"] = args.server.strip()
    if args.install_root:
        overrides["install_root"] = args.install_root.expanduser()
    if not overrides:
        return config
    return replace(config, **overrides)


def _report_error(error: UpdateError) -> None:
    message = error.user_message if isinstance(error, NetworkError) else str(error)
    print(message, file=sys.stderr)


def _check(service: UpdateService) -> int:
    result = service.check_for_content_update()
    if result.is_err():
        _report_error(result.unwrap_error())
        return EXIT_FAILED
    plan = result.unwrap()
    if isinstance(plan, Chain):
        print(f"{len(plan)} update(s) available, latest {plan.target_version}:")
        for entry in plan:
            print(f"  {entry.version}  {entry.description}")
        return EXIT_UPDATE_AVAILABLE
    if isinstance(plan, FullReinstallRequired):
        print(f"A full install is required ({plan.reason}).")
        return EXIT_UPDATE_AVAILABLE
    print(f"Up to date ({plan.version}).")
    return EXIT_OK


def _apply(service: UpdateService) -> int:
    result = service.check_for_content_update()
    if result.is_err():
        _report_error(result.unwrap_error())
        return EXIT_FAILED
    plan = result.unwrap()
    if isinstance(plan, FullReinstallRequired):
        print(f"A full install is required ({plan.reason}); run the install command.")
        return EXIT_FAILED
    if not isinstance(plan, Chain):
        print(f"Up to date ({plan.version}).")
        return EXIT_OK

    cancel_event = threading.Event()
    try:
        outcome = service.apply_content_update(plan, cancel_event)
    except KeyboardInterrupt:
        cancel_event.set()
        raise
    if isinstance(outcome, ApplySuccess):
        print(f"Updated to {outcome.final_version}.")
        return EXIT_OK
    print(
        f"Update {outcome.failed_entry.version} failed: {outcome.cause}. "
        f"Installed version is {outcome.last_applied_version or 'unknown'}; run apply again to resume.",
        file=sys.stderr,
    )
    return EXIT_FAILED


def _install(service: UpdateService, confirm: Callable[[str], bool]) -> int:
    result = service.install_full(confirm)
    if result.is_err():
        _report_error(result.unwrap_error())
        return EXIT_FAILED
    print(f"Installed version {result.unwrap()}.")
    return EXIT_OK


def _self_check(service: UpdateService, current: str | None) -> int:
    result = service.check_for_self_update(current)
    if result.is_err():
        _report_error(result.unwrap_error())
        return EXIT_FAILED
    check = result.unwrap()
    if isinstance(check, SelfUpdateAvailable):
        print(f"Version {check.version} is available (running {check.current}).")
        return EXIT_UPDATE_AVAILABLE
    print(f"Application is up to date ({check.current}).")
    return EXIT_OK


def _self_update(service: UpdateService, current: str | None, confirm: Callable[[str], bool]) -> int:
    result = service.check_for_self_update(current)
    if result.is_err():
        _report_error(result.unwrap_error())
        return EXIT_FAILED
    check = result.unwrap()
    if not isinstance(check, SelfUpdateAvailable):
        print(f"Application is up to date ({check.current}).")
        return EXIT_OK
    if not confirm(f"Version {check.version} is available. Install it now?"):
        return EXIT_OK
    outcome = service.apply_self_update(check.download_url)
    if outcome.is_err():
        _report_error(outcome.unwrap_error())
        return EXIT_FAILED
    print(f"Update scheduled ({outcome.unwrap().value}).")
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    ensure_app_logging()
    if args.log_level:
        set_file_log_verbosity(args.log_level)

    notice = consume_update_failure_notice()
    if notice is not None:
        reason, advice = notice
        print(f"The previous update failed: {reason}\n{advice}", file=sys.stderr)

    confirm = _assume_yes if args.yes else console_confirm
    service = build_update_service(
        _load_config(args),
        progress=LoggingProgressSink(sys.stdout),
        confirm=confirm,
    )
    if service is None:
        print(
            "No content server or install folder configured. "
            "Use --server and --install-root or the CHAIN_UPDATER_* environment variables.",
            file=sys.stderr,
        )
        return EXIT_NOT_CONFIGURED

    _LOGGER.info("Running %s command", args.command)
    if args.command == "check":
        return _check(service)
    if args.command == "apply":
        return _apply(service)
    if args.command == "install":
        return _install(service, confirm)
    if args.command == "self-check":
        return _self_check(service, args.current)
    return _self_update(service, args.current, confirm)


if __name__ == "__main__":
    raise SystemExit(main())
