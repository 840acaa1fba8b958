"""Central logging configuration for the updater.

Update activity (catalog checks, package downloads, marker writes and the
self-update handoff) is written to one file that can be attached to a bug
report. Paths below the user's home directory and the user name are masked
before they reach the file. Handler registration is idempotent, so hosts and
tests may call :func:`ensure_app_logging` repeatedly.

``CHAIN_UPDATER_LOG_FILE``
    Absolute path to the log file that should be created.

``CHAIN_UPDATER_LOG_DIR``
    Directory where the default log file name will be created.  Ignored when
    ``CHAIN_UPDATER_LOG_FILE`` is present.
"""

from __future__ import annotations

import logging
import os
import re
import sys
from enum import Enum
from pathlib import Path

_LOG_FILE_ENV = "CHAIN_UPDATER_LOG_FILE"
_LOG_DIR_ENV = "CHAIN_UPDATER_LOG_DIR"
_DEFAULT_DIRNAME = ".chain_updater"
_DEFAULT_LOGNAME = "updater.log"
_HANDLER_TAG = "_chain_updater_logging_handler"
_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

USER_PLACEHOLDER = "<user>"
USER_HOME_PLACEHOLDER = "<user_home>"

_LOG_PATH: Path | None = None
_FILE_HANDLER: logging.FileHandler | None = None


class LogVerbosity(str, Enum):
    """Verbosity levels supported by the log file."""

    DISABLED = "disabled"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"
    VERBOSE = "verbose"


_VERBOSITY_LEVELS: dict[LogVerbosity, int] = {
    LogVerbosity.DISABLED: logging.CRITICAL + 1,
    LogVerbosity.ERROR: logging.ERROR,
    LogVerbosity.WARNING: logging.WARNING,
    LogVerbosity.INFO: logging.INFO,
    LogVerbosity.VERBOSE: logging.DEBUG,
}

_DEFAULT_VERBOSITY = LogVerbosity.INFO
_CURRENT_VERBOSITY = _DEFAULT_VERBOSITY


def _home_variants() -> set[str]:
    variants: set[str] = set()
    for candidate in (str(Path.home()), os.environ.get("HOME"), os.environ.get("USERPROFILE")):
        if not candidate:
            continue
        normalised = os.path.normpath(os.path.expanduser(candidate))
        if normalised in {os.sep, "."}:
            continue
        variants.update({normalised, normalised.replace("\\", "/"), normalised.replace("/", "\\")})
    return variants


def _usernames() -> set[str]:
    names = {Path.home().name}
    names.update(os.environ.get(var, "") for var in ("USERNAME", "USER", "LOGNAME"))
    return {name.strip() for name in names if name and name.strip()}


def _build_redaction_patterns() -> tuple[tuple[re.Pattern[str], str], ...]:
    flags = re.IGNORECASE if os.name == "nt" else 0
    patterns: list[tuple[re.Pattern[str], str]] = [
        (re.compile(re.escape(home), flags), USER_HOME_PLACEHOLDER)
        for home in sorted(_home_variants(), key=len, reverse=True)
    ]
    for name in sorted(_usernames(), key=len, reverse=True):
        patterns.append((re.compile(rf"(?<!\w){re.escape(name)}(?!\w)", re.IGNORECASE), USER_PLACEHOLDER))
    return tuple(patterns)


_REDACTION_PATTERNS = _build_redaction_patterns()


def redact(message: str) -> str:
    """Mask the user's home directory and user name in ``message``."""

    for pattern, replacement in _REDACTION_PATTERNS:
        message = pattern.sub(replacement, message)
    return message


class _RedactingFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        return redact(super().format(record))


def ensure_app_logging() -> Path:
    """Configure the root logger and return the log file path.

    The first call installs a file handler (level set by the current
    :class:`LogVerbosity`) and, when stderr is interactive, a console handler
    at INFO. Later calls return the existing path.
    """

    global _LOG_PATH, _FILE_HANDLER

    if _LOG_PATH is not None:
        return _LOG_PATH

    log_path = _resolve_log_path()
    log_path.parent.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    formatter = _RedactingFormatter(_FORMAT, datefmt=_DATE_FORMAT)

    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setLevel(_VERBOSITY_LEVELS[_CURRENT_VERBOSITY])
    file_handler.setFormatter(formatter)
    setattr(file_handler, _HANDLER_TAG, True)
    root.addHandler(file_handler)
    _FILE_HANDLER = file_handler

    if _stderr_is_interactive() and not _has_stderr_handler(root):
        stream_handler = logging.StreamHandler()
        stream_handler.setLevel(logging.INFO)
        stream_handler.setFormatter(formatter)
        setattr(stream_handler, _HANDLER_TAG, True)
        root.addHandler(stream_handler)

    _LOG_PATH = log_path
    logging.getLogger(__name__).info(
        "Writing updater logs to %s (verbosity=%s)", log_path, _CURRENT_VERBOSITY.value
    )
    return log_path


def get_log_path() -> Path | None:
    """Return the configured log file, or ``None`` before :func:`ensure_app_logging`."""

    return _LOG_PATH


def set_file_log_verbosity(verbosity: LogVerbosity | str) -> None:
    """Adjust the minimum severity recorded in the log file."""

    global _CURRENT_VERBOSITY

    if isinstance(verbosity, str):
        try:
            verbosity = LogVerbosity(verbosity.lower())
        except ValueError as exc:
            raise ValueError(f"Unsupported log verbosity: {verbosity}") from exc

    ensure_app_logging()
    _CURRENT_VERBOSITY = verbosity
    if _FILE_HANDLER is not None:
        _FILE_HANDLER.setLevel(_VERBOSITY_LEVELS[verbosity])
    logging.getLogger(__name__).info("File log verbosity set to %s", verbosity.value)


def get_file_log_verbosity() -> LogVerbosity:
    return _CURRENT_VERBOSITY


def _resolve_log_path() -> Path:
    env_file = os.environ.get(_LOG_FILE_ENV)
    if env_file:
        return Path(env_file).expanduser()

    env_dir = os.environ.get(_LOG_DIR_ENV)
    if env_dir:
        return Path(env_dir).expanduser() / _DEFAULT_LOGNAME

    return Path.home() / _DEFAULT_DIRNAME / "logs" / _DEFAULT_LOGNAME


def _stderr_is_interactive() -> bool:
    is_tty = getattr(sys.stderr, "isatty", None)
    if not callable(is_tty):
        return False
    try:
        return bool(is_tty())
    except (OSError, ValueError):  # pragma: no cover - closed or detached stderr
        return False


def _has_stderr_handler(root: logging.Logger) -> bool:
    return any(
        isinstance(handler, logging.StreamHandler) and getattr(handler, "stream", None) is sys.stderr
        for handler in root.handlers
    )


def _reset_for_tests() -> None:
    """Remove handlers installed by :func:`ensure_app_logging`."""

    global _LOG_PATH, _FILE_HANDLER, _CURRENT_VERBOSITY

    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, _HANDLER_TAG, False):
            root.removeHandler(handler)
            handler.close()

    _LOG_PATH = None
    _FILE_HANDLER = None
    _CURRENT_VERBOSITY = _DEFAULT_VERBOSITY


__all__ = [
    "LogVerbosity",
    "ensure_app_logging",
    "get_file_log_verbosity",
    "get_log_path",
    "redact",
    "set_file_log_verbosity",
]
