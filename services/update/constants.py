"""Constants shared across the update service modules."""

from __future__ import annotations

NOT_INSTALLED = "Not Installed"
VERSION_FILE_NAME = "version.txt"

DEFAULT_PRODUCT_SUBPATH = "RetroRewind6"
DEFAULT_FLOOR_VERSION = "3.2.6"
DEFAULT_CATALOG_PATH = "/RetroRewind/RetroRewindVersion.txt"
DEFAULT_FULL_PACKAGE_PATH = "/RetroRewind/zip/RetroRewind.zip"
DEFAULT_PRESERVE_GLOBS = ("save/**/rksys.dat",)

GITHUB_REPO = "patchzyy/WheelWizard"
API_URL = f"https://api.github.com/repos/{GITHUB_REPO}/releases/latest"

DEFAULT_REQUEST_TIMEOUT = 30.0
SERVER_PROBE_TIMEOUT = 5.0
DOWNLOAD_CHUNK_SIZE = 64 * 1024
USER_AGENT = "chain-updater"

TEMP_FILE_PREFIX = "chain-update-"
NEW_BINARY_SUFFIX = "_new"
HANDOFF_SCRIPT_STEM = "update-handoff"
UPDATE_FAILURE_MARKER_SUFFIX = ".update_failed.json"

MAX_ARCHIVE_TOTAL_BYTES = 4 * 1024 * 1024 * 1024  # 4 GiB, full game packs are large
MAX_ARCHIVE_FILE_SIZE = 1024 * 1024 * 1024  # 1 GiB per file
MAX_ARCHIVE_ENTRIES = 20000
MAX_COMPRESSION_RATIO = 100  # Uncompressed vs compressed bytes

SERVER_URL_ENV = "CHAIN_UPDATER_SERVER_URL"
INSTALL_ROOT_ENV = "CHAIN_UPDATER_INSTALL_ROOT"
LOCAL_RELEASE_ENV = "CHAIN_UPDATER_LOCAL_RELEASE_DIR"
