from __future__ import annotations

import os
import shutil
import sys
from dataclasses import dataclass, field
from pathlib import Path

from .errors import BrowserNotFoundError

# Chrome refuses to capture more than this many CSS pixels in one screenshot.
CAPTURE_CEILING = 16_384
# Hard stop for stitching: a 200k px canvas is already hundreds of MB.
MAX_CAPTURE_HEIGHT = 200_000

DEFAULT_VIEWPORT_WIDTH = 1280
DEFAULT_VIEWPORT_HEIGHT = 800
MIN_VIEWPORT_WIDTH = 320
MAX_VIEWPORT_WIDTH = 3840

DEFAULT_TIMEOUT_MS = 60_000
MIN_TIMEOUT_MS = 1_000
MAX_TIMEOUT_MS = 300_000
MAX_DELAY_MS = 30_000
# Reserved out of the overall timeout for launch/connect before waiting on the page.
SETUP_RESERVE_MS = 15_000

WAIT_UNTIL_OPTIONS = ("load", "domcontentloaded", "networkidle")
ALLOWED_CAPTURE_SCHEMES = ("http", "https")
OUTPUT_FORMATS = ("webp", "png")

WEBP_QUALITY = 80
WEBP_MAX_DIMENSION = 16_383
PNG_COMPRESS_LEVEL = 6

WS_MAX_MESSAGE_BYTES = 256 * 1024 * 1024


BINARY_CANDIDATES: dict[str, list[str]] = {
    "darwin": [
        "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
        "/Applications/Chromium.app/Contents/MacOS/Chromium",
    ],
    "win32": [
        "C:\\Program Files\\Google\\Chrome\\Application\\chrome.exe",
        "C:\\Program Files (x86)\\Google\\Chrome\\Application\\chrome.exe",
    ],
    "linux": [
        # Snap chromium ignores --user-data-dir; keep it out of the fixed list.
        "/usr/bin/google-chrome",
        "/usr/bin/google-chrome-stable",
        "/usr/bin/chromium",
        "/usr/bin/chromium-browser",
        "/opt/google/chrome/chrome",
    ],
}

PATH_NAMES = ["google-chrome", "google-chrome-stable", "chromium-browser", "chromium"]


def expand_path(raw: str) -> str:
    return str(Path(raw).expanduser())


def _platform_key() -> str:
    if sys.platform.startswith("linux"):
        return "linux"
    return sys.platform


def resolve_browser_binary(override: str | None = None) -> str:
    """Return the browser executable to launch.

    An explicit override must be absolute; it is returned as-is so a broken path
    surfaces as a launch error rather than silently falling through to discovery.
    """
    if override:
        if not os.path.isabs(override):
            raise BrowserNotFoundError(
                f"CHROME_PATH must be an absolute path (got {override!r})",
                suggestion="Set CHROME_PATH to the full path of the Chrome/Chromium executable",
                details={"override": override},
            )
        return override

    for candidate in BINARY_CANDIDATES.get(_platform_key(), []):
        path = Path(candidate)
        if path.exists() and os.access(str(path), os.X_OK):
            return str(path)

    for name in PATH_NAMES:
        found = shutil.which(name)
        if found:
            return found

    raise BrowserNotFoundError(
        "Chrome not found. Install Google Chrome or set the CHROME_PATH environment variable "
        "to the Chrome executable path.",
        suggestion="Install Google Chrome/Chromium or export CHROME_PATH=/absolute/path/to/chrome",
        details={"platform": sys.platform, "searched": PATH_NAMES},
    )


def default_output_dir() -> str:
    home = Path.home()
    for base in (home / "Desktop", home / "Downloads"):
        if base.is_dir():
            return str(base / "captures")
    return str(home / "captures")


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


@dataclass
class CaptureConfig:
    binary_override: str | None = None
    extra_flags: list[str] = field(default_factory=list)
    viewport_height: int = DEFAULT_VIEWPORT_HEIGHT
    startup_timeout: float = 10.0
    discovery_timeout: float = 5.0
    connect_timeout: float = 10.0
    command_timeout: float = 30.0
    kill_grace: float = 2.0
    settle_ms: int = 100
    idle_ms: int = 500
    capture_ceiling: int = CAPTURE_CEILING
    max_capture_height: int = MAX_CAPTURE_HEIGHT
    output_dir: str = field(default_factory=default_output_dir)

    @classmethod
    def from_env(cls) -> CaptureConfig:
        override = (os.environ.get("CHROME_PATH") or "").strip() or None
        flags_raw = os.environ.get("MCP_CAPTURE_FLAGS", "")
        extra_flags = [flag.strip() for flag in flags_raw.split(",") if flag.strip()]
        output_raw = (os.environ.get("MCP_CAPTURE_OUTPUT_DIR") or "").strip()
        return cls(
            binary_override=override,
            extra_flags=extra_flags,
            viewport_height=_env_int("MCP_CAPTURE_VIEWPORT_HEIGHT", DEFAULT_VIEWPORT_HEIGHT),
            startup_timeout=_env_float("MCP_CAPTURE_STARTUP_TIMEOUT", 10.0),
            discovery_timeout=_env_float("MCP_CAPTURE_DISCOVERY_TIMEOUT", 5.0),
            connect_timeout=_env_float("MCP_CAPTURE_CONNECT_TIMEOUT", 10.0),
            command_timeout=_env_float("MCP_CAPTURE_COMMAND_TIMEOUT", 30.0),
            kill_grace=_env_float("MCP_CAPTURE_KILL_GRACE", 2.0),
            settle_ms=_env_int("MCP_CAPTURE_SETTLE_MS", 100),
            idle_ms=_env_int("MCP_CAPTURE_IDLE_MS", 500),
            output_dir=expand_path(output_raw) if output_raw else default_output_dir(),
        )

    def resolve_binary(self) -> str:
        return resolve_browser_binary(self.binary_override)
