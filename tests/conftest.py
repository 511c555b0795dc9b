"""Shared pytest fixtures for the capture server test suite.

Non-fixture helpers (fake CDP endpoints, fake browser script, PNG builders) are
in helpers.py.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Add the tests directory to sys.path so test files can import helpers.py
sys.path.insert(0, str(Path(__file__).parent))

from helpers import write_fake_browser  # noqa: E402

from mcp_servers.capture.config import CaptureConfig  # noqa: E402


@pytest.fixture
def fake_browser(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Executable that behaves like a headless browser's startup on stderr."""
    script = write_fake_browser(tmp_path)
    monkeypatch.setenv("FAKE_BROWSER_PID_FILE", str(tmp_path / "pids.txt"))
    for name in (
        "FAKE_BROWSER_PORT",
        "FAKE_BROWSER_MODE",
        "FAKE_BROWSER_EXIT_AFTER",
        "FAKE_BROWSER_IGNORE_TERM",
        "FAKE_BROWSER_MARKER",
        "FAKE_BROWSER_LONG_LINE",
    ):
        monkeypatch.delenv(name, raising=False)
    return script


@pytest.fixture
def capture_config(fake_browser: Path, tmp_path: Path) -> CaptureConfig:
    return CaptureConfig(
        binary_override=str(fake_browser),
        startup_timeout=5.0,
        discovery_timeout=2.0,
        connect_timeout=2.0,
        command_timeout=5.0,
        kill_grace=1.0,
        settle_ms=0,
        idle_ms=50,
        output_dir=str(tmp_path / "captures"),
    )
