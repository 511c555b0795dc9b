from __future__ import annotations

import asyncio
import contextlib
import logging
import re
import shutil
import subprocess
import tempfile
from collections import deque

from .config import CaptureConfig
from .errors import BrowserLaunchError, BrowserStartupError

logger = logging.getLogger("mcp.capture.launcher")

DEVTOOLS_URL_RE = re.compile(r"DevTools listening on (ws://\S+)")

_STDERR_LINE_LIMIT = 1024 * 1024


def parse_devtools_url(line: str) -> str | None:
    """Extract the browser-level DevTools websocket URL from one stderr line."""
    match = DEVTOOLS_URL_RE.search(line or "")
    return match.group(1) if match else None


class BrowserLauncher:
    """Owns one headless browser process for the duration of a single capture."""

    def __init__(self, binary_path: str, config: CaptureConfig | None = None) -> None:
        self.binary_path = binary_path
        self.config = config or CaptureConfig.from_env()
        self.process: asyncio.subprocess.Process | None = None
        self.profile_dir: str | None = None
        self._stderr_tail: deque[str] = deque(maxlen=20)
        self._drain_task: asyncio.Task | None = None

    @property
    def pid(self) -> int | None:
        return self.process.pid if self.process is not None else None

    @property
    def stderr_tail(self) -> str:
        return "\n".join(self._stderr_tail)

    def build_launch_command(self, viewport_width: int, profile_dir: str) -> list[str]:
        flags = [
            "--headless=new",
            "--remote-debugging-port=0",
            f"--user-data-dir={profile_dir}",
            "--remote-allow-origins=*",
            "--no-sandbox",
            "--disable-gpu",
            "--disable-dev-shm-usage",
            "--disable-extensions",
            "--disable-background-networking",
            "--disable-default-apps",
            "--disable-sync",
            "--disable-translate",
            "--metrics-recording-only",
            "--no-first-run",
            "--no-default-browser-check",
            f"--window-size={viewport_width},{self.config.viewport_height}",
        ]
        return [self.binary_path, *flags, *self.config.extra_flags]

    async def start(self, viewport_width: int) -> None:
        self.profile_dir = tempfile.mkdtemp(prefix="mcp-capture-profile-")
        cmd = self.build_launch_command(viewport_width, self.profile_dir)
        try:
            self.process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                limit=_STDERR_LINE_LIMIT,
            )
        except OSError as exc:
            raise BrowserLaunchError(
                f"Failed to launch browser {self.binary_path}: {exc}",
                suggestion="Check that CHROME_PATH points to an executable Chrome/Chromium binary",
                details={"command": cmd},
            ) from exc
        logger.info("browser_launched pid=%s binary=%s", self.process.pid, self.binary_path)

    async def read_devtools_url(self, timeout: float | None = None) -> str:
        """Scan stderr until the browser announces its DevTools endpoint."""
        proc = self._require_process()
        timeout = self.config.startup_timeout if timeout is None else timeout

        async def _scan() -> str | None:
            assert proc.stderr is not None
            while True:
                line = await self._read_stderr_line(proc.stderr)
                if line is None:
                    return None
                url = parse_devtools_url(line)
                if url:
                    return url

        try:
            url = await asyncio.wait_for(_scan(), timeout)
        except asyncio.TimeoutError:
            raise BrowserStartupError(
                f"Timed out waiting for Chrome DevTools WebSocket URL ({timeout:g}s)",
                suggestion="The browser did not start correctly; check the stderr tail in details",
                details={"timeoutMs": int(timeout * 1000), "stderrTail": self.stderr_tail},
            ) from None

        if url is None:
            code = await proc.wait()
            raise BrowserStartupError(
                f"Chrome exited unexpectedly with code {code}",
                suggestion="Run the browser binary manually with --headless=new to see why it fails",
                details={"exitCode": code, "stderrTail": self.stderr_tail},
            )

        logger.info("devtools_endpoint %s", url)
        self._drain_task = asyncio.ensure_future(self._drain_stderr())
        return url

    async def _drain_stderr(self) -> None:
        # Keep reading so a chatty browser never blocks on a full pipe.
        proc = self._require_process()
        assert proc.stderr is not None
        while True:
            line = await self._read_stderr_line(proc.stderr)
            if line is None:
                return
            logger.debug("browser_stderr %s", line)

    async def _read_stderr_line(self, stream: asyncio.StreamReader) -> str | None:
        """Next stderr line (recorded in the tail), or None at EOF."""
        while True:
            try:
                raw = await stream.readline()
            except ValueError:
                # Over the stream limit; readline() has discarded what it buffered.
                logger.debug("browser_stderr_line_too_long limit=%s", _STDERR_LINE_LIMIT)
                continue
            if not raw:
                return None
            line = raw.decode(errors="replace").rstrip()
            self._stderr_tail.append(line)
            return line

    async def wait_exit(self) -> int:
        return await self._require_process().wait()

    async def stop(self, *, grace: float | None = None) -> bool:
        """Terminate the browser, escalating to kill after the grace period, then reap it."""
        grace = self.config.kill_grace if grace is None else grace
        drain = self._drain_task
        self._drain_task = None
        if drain is not None:
            drain.cancel()
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await drain

        proc = self.process
        stopped = False
        if proc is not None:
            stopped = True
            if proc.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    proc.terminate()
                try:
                    await asyncio.wait_for(proc.wait(), max(0.05, float(grace)))
                except asyncio.TimeoutError:
                    # Escalate to kill.
                    logger.info("browser_kill pid=%s grace=%ss", proc.pid, grace)
                    with contextlib.suppress(ProcessLookupError):
                        proc.kill()
                    await proc.wait()
            logger.info("browser_stopped pid=%s code=%s", proc.pid, proc.returncode)

        if self.profile_dir:
            shutil.rmtree(self.profile_dir, ignore_errors=True)
            self.profile_dir = None
        return stopped

    def _require_process(self) -> asyncio.subprocess.Process:
        if self.process is None:
            raise BrowserLaunchError("Browser process has not been started")
        return self.process
