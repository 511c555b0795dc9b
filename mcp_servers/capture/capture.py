"""
Capture lifecycle: launch → discover → connect → navigate/wait → screenshot.

`capture_url` runs the whole sequence under one deadline. The driving task is
raced against the browser's exit, and either the deadline or an exit cancels it
wherever it is suspended. The socket and the process are torn down on every
exit path before the result or the error reaches the caller.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from urllib.parse import urlsplit

from .config import ALLOWED_CAPTURE_SCHEMES, SETUP_RESERVE_MS, WAIT_UNTIL_OPTIONS, CaptureConfig
from .discovery import discover_page_ws_url
from .errors import (
    BrowserExitedError,
    CaptureError,
    CaptureTimeoutError,
    CdpConnectionClosed,
    InvalidUrlError,
    NavigationError,
)
from .launcher import BrowserLauncher
from .screenshot import capture_page, measure_page, set_device_metrics
from .session_cdp import CdpConnection
from .types import CaptureRequest, CaptureResult
from .waits import create_wait, prepare_domains

logger = logging.getLogger("mcp.capture")

# How long a dropped socket waits for the process exit to be reported.
EXIT_SETTLE_SECONDS = 0.5


def validate_capture_url(url: str) -> str:
    try:
        parts = urlsplit(url or "")
    except ValueError as exc:
        raise InvalidUrlError(f"Invalid URL: {url}") from exc
    if not parts.scheme:
        raise InvalidUrlError(f"Invalid URL: {url}", suggestion="Pass an absolute http(s) URL")
    if parts.scheme.lower() not in ALLOWED_CAPTURE_SCHEMES:
        allowed = ", ".join(f"{s}:" for s in ALLOWED_CAPTURE_SCHEMES)
        raise InvalidUrlError(
            f'Unsupported protocol "{parts.scheme}:". Only {allowed} are allowed.',
            suggestion="Only http and https pages can be captured",
            details={"scheme": parts.scheme},
        )
    if not parts.netloc:
        raise InvalidUrlError(f"Invalid URL: {url}", suggestion="The URL is missing a host")
    return url


def validate_request(request: CaptureRequest) -> None:
    validate_capture_url(request.url)
    if request.wait_until not in WAIT_UNTIL_OPTIONS:
        raise CaptureError(
            f"Unknown waitUntil: {request.wait_until}",
            step="validate",
            suggestion=f"Use one of: {', '.join(WAIT_UNTIL_OPTIONS)}",
        )


class BrowserSession:
    """One browser process plus its page connection; never reused across captures."""

    def __init__(self, launcher: BrowserLauncher, config: CaptureConfig) -> None:
        self.launcher = launcher
        self.config = config
        self.connection: CdpConnection | None = None

    async def run(self, request: CaptureRequest) -> CaptureResult:
        await self.launcher.start(request.viewport_width)
        exit_watch = asyncio.ensure_future(self.launcher.wait_exit())
        work = asyncio.ensure_future(self._open_and_capture(request))
        try:
            done, _ = await asyncio.wait({work, exit_watch}, return_when=asyncio.FIRST_COMPLETED)
            if work in done:
                exc = work.exception()
                if isinstance(exc, CdpConnectionClosed):
                    # The socket EOF can arrive before the exit is reaped.
                    with contextlib.suppress(asyncio.TimeoutError):
                        await asyncio.wait_for(asyncio.shield(exit_watch), EXIT_SETTLE_SECONDS)
                    if exit_watch.done() and not exit_watch.cancelled():
                        raise self._exited(exit_watch.result()) from exc
                return work.result()

            work.cancel()
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await work
            raise self._exited(exit_watch.result())
        finally:
            for task in (work, exit_watch):
                if not task.done():
                    task.cancel()
            await asyncio.gather(work, exit_watch, return_exceptions=True)

    def _exited(self, code: int | None) -> BrowserExitedError:
        return BrowserExitedError(
            f"Chrome exited unexpectedly with code {code}",
            suggestion="The browser crashed or was killed; check the stderr tail in details",
            details={"exitCode": code, "stderrTail": self.launcher.stderr_tail},
        )

    async def _open_and_capture(self, request: CaptureRequest) -> CaptureResult:
        config = self.config
        browser_ws_url = await self.launcher.read_devtools_url(config.startup_timeout)
        page_ws_url = await discover_page_ws_url(browser_ws_url, config.discovery_timeout)
        self.connection = await CdpConnection.open(
            page_ws_url,
            connect_timeout=config.connect_timeout,
            command_timeout=config.command_timeout,
        )
        return await self._capture(self.connection, request)

    async def _capture(self, conn: CdpConnection, request: CaptureRequest) -> CaptureResult:
        config = self.config
        await prepare_domains(conn, request.wait_until)
        # Viewport first so layout has real dimensions during navigation.
        await set_device_metrics(conn, request.viewport_width, config.viewport_height)

        wait_timeout = max(1000, request.timeout_ms - SETUP_RESERVE_MS) / 1000.0
        with create_wait(conn, request.wait_until, idle_ms=config.idle_ms) as waiter:
            nav = await conn.send("Page.navigate", {"url": request.url})
            error_text = nav.get("errorText")
            if error_text:
                raise NavigationError(
                    f"Navigation to {request.url} failed: {error_text}",
                    suggestion="Check that the URL is reachable from this machine",
                    details={"errorText": error_text},
                )
            await waiter.wait(wait_timeout)

        if request.delay_ms > 0:
            await asyncio.sleep(request.delay_ms / 1000.0)

        width, height = await measure_page(conn)
        image, segments = await capture_page(
            conn,
            width,
            height,
            ceiling=config.capture_ceiling,
            max_height=config.max_capture_height,
            settle_ms=config.settle_ms,
        )
        return CaptureResult(
            image=image,
            page_width=width,
            page_height=height,
            url=request.url,
            segments_stitched=segments,
        )

    async def close(self) -> None:
        # Socket first, then the process; never the reverse.
        conn = self.connection
        self.connection = None
        if conn is not None:
            await conn.close()
        await self.launcher.stop()


async def capture_url(request: CaptureRequest, config: CaptureConfig | None = None) -> CaptureResult:
    """Capture a full-page PNG screenshot of `request.url`."""
    config = config or CaptureConfig.from_env()
    validate_request(request)
    binary = config.resolve_binary()

    session = BrowserSession(BrowserLauncher(binary, config), config)
    timeout = request.timeout_ms / 1000.0
    started = time.monotonic()
    logger.info("capture_start url=%s wait=%s viewport=%s", request.url, request.wait_until, request.viewport_width)
    try:
        result = await asyncio.wait_for(session.run(request), timeout)
    except asyncio.TimeoutError:
        raise CaptureTimeoutError(
            f"Capture timed out after {request.timeout_ms}ms",
            suggestion="Increase the timeout or use waitUntil='domcontentloaded'",
            details={"timeoutMs": request.timeout_ms},
        ) from None
    finally:
        await session.close()

    logger.info(
        "capture_done url=%s size=%sx%s segments=%s elapsed=%.2fs",
        result.url,
        result.page_width,
        result.page_height,
        result.segments_stitched,
        time.monotonic() - started,
    )
    return result


def capture_url_sync(request: CaptureRequest, config: CaptureConfig | None = None) -> CaptureResult:
    return asyncio.run(capture_url(request, config))


__all__ = [
    "BrowserSession",
    "capture_url",
    "capture_url_sync",
    "validate_capture_url",
    "validate_request",
]
