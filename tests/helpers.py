"""Shared test helpers for the capture server test suite.

Fixtures are in conftest.py. This module contains the fakes: a scripted CDP page
endpoint (real websocket server), a `/json` introspection endpoint (threaded
http.server), in-memory connections for unit tests and a fake browser script.
"""

from __future__ import annotations

import asyncio
import base64
import json
import os
import stat
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from io import BytesIO
from pathlib import Path
from typing import Any

from PIL import Image
from websockets.asyncio.server import serve
from websockets.exceptions import ConnectionClosed
from websockets.protocol import State

SEGMENT_COLORS = [
    (255, 0, 0, 255),
    (0, 255, 0, 255),
    (0, 0, 255, 255),
    (255, 255, 0, 255),
    (0, 255, 255, 255),
]


def make_png(width: int = 1, height: int = 1, color: tuple[int, int, int, int] = (255, 0, 0, 255)) -> bytes:
    out = BytesIO()
    Image.new("RGBA", (max(1, width), max(1, height)), color).save(out, format="PNG")
    return out.getvalue()


def png_b64(width: int = 1, height: int = 1, color: tuple[int, int, int, int] = (255, 0, 0, 255)) -> str:
    return base64.b64encode(make_png(width, height, color)).decode()


# ─────────────────────────────────────────────────────────────────────────────
# Fake browser executable
# ─────────────────────────────────────────────────────────────────────────────

FAKE_BROWSER_SOURCE = """#!{python}
import os
import signal
import sys
import time

pid_file = os.environ.get("FAKE_BROWSER_PID_FILE")
if pid_file:
    with open(pid_file, "a") as fh:
        fh.write(str(os.getpid()) + "\\n")

marker = os.environ.get("FAKE_BROWSER_MARKER")
if marker:
    with open(marker, "w") as fh:
        fh.write(" ".join(sys.argv))

if os.environ.get("FAKE_BROWSER_IGNORE_TERM") == "1":
    signal.signal(signal.SIGTERM, signal.SIG_IGN)

mode = os.environ.get("FAKE_BROWSER_MODE", "ok")
long_line = int(os.environ.get("FAKE_BROWSER_LONG_LINE") or 0)
if mode == "crash":
    sys.stderr.write("[FATAL] could not start\\n")
    sys.stderr.flush()
    sys.exit(3)

if mode != "silent":
    port = os.environ.get("FAKE_BROWSER_PORT", "9222")
    sys.stderr.write("[0101/000000.000:INFO] starting headless shell\\n")
    if long_line:
        sys.stderr.write("x" * long_line + "\\n")
    sys.stderr.write("\\nDevTools listening on ws://127.0.0.1:" + port + "/devtools/browser/abc-123\\n")
    if long_line:
        sys.stderr.write("y" * long_line + "\\n")
        sys.stderr.write("[0101/000000.000:INFO] after long line\\n")
    sys.stderr.flush()

exit_after = float(os.environ.get("FAKE_BROWSER_EXIT_AFTER") or 0)
if exit_after > 0:
    time.sleep(exit_after)
    sys.exit(9)

while True:
    time.sleep(0.2)
"""


def write_fake_browser(directory: Path) -> Path:
    script = directory / "fake-chrome"
    script.write_text(FAKE_BROWSER_SOURCE.format(python=sys.executable), encoding="utf-8")
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return script


def read_pids(pid_file: Path) -> list[int]:
    if not pid_file.exists():
        return []
    return [int(line) for line in pid_file.read_text().split() if line.strip()]


def pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


# ─────────────────────────────────────────────────────────────────────────────
# /json introspection endpoint
# ─────────────────────────────────────────────────────────────────────────────


@contextmanager
def json_endpoint(targets: Any, *, status: int = 200, raw_body: bytes | None = None) -> Iterator[int]:
    """Serve `GET /json` on a free port; yields the port."""
    body = raw_body if raw_body is not None else json.dumps(targets).encode()

    class Handler(BaseHTTPRequestHandler):
        def do_GET(self) -> None:  # noqa: N802
            if self.path.rstrip("/") != "/json":
                self.send_response(404)
                self.end_headers()
                return
            self.send_response(status)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
            return

    server = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield int(server.server_address[1])
    finally:
        server.shutdown()
        server.server_close()


def page_targets(page_ws_url: str) -> list[dict[str, Any]]:
    return [
        {"type": "service_worker", "webSocketDebuggerUrl": "ws://127.0.0.1:1/devtools/worker/1"},
        {"type": "page", "url": "about:blank", "webSocketDebuggerUrl": page_ws_url},
    ]


# ─────────────────────────────────────────────────────────────────────────────
# Scripted CDP page endpoint
# ─────────────────────────────────────────────────────────────────────────────


class FakeCdpPage:
    """Websocket server answering CDP commands like a single page target."""

    def __init__(
        self,
        *,
        width: int = 8,
        height: int = 600,
        navigate_events: list[dict[str, Any]] | None = None,
        errors: dict[str, str] | None = None,
        silent: tuple[str, ...] = (),
        navigate_result: dict[str, Any] | None = None,
    ) -> None:
        self.width = width
        self.height = height
        self.navigate_events = (
            [{"method": "Page.loadEventFired", "params": {"timestamp": 1.0}}]
            if navigate_events is None
            else navigate_events
        )
        self.errors = errors or {}
        self.silent = silent
        self.navigate_result = navigate_result or {"frameId": "F1", "loaderId": "L1"}
        self.calls: list[dict[str, Any]] = []
        self.connections = 0
        self.sockets: list[Any] = []
        # (browser still running, page sockets still open) at each browser stop.
        self.stop_snapshots: list[tuple[bool, int]] = []
        self.open_at_return: int | None = None
        self._server: Any = None
        self.port = 0
        self._shots = 0

    @property
    def ws_url(self) -> str:
        return f"ws://127.0.0.1:{self.port}/devtools/page/ABC"

    def methods(self) -> list[str]:
        return [call["method"] for call in self.calls]

    def params_for(self, method: str) -> list[dict[str, Any]]:
        return [call.get("params") or {} for call in self.calls if call["method"] == method]

    def open_sockets(self) -> int:
        """Server-side sockets the client has not started closing."""
        return sum(1 for ws in self.sockets if ws.state not in (State.CLOSING, State.CLOSED))

    async def __aenter__(self) -> FakeCdpPage:
        self._server = await serve(self._handler, "127.0.0.1", 0)
        sock = next(iter(self._server.sockets))
        self.port = int(sock.getsockname()[1])
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self._server.close()
        await self._server.wait_closed()

    def result_for(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        if method == "Page.navigate":
            return self.navigate_result
        if method == "Page.getLayoutMetrics":
            return {
                "cssContentSize": {"x": 0, "y": 0, "width": self.width, "height": self.height},
                "contentSize": {"x": 0, "y": 0, "width": self.width * 2, "height": self.height * 2},
            }
        if method == "Page.captureScreenshot":
            clip = params.get("clip")
            color = SEGMENT_COLORS[self._shots % len(SEGMENT_COLORS)]
            self._shots += 1
            if clip:
                return {"data": png_b64(int(clip["width"]), int(clip["height"]), color)}
            return {"data": png_b64(self.width, self.height, color)}
        if method == "Runtime.evaluate":
            return {"result": {"type": "undefined"}}
        return {}

    async def _handler(self, ws: Any) -> None:
        self.connections += 1
        self.sockets.append(ws)
        try:
            async for raw in ws:
                msg = json.loads(raw)
                self.calls.append(msg)
                method = msg.get("method")
                if method in self.silent:
                    continue
                if method in self.errors:
                    reply = {"id": msg["id"], "error": {"code": -32000, "message": self.errors[method]}}
                    await ws.send(json.dumps(reply))
                    continue
                result = self.result_for(method, msg.get("params") or {})
                await ws.send(json.dumps({"id": msg["id"], "result": result}))
                if method == "Page.navigate":
                    for event in self.navigate_events:
                        await ws.send(json.dumps(event))
        except ConnectionClosed:
            return


# ─────────────────────────────────────────────────────────────────────────────
# In-memory connections
# ─────────────────────────────────────────────────────────────────────────────


class FakeConnection:
    """Listener/closed surface of CdpConnection, driven by `emit()`."""

    def __init__(self) -> None:
        self.listeners: list[Any] = []
        self.closed: asyncio.Future = asyncio.get_running_loop().create_future()

    def add_listener(self, listener: Any) -> None:
        self.listeners.append(listener)

    def remove_listener(self, listener: Any) -> None:
        if listener in self.listeners:
            self.listeners.remove(listener)

    def emit(self, method: str, params: dict[str, Any] | None = None) -> None:
        for listener in list(self.listeners):
            listener(method, params or {})


class RecordingConnection:
    """Answers the screenshot engine's commands without a socket."""

    def __init__(self, width: int = 8, height: int = 600) -> None:
        self.page = FakeCdpPage(width=width, height=height)
        self.sent: list[tuple[str, dict[str, Any]]] = []

    def methods(self) -> list[str]:
        return [method for method, _ in self.sent]

    async def send(self, method: str, params: dict[str, Any] | None = None, *, timeout: float | None = None) -> dict[str, Any]:
        self.sent.append((method, dict(params or {})))
        return self.page.result_for(method, params or {})
