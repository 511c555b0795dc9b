"""CDP websocket connection to a single page target."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import Callable
from typing import Any

from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from .config import WS_MAX_MESSAGE_BYTES
from .errors import CdpConnectError, CdpConnectionClosed, CdpProtocolError, CdpTimeoutError

logger = logging.getLogger("mcp.capture.cdp")

EventListener = Callable[[str, dict[str, Any]], None]


class CdpConnection:
    """Low-level CDP connection.

    One read loop owns the socket. Replies (`{id, result|error}`) resolve the
    matching pending future; events (`{method, params}`, no id) fan out to the
    registered listeners in wire order. Ids are allocated per connection.
    """

    def __init__(self, ws: Any, ws_url: str, *, command_timeout: float = 30.0) -> None:
        self.ws = ws
        self.ws_url = ws_url
        self.command_timeout = command_timeout
        self._next_id = 1
        self._pending: dict[int, tuple[str, asyncio.Future]] = {}
        self._listeners: list[EventListener] = []
        self._closed_error: CdpConnectionClosed | None = None
        self.closed: asyncio.Future = asyncio.get_running_loop().create_future()
        self._reader: asyncio.Task | None = None

    @classmethod
    async def open(
        cls,
        ws_url: str,
        *,
        connect_timeout: float = 10.0,
        command_timeout: float = 30.0,
        max_size: int | None = WS_MAX_MESSAGE_BYTES,
    ) -> CdpConnection:
        try:
            ws = await asyncio.wait_for(
                connect(ws_url, max_size=max_size, ping_interval=None, open_timeout=None),
                connect_timeout,
            )
        except asyncio.TimeoutError:
            raise CdpConnectError(
                f"WebSocket connection to Chrome timed out ({connect_timeout:g}s)",
                details={"url": ws_url, "timeoutMs": int(connect_timeout * 1000)},
            ) from None
        except (OSError, WebSocketException) as exc:
            raise CdpConnectError(
                f"WebSocket connection failed: {exc}",
                details={"url": ws_url},
            ) from exc

        conn = cls(ws, ws_url, command_timeout=command_timeout)
        conn.start()
        logger.info("cdp_connected %s", ws_url)
        return conn

    def start(self) -> None:
        if self._reader is None:
            self._reader = asyncio.ensure_future(self._read_loop())

    @property
    def pending_ids(self) -> list[int]:
        return sorted(self._pending)

    @property
    def is_closed(self) -> bool:
        return self.closed.done()

    def add_listener(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: EventListener) -> None:
        with contextlib.suppress(ValueError):
            self._listeners.remove(listener)

    async def send(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Send a CDP command and wait for its reply."""
        if self._closed_error is not None:
            raise self._closed_error

        timeout = self.command_timeout if timeout is None else timeout
        msg_id = self._next_id
        self._next_id += 1
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[msg_id] = (method, future)

        msg: dict[str, Any] = {"id": msg_id, "method": method, "params": params or {}}
        try:
            try:
                await self.ws.send(json.dumps(msg))
            except ConnectionClosed as exc:
                raise CdpConnectionClosed(
                    f"CDP socket closed while sending '{method}'", details={"method": method}
                ) from exc
            logger.debug("cdp_send id=%s method=%s", msg_id, method)
            try:
                return await asyncio.wait_for(future, timeout)
            except asyncio.TimeoutError:
                raise CdpTimeoutError(method, timeout) from None
        finally:
            # The only place an id leaves the pending map.
            self._pending.pop(msg_id, None)

    async def _read_loop(self) -> None:
        error = CdpConnectionClosed("CDP socket closed")
        try:
            async for raw in self.ws:
                self._route(raw)
        except ConnectionClosed as exc:
            error = CdpConnectionClosed(f"CDP socket closed: {exc}")
        except asyncio.CancelledError:
            error = CdpConnectionClosed("CDP connection closed")
            raise
        finally:
            self._fail_all(error)

    def _route(self, raw: str | bytes) -> None:
        try:
            data = json.loads(raw)
        except ValueError:
            logger.debug("cdp_bad_frame %r", raw[:200])
            return
        if not isinstance(data, dict):
            return

        if "id" in data:
            msg_id = data.get("id")
            if not isinstance(msg_id, int) or isinstance(msg_id, bool):
                logger.debug("cdp_bad_frame %r", raw[:200])
                return
            entry = self._pending.get(msg_id)
            if entry is None or entry[1].done():
                # Late reply to a command that already timed out.
                return
            method, future = entry
            error = data.get("error")
            if error is not None:
                err = error if isinstance(error, dict) else {"message": str(error)}
                future.set_exception(CdpProtocolError(method, err.get("code"), str(err.get("message"))))
            else:
                result = data.get("result")
                future.set_result(result if isinstance(result, dict) else {})
            return

        method = data.get("method")
        if isinstance(method, str):
            params = data.get("params")
            self._dispatch_event(method, params if isinstance(params, dict) else {})

    def _dispatch_event(self, method: str, params: dict[str, Any]) -> None:
        for listener in list(self._listeners):
            try:
                listener(method, params)
            except Exception:  # noqa: BLE001
                logger.exception("cdp_listener_failed method=%s", method)

    def _fail_all(self, error: CdpConnectionClosed) -> None:
        if self._closed_error is None:
            self._closed_error = error
        for _method, future in self._pending.values():
            if not future.done():
                future.set_exception(self._closed_error)
        if not self.closed.done():
            self.closed.set_result(self._closed_error)

    async def close(self, timeout: float = 2.0) -> None:
        """Close the socket and stop the read loop (best-effort)."""
        reader = self._reader
        with contextlib.suppress(Exception):
            await asyncio.wait_for(self.ws.close(), timeout)
        if reader is not None and not reader.done():
            reader.cancel()
        if reader is not None:
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await reader
        self._fail_all(CdpConnectionClosed("CDP connection closed"))
        logger.debug("cdp_closed %s", self.ws_url)


__all__ = ["CdpConnection", "EventListener"]
