"""
Page readiness strategies.

A strategy is armed before `Page.navigate` is sent so no event can slip past it,
and is torn down (listener removed, timers cancelled) however the wait ends:

    with create_wait(conn, "networkidle", idle_ms=500) as waiter:
        await conn.send("Page.navigate", {"url": url})
        await waiter.wait(timeout)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from .errors import CdpConnectionClosed, WaitTimeoutError
from .session_cdp import CdpConnection

logger = logging.getLogger("mcp.capture.waits")


class ReadinessWait:
    """Base strategy: listen to the event stream until `_resolve()` is called."""

    name = ""
    timeout_label = "Page readiness"

    def __init__(self, conn: CdpConnection) -> None:
        self._conn = conn
        self._ready: asyncio.Future = asyncio.get_running_loop().create_future()
        self._armed = False

    def __enter__(self) -> ReadinessWait:
        self.arm()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def arm(self) -> None:
        if not self._armed:
            self._conn.add_listener(self._on_event)
            self._armed = True

    def close(self) -> None:
        if self._armed:
            self._conn.remove_listener(self._on_event)
            self._armed = False
        if not self._ready.done():
            self._ready.cancel()

    @property
    def resolved(self) -> bool:
        return self._ready.done() and not self._ready.cancelled()

    def _resolve(self) -> None:
        if not self._ready.done():
            self._ready.set_result(None)

    def _on_event(self, method: str, params: dict[str, Any]) -> None:
        raise NotImplementedError

    async def wait(self, timeout: float) -> None:
        try:
            done, _ = await asyncio.wait(
                {self._ready, self._conn.closed},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if self.resolved:
                return
            if self._conn.closed in done:
                error = self._conn.closed.result()
                if isinstance(error, CdpConnectionClosed):
                    raise error
                raise CdpConnectionClosed("CDP socket closed while waiting for the page")
            raise WaitTimeoutError(
                f"{self.timeout_label} timed out after {int(timeout * 1000)}ms",
                suggestion="Try a different waitUntil strategy or a larger timeout",
                details={"waitUntil": self.name, "timeoutMs": int(timeout * 1000)},
            )
        finally:
            self.close()


class LoadWait(ReadinessWait):
    name = "load"
    timeout_label = "Page load"

    def _on_event(self, method: str, params: dict[str, Any]) -> None:
        if method == "Page.loadEventFired":
            self._resolve()


class DomContentLoadedWait(ReadinessWait):
    name = "domcontentloaded"
    timeout_label = "DOMContentLoaded"

    def _on_event(self, method: str, params: dict[str, Any]) -> None:
        if method == "Page.lifecycleEvent" and params.get("name") == "DOMContentLoaded":
            self._resolve()


class NetworkIdleWait(ReadinessWait):
    """Resolve once no request has been in flight for `idle_ms`.

    The debounce timer starts as soon as the wait is armed, so a page that never
    touches the network still resolves. A page that polls forever only ends via
    the timeout.
    """

    name = "networkidle"
    timeout_label = "Network idle"

    def __init__(self, conn: CdpConnection, *, idle_ms: int = 500) -> None:
        super().__init__(conn)
        self.idle_ms = idle_ms
        self.in_flight = 0
        self._idle_timer: asyncio.TimerHandle | None = None

    def arm(self) -> None:
        was_armed = self._armed
        super().arm()
        if not was_armed:
            self._check_idle()

    def close(self) -> None:
        self._cancel_idle_timer()
        super().close()

    def _cancel_idle_timer(self) -> None:
        if self._idle_timer is not None:
            self._idle_timer.cancel()
            self._idle_timer = None

    def _check_idle(self) -> None:
        self._cancel_idle_timer()
        if self.in_flight <= 0:
            loop = asyncio.get_running_loop()
            self._idle_timer = loop.call_later(self.idle_ms / 1000.0, self._resolve)

    def _on_event(self, method: str, params: dict[str, Any]) -> None:
        if method == "Network.requestWillBeSent":
            self.in_flight += 1
            self._cancel_idle_timer()
        elif method in ("Network.loadingFinished", "Network.loadingFailed"):
            self.in_flight = max(0, self.in_flight - 1)
            self._check_idle()


WAIT_STRATEGIES: dict[str, type[ReadinessWait]] = {
    "load": LoadWait,
    "domcontentloaded": DomContentLoadedWait,
    "networkidle": NetworkIdleWait,
}


def create_wait(conn: CdpConnection, wait_until: str, *, idle_ms: int = 500) -> ReadinessWait:
    if wait_until == "networkidle":
        return NetworkIdleWait(conn, idle_ms=idle_ms)
    strategy = WAIT_STRATEGIES.get(wait_until)
    if strategy is None:
        raise ValueError(f"Unknown waitUntil: {wait_until} (use one of: {', '.join(WAIT_STRATEGIES)})")
    return strategy(conn)


async def prepare_domains(conn: CdpConnection, wait_until: str) -> None:
    """Enable the CDP domains whose events the chosen strategy consumes."""
    await conn.send("Page.enable")
    if wait_until == "networkidle":
        await conn.send("Network.enable")
    elif wait_until == "domcontentloaded":
        await conn.send("Page.setLifecycleEventsEnabled", {"enabled": True})
    logger.debug("domains_enabled wait_until=%s", wait_until)
