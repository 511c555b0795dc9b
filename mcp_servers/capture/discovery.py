"""
Page target discovery.

The URL printed on stderr is browser-scoped (`/devtools/browser/...`) and cannot
run Page/Network commands, so the page-level websocket is looked up through the
`/json` introspection endpoint served on the same host and port.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any
from urllib.parse import urlsplit

from .errors import TargetDiscoveryError
from .http_client import HttpClientError, async_http_get_json

logger = logging.getLogger("mcp.capture.discovery")


def json_endpoint_for(browser_ws_url: str) -> str:
    parts = urlsplit(browser_ws_url)
    if parts.scheme not in ("ws", "wss") or not parts.hostname or parts.port is None:
        raise TargetDiscoveryError(
            f"Unexpected DevTools endpoint: {browser_ws_url}",
            details={"endpoint": browser_ws_url},
        )
    host = parts.hostname
    if ":" in host:
        host = f"[{host}]"
    return f"http://{host}:{parts.port}/json"


def select_page_target(targets: Any) -> str:
    """Return the websocket URL of the first `page` target."""
    if not isinstance(targets, list):
        raise TargetDiscoveryError(
            "Failed to parse Chrome targets: expected a JSON array",
            details={"type": type(targets).__name__},
        )
    for target in targets:
        if not isinstance(target, dict) or target.get("type") != "page":
            continue
        ws_url = target.get("webSocketDebuggerUrl")
        if isinstance(ws_url, str) and ws_url:
            return ws_url
    raise TargetDiscoveryError(
        "No page target found in Chrome",
        suggestion="The browser started without an open tab; retry the capture",
        details={"targets": [t.get("type") for t in targets if isinstance(t, dict)]},
    )


async def discover_page_ws_url(browser_ws_url: str, timeout: float = 5.0) -> str:
    endpoint = json_endpoint_for(browser_ws_url)
    try:
        targets = await asyncio.wait_for(async_http_get_json(endpoint, timeout), timeout)
    except asyncio.TimeoutError:
        raise TargetDiscoveryError(
            f"Timed out discovering Chrome page target ({timeout:g}s)",
            details={"endpoint": endpoint, "timeoutMs": int(timeout * 1000)},
        ) from None
    except HttpClientError as exc:
        raise TargetDiscoveryError(
            f"Failed to fetch Chrome targets from {endpoint}: {exc}",
            details={"endpoint": endpoint},
        ) from exc

    ws_url = select_page_target(targets)
    logger.info("page_target %s", ws_url)
    return ws_url
