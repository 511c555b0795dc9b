from __future__ import annotations

import asyncio
import json
import urllib.parse
from typing import Any
from urllib.error import URLError
from urllib.request import Request, urlopen


class HttpClientError(Exception):
    pass


def http_get_json(url: str, timeout: float = 2.0) -> Any:
    """Fetch and decode a JSON document from the local DevTools HTTP endpoint."""
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme not in ("http", "https"):
        raise HttpClientError("Only http/https are supported")
    req = Request(url, headers={"User-Agent": "mcp-capture"})
    try:
        with urlopen(req, timeout=timeout) as resp:
            payload = resp.read()
    except (TimeoutError, URLError, OSError) as exc:
        raise HttpClientError(str(exc)) from exc
    try:
        return json.loads(payload.decode(errors="replace"))
    except ValueError as exc:
        raise HttpClientError(f"Invalid JSON from {url}: {exc}") from exc


async def async_http_get_json(url: str, timeout: float = 2.0) -> Any:
    """Run `http_get_json` off the event loop so the overall deadline can still cancel the caller."""
    return await asyncio.to_thread(http_get_json, url, timeout)
