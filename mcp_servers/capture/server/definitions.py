"""
MCP tool definitions.
"""

from __future__ import annotations

from typing import Any

from ..config import (
    CAPTURE_CEILING,
    DEFAULT_TIMEOUT_MS,
    DEFAULT_VIEWPORT_WIDTH,
    MAX_DELAY_MS,
    MAX_TIMEOUT_MS,
    MAX_VIEWPORT_WIDTH,
    MIN_TIMEOUT_MS,
    MIN_VIEWPORT_WIDTH,
    OUTPUT_FORMATS,
    WAIT_UNTIL_OPTIONS,
)

# ═══════════════════════════════════════════════════════════════════════════════
# CAPTURE URL
# ═══════════════════════════════════════════════════════════════════════════════

CAPTURE_URL_TOOL: dict[str, Any] = {
    "name": "capture_url",
    "description": f"""Capture a full-page screenshot of a web page with a local headless Chrome.
Requires Google Chrome/Chromium installed locally (or CHROME_PATH set to its absolute path).
Pages taller than {CAPTURE_CEILING:,}px (Chrome's single-capture limit) are scroll-stitched.
USAGE:
- capture_url(url="https://example.com")
- capture_url(url="https://example.com", waitUntil="networkidle", delay=500, format="png")
RESPONSE EXAMPLE:
{{
  "url": "https://example.com",
  "filePath": "/home/me/Desktop/captures/capture_1700000000000.webp",
  "width": 1280,
  "height": 2400,
  "format": "webp",
  "fileSize": 183211,
  "segmentsStitched": null,
  "viewportWidth": 1280
}}""",
    "inputSchema": {
        "$schema": "http://json-schema.org/draft-07/schema#",
        "type": "object",
        "properties": {
            "url": {"type": "string", "description": "URL of the page to capture (http or https)"},
            "viewportWidth": {
                "type": "integer",
                "minimum": MIN_VIEWPORT_WIDTH,
                "maximum": MAX_VIEWPORT_WIDTH,
                "description": f"Viewport width in CSS pixels (default: main display width on macOS, else {DEFAULT_VIEWPORT_WIDTH})",
            },
            "waitUntil": {
                "type": "string",
                "enum": list(WAIT_UNTIL_OPTIONS),
                "default": "load",
                "description": "When to consider the page loaded",
            },
            "delay": {
                "type": "integer",
                "minimum": 0,
                "maximum": MAX_DELAY_MS,
                "default": 0,
                "description": "Extra delay in ms after load, before capturing",
            },
            "timeout": {
                "type": "integer",
                "minimum": MIN_TIMEOUT_MS,
                "maximum": MAX_TIMEOUT_MS,
                "default": DEFAULT_TIMEOUT_MS,
                "description": "Overall capture deadline in ms",
            },
            "outputDir": {"type": "string", "description": "Directory to save the screenshot"},
            "format": {
                "type": "string",
                "enum": list(OUTPUT_FORMATS),
                "default": "webp",
                "description": "webp (smaller) or png (lossless)",
            },
        },
        "required": ["url"],
        "additionalProperties": False,
    },
}

TOOL_DEFINITIONS: list[dict[str, Any]] = [CAPTURE_URL_TOOL]
