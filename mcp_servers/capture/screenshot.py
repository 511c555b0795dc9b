"""
Full-page screenshots, with scroll-stitching for pages taller than Chrome's
single-capture ceiling.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import math
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from io import BytesIO
from typing import Any

from PIL import Image

from .config import CAPTURE_CEILING, MAX_CAPTURE_HEIGHT
from .errors import CaptureError, PageTooTallError
from .session_cdp import CdpConnection

logger = logging.getLogger("mcp.capture.screenshot")


@dataclass(frozen=True, slots=True)
class Segment:
    offset: int
    height: int
    data: bytes = b""


def plan_segments(page_height: int, ceiling: int = CAPTURE_CEILING) -> list[tuple[int, int]]:
    """Split a page into `(offset, height)` slices of at most `ceiling` pixels."""
    if ceiling <= 0:
        raise ValueError("ceiling must be positive")
    plan: list[tuple[int, int]] = []
    offset = 0
    while offset < page_height:
        height = min(ceiling, page_height - offset)
        plan.append((offset, height))
        offset += height
    return plan


@contextmanager
def unbounded_image_pixels() -> Iterator[None]:
    """Lift Pillow's decompression-bomb limit; full-page captures exceed it."""
    limit = Image.MAX_IMAGE_PIXELS
    Image.MAX_IMAGE_PIXELS = None
    try:
        yield
    finally:
        Image.MAX_IMAGE_PIXELS = limit


def stitch_segments(segments: list[Segment], width: int, height: int) -> bytes:
    """Paste segments onto a white canvas at their offsets and encode as PNG."""
    canvas = Image.new("RGBA", (max(1, width), max(1, height)), (255, 255, 255, 255))
    try:
        with unbounded_image_pixels():
            for segment in segments:
                with Image.open(BytesIO(segment.data)) as img:
                    canvas.paste(img.convert("RGBA"), (0, segment.offset))
        out = BytesIO()
        canvas.save(out, format="PNG")
        return out.getvalue()
    finally:
        canvas.close()


def _decode_screenshot(result: dict[str, Any]) -> bytes:
    data = result.get("data")
    if not isinstance(data, str) or not data:
        raise CaptureError("Page.captureScreenshot returned no image data", step="screenshot")
    try:
        return base64.b64decode(data)
    except (binascii.Error, ValueError) as exc:
        raise CaptureError(f"Page.captureScreenshot returned invalid base64: {exc}", step="screenshot") from exc


async def measure_page(conn: CdpConnection) -> tuple[int, int]:
    metrics = await conn.send("Page.getLayoutMetrics")
    size = metrics.get("cssContentSize") or metrics.get("contentSize") or {}
    try:
        width = math.ceil(float(size.get("width", 0)))
        height = math.ceil(float(size.get("height", 0)))
    except (TypeError, ValueError) as exc:
        raise CaptureError(f"Unexpected layout metrics: {size!r}", step="measure") from exc
    return width, height


async def set_device_metrics(conn: CdpConnection, width: int, height: int) -> None:
    await conn.send(
        "Emulation.setDeviceMetricsOverride",
        {"width": width, "height": height, "deviceScaleFactor": 1, "mobile": False},
    )


async def capture_segments(
    conn: CdpConnection,
    width: int,
    page_height: int,
    *,
    ceiling: int = CAPTURE_CEILING,
    settle_ms: int = 100,
) -> list[Segment]:
    # Strictly sequential: each clip depends on the scroll position set just before it.
    segments: list[Segment] = []
    for offset, height in plan_segments(page_height, ceiling):
        await conn.send("Runtime.evaluate", {"expression": f"window.scrollTo(0, {offset})"})
        if settle_ms > 0:
            await asyncio.sleep(settle_ms / 1000.0)
        result = await conn.send(
            "Page.captureScreenshot",
            {
                "format": "png",
                "clip": {"x": 0, "y": offset, "width": width, "height": height, "scale": 1},
                "captureBeyondViewport": True,
            },
        )
        segments.append(Segment(offset=offset, height=height, data=_decode_screenshot(result)))
        logger.debug("segment_captured offset=%s height=%s", offset, height)
    return segments


async def capture_page(
    conn: CdpConnection,
    width: int,
    height: int,
    *,
    ceiling: int = CAPTURE_CEILING,
    max_height: int = MAX_CAPTURE_HEIGHT,
    settle_ms: int = 100,
) -> tuple[bytes, int | None]:
    """Capture the whole page.

    Returns the PNG bytes and the number of stitched segments, or `None` when a
    single screenshot covered the page.
    """
    if height <= ceiling:
        await set_device_metrics(conn, width, height)
        result = await conn.send("Page.captureScreenshot", {"format": "png", "captureBeyondViewport": True})
        return _decode_screenshot(result), None

    if height > max_height:
        raise PageTooTallError(
            f"Page height {height}px exceeds maximum {max_height}px for scroll-stitching.",
            suggestion="Capture a narrower section of the site or a shorter page",
            details={"pageHeight": height, "maxHeight": max_height},
        )

    await set_device_metrics(conn, width, height)
    segments = await capture_segments(conn, width, height, ceiling=ceiling, settle_ms=settle_ms)
    # Stitching a tall canvas takes seconds; run it off the event loop.
    image = await asyncio.to_thread(stitch_segments, segments, width, height)
    logger.info("stitched segments=%s size=%sx%s", len(segments), width, height)
    return image, len(segments)
