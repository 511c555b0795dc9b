"""
capture_url tool handler - run a capture and save it to disk.
"""

from __future__ import annotations

import logging
import time
from io import BytesIO
from pathlib import Path
from typing import TYPE_CHECKING, Any

from PIL import Image

from ...capture import capture_url_sync
from ...config import (
    DEFAULT_TIMEOUT_MS,
    DEFAULT_VIEWPORT_WIDTH,
    MAX_DELAY_MS,
    MAX_TIMEOUT_MS,
    MAX_VIEWPORT_WIDTH,
    MIN_TIMEOUT_MS,
    MIN_VIEWPORT_WIDTH,
    OUTPUT_FORMATS,
    PNG_COMPRESS_LEVEL,
    WAIT_UNTIL_OPTIONS,
    WEBP_MAX_DIMENSION,
    WEBP_QUALITY,
)
from ...display import detect_display_width
from ...errors import CaptureError
from ...screenshot import unbounded_image_pixels
from ...types import CaptureRequest
from ..types import ToolResult

if TYPE_CHECKING:
    from ...config import CaptureConfig

logger = logging.getLogger("mcp.capture.handlers")


def _invalid(message: str, suggestion: str | None = None) -> CaptureError:
    return CaptureError(message, step="validate", suggestion=suggestion)


def _int_arg(args: dict[str, Any], name: str, default: int | None, lo: int, hi: int) -> int | None:
    raw = args.get(name)
    if raw is None:
        return default
    if isinstance(raw, bool) or not isinstance(raw, (int, float)) or int(raw) != raw:
        raise _invalid(f"{name} must be an integer", suggestion=f"Pass {name} between {lo} and {hi}")
    value = int(raw)
    if value < lo or value > hi:
        raise _invalid(f"{name} must be between {lo} and {hi} (got {value})")
    return value


def _choice_arg(args: dict[str, Any], name: str, default: str, options: tuple[str, ...]) -> str:
    raw = args.get(name)
    if raw is None:
        return default
    value = str(raw).strip().lower()
    if value not in options:
        raise _invalid(f"Invalid {name}: {raw}", suggestion=f"Use one of: {', '.join(options)}")
    return value


def parse_capture_args(args: dict[str, Any]) -> tuple[CaptureRequest, str | None, str]:
    """Validate tool arguments; returns the request, output dir override and format."""
    url = args.get("url")
    if not isinstance(url, str) or not url.strip():
        raise _invalid("url is required", suggestion='capture_url(url="https://example.com")')

    viewport = _int_arg(args, "viewportWidth", None, MIN_VIEWPORT_WIDTH, MAX_VIEWPORT_WIDTH)
    if viewport is None:
        viewport = detect_display_width() or DEFAULT_VIEWPORT_WIDTH
        viewport = max(MIN_VIEWPORT_WIDTH, min(MAX_VIEWPORT_WIDTH, viewport))

    request = CaptureRequest(
        url=url.strip(),
        viewport_width=viewport,
        wait_until=_choice_arg(args, "waitUntil", "load", WAIT_UNTIL_OPTIONS),
        delay_ms=_int_arg(args, "delay", 0, 0, MAX_DELAY_MS) or 0,
        timeout_ms=_int_arg(args, "timeout", DEFAULT_TIMEOUT_MS, MIN_TIMEOUT_MS, MAX_TIMEOUT_MS) or DEFAULT_TIMEOUT_MS,
    )
    output_dir = args.get("outputDir")
    if output_dir is not None and (not isinstance(output_dir, str) or not output_dir.strip()):
        raise _invalid("outputDir must be a non-empty string")
    fmt = _choice_arg(args, "format", "webp", OUTPUT_FORMATS)
    return request, (output_dir.strip() if output_dir else None), fmt


def save_capture(image: bytes, output_dir: str, fmt: str) -> tuple[Path, str, bool]:
    """Encode the captured PNG as `fmt` under `output_dir`.

    Returns the file path, the format actually written and whether WebP had to
    fall back to PNG because the page exceeds WebP's dimension limit.
    """
    out_dir = Path(output_dir).expanduser().resolve()
    out_dir.mkdir(parents=True, exist_ok=True)

    with unbounded_image_pixels(), Image.open(BytesIO(image)) as img:
        webp_fallback = fmt == "webp" and max(img.size) > WEBP_MAX_DIMENSION
        actual = "png" if fmt == "png" or webp_fallback else "webp"
        path = out_dir / f"capture_{int(time.time() * 1000)}.{actual}"
        if actual == "webp":
            img.save(path, format="WEBP", quality=WEBP_QUALITY)
        else:
            img.save(path, format="PNG", compress_level=PNG_COMPRESS_LEVEL)
    return path, actual, webp_fallback


def handle_capture_url(config: CaptureConfig, args: dict[str, Any]) -> ToolResult:
    request, output_dir, fmt = parse_capture_args(args)
    result = capture_url_sync(request, config)

    file_path, actual_format, webp_fallback = save_capture(result.image, output_dir or config.output_dir, fmt)
    file_size = file_path.stat().st_size

    lines = [
        f"Captured {result.page_width}×{result.page_height} screenshot of {result.url}",
        f"→ Saved as {actual_format.upper()} to: {file_path}",
        f"→ File size: {file_size / 1024:.1f} KB",
    ]
    if webp_fallback:
        lines.append(f"⚠ Image too large for WebP ({WEBP_MAX_DIMENSION}px max side), saved as PNG instead")
    if result.segments_stitched:
        lines.append(
            f"→ Scroll-stitched {result.segments_stitched} segments "
            f"(page exceeded {config.capture_ceiling:,}px height limit)"
        )

    payload = {
        "url": result.url,
        "filePath": str(file_path),
        "width": result.page_width,
        "height": result.page_height,
        "format": actual_format,
        "fileSize": file_size,
        "segmentsStitched": result.segments_stitched,
        "viewportWidth": request.viewport_width,
    }
    logger.info("capture_saved path=%s size=%s", file_path, file_size)
    return ToolResult.summary_with_json("\n".join(lines), payload)


CAPTURE_HANDLERS: dict[str, Any] = {
    "capture_url": handle_capture_url,
}
