"""
Value types exchanged with the capture engine.
"""

from __future__ import annotations

from dataclasses import dataclass

from .config import DEFAULT_TIMEOUT_MS, DEFAULT_VIEWPORT_WIDTH


@dataclass(frozen=True, slots=True)
class CaptureRequest:
    url: str
    viewport_width: int = DEFAULT_VIEWPORT_WIDTH
    wait_until: str = "load"  # "load" | "domcontentloaded" | "networkidle"
    delay_ms: int = 0
    timeout_ms: int = DEFAULT_TIMEOUT_MS


@dataclass(frozen=True, slots=True)
class CaptureResult:
    image: bytes  # PNG
    page_width: int
    page_height: int
    url: str
    segments_stitched: int | None = None  # None means a single screenshot covered the page

    @property
    def stitched(self) -> bool:
        return self.segments_stitched is not None
