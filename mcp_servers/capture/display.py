from __future__ import annotations

import json
import logging
import re
import subprocess
import sys

logger = logging.getLogger("mcp.capture.display")

_RESOLUTION_RE = re.compile(r"(\d+)\s*x\s*(\d+)")


def parse_display_width(payload: dict) -> int | None:
    """Pick the main display's width out of `system_profiler SPDisplaysDataType -json`."""
    gpus = payload.get("SPDisplaysDataType") or []
    for gpu in gpus:
        if not isinstance(gpu, dict):
            continue
        for display in gpu.get("spdisplays_ndrvs") or []:
            if not isinstance(display, dict) or display.get("spdisplays_main") != "spdisplays_yes":
                continue
            # "1512 x 982 @ 120.00Hz" on Retina (CSS pixels) or native pixels elsewhere.
            match = _RESOLUTION_RE.search(str(display.get("_spdisplays_resolution") or ""))
            if match:
                return int(match.group(1))
    return None


def detect_display_width(timeout: float = 5.0) -> int | None:
    """Main display width on macOS; None on other platforms or on any failure."""
    if sys.platform != "darwin":
        return None
    try:
        proc = subprocess.run(
            ["system_profiler", "SPDisplaysDataType", "-json"],
            capture_output=True,
            timeout=timeout,
            check=True,
        )
        return parse_display_width(json.loads(proc.stdout.decode(errors="replace")))
    except (OSError, subprocess.SubprocessError, ValueError) as exc:
        logger.debug("display_width_unavailable %s", exc)
        return None
