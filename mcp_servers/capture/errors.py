"""
Typed failures of a single capture.

Every error is terminal for the capture that raised it. `step` names the stage
that failed, `details` carries the timeout/limit/exit code involved and
`suggestion` is a short hint surfaced to the agent by the server layer.
"""

from __future__ import annotations

from typing import Any


class CaptureError(Exception):
    """Base class for capture engine failures."""

    step = "capture"

    def __init__(
        self,
        message: str,
        *,
        step: str | None = None,
        suggestion: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if step:
            self.step = step
        self.suggestion = suggestion
        self.details = dict(details or {})

    def __str__(self) -> str:
        return self.message


class InvalidUrlError(CaptureError):
    step = "validate"


class BrowserNotFoundError(CaptureError):
    step = "resolve_binary"


class BrowserLaunchError(CaptureError):
    step = "launch"


class BrowserStartupError(CaptureError):
    step = "startup"


class TargetDiscoveryError(CaptureError):
    step = "discover_target"


class CdpConnectError(CaptureError):
    step = "connect"


class CdpConnectionClosed(CaptureError):
    step = "cdp"


class CdpProtocolError(CaptureError):
    """The browser answered a command with an explicit error object."""

    step = "cdp"

    def __init__(self, method: str, code: Any, message: str) -> None:
        super().__init__(
            f"CDP error ({code}) in {method}: {message}",
            details={"method": method, "code": code},
        )
        self.method = method
        self.code = code
        self.remote_message = message


class CdpTimeoutError(CaptureError):
    step = "cdp"

    def __init__(self, method: str, timeout: float) -> None:
        super().__init__(
            f"CDP command '{method}' timed out after {int(timeout * 1000)}ms",
            details={"method": method, "timeoutMs": int(timeout * 1000)},
        )
        self.method = method
        self.timeout = timeout


class NavigationError(CaptureError):
    step = "navigate"


class WaitTimeoutError(CaptureError):
    step = "wait"


class BrowserExitedError(CaptureError):
    step = "browser"


class PageTooTallError(CaptureError):
    step = "screenshot"


class CaptureTimeoutError(CaptureError):
    step = "deadline"


__all__ = [
    "BrowserExitedError",
    "BrowserLaunchError",
    "BrowserNotFoundError",
    "BrowserStartupError",
    "CaptureError",
    "CaptureTimeoutError",
    "CdpConnectError",
    "CdpConnectionClosed",
    "CdpProtocolError",
    "CdpTimeoutError",
    "InvalidUrlError",
    "NavigationError",
    "PageTooTallError",
    "TargetDiscoveryError",
    "WaitTimeoutError",
]
