"""
Tool handlers organized by domain.

All handlers follow the signature: (config, arguments) -> ToolResult
"""

from .capture import CAPTURE_HANDLERS

ALL_HANDLERS: dict = {
    **CAPTURE_HANDLERS,
}

__all__ = ["ALL_HANDLERS", "CAPTURE_HANDLERS"]
