"""
Type definitions for MCP server responses and handlers.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..config import CaptureConfig


@dataclass(slots=True)
class ToolContent:
    """Single content item in tool response."""

    type: str  # "text"
    text: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to MCP content format."""
        return {"type": self.type, "text": self.text}


@dataclass(slots=True)
class ToolResult:
    """Result of a tool execution."""

    content: list[ToolContent] = field(default_factory=list)
    is_error: bool = False
    # Structured payload for in-process callers and tests; not sent on the wire.
    data: Any | None = None

    @classmethod
    def error(
        cls,
        message: str,
        *,
        tool: str | None = None,
        suggestion: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> ToolResult:
        payload: dict[str, Any] = {"ok": False, "error": message}
        if tool:
            payload["tool"] = tool
        if suggestion:
            payload["suggestion"] = suggestion
        if details:
            payload["details"] = details
        lines = [f"Error: {message}"]
        if suggestion:
            lines.append(f"Suggestion: {suggestion}")
        return cls(content=[ToolContent(type="text", text="\n".join(lines))], is_error=True, data=payload)

    @classmethod
    def summary_with_json(cls, summary: str, data: Any) -> ToolResult:
        """Human-readable summary followed by the structured payload."""
        return cls(
            content=[
                ToolContent(type="text", text=summary),
                ToolContent(type="text", text=_dump(data)),
            ],
            data=data,
        )

    def to_content_list(self) -> list[dict[str, Any]]:
        """Convert to MCP content list format."""
        return [c.to_dict() for c in self.content]


def _dump(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False, default=str)


HandlerFunc = Callable[["CaptureConfig", dict[str, Any]], ToolResult]
