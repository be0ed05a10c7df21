"""
Tool execution primitives shared by the registry, executors and gateway.
"""

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession


@dataclass
class ToolContext:
    """What a tool handler may touch: the store handle and the acting identity."""

    db: AsyncSession
    system_username: str = ""


@dataclass
class ToolResult:
    """Uniform ``{success, message, payload}`` returned for every tool call."""

    success: bool
    message: str = ""
    payload: dict[str, Any] = field(default_factory=dict)
    errors: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def ok(cls, message: str = "", **payload: Any) -> "ToolResult":
        return cls(success=True, message=message, payload=payload)

    @classmethod
    def fail(cls, message: str, errors: list[dict[str, Any]] | None = None) -> "ToolResult":
        return cls(success=False, message=message, errors=errors or [])

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"success": self.success, "message": self.message, "payload": self.payload}
        if self.errors:
            data["errors"] = self.errors
        return data
