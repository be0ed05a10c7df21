"""
Tool Dispatch Gateway

Single entry point for agent tool calls. Looks the tool up, validates the
arguments against its model and runs the handler. Every outcome, including
unexpected failures, comes back as a ``ToolResult``; nothing raises past
``execute``.
"""

from typing import Any

import structlog
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from agent_tools.base import ToolContext, ToolResult
from agent_tools.registry import ToolDefinition, get_tool, list_tools
from core.config import get_settings
from core.errors import DomainError

logger = structlog.get_logger()


def _validation_errors(exc: ValidationError) -> list[dict[str, Any]]:
    return [
        {"field": ".".join(str(p) for p in err["loc"]) or None, "message": err["msg"], "type": err["type"]}
        for err in exc.errors()
    ]


class ToolGateway:
    """Stateless between calls; holds only the session and acting identity."""

    def __init__(self, db: AsyncSession, system_username: str | None = None):
        if system_username is None:
            system_username = get_settings().system_username
        self.context = ToolContext(db=db, system_username=system_username)

    def list_tools(self) -> list[ToolDefinition]:
        return list_tools()

    async def _rollback(self) -> None:
        try:
            await self.context.db.rollback()
        except Exception:
            logger.exception("tool.rollback_failed")

    async def execute(self, name: str, args: dict[str, Any] | None = None) -> ToolResult:
        spec = get_tool(name)
        if spec is None:
            logger.warning("tool.rejected", tool=name, reason="unknown_tool")
            return ToolResult.fail(f"Unknown tool: {name}")

        logger.debug("tool.received", tool=name, mutates=spec.mutates)
        try:
            parsed = spec.args_model.model_validate(args or {})
        except ValidationError as exc:
            errors = _validation_errors(exc)
            logger.warning("tool.rejected", tool=name, reason="invalid_arguments", errors=errors)
            return ToolResult.fail(f"Invalid arguments for {name}", errors=errors)
        logger.debug("tool.validated", tool=name)

        try:
            result = await spec.handler(self.context, parsed)
        except DomainError as exc:
            await self._rollback()
            logger.warning("tool.rejected", tool=name, reason=exc.message)
            return ToolResult.fail(exc.message)
        except Exception as exc:
            await self._rollback()
            logger.exception("tool.failed", tool=name, error=str(exc))
            return ToolResult.fail(f"Tool {name} failed: {type(exc).__name__}")

        if result.success:
            logger.info("tool.executed", tool=name, mutates=spec.mutates)
        else:
            logger.info("tool.rejected", tool=name, reason=result.message)
        return result
