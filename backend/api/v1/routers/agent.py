"""
Agent Tools Router — HTTP transport for the tool catalogue and dispatch.

Tool failures are results, not errors: ``POST`` always answers 200 with
``{"success": ...}`` so the calling agent can branch on it.
"""

from typing import Any

from fastapi import APIRouter, Body, Depends

from agent_tools.gateway import ToolGateway
from agent_tools.registry import ToolDefinition, list_tools
from api.deps import get_current_user, get_tool_gateway

router = APIRouter(
    prefix="/api/v1/agent",
    tags=["agent"],
    dependencies=[Depends(get_current_user)],
)


@router.get("/tools", response_model=list[ToolDefinition])
async def get_tools():
    return list_tools()


@router.post("/tools/{name}")
async def execute_tool(
    name: str,
    arguments: dict[str, Any] | None = Body(None),
    gateway: ToolGateway = Depends(get_tool_gateway),
):
    result = await gateway.execute(name, arguments or {})
    return result.to_dict()
