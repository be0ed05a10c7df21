"""
Agent tools package.

The sandboxed boundary through which an LLM agent reads from and makes
guarded changes to warehouse state:
  - registry   → fixed catalogue of named tools and their argument models
  - gateway    → validation and dispatch; failures come back as results
  - executors  → one module per entity the tools touch

Usage:
    from agent_tools.gateway import ToolGateway

    gateway = ToolGateway(db)
    result = await gateway.execute("investigate_inventory", {"sku": "ELEC-LAPTOP-001"})
"""

from agent_tools.base import ToolContext, ToolResult
from agent_tools.gateway import ToolGateway
from agent_tools.registry import TOOL_REGISTRY, ToolDefinition, ToolName, ToolSpec, list_tools

__all__ = [
    "ToolContext",
    "ToolResult",
    "ToolGateway",
    "TOOL_REGISTRY",
    "ToolDefinition",
    "ToolName",
    "ToolSpec",
    "list_tools",
]
