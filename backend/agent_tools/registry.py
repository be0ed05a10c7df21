"""
Tool Registry

The fixed catalogue of operations an LLM agent may invoke. Each entry maps
a ``ToolName`` to its argument model and handler. The catalogue is built
once at import and is the only thing the agent is shown.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel

from agent_tools import arguments as a
from agent_tools.base import ToolContext, ToolResult
from agent_tools.executors import alerts, inventory, locations, orders, products, tasks, users


class ToolName(str, Enum):
    INVESTIGATE_INVENTORY = "investigate_inventory"
    GET_INVENTORY_SUMMARY = "get_inventory_summary"
    CREATE_INVENTORY_ADJUSTMENT = "create_inventory_adjustment"
    INVESTIGATE_LOCATION = "investigate_location"
    INVESTIGATE_USER = "investigate_user"
    GET_LATE_ORDERS = "get_late_orders"
    GET_ORDER_DETAILS = "get_order_details"
    UPDATE_ORDER_PRIORITY = "update_order_priority"
    GET_ALERTS = "get_alerts"
    CREATE_ALERT = "create_alert"
    CREATE_TASK = "create_task"
    SEARCH_PRODUCTS = "search_products"


Handler = Callable[[ToolContext, Any], Awaitable[ToolResult]]


@dataclass(frozen=True)
class ToolSpec:
    name: ToolName
    description: str
    args_model: type[BaseModel]
    handler: Handler
    mutates: bool = False


class ToolDefinition(BaseModel):
    name: str
    description: str
    input_schema: dict[str, Any]


def _spec(name, description, args_model, handler, mutates=False) -> tuple[ToolName, ToolSpec]:
    return name, ToolSpec(name, description, args_model, handler, mutates)


TOOL_REGISTRY: dict[ToolName, ToolSpec] = dict(
    [
        # ── Read / investigate ──
        _spec(
            ToolName.INVESTIGATE_INVENTORY,
            "Look up a SKU across all locations: current snapshot quantities, live inventory "
            "records and optionally recent transactions, adjustments and open discrepancies.",
            a.InvestigateInventoryArgs,
            inventory.investigate_inventory,
        ),
        _spec(
            ToolName.GET_INVENTORY_SUMMARY,
            "Summarize current inventory: SKU and location counts, total units and "
            "locations at or below zero. Optionally filtered by location prefix.",
            a.InventorySummaryArgs,
            inventory.get_inventory_summary,
        ),
        _spec(
            ToolName.INVESTIGATE_LOCATION,
            "Show everything known about a location: contents, recent movements in and out, "
            "recent adjustments and open discrepancies.",
            a.InvestigateLocationArgs,
            locations.investigate_location,
        ),
        _spec(
            ToolName.INVESTIGATE_USER,
            "Look up an operator by username with their recent audited activity and adjustments.",
            a.InvestigateUserArgs,
            users.investigate_user,
        ),
        _spec(
            ToolName.GET_LATE_ORDERS,
            "List open orders whose required date has passed, oldest first.",
            a.LateOrdersArgs,
            orders.get_late_orders,
        ),
        _spec(
            ToolName.GET_ORDER_DETAILS,
            "Get an order by order number together with its tasks.",
            a.OrderDetailsArgs,
            orders.get_order_details,
        ),
        _spec(
            ToolName.SEARCH_PRODUCTS,
            "Search products by SKU, name or UPC.",
            a.SearchProductsArgs,
            products.search_products,
        ),
        _spec(
            ToolName.GET_ALERTS,
            "List unresolved alerts, most severe first.",
            a.GetAlertsArgs,
            alerts.get_alerts,
        ),
        # ── Guarded mutations ──
        _spec(
            ToolName.CREATE_INVENTORY_ADJUSTMENT,
            "Adjust on-hand quantity of an inventory record. Refused if the result would be "
            "negative. Records a transaction history entry as part of the same change.",
            a.CreateInventoryAdjustmentArgs,
            inventory.create_inventory_adjustment,
            mutates=True,
        ),
        _spec(
            ToolName.UPDATE_ORDER_PRIORITY,
            "Set the priority of one or more orders. Every order must exist or nothing changes.",
            a.UpdateOrderPriorityArgs,
            orders.update_order_priority,
            mutates=True,
        ),
        _spec(
            ToolName.CREATE_ALERT,
            "Raise an alert for supervisors, optionally tied to a SKU, location or order.",
            a.CreateAlertArgs,
            alerts.create_alert,
            mutates=True,
        ),
        _spec(
            ToolName.CREATE_TASK,
            "Create a warehouse task such as a cycle count or replenishment.",
            a.CreateTaskArgs,
            tasks.create_task,
            mutates=True,
        ),
    ]
)


def get_tool(name: str) -> ToolSpec | None:
    try:
        return TOOL_REGISTRY[ToolName(name)]
    except ValueError:
        return None


def list_tools() -> list[ToolDefinition]:
    return [
        ToolDefinition(
            name=spec.name.value,
            description=spec.description,
            input_schema=spec.args_model.model_json_schema(by_alias=True),
        )
        for spec in TOOL_REGISTRY.values()
    ]
