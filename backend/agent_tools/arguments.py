"""
Tool Argument Models

One pydantic model per tool. The model is both the validator applied
before dispatch and, via ``model_json_schema()``, the input schema shown
to the calling agent. Unknown fields are rejected.
"""

import uuid
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AlertSeverity(str, Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"
    EMERGENCY = "EMERGENCY"


class AlertType(str, Enum):
    INVENTORY_DISCREPANCY = "INVENTORY_DISCREPANCY"
    LOW_STOCK = "LOW_STOCK"
    OVERSTOCK = "OVERSTOCK"
    ORDER_LATE = "ORDER_LATE"
    ORDER_EXCEPTION = "ORDER_EXCEPTION"
    RECEIPT_ISSUE = "RECEIPT_ISSUE"
    LABOR_PERFORMANCE = "LABOR_PERFORMANCE"
    SYSTEM_ERROR = "SYSTEM_ERROR"
    CUSTOM = "CUSTOM"


class AlertEntityType(str, Enum):
    SKU = "SKU"
    LOCATION = "LOCATION"
    ORDER = "ORDER"


class TaskType(str, Enum):
    PICK = "PICK"
    PUTAWAY = "PUTAWAY"
    REPLENISHMENT = "REPLENISHMENT"
    CYCLE_COUNT = "CYCLE_COUNT"
    PACK = "PACK"
    SHIP = "SHIP"
    RECEIVE = "RECEIVE"
    TRANSFER = "TRANSFER"


class ToolArguments(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


# ─── Inventory ─────────────────────────────────────────────────────────────


class InvestigateInventoryArgs(ToolArguments):
    sku: str = Field(..., min_length=1, max_length=100, description='The product SKU to investigate (e.g., "ELEC-LAPTOP-001")')
    include_transactions: bool = Field(True, description="Include recent transaction history")


class InventorySummaryArgs(ToolArguments):
    location_prefix: str | None = Field(
        None, max_length=50, description='Only include locations whose code starts with this prefix (e.g., "A-")'
    )


class CreateInventoryAdjustmentArgs(ToolArguments):
    inventory_id: uuid.UUID = Field(..., description="Inventory record ID to adjust")
    adjustment_quantity: int = Field(
        ..., description="Quantity to adjust (positive for increase, negative for decrease)"
    )
    reason: str = Field(..., min_length=1, max_length=500, description="Reason for the adjustment")

    @field_validator("adjustment_quantity")
    @classmethod
    def non_zero(cls, value: int) -> int:
        if value == 0:
            raise ValueError("adjustment_quantity must be non-zero")
        return value


# ─── Locations / users ─────────────────────────────────────────────────────


class InvestigateLocationArgs(ToolArguments):
    location_code: str = Field(..., min_length=1, max_length=50, description='The location code to investigate (e.g., "P001")')


class InvestigateUserArgs(ToolArguments):
    username: str = Field(..., min_length=1, max_length=100, description='The username to look up (e.g., "jdoe")')


# ─── Orders ────────────────────────────────────────────────────────────────


class LateOrdersArgs(ToolArguments):
    limit: int = Field(20, ge=1, le=100, description="Maximum number of orders to return")


class OrderDetailsArgs(ToolArguments):
    order_number: str = Field(..., min_length=1, max_length=50, description='The order number (e.g., "SO-2024-0001")')


class UpdateOrderPriorityArgs(ToolArguments):
    order_ids: list[uuid.UUID] = Field(..., min_length=1, max_length=100, description="List of order IDs to update")
    priority: int = Field(..., ge=1, le=10, description="New priority (1-10, 1 = highest)")
    reason: str | None = Field(None, max_length=500, description="Reason for priority change")


# ─── Alerts ────────────────────────────────────────────────────────────────


class GetAlertsArgs(ToolArguments):
    severity: AlertSeverity | None = Field(None, description="Filter by severity level")
    limit: int = Field(20, ge=1, le=100, description="Maximum number of alerts to return")


class CreateAlertArgs(ToolArguments):
    alert_type: AlertType = Field(..., alias="type", description="Type of alert")
    severity: AlertSeverity = Field(..., description="Severity level")
    title: str = Field(..., min_length=1, max_length=255, description="Alert title")
    message: str = Field(..., min_length=1, description="Alert message content")
    suggested_action: str | None = Field(None, description="Suggested action to resolve the alert")
    entity_type: AlertEntityType | None = Field(None, description="Kind of entity the alert is about")
    entity_id: str | None = Field(
        None, max_length=100, description="SKU, location code or order number the alert refers to"
    )


# ─── Tasks ─────────────────────────────────────────────────────────────────


class CreateTaskArgs(ToolArguments):
    task_type: TaskType = Field(..., alias="type", description="Type of task to create")
    priority: int = Field(5, ge=1, le=10, description="Priority 1-10 (1 = highest)")
    order_id: uuid.UUID | None = Field(None, description="Order ID for pick/pack tasks")
    location_code: str | None = Field(None, max_length=50, description="Location for replenishment/cycle count tasks")
    notes: str | None = Field(None, description="Additional notes for the task")


# ─── Products ──────────────────────────────────────────────────────────────


class SearchProductsArgs(ToolArguments):
    query: str = Field(..., min_length=1, max_length=100, description="Search query (matches SKU, name, or UPC)")
    limit: int = Field(10, ge=1, le=50, description="Maximum results to return")
