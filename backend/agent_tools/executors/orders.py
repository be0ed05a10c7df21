"""Order tool executors."""

from datetime import datetime

import structlog
from sqlalchemy import select

from agent_tools.arguments import LateOrdersArgs, OrderDetailsArgs, UpdateOrderPriorityArgs
from agent_tools.base import ToolContext, ToolResult
from db.models import Order, Task

logger = structlog.get_logger()

CLOSED_ORDER_STATUSES = ("SHIPPED", "CANCELLED")


def _order_dict(order: Order, now: datetime | None = None) -> dict:
    data = {
        "order_id": str(order.order_id),
        "order_number": order.order_number,
        "customer_name": order.customer_name,
        "status": order.status,
        "priority": order.priority,
        "required_date": order.required_date.isoformat() if order.required_date else None,
        "late_reason": order.late_reason,
        "line_count": order.line_count,
    }
    if now is not None and order.required_date is not None:
        data["days_late"] = max((now - order.required_date).days, 0)
    return data


async def get_late_orders(ctx: ToolContext, args: LateOrdersArgs) -> ToolResult:
    now = datetime.utcnow()
    result = await ctx.db.execute(
        select(Order)
        .where(
            Order.required_date.is_not(None),
            Order.required_date < now,
            Order.status.not_in(CLOSED_ORDER_STATUSES),
        )
        .order_by(Order.required_date.asc(), Order.priority.asc())
        .limit(args.limit)
    )
    orders = result.scalars().all()
    return ToolResult.ok(
        f"{len(orders)} late order(s)",
        count=len(orders),
        orders=[_order_dict(o, now) for o in orders],
    )


async def get_order_details(ctx: ToolContext, args: OrderDetailsArgs) -> ToolResult:
    order = await ctx.db.scalar(select(Order).where(Order.order_number == args.order_number))
    if order is None:
        return ToolResult.fail(f"Order {args.order_number} not found")

    task_result = await ctx.db.execute(
        select(Task).where(Task.order_id == order.order_id).order_by(Task.created_at.asc())
    )
    return ToolResult.ok(
        f"Order {order.order_number}",
        order=_order_dict(order, datetime.utcnow()),
        tasks=[
            {"task_id": str(t.task_id), "type": t.task_type, "status": t.status, "priority": t.priority}
            for t in task_result.scalars().all()
        ],
    )


async def update_order_priority(ctx: ToolContext, args: UpdateOrderPriorityArgs) -> ToolResult:
    """All referenced orders must exist; either every order is updated or none is."""
    db = ctx.db
    order_ids = list(dict.fromkeys(args.order_ids))
    try:
        result = await db.execute(
            select(Order)
            .where(Order.order_id.in_(order_ids))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        orders = {o.order_id: o for o in result.scalars().all()}
        missing = [str(oid) for oid in order_ids if oid not in orders]
        if missing:
            await db.rollback()
            return ToolResult.fail(f"Orders not found: {', '.join(missing)}")

        changes = []
        for oid in order_ids:
            order = orders[oid]
            changes.append(
                {"order_number": order.order_number, "old_priority": order.priority, "new_priority": args.priority}
            )
            order.priority = args.priority
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("orders.priority_updated", count=len(changes), priority=args.priority, reason=args.reason)
    return ToolResult.ok(f"Updated priority of {len(changes)} order(s) to {args.priority}", changes=changes)
