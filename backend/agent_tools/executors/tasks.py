"""Task tool executors."""

import structlog
from sqlalchemy import select

from agent_tools.arguments import CreateTaskArgs
from agent_tools.base import ToolContext, ToolResult
from db.models import Location, Order, Task

logger = structlog.get_logger()


async def create_task(ctx: ToolContext, args: CreateTaskArgs) -> ToolResult:
    db = ctx.db

    if args.order_id is not None and await db.get(Order, args.order_id) is None:
        return ToolResult.fail(f"Order {args.order_id} not found")

    location_id = None
    if args.location_code is not None:
        location = await db.scalar(select(Location).where(Location.code == args.location_code))
        if location is None:
            return ToolResult.fail(f"Location {args.location_code} not found")
        location_id = location.location_id

    task = Task(
        task_type=args.task_type.value,
        priority=args.priority,
        status="PENDING",
        order_id=args.order_id,
        location_id=location_id,
        notes=args.notes,
        created_by=ctx.system_username or "agent",
    )
    try:
        db.add(task)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("tasks.created", task_id=str(task.task_id), type=task.task_type, priority=task.priority)
    return ToolResult.ok(
        f"Created {task.task_type} task with priority {task.priority}",
        task_id=str(task.task_id),
        type=task.task_type,
        priority=task.priority,
    )
