"""User / labor tool executors."""

from sqlalchemy import select

from agent_tools.arguments import InvestigateUserArgs
from agent_tools.base import ToolContext, ToolResult
from db.models import AdjustmentSnapshot, AuditLog, User


async def investigate_user(ctx: ToolContext, args: InvestigateUserArgs) -> ToolResult:
    db = ctx.db
    user = await db.scalar(select(User).where(User.username == args.username))
    if user is None:
        return ToolResult.fail(f"No user found with username {args.username}")

    audit_result = await db.execute(
        select(AuditLog)
        .where(AuditLog.user_id == user.user_id)
        .order_by(AuditLog.created_at.desc())
        .limit(20)
    )
    # WMS exports identify operators by username
    adj_result = await db.execute(
        select(AdjustmentSnapshot)
        .where(AdjustmentSnapshot.user_id == user.username)
        .order_by(AdjustmentSnapshot.adjustment_date.desc())
        .limit(20)
    )
    adjustments = adj_result.scalars().all()

    return ToolResult.ok(
        f"User {user.username}",
        user={
            "username": user.username,
            "full_name": user.full_name,
            "email": user.email,
            "role": user.role,
            "is_active": user.is_active,
            "last_login": user.last_login_at.isoformat() if user.last_login_at else None,
        },
        recent_activity=[
            {
                "action": log.action,
                "entity_type": log.entity_type,
                "entity_id": log.entity_id,
                "timestamp": log.created_at.isoformat(),
            }
            for log in audit_result.scalars().all()
        ],
        recent_adjustments=[
            {
                "sku": a.sku,
                "location_code": a.location_code,
                "quantity": a.adjustment_qty,
                "reason": a.reason,
                "date": a.adjustment_date.isoformat(),
            }
            for a in adjustments
        ],
    )
