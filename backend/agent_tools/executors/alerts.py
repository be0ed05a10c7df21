"""Alert tool executors."""

import structlog
from sqlalchemy import case, select
from sqlalchemy.ext.asyncio import AsyncSession

from agent_tools.arguments import AlertEntityType, CreateAlertArgs, GetAlertsArgs
from agent_tools.base import ToolContext, ToolResult
from db.models import Alert, InventorySnapshot, Location, Order, Product

logger = structlog.get_logger()

severity_order = case(
    (Alert.severity == "EMERGENCY", 0),
    (Alert.severity == "CRITICAL", 1),
    (Alert.severity == "WARNING", 2),
    else_=3,
)


async def entity_exists(db: AsyncSession, entity_type: AlertEntityType, entity_id: str) -> bool:
    """SKUs and locations count as known if present in master data or any snapshot."""
    if entity_type == AlertEntityType.ORDER:
        return await db.scalar(select(Order.order_id).where(Order.order_number == entity_id)) is not None
    if entity_type == AlertEntityType.SKU:
        master = select(Product.product_id).where(Product.sku == entity_id)
        snapshot = select(InventorySnapshot.snapshot_id).where(InventorySnapshot.sku == entity_id).limit(1)
    else:
        master = select(Location.location_id).where(Location.code == entity_id)
        snapshot = select(InventorySnapshot.snapshot_id).where(InventorySnapshot.location_code == entity_id).limit(1)
    if await db.scalar(master) is not None:
        return True
    return await db.scalar(snapshot) is not None


async def get_alerts(ctx: ToolContext, args: GetAlertsArgs) -> ToolResult:
    query = select(Alert).where(Alert.is_resolved.is_(False))
    if args.severity:
        query = query.where(Alert.severity == args.severity.value)
    result = await ctx.db.execute(query.order_by(severity_order, Alert.created_at.desc()).limit(args.limit))
    alerts = result.scalars().all()
    return ToolResult.ok(
        f"{len(alerts)} unresolved alert(s)",
        count=len(alerts),
        alerts=[
            {
                "alert_id": str(a.alert_id),
                "type": a.alert_type,
                "severity": a.severity,
                "title": a.title,
                "message": a.message,
                "suggested_action": a.suggested_action,
                "entity_type": a.entity_type,
                "entity_id": a.entity_id,
                "created_at": a.created_at.isoformat(),
            }
            for a in alerts
        ],
    )


async def create_alert(ctx: ToolContext, args: CreateAlertArgs) -> ToolResult:
    db = ctx.db
    if (args.entity_type is None) != (args.entity_id is None):
        return ToolResult.fail("entity_type and entity_id must be given together")
    if args.entity_type is not None and not await entity_exists(db, args.entity_type, args.entity_id):
        return ToolResult.fail(f"{args.entity_type.value} {args.entity_id} not found")

    alert = Alert(
        alert_type=args.alert_type.value,
        severity=args.severity.value,
        title=args.title,
        message=args.message,
        suggested_action=args.suggested_action,
        entity_type=args.entity_type.value if args.entity_type else None,
        entity_id=args.entity_id,
        source="agent",
    )
    try:
        db.add(alert)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("alerts.created", alert_id=str(alert.alert_id), type=alert.alert_type, severity=alert.severity)
    return ToolResult.ok(f"Created {alert.severity} alert: {alert.title}", alert_id=str(alert.alert_id))
