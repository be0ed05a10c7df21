"""
Inventory tool executors.

Read tools combine the ingested WMS snapshots with live inventory rows.
The adjustment tool is the one read-modify-write path in the gateway:

  1. Lock the inventory row (SELECT ... FOR UPDATE)
  2. Refuse if the result would be negative
  3. Conditional UPDATE on the version column (lost-update guard)
  4. Insert the transaction-history row and audit entry
  5. Commit once; any failure rolls the whole unit back
"""

from datetime import datetime

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from agent_tools.arguments import (
    CreateInventoryAdjustmentArgs,
    InventorySummaryArgs,
    InvestigateInventoryArgs,
)
from agent_tools.base import ToolContext, ToolResult
from db.models import (
    Alert,
    AuditLog,
    Discrepancy,
    InventoryRecord,
    InventorySnapshot,
    InventoryTransaction,
    Location,
    Product,
    TransactionSnapshot,
    User,
)

logger = structlog.get_logger()

LOW_STOCK_UNITS = 10
SUMMARY_SNAPSHOT_WINDOW = 1000


def latest_per_key(snapshots, key) -> list[InventorySnapshot]:
    """Keep the first (newest) snapshot per key from a newest-first list."""
    latest = {}
    for snap in snapshots:
        latest.setdefault(key(snap), snap)
    return list(latest.values())


async def investigate_inventory(ctx: ToolContext, args: InvestigateInventoryArgs) -> ToolResult:
    db = ctx.db
    snap_result = await db.execute(
        select(InventorySnapshot)
        .where(InventorySnapshot.sku == args.sku)
        .order_by(InventorySnapshot.snapshot_date.desc())
        .limit(50)
    )
    snapshots = latest_per_key(snap_result.scalars().all(), lambda s: s.location_code)

    live_result = await db.execute(
        select(InventoryRecord, Location.code)
        .join(Product, InventoryRecord.product_id == Product.product_id)
        .join(Location, InventoryRecord.location_id == Location.location_id)
        .where(Product.sku == args.sku)
        .order_by(Location.code)
    )
    live = live_result.all()

    if not snapshots and not live:
        return ToolResult.fail(f"No inventory data found for SKU {args.sku}")

    transactions = []
    if args.include_transactions:
        tx_result = await db.execute(
            select(TransactionSnapshot)
            .where(TransactionSnapshot.sku == args.sku)
            .order_by(TransactionSnapshot.transaction_date.desc())
            .limit(20)
        )
        transactions = [
            {
                "type": t.transaction_type,
                "quantity": t.quantity,
                "from_location": t.from_location,
                "to_location": t.to_location,
                "user_id": t.user_id,
                "timestamp": t.transaction_date.isoformat(),
            }
            for t in tx_result.scalars().all()
        ]

    disc_result = await db.execute(
        select(Discrepancy).where(Discrepancy.sku == args.sku, Discrepancy.status == "OPEN")
    )
    alert_result = await db.execute(
        select(Alert).where(Alert.entity_type == "SKU", Alert.entity_id == args.sku, Alert.is_resolved.is_(False))
    )

    return ToolResult.ok(
        f"Inventory for {args.sku}",
        sku=args.sku,
        snapshot_inventory={
            "total_on_hand": sum(s.quantity_on_hand for s in snapshots),
            "total_allocated": sum(s.quantity_allocated for s in snapshots),
            "total_available": sum(s.quantity_available for s in snapshots),
            "locations": [
                {
                    "location": s.location_code,
                    "on_hand": s.quantity_on_hand,
                    "allocated": s.quantity_allocated,
                    "available": s.quantity_available,
                    "snapshot_date": s.snapshot_date.isoformat(),
                }
                for s in sorted(snapshots, key=lambda s: s.location_code)
            ],
        },
        live_inventory=[
            {
                "inventory_id": str(record.inventory_id),
                "location": code,
                "on_hand": record.quantity_on_hand,
                "allocated": record.quantity_allocated,
                "available": record.quantity_available,
                "lot_number": record.lot_number,
            }
            for record, code in live
        ],
        recent_transactions=transactions,
        discrepancies=[
            {
                "discrepancy_id": str(d.discrepancy_id),
                "type": d.discrepancy_type,
                "severity": d.severity,
                "location_code": d.location_code,
                "variance": d.variance,
                "description": d.description,
            }
            for d in disc_result.scalars().all()
        ],
        alerts=[
            {"type": a.alert_type, "severity": a.severity, "title": a.title, "message": a.message}
            for a in alert_result.scalars().all()
        ],
    )


async def get_inventory_summary(ctx: ToolContext, args: InventorySummaryArgs) -> ToolResult:
    db = ctx.db
    query = select(InventorySnapshot)
    if args.location_prefix:
        query = query.where(InventorySnapshot.location_code.startswith(args.location_prefix))
    result = await db.execute(
        query.order_by(InventorySnapshot.snapshot_date.desc()).limit(SUMMARY_SNAPSHOT_WINDOW)
    )
    snapshots = latest_per_key(result.scalars().all(), lambda s: (s.sku, s.location_code))

    severity_rows = await db.execute(
        select(Discrepancy.severity, func.count())
        .where(Discrepancy.status == "OPEN")
        .group_by(Discrepancy.severity)
    )

    low_stock = sorted(
        (s for s in snapshots if s.quantity_on_hand < LOW_STOCK_UNITS),
        key=lambda s: (s.quantity_on_hand, s.sku, s.location_code),
    )[:10]

    return ToolResult.ok(
        "Inventory summary",
        summary={
            "total_records": len(snapshots),
            "total_on_hand": sum(s.quantity_on_hand for s in snapshots),
            "total_allocated": sum(s.quantity_allocated for s in snapshots),
            "total_available": sum(s.quantity_available for s in snapshots),
            "unique_skus": len({s.sku for s in snapshots}),
            "unique_locations": len({s.location_code for s in snapshots}),
        },
        open_discrepancies={severity: int(count) for severity, count in severity_rows.all()},
        low_stock_items=[
            {"sku": s.sku, "location": s.location_code, "on_hand": s.quantity_on_hand} for s in low_stock
        ],
    )


# ── Adjustment ─────────────────────────────────────────────────────────────


async def _write_history(
    db: AsyncSession,
    record: InventoryRecord,
    quantity: int,
    before: int,
    after: int,
    reason: str,
    user: User,
) -> InventoryTransaction:
    """Transaction-history row for an adjustment; flushed inside the caller's transaction."""
    history = InventoryTransaction(
        inventory_id=record.inventory_id,
        product_id=record.product_id,
        location_id=record.location_id,
        transaction_type="ADJUST_IN" if quantity > 0 else "ADJUST_OUT",
        quantity=quantity,
        quantity_before=before,
        quantity_after=after,
        reason=reason,
        reference_type="AGENT_ADJUSTMENT",
        user_id=user.user_id,
    )
    db.add(history)
    db.add(
        AuditLog(
            user_id=user.user_id,
            action="INVENTORY_ADJUSTMENT",
            entity_type="inventory",
            entity_id=str(record.inventory_id),
        )
    )
    await db.flush()
    return history


async def resolve_system_user(ctx: ToolContext) -> User | None:
    if not ctx.system_username:
        return None
    return await ctx.db.scalar(
        select(User).where(User.username == ctx.system_username, User.is_active.is_(True))
    )


async def create_inventory_adjustment(ctx: ToolContext, args: CreateInventoryAdjustmentArgs) -> ToolResult:
    db = ctx.db

    user = await resolve_system_user(ctx)
    if user is None:
        return ToolResult.fail(
            "Adjustments are refused: no active system user is configured "
            f"(SYSTEM_USERNAME={ctx.system_username or '<unset>'})"
        )
    user_id = user.user_id

    try:
        record = await db.scalar(
            select(InventoryRecord)
            .where(InventoryRecord.inventory_id == args.inventory_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if record is None:
            await db.rollback()
            return ToolResult.fail(f"Inventory record {args.inventory_id} not found")

        before = record.quantity_on_hand
        version = record.version
        after = before + args.adjustment_quantity
        if after < 0:
            await db.rollback()
            return ToolResult.fail(
                f"Adjustment of {args.adjustment_quantity} refused: on-hand would go from "
                f"{before} to {after}; quantity cannot be negative"
            )

        result = await db.execute(
            update(InventoryRecord)
            .where(
                InventoryRecord.inventory_id == args.inventory_id,
                InventoryRecord.quantity_on_hand == before,
                InventoryRecord.version == version,
            )
            .values(
                quantity_on_hand=after,
                quantity_available=after - record.quantity_allocated,
                version=version + 1,
                updated_at=datetime.utcnow(),
            )
        )
        if result.rowcount != 1:
            await db.rollback()
            return ToolResult.fail(
                f"Inventory record {args.inventory_id} was modified concurrently; re-read and reissue the adjustment"
            )

        history = await _write_history(db, record, args.adjustment_quantity, before, after, args.reason, user)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "inventory.adjusted",
        inventory_id=str(args.inventory_id),
        quantity=args.adjustment_quantity,
        quantity_before=before,
        quantity_after=after,
        user_id=str(user_id),
    )
    return ToolResult.ok(
        f"Adjusted inventory {args.inventory_id} by {args.adjustment_quantity:+d} ({before} → {after})",
        inventory_id=str(args.inventory_id),
        transaction_id=str(history.transaction_id),
        quantity_before=before,
        quantity_after=after,
        version=version + 1,
    )
