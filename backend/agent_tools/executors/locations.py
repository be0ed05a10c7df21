"""Location tool executors."""

from sqlalchemy import or_, select

from agent_tools.arguments import InvestigateLocationArgs
from agent_tools.base import ToolContext, ToolResult
from agent_tools.executors.inventory import latest_per_key
from db.models import (
    AdjustmentSnapshot,
    Discrepancy,
    InventoryRecord,
    InventorySnapshot,
    Location,
    Product,
    TransactionSnapshot,
)


async def investigate_location(ctx: ToolContext, args: InvestigateLocationArgs) -> ToolResult:
    db = ctx.db
    code = args.location_code

    location = await db.scalar(select(Location).where(Location.code == code))

    snap_result = await db.execute(
        select(InventorySnapshot)
        .where(InventorySnapshot.location_code == code)
        .order_by(InventorySnapshot.snapshot_date.desc())
    )
    contents = latest_per_key(snap_result.scalars().all(), lambda s: s.sku)

    tx_result = await db.execute(
        select(TransactionSnapshot)
        .where(or_(TransactionSnapshot.from_location == code, TransactionSnapshot.to_location == code))
        .order_by(TransactionSnapshot.transaction_date.desc())
        .limit(10)
    )
    adj_result = await db.execute(
        select(AdjustmentSnapshot)
        .where(AdjustmentSnapshot.location_code == code)
        .order_by(AdjustmentSnapshot.adjustment_date.desc())
        .limit(10)
    )
    disc_result = await db.execute(
        select(Discrepancy).where(Discrepancy.location_code == code, Discrepancy.status == "OPEN")
    )
    transactions = tx_result.scalars().all()
    adjustments = adj_result.scalars().all()
    discrepancies = disc_result.scalars().all()

    live = []
    if location is not None:
        live_result = await db.execute(
            select(InventoryRecord, Product.sku)
            .join(Product, InventoryRecord.product_id == Product.product_id)
            .where(InventoryRecord.location_id == location.location_id)
            .order_by(Product.sku)
        )
        live = live_result.all()

    if location is None and not (contents or transactions or adjustments or discrepancies):
        return ToolResult.fail(f"No data found for location {code}")

    if location is not None:
        location_info = {
            "code": location.code,
            "zone": location.zone,
            "type": location.location_type,
            "min_quantity": location.min_quantity,
            "max_quantity": location.max_quantity,
            "is_pickable": location.is_pickable,
        }
    else:
        location_info = {"code": code, "note": "Location not in reference data; data from WMS snapshots only"}

    return ToolResult.ok(
        f"Location {code}",
        location=location_info,
        contents=[
            {
                "sku": s.sku,
                "on_hand": s.quantity_on_hand,
                "allocated": s.quantity_allocated,
                "available": s.quantity_available,
                "snapshot_date": s.snapshot_date.isoformat(),
            }
            for s in sorted(contents, key=lambda s: s.sku)
        ],
        live_inventory=[
            {"inventory_id": str(r.inventory_id), "sku": sku, "on_hand": r.quantity_on_hand}
            for r, sku in live
        ],
        recent_activity=[
            {
                "type": t.transaction_type,
                "sku": t.sku,
                "quantity": t.quantity,
                "direction": "IN" if t.to_location == code else "OUT",
                "timestamp": t.transaction_date.isoformat(),
            }
            for t in transactions
        ],
        recent_adjustments=[
            {
                "sku": a.sku,
                "quantity": a.adjustment_qty,
                "reason": a.reason,
                "date": a.adjustment_date.isoformat(),
            }
            for a in adjustments
        ],
        discrepancies=[
            {
                "discrepancy_id": str(d.discrepancy_id),
                "type": d.discrepancy_type,
                "severity": d.severity,
                "sku": d.sku,
                "variance": d.variance,
                "description": d.description,
            }
            for d in discrepancies
        ],
        total_on_hand=sum(s.quantity_on_hand for s in contents),
    )
