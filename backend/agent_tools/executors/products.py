"""Product tool executors."""

from sqlalchemy import func, or_, select

from agent_tools.arguments import SearchProductsArgs
from agent_tools.base import ToolContext, ToolResult
from db.models import InventoryRecord, Product


async def search_products(ctx: ToolContext, args: SearchProductsArgs) -> ToolResult:
    pattern = f"%{args.query.strip()}%"
    on_hand = (
        select(InventoryRecord.product_id, func.sum(InventoryRecord.quantity_on_hand).label("on_hand"))
        .group_by(InventoryRecord.product_id)
        .subquery()
    )
    result = await ctx.db.execute(
        select(Product, on_hand.c.on_hand)
        .outerjoin(on_hand, on_hand.c.product_id == Product.product_id)
        .where(or_(Product.sku.ilike(pattern), Product.name.ilike(pattern), Product.upc.ilike(pattern)))
        .order_by(Product.sku)
        .limit(args.limit)
    )
    rows = result.all()
    return ToolResult.ok(
        f"{len(rows)} product(s) matching '{args.query}'",
        count=len(rows),
        products=[
            {
                "product_id": str(p.product_id),
                "sku": p.sku,
                "name": p.name,
                "upc": p.upc,
                "category": p.category,
                "unit_cost": p.unit_cost,
                "status": p.status,
                "total_on_hand": int(total or 0),
            }
            for p, total in rows
        ],
    )
