"""
Daily inventory snapshot into product_stock_history (source of "days in stock" for velocity).
"""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from app.models import Product, ProductStatus, ProductStockHistory, ProductVariant, utcnow
from app.services.sync_control import fail_run, finish_run, start_run

logger = logging.getLogger(__name__)


def take_stock_snapshot(db: Session, organization_id: Optional[str] = None) -> dict:
    run = start_run(db, "inventory_snapshot", "daily_cron", {"organizationId": organization_id})
    db.commit()
    try:
        query = (
            db.query(ProductVariant, Product.organization_id)
            .join(Product, Product.id == ProductVariant.product_id)
            .filter(Product.status == ProductStatus.ACTIVE)
        )
        if organization_id:
            query = query.filter(Product.organization_id == organization_id)
        recorded_at = utcnow()
        rows = [
            ProductStockHistory(
                product_variant_id=variant.id,
                organization_id=org_id,
                stock_quantity=int(variant.stock_quantity or 0),
                source="daily_snapshot",
                recorded_at=recorded_at,
            )
            for variant, org_id in query.all()
        ]
        db.add_all(rows)
        total_stock = sum(r.stock_quantity for r in rows)
        finish_run(run, details={"snapshots": len(rows), "totalStock": total_stock}, variants_updated=len(rows))
        db.commit()
        logger.info("Stock snapshot: %s variant(s), %s units", len(rows), total_stock)
        return {"success": True, "snapshots": len(rows), "totalStock": total_stock, "recordedAt": recorded_at.isoformat()}
    except Exception as e:
        logger.exception("Stock snapshot failed: %s", e)
        db.rollback()
        fail_run(run, str(e))
        db.commit()
        return {"success": False, "error": str(e)}
