"""
Sync routes: delivery stock push, Shopify sales sync, stock snapshot, SKU repair and the sync logs.
"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from app.database import get_db
from app.models import Delivery, SyncControlLog, User
from app.auth import get_current_user
from app.http.requests.schemas import DeliverySyncRequest, SalesSyncRequest
from app.services import shopify_service, sync_ledger
from app.services.delivery_sync import sync_delivery_to_shopify
from app.services.sales_sync import sync_shopify_sales
from app.services.sku_matcher import correct_artificial_skus
from app.services.stock_snapshot import take_stock_snapshot
from app.services.sync_control import serialize_run

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/logs")
async def list_sync_logs(
    delivery_id: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Inventory sync ledger, newest first, with sync_results normalized."""
    entries = sync_ledger.list_entries(db, delivery_id=delivery_id, limit=limit)
    return {"logs": [sync_ledger.serialize_entry(e) for e in entries]}


@router.get("/runs")
async def list_sync_runs(
    sync_type: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    query = db.query(SyncControlLog)
    if sync_type:
        query = query.filter(SyncControlLog.sync_type == sync_type)
    runs = query.order_by(SyncControlLog.start_time.desc()).limit(limit).all()
    return {"runs": [serialize_run(r) for r in runs]}


@router.post("/deliveries/{delivery_id}")
async def sync_delivery(
    delivery_id: str,
    body: DeliverySyncRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Add approved delivery quantities to Shopify stock."""
    delivery = db.query(Delivery).filter(Delivery.id == delivery_id).first()
    if not delivery or (delivery.organization_id and delivery.organization_id != current_user.organization_id):
        raise HTTPException(status_code=404, detail="Delivery not found")

    result = await sync_delivery_to_shopify(
        db,
        delivery_id,
        [{"skuVariant": i.sku_variant, "quantityApproved": i.quantity_approved} for i in body.approved_items],
    )
    if result.get("status") == "in_progress":
        raise HTTPException(status_code=409, detail=result["error"])
    return result


@router.post("/sales")
async def sync_sales(
    body: SalesSyncRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        result = await sync_shopify_sales(db, mode=body.mode, days=body.days, organization_id=current_user.organization_id)
    except shopify_service.ShopifyNotConfigured as e:
        raise HTTPException(status_code=503, detail=str(e))
    if result.get("status") == "already_running":
        raise HTTPException(status_code=409, detail=result["error"])
    return result


@router.post("/stock-snapshot")
async def stock_snapshot(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Record today's stock per active variant (called daily by cron)."""
    return take_stock_snapshot(db, organization_id=current_user.organization_id)


@router.post("/sku-correction")
async def correct_skus(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Replace placeholder SKUs (SHOPIFY-<id> and similar) with the real Shopify SKUs."""
    try:
        shop, token = shopify_service.store_credentials()
    except shopify_service.ShopifyNotConfigured as e:
        raise HTTPException(status_code=503, detail=str(e))
    products = await shopify_service.get_products_all_pages(shop, token)
    summary = correct_artificial_skus(db, products, organization_id=current_user.organization_id)
    db.commit()
    return {"success": True, **summary}
