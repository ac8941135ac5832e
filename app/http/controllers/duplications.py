"""
Duplicate reconciliation routes. Detection is read-only; every fix needs an explicit operator call.
"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from app.database import get_db
from app.models import User
from app.auth import get_current_user
from app.http.requests.schemas import (
    DuplicationFixRequest,
    OrderItemDuplicatesFixRequest,
    SalesMetricDuplicatesRequest,
)
from app.services import duplication_fixer, shopify_service

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/inventory")
async def detect_inventory_duplications(
    tracking_number: Optional[str] = Query(None),
    delivery_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        issues = duplication_fixer.detect_inventory_duplications(
            db,
            tracking_number=tracking_number,
            delivery_id=delivery_id,
            organization_id=current_user.organization_id,
        )
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {
        "issues": issues,
        "deliveriesAffected": len(issues),
        "totalDuplicatedQuantity": sum(i["totalDuplicatedQuantity"] for i in issues),
    }


@router.post("/inventory/fix")
async def fix_inventory_duplication(
    body: DuplicationFixRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Subtract duplicated quantities in Shopify. Irreversible; requires confirm=true."""
    if not body.confirm:
        raise HTTPException(status_code=400, detail="Set confirm=true to apply inventory corrections in Shopify")
    logger.warning(
        "User %s applying duplication fix to delivery %s (%s items)", current_user.id, body.delivery_id, len(body.items)
    )
    try:
        return await duplication_fixer.fix_inventory_duplication(
            db,
            body.delivery_id,
            [{"sku": i.sku, "duplicatedQuantity": float(i.duplicated_quantity)} for i in body.items],
            organization_id=current_user.organization_id,
        )
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except shopify_service.ShopifyNotConfigured as e:
        raise HTTPException(status_code=503, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/sales-metrics")
async def sales_metric_duplicates(
    body: SalesMetricDuplicatesRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if body.action == "investigate":
        return duplication_fixer.investigate_sales_metric_duplicates(
            db, body.metric_date, body.specific_sku, current_user.organization_id
        )
    if body.action == "clean":
        return duplication_fixer.clean_sales_metric_duplicates(
            db, body.metric_date, body.specific_sku, current_user.organization_id
        )
    return duplication_fixer.validate_sales_metrics(db, body.metric_date, current_user.organization_id)


@router.get("/order-items")
async def detect_order_item_duplicates(
    order_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    groups = duplication_fixer.detect_order_item_duplicates(
        db, order_id=order_id, organization_id=current_user.organization_id
    )
    return {"duplicates": groups, "count": len(groups)}


@router.post("/order-items/fix")
async def fix_order_item_duplicates(
    body: OrderItemDuplicatesFixRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return duplication_fixer.fix_order_item_duplicates(
        db, body.action, order_id=body.order_id, organization_id=current_user.organization_id
    )
