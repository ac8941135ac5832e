"""
Duplicate detection and repair.

Inventory: the same delivery/SKU pushed to Shopify more than once shows up in the ledger as
several success results with addedQuantity > 0. Detection is read-only; the fix posts a
compensating negative adjustment to Shopify and is only ever triggered by an operator.

The over-count estimate is total - total / count: it assumes every repeat carried the same
quantity. Legitimate partial syncs of different quantities make it wrong, which is why each
item also reports its raw entries and whether their quantities were uniform.

Also covers duplicated sales_metrics rows and duplicated order lines.
"""
import logging
from collections import defaultdict
from datetime import date
from typing import Optional

from sqlalchemy import or_, true
from sqlalchemy.orm import Session

from app.models import (
    Delivery,
    InventorySyncLog,
    Order,
    OrderItem,
    ProductVariant,
    SalesMetric,
)
from app.services import shopify_service, sync_ledger

logger = logging.getLogger(__name__)

LEDGER_CORRECTION = "duplication_correction"
ORDER_ITEM_ACTIONS = ("keep_first", "consolidate")


def _visible_to(column, organization_id: Optional[str]):
    """Rows of the caller's organization plus unassigned rows; everything when no organization is known."""
    if not organization_id:
        return true()
    return or_(column == organization_id, column.is_(None))


def _as_number(value) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def _clean_number(value: float):
    return int(value) if float(value).is_integer() else round(value, 2)


def estimate_duplicated_quantity(quantities: list[float]):
    """total - total / count for two or more successful pushes, else 0."""
    count = len(quantities)
    if count < 2:
        return 0
    total = sum(quantities)
    return _clean_number(total - total / count)


def detect_inventory_duplications(
    db: Session,
    tracking_number: Optional[str] = None,
    delivery_id: Optional[str] = None,
    organization_id: Optional[str] = None,
) -> list[dict]:
    """
    Scan the ledger for deliveries whose SKUs were successfully added more than once.
    Read-only: running it twice without new ledger rows returns the same list.
    Raises LookupError when tracking_number does not match a delivery of the organization.
    """
    if tracking_number:
        delivery = db.query(Delivery).filter(
            Delivery.tracking_number == tracking_number,
            _visible_to(Delivery.organization_id, organization_id),
        ).first()
        if delivery is None:
            raise LookupError(f"Delivery with tracking number {tracking_number} not found")
        delivery_id = delivery.id

    query = (
        db.query(InventorySyncLog)
        .join(Delivery, Delivery.id == InventorySyncLog.delivery_id)
        .filter(_visible_to(Delivery.organization_id, organization_id))
    )
    if delivery_id:
        query = query.filter(InventorySyncLog.delivery_id == delivery_id)
    logs = query.order_by(InventorySyncLog.synced_at.asc(), InventorySyncLog.id.asc()).all()

    by_delivery: dict[str, dict[str, list]] = defaultdict(lambda: defaultdict(list))
    logs_per_delivery: dict[str, int] = defaultdict(int)
    for log in logs:
        logs_per_delivery[log.delivery_id] += 1
        for result in sync_ledger.normalize_sync_results(log.sync_results).results:
            if result.get("status") != sync_ledger.STATUS_SUCCESS:
                continue
            added = _as_number(result.get("addedQuantity"))
            if added <= 0:
                continue
            sku = sync_ledger.result_sku(result)
            if not sku:
                continue
            by_delivery[log.delivery_id][sku].append({
                "logId": log.id,
                "syncedAt": log.synced_at.isoformat() if log.synced_at else None,
                "quantity": _clean_number(added),
                "method": result.get("method"),
            })

    tracking = {
        d.id: d.tracking_number
        for d in db.query(Delivery).filter(Delivery.id.in_(list(by_delivery))).all()
    } if by_delivery else {}

    issues = []
    for d_id, skus in by_delivery.items():
        items = []
        for sku, entries in sorted(skus.items()):
            if len(entries) < 2:
                continue
            quantities = [e["quantity"] for e in entries]
            items.append({
                "sku": sku,
                "syncCount": len(entries),
                "totalAddedQuantity": _clean_number(sum(quantities)),
                "duplicatedQuantity": estimate_duplicated_quantity(quantities),
                "uniformQuantities": len(set(quantities)) == 1,
                "syncLogs": entries,
            })
        if not items:
            continue
        issues.append({
            "deliveryId": d_id,
            "trackingNumber": tracking.get(d_id),
            "syncCount": logs_per_delivery[d_id],
            "totalDuplicatedQuantity": _clean_number(sum(i["duplicatedQuantity"] for i in items)),
            "items": items,
        })
    issues.sort(key=lambda i: (i["trackingNumber"] or "", i["deliveryId"]))
    logger.info("Duplication scan: %s deliveries with duplicated pushes (of %s scanned)", len(issues), len(logs_per_delivery))
    return issues


async def fix_inventory_duplication(
    db: Session,
    delivery_id: str,
    items: list[dict],
    organization_id: Optional[str] = None,
) -> dict:
    """
    Subtract the duplicated quantity for each item in Shopify at the primary location,
    re-read to verify, and append one ledger row with the per-item outcome. Irreversible.
    items: [{"sku": ..., "duplicatedQuantity": n}]
    """
    delivery = db.query(Delivery).filter(
        Delivery.id == delivery_id,
        _visible_to(Delivery.organization_id, organization_id),
    ).first()
    if delivery is None:
        raise LookupError(f"Delivery {delivery_id} not found")

    shop, token = shopify_service.store_credentials()
    location = await shopify_service.get_primary_location(shop, token)
    if not location:
        raise ValueError("No Shopify location available")
    location_id = location["id"]
    index = shopify_service.build_variant_index(await shopify_service.get_products_all_pages(shop, token))

    results = []
    for item in items:
        sku = (item.get("sku") or "").strip()
        reduction = int(round(_as_number(item.get("duplicatedQuantity"))))
        try:
            if not sku or reduction <= 0:
                raise ValueError("Item needs a SKU and a positive duplicatedQuantity")
            remote = index.get(sku)
            if not remote:
                raise ValueError(f"SKU {sku} not found in Shopify")
            previous = await shopify_service.get_inventory_level(shop, token, remote["inventory_item_id"], location_id)
            await shopify_service.adjust_inventory_level(shop, token, remote["inventory_item_id"], location_id, -reduction)
            corrected = await shopify_service.get_inventory_level(shop, token, remote["inventory_item_id"], location_id)
            results.append({
                "sku": sku,
                "status": sync_ledger.STATUS_CORRECTED,
                "previousInventory": previous,
                "correctedInventory": corrected,
                "reductionApplied": reduction,
                "inventoryItemId": remote["inventory_item_id"],
                "locationId": location_id,
            })
            logger.info("Duplication fix %s: %s %s -> %s", delivery.tracking_number, sku, previous, corrected)
        except Exception as e:
            logger.warning("Duplication fix %s: %s failed: %s", delivery.tracking_number, sku, e)
            results.append({"sku": sku, "status": sync_ledger.STATUS_ERROR, "error": str(e)})

    corrected_count = sum(1 for r in results if r["status"] == sync_ledger.STATUS_CORRECTED)
    sync_ledger.append_entry(
        db,
        LEDGER_CORRECTION,
        results,
        delivery_id=delivery.id,
        success_count=corrected_count,
        error_count=len(results) - corrected_count,
        trackingNumber=delivery.tracking_number,
    )
    db.commit()
    return {
        "success": corrected_count == len(results),
        "correctedItems": corrected_count,
        "totalItems": len(results),
        "details": results,
    }


# --- sales_metrics duplicates -------------------------------------------------

def _metric_groups(
    db: Session, metric_date: date, sku: Optional[str] = None, organization_id: Optional[str] = None
) -> dict[str, list[SalesMetric]]:
    query = db.query(SalesMetric).filter(
        SalesMetric.metric_date == metric_date,
        _visible_to(SalesMetric.organization_id, organization_id),
    )
    if sku:
        query = query.join(ProductVariant, ProductVariant.id == SalesMetric.product_variant_id).filter(
            ProductVariant.sku_variant == sku
        )
    groups: dict[str, list[SalesMetric]] = defaultdict(list)
    for metric in query.order_by(SalesMetric.created_at.desc(), SalesMetric.id.desc()).all():
        groups[metric.product_variant_id].append(metric)
    return {variant_id: rows for variant_id, rows in groups.items() if len(rows) > 1}


def investigate_sales_metric_duplicates(
    db: Session, metric_date: date, sku: Optional[str] = None, organization_id: Optional[str] = None
) -> dict:
    groups = _metric_groups(db, metric_date, sku, organization_id)
    skus = {
        v.id: v.sku_variant
        for v in db.query(ProductVariant).filter(ProductVariant.id.in_(list(groups))).all()
    } if groups else {}
    duplications = [
        {
            "productVariantId": variant_id,
            "sku": skus.get(variant_id),
            "count": len(rows),
            "entries": [
                {
                    "id": m.id,
                    "salesQuantity": m.sales_quantity,
                    "ordersCount": m.orders_count,
                    "createdAt": m.created_at.isoformat() if m.created_at else None,
                }
                for m in rows
            ],
        }
        for variant_id, rows in groups.items()
    ]
    return {"date": metric_date.isoformat(), "duplicationsFound": len(duplications), "duplications": duplications}


def clean_sales_metric_duplicates(
    db: Session, metric_date: date, sku: Optional[str] = None, organization_id: Optional[str] = None
) -> dict:
    """Keep the newest row per variant for the day; delete the rest."""
    deleted = 0
    groups = _metric_groups(db, metric_date, sku, organization_id)
    for rows in groups.values():
        for stale in rows[1:]:
            db.delete(stale)
            deleted += 1
    db.commit()
    logger.info("Sales metrics %s: removed %s duplicate row(s) across %s variant(s)", metric_date, deleted, len(groups))
    return {"date": metric_date.isoformat(), "variantsCleaned": len(groups), "deletedEntries": deleted}


def validate_sales_metrics(db: Session, metric_date: date, organization_id: Optional[str] = None) -> dict:
    remaining = _metric_groups(db, metric_date, organization_id=organization_id)
    return {"date": metric_date.isoformat(), "isClean": not remaining, "duplicatesRemaining": len(remaining)}


# --- order line duplicates ----------------------------------------------------

def _order_item_groups(
    db: Session, order_id: Optional[str] = None, organization_id: Optional[str] = None
) -> list[list[OrderItem]]:
    query = (
        db.query(OrderItem)
        .join(Order, Order.id == OrderItem.order_id)
        .filter(OrderItem.product_variant_id.isnot(None), _visible_to(Order.organization_id, organization_id))
    )
    if order_id:
        query = query.filter(OrderItem.order_id == order_id)
    groups: dict[tuple, list[OrderItem]] = defaultdict(list)
    for item in query.order_by(OrderItem.created_at.asc(), OrderItem.id.asc()).all():
        groups[(item.order_id, item.product_variant_id)].append(item)
    return [rows for rows in groups.values() if len(rows) > 1]


def detect_order_item_duplicates(
    db: Session, order_id: Optional[str] = None, organization_id: Optional[str] = None
) -> list[dict]:
    return [
        {
            "orderId": rows[0].order_id,
            "productVariantId": rows[0].product_variant_id,
            "count": len(rows),
            "totalQuantity": sum(r.quantity for r in rows),
            "items": [
                {"id": r.id, "quantity": r.quantity, "unitPrice": float(r.unit_price or 0)}
                for r in rows
            ],
        }
        for rows in _order_item_groups(db, order_id, organization_id)
    ]


def fix_order_item_duplicates(
    db: Session, action: str, order_id: Optional[str] = None, organization_id: Optional[str] = None
) -> dict:
    """
    keep_first:  delete every line after the first.
    consolidate: first line takes the summed quantity, the rest are deleted.
    """
    if action not in ORDER_ITEM_ACTIONS:
        raise ValueError(f"Unknown action {action!r}; expected one of {', '.join(ORDER_ITEM_ACTIONS)}")
    groups = _order_item_groups(db, order_id, organization_id)
    deleted = 0
    for rows in groups:
        first, rest = rows[0], rows[1:]
        if action == "consolidate":
            first.quantity = sum(r.quantity for r in rows)
            first.total_price = (first.unit_price or 0) * first.quantity
        for row in rest:
            db.delete(row)
            deleted += 1
    db.commit()
    logger.info("Order item duplicates (%s): %s group(s), %s line(s) removed", action, len(groups), deleted)
    return {"action": action, "groupsFixed": len(groups), "deletedItems": deleted}
