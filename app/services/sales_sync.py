"""
Shopify sales sync: pull orders for a date window, keep a local copy in
shopify_orders / shopify_order_line_items, and rebuild per-variant daily sales_metrics.
"""
import logging
from collections import defaultdict
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from app.config import settings
from app.models import (
    Product,
    ProductVariant,
    SalesMetric,
    ShopifyOrder,
    ShopifyOrderLineItem,
    utcnow,
)
from app.services import shopify_service
from app.services.sync_control import fail_run, finish_run, running_run, start_run

logger = logging.getLogger(__name__)

SYNC_TYPE = "sales_sync"
VALID_MODES = ("initial", "daily", "monthly")
CHUNK_DAYS = {"initial": 5, "daily": 3, "monthly": 7}
# Orders counted as sales; velocity analytics narrows this to paid/partially_paid
SALES_FINANCIAL_STATUSES = {"paid", "partially_paid", "authorized"}
METRIC_BATCH_SIZE = 500
# Shop timezones reach UTC+14; fetching this much earlier covers the whole first shop-local day
MAX_SHOP_UTC_OFFSET = timedelta(hours=14)


def parse_shopify_datetime(value: Optional[str]) -> Optional[datetime]:
    """ISO timestamp from Shopify -> naive UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Unparseable Shopify timestamp: %s", value)
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _shop_local_date(value: Optional[str]) -> Optional[date]:
    """Calendar day of the order in the shop's own timezone (the date part of Shopify's timestamp)."""
    if not value or len(value) < 10:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def _customer_name(payload: dict) -> Optional[str]:
    customer = payload.get("customer") or {}
    first = (customer.get("first_name") or "").strip()
    last = (customer.get("last_name") or "").strip()
    name = f"{first} {last}".strip()
    return name or None


def upsert_shopify_order(db: Session, payload: dict, organization_id: Optional[str] = None) -> Optional[ShopifyOrder]:
    """
    Insert or update one Shopify order and replace its line items.
    Returns None when the payload carries no order id. Flushes; caller commits.
    """
    shopify_id = str(payload.get("id") or "").strip()
    if not shopify_id:
        return None
    order = db.query(ShopifyOrder).filter(ShopifyOrder.shopify_order_id == shopify_id).first()
    if order is None:
        order = ShopifyOrder(shopify_order_id=shopify_id, organization_id=organization_id or settings.SHOPIFY_ORGANIZATION_ID)
        db.add(order)

    order.order_number = str(payload.get("order_number") or payload.get("name") or "") or None
    order.email = (payload.get("email") or "").strip() or None
    order.customer_name = _customer_name(payload)
    order.financial_status = (payload.get("financial_status") or "").lower() or None
    order.fulfillment_status = payload.get("fulfillment_status")
    order.total_price = Decimal(str(payload.get("total_price") or 0))
    order.currency = payload.get("currency")
    order.created_at_shopify = parse_shopify_datetime(payload.get("created_at"))
    order.updated_at_shopify = parse_shopify_datetime(payload.get("updated_at"))

    order.line_items.clear()
    for line in payload.get("line_items") or []:
        order.line_items.append(
            ShopifyOrderLineItem(
                shopify_line_item_id=str(line.get("id") or "") or None,
                shopify_product_id=str(line.get("product_id") or "") or None,
                shopify_variant_id=str(line.get("variant_id") or "") or None,
                sku=(line.get("sku") or "").strip() or None,
                title=(line.get("title") or "")[:255] or None,
                variant_title=line.get("variant_title"),
                quantity=int(line.get("quantity") or 0),
                price=Decimal(str(line.get("price") or 0)),
            )
        )
    db.flush()
    return order


def _date_chunks(start: datetime, end: datetime, chunk_days: int) -> list[tuple[datetime, datetime]]:
    chunks = []
    cursor = start
    while cursor < end:
        chunk_end = min(cursor + timedelta(days=chunk_days), end)
        chunks.append((cursor, chunk_end))
        cursor = chunk_end
    return chunks


def aggregate_sales_metrics(orders: list[dict], variant_ids_by_sku: dict[str, str]) -> dict[tuple[str, date], dict]:
    """
    (variant_id, day) -> {"quantity", "orders"} for orders with a sales financial status.
    Line items whose SKU has no local variant are ignored.
    """
    metrics: dict[tuple[str, date], dict] = defaultdict(lambda: {"quantity": 0, "orders": set()})
    for order in orders:
        if (order.get("financial_status") or "").lower() not in SALES_FINANCIAL_STATUSES:
            continue
        if order.get("cancelled_at"):
            continue
        day = _shop_local_date(order.get("created_at"))
        if day is None:
            continue
        for line in order.get("line_items") or []:
            variant_id = variant_ids_by_sku.get((line.get("sku") or "").strip())
            if not variant_id:
                continue
            bucket = metrics[(variant_id, day)]
            bucket["quantity"] += int(line.get("quantity") or 0)
            bucket["orders"].add(str(order.get("id")))
    return metrics


def _variant_query(db: Session, organization_id: Optional[str]):
    query = db.query(ProductVariant)
    if organization_id:
        query = query.join(Product, Product.id == ProductVariant.product_id).filter(
            Product.organization_id == organization_id
        )
    return query


async def sync_shopify_sales(
    db: Session,
    mode: str = "daily",
    days: Optional[int] = None,
    organization_id: Optional[str] = None,
) -> dict:
    """
    Pull Shopify orders for the last `days` days and rebuild sales_metrics for that window.
    Non-initial modes also refresh variant stock from Shopify's inventory_quantity.
    """
    if mode not in VALID_MODES:
        raise ValueError(f"Invalid mode {mode!r}; expected one of {', '.join(VALID_MODES)}")
    days = days or {"initial": 90, "daily": 3, "monthly": 30}[mode]

    if running_run(db, SYNC_TYPE, mode):
        logger.info("Sales sync %s refused: a run is already in progress", mode)
        return {"success": False, "status": "already_running", "error": f"A {mode} sales sync is already running"}

    shop, token = shopify_service.store_credentials()
    run = start_run(db, SYNC_TYPE, mode, {"days": days})
    db.commit()

    try:
        end = utcnow()
        first_day = (end - timedelta(days=days)).date()
        start = datetime.combine(first_day, time.min) - MAX_SHOP_UTC_OFFSET
        chunks = _date_chunks(start, end, CHUNK_DAYS[mode])

        fetched: dict[str, dict] = {}
        for chunk_start, chunk_end in chunks:
            batch = await shopify_service.get_orders_in_range(
                shop,
                token,
                chunk_start.strftime("%Y-%m-%dT%H:%M:%SZ"),
                chunk_end.strftime("%Y-%m-%dT%H:%M:%SZ"),
            )
            logger.info("Sales sync %s: %s order(s) for %s..%s", mode, len(batch), chunk_start.date(), chunk_end.date())
            for payload in batch:
                fetched[str(payload.get("id"))] = payload
        all_orders = list(fetched.values())

        for payload in all_orders:
            upsert_shopify_order(db, payload, organization_id)

        variants = _variant_query(db, organization_id).all()
        variant_ids_by_sku = {v.sku_variant: v.id for v in variants if v.sku_variant}
        # orders fetched for the offset margin can fall on the day before the window
        metrics = {
            key: bucket
            for key, bucket in aggregate_sales_metrics(all_orders, variant_ids_by_sku).items()
            if key[1] >= first_day
        }

        delete_query = db.query(SalesMetric).filter(SalesMetric.metric_date >= first_day)
        if organization_id:
            delete_query = delete_query.filter(SalesMetric.organization_id == organization_id)
        deleted = delete_query.delete(synchronize_session=False)

        rows = [
            SalesMetric(
                organization_id=organization_id or settings.SHOPIFY_ORGANIZATION_ID,
                product_variant_id=variant_id,
                metric_date=day,
                sales_quantity=bucket["quantity"],
                orders_count=len(bucket["orders"]),
            )
            for (variant_id, day), bucket in sorted(metrics.items(), key=lambda kv: (kv[0][1], kv[0][0]))
        ]
        for i in range(0, len(rows), METRIC_BATCH_SIZE):
            db.add_all(rows[i:i + METRIC_BATCH_SIZE])
            db.flush()

        variants_updated = 0
        if mode != "initial":
            index = shopify_service.build_variant_index(await shopify_service.get_products_all_pages(shop, token))
            for variant in variants:
                remote = index.get(variant.sku_variant)
                if remote and remote.get("inventory_quantity") is not None:
                    quantity = int(remote["inventory_quantity"])
                    if variant.stock_quantity != quantity:
                        variant.stock_quantity = quantity
                        variants_updated += 1

        summary = {
            "mode": mode,
            "days": days,
            "chunks": len(chunks),
            "ordersFetched": len(all_orders),
            "metricsDeleted": deleted,
            "metricsCreated": len(rows),
            "variantsUpdated": variants_updated,
        }
        finish_run(
            run,
            details=summary,
            days_processed=days,
            orders_processed=len(all_orders),
            metrics_created=len(rows),
            variants_updated=variants_updated,
        )
        db.commit()
        logger.info("Sales sync %s completed: %s", mode, summary)
        return {"success": True, "syncLogId": run.id, "summary": summary}
    except Exception as e:
        logger.exception("Sales sync %s failed: %s", mode, e)
        db.rollback()
        fail_run(run, str(e))
        db.commit()
        return {"success": False, "syncLogId": run.id, "error": str(e)}
