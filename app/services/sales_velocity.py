"""
Sales velocity ranking: units sold per product over a trailing window, velocity
per day in stock, and days of stock remaining.
"""
import logging
from collections import defaultdict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from app.config import settings
from app.models import (
    Product,
    ProductStatus,
    ProductStockHistory,
    ProductVariant,
    ShopifyOrder,
    ShopifyOrderLineItem,
    utcnow,
)

logger = logging.getLogger(__name__)

PAID_FINANCIAL_STATUSES = ("paid", "partially_paid")
MIN_EFFECTIVE_DAYS = 7
MIN_HISTORY_POINTS = 7
NO_VELOCITY_STOCK_DAYS = 9999


def compute_sales_velocity(sales: int, effective_days: int) -> float:
    """
    Units per day. The denominator never drops below MIN_EFFECTIVE_DAYS, so a
    product that was in stock for a single day cannot report its whole window as one day's sales.
    """
    if sales <= 0:
        return 0.0
    return sales / max(effective_days, MIN_EFFECTIVE_DAYS)


def effective_days_in_stock(daily_stock: dict, window_days: int) -> int:
    """
    Days with stock > 0, when there are enough snapshot days to trust;
    otherwise the whole window.
    """
    if len(daily_stock) < MIN_HISTORY_POINTS:
        return window_days
    return sum(1 for qty in daily_stock.values() if qty > 0)


def stock_days_remaining(current_stock: int, velocity: float) -> int:
    if velocity <= 0:
        return NO_VELOCITY_STOCK_DAYS
    return int(round(current_stock / velocity))


def sales_status(sales: int) -> str:
    if sales == 0:
        return "critical"
    if sales <= 10:
        return "low"
    if sales <= 50:
        return "warning"
    return "good"


def _sales_by_sku(db: Session, skus: list[str], since: datetime) -> dict[str, dict]:
    if not skus:
        return {}
    rows = (
        db.query(
            ShopifyOrderLineItem.sku,
            ShopifyOrderLineItem.quantity,
            ShopifyOrderLineItem.price,
            ShopifyOrder.id,
        )
        .join(ShopifyOrder, ShopifyOrder.id == ShopifyOrderLineItem.order_id)
        .filter(
            ShopifyOrderLineItem.sku.in_(skus),
            ShopifyOrder.financial_status.in_(PAID_FINANCIAL_STATUSES),
            ShopifyOrder.created_at_shopify >= since,
        )
        .all()
    )
    sales: dict[str, dict] = defaultdict(lambda: {"quantity": 0, "revenue": Decimal("0"), "orders": set()})
    for sku, quantity, price, order_id in rows:
        bucket = sales[sku]
        bucket["quantity"] += int(quantity or 0)
        bucket["revenue"] += Decimal(str(price or 0)) * int(quantity or 0)
        bucket["orders"].add(order_id)
    return sales


def _daily_stock_by_product(db: Session, variant_product: dict[str, str], since: datetime) -> dict[str, dict]:
    """product_id -> {day: total stock across variants}, latest snapshot per variant per day."""
    if not variant_product:
        return {}
    rows = (
        db.query(ProductStockHistory.product_variant_id, ProductStockHistory.stock_quantity, ProductStockHistory.recorded_at)
        .filter(
            ProductStockHistory.product_variant_id.in_(list(variant_product)),
            ProductStockHistory.recorded_at >= since,
        )
        .order_by(ProductStockHistory.recorded_at.asc())
        .all()
    )
    per_variant_day: dict[tuple[str, object], int] = {}
    for variant_id, qty, recorded_at in rows:
        per_variant_day[(variant_id, recorded_at.date())] = int(qty or 0)
    per_product: dict[str, dict] = defaultdict(lambda: defaultdict(int))
    for (variant_id, day), qty in per_variant_day.items():
        per_product[variant_product[variant_id]][day] += qty
    return per_product


def calculate_sales_velocity_ranking(
    db: Session,
    organization_id: Optional[str] = None,
    now: Optional[datetime] = None,
    window_days: Optional[int] = None,
) -> dict:
    """
    Rank non-discontinued products by units sold in the window.
    Returns {"products": [...], "summary": {...}}; products sorted by sales desc, then velocity desc.
    """
    now = now or utcnow()
    window_days = window_days or settings.SALES_WINDOW_DAYS
    since = now - timedelta(days=window_days)

    query = (
        db.query(ProductVariant, Product)
        .join(Product, Product.id == ProductVariant.product_id)
        .filter(Product.status != ProductStatus.DISCONTINUED)
    )
    if organization_id:
        query = query.filter(Product.organization_id == organization_id)
    pairs = query.all()

    skus = sorted({v.sku_variant for v, _ in pairs if v.sku_variant})
    sales = _sales_by_sku(db, skus, since)
    daily_stock = _daily_stock_by_product(db, {v.id: p.id for v, p in pairs}, since)

    grouped: dict[str, dict] = {}
    for variant, product in pairs:
        entry = grouped.setdefault(product.id, {
            "product": product,
            "skus": [],
            "current_stock": 0,
            "sales": 0,
            "revenue": Decimal("0"),
            "orders": set(),
        })
        entry["skus"].append(variant.sku_variant)
        entry["current_stock"] += int(variant.stock_quantity or 0)
        sold = sales.get(variant.sku_variant)
        if sold:
            entry["sales"] += sold["quantity"]
            entry["revenue"] += sold["revenue"]
            entry["orders"] |= sold["orders"]

    products = []
    for product_id, entry in grouped.items():
        effective_days = effective_days_in_stock(daily_stock.get(product_id, {}), window_days)
        velocity = compute_sales_velocity(entry["sales"], effective_days)
        products.append({
            "product_id": product_id,
            "product_name": entry["product"].name,
            "main_sku": entry["skus"][0] if len(entry["skus"]) == 1 else "Multiple SKUs",
            "variant_count": len(entry["skus"]),
            "current_stock": entry["current_stock"],
            "sales_60_days": entry["sales"],
            "revenue_60_days": round(float(entry["revenue"]), 2),
            "orders_count": len(entry["orders"]),
            "effective_days": effective_days,
            "sales_velocity": round(velocity, 3),
            "stock_days_remaining": stock_days_remaining(entry["current_stock"], velocity),
            "status": sales_status(entry["sales"]),
        })

    products.sort(key=lambda p: (-p["sales_60_days"], -p["sales_velocity"]))

    summary = {
        "total_products": len(products),
        "zero_sales": sum(1 for p in products if p["sales_60_days"] == 0),
        "low_sales": sum(1 for p in products if 1 <= p["sales_60_days"] <= 10),
        "good_sales": sum(1 for p in products if p["sales_60_days"] > 10),
        "total_units_sold": sum(p["sales_60_days"] for p in products),
        "total_revenue": round(sum(p["revenue_60_days"] for p in products), 2),
        "total_variants": len(pairs),
        "calculation_date": now.isoformat(),
        "period_days": window_days,
    }
    logger.info(
        "Sales velocity: %s products, %s units, org=%s", summary["total_products"], summary["total_units_sold"], organization_id
    )
    return {"products": products, "summary": summary}
