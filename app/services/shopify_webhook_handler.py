"""
Shopify webhook processing: inventory levels, products and orders.
Signature checks happen in the controller (services.webhook_security); this module only
processes verified (or policy-accepted) payloads. Every inventory event lands in the ledger.
"""
import logging
from typing import Any, Optional

from sqlalchemy.orm import Session

from app.config import settings
from app.models import Product, ProductStatus, ProductVariant, utcnow
from app.services import sync_ledger
from app.services.sales_sync import upsert_shopify_order
from app.services.shopify_service import get_inventory_item_sku, store_credentials
from app.services.sku_matcher import (
    find_product_by_title,
    find_variant_by_sku,
    is_artificial_sku,
    match_variant,
    shopify_variant_attributes,
)
from app.services.sync_control import fail_run, finish_run, start_run

logger = logging.getLogger(__name__)

INVENTORY_TOPICS = ("inventory_levels/update", "inventory_levels/connect")
PRODUCT_TOPICS = ("products/create", "products/update")
ORDER_TOPICS = ("orders/create", "orders/updated", "orders/update", "orders/paid")

LEDGER_INVENTORY = "webhook_inventory_update"
LEDGER_PRODUCT = "webhook_product_sync"


async def resolve_inventory_item_sku(inventory_item_id: Any) -> Optional[str]:
    shop, token = store_credentials()
    return await get_inventory_item_sku(shop, token, inventory_item_id)


def _record_failure(db: Session, ledger_type: str, topic: str, error: str, extra: Optional[dict] = None) -> None:
    """Ledger row for a webhook that could not be applied. Commits in a clean transaction."""
    db.rollback()
    result = {"status": sync_ledger.STATUS_ERROR, "error": error[:500], "topic": topic}
    result.update(extra or {})
    sync_ledger.append_entry(db, ledger_type, [result], success_count=0, error_count=1, topic=topic)
    db.commit()


async def process_inventory_webhook(db: Session, topic: str, payload: dict) -> dict:
    """
    Apply an inventory_levels webhook: resolve SKU through the inventory item,
    set stock_quantity to Shopify's available count, append one ledger row.
    """
    inventory_item_id = payload.get("inventory_item_id")
    location_id = payload.get("location_id")
    available = payload.get("available")
    event = {
        "inventoryItemId": inventory_item_id,
        "locationId": location_id,
        "availableQuantity": available,
        "updatedAt": payload.get("updated_at"),
    }

    run = start_run(db, "webhook_inventory", "real_time", {"topic": topic, **event})
    db.commit()

    if inventory_item_id is None or available is None:
        fail_run(run, "Payload missing inventory_item_id or available")
        db.commit()
        _record_failure(db, LEDGER_INVENTORY, topic, "Payload missing inventory_item_id or available", event)
        return {"success": False, "reason": "invalid_payload"}

    try:
        sku = await resolve_inventory_item_sku(inventory_item_id)
    except Exception as e:
        logger.exception("Inventory webhook: SKU lookup failed for item %s: %s", inventory_item_id, e)
        fail_run(run, str(e))
        db.commit()
        _record_failure(db, LEDGER_INVENTORY, topic, f"SKU lookup failed: {e}", event)
        return {"success": False, "reason": "shopify_error", "error": str(e)}

    variant = find_variant_by_sku(db, sku, settings.SHOPIFY_ORGANIZATION_ID)
    if variant is None:
        logger.warning("Inventory webhook: no local variant for SKU %s (item %s)", sku, inventory_item_id)
        result = {"sku": sku, "status": sync_ledger.STATUS_UNMAPPED, "error": "No local variant with this SKU", **event}
        sync_ledger.append_entry(db, LEDGER_INVENTORY, [result], success_count=0, error_count=1, topic=topic)
        finish_run(run, details={"sku": sku, "mapped": False})
        db.commit()
        return {"success": False, "reason": "unmapped", "sku": sku}

    try:
        previous = variant.stock_quantity
        variant.stock_quantity = int(available)
        result = {
            "sku": sku,
            "status": sync_ledger.STATUS_SUCCESS,
            "variantId": variant.id,
            "previousQuantity": previous,
            "newQuantity": int(available),
            "method": "webhook",
            "processedAt": utcnow().isoformat(),
            **event,
        }
        sync_ledger.append_entry(db, LEDGER_INVENTORY, [result], success_count=1, error_count=0, topic=topic)
        finish_run(run, details={"sku": sku, "mapped": True}, variants_updated=1)
        db.commit()
    except Exception as e:
        logger.exception("Inventory webhook: update failed for SKU %s: %s", sku, e)
        _record_failure(db, LEDGER_INVENTORY, topic, str(e), {"sku": sku, **event})
        fail_run(run, str(e))
        db.commit()
        return {"success": False, "reason": "update_failed", "sku": sku, "error": str(e)}

    logger.info("Inventory webhook: %s stock %s -> %s", sku, previous, available)
    return {"success": True, "sku": sku, "variantId": variant.id, "previousQuantity": previous, "newQuantity": int(available)}


def _description_from_payload(payload: dict) -> Optional[str]:
    handle = (payload.get("handle") or "").strip()
    if handle:
        return f"Producto sincronizado desde Shopify: {handle}"
    return None


def process_product_webhook(db: Session, topic: str, payload: dict) -> dict:
    """
    Upsert the product and its variants. Variants match by SKU first, then by size/color
    inside the product. Variants without a SKU get SHOPIFY-<variant id>.
    """
    title = (payload.get("title") or "").strip()
    summary = {
        "product_title": title,
        "webhook_topic": topic,
        "processed_variants": 0,
        "new_variants": 0,
        "updated_variants": 0,
        "errors": [],
    }
    if not title:
        summary["errors"].append("Product payload without title")
        return {"success": False, **summary}

    run = start_run(db, "webhook_products", "real_time", {"topic": topic, "productId": payload.get("id")})
    organization_id = settings.SHOPIFY_ORGANIZATION_ID

    product = find_product_by_title(db, title, organization_id)
    if product is None:
        product = Product(
            organization_id=organization_id,
            name=title,
            description=_description_from_payload(payload),
            status=ProductStatus.ACTIVE,
        )
        db.add(product)
        db.flush()
        logger.info("Product webhook: created product %s", title)

    ledger_results = []
    for variant_payload in payload.get("variants") or []:
        summary["processed_variants"] += 1
        try:
            real_sku = (variant_payload.get("sku") or "").strip()
            sku = real_sku or f"SHOPIFY-{variant_payload.get('id')}"
            size, color = shopify_variant_attributes(variant_payload)
            stock = variant_payload.get("inventory_quantity")

            local = find_variant_by_sku(db, sku, organization_id)
            if local is None:
                local = match_variant(product.variants, size, color)

            if local is not None:
                if real_sku or not local.sku_variant or is_artificial_sku(local.sku_variant):
                    local.sku_variant = sku
                local.size = size or local.size
                local.color = color or local.color
                if stock is not None:
                    local.stock_quantity = int(stock)
                summary["updated_variants"] += 1
                action = "updated"
            else:
                local = ProductVariant(
                    product_id=product.id,
                    sku_variant=sku,
                    size=size,
                    color=color,
                    stock_quantity=int(stock or 0),
                )
                product.variants.append(local)
                summary["new_variants"] += 1
                action = "created"
            db.flush()
            ledger_results.append({
                "sku": sku,
                "status": sync_ledger.STATUS_SUCCESS,
                "action": action,
                "variantId": local.id,
                "shopifyVariantId": variant_payload.get("id"),
                "newQuantity": local.stock_quantity,
            })
        except Exception as e:
            logger.exception("Product webhook: variant %s failed: %s", variant_payload.get("id"), e)
            summary["errors"].append(f"Variant {variant_payload.get('id')}: {e}")
            ledger_results.append({
                "sku": variant_payload.get("sku"),
                "status": sync_ledger.STATUS_ERROR,
                "shopifyVariantId": variant_payload.get("id"),
                "error": str(e),
            })

    if not product.sku and product.variants:
        product.sku = product.variants[0].sku_variant

    sync_ledger.append_entry(db, LEDGER_PRODUCT, ledger_results, topic=topic, productTitle=title)
    finish_run(run, details=summary, variants_updated=summary["updated_variants"] + summary["new_variants"])
    db.commit()
    logger.info(
        "Product webhook %s: %s processed, %s new, %s updated, %s errors",
        title, summary["processed_variants"], summary["new_variants"], summary["updated_variants"], len(summary["errors"]),
    )
    return {"success": not summary["errors"], **summary}


def process_order_webhook(db: Session, topic: str, payload: dict) -> dict:
    order = upsert_shopify_order(db, payload)
    if order is None:
        return {"success": False, "reason": "missing_order_id"}
    db.commit()
    logger.info("Order webhook %s: upserted Shopify order %s (%s lines)", topic, order.shopify_order_id, len(order.line_items))
    return {"success": True, "shopifyOrderId": order.shopify_order_id, "lineItems": len(order.line_items)}


async def process_shopify_webhook(db: Session, topic: str, payload: dict) -> dict:
    """
    Dispatch by topic. Never raises: failures are logged and written to the ledger so
    the controller can still answer 200 and Shopify does not retry.
    """
    try:
        if topic in INVENTORY_TOPICS:
            return await process_inventory_webhook(db, topic, payload)
        if topic in PRODUCT_TOPICS:
            return process_product_webhook(db, topic, payload)
        if topic in ORDER_TOPICS:
            return process_order_webhook(db, topic, payload)
        logger.debug("Webhook topic %s: no handler", topic)
        return {"success": True, "processed": False}
    except Exception as e:
        logger.exception("Webhook %s processing failed: %s", topic, e)
        ledger_type = LEDGER_INVENTORY if topic in INVENTORY_TOPICS else LEDGER_PRODUCT if topic in PRODUCT_TOPICS else "webhook_order"
        try:
            _record_failure(db, ledger_type, topic, str(e))
        except Exception as ledger_error:
            logger.exception("Could not write webhook failure to ledger: %s", ledger_error)
            db.rollback()
        return {"success": False, "error": str(e)}
