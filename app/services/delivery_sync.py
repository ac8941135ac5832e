"""
Push approved delivery quantities to Shopify stock.

One run per delivery at a time (sync_in_progress flag, stale after DELIVERY_SYNC_LOCK_MINUTES).
Items already synced with the same approved quantity are skipped; a SKU whose earlier
ledger success carried the same addedQuantity is recorded as an idempotency check instead
of being added again. Every run that reaches Shopify appends exactly one ledger row.
"""
import asyncio
import logging
from datetime import timedelta
from typing import Optional

import httpx
from sqlalchemy.orm import Session

from app.config import settings
from app.models import Delivery, DeliveryItem, InventorySyncLog, OrderItem, ProductVariant, utcnow
from app.services import shopify_service, sync_ledger

logger = logging.getLogger(__name__)

LEDGER_DELIVERY = "delivery_sync"
VERIFY_TOLERANCE = 1


def _lock_is_live(delivery: Delivery) -> bool:
    if not delivery.sync_in_progress or not delivery.last_sync_attempt:
        return False
    return utcnow() - delivery.last_sync_attempt < timedelta(minutes=settings.DELIVERY_SYNC_LOCK_MINUTES)


def _release(delivery: Delivery, error: Optional[str]) -> None:
    delivery.sync_in_progress = False
    delivery.sync_error_message = error[:2000] if error else None


def _delivery_items_by_sku(db: Session, delivery_id: str) -> dict[str, DeliveryItem]:
    rows = (
        db.query(DeliveryItem, ProductVariant.sku_variant)
        .join(OrderItem, OrderItem.id == DeliveryItem.order_item_id)
        .join(ProductVariant, ProductVariant.id == OrderItem.product_variant_id)
        .filter(DeliveryItem.delivery_id == delivery_id)
        .all()
    )
    return {sku: item for item, sku in rows if sku}


def _previous_additions(db: Session, delivery_id: str) -> dict[str, set]:
    """SKU -> addedQuantity values of earlier successful pushes for this delivery."""
    added: dict[str, set] = {}
    for log in db.query(InventorySyncLog).filter(InventorySyncLog.delivery_id == delivery_id).all():
        for result in sync_ledger.normalize_sync_results(log.sync_results).results:
            if result.get("status") != sync_ledger.STATUS_SUCCESS:
                continue
            quantity = result.get("addedQuantity")
            sku = sync_ledger.result_sku(result)
            if sku and isinstance(quantity, (int, float)) and quantity > 0:
                added.setdefault(sku, set()).add(int(quantity))
    return added


def _normalize_approved(approved_items: list[dict]) -> list[tuple[str, int]]:
    out = []
    for entry in approved_items:
        sku = (entry.get("skuVariant") or entry.get("sku_variant") or entry.get("sku") or "").strip()
        quantity = int(entry.get("quantityApproved") or entry.get("quantity_approved") or 0)
        if sku and quantity > 0:
            out.append((sku, quantity))
    return out


async def sync_delivery_to_shopify(
    db: Session,
    delivery_id: str,
    approved_items: list[dict],
    verify_delay: Optional[float] = None,
) -> dict:
    delivery = db.query(Delivery).filter(Delivery.id == delivery_id).first()
    if delivery is None:
        raise LookupError(f"Delivery {delivery_id} not found")

    if _lock_is_live(delivery):
        logger.info("Delivery %s sync refused: another sync started at %s", delivery.tracking_number, delivery.last_sync_attempt)
        return {"success": False, "status": "in_progress", "error": "A sync for this delivery is already in progress"}

    delivery.sync_in_progress = True
    delivery.last_sync_attempt = utcnow()
    delivery.sync_attempts = (delivery.sync_attempts or 0) + 1
    db.commit()

    verify_delay = settings.SHOPIFY_VERIFY_DELAY_SEC if verify_delay is None else verify_delay
    try:
        items_by_sku = _delivery_items_by_sku(db, delivery.id)
        pending, skipped = [], []
        for sku, quantity in _normalize_approved(approved_items):
            item = items_by_sku.get(sku)
            if item is not None and item.synced_to_shopify and item.quantity_approved == quantity:
                skipped.append(sku)
                continue
            pending.append((sku, quantity))

        if not pending:
            _release(delivery, None)
            delivery.synced_to_shopify = all(i.synced_to_shopify for i in items_by_sku.values()) if items_by_sku else delivery.synced_to_shopify
            db.commit()
            return {"success": True, "message": "Nothing to sync", "skipped": skipped, "results": []}

        shop, token = shopify_service.store_credentials()
        location = await shopify_service.get_primary_location(shop, token)
        if not location:
            raise ValueError("No Shopify location available")
        location_id = location["id"]
        index = shopify_service.build_variant_index(await shopify_service.get_products_all_pages(shop, token))

        missing = [(sku, qty) for sku, qty in pending if sku not in index]
        if missing:
            results = [
                {
                    "sku": sku,
                    "status": sync_ledger.STATUS_ERROR,
                    "error": "SKU not found in Shopify",
                    "quantityAttempted": qty,
                }
                for sku, qty in missing
            ]
            message = "SKUs not found in Shopify: " + ", ".join(sku for sku, _ in missing)
            sync_ledger.append_entry(db, LEDGER_DELIVERY, results, delivery_id=delivery.id, trackingNumber=delivery.tracking_number)
            _release(delivery, message)
            db.commit()
            logger.warning("Delivery %s sync aborted: %s", delivery.tracking_number, message)
            return {"success": False, "error": message, "missingSkus": [sku for sku, _ in missing], "results": results}

        prior = _previous_additions(db, delivery.id)
        results = []
        for sku, quantity in pending:
            remote = index[sku]
            item = items_by_sku.get(sku)
            if item is not None:
                item.last_sync_attempt = utcnow()
                item.sync_attempt_count = (item.sync_attempt_count or 0) + 1
            base = {
                "sku": sku,
                "variantId": remote["variant_id"],
                "inventoryItemId": remote["inventory_item_id"],
                "locationId": location_id,
                "productTitle": remote["product_title"],
            }
            try:
                previous = await shopify_service.get_inventory_level(shop, token, remote["inventory_item_id"], location_id) or 0

                if quantity in prior.get(sku, set()):
                    logger.info("Delivery %s: %s already added %s earlier, not adding again", delivery.tracking_number, sku, quantity)
                    results.append({
                        **base,
                        "status": sync_ledger.STATUS_SUCCESS,
                        "previousQuantity": previous,
                        "addedQuantity": 0,
                        "newQuantity": previous,
                        "method": "idempotency_check",
                    })
                else:
                    try:
                        await shopify_service.adjust_inventory_level(shop, token, remote["inventory_item_id"], location_id, quantity)
                        method = "inventory_levels_adjust"
                    except httpx.HTTPStatusError as e:
                        logger.warning("Delivery %s: adjust failed for %s (%s), falling back to set", delivery.tracking_number, sku, e)
                        await shopify_service.set_inventory_level(shop, token, remote["inventory_item_id"], location_id, previous + quantity)
                        method = "inventory_levels_set"

                    if verify_delay > 0:
                        await asyncio.sleep(verify_delay)
                    verified = await shopify_service.get_inventory_level(shop, token, remote["inventory_item_id"], location_id)
                    expected = previous + quantity
                    if verified is None or abs(verified - expected) > VERIFY_TOLERANCE:
                        raise ValueError(f"Verification failed: expected {expected}, Shopify reports {verified}")
                    results.append({
                        **base,
                        "status": sync_ledger.STATUS_SUCCESS,
                        "previousQuantity": previous,
                        "addedQuantity": quantity,
                        "newQuantity": expected,
                        "verifiedQuantity": verified,
                        "method": method,
                    })

                if item is not None:
                    item.synced_to_shopify = True
                    item.quantity_approved = quantity
                    item.sync_error_message = None
            except Exception as e:
                logger.exception("Delivery %s: sync of %s failed: %s", delivery.tracking_number, sku, e)
                if item is not None:
                    item.sync_error_message = str(e)[:2000]
                results.append({**base, "status": sync_ledger.STATUS_ERROR, "error": str(e), "quantityAttempted": quantity})

        failed = [r for r in results if r["status"] != sync_ledger.STATUS_SUCCESS]
        sync_ledger.append_entry(db, LEDGER_DELIVERY, results, delivery_id=delivery.id, trackingNumber=delivery.tracking_number)
        error_message = f"{len(failed)} item(s) failed: " + ", ".join(r["sku"] for r in failed) if failed else None
        _release(delivery, error_message)
        delivery.synced_to_shopify = not failed and all(i.synced_to_shopify for i in items_by_sku.values())
        db.commit()

        summary = {"successful": len(results) - len(failed), "failed": len(failed), "skipped": len(skipped)}
        logger.info("Delivery %s sync: %s", delivery.tracking_number, summary)
        return {"success": not failed, "summary": summary, "skipped": skipped, "results": results}
    except Exception as e:
        logger.exception("Delivery %s sync failed: %s", delivery_id, e)
        db.rollback()
        delivery = db.query(Delivery).filter(Delivery.id == delivery_id).first()
        _release(delivery, str(e))
        db.commit()
        return {"success": False, "error": str(e)}
