"""
Shopify webhook receivers. Public (no JWT); signatures checked by the shared policy.
Processing failures still answer 200 so Shopify does not retry; they are in the ledger instead.
"""
import json
import logging
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.database import get_db
from app.services.shopify_webhook_handler import (
    INVENTORY_TOPICS,
    ORDER_TOPICS,
    PRODUCT_TOPICS,
    process_shopify_webhook,
)
from app.services.webhook_security import (
    WebhookSignatureError,
    enforce_webhook_signature,
    is_connectivity_test,
)

logger = logging.getLogger(__name__)
router = APIRouter()

WEBHOOK_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "authorization, content-type, x-shopify-hmac-sha256, x-shopify-topic, x-shopify-shop-domain",
}


async def _receive(request: Request, db: Session, name: str, topics: tuple) -> dict:
    raw_body = await request.body()
    hmac_header = request.headers.get("X-Shopify-Hmac-Sha256")
    topic = (request.headers.get("X-Shopify-Topic") or "").strip()
    shop_domain = (request.headers.get("X-Shopify-Shop-Domain") or "").strip().lower()

    if is_connectivity_test(raw_body):
        logger.info("Shopify %s webhook: connectivity test", name)
        return {"success": True, "test": True, "message": f"{name.capitalize()} webhook endpoint reachable"}

    try:
        verified = enforce_webhook_signature(raw_body, hmac_header, topic)
    except WebhookSignatureError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))

    try:
        payload = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.warning("Shopify %s webhook: invalid JSON %s", name, e)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Expected a JSON object")

    if topic not in topics:
        logger.info("Shopify %s webhook: topic %r not processed (shop=%s)", name, topic, shop_domain)
        return {"success": True, "message": f"{name.capitalize()} webhook received but not processed", "topic": topic}

    result = await process_shopify_webhook(db, topic, payload)
    return {**result, "topic": topic, "signatureVerified": verified}


@router.options("/shopify/inventory")
@router.options("/shopify/products")
@router.options("/shopify/orders")
async def shopify_webhook_options():
    return JSONResponse(content={"ok": True}, headers=WEBHOOK_CORS_HEADERS)


@router.post("/shopify/inventory")
async def shopify_inventory_webhook(request: Request, db: Session = Depends(get_db)):
    """inventory_levels/update and inventory_levels/connect: set local stock to Shopify's available count."""
    result = await _receive(request, db, "inventory", INVENTORY_TOPICS)
    return JSONResponse(content=result, headers=WEBHOOK_CORS_HEADERS)


@router.post("/shopify/products")
async def shopify_products_webhook(request: Request, db: Session = Depends(get_db)):
    """products/create and products/update: upsert catalog product and variants."""
    result = await _receive(request, db, "product", PRODUCT_TOPICS)
    return JSONResponse(content=result, headers=WEBHOOK_CORS_HEADERS)


@router.post("/shopify/orders")
async def shopify_orders_webhook(request: Request, db: Session = Depends(get_db)):
    """orders/create and orders/updated: keep the local copy used by sales analytics."""
    result = await _receive(request, db, "order", ORDER_TOPICS)
    return JSONResponse(content=result, headers=WEBHOOK_CORS_HEADERS)
