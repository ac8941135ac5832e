"""
Shopify Admin API service - authenticated requests for the configured store.
REST for products, locations, inventory levels and orders; GraphQL for inventory item lookups.
Never expose access_token to the frontend.
"""
import re
import logging
from typing import Any, Optional

from app.config import settings
from app.services.http_client import get_with_retry, post_no_retry, request_with_retry

logger = logging.getLogger(__name__)

ORDERS_PAGE_LIMIT = 250
ORDERS_MAX_PAGES = 30


class ShopifyNotConfigured(ValueError):
    """Store domain or access token missing from the environment."""


class ShopifyGraphQLError(Exception):
    def __init__(self, errors: list):
        self.errors = errors
        messages = "; ".join(str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors)
        super().__init__(f"Shopify GraphQL error: {messages}")


def store_credentials() -> tuple[str, str]:
    """(shop_domain, access_token) from settings; raises ShopifyNotConfigured when either is empty."""
    shop = (settings.SHOPIFY_STORE_DOMAIN or "").strip()
    token = (settings.SHOPIFY_ACCESS_TOKEN or "").strip()
    if not shop or not token:
        raise ShopifyNotConfigured("SHOPIFY_STORE_DOMAIN and SHOPIFY_ACCESS_TOKEN must be set")
    return shop, token


def _parse_link_next(link_header: Optional[str]) -> Optional[str]:
    """Parse Link header; return URL for rel=next if present. Shopify uses cursor pagination."""
    if not link_header:
        return None
    for part in link_header.split(","):
        part = part.strip()
        if 'rel="next"' in part.lower() or "rel=next" in part.lower():
            match = re.search(r"<([^>]+)>", part)
            if match:
                return match.group(1).strip()
    return None


def _log_shopify_response(method: str, url: str, status: int, body_preview: str = "") -> None:
    """Log every Shopify API call. No sensitive data."""
    if status >= 400:
        logger.warning("Shopify API %s %s -> %s %s", method, url, status, body_preview[:200] if body_preview else "")
    else:
        logger.info("Shopify API %s %s -> %s", method, url, status)


def _base_url(shop_domain: str) -> str:
    shop = shop_domain.lower().strip()
    if not shop.endswith(".myshopify.com"):
        shop = f"{shop}.myshopify.com" if "." not in shop else shop
    return f"https://{shop}/admin/api/{settings.SHOPIFY_API_VERSION}"


def _headers(access_token: str) -> dict:
    return {
        "X-Shopify-Access-Token": access_token,
        "Content-Type": "application/json",
    }


async def get_products_all_pages(shop_domain: str, access_token: str, page_limit: int = 250) -> list[dict]:
    """
    Fetch all products using cursor pagination (Link header).
    Stops when response has no rel=next or fewer than page_limit items.
    """
    url = f"{_base_url(shop_domain)}/products.json"
    params: Optional[dict] = {"limit": page_limit}
    all_products: list[dict] = []
    page = 0
    while True:
        page += 1
        response = await get_with_retry(url, params=params, headers=_headers(access_token))
        _log_shopify_response("GET", url, response.status_code, response.text[:300] if response.text else "")
        response.raise_for_status()
        products = response.json().get("products") or []
        all_products.extend(products)
        logger.debug("Shopify products page %s: got %s (total so far: %s)", page, len(products), len(all_products))
        if len(products) < page_limit:
            break
        next_url = _parse_link_next(response.headers.get("link"))
        if not next_url:
            break
        url = next_url
        params = None  # page_info URL already carries its params
    logger.info("Shopify products: got %s product(s) across %s page(s)", len(all_products), page)
    return all_products


async def get_locations(shop_domain: str, access_token: str) -> list[dict]:
    url = f"{_base_url(shop_domain)}/locations.json"
    response = await get_with_retry(url, params={"limit": 50}, headers=_headers(access_token), timeout=15.0)
    _log_shopify_response("GET", url, response.status_code, response.text[:300] if response.text else "")
    response.raise_for_status()
    return response.json().get("locations") or []


async def get_primary_location(shop_domain: str, access_token: str) -> Optional[dict]:
    """Legacy or primary location if flagged, otherwise the first active one."""
    locations = await get_locations(shop_domain, access_token)
    if not locations:
        return None
    for loc in locations:
        if loc.get("legacy") or loc.get("primary"):
            return loc
    active = [loc for loc in locations if loc.get("active", True)]
    return (active or locations)[0]


def build_variant_index(products: list[dict]) -> dict[str, dict]:
    """
    Map SKU -> Shopify variant summary. First occurrence wins when SKUs repeat.
    Variants without SKU are skipped.
    """
    index: dict[str, dict] = {}
    for p in products or []:
        if not isinstance(p, dict):
            continue
        title = (p.get("title") or "").strip()
        for v in p.get("variants") or []:
            if not isinstance(v, dict):
                continue
            sku = (v.get("sku") or "").strip()
            if not sku:
                continue
            if sku in index:
                logger.warning("Duplicate Shopify SKU %s (variants %s and %s)", sku, index[sku]["variant_id"], v.get("id"))
                continue
            index[sku] = {
                "sku": sku,
                "variant_id": v.get("id"),
                "inventory_item_id": v.get("inventory_item_id"),
                "inventory_quantity": v.get("inventory_quantity"),
                "product_id": p.get("id"),
                "product_title": title,
                "variant_title": v.get("title"),
            }
    return index


async def get_inventory_level(shop_domain: str, access_token: str, inventory_item_id: Any, location_id: Any) -> Optional[int]:
    """Available quantity for one item at one location; None when Shopify has no level row."""
    url = f"{_base_url(shop_domain)}/inventory_levels.json"
    params = {"inventory_item_ids": str(inventory_item_id), "location_ids": str(location_id)}
    response = await get_with_retry(url, params=params, headers=_headers(access_token))
    _log_shopify_response("GET", url, response.status_code, response.text[:300] if response.text else "")
    response.raise_for_status()
    levels = response.json().get("inventory_levels") or []
    if not levels:
        return None
    return int(levels[0].get("available") or 0)


async def adjust_inventory_level(shop_domain: str, access_token: str, inventory_item_id: Any, location_id: Any, delta: int) -> dict:
    """POST inventory_levels/adjust.json. Not retried: a repeated adjust would double-apply."""
    url = f"{_base_url(shop_domain)}/inventory_levels/adjust.json"
    body = {
        "location_id": int(location_id),
        "inventory_item_id": int(inventory_item_id),
        "available_adjustment": int(delta),
    }
    response = await post_no_retry(url, json=body, headers=_headers(access_token))
    _log_shopify_response("POST", url, response.status_code, response.text[:300] if response.text else "")
    response.raise_for_status()
    return response.json().get("inventory_level") or {}


async def set_inventory_level(shop_domain: str, access_token: str, inventory_item_id: Any, location_id: Any, available: int) -> dict:
    url = f"{_base_url(shop_domain)}/inventory_levels/set.json"
    body = {
        "location_id": int(location_id),
        "inventory_item_id": int(inventory_item_id),
        "available": int(available),
    }
    response = await post_no_retry(url, json=body, headers=_headers(access_token))
    _log_shopify_response("POST", url, response.status_code, response.text[:300] if response.text else "")
    response.raise_for_status()
    return response.json().get("inventory_level") or {}


async def graphql(shop_domain: str, access_token: str, query: str, variables: Optional[dict] = None) -> dict:
    """Run a read-only Admin GraphQL query; raises ShopifyGraphQLError on top-level errors."""
    url = f"{_base_url(shop_domain)}/graphql.json"
    response = await request_with_retry(
        "POST", url, json={"query": query, "variables": variables or {}}, headers=_headers(access_token)
    )
    _log_shopify_response("POST", url, response.status_code, response.text[:300] if response.text else "")
    response.raise_for_status()
    payload = response.json()
    if payload.get("errors"):
        raise ShopifyGraphQLError(payload["errors"])
    return payload.get("data") or {}


INVENTORY_ITEM_SKU_QUERY = """
query inventoryItemSku($id: ID!) {
  inventoryItem(id: $id) {
    id
    sku
    variant {
      id
      sku
      title
      product { id title }
    }
  }
}
"""


async def get_inventory_item_sku(shop_domain: str, access_token: str, inventory_item_id: Any) -> Optional[str]:
    """Canonical SKU for an inventory item: the item's own SKU, else its variant's SKU."""
    data = await graphql(
        shop_domain,
        access_token,
        INVENTORY_ITEM_SKU_QUERY,
        {"id": f"gid://shopify/InventoryItem/{inventory_item_id}"},
    )
    item = data.get("inventoryItem")
    if not item:
        return None
    sku = (item.get("sku") or "").strip()
    if not sku:
        sku = ((item.get("variant") or {}).get("sku") or "").strip()
    return sku or None


async def get_orders_in_range(
    shop_domain: str,
    access_token: str,
    created_at_min: str,
    created_at_max: str,
    max_pages: int = ORDERS_MAX_PAGES,
) -> list[dict]:
    """
    Raw orders (with line_items) created in [created_at_min, created_at_max].
    Paginates with since_id; Shopify returns since_id pages in ascending id order.
    """
    url = f"{_base_url(shop_domain)}/orders.json"
    orders: list[dict] = []
    since_id: Optional[str] = None
    for page in range(1, max_pages + 1):
        params = {
            "status": "any",
            "limit": ORDERS_PAGE_LIMIT,
            "created_at_min": created_at_min,
            "created_at_max": created_at_max,
            "fields": "id,name,order_number,email,customer,financial_status,fulfillment_status,"
                      "total_price,currency,created_at,updated_at,line_items,cancelled_at",
        }
        if since_id:
            params["since_id"] = since_id
        response = await get_with_retry(url, params=params, headers=_headers(access_token))
        _log_shopify_response("GET", url, response.status_code, response.text[:300] if response.text else "")
        response.raise_for_status()
        batch = response.json().get("orders") or []
        orders.extend(batch)
        if len(batch) < ORDERS_PAGE_LIMIT:
            break
        since_id = str(batch[-1].get("id"))
    else:
        logger.warning("Shopify orders %s..%s: stopped after %s pages", created_at_min, created_at_max, max_pages)
    return orders
