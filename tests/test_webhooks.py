"""
Shopify webhook endpoints: signature policy, inventory/product/order processing and the ledger
"""
import json
from unittest.mock import AsyncMock, patch

import pytest

from app.config import settings
from app.models import (
    InventorySyncLog,
    Organization,
    Product,
    ProductVariant,
    ShopifyOrder,
    SyncControlLog,
    SyncControlStatus,
)
from app.services.webhook_security import compute_webhook_hmac

SECRET = "whsec_test"
RESOLVE_SKU = "app.services.shopify_webhook_handler.resolve_inventory_item_sku"


@pytest.fixture
def strict_signatures(monkeypatch):
    monkeypatch.setattr(settings, "SHOPIFY_WEBHOOK_SECRET", SECRET)
    monkeypatch.setattr(settings, "WEBHOOK_SIGNATURE_POLICY", "strict")


@pytest.fixture
def log_only_signatures(monkeypatch):
    monkeypatch.setattr(settings, "SHOPIFY_WEBHOOK_SECRET", SECRET)
    monkeypatch.setattr(settings, "WEBHOOK_SIGNATURE_POLICY", "log_only")


def _post(client, path, topic, payload, signature=None):
    body = json.dumps(payload).encode("utf-8") if not isinstance(payload, bytes) else payload
    headers = {
        "Content-Type": "application/json",
        "X-Shopify-Topic": topic,
        "X-Shopify-Shop-Domain": "dosmicos.myshopify.com",
        "X-Shopify-Hmac-Sha256": signature if signature is not None else compute_webhook_hmac(body, SECRET),
    }
    return client.post(path, content=body, headers=headers)


INVENTORY_PAYLOAD = {
    "inventory_item_id": 808950810,
    "location_id": 905684977,
    "available": 12,
    "updated_at": "2025-06-01T10:15:00-05:00",
}


class TestInventoryWebhook:

    def test_signed_update_sets_stock_and_writes_one_ledger_row(self, client, db_session, make_product, strict_signatures):
        product = make_product("Ruana", [("RUANA-M", "M", "Rojo", 3)])
        variant_id = product.variants[0].id

        with patch(RESOLVE_SKU, AsyncMock(return_value="RUANA-M")) as resolve:
            response = _post(client, "/api/webhooks/shopify/inventory", "inventory_levels/update", INVENTORY_PAYLOAD)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["signatureVerified"] is True
        assert body["previousQuantity"] == 3
        assert body["newQuantity"] == 12
        resolve.assert_awaited_once_with(808950810)

        assert db_session.query(ProductVariant).filter(ProductVariant.id == variant_id).one().stock_quantity == 12
        entries = db_session.query(InventorySyncLog).all()
        assert len(entries) == 1
        assert entries[0].success_count == 1
        assert entries[0].error_count == 0
        assert entries[0].sync_results["type"] == "webhook_inventory_update"
        assert entries[0].sync_results["results"][0]["sku"] == "RUANA-M"

        run = db_session.query(SyncControlLog).one()
        assert run.status == SyncControlStatus.COMPLETED
        assert run.variants_updated == 1

    def test_same_sku_in_another_organization_is_untouched(
        self, client, db_session, make_product, organization, strict_signatures, monkeypatch
    ):
        other = Organization(name="Otra Marca", slug="otra-marca")
        db_session.add(other)
        db_session.commit()
        foreign = make_product("Ruana", [("RUANA-M", "M", "Rojo", 3)], organization_id=other.id)
        own = make_product("Ruana", [("RUANA-M", "M", "Rojo", 3)], organization_id=organization.id)
        foreign_id, own_id = foreign.variants[0].id, own.variants[0].id
        monkeypatch.setattr(settings, "SHOPIFY_ORGANIZATION_ID", organization.id)

        with patch(RESOLVE_SKU, AsyncMock(return_value="RUANA-M")):
            response = _post(client, "/api/webhooks/shopify/inventory", "inventory_levels/update", INVENTORY_PAYLOAD)

        assert response.json()["variantId"] == own_id
        stock = {v.id: v.stock_quantity for v in db_session.query(ProductVariant).all()}
        assert stock == {foreign_id: 3, own_id: 12}

    def test_bad_signature_rejected_under_strict(self, client, db_session, make_product, strict_signatures):
        product = make_product("Ruana", [("RUANA-M", "M", "Rojo", 3)])

        with patch(RESOLVE_SKU, AsyncMock(return_value="RUANA-M")) as resolve:
            response = _post(
                client, "/api/webhooks/shopify/inventory", "inventory_levels/update", INVENTORY_PAYLOAD,
                signature="bm90LWEtc2lnbmF0dXJl",
            )

        assert response.status_code == 401
        resolve.assert_not_awaited()
        assert db_session.query(InventorySyncLog).count() == 0
        assert db_session.query(ProductVariant).filter(ProductVariant.id == product.variants[0].id).one().stock_quantity == 3

    def test_bad_signature_processed_under_log_only(self, client, db_session, make_product, log_only_signatures):
        make_product("Ruana", [("RUANA-M", "M", "Rojo", 3)])

        with patch(RESOLVE_SKU, AsyncMock(return_value="RUANA-M")):
            response = _post(
                client, "/api/webhooks/shopify/inventory", "inventory_levels/update", INVENTORY_PAYLOAD,
                signature="bm90LWEtc2lnbmF0dXJl",
            )

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert response.json()["signatureVerified"] is False

    def test_unmapped_sku_is_logged_not_failed(self, client, db_session, strict_signatures):
        with patch(RESOLVE_SKU, AsyncMock(return_value="UNKNOWN-SKU")):
            response = _post(client, "/api/webhooks/shopify/inventory", "inventory_levels/update", INVENTORY_PAYLOAD)

        assert response.status_code == 200
        assert response.json()["success"] is False
        assert response.json()["reason"] == "unmapped"
        entry = db_session.query(InventorySyncLog).one()
        assert entry.error_count == 1
        assert entry.sync_results["results"][0]["status"] == "unmapped"

    def test_sku_lookup_failure_answers_200(self, client, db_session, strict_signatures):
        with patch(RESOLVE_SKU, AsyncMock(side_effect=RuntimeError("Shopify down"))):
            response = _post(client, "/api/webhooks/shopify/inventory", "inventory_levels/update", INVENTORY_PAYLOAD)

        assert response.status_code == 200
        assert response.json()["reason"] == "shopify_error"
        assert db_session.query(InventorySyncLog).one().error_count == 1
        assert db_session.query(SyncControlLog).one().status == SyncControlStatus.FAILED

    def test_missing_fields(self, client, db_session, strict_signatures):
        response = _post(client, "/api/webhooks/shopify/inventory", "inventory_levels/update", {"location_id": 1})
        assert response.status_code == 200
        assert response.json()["reason"] == "invalid_payload"
        assert db_session.query(InventorySyncLog).one().error_count == 1

    def test_connectivity_test_skips_signature(self, client, db_session, strict_signatures):
        response = _post(client, "/api/webhooks/shopify/inventory", "", b"{}", signature="")
        assert response.status_code == 200
        assert response.json()["test"] is True
        assert db_session.query(InventorySyncLog).count() == 0

    def test_other_topic_not_processed(self, client, db_session, strict_signatures):
        response = _post(client, "/api/webhooks/shopify/inventory", "inventory_items/update", INVENTORY_PAYLOAD)
        assert response.status_code == 200
        assert "not processed" in response.json()["message"]
        assert db_session.query(InventorySyncLog).count() == 0

    def test_invalid_json(self, client, strict_signatures):
        response = _post(client, "/api/webhooks/shopify/inventory", "inventory_levels/update", b"{not json")
        assert response.status_code == 400

    def test_options_preflight(self, client):
        response = client.options("/api/webhooks/shopify/inventory")
        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"


class TestProductWebhook:

    def test_creates_product_and_variants(self, client, db_session, strict_signatures):
        payload = {
            "id": 7001,
            "title": "Ruana Nueva",
            "handle": "ruana-nueva",
            "variants": [
                {"id": 501, "sku": "RN-S-ROJO", "title": "S / Rojo", "option1": "S", "option2": "Rojo", "inventory_quantity": 4},
                {"id": 502, "sku": "", "title": "M / Azul", "option1": "M", "option2": "Azul", "inventory_quantity": 2},
            ],
        }
        response = _post(client, "/api/webhooks/shopify/products", "products/create", payload)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["new_variants"] == 2

        product = db_session.query(Product).filter(Product.name == "Ruana Nueva").one()
        skus = {v.sku_variant: v.stock_quantity for v in product.variants}
        assert skus == {"RN-S-ROJO": 4, "SHOPIFY-502": 2}
        assert product.sku == "RN-S-ROJO"
        entry = db_session.query(InventorySyncLog).one()
        assert entry.sync_results["type"] == "webhook_product_sync"
        assert entry.success_count == 2

    def test_update_replaces_placeholder_sku(self, client, db_session, make_product, strict_signatures):
        make_product("Ruana Nueva", [("SHOPIFY-502", "M", "Azul", 2)])
        payload = {
            "id": 7001,
            "title": "Ruana Nueva",
            "variants": [
                {"id": 502, "sku": "RN-M-AZUL", "title": "M / Azul", "option1": "M", "option2": "Azul", "inventory_quantity": 9},
            ],
        }
        response = _post(client, "/api/webhooks/shopify/products", "products/update", payload)

        assert response.json()["updated_variants"] == 1
        variants = db_session.query(ProductVariant).all()
        assert [(v.sku_variant, v.stock_quantity) for v in variants] == [("RN-M-AZUL", 9)]


class TestOrderWebhook:

    def test_upserts_shopify_order(self, client, db_session, strict_signatures):
        payload = {
            "id": 9001,
            "order_number": 1001,
            "email": "cliente@example.com",
            "financial_status": "paid",
            "total_price": "90.00",
            "currency": "COP",
            "created_at": "2025-06-01T10:00:00-05:00",
            "customer": {"first_name": "Ana", "last_name": "Gómez"},
            "line_items": [{"id": 1, "sku": "RUANA-M", "quantity": 2, "price": "45.00"}],
        }
        first = _post(client, "/api/webhooks/shopify/orders", "orders/create", payload)
        payload["financial_status"] = "refunded"
        second = _post(client, "/api/webhooks/shopify/orders", "orders/updated", payload)

        assert first.status_code == 200 and second.status_code == 200
        order = db_session.query(ShopifyOrder).one()
        assert order.shopify_order_id == "9001"
        assert order.financial_status == "refunded"
        assert order.customer_name == "Ana Gómez"
        assert [(li.sku, li.quantity) for li in order.line_items] == [("RUANA-M", 2)]
