"""
Shopify Admin API client: pagination, variant index, inventory calls and retries
"""
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from app.services import http_client, shopify_service

SHOP = "dosmicos.myshopify.com"
TOKEN = "shpat_x"


def _response(status_code=200, json=None, headers=None, method="GET", url="https://dosmicos.myshopify.com/admin/api"):
    return httpx.Response(status_code, json=json, headers=headers, request=httpx.Request(method, url))


class TestHelpers:

    def test_parse_link_next(self):
        link = (
            '<https://dosmicos.myshopify.com/admin/api/2025-07/products.json?page_info=abc&limit=250>; rel="previous", '
            '<https://dosmicos.myshopify.com/admin/api/2025-07/products.json?page_info=def&limit=250>; rel="next"'
        )
        assert shopify_service._parse_link_next(link).endswith("page_info=def&limit=250")
        assert shopify_service._parse_link_next(None) is None

    def test_base_url_accepts_short_shop_name(self):
        assert shopify_service._base_url("Dosmicos").startswith("https://dosmicos.myshopify.com/admin/api/")

    def test_store_credentials_required(self, monkeypatch):
        monkeypatch.setattr(shopify_service.settings, "SHOPIFY_STORE_DOMAIN", "")
        with pytest.raises(shopify_service.ShopifyNotConfigured):
            shopify_service.store_credentials()

    def test_build_variant_index_first_sku_wins(self):
        products = [
            {"id": 1, "title": "Ruana", "variants": [
                {"id": 11, "sku": "RUANA-M", "inventory_item_id": 111, "inventory_quantity": 4, "title": "M"},
                {"id": 12, "sku": "", "inventory_item_id": 112},
            ]},
            {"id": 2, "title": "Ruana copia", "variants": [{"id": 21, "sku": "RUANA-M", "inventory_item_id": 211}]},
        ]
        index = shopify_service.build_variant_index(products)
        assert list(index) == ["RUANA-M"]
        assert index["RUANA-M"]["inventory_item_id"] == 111
        assert index["RUANA-M"]["product_title"] == "Ruana"


class TestRestCalls:

    @pytest.mark.asyncio
    async def test_products_follow_link_pagination(self):
        first = _response(
            json={"products": [{"id": 1}, {"id": 2}]},
            headers={"link": '<https://dosmicos.myshopify.com/admin/api/2025-07/products.json?page_info=p2>; rel="next"'},
        )
        second = _response(json={"products": [{"id": 3}]})
        with patch("app.services.shopify_service.get_with_retry", AsyncMock(side_effect=[first, second])) as get:
            products = await shopify_service.get_products_all_pages(SHOP, TOKEN, page_limit=2)

        assert [p["id"] for p in products] == [1, 2, 3]
        assert get.await_args_list[1].args[0].endswith("page_info=p2")
        assert get.await_args_list[1].kwargs["params"] is None

    @pytest.mark.asyncio
    async def test_primary_location_prefers_flagged(self):
        locations = {"locations": [{"id": 1, "active": True}, {"id": 2, "primary": True}]}
        with patch("app.services.shopify_service.get_with_retry", AsyncMock(return_value=_response(json=locations))):
            assert (await shopify_service.get_primary_location(SHOP, TOKEN))["id"] == 2

    @pytest.mark.asyncio
    async def test_inventory_level_missing_row(self):
        with patch("app.services.shopify_service.get_with_retry", AsyncMock(return_value=_response(json={"inventory_levels": []}))):
            assert await shopify_service.get_inventory_level(SHOP, TOKEN, 555, 99) is None

    @pytest.mark.asyncio
    async def test_adjust_posts_once(self):
        post = AsyncMock(return_value=_response(json={"inventory_level": {"available": 13}}, method="POST"))
        with patch("app.services.shopify_service.post_no_retry", post):
            level = await shopify_service.adjust_inventory_level(SHOP, TOKEN, "555", "99", 3)

        assert level == {"available": 13}
        post.assert_awaited_once()
        assert post.await_args.kwargs["json"] == {"location_id": 99, "inventory_item_id": 555, "available_adjustment": 3}

    @pytest.mark.asyncio
    async def test_adjust_error_raises(self):
        with patch("app.services.shopify_service.post_no_retry", AsyncMock(return_value=_response(422, json={}, method="POST"))):
            with pytest.raises(httpx.HTTPStatusError):
                await shopify_service.adjust_inventory_level(SHOP, TOKEN, 555, 99, 3)

    @pytest.mark.asyncio
    async def test_inventory_item_sku_falls_back_to_variant(self):
        data = {"data": {"inventoryItem": {"id": "gid://shopify/InventoryItem/5", "sku": "", "variant": {"sku": "RUANA-M"}}}}
        with patch("app.services.shopify_service.request_with_retry", AsyncMock(return_value=_response(json=data, method="POST"))):
            assert await shopify_service.get_inventory_item_sku(SHOP, TOKEN, 5) == "RUANA-M"

    @pytest.mark.asyncio
    async def test_graphql_errors_raise(self):
        data = {"errors": [{"message": "Throttled"}]}
        with patch("app.services.shopify_service.request_with_retry", AsyncMock(return_value=_response(json=data, method="POST"))):
            with pytest.raises(shopify_service.ShopifyGraphQLError, match="Throttled"):
                await shopify_service.get_inventory_item_sku(SHOP, TOKEN, 5)

    @pytest.mark.asyncio
    async def test_orders_paginate_with_since_id(self, monkeypatch):
        monkeypatch.setattr(shopify_service, "ORDERS_PAGE_LIMIT", 2)
        pages = [
            _response(json={"orders": [{"id": 10}, {"id": 11}]}),
            _response(json={"orders": [{"id": 12}]}),
        ]
        with patch("app.services.shopify_service.get_with_retry", AsyncMock(side_effect=pages)) as get:
            orders = await shopify_service.get_orders_in_range(SHOP, TOKEN, "2025-05-01T00:00:00Z", "2025-05-04T00:00:00Z")

        assert [o["id"] for o in orders] == [10, 11, 12]
        assert "since_id" not in get.await_args_list[0].kwargs["params"]
        assert get.await_args_list[1].kwargs["params"]["since_id"] == "11"


class TestRequestWithRetry:

    @pytest.mark.asyncio
    async def test_retries_throttled_reads(self):
        responses = [_response(429, headers={"retry-after": "1"}), _response(200, json={"ok": True})]
        with patch.object(httpx.AsyncClient, "request", AsyncMock(side_effect=responses)) as request, \
                patch("app.services.http_client._sleep_backoff", AsyncMock()) as backoff:
            response = await http_client.get_with_retry("https://dosmicos.myshopify.com/admin/api/2025-07/shop.json")

        assert response.status_code == 200
        assert request.await_count == 2
        backoff.assert_awaited_once_with(1, 1.0)

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        responses = [_response(503), _response(503), _response(503)]
        with patch.object(httpx.AsyncClient, "request", AsyncMock(side_effect=responses)), \
                patch("app.services.http_client._sleep_backoff", AsyncMock()):
            response = await http_client.get_with_retry("https://example.test", max_retries=2)

        assert response.status_code == 503

    @pytest.mark.asyncio
    async def test_connection_errors_retried_then_raised(self):
        error = httpx.ConnectError("refused")
        with patch.object(httpx.AsyncClient, "request", AsyncMock(side_effect=[error, error])), \
                patch("app.services.http_client._sleep_backoff", AsyncMock()):
            with pytest.raises(httpx.ConnectError):
                await http_client.get_with_retry("https://example.test", max_retries=1)
