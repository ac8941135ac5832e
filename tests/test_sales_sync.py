"""
Shopify sales sync, sales metrics aggregation and the daily stock snapshot
"""
from datetime import date, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.models import (
    ProductStatus,
    ProductStockHistory,
    ProductVariant,
    SalesMetric,
    ShopifyOrder,
    SyncControlLog,
    SyncControlStatus,
    utcnow,
)
from app.services.sales_sync import aggregate_sales_metrics, parse_shopify_datetime, sync_shopify_sales
from app.services.stock_snapshot import take_stock_snapshot

SHOPIFY = "app.services.sales_sync.shopify_service"


def _shopify_order(order_id, financial_status, created_at, lines, cancelled_at=None):
    return {
        "id": order_id,
        "order_number": order_id,
        "financial_status": financial_status,
        "created_at": created_at,
        "cancelled_at": cancelled_at,
        "line_items": [{"id": i, "sku": sku, "quantity": qty, "price": "10.00"} for i, (sku, qty) in enumerate(lines)],
    }


class TestAggregateSalesMetrics:

    def test_groups_by_variant_and_shop_day(self):
        orders = [
            _shopify_order(1, "paid", "2025-05-20T23:30:00-05:00", [("RUANA-M", 2), ("UNKNOWN", 5)]),
            _shopify_order(2, "authorized", "2025-05-20T08:00:00-05:00", [("RUANA-M", 1)]),
            _shopify_order(3, "pending", "2025-05-20T09:00:00-05:00", [("RUANA-M", 7)]),
            _shopify_order(4, "paid", "2025-05-20T10:00:00-05:00", [("RUANA-M", 7)], cancelled_at="2025-05-21T00:00:00-05:00"),
            _shopify_order(5, "partially_paid", "2025-05-21T01:00:00-05:00", [("RUANA-M", 4)]),
        ]
        metrics = aggregate_sales_metrics(orders, {"RUANA-M": "v1"})

        assert set(metrics) == {("v1", date(2025, 5, 20)), ("v1", date(2025, 5, 21))}
        assert metrics[("v1", date(2025, 5, 20))]["quantity"] == 3
        assert len(metrics[("v1", date(2025, 5, 20))]["orders"]) == 2
        assert metrics[("v1", date(2025, 5, 21))]["quantity"] == 4

    def test_parse_shopify_datetime_to_naive_utc(self):
        parsed = parse_shopify_datetime("2025-05-20T23:30:00-05:00")
        assert parsed.tzinfo is None
        assert (parsed.day, parsed.hour) == (21, 4)
        assert parse_shopify_datetime("not a date") is None


class TestSyncShopifySales:

    @pytest.mark.asyncio
    async def test_daily_sync_rebuilds_window_and_refreshes_stock(self, db_session, make_product):
        product = make_product("Ruana", [("RUANA-M", "M", "Rojo", 10)])
        variant_id = product.variants[0].id
        today = utcnow().date()
        db_session.add_all([
            SalesMetric(product_variant_id=variant_id, metric_date=today - timedelta(days=1), sales_quantity=99, orders_count=9),
            SalesMetric(product_variant_id=variant_id, metric_date=today - timedelta(days=20), sales_quantity=5, orders_count=1),
        ])
        db_session.commit()

        yesterday = (utcnow() - timedelta(days=1)).strftime("%Y-%m-%dT%H:%M:%S-00:00")
        shopify = MagicMock()
        shopify.store_credentials.return_value = ("dosmicos.myshopify.com", "shpat_x")
        shopify.get_orders_in_range = AsyncMock(return_value=[
            _shopify_order(501, "paid", yesterday, [("RUANA-M", 2)]),
            _shopify_order(502, "paid", yesterday, [("RUANA-M", 1)]),
        ])
        shopify.get_products_all_pages = AsyncMock(return_value=[])
        shopify.build_variant_index.return_value = {"RUANA-M": {"inventory_quantity": 42}}

        with patch(SHOPIFY, shopify):
            result = await sync_shopify_sales(db_session, mode="daily", days=3)

        assert result["success"] is True
        summary = result["summary"]
        # window starts at the shop-local midnight of the first day, less the UTC offset margin
        assert summary["chunks"] == 2
        assert summary["ordersFetched"] == 2
        assert summary["metricsDeleted"] == 1
        assert summary["metricsCreated"] == 1
        assert summary["variantsUpdated"] == 1

        metrics = {m.metric_date: (m.sales_quantity, m.orders_count) for m in db_session.query(SalesMetric).all()}
        assert metrics[today - timedelta(days=20)] == (5, 1)
        assert metrics[(utcnow() - timedelta(days=1)).date()] == (3, 2)
        assert db_session.query(ShopifyOrder).count() == 2
        assert db_session.query(ProductVariant).filter(ProductVariant.id == variant_id).one().stock_quantity == 42

        run = db_session.query(SyncControlLog).filter(SyncControlLog.id == result["syncLogId"]).one()
        assert run.status == SyncControlStatus.COMPLETED
        assert run.orders_processed == 2

    @pytest.mark.asyncio
    async def test_window_is_rebuilt_by_whole_shop_days(self, db_session, make_product):
        product = make_product("Ruana", [("RUANA-M", "M", "Rojo", 10)])
        variant_id = product.variants[0].id
        db_session.add_all([
            SalesMetric(product_variant_id=variant_id, metric_date=date(2025, 6, 6), sales_quantity=7, orders_count=3),
            SalesMetric(product_variant_id=variant_id, metric_date=date(2025, 6, 5), sales_quantity=5, orders_count=1),
        ])
        db_session.commit()

        shopify = MagicMock()
        shopify.store_credentials.return_value = ("dosmicos.myshopify.com", "shpat_x")
        shopify.get_orders_in_range = AsyncMock(side_effect=[
            [
                _shopify_order(601, "paid", "2025-06-05T23:00:00-05:00", [("RUANA-M", 4)]),
                _shopify_order(602, "paid", "2025-06-06T22:00:00-05:00", [("RUANA-M", 1)]),
            ],
            [_shopify_order(602, "paid", "2025-06-06T22:00:00-05:00", [("RUANA-M", 1)])],
        ])
        shopify.get_products_all_pages = AsyncMock(return_value=[])
        shopify.build_variant_index.return_value = {}

        with patch(SHOPIFY, shopify), \
                patch("app.services.sales_sync.utcnow", return_value=datetime(2025, 6, 10, 2, 0)):
            result = await sync_shopify_sales(db_session, mode="daily", days=4)

        assert result["success"] is True
        assert shopify.get_orders_in_range.await_args_list[0].args[2] == "2025-06-05T10:00:00Z"
        assert result["summary"]["ordersFetched"] == 2
        rows = {}
        for metric in db_session.query(SalesMetric).all():
            rows.setdefault(metric.metric_date, []).append((metric.sales_quantity, metric.orders_count))
        assert rows[date(2025, 6, 6)] == [(1, 1)]
        assert rows[date(2025, 6, 5)] == [(5, 1)]

    @pytest.mark.asyncio
    async def test_initial_mode_chunks_and_skips_stock(self, db_session):
        shopify = MagicMock()
        shopify.store_credentials.return_value = ("dosmicos.myshopify.com", "shpat_x")
        shopify.get_orders_in_range = AsyncMock(return_value=[])
        shopify.get_products_all_pages = AsyncMock(return_value=[])

        with patch(SHOPIFY, shopify):
            result = await sync_shopify_sales(db_session, mode="initial", days=12)

        assert result["summary"]["chunks"] == 3
        assert shopify.get_orders_in_range.await_count == 3
        shopify.get_products_all_pages.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_refuses_while_running(self, db_session):
        db_session.add(SyncControlLog(sync_type="sales_sync", sync_mode="daily", status=SyncControlStatus.RUNNING))
        db_session.commit()

        result = await sync_shopify_sales(db_session, mode="daily")

        assert result["status"] == "already_running"

    @pytest.mark.asyncio
    async def test_shopify_failure_marks_run_failed(self, db_session):
        shopify = MagicMock()
        shopify.store_credentials.return_value = ("dosmicos.myshopify.com", "shpat_x")
        shopify.get_orders_in_range = AsyncMock(side_effect=RuntimeError("Shopify 500"))

        with patch(SHOPIFY, shopify):
            result = await sync_shopify_sales(db_session, mode="daily")

        assert result["success"] is False
        assert db_session.query(SyncControlLog).one().status == SyncControlStatus.FAILED

    @pytest.mark.asyncio
    async def test_invalid_mode(self, db_session):
        with pytest.raises(ValueError):
            await sync_shopify_sales(db_session, mode="hourly")

    def test_api_without_credentials_is_503(self, client):
        response = client.post("/api/sync/sales", json={"mode": "daily"})
        assert response.status_code == 503


class TestStockSnapshot:

    def test_records_active_variants(self, db_session, make_product, organization):
        make_product("Ruana", [("RUANA-M", "M", "Rojo", 10), ("RUANA-L", "L", "Rojo", 4)], organization.id)
        make_product("Old", [("OLD-1", None, None, 8)], organization.id, status=ProductStatus.DISCONTINUED)

        result = take_stock_snapshot(db_session, organization_id=organization.id)

        assert result["success"] is True
        assert result["snapshots"] == 2
        assert result["totalStock"] == 14
        assert db_session.query(ProductStockHistory).count() == 2
        assert db_session.query(SyncControlLog).one().sync_type == "inventory_snapshot"
