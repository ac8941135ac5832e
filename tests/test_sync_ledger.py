"""
Sync ledger: reading the three stored sync_results shapes and appending envelope rows
"""
from app.models import InventorySyncLog
from app.services import sync_ledger


class TestNormalizeSyncResults:

    def test_legacy_list(self):
        raw = [
            {"sku": "RUANA-M", "status": "success", "addedQuantity": 5},
            "garbage",
            {"skuVariant": "RUANA-L", "status": "error", "error": "SKU not found"},
        ]
        normalized = sync_ledger.normalize_sync_results(raw)
        assert normalized.kind == sync_ledger.KIND_LEGACY
        assert len(normalized.results) == 2
        assert normalized.meta == {}

    def test_envelope(self):
        raw = sync_ledger.build_envelope(
            "delivery_sync", [{"sku": "RUANA-M", "status": "success"}], trackingNumber="DEL-0001"
        )
        normalized = sync_ledger.normalize_sync_results(raw)
        assert normalized.kind == sync_ledger.KIND_ENVELOPE
        assert normalized.results == [{"sku": "RUANA-M", "status": "success"}]
        assert normalized.meta["type"] == "delivery_sync"
        assert normalized.meta["version"] == 2
        assert normalized.meta["trackingNumber"] == "DEL-0001"

    def test_event_dict_reads_as_one_result(self):
        raw = {"type": "webhook_inventory_update", "sku": "RUANA-M", "status": "success", "newQuantity": 7}
        normalized = sync_ledger.normalize_sync_results(raw)
        assert normalized.kind == sync_ledger.KIND_EVENT
        assert normalized.results == [raw]
        assert normalized.meta == {"type": "webhook_inventory_update"}

    def test_unexpected_values_never_raise(self):
        assert sync_ledger.normalize_sync_results(None).kind == sync_ledger.KIND_EMPTY
        assert sync_ledger.normalize_sync_results("text").results == []
        broken = sync_ledger.normalize_sync_results({"version": 2, "results": "oops"})
        assert broken.kind == sync_ledger.KIND_ENVELOPE
        assert broken.results == []

    def test_result_sku_accepts_all_key_spellings(self):
        assert sync_ledger.result_sku({"sku": " A-1 "}) == "A-1"
        assert sync_ledger.result_sku({"skuVariant": "A-2"}) == "A-2"
        assert sync_ledger.result_sku({"sku_variant": "A-3"}) == "A-3"
        assert sync_ledger.result_sku({}) is None


class TestAppendEntry:

    def test_counts_default_from_statuses(self, db_session):
        results = [
            {"sku": "A", "status": "success"},
            {"sku": "B", "status": "corrected"},
            {"sku": "C", "status": "error"},
            {"sku": "D", "status": "unmapped"},
        ]
        entry = sync_ledger.append_entry(db_session, "duplication_correction", results)
        db_session.commit()

        stored = db_session.query(InventorySyncLog).one()
        assert stored.id == entry.id
        assert stored.success_count == 2
        assert stored.error_count == 2
        assert stored.sync_results["type"] == "duplication_correction"
        assert stored.sync_results["results"] == results

    def test_serialize_and_list_newest_first(self, db_session):
        sync_ledger.append_entry(db_session, "delivery_sync", [{"sku": "A", "status": "success"}])
        db_session.add(InventorySyncLog(
            sync_results=[{"sku": "B", "status": "success"}], success_count=1, error_count=0
        ))
        db_session.commit()

        entries = sync_ledger.list_entries(db_session)
        assert len(entries) == 2
        shapes = {sync_ledger.serialize_entry(e)["shape"] for e in entries}
        assert shapes == {sync_ledger.KIND_ENVELOPE, sync_ledger.KIND_LEGACY}
        assert entries[0].synced_at >= entries[1].synced_at
