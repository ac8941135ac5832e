"""
Sync ledger (inventory_sync_logs): append-only record of every inventory sync attempt.

sync_results has three historical shapes, normalized at read time:
  legacy   -> bare list of per-SKU result dicts (delivery syncs before the envelope)
  envelope -> {"version": 2, "type": ..., "results": [...], ...}; every new row uses this
  event    -> bare dict without "results" (early webhook rows); read as a one-result list
"""
import logging
from typing import Any, NamedTuple, Optional

from sqlalchemy.orm import Session

from app.models import InventorySyncLog, utcnow

logger = logging.getLogger(__name__)

ENVELOPE_VERSION = 2

KIND_LEGACY = "legacy"
KIND_ENVELOPE = "envelope"
KIND_EVENT = "event"
KIND_EMPTY = "empty"

# Result statuses written by this service
STATUS_SUCCESS = "success"
STATUS_ERROR = "error"
STATUS_UNMAPPED = "unmapped"
STATUS_CORRECTED = "corrected"


class NormalizedSyncResults(NamedTuple):
    kind: str
    results: list
    meta: dict


def normalize_sync_results(raw: Any) -> NormalizedSyncResults:
    """Tagged view over any stored sync_results value. Never raises on unexpected input."""
    if raw is None:
        return NormalizedSyncResults(KIND_EMPTY, [], {})
    if isinstance(raw, list):
        return NormalizedSyncResults(KIND_LEGACY, [r for r in raw if isinstance(r, dict)], {})
    if isinstance(raw, dict):
        if isinstance(raw.get("results"), list):
            meta = {k: v for k, v in raw.items() if k != "results"}
            return NormalizedSyncResults(KIND_ENVELOPE, [r for r in raw["results"] if isinstance(r, dict)], meta)
        if "results" in raw:
            # envelope with a broken results value
            return NormalizedSyncResults(KIND_ENVELOPE, [], {k: v for k, v in raw.items() if k != "results"})
        return NormalizedSyncResults(KIND_EVENT, [raw], {"type": raw.get("type")})
    logger.warning("Unrecognized sync_results value of type %s", type(raw).__name__)
    return NormalizedSyncResults(KIND_EMPTY, [], {})


def result_sku(result: dict) -> Optional[str]:
    sku = result.get("sku") or result.get("skuVariant") or result.get("sku_variant")
    return str(sku).strip() if sku else None


def build_envelope(sync_type: str, results: list[dict], **meta: Any) -> dict:
    envelope = {"version": ENVELOPE_VERSION, "type": sync_type}
    envelope.update(meta)
    envelope["results"] = results
    return envelope


def append_entry(
    db: Session,
    sync_type: str,
    results: list[dict],
    delivery_id: Optional[str] = None,
    success_count: Optional[int] = None,
    error_count: Optional[int] = None,
    **meta: Any,
) -> InventorySyncLog:
    """
    Insert one ledger row in envelope shape. Counts default to the number of
    success / non-success results. Flushes; the caller owns the commit.
    """
    if success_count is None:
        success_count = sum(1 for r in results if r.get("status") in (STATUS_SUCCESS, STATUS_CORRECTED))
    if error_count is None:
        error_count = len(results) - success_count
    entry = InventorySyncLog(
        delivery_id=delivery_id,
        sync_results=build_envelope(sync_type, results, **meta),
        success_count=success_count,
        error_count=error_count,
        synced_at=utcnow(),
    )
    db.add(entry)
    db.flush()
    logger.info(
        "Ledger %s: delivery=%s success=%s error=%s", sync_type, delivery_id, success_count, error_count
    )
    return entry


def list_entries(db: Session, delivery_id: Optional[str] = None, limit: int = 100) -> list[InventorySyncLog]:
    """Newest first."""
    query = db.query(InventorySyncLog)
    if delivery_id:
        query = query.filter(InventorySyncLog.delivery_id == delivery_id)
    return query.order_by(InventorySyncLog.synced_at.desc()).limit(limit).all()


def serialize_entry(entry: InventorySyncLog) -> dict:
    normalized = normalize_sync_results(entry.sync_results)
    return {
        "id": entry.id,
        "deliveryId": entry.delivery_id,
        "syncedAt": entry.synced_at.isoformat() if entry.synced_at else None,
        "successCount": entry.success_count,
        "errorCount": entry.error_count,
        "shape": normalized.kind,
        "type": normalized.meta.get("type"),
        "results": normalized.results,
    }
