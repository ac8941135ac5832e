"""
Run-level bookkeeping in sync_control_logs for webhooks, sales syncs and snapshots.
"""
import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy.orm import Session

from app.models import SyncControlLog, SyncControlStatus, utcnow

logger = logging.getLogger(__name__)

# A RUNNING row older than this is treated as a crashed run, not a live one
STALE_RUN_HOURS = 2


def start_run(db: Session, sync_type: str, sync_mode: str, details: Optional[dict] = None) -> SyncControlLog:
    run = SyncControlLog(
        sync_type=sync_type,
        sync_mode=sync_mode,
        status=SyncControlStatus.RUNNING,
        start_time=utcnow(),
        execution_details=details or {},
    )
    db.add(run)
    db.flush()
    return run


def finish_run(run: SyncControlLog, details: Optional[dict] = None, **counts) -> None:
    run.status = SyncControlStatus.COMPLETED
    run.end_time = utcnow()
    for key, value in counts.items():
        setattr(run, key, value)
    if details:
        run.execution_details = {**(run.execution_details or {}), **details}


def fail_run(run: SyncControlLog, error: str, details: Optional[dict] = None) -> None:
    run.status = SyncControlStatus.FAILED
    run.end_time = utcnow()
    run.error_message = (error or "")[:2000]
    if details:
        run.execution_details = {**(run.execution_details or {}), **details}


def running_run(db: Session, sync_type: str, sync_mode: Optional[str] = None) -> Optional[SyncControlLog]:
    """A live RUNNING run of this type (and mode), ignoring stale rows."""
    cutoff = utcnow() - timedelta(hours=STALE_RUN_HOURS)
    query = db.query(SyncControlLog).filter(
        SyncControlLog.sync_type == sync_type,
        SyncControlLog.status == SyncControlStatus.RUNNING,
        SyncControlLog.start_time >= cutoff,
    )
    if sync_mode:
        query = query.filter(SyncControlLog.sync_mode == sync_mode)
    return query.first()


def serialize_run(run: SyncControlLog) -> dict:
    return {
        "id": run.id,
        "syncType": run.sync_type,
        "syncMode": run.sync_mode,
        "status": run.status.value if run.status else None,
        "startTime": run.start_time.isoformat() if run.start_time else None,
        "endTime": run.end_time.isoformat() if run.end_time else None,
        "daysProcessed": run.days_processed,
        "ordersProcessed": run.orders_processed,
        "variantsUpdated": run.variants_updated,
        "metricsCreated": run.metrics_created,
        "errorMessage": run.error_message,
        "details": run.execution_details,
    }
