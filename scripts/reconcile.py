#!/usr/bin/env python3
"""
Reconciliation maintenance - scans and cron jobs that run outside the API process.

Usage:
  python scripts/reconcile.py duplications [TRACKING_NUMBER]   read-only duplicate push scan
  python scripts/reconcile.py snapshot                         daily stock snapshot
  python scripts/reconcile.py sales [initial|daily|monthly]    Shopify sales sync
"""
import sys
import os
import asyncio
import logging

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.database import SessionLocal
from app.services.duplication_fixer import detect_inventory_duplications
from app.services.sales_sync import sync_shopify_sales
from app.services.stock_snapshot import take_stock_snapshot

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


def scan_duplications(tracking_number=None):
    """Log every delivery whose SKUs were pushed to Shopify more than once. Changes nothing."""
    db = SessionLocal()
    try:
        issues = detect_inventory_duplications(db, tracking_number=tracking_number)
        if not issues:
            logger.info("No duplicated inventory pushes found")
            return issues
        for issue in issues:
            logger.info(
                "Delivery %s (%s): %s ledger rows, %s units over-counted",
                issue["trackingNumber"], issue["deliveryId"], issue["syncCount"], issue["totalDuplicatedQuantity"],
            )
            for item in issue["items"]:
                flag = "" if item["uniformQuantities"] else "  [quantities differ, check manually]"
                logger.info(
                    "  %s: pushed %s times, %s added, ~%s duplicated%s",
                    item["sku"], item["syncCount"], item["totalAddedQuantity"], item["duplicatedQuantity"], flag,
                )
        logger.info(
            "Scan completed: %s deliveries affected, %s units over-counted",
            len(issues), sum(i["totalDuplicatedQuantity"] for i in issues),
        )
        return issues
    except LookupError as e:
        logger.error(str(e))
        raise
    finally:
        db.close()


def snapshot():
    db = SessionLocal()
    try:
        result = take_stock_snapshot(db)
        logger.info("Snapshot: %s", result)
        return result
    finally:
        db.close()


def sales(mode="daily"):
    db = SessionLocal()
    try:
        result = asyncio.run(sync_shopify_sales(db, mode=mode))
        logger.info("Sales sync (%s): %s", mode, result)
        return result
    finally:
        db.close()


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(1)

    command = sys.argv[1].lower()

    if command == "duplications":
        scan_duplications(sys.argv[2] if len(sys.argv) > 2 else None)
    elif command == "snapshot":
        snapshot()
    elif command == "sales":
        sales(sys.argv[2].lower() if len(sys.argv) > 2 else "daily")
    else:
        print(f"Unknown command: {command}")
        print(__doc__)
        sys.exit(1)
