"""
Shipping manifests: a carrier pickup list whose packages are scanned before handover.
Manifest numbers are <CARRIER>-<YYYYMMDD>-<seq>.
"""
import logging
import re
from datetime import date
from typing import Optional

from sqlalchemy.orm import Session

from app.models import ManifestItem, ManifestStatus, ScanStatus, ShippingManifest, utcnow

logger = logging.getLogger(__name__)

SCAN_VERIFIED = "verified"
SCAN_ALREADY = "already_scanned"
SCAN_NOT_FOUND = "not_found"
SCAN_WRONG_MANIFEST = "wrong_manifest"


class ManifestStateError(ValueError):
    """Operation not allowed in the manifest's current status."""


def _carrier_code(carrier: str) -> str:
    code = re.sub(r"[^A-Z0-9]", "", (carrier or "").upper())[:12]
    return code or "MANIFEST"


def _next_manifest_number(db: Session, carrier: str, manifest_date: date) -> str:
    """Highest existing suffix + 1, so numbers freed by deleted manifests are never reissued."""
    prefix = f"{_carrier_code(carrier)}-{manifest_date:%Y%m%d}-"
    numbers = db.query(ShippingManifest.manifest_number).filter(
        ShippingManifest.manifest_number.like(f"{prefix}%")
    ).all()
    last = 0
    for (number,) in numbers:
        suffix = number[len(prefix):]
        if suffix.isdigit():
            last = max(last, int(suffix))
    return f"{prefix}{last + 1:03d}"


def create_manifest(
    db: Session,
    organization_id: Optional[str],
    carrier: str,
    items: list[dict],
    created_by: Optional[str] = None,
    notes: Optional[str] = None,
    manifest_date: Optional[date] = None,
) -> ShippingManifest:
    manifest_date = manifest_date or utcnow().date()
    seen = set()
    for item in items:
        tracking = (item.get("tracking_number") or "").strip()
        if not tracking:
            raise ValueError("Every manifest item needs a tracking number")
        if tracking in seen:
            raise ValueError(f"Tracking number {tracking} appears twice")
        seen.add(tracking)

    manifest = ShippingManifest(
        organization_id=organization_id,
        manifest_number=_next_manifest_number(db, carrier, manifest_date),
        carrier=carrier,
        manifest_date=manifest_date,
        status=ManifestStatus.OPEN,
        total_packages=len(items),
        total_verified=0,
        notes=notes,
        created_by=created_by,
    )
    for item in items:
        manifest.items.append(ManifestItem(
            tracking_number=item["tracking_number"].strip(),
            shopify_order_id=item.get("shopify_order_id"),
            order_number=item.get("order_number"),
            recipient_name=item.get("recipient_name"),
            destination_city=item.get("destination_city"),
        ))
    db.add(manifest)
    db.commit()
    db.refresh(manifest)
    logger.info("Created manifest %s (%s packages)", manifest.manifest_number, manifest.total_packages)
    return manifest


def list_manifests(
    db: Session,
    organization_id: Optional[str],
    status: Optional[ManifestStatus] = None,
    carrier: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> list[ShippingManifest]:
    query = db.query(ShippingManifest)
    if organization_id:
        query = query.filter(ShippingManifest.organization_id == organization_id)
    if status:
        query = query.filter(ShippingManifest.status == status)
    if carrier:
        query = query.filter(ShippingManifest.carrier == carrier)
    if date_from:
        query = query.filter(ShippingManifest.manifest_date >= date_from)
    if date_to:
        query = query.filter(ShippingManifest.manifest_date <= date_to)
    return query.order_by(ShippingManifest.manifest_date.desc(), ShippingManifest.manifest_number.desc()).all()


def get_manifest(db: Session, manifest_id: str, organization_id: Optional[str] = None) -> ShippingManifest:
    query = db.query(ShippingManifest).filter(ShippingManifest.id == manifest_id)
    if organization_id:
        query = query.filter(ShippingManifest.organization_id == organization_id)
    manifest = query.first()
    if manifest is None:
        raise LookupError(f"Manifest {manifest_id} not found")
    return manifest


def scan_tracking_number(db: Session, manifest: ShippingManifest, tracking_number: str, scanned_by: Optional[str] = None) -> dict:
    """Verify a scanned package against the manifest; last scan wins on concurrent scans."""
    if manifest.status != ManifestStatus.OPEN:
        raise ManifestStateError(f"Manifest {manifest.manifest_number} is {manifest.status.value}")
    tracking_number = (tracking_number or "").strip()

    item = (
        db.query(ManifestItem)
        .filter(ManifestItem.manifest_id == manifest.id, ManifestItem.tracking_number == tracking_number)
        .first()
    )
    if item is None:
        other = (
            db.query(ManifestItem, ShippingManifest.manifest_number)
            .join(ShippingManifest, ShippingManifest.id == ManifestItem.manifest_id)
            .filter(ManifestItem.tracking_number == tracking_number, ShippingManifest.id != manifest.id)
        )
        if manifest.organization_id:
            other = other.filter(ShippingManifest.organization_id == manifest.organization_id)
        found = other.first()
        if found:
            return {"result": SCAN_WRONG_MANIFEST, "trackingNumber": tracking_number, "manifestNumber": found[1]}
        return {"result": SCAN_NOT_FOUND, "trackingNumber": tracking_number}

    if item.scan_status == ScanStatus.VERIFIED:
        return {
            "result": SCAN_ALREADY,
            "trackingNumber": tracking_number,
            "scannedAt": item.scanned_at.isoformat() if item.scanned_at else None,
            "scannedBy": item.scanned_by,
        }

    item.scan_status = ScanStatus.VERIFIED
    item.scanned_at = utcnow()
    item.scanned_by = scanned_by
    manifest.total_verified = (manifest.total_verified or 0) + 1
    db.commit()
    return {
        "result": SCAN_VERIFIED,
        "trackingNumber": tracking_number,
        "orderNumber": item.order_number,
        "recipientName": item.recipient_name,
        "totalVerified": manifest.total_verified,
        "totalPackages": manifest.total_packages,
    }


def close_manifest(db: Session, manifest: ShippingManifest, closed_by: Optional[str] = None) -> ShippingManifest:
    if manifest.status != ManifestStatus.OPEN:
        raise ManifestStateError(f"Manifest {manifest.manifest_number} is already {manifest.status.value}")
    manifest.status = ManifestStatus.CLOSED
    manifest.closed_by = closed_by
    manifest.closed_at = utcnow()
    db.commit()
    return manifest


def confirm_pickup(db: Session, manifest: ShippingManifest, confirmed_by: Optional[str] = None) -> ShippingManifest:
    if manifest.status != ManifestStatus.CLOSED:
        raise ManifestStateError(f"Manifest {manifest.manifest_number} must be closed before pickup")
    manifest.status = ManifestStatus.PICKED_UP
    manifest.pickup_confirmed_by = confirmed_by
    manifest.pickup_confirmed_at = utcnow()
    db.commit()
    return manifest


def delete_manifest(db: Session, manifest: ShippingManifest) -> None:
    if manifest.status != ManifestStatus.OPEN:
        raise ManifestStateError(f"Only open manifests can be deleted ({manifest.manifest_number} is {manifest.status.value})")
    db.delete(manifest)
    db.commit()


def serialize_manifest(manifest: ShippingManifest, include_items: bool = False) -> dict:
    data = {
        "id": manifest.id,
        "manifestNumber": manifest.manifest_number,
        "carrier": manifest.carrier,
        "manifestDate": manifest.manifest_date.isoformat() if manifest.manifest_date else None,
        "status": manifest.status.value if manifest.status else None,
        "totalPackages": manifest.total_packages,
        "totalVerified": manifest.total_verified,
        "notes": manifest.notes,
        "closedAt": manifest.closed_at.isoformat() if manifest.closed_at else None,
        "pickupConfirmedAt": manifest.pickup_confirmed_at.isoformat() if manifest.pickup_confirmed_at else None,
    }
    if include_items:
        data["items"] = [
            {
                "id": i.id,
                "trackingNumber": i.tracking_number,
                "orderNumber": i.order_number,
                "shopifyOrderId": i.shopify_order_id,
                "recipientName": i.recipient_name,
                "destinationCity": i.destination_city,
                "scanStatus": i.scan_status.value if i.scan_status else None,
                "scannedAt": i.scanned_at.isoformat() if i.scanned_at else None,
                "scannedBy": i.scanned_by,
            }
            for i in manifest.items
        ]
    return data
