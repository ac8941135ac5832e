"""
Shipping manifest routes
"""
import logging
from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session
from app.database import get_db
from app.models import ManifestStatus, User
from app.auth import get_current_user
from app.http.requests.schemas import ManifestCreateRequest, ManifestScanRequest
from app.services import manifests as manifest_service

logger = logging.getLogger(__name__)
router = APIRouter()


def _load(db: Session, manifest_id: str, user: User):
    try:
        return manifest_service.get_manifest(db, manifest_id, organization_id=user.organization_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("")
async def list_manifests(
    status_filter: Optional[ManifestStatus] = Query(None, alias="status"),
    carrier: Optional[str] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    rows = manifest_service.list_manifests(
        db, current_user.organization_id, status=status_filter, carrier=carrier, date_from=date_from, date_to=date_to
    )
    return {"manifests": [manifest_service.serialize_manifest(m) for m in rows]}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_manifest(
    body: ManifestCreateRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        manifest = manifest_service.create_manifest(
            db,
            current_user.organization_id,
            body.carrier,
            [i.dict() for i in body.items],
            created_by=current_user.id,
            notes=body.notes,
            manifest_date=body.manifest_date,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return manifest_service.serialize_manifest(manifest, include_items=True)


@router.get("/{manifest_id}")
async def get_manifest(
    manifest_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return manifest_service.serialize_manifest(_load(db, manifest_id, current_user), include_items=True)


@router.post("/{manifest_id}/scan")
async def scan_package(
    manifest_id: str,
    body: ManifestScanRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    manifest = _load(db, manifest_id, current_user)
    try:
        return manifest_service.scan_tracking_number(db, manifest, body.tracking_number, scanned_by=current_user.id)
    except manifest_service.ManifestStateError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/{manifest_id}/close")
async def close_manifest(
    manifest_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    manifest = _load(db, manifest_id, current_user)
    try:
        manifest = manifest_service.close_manifest(db, manifest, closed_by=current_user.id)
    except manifest_service.ManifestStateError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return manifest_service.serialize_manifest(manifest)


@router.post("/{manifest_id}/pickup")
async def confirm_pickup(
    manifest_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    manifest = _load(db, manifest_id, current_user)
    try:
        manifest = manifest_service.confirm_pickup(db, manifest, confirmed_by=current_user.id)
    except manifest_service.ManifestStateError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return manifest_service.serialize_manifest(manifest)


@router.delete("/{manifest_id}")
async def delete_manifest(
    manifest_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    manifest = _load(db, manifest_id, current_user)
    try:
        manifest_service.delete_manifest(db, manifest)
    except manifest_service.ManifestStateError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True}
