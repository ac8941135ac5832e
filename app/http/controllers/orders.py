"""
Production order routes
"""
import logging
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from app.database import get_db
from app.models import Order, User
from app.auth import get_current_user
from app.http.requests.schemas import OrderCreateRequest
from app.services.order_service import create_production_order, serialize_order

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_order(
    body: OrderCreateRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Create order, items and optional workshop assignment atomically."""
    try:
        order = create_production_order(
            db,
            organization_id=current_user.organization_id,
            items=[i.dict() for i in body.items],
            created_by=current_user.id,
            order_number=body.order_number,
            client_name=body.client_name,
            due_date=body.due_date,
            notes=body.notes,
            workshop_id=body.workshop_id,
            expected_completion_date=body.expected_completion_date,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except IntegrityError:
        raise HTTPException(status_code=409, detail="Order number already exists")
    return serialize_order(order)


@router.get("/{order_id}")
async def get_order(
    order_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    order = db.query(Order).filter(Order.id == order_id).first()
    if not order or (order.organization_id and order.organization_id != current_user.organization_id):
        raise HTTPException(status_code=404, detail="Order not found")
    return serialize_order(order)
