"""
Production orders: the order, its variant lines and the optional workshop assignment
are written in one transaction. Any failure leaves no partial order behind.
"""
import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from app.models import (
    AssignmentStatus,
    Order,
    OrderItem,
    OrderStatus,
    ProductVariant,
    Workshop,
    WorkshopAssignment,
    utcnow,
)

logger = logging.getLogger(__name__)


def _next_order_number(db: Session) -> str:
    prefix = f"ORD-{utcnow():%Y%m%d}-"
    existing = db.query(Order).filter(Order.order_number.like(f"{prefix}%")).count()
    return f"{prefix}{existing + 1:04d}"


def create_production_order(
    db: Session,
    organization_id: Optional[str],
    items: list[dict],
    created_by: Optional[str] = None,
    order_number: Optional[str] = None,
    client_name: Optional[str] = None,
    due_date=None,
    notes: Optional[str] = None,
    workshop_id: Optional[str] = None,
    expected_completion_date=None,
) -> Order:
    """
    items: [{"product_variant_id", "quantity", "unit_price"}]
    Raises ValueError for unknown variants/workshops or empty orders; the session is rolled back.
    """
    if not items:
        raise ValueError("An order needs at least one item")
    try:
        order = Order(
            organization_id=organization_id,
            order_number=order_number or _next_order_number(db),
            client_name=client_name,
            due_date=due_date,
            notes=notes,
            created_by=created_by,
            status=OrderStatus.PENDING,
        )
        db.add(order)
        db.flush()

        total = Decimal("0")
        for line in items:
            variant = db.query(ProductVariant).filter(ProductVariant.id == line["product_variant_id"]).first()
            if variant is None:
                raise ValueError(f"Product variant {line['product_variant_id']} not found")
            quantity = int(line["quantity"])
            if quantity <= 0:
                raise ValueError("Item quantity must be positive")
            unit_price = Decimal(str(line.get("unit_price") or 0))
            db.add(OrderItem(
                order_id=order.id,
                product_variant_id=variant.id,
                quantity=quantity,
                unit_price=unit_price,
                total_price=unit_price * quantity,
            ))
            total += unit_price * quantity
        order.total_amount = total

        if workshop_id:
            workshop = db.query(Workshop).filter(Workshop.id == workshop_id).first()
            if workshop is None:
                raise ValueError(f"Workshop {workshop_id} not found")
            db.add(WorkshopAssignment(
                order_id=order.id,
                workshop_id=workshop.id,
                assigned_by=created_by,
                expected_completion_date=expected_completion_date,
                status=AssignmentStatus.ASSIGNED,
            ))
            order.status = OrderStatus.ASSIGNED

        db.commit()
    except Exception:
        db.rollback()
        logger.warning("Order creation rolled back (order_number=%s)", order_number)
        raise
    db.refresh(order)
    logger.info("Created order %s with %s item(s), workshop=%s", order.order_number, len(items), workshop_id)
    return order


def serialize_order(order: Order) -> dict:
    return {
        "id": order.id,
        "orderNumber": order.order_number,
        "clientName": order.client_name,
        "dueDate": order.due_date.isoformat() if order.due_date else None,
        "status": order.status.value if order.status else None,
        "totalAmount": float(order.total_amount or 0),
        "items": [
            {
                "id": i.id,
                "productVariantId": i.product_variant_id,
                "quantity": i.quantity,
                "unitPrice": float(i.unit_price or 0),
                "totalPrice": float(i.total_price or 0),
            }
            for i in order.items
        ],
        "assignments": [
            {"id": a.id, "workshopId": a.workshop_id, "status": a.status.value if a.status else None}
            for a in order.assignments
        ],
    }
