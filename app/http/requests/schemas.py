"""
Pydantic schemas for request validation (Http/Requests).
"""
from pydantic import BaseModel, Field, validator
from typing import Optional, List
from datetime import date
from decimal import Decimal


# Delivery sync
class ApprovedItem(BaseModel):
    sku_variant: str
    quantity_approved: int = Field(..., ge=0)

    @validator("sku_variant")
    def strip_sku(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("sku_variant is required")
        return v

class DeliverySyncRequest(BaseModel):
    approved_items: List[ApprovedItem] = Field(..., min_items=1)


# Sales sync
class SalesSyncRequest(BaseModel):
    mode: str = "daily"
    days: Optional[int] = Field(None, ge=1, le=365)

    @validator("mode")
    def validate_mode(cls, v):
        v = (v or "").strip().lower()
        if v not in ("initial", "daily", "monthly"):
            raise ValueError("mode must be initial, daily or monthly")
        return v


# Duplications
class DuplicationFixItem(BaseModel):
    sku: str
    duplicated_quantity: Decimal = Field(..., gt=0)

class DuplicationFixRequest(BaseModel):
    delivery_id: str
    items: List[DuplicationFixItem] = Field(..., min_items=1)
    confirm: bool = False

class SalesMetricDuplicatesRequest(BaseModel):
    action: str
    metric_date: date
    specific_sku: Optional[str] = None

    @validator("action")
    def validate_action(cls, v):
        if v not in ("investigate", "clean", "validate"):
            raise ValueError("action must be investigate, clean or validate")
        return v

class OrderItemDuplicatesFixRequest(BaseModel):
    action: str
    order_id: Optional[str] = None

    @validator("action")
    def validate_action(cls, v):
        if v not in ("keep_first", "consolidate"):
            raise ValueError("action must be keep_first or consolidate")
        return v


# Orders
class OrderItemCreate(BaseModel):
    product_variant_id: str
    quantity: int = Field(..., gt=0)
    unit_price: Decimal = Decimal("0")

class OrderCreateRequest(BaseModel):
    order_number: Optional[str] = None
    client_name: Optional[str] = None
    due_date: Optional[date] = None
    notes: Optional[str] = None
    workshop_id: Optional[str] = None
    expected_completion_date: Optional[date] = None
    items: List[OrderItemCreate] = Field(..., min_items=1)


# Shipping manifests
class ManifestItemCreate(BaseModel):
    tracking_number: str
    shopify_order_id: Optional[str] = None
    order_number: Optional[str] = None
    recipient_name: Optional[str] = None
    destination_city: Optional[str] = None

class ManifestCreateRequest(BaseModel):
    carrier: str
    manifest_date: Optional[date] = None
    notes: Optional[str] = None
    items: List[ManifestItemCreate] = []

    @validator("carrier")
    def validate_carrier(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("carrier is required")
        return v

class ManifestScanRequest(BaseModel):
    tracking_number: str
