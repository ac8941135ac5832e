"""
SQLAlchemy models for the Sewdle catalog, production, Shopify sync and shipping tables.
All model and enum definitions live here for simplicity and to avoid circular imports.
"""
from datetime import datetime, timezone

from sqlalchemy import Column, String, Integer, Boolean, DateTime, Date, ForeignKey, Numeric, Enum as SQLEnum, JSON, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base
import enum
import uuid


def utcnow() -> datetime:
    """Naive UTC timestamp; all DateTime columns store UTC without tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# Enums
class UserRole(str, enum.Enum):
    ADMIN = "ADMIN"
    DESIGNER = "DESIGNER"
    QUALITY = "QUALITY"
    WORKSHOP = "WORKSHOP"

class ProductStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    DISCONTINUED = "DISCONTINUED"

class OrderStatus(str, enum.Enum):
    PENDING = "PENDING"
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

class AssignmentStatus(str, enum.Enum):
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"

class DeliveryStatus(str, enum.Enum):
    PENDING = "PENDING"
    IN_QUALITY = "IN_QUALITY"
    APPROVED = "APPROVED"
    PARTIAL_APPROVED = "PARTIAL_APPROVED"
    REJECTED = "REJECTED"

class SyncControlStatus(str, enum.Enum):
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

class ManifestStatus(str, enum.Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    PICKED_UP = "PICKED_UP"

class ScanStatus(str, enum.Enum):
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"


# Models
class Organization(Base):
    __tablename__ = "organizations"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String, nullable=False)
    slug = Column(String, unique=True, nullable=True)
    created_at = Column("created_at", DateTime, server_default=func.now())

class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column("organization_id", String, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, nullable=False, index=True)
    role = Column(SQLEnum(UserRole), default=UserRole.ADMIN)
    created_at = Column("created_at", DateTime, server_default=func.now())

    organization = relationship("Organization")

class Product(Base):
    __tablename__ = "products"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column("organization_id", String, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=True, index=True)
    name = Column(String, nullable=False)
    sku = Column(String, nullable=True, index=True)
    description = Column(Text, nullable=True)
    category = Column(String, nullable=True)
    base_price = Column("base_price", Numeric(12, 2), default=0)
    status = Column(SQLEnum(ProductStatus), default=ProductStatus.ACTIVE)
    created_at = Column("created_at", DateTime, server_default=func.now())
    updated_at = Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now())

    variants = relationship("ProductVariant", back_populates="product", cascade="all, delete-orphan")

class ProductVariant(Base):
    __tablename__ = "product_variants"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    product_id = Column("product_id", String, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    sku_variant = Column("sku_variant", String, nullable=False, index=True)
    size = Column(String, nullable=True)
    color = Column(String, nullable=True)
    stock_quantity = Column("stock_quantity", Integer, default=0, nullable=False)
    additional_price = Column("additional_price", Numeric(12, 2), default=0)
    created_at = Column("created_at", DateTime, server_default=func.now())
    updated_at = Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now())

    product = relationship("Product", back_populates="variants")

class Workshop(Base):
    __tablename__ = "workshops"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column("organization_id", String, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=True, index=True)
    name = Column(String, nullable=False)
    contact_person = Column("contact_person", String, nullable=True)
    is_active = Column("is_active", Boolean, default=True)
    created_at = Column("created_at", DateTime, server_default=func.now())

class Order(Base):
    __tablename__ = "orders"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column("organization_id", String, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=True, index=True)
    order_number = Column("order_number", String, unique=True, nullable=False)
    client_name = Column("client_name", String, nullable=True)
    due_date = Column("due_date", Date, nullable=True)
    total_amount = Column("total_amount", Numeric(12, 2), default=0)
    status = Column(SQLEnum(OrderStatus), default=OrderStatus.PENDING)
    notes = Column(Text, nullable=True)
    created_by = Column("created_by", String, nullable=True)
    created_at = Column("created_at", DateTime, server_default=func.now())

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")
    assignments = relationship("WorkshopAssignment", back_populates="order", cascade="all, delete-orphan")

class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id = Column("order_id", String, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_variant_id = Column("product_variant_id", String, ForeignKey("product_variants.id", ondelete="SET NULL"), nullable=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column("unit_price", Numeric(12, 2), default=0)
    total_price = Column("total_price", Numeric(12, 2), default=0)
    created_at = Column("created_at", DateTime, default=utcnow)

    order = relationship("Order", back_populates="items")
    variant = relationship("ProductVariant")

class WorkshopAssignment(Base):
    __tablename__ = "workshop_assignments"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id = Column("order_id", String, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    workshop_id = Column("workshop_id", String, ForeignKey("workshops.id", ondelete="CASCADE"), nullable=False)
    assigned_by = Column("assigned_by", String, nullable=True)
    assigned_date = Column("assigned_date", DateTime, default=utcnow)
    expected_completion_date = Column("expected_completion_date", Date, nullable=True)
    status = Column(SQLEnum(AssignmentStatus), default=AssignmentStatus.ASSIGNED)
    notes = Column(Text, nullable=True)

    order = relationship("Order", back_populates="assignments")
    workshop = relationship("Workshop")

class Delivery(Base):
    __tablename__ = "deliveries"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column("organization_id", String, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=True, index=True)
    order_id = Column("order_id", String, ForeignKey("orders.id", ondelete="SET NULL"), nullable=True)
    workshop_id = Column("workshop_id", String, ForeignKey("workshops.id", ondelete="SET NULL"), nullable=True)
    tracking_number = Column("tracking_number", String, unique=True, nullable=False, index=True)
    status = Column(SQLEnum(DeliveryStatus), default=DeliveryStatus.PENDING)
    delivery_date = Column("delivery_date", Date, nullable=True)
    synced_to_shopify = Column("synced_to_shopify", Boolean, default=False, nullable=False)
    sync_in_progress = Column("sync_in_progress", Boolean, default=False, nullable=False)
    last_sync_attempt = Column("last_sync_attempt", DateTime, nullable=True)
    sync_attempts = Column("sync_attempts", Integer, default=0, nullable=False)
    sync_error_message = Column("sync_error_message", Text, nullable=True)
    created_at = Column("created_at", DateTime, server_default=func.now())

    items = relationship("DeliveryItem", back_populates="delivery", cascade="all, delete-orphan")

class DeliveryItem(Base):
    __tablename__ = "delivery_items"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    delivery_id = Column("delivery_id", String, ForeignKey("deliveries.id", ondelete="CASCADE"), nullable=False, index=True)
    order_item_id = Column("order_item_id", String, ForeignKey("order_items.id", ondelete="SET NULL"), nullable=True)
    quantity_delivered = Column("quantity_delivered", Integer, default=0, nullable=False)
    quantity_approved = Column("quantity_approved", Integer, default=0, nullable=False)
    quantity_defective = Column("quantity_defective", Integer, default=0, nullable=False)
    synced_to_shopify = Column("synced_to_shopify", Boolean, default=False, nullable=False)
    last_sync_attempt = Column("last_sync_attempt", DateTime, nullable=True)
    sync_attempt_count = Column("sync_attempt_count", Integer, default=0, nullable=False)
    sync_error_message = Column("sync_error_message", Text, nullable=True)

    delivery = relationship("Delivery", back_populates="items")
    order_item = relationship("OrderItem")

class InventorySyncLog(Base):
    """Append-only ledger of every inventory sync attempt. sync_results shapes: see services.sync_ledger."""
    __tablename__ = "inventory_sync_logs"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    delivery_id = Column("delivery_id", String, ForeignKey("deliveries.id", ondelete="SET NULL"), nullable=True, index=True)
    sync_results = Column("sync_results", JSON, nullable=False)
    success_count = Column("success_count", Integer, default=0, nullable=False)
    error_count = Column("error_count", Integer, default=0, nullable=False)
    synced_at = Column("synced_at", DateTime, default=utcnow, nullable=False, index=True)

class SyncControlLog(Base):
    __tablename__ = "sync_control_logs"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    sync_type = Column("sync_type", String, nullable=False, index=True)
    sync_mode = Column("sync_mode", String, nullable=False)
    status = Column(SQLEnum(SyncControlStatus), default=SyncControlStatus.RUNNING, nullable=False)
    start_time = Column("start_time", DateTime, default=utcnow, nullable=False)
    end_time = Column("end_time", DateTime, nullable=True)
    days_processed = Column("days_processed", Integer, default=0)
    orders_processed = Column("orders_processed", Integer, default=0)
    variants_updated = Column("variants_updated", Integer, default=0)
    metrics_created = Column("metrics_created", Integer, default=0)
    error_message = Column("error_message", Text, nullable=True)
    execution_details = Column("execution_details", JSON, nullable=True)

class ShopifyOrder(Base):
    __tablename__ = "shopify_orders"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column("organization_id", String, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=True, index=True)
    shopify_order_id = Column("shopify_order_id", String, unique=True, nullable=False, index=True)
    order_number = Column("order_number", String, nullable=True)
    email = Column(String, nullable=True)
    customer_name = Column("customer_name", String, nullable=True)
    financial_status = Column("financial_status", String, nullable=True, index=True)
    fulfillment_status = Column("fulfillment_status", String, nullable=True)
    total_price = Column("total_price", Numeric(12, 2), default=0)
    currency = Column(String(3), nullable=True)
    created_at_shopify = Column("created_at_shopify", DateTime, nullable=True, index=True)
    updated_at_shopify = Column("updated_at_shopify", DateTime, nullable=True)
    created_at = Column("created_at", DateTime, server_default=func.now())

    line_items = relationship("ShopifyOrderLineItem", back_populates="order", cascade="all, delete-orphan")

class ShopifyOrderLineItem(Base):
    __tablename__ = "shopify_order_line_items"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id = Column("order_id", String, ForeignKey("shopify_orders.id", ondelete="CASCADE"), nullable=False, index=True)
    shopify_line_item_id = Column("shopify_line_item_id", String, nullable=True)
    shopify_product_id = Column("shopify_product_id", String, nullable=True)
    shopify_variant_id = Column("shopify_variant_id", String, nullable=True)
    sku = Column(String, nullable=True, index=True)
    title = Column(String, nullable=True)
    variant_title = Column("variant_title", String, nullable=True)
    quantity = Column(Integer, default=0, nullable=False)
    price = Column("price", Numeric(12, 2), default=0)

    order = relationship("ShopifyOrder", back_populates="line_items")

class SalesMetric(Base):
    __tablename__ = "sales_metrics"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column("organization_id", String, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=True, index=True)
    product_variant_id = Column("product_variant_id", String, ForeignKey("product_variants.id", ondelete="CASCADE"), nullable=False, index=True)
    metric_date = Column("metric_date", Date, nullable=False, index=True)
    sales_quantity = Column("sales_quantity", Integer, default=0, nullable=False)
    orders_count = Column("orders_count", Integer, default=0, nullable=False)
    created_at = Column("created_at", DateTime, default=utcnow)

    variant = relationship("ProductVariant")

class ProductStockHistory(Base):
    __tablename__ = "product_stock_history"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column("organization_id", String, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=True, index=True)
    product_variant_id = Column("product_variant_id", String, ForeignKey("product_variants.id", ondelete="CASCADE"), nullable=False, index=True)
    stock_quantity = Column("stock_quantity", Integer, default=0, nullable=False)
    source = Column(String, nullable=False, default="daily_snapshot")
    recorded_at = Column("recorded_at", DateTime, default=utcnow, nullable=False, index=True)

class ShippingManifest(Base):
    __tablename__ = "shipping_manifests"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column("organization_id", String, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=True, index=True)
    manifest_number = Column("manifest_number", String, unique=True, nullable=False)
    carrier = Column(String, nullable=False)
    manifest_date = Column("manifest_date", Date, nullable=False)
    status = Column(SQLEnum(ManifestStatus), default=ManifestStatus.OPEN, nullable=False)
    total_packages = Column("total_packages", Integer, default=0, nullable=False)
    total_verified = Column("total_verified", Integer, default=0, nullable=False)
    notes = Column(Text, nullable=True)
    created_by = Column("created_by", String, nullable=True)
    closed_by = Column("closed_by", String, nullable=True)
    closed_at = Column("closed_at", DateTime, nullable=True)
    pickup_confirmed_by = Column("pickup_confirmed_by", String, nullable=True)
    pickup_confirmed_at = Column("pickup_confirmed_at", DateTime, nullable=True)
    created_at = Column("created_at", DateTime, server_default=func.now())

    items = relationship("ManifestItem", back_populates="manifest", cascade="all, delete-orphan")

class ManifestItem(Base):
    __tablename__ = "manifest_items"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    manifest_id = Column("manifest_id", String, ForeignKey("shipping_manifests.id", ondelete="CASCADE"), nullable=False, index=True)
    shopify_order_id = Column("shopify_order_id", String, nullable=True)
    order_number = Column("order_number", String, nullable=True)
    tracking_number = Column("tracking_number", String, nullable=False, index=True)
    recipient_name = Column("recipient_name", String, nullable=True)
    destination_city = Column("destination_city", String, nullable=True)
    scan_status = Column("scan_status", SQLEnum(ScanStatus), default=ScanStatus.PENDING, nullable=False)
    scanned_at = Column("scanned_at", DateTime, nullable=True)
    scanned_by = Column("scanned_by", String, nullable=True)

    manifest = relationship("ShippingManifest", back_populates="items")

    __table_args__ = (
        UniqueConstraint("manifest_id", "tracking_number", name="manifest_items_manifest_tracking_unique"),
    )
