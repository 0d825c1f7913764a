from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from inventory_engine.models import (
    AdjustmentStatus,
    AlertLevel,
    CountStatus,
    CountType,
    MovementType,
    OrderStatus,
    PurchaseOrderStatus,
    ReferenceType,
    ReleaseReason,
    ReservationStatus,
)


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# stock

class StockRecordCreate(BaseModel):
    sku: str = Field(min_length=1)
    product_id: int | None = None
    variant_id: int | None = None
    reorder_level: int | None = Field(default=None, ge=0)
    max_stock_level: int | None = Field(default=None, ge=0)
    unit_cost: Decimal | None = Field(default=None, ge=0)
    location: str | None = None
    bin_location: str | None = None


class StockSettingsUpdate(BaseModel):
    reorder_level: int | None = Field(default=None, ge=0)
    max_stock_level: int | None = Field(default=None, ge=0)
    location: str | None = None
    bin_location: str | None = None


class StockLevelOut(ORMModel):
    inventory_id: int
    store_id: str
    sku: str
    product_id: int | None
    variant_id: int | None
    quantity_on_hand: int
    quantity_reserved: int
    quantity_available: int
    reorder_level: int
    max_stock_level: int | None
    unit_cost: Decimal
    total_value: Decimal
    last_movement_date: datetime | None
    last_count_date: date | None


class StockMovementIn(BaseModel):
    quantity: int = Field(gt=0)
    reference_id: str = Field(min_length=1)
    reference_type: ReferenceType | None = None
    unit_cost: Decimal | None = Field(default=None, ge=0)
    reason: str | None = None


class TransferIn(BaseModel):
    to_store_id: str = Field(min_length=1)
    quantity: int = Field(gt=0)
    transfer_reference: str = Field(min_length=1)


class MovementOut(ORMModel):
    id: int
    store_id: str
    inventory_id: int
    reference_type: ReferenceType
    reference_id: str
    movement_type: MovementType
    quantity: int
    delta: int
    unit_cost: Decimal | None
    total_cost: Decimal | None
    reason: str | None
    user_id: int | None
    created_at: datetime


class StockDriftOut(ORMModel):
    inventory_id: int
    store_id: str
    sku: str
    recorded_on_hand: int
    ledger_on_hand: int
    recorded_reserved: int
    reservation_reserved: int
    in_sync: bool


# reservations

class ReservationCreate(BaseModel):
    store_id: str = Field(min_length=1)
    sku: str = Field(min_length=1)
    quantity: int = Field(gt=0)
    order_ref: str = Field(min_length=1)
    ttl_minutes: int | None = Field(default=None, ge=0)


class ReservationRelease(BaseModel):
    reason: ReleaseReason = ReleaseReason.MANUAL


class ReservationOut(ORMModel):
    id: int
    store_id: str
    inventory_id: int
    order_id: str
    quantity: int
    status: ReservationStatus
    release_reason: ReleaseReason | None
    expires_at: datetime | None
    consumed_movement_id: int | None
    created_at: datetime
    settled_at: datetime | None


# orders

class OrderLineIn(BaseModel):
    quantity: int = Field(gt=0)
    sku: str | None = None
    product_id: int | None = None
    variant_id: int | None = None


class OrderCreate(BaseModel):
    store_id: str = Field(min_length=1)
    order_number: str = Field(min_length=1)
    items: list[OrderLineIn] = Field(min_length=1)


class OrderConfirm(BaseModel):
    ttl_minutes: int | None = Field(default=None, ge=0)


class OrderCancel(BaseModel):
    reason: str | None = None


class OrderReturn(BaseModel):
    return_reference: str = Field(min_length=1)
    quantities_by_sku: dict[str, int] = Field(min_length=1)


class OrderItemOut(ORMModel):
    id: int
    product_id: int | None
    variant_id: int | None
    sku: str | None
    quantity: int
    returned_quantity: int
    inventory_id: int | None


class OrderOut(ORMModel):
    id: int
    store_id: str
    order_number: str
    status: OrderStatus
    cancel_reason: str | None
    confirmed_at: datetime | None
    completed_at: datetime | None
    canceled_at: datetime | None
    items: list[OrderItemOut]


# purchase orders

class PurchaseOrderLineIn(BaseModel):
    sku: str = Field(min_length=1)
    quantity: int = Field(gt=0)
    unit_price: Decimal = Field(ge=0)
    product_id: int | None = None
    variant_id: int | None = None


class PurchaseOrderCreate(BaseModel):
    store_id: str = Field(min_length=1)
    order_number: str = Field(min_length=1)
    supplier_id: int | None = None
    expected_date: date | None = None
    notes: str | None = None
    items: list[PurchaseOrderLineIn] = Field(min_length=1)


class PurchaseOrderReceipt(BaseModel):
    receipt_reference: str = Field(min_length=1)
    received_by_item: dict[int, int] = Field(min_length=1)


class PurchaseOrderItemOut(ORMModel):
    id: int
    sku: str
    product_id: int | None
    variant_id: int | None
    quantity: int
    unit_price: Decimal
    received_quantity: int


class PurchaseOrderOut(ORMModel):
    id: int
    store_id: str
    supplier_id: int | None
    order_number: str
    status: PurchaseOrderStatus
    expected_date: date | None
    received_date: date | None
    notes: str | None
    items: list[PurchaseOrderItemOut]


# adjustments and counts

class AdjustmentLineIn(BaseModel):
    sku: str = Field(min_length=1)
    actual_quantity: int = Field(ge=0)
    expected_quantity: int | None = Field(default=None, ge=0)
    reason: str | None = None


class AdjustmentCreate(BaseModel):
    store_id: str = Field(min_length=1)
    reason: str = Field(min_length=1)
    notes: str | None = None
    items: list[AdjustmentLineIn] = Field(min_length=1)


class AdjustmentReject(BaseModel):
    note: str | None = None


class AdjustmentItemOut(ORMModel):
    id: int
    inventory_id: int
    expected_quantity: int
    actual_quantity: int
    difference: int
    unit_cost: Decimal | None
    total_cost_impact: Decimal | None
    reason: str | None
    movement_id: int | None
    posted_at: datetime | None


class AdjustmentOut(ORMModel):
    id: int
    store_id: str
    adjustment_number: str
    reason: str
    notes: str | None
    status: AdjustmentStatus
    source_count_id: int | None
    user_id: int | None
    approved_by: int | None
    approved_at: datetime | None
    rejected_by: int | None
    rejected_at: datetime | None
    items: list[AdjustmentItemOut]


class CountCreate(BaseModel):
    store_id: str = Field(min_length=1)
    count_type: CountType
    skus: list[str] | None = None
    location: str | None = None
    notes: str | None = None


class CountRecord(BaseModel):
    counted_by_sku: dict[str, int] = Field(min_length=1)
    notes_by_sku: dict[str, str] | None = None


class CountItemOut(ORMModel):
    id: int
    inventory_id: int
    expected_quantity: int
    counted_quantity: int | None
    difference: int | None
    notes: str | None


class CountOut(ORMModel):
    id: int
    store_id: str
    count_number: str
    count_type: CountType
    status: CountStatus
    location: str | None
    notes: str | None
    started_by: int | None
    completed_by: int | None
    started_at: datetime | None
    completed_at: datetime | None
    items: list[CountItemOut]


class ProposedAdjustmentItemOut(ORMModel):
    inventory_id: int
    sku: str
    expected_quantity: int
    actual_quantity: int
    difference: int
    unit_cost: Decimal
    cost_impact: Decimal


# alerts

class AlertOut(ORMModel):
    id: int
    store_id: str
    inventory_id: int
    current_quantity: int
    reorder_level: int
    alert_level: AlertLevel
    is_acknowledged: bool
    acknowledged_by: int | None
    acknowledged_at: datetime | None
    created_at: datetime
