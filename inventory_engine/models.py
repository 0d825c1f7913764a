from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
BigIntPK = BigInteger().with_variant(Integer, 'sqlite')


class Base(DeclarativeBase):
    pass


def _enum(enum_cls: type[Enum], name: str) -> SQLEnum:
    return SQLEnum(enum_cls, name=name, values_callable=lambda members: [m.value for m in members])


class ReferenceType(str, Enum):
    ORDER = 'order'
    ADJUSTMENT = 'adjustment'
    TRANSFER = 'transfer'
    RETURN = 'return'
    PURCHASE_ORDER = 'purchase_order'


class MovementType(str, Enum):
    IN = 'in'
    OUT = 'out'
    ADJUSTMENT = 'adjustment'


class ReservationStatus(str, Enum):
    ACTIVE = 'active'
    CONSUMED = 'consumed'
    RELEASED = 'released'


class ReleaseReason(str, Enum):
    CANCELLED = 'cancelled'
    EXPIRED = 'expired'
    ROLLBACK = 'rollback'
    MANUAL = 'manual'


class AdjustmentStatus(str, Enum):
    PENDING = 'pending'
    APPROVED = 'approved'
    REJECTED = 'rejected'


class CountType(str, Enum):
    FULL = 'full'
    PARTIAL = 'partial'


class CountStatus(str, Enum):
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'


class AlertLevel(str, Enum):
    LOW = 'low'
    CRITICAL = 'critical'


class OrderStatus(str, Enum):
    PENDING = 'pending'
    CONFIRMED = 'confirmed'
    PREPARING = 'preparing'
    COMPLETED = 'completed'
    CANCELED = 'canceled'


class PurchaseOrderStatus(str, Enum):
    PENDING = 'pending'
    CONFIRMED = 'confirmed'
    SHIPPED = 'shipped'
    RECEIVED = 'received'
    CANCELED = 'canceled'


class StockRecord(Base):
    __tablename__ = 'inventory'
    __table_args__ = (
        UniqueConstraint('store_id', 'sku', name='inventory_store_sku_uniq'),
        CheckConstraint('quantity_on_hand >= 0', name='inventory_on_hand_non_negative_ck'),
        CheckConstraint('quantity_reserved >= 0', name='inventory_reserved_non_negative_ck'),
        CheckConstraint('quantity_reserved <= quantity_on_hand', name='inventory_reserved_within_on_hand_ck'),
        CheckConstraint(
            'quantity_available = quantity_on_hand - quantity_reserved',
            name='inventory_available_derived_ck',
        ),
        Index('idx_inventory_store_product_variant', 'store_id', 'product_id', 'variant_id'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    store_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    product_id: Mapped[int | None] = mapped_column(BigInteger)
    variant_id: Mapped[int | None] = mapped_column(BigInteger)
    sku: Mapped[str] = mapped_column(Text, nullable=False)
    quantity_on_hand: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    quantity_reserved: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    quantity_available: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    reorder_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    max_stock_level: Mapped[int | None] = mapped_column(Integer)
    location: Mapped[str | None] = mapped_column(Text)
    bin_location: Mapped[str | None] = mapped_column(Text)
    unit_cost: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False, default=Decimal('0'), server_default='0')
    total_value: Mapped[Decimal] = mapped_column(Numeric(16, 4), nullable=False, default=Decimal('0'), server_default='0')
    last_count_date: Mapped[date | None] = mapped_column(Date)
    last_movement_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    @property
    def key(self) -> tuple[str, str]:
        return self.store_id, self.sku


class InventoryMovement(Base):
    __tablename__ = 'inventory_movements'
    __table_args__ = (
        UniqueConstraint(
            'reference_type',
            'reference_id',
            'inventory_id',
            'movement_type',
            name='inventory_movements_reference_uniq',
        ),
        CheckConstraint('quantity > 0', name='inventory_movements_quantity_positive_ck'),
        CheckConstraint(
            "(movement_type = 'in' AND delta = quantity)"
            " OR (movement_type = 'out' AND delta = -quantity)"
            " OR (movement_type = 'adjustment' AND (delta = quantity OR delta = -quantity))",
            name='inventory_movements_delta_matches_type_ck',
        ),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    store_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    inventory_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('inventory.id'), nullable=False, index=True)
    reference_type: Mapped[ReferenceType] = mapped_column(_enum(ReferenceType, 'movement_reference_type'), nullable=False)
    reference_id: Mapped[str] = mapped_column(Text, nullable=False)
    movement_type: Mapped[MovementType] = mapped_column(_enum(MovementType, 'movement_type'), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    delta: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_cost: Mapped[Decimal | None] = mapped_column(Numeric(14, 4))
    total_cost: Mapped[Decimal | None] = mapped_column(Numeric(16, 4))
    reason: Mapped[str | None] = mapped_column(Text)
    notes: Mapped[str | None] = mapped_column(Text)
    user_id: Mapped[int | None] = mapped_column(BigInteger)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Reservation(Base):
    __tablename__ = 'stock_reservations'
    __table_args__ = (
        UniqueConstraint('order_id', 'inventory_id', name='stock_reservations_order_inventory_uniq'),
        CheckConstraint('quantity > 0', name='stock_reservations_quantity_positive_ck'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    store_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    inventory_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('inventory.id'), nullable=False, index=True)
    order_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[ReservationStatus] = mapped_column(
        _enum(ReservationStatus, 'reservation_status'),
        nullable=False,
        default=ReservationStatus.ACTIVE,
        server_default='active',
    )
    release_reason: Mapped[ReleaseReason | None] = mapped_column(_enum(ReleaseReason, 'reservation_release_reason'))
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), index=True)
    consumed_movement_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('inventory_movements.id'))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    settled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    stock_record: Mapped[StockRecord] = relationship()


class StockAdjustment(Base):
    __tablename__ = 'stock_adjustments'
    __table_args__ = (
        UniqueConstraint('adjustment_number', name='stock_adjustments_number_uniq'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    store_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    adjustment_number: Mapped[str] = mapped_column(Text, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)
    status: Mapped[AdjustmentStatus] = mapped_column(
        _enum(AdjustmentStatus, 'adjustment_status'),
        nullable=False,
        default=AdjustmentStatus.PENDING,
        server_default='pending',
    )
    source_count_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('inventory_counts.id'), unique=True)
    user_id: Mapped[int | None] = mapped_column(BigInteger)
    approved_by: Mapped[int | None] = mapped_column(BigInteger)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    rejected_by: Mapped[int | None] = mapped_column(BigInteger)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    items: Mapped[list[StockAdjustmentItem]] = relationship(
        back_populates='adjustment',
        cascade='all, delete-orphan',
        order_by='StockAdjustmentItem.id',
    )


class StockAdjustmentItem(Base):
    __tablename__ = 'stock_adjustment_items'
    __table_args__ = (
        UniqueConstraint('adjustment_id', 'inventory_id', name='stock_adjustment_items_adjustment_inventory_uniq'),
        CheckConstraint('expected_quantity >= 0', name='stock_adjustment_items_expected_non_negative_ck'),
        CheckConstraint('actual_quantity >= 0', name='stock_adjustment_items_actual_non_negative_ck'),
        CheckConstraint('difference = actual_quantity - expected_quantity', name='stock_adjustment_items_difference_ck'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    adjustment_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('stock_adjustments.id', ondelete='CASCADE'), nullable=False, index=True
    )
    store_id: Mapped[str] = mapped_column(Text, nullable=False)
    inventory_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('inventory.id'), nullable=False, index=True)
    expected_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    actual_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    difference: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_cost: Mapped[Decimal | None] = mapped_column(Numeric(14, 4))
    total_cost_impact: Mapped[Decimal | None] = mapped_column(Numeric(16, 4))
    reason: Mapped[str | None] = mapped_column(Text)
    movement_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('inventory_movements.id'))
    posted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    adjustment: Mapped[StockAdjustment] = relationship(back_populates='items')
    stock_record: Mapped[StockRecord] = relationship()


class InventoryCount(Base):
    __tablename__ = 'inventory_counts'
    __table_args__ = (
        UniqueConstraint('count_number', name='inventory_counts_number_uniq'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    store_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    count_number: Mapped[str] = mapped_column(Text, nullable=False)
    count_type: Mapped[CountType] = mapped_column(_enum(CountType, 'inventory_count_type'), nullable=False)
    status: Mapped[CountStatus] = mapped_column(
        _enum(CountStatus, 'inventory_count_status'),
        nullable=False,
        default=CountStatus.IN_PROGRESS,
        server_default='in_progress',
    )
    location: Mapped[str | None] = mapped_column(Text)
    notes: Mapped[str | None] = mapped_column(Text)
    started_by: Mapped[int | None] = mapped_column(BigInteger)
    completed_by: Mapped[int | None] = mapped_column(BigInteger)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    items: Mapped[list[InventoryCountItem]] = relationship(
        back_populates='count',
        cascade='all, delete-orphan',
        order_by='InventoryCountItem.id',
    )


class InventoryCountItem(Base):
    __tablename__ = 'inventory_count_items'
    __table_args__ = (
        UniqueConstraint('count_id', 'inventory_id', name='inventory_count_items_count_inventory_uniq'),
        CheckConstraint('counted_quantity IS NULL OR counted_quantity >= 0', name='inventory_count_items_counted_non_negative_ck'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    count_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('inventory_counts.id', ondelete='CASCADE'), nullable=False, index=True
    )
    store_id: Mapped[str] = mapped_column(Text, nullable=False)
    inventory_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('inventory.id'), nullable=False, index=True)
    expected_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    counted_quantity: Mapped[int | None] = mapped_column(Integer)
    difference: Mapped[int | None] = mapped_column(Integer)
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    count: Mapped[InventoryCount] = relationship(back_populates='items')
    stock_record: Mapped[StockRecord] = relationship()


class LowStockAlert(Base):
    __tablename__ = 'low_stock_alerts'
    __table_args__ = (
        Index(
            'low_stock_alerts_one_open_per_inventory_uniq',
            'inventory_id',
            unique=True,
            postgresql_where=text('is_acknowledged = false'),
            sqlite_where=text('is_acknowledged = 0'),
        ),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    store_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    inventory_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('inventory.id'), nullable=False, index=True)
    current_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    reorder_level: Mapped[int] = mapped_column(Integer, nullable=False)
    alert_level: Mapped[AlertLevel] = mapped_column(_enum(AlertLevel, 'low_stock_alert_level'), nullable=False)
    is_acknowledged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    acknowledged_by: Mapped[int | None] = mapped_column(BigInteger)
    acknowledged_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    stock_record: Mapped[StockRecord] = relationship()


class Order(Base):
    __tablename__ = 'orders'
    __table_args__ = (
        UniqueConstraint('store_id', 'order_number', name='orders_store_number_uniq'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    store_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    order_number: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[OrderStatus] = mapped_column(
        _enum(OrderStatus, 'order_status'),
        nullable=False,
        default=OrderStatus.PENDING,
        server_default='pending',
    )
    cancel_reason: Mapped[str | None] = mapped_column(Text)
    user_id: Mapped[int | None] = mapped_column(BigInteger)
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    canceled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    items: Mapped[list[OrderItem]] = relationship(
        back_populates='order',
        cascade='all, delete-orphan',
        order_by='OrderItem.id',
    )

    @property
    def reference(self) -> str:
        return str(self.id)


class OrderItem(Base):
    __tablename__ = 'order_items'
    __table_args__ = (
        CheckConstraint('quantity > 0', name='order_items_quantity_positive_ck'),
        CheckConstraint('returned_quantity >= 0', name='order_items_returned_non_negative_ck'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    order_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('orders.id', ondelete='CASCADE'), nullable=False, index=True)
    product_id: Mapped[int | None] = mapped_column(BigInteger)
    variant_id: Mapped[int | None] = mapped_column(BigInteger)
    sku: Mapped[str | None] = mapped_column(Text)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    returned_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    inventory_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('inventory.id'))

    order: Mapped[Order] = relationship(back_populates='items')


class PurchaseOrder(Base):
    __tablename__ = 'purchase_orders'
    __table_args__ = (
        UniqueConstraint('order_number', name='purchase_orders_order_number_uniq'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    store_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    supplier_id: Mapped[int | None] = mapped_column(BigInteger, index=True)
    order_number: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[PurchaseOrderStatus] = mapped_column(
        _enum(PurchaseOrderStatus, 'purchase_order_status'),
        nullable=False,
        default=PurchaseOrderStatus.PENDING,
        server_default='pending',
    )
    expected_date: Mapped[date | None] = mapped_column(Date)
    received_date: Mapped[date | None] = mapped_column(Date)
    notes: Mapped[str | None] = mapped_column(Text)
    user_id: Mapped[int | None] = mapped_column(BigInteger)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    items: Mapped[list[PurchaseOrderItem]] = relationship(
        back_populates='purchase_order',
        cascade='all, delete-orphan',
        order_by='PurchaseOrderItem.id',
    )


class PurchaseOrderItem(Base):
    __tablename__ = 'purchase_order_items'
    __table_args__ = (
        CheckConstraint('quantity >= 0', name='purchase_order_items_quantity_non_negative_ck'),
        CheckConstraint('unit_price >= 0', name='purchase_order_items_unit_price_non_negative_ck'),
        CheckConstraint('received_quantity >= 0', name='purchase_order_items_received_non_negative_ck'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    purchase_order_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('purchase_orders.id', ondelete='CASCADE'), nullable=False, index=True
    )
    product_id: Mapped[int | None] = mapped_column(BigInteger)
    variant_id: Mapped[int | None] = mapped_column(BigInteger)
    sku: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False, default=Decimal('0'))
    received_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')

    purchase_order: Mapped[PurchaseOrder] = relationship(back_populates='items')


class AuditLog(Base):
    __tablename__ = 'audit_logs'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    actor_user_id: Mapped[int | None] = mapped_column(BigInteger)
    action: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    store_id: Mapped[str | None] = mapped_column(Text, index=True)
    entity_type: Mapped[str | None] = mapped_column(Text)
    entity_id: Mapped[int | None] = mapped_column(BigInteger)
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
