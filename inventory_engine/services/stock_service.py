from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import func, select, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from inventory_engine.config import settings
from inventory_engine.errors import InsufficientStock, LockTimeout, NotFound
from inventory_engine.models import Reservation, ReservationStatus, StockRecord
from inventory_engine.services.ledger_service import replay_on_hand

logger = logging.getLogger(__name__)

# PostgreSQL SQLSTATE for lock_not_available
_PG_LOCK_NOT_AVAILABLE = '55P03'


@dataclass(frozen=True)
class StockLevel:
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


@dataclass(frozen=True)
class StockDrift:
    inventory_id: int
    store_id: str
    sku: str
    recorded_on_hand: int
    ledger_on_hand: int
    recorded_reserved: int
    reservation_reserved: int

    @property
    def in_sync(self) -> bool:
        return self.recorded_on_hand == self.ledger_on_hand and self.recorded_reserved == self.reservation_reserved


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _clean_sku(sku: str) -> str:
    clean = (sku or '').strip()
    if not clean:
        raise ValueError('SKU is required')
    return clean


def _clean_store(store_id: str) -> str:
    clean = (str(store_id) if store_id is not None else '').strip()
    if not clean:
        raise ValueError('Store id is required')
    return clean


def stock_key(store_id: str, sku: str) -> tuple[str, str]:
    """The (store_id, sku) key a caller's input resolves to, as stored on the record."""
    return _clean_store(store_id), _clean_sku(sku)


def snapshot(record: StockRecord) -> StockLevel:
    return StockLevel(
        inventory_id=record.id,
        store_id=record.store_id,
        sku=record.sku,
        product_id=record.product_id,
        variant_id=record.variant_id,
        quantity_on_hand=record.quantity_on_hand,
        quantity_reserved=record.quantity_reserved,
        quantity_available=record.quantity_available,
        reorder_level=record.reorder_level,
        max_stock_level=record.max_stock_level,
        unit_cost=Decimal(record.unit_cost or 0),
        total_value=Decimal(record.total_value or 0),
        last_movement_date=record.last_movement_date,
        last_count_date=record.last_count_date,
    )


def find_stock_record(db: Session, *, store_id: str, sku: str) -> StockRecord | None:
    return db.execute(
        select(StockRecord).where(StockRecord.store_id == _clean_store(store_id), StockRecord.sku == _clean_sku(sku))
    ).scalar_one_or_none()


def get_stock_record(db: Session, *, store_id: str, sku: str) -> StockRecord:
    record = find_stock_record(db, store_id=store_id, sku=sku)
    if not record:
        raise NotFound(f'No stock record for sku {sku} in store {store_id}', details={'store_id': store_id, 'sku': sku})
    return record


def get_stock_record_by_id(db: Session, *, inventory_id: int) -> StockRecord:
    record = db.get(StockRecord, inventory_id)
    if not record:
        raise NotFound(f'Stock record {inventory_id} not found')
    return record


def _set_lock_timeout(db: Session, lock_timeout_seconds: float | None) -> None:
    if db.get_bind().dialect.name != 'postgresql':
        return
    timeout_ms = int((lock_timeout_seconds if lock_timeout_seconds is not None else settings.lock_timeout_seconds) * 1000)
    db.execute(text(f"SET LOCAL lock_timeout = '{max(timeout_ms, 1)}ms'"))


def lock_stock_record(
    db: Session,
    *,
    store_id: str,
    sku: str,
    lock_timeout_seconds: float | None = None,
) -> StockRecord | None:
    """Row-lock the stock record for the rest of the transaction (no-op lock on SQLite)."""
    _set_lock_timeout(db, lock_timeout_seconds)
    try:
        return db.execute(
            select(StockRecord)
            .where(StockRecord.store_id == _clean_store(store_id), StockRecord.sku == _clean_sku(sku))
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
    except OperationalError as exc:
        if getattr(exc.orig, 'sqlstate', None) == _PG_LOCK_NOT_AVAILABLE:
            raise LockTimeout(f'Timed out waiting for row lock on {sku}', details={'store_id': store_id, 'sku': sku}) from exc
        raise


def resolve_stock_record(
    db: Session,
    *,
    store_id: str,
    product_id: int | None = None,
    variant_id: int | None = None,
    sku: str | None = None,
) -> StockRecord:
    """Map an external product/variant reference onto exactly one stock record."""
    if product_id is not None:
        query = select(StockRecord).where(StockRecord.store_id == _clean_store(store_id), StockRecord.product_id == product_id)
        if variant_id is None:
            query = query.where(StockRecord.variant_id.is_(None))
        else:
            query = query.where(StockRecord.variant_id == variant_id)
        matches = db.execute(query).scalars().all()
        if len(matches) == 1:
            return matches[0]
        if len(matches) > 1:
            raise ValueError(f'Product {product_id}/{variant_id} maps to more than one stock record')
    if sku:
        return get_stock_record(db, store_id=store_id, sku=sku)
    raise NotFound(
        f'No stock record for product {product_id} variant {variant_id} in store {store_id}',
        details={'store_id': store_id, 'product_id': product_id, 'variant_id': variant_id},
    )


def list_stock_records(db: Session, *, store_id: str, below_reorder_only: bool = False) -> list[StockRecord]:
    query = select(StockRecord).where(StockRecord.store_id == _clean_store(store_id))
    if below_reorder_only:
        query = query.where(StockRecord.quantity_available < StockRecord.reorder_level)
    return db.execute(query.order_by(StockRecord.sku.asc())).scalars().all()


def _validate_levels(reorder_level: int | None, max_stock_level: int | None) -> None:
    if reorder_level is not None and reorder_level < 0:
        raise ValueError('Reorder level cannot be negative')
    if max_stock_level is not None and max_stock_level < 0:
        raise ValueError('Max stock level cannot be negative')
    if reorder_level is not None and max_stock_level is not None and max_stock_level < reorder_level:
        raise ValueError('Max stock level must be at least the reorder level')


def register_stock_record(
    db: Session,
    *,
    store_id: str,
    sku: str,
    product_id: int | None = None,
    variant_id: int | None = None,
    reorder_level: int | None = None,
    max_stock_level: int | None = None,
    unit_cost: Decimal | None = None,
    location: str | None = None,
    bin_location: str | None = None,
) -> StockRecord:
    """Create an empty stock record. Quantities only ever arrive through movements."""
    store_id = _clean_store(store_id)
    sku = _clean_sku(sku)
    reorder = settings.default_reorder_level if reorder_level is None else reorder_level
    _validate_levels(reorder, max_stock_level)
    if unit_cost is not None and unit_cost < 0:
        raise ValueError('Unit cost cannot be negative')

    existing = find_stock_record(db, store_id=store_id, sku=sku)
    if existing:
        raise ValueError(f'Stock record for sku {sku} already exists in store {store_id}')

    record = StockRecord(
        store_id=store_id,
        sku=sku,
        product_id=product_id,
        variant_id=variant_id,
        quantity_on_hand=0,
        quantity_reserved=0,
        quantity_available=0,
        reorder_level=reorder,
        max_stock_level=max_stock_level,
        unit_cost=unit_cost if unit_cost is not None else Decimal('0'),
        total_value=Decimal('0'),
        location=location,
        bin_location=bin_location,
        updated_at=_now(),
    )
    db.add(record)
    db.flush()
    logger.info('Registered stock record id=%s store=%s sku=%s', record.id, store_id, sku)
    return record


def update_stock_settings(
    db: Session,
    *,
    record: StockRecord,
    reorder_level: int | None = None,
    max_stock_level: int | None = None,
    location: str | None = None,
    bin_location: str | None = None,
) -> StockRecord:
    new_reorder = record.reorder_level if reorder_level is None else reorder_level
    new_max = record.max_stock_level if max_stock_level is None else max_stock_level
    _validate_levels(new_reorder, new_max)
    record.reorder_level = new_reorder
    record.max_stock_level = new_max
    if location is not None:
        record.location = location
    if bin_location is not None:
        record.bin_location = bin_location
    record.updated_at = _now()
    db.flush()
    return record


def check_quantities(record: StockRecord, *, on_hand: int, reserved: int) -> None:
    if on_hand < 0:
        raise InsufficientStock(
            f'On-hand for {record.sku} would drop to {on_hand}',
            details={'sku': record.sku, 'on_hand': record.quantity_on_hand, 'requested_on_hand': on_hand},
        )
    if reserved < 0:
        raise ValueError(f'Reserved quantity for {record.sku} cannot be negative')
    if reserved > on_hand:
        raise InsufficientStock(
            f'{reserved} of {record.sku} would be reserved against only {on_hand} on hand',
            details={'sku': record.sku, 'on_hand': on_hand, 'reserved': reserved},
        )


def set_quantities(record: StockRecord, *, on_hand: int, reserved: int) -> None:
    """Write on-hand/reserved and every derived total, refusing any state that breaks the invariants."""
    check_quantities(record, on_hand=on_hand, reserved=reserved)
    record.quantity_on_hand = on_hand
    record.quantity_reserved = reserved
    record.quantity_available = on_hand - reserved
    record.total_value = (Decimal(on_hand) * Decimal(record.unit_cost or 0)).quantize(Decimal('0.0001'))
    record.updated_at = _now()


def active_reserved_total(db: Session, *, inventory_id: int) -> int:
    total = db.execute(
        select(func.coalesce(func.sum(Reservation.quantity), 0)).where(
            Reservation.inventory_id == inventory_id,
            Reservation.status == ReservationStatus.ACTIVE,
        )
    ).scalar_one()
    return int(total)


def verify_stock_record(db: Session, *, record: StockRecord) -> StockDrift:
    return StockDrift(
        inventory_id=record.id,
        store_id=record.store_id,
        sku=record.sku,
        recorded_on_hand=record.quantity_on_hand,
        ledger_on_hand=replay_on_hand(db, inventory_id=record.id),
        recorded_reserved=record.quantity_reserved,
        reservation_reserved=active_reserved_total(db, inventory_id=record.id),
    )


def rebuild_stock_record(db: Session, *, record: StockRecord) -> StockDrift:
    """Rewrite the cached totals from the ledger and the active reservations."""
    drift = verify_stock_record(db, record=record)
    if drift.in_sync:
        return drift

    logger.warning(
        'Rebuilding stock record id=%s sku=%s on_hand %s->%s reserved %s->%s',
        record.id,
        record.sku,
        drift.recorded_on_hand,
        drift.ledger_on_hand,
        drift.recorded_reserved,
        drift.reservation_reserved,
    )
    set_quantities(record, on_hand=drift.ledger_on_hand, reserved=drift.reservation_reserved)
    db.flush()
    return drift
