from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import TypeVar

from sqlalchemy.orm import Session, sessionmaker

from inventory_engine.config import Settings, settings as default_settings
from inventory_engine.errors import DuplicateReference, InvalidReservationState, InventoryError
from inventory_engine.models import (
    AdjustmentStatus,
    CountType,
    InventoryCount,
    InventoryMovement,
    LowStockAlert,
    MovementType,
    Order,
    PurchaseOrder,
    ReferenceType,
    ReleaseReason,
    Reservation,
    StockAdjustment,
)
from inventory_engine.services import (
    adjustment_service,
    alert_service,
    count_service,
    fulfillment_service,
    ledger_service,
    receiving_service,
    reservation_service,
    stock_service,
)
from inventory_engine.services.adjustment_service import AdjustmentLine
from inventory_engine.services.audit_service import log_audit
from inventory_engine.services.count_service import ProposedAdjustmentItem
from inventory_engine.services.fulfillment_service import OrderLine
from inventory_engine.services.locking import StockKey, StockLockManager
from inventory_engine.services.movement_service import apply_movement
from inventory_engine.services.receiving_service import PurchaseOrderLine
from inventory_engine.services.stock_service import StockDrift, StockLevel, stock_key

logger = logging.getLogger(__name__)

T = TypeVar('T')


class InventoryEngine:
    """Transactional entry point for every stock-affecting operation.

    Each call takes the in-process locks for the (store_id, sku) keys it
    touches, in sorted order, opens a session, runs the service functions and
    commits while the locks are still held. Any exception rolls the session
    back. A ``DuplicateReference`` raised by a concurrent writer winning the
    ledger's unique key rolls back and runs the call once more, where the
    idempotency check turns it into a no-op.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        lock_manager: StockLockManager | None = None,
        config: Settings | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.settings = config or default_settings
        self.locks = lock_manager or StockLockManager(timeout_seconds=self.settings.lock_timeout_seconds)

    @contextmanager
    def _unit_of_work(self, keys: Iterable[StockKey] = ()) -> Iterator[Session]:
        with self.locks.hold(keys):
            with self.session_factory() as db:
                try:
                    yield db
                    db.commit()
                except Exception:
                    db.rollback()
                    raise

    def _run(self, work: Callable[[Session], T], *, keys: Iterable[StockKey] = ()) -> T:
        keys = list(keys)
        try:
            with self._unit_of_work(keys) as db:
                return work(db)
        except DuplicateReference as exc:
            logger.info('Concurrent duplicate ledger reference (%s); retrying once', exc)
        with self._unit_of_work(keys) as db:
            return work(db)

    def _read(self, work: Callable[[Session], T]) -> T:
        with self.session_factory() as db:
            return work(db)

    # stock records

    def register_stock_record(
        self,
        store_id: str,
        sku: str,
        *,
        product_id: int | None = None,
        variant_id: int | None = None,
        reorder_level: int | None = None,
        max_stock_level: int | None = None,
        unit_cost: Decimal | None = None,
        location: str | None = None,
        bin_location: str | None = None,
    ) -> StockLevel:
        def work(db: Session) -> StockLevel:
            record = stock_service.register_stock_record(
                db,
                store_id=store_id,
                sku=sku,
                product_id=product_id,
                variant_id=variant_id,
                reorder_level=reorder_level,
                max_stock_level=max_stock_level,
                unit_cost=unit_cost,
                location=location,
                bin_location=bin_location,
            )
            return stock_service.snapshot(record)

        return self._run(work, keys=[stock_key(store_id, sku)])

    def update_stock_settings(
        self,
        store_id: str,
        sku: str,
        *,
        reorder_level: int | None = None,
        max_stock_level: int | None = None,
        location: str | None = None,
        bin_location: str | None = None,
    ) -> StockLevel:
        def work(db: Session) -> StockLevel:
            record = stock_service.lock_stock_record(db, store_id=store_id, sku=sku)
            if record is None:
                record = stock_service.get_stock_record(db, store_id=store_id, sku=sku)
            stock_service.update_stock_settings(
                db,
                record=record,
                reorder_level=reorder_level,
                max_stock_level=max_stock_level,
                location=location,
                bin_location=bin_location,
            )
            alert_service.evaluate_stock_record(db, record=record)
            return stock_service.snapshot(record)

        return self._run(work, keys=[stock_key(store_id, sku)])

    def get_stock_level(self, store_id: str, sku: str) -> StockLevel:
        return self._read(lambda db: stock_service.snapshot(stock_service.get_stock_record(db, store_id=store_id, sku=sku)))

    def list_stock_levels(self, store_id: str, *, below_reorder_only: bool = False) -> list[StockLevel]:
        return self._read(
            lambda db: [
                stock_service.snapshot(record)
                for record in stock_service.list_stock_records(db, store_id=store_id, below_reorder_only=below_reorder_only)
            ]
        )

    def list_movements(self, store_id: str, sku: str, since_id: int | None = None) -> list[InventoryMovement]:
        def work(db: Session) -> list[InventoryMovement]:
            record = stock_service.get_stock_record(db, store_id=store_id, sku=sku)
            return ledger_service.list_for(db, inventory_id=record.id, since_id=since_id)

        return self._read(work)

    def _move(
        self,
        store_id: str,
        sku: str,
        *,
        movement_type: MovementType,
        quantity: int,
        reference_type: ReferenceType,
        reference_id: str,
        unit_cost: Decimal | None,
        reason: str | None,
        user_id: int | None,
    ) -> InventoryMovement:
        def work(db: Session) -> InventoryMovement:
            return apply_movement(
                db,
                store_id=store_id,
                sku=sku,
                reference_type=reference_type,
                reference_id=reference_id,
                movement_type=movement_type,
                quantity=quantity,
                unit_cost=unit_cost,
                reason=reason,
                user_id=user_id,
            ).entry

        return self._run(work, keys=[stock_key(store_id, sku)])

    def receive_stock(
        self,
        store_id: str,
        sku: str,
        quantity: int,
        *,
        reference_id: str,
        reference_type: ReferenceType = ReferenceType.PURCHASE_ORDER,
        unit_cost: Decimal | None = None,
        reason: str | None = None,
        user_id: int | None = None,
    ) -> InventoryMovement:
        return self._move(
            store_id,
            sku,
            movement_type=MovementType.IN,
            quantity=quantity,
            reference_type=reference_type,
            reference_id=reference_id,
            unit_cost=unit_cost,
            reason=reason,
            user_id=user_id,
        )

    def issue_stock(
        self,
        store_id: str,
        sku: str,
        quantity: int,
        *,
        reference_id: str,
        reference_type: ReferenceType = ReferenceType.ORDER,
        reason: str | None = None,
        user_id: int | None = None,
    ) -> InventoryMovement:
        return self._move(
            store_id,
            sku,
            movement_type=MovementType.OUT,
            quantity=quantity,
            reference_type=reference_type,
            reference_id=reference_id,
            unit_cost=None,
            reason=reason,
            user_id=user_id,
        )

    # reservations

    def _reservation_keys(self, reservation_id: int) -> list[StockKey]:
        return self._read(
            lambda db: [reservation_service.get_reservation(db, reservation_id=reservation_id).stock_record.key]
        )

    def reserve_stock(self, store_id: str, sku: str, quantity: int, order_ref: str, *, ttl_minutes: int | None = None) -> int:
        def work(db: Session) -> int:
            return reservation_service.reserve(
                db,
                store_id=store_id,
                sku=sku,
                quantity=quantity,
                order_id=order_ref,
                ttl_minutes=self.settings.reservation_ttl_minutes if ttl_minutes is None else ttl_minutes,
            ).id

        return self._run(work, keys=[stock_key(store_id, sku)])

    def consume_reservation(self, reservation_id: int, *, user_id: int | None = None) -> InventoryMovement:
        return self._run(
            lambda db: reservation_service.consume(db, reservation_id=reservation_id, user_id=user_id),
            keys=self._reservation_keys(reservation_id),
        )

    def release_reservation(self, reservation_id: int, *, reason: ReleaseReason = ReleaseReason.MANUAL) -> None:
        self._run(
            lambda db: reservation_service.release(db, reservation_id=reservation_id, reason=reason),
            keys=self._reservation_keys(reservation_id),
        )

    def get_reservation(self, reservation_id: int) -> Reservation:
        return self._read(lambda db: reservation_service.get_reservation(db, reservation_id=reservation_id))

    def list_reservations(self, order_ref: str, *, active_only: bool = False) -> list[Reservation]:
        return self._read(lambda db: reservation_service.list_for_order(db, order_id=order_ref, active_only=active_only))

    def expire_reservations(self, *, now: datetime | None = None, limit: int = 500) -> int:
        """Release every active reservation past its expiry. Returns how many were released."""
        due = self._read(
            lambda db: [(r.id, r.stock_record.key) for r in reservation_service.list_expired(db, now=now, limit=limit)]
        )
        released = 0
        for reservation_id, key in due:
            try:
                self._run(
                    lambda db, reservation_id=reservation_id: reservation_service.release(
                        db, reservation_id=reservation_id, reason=ReleaseReason.EXPIRED
                    ),
                    keys=[key],
                )
            except InvalidReservationState:
                logger.info('Reservation id=%s settled before it could expire', reservation_id)
                continue
            released += 1
        if due:
            logger.info('Expired %s of %s due reservations', released, len(due))
        return released

    # adjustments and counts

    def create_adjustment(
        self,
        store_id: str,
        reason: str,
        lines: list[AdjustmentLine],
        *,
        user_id: int | None,
        notes: str | None = None,
        adjustment_number: str | None = None,
    ) -> StockAdjustment:
        def work(db: Session) -> StockAdjustment:
            return adjustment_service.create_adjustment(
                db,
                store_id=store_id,
                reason=reason,
                lines=lines,
                user_id=user_id,
                notes=notes,
                adjustment_number=adjustment_number,
            )

        return self._run(work, keys=[stock_key(store_id, line.sku) for line in lines])

    def _adjustment_keys(self, adjustment_id: int) -> list[StockKey]:
        return self._read(lambda db: adjustment_service.adjustment_skus(db, adjustment_id=adjustment_id))

    def approve_adjustment(self, adjustment_id: int, *, approver: int | None) -> list[InventoryMovement]:
        return self._run(
            lambda db: adjustment_service.approve_adjustment(db, adjustment_id=adjustment_id, approver=approver),
            keys=self._adjustment_keys(adjustment_id),
        )

    def post_adjustment(self, adjustment_id: int, *, user_id: int | None = None) -> list[InventoryMovement]:
        return self._run(
            lambda db: adjustment_service.post_adjustment(db, adjustment_id=adjustment_id, user_id=user_id),
            keys=self._adjustment_keys(adjustment_id),
        )

    def reject_adjustment(self, adjustment_id: int, *, user_id: int | None, note: str | None = None) -> StockAdjustment:
        return self._run(
            lambda db: adjustment_service.reject_adjustment(db, adjustment_id=adjustment_id, user_id=user_id, note=note)
        )

    def get_adjustment(self, adjustment_id: int) -> StockAdjustment:
        return self._read(lambda db: adjustment_service.get_adjustment(db, adjustment_id=adjustment_id))

    def list_adjustments(self, store_id: str, *, status: AdjustmentStatus | None = None, limit: int = 100) -> list[StockAdjustment]:
        return self._read(lambda db: adjustment_service.list_adjustments(db, store_id=store_id, status=status, limit=limit))

    def start_count(
        self,
        store_id: str,
        count_type: CountType,
        *,
        started_by: int | None,
        skus: list[str] | None = None,
        location: str | None = None,
        notes: str | None = None,
    ) -> InventoryCount:
        return self._run(
            lambda db: count_service.start_count(
                db,
                store_id=store_id,
                count_type=count_type,
                started_by=started_by,
                skus=skus,
                location=location,
                notes=notes,
            )
        )

    def record_counts(self, count_id: int, counted_by_sku: dict[str, int], *, notes_by_sku: dict[str, str] | None = None) -> InventoryCount:
        return self._run(
            lambda db: count_service.record_counts(db, count_id=count_id, counted_by_sku=counted_by_sku, notes_by_sku=notes_by_sku)
        )

    def complete_count(self, count_id: int, *, completed_by: int | None = None) -> list[ProposedAdjustmentItem]:
        return self._run(lambda db: count_service.complete_count(db, count_id=count_id, completed_by=completed_by))

    def get_count(self, count_id: int) -> InventoryCount:
        return self._read(lambda db: count_service.get_count(db, count_id=count_id))

    def proposed_adjustment_items(self, count_id: int) -> list[ProposedAdjustmentItem]:
        return self._read(lambda db: count_service.proposed_adjustment_items(db, count_id=count_id))

    def create_adjustment_from_count(self, count_id: int, *, user_id: int | None, reason: str | None = None) -> StockAdjustment | None:
        return self._run(
            lambda db: count_service.create_adjustment_from_count(db, count_id=count_id, user_id=user_id, reason=reason)
        )

    # alerts

    def acknowledge_alert(self, alert_id: int, user_id: int | None) -> None:
        def work(db: Session) -> None:
            alert = alert_service.acknowledge_alert(db, alert_id=alert_id, user_id=user_id)
            log_audit(
                db,
                actor_user_id=user_id,
                action='LOW_STOCK_ALERT_ACKNOWLEDGED',
                store_id=alert.store_id,
                entity_type='low_stock_alert',
                entity_id=alert.id,
                metadata={'inventory_id': alert.inventory_id, 'alert_level': alert.alert_level.value},
            )

        self._run(work)

    def list_alerts(self, store_id: str, *, open_only: bool = True, limit: int = 200) -> list[LowStockAlert]:
        return self._read(lambda db: alert_service.list_alerts(db, store_id=store_id, open_only=open_only, limit=limit))

    # orders

    def create_order(self, store_id: str, order_number: str, lines: list[OrderLine], *, user_id: int | None = None) -> Order:
        return self._run(
            lambda db: fulfillment_service.create_order(db, store_id=store_id, order_number=order_number, lines=lines, user_id=user_id)
        )

    def _order_keys(self, order_id: int) -> list[StockKey]:
        return self._read(lambda db: fulfillment_service.order_skus(db, order_id=order_id))

    def confirm_order(self, order_id: int, *, ttl_minutes: int | None = None) -> list[Reservation]:
        ttl = self.settings.reservation_ttl_minutes if ttl_minutes is None else ttl_minutes

        def work(db: Session) -> list[Reservation]:
            try:
                return fulfillment_service.confirm_order(db, order_id=order_id, ttl_minutes=ttl)
            except (InventoryError, ValueError):
                # keep the released holds and the canceled order
                db.commit()
                raise

        return self._run(work, keys=self._order_keys(order_id))

    def start_preparing(self, order_id: int) -> Order:
        return self._run(lambda db: fulfillment_service.start_preparing(db, order_id=order_id))

    def fulfill_order(self, order_id: int, *, user_id: int | None = None) -> list[InventoryMovement]:
        return self._run(
            lambda db: fulfillment_service.fulfill_order(db, order_id=order_id, user_id=user_id),
            keys=self._order_keys(order_id),
        )

    def cancel_order(self, order_id: int, *, user_id: int | None, reason: str | None = None) -> Order:
        return self._run(
            lambda db: fulfillment_service.cancel_order(db, order_id=order_id, user_id=user_id, reason=reason),
            keys=self._order_keys(order_id),
        )

    def get_order(self, order_id: int) -> Order:
        return self._read(lambda db: fulfillment_service.get_order(db, order_id=order_id))

    def order_movements(self, order_id: int) -> list[InventoryMovement]:
        return self._read(lambda db: fulfillment_service.order_movements(db, order_id=order_id))

    def record_return(
        self,
        order_id: int,
        return_reference: str,
        quantities_by_sku: dict[str, int],
        *,
        user_id: int | None = None,
    ) -> list[InventoryMovement]:
        keys = self._read(lambda db: receiving_service.return_skus(db, order_id=order_id, skus=list(quantities_by_sku)))
        return self._run(
            lambda db: receiving_service.record_return(
                db,
                order_id=order_id,
                return_reference=return_reference,
                quantities_by_sku=quantities_by_sku,
                user_id=user_id,
            ),
            keys=keys,
        )

    # purchase orders and transfers

    def create_purchase_order(
        self,
        store_id: str,
        order_number: str,
        lines: list[PurchaseOrderLine],
        *,
        user_id: int | None,
        supplier_id: int | None = None,
        expected_date: date | None = None,
        notes: str | None = None,
    ) -> PurchaseOrder:
        return self._run(
            lambda db: receiving_service.create_purchase_order(
                db,
                store_id=store_id,
                order_number=order_number,
                lines=lines,
                user_id=user_id,
                supplier_id=supplier_id,
                expected_date=expected_date,
                notes=notes,
            )
        )

    def get_purchase_order(self, purchase_order_id: int) -> PurchaseOrder:
        return self._read(lambda db: receiving_service.get_purchase_order(db, purchase_order_id=purchase_order_id))

    def receive_purchase_order(
        self,
        purchase_order_id: int,
        receipt_reference: str,
        received_by_item: dict[int, int],
        *,
        user_id: int | None = None,
    ) -> list[InventoryMovement]:
        keys = self._read(lambda db: receiving_service.purchase_order_skus(db, purchase_order_id=purchase_order_id))
        return self._run(
            lambda db: receiving_service.receive_purchase_order(
                db,
                purchase_order_id=purchase_order_id,
                receipt_reference=receipt_reference,
                received_by_item=received_by_item,
                user_id=user_id,
            ),
            keys=keys,
        )

    def cancel_purchase_order(self, purchase_order_id: int) -> PurchaseOrder:
        return self._run(lambda db: receiving_service.cancel_purchase_order(db, purchase_order_id=purchase_order_id))

    def transfer_stock(
        self,
        from_store_id: str,
        to_store_id: str,
        sku: str,
        quantity: int,
        transfer_reference: str,
        *,
        user_id: int | None = None,
    ) -> tuple[InventoryMovement, InventoryMovement]:
        return self._run(
            lambda db: receiving_service.transfer_stock(
                db,
                from_store_id=from_store_id,
                to_store_id=to_store_id,
                sku=sku,
                quantity=quantity,
                transfer_reference=transfer_reference,
                user_id=user_id,
            ),
            keys=[stock_key(from_store_id, sku), stock_key(to_store_id, sku)],
        )

    # recovery

    def verify_stock(self, store_id: str, sku: str) -> StockDrift:
        return self._read(
            lambda db: stock_service.verify_stock_record(db, record=stock_service.get_stock_record(db, store_id=store_id, sku=sku))
        )

    def rebuild_stock(self, store_id: str, sku: str, *, user_id: int | None = None) -> StockDrift:
        def work(db: Session) -> StockDrift:
            record = stock_service.lock_stock_record(db, store_id=store_id, sku=sku)
            if record is None:
                record = stock_service.get_stock_record(db, store_id=store_id, sku=sku)
            drift = stock_service.rebuild_stock_record(db, record=record)
            if not drift.in_sync:
                log_audit(
                    db,
                    actor_user_id=user_id,
                    action='STOCK_REBUILT',
                    store_id=store_id,
                    entity_type='inventory',
                    entity_id=record.id,
                    metadata={
                        'sku': sku,
                        'recorded_on_hand': drift.recorded_on_hand,
                        'ledger_on_hand': drift.ledger_on_hand,
                        'recorded_reserved': drift.recorded_reserved,
                        'reservation_reserved': drift.reservation_reserved,
                    },
                )
                alert_service.evaluate_stock_record(db, record=record)
            return drift

        return self._run(work, keys=[stock_key(store_id, sku)])

    def store_skus(self, store_id: str) -> list[str]:
        return self._read(lambda db: [record.sku for record in stock_service.list_stock_records(db, store_id=store_id)])
