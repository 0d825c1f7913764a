from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from inventory_engine.errors import AlreadyAcknowledged, NotFound
from inventory_engine.models import AlertLevel, LowStockAlert, StockRecord

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def find_open_alert(db: Session, *, inventory_id: int) -> LowStockAlert | None:
    return db.execute(
        select(LowStockAlert)
        .where(LowStockAlert.inventory_id == inventory_id, LowStockAlert.is_acknowledged.is_(False))
        .order_by(LowStockAlert.id.asc())
    ).scalars().first()


def alert_level_for(available: int) -> AlertLevel:
    return AlertLevel.CRITICAL if available <= 0 else AlertLevel.LOW


def evaluate_stock_record(db: Session, *, record: StockRecord) -> LowStockAlert | None:
    """Raise a low-stock alert when availability is below the reorder level.

    Runs inline after every stock write. Returns the alert created by this call,
    or None. Open alerts are never closed here, even once stock recovers; they
    wait for an explicit acknowledgement.
    """
    if record.quantity_available >= record.reorder_level:
        return None
    if find_open_alert(db, inventory_id=record.id):
        return None

    alert = LowStockAlert(
        store_id=record.store_id,
        inventory_id=record.id,
        current_quantity=record.quantity_available,
        reorder_level=record.reorder_level,
        alert_level=alert_level_for(record.quantity_available),
        is_acknowledged=False,
        created_at=_now(),
    )
    db.add(alert)
    db.flush()
    logger.info(
        'Low-stock alert id=%s level=%s store=%s sku=%s available=%s reorder_level=%s',
        alert.id,
        alert.alert_level.value,
        record.store_id,
        record.sku,
        record.quantity_available,
        record.reorder_level,
    )
    return alert


def get_alert(db: Session, *, alert_id: int) -> LowStockAlert:
    alert = db.get(LowStockAlert, alert_id)
    if not alert:
        raise NotFound(f'Alert {alert_id} not found')
    return alert


def acknowledge_alert(db: Session, *, alert_id: int, user_id: int | None) -> LowStockAlert:
    alert = get_alert(db, alert_id=alert_id)
    if alert.is_acknowledged:
        raise AlreadyAcknowledged(
            f'Alert {alert_id} was already acknowledged',
            details={'acknowledged_by': alert.acknowledged_by},
        )
    alert.is_acknowledged = True
    alert.acknowledged_by = user_id
    alert.acknowledged_at = _now()
    db.flush()
    return alert


def list_alerts(db: Session, *, store_id: str, open_only: bool = True, limit: int = 200) -> list[LowStockAlert]:
    query = select(LowStockAlert).where(LowStockAlert.store_id == store_id)
    if open_only:
        query = query.where(LowStockAlert.is_acknowledged.is_(False))
    return db.execute(query.order_by(LowStockAlert.created_at.desc(), LowStockAlert.id.desc()).limit(limit)).scalars().all()
