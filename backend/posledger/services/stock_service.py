# Overview: Raw-material stock ledger; recipe consumption, manual movements and low-stock alerts.

"""
Stock ledger invariants (authoritative)

- Material.current_stock is a cache of the stock_change_records ledger. Every
  change to it writes exactly one record in the same transaction, with
  stock_after = stock_before + quantity and stock_after equal to the new balance.
- Balances never go negative. Consumption and waste floor at zero and record
  the delta actually applied, not the one requested.
- One OUT record per (material, order). Replaying consumption for an order that
  already has OUT records is a no-op.
- At most one unresolved alert per material. Alerts are raised when
  stock <= threshold and auto-resolved only by stock_in lifting the balance
  strictly above the threshold. adjust_stock never resolves alerts.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func

from ..extensions import db
from ..models import (
    Material,
    MaterialAlert,
    Order,
    StockChangeRecord,
)
from ..models.materials import (
    CHANGE_ADJUST,
    CHANGE_IN,
    CHANGE_OUT,
    CHANGE_TYPES,
    CHANGE_WASTE,
    MATERIAL_ACTIVE,
)
from ..models.orders import ORDER_STATUS_COMPLETED
from ..time_utils import utcnow
from ..validation import (
    STOCK_QUANTUM,
    ValidationError,
    coerce_decimal,
    coerce_positive_decimal,
    coerce_str,
)
from .concurrency import begin_write, lock_for_update, run_with_retry
from .recipe_service import get_recipes_for_products

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class StockError(Exception):
    """Raised for stock ledger operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class MaterialNotFoundError(StockError):
    pass


@dataclass
class MaterialStatusSummary:
    total: int = 0
    normal: int = 0
    low_stock: int = 0
    out_of_stock: int = 0
    active_alerts: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def _quantize(value) -> Decimal:
    return Decimal(value).quantize(STOCK_QUANTUM)


def _lock_material(material_id: int) -> Material:
    material = lock_for_update(
        db.session.query(Material).filter_by(id=material_id)
    ).first()
    if not material:
        raise MaterialNotFoundError("Material not found", details={"material_id": material_id})
    return material


def _write_record(
    material: Material,
    change_type: str,
    new_stock: Decimal,
    *,
    order_id: int | None = None,
    note: str | None = None,
    operator_id: int | None = None,
    at: datetime | None = None,
) -> StockChangeRecord:
    """Move material to new_stock and append the matching ledger row."""
    before = _quantize(material.current_stock or 0)
    after = _quantize(new_stock)

    record = StockChangeRecord(
        material_id=material.id,
        change_type=change_type,
        quantity=after - before,
        stock_before=before,
        stock_after=after,
        order_id=order_id,
        note=note,
        operator_id=operator_id,
        created_at=at or utcnow(),
    )
    material.current_stock = after
    db.session.add(record)
    return record


def _unresolved_alert(material_id: int) -> MaterialAlert | None:
    return (
        db.session.query(MaterialAlert)
        .filter_by(material_id=material_id, is_resolved=False)
        .order_by(MaterialAlert.id.desc())
        .first()
    )


def _check_alert(material: Material) -> MaterialAlert | None:
    """Raise an alert for a low material unless one is already open. No commit."""
    stock = _quantize(material.current_stock or 0)
    threshold = _quantize(material.alert_threshold or 0)
    if stock > threshold:
        return None
    if _unresolved_alert(material.id):
        return None

    alert = MaterialAlert(
        material_id=material.id,
        stock_level=stock,
        alert_threshold=threshold,
        is_notified=False,
        is_resolved=False,
        created_at=utcnow(),
    )
    db.session.add(alert)
    logger.warning(
        "Low stock alert: material %s (%s) at %s, threshold %s",
        material.id, material.name, stock, threshold,
    )
    return alert


def _resolve_open_alerts(material: Material) -> int:
    now = utcnow()
    alerts = (
        db.session.query(MaterialAlert)
        .filter_by(material_id=material.id, is_resolved=False)
        .all()
    )
    for alert in alerts:
        alert.is_resolved = True
        alert.resolved_at = now
    if alerts:
        logger.info("Resolved %d alert(s) for material %s", len(alerts), material.id)
    return len(alerts)


# ---------------------------------------------------------------------------
# Order consumption
# ---------------------------------------------------------------------------

def consume_for_order(order: Order) -> list[StockChangeRecord]:
    """
    Deduct recipe quantities for every line of a completed order.

    All materials touched by the order are locked in id order and written in
    one transaction; a failure leaves every balance untouched. Lines without a
    product id or without a recipe consume nothing.
    """
    if order.status != ORDER_STATUS_COMPLETED:
        return []

    product_qty: dict[int, int] = {}
    for line in order.lines:
        if line.product_id is None:
            continue
        product_qty[line.product_id] = product_qty.get(line.product_id, 0) + line.quantity

    if not product_qty:
        return []

    order_id = order.id
    order_number = order.order_number

    def _op():
        begin_write()

        already = (
            db.session.query(StockChangeRecord.id)
            .filter_by(order_id=order_id, change_type=CHANGE_OUT)
            .first()
        )
        if already:
            logger.info("Order %s already consumed stock; skipping", order_id)
            db.session.rollback()
            return []

        recipes = get_recipes_for_products(product_qty.keys())
        required: dict[int, Decimal] = {}
        for product_id, qty in product_qty.items():
            for recipe in recipes.get(product_id, []):
                amount = _quantize(recipe.quantity) * qty
                required[recipe.material_id] = required.get(recipe.material_id, ZERO) + amount

        if not required:
            db.session.rollback()
            return []

        materials = (
            lock_for_update(
                db.session.query(Material)
                .filter(Material.id.in_(required.keys()))
                .order_by(Material.id)
            ).all()
        )

        now = utcnow()
        records = []
        for material in materials:
            current = _quantize(material.current_stock or 0)
            wanted = required[material.id]
            new_stock = current - wanted
            if new_stock < 0:
                logger.warning(
                    "Material %s short by %s for order %s; flooring at 0",
                    material.id, -new_stock, order_id,
                )
                new_stock = ZERO
            records.append(_write_record(
                material,
                CHANGE_OUT,
                new_stock,
                order_id=order_id,
                note=f"Order {order_number}",
                at=now,
            ))
            _check_alert(material)

        db.session.commit()
        return records

    return run_with_retry(_op)


# ---------------------------------------------------------------------------
# Manual movements
# ---------------------------------------------------------------------------

def stock_in(
    material_id: int,
    quantity,
    note: str | None = None,
    operator_id: int | None = None,
) -> StockChangeRecord:
    """Goods received. Clears open alerts once the balance is above the threshold."""
    qty = coerce_positive_decimal("quantity", quantity)
    note = coerce_str("note", note, max_length=255)

    def _op():
        begin_write()
        material = _lock_material(material_id)
        record = _write_record(
            material,
            CHANGE_IN,
            _quantize(material.current_stock or 0) + qty,
            note=note,
            operator_id=operator_id,
        )
        if material.current_stock > _quantize(material.alert_threshold or 0):
            _resolve_open_alerts(material)
        db.session.commit()
        return record

    return run_with_retry(_op)


def adjust_stock(
    material_id: int,
    new_stock,
    note: str | None = None,
    operator_id: int | None = None,
) -> StockChangeRecord:
    """Stock-take correction to an absolute balance. May raise an alert, never resolves one."""
    target = coerce_decimal("new_stock", new_stock)
    if target < 0:
        raise ValidationError("new_stock must be >= 0")
    note = coerce_str("note", note, max_length=255)

    def _op():
        begin_write()
        material = _lock_material(material_id)
        record = _write_record(
            material,
            CHANGE_ADJUST,
            target,
            note=note,
            operator_id=operator_id,
        )
        _check_alert(material)
        db.session.commit()
        return record

    return run_with_retry(_op)


def waste(
    material_id: int,
    quantity,
    note: str | None = None,
    operator_id: int | None = None,
) -> StockChangeRecord:
    """Write-off. Floors at zero and records the delta actually removed."""
    qty = coerce_positive_decimal("quantity", quantity)
    note = coerce_str("note", note, max_length=255)

    def _op():
        begin_write()
        material = _lock_material(material_id)
        current = _quantize(material.current_stock or 0)
        record = _write_record(
            material,
            CHANGE_WASTE,
            max(current - qty, ZERO),
            note=note,
            operator_id=operator_id,
        )
        _check_alert(material)
        db.session.commit()
        return record

    return run_with_retry(_op)


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------

def check_and_create_alert(material_id: int) -> MaterialAlert | None:
    def _op():
        begin_write()
        material = _lock_material(material_id)
        alert = _check_alert(material)
        db.session.commit()
        return alert

    return run_with_retry(_op)


def resolve_alert(alert_id: int) -> MaterialAlert | None:
    """Mark an alert resolved. Unknown or already-resolved ids are left alone."""
    alert = db.session.get(MaterialAlert, alert_id)
    if not alert or alert.is_resolved:
        return alert

    alert.is_resolved = True
    alert.resolved_at = utcnow()
    db.session.commit()
    logger.info("Alert %s for material %s resolved manually", alert.id, alert.material_id)
    return alert


def list_active_alerts() -> list[MaterialAlert]:
    return (
        db.session.query(MaterialAlert)
        .filter_by(is_resolved=False)
        .order_by(MaterialAlert.created_at.desc(), MaterialAlert.id.desc())
        .all()
    )


def sweep_alerts() -> int:
    """Raise missing alerts for every active material; returns how many were created."""
    material_ids = [
        mid for (mid,) in db.session.query(Material.id)
        .filter(Material.status == MATERIAL_ACTIVE)
        .order_by(Material.id)
        .all()
    ]
    created = 0
    for material_id in material_ids:
        if check_and_create_alert(material_id) is not None:
            created += 1
    if created:
        logger.info("Alert sweep raised %d new alert(s)", created)
    return created


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

def list_stock_records(
    *,
    material_id: int | None = None,
    change_type: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[StockChangeRecord], int]:
    if change_type is not None and change_type not in CHANGE_TYPES:
        raise ValidationError(f"change_type must be one of {', '.join(CHANGE_TYPES)}")

    page = max(page, 1)
    page_size = min(max(page_size, 1), 200)

    query = db.session.query(StockChangeRecord)
    if material_id is not None:
        query = query.filter(StockChangeRecord.material_id == material_id)
    if change_type is not None:
        query = query.filter(StockChangeRecord.change_type == change_type)
    if start is not None:
        query = query.filter(StockChangeRecord.created_at >= start)
    if end is not None:
        query = query.filter(StockChangeRecord.created_at < end)

    total = query.count()
    records = (
        query.order_by(StockChangeRecord.created_at.desc(), StockChangeRecord.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return records, total


def get_material_status_summary() -> MaterialStatusSummary:
    summary = MaterialStatusSummary()
    materials = db.session.query(Material).filter(Material.status == MATERIAL_ACTIVE).all()
    for material in materials:
        summary.total += 1
        stock = material.current_stock or ZERO
        if stock <= 0:
            summary.out_of_stock += 1
        elif stock <= (material.alert_threshold or ZERO):
            summary.low_stock += 1
        else:
            summary.normal += 1

    summary.active_alerts = (
        db.session.query(func.count(MaterialAlert.id))
        .filter(MaterialAlert.is_resolved.is_(False))
        .scalar()
    ) or 0
    return summary


def list_low_stock_materials() -> list[Material]:
    return (
        db.session.query(Material)
        .filter(Material.status == MATERIAL_ACTIVE)
        .filter(Material.current_stock <= Material.alert_threshold)
        .order_by(Material.current_stock, Material.name)
        .all()
    )


def reconcile_material(material_id: int) -> Decimal:
    """
    Balance implied by the record ledger.

    Compare with material.current_stock; they differ only if something wrote
    the cache without a record.
    """
    material = db.session.get(Material, material_id)
    if not material:
        raise MaterialNotFoundError("Material not found", details={"material_id": material_id})

    total = (
        db.session.query(func.coalesce(func.sum(StockChangeRecord.quantity), 0))
        .filter(StockChangeRecord.material_id == material_id)
        .scalar()
    )
    return _quantize(total)
