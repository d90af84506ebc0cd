# Overview: Shift lifecycle; running totals per device and close-into-settlement.

from __future__ import annotations

import logging

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Order, OrderLine, Settlement, Shift
from ..models.orders import ORDER_STATUS_COMPLETED
from ..models.shifts import SETTLEMENT_SOURCE_SHIFT, SHIFT_CLOSED, SHIFT_OPEN
from ..time_utils import get_clock
from ..validation import ConflictError
from .concurrency import begin_write, lock_for_update, run_with_retry
from .settlement_service import build_inventory_counts, normalize_settlement_seed

logger = logging.getLogger(__name__)


class ShiftError(ConflictError):
    """Raised for shift state conflicts (already open, already closed)."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class ShiftNotFoundError(ShiftError):
    pass


def _device_filter(query, device_id: str | None):
    if device_id is None:
        return query.filter(Shift.device_id.is_(None))
    return query.filter(Shift.device_id == device_id)


def get_shift(shift_id: int) -> Shift | None:
    return db.session.get(Shift, shift_id)


def get_current_open_shift(device_id: str | None = None) -> Shift | None:
    query = db.session.query(Shift).filter(Shift.status == SHIFT_OPEN)
    return (
        _device_filter(query, device_id)
        .order_by(Shift.opened_at.desc(), Shift.id.desc())
        .first()
    )


def _locked_open_shift(device_id: str | None) -> Shift | None:
    return lock_for_update(
        _device_filter(db.session.query(Shift).filter(Shift.status == SHIFT_OPEN), device_id)
    ).first()


def open_shift(device_id: str | None = None) -> Shift:
    """
    Start a shift on a device. Only one OPEN shift per device id.

    The uq_shifts_open_device index backs the check below; two concurrent
    opens that both see no OPEN row still end with one ShiftError.
    """
    def _op():
        begin_write()
        existing = _locked_open_shift(device_id)
        if existing:
            raise ShiftError(
                "A shift is already open on this device",
                details={"shift_id": existing.id, "device_id": device_id},
            )

        shift = Shift(
            device_id=device_id,
            status=SHIFT_OPEN,
            opened_at=get_clock().now(),
            total_orders=0,
            total_revenue_cents=0,
            total_discount_cents=0,
            net_revenue_cents=0,
        )
        db.session.add(shift)
        db.session.commit()
        return shift

    try:
        shift = run_with_retry(_op)
    except IntegrityError as exc:
        # Another open on the same device committed first
        existing = get_current_open_shift(device_id)
        existing_id = existing.id if existing else None
        db.session.rollback()
        raise ShiftError(
            "A shift is already open on this device",
            details={"shift_id": existing_id, "device_id": device_id},
        ) from exc

    logger.info("Shift %s opened on device %s", shift.id, device_id)
    return shift


def accumulate(shift_id: int, order: Order) -> Shift | None:
    """
    Add a completed order to the shift's running totals.

    Runs inside the caller's transaction and never commits. A shift that is
    missing or no longer OPEN is left alone.
    """
    shift = lock_for_update(db.session.query(Shift).filter_by(id=shift_id)).first()
    if not shift or shift.status != SHIFT_OPEN:
        return None

    shift.total_orders = (shift.total_orders or 0) + 1
    shift.total_revenue_cents = (shift.total_revenue_cents or 0) + order.subtotal_cents
    shift.total_discount_cents = (shift.total_discount_cents or 0) + order.discount_amount_cents
    shift.net_revenue_cents = shift.total_revenue_cents - shift.total_discount_cents
    return shift


def _sold_by_product(shift_id: int) -> dict[int, int]:
    rows = (
        db.session.query(OrderLine.product_id, func.sum(OrderLine.quantity))
        .join(Order, Order.id == OrderLine.order_id)
        .filter(Order.shift_id == shift_id)
        .filter(Order.status == ORDER_STATUS_COMPLETED)
        .filter(OrderLine.product_id.isnot(None))
        .group_by(OrderLine.product_id)
        .all()
    )
    return {product_id: int(qty or 0) for product_id, qty in rows}


def close_shift(shift_id: int, extra: dict | None = None) -> tuple[Shift, Settlement]:
    """
    Close an OPEN shift and write its settlement snapshot in one transaction.
    Returns the closed shift and its settlement.

    `extra` carries the end-of-shift inputs: incentive_target,
    incentive_items_sold, incentive_achieved and inventory_counts
    (product_id -> quantity_remaining, as a dict or a list of objects).
    """
    seed = normalize_settlement_seed(extra or {})

    def _op():
        begin_write()
        shift = lock_for_update(db.session.query(Shift).filter_by(id=shift_id)).first()
        if not shift:
            raise ShiftNotFoundError("Shift not found", details={"shift_id": shift_id})
        if shift.status != SHIFT_OPEN:
            raise ShiftError("Shift is already closed", details={"shift_id": shift_id})

        clock = get_clock()
        now = clock.now()

        shift.status = SHIFT_CLOSED
        shift.closed_at = now

        settlement = Settlement(
            business_date=clock.today(),
            source=SETTLEMENT_SOURCE_SHIFT,
            total_orders=shift.total_orders,
            total_revenue_cents=shift.total_revenue_cents,
            total_discount_cents=shift.total_discount_cents,
            net_revenue_cents=shift.net_revenue_cents,
            device_id=shift.device_id,
            submitted_at=now,
            incentive_target=seed.incentive_target,
            incentive_items_sold=seed.incentive_items_sold,
            incentive_achieved=seed.incentive_achieved,
        )
        settlement.inventory_counts = build_inventory_counts(
            seed.inventory_counts, _sold_by_product(shift.id)
        )
        db.session.add(settlement)
        db.session.flush()

        shift.settlement_id = settlement.id
        db.session.commit()
        return shift, settlement

    shift, settlement = run_with_retry(_op)
    logger.info(
        "Shift %s closed: %d orders, net %d cents (settlement %s)",
        shift_id, settlement.total_orders, settlement.net_revenue_cents, settlement.id,
    )
    return shift, settlement
