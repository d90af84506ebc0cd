# Overview: End-of-day settlement; fresh scan of the day's completed orders plus inventory counts.

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date

from sqlalchemy import func
from sqlalchemy.orm import joinedload

from ..extensions import db
from ..models import InventoryCount, Order, OrderLine, Product, Settlement
from ..models.orders import ORDER_STATUS_COMPLETED
from ..models.shifts import SETTLEMENT_SOURCE_MANUAL
from ..time_utils import get_clock
from ..validation import ValidationError, coerce_int, coerce_str
from .concurrency import begin_write, run_with_retry

logger = logging.getLogger(__name__)


@dataclass
class SettlementSeed:
    """Caller-supplied part of a settlement; totals are always computed."""
    device_id: str | None = None
    incentive_target: int = 0
    incentive_items_sold: int = 0
    incentive_achieved: bool = False
    inventory_counts: dict[int, int] = field(default_factory=dict)


def _non_negative_int(name: str, value, default: int = 0) -> int:
    if value is None:
        return default
    result = coerce_int(name, value)
    if result < 0:
        raise ValidationError(f"{name} must be >= 0")
    return result


def _normalize_counts(raw) -> dict[int, int]:
    """
    Accepts {"<product_id>": remaining} or
    [{"product_id": .., "quantity_remaining": ..}, ...].
    """
    if raw is None:
        return {}

    counts: dict[int, int] = {}
    if isinstance(raw, dict):
        items = list(raw.items())
    elif isinstance(raw, list):
        items = []
        for idx, row in enumerate(raw):
            if not isinstance(row, dict):
                raise ValidationError(f"inventory_counts[{idx}] must be an object")
            items.append((row.get("product_id"), row.get("quantity_remaining", row.get("quantity"))))
    else:
        raise ValidationError("inventory_counts must be an object or a list")

    for product_id, remaining in items:
        pid = coerce_int("inventory_counts.product_id", product_id)
        counts[pid] = _non_negative_int(f"inventory_counts[{pid}]", remaining)
    return counts


def normalize_settlement_seed(payload: dict) -> SettlementSeed:
    if not isinstance(payload, dict):
        raise ValidationError("settlement payload must be an object")

    target = _non_negative_int("incentive_target", payload.get("incentive_target"))
    items_sold = _non_negative_int("incentive_items_sold", payload.get("incentive_items_sold"))

    achieved = payload.get("incentive_achieved")
    if achieved is None:
        achieved = False
    elif not isinstance(achieved, bool):
        raise ValidationError("incentive_achieved must be a boolean")

    return SettlementSeed(
        device_id=coerce_str("device_id", payload.get("device_id"), max_length=128),
        incentive_target=target,
        incentive_items_sold=items_sold,
        incentive_achieved=achieved,
        inventory_counts=_normalize_counts(payload.get("inventory_counts")),
    )


def build_inventory_counts(remaining: dict[int, int], sold: dict[int, int]) -> list[InventoryCount]:
    """
    One InventoryCount per product that was counted or sold.

    Unknown product ids in `remaining` raise ValidationError.
    """
    if remaining:
        known = {
            pid for (pid,) in db.session.query(Product.id)
            .filter(Product.id.in_(remaining.keys()))
            .all()
        }
        missing = sorted(set(remaining) - known)
        if missing:
            raise ValidationError(f"Unknown product id(s): {', '.join(str(m) for m in missing)}")

    return [
        InventoryCount(
            product_id=product_id,
            quantity_remaining=remaining.get(product_id, 0),
            quantity_sold=sold.get(product_id, 0),
        )
        for product_id in sorted(set(remaining) | set(sold))
    ]


def _sold_by_product(day: date) -> dict[int, int]:
    rows = (
        db.session.query(OrderLine.product_id, func.sum(OrderLine.quantity))
        .join(Order, Order.id == OrderLine.order_id)
        .filter(Order.business_date == day)
        .filter(Order.status == ORDER_STATUS_COMPLETED)
        .filter(OrderLine.product_id.isnot(None))
        .group_by(OrderLine.product_id)
        .all()
    )
    return {product_id: int(qty or 0) for product_id, qty in rows}


def submit_settlement(payload: dict | None = None) -> Settlement:
    """
    Manual end-of-day settlement.

    Totals come from a fresh scan of today's COMPLETED orders, independent of
    any shift: revenue is the sum of subtotals, discount the sum of discount
    amounts, net = revenue - discount.
    """
    seed = normalize_settlement_seed(payload or {})

    def _op():
        begin_write()
        clock = get_clock()
        today = clock.today()

        count, revenue, discount = (
            db.session.query(
                func.count(Order.id),
                func.coalesce(func.sum(Order.subtotal_cents), 0),
                func.coalesce(func.sum(Order.discount_amount_cents), 0),
            )
            .filter(Order.business_date == today)
            .filter(Order.status == ORDER_STATUS_COMPLETED)
            .one()
        )

        settlement = Settlement(
            business_date=today,
            source=SETTLEMENT_SOURCE_MANUAL,
            total_orders=int(count),
            total_revenue_cents=int(revenue),
            total_discount_cents=int(discount),
            net_revenue_cents=int(revenue) - int(discount),
            device_id=seed.device_id,
            submitted_at=clock.now(),
            incentive_target=seed.incentive_target,
            incentive_items_sold=seed.incentive_items_sold,
            incentive_achieved=seed.incentive_achieved,
        )
        settlement.inventory_counts = build_inventory_counts(
            seed.inventory_counts, _sold_by_product(today)
        )
        db.session.add(settlement)
        db.session.commit()
        return settlement

    settlement = run_with_retry(_op)
    logger.info(
        "Settlement %s submitted for %s: %d orders, net %d cents",
        settlement.id, settlement.business_date, settlement.total_orders, settlement.net_revenue_cents,
    )
    return settlement


def get_settlement(settlement_id: int) -> Settlement | None:
    return (
        db.session.query(Settlement)
        .options(joinedload(Settlement.inventory_counts))
        .filter_by(id=settlement_id)
        .first()
    )


def get_today_settlement() -> Settlement | None:
    """Most recent settlement for today, or None."""
    today = get_clock().today()
    return (
        db.session.query(Settlement)
        .options(joinedload(Settlement.inventory_counts))
        .filter(Settlement.business_date == today)
        .order_by(Settlement.submitted_at.desc(), Settlement.id.desc())
        .first()
    )


def list_settlements(page: int = 1, page_size: int = 20) -> tuple[list[Settlement], int]:
    page = max(page, 1)
    page_size = min(max(page_size, 1), 100)

    query = db.session.query(Settlement)
    total = query.count()
    settlements = (
        query.order_by(Settlement.submitted_at.desc(), Settlement.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return settlements, total
