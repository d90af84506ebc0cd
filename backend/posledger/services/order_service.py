# Overview: Order intake; pricing, daily numbering, offline dedup, stock and shift hand-off.

"""
Order intake flow

1. Normalize and price the payload (no DB access; all validation happens here).
2. One write transaction: dedup check on (device_id, ordered_at), sequence
   allocation for the business day of ordered_at, order + lines insert, and
   accumulation into the device's OPEN shift. Commit.
3. Separate transaction: stock consumption. Failures are logged and never
   undo the sale; the stock ledger stays consistent on its own because
   consume_for_order is all-or-nothing.

Money is integer cents throughout. Request keys are snake_case; the camelCase
names sent by the terminal are accepted as aliases.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field, replace
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from ..extensions import db
from ..models import Order, OrderLine, OrderLineAddon
from ..models.orders import (
    DISCOUNT_AMOUNT,
    DISCOUNT_GIFT,
    DISCOUNT_PERCENTAGE,
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_COMPLETED,
    ORDER_STATUSES,
    PAYMENT_CASH,
    PAYMENT_CREDIT_CARD,
    PAYMENT_LINE_PAY,
    PAYMENT_METHODS,
)
from ..time_utils import get_clock
from ..validation import (
    ConflictError,
    ValidationError,
    coerce_cents,
    coerce_datetime,
    coerce_int,
    coerce_str,
)
from . import shift_service, stock_service
from .concurrency import begin_write, run_with_retry
from .sequence_service import format_order_number, next_daily_sequence, reserve_daily_sequence

logger = logging.getLogger(__name__)

MAX_ITEMS_PER_ORDER = 200
MAX_BATCH_SIZE = 500

DISCOUNT_ALIASES = {
    "percentage": DISCOUNT_PERCENTAGE,
    "percent": DISCOUNT_PERCENTAGE,
    "amount": DISCOUNT_AMOUNT,
    "fixed": DISCOUNT_AMOUNT,
    "gift": DISCOUNT_GIFT,
    "free": DISCOUNT_GIFT,
}

PAYMENT_ALIASES = {
    "現金": PAYMENT_CASH,
    "信用卡": PAYMENT_CREDIT_CARD,
    "LINE Pay": PAYMENT_LINE_PAY,
    "cash": PAYMENT_CASH,
    "credit_card": PAYMENT_CREDIT_CARD,
    "creditcard": PAYMENT_CREDIT_CARD,
    "line_pay": PAYMENT_LINE_PAY,
    "linepay": PAYMENT_LINE_PAY,
}


class OrderError(Exception):
    """Raised for order operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class OrderConflictError(OrderError, ConflictError):
    """Duplicate submission, taken sequence or disallowed status change."""


@dataclass
class AddonDraft:
    product_id: int | None
    product_name: str
    price_cents: int


@dataclass
class LineDraft:
    product_id: int | None
    product_name: str
    unit_price_cents: int
    quantity: int
    addons: list[AddonDraft] = field(default_factory=list)
    is_gift: bool = False
    original_price_cents: int | None = None
    item_discount_label: str | None = None

    @property
    def line_total_cents(self) -> int:
        return (self.unit_price_cents + sum(a.price_cents for a in self.addons)) * self.quantity


@dataclass
class OrderDraft:
    lines: list[LineDraft]
    ordered_at: datetime
    device_id: str | None = None
    status: str = ORDER_STATUS_COMPLETED
    payment_method: str = PAYMENT_CASH
    customer_tag: str | None = None
    discount_type: str | None = None
    discount_value: Decimal | None = None
    discount_amount_cents: int = 0
    daily_sequence: int | None = None
    order_number: str | None = None

    @property
    def subtotal_cents(self) -> int:
        return sum(line.line_total_cents for line in self.lines)

    @property
    def total_cents(self) -> int:
        return max(self.subtotal_cents - self.discount_amount_cents, 0)


@dataclass
class OrderStats:
    business_date: date
    total_orders: int = 0
    completed_orders: int = 0
    cancelled_orders: int = 0
    total_revenue_cents: int = 0

    def to_dict(self) -> dict:
        data = asdict(self)
        data["business_date"] = self.business_date.isoformat()
        return data


# ---------------------------------------------------------------------------
# Payload normalization
# ---------------------------------------------------------------------------

def _pick(data: dict, *keys, default=None):
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _normalize_discount_type(value) -> str | None:
    if value is None or value == "":
        return None
    text = str(value).strip()
    if text.upper() in (DISCOUNT_PERCENTAGE, DISCOUNT_AMOUNT, DISCOUNT_GIFT):
        return text.upper()
    mapped = DISCOUNT_ALIASES.get(text.lower())
    if mapped is None:
        logger.warning("Unknown discount type %r ignored", value)
    return mapped


def _normalize_payment_method(value) -> str:
    if value is None or value == "":
        return PAYMENT_CASH
    text = str(value).strip()
    if text.upper() in PAYMENT_METHODS:
        return text.upper()
    return PAYMENT_ALIASES.get(text, PAYMENT_ALIASES.get(text.lower(), PAYMENT_CASH))


def _normalize_status(value) -> str:
    if value is None or value == "":
        return ORDER_STATUS_COMPLETED
    status = str(value).strip().upper()
    if status not in ORDER_STATUSES:
        raise ValidationError(f"status must be one of {', '.join(ORDER_STATUSES)}")
    return status


def _normalize_addon(field_name: str, raw) -> AddonDraft:
    if not isinstance(raw, dict):
        raise ValidationError(f"{field_name} must be an object")
    return AddonDraft(
        product_id=coerce_int(f"{field_name}.product_id", _pick(raw, "product_id", "productId"), allow_none=True),
        product_name=coerce_str(
            f"{field_name}.product_name",
            _pick(raw, "product_name", "productName", "name"),
            max_length=255,
            allow_none=False,
        ),
        price_cents=coerce_cents(f"{field_name}.price_cents", _pick(raw, "price_cents", "price"), default=0),
    )


def _normalize_line(idx: int, raw) -> LineDraft:
    prefix = f"items[{idx}]"
    if not isinstance(raw, dict):
        raise ValidationError(f"{prefix} must be an object")

    quantity = coerce_int(f"{prefix}.quantity", _pick(raw, "quantity", "qty"))
    if quantity <= 0:
        raise ValidationError(f"{prefix}.quantity must be > 0")

    raw_addons = raw.get("addons") or []
    if not isinstance(raw_addons, list):
        raise ValidationError(f"{prefix}.addons must be a list")

    original = _pick(raw, "original_price_cents", "originalPrice")
    return LineDraft(
        product_id=coerce_int(f"{prefix}.product_id", _pick(raw, "product_id", "productId"), allow_none=True),
        product_name=coerce_str(
            f"{prefix}.product_name",
            _pick(raw, "product_name", "productName", "name"),
            max_length=255,
            allow_none=False,
        ),
        unit_price_cents=coerce_cents(
            f"{prefix}.unit_price_cents",
            _pick(raw, "unit_price_cents", "price_cents", "price"),
        ),
        quantity=quantity,
        addons=[_normalize_addon(f"{prefix}.addons[{i}]", a) for i, a in enumerate(raw_addons)],
        is_gift=bool(_pick(raw, "is_gift", "isGift", default=False)),
        original_price_cents=coerce_cents(f"{prefix}.original_price_cents", original) if original is not None else None,
        item_discount_label=coerce_str(
            f"{prefix}.item_discount_label",
            _pick(raw, "item_discount_label", "itemDiscountLabel"),
            max_length=64,
        ),
    )


def _discount_amount(discount_type: str | None, value: Decimal | None, subtotal: int, given: int | None) -> int:
    if discount_type == DISCOUNT_GIFT:
        return subtotal
    if given is not None:
        amount = given
    elif discount_type == DISCOUNT_PERCENTAGE and value is not None:
        amount = int((Decimal(subtotal) * value / 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    elif discount_type == DISCOUNT_AMOUNT and value is not None:
        amount = int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    else:
        amount = 0
    return min(max(amount, 0), subtotal)


def normalize_order_payload(payload: dict) -> OrderDraft:
    """
    Validate an order payload and price it. Raises ValidationError; never touches the DB.
    """
    if not isinstance(payload, dict):
        raise ValidationError("order must be an object")

    items = _pick(payload, "items", "lines")
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list")
    if len(items) > MAX_ITEMS_PER_ORDER:
        raise ValidationError(f"an order cannot have more than {MAX_ITEMS_PER_ORDER} items")
    lines = [_normalize_line(idx, raw) for idx, raw in enumerate(items)]

    ordered_at = coerce_datetime("ordered_at", _pick(payload, "ordered_at", "timestamp"))
    if ordered_at is None:
        ordered_at = get_clock().now()

    discount_type = _normalize_discount_type(_pick(payload, "discount_type", "discountType"))

    raw_value = _pick(payload, "discount_value", "discountValue")
    discount_value = None
    if raw_value is not None:
        if isinstance(raw_value, bool):
            raise ValidationError("discount_value must be a number")
        try:
            discount_value = Decimal(str(raw_value)).quantize(Decimal("0.01"))
        except ArithmeticError:
            raise ValidationError("discount_value must be a number")
        if not discount_value.is_finite() or discount_value < 0:
            raise ValidationError("discount_value must be >= 0")
        if discount_type == DISCOUNT_PERCENTAGE and discount_value > 100:
            raise ValidationError("percentage discount cannot exceed 100")

    raw_amount = _pick(payload, "discount_amount_cents", "discount_amount", "discountAmount")
    given_amount = coerce_cents("discount_amount_cents", raw_amount) if raw_amount is not None else None

    sequence = coerce_int("daily_sequence", _pick(payload, "daily_sequence", "dailySequence"), allow_none=True)
    if sequence is not None and sequence <= 0:
        raise ValidationError("daily_sequence must be > 0")

    draft = OrderDraft(
        lines=lines,
        ordered_at=ordered_at,
        device_id=coerce_str("device_id", _pick(payload, "device_id", "deviceId"), max_length=128),
        status=_normalize_status(payload.get("status")),
        payment_method=_normalize_payment_method(_pick(payload, "payment_method", "paymentMethod")),
        customer_tag=coerce_str("customer_tag", _pick(payload, "customer_tag", "customerTag"), max_length=64),
        discount_type=discount_type,
        discount_value=discount_value,
        daily_sequence=sequence,
        order_number=coerce_str("order_number", _pick(payload, "order_number", "orderNumber"), max_length=32),
    )
    draft.discount_amount_cents = _discount_amount(
        discount_type, discount_value, draft.subtotal_cents, given_amount
    )
    return draft


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

def _find_duplicate(device_id: str | None, ordered_at: datetime) -> Order | None:
    if not device_id:
        return None
    return (
        db.session.query(Order)
        .filter(Order.device_id == device_id, Order.ordered_at == ordered_at)
        .first()
    )


def _build_order(draft: OrderDraft, business_date: date, sequence: int) -> Order:
    order = Order(
        daily_sequence=sequence,
        order_number=draft.order_number or format_order_number(sequence),
        business_date=business_date,
        ordered_at=draft.ordered_at,
        subtotal_cents=draft.subtotal_cents,
        discount_type=draft.discount_type,
        discount_value=draft.discount_value,
        discount_amount_cents=draft.discount_amount_cents,
        total_cents=draft.total_cents,
        status=draft.status,
        payment_method=draft.payment_method,
        customer_tag=draft.customer_tag,
        device_id=draft.device_id,
    )
    for line_draft in draft.lines:
        line = OrderLine(
            product_id=line_draft.product_id,
            product_name=line_draft.product_name,
            unit_price_cents=line_draft.unit_price_cents,
            quantity=line_draft.quantity,
            line_total_cents=line_draft.line_total_cents,
            is_gift=line_draft.is_gift,
            original_price_cents=line_draft.original_price_cents,
            item_discount_label=line_draft.item_discount_label,
        )
        line.addons = [
            OrderLineAddon(
                product_id=addon.product_id,
                product_name=addon.product_name,
                price_cents=addon.price_cents,
            )
            for addon in line_draft.addons
        ]
        order.lines.append(line)
    return order


def _persist(draft: OrderDraft, *, skip_duplicates: bool) -> Order | None:
    """Write one order (transaction 1). Returns None for a skipped duplicate."""
    def _duplicate(existing: Order) -> None:
        if skip_duplicates:
            logger.info(
                "Duplicate order from device %s at %s skipped (existing order %s)",
                draft.device_id, draft.ordered_at, existing.id,
            )
            return None
        raise OrderConflictError(
            "Order already recorded for this device and timestamp",
            details={"order_id": existing.id, "order_number": existing.order_number},
        )

    def _op():
        begin_write()

        existing = _find_duplicate(draft.device_id, draft.ordered_at)
        if existing:
            db.session.rollback()
            return _duplicate(existing)

        business_date = get_clock().business_date(draft.ordered_at)
        if draft.daily_sequence is not None:
            reserve_daily_sequence(business_date, draft.daily_sequence)
            sequence = draft.daily_sequence
        else:
            sequence = next_daily_sequence(business_date)

        order = _build_order(draft, business_date, sequence)
        db.session.add(order)
        db.session.flush()

        if draft.device_id:
            shift = shift_service.get_current_open_shift(draft.device_id)
            if shift:
                order.shift_id = shift.id
                if order.status == ORDER_STATUS_COMPLETED:
                    shift_service.accumulate(shift.id, order)

        db.session.commit()
        return order

    try:
        return run_with_retry(_op)
    except IntegrityError as exc:
        # Lost a race on one of the unique keys; the session is already rolled back
        existing = _find_duplicate(draft.device_id, draft.ordered_at)
        db.session.rollback()
        if existing:
            return _duplicate(existing)
        if skip_duplicates and draft.daily_sequence is not None:
            # Queued order lost its number; take the next free one
            logger.warning(
                "Order sequence %s already used; renumbering order from device %s at %s",
                draft.daily_sequence, draft.device_id, draft.ordered_at,
            )
            return _persist(
                replace(draft, daily_sequence=None, order_number=None),
                skip_duplicates=True,
            )
        raise OrderConflictError(
            "Order sequence already used for this day",
            details={"daily_sequence": draft.daily_sequence},
        ) from exc


def _consume_stock(order: Order) -> None:
    """Transaction 2. Never lets a stock problem fail the sale."""
    try:
        stock_service.consume_for_order(order)
    except Exception:
        logger.exception("Stock consumption failed for order %s (%s)", order.id, order.order_number)


def create_order(payload: dict) -> Order:
    """
    Record one order.

    Raises ValidationError for a bad payload and OrderConflictError when the
    (device_id, ordered_at) pair is already on file.
    """
    draft = normalize_order_payload(payload)
    order = _persist(draft, skip_duplicates=False)
    _consume_stock(order)
    logger.info("Order %s created (%s, %d cents)", order.id, order.order_number, order.total_cents)
    return order


def batch_create(payloads: list[dict]) -> list[Order]:
    """
    Offline-sync entry point.

    Every payload is validated before anything is written. Retried submissions
    (same device_id and ordered_at as a stored order, or as an earlier entry in
    the same batch) are skipped and absent from the result.
    """
    if not isinstance(payloads, list):
        raise ValidationError("orders must be a list")
    if len(payloads) > MAX_BATCH_SIZE:
        raise ValidationError(f"a batch cannot have more than {MAX_BATCH_SIZE} orders")

    drafts = []
    for idx, payload in enumerate(payloads):
        try:
            drafts.append(normalize_order_payload(payload))
        except ValidationError as exc:
            raise ValidationError(f"orders[{idx}]: {exc}") from exc

    created = []
    for draft in drafts:
        order = _persist(draft, skip_duplicates=True)
        if order is None:
            continue
        _consume_stock(order)
        created.append(order)

    logger.info("Batch sync: %d received, %d created", len(drafts), len(created))
    return created


# ---------------------------------------------------------------------------
# Queries and status
# ---------------------------------------------------------------------------

def get_order(order_id: int) -> Order | None:
    return (
        db.session.query(Order)
        .options(selectinload(Order.lines).selectinload(OrderLine.addons))
        .filter_by(id=order_id)
        .first()
    )


def list_orders(
    *,
    status: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    device_id: str | None = None,
    shift_id: int | None = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[Order], int]:
    """Newest first. start/end bound ordered_at as [start, end)."""
    page = max(page, 1)
    page_size = min(max(page_size, 1), 200)

    query = db.session.query(Order)
    if status is not None:
        query = query.filter(Order.status == _normalize_status(status))
    if start is not None:
        query = query.filter(Order.ordered_at >= start)
    if end is not None:
        query = query.filter(Order.ordered_at < end)
    if device_id is not None:
        query = query.filter(Order.device_id == device_id)
    if shift_id is not None:
        query = query.filter(Order.shift_id == shift_id)

    total = query.count()
    orders = (
        query.options(selectinload(Order.lines).selectinload(OrderLine.addons))
        .order_by(Order.ordered_at.desc(), Order.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return orders, total


def get_stats(day: date | None = None) -> OrderStats:
    """Counts for one business day; revenue sums totals of COMPLETED orders only."""
    day = day or get_clock().today()
    rows = (
        db.session.query(
            Order.status,
            func.count(Order.id),
            func.coalesce(func.sum(Order.total_cents), 0),
        )
        .filter(Order.business_date == day)
        .group_by(Order.status)
        .all()
    )

    stats = OrderStats(business_date=day)
    for status, count, total in rows:
        stats.total_orders += int(count)
        if status == ORDER_STATUS_COMPLETED:
            stats.completed_orders = int(count)
            stats.total_revenue_cents = int(total)
        elif status == ORDER_STATUS_CANCELLED:
            stats.cancelled_orders = int(count)
    return stats


def update_order_status(order_id: int, status: str) -> Order | None:
    """
    COMPLETED -> CANCELLED only. Lines, totals, stock and shift totals are left
    as they are. Returns None for an unknown id.
    """
    new_status = _normalize_status(status)
    order = db.session.get(Order, order_id)
    if not order:
        return None
    if order.status == new_status:
        return order
    if not (order.status == ORDER_STATUS_COMPLETED and new_status == ORDER_STATUS_CANCELLED):
        raise OrderConflictError(
            f"Cannot change order status from {order.status} to {new_status}",
            details={"order_id": order_id},
        )

    order.status = new_status
    db.session.commit()
    logger.info("Order %s (%s) cancelled", order.id, order.order_number)
    return order
