from __future__ import annotations

from ..extensions import db
from posledger.time_utils import to_utc_z


ORDER_STATUS_COMPLETED = "COMPLETED"
ORDER_STATUS_CANCELLED = "CANCELLED"
ORDER_STATUSES = (ORDER_STATUS_COMPLETED, ORDER_STATUS_CANCELLED)

DISCOUNT_PERCENTAGE = "PERCENTAGE"
DISCOUNT_AMOUNT = "AMOUNT"
DISCOUNT_GIFT = "GIFT"
DISCOUNT_TYPES = (DISCOUNT_PERCENTAGE, DISCOUNT_AMOUNT, DISCOUNT_GIFT)

PAYMENT_CASH = "CASH"
PAYMENT_CREDIT_CARD = "CREDIT_CARD"
PAYMENT_LINE_PAY = "LINE_PAY"
PAYMENT_METHODS = (PAYMENT_CASH, PAYMENT_CREDIT_CARD, PAYMENT_LINE_PAY)


class Order(db.Model):
    """
    Completed (or later cancelled) sale recorded by a terminal.

    IDENTITY:
    - daily_sequence is unique per business_date and forms order_number (#0126).
    - (device_id, ordered_at) is the offline-retry idempotency key. NULL device
      ids never collide, so anonymous orders are never deduplicated.

    INVARIANT: total_cents = subtotal_cents - discount_amount_cents, never negative.
    Lines are immutable once written; only status may change afterwards.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("business_date", "daily_sequence", name="uq_orders_day_sequence"),
        db.UniqueConstraint("device_id", "ordered_at", name="uq_orders_device_ordered_at"),
        db.Index("ix_orders_business_date_status", "business_date", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    daily_sequence = db.Column(db.Integer, nullable=False)
    order_number = db.Column(db.String(32), nullable=False)

    # Local calendar day of ordered_at (see BusinessClock)
    business_date = db.Column(db.Date, nullable=False, index=True)
    ordered_at = db.Column(db.DateTime, nullable=False, index=True)

    # Money (all amounts in cents)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_type = db.Column(db.String(16), nullable=True)
    discount_value = db.Column(db.Numeric(12, 2), nullable=True)
    discount_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default=ORDER_STATUS_COMPLETED, index=True)
    payment_method = db.Column(db.String(16), nullable=False, default=PAYMENT_CASH)
    customer_tag = db.Column(db.String(64), nullable=True)

    device_id = db.Column(db.String(128), nullable=True, index=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    lines = db.relationship(
        "OrderLine",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderLine.id",
    )
    shift = db.relationship("Shift", backref=db.backref("orders", lazy=True))

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.order_number!r} date={self.business_date}>"

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "daily_sequence": self.daily_sequence,
            "business_date": self.business_date.isoformat() if self.business_date else None,
            "ordered_at": to_utc_z(self.ordered_at),
            "subtotal_cents": self.subtotal_cents,
            "discount_type": self.discount_type,
            "discount_value": str(self.discount_value) if self.discount_value is not None else None,
            "discount_amount_cents": self.discount_amount_cents,
            "total_cents": self.total_cents,
            "status": self.status,
            "payment_method": self.payment_method,
            "customer_tag": self.customer_tag,
            "device_id": self.device_id,
            "shift_id": self.shift_id,
            "created_at": to_utc_z(self.created_at),
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class OrderLine(db.Model):
    """
    One product line within an order.

    Name and price are snapshots so historical orders do not move when the
    catalog is edited. line_total_cents = (unit price + addon prices) * quantity.
    """
    __tablename__ = "order_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)

    product_name = db.Column(db.String(255), nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    # Line-level promotion snapshot
    is_gift = db.Column(db.Boolean, nullable=False, default=False)
    original_price_cents = db.Column(db.Integer, nullable=True)
    item_discount_label = db.Column(db.String(64), nullable=True)

    order = db.relationship("Order", back_populates="lines")
    addons = db.relationship(
        "OrderLineAddon",
        back_populates="line",
        cascade="all, delete-orphan",
        order_by="OrderLineAddon.id",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "unit_price_cents": self.unit_price_cents,
            "quantity": self.quantity,
            "line_total_cents": self.line_total_cents,
            "is_gift": self.is_gift,
            "original_price_cents": self.original_price_cents,
            "item_discount_label": self.item_discount_label,
            "addons": [addon.to_dict() for addon in self.addons],
        }


class OrderLineAddon(db.Model):
    """Add-on snapshot (name + price) attached to an order line."""
    __tablename__ = "order_line_addons"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_line_id = db.Column(db.Integer, db.ForeignKey("order_lines.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)
    product_name = db.Column(db.String(255), nullable=False)
    price_cents = db.Column(db.Integer, nullable=False, default=0)

    line = db.relationship("OrderLine", back_populates="addons")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "price_cents": self.price_cents,
        }


class DailySequence(db.Model):
    """
    Per-day order counter.

    last_sequence holds the highest sequence issued for business_date. It is
    only ever moved forward with a single UPDATE ... SET last_sequence =
    last_sequence + 1 so concurrent writers serialize on the row lock.
    """
    __tablename__ = "daily_sequences"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    business_date = db.Column(db.Date, nullable=False, unique=True)
    last_sequence = db.Column(db.Integer, nullable=False)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "business_date": self.business_date.isoformat(),
            "last_sequence": self.last_sequence,
        }
