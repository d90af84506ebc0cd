from __future__ import annotations

from ..extensions import db
from posledger.time_utils import to_utc_z


SHIFT_OPEN = "OPEN"
SHIFT_CLOSED = "CLOSED"

SETTLEMENT_SOURCE_SHIFT = "SHIFT"
SETTLEMENT_SOURCE_MANUAL = "MANUAL"


class Shift(db.Model):
    """
    Work session on one device.

    LIFECYCLE:
    - OPEN: running totals grow with every completed order from the device
    - CLOSED: totals frozen, settlement_id points at the snapshot

    One OPEN shift per device_id at a time; a NULL device id counts as its own device.
    """
    __tablename__ = "shifts"
    __table_args__ = (
        db.Index("ix_shifts_device_status", "device_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    device_id = db.Column(db.String(128), nullable=True)
    status = db.Column(db.String(16), nullable=False, default=SHIFT_OPEN, index=True)

    opened_at = db.Column(db.DateTime, nullable=False)
    closed_at = db.Column(db.DateTime, nullable=True)

    # Running totals (all amounts in cents)
    total_orders = db.Column(db.Integer, nullable=False, default=0)
    total_revenue_cents = db.Column(db.Integer, nullable=False, default=0)
    total_discount_cents = db.Column(db.Integer, nullable=False, default=0)
    net_revenue_cents = db.Column(db.Integer, nullable=False, default=0)

    settlement_id = db.Column(db.Integer, db.ForeignKey("settlements.id"), nullable=True)

    settlement = db.relationship("Settlement", foreign_keys=[settlement_id])

    def __repr__(self) -> str:
        return f"<Shift id={self.id} device={self.device_id!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "device_id": self.device_id,
            "status": self.status,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at),
            "total_orders": self.total_orders,
            "total_revenue_cents": self.total_revenue_cents,
            "total_discount_cents": self.total_discount_cents,
            "net_revenue_cents": self.net_revenue_cents,
            "settlement_id": self.settlement_id,
        }


# One OPEN shift per device; NULL device ids share the '' slot
db.Index(
    "uq_shifts_open_device",
    db.func.coalesce(Shift.device_id, ""),
    unique=True,
    sqlite_where=Shift.status == SHIFT_OPEN,
    postgresql_where=Shift.status == SHIFT_OPEN,
)


class Settlement(db.Model):
    """
    Immutable end-of-period snapshot (financial totals + inventory counts).

    Written once, either by closing a shift (source=SHIFT, totals copied from the
    shift) or by a manual end-of-day submission (source=MANUAL, totals rescanned
    from the day's completed orders). Several settlements may exist per day.
    """
    __tablename__ = "settlements"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    business_date = db.Column(db.Date, nullable=False, index=True)
    source = db.Column(db.String(16), nullable=False, default=SETTLEMENT_SOURCE_MANUAL)

    total_orders = db.Column(db.Integer, nullable=False, default=0)
    total_revenue_cents = db.Column(db.Integer, nullable=False, default=0)
    total_discount_cents = db.Column(db.Integer, nullable=False, default=0)
    net_revenue_cents = db.Column(db.Integer, nullable=False, default=0)

    device_id = db.Column(db.String(128), nullable=True)
    submitted_at = db.Column(db.DateTime, nullable=False, index=True)

    # Staff incentive programme
    incentive_target = db.Column(db.Integer, nullable=False, default=0)
    incentive_items_sold = db.Column(db.Integer, nullable=False, default=0)
    incentive_achieved = db.Column(db.Boolean, nullable=False, default=False)

    inventory_counts = db.relationship(
        "InventoryCount",
        back_populates="settlement",
        cascade="all, delete-orphan",
        order_by="InventoryCount.product_id",
    )

    def to_dict(self, include_counts: bool = True) -> dict:
        data = {
            "id": self.id,
            "business_date": self.business_date.isoformat() if self.business_date else None,
            "source": self.source,
            "total_orders": self.total_orders,
            "total_revenue_cents": self.total_revenue_cents,
            "total_discount_cents": self.total_discount_cents,
            "net_revenue_cents": self.net_revenue_cents,
            "device_id": self.device_id,
            "submitted_at": to_utc_z(self.submitted_at),
            "incentive_target": self.incentive_target,
            "incentive_items_sold": self.incentive_items_sold,
            "incentive_achieved": self.incentive_achieved,
        }
        if include_counts:
            data["inventory_counts"] = [count.to_dict() for count in self.inventory_counts]
        return data


class InventoryCount(db.Model):
    """Per-product count captured with a settlement: what is left and what sold."""
    __tablename__ = "inventory_counts"
    __table_args__ = (
        db.UniqueConstraint("settlement_id", "product_id", name="uq_inventory_counts_settlement_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    settlement_id = db.Column(db.Integer, db.ForeignKey("settlements.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    quantity_remaining = db.Column(db.Integer, nullable=False, default=0)
    quantity_sold = db.Column(db.Integer, nullable=False, default=0)

    settlement = db.relationship("Settlement", back_populates="inventory_counts")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity_remaining": self.quantity_remaining,
            "quantity_sold": self.quantity_sold,
        }
