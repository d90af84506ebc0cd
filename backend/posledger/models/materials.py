from __future__ import annotations

from ..extensions import db
from posledger.time_utils import to_utc_z


MATERIAL_ACTIVE = "ACTIVE"
MATERIAL_INACTIVE = "INACTIVE"

CHANGE_IN = "IN"          # goods received
CHANGE_OUT = "OUT"        # consumed by an order
CHANGE_ADJUST = "ADJUST"  # stock-take correction
CHANGE_WASTE = "WASTE"    # spoilage / write-off
CHANGE_TYPES = (CHANGE_IN, CHANGE_OUT, CHANGE_ADJUST, CHANGE_WASTE)


def _qty(value) -> str | None:
    return str(value) if value is not None else None


class Material(db.Model):
    """
    Raw ingredient with a cached stock balance.

    current_stock is a cache of the stock_change_records ledger and is only
    changed by stock_service, always together with a new record. Never negative.
    """
    __tablename__ = "materials"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False, index=True)
    unit = db.Column(db.String(16), nullable=False)  # g / ml / pcs / pack

    current_stock = db.Column(db.Numeric(12, 3), nullable=False, default=0)
    alert_threshold = db.Column(db.Numeric(12, 3), nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default=MATERIAL_ACTIVE, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    recipes = db.relationship("ProductRecipe", back_populates="material")

    @property
    def is_low_stock(self) -> bool:
        return self.current_stock <= self.alert_threshold

    def __repr__(self) -> str:
        return f"<Material id={self.id} name={self.name!r} stock={self.current_stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "unit": self.unit,
            "current_stock": _qty(self.current_stock),
            "alert_threshold": _qty(self.alert_threshold),
            "status": self.status,
            "is_low_stock": self.is_low_stock,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockChangeRecord(db.Model):
    """
    Append-only stock ledger entry.

    INVARIANT: stock_after = stock_before + quantity, and stock_after equals
    material.current_stock at the moment the row was written.
    """
    __tablename__ = "stock_change_records"
    __table_args__ = (
        db.Index("ix_stock_records_material_created", "material_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    material_id = db.Column(db.Integer, db.ForeignKey("materials.id"), nullable=False, index=True)
    change_type = db.Column(db.String(16), nullable=False, index=True)

    # Signed delta actually applied to the balance
    quantity = db.Column(db.Numeric(12, 3), nullable=False)
    stock_before = db.Column(db.Numeric(12, 3), nullable=False)
    stock_after = db.Column(db.Numeric(12, 3), nullable=False)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    note = db.Column(db.String(255), nullable=True)
    operator_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, index=True)

    material = db.relationship("Material", backref=db.backref("stock_records", lazy=True, cascade="all, delete-orphan"))
    order = db.relationship("Order")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "material_id": self.material_id,
            "material_name": self.material.name if self.material else None,
            "change_type": self.change_type,
            "quantity": _qty(self.quantity),
            "stock_before": _qty(self.stock_before),
            "stock_after": _qty(self.stock_after),
            "order_id": self.order_id,
            "note": self.note,
            "operator_id": self.operator_id,
            "created_at": to_utc_z(self.created_at),
        }


class MaterialAlert(db.Model):
    """
    Low-stock alert (stock <= threshold).

    At most one unresolved alert per material. Stock level and threshold are
    captured at raise time.
    """
    __tablename__ = "material_alerts"
    __table_args__ = (
        db.Index("ix_material_alerts_material_resolved", "material_id", "is_resolved"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    material_id = db.Column(db.Integer, db.ForeignKey("materials.id"), nullable=False, index=True)

    stock_level = db.Column(db.Numeric(12, 3), nullable=False)
    alert_threshold = db.Column(db.Numeric(12, 3), nullable=False)

    # Set by the external notifier once the alert has been pushed out
    is_notified = db.Column(db.Boolean, nullable=False, default=False)
    notified_at = db.Column(db.DateTime, nullable=True)

    is_resolved = db.Column(db.Boolean, nullable=False, default=False)
    resolved_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False)

    material = db.relationship("Material", backref=db.backref("alerts", lazy=True, cascade="all, delete-orphan"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "material_id": self.material_id,
            "material_name": self.material.name if self.material else None,
            "stock_level": _qty(self.stock_level),
            "alert_threshold": _qty(self.alert_threshold),
            "is_notified": self.is_notified,
            "notified_at": to_utc_z(self.notified_at),
            "is_resolved": self.is_resolved,
            "resolved_at": to_utc_z(self.resolved_at),
            "created_at": to_utc_z(self.created_at),
        }
