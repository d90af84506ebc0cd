from __future__ import annotations

from ..extensions import db
from posledger.time_utils import to_utc_z


class Product(db.Model):
    """
    Product master data, as far as the ledger needs it.

    Catalog editing lives outside this service. Orders only snapshot
    name/price from here and recipes hang off the product id.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(64), nullable=True)

    # Authoritative storage in cents
    price_cents = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    recipes = db.relationship(
        "ProductRecipe",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="ProductRecipe.id",
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "price_cents": self.price_cents,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductRecipe(db.Model):
    """
    Bill of materials row: one unit of product consumes `quantity` of a material.

    Read-only for order processing. A material referenced here cannot be deleted.
    """
    __tablename__ = "product_recipes"
    __table_args__ = (
        db.UniqueConstraint("product_id", "material_id", name="uq_product_recipes_product_material"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    material_id = db.Column(db.Integer, db.ForeignKey("materials.id"), nullable=False, index=True)

    # Per-unit consumption in the material's unit (g, ml, pcs...)
    quantity = db.Column(db.Numeric(12, 3), nullable=False)

    product = db.relationship("Product", back_populates="recipes")
    material = db.relationship("Material", back_populates="recipes")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "material_id": self.material_id,
            "material_name": self.material.name if self.material else None,
            "unit": self.material.unit if self.material else None,
            "quantity": str(self.quantity),
        }
