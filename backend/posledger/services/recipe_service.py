# Overview: Read access to product recipes (bill of materials) plus recipe replacement.

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Iterable

from sqlalchemy.orm import joinedload

from ..extensions import db
from ..models import Material, Product, ProductRecipe
from ..validation import ValidationError, coerce_int, coerce_positive_decimal

logger = logging.getLogger(__name__)


def get_recipes_for_product(product_id: int) -> list[ProductRecipe]:
    return (
        db.session.query(ProductRecipe)
        .options(joinedload(ProductRecipe.material))
        .filter(ProductRecipe.product_id == product_id)
        .order_by(ProductRecipe.material_id)
        .all()
    )


def get_recipes_for_products(product_ids: Iterable[int]) -> dict[int, list[ProductRecipe]]:
    """Recipes for several products in one query, keyed by product id."""
    ids = {pid for pid in product_ids if pid is not None}
    result: dict[int, list[ProductRecipe]] = {pid: [] for pid in ids}
    if not ids:
        return result

    rows = (
        db.session.query(ProductRecipe)
        .filter(ProductRecipe.product_id.in_(ids))
        .order_by(ProductRecipe.product_id, ProductRecipe.material_id)
        .all()
    )
    for row in rows:
        result[row.product_id].append(row)
    return result


def _normalize_rows(rows) -> dict[int, Decimal]:
    if rows is None:
        raise ValidationError("recipes is required")
    if not isinstance(rows, list):
        raise ValidationError("recipes must be a list")

    normalized: dict[int, Decimal] = {}
    for idx, row in enumerate(rows):
        if not isinstance(row, dict):
            raise ValidationError(f"recipes[{idx}] must be an object")
        material_id = coerce_int(f"recipes[{idx}].material_id", row.get("material_id"))
        quantity = coerce_positive_decimal(f"recipes[{idx}].quantity", row.get("quantity"))
        if material_id in normalized:
            raise ValidationError(f"material {material_id} listed twice")
        normalized[material_id] = quantity
    return normalized


def update_recipes(product_id: int, rows: list[dict]) -> list[ProductRecipe]:
    """
    Replace a product's recipe with `rows` ([{material_id, quantity}, ...]).

    The product and every material are checked before anything is written.
    """
    normalized = _normalize_rows(rows)

    product = db.session.get(Product, product_id)
    if not product:
        raise ValidationError("Product not found")

    if normalized:
        found = {
            mid for (mid,) in db.session.query(Material.id)
            .filter(Material.id.in_(normalized.keys()))
            .all()
        }
        missing = sorted(set(normalized) - found)
        if missing:
            raise ValidationError(f"Unknown material id(s): {', '.join(str(m) for m in missing)}")

    try:
        db.session.query(ProductRecipe).filter_by(product_id=product_id).delete()
        for material_id, quantity in normalized.items():
            db.session.add(ProductRecipe(
                product_id=product_id,
                material_id=material_id,
                quantity=quantity,
            ))
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Recipe for product %s replaced (%d materials)", product_id, len(normalized))
    db.session.expire(product, ["recipes"])
    return get_recipes_for_product(product_id)


def get_products_with_recipes() -> list[dict]:
    products = (
        db.session.query(Product)
        .options(joinedload(Product.recipes).joinedload(ProductRecipe.material))
        .filter(Product.is_active.is_(True))
        .order_by(Product.name)
        .all()
    )
    return [
        {
            **product.to_dict(),
            "recipes": [recipe.to_dict() for recipe in product.recipes],
        }
        for product in products
    ]
