# Overview: Material catalog maintenance; create, edit, activate and guarded delete.

from __future__ import annotations

import logging

from sqlalchemy import or_

from ..extensions import db
from ..models import Material, ProductRecipe
from ..models.materials import CHANGE_ADJUST, MATERIAL_ACTIVE, MATERIAL_INACTIVE
from ..validation import ValidationError, coerce_decimal, coerce_str
from .stock_service import _write_record

logger = logging.getLogger(__name__)

MATERIAL_STATUSES = (MATERIAL_ACTIVE, MATERIAL_INACTIVE)


def _coerce_non_negative(field: str, value):
    result = coerce_decimal(field, value)
    if result < 0:
        raise ValidationError(f"{field} must be >= 0")
    return result


def get_material(material_id: int) -> Material | None:
    return db.session.get(Material, material_id)


def list_materials(search: str | None = None, status: str | None = None) -> list[Material]:
    query = db.session.query(Material)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(Material.name.ilike(pattern), Material.unit.ilike(pattern)))
    if status:
        if status not in MATERIAL_STATUSES:
            raise ValidationError(f"status must be one of {', '.join(MATERIAL_STATUSES)}")
        query = query.filter(Material.status == status)
    return query.order_by(Material.name, Material.id).all()


def create_material(
    name: str,
    unit: str,
    current_stock=0,
    alert_threshold=0,
    status: str = MATERIAL_ACTIVE,
) -> Material:
    """
    Add a material. A non-zero starting balance is booked as an ADJUST record
    so the ledger explains it.
    """
    name = coerce_str("name", name, max_length=128, allow_none=False)
    unit = coerce_str("unit", unit, max_length=16, allow_none=False)
    opening = _coerce_non_negative("current_stock", current_stock)
    threshold = _coerce_non_negative("alert_threshold", alert_threshold)
    if status not in MATERIAL_STATUSES:
        raise ValidationError(f"status must be one of {', '.join(MATERIAL_STATUSES)}")

    material = Material(
        name=name,
        unit=unit,
        current_stock=0,
        alert_threshold=threshold,
        status=status,
    )
    try:
        db.session.add(material)
        db.session.flush()
        if opening > 0:
            _write_record(material, CHANGE_ADJUST, opening, note="Opening balance")
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Material %s (%s) created with stock %s", material.id, material.name, opening)
    return material


def update_material(
    material_id: int,
    *,
    name: str | None = None,
    unit: str | None = None,
    alert_threshold=None,
) -> Material | None:
    """Edit descriptive fields. Stock only moves through stock_service."""
    material = db.session.get(Material, material_id)
    if not material:
        return None

    if name is not None:
        material.name = coerce_str("name", name, max_length=128, allow_none=False)
    if unit is not None:
        material.unit = coerce_str("unit", unit, max_length=16, allow_none=False)
    if alert_threshold is not None:
        material.alert_threshold = _coerce_non_negative("alert_threshold", alert_threshold)

    db.session.commit()
    return material


def toggle_material_status(material_id: int) -> Material | None:
    material = db.session.get(Material, material_id)
    if not material:
        return None

    material.status = MATERIAL_INACTIVE if material.status == MATERIAL_ACTIVE else MATERIAL_ACTIVE
    db.session.commit()
    logger.info("Material %s is now %s", material.id, material.status)
    return material


def delete_material(material_id: int) -> bool:
    """
    Delete a material with its stock records and alerts.

    Returns False when the id is unknown or any recipe still uses the material.
    """
    material = db.session.get(Material, material_id)
    if not material:
        return False

    in_use = (
        db.session.query(ProductRecipe.id)
        .filter(ProductRecipe.material_id == material_id)
        .first()
    )
    if in_use:
        logger.warning("Material %s is referenced by a recipe; not deleting", material_id)
        return False

    db.session.delete(material)
    db.session.commit()
    logger.info("Material %s deleted", material_id)
    return True
