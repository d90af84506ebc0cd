# Overview: Flask API routes for raw materials, stock movements and low-stock alerts.

# backend/posledger/routes/materials.py
"""
Material and stock ledger routes.

Stock balances only move through the movement endpoints (stock-in, adjust,
waste) or through order consumption; PATCH on a material never touches stock.
Quantities are decimal strings or numbers in the material's unit.
"""

from flask import Blueprint, current_app, jsonify, request

from ..services import material_service, stock_service
from ..services.concurrency import RetryableError
from ..services.stock_service import MaterialNotFoundError, StockError
from ..validation import ValidationError, coerce_datetime, coerce_int


materials_bp = Blueprint("materials", __name__, url_prefix="/api/materials")


@materials_bp.get("")
def list_materials_route():
    try:
        materials = material_service.list_materials(
            search=request.args.get("search") or None,
            status=request.args.get("status") or None,
        )
        return jsonify({"materials": [m.to_dict() for m in materials]}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


@materials_bp.post("")
def create_material_route():
    try:
        data = request.get_json(silent=True) or {}
        material = material_service.create_material(
            name=data.get("name"),
            unit=data.get("unit"),
            current_stock=data.get("current_stock", 0),
            alert_threshold=data.get("alert_threshold", 0),
        )
        return jsonify({"material": material.to_dict()}), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create material")
        return jsonify({"error": "Internal server error"}), 500


@materials_bp.get("/<int:material_id>")
def get_material_route(material_id: int):
    material = material_service.get_material(material_id)
    if not material:
        return jsonify({"error": "Material not found"}), 404
    return jsonify({"material": material.to_dict()}), 200


@materials_bp.patch("/<int:material_id>")
def update_material_route(material_id: int):
    try:
        data = request.get_json(silent=True) or {}
        if "current_stock" in data:
            return jsonify({"error": "current_stock changes go through stock-in, adjust or waste"}), 400

        material = material_service.update_material(
            material_id,
            name=data.get("name"),
            unit=data.get("unit"),
            alert_threshold=data.get("alert_threshold"),
        )
        if not material:
            return jsonify({"error": "Material not found"}), 404
        return jsonify({"material": material.to_dict()}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to update material")
        return jsonify({"error": "Internal server error"}), 500


@materials_bp.post("/<int:material_id>/toggle")
def toggle_material_route(material_id: int):
    material = material_service.toggle_material_status(material_id)
    if not material:
        return jsonify({"error": "Material not found"}), 404
    return jsonify({"material": material.to_dict()}), 200


@materials_bp.delete("/<int:material_id>")
def delete_material_route(material_id: int):
    """Refused (409) while any recipe uses the material."""
    if not material_service.get_material(material_id):
        return jsonify({"error": "Material not found"}), 404

    if not material_service.delete_material(material_id):
        return jsonify({"error": "Material is used by a product recipe"}), 409
    return jsonify({"deleted": True}), 200


def _movement(material_id: int, operation, amount_field: str, action: str):
    """Shared body of the stock-in / adjust / waste endpoints."""
    try:
        data = request.get_json(silent=True) or {}
        record = operation(
            material_id,
            data.get(amount_field),
            note=data.get("note"),
            operator_id=coerce_int("operator_id", data.get("operator_id"), allow_none=True),
        )
        material = material_service.get_material(material_id)
        return jsonify({"record": record.to_dict(), "material": material.to_dict()}), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except MaterialNotFoundError as e:
        return jsonify({"error": str(e), "details": e.details}), 404
    except StockError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except RetryableError as e:
        return jsonify({"error": str(e), "retryable": True}), 503
    except Exception:
        current_app.logger.exception("Failed to record stock %s", action)
        return jsonify({"error": "Internal server error"}), 500


@materials_bp.post("/<int:material_id>/stock-in")
def stock_in_route(material_id: int):
    """{"quantity": "500", "note": "..."}"""
    return _movement(material_id, stock_service.stock_in, "quantity", "in")


@materials_bp.post("/<int:material_id>/adjust")
def adjust_stock_route(material_id: int):
    """{"new_stock": "120.5", "note": "..."} sets the balance absolutely."""
    return _movement(material_id, stock_service.adjust_stock, "new_stock", "adjustment")


@materials_bp.post("/<int:material_id>/waste")
def waste_route(material_id: int):
    return _movement(material_id, stock_service.waste, "quantity", "waste")


@materials_bp.get("/records")
def list_records_route():
    """Query: material_id, change_type, start, end, page, page_size."""
    try:
        page = coerce_int("page", request.args.get("page"), allow_none=True) or 1
        page_size = coerce_int("page_size", request.args.get("page_size"), allow_none=True) or 20
        records, total = stock_service.list_stock_records(
            material_id=coerce_int("material_id", request.args.get("material_id"), allow_none=True),
            change_type=request.args.get("change_type") or None,
            start=coerce_datetime("start", request.args.get("start")),
            end=coerce_datetime("end", request.args.get("end")),
            page=page,
            page_size=page_size,
        )
        return jsonify({
            "records": [r.to_dict() for r in records],
            "total": total,
            "page": page,
            "page_size": page_size,
        }), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to list stock records")
        return jsonify({"error": "Internal server error"}), 500


@materials_bp.get("/alerts")
def list_alerts_route():
    alerts = stock_service.list_active_alerts()
    return jsonify({"alerts": [a.to_dict() for a in alerts]}), 200


@materials_bp.post("/alerts/<int:alert_id>/resolve")
def resolve_alert_route(alert_id: int):
    """Idempotent; unknown or already-resolved ids still answer resolved=true."""
    alert = stock_service.resolve_alert(alert_id)
    return jsonify({"resolved": True, "alert": alert.to_dict() if alert else None}), 200


@materials_bp.get("/status")
def status_summary_route():
    summary = stock_service.get_material_status_summary()
    return jsonify(summary.to_dict()), 200


@materials_bp.get("/low-stock")
def low_stock_route():
    materials = stock_service.list_low_stock_materials()
    return jsonify({"materials": [m.to_dict() for m in materials]}), 200
