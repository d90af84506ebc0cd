# Overview: Flask API routes for the terminal's work shift; open, inspect and close.

# backend/posledger/routes/shifts.py
from flask import Blueprint, current_app, jsonify, request

from ..services import shift_service
from ..services.concurrency import RetryableError
from ..services.shift_service import ShiftError, ShiftNotFoundError
from ..validation import ValidationError, coerce_str


shifts_bp = Blueprint("shifts", __name__, url_prefix="/api/pos/shift")


@shifts_bp.post("/open")
def open_shift_route():
    """{"device_id": "T1"}; 409 if the device already has an OPEN shift."""
    try:
        data = request.get_json(silent=True) or {}
        device_id = coerce_str("device_id", data.get("device_id"), max_length=128)
        shift = shift_service.open_shift(device_id)
        return jsonify({"shift": shift.to_dict()}), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ShiftError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except RetryableError as e:
        return jsonify({"error": str(e), "retryable": True}), 503
    except Exception:
        current_app.logger.exception("Failed to open shift")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.get("/current")
def current_shift_route():
    device_id = request.args.get("device_id") or None
    shift = shift_service.get_current_open_shift(device_id)
    return jsonify({"shift": shift.to_dict() if shift else None}), 200


@shifts_bp.get("/<int:shift_id>")
def get_shift_route(shift_id: int):
    shift = shift_service.get_shift(shift_id)
    if not shift:
        return jsonify({"error": "Shift not found"}), 404

    data = shift.to_dict()
    data["orders"] = [order.to_dict() for order in shift.orders]
    return jsonify({"shift": data}), 200


@shifts_bp.post("/<int:shift_id>/close")
def close_shift_route(shift_id: int):
    """
    Close the shift and return it with its settlement.

    Body (all optional): incentive_target, incentive_items_sold,
    incentive_achieved, inventory_counts.
    """
    try:
        data = request.get_json(silent=True) or {}
        shift, settlement = shift_service.close_shift(shift_id, data)
        return jsonify({"shift": shift.to_dict(), "settlement": settlement.to_dict()}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ShiftNotFoundError as e:
        return jsonify({"error": str(e), "details": e.details}), 404
    except ShiftError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except RetryableError as e:
        return jsonify({"error": str(e), "retryable": True}), 503
    except Exception:
        current_app.logger.exception("Failed to close shift")
        return jsonify({"error": "Internal server error"}), 500
