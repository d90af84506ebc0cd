# Overview: Flask API routes for manual end-of-day settlements.

# backend/posledger/routes/settlements.py
from flask import Blueprint, current_app, jsonify, request

from ..services import settlement_service
from ..services.concurrency import RetryableError
from ..validation import ValidationError, coerce_int


settlements_bp = Blueprint("settlements", __name__, url_prefix="/api/settlements")


@settlements_bp.post("")
def submit_settlement_route():
    """
    Submit today's settlement. Totals are recomputed from today's completed
    orders; the body only carries incentive fields and inventory counts.
    """
    try:
        data = request.get_json(silent=True) or {}
        settlement = settlement_service.submit_settlement(data)
        return jsonify({"settlement": settlement.to_dict()}), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except RetryableError as e:
        return jsonify({"error": str(e), "retryable": True}), 503
    except Exception:
        current_app.logger.exception("Failed to submit settlement")
        return jsonify({"error": "Internal server error"}), 500


@settlements_bp.get("")
def list_settlements_route():
    try:
        page = coerce_int("page", request.args.get("page"), allow_none=True) or 1
        page_size = coerce_int("page_size", request.args.get("page_size"), allow_none=True) or 20
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    settlements, total = settlement_service.list_settlements(page=page, page_size=page_size)
    return jsonify({
        "settlements": [s.to_dict(include_counts=False) for s in settlements],
        "total": total,
        "page": page,
        "page_size": page_size,
    }), 200


@settlements_bp.get("/today")
def today_settlement_route():
    settlement = settlement_service.get_today_settlement()
    return jsonify({"settlement": settlement.to_dict() if settlement else None}), 200


@settlements_bp.get("/<int:settlement_id>")
def get_settlement_route(settlement_id: int):
    settlement = settlement_service.get_settlement(settlement_id)
    if not settlement:
        return jsonify({"error": "Settlement not found"}), 404
    return jsonify({"settlement": settlement.to_dict()}), 200
