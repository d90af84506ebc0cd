# Overview: Flask API routes for order intake and order queries; parses input and returns JSON responses.

# backend/posledger/routes/orders.py
"""
Order routes.

Terminal-facing intake lives under /api/pos; back-office queries under /api/orders.
A retried offline submission is absorbed by the batch and sync endpoints and
reported as 409 by the single-order endpoint.
"""

from datetime import date

from flask import Blueprint, current_app, jsonify, request

from ..services import order_service
from ..services.concurrency import RetryableError
from ..services.order_service import OrderConflictError
from ..time_utils import get_clock
from ..validation import ValidationError, coerce_datetime, coerce_int


orders_bp = Blueprint("orders", __name__, url_prefix="/api")


def _page_args() -> tuple[int, int]:
    page = coerce_int("page", request.args.get("page"), allow_none=True) or 1
    page_size = coerce_int("page_size", request.args.get("page_size"), allow_none=True) or 20
    return page, page_size


@orders_bp.post("/pos/orders")
def create_order_route():
    """Record one order from a terminal."""
    try:
        data = request.get_json(silent=True)
        if data is None:
            return jsonify({"error": "JSON body required"}), 400

        order = order_service.create_order(data)
        return jsonify({
            "order_id": order.id,
            "order_number": order.order_number,
            "daily_sequence": order.daily_sequence,
            "total_cents": order.total_cents,
            "order": order.to_dict(),
        }), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except OrderConflictError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except RetryableError as e:
        return jsonify({"error": str(e), "retryable": True}), 503
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/pos/orders/batch")
def batch_create_orders_route():
    """
    Offline queue flush: {"orders": [<order>, ...]}.

    Duplicates are skipped silently; `synced` counts only new orders.
    """
    try:
        data = request.get_json(silent=True) or {}
        orders = order_service.batch_create(data.get("orders"))
        return jsonify({
            "synced": len(orders),
            "orders": [order.to_dict(include_lines=False) for order in orders],
        }), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except OrderConflictError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except RetryableError as e:
        return jsonify({"error": str(e), "retryable": True}), 503
    except Exception:
        current_app.logger.exception("Failed to batch create orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/pos/sync/orders")
def sync_orders_route():
    """
    Sync envelope used by the terminal's local queue:
    {"orders": [{"local_id": "...", "request": <order>}, ...]}.
    """
    try:
        data = request.get_json(silent=True) or {}
        entries = data.get("orders")
        if not isinstance(entries, list):
            return jsonify({"error": "orders must be a list"}), 400

        payloads = []
        for idx, entry in enumerate(entries):
            if not isinstance(entry, dict):
                return jsonify({"error": f"orders[{idx}] must be an object"}), 400
            payloads.append(entry.get("request", entry))

        created = order_service.batch_create(payloads)
        return jsonify({"synced_count": len(created)}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except OrderConflictError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except RetryableError as e:
        return jsonify({"error": str(e), "retryable": True}), 503
    except Exception:
        current_app.logger.exception("Failed to sync orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/orders")
def list_orders_route():
    """
    List orders, newest first.

    Query: status, start, end (ISO-8601, [start, end)), device_id, shift_id, page, page_size.
    """
    try:
        page, page_size = _page_args()
        orders, total = order_service.list_orders(
            status=request.args.get("status") or None,
            start=coerce_datetime("start", request.args.get("start")),
            end=coerce_datetime("end", request.args.get("end")),
            device_id=request.args.get("device_id") or None,
            shift_id=coerce_int("shift_id", request.args.get("shift_id"), allow_none=True),
            page=page,
            page_size=page_size,
        )
        return jsonify({
            "orders": [order.to_dict() for order in orders],
            "total": total,
            "page": page,
            "page_size": page_size,
        }), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/orders/stats")
def order_stats_route():
    """Counts and revenue for one business day (?date=YYYY-MM-DD, default today)."""
    raw = request.args.get("date")
    if raw:
        try:
            day = date.fromisoformat(raw)
        except ValueError:
            return jsonify({"error": "date must be YYYY-MM-DD"}), 400
    else:
        day = get_clock().today()

    try:
        stats = order_service.get_stats(day)
        return jsonify(stats.to_dict()), 200
    except Exception:
        current_app.logger.exception("Failed to compute order stats")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/orders/<int:order_id>")
def get_order_route(order_id: int):
    order = order_service.get_order(order_id)
    if not order:
        return jsonify({"error": "Order not found"}), 404
    return jsonify({"order": order.to_dict()}), 200


@orders_bp.patch("/orders/<int:order_id>/status")
def update_order_status_route(order_id: int):
    """Cancel a completed order: {"status": "CANCELLED"}."""
    try:
        data = request.get_json(silent=True) or {}
        status = data.get("status")
        if not status:
            return jsonify({"error": "status required"}), 400

        order = order_service.update_order_status(order_id, status)
        if not order:
            return jsonify({"error": "Order not found"}), 404
        return jsonify({"order": order.to_dict()}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except OrderConflictError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500
