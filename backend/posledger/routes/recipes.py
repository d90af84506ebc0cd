# Overview: Flask API routes for product recipes (bill of materials).

# backend/posledger/routes/recipes.py
from flask import Blueprint, current_app, jsonify, request

from ..services import recipe_service
from ..validation import ValidationError


recipes_bp = Blueprint("recipes", __name__, url_prefix="/api")


@recipes_bp.get("/recipes")
def list_products_with_recipes_route():
    return jsonify({"products": recipe_service.get_products_with_recipes()}), 200


@recipes_bp.get("/products/<int:product_id>/recipes")
def get_product_recipes_route(product_id: int):
    recipes = recipe_service.get_recipes_for_product(product_id)
    return jsonify({"product_id": product_id, "recipes": [r.to_dict() for r in recipes]}), 200


@recipes_bp.put("/products/<int:product_id>/recipes")
def update_product_recipes_route(product_id: int):
    """Replace the recipe: {"recipes": [{"material_id": 1, "quantity": "60"}, ...]}."""
    try:
        data = request.get_json(silent=True) or {}
        recipes = recipe_service.update_recipes(product_id, data.get("recipes"))
        return jsonify({"product_id": product_id, "recipes": [r.to_dict() for r in recipes]}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to update recipes")
        return jsonify({"error": "Internal server error"}), 500
