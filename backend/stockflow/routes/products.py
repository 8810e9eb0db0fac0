# Overview: Flask API routes for product stock fields; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import StockflowError
from ..services import products_service
from ..services.stock_service import product_stock_status
from ..decorators import require_actor


products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _product_payload(product) -> dict:
    data = product.to_dict()
    data["stock_status"] = product_stock_status(product)
    return data


@products_bp.post("")
@require_actor
def create_product_route():
    """
    Create a product with optional variants.

    Initial stock (total_stock or per-variant stock_quantity) is logged as
    an 'Initial stock' ledger entry.
    """
    payload = request.get_json(silent=True) or {}
    try:
        product = products_service.create_product(payload, performed_by_user_id=g.current_user_id)
        return jsonify({"product": _product_payload(product)}), 201
    except StockflowError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/<int:product_id>")
def get_product_route(product_id: int):
    try:
        product = products_service.get_product(product_id)
        return jsonify({"product": _product_payload(product)}), 200
    except StockflowError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to load product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.patch("/<int:product_id>/stock-fields")
@require_actor
def update_stock_fields_route(product_id: int):
    """
    Edit stock-related fields (stock counts, cost/current price, thresholds).

    Every stock count change is diffed against the stored value and logged.
    """
    payload = request.get_json(silent=True) or {}
    try:
        product, changes = products_service.update_product_stock_fields(
            product_id,
            payload,
            performed_by_user_id=g.current_user_id,
        )
        return jsonify({"product": _product_payload(product), "stock_changes": changes}), 200
    except StockflowError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to update product stock fields")
        return jsonify({"error": "Internal server error"}), 500
