# Overview: Flask API routes for purchases and stock adjustments.

# backend/stockflow/routes/purchases.py
"""
Stock-in (purchases) and stock-out (adjustments) documents.

Both validate every line before touching stock; a bad line rejects the
request with details.errors listing each failing line.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import StockflowError
from ..validation import pagination_args, pagination_meta
from ..services import purchase_service, adjustment_service
from ..decorators import require_actor


purchases_bp = Blueprint("purchases", __name__, url_prefix="/api/inventory/purchases")
adjustments_bp = Blueprint("stock_adjustments", __name__, url_prefix="/api/inventory/stock-adjustments")


@purchases_bp.post("")
@require_actor
def create_purchase_route():
    """
    Record a purchase.

    Body: {"items": [{product_id, variant_sku?, quantity, unit_cost_cents}], "notes"?}
    """
    payload = request.get_json(silent=True) or {}
    try:
        purchase = purchase_service.create_purchase(
            payload.get("items"),
            performed_by_user_id=g.current_user_id,
            notes=payload.get("notes"),
        )
        return jsonify({"purchase": purchase.to_dict()}), 201
    except StockflowError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to create purchase")
        return jsonify({"error": "Internal server error"}), 500


@purchases_bp.get("")
def list_purchases_route():
    try:
        page, limit = pagination_args(request.args, default_limit=20)
        purchases, total = purchase_service.list_purchases(page=page, limit=limit)
        return jsonify({
            "purchases": [p.to_dict(include_lines=False) for p in purchases],
            "pagination": pagination_meta(page, limit, total),
        }), 200
    except StockflowError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to list purchases")
        return jsonify({"error": "Internal server error"}), 500


@purchases_bp.get("/<int:purchase_id>")
def get_purchase_route(purchase_id: int):
    try:
        purchase = purchase_service.get_purchase(purchase_id)
        return jsonify({"purchase": purchase.to_dict()}), 200
    except StockflowError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to load purchase")
        return jsonify({"error": "Internal server error"}), 500


@adjustments_bp.post("")
@require_actor
def create_adjustment_route():
    """
    Record a stock adjustment.

    Body: {"items": [{product_id, variant_sku?, quantity, reason, notes?}], "notes"?}
    reason: damaged | expired | lost | theft | returned | defective | waste | other
    """
    payload = request.get_json(silent=True) or {}
    try:
        adjustment = adjustment_service.create_stock_adjustment(
            payload.get("items"),
            performed_by_user_id=g.current_user_id,
            notes=payload.get("notes"),
        )
        return jsonify({"adjustment": adjustment.to_dict()}), 201
    except StockflowError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to create stock adjustment")
        return jsonify({"error": "Internal server error"}), 500


@adjustments_bp.get("")
def list_adjustments_route():
    try:
        page, limit = pagination_args(request.args, default_limit=20)
        adjustments, total = adjustment_service.list_stock_adjustments(page=page, limit=limit)
        return jsonify({
            "adjustments": [a.to_dict(include_lines=False) for a in adjustments],
            "pagination": pagination_meta(page, limit, total),
        }), 200
    except StockflowError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to list stock adjustments")
        return jsonify({"error": "Internal server error"}), 500


@adjustments_bp.get("/<int:adjustment_id>")
def get_adjustment_route(adjustment_id: int):
    try:
        adjustment = adjustment_service.get_stock_adjustment(adjustment_id)
        return jsonify({"adjustment": adjustment.to_dict()}), 200
    except StockflowError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to load stock adjustment")
        return jsonify({"error": "Internal server error"}), 500
