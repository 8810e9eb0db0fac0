# Overview: Flask API routes for orders; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import StockflowError
from ..validation import pagination_args, pagination_meta
from ..services import fulfillment_service
from ..decorators import require_actor


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.post("")
@require_actor
def create_order_route():
    """
    Create an order for the acting user.

    Body: items[], shipping_address, payment_method, coupon_code?,
    coupon_discount_cents?, loyalty_points_used?, loyalty_discount_cents?,
    shipping_cost_cents?, notes?
    """
    payload = request.get_json(silent=True) or {}
    try:
        order = fulfillment_service.create_order(
            user_id=g.current_user_id,
            items=payload.get("items"),
            shipping_address=payload.get("shipping_address"),
            payment_method=payload.get("payment_method"),
            coupon_code=payload.get("coupon_code"),
            coupon_discount_cents=payload.get("coupon_discount_cents", 0),
            loyalty_points_used=payload.get("loyalty_points_used", 0),
            loyalty_discount_cents=payload.get("loyalty_discount_cents", 0),
            shipping_cost_cents=payload.get("shipping_cost_cents", 0),
            notes=payload.get("notes"),
        )
        return jsonify({"order": order.to_dict()}), 201
    except StockflowError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("")
def list_orders_route():
    try:
        page, limit = pagination_args(request.args, default_limit=20)
        orders, total = fulfillment_service.list_orders(
            user_id=request.args.get("user_id") or None,
            status=request.args.get("status") or None,
            page=page,
            limit=limit,
        )
        return jsonify({
            "orders": [o.to_dict(include_items=False) for o in orders],
            "pagination": pagination_meta(page, limit, total),
        }), 200
    except StockflowError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
def get_order_route(order_id: int):
    try:
        order = fulfillment_service.get_order(order_id)
        return jsonify({"order": order.to_dict()}), 200
    except StockflowError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to load order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.patch("/<int:order_id>")
@require_actor
def update_order_route(order_id: int):
    """
    Drive the order lifecycle.

    Body: status?, payment_status?, note?, admin_notes?
    A status equal to the current one is ignored; any other edge outside
    the transition table returns 400 naming both states.
    """
    payload = request.get_json(silent=True) or {}
    try:
        order = fulfillment_service.update_order(
            order_id,
            actor_user_id=g.current_user_id,
            status=payload.get("status"),
            payment_status=payload.get("payment_status"),
            note=payload.get("note"),
            admin_notes=payload.get("admin_notes"),
        )
        return jsonify({"order": order.to_dict()}), 200
    except StockflowError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to update order")
        return jsonify({"error": "Internal server error"}), 500
