# backend/stockflow/routes/inventory.py
"""
Inventory routes: overview, manual stock edits, ledger history and reports.

Write routes require the X-User-Id actor header (see decorators.require_actor).

Time semantics:
- API accepts ISO-8601 datetimes with Z/offsets; backend normalizes to UTC-naive internally.
- custom analytics windows are inclusive on both ends.
"""
from datetime import timedelta

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import StockflowError, ValidationError
from ..time_utils import parse_iso_datetime
from ..validation import pagination_args, pagination_meta, coerce_int, require_list
from ..services import stock_service, inventory_service, ledger_service
from ..decorators import require_actor


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


def _threshold_arg(name: str = "threshold") -> int:
    raw = request.args.get(name)
    if raw is None:
        return current_app.config.get("DEFAULT_LOW_STOCK_THRESHOLD", 5)
    threshold = coerce_int(raw, name)
    if threshold < 0:
        raise ValidationError(f"{name} cannot be negative")
    return threshold


@inventory_bp.get("")
def list_inventory_route():
    """
    Inventory overview with derived stock status.

    Query params:
    - page, limit
    - stock_filter: all | low | out | in (numeric approximation of status)
    """
    try:
        page, limit = pagination_args(request.args, default_limit=20)
        stock_filter = request.args.get("stock_filter", "all")
        rows, total = stock_service.get_inventory(
            page=page,
            limit=limit,
            stock_filter=stock_filter,
            threshold=_threshold_arg(),
        )
        return jsonify({"products": rows, "pagination": pagination_meta(page, limit, total)}), 200
    except StockflowError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to load inventory")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/low-stock")
def low_stock_route():
    try:
        threshold = _threshold_arg()
        rows = stock_service.get_low_stock_products(threshold)
        return jsonify({"products": rows, "threshold": threshold, "count": len(rows)}), 200
    except StockflowError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to load low stock products")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/check-stock")
def check_stock_route():
    """Availability check for cart items: {"items": [{product_id, variant_sku?, quantity}]}."""
    payload = request.get_json(silent=True) or {}
    try:
        items = [stock_service.parse_stock_item(raw) for raw in require_list(payload.get("items"), "items")]
        result = stock_service.check_stock_availability(items)
        return jsonify(result), 200
    except StockflowError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to check stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/update-stock")
@require_actor
def update_stock_route():
    """
    Single manual stock edit.

    Body: product_id, variant_sku?, type (add|remove), quantity, reason?,
    reference?, cost_cents?, notes?
    """
    payload = request.get_json(silent=True) or {}
    try:
        args = inventory_service.parse_stock_update(payload)
        entry = inventory_service.update_stock(performed_by_user_id=g.current_user_id, **args)
        return jsonify({
            "message": f"Stock {'added' if args['movement_type'] == 'add' else 'removed'} successfully",
            "entry": entry.to_dict(),
            "product_id": entry.product_id,
            "new_stock": entry.new_stock,
        }), 200
    except StockflowError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to update stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/bulk-update-stock")
@require_actor
def bulk_update_stock_route():
    """Many stock edits; each line succeeds or fails on its own."""
    payload = request.get_json(silent=True) or {}
    try:
        result = inventory_service.bulk_update_stock(
            payload.get("updates"),
            performed_by_user_id=g.current_user_id,
        )
        result["message"] = (
            f"Bulk update completed. {result['success_count']} successful, {result['error_count']} errors"
        )
        return jsonify(result), 200
    except StockflowError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to bulk update stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/stock-history/<int:product_id>")
def stock_history_route(product_id: int):
    try:
        page, limit = pagination_args(request.args, default_limit=50)
        entries, total = ledger_service.list_stock_history(
            product_id,
            variant_sku=request.args.get("variant_sku") or None,
            page=page,
            limit=limit,
        )
        return jsonify({
            "entries": [e.to_dict() for e in entries],
            "pagination": pagination_meta(page, limit, total),
        }), 200
    except StockflowError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to load stock history")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/stock-summary/<int:product_id>")
def stock_summary_route(product_id: int):
    try:
        days = coerce_int(request.args.get("days", "30"), "days")
        summary = ledger_service.get_stock_summary(
            product_id,
            variant_sku=request.args.get("variant_sku") or None,
            days=days,
        )
        return jsonify(summary), 200
    except StockflowError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to load stock summary")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/analytics")
def stock_analytics_route():
    """
    Stock movement analytics.

    period: today | yesterday | 7days | 30days | 6months | 1year | custom
    (custom requires start_date and end_date; a date-only end_date covers
    the whole day).
    """
    try:
        period = request.args.get("period", "30days")
        try:
            start = parse_iso_datetime(request.args.get("start_date"))
            end_raw = request.args.get("end_date")
            end = parse_iso_datetime(end_raw)
        except ValueError:
            raise ValidationError("start_date and end_date must be ISO-8601 dates")
        if end is not None and end_raw and "T" not in end_raw:
            end = end + timedelta(days=1) - timedelta(microseconds=1)

        analytics = ledger_service.get_stock_analytics(
            period=period,
            start=start,
            end=end,
            low_stock_threshold=_threshold_arg(),
        )
        return jsonify(analytics), 200
    except StockflowError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to load stock analytics")
        return jsonify({"error": "Internal server error"}), 500
