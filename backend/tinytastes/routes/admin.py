# backend/tinytastes/routes/admin.py
"""
Tiny Tastes Admin API

- POST   /api/admin/bulk-restock              - Restock many entries, per-item results
- GET    /api/admin/inventory-statistics      - Totals, weekly restock list or low stock list
- POST   /api/admin/process-expired-payments  - Run the payment timeout sweep now
- GET    /api/admin/payment-statistics        - Order counts per payment status
- PUT    /api/admin/order-status              - Move an order through its lifecycle
- PUT    /api/admin/payment-status            - Record payment outcome for an order
- DELETE /api/admin/products/<id>             - Retire a product

SECURITY:
- Every route is throttled per client address (@rate_limited)
- Authorization happens in front of this API, not here
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import InventoryError, AlreadyProcessedError, http_status_for
from ..services import catalog_service, security_service
from ..services.registry import get_services
from ..validation import (
    ValidationError,
    coerce_int,
    parse_order_status_payload,
    parse_payment_status_payload,
    parse_restock_items,
)
from ..decorators import rate_limited


admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


def _audit(event_type: str, reason: str) -> None:
    security_service.log_security_event(
        event_type=event_type,
        success=True,
        resource=request.path,
        action=request.method,
        reason=reason,
        ip_address=request.remote_addr,
        user_agent=request.headers.get("User-Agent"),
    )


@admin_bp.post("/bulk-restock")
@rate_limited
def bulk_restock_route():
    """
    Restock several stock entries.

    Request body:
        {"items": [{"product_id": 1, "portion_size_id": 2, "amount": 10, "weekly_limit": 50}]}

    Each item succeeds or fails on its own; the response lists both.

    Response:
        {"result": {"succeeded": 1, "failed": 1, "results": [...]}, "statistics": {...}}
    """
    try:
        items = parse_restock_items(request.get_json(silent=True))
        ledger = get_services().ledger

        result = ledger.bulk_restock(items)

        return jsonify({
            "result": result.to_dict(),
            "statistics": ledger.statistics(use_cache=False),
        }), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to bulk restock")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.get("/inventory-statistics")
@rate_limited
def inventory_statistics_route():
    """
    Inventory dashboard data.

    Query params:
        type: statistics (default) | weekly-restock | low-stock
        threshold: low-stock threshold override (low-stock only)
    """
    try:
        ledger = get_services().ledger
        kind = request.args.get("type", "statistics")

        if kind == "statistics":
            return jsonify({"statistics": ledger.statistics()}), 200

        if kind == "weekly-restock":
            items = ledger.weekly_restock_items()
            return jsonify({"items": items, "count": len(items)}), 200

        if kind == "low-stock":
            threshold = request.args.get("threshold")
            threshold = coerce_int("threshold", threshold) if threshold is not None else None
            if threshold is not None and threshold < 0:
                raise ValidationError("threshold must be >= 0")
            items = ledger.low_stock_alerts(threshold)
            return jsonify({"items": items, "count": len(items)}), 200

        return jsonify({"error": "type must be one of: statistics, weekly-restock, low-stock"}), 400

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to load inventory statistics")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.post("/process-expired-payments")
@rate_limited
def process_expired_payments_route():
    """
    Run the payment timeout sweep.

    Response:
        {
            "result": {"processed": 2, "released": 2, "failed": 0, "skipped": 0, "results": [...]},
            "statistics": {...},
            "approaching_orders": [...]   // due within the reminder window
        }

    Error responses:
        409: a sweep is already running
    """
    try:
        sweeper = get_services().sweeper

        result = sweeper.sweep()
        approaching = sweeper.find_approaching_deadline()

        return jsonify({
            "result": result.to_dict(),
            "statistics": sweeper.payment_statistics(),
            "approaching_orders": [o.to_dict(include_items=False) for o in approaching],
        }), 200

    except AlreadyProcessedError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to process expired payments")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.get("/payment-statistics")
@rate_limited
def payment_statistics_route():
    try:
        sweeper = get_services().sweeper
        approaching = sweeper.find_approaching_deadline()
        return jsonify({
            "statistics": sweeper.payment_statistics(),
            "approaching_count": len(approaching),
        }), 200
    except Exception:
        current_app.logger.exception("Failed to load payment statistics")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.put("/order-status")
@rate_limited
def order_status_route():
    """
    Move an order to a new status.

    Request body:
        {"order_id": 12, "status": "PREPARING", "reason": "optional, for CANCELLED"}

    Error responses:
        400: bad payload
        404: order not found
        409: transition not allowed, or the order changed concurrently
    """
    try:
        order_id, status, reason = parse_order_status_payload(request.get_json(silent=True))

        outcome = get_services().state_machine.transition(order_id, status, reason=reason)
        _audit("ORDER_STATUS_CHANGED", f"order {order_id}: {outcome.from_status} -> {outcome.to_status}")

        return jsonify(outcome.to_dict()), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except InventoryError as e:
        return jsonify({"error": str(e), "details": e.details}), http_status_for(e)
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.put("/payment-status")
@rate_limited
def payment_status_route():
    """
    Record a payment outcome.

    Request body:
        {"order_id": 12, "payment_status": "PAID" | "UNPAID" | "EXPIRED"}

    PAID confirms the order and consumes its stock; UNPAID / EXPIRED cancel
    it and release the reservation.
    """
    try:
        order_id, payment_status = parse_payment_status_payload(request.get_json(silent=True))

        outcome = get_services().state_machine.apply_payment_status(order_id, payment_status)
        _audit("PAYMENT_STATUS_CHANGED", f"order {order_id}: payment {payment_status}")

        return jsonify(outcome.to_dict()), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except InventoryError as e:
        return jsonify({"error": str(e), "details": e.details}), http_status_for(e)
    except Exception:
        current_app.logger.exception("Failed to update payment status")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.delete("/products/<int:product_id>")
@rate_limited
def retire_product_route(product_id: int):
    """
    Retire a product.

    Deleted outright when no order references it; otherwise deactivated so
    order history stays intact.
    """
    try:
        result = catalog_service.retire_product(product_id, ledger=get_services().ledger)
        _audit("PRODUCT_RETIRED", f"product {product_id}: {'deleted' if result['deleted'] else 'deactivated'}")
        return jsonify(result), 200

    except InventoryError as e:
        return jsonify({"error": str(e), "details": e.details}), http_status_for(e)
    except Exception:
        current_app.logger.exception("Failed to retire product")
        return jsonify({"error": "Internal server error"}), 500
