# backend/tinytastes/routes/orders.py
"""
Customer order endpoints.

- POST /api/orders                 - Place an order (stock reserved, payment due later)
- GET  /api/orders/availability    - Can this quantity be ordered right now (read-only)
- GET  /api/orders/<id>            - Order with its items
- POST /api/orders/<id>/cancel     - Cancel a PENDING order, releasing its stock
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import InventoryError, InvalidTransitionError, http_status_for
from ..services import order_service
from ..services.order_lifecycle_service import PENDING, REASON_CUSTOMER
from ..services.registry import get_services
from ..validation import ValidationError, parse_availability_args, parse_order_request


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.post("")
def place_order_route():
    """
    Request body:
        {
            "customer_id": 1,
            "address_id": 3,
            "delivery_date": "2024-12-03T09:00:00Z",
            "items": [{"product_id": 1, "portion_size_id": 2, "quantity": 3}]
        }

    Response (201):
        {"order": {...}}

    Error responses:
        400: invalid payload, unknown customer/address, product not for sale
        409: insufficient stock (nothing is reserved)
    """
    try:
        header, items = parse_order_request(request.get_json(silent=True))
        config = current_app.config

        order = order_service.place_order(
            header["customer_id"],
            header.get("address_id"),
            items,
            state_machine=get_services().state_machine,
            number_prefix=config["ORDER_NUMBER_PREFIX"],
            payment_window_hours=config["PAYMENT_WINDOW_HOURS"],
            delivery_date=header.get("delivery_date"),
        )

        return jsonify({"order": order.to_dict()}), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except InventoryError as e:
        return jsonify({"error": str(e), "details": e.details}), http_status_for(e)
    except Exception:
        current_app.logger.exception("Failed to place order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/availability")
def availability_route():
    """
    Query params:
        product_id, portion_size_id (required), quantity (default 1)

    Response:
        {"available": true, "available_stock": 7, "reserved_stock": 3, "total_stock": 10}

    Unknown stock entries answer available=false with zero counts.
    """
    try:
        product_id, portion_size_id, quantity = parse_availability_args(request.args)
        return jsonify(get_services().ledger.check_availability(product_id, portion_size_id, quantity)), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to check stock availability")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
def get_order_route(order_id: int):
    order = get_services().order_repository.get(order_id)
    if not order:
        return jsonify({"error": "Order not found"}), 404
    return jsonify({"order": order.to_dict()}), 200


@orders_bp.post("/<int:order_id>/cancel")
def cancel_order_route(order_id: int):
    """
    Customer cancel. Only orders still awaiting payment can be cancelled here;
    later cancellations go through the admin API.
    """
    try:
        state_machine = get_services().state_machine
        order = state_machine.get(order_id)
        if order.status != PENDING:
            raise InvalidTransitionError(
                "Only orders awaiting payment can be cancelled",
                details={"order_id": order_id, "status": order.status},
            )

        outcome = state_machine.cancel(order_id, reason=REASON_CUSTOMER, only_if_status=PENDING)

        return jsonify(outcome.to_dict()), 200

    except InventoryError as e:
        return jsonify({"error": str(e), "details": e.details}), http_status_for(e)
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500
