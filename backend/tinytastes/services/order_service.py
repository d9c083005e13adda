# Overview: Checkout; builds a priced order from a cart and hands it to the state machine.

"""
Order placement.

WHY: the state machine only knows orders and stock. Everything a checkout
needs before that point lives here: customer/address checks, price
snapshots, totals, the order number and the payment deadline.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, Mapping

from ..errors import OrderPlacementError
from ..extensions import db
from ..models import Address, Customer, Order, OrderItem
from ..time_utils import order_day_stamp, payment_due_from, utcnow
from .catalog_service import get_price_map
from .order_lifecycle_service import OrderStateMachine
from .reservation_service import merge_items


logger = logging.getLogger(__name__)


def place_order(
    customer_id: int,
    address_id: int | None,
    items: Iterable[Mapping],
    *,
    state_machine: OrderStateMachine,
    number_prefix: str = "TT",
    payment_window_hours: int = 24,
    delivery_date: datetime | None = None,
    now: datetime | None = None,
) -> Order:
    """
    Create a PENDING order with its stock reserved.

    items: [{"product_id", "portion_size_id", "quantity"}]; duplicate lines
    are merged. Unit prices are snapshotted from ProductPrice.

    Raises OrderPlacementError for unknown customer/address or unpriced or
    inactive products, InsufficientStockError if any line cannot be reserved
    (nothing is reserved in that case).
    """
    now = now or utcnow()
    lines = merge_items(items)
    if not lines:
        raise OrderPlacementError("order must contain at least one item")

    if db.session.get(Customer, customer_id) is None:
        raise OrderPlacementError("Customer not found", details={"customer_id": customer_id})
    if address_id is not None:
        address = db.session.get(Address, address_id)
        if address is None or address.customer_id != customer_id:
            raise OrderPlacementError(
                "Address not found for customer",
                details={"customer_id": customer_id, "address_id": address_id},
            )

    prices = get_price_map({(line.product_id, line.portion_size_id) for line in lines})
    unavailable = []
    order_items = []
    for line in lines:
        key = (line.product_id, line.portion_size_id)
        price = prices.get(key)
        if price is None or not price[1]:
            unavailable.append({"product_id": line.product_id, "portion_size_id": line.portion_size_id})
            continue
        unit_price_cents = price[0]
        order_items.append(OrderItem(
            product_id=line.product_id,
            portion_size_id=line.portion_size_id,
            quantity=line.quantity,
            unit_price_cents=unit_price_cents,
            line_total_cents=unit_price_cents * line.quantity,
        ))
    if unavailable:
        raise OrderPlacementError("Some products are not available for sale", details={"items": unavailable})

    order_number = state_machine.next_order_number(f"{number_prefix}-{order_day_stamp(now)}-")
    order = Order(
        order_number=order_number,
        customer_id=customer_id,
        address_id=address_id,
        payment_status="PENDING",
        total_cents=sum(item.line_total_cents for item in order_items),
        created_at=now,
        payment_due_date=payment_due_from(now, payment_window_hours),
        delivery_date=delivery_date,
        items=order_items,
    )

    order = state_machine.place(order)
    logger.info("Checkout complete customer=%s order=%s", customer_id, order.order_number)
    return order
