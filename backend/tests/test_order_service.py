"""
Checkout tests against SQLite: the SQLAlchemy repositories, price snapshots
and order numbering.
"""

from datetime import datetime, timedelta

import pytest

from tinytastes.errors import InsufficientStockError, OrderPlacementError
from tinytastes.models import Order, Product, ProductPrice, StockEntry
from tinytastes.services import order_service
from tinytastes.services.registry import get_services


NOW = datetime(2024, 12, 1, 9, 30)


def _place(catalog, items, **kwargs):
    return order_service.place_order(
        catalog["customer"],
        catalog["address"],
        items,
        state_machine=get_services().state_machine,
        now=NOW,
        **kwargs,
    )


@pytest.fixture
def stocked(catalog):
    ledger = get_services().ledger
    ledger.provision(catalog["carrot"], catalog["small"], initial_stock=10, weekly_limit=50)
    ledger.provision(catalog["pear"], catalog["small"], initial_stock=2, weekly_limit=50)
    return catalog


def test_place_order_snapshots_prices_and_reserves(db_session, stocked):
    order = _place(stocked, [
        {"product_id": stocked["carrot"], "portion_size_id": stocked["small"], "quantity": 2},
        {"product_id": stocked["carrot"], "portion_size_id": stocked["small"], "quantity": 1},
        {"product_id": stocked["pear"], "portion_size_id": stocked["small"], "quantity": 2},
    ])

    assert order.status == "PENDING"
    assert order.order_number == "TT-20241201-0001"
    assert order.payment_due_date == NOW + timedelta(hours=24)
    assert len(order.items) == 2
    assert order.total_cents == 3 * 349 + 2 * 329

    # Later price changes do not touch the order
    price = db_session.query(ProductPrice).filter_by(product_id=stocked["carrot"], portion_size_id=stocked["small"]).one()
    price.price_cents = 999
    db_session.commit()
    db_session.expire_all()
    stored = db_session.get(Order, order.id)
    assert stored.items[0].unit_price_cents == 349

    entry = db_session.query(StockEntry).filter_by(product_id=stocked["carrot"], portion_size_id=stocked["small"]).one()
    assert entry.reserved_stock == 3


def test_order_numbers_increment_per_day(db_session, stocked):
    item = [{"product_id": stocked["carrot"], "portion_size_id": stocked["small"], "quantity": 1}]

    first = _place(stocked, item)
    second = _place(stocked, item)

    assert first.order_number == "TT-20241201-0001"
    assert second.order_number == "TT-20241201-0002"


def test_insufficient_stock_reserves_nothing(db_session, stocked):
    with pytest.raises(InsufficientStockError):
        _place(stocked, [
            {"product_id": stocked["carrot"], "portion_size_id": stocked["small"], "quantity": 4},
            {"product_id": stocked["pear"], "portion_size_id": stocked["small"], "quantity": 3},
        ])

    db_session.expire_all()
    assert db_session.query(Order).count() == 0
    reserved = [e.reserved_stock for e in db_session.query(StockEntry).all()]
    assert reserved == [0, 0]


def test_inactive_product_is_rejected(db_session, stocked):
    product = db_session.get(Product, stocked["pear"])
    product.is_active = False
    db_session.commit()

    with pytest.raises(OrderPlacementError) as exc:
        _place(stocked, [{"product_id": stocked["pear"], "portion_size_id": stocked["small"], "quantity": 1}])

    assert exc.value.details["items"][0]["product_id"] == stocked["pear"]


def test_unknown_customer_is_rejected(db_session, stocked):
    with pytest.raises(OrderPlacementError):
        order_service.place_order(
            9999,
            None,
            [{"product_id": stocked["carrot"], "portion_size_id": stocked["small"], "quantity": 1}],
            state_machine=get_services().state_machine,
        )


def test_sql_sweep_releases_expired_orders(db_session, stocked):
    order = _place(stocked, [{"product_id": stocked["carrot"], "portion_size_id": stocked["small"], "quantity": 3}])
    sweeper = get_services().sweeper

    result = sweeper.sweep(NOW + timedelta(hours=25))
    again = sweeper.sweep(NOW + timedelta(hours=26))

    assert (result.processed, result.released) == (1, 1)
    assert again.processed == 0
    db_session.expire_all()
    assert db_session.get(Order, order.id).status == "CANCELLED"
    entry = db_session.query(StockEntry).filter_by(product_id=stocked["carrot"], portion_size_id=stocked["small"]).one()
    assert (entry.current_stock, entry.reserved_stock) == (10, 0)
