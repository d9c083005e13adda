"""
Pytest fixtures for Tiny Tastes backend tests.

Two kinds of fixtures:
- app / client / db_session: Flask app on in-memory SQLite for HTTP and
  checkout tests.
- core: the stock/order lifecycle wired to in-memory repositories and a
  controllable clock, no database involved.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

import pytest

from tinytastes import create_app
from tinytastes.extensions import db
from tinytastes.models import (
    AgeGroup,
    Texture,
    Product,
    PortionSize,
    ProductPrice,
    Customer,
    Address,
    Order,
    OrderItem,
)
from tinytastes.services.cache_service import Cache, InMemoryCacheStore
from tinytastes.services.memory_repositories import InMemoryOrderRepository, InMemoryStockRepository
from tinytastes.services.notification_service import RecordingNotificationDispatcher
from tinytastes.services.order_lifecycle_service import OrderStateMachine
from tinytastes.services.payment_timeout_service import PaymentTimeoutSweeper
from tinytastes.services.registry import get_services
from tinytastes.services.reservation_service import ReservationManager
from tinytastes.services.stock_service import StockLedger


T0 = datetime(2024, 12, 1, 9, 0, 0)


class FakeClock:
    """Callable clock returning a fixed UTC-naive datetime until advanced."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@dataclass
class Core:
    clock: FakeClock
    stock: InMemoryStockRepository
    orders: InMemoryOrderRepository
    cache: Cache
    ledger: StockLedger
    reservations: ReservationManager
    notifier: RecordingNotificationDispatcher
    state_machine: OrderStateMachine
    sweeper: PaymentTimeoutSweeper

    def make_order(self, lines, *, due_in=timedelta(hours=24), number=None) -> Order:
        """Build a transient order; lines are (product_id, portion_size_id, quantity)."""
        now = self.clock()
        items = [
            OrderItem(
                product_id=pid,
                portion_size_id=psid,
                quantity=qty,
                unit_price_cents=399,
                line_total_cents=399 * qty,
            )
            for pid, psid, qty in lines
        ]
        return Order(
            order_number=number or self.orders.next_order_number("TT-TEST-"),
            customer_id=1,
            payment_status="PENDING",
            total_cents=sum(item.line_total_cents for item in items),
            created_at=now,
            payment_due_date=now + due_in,
            items=items,
        )

    def place(self, lines, **kwargs) -> Order:
        return self.state_machine.place(self.make_order(lines, **kwargs))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def core(clock):
    """Lifecycle core on in-memory repositories."""
    stock = InMemoryStockRepository()
    orders = InMemoryOrderRepository()
    cache = Cache(InMemoryCacheStore())
    ledger = StockLedger(stock, cache=cache, low_stock_threshold=5, clock=clock)
    reservations = ReservationManager(ledger)
    notifier = RecordingNotificationDispatcher()
    state_machine = OrderStateMachine(orders, reservations, notifier=notifier, clock=clock)
    sweeper = PaymentTimeoutSweeper(orders, state_machine, reminder_window=timedelta(hours=2), clock=clock)
    return Core(
        clock=clock,
        stock=stock,
        orders=orders,
        cache=cache,
        ledger=ledger,
        reservations=reservations,
        notifier=notifier,
        state_machine=state_machine,
        sweeper=sweeper,
    )


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'ADMIN_RATE_LIMIT': 30,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database (and empty cache / rate limit counters) for each test."""
    with app.app_context():
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        get_services().cache.store.clear()

        yield db.session

        db.session.rollback()


@pytest.fixture(scope='function')
def catalog(db_session):
    """
    Two products, two portion sizes, prices for every pair, one customer with
    an address. Stock entries are left to the test.
    """
    group = AgeGroup(name="6-9 months", min_months=6, max_months=9)
    texture = Texture(name="Smooth puree")
    db_session.add_all([group, texture])
    db_session.flush()

    small = PortionSize(name="Small", measurement="120ml")
    large = PortionSize(name="Large", measurement="200ml")
    carrot = Product(name="Carrot Puree", slug="carrot-puree", age_group_id=group.id, texture_id=texture.id)
    pear = Product(name="Pear Mash", slug="pear-mash", age_group_id=group.id, texture_id=texture.id)
    db_session.add_all([small, large, carrot, pear])
    db_session.flush()

    db_session.add_all([
        ProductPrice(product_id=carrot.id, portion_size_id=small.id, price_cents=349),
        ProductPrice(product_id=carrot.id, portion_size_id=large.id, price_cents=499),
        ProductPrice(product_id=pear.id, portion_size_id=small.id, price_cents=329),
        ProductPrice(product_id=pear.id, portion_size_id=large.id, price_cents=479),
    ])

    customer = Customer(name="Test Parent", email="parent@test.local")
    db_session.add(customer)
    db_session.flush()
    address = Address(customer_id=customer.id, line1="1 Test Lane", city="Testville")
    db_session.add(address)
    db_session.commit()

    return {
        "carrot": carrot.id,
        "pear": pear.id,
        "small": small.id,
        "large": large.id,
        "customer": customer.id,
        "address": address.id,
    }
