"""
Per-app wiring of the storefront core.

create_app() builds one StorefrontServices bundle and parks it in
app.extensions; routes and CLI commands fetch it with get_services(). The
core classes themselves never reach for Flask or module globals.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from flask import Flask, current_app

from ..extensions import SERVICES_KEY
from .cache_service import Cache, InMemoryCacheStore
from .notification_service import LoggingNotificationDispatcher, NotificationDispatcher
from .order_lifecycle_service import OrderStateMachine
from .payment_timeout_service import PaymentTimeoutSweeper
from .rate_limit_service import FixedWindowRateLimiter
from .repositories import (
    OrderRepository,
    SqlAlchemyOrderRepository,
    SqlAlchemyStockRepository,
    StockRepository,
)
from .reservation_service import ReservationManager
from .stock_service import StockLedger


@dataclass
class StorefrontServices:
    stock_repository: StockRepository
    order_repository: OrderRepository
    cache: Cache
    ledger: StockLedger
    reservations: ReservationManager
    state_machine: OrderStateMachine
    sweeper: PaymentTimeoutSweeper
    notifier: NotificationDispatcher
    rate_limiter: FixedWindowRateLimiter


def build_services(
    config,
    *,
    stock_repository: StockRepository,
    order_repository: OrderRepository,
    notifier: NotificationDispatcher | None = None,
) -> StorefrontServices:
    """Assemble the core from a config mapping and a pair of repositories."""
    store = InMemoryCacheStore()
    cache = Cache(store, namespace="tinytastes")
    notifier = notifier or LoggingNotificationDispatcher()

    ledger = StockLedger(
        stock_repository,
        cache=cache,
        low_stock_threshold=config["LOW_STOCK_THRESHOLD"],
        restock_period=timedelta(days=config["RESTOCK_PERIOD_DAYS"]),
        weekly_restock_ratio=config["WEEKLY_RESTOCK_RATIO"],
        statistics_ttl=config["STATISTICS_CACHE_TTL_SECONDS"],
    )
    reservations = ReservationManager(ledger)
    state_machine = OrderStateMachine(order_repository, reservations, notifier=notifier)
    sweeper = PaymentTimeoutSweeper(
        order_repository,
        state_machine,
        reminder_window=timedelta(hours=config["PAYMENT_REMINDER_WINDOW_HOURS"]),
    )
    rate_limiter = FixedWindowRateLimiter(
        store,
        limit=config["ADMIN_RATE_LIMIT"],
        window_seconds=config["ADMIN_RATE_LIMIT_WINDOW_SECONDS"],
    )
    return StorefrontServices(
        stock_repository=stock_repository,
        order_repository=order_repository,
        cache=cache,
        ledger=ledger,
        reservations=reservations,
        state_machine=state_machine,
        sweeper=sweeper,
        notifier=notifier,
        rate_limiter=rate_limiter,
    )


def init_services(app: Flask) -> StorefrontServices:
    services = build_services(
        app.config,
        stock_repository=SqlAlchemyStockRepository(),
        order_repository=SqlAlchemyOrderRepository(),
    )
    app.extensions[SERVICES_KEY] = services
    return services


def get_services() -> StorefrontServices:
    return current_app.extensions[SERVICES_KEY]
