from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


# Customer-visible states plus the two claim states held while side effects run.
ORDER_STATUSES = (
    "PENDING",
    "CONFIRMING",
    "CONFIRMED",
    "PREPARING",
    "READY",
    "OUT_FOR_DELIVERY",
    "DELIVERED",
    "CANCELLING",
    "CANCELLED",
)
PAYMENT_STATUSES = ("PENDING", "PAID", "UNPAID", "EXPIRED")
STOCK_STATES = ("RESERVED", "COMMITTED", "RELEASED")


class Order(db.Model):
    """
    Customer order.

    Created PENDING with stock reserved; mutated only through
    OrderStateMachine; terminal once DELIVERED or CANCELLED.

    stock_state records what the order currently holds against inventory
    (RESERVED -> COMMITTED on payment, RESERVED -> RELEASED on cancel) so a
    reservation is released at most once.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_status_due", "status", "payment_due_date"),
        db.Index("ix_orders_payment_status", "payment_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), nullable=False, unique=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    address_id = db.Column(db.Integer, db.ForeignKey("addresses.id"), nullable=True)

    status = db.Column(db.String(32), nullable=False, default="PENDING")
    payment_status = db.Column(db.String(16), nullable=False, default="PENDING")
    stock_state = db.Column(db.String(16), nullable=False, default="RESERVED")

    total_cents = db.Column(db.Integer, nullable=False, default=0)
    cancellation_reason = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    payment_due_date = db.Column(db.DateTime(timezone=True), nullable=False)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivery_date = db.Column(db.DateTime(timezone=True), nullable=True)  # requested by customer
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)

    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )
    customer = db.relationship("Customer", backref=db.backref("orders", lazy=True))
    address = db.relationship("Address")

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.order_number!r} status={self.status}>"

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "customer_id": self.customer_id,
            "address_id": self.address_id,
            "status": self.status,
            "payment_status": self.payment_status,
            "stock_state": self.stock_state,
            "total_cents": self.total_cents,
            "cancellation_reason": self.cancellation_reason,
            "created_at": to_utc_z(self.created_at),
            "payment_due_date": to_utc_z(self.payment_due_date),
            "paid_at": to_utc_z(self.paid_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "delivery_date": to_utc_z(self.delivery_date),
            "delivered_at": to_utc_z(self.delivered_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """Order line. unit_price_cents is a snapshot and never recalculated."""
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    portion_size_id = db.Column(db.Integer, db.ForeignKey("portion_sizes.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "portion_size_id": self.portion_size_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }


class OrderSequence(db.Model):
    """
    Atomic order-number counters, one row per prefix (e.g. "TT-20241201-").

    WHY: concurrent checkouts on the same day must not hand out the same number.
    """
    __tablename__ = "order_sequences"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    prefix = db.Column(db.String(32), nullable=False, unique=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
