from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class StockEntry(db.Model):
    """
    Stock counters for one (product, portion size) pair.

    INVARIANTS:
    - current_stock >= 0, reserved_stock >= 0
    - reserved_stock <= current_stock, so available never goes negative
    - weekly_limit caps restocking per period; 0 means no cap configured

    CONCURRENCY: single logical owner per row. Mutations go through
    StockRepository.mutate(), which takes SELECT ... FOR UPDATE where the
    database honors it; version_id catches lost updates where it does not.
    """
    __tablename__ = "inventory"
    __table_args__ = (
        db.UniqueConstraint("product_id", "portion_size_id", name="uq_inventory_product_portion"),
        db.CheckConstraint("current_stock >= 0", name="ck_inventory_current_nonneg"),
        db.CheckConstraint("reserved_stock >= 0", name="ck_inventory_reserved_nonneg"),
        db.CheckConstraint("reserved_stock <= current_stock", name="ck_inventory_reserved_le_current"),
        db.CheckConstraint("weekly_limit >= 0", name="ck_inventory_weekly_limit_nonneg"),
        db.Index("ix_inventory_current_stock", "current_stock"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    portion_size_id = db.Column(db.Integer, db.ForeignKey("portion_sizes.id"), nullable=False, index=True)

    current_stock = db.Column(db.Integer, nullable=False, default=0)
    reserved_stock = db.Column(db.Integer, nullable=False, default=0)

    weekly_limit = db.Column(db.Integer, nullable=False, default=0)
    restocked_in_period = db.Column(db.Integer, nullable=False, default=0)
    period_started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_restocked = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product", backref=db.backref("stock_entries", lazy=True))
    portion_size = db.relationship("PortionSize")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def available_stock(self) -> int:
        return (self.current_stock or 0) - (self.reserved_stock or 0)

    def __repr__(self) -> str:
        return (
            f"<StockEntry product_id={self.product_id} portion_size_id={self.portion_size_id} "
            f"current={self.current_stock} reserved={self.reserved_stock}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "portion_size_id": self.portion_size_id,
            "current_stock": self.current_stock,
            "reserved_stock": self.reserved_stock,
            "available_stock": self.available_stock,
            "weekly_limit": self.weekly_limit,
            "restocked_in_period": self.restocked_in_period,
            "period_started_at": to_utc_z(self.period_started_at),
            "last_restocked": to_utc_z(self.last_restocked),
        }
