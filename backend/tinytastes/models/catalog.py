from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class AgeGroup(db.Model):
    __tablename__ = "age_groups"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False, unique=True)
    min_months = db.Column(db.Integer, nullable=False, default=0)
    max_months = db.Column(db.Integer, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "min_months": self.min_months,
            "max_months": self.max_months,
        }


class Texture(db.Model):
    __tablename__ = "textures"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False, unique=True)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name}


class Product(db.Model):
    """
    Catalog product.

    Products referenced by historical orders are never hard-deleted; they are
    deactivated instead (see catalog_service.retire_product).
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(255), nullable=False, unique=True)
    description = db.Column(db.Text, nullable=True)

    age_group_id = db.Column(db.Integer, db.ForeignKey("age_groups.id"), nullable=True, index=True)
    texture_id = db.Column(db.Integer, db.ForeignKey("textures.id"), nullable=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    age_group = db.relationship("AgeGroup", backref=db.backref("products", lazy=True))
    texture = db.relationship("Texture", backref=db.backref("products", lazy=True))

    def __repr__(self) -> str:
        return f"<Product id={self.id} slug={self.slug!r} active={self.is_active}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "age_group_id": self.age_group_id,
            "texture_id": self.texture_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class PortionSize(db.Model):
    __tablename__ = "portion_sizes"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False, unique=True)
    measurement = db.Column(db.String(64), nullable=False)  # e.g. "120ml"

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "measurement": self.measurement}


class ProductPrice(db.Model):
    """Live price per (product, portion size). Orders snapshot it at placement."""
    __tablename__ = "product_prices"
    __table_args__ = (
        db.UniqueConstraint("product_id", "portion_size_id", name="uq_product_prices_product_portion"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    portion_size_id = db.Column(db.Integer, db.ForeignKey("portion_sizes.id"), nullable=False, index=True)
    price_cents = db.Column(db.Integer, nullable=False)

    product = db.relationship("Product", backref=db.backref("prices", lazy=True, cascade="all, delete-orphan"))
    portion_size = db.relationship("PortionSize")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "portion_size_id": self.portion_size_id,
            "price_cents": self.price_cents,
        }
