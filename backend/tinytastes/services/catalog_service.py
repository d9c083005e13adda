# Overview: Catalog maintenance; product retirement and price lookups used at checkout.

from __future__ import annotations

import logging

from ..errors import ProductNotFoundError
from ..extensions import db
from ..models import Product, ProductPrice, OrderItem, StockEntry
from .stock_service import StockLedger


logger = logging.getLogger(__name__)


def get_price_map(pairs: set[tuple[int, int]]) -> dict[tuple[int, int], tuple[int, bool]]:
    """
    Current price and active flag for each (product_id, portion_size_id).

    Pairs without a ProductPrice row are absent from the result.
    """
    if not pairs:
        return {}
    product_ids = {pid for pid, _ in pairs}
    rows = (
        db.session.query(ProductPrice.product_id, ProductPrice.portion_size_id, ProductPrice.price_cents, Product.is_active)
        .join(Product, Product.id == ProductPrice.product_id)
        .filter(ProductPrice.product_id.in_(product_ids))
        .all()
    )
    return {
        (pid, psid): (price_cents, bool(is_active))
        for pid, psid, price_cents, is_active in rows
        if (pid, psid) in pairs
    }


def retire_product(product_id: int, *, ledger: StockLedger | None = None) -> dict:
    """
    Remove a product from sale.

    Products that appear on any order are kept for history and only
    deactivated; unreferenced products are deleted together with their
    prices and stock entries.

    Returns {"product_id": ..., "deleted": bool, "deactivated": bool}.
    """
    product = db.session.get(Product, product_id)
    if product is None:
        raise ProductNotFoundError("Product not found")

    referenced = (
        db.session.query(OrderItem.id)
        .filter(OrderItem.product_id == product_id)
        .first()
        is not None
    )

    if referenced:
        product.is_active = False
        db.session.commit()
        logger.info("Product %s deactivated (referenced by orders)", product_id)
        result = {"product_id": product_id, "deleted": False, "deactivated": True}
    else:
        db.session.query(StockEntry).filter(StockEntry.product_id == product_id).delete()
        db.session.delete(product)
        db.session.commit()
        logger.info("Product %s deleted", product_id)
        result = {"product_id": product_id, "deleted": True, "deactivated": False}

    if ledger is not None:
        ledger.invalidate_statistics()
    return result
