"""Read access to products and the atomic stock decrement used at checkout."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.orm import Session

from .database import unavailable_on_db_error
from .errors import InsufficientStock, NotFound
from .models import Product, utcnow

logger = logging.getLogger(__name__)


class Catalog:
    """Product reads and compare-and-decrement writes bound to one session.

    ``decrement_stock`` only flushes; the caller owns the transaction so the
    decrement commits or rolls back together with the order that caused it.
    """

    def __init__(self, db: Session):
        self.db = db

    def find_product(self, product_id: str) -> Optional[Product]:
        with unavailable_on_db_error("Catalog"):
            # always re-read: stock is shared state and the identity map may hold an old row
            return self.db.get(Product, product_id, populate_existing=True)

    def get_product(self, product_id: str) -> Product:
        product = self.find_product(product_id)
        if product is None:
            raise NotFound(f"Product {product_id} not found", product_id=product_id)
        return product

    def get_sellable_product(self, product_id: str) -> Product:
        product = self.get_product(product_id)
        if not product.is_active:
            raise NotFound(f"Product {product_id} is not available", product_id=product_id)
        return product

    def decrement_stock(self, product_id: str, quantity: int, product_name: str = "") -> None:
        if quantity <= 0:
            raise ValueError("quantity must be > 0")

        with unavailable_on_db_error("Catalog"):
            result = self.db.execute(
                update(Product)
                .where(
                    Product.id == product_id,
                    Product.is_active.is_(True),
                    Product.stock >= quantity,
                )
                .values(stock=Product.stock - quantity, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )

        if result.rowcount == 1:
            return

        current = self.find_product(product_id)
        available = current.stock if current is not None and current.is_active else 0
        name = product_name or (current.name if current is not None else product_id)
        logger.info(
            "stock decrement lost for product=%s requested=%s available=%s",
            product_id, quantity, available,
        )
        raise InsufficientStock(
            f"Insufficient stock for {name}",
            errors=[
                {
                    "product_id": product_id,
                    "product_name": name,
                    "message": f"Insufficient stock for {name}",
                    "requested": quantity,
                    "available": available,
                }
            ],
        )

    def decrement_stock_batch(self, lines: Iterable[Tuple[str, int, str]]) -> None:
        """Decrement several products; ``lines`` holds (product_id, quantity, product_name)."""
        merged: Dict[str, int] = {}
        names: Dict[str, str] = {}
        for product_id, quantity, name in lines:
            merged[product_id] = merged.get(product_id, 0) + int(quantity)
            names.setdefault(product_id, name)

        # stable order keeps concurrent checkouts from deadlocking on row locks
        for product_id in sorted(merged):
            self.decrement_stock(product_id, merged[product_id], names[product_id])
