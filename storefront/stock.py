from __future__ import annotations

from typing import List

from .catalog import Catalog
from .models import Cart
from .schemas import StockError, StockValidation


def validate_stock(cart: Cart, catalog: Catalog) -> StockValidation:
    """Check every cart line against the catalog's current stock.

    Business-rule problems are reported in the result, never raised. Only an
    unreachable catalog raises (``Unavailable``). The result is a point-in-time
    answer and must not be reused across a later commit.
    """
    errors: List[StockError] = []

    # several lines for one product compete for the same stock
    requested: dict = {}
    for item in cart.items:
        requested[item.product_id] = requested.get(item.product_id, 0) + item.quantity

    seen = set()
    for item in cart.items:
        if item.product_id in seen:
            continue
        seen.add(item.product_id)

        wanted = requested[item.product_id]
        product = catalog.find_product(item.product_id)
        if product is None or not product.is_active:
            errors.append(
                StockError(
                    product_id=item.product_id,
                    product_name=item.product_name,
                    message=f"{item.product_name} is no longer available",
                    requested=wanted,
                    available=0,
                )
            )
        elif product.stock < wanted:
            errors.append(
                StockError(
                    product_id=item.product_id,
                    product_name=product.name,
                    message=f"Insufficient stock for {product.name}",
                    requested=wanted,
                    available=product.stock,
                )
            )

    return StockValidation(valid=not errors, errors=errors)
