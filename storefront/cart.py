"""Per-user shopping cart.

Quantities are checked against the catalog when the cart changes, but that
check is only advisory: stock keeps moving until checkout, where it is
verified again.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.orm import Session

from .catalog import Catalog
from .database import unavailable_on_db_error
from .errors import InsufficientStock, NotFound, ValidationFailed
from .models import Cart, CartItem, utcnow

logger = logging.getLogger(__name__)


class CartService:
    """The cart aggregate of a single user.

    Every mutation is committed before returning. Totals are never stored; they
    are derived from the current lines on every read.
    """

    def __init__(self, db: Session, user_id: str, catalog: Optional[Catalog] = None):
        self.db = db
        self.user_id = user_id
        self.catalog = catalog or Catalog(db)

    def find_cart(self) -> Optional[Cart]:
        with unavailable_on_db_error():
            return self.db.query(Cart).filter(Cart.user_id == self.user_id).first()

    def get_cart(self) -> Cart:
        """Return the user's cart, creating an empty one on first use."""
        cart = self.find_cart()
        if cart is not None:
            return cart

        cart = Cart(user_id=self.user_id, updated_at=utcnow())
        self.db.add(cart)
        self._commit()
        self.db.refresh(cart)
        return cart

    def add_item(self, product_id: str, quantity: int = 1) -> Cart:
        if quantity <= 0:
            raise ValidationFailed("quantity must be greater than 0")

        product = self.catalog.get_sellable_product(product_id)
        cart = self.find_cart()
        existing = self._line_for_product(cart, product_id) if cart is not None else None
        wanted = quantity + (existing.quantity if existing is not None else 0)

        if wanted > product.stock:
            raise InsufficientStock(
                f"Insufficient stock for {product.name}",
                errors=[_stock_error(product_id, product.name, wanted, product.stock)],
            )

        if cart is None:
            # first accepted line creates the cart in the same commit
            cart = Cart(user_id=self.user_id, updated_at=utcnow())
            self.db.add(cart)

        if existing is not None:
            existing.quantity = wanted
        else:
            cart.items.append(
                CartItem(
                    product_id=product_id,
                    product_name=product.name,
                    quantity=quantity,
                    price=product.price,
                    position=_next_position(cart),
                )
            )

        logger.debug("cart of user=%s: add %s x%s", self.user_id, product_id, quantity)
        return self._touch(cart)

    def update_quantity(self, item_id: str, quantity: int) -> Cart:
        cart = self.get_cart()
        item = self._line(cart, item_id)
        if item is None:
            raise NotFound(f"Cart item {item_id} not found", item_id=item_id)

        if quantity <= 0:
            cart.items.remove(item)
            return self._touch(cart)

        product = self.catalog.get_product(item.product_id)
        if quantity > product.stock:
            raise InsufficientStock(
                f"Insufficient stock for {product.name}",
                errors=[_stock_error(product.id, product.name, quantity, product.stock)],
            )

        item.quantity = quantity
        return self._touch(cart)

    def remove_item(self, item_id: str) -> Cart:
        cart = self.get_cart()
        item = self._line(cart, item_id)
        if item is None:
            return cart
        cart.items.remove(item)
        return self._touch(cart)

    def clear(self) -> Cart:
        cart = self.get_cart()
        cart.items.clear()
        return self._touch(cart)

    def get_total(self) -> int:
        cart = self.find_cart()
        return cart.total if cart is not None else 0

    def get_item_count(self) -> int:
        cart = self.find_cart()
        return cart.item_count if cart is not None else 0

    def get_quantity_for(self, product_id: str) -> int:
        cart = self.find_cart()
        if cart is None:
            return 0
        line = self._line_for_product(cart, product_id)
        return line.quantity if line is not None else 0

    # -----------------------------
    # helpers
    # -----------------------------

    def _line(self, cart: Cart, item_id: str) -> Optional[CartItem]:
        return next((i for i in cart.items if i.id == item_id), None)

    def _line_for_product(self, cart: Cart, product_id: str) -> Optional[CartItem]:
        return next((i for i in cart.items if i.product_id == product_id), None)

    def _touch(self, cart: Cart) -> Cart:
        cart.updated_at = utcnow()
        self._commit()
        self.db.refresh(cart)
        return cart

    def _commit(self) -> None:
        try:
            with unavailable_on_db_error():
                self.db.commit()
        except Exception:
            self.db.rollback()
            raise


def _next_position(cart: Cart) -> int:
    return max((i.position for i in cart.items), default=-1) + 1


def _stock_error(product_id: str, name: str, requested: int, available: int) -> dict:
    return {
        "product_id": product_id,
        "product_name": name,
        "message": f"Insufficient stock for {name}",
        "requested": requested,
        "available": available,
    }
