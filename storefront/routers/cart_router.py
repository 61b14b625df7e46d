from typing import Dict, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ..auth import get_current_user
from ..cart import CartService
from ..catalog import Catalog
from ..database import get_db
from ..schemas import CartItemAdd, CartItemUpdate, CartOut, CartSummary, StockValidation
from ..stock import validate_stock

router = APIRouter(prefix="/cart", tags=["Cart"])


def get_cart_service(
    current_user: Dict = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> CartService:
    return CartService(db, current_user["id"])


@router.get("", response_model=CartOut)
def get_my_cart(cart: CartService = Depends(get_cart_service)):
    return cart.get_cart()


@router.get("/summary", response_model=CartSummary)
def get_cart_summary(
    product_id: Optional[str] = Query(None, description="Also report the quantity held for this product"),
    cart: CartService = Depends(get_cart_service),
):
    return {
        "total": cart.get_total(),
        "item_count": cart.get_item_count(),
        "quantity_for": cart.get_quantity_for(product_id) if product_id else None,
    }


@router.post("/items", response_model=CartOut, status_code=status.HTTP_201_CREATED)
def add_item(body: CartItemAdd, cart: CartService = Depends(get_cart_service)):
    return cart.add_item(body.product_id, body.quantity)


@router.put("/items/{item_id}", response_model=CartOut)
def update_item(item_id: str, body: CartItemUpdate, cart: CartService = Depends(get_cart_service)):
    """Set a line's quantity exactly. A quantity of 0 or less removes the line."""
    return cart.update_quantity(item_id, body.quantity)


@router.delete("/items/{item_id}", response_model=CartOut)
def remove_item(item_id: str, cart: CartService = Depends(get_cart_service)):
    return cart.remove_item(item_id)


@router.delete("", response_model=CartOut)
def clear_cart(cart: CartService = Depends(get_cart_service)):
    return cart.clear()


@router.post("/check-stock", response_model=StockValidation)
def check_stock(cart: CartService = Depends(get_cart_service)):
    """Advisory pre-checkout check. Checkout repeats it before committing."""
    return validate_stock(cart.get_cart(), Catalog(cart.db))
