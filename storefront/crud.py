import math
from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .database import unavailable_on_db_error
from .errors import NotFound, ValidationFailed
from .models import Order, Product, ReconciliationCase, utcnow


# -----------------------------
# Products (back-office)
# -----------------------------

def get_product_by_name(db: Session, name: str) -> Optional[Product]:
    normalized = (name or "").strip()
    if not normalized:
        return None
    return (
        db.query(Product)
        .filter(func.lower(Product.name) == normalized.lower())
        .first()
    )


def _ensure_unique_name(db: Session, name: str, exclude_id: Optional[str] = None) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationFailed("Product name is required")

    existing = get_product_by_name(db, name)
    if existing is not None and existing.id != exclude_id:
        raise ValidationFailed("Product name already exists", field="name")
    return name


def _commit(db: Session) -> None:
    try:
        with unavailable_on_db_error():
            db.commit()
    except IntegrityError:
        db.rollback()
        # lost a race on the unique product name
        raise ValidationFailed("Product name already exists", field="name") from None
    except Exception:
        db.rollback()
        raise


def create_product(db: Session, product_data: dict) -> Product:
    name = _ensure_unique_name(db, product_data.get("name"))
    db_product = Product(**{**product_data, "name": name})
    db.add(db_product)
    _commit(db)
    db.refresh(db_product)
    return db_product


def get_product(db: Session, product_id: str) -> Product:
    product = db.get(Product, product_id)
    if product is None:
        raise NotFound(f"Product {product_id} not found", product_id=product_id)
    return product


def update_product(db: Session, product_id: str, update_data: dict) -> Product:
    db_product = get_product(db, product_id)

    if update_data.get("name") is not None:
        update_data["name"] = _ensure_unique_name(db, update_data["name"], exclude_id=product_id)

    for key, value in update_data.items():
        if value is not None:
            setattr(db_product, key, value)
    db_product.updated_at = utcnow()
    _commit(db)
    db.refresh(db_product)
    return db_product


def set_stock(db: Session, product_id: str, stock: int) -> Product:
    """Overwrite a product's stock count (inventory adjustment)."""
    if stock < 0:
        raise ValidationFailed("Stock cannot be negative")
    db_product = get_product(db, product_id)
    db_product.stock = stock
    db_product.updated_at = utcnow()
    _commit(db)
    db.refresh(db_product)
    return db_product


def delete_product(db: Session, product_id: str) -> None:
    # orders keep their own snapshot, so removing the catalog row is safe
    db_product = get_product(db, product_id)
    db.delete(db_product)
    _commit(db)


# -----------------------------
# Orders (read side)
# -----------------------------

def get_order(db: Session, order_id: str, fresh: bool = False) -> Optional[Order]:
    with unavailable_on_db_error():
        return db.get(Order, order_id, populate_existing=fresh)


def get_order_by_idempotency_key(db: Session, user_id: str, key: str) -> Optional[Order]:
    with unavailable_on_db_error():
        return (
            db.query(Order)
            .filter(Order.user_id == user_id, Order.idempotency_key == key)
            .first()
        )


def _page_bounds(page: int, limit: int) -> Tuple[int, int]:
    if page < 1 or limit < 1:
        raise ValidationFailed("page and limit must be >= 1")
    return (page - 1) * limit, limit


def _paginate(query, page: int, limit: int) -> dict:
    offset, limit = _page_bounds(page, limit)
    with unavailable_on_db_error():
        total = query.count()
        orders = (
            query.order_by(Order.created_at.desc(), Order.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
    return {
        "orders": orders,
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": math.ceil(total / limit) if total else 0,
    }


def list_orders_for_user(db: Session, user_id: str, page: int = 1, limit: int = 10) -> dict:
    return _paginate(db.query(Order).filter(Order.user_id == user_id), page, limit)


def list_all_orders(db: Session, page: int = 1, limit: int = 10) -> dict:
    return _paginate(db.query(Order), page, limit)


def list_reconciliation_cases(db: Session, include_resolved: bool = False) -> List[ReconciliationCase]:
    query = db.query(ReconciliationCase)
    if not include_resolved:
        query = query.filter(ReconciliationCase.resolved.is_(False))
    return query.order_by(ReconciliationCase.created_at.desc()).all()
