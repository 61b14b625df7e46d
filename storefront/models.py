import datetime as dt
import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class Product(Base):
    __tablename__ = "products"

    id = Column(String(32), primary_key=True, default=new_id)
    name = Column(String(100), nullable=False, index=True, unique=True)
    description = Column(Text)
    price = Column(Integer, nullable=False)
    stock = Column(Integer, nullable=False, default=0)
    category = Column(String(50), index=True)
    image_url = Column(String(500))
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class Cart(Base):
    """One cart per user. It is cleared after checkout, never deleted."""

    __tablename__ = "carts"

    id = Column(String(32), primary_key=True, default=new_id)
    user_id = Column(String(64), nullable=False, unique=True, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    items = relationship(
        "CartItem",
        back_populates="cart",
        cascade="all, delete-orphan",
        order_by="CartItem.position",
    )

    @property
    def total(self) -> int:
        return sum(item.price * item.quantity for item in self.items)

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)


class CartItem(Base):
    __tablename__ = "cart_items"

    id = Column(String(32), primary_key=True, default=new_id)
    cart_id = Column(String(32), ForeignKey("carts.id", ondelete="CASCADE"), nullable=False, index=True)
    # weak reference: the product row may be edited or deleted later
    product_id = Column(String(32), nullable=False, index=True)
    product_name = Column(String(100), nullable=False)
    quantity = Column(Integer, nullable=False)
    price = Column(Integer, nullable=False)
    position = Column(Integer, nullable=False, default=0)

    cart = relationship("Cart", back_populates="items")


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        UniqueConstraint("user_id", "idempotency_key", name="uq_orders_user_idempotency_key"),
    )

    id = Column(String(32), primary_key=True, default=new_id)
    user_id = Column(String(64), nullable=False, index=True)
    total = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default="pending", index=True)
    payment_method = Column(String(20), nullable=False)
    payment_status = Column(String(20), nullable=False, default="pending")
    payment_reference = Column(String(100))
    shipping_address = Column(JSON, nullable=False)
    first_name = Column(String(100))
    last_name = Column(String(100))
    email = Column(String(255))
    phone = Column(String(50))
    idempotency_key = Column(String(128), index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.position",
    )


class OrderItem(Base):
    """Snapshot of a cart line at checkout time."""

    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(32), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(String(32), nullable=False, index=True)
    product_name = Column(String(100), nullable=False)
    quantity = Column(Integer, nullable=False)
    price = Column(Integer, nullable=False)
    position = Column(Integer, nullable=False, default=0)

    order = relationship("Order", back_populates="items")


class ReconciliationCase(Base):
    """A payment that succeeded while the rest of the checkout did not commit.

    Rows are written in their own transaction so they survive the rollback of
    the checkout that produced them.
    """

    __tablename__ = "reconciliation_cases"

    id = Column(String(32), primary_key=True, default=new_id)
    user_id = Column(String(64), nullable=False, index=True)
    payment_method = Column(String(20), nullable=False)
    payment_reference = Column(String(100))
    amount = Column(Integer, nullable=False)
    reason = Column(Text, nullable=False)
    idempotency_key = Column(String(128))
    resolved = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
