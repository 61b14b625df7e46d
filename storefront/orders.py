"""Checkout commit and the order status state machines.

Checkout runs as one database transaction: stock is compare-and-decremented,
payment is taken, the order is inserted and the cart emptied, then a single
commit makes all of it visible. Nothing is retried here; a caller that got a
retryable error resubmits, ideally with the same ``Idempotency-Key``.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, FrozenSet, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from . import crud
from .cart import CartService
from .catalog import Catalog
from .database import SessionLocal, unavailable_on_db_error
from .errors import (
    InsufficientStock,
    InvalidTransition,
    NotFound,
    PaymentDeclined,
    ReconciliationRequired,
    ValidationFailed,
)
from .messaging import publish_event
from .models import Order, OrderItem, ReconciliationCase, new_id, utcnow
from .payments import PaymentGateway, PaymentResult
from .schemas import CheckoutData, OrderStatus, PaymentMethod, PaymentStatus
from .stock import validate_stock

logger = logging.getLogger(__name__)

ORDER_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    OrderStatus.PENDING.value: frozenset({OrderStatus.PROCESSING.value, OrderStatus.CANCELLED.value}),
    OrderStatus.PROCESSING.value: frozenset({OrderStatus.SHIPPED.value, OrderStatus.CANCELLED.value}),
    OrderStatus.SHIPPED.value: frozenset({OrderStatus.DELIVERED.value}),
    OrderStatus.DELIVERED.value: frozenset(),
    OrderStatus.CANCELLED.value: frozenset(),
}

PAYMENT_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    PaymentStatus.PENDING.value: frozenset({PaymentStatus.COMPLETED.value, PaymentStatus.FAILED.value}),
    PaymentStatus.COMPLETED.value: frozenset(),
    PaymentStatus.FAILED.value: frozenset(),
}


def can_transition(graph: Dict[str, FrozenSet[str]], current: str, new: str) -> bool:
    return new in graph.get(current, frozenset())


class OrderWorkflow:
    def __init__(
        self,
        db: Session,
        gateway: PaymentGateway,
        catalog: Optional[Catalog] = None,
        session_factory: Callable[[], Session] = SessionLocal,
    ):
        self.db = db
        self.gateway = gateway
        self.catalog = catalog or Catalog(db)
        # reconciliation cases are written outside the failed checkout transaction
        self.session_factory = session_factory

    def create_order(
        self,
        user_id: str,
        checkout: CheckoutData,
        idempotency_key: Optional[str] = None,
    ) -> Order:
        if idempotency_key:
            existing = self._replay(user_id, idempotency_key)
            if existing is not None:
                return existing

        cart = CartService(self.db, user_id, self.catalog).find_cart()
        if cart is None or not cart.items:
            raise ValidationFailed("Your cart is empty")

        validation = validate_stock(cart, self.catalog)
        if not validation.valid:
            raise InsufficientStock(
                "Some items are not available in the requested quantity",
                errors=[e.model_dump() for e in validation.errors],
            )

        order = self._snapshot(user_id, cart, checkout, idempotency_key)

        try:
            self.catalog.decrement_stock_batch(
                (item.product_id, item.quantity, item.product_name) for item in order.items
            )
            payment = self._settle(order, checkout, idempotency_key)
        except Exception:
            self.db.rollback()
            raise

        if payment.declined and order.payment_method == PaymentMethod.CARD.value:
            self.db.rollback()
            logger.info("card payment declined for user=%s: %s", user_id, payment.reason)
            raise PaymentDeclined(
                payment.reason or "Payment declined. Check your card details.",
                payment_reference=payment.reference,
            )

        order.payment_status = payment.status
        order.payment_reference = payment.reference

        try:
            with unavailable_on_db_error():
                self.db.add(order)
                cart.items.clear()
                cart.updated_at = order.created_at
                self.db.commit()
        except Exception as e:
            self.db.rollback()
            if isinstance(e, IntegrityError) and idempotency_key:
                # a concurrent request with the same key committed first
                existing = self._replay(user_id, idempotency_key)
                if existing is not None and (
                    not payment.charged or existing.payment_reference == payment.reference
                ):
                    return existing
            if payment.charged:
                raise self._escalate(order, payment, e) from e
            raise

        self.db.refresh(order)
        logger.info(
            "order %s created for user=%s total=%s method=%s payment=%s",
            order.id, user_id, order.total, order.payment_method, order.payment_status,
        )
        publish_event(
            "order.created",
            {
                "order_id": order.id,
                "user_id": order.user_id,
                "total": order.total,
                "payment_method": order.payment_method,
                "payment_status": order.payment_status,
                "items": [{"product_id": i.product_id, "quantity": i.quantity} for i in order.items],
            },
        )
        return order

    def update_status(self, order_id: str, new_status) -> Order:
        new_status = _coerce(OrderStatus, new_status)
        return self._transition(order_id, Order.status, ORDER_TRANSITIONS, new_status, "order.status_changed")

    def update_payment_status(self, order_id: str, new_status) -> Order:
        new_status = _coerce(PaymentStatus, new_status)
        return self._transition(
            order_id, Order.payment_status, PAYMENT_TRANSITIONS, new_status, "order.payment_status_changed"
        )

    # -----------------------------
    # helpers
    # -----------------------------

    def _replay(self, user_id: str, idempotency_key: str) -> Optional[Order]:
        existing = crud.get_order_by_idempotency_key(self.db, user_id, idempotency_key)
        if existing is not None:
            logger.info("checkout replay for user=%s key=%s -> order %s", user_id, idempotency_key, existing.id)
        return existing

    def _snapshot(self, user_id, cart, checkout: CheckoutData, idempotency_key) -> Order:
        now = utcnow()
        return Order(
            id=new_id(),
            user_id=user_id,
            total=cart.total,
            status=OrderStatus.PENDING.value,
            payment_method=checkout.payment_method.value,
            payment_status=PaymentStatus.PENDING.value,
            shipping_address=checkout.shipping_address.model_dump(),
            first_name=checkout.first_name,
            last_name=checkout.last_name,
            email=str(checkout.email),
            phone=checkout.phone,
            idempotency_key=idempotency_key,
            created_at=now,
            updated_at=now,
            items=[
                OrderItem(
                    product_id=item.product_id,
                    product_name=item.product_name,
                    quantity=item.quantity,
                    price=item.price,
                    position=position,
                )
                for position, item in enumerate(cart.items)
            ],
        )

    def _settle(self, order: Order, checkout: CheckoutData, idempotency_key: Optional[str]) -> PaymentResult:
        if order.payment_method == PaymentMethod.CASH_ON_DELIVERY.value:
            return PaymentResult(status=PaymentStatus.PENDING.value)

        return self.gateway.charge(
            amount=order.total,
            method=order.payment_method,
            token=checkout.payment_token,
            idempotency_key=_provider_key(order, idempotency_key),
            metadata={"order_id": order.id, "user_id": order.user_id},
        )

    def _escalate(self, order: Order, payment: PaymentResult, cause: Exception) -> ReconciliationRequired:
        case_id = new_id()
        reason = f"Checkout commit failed after payment: {cause.__class__.__name__}: {cause}"
        logger.error(
            "payment %s taken but order was not committed (user=%s amount=%s): %s",
            payment.reference, order.user_id, order.total, cause,
        )

        db = self.session_factory()
        try:
            db.add(
                ReconciliationCase(
                    id=case_id,
                    user_id=order.user_id,
                    payment_method=order.payment_method,
                    payment_reference=payment.reference,
                    amount=order.total,
                    reason=reason,
                    idempotency_key=order.idempotency_key,
                )
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            case_id = None
            logger.critical("could not record reconciliation case for payment %s", payment.reference, exc_info=True)
        finally:
            db.close()

        publish_event(
            "order.reconciliation_required",
            {
                "case_id": case_id,
                "user_id": order.user_id,
                "payment_reference": payment.reference,
                "payment_method": order.payment_method,
                "amount": order.total,
                "reason": reason,
            },
        )
        return ReconciliationRequired(
            "Your payment was received but the order could not be saved. Our team has been notified.",
            case_id=case_id,
            payment_reference=payment.reference,
        )

    def _transition(self, order_id, column, graph, new_status: str, event: str) -> Order:
        order = crud.get_order(self.db, order_id)
        if order is None:
            raise NotFound(f"Order with id {order_id} not found", order_id=order_id)

        current = getattr(order, column.key)
        if not can_transition(graph, current, new_status):
            raise InvalidTransition(current, new_status)

        # compare-and-set so two admins cannot both move the order from the same state
        with unavailable_on_db_error():
            result = self.db.execute(
                update(Order)
                .where(Order.id == order_id, column == current)
                .values({column.key: new_status, "updated_at": utcnow()})
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                self.db.rollback()
                order = crud.get_order(self.db, order_id, fresh=True)
                raise InvalidTransition(getattr(order, column.key), new_status)
            self.db.commit()

        order = crud.get_order(self.db, order_id, fresh=True)
        logger.info("order %s %s: %s -> %s", order_id, column.key, current, new_status)
        publish_event(event, {"order_id": order_id, "user_id": order.user_id, "from": current, "to": new_status})
        return order


def _coerce(enum_cls, value) -> str:
    try:
        return enum_cls(value).value
    except ValueError:
        raise ValidationFailed(f"Unknown {enum_cls.__name__}: {value!r}") from None


def _provider_key(order: Order, idempotency_key: Optional[str]) -> str:
    # client keys are unique per user, provider keys per account
    if idempotency_key:
        return f"{order.user_id}:{idempotency_key}"
    return order.id
