from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from sqlalchemy.orm import Session

from .. import crud, schemas
from ..auth import get_current_staff, get_current_user, has_role
from ..database import get_db, get_session_factory
from ..errors import NotFound
from ..orders import OrderWorkflow
from ..payments import PaymentGateway, get_payment_gateway

router = APIRouter(prefix="/orders", tags=["Orders"])


def get_order_workflow(
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    session_factory=Depends(get_session_factory),
) -> OrderWorkflow:
    return OrderWorkflow(db, gateway, session_factory=session_factory)


@router.post("/checkout", response_model=schemas.OrderOut, status_code=status.HTTP_201_CREATED)
def checkout(
    body: schemas.CheckoutData,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key", max_length=128),
    current_user: Dict = Depends(get_current_user),
    workflow: OrderWorkflow = Depends(get_order_workflow),
):
    """Turn the caller's cart into an order.

    Stock is checked again here even if /cart/check-stock passed earlier.
    Resubmitting with the same Idempotency-Key returns the order created by
    the first successful attempt instead of charging again.
    """
    return workflow.create_order(current_user["id"], body, idempotency_key=idempotency_key)


@router.get("/me", response_model=schemas.OrderListResponse)
def get_my_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: Dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return crud.list_orders_for_user(db, current_user["id"], page=page, limit=limit)


@router.get("/reconciliation", response_model=List[schemas.ReconciliationCaseOut])
def get_reconciliation_cases(
    include_resolved: bool = False,
    current_staff: Dict = Depends(get_current_staff),
    db: Session = Depends(get_db),
):
    return crud.list_reconciliation_cases(db, include_resolved=include_resolved)


@router.get("", response_model=schemas.OrderListResponse)
def get_all_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_staff: Dict = Depends(get_current_staff),
    db: Session = Depends(get_db),
):
    return crud.list_all_orders(db, page=page, limit=limit)


@router.get("/{order_id}", response_model=schemas.OrderOut)
def get_order(
    order_id: str,
    current_user: Dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    db_order = crud.get_order(db, order_id)
    if db_order is None:
        raise NotFound(f"Order with id {order_id} not found", order_id=order_id)
    if db_order.user_id != current_user["id"] and not has_role(current_user, "employee"):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not allowed to view this order",
        )
    return db_order


@router.patch("/{order_id}/status", response_model=schemas.OrderOut)
def update_order_status(
    order_id: str,
    body: schemas.OrderStatusUpdate,
    current_staff: Dict = Depends(get_current_staff),
    workflow: OrderWorkflow = Depends(get_order_workflow),
):
    return workflow.update_status(order_id, body.status)


@router.patch("/{order_id}/payment-status", response_model=schemas.OrderOut)
def update_payment_status(
    order_id: str,
    body: schemas.PaymentStatusUpdate,
    current_staff: Dict = Depends(get_current_staff),
    workflow: OrderWorkflow = Depends(get_order_workflow),
):
    return workflow.update_payment_status(order_id, body.payment_status)
