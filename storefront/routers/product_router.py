from typing import Dict

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from .. import crud
from ..auth import get_current_staff
from ..database import get_db
from ..schemas import ProductCreate, ProductOut, ProductUpdate, StockUpdate

router = APIRouter(prefix="/products", tags=["Catalog"])


@router.get("/{product_id}", response_model=ProductOut)
def view_product(product_id: str, db: Session = Depends(get_db)):
    return crud.get_product(db, product_id)


@router.post("/", response_model=ProductOut, status_code=status.HTTP_201_CREATED)
def create_product(
    body: ProductCreate,
    current_staff: Dict = Depends(get_current_staff),
    db: Session = Depends(get_db),
):
    return crud.create_product(db, body.model_dump())


@router.patch("/{product_id}", response_model=ProductOut)
def update_product(
    product_id: str,
    body: ProductUpdate,
    current_staff: Dict = Depends(get_current_staff),
    db: Session = Depends(get_db),
):
    return crud.update_product(db, product_id, body.model_dump(exclude_unset=True))


@router.put("/{product_id}/stock", response_model=ProductOut)
def set_product_stock(
    product_id: str,
    body: StockUpdate,
    current_staff: Dict = Depends(get_current_staff),
    db: Session = Depends(get_db),
):
    return crud.set_stock(db, product_id, body.stock)


@router.delete("/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_product(
    product_id: str,
    current_staff: Dict = Depends(get_current_staff),
    db: Session = Depends(get_db),
):
    crud.delete_product(db, product_id)
    return None
