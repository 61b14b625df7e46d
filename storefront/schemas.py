from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentMethod(str, Enum):
    CARD = "card"
    TRANSFER = "transfer"
    CASH_ON_DELIVERY = "cash_on_delivery"


# Products

class ProductBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    price: int = Field(..., gt=0, description="Price in the smallest currency unit")
    stock: int = Field(..., ge=0)
    category: Optional[str] = None
    image_url: Optional[str] = None
    is_active: bool = True


class ProductCreate(ProductBase):
    pass


class ProductUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[int] = Field(None, gt=0)
    category: Optional[str] = None
    image_url: Optional[str] = None
    is_active: Optional[bool] = None


class StockUpdate(BaseModel):
    stock: int = Field(..., ge=0)


class ProductOut(ProductBase):
    id: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# Cart

class CartItemAdd(BaseModel):
    product_id: str = Field(..., min_length=1)
    quantity: int = Field(1, gt=0)


class CartItemUpdate(BaseModel):
    # 0 or less removes the line
    quantity: int


class CartItemOut(BaseModel):
    id: str
    product_id: str
    product_name: str
    quantity: int
    price: int

    model_config = ConfigDict(from_attributes=True)


class CartOut(BaseModel):
    id: str
    user_id: str
    items: List[CartItemOut] = []
    total: int
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CartSummary(BaseModel):
    total: int
    item_count: int
    quantity_for: Optional[int] = None


class StockError(BaseModel):
    product_id: str
    product_name: str
    message: str
    requested: int
    available: int


class StockValidation(BaseModel):
    valid: bool
    errors: List[StockError] = []


# Orders

class Address(BaseModel):
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zip_code: str = Field(..., min_length=1)
    country: str = Field("Colombia", min_length=1)


class CheckoutData(BaseModel):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    email: EmailStr
    phone: str = Field(..., min_length=1)
    shipping_address: Address
    payment_method: PaymentMethod
    payment_token: Optional[str] = Field(
        None, description="Gateway payment method token, used by card/transfer"
    )


class OrderItemOut(BaseModel):
    product_id: str
    product_name: str
    quantity: int
    price: int

    model_config = ConfigDict(from_attributes=True)


class OrderOut(BaseModel):
    id: str
    user_id: str
    items: List[OrderItemOut] = []
    total: int
    status: OrderStatus
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    payment_reference: Optional[str] = None
    shipping_address: Address
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class OrderStatusUpdate(BaseModel):
    status: OrderStatus


class PaymentStatusUpdate(BaseModel):
    payment_status: PaymentStatus


class OrderListResponse(BaseModel):
    orders: List[OrderOut]
    total: int
    page: int
    limit: int
    total_pages: int


class ReconciliationCaseOut(BaseModel):
    id: str
    user_id: str
    payment_method: str
    payment_reference: Optional[str] = None
    amount: int
    reason: str
    idempotency_key: Optional[str] = None
    resolved: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
