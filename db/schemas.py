from decimal import Decimal
from typing import Annotated, List, Optional
from datetime import datetime

from pydantic import BaseModel, PlainSerializer

# Decimal in Python, plain number on the wire
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class UserOut(BaseModel):
    id: int
    name: str
    mobile: str
    email: Optional[str] = None
    model_config = {"from_attributes": True}


class UserProfileOut(UserOut):
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None
    is_verified: bool
    created_at: Optional[datetime] = None


class UserSummaryOut(UserOut):
    city: Optional[str] = None
    state: Optional[str] = None
    is_verified: bool
    created_at: Optional[datetime] = None
    order_count: int = 0


class CategoryOut(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    product_count: int = 0


class ProductOut(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    short_description: Optional[str] = None
    price: Money
    discount_price: Optional[Money] = None
    weight: Optional[str] = None
    stock_quantity: int
    category_id: Optional[int] = None
    category_name: Optional[str] = None
    image_url: Optional[str] = None
    featured: bool = False
    has_discount: bool
    discount_percentage: int
    final_price: Money
    in_stock: bool


class CartLineOut(BaseModel):
    product_id: int
    name: str
    weight: Optional[str] = None
    image_url: Optional[str] = None
    quantity: int
    price: Money
    discount_price: Optional[Money] = None
    final_price: Money
    line_total: Money
    stock_quantity: int
    in_stock: bool
    has_discount: bool
    discount_percentage: int


class CartSummaryOut(BaseModel):
    item_count: int = 0
    total_quantity: int = 0
    subtotal: Money = Decimal("0")
    discount_amount: Money = Decimal("0")
    shipping_amount: Money = Decimal("0")
    total_amount: Money = Decimal("0")
    has_out_of_stock: bool = False
    meets_minimum_order: bool = False
    items: List[CartLineOut] = []


class CartValidationOut(BaseModel):
    valid: bool
    errors: List[str] = []
    summary: CartSummaryOut


class OrderItemOut(BaseModel):
    id: int
    product_id: int
    product_name: str
    product_weight: Optional[str] = None
    price: Money
    quantity: int
    total_amount: Money
    model_config = {"from_attributes": True}


class OrderOut(BaseModel):
    id: int
    order_number: str
    user_id: int
    total_amount: Money
    discount_amount: Money
    shipping_amount: Money
    final_amount: Money
    payment_method: str
    status: str
    payment_status: str
    shipping_address: str
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    customer_name: Optional[str] = None
    customer_mobile: Optional[str] = None
    customer_email: Optional[str] = None
    item_count: int = 0
    items: List[OrderItemOut] = []


class OrderTrackingOut(BaseModel):
    order_number: str
    status: str
    payment_status: str
    created_at: Optional[datetime] = None
    final_amount: Money
    items: List[dict] = []
