from pydantic import BaseModel, Field, PlainSerializer, field_validator, model_validator
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Optional
import re

from darktides.domain.models import DiscountType, OrderStatus, PaymentMethod

# Decimal in Python, plain number on the wire
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
ORDER_NUMBER_PATTERN = r"^DT-[A-Z0-9]{4,12}$"

# ---------------------------------------------------------------- products

class ProductBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    short_name: Optional[str] = None
    dosage: Optional[str] = None
    sku: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = None
    category: Optional[str] = None
    price: Decimal = Field(..., gt=0)
    old_price: Optional[Decimal] = Field(None, gt=0)
    display_order: Optional[int] = None

class ProductCreate(ProductBase):
    id: str = Field(..., min_length=1, max_length=64)
    stock_quantity: int = Field(0, ge=0)
    is_active: bool = True

class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    short_name: Optional[str] = None
    dosage: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    price: Optional[Decimal] = Field(None, gt=0)
    old_price: Optional[Decimal] = Field(None, gt=0)
    display_order: Optional[int] = None

class StockUpdate(BaseModel):
    stock_quantity: int = Field(..., ge=0)
    note: Optional[str] = None

class ProductPublic(BaseModel):
    """Catalog view; exposes sellable availability, not the hold bookkeeping."""
    id: str
    name: str
    short_name: Optional[str] = None
    dosage: Optional[str] = None
    sku: str
    description: Optional[str] = None
    category: Optional[str] = None
    price: Money
    old_price: Optional[Money] = None
    available: int
    display_order: Optional[int] = None
    class Config:
        from_attributes = True

class ProductRead(ProductPublic):
    stock_quantity: int
    reserved_quantity: int
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class InventoryTransactionRead(BaseModel):
    id: int
    product_id: str
    transaction_type: str
    quantity_change: int
    balance_after: int
    order_number: Optional[str] = None
    details: Optional[dict] = None
    created_at: datetime
    class Config:
        from_attributes = True

# --------------------------------------------------------------- inventory

class SessionRead(BaseModel):
    session_id: str

class AvailabilityResult(BaseModel):
    available: bool
    message: Optional[str] = None

class ReservationRequest(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)

class ReservationResult(BaseModel):
    success: bool
    reservation_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    message: Optional[str] = None

class ReservationRead(BaseModel):
    id: str
    session_id: str
    product_id: str
    quantity: int
    expires_at: datetime
    created_at: datetime
    class Config:
        from_attributes = True

class CartItem(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)

class CartValidationRequest(BaseModel):
    items: list[CartItem]

class CartValidationResult(BaseModel):
    valid: bool
    invalid_items: list[str] = []

# --------------------------------------------------------------- discounts

class DiscountValidateRequest(BaseModel):
    code: str
    subtotal: Decimal = Field(..., ge=0)

class DiscountResult(BaseModel):
    valid: bool
    code: Optional[str] = None
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[Money] = None
    discount_amount: Optional[Money] = None
    message: Optional[str] = None

class DiscountCodeCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: Decimal = Field(..., gt=0)

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        v = v.strip().upper()
        if not v:
            raise ValueError("code must not be blank")
        return v

    @model_validator(mode="after")
    def check_percentage(self):
        if self.discount_type == DiscountType.PERCENTAGE and self.discount_value > 100:
            raise ValueError("percentage discounts cannot exceed 100")
        return self

class DiscountCodeUpdate(BaseModel):
    description: Optional[str] = None
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[Decimal] = Field(None, gt=0)
    is_active: Optional[bool] = None

class DiscountCodeRead(BaseModel):
    id: str
    code: str
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: Money
    usage_count: int
    is_active: bool
    created_at: datetime
    updated_at: datetime
    class Config:
        from_attributes = True

class DiscountStats(BaseModel):
    total_usage: int
    total_revenue: Money
    total_discounts: Money

# ------------------------------------------------------------------ orders

class CustomerData(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., max_length=255)
    phone: str = Field(..., min_length=1, max_length=50)
    address: str = Field(..., min_length=1, max_length=300)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=50)
    zip: str = Field(..., min_length=1, max_length=20)
    order_notes: Optional[str] = None

    @field_validator("first_name", "last_name", "phone", "address", "city", "state", "zip")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("field is required")
        return v

    @field_validator("email")
    @classmethod
    def valid_email(cls, v: str) -> str:
        v = v.strip()
        if not EMAIL_RE.match(v):
            raise ValueError("invalid email address")
        return v

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

class OrderLine(BaseModel):
    """Cart line with the price/SKU snapshot taken when the order is placed."""
    product_id: str
    name: str
    sku: str
    unit_price: Decimal = Field(..., ge=0)
    quantity: int = Field(..., ge=1)

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

class OrderTotals(BaseModel):
    subtotal: Money
    shipping_cost: Money = Decimal("0.00")
    discount_code: Optional[str] = None
    discount_amount: Money = Decimal("0.00")
    total: Money

class FinalizeResult(BaseModel):
    success: bool
    order_number: Optional[str] = None
    already_finalized: bool = False
    message: Optional[str] = None

class QuoteRequest(BaseModel):
    items: list[CartItem] = Field(..., min_length=1)
    discount_code: Optional[str] = None

class Quote(OrderTotals):
    lines: list[OrderLine] = []
    discount_message: Optional[str] = None

class CheckoutRequest(BaseModel):
    order_number: Optional[str] = Field(None, pattern=ORDER_NUMBER_PATTERN)
    customer: CustomerData
    items: list[CartItem] = Field(..., min_length=1)
    discount_code: Optional[str] = None
    payment_method: PaymentMethod

class VenmoInstructions(BaseModel):
    handle: str
    amount: Money
    memo: str
    payment_url: str

class CryptoRedirect(BaseModel):
    charge_code: str
    hosted_url: str
    expires_at: Optional[str] = None

class CheckoutResult(BaseModel):
    success: bool
    step: str
    order_number: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None
    totals: Optional[OrderTotals] = None
    venmo_instructions: Optional[VenmoInstructions] = None
    crypto_redirect: Optional[CryptoRedirect] = None
    invalid_items: list[str] = []
    message: Optional[str] = None

class OrderStatusRead(BaseModel):
    order_number: str
    status: str
    payment_status: str
    payment_method: str

class OrderItemRead(BaseModel):
    product_id: str
    product_name: str
    sku: str
    quantity: int
    unit_price: Money
    class Config:
        from_attributes = True

class OrderRead(BaseModel):
    id: str
    order_number: str
    customer_data: dict
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    subtotal: Money
    shipping_cost: Money
    discount_code: Optional[str] = None
    discount_amount: Money
    total: Money
    payment_method: str
    payment_status: str
    status: str
    coinbase_charge_code: Optional[str] = None
    coinbase_hosted_url: Optional[str] = None
    crypto_payment_details: Optional[dict] = None
    created_at: datetime
    updated_at: datetime
    items: list[OrderItemRead]
    class Config:
        from_attributes = True

class OrderStatusUpdate(BaseModel):
    status: OrderStatus

# ---------------------------------------------------------------- payments

class ConfirmResult(BaseModel):
    success: bool
    order_number: Optional[str] = None
    newly_confirmed: bool = False
    message: Optional[str] = None

class ChargeMetadata(BaseModel):
    order_number: Optional[str] = None
    class Config:
        extra = "allow"

class ChargeData(BaseModel):
    code: Optional[str] = None
    metadata: Optional[ChargeMetadata] = None
    payments: Optional[list[dict[str, Any]]] = None
    timeline: Optional[list[dict[str, Any]]] = None
    confirmed_at: Optional[str] = None
    class Config:
        extra = "allow"

class WebhookEvent(BaseModel):
    """Shape check for a Coinbase Commerce event; the raw dict is what gets stored."""
    id: Optional[str] = None
    type: Optional[str] = None
    data: Optional[ChargeData] = None
    class Config:
        extra = "allow"

class PaymentEventRead(BaseModel):
    id: int
    event_id: str
    event_type: str
    charge_code: Optional[str] = None
    order_number: Optional[str] = None
    processed: bool
    created_at: datetime
    class Config:
        from_attributes = True

# ------------------------------------------------------------ misc / admin

class ContactRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    email: str = Field(..., max_length=255)
    subject: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1, max_length=5000)

    @field_validator("email")
    @classmethod
    def valid_email(cls, v: str) -> str:
        v = v.strip()
        if not EMAIL_RE.match(v):
            raise ValueError("invalid email address")
        return v

class TokenRequest(BaseModel):
    username: str
    password: str

class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
