from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.services.state_machine import ConversationState


class ContextField(str, Enum):
    CART = "cart"
    CUSTOMER_NAME = "customer_name"
    CUSTOMER_PHONE = "customer_phone"
    CUSTOMER_ADDRESS = "customer_address"
    SHOWN_PRODUCTS = "shown_products"
    PENDING_PRODUCT = "pending_product"
    DELIVERY_CHARGE = "delivery_charge"
    PAYMENT_DIGITS = "payment_digits"
    SCRATCH = "scratch"


CHECKOUT_FIELDS = (ContextField.CUSTOMER_NAME, ContextField.CUSTOMER_PHONE, ContextField.CUSTOMER_ADDRESS)


class ProductRef(BaseModel):
    """Catalog snapshot of a product the customer has been shown."""

    model_config = ConfigDict(frozen=True)

    product_id: str
    name: str
    price: float
    stock: int = 0
    variants: tuple[str, ...] = ()


class CartItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    product_id: str
    product_name: str = ""
    variant: Optional[str] = None
    quantity: int = 1
    unit_price: float = 0.0

    @property
    def subtotal(self) -> float:
        return self.unit_price * self.quantity


class PendingImage(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    recognition: Optional[str] = None


class ConversationContext(BaseModel):
    """Working memory of one conversation. Never mutated in place."""

    model_config = ConfigDict(frozen=True)

    state: ConversationState = ConversationState.IDLE
    cart: tuple[CartItem, ...] = ()
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_address: Optional[str] = None
    pending_images: tuple[PendingImage, ...] = ()
    shown_products: tuple[ProductRef, ...] = ()
    pending_product: Optional[ProductRef] = None
    delivery_charge: Optional[float] = None
    payment_digits: Optional[str] = None
    last_order_number: Optional[str] = None
    scratch: dict[str, Any] = Field(default_factory=dict)

    @property
    def cart_total(self) -> float:
        return sum(item.subtotal for item in self.cart)

    def cart_quantity(self, product_id: str) -> int:
        return sum(item.quantity for item in self.cart if item.product_id == product_id)

    def missing_checkout_fields(self) -> list[ContextField]:
        return [field for field in CHECKOUT_FIELDS if not getattr(self, field.value)]

    def to_storage(self) -> dict:
        return self.model_dump(mode="json")

    @classmethod
    def from_storage(cls, data: Optional[dict], state: Optional[str] = None) -> "ConversationContext":
        """Build from a stored JSON blob. The row's state column wins over the blob."""
        payload = dict(data or {})
        if state:
            payload["state"] = state
        return cls.model_validate(payload)
