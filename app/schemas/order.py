from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from app.schemas.context import CartItem


class OrderDraft(BaseModel):
    """Everything needed to insert an order row, captured before the cart is cleared."""

    model_config = ConfigDict(frozen=True)

    order_number: str
    customer_name: str
    customer_phone: str
    customer_address: str
    items: tuple[CartItem, ...]
    subtotal: float
    delivery_charge: float = 0.0
    payment_digits: Optional[str] = None

    @property
    def total(self) -> float:
        return self.subtotal + self.delivery_charge


class OrderSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    order_number: str
    status: str
    total: float
    customer_name: Optional[str] = None
    created_at: Optional[datetime] = None
    items: tuple[str, ...] = ()
