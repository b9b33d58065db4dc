"""Decision proposals produced by the fast lane, the AI director and the fallbacks.

A decision is a tagged union keyed by ``action``. Each variant carries only the
payload its action needs; nothing here is applied until the orchestrator
executes it.
"""

from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from app.schemas.context import ProductRef
from app.services.state_machine import ConversationState, parse_state


class DecisionAction(str, Enum):
    REPLY = "REPLY"
    ADD_TO_CART = "ADD_TO_CART"
    UPDATE_CONTEXT = "UPDATE_CONTEXT"
    CREATE_ORDER = "CREATE_ORDER"
    ESCALATE_TO_HUMAN = "ESCALATE_TO_HUMAN"
    CLARIFY = "CLARIFY"


class DecisionSource(str, Enum):
    FAST_LANE = "fast_lane"
    AI_DIRECTOR = "ai_director"
    FALLBACK = "fallback"


class _DecisionBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    target_state: ConversationState
    reply: str = ""
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    source: DecisionSource = DecisionSource.FAST_LANE

    @field_validator("target_state", mode="before")
    @classmethod
    def _coerce_state(cls, value):
        return parse_state(value)


class CartItemRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    product_id: str
    variant: Optional[str] = None
    quantity: int = 1


class ContextUpdates(BaseModel):
    """Fields a decision wants written. Only explicitly set fields are applied."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_address: Optional[str] = None
    delivery_charge: Optional[float] = None
    payment_digits: Optional[str] = None
    shown_products: Optional[tuple[ProductRef, ...]] = None
    pending_product: Optional[ProductRef] = None
    scratch: Optional[dict[str, Any]] = None

    def explicit(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in self.model_fields_set}

    def referenced_products(self) -> list[ProductRef]:
        products = list(self.shown_products or ())
        if self.pending_product is not None:
            products.append(self.pending_product)
        return products


class ReplyDecision(_DecisionBase):
    action: Literal["REPLY"] = "REPLY"


class AddToCartDecision(_DecisionBase):
    action: Literal["ADD_TO_CART"] = "ADD_TO_CART"
    items: tuple[CartItemRequest, ...] = ()


class UpdateContextDecision(_DecisionBase):
    action: Literal["UPDATE_CONTEXT"] = "UPDATE_CONTEXT"
    updates: ContextUpdates = Field(default_factory=ContextUpdates)


class CreateOrderDecision(_DecisionBase):
    action: Literal["CREATE_ORDER"] = "CREATE_ORDER"
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_address: Optional[str] = None
    payment_digits: Optional[str] = None


class EscalateDecision(_DecisionBase):
    action: Literal["ESCALATE_TO_HUMAN"] = "ESCALATE_TO_HUMAN"
    reason: str = "customer_request"


class ClarifyDecision(_DecisionBase):
    action: Literal["CLARIFY"] = "CLARIFY"


Decision = Annotated[
    Union[
        ReplyDecision,
        AddToCartDecision,
        UpdateContextDecision,
        CreateOrderDecision,
        EscalateDecision,
        ClarifyDecision,
    ],
    Field(discriminator="action"),
]

DECISION_ADAPTER: TypeAdapter = TypeAdapter(Decision)


def parse_decision(payload: dict) -> "Decision":
    """Validate a raw dict into a decision variant. Raises pydantic.ValidationError."""
    return DECISION_ADAPTER.validate_python(payload)
