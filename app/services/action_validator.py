"""Safety gate between a proposed decision and its execution.

Every check can reject on its own. Rejections never reach the customer
verbatim; ``fallback_decision`` turns them into a clarification that keeps the
conversation in its current state.
"""

from enum import Enum
from typing import Optional

from app.config import settings
from app.logging_config import get_logger
from app.schemas.context import ConversationContext, ProductRef
from app.schemas.decision import (
    AddToCartDecision,
    ClarifyDecision,
    CreateOrderDecision,
    Decision,
    DecisionSource,
    UpdateContextDecision,
)
from app.services import replies
from app.services.interfaces import ProductCatalog
from app.services.result import Result
from app.services.state_machine import ConversationState, can_transition
from app.services.validators import is_complete_address, is_payment_digits, is_valid_phone

logger = get_logger("action_validator")

PAYMENT_STATES = frozenset([ConversationState.CONFIRMING_ORDER, ConversationState.AWAITING_PAYMENT_DIGITS])


class RejectionReason(str, Enum):
    LOW_CONFIDENCE = "low_confidence"
    INVALID_STATE_TRANSITION = "invalid_state_transition"
    INVALID_PRODUCT = "invalid_product"
    OUT_OF_STOCK = "out_of_stock"
    INVALID_QUANTITY = "invalid_quantity"
    MISSING_CHECKOUT_INFO = "missing_checkout_info"
    INVALID_PHONE = "invalid_phone"
    INCOMPLETE_ADDRESS = "incomplete_address"
    EMPTY_CART = "empty_cart"
    PREMATURE_PAYMENT = "premature_payment"
    INVALID_PAYMENT_DIGITS = "invalid_payment_digits"


class _Rejected(Exception):
    def __init__(self, reason: RejectionReason, message: str):
        self.reason = reason
        self.message = message
        super().__init__(message)


class ActionValidator:
    def __init__(self, catalog: ProductCatalog, min_confidence: Optional[float] = None):
        self.catalog = catalog
        self.min_confidence = settings.min_decision_confidence if min_confidence is None else min_confidence

    def validate(self, decision: Decision, context: ConversationContext) -> Result[Decision]:
        try:
            self._check_confidence(decision)
            self._check_transition(decision, context)
            if isinstance(decision, AddToCartDecision):
                self._check_cart_items(decision, context)
            elif isinstance(decision, UpdateContextDecision):
                self._check_updates(decision, context)
            elif isinstance(decision, CreateOrderDecision):
                self._check_order(decision, context)
        except _Rejected as rejection:
            logger.info(
                "Decision rejected",
                extra={
                    "context": {
                        "action": decision.action,
                        "reason": rejection.reason.value,
                        "detail": rejection.message,
                        "state": context.state.value,
                    }
                },
            )
            return Result.failure(rejection.message, rejection.reason)
        return Result.success(decision)

    def _check_confidence(self, decision: Decision) -> None:
        if decision.confidence < self.min_confidence:
            raise _Rejected(
                RejectionReason.LOW_CONFIDENCE,
                f"confidence {decision.confidence:.2f} below {self.min_confidence:.2f}",
            )

    def _check_transition(self, decision: Decision, context: ConversationContext) -> None:
        if not can_transition(context.state, decision.target_state):
            raise _Rejected(
                RejectionReason.INVALID_STATE_TRANSITION,
                f"{context.state.value} -> {decision.target_state.value} is not allowed",
            )

    def _require_product(self, product_id: str) -> ProductRef:
        product = self.catalog.get_product(product_id)
        if product is None:
            raise _Rejected(RejectionReason.INVALID_PRODUCT, f"product {product_id} does not exist")
        if product.stock <= 0:
            raise _Rejected(RejectionReason.OUT_OF_STOCK, f"{product.name} is out of stock")
        return product

    def _check_cart_items(self, decision: AddToCartDecision, context: ConversationContext) -> None:
        if not decision.items:
            raise _Rejected(RejectionReason.INVALID_PRODUCT, "no items to add")
        requested: dict[str, int] = {}
        for item in decision.items:
            if item.quantity < 1:
                raise _Rejected(RejectionReason.INVALID_QUANTITY, f"quantity {item.quantity} for {item.product_id}")
            product = self._require_product(item.product_id)
            if item.variant and product.variants and item.variant not in product.variants:
                raise _Rejected(RejectionReason.INVALID_PRODUCT, f"{product.name} has no variant {item.variant}")
            requested[item.product_id] = requested.get(item.product_id, 0) + item.quantity
            total = requested[item.product_id] + context.cart_quantity(item.product_id)
            if total > product.stock:
                raise _Rejected(
                    RejectionReason.INVALID_QUANTITY,
                    f"{total} x {product.name} requested, {product.stock} in stock",
                )

    def _check_updates(self, decision: UpdateContextDecision, context: ConversationContext) -> None:
        updates = decision.updates
        explicit = updates.explicit()
        for product in updates.referenced_products():
            self._require_product(product.product_id)
        if explicit.get("customer_phone") is not None and not is_valid_phone(updates.customer_phone):
            raise _Rejected(RejectionReason.INVALID_PHONE, f"bad phone {updates.customer_phone!r}")
        if explicit.get("customer_address") is not None and not is_complete_address(updates.customer_address):
            raise _Rejected(RejectionReason.INCOMPLETE_ADDRESS, "address too short")
        if explicit.get("payment_digits") is not None:
            if context.state not in PAYMENT_STATES:
                raise _Rejected(RejectionReason.PREMATURE_PAYMENT, "payment digits before order confirmation")
            if not is_payment_digits(updates.payment_digits):
                raise _Rejected(RejectionReason.INVALID_PAYMENT_DIGITS, "payment digits must be two digits")

    def _check_order(self, decision: CreateOrderDecision, context: ConversationContext) -> None:
        if decision.target_state != ConversationState.IDLE:
            raise _Rejected(
                RejectionReason.INVALID_STATE_TRANSITION,
                f"an order must end the checkout, not move to {decision.target_state.value}",
            )
        if not context.cart:
            raise _Rejected(RejectionReason.EMPTY_CART, "cannot create an order with an empty cart")

        name = decision.customer_name or context.customer_name
        phone = decision.customer_phone or context.customer_phone
        address = decision.customer_address or context.customer_address
        missing = [label for label, value in (("name", name), ("phone", phone), ("address", address)) if not value]
        if missing:
            raise _Rejected(RejectionReason.MISSING_CHECKOUT_INFO, "missing " + ", ".join(missing))
        if not is_valid_phone(phone):
            raise _Rejected(RejectionReason.INVALID_PHONE, f"bad phone {phone!r}")
        if not is_complete_address(address):
            raise _Rejected(RejectionReason.INCOMPLETE_ADDRESS, "address too short")
        if decision.payment_digits is not None and context.state not in PAYMENT_STATES:
            raise _Rejected(RejectionReason.PREMATURE_PAYMENT, "payment digits before order confirmation")

        for item in context.cart:
            product = self._require_product(item.product_id)
            if item.quantity > product.stock:
                raise _Rejected(
                    RejectionReason.OUT_OF_STOCK,
                    f"{item.quantity} x {product.name} in cart, {product.stock} in stock",
                )


def _fallback_reply(reason: RejectionReason, context: ConversationContext) -> str:
    state = context.state
    if reason == RejectionReason.MISSING_CHECKOUT_INFO:
        missing = context.missing_checkout_fields()
        if missing:
            return replies.MISSING_FIELD_PROMPTS[missing[0]]
    if reason == RejectionReason.INVALID_PHONE:
        return replies.MSG_INVALID_PHONE
    if reason == RejectionReason.INVALID_PAYMENT_DIGITS:
        return replies.clarification_for(ConversationState.AWAITING_PAYMENT_DIGITS)
    if reason == RejectionReason.INCOMPLETE_ADDRESS:
        return replies.clarification_for(ConversationState.AWAITING_ADDRESS)
    if reason == RejectionReason.EMPTY_CART:
        return replies.clarification_for(ConversationState.IDLE)
    if reason == RejectionReason.OUT_OF_STOCK:
        return replies.with_reprompt("Sorry, that item is not available in the quantity you asked for.", state)
    return replies.clarification_for(state)


def fallback_decision(reason, context: ConversationContext) -> Decision:
    """Deterministic clarification for a rejected decision. Never changes state."""
    if not isinstance(reason, RejectionReason):
        reason = RejectionReason(reason)
    return ClarifyDecision(
        target_state=context.state,
        reply=_fallback_reply(reason, context),
        source=DecisionSource.FALLBACK,
    )

