"""Pure transitions over ConversationContext.

Every state declares which fields are reset on entry, so data from an abandoned
flow (a half-typed address, a product list from an old search) cannot resurface
in a later one. Nothing in this module performs I/O.
"""

from collections import defaultdict, deque
from typing import Iterable, Optional

from app.schemas.context import ContextField, ConversationContext, PendingImage
from app.schemas.decision import ContextUpdates
from app.services.state_machine import ConversationState
from app.services.validators import is_valid_phone, normalize_phone

F = ContextField
S = ConversationState

_ORDER_STAGE = (F.DELIVERY_CHARGE, F.PAYMENT_DIGITS)
_BROWSE_STAGE = (F.SHOWN_PRODUCTS, F.PENDING_PRODUCT)
_CUSTOMER = (F.CUSTOMER_NAME, F.CUSTOMER_PHONE, F.CUSTOMER_ADDRESS)

CLEARING_POLICY: dict[ConversationState, tuple[ContextField, ...]] = {
    S.IDLE: (F.CART, *_CUSTOMER, *_BROWSE_STAGE, *_ORDER_STAGE, F.SCRATCH),
    S.BROWSING: (F.PENDING_PRODUCT, *_CUSTOMER, *_ORDER_STAGE),
    S.CONFIRMING_PRODUCT: (*_CUSTOMER, *_ORDER_STAGE),
    S.COLLECTING_VARIANT: (F.SHOWN_PRODUCTS, *_ORDER_STAGE),
    S.AWAITING_NAME: (F.CUSTOMER_NAME, *_BROWSE_STAGE, *_ORDER_STAGE),
    S.AWAITING_PHONE: (F.CUSTOMER_PHONE, *_BROWSE_STAGE, *_ORDER_STAGE),
    S.AWAITING_ADDRESS: (F.CUSTOMER_ADDRESS, *_BROWSE_STAGE, *_ORDER_STAGE),
    S.CONFIRMING_ORDER: (F.PAYMENT_DIGITS, *_BROWSE_STAGE),
    S.AWAITING_PAYMENT_DIGITS: (F.PAYMENT_DIGITS, *_BROWSE_STAGE),
    S.AWAITING_CUSTOMER_DETAILS: (*_CUSTOMER, *_BROWSE_STAGE, *_ORDER_STAGE),
}

_EMPTY = {
    F.CART: (),
    F.SHOWN_PRODUCTS: (),
    F.SCRATCH: {},
}

MAX_CHECKPOINTS = 5


class ContextPolicyError(Exception):
    def __init__(self, state):
        self.state = state
        super().__init__(f"No clearing policy declared for state: {state}")


def transition_context(
    current: ConversationContext, target_state: ConversationState
) -> tuple[ConversationContext, list[ContextField]]:
    """Return the context for ``target_state`` and the fields its policy clears.

    ``cleared`` is the policy of the target state, regardless of which fields
    held values, so it depends on the target alone.
    """
    policy = CLEARING_POLICY.get(target_state)
    if policy is None:
        raise ContextPolicyError(target_state)

    update = {field.value: _EMPTY.get(field) for field in policy}
    update["state"] = target_state
    return current.model_copy(update=update), list(policy)


def apply_updates(context: ConversationContext, updates: Optional[ContextUpdates]) -> ConversationContext:
    if updates is None:
        return context
    explicit = updates.explicit()
    if not explicit:
        return context
    if explicit.get("customer_phone"):
        explicit["customer_phone"] = normalize_phone(explicit["customer_phone"]) or explicit["customer_phone"]
    if explicit.get("shown_products") is None:
        explicit.pop("shown_products", None)
    if explicit.get("scratch") is not None:
        explicit["scratch"] = {**context.scratch, **explicit["scratch"]}
    else:
        explicit.pop("scratch", None)
    return context.model_copy(update=explicit)


def add_pending_image(context: ConversationContext, image: PendingImage, max_images: int) -> ConversationContext:
    """Append to the pending image queue, dropping the oldest entries on overflow."""
    queue = deque(context.pending_images, maxlen=max(max_images, 1))
    queue.append(image)
    return context.model_copy(update={"pending_images": tuple(queue)})


def take_pending_images(context: ConversationContext) -> tuple[ConversationContext, list[PendingImage]]:
    images = list(context.pending_images)
    if not images:
        return context, images
    return context.model_copy(update={"pending_images": ()}), images


def validate_integrity(context: ConversationContext) -> list[str]:
    """Return a list of problems; empty means the context is consistent."""
    problems = []
    if context.state not in CLEARING_POLICY:
        problems.append(f"unknown state {context.state}")

    for index, item in enumerate(context.cart):
        if not item.product_id:
            problems.append(f"cart[{index}] has no product id")
        if item.unit_price <= 0:
            problems.append(f"cart[{index}] has non-positive price")
        if item.quantity < 1:
            problems.append(f"cart[{index}] has quantity {item.quantity}")

    if context.customer_phone and not is_valid_phone(context.customer_phone):
        problems.append("customer phone has invalid format")

    if context.state == S.CONFIRMING_ORDER:
        if not context.cart:
            problems.append("confirming order with an empty cart")
        if not context.customer_name:
            problems.append("confirming order without a customer name")

    return problems


class ContextCheckpoints:
    """Bounded per-conversation stack of known-good contexts."""

    def __init__(self, max_checkpoints: int = MAX_CHECKPOINTS):
        self.max_checkpoints = max_checkpoints
        self._stacks: dict[str, deque] = defaultdict(lambda: deque(maxlen=self.max_checkpoints))

    def save(self, conversation_id: str, context: ConversationContext) -> int:
        stack = self._stacks[conversation_id]
        stack.append(context)
        return len(stack)

    def rollback(self, conversation_id: str) -> Optional[ConversationContext]:
        stack = self._stacks.get(conversation_id)
        if not stack:
            return None
        context = stack.pop()
        if not stack:
            self._stacks.pop(conversation_id, None)
        return context

    def depth(self, conversation_id: str) -> int:
        return len(self._stacks.get(conversation_id, ()))

    def clear(self, conversation_id: str) -> None:
        self._stacks.pop(conversation_id, None)


def cleared_names(fields: Iterable[ContextField]) -> list[str]:
    return [field.value for field in fields]
