from enum import Enum
from typing import Iterable


class ConversationState(str, Enum):
    IDLE = "idle"
    BROWSING = "browsing"
    CONFIRMING_PRODUCT = "confirming_product"
    COLLECTING_VARIANT = "collecting_variant"
    AWAITING_NAME = "awaiting_name"
    AWAITING_PHONE = "awaiting_phone"
    AWAITING_ADDRESS = "awaiting_address"
    CONFIRMING_ORDER = "confirming_order"
    AWAITING_PAYMENT_DIGITS = "awaiting_payment_digits"
    AWAITING_CUSTOMER_DETAILS = "awaiting_customer_details"


S = ConversationState

# Every state may also stay where it is and fall back to IDLE.
_FORWARD = {
    S.IDLE: [S.BROWSING, S.CONFIRMING_PRODUCT, S.AWAITING_NAME, S.AWAITING_CUSTOMER_DETAILS],
    S.BROWSING: [S.CONFIRMING_PRODUCT, S.COLLECTING_VARIANT, S.AWAITING_NAME, S.AWAITING_CUSTOMER_DETAILS],
    S.CONFIRMING_PRODUCT: [S.BROWSING, S.COLLECTING_VARIANT, S.AWAITING_NAME, S.AWAITING_CUSTOMER_DETAILS],
    S.COLLECTING_VARIANT: [S.AWAITING_NAME, S.AWAITING_CUSTOMER_DETAILS],
    S.AWAITING_NAME: [S.AWAITING_PHONE],
    S.AWAITING_PHONE: [S.AWAITING_ADDRESS],
    S.AWAITING_ADDRESS: [S.CONFIRMING_ORDER],
    S.CONFIRMING_ORDER: [S.AWAITING_PAYMENT_DIGITS, S.AWAITING_NAME, S.AWAITING_PHONE, S.AWAITING_ADDRESS],
    S.AWAITING_PAYMENT_DIGITS: [],
    S.AWAITING_CUSTOMER_DETAILS: [S.CONFIRMING_ORDER, S.AWAITING_NAME],
}

VALID_TRANSITIONS = {state: frozenset([state, S.IDLE, *targets]) for state, targets in _FORWARD.items()}


class InvalidTransitionError(Exception):
    def __init__(self, from_state: ConversationState, to_state: ConversationState):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition: {from_state.value} -> {to_state.value}")


def parse_state(value) -> ConversationState:
    """Coerce a stored or model-supplied state name. Raises ValueError if unknown."""
    if isinstance(value, ConversationState):
        return value
    cleaned = str(value or "").strip().lower()
    return ConversationState(cleaned)


def can_transition(from_state: ConversationState, to_state: ConversationState) -> bool:
    """Check if transition is valid."""
    return to_state in VALID_TRANSITIONS.get(from_state, frozenset())


def allowed_targets(from_state: ConversationState) -> list[ConversationState]:
    allowed = VALID_TRANSITIONS.get(from_state, frozenset())
    return [state for state in ConversationState if state in allowed]


def transition(from_state: ConversationState, to_state: ConversationState) -> ConversationState:
    """Perform state transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_state, to_state):
        raise InvalidTransitionError(from_state, to_state)
    return to_state


def describe(states: Iterable[ConversationState]) -> str:
    return ", ".join(state.value for state in states)
