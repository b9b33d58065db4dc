"""Deterministic router that answers common messages without a model call.

Order of evaluation: interruption intents (any state), then patterns specific
to the current state, then the knowledge boundary check, then generic patterns.
``None`` means the message needs the AI director.
"""

import re
from typing import Callable, Optional

from app.logging_config import get_logger
from app.schemas.context import ConversationContext
from app.schemas.decision import (
    AddToCartDecision,
    CartItemRequest,
    ContextUpdates,
    CreateOrderDecision,
    Decision,
    EscalateDecision,
    ReplyDecision,
    UpdateContextDecision,
)
from app.schemas.workspace import WorkspaceSettings
from app.services import replies
from app.services.state_machine import ConversationState
from app.services.validators import (
    find_phone,
    is_complete_address,
    is_payment_digits,
    is_plausible_name,
    looks_like_phone_attempt,
    normalize_phone,
)

logger = get_logger("fast_lane")

S = ConversationState

KNOWLEDGE_GAP_PREFIX = "knowledge_gap:"

YES_PATTERNS = [
    re.compile(r"^(yes|yep|yeah|yup|sure|ok|okay|y)$"),
    re.compile(r"^(ji|jii|hae|haan|ha|hum|humm)$"),
    re.compile(r"^(order korbo|order koro|order dibo|order dao|order chai|nibo|nebo|kinbo|chai|lagbe|hobe)$"),
    re.compile(r"^(confirm|confirmed|confirm koro|confirm korbo)$"),
    re.compile(r"^(হ্যাঁ|জি|ঠিক আছে|হুম|হবে|চাই|লাগবে|নিব|নিবো|অর্ডার করব|অর্ডার করবো|অর্ডার চাই)$"),
]
NO_PATTERNS = [
    re.compile(r"^(no|nope|nah|n|na|nai|nahi)$"),
    re.compile(r"^(না|নাই|নাহ)$"),
]
GREETING_PATTERNS = [
    re.compile(r"^(hi|hello|hey|greetings|assalamualaikum|assalamu alaikum|salam|salaam)$"),
    re.compile(r"^(হাই|হ্যালো|আসসালামু আলাইকুম)$"),
]
ALL_ITEMS_PATTERNS = [
    re.compile(r"^(all|all of (these|them)|sob|sobgula|sobgulo|shob|shobgula|everything)$"),
    re.compile(r"^(সব|সবগুলো|সবগুলা)$"),
]
SELECTION_PATTERN = re.compile(r"^#?(\d{1,2})$")

CANCEL_PATTERNS = [
    re.compile(r"^(cancel|cancel order|cancel it|stop|batil|order batil|বাতিল|অর্ডার বাতিল)$"),
]
RESTART_PATTERNS = [
    re.compile(r"^(restart|start over|reset|abar shuru|notun kore shuru|নতুন করে শুরু)$"),
]
HUMAN_PATTERNS = [
    re.compile(r"\b(human|real person|agent|manager|admin|customer care|call me)\b"),
    re.compile(r"(manush|kotha bolte chai|মানুষ|এজেন্ট)"),
]

QUESTION_HINT = re.compile(r"(\?|\b(koto|kivabe|kobe|ki|how|what|when|can|do you|is there)\b)")
FAQ_TOPICS = {
    "delivery": re.compile(r"(delivery|deliver|shipping|ডেলিভারি|koto din)"),
    "payment": re.compile(r"(payment|bkash|nagad|cash on delivery|\bcod\b|পেমেন্ট)"),
    "return": re.compile(r"(return|exchange|refund|ferot|ফেরত)"),
}

# Questions outside the catalog. Each topic names the workspace field that
# answers it, or None when only a person can.
KNOWLEDGE_TOPICS = {
    "warranty": (
        re.compile(r"(warrant|warrenty|warenty|waranty|guarant|gaurantee|গ্যারান্টি|গ্যারেন্টি|ওয়ারেন্টি)"),
        "warranty_policy",
    ),
    "shop_location": (
        re.compile(
            r"(\boffice\b|showroom|outlet|\bbranch\b|shop location|your location|where is your shop|"
            r"where are you located|\bvisit\b|dokan|দোকান|অফিস|শোরুম)"
        ),
        "seller_info",
    ),
    "customization": (re.compile(r"(customi[sz]e|\bcustom\b|my design|special order|কাস্টম)"), None),
    "complaint": (
        re.compile(r"(complain|bad experience|last order|previous order|অভিযোগ|আগের অর্ডার|সমস্যা হয়েছে)"),
        None,
    ),
}

QUICK_FORM_LABELS = {
    "name": re.compile(r"(?im)^\s*(?:name|nam|নাম)\s*[:\-]\s*(.+)$"),
    "phone": re.compile(r"(?im)^\s*(?:phone|mobile|number|ফোন|মোবাইল)\s*[:\-]\s*(.+)$"),
    "address": re.compile(r"(?im)^\s*(?:address|thikana|ঠিকানা)\s*[:\-]\s*(.+)$"),
}

_TRAILING = re.compile(r"[\s!.,।]+$")


def _normalize(text: str) -> str:
    return _TRAILING.sub("", (text or "").strip().lower())


def _matches(patterns, text: str) -> bool:
    return any(pattern.search(text) for pattern in patterns)


def _is_yes(text: str) -> bool:
    return _matches(YES_PATTERNS, text)


def _is_no(text: str) -> bool:
    return _matches(NO_PATTERNS, text)


def detect_interruption(text: str) -> Optional[str]:
    normalized = _normalize(text)
    if _matches(CANCEL_PATTERNS, normalized):
        return "cancel"
    if _matches(RESTART_PATTERNS, normalized):
        return "restart"
    if _matches(HUMAN_PATTERNS, normalized):
        return "human"
    return None


def _interruption(kind: str, context: ConversationContext) -> Decision:
    if kind == "cancel":
        return ReplyDecision(target_state=S.IDLE, reply=replies.MSG_CANCELLED)
    if kind == "restart":
        return ReplyDecision(target_state=S.IDLE, reply=replies.MSG_RESTARTED)
    return EscalateDecision(
        target_state=context.state,
        reply=replies.MSG_HUMAN_REQUESTED,
        reason="customer_requested_human",
    )


# State handlers take (normalized, raw, context, workspace) and may return None.


def _confirming_product(text, raw, context, workspace):
    product = context.pending_product
    if product is None:
        return None
    if _is_yes(text):
        if product.stock <= 0:
            return ReplyDecision(target_state=S.IDLE, reply=replies.MSG_OUT_OF_STOCK.format(product=product.name))
        if product.variants:
            options = " / ".join(product.variants)
            return ReplyDecision(
                target_state=S.COLLECTING_VARIANT,
                reply=f"Which one would you like? {options}",
            )
        return AddToCartDecision(
            target_state=S.AWAITING_NAME,
            reply=replies.MSG_ASK_NAME,
            items=(CartItemRequest(product_id=product.product_id, quantity=1),),
        )
    if _is_no(text):
        return ReplyDecision(target_state=S.IDLE, reply=replies.MSG_PRODUCT_DECLINED)
    return None


def _collecting_variant(text, raw, context, workspace):
    product = context.pending_product
    if product is None:
        return None
    for variant in product.variants:
        if text == variant.lower():
            return AddToCartDecision(
                target_state=S.AWAITING_NAME,
                reply=replies.MSG_ASK_NAME,
                items=(CartItemRequest(product_id=product.product_id, variant=variant, quantity=1),),
            )
    return None


def _browsing(text, raw, context, workspace):
    shown = context.shown_products
    if not shown:
        return None

    selection = SELECTION_PATTERN.match(text)
    if selection:
        index = int(selection.group(1))
        if not 1 <= index <= len(shown):
            return ReplyDecision(
                target_state=context.state,
                reply=replies.MSG_SELECTION_OUT_OF_RANGE.format(count=len(shown)),
            )
        product = shown[index - 1]
        return UpdateContextDecision(
            target_state=S.CONFIRMING_PRODUCT,
            reply=replies.MSG_PRODUCT_SHOWN.format(
                name=product.name,
                price=workspace.money(product.price),
                stock="Available" if product.stock > 0 else "Out of stock",
            ),
            updates=ContextUpdates(pending_product=product),
        )

    if _matches(ALL_ITEMS_PATTERNS, text):
        available = [product for product in shown if product.stock > 0]
        if not available:
            return ReplyDecision(
                target_state=S.IDLE,
                reply=replies.MSG_OUT_OF_STOCK.format(product="everything shown"),
            )
        total = context.cart_total + sum(product.price for product in available)
        return AddToCartDecision(
            target_state=S.AWAITING_NAME,
            reply=replies.MSG_ALL_ADDED.format(count=len(available), total=workspace.money(total)),
            items=tuple(CartItemRequest(product_id=product.product_id, quantity=1) for product in available),
        )
    return None


def _awaiting_name(text, raw, context, workspace):
    name = raw.strip()
    if not is_plausible_name(name):
        return None
    return UpdateContextDecision(
        target_state=S.AWAITING_PHONE,
        reply=replies.MSG_ASK_PHONE.format(name=name),
        updates=ContextUpdates(customer_name=name),
    )


def _awaiting_phone(text, raw, context, workspace):
    phone = normalize_phone(raw)
    if phone:
        return UpdateContextDecision(
            target_state=S.AWAITING_ADDRESS,
            reply=replies.MSG_ASK_ADDRESS,
            updates=ContextUpdates(customer_phone=phone),
        )
    if looks_like_phone_attempt(raw):
        return ReplyDecision(target_state=context.state, reply=replies.MSG_INVALID_PHONE)
    return None


def _awaiting_address(text, raw, context, workspace):
    address = raw.strip()
    if not is_complete_address(address) or _faq_topic(text):
        return None
    delivery_charge = workspace.delivery_charge_for(address)
    return UpdateContextDecision(
        target_state=S.CONFIRMING_ORDER,
        reply=replies.order_summary(context, workspace, address=address, delivery_charge=delivery_charge),
        updates=ContextUpdates(customer_address=address, delivery_charge=delivery_charge),
    )


def _confirming_order(text, raw, context, workspace):
    if _is_yes(text):
        if workspace.require_payment_digits:
            return ReplyDecision(
                target_state=S.AWAITING_PAYMENT_DIGITS,
                reply=replies.MSG_ASK_PAYMENT_DIGITS.format(payment=replies.payment_details(workspace)),
            )
        return CreateOrderDecision(target_state=S.IDLE, reply=replies.order_created(context, workspace))
    if _is_no(text):
        return ReplyDecision(target_state=S.IDLE, reply=replies.MSG_CANCELLED)
    return None


def _awaiting_payment_digits(text, raw, context, workspace):
    if not is_payment_digits(text):
        return None
    return CreateOrderDecision(
        target_state=S.IDLE,
        reply=replies.order_created(context, workspace),
        payment_digits=text,
    )


def parse_quick_form(raw: str) -> dict:
    """Pull name/phone/address out of a labelled or line-by-line form."""
    fields = {}
    for key, pattern in QUICK_FORM_LABELS.items():
        match = pattern.search(raw or "")
        if match:
            fields[key] = match.group(1).strip()
    if fields:
        return fields

    lines = [line.strip() for line in (raw or "").splitlines() if line.strip()]
    if len(lines) < 3:
        return {}
    phone_index = next((i for i, line in enumerate(lines) if normalize_phone(line)), None)
    if phone_index is None or phone_index == 0:
        return {}
    return {
        "name": lines[0],
        "phone": lines[phone_index],
        "address": ", ".join(lines[phone_index + 1 :] or lines[1:phone_index]),
    }


def _awaiting_customer_details(text, raw, context, workspace):
    fields = parse_quick_form(raw)
    if not fields:
        return None
    name = fields.get("name", "")
    phone = normalize_phone(fields.get("phone")) or find_phone(fields.get("phone", ""))
    address = fields.get("address", "")
    if not (is_plausible_name(name) and phone and is_complete_address(address)):
        return ReplyDecision(target_state=context.state, reply=replies.MSG_QUICK_FORM_INCOMPLETE)
    delivery_charge = workspace.delivery_charge_for(address)
    return UpdateContextDecision(
        target_state=S.CONFIRMING_ORDER,
        reply=replies.order_summary(
            context, workspace, address=address, delivery_charge=delivery_charge, name=name, phone=phone
        ),
        updates=ContextUpdates(
            customer_name=name,
            customer_phone=phone,
            customer_address=address,
            delivery_charge=delivery_charge,
        ),
    )


StateHandler = Callable[[str, str, ConversationContext, WorkspaceSettings], Optional[Decision]]

STATE_HANDLERS: dict[ConversationState, StateHandler] = {
    S.CONFIRMING_PRODUCT: _confirming_product,
    S.COLLECTING_VARIANT: _collecting_variant,
    S.BROWSING: _browsing,
    S.AWAITING_NAME: _awaiting_name,
    S.AWAITING_PHONE: _awaiting_phone,
    S.AWAITING_ADDRESS: _awaiting_address,
    S.CONFIRMING_ORDER: _confirming_order,
    S.AWAITING_PAYMENT_DIGITS: _awaiting_payment_digits,
    S.AWAITING_CUSTOMER_DETAILS: _awaiting_customer_details,
}


def _faq_topic(text: str) -> Optional[str]:
    if not QUESTION_HINT.search(text):
        return None
    for topic, pattern in FAQ_TOPICS.items():
        if pattern.search(text):
            return topic
    return None


def _faq_answer(topic: str, workspace: WorkspaceSettings) -> str:
    if topic == "delivery":
        return (
            f"Delivery charge: {workspace.money(workspace.delivery_charge_inside_dhaka)} inside Dhaka, "
            f"{workspace.money(workspace.delivery_charge_outside_dhaka)} outside Dhaka. {workspace.delivery_time}"
        )
    if topic == "payment":
        return replies.payment_details(workspace)
    return (workspace.return_policy or "").strip()


def check_knowledge_boundary(text: str, workspace: WorkspaceSettings) -> Optional[tuple[str, Optional[str]]]:
    """Return (topic, configured answer) for questions the catalog cannot answer.

    The answer is None when the workspace has nothing on the topic; such
    messages go to a person instead of the model.
    """
    for topic, (pattern, field) in KNOWLEDGE_TOPICS.items():
        if pattern.search(text):
            answer = (getattr(workspace, field) or "").strip() if field else ""
            return topic, answer or None
    return None


def _knowledge_decision(topic: str, answer: Optional[str], context: ConversationContext) -> Decision:
    if answer:
        return ReplyDecision(target_state=context.state, reply=replies.with_reprompt(answer, context.state))
    return EscalateDecision(
        target_state=context.state,
        reply=replies.MSG_KNOWLEDGE_GAP,
        reason=f"{KNOWLEDGE_GAP_PREFIX}{topic}",
    )


def _generic(text, raw, context, workspace):
    if _matches(GREETING_PATTERNS, text):
        greeting = replies.MSG_GREETING.format(business=workspace.business_name)
        return ReplyDecision(target_state=context.state, reply=replies.with_reprompt(greeting, context.state))

    topic = _faq_topic(text)
    if topic:
        answer = _faq_answer(topic, workspace)
        if not answer:
            return _knowledge_decision(topic, None, context)
        return ReplyDecision(target_state=context.state, reply=replies.with_reprompt(answer, context.state))
    return None


def try_fast_lane(
    text: Optional[str], context: ConversationContext, workspace: WorkspaceSettings
) -> Optional[Decision]:
    """Resolve the message without the model, or return None."""
    normalized = _normalize(text or "")
    if not normalized:
        return None

    interruption = detect_interruption(normalized)
    if interruption:
        logger.info(
            "Fast lane interruption",
            extra={"context": {"kind": interruption, "state": context.state.value}},
        )
        return _interruption(interruption, context)

    handler = STATE_HANDLERS.get(context.state)
    if handler is not None:
        decision = handler(normalized, text, context, workspace)
        if decision is not None:
            return decision

    boundary = check_knowledge_boundary(normalized, workspace)
    if boundary is not None:
        topic, answer = boundary
        logger.info(
            "Fast lane knowledge check",
            extra={"context": {"topic": topic, "answered": answer is not None, "state": context.state.value}},
        )
        return _knowledge_decision(topic, answer, context)

    return _generic(normalized, text, context, workspace)
