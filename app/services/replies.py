"""Customer-facing reply texts."""

from typing import Optional

from app.schemas.context import ContextField, ConversationContext
from app.schemas.workspace import WorkspaceSettings
from app.services.state_machine import ConversationState

S = ConversationState

ORDER_NUMBER_PLACEHOLDER = "{order_number}"

MSG_GREETING = "Assalamualaikum! Welcome to {business}. Send a product photo or type a product name to get started."
MSG_CANCELLED = "Okay, your order has been cancelled. Let me know whenever you want to shop again."
MSG_RESTARTED = "No problem, let's start over. Send a product photo or type what you are looking for."
MSG_HUMAN_REQUESTED = "Sure, one of our team members will reply to you shortly."
MSG_AI_UNAVAILABLE = "Sorry, I'm having a little trouble right now. Our team will get back to you shortly."
MSG_KNOWLEDGE_GAP = "Good question! Our team will answer you shortly. Thanks for your patience."
MSG_IMAGE_RECEIVED = "Got your photo! Tell me what you'd like to know about it, or type 'order' to order it."
MSG_OUT_OF_STOCK = "Sorry, {product} is out of stock right now. Would you like to see something else?"
MSG_PRODUCT_DECLINED = "No problem! Send another photo or product name whenever you like."
MSG_ASK_NAME = "Great choice! Please tell me your full name."
MSG_ASK_PHONE = "Thanks, {name}! Now your phone number please (e.g. 01712345678)."
MSG_ASK_ADDRESS = "Got it. Please share your full delivery address (house, road, area, city)."
MSG_INVALID_PHONE = "That number doesn't look right. Please send an 11-digit number starting with 01 (e.g. 01712345678)."
MSG_ASK_PAYMENT_DIGITS = "Please send payment to the details below and reply with the last 2 digits of the sending number.\n\n{payment}"
MSG_ORDER_CREATED = "Your order #{order_number} is confirmed! Total {total}. We'll contact you before delivery. Thank you!"
MSG_SELECTION_OUT_OF_RANGE = "Please pick a number between 1 and {count}."
MSG_PRODUCT_SHOWN = "{name}\nPrice: {price}\nStock: {stock}\n\nWould you like to order this? (yes/no)"
MSG_ALL_ADDED = "Added {count} item(s) to your cart. Total {total}.\n\nPlease tell me your full name."
MSG_QUICK_FORM_INCOMPLETE = "Please send your name, phone and full address like this:\nName: ...\nPhone: ...\nAddress: ..."

CLARIFICATIONS = {
    S.IDLE: "Sorry, I didn't get that. Send a product photo or type a product name to order.",
    S.BROWSING: "Sorry, I didn't get that. Reply with the item number, or 'all' to take everything shown.",
    S.CONFIRMING_PRODUCT: "Sorry, I didn't get that. Reply 'yes' to order this product or 'no' to skip it.",
    S.COLLECTING_VARIANT: "Sorry, I didn't get that. Which size or colour would you like?",
    S.AWAITING_NAME: "Sorry, I didn't get that. Please tell me your full name (e.g. Abdul Hamid).",
    S.AWAITING_PHONE: "Sorry, I didn't get that. Please send your phone number (e.g. 01712345678).",
    S.AWAITING_ADDRESS: "Sorry, I didn't get that. Please send your full address (e.g. House 10, Road 5, Dhanmondi, Dhaka).",
    S.CONFIRMING_ORDER: "Sorry, I didn't get that. Reply 'yes' to confirm the order or 'cancel' to cancel it.",
    S.AWAITING_PAYMENT_DIGITS: "Sorry, I didn't get that. Please send the last 2 digits of the payment number (e.g. 45).",
    S.AWAITING_CUSTOMER_DETAILS: "Sorry, I didn't get that. Please send your name, phone and address, or tell me one at a time.",
}

REPROMPTS = {
    S.CONFIRMING_PRODUCT: "Would you like to order it? (yes/no)",
    S.AWAITING_NAME: "Now, could you tell me your full name?",
    S.AWAITING_PHONE: "Now, could you share your phone number?",
    S.AWAITING_ADDRESS: "Now, could you share your delivery address?",
    S.CONFIRMING_ORDER: "Shall I confirm your order? (yes/no)",
    S.AWAITING_PAYMENT_DIGITS: "Please send the last 2 digits of the payment number.",
}

MISSING_FIELD_PROMPTS = {
    ContextField.CUSTOMER_NAME: "Before I place the order I need your full name.",
    ContextField.CUSTOMER_PHONE: "Before I place the order I need your phone number (e.g. 01712345678).",
    ContextField.CUSTOMER_ADDRESS: "Before I place the order I need your full delivery address.",
}


def clarification_for(state: ConversationState) -> str:
    return CLARIFICATIONS.get(state, CLARIFICATIONS[S.IDLE])


def reprompt_for(state: ConversationState) -> Optional[str]:
    return REPROMPTS.get(state)


def with_reprompt(text: str, state: ConversationState) -> str:
    reprompt = reprompt_for(state)
    return f"{text}\n\n{reprompt}" if reprompt else text


def payment_details(workspace: WorkspaceSettings) -> str:
    if workspace.payment_instructions:
        return workspace.payment_instructions
    return "Payment methods: " + ", ".join(workspace.payment_methods)


def order_summary(
    context: ConversationContext,
    workspace: WorkspaceSettings,
    address: str,
    delivery_charge: float,
    name: Optional[str] = None,
    phone: Optional[str] = None,
) -> str:
    lines = ["Order summary:"]
    for item in context.cart:
        variant = f" ({item.variant})" if item.variant else ""
        lines.append(f"- {item.product_name}{variant} x{item.quantity}: {workspace.money(item.subtotal)}")
    lines.append(f"Delivery: {workspace.money(delivery_charge)}")
    lines.append(f"Total: {workspace.money(context.cart_total + delivery_charge)}")
    lines.append("")
    lines.append(f"Name: {name or context.customer_name or '-'}")
    lines.append(f"Phone: {phone or context.customer_phone or '-'}")
    lines.append(f"Address: {address}")
    lines.append("")
    lines.append("Shall I confirm the order? (yes/no)")
    return "\n".join(lines)


def order_created(context: ConversationContext, workspace: WorkspaceSettings) -> str:
    total = context.cart_total + (context.delivery_charge or 0)
    return MSG_ORDER_CREATED.replace("{total}", workspace.money(total))
