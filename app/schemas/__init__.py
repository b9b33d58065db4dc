from app.schemas.context import CartItem, ContextField, ConversationContext, PendingImage, ProductRef
from app.schemas.decision import Decision, DecisionAction, DecisionSource
from app.schemas.message import InboundMessageRequest, InboundMessageResponse
from app.schemas.workspace import WorkspaceSettings

__all__ = [
    "CartItem",
    "ContextField",
    "ConversationContext",
    "PendingImage",
    "ProductRef",
    "Decision",
    "DecisionAction",
    "DecisionSource",
    "InboundMessageRequest",
    "InboundMessageResponse",
    "WorkspaceSettings",
]
