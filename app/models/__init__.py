from app.models.api_usage import ApiUsage
from app.models.conversation import Conversation
from app.models.message import Message
from app.models.order import Order, OrderItem
from app.models.product import Product
from app.models.workspace import Workspace

__all__ = [
    "Workspace",
    "Conversation",
    "Message",
    "Product",
    "Order",
    "OrderItem",
    "ApiUsage",
]
