"""Collaborator capabilities consumed by the decision core."""

from typing import Iterable, Optional, Protocol

from app.schemas.context import ConversationContext, ProductRef
from app.schemas.order import OrderDraft, OrderSummary
from app.schemas.workspace import WorkspaceSettings


class ConversationNotFound(LookupError):
    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        super().__init__(f"Conversation not found: {conversation_id}")


class PersistenceFailure(Exception):
    """Storage write failed after a reply was computed. Not recoverable locally."""

    def __init__(self, conversation_id: str, message: str):
        self.conversation_id = conversation_id
        super().__init__(f"Persistence failed for {conversation_id}: {message}")


class ConversationStore(Protocol):
    def load_context(self, conversation_id: str) -> ConversationContext:
        """Raises ConversationNotFound for a conversation that was never saved."""
        ...

    def save_context(
        self,
        conversation_id: str,
        context: ConversationContext,
        *,
        order: Optional[OrderDraft] = None,
        messages: Iterable[tuple[str, str]] = (),
        flag_reason: Optional[str] = None,
    ) -> None:
        """Persist context, order and messages in one transaction, creating the
        conversation on its first save. Raises PersistenceFailure."""
        ...

    def flag_manual_response(self, conversation_id: str, reason: str) -> None: ...

    def clear_manual_response(self, conversation_id: str) -> None: ...

    def record_message(self, conversation_id: str, sender: str, text: str) -> None: ...

    def recent_messages(self, conversation_id: str, limit: int = 5) -> list[dict]: ...

    def load_workspace_settings(self, conversation_id: str) -> WorkspaceSettings: ...


class ProductCatalog(Protocol):
    def lookup_product(self, query: str, limit: int = 5, workspace_id: Optional[str] = None) -> list[ProductRef]: ...

    def get_product(self, product_id: str) -> Optional[ProductRef]: ...


class OrderLookup(Protocol):
    def lookup_order(self, phone: str, workspace_id: Optional[str] = None) -> Optional[OrderSummary]: ...


class Messenger(Protocol):
    def send_text(self, conversation_id: str, text: str) -> bool: ...


class UsageMeter(Protocol):
    def record_usage(self, kind: str, cost: float, meta: Optional[dict] = None) -> None: ...
