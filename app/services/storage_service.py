"""SQLAlchemy-backed store, catalog, order lookup and usage meter."""

from datetime import datetime, timezone
from typing import Callable, Iterable, Optional
from uuid import UUID, uuid4

from pydantic import ValidationError
from sqlalchemy import desc
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.logging_config import get_logger
from app.models import ApiUsage, Conversation, Message, Order, OrderItem, Product, Workspace
from app.schemas.context import ConversationContext, ProductRef
from app.schemas.order import OrderDraft, OrderSummary
from app.schemas.workspace import WorkspaceSettings
from app.services.interfaces import ConversationNotFound, PersistenceFailure

logger = get_logger("storage_service")

SessionFactory = Callable[[], Session]


def _uuid(value) -> Optional[UUID]:
    if value is None or isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _now() -> datetime:
    return datetime.now(timezone.utc)


def product_to_ref(product: Product) -> ProductRef:
    return ProductRef(
        product_id=str(product.id),
        name=product.name,
        price=float(product.price),
        stock=product.stock or 0,
        variants=tuple(product.variants or ()),
    )


class SqlConversationStore:
    """Conversation rows, addressed by row UUID or by the sender's Messenger PSID.

    An id with no row is a new conversation. Reads raise ConversationNotFound
    for it and the first ``save_context`` creates the row in
    ``default_workspace_id``.
    """

    def __init__(self, session_factory: SessionFactory, default_workspace_id: Optional[str] = None):
        self._session_factory = session_factory
        self._default_workspace_id = _uuid(default_workspace_id)

    def _find_conversation(self, db: Session, conversation_id: str, for_update: bool = False) -> Optional[Conversation]:
        key = _uuid(conversation_id)
        if key is not None:
            query = db.query(Conversation).filter(Conversation.id == key)
        else:
            query = db.query(Conversation).filter(Conversation.customer_psid == conversation_id)
            if self._default_workspace_id is not None:
                query = query.filter(Conversation.workspace_id == self._default_workspace_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    def _get_conversation(self, db: Session, conversation_id: str, for_update: bool = False) -> Conversation:
        conversation = self._find_conversation(db, conversation_id, for_update)
        if conversation is None:
            raise ConversationNotFound(conversation_id)
        return conversation

    def _start_conversation(self, db: Session, conversation_id: str, now: datetime) -> Conversation:
        if self._default_workspace_id is None:
            raise PersistenceFailure(conversation_id, "no default workspace for new conversations")
        conversation = Conversation(
            id=_uuid(conversation_id) or uuid4(),
            workspace_id=self._default_workspace_id,
            customer_psid=conversation_id,
            current_state="idle",
            context={},
            needs_manual_response=False,
            created_at=now,
        )
        db.add(conversation)
        db.flush()
        logger.info(
            "Conversation created",
            extra={"context": {"conversation_id": conversation_id, "workspace_id": str(self._default_workspace_id)}},
        )
        return conversation

    def load_context(self, conversation_id: str) -> ConversationContext:
        db = self._session_factory()
        try:
            conversation = self._get_conversation(db, conversation_id)
            try:
                return ConversationContext.from_storage(conversation.context, conversation.current_state)
            except (ValidationError, ValueError) as exc:
                logger.warning(
                    f"Stored context is unreadable, starting fresh: {exc}",
                    extra={"context": {"conversation_id": conversation_id}},
                )
                return ConversationContext()
        finally:
            db.close()

    def save_context(
        self,
        conversation_id: str,
        context: ConversationContext,
        *,
        order: Optional[OrderDraft] = None,
        messages: Iterable[tuple[str, str]] = (),
        flag_reason: Optional[str] = None,
    ) -> None:
        db = self._session_factory()
        try:
            now = _now()
            conversation = self._find_conversation(db, conversation_id, for_update=True)
            if conversation is None:
                conversation = self._start_conversation(db, conversation_id, now)
            conversation.current_state = context.state.value
            conversation.context = context.to_storage()
            conversation.last_message_at = now
            if context.customer_name:
                conversation.customer_name = context.customer_name
            if flag_reason:
                conversation.needs_manual_response = True
                conversation.manual_flag_reason = flag_reason
                conversation.manual_flagged_at = now

            for sender, text in messages:
                db.add(Message(conversation_id=conversation.id, sender=sender, text=text, created_at=now))

            if order is not None:
                self._add_order(db, conversation, order, now)

            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise PersistenceFailure(conversation_id, str(exc)) from exc
        finally:
            db.close()

    def _add_order(self, db: Session, conversation: Conversation, order: OrderDraft, now: datetime) -> None:
        row = Order(
            workspace_id=conversation.workspace_id,
            conversation_id=conversation.id,
            order_number=order.order_number,
            customer_name=order.customer_name,
            customer_phone=order.customer_phone,
            customer_address=order.customer_address,
            subtotal=order.subtotal,
            delivery_charge=order.delivery_charge,
            total_amount=order.total,
            payment_digits=order.payment_digits,
            status="pending",
            created_at=now,
        )
        db.add(row)
        db.flush()
        for item in order.items:
            db.add(
                OrderItem(
                    order_id=row.id,
                    product_id=_uuid(item.product_id),
                    product_name=item.product_name,
                    variant=item.variant,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                )
            )
            # Stock is decremented in the same transaction as the order insert.
            db.query(Product).filter(Product.id == _uuid(item.product_id)).update(
                {Product.stock: Product.stock - item.quantity}, synchronize_session=False
            )

    def _set_flag(self, conversation_id: str, flagged: bool, reason: Optional[str]) -> None:
        db = self._session_factory()
        try:
            conversation = self._get_conversation(db, conversation_id, for_update=True)
            conversation.needs_manual_response = flagged
            conversation.manual_flag_reason = reason
            conversation.manual_flagged_at = _now() if flagged else None
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise PersistenceFailure(conversation_id, str(exc)) from exc
        finally:
            db.close()

    def flag_manual_response(self, conversation_id: str, reason: str) -> None:
        self._set_flag(conversation_id, True, reason)
        logger.info("Conversation flagged for manual response", extra={"context": {"conversation_id": conversation_id, "reason": reason}})

    def clear_manual_response(self, conversation_id: str) -> None:
        self._set_flag(conversation_id, False, None)

    def record_message(self, conversation_id: str, sender: str, text: str) -> None:
        db = self._session_factory()
        try:
            conversation = self._get_conversation(db, conversation_id)
            db.add(Message(conversation_id=conversation.id, sender=sender, text=text, created_at=_now()))
            conversation.last_message_at = _now()
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise PersistenceFailure(conversation_id, str(exc)) from exc
        finally:
            db.close()

    def recent_messages(self, conversation_id: str, limit: int = 5) -> list[dict]:
        db = self._session_factory()
        try:
            conversation = self._find_conversation(db, conversation_id)
            if conversation is None:
                return []
            rows = (
                db.query(Message)
                .filter(Message.conversation_id == conversation.id)
                .order_by(desc(Message.created_at))
                .limit(limit)
                .all()
            )
            return [{"sender": row.sender, "text": row.text} for row in reversed(rows)]
        finally:
            db.close()

    def load_workspace_settings(self, conversation_id: str) -> WorkspaceSettings:
        db = self._session_factory()
        try:
            conversation = self._find_conversation(db, conversation_id)
            workspace_id = conversation.workspace_id if conversation else self._default_workspace_id
            workspace = db.query(Workspace).filter(Workspace.id == workspace_id).first() if workspace_id else None
            raw = dict(workspace.settings or {}) if workspace else {}
            raw["workspace_id"] = str(workspace_id) if workspace_id else None
            if workspace and "business_name" not in raw:
                raw["business_name"] = workspace.name
            try:
                return WorkspaceSettings.model_validate(raw)
            except ValidationError as exc:
                logger.warning(
                    f"Invalid workspace settings, using defaults: {exc}",
                    extra={"context": {"workspace_id": raw["workspace_id"]}},
                )
                return WorkspaceSettings(workspace_id=raw["workspace_id"])
        finally:
            db.close()

    def recipient_for(self, conversation_id: str) -> Optional[str]:
        db = self._session_factory()
        try:
            return self._get_conversation(db, conversation_id).customer_psid
        finally:
            db.close()


class SqlProductCatalog:
    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    def lookup_product(self, query: str, limit: int = 5, workspace_id: Optional[str] = None) -> list[ProductRef]:
        db = self._session_factory()
        try:
            rows = db.query(Product).filter(Product.is_active.is_(True), Product.name.ilike(f"%{query}%"))
            if workspace_id:
                rows = rows.filter(Product.workspace_id == _uuid(workspace_id))
            return [product_to_ref(product) for product in rows.limit(limit).all()]
        finally:
            db.close()

    def get_product(self, product_id: str) -> Optional[ProductRef]:
        key = _uuid(product_id)
        if key is None:
            return None
        db = self._session_factory()
        try:
            product = db.query(Product).filter(Product.id == key, Product.is_active.is_(True)).first()
            return product_to_ref(product) if product else None
        finally:
            db.close()


class SqlOrderLookup:
    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    def lookup_order(self, phone: str, workspace_id: Optional[str] = None) -> Optional[OrderSummary]:
        db = self._session_factory()
        try:
            query = db.query(Order).filter(Order.customer_phone == phone)
            if workspace_id:
                query = query.filter(Order.workspace_id == _uuid(workspace_id))
            order = query.order_by(desc(Order.created_at)).first()
            if order is None:
                return None
            return OrderSummary(
                order_number=order.order_number,
                status=order.status,
                total=float(order.total_amount),
                customer_name=order.customer_name,
                created_at=order.created_at,
                items=tuple(f"{item.product_name} x{item.quantity}" for item in order.items),
            )
        finally:
            db.close()


class SqlUsageMeter:
    """Writes one api_usage row per model call. Failures are logged, never raised."""

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    def record_usage(self, kind: str, cost: float, meta: Optional[dict] = None) -> None:
        meta = dict(meta or {})
        db = self._session_factory()
        try:
            db.add(
                ApiUsage(
                    workspace_id=_uuid(meta.pop("workspace_id", None)),
                    conversation_id=_uuid(meta.get("conversation_id")),
                    kind=kind,
                    cost=cost,
                    usage_metadata=meta,
                    created_at=_now(),
                )
            )
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error(f"Failed to record API usage: {exc}", extra={"context": {"kind": kind, "cost": cost}})
        finally:
            db.close()
