"""Per-message control loop: lock, load, decide, validate, apply, persist, reply."""

import asyncio
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional

from app.config import settings
from app.logging_config import conversation_logger, get_logger
from app.schemas.context import CartItem, ConversationContext, PendingImage
from app.schemas.decision import (
    AddToCartDecision,
    ClarifyDecision,
    CreateOrderDecision,
    Decision,
    DecisionSource,
    EscalateDecision,
    UpdateContextDecision,
)
from app.schemas.message import Attachment
from app.schemas.order import OrderDraft
from app.schemas.workspace import WorkspaceSettings
from app.services import replies
from app.services.action_validator import ActionValidator, fallback_decision
from app.services.ai_director import AIDirector
from app.services.alert_service import alert_critical
from app.services.context_manager import (
    ContextCheckpoints,
    add_pending_image,
    apply_updates,
    cleared_names,
    take_pending_images,
    transition_context,
    validate_integrity,
)
from app.services.fast_lane import try_fast_lane
from app.services.interfaces import (
    ConversationNotFound,
    ConversationStore,
    Messenger,
    PersistenceFailure,
    ProductCatalog,
)
from app.services.processing_lock import LockType, ProcessingLockManager
from app.services.state_machine import ConversationState

logger = get_logger("orchestrator")

FLAG_LOCK_CONTENTION = "lock_contention"
FLAG_AI_UNAVAILABLE = "ai_unavailable"
FLAG_PERSISTENCE_FAILURE = "persistence_failure"


@dataclass
class InboundResult:
    reply_sent: bool
    new_state: ConversationState
    flagged_for_human: bool
    source: Optional[str] = None
    order_number: Optional[str] = None


class ExecutionError(Exception):
    """A decision could not be applied to the context."""


def generate_order_number(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"{now:%y%m%d}{secrets.randbelow(9000) + 1000}"


class Orchestrator:
    def __init__(
        self,
        store: ConversationStore,
        catalog: ProductCatalog,
        messenger: Messenger,
        locks: ProcessingLockManager,
        director: AIDirector,
        validator: ActionValidator,
        checkpoints: Optional[ContextCheckpoints] = None,
        max_pending_images: Optional[int] = None,
        bot_lock_ttl: Optional[float] = None,
        history_limit: Optional[int] = None,
    ):
        self.store = store
        self.catalog = catalog
        self.messenger = messenger
        self.locks = locks
        self.director = director
        self.validator = validator
        self.checkpoints = checkpoints or ContextCheckpoints()
        self.max_pending_images = max_pending_images or settings.max_pending_images
        self.bot_lock_ttl = bot_lock_ttl or settings.bot_lock_ttl_seconds
        self.history_limit = history_limit or settings.ai_director_history_limit

    async def process_inbound_message(
        self,
        conversation_id: str,
        raw_text: Optional[str] = None,
        attachments: Optional[Iterable[Attachment]] = None,
    ) -> InboundResult:
        """Handle one customer message. Raises PersistenceFailure if the result could not be stored."""
        log = conversation_logger(logger, conversation_id)

        if not self.locks.acquire(conversation_id, LockType.BOT_PROCESSING, ttl=self.bot_lock_ttl):
            holder = self.locks.is_locked(conversation_id)
            log.info(
                "Conversation locked, skipping bot reply",
                context={"held_by": holder.lock_type.value if holder else None},
            )
            try:
                await asyncio.to_thread(self.store.flag_manual_response, conversation_id, FLAG_LOCK_CONTENTION)
            except ConversationNotFound:
                log.warning("Locked conversation has no stored row to flag")
            context = await self._load_context(conversation_id, log)
            return InboundResult(reply_sent=False, new_state=context.state, flagged_for_human=True)

        try:
            return await self._process_locked(conversation_id, raw_text, list(attachments or []), log)
        finally:
            if self.locks.is_locked_by(conversation_id, LockType.BOT_PROCESSING):
                self.locks.release(conversation_id)

    async def _load_context(self, conversation_id: str, log) -> ConversationContext:
        try:
            return await asyncio.to_thread(self.store.load_context, conversation_id)
        except ConversationNotFound:
            log.info("New conversation, starting from idle")
            return ConversationContext()

    async def _process_locked(self, conversation_id, raw_text, attachments, log) -> InboundResult:
        context = await self._load_context(conversation_id, log)
        workspace = await asyncio.to_thread(self.store.load_workspace_settings, conversation_id)
        text = (raw_text or "").strip()

        images = [attachment for attachment in attachments if attachment.type == "image"]
        for attachment in images:
            context = add_pending_image(
                context,
                PendingImage(url=attachment.url, recognition=attachment.recognition),
                self.max_pending_images,
            )

        if not text:
            if not images:
                log.info("Empty message ignored")
                return InboundResult(reply_sent=False, new_state=context.state, flagged_for_human=False)
            log.info("Image queued for next text message", context={"pending_images": len(context.pending_images)})
            reply = replies.MSG_IMAGE_RECEIVED
            await self._persist(conversation_id, context, messages=[("customer", "[image]"), ("bot", reply)], log=log)
            sent = await self._send(conversation_id, reply, log)
            return InboundResult(reply_sent=sent, new_state=context.state, flagged_for_human=False)

        decision, context = await self._decide(conversation_id, text, context, workspace, log)

        flag_reason = decision.reason if isinstance(decision, EscalateDecision) else None
        self.checkpoints.save(conversation_id, context)
        try:
            new_context, order = self._execute(decision, context, workspace, log)
        except ExecutionError as exc:
            log.warning(f"Decision could not be applied: {exc}", context={"action": decision.action})
            context = self.checkpoints.rollback(conversation_id) or context
            decision = ClarifyDecision(
                target_state=context.state,
                reply=replies.clarification_for(context.state),
                source=DecisionSource.FALLBACK,
            )
            new_context, order = self._execute(decision, context, workspace, log)

        reply = decision.reply.strip() or replies.clarification_for(new_context.state)
        if order is not None:
            reply = reply.replace(replies.ORDER_NUMBER_PLACEHOLDER, order.order_number)

        await self._persist(
            conversation_id,
            new_context,
            order=order,
            messages=[("customer", text), ("bot", reply)],
            flag_reason=flag_reason,
            log=log,
        )
        self.checkpoints.clear(conversation_id)

        sent = await self._send(conversation_id, reply, log)
        return InboundResult(
            reply_sent=sent,
            new_state=new_context.state,
            flagged_for_human=flag_reason is not None,
            source=decision.source.value,
            order_number=order.order_number if order else None,
        )

    async def _decide(self, conversation_id, text, context, workspace, log) -> tuple[Decision, ConversationContext]:
        decision = try_fast_lane(text, context, workspace)
        if decision is not None:
            log.info(
                "Fast lane decision",
                context={"action": decision.action, "target_state": decision.target_state.value},
            )
            return decision, context

        drained, images = take_pending_images(context)
        history = await asyncio.to_thread(self.store.recent_messages, conversation_id, self.history_limit)
        result = await asyncio.to_thread(
            self.director.decide,
            text,
            context,
            workspace,
            history,
            images,
            conversation_id,
        )
        if not result.ok:
            log.warning("AI director unavailable", context={"error": result.error})
            return (
                EscalateDecision(
                    target_state=context.state,
                    reply=replies.MSG_AI_UNAVAILABLE,
                    reason=FLAG_AI_UNAVAILABLE,
                    source=DecisionSource.FALLBACK,
                ),
                context,
            )

        validation = self.validator.validate(result.value, drained)
        if validation.ok:
            return validation.value, drained
        log.info(
            "AI decision replaced by fallback",
            context={"proposed": result.value.action, "reason": validation.error_code},
        )
        return fallback_decision(validation.error_code, drained), drained

    def _execute(
        self, decision: Decision, context: ConversationContext, workspace: WorkspaceSettings, log
    ) -> tuple[ConversationContext, Optional[OrderDraft]]:
        order = self._draft_order(decision, context) if isinstance(decision, CreateOrderDecision) else None

        new_context, cleared = transition_context(context, decision.target_state)
        if isinstance(decision, AddToCartDecision):
            new_context = new_context.model_copy(update={"cart": self._add_items(new_context.cart, decision)})
        elif isinstance(decision, UpdateContextDecision):
            new_context = apply_updates(new_context, decision.updates)
        if order is not None:
            new_context = new_context.model_copy(update={"last_order_number": order.order_number})

        problems = validate_integrity(new_context)
        if problems:
            raise ExecutionError("; ".join(problems))

        log.info(
            "Context transition",
            context={
                "from": context.state.value,
                "to": new_context.state.value,
                "action": decision.action,
                "source": decision.source.value,
                "cleared": cleared_names(cleared),
            },
        )
        return new_context, order

    def _add_items(self, cart: tuple[CartItem, ...], decision: AddToCartDecision) -> tuple[CartItem, ...]:
        items = list(cart)
        for request in decision.items:
            product = self.catalog.get_product(request.product_id)
            if product is None:
                raise ExecutionError(f"product {request.product_id} disappeared")
            for index, item in enumerate(items):
                if item.product_id == request.product_id and item.variant == request.variant:
                    items[index] = item.model_copy(update={"quantity": item.quantity + request.quantity})
                    break
            else:
                items.append(
                    CartItem(
                        product_id=product.product_id,
                        product_name=product.name,
                        variant=request.variant,
                        quantity=request.quantity,
                        unit_price=product.price,
                    )
                )
        return tuple(items)

    def _draft_order(self, decision: CreateOrderDecision, context: ConversationContext) -> OrderDraft:
        name = decision.customer_name or context.customer_name
        phone = decision.customer_phone or context.customer_phone
        address = decision.customer_address or context.customer_address
        if not (context.cart and name and phone and address):
            raise ExecutionError("order is missing cart or customer details")
        return OrderDraft(
            order_number=generate_order_number(),
            customer_name=name,
            customer_phone=phone,
            customer_address=address,
            items=context.cart,
            subtotal=context.cart_total,
            delivery_charge=context.delivery_charge or 0.0,
            payment_digits=decision.payment_digits or context.payment_digits,
        )

    async def _persist(self, conversation_id, context, *, order=None, messages=(), flag_reason=None, log) -> None:
        try:
            await asyncio.to_thread(
                self.store.save_context,
                conversation_id,
                context,
                order=order,
                messages=messages,
                flag_reason=flag_reason,
            )
        except PersistenceFailure as exc:
            log.error(f"Persisting conversation failed: {exc}", context={"state": context.state.value})
            alert_critical(
                "Conversation state not saved",
                {"conversation_id": conversation_id, "state": context.state.value, "error": str(exc)},
            )
            try:
                await asyncio.to_thread(self.store.flag_manual_response, conversation_id, FLAG_PERSISTENCE_FAILURE)
            except (PersistenceFailure, ConversationNotFound) as flag_exc:
                log.error(f"Could not flag conversation for manual review: {flag_exc}")
            raise

    async def _send(self, conversation_id: str, text: str, log) -> bool:
        try:
            sent = await asyncio.to_thread(self.messenger.send_text, conversation_id, text)
        except Exception as exc:
            log.error(f"Reply delivery failed: {exc}", exc_info=True)
            return False
        if not sent:
            log.warning("Reply delivery was not accepted")
        return sent
