"""Actions a shop owner takes from the dashboard: forcing a state and replying by hand.

The owner path is more permissive than the bot path. A bot message
that finds the conversation locked is skipped and flagged. An owner message
waits briefly for an in-flight bot reply and is then sent regardless.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from app.config import settings
from app.logging_config import conversation_logger, get_logger
from app.services.context_manager import cleared_names, transition_context
from app.services.interfaces import ConversationStore, Messenger
from app.services.processing_lock import LockType, ProcessingLockManager
from app.services.state_machine import ConversationState

logger = get_logger("operator_service")


@dataclass
class StateOverrideResult:
    state: ConversationState
    cleared_fields: list[str]


@dataclass
class OperatorSendResult:
    success: bool
    waited_for_bot: bool
    lock_acquired: bool


def override_state(store: ConversationStore, conversation_id: str, target_state: ConversationState) -> StateOverrideResult:
    """Force a state change. Adjacency is not enforced, the clearing policy is."""
    context = store.load_context(conversation_id)
    next_context, cleared = transition_context(context, target_state)
    store.save_context(conversation_id, next_context)
    store.clear_manual_response(conversation_id)

    conversation_logger(logger, conversation_id).info(
        "Manual state override",
        context={"from": context.state.value, "to": target_state.value, "cleared": cleared_names(cleared)},
    )
    return StateOverrideResult(state=target_state, cleared_fields=cleared_names(cleared))


async def send_operator_message(
    locks: ProcessingLockManager,
    messenger: Messenger,
    store: ConversationStore,
    conversation_id: str,
    text: str,
    wait_seconds: Optional[float] = None,
    lock_ttl: Optional[float] = None,
    sleep_func: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> OperatorSendResult:
    log = conversation_logger(logger, conversation_id)
    wait_seconds = settings.owner_wait_seconds if wait_seconds is None else wait_seconds
    lock_ttl = settings.owner_lock_ttl_seconds if lock_ttl is None else lock_ttl

    waited = False
    if locks.is_locked_by(conversation_id, LockType.BOT_PROCESSING):
        waited = True
        released = await locks.wait_for_release(conversation_id, timeout=wait_seconds, sleep_func=sleep_func)
        if not released:
            log.warning("Bot still processing after wait, sending anyway", context={"waited_seconds": wait_seconds})

    acquired = locks.acquire(conversation_id, LockType.OWNER_SENDING, ttl=lock_ttl)
    try:
        sent = await asyncio.to_thread(messenger.send_text, conversation_id, text)
        if sent:
            await asyncio.to_thread(store.record_message, conversation_id, "owner", text)
            await asyncio.to_thread(store.clear_manual_response, conversation_id)
        else:
            log.warning("Owner message was not delivered")
        return OperatorSendResult(success=sent, waited_for_bot=waited, lock_acquired=acquired)
    finally:
        if acquired and locks.is_locked_by(conversation_id, LockType.OWNER_SENDING):
            locks.release(conversation_id)
