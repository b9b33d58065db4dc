import asyncio

from app.schemas.context import CartItem, ConversationContext
from app.services.operator_service import override_state, send_operator_message
from app.services.processing_lock import LockType
from app.services.state_machine import ConversationState
from fakes import FakeMessenger

S = ConversationState
CID = "c-1"


def _send(locks, messenger, store, clock, text="Hi, this is the owner"):
    return asyncio.run(
        send_operator_message(
            locks, messenger, store, CID, text, wait_seconds=2, lock_ttl=10, sleep_func=clock.sleep
        )
    )


class TestOverrideState:
    def test_override_applies_clearing_policy(self, store):
        store.contexts[CID] = ConversationContext(
            state=S.AWAITING_ADDRESS,
            cart=(CartItem(product_id="p-polo", product_name="Blue Polo", unit_price=850),),
            customer_name="Rahim",
        )
        store.flags[CID] = "ai_unavailable"

        result = override_state(store, CID, S.IDLE)

        assert result.state == S.IDLE
        assert "cart" in result.cleared_fields
        assert store.contexts[CID].cart == ()
        assert store.contexts[CID].customer_name is None
        assert CID not in store.flags

    def test_override_ignores_adjacency(self, store):
        store.contexts[CID] = ConversationContext(state=S.IDLE)
        result = override_state(store, CID, S.AWAITING_PHONE)
        assert result.state == S.AWAITING_PHONE
        assert store.contexts[CID].state == S.AWAITING_PHONE


class TestSendOperatorMessage:
    def test_sends_immediately_when_unlocked(self, locks, messenger, store, clock):
        result = _send(locks, messenger, store, clock)

        assert result.success is True
        assert result.waited_for_bot is False
        assert result.lock_acquired is True
        assert messenger.sent == [(CID, "Hi, this is the owner")]
        assert store.messages[CID] == [("owner", "Hi, this is the owner")]
        assert locks.is_locked(CID) is None

    def test_waits_for_bot_to_finish(self, locks, messenger, store, clock):
        locks.acquire(CID, LockType.BOT_PROCESSING, ttl=1)

        result = _send(locks, messenger, store, clock)

        assert result.waited_for_bot is True
        assert result.lock_acquired is True
        assert result.success is True
        assert clock.now >= 1001.0

    def test_sends_anyway_after_wait_timeout(self, locks, messenger, store, clock):
        locks.acquire(CID, LockType.BOT_PROCESSING, ttl=15)

        result = _send(locks, messenger, store, clock)

        assert result.success is True
        assert result.waited_for_bot is True
        assert result.lock_acquired is False
        assert locks.is_locked_by(CID, LockType.BOT_PROCESSING)

    def test_other_owner_lock_does_not_block(self, locks, messenger, store, clock):
        locks.acquire(CID, LockType.OWNER_SENDING, ttl=10)

        result = _send(locks, messenger, store, clock)

        assert result.success is True
        assert result.waited_for_bot is False
        assert result.lock_acquired is False
        assert locks.is_locked_by(CID, LockType.OWNER_SENDING)

    def test_delivery_failure_is_not_recorded(self, locks, store, clock):
        store.flags[CID] = "lock_contention"

        result = _send(locks, FakeMessenger(succeed=False), store, clock)

        assert result.success is False
        assert CID not in store.messages
        assert store.flags[CID] == "lock_contention"
        assert locks.is_locked(CID) is None
