import pytest

from app.schemas.context import CartItem, ContextField, ConversationContext, PendingImage
from app.schemas.decision import ContextUpdates
from app.services.context_manager import (
    CLEARING_POLICY,
    ContextCheckpoints,
    ContextPolicyError,
    add_pending_image,
    apply_updates,
    take_pending_images,
    transition_context,
    validate_integrity,
)
from app.services.state_machine import ConversationState
from fakes import POLO, SAREE

S = ConversationState


def _full_context(state=S.CONFIRMING_ORDER):
    return ConversationContext(
        state=state,
        cart=(CartItem(product_id="p-polo", product_name="Blue Polo", quantity=1, unit_price=850),),
        customer_name="Rahim",
        customer_phone="01712345678",
        customer_address="House 10, Road 5, Dhanmondi, Dhaka",
        shown_products=(POLO, SAREE),
        pending_product=POLO,
        delivery_charge=60,
        payment_digits="45",
        scratch={"note": "wants gift wrap"},
    )


class TestTransitionContext:
    def test_every_state_has_a_policy(self):
        assert set(CLEARING_POLICY) == set(ConversationState)

    def test_idle_clears_cart_and_checkout(self):
        next_context, cleared = transition_context(_full_context(), S.IDLE)

        assert next_context.state == S.IDLE
        assert next_context.cart == ()
        assert next_context.customer_address is None
        assert next_context.scratch == {}
        assert ContextField.CART in cleared

    def test_browsing_clears_staged_order_fields_but_keeps_cart(self):
        next_context, _ = transition_context(_full_context(), S.BROWSING)

        assert next_context.customer_name is None
        assert next_context.customer_phone is None
        assert next_context.delivery_charge is None
        assert len(next_context.cart) == 1
        assert next_context.shown_products == (POLO, SAREE)

    def test_awaiting_address_drops_half_entered_address(self):
        next_context, cleared = transition_context(_full_context(), S.AWAITING_ADDRESS)

        assert next_context.customer_address is None
        assert next_context.customer_phone == "01712345678"
        assert ContextField.CUSTOMER_ADDRESS in cleared

    def test_input_is_not_mutated(self):
        original = _full_context()
        transition_context(original, S.IDLE)
        assert original.customer_name == "Rahim"
        assert original.state == S.CONFIRMING_ORDER

    def test_cleared_depends_only_on_target_state(self):
        empty = ConversationContext(state=S.CONFIRMING_ORDER)
        for state in ConversationState:
            _, cleared_full = transition_context(_full_context(), state)
            _, cleared_empty = transition_context(empty, state)
            assert cleared_full == cleared_empty

    def test_applying_same_target_twice_is_idempotent(self):
        for state in ConversationState:
            once, cleared_once = transition_context(_full_context(), state)
            twice, cleared_twice = transition_context(once, state)
            assert twice == once
            assert cleared_twice == cleared_once

    def test_unknown_state_is_a_configuration_error(self, monkeypatch):
        monkeypatch.delitem(CLEARING_POLICY, S.COLLECTING_VARIANT)
        with pytest.raises(ContextPolicyError):
            transition_context(ConversationContext(), S.COLLECTING_VARIANT)


class TestApplyUpdates:
    def test_only_explicit_fields_are_written(self):
        context = _full_context(S.AWAITING_PHONE)
        updated = apply_updates(context, ContextUpdates(customer_phone="+8801812345678"))

        assert updated.customer_phone == "01812345678"
        assert updated.customer_name == "Rahim"

    def test_scratch_is_merged(self):
        updated = apply_updates(_full_context(), ContextUpdates(scratch={"size_hint": "L"}))
        assert updated.scratch == {"note": "wants gift wrap", "size_hint": "L"}

    def test_none_updates_returns_same_context(self):
        context = _full_context()
        assert apply_updates(context, None) is context


class TestPendingImages:
    def test_oldest_image_dropped_on_overflow(self):
        context = ConversationContext()
        for index in range(4):
            context = add_pending_image(context, PendingImage(url=f"https://cdn/{index}.jpg"), max_images=3)

        assert [image.url for image in context.pending_images] == [
            "https://cdn/1.jpg",
            "https://cdn/2.jpg",
            "https://cdn/3.jpg",
        ]

    def test_take_drains_queue(self):
        context = add_pending_image(ConversationContext(), PendingImage(url="https://cdn/a.jpg"), max_images=5)
        drained, images = take_pending_images(context)

        assert drained.pending_images == ()
        assert [image.url for image in images] == ["https://cdn/a.jpg"]


class TestIntegrity:
    def test_consistent_context_has_no_problems(self):
        assert validate_integrity(_full_context()) == []

    def test_confirming_order_needs_cart_and_name(self):
        context = ConversationContext(state=S.CONFIRMING_ORDER)
        problems = validate_integrity(context)
        assert "confirming order with an empty cart" in problems
        assert "confirming order without a customer name" in problems

    def test_bad_cart_item_and_phone_reported(self):
        context = ConversationContext(
            cart=(CartItem(product_id="p-polo", quantity=0, unit_price=0),),
            customer_phone="12345",
        )
        problems = validate_integrity(context)
        assert len(problems) == 3


class TestCheckpoints:
    def test_rollback_returns_last_saved(self):
        checkpoints = ContextCheckpoints()
        first = ConversationContext(state=S.BROWSING)
        second = ConversationContext(state=S.AWAITING_NAME)
        checkpoints.save("c1", first)
        checkpoints.save("c1", second)

        assert checkpoints.rollback("c1") == second
        assert checkpoints.rollback("c1") == first
        assert checkpoints.rollback("c1") is None

    def test_stack_is_bounded(self):
        checkpoints = ContextCheckpoints(max_checkpoints=2)
        for state in (S.IDLE, S.BROWSING, S.AWAITING_NAME):
            checkpoints.save("c1", ConversationContext(state=state))

        assert checkpoints.depth("c1") == 2
        assert checkpoints.rollback("c1").state == S.AWAITING_NAME
        assert checkpoints.rollback("c1").state == S.BROWSING

    def test_conversations_are_isolated(self):
        checkpoints = ContextCheckpoints()
        checkpoints.save("c1", ConversationContext())
        checkpoints.clear("c2")
        assert checkpoints.depth("c1") == 1
        assert checkpoints.depth("c2") == 0
