import pytest

from app.schemas.context import CartItem, ConversationContext
from app.schemas.decision import DecisionAction
from app.schemas.workspace import WorkspaceSettings
from app.services import replies
from app.services.fast_lane import check_knowledge_boundary, detect_interruption, parse_quick_form, try_fast_lane
from app.services.state_machine import ConversationState
from fakes import KURTI, POLO, SAREE, TSHIRT

S = ConversationState

CART = (CartItem(product_id="p-polo", product_name="Blue Polo", quantity=1, unit_price=850),)


def _ctx(state, **fields):
    return ConversationContext(state=state, **fields)


class TestInterruptions:
    @pytest.mark.parametrize("state", list(ConversationState))
    def test_cancel_exits_every_flow(self, state, workspace):
        decision = try_fast_lane("Cancel", _ctx(state, cart=CART, pending_product=POLO), workspace)
        assert decision.action == DecisionAction.REPLY
        assert decision.target_state == S.IDLE

    @pytest.mark.parametrize("state", list(ConversationState))
    def test_human_request_escalates_in_place(self, state, workspace):
        decision = try_fast_lane("I want to talk to a human", _ctx(state), workspace)
        assert decision.action == DecisionAction.ESCALATE_TO_HUMAN
        assert decision.target_state == state

    def test_interruption_wins_over_state_pattern(self, workspace):
        decision = try_fast_lane("restart", _ctx(S.AWAITING_NAME), workspace)
        assert decision.target_state == S.IDLE

    def test_detect_interruption_kinds(self):
        assert detect_interruption("start over") == "restart"
        assert detect_interruption("বাতিল") == "cancel"
        assert detect_interruption("blue polo") is None


class TestPhone:
    def test_bare_phone_moves_to_address(self, workspace):
        decision = try_fast_lane("01712345678", _ctx(S.AWAITING_PHONE, customer_name="Rahim"), workspace)

        assert decision.action == DecisionAction.UPDATE_CONTEXT
        assert decision.target_state == S.AWAITING_ADDRESS
        assert decision.updates.customer_phone == "01712345678"

    def test_international_format_is_normalized(self, workspace):
        decision = try_fast_lane("+880 1712-345678", _ctx(S.AWAITING_PHONE), workspace)
        assert decision.updates.customer_phone == "01712345678"

    def test_wrong_digit_count_reprompts(self, workspace):
        decision = try_fast_lane("0171234567", _ctx(S.AWAITING_PHONE), workspace)
        assert decision.action == DecisionAction.REPLY
        assert decision.target_state == S.AWAITING_PHONE
        assert "11-digit" in decision.reply

    def test_phone_outside_phone_state_falls_through(self, workspace):
        assert try_fast_lane("01712345678", _ctx(S.IDLE), workspace) is None


class TestProductFlow:
    def test_yes_adds_pending_product(self, workspace):
        decision = try_fast_lane("yes!", _ctx(S.CONFIRMING_PRODUCT, pending_product=POLO), workspace)

        assert decision.action == DecisionAction.ADD_TO_CART
        assert decision.target_state == S.AWAITING_NAME
        assert decision.items[0].product_id == "p-polo"

    def test_yes_on_out_of_stock_product_returns_to_idle(self, workspace):
        decision = try_fast_lane("ji", _ctx(S.CONFIRMING_PRODUCT, pending_product=KURTI), workspace)
        assert decision.target_state == S.IDLE
        assert "out of stock" in decision.reply

    def test_yes_on_product_with_variants_asks_for_variant(self, workspace):
        decision = try_fast_lane("yes", _ctx(S.CONFIRMING_PRODUCT, pending_product=TSHIRT), workspace)
        assert decision.target_state == S.COLLECTING_VARIANT
        assert "XL" in decision.reply

    def test_variant_choice_adds_to_cart(self, workspace):
        decision = try_fast_lane("xl", _ctx(S.COLLECTING_VARIANT, pending_product=TSHIRT), workspace)
        assert decision.action == DecisionAction.ADD_TO_CART
        assert decision.items[0].variant == "XL"

    def test_no_declines(self, workspace):
        decision = try_fast_lane("না", _ctx(S.CONFIRMING_PRODUCT, pending_product=POLO), workspace)
        assert decision.target_state == S.IDLE


class TestSelection:
    def test_number_selects_from_list_on_screen(self, workspace):
        decision = try_fast_lane("2", _ctx(S.BROWSING, shown_products=(POLO, SAREE)), workspace)

        assert decision.target_state == S.CONFIRMING_PRODUCT
        assert decision.updates.pending_product == SAREE
        assert "Silk Saree" in decision.reply

    def test_number_out_of_range(self, workspace):
        decision = try_fast_lane("5", _ctx(S.BROWSING, shown_products=(POLO, SAREE)), workspace)
        assert decision.target_state == S.BROWSING
        assert "between 1 and 2" in decision.reply

    def test_number_without_list_falls_through(self, workspace):
        assert try_fast_lane("3", _ctx(S.IDLE), workspace) is None

    def test_all_of_these_adds_in_stock_items(self, workspace):
        decision = try_fast_lane("all of these", _ctx(S.BROWSING, shown_products=(POLO, KURTI, SAREE)), workspace)

        assert decision.action == DecisionAction.ADD_TO_CART
        assert [item.product_id for item in decision.items] == ["p-polo", "p-saree"]
        assert "৳3350" in decision.reply


class TestCheckoutFields:
    def test_name(self, workspace):
        decision = try_fast_lane("Abdul Hamid", _ctx(S.AWAITING_NAME, cart=CART), workspace)
        assert decision.target_state == S.AWAITING_PHONE
        assert decision.updates.customer_name == "Abdul Hamid"

    def test_bangla_name(self, workspace):
        decision = try_fast_lane("রহিম উদ্দিন", _ctx(S.AWAITING_NAME, cart=CART), workspace)
        assert decision.updates.customer_name == "রহিম উদ্দিন"

    def test_address_inside_dhaka(self, workspace):
        context = _ctx(S.AWAITING_ADDRESS, cart=CART, customer_name="Rahim", customer_phone="01712345678")
        decision = try_fast_lane("House 10, Road 5, Dhanmondi, Dhaka", context, workspace)

        assert decision.target_state == S.CONFIRMING_ORDER
        assert decision.updates.delivery_charge == 60
        assert "Total: ৳910" in decision.reply

    def test_address_outside_dhaka(self, workspace):
        context = _ctx(S.AWAITING_ADDRESS, cart=CART, customer_name="Rahim", customer_phone="01712345678")
        decision = try_fast_lane("Agrabad road 3, Chattogram", context, workspace)
        assert decision.updates.delivery_charge == 120

    def test_question_while_awaiting_address_is_answered(self, workspace):
        decision = try_fast_lane("delivery charge koto?", _ctx(S.AWAITING_ADDRESS, cart=CART), workspace)

        assert decision.action == DecisionAction.REPLY
        assert decision.target_state == S.AWAITING_ADDRESS
        assert "৳60" in decision.reply
        assert "delivery address" in decision.reply

    def test_confirm_creates_order(self, workspace):
        decision = try_fast_lane("confirm", _ctx(S.CONFIRMING_ORDER, cart=CART), workspace)
        assert decision.action == DecisionAction.CREATE_ORDER
        assert decision.target_state == S.IDLE

    def test_confirm_asks_for_payment_digits_when_required(self):
        workspace = WorkspaceSettings(require_payment_digits=True, payment_instructions="bKash 01900000000")
        decision = try_fast_lane("yes", _ctx(S.CONFIRMING_ORDER, cart=CART), workspace)
        assert decision.target_state == S.AWAITING_PAYMENT_DIGITS
        assert "bKash 01900000000" in decision.reply

    def test_payment_digits(self, workspace):
        decision = try_fast_lane("45", _ctx(S.AWAITING_PAYMENT_DIGITS, cart=CART), workspace)
        assert decision.action == DecisionAction.CREATE_ORDER
        assert decision.payment_digits == "45"


class TestQuickForm:
    def test_labelled_form(self, workspace):
        text = "Name: Rahim Uddin\nPhone: 01812345678\nAddress: House 5, Road 2, Mirpur, Dhaka"
        decision = try_fast_lane(text, _ctx(S.AWAITING_CUSTOMER_DETAILS, cart=CART), workspace)

        assert decision.target_state == S.CONFIRMING_ORDER
        assert decision.updates.customer_phone == "01812345678"
        assert decision.updates.customer_address == "House 5, Road 2, Mirpur, Dhaka"

    def test_positional_lines(self):
        fields = parse_quick_form("Rahim Uddin\n01812345678\nHouse 5, Road 2\nMirpur, Dhaka")
        assert fields == {"name": "Rahim Uddin", "phone": "01812345678", "address": "House 5, Road 2, Mirpur, Dhaka"}

    def test_incomplete_form_reprompts(self, workspace):
        decision = try_fast_lane("Name: Rahim\nPhone: 123", _ctx(S.AWAITING_CUSTOMER_DETAILS, cart=CART), workspace)
        assert decision.target_state == S.AWAITING_CUSTOMER_DETAILS
        assert "Address:" in decision.reply


class TestKnowledgeBoundary:
    def test_unconfigured_warranty_question_goes_to_a_person(self, workspace):
        decision = try_fast_lane("warranty ache?", _ctx(S.BROWSING, shown_products=(POLO,)), workspace)

        assert decision.action == DecisionAction.ESCALATE_TO_HUMAN
        assert decision.target_state == S.BROWSING
        assert decision.reason == "knowledge_gap:warranty"
        assert decision.reply == replies.MSG_KNOWLEDGE_GAP

    def test_configured_shop_location_is_answered(self):
        workspace = WorkspaceSettings(seller_info="Showroom: Shop 12, Bashundhara City, Dhaka")
        decision = try_fast_lane("Where is your showroom?", _ctx(S.AWAITING_PHONE), workspace)

        assert decision.action == DecisionAction.REPLY
        assert decision.target_state == S.AWAITING_PHONE
        assert "Bashundhara City" in decision.reply
        assert "phone number" in decision.reply

    def test_blank_setting_counts_as_missing(self):
        workspace = WorkspaceSettings(seller_info="   ")
        assert check_knowledge_boundary("where is your office", workspace) == ("shop_location", None)

    @pytest.mark.parametrize(
        "text, topic",
        [
            ("can you customize the print for me", "customization"),
            ("I have a complaint about my last order", "complaint"),
            ("গ্যারান্টি কত দিন", "warranty"),
        ],
    )
    def test_topics_without_a_setting_always_escalate(self, workspace, text, topic):
        decision = try_fast_lane(text, _ctx(S.IDLE), workspace)
        assert decision.reason == f"knowledge_gap:{topic}"

    def test_missing_return_policy_escalates(self):
        workspace = WorkspaceSettings(return_policy=None)
        decision = try_fast_lane("can I return it?", _ctx(S.IDLE), workspace)
        assert decision.reason == "knowledge_gap:return"

    def test_checkout_field_is_not_mistaken_for_a_question(self, workspace):
        context = _ctx(S.AWAITING_ADDRESS, cart=CART, customer_name="Rahim", customer_phone="01712345678")
        decision = try_fast_lane("House 4, near Jamuna showroom, Dhaka", context, workspace)
        assert decision.target_state == S.CONFIRMING_ORDER

    def test_product_question_still_goes_to_director(self, workspace):
        assert check_knowledge_boundary("do you have red sarees in cotton", workspace) is None


class TestGeneric:
    def test_greeting_reprompts_current_step(self, workspace):
        decision = try_fast_lane("Assalamualaikum", _ctx(S.AWAITING_PHONE), workspace)
        assert decision.target_state == S.AWAITING_PHONE
        assert "Test Shop" in decision.reply
        assert "phone number" in decision.reply

    def test_free_text_goes_to_director(self, workspace):
        assert try_fast_lane("do you have red sarees in cotton", _ctx(S.IDLE), workspace) is None

    def test_empty_text(self, workspace):
        assert try_fast_lane("   ", _ctx(S.IDLE), workspace) is None
