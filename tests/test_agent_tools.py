from datetime import datetime, timezone

from app.schemas.order import OrderSummary
from app.services.agent_tools import AgentToolbox, calculate_delivery, check_stock, track_order
from fakes import FakeOrderLookup


class TestCheckStock:
    def test_found(self, catalog):
        result = check_stock(catalog, "saree")

        assert result.success is True
        assert result.data["products"][0]["product_id"] == "p-saree"
        assert '"stock": 2' in result.message

    def test_not_found(self, catalog):
        result = check_stock(catalog, "lehenga")
        assert result.success is True
        assert result.data == {"found": False}

    def test_empty_query(self, catalog):
        assert check_stock(catalog, "  ").success is False


class TestTrackOrder:
    def test_latest_order(self):
        order = OrderSummary(
            order_number="2610191234",
            status="shipped",
            total=910,
            created_at=datetime(2026, 10, 19, tzinfo=timezone.utc),
        )
        result = track_order(FakeOrderLookup({"01712345678": order}), "+8801712345678")

        assert result.success is True
        assert result.message == "Latest order #2610191234 placed 2026-10-19 is shipped, total 910."

    def test_no_orders(self):
        result = track_order(FakeOrderLookup(), "01712345678")
        assert "No orders found" in result.message

    def test_invalid_phone(self):
        assert track_order(FakeOrderLookup(), "12345").success is False


def test_calculate_delivery(workspace):
    assert calculate_delivery(workspace, "Mirpur 10, Dhaka").data == {"charge": 60}
    assert calculate_delivery(workspace, "Sylhet sadar").data == {"charge": 120}


class TestToolbox:
    def test_dispatch_by_name(self, catalog, workspace):
        toolbox = AgentToolbox(catalog, FakeOrderLookup(), workspace)

        assert toolbox.names == ["check_stock", "track_order", "calculate_delivery"]
        assert toolbox.run("check_stock", {"search_query": "polo"}).data["found"] is True

    def test_unknown_tool(self, catalog, workspace):
        result = AgentToolbox(catalog, FakeOrderLookup(), workspace).run("refund", {})
        assert result.success is False
        assert result.as_history_line() == "[TOOL RESULT] (refund): Unknown tool: refund"

    def test_tool_exception_is_reported(self, workspace):
        class BrokenCatalog:
            def lookup_product(self, *args, **kwargs):
                raise RuntimeError("db down")

        result = AgentToolbox(BrokenCatalog(), FakeOrderLookup(), workspace).run("check_stock", {"query": "x"})
        assert result.success is False
        assert "db down" in result.message
