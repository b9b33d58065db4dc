"""Read-only tools the AI director may call before deciding."""

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from app.logging_config import get_logger
from app.schemas.workspace import WorkspaceSettings
from app.services.interfaces import OrderLookup, ProductCatalog
from app.services.validators import normalize_phone

logger = get_logger("agent_tools")

STOCK_RESULT_LIMIT = 3


@dataclass
class ToolResult:
    tool_name: str
    success: bool
    message: str
    data: dict[str, Any] = field(default_factory=dict)

    def as_history_line(self) -> str:
        return f"[TOOL RESULT] ({self.tool_name}): {self.message}"


def check_stock(catalog: ProductCatalog, query: str, workspace_id: Optional[str] = None) -> ToolResult:
    query = (query or "").strip()
    if not query:
        return ToolResult("check_stock", False, "No product name given.")
    products = catalog.lookup_product(query, limit=STOCK_RESULT_LIMIT, workspace_id=workspace_id)
    if not products:
        return ToolResult("check_stock", True, f'Products matching "{query}" not found.', {"found": False})
    info = [
        {
            "product_id": product.product_id,
            "name": product.name,
            "price": product.price,
            "stock": product.stock,
            "variants": list(product.variants),
        }
        for product in products
    ]
    return ToolResult(
        "check_stock",
        True,
        f"Found {len(info)} products. Stock info: {json.dumps(info, ensure_ascii=False)}",
        {"found": True, "products": info},
    )


def track_order(order_lookup: OrderLookup, phone: str, workspace_id: Optional[str] = None) -> ToolResult:
    normalized = normalize_phone(phone)
    if not normalized:
        return ToolResult("track_order", False, "Invalid phone number for order tracking.")
    order = order_lookup.lookup_order(normalized, workspace_id=workspace_id)
    if order is None:
        return ToolResult("track_order", True, f"No orders found for {normalized}.", {"found": False})
    placed = order.created_at.date().isoformat() if order.created_at else "unknown date"
    return ToolResult(
        "track_order",
        True,
        f"Latest order #{order.order_number} placed {placed} is {order.status}, total {order.total:g}.",
        {"found": True, "order": order.model_dump(mode="json")},
    )


def calculate_delivery(workspace: WorkspaceSettings, address: str) -> ToolResult:
    if not (address or "").strip():
        return ToolResult("calculate_delivery", False, "No address given.")
    charge = workspace.delivery_charge_for(address)
    return ToolResult(
        "calculate_delivery",
        True,
        f"Delivery charge for this address is {workspace.money(charge)}.",
        {"charge": charge},
    )


class AgentToolbox:
    """Dispatches tool calls by name for one director invocation."""

    def __init__(self, catalog: ProductCatalog, order_lookup: OrderLookup, workspace: WorkspaceSettings):
        self._tools: dict[str, Callable[[dict], ToolResult]] = {
            "check_stock": lambda args: check_stock(
                catalog, args.get("query") or args.get("search_query", ""), workspace.workspace_id
            ),
            "track_order": lambda args: track_order(order_lookup, args.get("phone", ""), workspace.workspace_id),
            "calculate_delivery": lambda args: calculate_delivery(workspace, args.get("address", "")),
        }

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def run(self, tool_name: str, args: Optional[dict]) -> ToolResult:
        tool = self._tools.get(tool_name)
        if tool is None:
            return ToolResult(tool_name or "unknown", False, f"Unknown tool: {tool_name}")
        try:
            return tool(args or {})
        except Exception as exc:
            logger.warning(
                f"Tool {tool_name} failed: {exc}",
                extra={"context": {"tool": tool_name, "error": str(exc)}},
            )
            return ToolResult(tool_name, False, f"Error running {tool_name}: {exc}")
