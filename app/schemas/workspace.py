from typing import Optional

from pydantic import BaseModel, ConfigDict


class WorkspaceSettings(BaseModel):
    """Per-shop configuration stored as JSON on the workspace row."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    workspace_id: Optional[str] = None
    business_name: str = "our shop"
    delivery_charge_inside_dhaka: float = 60
    delivery_charge_outside_dhaka: float = 120
    inside_dhaka_keywords: tuple[str, ...] = ("dhaka", "ঢাকা")
    delivery_time: str = "Inside Dhaka 1-2 days, outside Dhaka 3-5 days."
    return_policy: Optional[str] = "Exchange is possible within 3 days if the product is unused."
    warranty_policy: Optional[str] = None
    seller_info: Optional[str] = None  # shop address, showroom hours, contact number
    payment_methods: tuple[str, ...] = ("Cash on delivery", "bKash", "Nagad")
    payment_instructions: Optional[str] = None
    require_payment_digits: bool = False
    currency_symbol: str = "৳"

    def delivery_charge_for(self, address: str) -> float:
        lowered = (address or "").lower()
        if any(keyword in lowered for keyword in self.inside_dhaka_keywords):
            return self.delivery_charge_inside_dhaka
        return self.delivery_charge_outside_dhaka

    def money(self, amount: float) -> str:
        if float(amount).is_integer():
            return f"{self.currency_symbol}{int(amount)}"
        return f"{self.currency_symbol}{amount:.2f}"
