"""
Conversation Session Models

Pydantic models for the per-conversation scratch state kept in the
session store. The same models serialize to JSON for the Redis backend.
"""
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from agrimove.state_machine.states import MenuState, Role


class CartItem(BaseModel):
    produce_id: int
    quantity: Decimal
    unit_price: Decimal

    @property
    def line_total(self) -> Decimal:
        return self.quantity * self.unit_price


class TempOrderItem(BaseModel):
    produce_id: int
    farmer_id: int
    quantity: Decimal
    unit_price: Decimal


class TempOrder(BaseModel):
    """Order under construction during checkout"""

    items: list[TempOrderItem] = Field(default_factory=list)
    total: Decimal = Decimal("0")
    delivery_address: str = ""


class UserData(BaseModel):
    """Mutable bag carried across turns"""

    role: Optional[Role] = None
    user_id: Optional[int] = None
    cart: list[CartItem] = Field(default_factory=list)
    temp_order: Optional[TempOrder] = None

    # Ids rendered by the last list of each menu, keyed by MenuState value,
    # so "2" means the second item the user actually saw.
    listed_ids: dict[str, list[int]] = Field(default_factory=dict)

    # Sub-flow markers
    selected_produce_id: Optional[int] = None
    pending_produce_id: Optional[int] = None
    awaiting_removal: bool = False
    viewing_cart: bool = False

    @property
    def cart_total(self) -> Decimal:
        return sum((item.line_total for item in self.cart), Decimal("0"))

    def clear_sub_flow(self) -> None:
        """Drop every pending sub-flow marker (menu change)"""
        self.selected_produce_id = None
        self.pending_produce_id = None
        self.awaiting_removal = False
        self.viewing_cart = False


class Session(BaseModel):
    """One live conversation"""

    session_id: str
    phone_number: str
    channel: str = "ussd"
    current_menu: MenuState = MenuState.WELCOME
    user_data: UserData = Field(default_factory=UserData)

    created_at: float
    last_activity: float

    # Last transport request key and the reply sent for it (redelivery)
    last_request_key: Optional[str] = None
    last_reply: Optional[str] = None
    last_reply_ends: bool = False

    # Set by the store when the session is terminated mid-turn; never persisted
    ended: bool = Field(default=False, exclude=True)

    def idle_seconds(self, now: float) -> float:
        return max(0.0, now - self.last_activity)
