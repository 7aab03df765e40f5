"""
Menu State Machine - Process one line of input against a session

Each handler receives the session and the (stripped) input and returns the
next MenuState together with the reply. Handlers mutate ``session.user_data``;
``transition`` writes the resulting state back to the session.
"""
from decimal import Decimal, InvalidOperation
from typing import Awaitable, Callable, Optional

from agrimove.core.exceptions import ExternalServiceException
from agrimove.core.logging import get_logger
from agrimove.core.validation import PhoneNumberValidator
from agrimove.domain.services.catalog_gateway import CatalogGateway, ProduceRecord
from agrimove.state_machine import messages
from agrimove.state_machine.session import CartItem, Session, TempOrder, TempOrderItem
from agrimove.state_machine.states import MenuState, Role, is_valid_transition

logger = get_logger(__name__)

# Lists rendered in USSD pages are capped to stay under the page size
LIST_PAGE_SIZE = 5

QUANTITY_STEP = Decimal("0.001")
MAX_QUANTITY = Decimal("999999999.999")

# Role prompt shown to unregistered callers
ROLE_CHOICES = {"1": Role.BUYER, "2": Role.FARMER, "3": Role.DRIVER}
EXIT_CHOICE = "4"


class MessageResponse:
    """Reply to send back on the inbound channel"""

    def __init__(
        self,
        text: str,
        end_session: bool = False,
        notifications: Optional[list[tuple[str, str]]] = None
    ):
        self.text = text
        self.end_session = end_session
        # (phone, text) pushes to deliver after the reply has been sent
        self.notifications = notifications or []

    def __repr__(self) -> str:
        return f"MessageResponse(end_session={self.end_session}, text={self.text[:40]!r})"


Handler = Callable[[Session, str], Awaitable[tuple[MenuState, MessageResponse]]]


def parse_selection(text: str) -> Optional[int]:
    """1-based menu number, or None for anything else"""
    try:
        value = int(text)
    except ValueError:
        return None
    return value if value >= 1 else None


def parse_quantity(text: str) -> Optional[Decimal]:
    """Positive quantity that fits the stored Numeric(12, 3), or None"""
    try:
        value = Decimal(text)
    except InvalidOperation:
        return None
    if not value.is_finite() or value <= 0 or value > MAX_QUANTITY:
        return None
    # More than three decimal places would be rounded away on insert
    if value != value.quantize(QUANTITY_STEP):
        return None
    return value


def role_from_record(value: str) -> Optional[Role]:
    try:
        return Role(value)
    except ValueError:
        return None


class MenuStateMachine:
    """Conversation logic for the buyer / farmer / driver menus"""

    def __init__(self, gateway: CatalogGateway):
        self.gateway = gateway

    async def transition(self, session: Session, text: str) -> tuple[MenuState, MessageResponse]:
        """
        Apply one turn of input to ``session``.

        Empty input is a fresh start at any state. Gateway failures are
        answered with a "service unavailable" reply and force MAIN_MENU;
        they never escape.
        """
        text = (text or "").strip()
        current = session.current_menu
        handler = self._get_handler(MenuState.WELCOME if not text else current)

        try:
            new_state, response = await handler(session, text)
        except ExternalServiceException as e:
            logger.warning(
                "Catalog unavailable during turn",
                extra_data={
                    "menu": current.value,
                    "error_code": e.error_code.value,
                    "service": e.details.get("service"),
                }
            )
            session.user_data.clear_sub_flow()
            session.user_data.temp_order = None
            new_state, response = MenuState.MAIN_MENU, MessageResponse(messages.SERVICE_UNAVAILABLE)

        if not response.end_session and not is_valid_transition(current, new_state):
            logger.warning(
                "Unexpected menu transition",
                extra_data={"current_state": current.value, "target_state": new_state.value}
            )

        session.current_menu = new_state
        return new_state, response

    def _get_handler(self, state: MenuState) -> Handler:
        handlers = {
            MenuState.WELCOME: self._handle_welcome,
            MenuState.MAIN_MENU: self._handle_main_menu,
            MenuState.PRODUCE_LIST: self._handle_produce_list,
            MenuState.ORDER_STATUS: self._handle_order_status,
            MenuState.FARM_INFO: self._handle_farm_info,
            MenuState.PLACE_ORDER: self._handle_place_order,
            MenuState.CONFIRM_ORDER: self._handle_confirm_order,
        }
        return handlers.get(state, self._handle_unknown)

    async def _handle_unknown(self, session: Session, text: str):
        logger.warning(
            "No handler for menu state, falling back to main menu",
            extra_data={"menu": str(session.current_menu)}
        )
        return await self._handle_main_menu(session, "")

    def _main_menu(self, session: Session) -> tuple[MenuState, MessageResponse]:
        session.user_data.clear_sub_flow()
        role = session.user_data.role
        text = messages.ROLE_MENUS[role] if role else messages.ROLE_PROMPT
        return MenuState.MAIN_MENU, MessageResponse(text)

    def _resolve(self, session: Session, state: MenuState, text: str) -> Optional[int]:
        """Map a typed number onto the id the user saw at that position"""
        selection = parse_selection(text)
        listed = session.user_data.listed_ids.get(state.value, [])
        if selection is None or selection > len(listed):
            return None
        return listed[selection - 1]

    @staticmethod
    def _invalid(state: MenuState) -> tuple[MenuState, MessageResponse]:
        return state, MessageResponse(messages.INVALID_SELECTION)

    # ==================== Welcome & Main Menu ====================

    async def _handle_welcome(self, session: Session, text: str):
        """Identify the caller and enter the main menu"""
        data = session.user_data
        data.clear_sub_flow()
        data.temp_order = None

        user = await self.gateway.get_user_by_phone(session.phone_number)
        if user is not None:
            data.role = role_from_record(user.role)
            data.user_id = user.id
            logger.info(
                "Caller identified",
                extra_data={
                    "phone": PhoneNumberValidator.mask(session.phone_number),
                    "user_id": user.id,
                    "role": user.role,
                }
            )
            return self._main_menu(session)

        data.role = None
        data.user_id = None
        if text in ROLE_CHOICES or text == EXIT_CHOICE:
            # First input of a dial that started with a choice
            return await self._handle_main_menu(session, text)
        return MenuState.MAIN_MENU, MessageResponse(messages.WELCOME_UNREGISTERED)

    async def _handle_main_menu(self, session: Session, text: str):
        data = session.user_data
        if not text:
            return self._main_menu(session)

        if data.role is None:
            if text in ROLE_CHOICES:
                data.role = ROLE_CHOICES[text]
                return MenuState.MAIN_MENU, MessageResponse(messages.ROLE_MENUS[data.role])
            if text == EXIT_CHOICE:
                return MenuState.MAIN_MENU, MessageResponse(messages.GOODBYE, end_session=True)
            return self._invalid(MenuState.MAIN_MENU)

        if text == "5":
            return MenuState.MAIN_MENU, MessageResponse(messages.GOODBYE, end_session=True)

        if data.role != Role.BUYER:
            if text in ("1", "2", "3", "4"):
                return MenuState.MAIN_MENU, MessageResponse(messages.PLACEHOLDER)
            return self._invalid(MenuState.MAIN_MENU)

        routes = {
            "1": self._handle_produce_list,
            "2": self._handle_order_status,
            "3": self._handle_farm_info,
            "4": self._handle_place_order,
        }
        route = routes.get(text)
        if route is None:
            return self._invalid(MenuState.MAIN_MENU)
        data.clear_sub_flow()
        return await route(session, "")

    # ==================== Browse ====================

    async def _handle_produce_list(self, session: Session, text: str):
        data = session.user_data
        state = MenuState.PRODUCE_LIST

        if not text:
            data.selected_produce_id = None
            products = await self.gateway.get_all_produce()
            if not products:
                return MenuState.MAIN_MENU, MessageResponse(messages.NO_PRODUCTS)
            shown = products[:LIST_PAGE_SIZE]
            data.listed_ids[state.value] = [p.id for p in shown]
            return state, MessageResponse(messages.produce_list(shown))

        if data.selected_produce_id is not None:
            # Detail view: 1 adds to cart, 0 goes back to the list
            if text == "1":
                produce = await self.gateway.get_produce(data.selected_produce_id)
                data.selected_produce_id = None
                if produce is None or not produce.is_available:
                    return state, MessageResponse(messages.PRODUCT_UNAVAILABLE)
                data.pending_produce_id = produce.id
                return MenuState.PLACE_ORDER, MessageResponse(messages.quantity_prompt(produce))
            if text == "0":
                return await self._handle_produce_list(session, "")
            return self._invalid(state)

        if text == "0":
            return self._main_menu(session)

        produce_id = self._resolve(session, state, text)
        if produce_id is None:
            return self._invalid(state)

        produce = await self.gateway.get_produce(produce_id)
        if produce is None:
            return state, MessageResponse(messages.PRODUCT_UNAVAILABLE)

        farm = await self.gateway.get_farm_by_farmer(produce.farmer_id)
        data.selected_produce_id = produce.id
        return state, MessageResponse(
            messages.produce_detail(produce, farm.name if farm else "Unknown farm")
        )

    async def _handle_order_status(self, session: Session, text: str):
        data = session.user_data
        state = MenuState.ORDER_STATUS

        if data.user_id is None:
            return MenuState.MAIN_MENU, MessageResponse(messages.LOGIN_REQUIRED_ORDERS)

        if not text:
            orders = await self.gateway.get_orders_by_buyer(data.user_id)
            if not orders:
                return MenuState.MAIN_MENU, MessageResponse(messages.NO_ORDERS)
            shown = orders[:LIST_PAGE_SIZE]
            data.listed_ids[state.value] = [o.id for o in shown]
            return state, MessageResponse(messages.order_list(shown))

        if text == "0":
            return self._main_menu(session)

        order_id = self._resolve(session, state, text)
        if order_id is None:
            return self._invalid(state)

        order = await self.gateway.get_order(order_id)
        if order is None or order.buyer_id != data.user_id:
            return self._invalid(state)

        items = await self.gateway.get_order_items(order.id)
        names = await self._produce_names({item.produce_id for item in items})
        return state, MessageResponse(messages.order_detail(order, items, names))

    async def _handle_farm_info(self, session: Session, text: str):
        data = session.user_data
        state = MenuState.FARM_INFO

        if not text:
            farms = await self.gateway.get_all_farms()
            if not farms:
                return MenuState.MAIN_MENU, MessageResponse(messages.NO_FARMS)
            data.listed_ids[state.value] = [f.id for f in farms]
            return state, MessageResponse(messages.farm_list(farms))

        if text == "0":
            return self._main_menu(session)

        farm_id = self._resolve(session, state, text)
        if farm_id is None:
            return self._invalid(state)

        farm = await self.gateway.get_farm(farm_id)
        if farm is None:
            return self._invalid(state)

        products = await self.gateway.get_produce_by_farmer(farm.farmer_id)
        return state, MessageResponse(messages.farm_detail(farm, products))

    # ==================== Cart & Checkout ====================

    async def _produce_names(self, produce_ids: set[int]) -> dict[int, str]:
        names = {}
        for produce_id in sorted(produce_ids):
            produce = await self.gateway.get_produce(produce_id)
            if produce is not None:
                names[produce_id] = produce.name
        return names

    async def _list_for_order(self, session: Session, prefix: str = ""):
        """Render purchasable products and snapshot them for selection"""
        data = session.user_data
        state = MenuState.PLACE_ORDER

        products = [p for p in await self.gateway.get_all_produce() if p.is_available]
        if not products:
            return MenuState.MAIN_MENU, MessageResponse(prefix + messages.NO_PRODUCTS_FOR_ORDER)
        shown = products[:LIST_PAGE_SIZE]
        data.listed_ids[state.value] = [p.id for p in shown]
        return state, MessageResponse(prefix + messages.order_products(shown, len(data.cart)))

    async def _cart_view(self, session: Session):
        data = session.user_data
        names = await self._produce_names({item.produce_id for item in data.cart})
        lines = [
            (names.get(item.produce_id, "Unknown"), item.quantity, item.line_total)
            for item in data.cart
        ]
        data.viewing_cart = True
        return MenuState.PLACE_ORDER, MessageResponse(messages.cart_view(lines, data.cart_total))

    async def _add_to_cart(self, session: Session, text: str):
        data = session.user_data
        state = MenuState.PLACE_ORDER

        if text == "0":
            data.pending_produce_id = None
            return await self._list_for_order(session)

        qty = parse_quantity(text)
        if qty is None:
            return state, MessageResponse(messages.INVALID_QUANTITY)

        produce: Optional[ProduceRecord] = await self.gateway.get_produce(data.pending_produce_id)
        if produce is None or not produce.is_available:
            data.pending_produce_id = None
            return state, MessageResponse(messages.PRODUCT_UNAVAILABLE)
        in_cart = sum(
            (item.quantity for item in data.cart if item.produce_id == produce.id), Decimal("0")
        )
        if qty + in_cart > produce.quantity:
            return state, MessageResponse(messages.quantity_exceeds_stock(produce, in_cart))

        data.cart.append(CartItem(produce_id=produce.id, quantity=qty, unit_price=produce.price))
        data.pending_produce_id = None
        logger.debug(
            "Item added to cart",
            extra_data={"produce_id": produce.id, "quantity": str(qty), "cart_size": len(data.cart)}
        )
        return await self._list_for_order(session, messages.item_added(produce, qty) + "\n\n")

    async def _remove_from_cart(self, session: Session, text: str):
        data = session.user_data
        state = MenuState.PLACE_ORDER

        if text == "0":
            data.awaiting_removal = False
            return await self._cart_view(session)

        index = parse_selection(text)
        if index is None or index > len(data.cart):
            return self._invalid(state)

        removed = data.cart.pop(index - 1)
        data.awaiting_removal = False
        names = await self._produce_names({removed.produce_id})
        prefix = messages.item_removed(names.get(removed.produce_id, "item")) + "\n\n"

        if data.cart:
            new_state, response = await self._cart_view(session)
            return new_state, MessageResponse(prefix + response.text)
        data.viewing_cart = False
        return await self._list_for_order(session, prefix)

    async def _handle_place_order(self, session: Session, text: str):
        data = session.user_data
        state = MenuState.PLACE_ORDER

        if not text:
            data.clear_sub_flow()
            return await self._list_for_order(session)

        if data.pending_produce_id is not None:
            return await self._add_to_cart(session, text)
        if data.awaiting_removal:
            return await self._remove_from_cart(session, text)

        command = text.upper()
        if command in ("C", "F", "R") and not data.cart:
            return state, MessageResponse(messages.CART_EMPTY)

        if command == "C":
            return await self._cart_view(session)
        if command == "F":
            data.clear_sub_flow()
            return await self._handle_confirm_order(session, "")
        if command == "R":
            data.awaiting_removal = True
            return state, MessageResponse(messages.REMOVE_PROMPT)
        if text == "0":
            if data.viewing_cart:
                data.viewing_cart = False
                return await self._list_for_order(session)
            return self._main_menu(session)

        produce_id = self._resolve(session, state, text)
        if produce_id is None:
            return self._invalid(state)

        produce = await self.gateway.get_produce(produce_id)
        if produce is None or not produce.is_available:
            return state, MessageResponse(messages.PRODUCT_UNAVAILABLE)

        data.viewing_cart = False
        data.pending_produce_id = produce.id
        return state, MessageResponse(messages.quantity_prompt(produce))

    async def _handle_confirm_order(self, session: Session, text: str):
        data = session.user_data
        state = MenuState.CONFIRM_ORDER

        if not data.cart:
            data.temp_order = None
            return MenuState.MAIN_MENU, MessageResponse(messages.CART_EMPTY_CHECKOUT)

        if not text or data.temp_order is None:
            items = []
            for item in data.cart:
                produce = await self.gateway.get_produce(item.produce_id)
                if produce is None:
                    data.temp_order = None
                    return MenuState.PLACE_ORDER, MessageResponse(messages.PRODUCT_UNAVAILABLE)
                items.append(TempOrderItem(
                    produce_id=item.produce_id,
                    farmer_id=produce.farmer_id,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                ))
            data.temp_order = TempOrder(items=items, total=data.cart_total)
            return state, MessageResponse(messages.order_summary(data.temp_order.total, len(items)))

        temp_order = data.temp_order
        if not temp_order.delivery_address:
            temp_order.delivery_address = text
            return state, MessageResponse(
                messages.confirm_prompt(temp_order.total, temp_order.delivery_address)
            )

        if text == "1":
            return await self._place_order(session)
        if text == "2":
            data.temp_order = None
            new_state, response = await self._list_for_order(session)
            return new_state, MessageResponse(messages.ORDER_CANCELLED + "\n\n" + response.text)
        return self._invalid(state)

    async def _place_order(self, session: Session):
        """Write the order; the only mutation the conversation makes"""
        data = session.user_data
        temp_order = data.temp_order

        # The session's role is only a claim; check the record before writing
        user = await self.gateway.get_user_by_phone(session.phone_number)
        if user is None or role_from_record(user.role) != Role.BUYER:
            logger.warning(
                "Order refused for unverified caller",
                extra_data={"phone": PhoneNumberValidator.mask(session.phone_number)}
            )
            data.temp_order = None
            data.clear_sub_flow()
            return MenuState.MAIN_MENU, MessageResponse(messages.REGISTRATION_REQUIRED)

        order = await self.gateway.create_order(
            buyer_id=user.id,
            items=temp_order.items,
            delivery_address=temp_order.delivery_address,
            total=temp_order.total,
        )

        data.user_id = user.id
        data.cart = []
        data.temp_order = None
        data.clear_sub_flow()

        return MenuState.MAIN_MENU, MessageResponse(
            messages.order_placed(order),
            end_session=True,
            notifications=[(session.phone_number, messages.order_confirmation_notice(order))],
        )
