"""
Menu States for the USSD / WhatsApp conversation
"""
from enum import Enum


class MenuState(str, Enum):
    """Position of a session in the menu tree"""

    WELCOME = "WELCOME"
    MAIN_MENU = "MAIN_MENU"

    # Buyer sub-menus
    PRODUCE_LIST = "PRODUCE_LIST"
    ORDER_STATUS = "ORDER_STATUS"
    FARM_INFO = "FARM_INFO"

    # Checkout flow
    PLACE_ORDER = "PLACE_ORDER"
    CONFIRM_ORDER = "CONFIRM_ORDER"


class Role(str, Enum):
    """Menu tree a session renders; advisory only, never an authorization"""

    BUYER = "buyer"
    FARMER = "farmer"
    DRIVER = "driver"


# Net state changes one turn may produce. A turn may also stay put
# (invalid selection, re-rendered list) or end the session entirely.
MENU_TRANSITIONS = {
    MenuState.WELCOME: [MenuState.MAIN_MENU],
    MenuState.MAIN_MENU: [
        MenuState.PRODUCE_LIST,
        MenuState.ORDER_STATUS,
        MenuState.FARM_INFO,
        MenuState.PLACE_ORDER,
    ],
    MenuState.PRODUCE_LIST: [MenuState.MAIN_MENU, MenuState.PLACE_ORDER],
    MenuState.ORDER_STATUS: [MenuState.MAIN_MENU],
    MenuState.FARM_INFO: [MenuState.MAIN_MENU],
    MenuState.PLACE_ORDER: [MenuState.MAIN_MENU, MenuState.CONFIRM_ORDER],
    MenuState.CONFIRM_ORDER: [MenuState.MAIN_MENU, MenuState.PLACE_ORDER],
}


def is_valid_transition(current: MenuState, target: MenuState) -> bool:
    """True when ``target`` is a documented successor of ``current`` (or the same state)"""
    if current == target:
        return True
    return target in MENU_TRANSITIONS.get(current, [])
