"""
Reply texts for the USSD / WhatsApp menus
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from agrimove.state_machine.states import Role

TWO_PLACES = Decimal("0.01")

WELCOME_UNREGISTERED = (
    "Welcome to AgriMove!\n\n"
    "Your phone number is not registered. Please register on our app first "
    "or contact support for assistance.\n\n"
    "For a demo, enter:\n"
    "1. Continue as Buyer\n"
    "2. Continue as Farmer\n"
    "3. Continue as Driver\n"
    "4. Exit"
)

ROLE_PROMPT = (
    "Welcome to AgriMove!\n\n"
    "Please select an option:\n"
    "1. Continue as Buyer\n"
    "2. Continue as Farmer\n"
    "3. Continue as Driver\n"
    "4. Exit"
)

BUYER_MENU = (
    "AgriMove - Buyer Menu\n\n"
    "1. Browse Products\n"
    "2. My Orders\n"
    "3. Nearby Farms\n"
    "4. Place an Order\n"
    "5. Exit"
)

FARMER_MENU = (
    "AgriMove - Farmer Menu\n\n"
    "1. My Products\n"
    "2. Pending Orders\n"
    "3. Update Inventory\n"
    "4. Sales Report\n"
    "5. Exit"
)

DRIVER_MENU = (
    "AgriMove - Driver Menu\n\n"
    "1. Available Deliveries\n"
    "2. My Current Deliveries\n"
    "3. Update Delivery Status\n"
    "4. Earnings Report\n"
    "5. Exit"
)

ROLE_MENUS = {
    Role.BUYER: BUYER_MENU,
    Role.FARMER: FARMER_MENU,
    Role.DRIVER: DRIVER_MENU,
}

# Leaf reply for the farmer/driver menus, which have no sub-states yet
PLACEHOLDER = "This feature will be available soon. Thank you for your patience."

GOODBYE = "Thank you for using AgriMove. Goodbye!"
INVALID_SELECTION = "Invalid selection. Please try again."
SERVICE_UNAVAILABLE = "Service temporarily unavailable. Returning to main menu..."

NO_PRODUCTS = "No products available at the moment. Return to main menu..."
NO_PRODUCTS_FOR_ORDER = "No products available for order. Returning to main menu..."
NO_FARMS = "No farms available at the moment. Return to main menu..."
LOGIN_REQUIRED_ORDERS = "You need to be logged in to view orders. Returning to main menu..."
NO_ORDERS = "You have no orders yet. Returning to main menu..."
PRODUCT_UNAVAILABLE = "This product is no longer available. Please select another product."

CART_EMPTY = "Your cart is empty. Select products to add."
CART_EMPTY_CHECKOUT = "Your cart is empty. Returning to main menu..."
REMOVE_PROMPT = "Enter the item number to remove (0 to cancel):"
INVALID_QUANTITY = "Invalid quantity. Enter a number greater than 0, up to 3 decimals (or 0 to cancel):"
REGISTRATION_REQUIRED = (
    "Only registered buyers can place orders. Please register on our app first.\n"
    "Returning to main menu..."
)
ORDER_CANCELLED = "Order cancelled. Your cart has been kept."


def money(value: Decimal) -> str:
    """Two-decimal rendering used for every price and total"""
    return str(Decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP))


def quantity(value: Decimal) -> str:
    """Quantities without trailing zeros (2 rather than 2.000)"""
    return format(Decimal(value).normalize(), "f")


def numbered(lines: Iterable[str]) -> str:
    return "\n".join(f"{i}. {line}" for i, line in enumerate(lines, start=1))


def produce_line(produce) -> str:
    return f"{produce.name} - {money(produce.price)}/{produce.unit}"


def produce_list(products) -> str:
    return (
        "Available Products:\n"
        f"{numbered(produce_line(p) for p in products)}\n\n"
        "Enter product number for details or 0 to return to main menu."
    )


def produce_detail(produce, farm_name: str) -> str:
    return (
        "Product Details:\n\n"
        f"Name: {produce.name}\n"
        f"Price: {money(produce.price)}/{produce.unit}\n"
        f"Farm: {farm_name}\n"
        f"Description: {produce.description or 'No description'}\n\n"
        "Enter:\n"
        "1. Add to cart\n"
        "0. Back to product list"
    )


def order_list(orders) -> str:
    lines = (f"Order #{o.id} - {o.status} - ${money(o.total)}" for o in orders)
    return (
        "Your Recent Orders:\n"
        f"{numbered(lines)}\n\n"
        "Enter order number for details or 0 for main menu."
    )


def order_detail(order, items, names: dict[int, str]) -> str:
    lines = "\n".join(
        f"- {names.get(item.produce_id, 'Unknown product')} x{quantity(item.quantity)}"
        f" = ${money(item.quantity * item.unit_price)}"
        for item in items
    )
    return (
        f"Order #{order.id}\n"
        f"Status: {order.status}\n"
        f"Total: ${money(order.total)}\n"
        f"Delivery to: {order.delivery_address}\n"
        f"Items:\n{lines or '- none'}\n\n"
        "Enter another order number or 0 for main menu."
    )


def farm_list(farms) -> str:
    lines = (f"{f.name} (Rating: {f.rating})" for f in farms)
    return (
        "Farms:\n"
        f"{numbered(lines)}\n\n"
        "Enter farm number for details or 0 for main menu."
    )


def farm_detail(farm, products) -> str:
    text = (
        "Farm Details:\n\n"
        f"Name: {farm.name}\n"
        f"Rating: {farm.rating}/5\n"
        f"Location: {farm.address}\n"
        f"Description: {farm.description or 'No description'}\n\n"
        f"Products ({len(products)}):"
    )
    for item in products[:3]:
        text += f"\n- {item.name}: {money(item.price)}/{item.unit}"
    if len(products) > 3:
        text += "\n- ... and more"
    return text + "\n\nEnter 0 to go back."


def order_products(products, cart_size: int) -> str:
    text = (
        "Select a product to add to your order:\n"
        f"{numbered(produce_line(p) for p in products)}\n"
    )
    if cart_size:
        text += (
            f"\nYour cart has {cart_size} items."
            "\nEnter product number or:"
            "\nC. View Cart"
            "\nF. Finish Order"
            "\n0. Main menu"
        )
    else:
        text += "\nEnter product number or 0 for main menu."
    return text


def quantity_prompt(produce) -> str:
    return (
        f"You selected: {produce.name}\n"
        f"Price: {money(produce.price)}/{produce.unit}\n\n"
        "Enter quantity to add to cart:"
    )


def quantity_exceeds_stock(produce, in_cart: Decimal = Decimal("0")) -> str:
    text = f"Only {quantity(produce.quantity)} {produce.unit} of {produce.name} available"
    if in_cart:
        text += f" ({quantity(in_cart)} {produce.unit} already in your cart)"
    return text + ". Enter a smaller quantity:"


def item_added(produce, qty: Decimal) -> str:
    return f"Added {quantity(qty)} {produce.unit} of {produce.name} to your cart."


def cart_view(lines: list[tuple[str, Decimal, Decimal]], total: Decimal) -> str:
    """``lines`` holds (name, quantity, line total) per cart entry"""
    body = numbered(f"{name} x{quantity(qty)} = ${money(line_total)}" for name, qty, line_total in lines)
    return (
        "Your Cart:\n"
        f"{body}\n\n"
        f"Total: ${money(total)}\n\n"
        "Enter:\n"
        "F. Finish Order\n"
        "R. Remove Item\n"
        "0. Back to Products"
    )


def item_removed(name: str) -> str:
    return f"Removed {name} from your cart."


def order_summary(total: Decimal, item_count: int) -> str:
    return (
        "Order Summary:\n"
        f"Total: ${money(total)}\n"
        f"Items: {item_count}\n\n"
        "Enter your delivery address to continue:"
    )


def confirm_prompt(total: Decimal, address: str) -> str:
    return (
        "Confirm your order:\n"
        f"Total: ${money(total)}\n"
        f"Delivery to: {address}\n\n"
        "Enter:\n"
        "1. Confirm Order\n"
        "2. Cancel"
    )


def order_placed(order) -> str:
    return (
        f"Order #{order.id} placed successfully!\n"
        f"Total: ${money(order.total)}\n"
        "You will receive updates on WhatsApp.\n"
        "Thank you for using AgriMove."
    )


def order_confirmation_notice(order) -> str:
    return (
        f"AgriMove: Your order #{order.id} has been received.\n"
        f"Total: ${money(order.total)}\n"
        f"Delivery to: {order.delivery_address}\n"
        f"Status: {order.status}"
    )
