from __future__ import annotations

"""User-facing texts, button sets and message builders."""

from typing import List, Optional, Sequence, Tuple

from .catalog_store import Product
from .sessions import ConfigSpec, OrderSession
from .transport import Choice
from .utils import non_empty, truncate

UNKNOWN_USER = "unknown"
NOT_SPECIFIED = "not specified"
PREVIEW_LIMIT = 6
PREVIEW_DESCRIPTION_LEN = 120
PREVIEW_SPECS_LEN = 160
COURIER_DELIVERY = "Delivery (100k)"
PICKUP_DELIVERY = "Pickup"

WELCOME = """Hello! I am the shop assistant.

Ask me about any product in our catalog, prices or availability.
/configuratsiya - build a PC step by step
/shop - find a product in the catalog
/products - full product list
/help - all commands"""

HELP = """Commands:
/start - welcome message
/help - this help
/configuratsiya (or /config) - PC build wizard
/shop - product search
/products - catalog list
/history - your recent messages
/clear - clear your history
/admin - admin login
/logout - admin logout
/catalog - catalog info (admin)
/clean - clear catalog and history (admin)"""

UNKNOWN_COMMAND = "Unknown command. Send /help to see the list."
HISTORY_CLEARED = "Your history has been cleared."
HISTORY_EMPTY = "You have no history yet."
ADMIN_PASSWORD_PROMPT = "Enter the admin password:"
ADMIN_ALREADY = "You are already logged in as admin."
ADMIN_WRONG_PASSWORD = "Wrong password."
ADMIN_WELCOME = """Welcome to the admin panel!

Send an Excel file (.xlsx, up to 5MB) to replace the product catalog. Recognised columns:
- Name
- Category
- Price
- Description (optional)
- Stock (optional)

/catalog - current catalog info
/products - all products
/logout - leave the admin panel"""
ADMIN_LOGGED_OUT = "You have left the admin panel."
ADMIN_NOT_LOGGED_IN = "You were not logged in as admin."
ADMIN_ONLY = "This section is for admins only."
CATALOG_EMPTY = "The catalog is empty."
PRODUCTS_NOT_FOUND = "No products found."
PRODUCTS_TEXT_LIMIT = 4000
CLEANED = "Catalog and message history have been cleared."
ADMIN_NO_MESSAGES = "No conversations yet."
ADMIN_USER_NOT_FOUND = "Could not identify the user."
ADMIN_USER_NO_MESSAGES = "No messages found for this user."

UPLOAD_ADMIN_ONLY = "Only admins can upload catalog files. Use /admin to log in."
UPLOAD_PROCESSING = "Processing the file..."

SHOP_PROMPT = "Which product are you looking for? Write a name or model, e.g. \"RTX 3060\" or \"1TB SSD\"."
SHOP_EMPTY_QUERY = "The product name is not clear. For example: \"RTX 3060\", \"1TB SSD\"."
SHOP_NOT_FOUND = "No product found. Try another name or model."
SHOP_ORDER_NOT_FOUND = "Order details not found. Please search again."
SHOP_DECLINED = "If you need another product, just write its name."
SHOP_MORE = "Which option should we look for? Write a new model or category."

CONFIG_REMINDER = (
    "To get help with a PC build, answer a few questions step by step with /configuratsiya. "
    "Press /configuratsiya to start."
)
CONFIG_QUESTION_TYPE = "What kind of PC do you need? Office, Gaming, Montaj (editing), Server or Other?"
CONFIG_QUESTION_BUDGET = "Enter your budget (e.g. 800$, 10 000 000 so'm). An estimate is fine."
CONFIG_QUESTION_CPU = "Which processor do you prefer? Intel or AMD?"
CONFIG_QUESTION_STORAGE = "Storage type? HDD, SSD or NVMe?"
CONFIG_QUESTION_GPU = "Graphics card: NVIDIA RTX or AMD Radeon?"
CONFIG_SESSION_RESET = "The session was reset. Press /configuratsiya to start again."
CONFIG_ERROR = "Could not prepare a configuration. Try again or press /configuratsiya."
CONFIG_FEEDBACK_PROMPT = "Do you like this configuration?"
FEEDBACK_THANKS = "Thank you! We received your request, an admin will reply soon."
FEEDBACK_DISLIKED = "Sorry this configuration did not suit you. Press /configuratsiya to try again."
CHANGE_PROMPT = "Which component would you like to change?"
CHANGE_EMPTY = "Please write the component you want instead."
CHANGE_ERROR = "Could not calculate the new configuration. Please try again."
CHANGE_QUESTIONS = {
    "cpu": "Which CPU model would you like instead? Write its full name.",
    "gpu": "Which GPU model would you like instead? Write its full name.",
    "ram": "What RAM size/speed would you like? For example: 32GB DDR5 6000MHz.",
    "ssd": "What SSD capacity would you like? For example: 1TB NVMe Gen4.",
    "other": "Write which component should be changed.",
}

ORDER_ASK_NAME = "Please write your full name."
ORDER_ASK_PHONE = "Send your phone number (or press the button)."
ORDER_ASK_LOCATION = "Send your location or write the address as text."
ORDER_ASK_DELIVERY = "How would you like to receive the order?"
ORDER_ASK_DELIVERY_CONFIRM = "Courier delivery costs 100k. Do you agree?"
ORDER_NOT_FOUND = "Order details not found. Please start again."
ORDER_DECLINED = "We are sorry. Thank you for your time."
ORDER_PICKUP_DONE = "Thank you! Your order will be ready within 24 hours, you can pick it up tomorrow."
ORDER_PICKUP_FALLBACK = "Then please pick up the order from our pickup point."
ORDER_COURIER_DONE = "Accepted. Your order is being processed."
BUY_NOT_FOUND = "Details not found. Please send the product request again."
BUY_OFFER = "We have it! Would you like to buy?"
BUY_DECLINED = "If you have more questions, feel free to write."
FLOW_EXPIRED = "This step has expired. Please start again."

ADMIN_MESSAGE_PROMPT = "Write the message you want to leave for the admin."
ADMIN_MESSAGE_EMPTY = "Write the text of the message for the admin."
ADMIN_MESSAGE_SENT = "Your message was sent to the admin. The reply will arrive here."
ADMIN_MESSAGE_FAILED = "Could not send the message to the admin. Please try again a bit later."
USER_MESSAGE_SUMMARY = "User message"
ADMIN_MESSAGE_UNAVAILABLE = "Sorry, messages to the admin are not available right now."
STAFF_APPROVAL_PROMPT = "Allow asking the customer to place an order?"
STAFF_APPROVAL_NOT_FOUND = "Approval not found or expired."
STAFF_APPROVAL_BAD_ID = "Could not read the approval data."
STAFF_STATUS_ORDER = "Sent to the customer with an order offer."
STAFF_STATUS_REPLY_ONLY = "Only the admin reply was sent."
ASK_ORDER = "Shall we place the order?"

BACKEND_QUOTA = "The AI service is temporarily limited. Please retry in about 30 seconds."
BACKEND_FAILED = "Sorry, something went wrong. Please try again."

YES = "Yes"
NO = "No"

CONFIG_FEEDBACK_CHOICES = (
    Choice("cfg_fb_yes", "Like it"),
    Choice("cfg_fb_no", "Don't like it"),
    Choice("cfg_fb_change", "Change a component"),
)
CHANGE_CHOICES = (
    Choice("cfg_change_cpu", "CPU"),
    Choice("cfg_change_gpu", "GPU"),
    Choice("cfg_change_ram", "RAM"),
    Choice("cfg_change_ssd", "SSD"),
    Choice("cfg_change_other", "Other"),
)
ORDER_CHOICES = (Choice("order_yes", YES), Choice("order_no", NO))
BUY_CHOICES = (Choice("buy_yes", YES), Choice("buy_no", NO))
SHOP_CHOICES = (Choice("shop_yes", YES), Choice("shop_no", NO), Choice("shop_more", "Show other options"))
DELIVERY_CHOICES = (Choice("delivery_pickup", "Pickup"), Choice("delivery_courier", "Courier"))
DELIVERY_CONFIRM_CHOICES = (Choice("delivery_confirm_yes", YES), Choice("delivery_confirm_no", NO))
MESSAGE_ADMIN_CHOICE = Choice("msg_admin_start", "Write to admin")
ADMIN_PANEL_CHOICES = (Choice("admin_msgs", "User conversations"),)


def staff_approval_choices(request_id: str) -> Tuple[Choice, ...]:
    return (Choice(f"adm_approve_yes:{request_id}", YES), Choice(f"adm_approve_no:{request_id}", NO))


def user_label(username: str, user_id: str) -> str:
    return f"@{non_empty(username, UNKNOWN_USER)} ({user_id})"


def format_price(price: float) -> str:
    return f"{price:.0f}" if float(price).is_integer() else f"{price:.2f}"


def product_preview(products: Sequence[Product], limit: int = PREVIEW_LIMIT) -> str:
    """Purpose: Render a short numbered list of products for offers.
    Inputs/Outputs: Inputs are products and a limit; returns multi-line text.
    Side Effects / State: None.
    Dependencies: truncate, format_price.
    Failure Modes: Empty input returns an empty string.
    If Removed: Shop mode answers have no body.
    Testing Notes: Seven products with limit 6 render six lines plus a remainder note.
    """
    # Name, price and stock, then a trimmed description and sorted spec pairs.
    lines: List[str] = []
    for index, product in enumerate(products[:limit], start=1):
        line = f"{index}) {product.name} - ${format_price(product.price)}"
        if product.stock > 0:
            line += f" (stock: {product.stock})"
        lines.append(line)
        if product.description:
            lines.append(f"   {truncate(product.description, PREVIEW_DESCRIPTION_LEN)}")
        if product.specs:
            specs = ", ".join(f"{key}={value}" for key, value in sorted(product.specs.items()))
            lines.append(f"   {truncate(specs, PREVIEW_SPECS_LEN)}")
    if len(products) > limit:
        lines.append(f"... and {len(products) - limit} more")
    return "\n".join(lines)


def shop_found(preview: str) -> str:
    return f"Found it!\n\n{preview}\n\nShall we place the order?"


def shop_summary(query: str) -> str:
    return f"Shop query: {query}"


def product_request_summary(text: str) -> str:
    return f"Product request: {text}"


def config_summary(spec: ConfigSpec) -> str:
    return (
        "I noted your requirements:\n"
        f"- Purpose: {non_empty(spec.pc_type, NOT_SPECIFIED)}\n"
        f"- Budget: {non_empty(spec.budget, NOT_SPECIFIED)}\n"
        f"- CPU: {non_empty(spec.cpu, NOT_SPECIFIED)}\n"
        f"- Storage: {non_empty(spec.storage, NOT_SPECIFIED)}\n"
        f"- GPU: {non_empty(spec.gpu, NOT_SPECIFIED)}\n\n"
        "Now I will pick the best configuration for these requirements..."
    )


def config_prompt(spec: ConfigSpec) -> str:
    return (
        f"Configuration request: purpose={non_empty(spec.pc_type, NOT_SPECIFIED)}, "
        f"budget={non_empty(spec.budget, NOT_SPECIFIED)}, CPU={non_empty(spec.cpu, NOT_SPECIFIED)}, "
        f"storage={non_empty(spec.storage, NOT_SPECIFIED)}, GPU={non_empty(spec.gpu, NOT_SPECIFIED)}. "
        "Build a PC configuration for these requirements using prices from the list."
    )


def change_prompt(spec: ConfigSpec, requirement: str) -> str:
    return (
        "The customer wants to change the configuration. Requirements: "
        f"purpose={non_empty(spec.pc_type, NOT_SPECIFIED)}, budget={non_empty(spec.budget, NOT_SPECIFIED)}, "
        f"CPU={non_empty(spec.cpu, NOT_SPECIFIED)}, storage={non_empty(spec.storage, NOT_SPECIFIED)}, "
        f"GPU={non_empty(spec.gpu, NOT_SPECIFIED)}. Extra requirement from the customer: {requirement}. "
        "Build a new configuration and show the prices."
    )


def spec_line(spec: ConfigSpec) -> str:
    return f"Purpose: {spec.pc_type}, Budget: {spec.budget}, CPU: {spec.cpu}, Storage: {spec.storage}, GPU: {spec.gpu}"


def request_summary(text: str) -> str:
    return f"Request: {text}"


def staff_config_liked(username: str, user_id: str, summary: str, config_text: str) -> str:
    return f"Configuration liked\nUser: {user_label(username, user_id)}\n{summary}\n\nAI configuration:\n{config_text}"


def staff_product_request(username: str, user_id: str, summary: str, details: str) -> str:
    return f"Product request: {user_label(username, user_id)}\n{summary}\n\n{details}"


def staff_shop_request(username: str, user_id: str, summary: str, details: str) -> str:
    return f"Shop request: {user_label(username, user_id)}\n{summary}\n\n{details}"


def staff_user_message(username: str, user_id: str, text: str) -> str:
    return f"Message from user {user_label(username, user_id)}:\n{text}"


def admin_reply(text: str, ask_order: bool) -> str:
    reply = f"Reply from admin:\n{non_empty(text, 'no reply text')}"
    if ask_order:
        reply += f"\n\n{ASK_ORDER}"
    return reply


def order_summary(user_id: str, username: str, order: OrderSession, delivery: str, note: str) -> str:
    """Order card for the orders channel."""
    body = order.details or order.summary
    return (
        "New order\n"
        f"User: {user_label(username, user_id)}\n"
        f"Name: {non_empty(order.name, NOT_SPECIFIED)}\n"
        f"Phone: {non_empty(order.phone, NOT_SPECIFIED)}\n"
        f"Location: {non_empty(order.location, NOT_SPECIFIED)}\n"
        f"Delivery: {delivery}\n"
        f"Note: {non_empty(note, '-')}\n\n"
        f"{body}"
    )


def history_text(entries: Sequence[Tuple[str, str]]) -> str:
    lines = ["Your recent messages:"]
    for index, (text, response) in enumerate(entries, start=1):
        lines.append(f"{index}. {truncate(text, 200)}")
        lines.append(f"   -> {truncate(response, 200)}")
    return "\n".join(lines)


def catalog_info_text(source: str, updated: Optional[str], total: int, categories: Sequence[Tuple[str, int]]) -> str:
    lines = [
        "Catalog info:",
        f"Source: {non_empty(source, '-')}",
        f"Updated: {non_empty(updated or '', '-')}",
        f"Products: {total}",
    ]
    for name, count in categories:
        lines.append(f"- {name}: {count}")
    return "\n".join(lines)


def upload_done(count: int, filename: str) -> str:
    return f"Catalog updated from {filename}: {count} products loaded."


def upload_failed(reason: str) -> str:
    return f"Could not load the catalog: {reason}"


def admin_user_list(count: int) -> str:
    return f"{count} users have conversations. Pick one:"


def products_too_large(total: int) -> str:
    return f"There are {total} products in total. The catalog is too large to list, just ask me about what you need."
