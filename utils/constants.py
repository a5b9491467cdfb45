"""Constants for the Mystery Mart order core"""

from models import OrderStatus

# ==================== ORDER STATUS CONSTANTS ====================

# Fulfillment happy path rendered by the order timeline
HAPPY_PATH = [
    OrderStatus.PENDING.value,
    OrderStatus.CONFIRMED.value,
    OrderStatus.PROCESSING.value,
    OrderStatus.SHIPPED.value,
    OrderStatus.DELIVERED.value,
]

# Statuses rendered off the happy path
BRANCH_STATUSES = [
    OrderStatus.CANCELLED.value,
    OrderStatus.DISPUTED.value,
]

# Legacy labels still sent by older clients
STATUS_ALIASES = {
    "paid": OrderStatus.CONFIRMED.value,
}

STATUS_LABELS = {
    "pending": "Order Placed",
    "confirmed": "Payment Confirmed",
    "processing": "Processing",
    "shipped": "Shipped",
    "delivered": "Delivered",
    "cancelled": "Cancelled",
    "disputed": "Disputed",
}

# ==================== PAYMENT CONSTANTS ====================

SUPPORTED_CRYPTO = ["BTC", "ETH", "LTC", "DOGE", "BCH", "TRX", "USDT-ERC20", "USDT-TRC20"]

# Checkout form values mapped to ticker symbols
CRYPTO_ALIASES = {
    "bitcoin": "BTC",
    "ethereum": "ETH",
    "litecoin": "LTC",
    "dogecoin": "DOGE",
    "tron": "TRX",
}

CURRENCY_NAMES = {
    "BTC": "Bitcoin",
    "ETH": "Ethereum",
    "LTC": "Litecoin",
    "DOGE": "Dogecoin",
    "BCH": "Bitcoin Cash",
    "TRX": "Tron",
    "USDT-ERC20": "Tether (ERC20)",
    "USDT-TRC20": "Tether (TRC20)",
}

# ==================== SHIPPING CONSTANTS ====================

REQUIRED_SHIPPING_FIELDS = [
    "full_name",
    "address_line1",
    "city",
    "state",
    "postal_code",
    "country",
    "phone_number",
]

# Country names accepted in shipping forms, for phone parsing without a + prefix
COUNTRY_REGION_CODES = {
    "united states": "US",
    "usa": "US",
    "canada": "CA",
    "united kingdom": "GB",
    "uk": "GB",
    "australia": "AU",
    "germany": "DE",
    "france": "FR",
    "india": "IN",
    "nigeria": "NG",
}

ORDER_ID_PREFIX = "ORD"
