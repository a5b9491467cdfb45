"""
Input Validation Utilities
Checkout input validation and sanitization
"""

import re
import logging
from typing import Any, Dict, Optional
import phonenumbers
from phonenumbers import NumberParseException, PhoneNumberFormat
from utils.exception_handler import ValidationError
from utils.constants import (
    SUPPORTED_CRYPTO,
    CRYPTO_ALIASES,
    REQUIRED_SHIPPING_FIELDS,
    COUNTRY_REGION_CODES,
)

logger = logging.getLogger(__name__)


class InputValidator:
    """Checkout input validation"""

    SCRIPT_PATTERN = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
    TAG_PATTERN = re.compile(r"<[^>]*>?", re.MULTILINE)

    CRYPTO_ADDRESS_PATTERNS = {
        "BTC": re.compile(r"^[13][a-km-zA-HJ-NP-Z1-9]{25,34}$|^bc1[a-z0-9]{39,59}$"),
        "ETH": re.compile(r"^0x[a-fA-F0-9]{40}$"),
        "TRX": re.compile(r"^T[A-Za-z1-9]{33}$"),
        "LTC": re.compile(r"^[LM3][a-km-zA-HJ-NP-Z1-9]{26,33}$|^ltc1[a-z0-9]{39,59}$"),
        "DOGE": re.compile(r"^D{1}[5-9A-HJ-NP-U]{1}[1-9A-HJ-NP-Za-km-z]{32}$"),
        "BCH": re.compile(
            r"^[13][a-km-zA-HJ-NP-Z1-9]{25,34}$|^bitcoincash:[a-z0-9]{42}$"
        ),
    }

    @classmethod
    def sanitize_text(cls, text: Optional[str]) -> Optional[str]:
        """Strip script blocks and HTML tags from free text"""
        if text is None:
            return None
        text = cls.SCRIPT_PATTERN.sub("", str(text))
        text = cls.TAG_PATTERN.sub("", text)
        return text.strip()

    @classmethod
    def sanitize_payload(cls, value: Any) -> Any:
        """Recursively sanitize every string inside a dict/list payload"""
        if isinstance(value, str):
            return cls.sanitize_text(value)
        if isinstance(value, list):
            return [cls.sanitize_payload(item) for item in value]
        if isinstance(value, dict):
            return {key: cls.sanitize_payload(item) for key, item in value.items()}
        return value

    @classmethod
    def validate_quantity(cls, quantity: Any, available: int, max_quantity: Optional[int] = None) -> int:
        """Quantity must be a positive integer within available stock"""
        if isinstance(quantity, bool):
            raise ValidationError("Quantity must be a whole number", field="quantity")
        try:
            quantity = int(quantity)
        except (ValueError, TypeError):
            raise ValidationError("Quantity must be a whole number", field="quantity")

        if quantity < 1:
            raise ValidationError("Quantity must be at least 1", field="quantity")

        if max_quantity is not None and quantity > max_quantity:
            raise ValidationError(f"Quantity cannot exceed {max_quantity} per order", field="quantity")

        if quantity > available:
            raise ValidationError(
                f"Only {available} item(s) available", field="quantity"
            )

        return quantity

    @staticmethod
    def _require_text(value: Any, field: str, message: str) -> str:
        """Non-empty stripped string, else ValidationError on ``field``"""
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(message, field=field)
        return value.strip()

    @classmethod
    def validate_cryptocurrency(cls, cryptocurrency: Any) -> str:
        raw = cls._require_text(cryptocurrency, "cryptocurrency", "Please select a cryptocurrency")
        symbol = CRYPTO_ALIASES.get(raw.lower(), raw.upper())
        if symbol not in SUPPORTED_CRYPTO:
            raise ValidationError(
                f"Unsupported cryptocurrency: {raw}", field="cryptocurrency"
            )
        return symbol

    @classmethod
    def validate_crypto_address(cls, address: Any, currency: str) -> str:
        """Validate cryptocurrency address format"""
        address = cls._require_text(address, "wallet_address", "Wallet address cannot be empty")

        # Get pattern for currency
        pattern = cls.CRYPTO_ADDRESS_PATTERNS.get(currency.upper())
        if not pattern:
            # USDT variants follow their host chain's format
            if "ERC20" in currency.upper():
                pattern = cls.CRYPTO_ADDRESS_PATTERNS["ETH"]
            elif "TRC20" in currency.upper():
                pattern = cls.CRYPTO_ADDRESS_PATTERNS["TRX"]
            else:
                if len(address) < 10 or len(address) > 100:
                    raise ValidationError("Invalid address format", field="wallet_address")
                return address

        if not pattern.match(address):
            raise ValidationError(f"Invalid {currency} address format", field="wallet_address")

        return address

    @classmethod
    def region_for_country(cls, country: Any) -> Optional[str]:
        """Map a shipping country (name or ISO code) to a phonenumbers region"""
        if country is None or country == "":
            return None
        country = cls._require_text(country, "country", "Country must be a name or ISO code")
        if len(country) == 2 and country.isalpha():
            return country.upper()
        return COUNTRY_REGION_CODES.get(country.lower())

    @classmethod
    def validate_phone(cls, phone: Any, country: Optional[str] = None) -> str:
        """Validate phone number, using the shipping country when no + prefix is given"""
        phone = cls._require_text(phone, "phone_number", "Phone number cannot be empty")
        region = None if phone.startswith("+") else cls.region_for_country(country)

        if not phone.startswith("+") and region is None:
            raise ValidationError(
                "Phone number must start with + and country code\n"
                "Examples: +12025551234, +447700900123",
                field="phone_number",
            )

        try:
            parsed_number = phonenumbers.parse(phone, region)
        except NumberParseException:
            raise ValidationError(
                "Invalid phone number format. Use + followed by country code and number",
                field="phone_number",
            )

        if not phonenumbers.is_possible_number(parsed_number):
            raise ValidationError(
                "Invalid phone number format, please double-check the digits",
                field="phone_number",
            )

        if not phonenumbers.is_valid_number(parsed_number):
            raise ValidationError(
                "Invalid phone number, please verify the country code and number",
                field="phone_number",
            )

        return phonenumbers.format_number(parsed_number, PhoneNumberFormat.E164)

    @classmethod
    def validate_shipping_address(cls, address: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """Sanitize the address and require every mandatory field"""
        if not address:
            raise ValidationError("Shipping address is required", field="shipping_address")

        cleaned = cls.sanitize_payload(dict(address))
        missing = [name for name in REQUIRED_SHIPPING_FIELDS if not cleaned.get(name)]
        if missing:
            raise ValidationError(
                f"Please fill in all required shipping fields: {', '.join(missing)}",
                field="shipping_address",
                details={"missing_fields": missing},
            )

        cleaned["phone_number"] = cls.validate_phone(cleaned["phone_number"], cleaned.get("country"))
        return cleaned


def is_valid_crypto_address(address: str, currency: str) -> bool:
    """Check if crypto address is valid without raising exception"""
    try:
        InputValidator.validate_crypto_address(address, currency)
        return True
    except ValidationError:
        return False


def is_valid_phone(phone: str, country: Optional[str] = None) -> bool:
    """Check if phone is valid without raising exception"""
    try:
        InputValidator.validate_phone(phone, country)
        return True
    except ValidationError:
        return False
