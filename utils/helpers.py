"""Helper utilities for the Mystery Mart order core"""

import uuid
import logging
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional

from utils.constants import ORDER_ID_PREFIX, STATUS_LABELS

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def utc_now() -> datetime:
    """Timezone-aware current time in UTC"""
    return datetime.now(timezone.utc)


def generate_order_id() -> str:
    """Public order id, e.g. ORD-20240101-1A2B3C4D"""
    date_part = utc_now().strftime("%Y%m%d")
    random_part = uuid.uuid4().hex[:8].upper()
    return f"{ORDER_ID_PREFIX}-{date_part}-{random_part}"


def to_decimal(value: Any) -> Decimal:
    """Convert numbers and numeric strings to Decimal without float artefacts"""
    if isinstance(value, Decimal):
        return value
    if value is None:
        return Decimal("0")
    return Decimal(str(value))


def quantize_money(value: Any) -> Decimal:
    """Round to cents"""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def format_money(value: Any) -> str:
    return f"${quantize_money(value):,.2f}"


def format_datetime(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    return dt.isoformat()


def get_order_status_text(status: str) -> str:
    """Get human-readable order status"""
    return STATUS_LABELS.get(status, status.title())


def format_shipping_address(address: Dict[str, Any]) -> str:
    """Multi-line postal rendering of a snapshotted shipping address"""
    lines = [address.get("full_name", ""), address.get("address_line1", "")]
    if address.get("address_line2"):
        lines.append(address["address_line2"])
    lines.append(
        f"{address.get('city', '')}, {address.get('state', '')} {address.get('postal_code', '')}".rstrip()
    )
    if address.get("country"):
        lines.append(address["country"])
    lines.append(f"Phone: {address.get('phone_number', '')}")
    return "\n".join(lines)
