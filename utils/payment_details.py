"""
Payment details carried on an order.

Orders store one of two variants as JSON with a ``method`` tag:

- ``CodPaymentDetails``: cash on delivery, reached through the buyer's phone
- ``CryptoPaymentDetails``: direct transfer between the buyer's wallet and the
  seller's published wallet for the chosen coin
"""

from dataclasses import dataclass, asdict
from decimal import Decimal
from typing import Any, Dict, Union

from models import PaymentMethod
from utils.helpers import quantize_money


@dataclass(frozen=True)
class CodPaymentDetails:
    amount: Decimal
    currency: str
    buyer_phone: str
    estimated_delivery: str

    method = PaymentMethod.COD.value

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["amount"] = str(quantize_money(self.amount))
        data["method"] = self.method
        return data


@dataclass(frozen=True)
class CryptoPaymentDetails:
    amount: Decimal
    currency: str
    cryptocurrency: str
    seller_wallet_address: str
    buyer_wallet_address: str

    method = PaymentMethod.CRYPTO.value

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["amount"] = str(quantize_money(self.amount))
        data["method"] = self.method
        return data


PaymentDetails = Union[CodPaymentDetails, CryptoPaymentDetails]


def payment_details_from_dict(data: Dict[str, Any]) -> PaymentDetails:
    """Rebuild the variant stored on an order"""
    method = data.get("method")
    fields = {key: value for key, value in data.items() if key != "method"}
    fields["amount"] = quantize_money(fields.get("amount", 0))

    if method == PaymentMethod.COD.value:
        return CodPaymentDetails(**fields)
    if method == PaymentMethod.CRYPTO.value:
        return CryptoPaymentDetails(**fields)
    raise ValueError(f"Unknown payment method tag: {method!r}")
