"""
Request bodies for the order API.

Checkout fields are optional at this layer; missing checkout data reaches the
services, which reject it with a 400 naming the field.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ShippingAddressIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    full_name: Optional[str] = None
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    phone_number: Optional[str] = None


class PaymentMethodDetailsIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    cryptocurrency: Optional[str] = None
    wallet_address: Optional[str] = None
    buyer_phone: Optional[str] = None


class CreateOrderRequest(BaseModel):
    box_id: str
    quantity: int = 1
    shipping_address: ShippingAddressIn = Field(default_factory=ShippingAddressIn)
    payment_method: str
    payment_method_details: PaymentMethodDetailsIn = Field(default_factory=PaymentMethodDetailsIn)
    idempotency_key: Optional[str] = Field(default=None, max_length=128)


class UpdateStatusRequest(BaseModel):
    status: str
    tracking_number: Optional[str] = Field(default=None, max_length=100)
    note: Optional[str] = Field(default=None, max_length=1000)
    expected_version: Optional[int] = None


class CancelOrderRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=1000)
    expected_version: Optional[int] = None


class CartLineIn(BaseModel):
    box_id: str
    quantity: int = 1


class CartCheckoutRequest(BaseModel):
    # Falls back to the buyer's stored cart when omitted
    items: Optional[List[CartLineIn]] = None
    shipping_address: ShippingAddressIn = Field(default_factory=ShippingAddressIn)
    payment_method: str
    payment_method_details: PaymentMethodDetailsIn = Field(default_factory=PaymentMethodDetailsIn)


class CartQuantityRequest(BaseModel):
    quantity: int


class CheckoutResponse(BaseModel):
    order_id: str
    created: bool = True
    warnings: List[str] = Field(default_factory=list)
