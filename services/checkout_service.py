"""
Checkout Service
================

Turns a buyer's box selection into a ``pending`` order.

All validation runs before anything is written. The order and its
``order_created`` outbox event are committed together; the order-details
message to the seller is then dispatched from that event. A dispatch failure
never rolls the order back. It is reported as a warning and the relay retries
it later.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from config import Config
from models import MysteryBox, MysteryBoxStatus, Order, OrderStatus, OutboxEventType, PaymentMethod
from services.catalog_service import CatalogService
from services.order_repository import OrderRepository
from services.outbox_relay import OutboxRelay, record_event
from utils.exception_handler import MarketplaceError, NotFoundError, PersistenceError, ValidationError
from utils.helpers import generate_order_id, quantize_money, to_decimal, utc_now
from utils.input_validation import InputValidator
from utils.payment_details import CodPaymentDetails, CryptoPaymentDetails, PaymentDetails

logger = logging.getLogger(__name__)

MESSAGE_DISPATCH_WARNING = "Order placed, but the seller has not been messaged yet. It will be retried automatically."


@dataclass
class CheckoutResult:
    order_id: str
    created: bool = True
    warnings: List[str] = field(default_factory=list)


class CheckoutService:
    """Validates checkout submissions and creates orders"""

    def __init__(self, session: Session, relay: Optional[OutboxRelay] = None):
        self.session = session
        self.catalog = CatalogService(session)
        self.repository = OrderRepository(session)
        self.relay = relay or OutboxRelay()

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_payment_method(payment_method: Any) -> PaymentMethod:
        if isinstance(payment_method, PaymentMethod):
            return payment_method
        try:
            return PaymentMethod(str(payment_method or "").strip().lower())
        except ValueError:
            raise ValidationError(
                f"Unsupported payment method: {payment_method}", field="payment_method"
            )

    def _load_purchasable_box(self, box_id: str, buyer_id: str) -> MysteryBox:
        box = self.catalog.get_box(box_id)
        if box is None:
            raise NotFoundError(f"Mystery box {box_id} not found")
        if box.status != MysteryBoxStatus.ACTIVE.value:
            raise ValidationError("This mystery box is not available for purchase", field="box_id")
        if box.seller_id == buyer_id:
            raise ValidationError("You cannot purchase your own mystery box", field="box_id")
        return box

    def _build_payment_details(
        self,
        box: MysteryBox,
        amount,
        payment_method: PaymentMethod,
        details: Dict[str, Any],
        shipping_address: Dict[str, Any],
    ) -> PaymentDetails:
        if payment_method == PaymentMethod.CRYPTO:
            cryptocurrency = InputValidator.validate_cryptocurrency(details.get("cryptocurrency"))
            buyer_wallet = InputValidator.validate_crypto_address(details.get("wallet_address"), cryptocurrency)

            seller = self.catalog.get_user(box.seller_id)
            seller_wallet = seller.published_address(cryptocurrency) if seller else None
            if not seller_wallet:
                raise ValidationError(
                    f"The seller does not accept {cryptocurrency} payments",
                    field="cryptocurrency",
                )

            return CryptoPaymentDetails(
                amount=amount,
                currency=Config.ORDER_CURRENCY,
                cryptocurrency=cryptocurrency,
                seller_wallet_address=seller_wallet,
                buyer_wallet_address=buyer_wallet,
            )

        phone = details.get("buyer_phone") or shipping_address.get("phone_number")
        buyer_phone = InputValidator.validate_phone(phone, shipping_address.get("country"))
        return CodPaymentDetails(
            amount=amount,
            currency=Config.ORDER_CURRENCY,
            buyer_phone=buyer_phone,
            estimated_delivery=Config.COD_ESTIMATED_DELIVERY,
        )

    def _prepare_order(
        self,
        box_id: str,
        buyer_id: str,
        quantity: Any,
        shipping_address: Dict[str, Any],
        payment_method: PaymentMethod,
        payment_method_details: Dict[str, Any],
        idempotency_key: Optional[str] = None,
    ) -> Order:
        """Validate one line and build the unsaved order"""
        box = self._load_purchasable_box(box_id, buyer_id)
        quantity = InputValidator.validate_quantity(
            quantity, box.quantity or 0, Config.MAX_ORDER_QUANTITY
        )

        unit_price = quantize_money(box.price)
        amount = quantize_money(unit_price * quantity)
        shipping_cost = quantize_money(0) if box.free_shipping else quantize_money(to_decimal(box.shipping_cost) * quantity)
        payment = self._build_payment_details(box, amount, payment_method, payment_method_details, shipping_address)

        now = utc_now()
        return Order(
            order_id=generate_order_id(),
            box_id=box.id,
            buyer_id=buyer_id,
            seller_id=box.seller_id,
            box_title=box.title,
            quantity=quantity,
            unit_price=unit_price,
            amount=amount,
            shipping_cost=shipping_cost,
            currency=Config.ORDER_CURRENCY,
            status=OrderStatus.PENDING.value,
            payment_method=payment_method.value,
            payment_details=payment.to_dict(),
            shipping_address=dict(shipping_address),
            idempotency_key=idempotency_key,
            version=1,
            created_at=now,
            updated_at=now,
        )

    def _common_checks(self, buyer_id: str, shipping_address, payment_method, details) -> Tuple[PaymentMethod, Dict, Dict]:
        if not Config.ALLOW_PURCHASES:
            raise ValidationError("Purchases are temporarily disabled")
        if not buyer_id:
            raise ValidationError("Buyer is required", field="buyer_id")

        method = self._parse_payment_method(payment_method)
        address = InputValidator.validate_shipping_address(shipping_address)
        cleaned_details = InputValidator.sanitize_payload(dict(details or {}))
        return method, address, cleaned_details

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _persist(self, orders: List[Order]) -> List[int]:
        """Store orders and their outbox events in one transaction"""
        event_ids = []
        try:
            for order in orders:
                self.repository.create_order(order)
                event = record_event(
                    self.session,
                    OutboxEventType.ORDER_CREATED,
                    order,
                    {"order_id": order.order_id, "buyer_id": order.buyer_id, "seller_id": order.seller_id},
                )
                event_ids.append(event.id)
            self.session.commit()
        except MarketplaceError:
            self.session.rollback()
            raise
        except SQLAlchemyError as e:
            self.session.rollback()
            raise PersistenceError("Could not save the order. Please try again.") from e
        return event_ids

    def _dispatch(self, event_ids: List[int]) -> List[str]:
        if not Config.DISPATCH_ORDER_MESSAGES_INLINE:
            return []
        warnings = []
        for event_id in event_ids:
            if not self.relay.dispatch(self.session, event_id):
                warnings.append(MESSAGE_DISPATCH_WARNING)
        return warnings

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def create_order(
        self,
        box_id: str,
        buyer_id: str,
        quantity: Any,
        shipping_address: Dict[str, Any],
        payment_method: Any,
        payment_method_details: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> CheckoutResult:
        """
        Create a pending order for one box.

        Raises:
            NotFoundError: box does not exist
            ValidationError: any checkout precondition fails (nothing is written)
            PersistenceError: storage failure
        """
        if idempotency_key:
            existing = self.repository.find_by_idempotency_key(buyer_id, idempotency_key)
            if existing is not None:
                logger.info(f"🔁 IDEMPOTENT_CHECKOUT: key {idempotency_key} -> {existing.order_id}")
                return CheckoutResult(order_id=existing.order_id, created=False)

        method, address, details = self._common_checks(buyer_id, shipping_address, payment_method, payment_method_details)
        order = self._prepare_order(box_id, buyer_id, quantity, address, method, details, idempotency_key)

        try:
            event_ids = self._persist([order])
        except PersistenceError as e:
            if idempotency_key and isinstance(e.__cause__, IntegrityError):
                existing = self.repository.find_by_idempotency_key(buyer_id, idempotency_key)
                if existing is not None:
                    return CheckoutResult(order_id=existing.order_id, created=False)
            raise

        logger.info(
            f"✅ ORDER_CREATED: {order.order_id} box={box_id} buyer={buyer_id} "
            f"qty={order.quantity} amount={order.amount} method={method.value}"
        )
        return CheckoutResult(order_id=order.order_id, warnings=self._dispatch(event_ids))

    def checkout_cart(
        self,
        buyer_id: str,
        cart_items: List[Dict[str, Any]],
        shipping_address: Dict[str, Any],
        payment_method: Any,
        payment_method_details: Optional[Dict[str, Any]] = None,
    ) -> List[CheckoutResult]:
        """
        Create one order per cart line. Every line is validated before any is
        written, so a bad line leaves the cart untouched.
        """
        if not cart_items:
            raise ValidationError("Your cart is empty", field="items")

        method, address, details = self._common_checks(buyer_id, shipping_address, payment_method, payment_method_details)

        # Same box added twice collapses into one line
        merged: Dict[str, int] = {}
        for item in cart_items:
            box_id = item.get("box_id")
            if not box_id:
                raise ValidationError("Cart item is missing its box", field="items")
            try:
                quantity = int(item.get("quantity", 1))
            except (TypeError, ValueError):
                raise ValidationError("Quantity must be a whole number", field="quantity")
            merged[box_id] = merged.get(box_id, 0) + quantity

        orders = [
            self._prepare_order(box_id, buyer_id, quantity, address, method, details)
            for box_id, quantity in merged.items()
        ]
        event_ids = self._persist(orders)
        logger.info(f"✅ CART_CHECKOUT: buyer={buyer_id} created {len(orders)} orders")

        results = []
        for order, event_id in zip(orders, event_ids):
            results.append(CheckoutResult(order_id=order.order_id, warnings=self._dispatch([event_id])))
        return results
