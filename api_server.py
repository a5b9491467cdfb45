"""
Mystery Mart order API.

The authenticated user id arrives in the ``X-User-Id`` header from the auth
gateway in front of this service and is trusted as-is.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Optional, Tuple

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from config import Config
from database import create_tables, get_db, test_connection
from models import MysteryBoxStatus
from schemas import (
    CancelOrderRequest,
    CartCheckoutRequest,
    CartLineIn,
    CartQuantityRequest,
    CheckoutResponse,
    CreateOrderRequest,
    UpdateStatusRequest,
)
from services.cart_store import CartStore, WishlistStore, get_stores
from services.catalog_service import CatalogService
from services.checkout_service import CheckoutService
from services.messaging_service import MessagingService
from services.notification_service import NotificationService
from services.order_repository import OrderRepository
from services.order_status_service import OrderStatusService
from services.order_view_service import build_order_view, resolve_access_role, serialize_order
from utils.error_handler import handle_error
from utils.exception_handler import MarketplaceError, NotFoundError, ValidationError
from utils.helpers import format_datetime

logger = logging.getLogger(__name__)

_server_start = time.time()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and start the outbox scheduler for this worker"""
    scheduler = None
    create_tables()
    if Config.RUN_OUTBOX_SCHEDULER:
        from jobs.scheduler import start_scheduler
        scheduler = start_scheduler()

    yield

    if scheduler is not None:
        scheduler.shutdown(wait=False)
    logger.info("🔄 Order API shutting down")


app = FastAPI(
    title="Mystery Mart Order API",
    description="Order lifecycle for mystery box purchases",
    lifespan=lifespan,
)


@app.middleware("http")
async def request_timeout(request: Request, call_next):
    try:
        return await asyncio.wait_for(call_next(request), timeout=Config.REQUEST_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        logger.error(f"⏱️ REQUEST_TIMEOUT: {request.method} {request.url.path}")
        return JSONResponse(
            status_code=504,
            content={"error": {"code": "TIMEOUT", "message": "The request took too long. Please try again.", "category": "system"}},
        )


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    standard_error = handle_error(exc, {"path": request.url.path, "method": request.method})
    return JSONResponse(status_code=standard_error.http_status, content=standard_error.to_response())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    # Malformed bodies share the 400 envelope with service-level validation
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(part) for part in first.get("loc", ())[1:]) or None
    error = ValidationError(first.get("msg", "Invalid request"), field=field)
    standard_error = handle_error(error, {"path": request.url.path, "method": request.method})
    return JSONResponse(status_code=standard_error.http_status, content=standard_error.to_response())


# ----------------------------------------------------------------------
# Dependencies
# ----------------------------------------------------------------------

def get_actor_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Authentication required")
    return x_user_id.strip()


def get_cart_stores() -> Tuple[CartStore, WishlistStore]:
    return get_stores()


def _load_active_box(db: Session, box_id: str):
    box = CatalogService(db).get_box(box_id)
    if box is None:
        raise NotFoundError(f"Mystery box {box_id} not found")
    if box.status != MysteryBoxStatus.ACTIVE.value:
        raise ValidationError("This mystery box is not available", field="box_id")
    return box


def _order_view(db: Session, order_id: str, actor_id: str):
    order = OrderRepository(db).get_order(order_id)
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")
    box = CatalogService(db).get_box(order.box_id)
    return build_order_view(order, actor_id, box)


# ----------------------------------------------------------------------
# Health
# ----------------------------------------------------------------------

@app.get("/health")
def health_check():
    database_ok = test_connection()
    return JSONResponse(
        status_code=200 if database_ok else 503,
        content={
            "status": "ok" if database_ok else "degraded",
            "service": "mysterymart-orders",
            "database": database_ok,
            "uptime_seconds": round(time.time() - _server_start, 2),
        },
    )


# ----------------------------------------------------------------------
# Orders
# ----------------------------------------------------------------------

@app.post("/orders", response_model=CheckoutResponse, status_code=201)
def create_order(
    body: CreateOrderRequest,
    response: Response,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
):
    result = CheckoutService(db).create_order(
        box_id=body.box_id,
        buyer_id=actor_id,
        quantity=body.quantity,
        shipping_address=body.shipping_address.model_dump(),
        payment_method=body.payment_method,
        payment_method_details=body.payment_method_details.model_dump(exclude_none=True),
        idempotency_key=body.idempotency_key,
    )
    if not result.created:
        response.status_code = 200
    return CheckoutResponse(order_id=result.order_id, created=result.created, warnings=result.warnings)


@app.get("/orders")
def list_orders(
    role: Optional[str] = Query(default=None),
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
):
    orders = OrderRepository(db).get_user_orders(actor_id, role)
    return {"orders": [serialize_order(order) for order in orders]}


@app.get("/orders/{order_id}")
def get_order(order_id: str, actor_id: str = Depends(get_actor_id), db: Session = Depends(get_db)):
    return _order_view(db, order_id, actor_id)


@app.patch("/orders/{order_id}/status")
def update_order_status(
    order_id: str,
    body: UpdateStatusRequest,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
):
    OrderStatusService(db).update_status(
        order_id,
        actor_id,
        body.status,
        tracking_number=body.tracking_number,
        note=body.note,
        expected_version=body.expected_version,
    )
    return _order_view(db, order_id, actor_id)


@app.post("/orders/{order_id}/cancel")
def cancel_order(
    order_id: str,
    body: CancelOrderRequest,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
):
    OrderStatusService(db).cancel_order(order_id, actor_id, body.reason, body.expected_version)
    return _order_view(db, order_id, actor_id)


@app.get("/orders/{order_id}/messages")
def get_order_messages(order_id: str, actor_id: str = Depends(get_actor_id), db: Session = Depends(get_db)):
    order = OrderRepository(db).get_order(order_id)
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")
    resolve_access_role(order, actor_id)

    messages = MessagingService(db).get_order_messages(order_id)
    return {
        "messages": [
            {
                "sender_id": message.sender_id,
                "recipient_id": message.recipient_id,
                "content": message.content,
                "message_type": message.message_type,
                "created_at": format_datetime(message.created_at),
            }
            for message in messages
        ]
    }


# ----------------------------------------------------------------------
# Cart checkout
# ----------------------------------------------------------------------

@app.post("/checkout/cart", status_code=201)
def checkout_cart(
    body: CartCheckoutRequest,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
    stores: Tuple[CartStore, WishlistStore] = Depends(get_cart_stores),
):
    cart, _ = stores
    if body.items is not None:
        lines = [line.model_dump() for line in body.items]
    else:
        lines = cart.as_checkout_lines(actor_id)

    results = CheckoutService(db).checkout_cart(
        buyer_id=actor_id,
        cart_items=lines,
        shipping_address=body.shipping_address.model_dump(),
        payment_method=body.payment_method,
        payment_method_details=body.payment_method_details.model_dump(exclude_none=True),
    )
    if body.items is None:
        cart.clear(actor_id)
    return {
        "orders": [
            CheckoutResponse(order_id=result.order_id, created=result.created, warnings=result.warnings).model_dump()
            for result in results
        ]
    }


# ----------------------------------------------------------------------
# Cart & wishlist
# ----------------------------------------------------------------------

def _cart_payload(cart: CartStore, user_id: str):
    total_items, total_price = cart.totals(user_id)
    return {"items": cart.load(user_id), "total_items": total_items, "total_price": total_price}


@app.get("/cart")
def get_cart(actor_id: str = Depends(get_actor_id), stores=Depends(get_cart_stores)):
    return _cart_payload(stores[0], actor_id)


@app.post("/cart/items")
def add_cart_item(
    body: CartLineIn,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
    stores=Depends(get_cart_stores),
):
    if body.quantity < 1:
        raise ValidationError("Quantity must be at least 1", field="quantity")
    box = _load_active_box(db, body.box_id)
    stores[0].add_item(actor_id, box, body.quantity)
    return _cart_payload(stores[0], actor_id)


@app.patch("/cart/items/{box_id}")
def update_cart_item(
    box_id: str,
    body: CartQuantityRequest,
    actor_id: str = Depends(get_actor_id),
    stores=Depends(get_cart_stores),
):
    stores[0].update_quantity(actor_id, box_id, body.quantity)
    return _cart_payload(stores[0], actor_id)


@app.delete("/cart/items/{box_id}")
def remove_cart_item(box_id: str, actor_id: str = Depends(get_actor_id), stores=Depends(get_cart_stores)):
    stores[0].remove_item(actor_id, box_id)
    return _cart_payload(stores[0], actor_id)


@app.delete("/cart")
def clear_cart(actor_id: str = Depends(get_actor_id), stores=Depends(get_cart_stores)):
    stores[0].clear(actor_id)
    return _cart_payload(stores[0], actor_id)


@app.get("/wishlist")
def get_wishlist(actor_id: str = Depends(get_actor_id), stores=Depends(get_cart_stores)):
    return {"items": stores[1].load(actor_id)}


@app.post("/wishlist/{box_id}")
def toggle_wishlist(
    box_id: str,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
    stores=Depends(get_cart_stores),
):
    box = CatalogService(db).get_box(box_id)
    if box is None:
        raise NotFoundError(f"Mystery box {box_id} not found")
    wishlisted = stores[1].toggle(actor_id, box)
    return {"wishlisted": wishlisted, "items": stores[1].load(actor_id)}


@app.delete("/wishlist/{box_id}")
def remove_wishlist_item(box_id: str, actor_id: str = Depends(get_actor_id), stores=Depends(get_cart_stores)):
    return {"items": stores[1].remove(actor_id, box_id)}


# ----------------------------------------------------------------------
# Notifications
# ----------------------------------------------------------------------

@app.get("/notifications")
def list_notifications(
    unread_only: bool = Query(default=False),
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
):
    notifications = NotificationService(db).list_for_user(actor_id, unread_only=unread_only)
    return {
        "notifications": [
            {
                "id": notification.id,
                "type": notification.type,
                "title": notification.title,
                "message": notification.message,
                "action_url": notification.action_url,
                "is_read": notification.is_read,
                "data": notification.data,
                "created_at": format_datetime(notification.created_at),
            }
            for notification in notifications
        ]
    }


@app.post("/notifications/read-all")
def mark_notifications_read(actor_id: str = Depends(get_actor_id), db: Session = Depends(get_db)):
    updated = NotificationService(db).mark_all_read(actor_id)
    db.commit()
    return {"updated": updated}
