"""
Shared fixtures for the order core test suite.

Every test gets a fresh in-memory SQLite database seeded with a seller, a
buyer, an unrelated user and a few mystery boxes.
"""

import os

# Must be set before config/database are imported
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("RUN_OUTBOX_SCHEDULER", "false")

import logging
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from config import Config
from models import Base, MysteryBox, MysteryBoxStatus, User
from services.checkout_service import CheckoutService
from services.order_status_service import OrderStatusService
from services.outbox_relay import OutboxRelay

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

SELLER_ID = "seller-1"
BUYER_ID = "buyer-1"
STRANGER_ID = "stranger-1"

BOX_ID = "box-retro"
SECOND_BOX_ID = "box-books"
INACTIVE_BOX_ID = "box-removed"

SELLER_BTC_ADDRESS = "1A1zP1eP5QGefi2DMPTfTL5SLmv7DivfNa"
SELLER_ETH_ADDRESS = "0x" + "ab" * 20
BUYER_BTC_ADDRESS = "1BvBMSEYstWetqTFn5Au4m4GFg7xJaNVN2"

US_PHONE = "+12015550123"
GB_PHONE = "+447400123456"

SHIPPING_ADDRESS = {
    "full_name": "Jane Buyer",
    "address_line1": "12 Main Street",
    "address_line2": "Apt 4",
    "city": "Springfield",
    "state": "NJ",
    "postal_code": "07081",
    "country": "US",
    "phone_number": US_PHONE,
}


@pytest.fixture
def engine():
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False)


@pytest.fixture
def db_session(session_factory, seed_data):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def seed_data(session_factory):
    """Users and boxes shared by most tests"""
    session = session_factory()
    session.add_all([
        User(
            id=SELLER_ID,
            username="boxqueen",
            display_name="Box Queen",
            crypto_addresses={"BTC": SELLER_BTC_ADDRESS, "ETH": SELLER_ETH_ADDRESS},
        ),
        User(id=BUYER_ID, username="jane", display_name="Jane Buyer"),
        User(id=STRANGER_ID, username="lurker"),
    ])
    session.add_all([
        MysteryBox(
            id=BOX_ID,
            seller_id=SELLER_ID,
            title="Retro Gaming Mystery Box",
            category="gaming",
            price=Decimal("25.00"),
            quantity=5,
            status=MysteryBoxStatus.ACTIVE.value,
            free_shipping=False,
            shipping_cost=Decimal("4.99"),
        ),
        MysteryBox(
            id=SECOND_BOX_ID,
            seller_id=SELLER_ID,
            title="Paperback Surprise",
            category="books",
            price=Decimal("10.00"),
            quantity=3,
            status=MysteryBoxStatus.ACTIVE.value,
            free_shipping=True,
            shipping_cost=Decimal("0"),
        ),
        MysteryBox(
            id=INACTIVE_BOX_ID,
            seller_id=SELLER_ID,
            title="Discontinued Box",
            price=Decimal("15.00"),
            quantity=2,
            status=MysteryBoxStatus.REMOVED.value,
        ),
    ])
    session.commit()
    session.close()


@pytest.fixture
def relay(session_factory):
    return OutboxRelay(session_factory)


@pytest.fixture
def checkout(db_session, relay):
    return CheckoutService(db_session, relay=relay)


@pytest.fixture
def status_service(db_session, relay):
    return OrderStatusService(db_session, relay=relay)


@pytest.fixture
def shipping_address():
    return dict(SHIPPING_ADDRESS)


@pytest.fixture
def place_cod_order(checkout, shipping_address):
    """Factory placing a COD order for the retro box"""

    def _place(quantity=2, **kwargs):
        result = checkout.create_order(
            box_id=kwargs.pop("box_id", BOX_ID),
            buyer_id=kwargs.pop("buyer_id", BUYER_ID),
            quantity=quantity,
            shipping_address=kwargs.pop("shipping_address", shipping_address),
            payment_method="cod",
            payment_method_details=kwargs.pop("payment_method_details", {}),
            **kwargs,
        )
        return result.order_id

    return _place


@pytest.fixture
def strict_transitions(monkeypatch):
    monkeypatch.setattr(Config, "STRICT_STATUS_TRANSITIONS", True)
    monkeypatch.setattr(Config, "REQUIRE_TRACKING_FOR_SHIPPED", True)
