"""
Catalog lookups used by checkout and fulfillment.
Boxes are owned by the listing flow; the order core only reads them and
releases stock when an order ships.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from models import MysteryBox, MysteryBoxStatus, User
from utils.helpers import utc_now

logger = logging.getLogger(__name__)


class CatalogService:
    """Read access to boxes and sellers"""

    def __init__(self, session: Session):
        self.session = session

    def get_box(self, box_id: str) -> Optional[MysteryBox]:
        return self.session.get(MysteryBox, box_id)

    def get_user(self, user_id: str) -> Optional[User]:
        return self.session.get(User, user_id)

    def release_stock(self, box_id: str, quantity: int) -> Optional[MysteryBox]:
        """
        Reduce the box's stock once an order ships.

        Stock never goes below zero; a box that runs out is marked sold.
        Caller owns the transaction.
        """
        box = self.get_box(box_id)
        if box is None:
            logger.warning(f"⚠️ STOCK_RELEASE_SKIPPED: box {box_id} no longer exists")
            return None

        previous = box.quantity or 0
        box.quantity = max(previous - quantity, 0)
        box.updated_at = utc_now()
        if box.quantity == 0 and box.status == MysteryBoxStatus.ACTIVE.value:
            box.status = MysteryBoxStatus.SOLD.value

        logger.info(f"📦 STOCK_RELEASED: box {box_id} {previous} -> {box.quantity} (status={box.status})")
        return box
