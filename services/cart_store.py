"""
Client-local cart and wishlist stores.

Each user's cart and wishlist lives in its own JSON file under
``Config.CART_STORAGE_DIR``. Stores are explicit load/save: every mutating
call loads the file, applies the change and writes it back. Box data is kept
as a snapshot taken when the item was added.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import orjson

from config import Config
from models import MysteryBox
from utils.helpers import quantize_money, to_decimal, utc_now

logger = logging.getLogger(__name__)

_SAFE_USER_ID = re.compile(r"[^A-Za-z0-9_.-]")


def box_snapshot(box: MysteryBox) -> Dict[str, Any]:
    """Fields the cart page renders without another catalog lookup"""
    return {
        "id": box.id,
        "title": box.title,
        "price": str(quantize_money(box.price)),
        "seller_id": box.seller_id,
        "free_shipping": bool(box.free_shipping),
        "shipping_cost": str(quantize_money(box.shipping_cost or 0)),
    }


class _JsonFileStore:
    """Per-user JSON list persisted as ``{prefix}_{user_id}.json``"""

    prefix = "store"

    def __init__(self, storage_dir: str):
        self.storage_dir = Path(storage_dir)

    def _path(self, user_id: str) -> Path:
        safe_id = _SAFE_USER_ID.sub("_", str(user_id))
        return self.storage_dir / f"{self.prefix}_{safe_id}.json"

    def load(self, user_id: str) -> List[Dict[str, Any]]:
        path = self._path(user_id)
        if not path.exists():
            return []
        try:
            data = orjson.loads(path.read_bytes())
        except (orjson.JSONDecodeError, OSError) as e:
            logger.warning(f"⚠️ {self.prefix.upper()}_CORRUPT: {path} could not be read ({e}), starting empty")
            return []
        if not isinstance(data, list):
            logger.warning(f"⚠️ {self.prefix.upper()}_CORRUPT: {path} is not a list, starting empty")
            return []
        return data

    def save(self, user_id: str, items: List[Dict[str, Any]]) -> None:
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        path = self._path(user_id)
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_bytes(orjson.dumps(items, option=orjson.OPT_INDENT_2))
        os.replace(tmp_path, path)

    def clear(self, user_id: str) -> None:
        self.save(user_id, [])


class CartStore(_JsonFileStore):
    """Shopping cart: ``{box, quantity, added_at}`` items"""

    prefix = "cart"

    def add_item(self, user_id: str, box: MysteryBox, quantity: int = 1) -> List[Dict[str, Any]]:
        items = self.load(user_id)
        for item in items:
            if item["box"]["id"] == box.id:
                item["quantity"] += quantity
                break
        else:
            items.append({
                "box": box_snapshot(box),
                "quantity": quantity,
                "added_at": utc_now().isoformat(),
            })
        self.save(user_id, items)
        logger.info(f"🛒 CART_ADD: user={user_id} box={box.id} qty={quantity}")
        return items

    def remove_item(self, user_id: str, box_id: str) -> List[Dict[str, Any]]:
        items = [item for item in self.load(user_id) if item["box"]["id"] != box_id]
        self.save(user_id, items)
        return items

    def update_quantity(self, user_id: str, box_id: str, quantity: int) -> List[Dict[str, Any]]:
        """Set the quantity; zero or less removes the item"""
        if quantity <= 0:
            return self.remove_item(user_id, box_id)

        items = self.load(user_id)
        for item in items:
            if item["box"]["id"] == box_id:
                item["quantity"] = quantity
        self.save(user_id, items)
        return items

    def is_in_cart(self, user_id: str, box_id: str) -> bool:
        return any(item["box"]["id"] == box_id for item in self.load(user_id))

    def totals(self, user_id: str) -> Tuple[int, str]:
        """(total item count, total price as a 2dp string)"""
        items = self.load(user_id)
        total_items = sum(item["quantity"] for item in items)
        total_price = sum(
            (to_decimal(item["box"]["price"]) * item["quantity"] for item in items),
            to_decimal(0),
        )
        return total_items, str(quantize_money(total_price))

    def as_checkout_lines(self, user_id: str) -> List[Dict[str, Any]]:
        return [{"box_id": item["box"]["id"], "quantity": item["quantity"]} for item in self.load(user_id)]


class WishlistStore(_JsonFileStore):
    """Wishlist: ``{box, added_at}`` items, one per box"""

    prefix = "wishlist"

    def contains(self, user_id: str, box_id: str) -> bool:
        return any(item["box"]["id"] == box_id for item in self.load(user_id))

    def add(self, user_id: str, box: MysteryBox) -> List[Dict[str, Any]]:
        items = self.load(user_id)
        if not any(item["box"]["id"] == box.id for item in items):
            items.append({"box": box_snapshot(box), "added_at": utc_now().isoformat()})
            self.save(user_id, items)
        return items

    def remove(self, user_id: str, box_id: str) -> List[Dict[str, Any]]:
        items = [item for item in self.load(user_id) if item["box"]["id"] != box_id]
        self.save(user_id, items)
        return items

    def toggle(self, user_id: str, box: MysteryBox) -> bool:
        """Add or remove the box; returns True if it is now wishlisted"""
        if self.contains(user_id, box.id):
            self.remove(user_id, box.id)
            return False
        self.add(user_id, box)
        return True


def get_stores(storage_dir: Optional[str] = None) -> Tuple[CartStore, WishlistStore]:
    directory = storage_dir or Config.CART_STORAGE_DIR
    return CartStore(directory), WishlistStore(directory)
