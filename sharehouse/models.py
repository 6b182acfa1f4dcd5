"""Data models for inventory items, tags, lending logs and chat messages."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

ITEM_TYPES = ("consumable", "food", "shared")
ITEM_STATUSES = ("available", "reserved", "lending")


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Tag:
    id: str
    name: str


@dataclass
class InventoryItem:
    """A stocked thing in the shared space."""

    name: str
    stock: int = 0
    threshold: int = 0
    location: str = ""
    item_type: str = "consumable"  # consumable | food | shared
    description: str = ""
    image_url: str = ""
    alert_enabled: bool = False
    expiry_date: str | None = None  # food only
    expiry_type: str | None = None  # food only
    status: str = "available"  # shared only
    tags: list[Tag] = field(default_factory=list)
    id: str = ""
    created_at: str = ""
    updated_at: str = ""

    @property
    def is_low_stock(self) -> bool:
        return self.stock <= self.threshold

    @property
    def is_shared(self) -> bool:
        return self.item_type == "shared"


@dataclass
class LendingLog:
    """A borrow or reservation record against one item."""

    item_id: str
    status: str = "lending"  # lending | reserved | returned | canceled
    user_name: str = ""
    quantity: int = 1
    start_date: str | None = None
    due_date: str | None = None
    reserved_date: str | None = None
    returned_date: str | None = None
    memo: str = ""
    id: str = ""
    created_at: str = ""


@dataclass
class ChatMessage:
    text: str
    type: str = "user"  # user | system
    user_name: str = ""
    channel: str = "all"
    payload: dict[str, Any] | None = None
    id: str = ""
    at: str = ""
