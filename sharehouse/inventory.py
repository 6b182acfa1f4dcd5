"""Item and tag operations, and the stock mutation unit shared with lending."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date, timedelta
from typing import Any, Callable, Iterable, Iterator
from urllib.parse import parse_qs, unquote, urlparse

from .errors import (
    InsufficientStock,
    NotFound,
    PartialFailureRollback,
    StoreError,
    ValidationError,
)
from .models import ITEM_STATUSES, ITEM_TYPES, InventoryItem, Tag
from .notify import Notification, Notifier, NotifyResult, channel_for
from .store import ITEM_FIELDS, StorageBackend

logger = logging.getLogger(__name__)

UndoList = list[Callable[[], object]]


def _is_count(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def validate_item_fields(fields: dict[str, Any]) -> None:
    """Check item attributes; only the keys present are validated."""
    if "name" in fields and not str(fields["name"] or "").strip():
        raise ValidationError("アイテム名を入力してください")
    for key in ("stock", "threshold"):
        if key in fields and not _is_count(fields[key]):
            raise ValidationError(f"{key} は0以上の整数で指定してください")
    if "item_type" in fields and fields["item_type"] not in ITEM_TYPES:
        raise ValidationError(
            f"不明な種類です: {fields['item_type']!r} (consumable / food / shared)"
        )
    if "status" in fields and fields["status"] not in ITEM_STATUSES:
        raise ValidationError(f"不明なステータスです: {fields['status']!r}")


def parse_item_ref(raw: str | None) -> str | None:
    """Resolve a scanned QR value to an item id.

    Accepts ``https://…/item/<id>``, ``https://…?id=<id>``, ``item:<id>``
    or the bare id.
    """
    value = (raw or "").strip()
    if not value:
        return None

    parsed = urlparse(value)
    if parsed.scheme in ("http", "https") and parsed.netloc:
        marker = "/item/"
        if marker in parsed.path:
            item_id = parsed.path.split(marker, 1)[1].strip("/")
            if item_id:
                return unquote(item_id)
        ids = parse_qs(parsed.query).get("id")
        if ids and ids[0]:
            return ids[0]

    if value.startswith("item:"):
        return value[len("item:"):].strip() or None
    return value


class InventoryService:
    """Item CRUD with validation, plus every stock change.

    All stock writes go through ``stock_change`` so the stock-zero event and
    the rollback on partial failure apply to every caller.
    """

    def __init__(self, store: StorageBackend, notifier: Notifier) -> None:
        self._store = store
        self._notifier = notifier

    # Items

    def list_items(self, tag_id: str | None = None) -> list[InventoryItem]:
        return self._store.list_items(tag_id=tag_id)

    def get_item(self, item_id: str) -> InventoryItem:
        item = self._store.get_item(item_id)
        if item is None:
            raise NotFound(f"アイテムが見つかりません: {item_id}")
        return item

    def create_item(
        self, item: InventoryItem, tag_ids: Iterable[str] = ()
    ) -> InventoryItem:
        fields = {f: getattr(item, f) for f in ITEM_FIELDS}
        validate_item_fields(fields)
        self._check_food_only(item.item_type, item.expiry_date, item.expiry_type)
        item.name = item.name.strip()
        created = self._store.add_item(item, tag_ids=list(tag_ids))
        logger.info("アイテムを登録しました: %s (id=%s)", created.name, created.id)
        return created

    def update_item(
        self,
        item_id: str,
        changes: dict[str, Any],
        tag_ids: Iterable[str] | None = None,
        user_name: str = "unknown",
    ) -> InventoryItem:
        """Update attributes and, with a ``stock`` key, the count in one unit.

        Everything is validated before the first write; a failure after it
        restores the previous attributes, tags and count.
        """
        changes = {k: v for k, v in changes.items() if k in ITEM_FIELDS}
        validate_item_fields(changes)
        stock = changes.pop("stock", None)
        current = self.get_item(item_id)
        self._check_food_only(
            changes.get("item_type", current.item_type),
            changes.get("expiry_date", current.expiry_date),
            changes.get("expiry_type", current.expiry_type),
        )
        if "name" in changes:
            changes["name"] = changes["name"].strip()

        new_tags = list(tag_ids) if tag_ids is not None else None
        old_fields = {k: getattr(current, k) for k in changes}
        old_tags = [t.id for t in current.tags] if new_tags is not None else None
        new_stock = current.stock if stock is None else stock

        with self.stock_change(current, new_stock, user_name) as (_, undo):
            updated = self._store.update_item(item_id, changes, tag_ids=new_tags)
            undo.append(
                lambda: self._store.update_item(item_id, old_fields, tag_ids=old_tags)
            )
        return updated

    def delete_item(self, item_id: str) -> None:
        if not self._store.delete_item(item_id):
            raise NotFound(f"アイテムが見つかりません: {item_id}")
        logger.info("アイテムを削除しました (id=%s)", item_id)

    @staticmethod
    def _check_food_only(
        item_type: str, expiry_date: str | None, expiry_type: str | None
    ) -> None:
        if item_type != "food" and (expiry_date or expiry_type):
            raise ValidationError("賞味期限は食品にのみ設定できます")

    def low_stock_items(self) -> list[InventoryItem]:
        """Alert-enabled items at or below their threshold."""
        return [i for i in self.list_items() if i.alert_enabled and i.is_low_stock]

    def expiring_items(
        self, days: int = 3, today: date | None = None
    ) -> list[InventoryItem]:
        """Food items whose expiry date falls within ``days`` (or has passed)."""
        today = today or date.today()
        limit = today + timedelta(days=days)
        result: list[InventoryItem] = []
        for item in self.list_items():
            if item.item_type != "food" or not item.expiry_date:
                continue
            try:
                expiry = date.fromisoformat(item.expiry_date[:10])
            except ValueError:
                logger.warning("賞味期限の形式が不正です: %s (id=%s)", item.expiry_date, item.id)
                continue
            if expiry <= limit:
                result.append(item)
        return sorted(result, key=lambda i: i.expiry_date or "")

    # Tags

    def list_tags(self) -> list[Tag]:
        return self._store.list_tags()

    def add_tag(self, name: str) -> Tag:
        name = (name or "").strip()
        if not name:
            raise ValidationError("タグ名を入力してください")
        if any(t.name == name for t in self._store.list_tags()):
            raise ValidationError(f"既に存在するタグです: {name}")
        return self._store.add_tag(name)

    # Stock

    def adjust_stock(
        self, item_id: str, delta: int, user_name: str = "unknown"
    ) -> InventoryItem:
        """Manual +/- on the stock count."""
        if not isinstance(delta, int) or isinstance(delta, bool):
            raise ValidationError("増減数は整数で指定してください")
        item = self.get_item(item_id)
        return self._write_stock(item, item.stock + delta, user_name)

    def set_stock(
        self, item_id: str, count: int, user_name: str = "unknown"
    ) -> InventoryItem:
        if not _is_count(count):
            raise ValidationError("stock は0以上の整数で指定してください")
        item = self.get_item(item_id)
        return self._write_stock(item, count, user_name)

    def _write_stock(
        self, item: InventoryItem, new_stock: int, user_name: str
    ) -> InventoryItem:
        with self.stock_change(item, new_stock, user_name) as (updated, _undo):
            result = updated
        return result

    @contextmanager
    def stock_change(
        self, item: InventoryItem, new_stock: int, user_name: str = "unknown"
    ) -> Iterator[tuple[InventoryItem, UndoList]]:
        """Write the stock count and run the caller's steps as one unit.

        Yields the updated item and a list the caller appends undo actions to.
        On leaving the block the stock-zero event is announced if the count
        went from positive to zero. If anything fails after the write, the
        undo actions run in reverse and the previous count is restored; store
        failures surface as ``PartialFailureRollback``.

        Raises:
            InsufficientStock: If ``new_stock`` is negative (nothing is written).
            StockConflict: If the count changed since ``item`` was read.
        """
        if new_stock < 0:
            raise InsufficientStock(
                f"在庫が不足しています: {item.name} (在庫 {item.stock})"
            )

        previous = item.stock
        if new_stock != previous:
            updated = self._store.update_stock(item.id, new_stock, expected=previous)
        else:
            updated = item
        undo: UndoList = []

        try:
            yield updated, undo
            if previous > 0 and updated.stock == 0:
                self.announce("stock_zero", updated, user_name)
        except Exception as e:
            self._rollback(item, updated.stock, undo)
            if isinstance(e, StoreError):
                raise PartialFailureRollback(
                    f"処理の途中で失敗したため変更を元に戻しました: {e}"
                ) from e
            raise

    def _rollback(self, item: InventoryItem, current: int, undo: UndoList) -> None:
        for action in reversed(undo):
            try:
                action()
            except Exception:
                logger.exception("補償処理に失敗しました (item=%s)", item.id)

        if current != item.stock:
            try:
                self._store.update_stock(item.id, item.stock, expected=current)
            except Exception:
                logger.exception(
                    "在庫の巻き戻しに失敗しました (item=%s, %d → %d)",
                    item.id, current, item.stock,
                )
            else:
                logger.warning(
                    "在庫を巻き戻しました (item=%s, %d → %d)", item.id, current, item.stock
                )

        if item.is_shared and undo:
            try:
                self.refresh_status(self.get_item(item.id))
            except Exception:
                logger.exception("貸出ステータスの再計算に失敗しました (item=%s)", item.id)

    def refresh_status(self, item: InventoryItem) -> InventoryItem:
        """Recompute a shared item's status from its open lending logs."""
        if not item.is_shared:
            return item
        open_logs = self._store.list_lending_logs(item.id, open_only=True)
        if any(log.status == "lending" for log in open_logs):
            status = "lending"
        elif any(log.status == "reserved" for log in open_logs):
            status = "reserved"
        else:
            status = "available"
        if status == item.status:
            return item
        return self._store.update_item(item.id, {"status": status})

    def announce(
        self,
        event_type: str,
        item: InventoryItem,
        user_name: str = "unknown",
        undo: UndoList | None = None,
    ) -> NotifyResult:
        """Post an event; with ``undo``, a rollback removes the chat message.

        A webhook that already went out cannot be recalled.
        """
        result = self._notifier.notify(
            Notification(
                type=event_type,
                item_name=item.name,
                user_name=user_name or "unknown",
                channel=channel_for(item),
            )
        )
        if undo is not None:
            message_id = result.message.id
            undo.append(lambda: self._store.delete_chat_message(message_id))
        return result
