"""Lending and reservation state machine.

Transitions::

    (none) --borrow--> lending --return--> returned
    (none) --reserve--> reserved --convert--> lending
                        reserved --cancel--> (row deleted)

Every transition runs inside ``InventoryService.stock_change`` so the stock
write, the log write and the notifications either all happen or are undone.
"""

from __future__ import annotations

import logging
from dataclasses import replace

from .errors import InsufficientStock, InvalidTransition, NotFound, ValidationError
from .inventory import InventoryService
from .models import InventoryItem, LendingLog, now_iso
from .store import StorageBackend

logger = logging.getLogger(__name__)


def _require_user(user_name: str) -> str:
    user_name = (user_name or "").strip()
    if not user_name:
        raise ValidationError("利用者名を入力してください")
    return user_name


def _require_quantity(quantity: int) -> int:
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
        raise ValidationError("数量は1以上の整数で指定してください")
    return quantity


def _check_available(item: InventoryItem, quantity: int) -> None:
    if quantity > item.stock:
        raise InsufficientStock(
            f"在庫が不足しています: {item.name} (在庫 {item.stock}, 要求 {quantity})"
        )


class LendingService:
    def __init__(self, store: StorageBackend, inventory: InventoryService) -> None:
        self._store = store
        self._inventory = inventory

    def history(self, item_id: str, open_only: bool = False) -> list[LendingLog]:
        """Lending logs of an item, newest first."""
        self._inventory.get_item(item_id)
        return self._store.list_lending_logs(item_id, open_only=open_only)

    def get_log(self, log_id: str) -> LendingLog:
        log = self._store.get_lending_log(log_id)
        if log is None:
            raise NotFound(f"貸出ログが見つかりません: {log_id}")
        return log

    def borrow(
        self,
        item_id: str,
        user_name: str,
        quantity: int = 1,
        memo: str = "",
        due_date: str | None = None,
    ) -> LendingLog:
        """Lend ``quantity`` units now: stock decreases and a lending row is added."""
        user_name = _require_user(user_name)
        quantity = _require_quantity(quantity)
        item = self._inventory.get_item(item_id)
        _check_available(item, quantity)

        with self._inventory.stock_change(
            item, item.stock - quantity, user_name
        ) as (updated, undo):
            log = self._store.add_lending_log(
                LendingLog(
                    item_id=item.id,
                    status="lending",
                    user_name=user_name,
                    quantity=quantity,
                    start_date=now_iso(),
                    due_date=due_date,
                    memo=memo,
                )
            )
            undo.append(lambda: self._store.delete_lending_log(log.id))
            updated = self._inventory.refresh_status(updated)
            self._inventory.announce("lend", updated, user_name, undo)

        logger.info(
            "貸出: %s x%d → %s (log=%s)", item.name, quantity, user_name, log.id
        )
        return log

    def reserve(
        self,
        item_id: str,
        user_name: str,
        quantity: int = 1,
        reserved_date: str | None = None,
        memo: str = "",
    ) -> LendingLog:
        """Record a reservation. Stock is not touched until conversion."""
        user_name = _require_user(user_name)
        quantity = _require_quantity(quantity)
        if not (reserved_date or "").strip():
            raise ValidationError("予約日を指定してください")
        item = self._inventory.get_item(item_id)

        with self._inventory.stock_change(item, item.stock, user_name) as (updated, undo):
            log = self._store.add_lending_log(
                LendingLog(
                    item_id=item.id,
                    status="reserved",
                    user_name=user_name,
                    quantity=quantity,
                    reserved_date=reserved_date.strip(),
                    memo=memo,
                )
            )
            undo.append(lambda: self._store.delete_lending_log(log.id))
            updated = self._inventory.refresh_status(updated)
            self._inventory.announce("reserve", updated, user_name, undo)

        logger.info(
            "予約: %s x%d (%s, %s, log=%s)",
            item.name, quantity, user_name, log.reserved_date, log.id,
        )
        return log

    def convert_reservation(
        self, log_id: str, quantity: int | None = None
    ) -> LendingLog:
        """Turn a reservation into a lending.

        The reservation row is replaced by a new lending row; afterwards the
        item has exactly one more lending row and one fewer reserved row.
        """
        reservation = self.get_log(log_id)
        if reservation.status != "reserved":
            raise InvalidTransition(
                f"予約中ではないため貸出に切り替えできません (status={reservation.status})"
            )
        quantity = _require_quantity(
            reservation.quantity if quantity is None else quantity
        )
        item = self._inventory.get_item(reservation.item_id)
        _check_available(item, quantity)
        user_name = reservation.user_name

        with self._inventory.stock_change(
            item, item.stock - quantity, user_name
        ) as (updated, undo):
            log = self._store.add_lending_log(
                LendingLog(
                    item_id=item.id,
                    status="lending",
                    user_name=user_name,
                    quantity=quantity,
                    start_date=now_iso(),
                    due_date=reservation.due_date,
                    memo=reservation.memo,
                )
            )
            undo.append(lambda: self._store.delete_lending_log(log.id))

            self._store.delete_lending_log(reservation.id)
            undo.append(
                lambda: self._store.add_lending_log(replace(reservation, id=""))
            )

            updated = self._inventory.refresh_status(updated)
            self._inventory.announce("lend", updated, user_name, undo)

        logger.info(
            "予約を貸出に切り替えました: %s x%d → %s (log=%s)",
            item.name, quantity, user_name, log.id,
        )
        return log

    def cancel_reservation(self, log_id: str) -> None:
        """Delete a reservation row. Stock is unchanged and nobody is notified."""
        reservation = self.get_log(log_id)
        if reservation.status != "reserved":
            raise InvalidTransition(
                f"予約中ではないためキャンセルできません (status={reservation.status})"
            )
        item = self._inventory.get_item(reservation.item_id)

        with self._inventory.stock_change(
            item, item.stock, reservation.user_name
        ) as (updated, undo):
            self._store.delete_lending_log(reservation.id)
            undo.append(
                lambda: self._store.add_lending_log(replace(reservation, id=""))
            )
            self._inventory.refresh_status(updated)

        logger.info("予約をキャンセルしました: %s (log=%s)", item.name, log_id)

    def return_item(self, log_id: str, user_name: str | None = None) -> LendingLog:
        """Close a lending: the full lent quantity goes back into stock."""
        log = self.get_log(log_id)
        if log.status != "lending":
            raise InvalidTransition(
                f"貸出中ではないため返却できません (status={log.status})"
            )
        user_name = (user_name or "").strip() or log.user_name
        item = self._inventory.get_item(log.item_id)

        with self._inventory.stock_change(
            item, item.stock + log.quantity, user_name
        ) as (updated, undo):
            returned = self._store.update_lending_log(
                log.id, {"status": "returned", "returned_date": now_iso()}
            )
            undo.append(
                lambda: self._store.update_lending_log(
                    log.id, {"status": "lending", "returned_date": None}
                )
            )
            updated = self._inventory.refresh_status(updated)
            self._inventory.announce("return", updated, user_name, undo)

        logger.info(
            "返却: %s x%d ← %s (log=%s)", item.name, log.quantity, user_name, log.id
        )
        return returned
