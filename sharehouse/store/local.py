"""SQLite-backed store used when no remote database is configured."""

from __future__ import annotations

import json
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator

from ..errors import NotFound, StockConflict, StoreError
from ..models import ChatMessage, InventoryItem, LendingLog, Tag, now_iso
from . import ITEM_FIELDS, LENDING_FIELDS, StorageBackend
from .schema import ensure_schema


class LocalStore(StorageBackend):
    """Manages the items, tags, lending_logs and chat_messages tables."""

    def __init__(
        self,
        db_path: str | Path = "~/.config/sharehouse/inventory.db",
        chat_limit: int = 300,
    ) -> None:
        self._db_path = db_path
        self._chat_limit = chat_limit
        self._conn: sqlite3.Connection | None = None
        # One connection serves every server thread; statements take turns
        self._lock = threading.RLock()

    def _get_conn(self) -> sqlite3.Connection:
        with self._lock:
            if self._conn is None:
                self._conn = ensure_schema(self._db_path)
            return self._conn

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            conn = self._get_conn()
            try:
                with conn:
                    yield conn
            except sqlite3.Error as e:
                raise StoreError(f"データベース操作に失敗しました: {e}") from e

    def _query(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        try:
            with self._lock:
                return self._get_conn().execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"データベース操作に失敗しました: {e}") from e

    # Items

    def list_items(self, tag_id: str | None = None) -> list[InventoryItem]:
        if tag_id is not None:
            rows = self._query(
                """SELECT items.* FROM items
                   JOIN item_tags ON item_tags.item_id = items.id
                   WHERE item_tags.tag_id = ?
                   ORDER BY items.created_at DESC, items.id DESC""",
                (tag_id,),
            )
        else:
            rows = self._query(
                "SELECT * FROM items ORDER BY created_at DESC, id DESC"
            )
        tags = self._tags_by_item([r["id"] for r in rows])
        return [_item_from_row(r, tags.get(r["id"], [])) for r in rows]

    def get_item(self, item_id: str) -> InventoryItem | None:
        rows = self._query("SELECT * FROM items WHERE id = ?", (item_id,))
        if not rows:
            return None
        row = rows[0]
        return _item_from_row(row, self._tags_by_item([row["id"]]).get(row["id"], []))

    def _tags_by_item(self, item_ids: list[int]) -> dict[int, list[Tag]]:
        if not item_ids:
            return {}
        placeholders = ", ".join("?" for _ in item_ids)
        rows = self._query(
            f"""SELECT item_tags.item_id, tags.id, tags.name FROM item_tags
                JOIN tags ON tags.id = item_tags.tag_id
                WHERE item_tags.item_id IN ({placeholders})
                ORDER BY tags.name""",
            tuple(item_ids),
        )
        result: dict[int, list[Tag]] = {}
        for r in rows:
            result.setdefault(r["item_id"], []).append(Tag(id=str(r["id"]), name=r["name"]))
        return result

    def add_item(
        self, item: InventoryItem, tag_ids: Iterable[str] = ()
    ) -> InventoryItem:
        now = now_iso()
        with self._transaction() as conn:
            cur = conn.execute(
                """INSERT INTO items
                   (name, stock, threshold, location, description, image_url,
                    item_type, alert_enabled, expiry_date, expiry_type, status,
                    created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    item.name,
                    item.stock,
                    item.threshold,
                    item.location,
                    item.description,
                    item.image_url,
                    item.item_type,
                    int(item.alert_enabled),
                    item.expiry_date,
                    item.expiry_type,
                    item.status,
                    now,
                    now,
                ),
            )
            new_id = cur.lastrowid
            conn.executemany(
                "INSERT OR IGNORE INTO item_tags (item_id, tag_id) VALUES (?, ?)",
                [(new_id, tag_id) for tag_id in tag_ids],
            )
        return self.get_item(str(new_id))

    def update_item(
        self,
        item_id: str,
        changes: dict[str, Any],
        tag_ids: Iterable[str] | None = None,
    ) -> InventoryItem:
        fields = {k: v for k, v in changes.items() if k in ITEM_FIELDS}
        if "alert_enabled" in fields:
            fields["alert_enabled"] = int(bool(fields["alert_enabled"]))
        fields["updated_at"] = now_iso()

        assignments = ", ".join(f"{k} = ?" for k in fields)
        with self._transaction() as conn:
            cur = conn.execute(
                f"UPDATE items SET {assignments} WHERE id = ?",
                (*fields.values(), item_id),
            )
            if cur.rowcount == 0:
                raise NotFound(f"アイテムが見つかりません: {item_id}")
            if tag_ids is not None:
                conn.execute("DELETE FROM item_tags WHERE item_id = ?", (item_id,))
                conn.executemany(
                    "INSERT OR IGNORE INTO item_tags (item_id, tag_id) VALUES (?, ?)",
                    [(item_id, tag_id) for tag_id in tag_ids],
                )
        return self.get_item(item_id)

    def update_stock(
        self, item_id: str, new_stock: int, expected: int
    ) -> InventoryItem:
        with self._transaction() as conn:
            cur = conn.execute(
                """UPDATE items SET stock = ?, updated_at = ?
                   WHERE id = ? AND stock = ?""",
                (new_stock, now_iso(), item_id, expected),
            )
        if cur.rowcount == 0:
            if self.get_item(item_id) is None:
                raise NotFound(f"アイテムが見つかりません: {item_id}")
            raise StockConflict(
                f"在庫数が他の操作で変更されました (item={item_id}, expected={expected})"
            )
        return self.get_item(item_id)

    def delete_item(self, item_id: str) -> bool:
        # lending_logs and item_tags cascade via foreign keys
        with self._transaction() as conn:
            cur = conn.execute("DELETE FROM items WHERE id = ?", (item_id,))
        return cur.rowcount > 0

    # Tags

    def list_tags(self) -> list[Tag]:
        rows = self._query("SELECT * FROM tags ORDER BY name")
        return [Tag(id=str(r["id"]), name=r["name"]) for r in rows]

    def add_tag(self, name: str) -> Tag:
        with self._transaction() as conn:
            cur = conn.execute("INSERT INTO tags (name) VALUES (?)", (name,))
        return Tag(id=str(cur.lastrowid), name=name)

    # Lending logs

    def add_lending_log(self, log: LendingLog) -> LendingLog:
        with self._transaction() as conn:
            cur = conn.execute(
                """INSERT INTO lending_logs
                   (item_id, status, user_name, quantity, start_date, due_date,
                    reserved_date, returned_date, memo, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    log.item_id,
                    log.status,
                    log.user_name,
                    log.quantity,
                    log.start_date,
                    log.due_date,
                    log.reserved_date,
                    log.returned_date,
                    log.memo,
                    log.created_at or now_iso(),
                ),
            )
        return self.get_lending_log(str(cur.lastrowid))

    def get_lending_log(self, log_id: str) -> LendingLog | None:
        rows = self._query("SELECT * FROM lending_logs WHERE id = ?", (log_id,))
        return _log_from_row(rows[0]) if rows else None

    def list_lending_logs(
        self, item_id: str, open_only: bool = True
    ) -> list[LendingLog]:
        sql = "SELECT * FROM lending_logs WHERE item_id = ?"
        if open_only:
            sql += " AND status IN ('reserved', 'lending')"
        sql += " ORDER BY created_at DESC, id DESC"
        return [_log_from_row(r) for r in self._query(sql, (item_id,))]

    def update_lending_log(
        self, log_id: str, changes: dict[str, Any]
    ) -> LendingLog:
        fields = {k: v for k, v in changes.items() if k in LENDING_FIELDS}
        if not fields:
            log = self.get_lending_log(log_id)
            if log is None:
                raise NotFound(f"貸出ログが見つかりません: {log_id}")
            return log
        assignments = ", ".join(f"{k} = ?" for k in fields)
        with self._transaction() as conn:
            cur = conn.execute(
                f"UPDATE lending_logs SET {assignments} WHERE id = ?",
                (*fields.values(), log_id),
            )
        if cur.rowcount == 0:
            raise NotFound(f"貸出ログが見つかりません: {log_id}")
        return self.get_lending_log(log_id)

    def delete_lending_log(self, log_id: str) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM lending_logs WHERE id = ?", (log_id,))

    # Chat

    def add_chat_message(self, message: ChatMessage) -> ChatMessage:
        with self._transaction() as conn:
            cur = conn.execute(
                """INSERT INTO chat_messages (type, user_name, channel, text, payload, at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    message.type,
                    message.user_name,
                    message.channel,
                    message.text,
                    json.dumps(message.payload, ensure_ascii=False)
                    if message.payload is not None
                    else None,
                    message.at or now_iso(),
                ),
            )
            # Keep only the newest messages
            conn.execute(
                """DELETE FROM chat_messages WHERE id NOT IN
                   (SELECT id FROM chat_messages ORDER BY id DESC LIMIT ?)""",
                (self._chat_limit,),
            )
        return self.get_chat_message(str(cur.lastrowid))

    def get_chat_message(self, message_id: str) -> ChatMessage | None:
        rows = self._query("SELECT * FROM chat_messages WHERE id = ?", (message_id,))
        return _message_from_row(rows[0]) if rows else None

    def list_chat_messages(
        self, channel: str | None = None, limit: int = 100
    ) -> list[ChatMessage]:
        if channel is None:
            rows = self._query(
                "SELECT * FROM chat_messages ORDER BY id DESC LIMIT ?", (limit,)
            )
        else:
            rows = self._query(
                """SELECT * FROM chat_messages WHERE channel = ?
                   ORDER BY id DESC LIMIT ?""",
                (channel, limit),
            )
        return [_message_from_row(r) for r in rows]

    def update_chat_message(self, message_id: str, text: str) -> ChatMessage:
        with self._transaction() as conn:
            cur = conn.execute(
                "UPDATE chat_messages SET text = ? WHERE id = ?", (text, message_id)
            )
        if cur.rowcount == 0:
            raise NotFound(f"メッセージが見つかりません: {message_id}")
        return self.get_chat_message(message_id)

    def delete_chat_message(self, message_id: str) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM chat_messages WHERE id = ?", (message_id,))


def _item_from_row(row: sqlite3.Row, tags: list[Tag]) -> InventoryItem:
    return InventoryItem(
        id=str(row["id"]),
        name=row["name"],
        stock=row["stock"],
        threshold=row["threshold"],
        location=row["location"],
        description=row["description"],
        image_url=row["image_url"],
        item_type=row["item_type"],
        alert_enabled=bool(row["alert_enabled"]),
        expiry_date=row["expiry_date"],
        expiry_type=row["expiry_type"],
        status=row["status"],
        tags=tags,
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _log_from_row(row: sqlite3.Row) -> LendingLog:
    return LendingLog(
        id=str(row["id"]),
        item_id=str(row["item_id"]),
        status=row["status"],
        user_name=row["user_name"],
        quantity=row["quantity"],
        start_date=row["start_date"],
        due_date=row["due_date"],
        reserved_date=row["reserved_date"],
        returned_date=row["returned_date"],
        memo=row["memo"],
        created_at=row["created_at"],
    )


def _message_from_row(row: sqlite3.Row) -> ChatMessage:
    payload = None
    if row["payload"]:
        try:
            payload = json.loads(row["payload"])
        except (json.JSONDecodeError, TypeError):
            pass
    return ChatMessage(
        id=str(row["id"]),
        type=row["type"],
        user_name=row["user_name"],
        channel=row["channel"],
        text=row["text"],
        payload=payload,
        at=row["at"],
    )
