"""Supabase (PostgREST) store accessed over HTTP."""

from __future__ import annotations

import logging
from typing import Any, Iterable

import httpx

from ..errors import NotFound, StockConflict, StoreError
from ..models import ChatMessage, InventoryItem, LendingLog, Tag, now_iso
from . import ITEM_FIELDS, LENDING_FIELDS, StorageBackend

logger = logging.getLogger(__name__)

_ITEM_SELECT = "*,item_tags(tag_id,tags(id,name))"
_RETURN_ROWS = "return=representation"


class RemoteStore(StorageBackend):
    """Talks to the Supabase REST endpoint (``<url>/rest/v1``).

    Tables: items, tags, item_tags, lending_logs, chat_messages. The item
    type lives in the ``category`` column of ``items``.
    """

    def __init__(
        self,
        url: str = "",
        api_key: str = "",
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        if client is None:
            client = httpx.Client(
                base_url=f"{url.rstrip('/')}/rest/v1",
                headers={
                    "apikey": api_key,
                    "Authorization": f"Bearer {api_key}",
                },
                timeout=timeout,
            )
        self._client = client

    def close(self) -> None:
        self._client.close()

    def _request(
        self,
        method: str,
        table: str,
        *,
        params: dict[str, str] | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> Any:
        headers = {"Prefer": prefer} if prefer else None
        try:
            response = self._client.request(
                method, f"/{table}", params=params, json=json, headers=headers
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("リモートストア %s /%s に失敗しました: %s", method, table, e)
            raise StoreError(f"リモートストアへのリクエストに失敗しました: {e}") from e
        if not response.content:
            return None
        return response.json()

    # Items

    def list_items(self, tag_id: str | None = None) -> list[InventoryItem]:
        params = {"select": _ITEM_SELECT, "order": "created_at.desc"}
        if tag_id is not None:
            relations = self._request(
                "GET",
                "item_tags",
                params={"select": "item_id", "tag_id": f"eq.{tag_id}"},
            ) or []
            item_ids = [str(r["item_id"]) for r in relations]
            if not item_ids:
                return []
            params["id"] = f"in.({','.join(item_ids)})"
        rows = self._request("GET", "items", params=params) or []
        return [_item_from_row(r) for r in rows]

    def get_item(self, item_id: str) -> InventoryItem | None:
        rows = self._request(
            "GET", "items", params={"select": _ITEM_SELECT, "id": f"eq.{item_id}"}
        ) or []
        return _item_from_row(rows[0]) if rows else None

    def add_item(
        self, item: InventoryItem, tag_ids: Iterable[str] = ()
    ) -> InventoryItem:
        row = _item_to_row({f: getattr(item, f) for f in ITEM_FIELDS})
        created = self._request("POST", "items", json=row, prefer=_RETURN_ROWS)
        new_id = str(created[0]["id"])
        self._link_tags(new_id, tag_ids)
        return self.get_item(new_id)

    def _link_tags(self, item_id: str, tag_ids: Iterable[str]) -> None:
        relations = [{"item_id": item_id, "tag_id": t} for t in tag_ids]
        if relations:
            self._request("POST", "item_tags", json=relations)

    def update_item(
        self,
        item_id: str,
        changes: dict[str, Any],
        tag_ids: Iterable[str] | None = None,
    ) -> InventoryItem:
        row = _item_to_row({k: v for k, v in changes.items() if k in ITEM_FIELDS})
        row["updated_at"] = now_iso()
        updated = self._request(
            "PATCH",
            "items",
            params={"id": f"eq.{item_id}"},
            json=row,
            prefer=_RETURN_ROWS,
        )
        if not updated:
            raise NotFound(f"アイテムが見つかりません: {item_id}")
        if tag_ids is not None:
            self._request("DELETE", "item_tags", params={"item_id": f"eq.{item_id}"})
            self._link_tags(item_id, tag_ids)
        return self.get_item(item_id)

    def update_stock(
        self, item_id: str, new_stock: int, expected: int
    ) -> InventoryItem:
        updated = self._request(
            "PATCH",
            "items",
            params={"id": f"eq.{item_id}", "stock": f"eq.{expected}"},
            json={"stock": new_stock, "updated_at": now_iso()},
            prefer=_RETURN_ROWS,
        )
        if not updated:
            if self.get_item(item_id) is None:
                raise NotFound(f"アイテムが見つかりません: {item_id}")
            raise StockConflict(
                f"在庫数が他の操作で変更されました (item={item_id}, expected={expected})"
            )
        return self.get_item(item_id)

    def delete_item(self, item_id: str) -> bool:
        self._request("DELETE", "lending_logs", params={"item_id": f"eq.{item_id}"})
        self._request("DELETE", "item_tags", params={"item_id": f"eq.{item_id}"})
        deleted = self._request(
            "DELETE", "items", params={"id": f"eq.{item_id}"}, prefer=_RETURN_ROWS
        )
        return bool(deleted)

    # Tags

    def list_tags(self) -> list[Tag]:
        rows = self._request(
            "GET", "tags", params={"select": "*", "order": "name.asc"}
        ) or []
        return [Tag(id=str(r["id"]), name=r.get("name") or "") for r in rows]

    def add_tag(self, name: str) -> Tag:
        rows = self._request("POST", "tags", json={"name": name}, prefer=_RETURN_ROWS)
        return Tag(id=str(rows[0]["id"]), name=rows[0].get("name") or name)

    # Lending logs

    def add_lending_log(self, log: LendingLog) -> LendingLog:
        row = {
            "item_id": log.item_id,
            "status": log.status,
            "user_name": log.user_name,
            "quantity": log.quantity,
            "start_date": log.start_date,
            "due_date": log.due_date,
            "reserved_date": log.reserved_date,
            "returned_date": log.returned_date,
            "memo": log.memo,
        }
        rows = self._request("POST", "lending_logs", json=row, prefer=_RETURN_ROWS)
        return _log_from_row(rows[0])

    def get_lending_log(self, log_id: str) -> LendingLog | None:
        rows = self._request(
            "GET", "lending_logs", params={"select": "*", "id": f"eq.{log_id}"}
        ) or []
        return _log_from_row(rows[0]) if rows else None

    def list_lending_logs(
        self, item_id: str, open_only: bool = True
    ) -> list[LendingLog]:
        params = {
            "select": "*",
            "item_id": f"eq.{item_id}",
            "order": "created_at.desc",
        }
        if open_only:
            params["status"] = "in.(reserved,lending)"
        rows = self._request("GET", "lending_logs", params=params) or []
        return [_log_from_row(r) for r in rows]

    def update_lending_log(
        self, log_id: str, changes: dict[str, Any]
    ) -> LendingLog:
        row = {k: v for k, v in changes.items() if k in LENDING_FIELDS}
        rows = self._request(
            "PATCH",
            "lending_logs",
            params={"id": f"eq.{log_id}"},
            json=row,
            prefer=_RETURN_ROWS,
        )
        if not rows:
            raise NotFound(f"貸出ログが見つかりません: {log_id}")
        return _log_from_row(rows[0])

    def delete_lending_log(self, log_id: str) -> None:
        self._request("DELETE", "lending_logs", params={"id": f"eq.{log_id}"})

    # Chat

    def add_chat_message(self, message: ChatMessage) -> ChatMessage:
        row = {
            "type": message.type,
            "user_name": message.user_name,
            "channel": message.channel,
            "text": message.text,
            "payload": message.payload,
            "at": message.at or now_iso(),
        }
        rows = self._request("POST", "chat_messages", json=row, prefer=_RETURN_ROWS)
        return _message_from_row(rows[0])

    def get_chat_message(self, message_id: str) -> ChatMessage | None:
        rows = self._request(
            "GET", "chat_messages", params={"select": "*", "id": f"eq.{message_id}"}
        ) or []
        return _message_from_row(rows[0]) if rows else None

    def list_chat_messages(
        self, channel: str | None = None, limit: int = 100
    ) -> list[ChatMessage]:
        params = {"select": "*", "order": "at.desc", "limit": str(limit)}
        if channel is not None:
            params["channel"] = f"eq.{channel}"
        rows = self._request("GET", "chat_messages", params=params) or []
        return [_message_from_row(r) for r in rows]

    def update_chat_message(self, message_id: str, text: str) -> ChatMessage:
        rows = self._request(
            "PATCH",
            "chat_messages",
            params={"id": f"eq.{message_id}"},
            json={"text": text},
            prefer=_RETURN_ROWS,
        )
        if not rows:
            raise NotFound(f"メッセージが見つかりません: {message_id}")
        return _message_from_row(rows[0])

    def delete_chat_message(self, message_id: str) -> None:
        self._request("DELETE", "chat_messages", params={"id": f"eq.{message_id}"})


def _item_to_row(fields: dict[str, Any]) -> dict[str, Any]:
    row = dict(fields)
    if "item_type" in row:
        row["category"] = row.pop("item_type")
    return row


def _item_from_row(row: dict[str, Any]) -> InventoryItem:
    tags = [
        Tag(id=str(rel["tags"]["id"]), name=rel["tags"].get("name") or "")
        for rel in row.get("item_tags") or []
        if rel.get("tags")
    ]
    return InventoryItem(
        id=str(row["id"]),
        name=row.get("name") or "",
        stock=row.get("stock") or 0,
        threshold=row.get("threshold") or 0,
        location=row.get("location") or "",
        description=row.get("description") or "",
        image_url=row.get("image_url") or "",
        item_type=row.get("category") or "consumable",
        alert_enabled=bool(row.get("alert_enabled")),
        expiry_date=row.get("expiry_date"),
        expiry_type=row.get("expiry_type"),
        status=row.get("status") or "available",
        tags=tags,
        created_at=row.get("created_at") or "",
        updated_at=row.get("updated_at") or "",
    )


def _log_from_row(row: dict[str, Any]) -> LendingLog:
    return LendingLog(
        id=str(row["id"]),
        item_id=str(row["item_id"]),
        status=row.get("status") or "lending",
        user_name=row.get("user_name") or "",
        quantity=row.get("quantity") or 1,
        start_date=row.get("start_date"),
        due_date=row.get("due_date"),
        reserved_date=row.get("reserved_date"),
        returned_date=row.get("returned_date"),
        memo=row.get("memo") or "",
        created_at=row.get("created_at") or "",
    )


def _message_from_row(row: dict[str, Any]) -> ChatMessage:
    return ChatMessage(
        id=str(row["id"]),
        type=row.get("type") or "user",
        user_name=row.get("user_name") or "",
        channel=row.get("channel") or "all",
        text=row.get("text") or "",
        payload=row.get("payload"),
        at=row.get("at") or "",
    )
