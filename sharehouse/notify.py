"""Notification fan-out: in-app chat log plus optional per-channel webhook."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass

import httpx

from .config import CHANNELS
from .models import ChatMessage, InventoryItem, now_iso
from .store import StorageBackend

logger = logging.getLogger(__name__)

_TEMPLATES = {
    "stock_zero": "{item_name} の在庫がなくなりました。",
    "lend": "{user_name} さんに {item_name} を貸出しました。",
    "return": "{user_name} さんが {item_name} を返却しました。",
    "reserve": "{user_name} さんが {item_name} を予約しました。",
}


@dataclass
class Notification:
    type: str  # lend | return | reserve | stock_zero
    item_name: str
    user_name: str = "unknown"
    channel: str = "other"
    timestamp: str = ""


def channel_for(item: InventoryItem) -> str:
    """Pick the notification channel for an item.

    The first tag naming a known channel wins; consumables fall back to
    ``consumable`` and everything else to ``other``.
    """
    for tag in item.tags:
        name = tag.name.strip().lower()
        if name in CHANNELS:
            return name
    if item.item_type == "consumable":
        return "consumable"
    return "other"


def build_text(notification: Notification) -> str:
    try:
        template = _TEMPLATES[notification.type]
    except KeyError:
        raise ValueError(f"不明な通知種別: {notification.type!r}") from None
    return template.format(
        item_name=notification.item_name, user_name=notification.user_name
    )


@dataclass
class NotifyResult:
    message: ChatMessage
    webhook_sent: bool


class Notifier:
    """Posts event messages to the chat log and forwards them to webhooks.

    A failing chat write propagates (the caller rolls back); a failing
    webhook is logged and only reported through ``webhook_sent``.
    """

    def __init__(
        self,
        store: StorageBackend,
        webhooks: dict[str, str] | None = None,
        timeout: float = 5.0,
        client: httpx.Client | None = None,
    ) -> None:
        self._store = store
        self._webhooks = dict(webhooks or {})
        self._timeout = timeout
        self._client = client

    def notify(self, notification: Notification) -> NotifyResult:
        if not notification.timestamp:
            notification.timestamp = now_iso()
        text = build_text(notification)

        message = self._store.add_chat_message(
            ChatMessage(
                type="system",
                text=text,
                channel=notification.channel,
                payload=asdict(notification),
                at=notification.timestamp,
            )
        )
        sent = self._send_webhook(notification.channel, text)
        return NotifyResult(message=message, webhook_sent=sent)

    def _send_webhook(self, channel: str, text: str) -> bool:
        url = self._webhooks.get(channel)
        if not url:
            logger.debug("チャンネル %s の Webhook URL が未設定です", channel)
            return False

        client = self._client or httpx.Client(timeout=self._timeout)
        try:
            response = client.post(url, json={"content": text})
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Webhook 送信に失敗しました (channel=%s): %s", channel, e)
            return False
        finally:
            if self._client is None:
                client.close()

        logger.info("Webhook に通知を送信しました (channel=%s)", channel)
        return True
