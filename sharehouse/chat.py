"""Chat log operations."""

from __future__ import annotations

from .errors import NotFound, ValidationError
from .models import ChatMessage, now_iso
from .store import StorageBackend


class ChatService:
    def __init__(self, store: StorageBackend) -> None:
        self._store = store

    def post(self, user_name: str, text: str, channel: str = "all") -> ChatMessage:
        text = (text or "").strip()
        if not text:
            raise ValidationError("メッセージを入力してください")
        if not (user_name or "").strip():
            raise ValidationError("ユーザー名が必要です")
        return self._store.add_chat_message(
            ChatMessage(
                text=text,
                type="user",
                user_name=user_name.strip(),
                channel=channel or "all",
                at=now_iso(),
            )
        )

    def messages(self, channel: str | None = None, limit: int = 100) -> list[ChatMessage]:
        return self._store.list_chat_messages(channel=channel, limit=limit)

    def edit(self, message_id: str, user_name: str, text: str) -> ChatMessage:
        """Edit one of the caller's own messages."""
        text = (text or "").strip()
        if not text:
            raise ValidationError("メッセージを入力してください")
        self._own_message(message_id, user_name)
        return self._store.update_chat_message(message_id, text)

    def delete(self, message_id: str, user_name: str) -> None:
        """Delete one of the caller's own messages."""
        self._own_message(message_id, user_name)
        self._store.delete_chat_message(message_id)

    def _own_message(self, message_id: str, user_name: str) -> ChatMessage:
        message = self._store.get_chat_message(message_id)
        if message is None:
            raise NotFound(f"メッセージが見つかりません: {message_id}")
        if message.type != "user" or message.user_name != user_name:
            raise ValidationError("自分のメッセージのみ編集・削除できます")
        return message
