"""Tests for chat operations."""

import pytest

from sharehouse.chat import ChatService
from sharehouse.errors import NotFound, ValidationError
from sharehouse.models import ChatMessage
from sharehouse.store.local import LocalStore


@pytest.fixture
def store(tmp_path):
    s = LocalStore(db_path=tmp_path / "test.db")
    yield s
    s.close()


@pytest.fixture
def chat(store):
    return ChatService(store)


def test_post_and_list(chat):
    chat.post("山田", "  洗剤買ってきます  ")
    chat.post("佐藤", "お風呂掃除しました", channel="bath")

    assert [m.text for m in chat.messages()] == ["お風呂掃除しました", "洗剤買ってきます"]
    assert [m.user_name for m in chat.messages(channel="bath")] == ["佐藤"]


def test_post_rejects_blank(chat):
    with pytest.raises(ValidationError):
        chat.post("山田", "   ")
    with pytest.raises(ValidationError):
        chat.post("", "hello")


def test_edit_own_message(chat):
    msg = chat.post("山田", "こんにちは")
    assert chat.edit(msg.id, "山田", "こんばんは").text == "こんばんは"


def test_cannot_edit_others_message(chat):
    msg = chat.post("山田", "こんにちは")
    with pytest.raises(ValidationError):
        chat.edit(msg.id, "佐藤", "書き換え")


def test_cannot_delete_system_message(chat, store):
    system = store.add_chat_message(ChatMessage(text="在庫切れ", type="system"))
    with pytest.raises(ValidationError):
        chat.delete(system.id, "")


def test_delete_own_message(chat):
    msg = chat.post("山田", "こんにちは")
    chat.delete(msg.id, "山田")
    assert chat.messages() == []
    with pytest.raises(NotFound):
        chat.delete(msg.id, "山田")
