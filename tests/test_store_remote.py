"""Tests for RemoteStore against a mocked PostgREST endpoint."""

import json

import httpx
import pytest

from sharehouse.config import load_config
from sharehouse.errors import ConfigError, NotFound, StockConflict, StoreError
from sharehouse.models import InventoryItem, LendingLog
from sharehouse.store import create_store
from sharehouse.store.local import LocalStore
from sharehouse.store.remote import RemoteStore

ITEM_ROW = {
    "id": 7,
    "name": "ゴミ袋",
    "stock": 2,
    "threshold": 1,
    "location": "キッチン",
    "description": "",
    "image_url": "",
    "category": "consumable",
    "alert_enabled": True,
    "expiry_date": None,
    "expiry_type": None,
    "status": "available",
    "created_at": "2026-10-01T00:00:00+00:00",
    "updated_at": "2026-10-01T00:00:00+00:00",
    "item_tags": [{"tag_id": 3, "tags": {"id": 3, "name": "kitchen"}}],
}


def _store(handler, requests=None):
    def recording(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        return handler(request)

    client = httpx.Client(
        base_url="https://example.supabase.co/rest/v1",
        transport=httpx.MockTransport(recording),
    )
    return RemoteStore(client=client)


def test_default_client_sends_api_key_headers():
    store = RemoteStore(url="https://example.supabase.co/", api_key="anon")
    client = store._client
    assert str(client.base_url) == "https://example.supabase.co/rest/v1/"
    assert client.headers["apikey"] == "anon"
    assert client.headers["Authorization"] == "Bearer anon"
    store.close()


def test_get_item_maps_category_and_tags():
    requests = []
    store = _store(lambda r: httpx.Response(200, json=[ITEM_ROW]), requests)

    item = store.get_item("7")

    assert item.id == "7"
    assert item.item_type == "consumable"
    assert item.alert_enabled is True
    assert [t.name for t in item.tags] == ["kitchen"]
    assert requests[0].url.path == "/rest/v1/items"
    assert requests[0].url.params["id"] == "eq.7"


def test_get_item_missing():
    store = _store(lambda r: httpx.Response(200, json=[]))
    assert store.get_item("404") is None


def test_list_items_by_tag_filters_ids():
    requests = []

    def handler(request):
        if request.url.path.endswith("/item_tags"):
            return httpx.Response(200, json=[{"item_id": 7}, {"item_id": 9}])
        return httpx.Response(200, json=[ITEM_ROW])

    store = _store(handler, requests)
    items = store.list_items(tag_id="3")

    assert [i.name for i in items] == ["ゴミ袋"]
    assert requests[0].url.params["tag_id"] == "eq.3"
    assert requests[1].url.params["id"] == "in.(7,9)"


def test_list_items_by_unused_tag_skips_item_query():
    requests = []
    store = _store(lambda r: httpx.Response(200, json=[]), requests)
    assert store.list_items(tag_id="3") == []
    assert len(requests) == 1


def test_add_item_writes_category():
    requests = []

    def handler(request):
        if request.method == "POST":
            return httpx.Response(201, json=[{"id": 7}])
        return httpx.Response(200, json=[ITEM_ROW])

    store = _store(handler, requests)
    store.add_item(InventoryItem(name="ゴミ袋", stock=2, item_type="consumable"))

    body = json.loads(requests[0].content)
    assert body["category"] == "consumable"
    assert "item_type" not in body
    assert requests[0].headers["Prefer"] == "return=representation"


def test_update_stock_compare_and_swap_filter():
    requests = []

    def handler(request):
        if request.method == "PATCH":
            return httpx.Response(200, json=[dict(ITEM_ROW, stock=1)])
        return httpx.Response(200, json=[dict(ITEM_ROW, stock=1)])

    store = _store(handler, requests)
    item = store.update_stock("7", 1, expected=2)

    assert item.stock == 1
    patch = requests[0]
    assert patch.url.params["stock"] == "eq.2"
    assert json.loads(patch.content)["stock"] == 1


def test_update_stock_conflict():
    def handler(request):
        if request.method == "PATCH":
            return httpx.Response(200, json=[])
        return httpx.Response(200, json=[ITEM_ROW])

    store = _store(handler)
    with pytest.raises(StockConflict):
        store.update_stock("7", 1, expected=5)


def test_update_stock_missing_item():
    store = _store(lambda r: httpx.Response(200, json=[]))
    with pytest.raises(NotFound):
        store.update_stock("7", 1, expected=2)


def test_http_error_becomes_store_error():
    store = _store(lambda r: httpx.Response(500, json={"message": "boom"}))
    with pytest.raises(StoreError):
        store.list_tags()


def test_transport_error_becomes_store_error():
    def handler(request):
        raise httpx.ConnectError("unreachable", request=request)

    store = _store(handler)
    with pytest.raises(StoreError):
        store.list_items()


def test_delete_item_removes_logs_and_tags_first():
    requests = []
    store = _store(lambda r: httpx.Response(200, json=[ITEM_ROW]), requests)

    assert store.delete_item("7") is True
    assert [r.url.path for r in requests] == [
        "/rest/v1/lending_logs",
        "/rest/v1/item_tags",
        "/rest/v1/items",
    ]


def test_list_open_lending_logs():
    requests = []
    row = {
        "id": 1,
        "item_id": 7,
        "status": "lending",
        "user_name": "山田",
        "quantity": 2,
        "start_date": "2026-10-01",
    }
    store = _store(lambda r: httpx.Response(200, json=[row]), requests)

    logs = store.list_lending_logs("7")
    assert logs == [
        LendingLog(
            id="1", item_id="7", status="lending", user_name="山田",
            quantity=2, start_date="2026-10-01",
        )
    ]
    assert requests[0].url.params["status"] == "in.(reserved,lending)"


def test_create_store_remote_requires_credentials(monkeypatch):
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    monkeypatch.delenv("SUPABASE_ANON_KEY", raising=False)
    config = load_config()
    config.storage.backend = "remote"
    with pytest.raises(ConfigError):
        create_store(config)


def test_create_store_selects_backend(tmp_path):
    config = load_config()
    config.storage.db_path = str(tmp_path / "inv.db")
    assert isinstance(create_store(config), LocalStore)

    config.storage.backend = "remote"
    config.storage.remote.url = "https://example.supabase.co"
    config.storage.remote.api_key = "anon"
    store = create_store(config)
    assert isinstance(store, RemoteStore)
    store.close()

    config.storage.backend = "unknown"
    with pytest.raises(ValueError, match="不明なストレージバックエンド"):
        create_store(config)
