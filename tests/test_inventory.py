"""Tests for InventoryService: validation, stock changes and rollback."""

from datetime import date
from unittest.mock import MagicMock, patch

import pytest

from sharehouse.errors import (
    InsufficientStock,
    NotFound,
    PartialFailureRollback,
    StockConflict,
    StoreError,
    ValidationError,
)
from sharehouse.inventory import InventoryService, parse_item_ref
from sharehouse.models import InventoryItem
from sharehouse.notify import Notifier
from sharehouse.store.local import LocalStore


@pytest.fixture
def store(tmp_path):
    s = LocalStore(db_path=tmp_path / "test.db")
    yield s
    s.close()


@pytest.fixture
def inventory(store):
    return InventoryService(store, Notifier(store))


def _events(store, event_type):
    return [
        m for m in store.list_chat_messages()
        if m.type == "system" and m.payload and m.payload["type"] == event_type
    ]


class TestParseItemRef:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("https://share.example/item/42", "42"),
            ("https://share.example/app/item/abc-1/", "abc-1"),
            ("https://share.example/scan?id=42", "42"),
            ("item:42", "42"),
            ("  42  ", "42"),
            ("", None),
            (None, None),
            ("item:", None),
        ],
    )
    def test_parse(self, raw, expected):
        assert parse_item_ref(raw) == expected


class TestItems:
    def test_create_trims_name(self, inventory):
        item = inventory.create_item(InventoryItem(name="  洗剤 ", stock=2))
        assert item.name == "洗剤"
        assert inventory.get_item(item.id).stock == 2

    @pytest.mark.parametrize(
        "item",
        [
            InventoryItem(name=" "),
            InventoryItem(name="洗剤", stock=-1),
            InventoryItem(name="洗剤", threshold=-2),
            InventoryItem(name="洗剤", stock=True),
            InventoryItem(name="洗剤", item_type="gadget"),
            InventoryItem(name="洗剤", expiry_date="2026-10-20"),
        ],
    )
    def test_create_rejects_invalid(self, inventory, store, item):
        with pytest.raises(ValidationError):
            inventory.create_item(item)
        assert store.list_items() == []

    def test_food_can_have_expiry(self, inventory):
        item = inventory.create_item(
            InventoryItem(name="牛乳", item_type="food", expiry_date="2026-10-20", expiry_type="消費期限")
        )
        assert item.expiry_date == "2026-10-20"

    def test_get_missing(self, inventory):
        with pytest.raises(NotFound):
            inventory.get_item("999")

    def test_update_attributes_and_tags(self, inventory):
        tag = inventory.add_tag("kitchen")
        item = inventory.create_item(InventoryItem(name="洗剤"))

        updated = inventory.update_item(item.id, {"location": "シンク下"}, tag_ids=[tag.id])
        assert updated.location == "シンク下"
        assert [t.name for t in updated.tags] == ["kitchen"]

    def test_update_rejects_expiry_on_consumable(self, inventory):
        item = inventory.create_item(InventoryItem(name="洗剤"))
        with pytest.raises(ValidationError):
            inventory.update_item(item.id, {"expiry_date": "2026-10-20"})

    def test_update_stock_goes_through_stock_unit(self, inventory, store):
        item = inventory.create_item(InventoryItem(name="洗剤", stock=1))
        updated = inventory.update_item(item.id, {"stock": 0}, user_name="山田")
        assert updated.stock == 0
        assert len(_events(store, "stock_zero")) == 1

    @pytest.mark.parametrize("stock", [-1, "3", True])
    def test_update_with_bad_stock_changes_nothing(self, inventory, store, stock):
        tag = inventory.add_tag("kitchen")
        item = inventory.create_item(InventoryItem(name="旧名", stock=2))

        with pytest.raises(ValidationError):
            inventory.update_item(item.id, {"name": "新名", "stock": stock}, tag_ids=[tag.id])

        current = inventory.get_item(item.id)
        assert current.name == "旧名"
        assert current.stock == 2
        assert current.tags == []
        assert store.list_chat_messages() == []

    def test_update_restores_attributes_when_stock_event_fails(self, inventory, store):
        old_tag = inventory.add_tag("kitchen")
        new_tag = inventory.add_tag("bath")
        item = inventory.create_item(
            InventoryItem(name="旧名", stock=1, location="棚"), tag_ids=[old_tag.id]
        )

        with patch.object(store, "add_chat_message", side_effect=StoreError("chat down")):
            with pytest.raises(PartialFailureRollback):
                inventory.update_item(
                    item.id,
                    {"name": "新名", "location": "倉庫", "stock": 0},
                    tag_ids=[new_tag.id],
                )

        current = inventory.get_item(item.id)
        assert current.name == "旧名"
        assert current.location == "棚"
        assert current.stock == 1
        assert [t.name for t in current.tags] == ["kitchen"]

    def test_delete(self, inventory):
        item = inventory.create_item(InventoryItem(name="洗剤"))
        inventory.delete_item(item.id)
        with pytest.raises(NotFound):
            inventory.delete_item(item.id)

    def test_low_stock_items(self, inventory):
        inventory.create_item(InventoryItem(name="洗剤", stock=1, threshold=2, alert_enabled=True))
        inventory.create_item(InventoryItem(name="スポンジ", stock=1, threshold=2))
        inventory.create_item(InventoryItem(name="ゴミ袋", stock=5, threshold=2, alert_enabled=True))

        assert [i.name for i in inventory.low_stock_items()] == ["洗剤"]

    def test_expiring_items(self, inventory):
        inventory.create_item(InventoryItem(name="牛乳", item_type="food", expiry_date="2026-10-21"))
        inventory.create_item(InventoryItem(name="卵", item_type="food", expiry_date="2026-11-30"))
        inventory.create_item(InventoryItem(name="パン", item_type="food", expiry_date="2026-10-18"))
        inventory.create_item(InventoryItem(name="米", item_type="food"))

        names = [i.name for i in inventory.expiring_items(days=3, today=date(2026, 10, 19))]
        assert names == ["パン", "牛乳"]


class TestTags:
    def test_add_tag_trims(self, inventory):
        assert inventory.add_tag("  bath ").name == "bath"
        assert [t.name for t in inventory.list_tags()] == ["bath"]

    def test_add_tag_rejects_blank_and_duplicate(self, inventory):
        with pytest.raises(ValidationError):
            inventory.add_tag("  ")
        inventory.add_tag("bath")
        with pytest.raises(ValidationError):
            inventory.add_tag("bath")


class TestStockChanges:
    def test_adjust_stock(self, inventory):
        item = inventory.create_item(InventoryItem(name="洗剤", stock=3))
        assert inventory.adjust_stock(item.id, -2).stock == 1
        assert inventory.adjust_stock(item.id, 4).stock == 5

    def test_adjust_below_zero_rejected(self, inventory):
        item = inventory.create_item(InventoryItem(name="洗剤", stock=1))
        with pytest.raises(InsufficientStock):
            inventory.adjust_stock(item.id, -2)
        assert inventory.get_item(item.id).stock == 1

    def test_stock_zero_announced_once(self, inventory, store):
        item = inventory.create_item(InventoryItem(name="洗剤", stock=1))

        inventory.adjust_stock(item.id, -1, user_name="山田")
        inventory.set_stock(item.id, 0)

        events = _events(store, "stock_zero")
        assert len(events) == 1
        assert events[0].text == "洗剤 の在庫がなくなりました。"
        assert events[0].channel == "consumable"

    def test_set_stock_rejects_negative(self, inventory):
        item = inventory.create_item(InventoryItem(name="洗剤", stock=1))
        with pytest.raises(ValidationError):
            inventory.set_stock(item.id, -1)

    def test_stale_item_conflicts(self, inventory, store):
        item = inventory.create_item(InventoryItem(name="洗剤", stock=3))
        store.update_stock(item.id, 2, expected=3)

        with pytest.raises(StockConflict):
            with inventory.stock_change(item, 2):
                pass
        assert inventory.get_item(item.id).stock == 2

    def test_store_failure_rolls_back(self, inventory):
        item = inventory.create_item(InventoryItem(name="洗剤", stock=3))
        undo = MagicMock()

        with pytest.raises(PartialFailureRollback) as exc_info:
            with inventory.stock_change(item, 2) as (updated, undo_actions):
                assert updated.stock == 2
                undo_actions.append(undo)
                raise StoreError("log write failed")

        assert isinstance(exc_info.value.__cause__, StoreError)
        undo.assert_called_once_with()
        assert inventory.get_item(item.id).stock == 3

    def test_other_failure_rolls_back_and_reraises(self, inventory):
        item = inventory.create_item(InventoryItem(name="洗剤", stock=3))

        with pytest.raises(RuntimeError):
            with inventory.stock_change(item, 0):
                raise RuntimeError("boom")
        assert inventory.get_item(item.id).stock == 3

    def test_undo_runs_in_reverse_and_survives_failures(self, inventory):
        item = inventory.create_item(InventoryItem(name="洗剤", stock=3))
        calls = []

        def failing():
            calls.append("second")
            raise StoreError("undo failed")

        with pytest.raises(PartialFailureRollback):
            with inventory.stock_change(item, 1) as (_, undo):
                undo.append(lambda: calls.append("first"))
                undo.append(failing)
                raise StoreError("late failure")

        assert calls == ["second", "first"]
        assert inventory.get_item(item.id).stock == 3

    def test_stock_zero_chat_failure_rolls_back(self, store):
        notifier = MagicMock()
        notifier.notify.side_effect = StoreError("chat down")
        inventory = InventoryService(store, notifier)
        item = inventory.create_item(InventoryItem(name="洗剤", stock=1))

        with pytest.raises(PartialFailureRollback):
            inventory.adjust_stock(item.id, -1)
        assert inventory.get_item(item.id).stock == 1
