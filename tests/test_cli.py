"""Tests for the sharehouse CLI."""

import json

import pytest

from sharehouse.cli import main
from sharehouse.inventory import InventoryService
from sharehouse.models import InventoryItem
from sharehouse.notify import Notifier
from sharehouse.store.local import LocalStore


@pytest.fixture
def config_path(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    db_path = tmp_path / "inv.db"
    path = tmp_path / "sharehouse.toml"
    path.write_text(f'[storage]\ndb_path = "{db_path.as_posix()}"\n', encoding="utf-8")
    return path, db_path


def _seed(db_path, **kwargs):
    store = LocalStore(db_path=db_path)
    item = InventoryService(store, Notifier(store)).create_item(InventoryItem(**kwargs))
    store.close()
    return item


def test_no_command_prints_help(capsys):
    with pytest.raises(SystemExit) as exc_info:
        main([])
    assert exc_info.value.code == 1
    assert "sharehouse" in capsys.readouterr().out


def test_items_json(config_path, capsys):
    path, db_path = config_path
    _seed(db_path, name="洗剤", stock=2)

    main(["--config", str(path), "items", "--json"])

    items = json.loads(capsys.readouterr().out)
    assert [i["name"] for i in items] == ["洗剤"]


def test_lend_and_return(config_path, capsys):
    path, db_path = config_path
    item = _seed(db_path, name="脚立", item_type="shared", stock=1)

    main(["--config", str(path), "lend", f"item:{item.id}", "--user", "山田"])
    assert "貸出しました" in capsys.readouterr().out

    store = LocalStore(db_path=db_path)
    log = store.list_lending_logs(item.id)[0]
    store.close()

    main(["--config", str(path), "return", log.id])
    assert "返却しました" in capsys.readouterr().out


def test_domain_error_exits(config_path, capsys):
    path, db_path = config_path
    item = _seed(db_path, name="脚立", stock=0)

    with pytest.raises(SystemExit) as exc_info:
        main(["--config", str(path), "lend", item.id, "--user", "山田"])
    assert exc_info.value.code == 1
    assert "エラー" in capsys.readouterr().err


def test_transcribe_missing_file(config_path, capsys):
    path, _ = config_path
    with pytest.raises(SystemExit):
        main(["--config", str(path), "transcribe", "missing.jpg"])
    assert "ファイルが見つかりません" in capsys.readouterr().err
