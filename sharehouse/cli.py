"""CLI entry point for the sharehouse inventory service."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import mimetypes
import sys
from dataclasses import asdict
from pathlib import Path

from dotenv import load_dotenv

from .config import load_config
from .errors import SharehouseError


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="sharehouse",
        description="シェアハウス在庫管理: 在庫・貸出・レシート読み取りを扱います",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        default=None,
        help="設定ファイルのパス (TOML)",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="デバッグログを表示"
    )

    sub = parser.add_subparsers(dest="command")

    # serve
    serve_parser = sub.add_parser("serve", help="HTTP サーバを起動")
    serve_parser.add_argument("--host", type=str, default=None, help="待ち受けホスト")
    serve_parser.add_argument("--port", type=int, default=None, help="待ち受けポート")

    # transcribe
    tr_parser = sub.add_parser("transcribe", help="レシート画像を読み取る")
    tr_parser.add_argument("image", type=str, help="画像ファイル")
    tr_parser.add_argument("--json", action="store_true", help="JSON形式で出力")
    tr_parser.add_argument(
        "--save", type=str, default=None, metavar="FILE",
        help="読み取り結果を JSON ファイルに保存",
    )

    # items
    items_parser = sub.add_parser("items", help="在庫一覧を表示")
    items_parser.add_argument("--tag", type=str, default=None, help="タグIDで絞り込み")
    items_parser.add_argument(
        "--low-stock", action="store_true", help="在庫が閾値以下のものだけ表示"
    )
    items_parser.add_argument("--json", action="store_true", help="JSON形式で出力")

    # lend
    lend_parser = sub.add_parser("lend", help="アイテムを貸し出す")
    lend_parser.add_argument("item", type=str, help="アイテムID または QRコードの値")
    lend_parser.add_argument("--user", type=str, required=True, help="利用者名")
    lend_parser.add_argument("--qty", type=int, default=1, help="数量")

    # return
    return_parser = sub.add_parser("return", help="貸出を返却する")
    return_parser.add_argument("log", type=str, help="貸出ログID")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    load_dotenv(".env.local")
    load_dotenv()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = load_config(args.config)

    try:
        match args.command:
            case "serve":
                _cmd_serve(config, args)
            case "transcribe":
                asyncio.run(_cmd_transcribe(config, args))
            case "items":
                _cmd_items(config, args)
            case "lend":
                _cmd_lend(config, args)
            case "return":
                _cmd_return(config, args)
    except SharehouseError as e:
        print(f"エラー: {e}", file=sys.stderr)
        sys.exit(1)


def _cmd_serve(config, args) -> None:
    import uvicorn

    from .server import create_app

    host = args.host or config.server.host
    port = args.port or config.server.port
    uvicorn.run(create_app(config), host=host, port=port)


async def _cmd_transcribe(config, args) -> None:
    from .vision import create_backend
    from .vision.receipt import ReceiptTranscriber

    path = Path(args.image)
    if not path.exists():
        print(f"ファイルが見つかりません: {path}", file=sys.stderr)
        sys.exit(1)

    mime = mimetypes.guess_type(path)[0]
    transcriber = ReceiptTranscriber(create_backend(config))
    print("🔍 レシートを読み取り中...", file=sys.stderr)
    result = await transcriber.transcribe(
        path.read_bytes(), mime_type=mime, artifact_path=args.save
    )

    if args.json:
        print(json.dumps(result.parsed, ensure_ascii=False, indent=2))
        return

    receipt = result.receipt
    print(f"\n🧾 {receipt.store or '(店舗不明)'}  {receipt.date or ''} {receipt.time or ''}")
    if receipt.tel:
        print(f"   TEL {receipt.tel}")
    for item in receipt.items:
        qty = f"x{item.quantity:g}" if item.quantity is not None else ""
        price = f"{item.price:,.0f}円" if item.price is not None else "-"
        print(f"  {item.name or '(品名不明)':<20} {qty:>5} {price:>10}")
    if receipt.total is not None:
        print(f"  {'合計':<20} {'':>5} {receipt.total:>9,.0f}円")
    if args.save:
        print(f"\n💾 {args.save}" if result.saved else "\n保存に失敗しました。")


def _services(config):
    from .inventory import InventoryService
    from .lending import LendingService
    from .notify import Notifier
    from .store import create_store

    store = create_store(config)
    notifier = Notifier(
        store, webhooks=config.notify.webhooks, timeout=config.notify.timeout
    )
    inventory = InventoryService(store, notifier)
    return store, inventory, LendingService(store, inventory)


def _cmd_items(config, args) -> None:
    store, inventory, _ = _services(config)
    try:
        if args.low_stock:
            items = inventory.low_stock_items()
        else:
            items = inventory.list_items(tag_id=args.tag)
    finally:
        store.close()

    if args.json:
        print(json.dumps([asdict(i) for i in items], ensure_ascii=False, indent=2))
        return
    if not items:
        print("アイテムがありません。")
        return
    print(f"📦 アイテム ({len(items)} 件):")
    for i in items:
        mark = " ⚠" if i.alert_enabled and i.is_low_stock else ""
        tags = ", ".join(t.name for t in i.tags)
        print(f"  [{i.id}] {i.name:<16} 在庫 {i.stock:>3} / 閾値 {i.threshold}{mark}  {tags}")


def _cmd_lend(config, args) -> None:
    from .inventory import parse_item_ref

    item_id = parse_item_ref(args.item)
    if item_id is None:
        print("アイテムIDを指定してください。", file=sys.stderr)
        sys.exit(1)

    store, _, lending = _services(config)
    try:
        log = lending.borrow(item_id, args.user, quantity=args.qty)
    finally:
        store.close()
    print(f"✅ 貸出しました (ログID {log.id}, 数量 {log.quantity})")


def _cmd_return(config, args) -> None:
    store, _, lending = _services(config)
    try:
        log = lending.return_item(args.log)
    finally:
        store.close()
    print(f"✅ 返却しました (ログID {log.id})")
