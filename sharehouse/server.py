"""
HTTP API for the sharehouse inventory.

Image endpoints:
- POST /parse-image: store an uploaded image, return its generated id
- POST /transcribe-image: store the image and transcribe the receipt on it

JSON endpoints cover items, tags, stock, lending/reservations and chat.
Domain errors are reported as ``{"error": <code>, "detail": <message>}``.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import asdict

from fastapi import FastAPI, File, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .chat import ChatService
from .config import AppConfig
from .errors import (
    MissingCredential,
    ProviderError,
    SharehouseError,
    UnparsableOutput,
    ValidationError,
)
from .inventory import InventoryService, parse_item_ref
from .lending import LendingService
from .models import InventoryItem
from .notify import Notifier
from .store import StorageBackend, create_store
from .uploads import ImageIntake, artifact_path
from .vision import TranscriptionBackend, create_backend
from .vision.receipt import ReceiptTranscriber

logger = logging.getLogger(__name__)


class ItemCreate(BaseModel):
    name: str
    stock: int = 0
    threshold: int = 0
    location: str = ""
    item_type: str = "consumable"
    description: str = ""
    image_url: str = ""
    alert_enabled: bool = False
    expiry_date: str | None = None
    expiry_type: str | None = None
    tag_ids: list[str] = []


class ItemUpdate(BaseModel):
    name: str | None = None
    stock: int | None = None
    threshold: int | None = None
    location: str | None = None
    item_type: str | None = None
    description: str | None = None
    image_url: str | None = None
    alert_enabled: bool | None = None
    expiry_date: str | None = None
    expiry_type: str | None = None
    tag_ids: list[str] | None = None
    user_name: str = "unknown"


class StockRequest(BaseModel):
    delta: int | None = None
    count: int | None = None
    user_name: str = "unknown"


class TagCreate(BaseModel):
    name: str


class BorrowRequest(BaseModel):
    user_name: str
    quantity: int = 1
    memo: str = ""
    due_date: str | None = None


class ReserveRequest(BaseModel):
    user_name: str
    quantity: int = 1
    reserved_date: str | None = None
    memo: str = ""


class ConvertRequest(BaseModel):
    quantity: int | None = None


class ReturnRequest(BaseModel):
    user_name: str | None = None


class ChatPost(BaseModel):
    user_name: str
    text: str
    channel: str = "all"


class ChatEdit(BaseModel):
    user_name: str
    text: str


def create_app(
    config: AppConfig,
    store: StorageBackend | None = None,
    backend: TranscriptionBackend | None = None,
    notifier: Notifier | None = None,
) -> FastAPI:
    """Build the application with every collaborator taken from ``config``.

    ``store``, ``backend`` and ``notifier`` override the configured ones.
    """
    store = store or create_store(config)
    backend = backend or create_backend(config)
    notifier = notifier or Notifier(
        store, webhooks=config.notify.webhooks, timeout=config.notify.timeout
    )

    intake = ImageIntake(config.server.upload_dir)
    transcriber = ReceiptTranscriber(backend)
    inventory = InventoryService(store, notifier)
    lending = LendingService(store, inventory)
    chat = ChatService(store)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        store.close()

    app = FastAPI(title="sharehouse-inventory", lifespan=lifespan)

    @app.exception_handler(SharehouseError)
    async def handle_domain_error(request: Request, exc: SharehouseError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.code, "detail": str(exc)},
        )

    @app.get("/healthz")
    def health():
        return {"status": "healthy"}

    # Images

    @app.post("/parse-image")
    async def parse_image(image: UploadFile | None = File(None)):
        data = await image.read() if image is not None else b""
        if not data:
            return JSONResponse(status_code=400, content={"error": "no image uploaded"})
        stored = intake.save(data, image.filename)
        return {"id": stored.id, "filename": stored.filename}

    @app.post("/transcribe-image")
    async def transcribe_image(image: UploadFile | None = File(None)):
        data = await image.read() if image is not None else b""
        if not data:
            return JSONResponse(status_code=400, content={"error": "no image uploaded"})
        stored = intake.save(data, image.filename)

        try:
            result = await transcriber.transcribe(
                data,
                mime_type=image.content_type,
                artifact_path=artifact_path(stored, config.server.transcript_dir),
            )
        except MissingCredential:
            return JSONResponse(status_code=400, content={"error": "missing credential"})
        except UnparsableOutput as e:
            return JSONResponse(
                status_code=502,
                content={"error": "genai_unparsable", "detail": e.detail()},
            )
        except ProviderError as e:
            logger.error("文字起こしに失敗しました (%s): %s", stored.filename, e)
            return JSONResponse(
                status_code=500,
                content={"error": "genai_failed", "detail": e.detail()},
            )

        return {
            "source": "genai",
            "text": result.raw_text,
            "parsed": result.parsed,
            "saved": result.saved,
        }

    # Items

    @app.get("/items")
    def list_items(tag_id: str | None = None):
        return [asdict(i) for i in inventory.list_items(tag_id=tag_id)]

    @app.post("/items", status_code=201)
    def create_item(body: ItemCreate):
        fields = body.model_dump(exclude={"tag_ids"})
        item = inventory.create_item(InventoryItem(**fields), tag_ids=body.tag_ids)
        return asdict(item)

    @app.get("/items/low-stock")
    def low_stock():
        return [asdict(i) for i in inventory.low_stock_items()]

    @app.get("/items/expiring")
    def expiring(days: int = 3):
        return [asdict(i) for i in inventory.expiring_items(days=days)]

    @app.get("/items/{item_id}")
    def get_item(item_id: str):
        return asdict(inventory.get_item(item_id))

    @app.patch("/items/{item_id}")
    def update_item(item_id: str, body: ItemUpdate):
        changes = body.model_dump(exclude_unset=True, exclude={"tag_ids", "user_name"})
        item = inventory.update_item(
            item_id, changes, tag_ids=body.tag_ids, user_name=body.user_name
        )
        return asdict(item)

    @app.delete("/items/{item_id}", status_code=204)
    def delete_item(item_id: str):
        inventory.delete_item(item_id)

    @app.post("/items/{item_id}/stock")
    def change_stock(item_id: str, body: StockRequest):
        if (body.delta is None) == (body.count is None):
            raise ValidationError("delta か count のどちらか一方を指定してください")
        if body.delta is not None:
            item = inventory.adjust_stock(item_id, body.delta, user_name=body.user_name)
        else:
            item = inventory.set_stock(item_id, body.count, user_name=body.user_name)
        return asdict(item)

    @app.get("/resolve")
    def resolve(value: str = ""):
        item_id = parse_item_ref(value)
        if item_id is None:
            raise ValidationError("QRコードの値が空です")
        return asdict(inventory.get_item(item_id))

    # Tags

    @app.get("/tags")
    def list_tags():
        return [asdict(t) for t in inventory.list_tags()]

    @app.post("/tags", status_code=201)
    def create_tag(body: TagCreate):
        return asdict(inventory.add_tag(body.name))

    # Lending

    @app.get("/items/{item_id}/lending")
    def lending_history(item_id: str, open_only: bool = False):
        return [asdict(log) for log in lending.history(item_id, open_only=open_only)]

    @app.post("/items/{item_id}/borrow", status_code=201)
    def borrow(item_id: str, body: BorrowRequest):
        log = lending.borrow(
            item_id,
            body.user_name,
            quantity=body.quantity,
            memo=body.memo,
            due_date=body.due_date,
        )
        return asdict(log)

    @app.post("/items/{item_id}/reserve", status_code=201)
    def reserve(item_id: str, body: ReserveRequest):
        log = lending.reserve(
            item_id,
            body.user_name,
            quantity=body.quantity,
            reserved_date=body.reserved_date,
            memo=body.memo,
        )
        return asdict(log)

    @app.post("/lending/{log_id}/convert")
    def convert(log_id: str, body: ConvertRequest | None = None):
        quantity = body.quantity if body is not None else None
        return asdict(lending.convert_reservation(log_id, quantity=quantity))

    @app.post("/lending/{log_id}/cancel", status_code=204)
    def cancel(log_id: str):
        lending.cancel_reservation(log_id)

    @app.post("/lending/{log_id}/return")
    def return_item(log_id: str, body: ReturnRequest | None = None):
        user_name = body.user_name if body is not None else None
        return asdict(lending.return_item(log_id, user_name=user_name))

    # Chat

    @app.get("/chat")
    def list_chat(channel: str | None = None, limit: int = 100):
        return [asdict(m) for m in chat.messages(channel=channel, limit=limit)]

    @app.post("/chat", status_code=201)
    def post_chat(body: ChatPost):
        return asdict(chat.post(body.user_name, body.text, channel=body.channel))

    @app.patch("/chat/{message_id}")
    def edit_chat(message_id: str, body: ChatEdit):
        return asdict(chat.edit(message_id, body.user_name, body.text))

    @app.delete("/chat/{message_id}", status_code=204)
    def delete_chat(message_id: str, user_name: str):
        chat.delete(message_id, user_name)

    return app
