"""Shared-space inventory: stock, lending, chat notifications and receipt reading."""

from .chat import ChatService
from .config import (
    AppConfig,
    NotifyConfig,
    RemoteStorageConfig,
    ServerConfig,
    StorageConfig,
    VisionConfig,
    load_config,
)
from .inventory import InventoryService, parse_item_ref
from .lending import LendingService
from .models import ChatMessage, InventoryItem, LendingLog, Tag
from .notify import Notification, Notifier
from .store import StorageBackend, create_store
from .vision import ProviderReply, TranscriptionBackend, create_backend
from .vision.receipt import ReceiptExtraction, ReceiptTranscriber, extract_json_object

__all__ = [
    "InventoryItem",
    "Tag",
    "LendingLog",
    "ChatMessage",
    "InventoryService",
    "LendingService",
    "ChatService",
    "parse_item_ref",
    "Notifier",
    "Notification",
    "StorageBackend",
    "create_store",
    "TranscriptionBackend",
    "ProviderReply",
    "create_backend",
    "ReceiptTranscriber",
    "ReceiptExtraction",
    "extract_json_object",
    "AppConfig",
    "ServerConfig",
    "VisionConfig",
    "StorageConfig",
    "RemoteStorageConfig",
    "NotifyConfig",
    "load_config",
]
