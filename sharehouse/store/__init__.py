"""Storage backends for items, tags, lending logs and chat messages."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Iterable

if TYPE_CHECKING:
    from ..config import AppConfig
    from ..models import ChatMessage, InventoryItem, LendingLog, Tag

ITEM_FIELDS = (
    "name",
    "stock",
    "threshold",
    "location",
    "description",
    "image_url",
    "item_type",
    "alert_enabled",
    "expiry_date",
    "expiry_type",
    "status",
)

# reserved_date is fixed at creation
LENDING_FIELDS = (
    "status",
    "start_date",
    "due_date",
    "returned_date",
    "quantity",
    "user_name",
    "memo",
)


class StorageBackend(ABC):
    """CRUD surface consumed by the inventory, lending and chat services.

    Implementations raise ``StoreError`` when the underlying store fails,
    ``NotFound`` when an update targets a missing row and ``StockConflict``
    when a compare-and-swap stock write loses.
    """

    # Items

    @abstractmethod
    def list_items(self, tag_id: str | None = None) -> list[InventoryItem]: ...

    @abstractmethod
    def get_item(self, item_id: str) -> InventoryItem | None: ...

    @abstractmethod
    def add_item(
        self, item: InventoryItem, tag_ids: Iterable[str] = ()
    ) -> InventoryItem: ...

    @abstractmethod
    def update_item(
        self,
        item_id: str,
        changes: dict[str, Any],
        tag_ids: Iterable[str] | None = None,
    ) -> InventoryItem:
        """Apply ``changes`` (keys from ``ITEM_FIELDS``); replace tags if given."""
        ...

    @abstractmethod
    def update_stock(
        self, item_id: str, new_stock: int, expected: int
    ) -> InventoryItem:
        """Set stock to ``new_stock`` only if it currently equals ``expected``."""
        ...

    @abstractmethod
    def delete_item(self, item_id: str) -> bool:
        """Delete an item together with its lending logs and tag links."""
        ...

    # Tags

    @abstractmethod
    def list_tags(self) -> list[Tag]: ...

    @abstractmethod
    def add_tag(self, name: str) -> Tag: ...

    # Lending logs

    @abstractmethod
    def add_lending_log(self, log: LendingLog) -> LendingLog: ...

    @abstractmethod
    def get_lending_log(self, log_id: str) -> LendingLog | None: ...

    @abstractmethod
    def list_lending_logs(
        self, item_id: str, open_only: bool = True
    ) -> list[LendingLog]:
        """Newest first. ``open_only`` keeps reserved/lending rows."""
        ...

    @abstractmethod
    def update_lending_log(
        self, log_id: str, changes: dict[str, Any]
    ) -> LendingLog: ...

    @abstractmethod
    def delete_lending_log(self, log_id: str) -> None: ...

    # Chat

    @abstractmethod
    def add_chat_message(self, message: ChatMessage) -> ChatMessage: ...

    @abstractmethod
    def get_chat_message(self, message_id: str) -> ChatMessage | None: ...

    @abstractmethod
    def list_chat_messages(
        self, channel: str | None = None, limit: int = 100
    ) -> list[ChatMessage]:
        """Newest first; ``channel=None`` returns every channel."""
        ...

    @abstractmethod
    def update_chat_message(self, message_id: str, text: str) -> ChatMessage: ...

    @abstractmethod
    def delete_chat_message(self, message_id: str) -> None: ...

    def close(self) -> None:
        """Release connections. Default is a no-op."""


def create_store(config: AppConfig) -> StorageBackend:
    """Create the storage backend selected by ``config.storage.backend``."""
    backend_name = config.storage.backend

    match backend_name:
        case "local":
            from .local import LocalStore

            return LocalStore(
                db_path=config.storage.db_path,
                chat_limit=config.storage.chat_limit,
            )
        case "remote":
            from ..errors import ConfigError
            from .remote import RemoteStore

            remote = config.storage.remote
            if not remote.configured:
                raise ConfigError(
                    "リモートストアのURLまたはAPIキーが設定されていません。"
                    "設定ファイルまたは SUPABASE_URL / SUPABASE_ANON_KEY を確認してください。"
                )
            return RemoteStore(
                url=remote.url,
                api_key=remote.api_key,
                timeout=remote.timeout,
            )
        case _:
            raise ValueError(
                f"不明なストレージバックエンド: {backend_name!r}  "
                f"(local / remote から選択してください)"
            )
