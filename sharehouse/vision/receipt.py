"""Receipt transcription: prompt, JSON extraction and artifact persistence."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..errors import UnparsableOutput, ValidationError
from . import TranscriptionBackend

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "image/png"

RECEIPT_PROMPT = """\
この画像はレシートの写真です。画像から次の項目を抽出して、必ずJSONで返してください。
返却するJSONスキーマ:
{
  "store": string|null,      // 購入店舗名
  "tel": string|null,        // 電話番号
  "date": string|null,       // 購入日 (YYYY-MM-DD)
  "time": string|null,       // 購入時間 (HH:MM)
  "items": [
    {
      "name": string|null,       // 商品名
      "unit_price": number|null, // 商品単価
      "quantity": number|null,   // 商品購入数
      "price": number|null       // 商品価格 (小計: 単価×数量の金額)
    }
  ],
  "total": number|null       // 合計請求金額
}

見つからない項目は null にしてください。出力は余分な説明を含めず、純粋に JSON のみを返してください。
"""


@dataclass
class ReceiptItem:
    name: str | None = None
    unit_price: float | None = None
    quantity: float | None = None
    price: float | None = None


@dataclass
class ReceiptExtraction:
    """Typed view of a parsed receipt. Absent fields stay ``None``."""

    store: str | None = None
    tel: str | None = None
    date: str | None = None
    time: str | None = None
    items: list[ReceiptItem] = field(default_factory=list)
    total: float | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReceiptExtraction:
        items = [
            ReceiptItem(
                name=_text(entry.get("name")),
                unit_price=_number(entry.get("unit_price")),
                quantity=_number(entry.get("quantity")),
                price=_number(entry.get("price")),
            )
            for entry in data.get("items") or []
            if isinstance(entry, dict)
        ]
        return cls(
            store=_text(data.get("store")),
            tel=_text(data.get("tel")),
            date=_text(data.get("date")),
            time=_text(data.get("time")),
            items=items,
            total=_number(data.get("total")),
        )


def _text(value: Any) -> str | None:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def _number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        try:
            return float(value.replace(",", "").strip())
        except ValueError:
            return None
    return None


def extract_json_object(text: str) -> dict[str, Any] | None:
    """Pull the JSON object out of a free-form model reply.

    The span from the first ``{`` to the last ``}`` is tried first, then the
    whole text. Only a JSON object counts as a result.
    """
    candidates: list[str] = []
    first = text.find("{")
    last = text.rfind("}")
    if first != -1 and last != -1 and first < last:
        candidates.append(text[first:last + 1])
    candidates.append(text)

    for candidate in candidates:
        try:
            value = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(value, dict):
            return value
    return None


def save_artifact(parsed: dict[str, Any], path: str | Path) -> bool:
    """Write the parsed receipt as JSON. Returns False if the write failed."""
    path = Path(path).expanduser()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            json.dumps(parsed, ensure_ascii=False, indent=2), encoding="utf-8"
        )
    except OSError:
        logger.exception("文字起こし結果の保存に失敗しました: %s", path)
        return False
    return True


@dataclass
class TranscriptionResult:
    parsed: dict[str, Any]
    raw_text: str
    saved: bool = False

    @property
    def receipt(self) -> ReceiptExtraction:
        return ReceiptExtraction.from_dict(self.parsed)


class ReceiptTranscriber:
    """Turn a receipt photo into structured data through a vision backend.

    One provider call per request; there are no retries.
    """

    def __init__(
        self, backend: TranscriptionBackend, prompt: str = RECEIPT_PROMPT
    ) -> None:
        self._backend = backend
        self._prompt = prompt

    async def transcribe(
        self,
        image: bytes,
        mime_type: str | None = None,
        artifact_path: str | Path | None = None,
    ) -> TranscriptionResult:
        """Transcribe ``image``; write ``artifact_path`` only when parsing succeeds.

        Raises:
            ValidationError: If ``image`` is empty.
            MissingCredential: If the backend has no API key.
            ProviderError: If the provider call fails.
            UnparsableOutput: If the reply contains no JSON object.
        """
        if not image:
            raise ValidationError("画像データが空です")

        mime = mime_type if mime_type and mime_type.startswith("image/") else DEFAULT_MIME_TYPE
        reply = await self._backend.generate(image, mime, self._prompt)

        parsed = extract_json_object(reply.text)
        if parsed is None:
            logger.warning("モデル応答をJSONとして解釈できませんでした (%d 文字)", len(reply.text))
            raise UnparsableOutput(reply.text, reply.raw)

        saved = False
        if artifact_path is not None:
            saved = save_artifact(parsed, artifact_path)

        return TranscriptionResult(parsed=parsed, raw_text=reply.text, saved=saved)
