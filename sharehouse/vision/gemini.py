"""Gemini API backend for receipt transcription."""

from __future__ import annotations

import json
import logging
from typing import Any

from ..errors import MissingCredential
from . import ProviderReply, TranscriptionBackend, plain_response, provider_error

logger = logging.getLogger(__name__)


class GeminiTranscriptionBackend(TranscriptionBackend):
    """Read receipt photos using Google Gemini's vision capability."""

    def __init__(
        self,
        api_key: str = "",
        model: str = "gemini-2.5-pro",
        timeout: float = 60.0,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._timeout = timeout

    async def generate(
        self, image: bytes, mime_type: str, prompt: str
    ) -> ProviderReply:
        if not self._api_key:
            raise MissingCredential(
                "Gemini APIキーが設定されていません。"
                "設定ファイルまたは GOOGLE_API_KEY 環境変数を確認してください。"
            )

        try:
            import google.generativeai as genai
        except ImportError:
            raise ImportError(
                "google-generativeai SDK is required: pip install google-generativeai"
            ) from None

        genai.configure(api_key=self._api_key)
        model = genai.GenerativeModel(self._model)

        # The SDK base64-encodes inline blobs on the wire
        parts: list = [prompt, {"mime_type": mime_type, "data": image}]

        try:
            response = await model.generate_content_async(
                parts, request_options={"timeout": self._timeout}
            )
        except Exception as e:
            logger.error("Gemini API 呼び出しに失敗しました: %s", e)
            raise provider_error(e) from e

        return _normalize_response(response)


def _field(obj: Any, name: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(name)
    try:
        return getattr(obj, name, None)
    except ValueError:
        # GenerateContentResponse.text raises when the candidate has no parts
        return None


def _direct_text(response: Any) -> str | None:
    text = _field(response, "text")
    return text if isinstance(text, str) and text else None


def _output_text(response: Any) -> str | None:
    """``output[0].content[].text`` joined by newlines."""
    output = _field(response, "output")
    if not isinstance(output, list) or not output:
        return None
    content = _field(output[0], "content")
    if not isinstance(content, list):
        return None
    texts = [_field(c, "text") for c in content]
    joined = "\n".join(t if isinstance(t, str) else "" for t in texts)
    return joined or None


def _candidates_text(response: Any) -> str | None:
    """``candidates[0].content.parts[].text`` concatenated."""
    candidates = _field(response, "candidates")
    if not candidates:
        return None
    try:
        first = candidates[0]
    except (TypeError, IndexError, KeyError):
        return None
    parts = _field(_field(first, "content"), "parts")
    if not parts:
        return None
    texts = [_field(p, "text") for p in parts]
    joined = "".join(t for t in texts if isinstance(t, str))
    return joined or None


def _normalize_response(response: Any) -> ProviderReply:
    """Collapse the SDK response into ``ProviderReply``.

    Tries the direct ``text`` field, then ``output[].content[].text``, then
    Gemini's ``candidates[].content.parts[].text``. If none is present the
    whole response serialized as JSON becomes the text.
    """
    raw = plain_response(response)
    text = (
        _direct_text(response)
        or _output_text(response)
        or _candidates_text(response)
    )
    if text is None:
        text = json.dumps(raw, ensure_ascii=False)
    return ProviderReply(text=text, raw=raw)
