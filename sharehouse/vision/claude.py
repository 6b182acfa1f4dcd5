"""Claude API backend for receipt transcription."""

from __future__ import annotations

import base64
import json
import logging
from typing import Any

from ..errors import MissingCredential
from . import ProviderReply, TranscriptionBackend, plain_response, provider_error

logger = logging.getLogger(__name__)


class ClaudeTranscriptionBackend(TranscriptionBackend):
    """Read receipt photos using Claude's vision capability."""

    def __init__(
        self,
        api_key: str = "",
        model: str = "claude-sonnet-4-5-20250929",
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
                "Anthropic APIキーが設定されていません。"
                "設定ファイルまたは ANTHROPIC_API_KEY 環境変数を確認してください。"
            )

        try:
            import anthropic
        except ImportError:
            raise ImportError(
                "anthropic SDK is required: pip install anthropic"
            ) from None

        content: list[dict] = [
            {"type": "text", "text": prompt},
            {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": mime_type,
                    "data": base64.standard_b64encode(image).decode(),
                },
            },
        ]

        client = anthropic.AsyncAnthropic(api_key=self._api_key, timeout=self._timeout)
        try:
            response = await client.messages.create(
                model=self._model,
                max_tokens=4096,
                messages=[{"role": "user", "content": content}],
            )
        except Exception as e:
            logger.error("Anthropic API 呼び出しに失敗しました: %s", e)
            raise provider_error(e) from e

        return _normalize_response(response)


def _normalize_response(response: Any) -> ProviderReply:
    """Join the text blocks of a Messages API response."""
    raw = plain_response(response)
    blocks = getattr(response, "content", None) or []
    texts = [getattr(b, "text", None) for b in blocks]
    text = "".join(t for t in texts if isinstance(t, str))
    if not text:
        text = json.dumps(raw, ensure_ascii=False)
    return ProviderReply(text=text, raw=raw)
