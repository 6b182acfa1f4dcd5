"""Transcription backend base class, reply type, and factory."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..errors import ProviderError

if TYPE_CHECKING:
    from ..config import AppConfig


@dataclass
class ProviderReply:
    """Provider answer normalized at the boundary: plain text plus the raw payload."""

    text: str
    raw: dict[str, Any] = field(default_factory=dict)


class TranscriptionBackend(ABC):
    """Abstract base for a generative vision model that reads an image."""

    @abstractmethod
    async def generate(
        self, image: bytes, mime_type: str, prompt: str
    ) -> ProviderReply:
        """Send one image and one text prompt as a single-turn request.

        Raises:
            MissingCredential: Before any network call if no API key is set.
            ProviderError: If the provider call fails.
        """
        ...


def plain_response(response: Any) -> dict[str, Any]:
    """Return a JSON-safe dict view of an SDK response object."""
    plain: Any = None
    if isinstance(response, dict):
        plain = response
    else:
        for attr in ("to_dict", "model_dump"):
            fn = getattr(response, attr, None)
            if callable(fn):
                candidate = fn()
                if isinstance(candidate, dict):
                    plain = candidate
                    break
    if plain is None:
        plain = {"repr": repr(response)}
    return json.loads(json.dumps(plain, ensure_ascii=False, default=str))


def provider_error(exc: Exception) -> ProviderError:
    """Wrap an SDK/network exception, keeping the provider status and body."""
    detail = None
    response = getattr(exc, "response", None)
    if response is not None:
        status = getattr(response, "status_code", None)
        if status is None:
            status = getattr(response, "status", None)
        body = getattr(exc, "body", None)
        if body is None:
            text = getattr(response, "text", None)
            body = text if isinstance(text, str) else None
        detail = {"status": status, "data": body}

    code = getattr(exc, "status_code", None)
    if code is None:
        code = getattr(exc, "code", None)
    if code is not None and not isinstance(code, (int, str)):
        code = str(code)

    return ProviderError(str(exc) or type(exc).__name__, provider_code=code, response=detail)


def create_backend(config: AppConfig) -> TranscriptionBackend:
    """Create a transcription backend based on configuration."""
    backend_name = config.vision.backend

    match backend_name:
        case "gemini":
            from .gemini import GeminiTranscriptionBackend

            return GeminiTranscriptionBackend(
                api_key=config.vision.gemini.api_key,
                model=config.vision.gemini.model,
                timeout=config.vision.timeout,
            )
        case "claude":
            from .claude import ClaudeTranscriptionBackend

            return ClaudeTranscriptionBackend(
                api_key=config.vision.claude.api_key,
                model=config.vision.claude.model,
                timeout=config.vision.timeout,
            )
        case _:
            raise ValueError(
                f"不明なVisionバックエンド: {backend_name!r}  "
                f"(gemini / claude から選択してください)"
            )
