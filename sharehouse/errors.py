"""Error taxonomy shared by the extractor, the stores and the lending flow."""

from __future__ import annotations

from typing import Any


class SharehouseError(Exception):
    """Base class for all domain errors.

    ``status_code`` and ``code`` describe how the HTTP layer reports the error.
    """

    status_code = 500
    code = "internal_error"


class ConfigError(SharehouseError):
    status_code = 400
    code = "config_error"


class MissingCredential(ConfigError):
    """Raised before any provider call when no API key is configured."""

    code = "missing credential"


class ProviderError(SharehouseError):
    """The vision provider call failed (network error or API error)."""

    status_code = 500
    code = "genai_failed"

    def __init__(
        self,
        message: str,
        *,
        provider_code: Any = None,
        response: dict | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.provider_code = provider_code
        self.response = response

    def detail(self) -> dict:
        return {
            "message": self.message,
            "code": self.provider_code,
            "response": self.response,
        }


class UnparsableOutput(SharehouseError):
    """The provider answered but the text holds no JSON object."""

    status_code = 502
    code = "genai_unparsable"

    def __init__(self, text: str, raw_response: Any = None) -> None:
        super().__init__("モデルの応答からJSONを抽出できませんでした")
        self.text = text
        self.raw_response = raw_response

    def detail(self) -> dict:
        return {"text": self.text, "rawResponse": self.raw_response}


class ValidationError(SharehouseError):
    status_code = 400
    code = "validation_error"


class InsufficientStock(ValidationError):
    status_code = 409
    code = "insufficient_stock"


class InvalidTransition(ValidationError):
    status_code = 409
    code = "invalid_transition"


class NotFound(SharehouseError):
    status_code = 404
    code = "not_found"


class StockConflict(SharehouseError):
    """The stock count changed between read and compare-and-swap write."""

    status_code = 409
    code = "stock_conflict"


class StoreError(SharehouseError):
    """A data store call failed."""

    status_code = 502
    code = "store_error"


class PartialFailureRollback(SharehouseError):
    """A later step failed after stock was mutated; the stock was restored."""

    status_code = 500
    code = "partial_failure_rollback"
