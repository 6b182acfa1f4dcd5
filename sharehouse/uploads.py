"""Image intake: store uploaded receipt/item photos on disk."""

from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path

from .errors import ValidationError

_FALLBACK_ID = "item_from_image"


@dataclass
class StoredImage:
    id: str
    filename: str
    path: str


class ImageIntake:
    """Write uploaded image bytes under ``upload_dir`` with a generated name."""

    def __init__(self, upload_dir: str | Path = "uploads") -> None:
        self._upload_dir = Path(upload_dir).expanduser()
        self._upload_dir.mkdir(parents=True, exist_ok=True)

    def save(self, data: bytes, original_name: str | None = None) -> StoredImage:
        """Store ``data`` as ``<epoch-millis>-<original basename>``.

        Raises:
            ValidationError: If ``data`` is empty.
        """
        if not data:
            raise ValidationError("画像データが空です")

        # Only the basename of the client-supplied name is kept
        base = Path(original_name or "").name or "image"
        filename = f"{int(time.time() * 1000)}-{base}"
        filepath = self._upload_dir / filename
        filepath.write_bytes(data)

        return StoredImage(
            id=Path(filename).stem or _FALLBACK_ID,
            filename=filename,
            path=str(filepath),
        )


def artifact_path(stored: StoredImage, transcript_dir: str | Path) -> Path:
    """Return the JSON artifact path for a stored image (stem, ``.json``)."""
    return Path(transcript_dir).expanduser() / f"{Path(stored.filename).stem}.json"
