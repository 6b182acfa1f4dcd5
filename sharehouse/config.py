"""TOML configuration loader for the sharehouse inventory service."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path

if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomli as tomllib
    except ImportError:
        tomllib = None  # type: ignore[assignment]

CHANNELS = ("kitchen", "bath", "consumable", "tool", "other")


@dataclass
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 5000
    upload_dir: str = "uploads"
    transcript_dir: str = "transcripts"


@dataclass
class GeminiVisionConfig:
    api_key: str = ""
    model: str = "gemini-2.5-pro"


@dataclass
class ClaudeVisionConfig:
    api_key: str = ""
    model: str = "claude-sonnet-4-5-20250929"


@dataclass
class VisionConfig:
    backend: str = "gemini"
    timeout: float = 60.0
    gemini: GeminiVisionConfig = field(default_factory=GeminiVisionConfig)
    claude: ClaudeVisionConfig = field(default_factory=ClaudeVisionConfig)


@dataclass
class RemoteStorageConfig:
    url: str = ""
    api_key: str = ""
    timeout: float = 10.0

    @property
    def configured(self) -> bool:
        return bool(self.url and self.api_key)


@dataclass
class StorageConfig:
    backend: str = "local"  # "local" | "remote"
    db_path: str = "~/.config/sharehouse/inventory.db"
    chat_limit: int = 300
    remote: RemoteStorageConfig = field(default_factory=RemoteStorageConfig)


@dataclass
class NotifyConfig:
    timeout: float = 5.0
    webhooks: dict[str, str] = field(default_factory=dict)


@dataclass
class AppConfig:
    server: ServerConfig = field(default_factory=ServerConfig)
    vision: VisionConfig = field(default_factory=VisionConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    notify: NotifyConfig = field(default_factory=NotifyConfig)


def load_config(path: str | Path | None = None) -> AppConfig:
    """Load configuration from a TOML file.

    Falls back to defaults if no path is given or the file doesn't exist.
    Secrets and webhook URLs can be supplied via environment variables;
    values in the file take precedence.
    """
    raw: dict = {}

    if path is not None:
        p = Path(path)
        if p.exists():
            if tomllib is None:
                raise ImportError(
                    "tomli is required on Python < 3.11: pip install tomli"
                )
            with open(p, "rb") as f:
                raw = tomllib.load(f)

    srv = raw.get("server", {})
    vis = raw.get("vision", {})
    sto = raw.get("storage", {})
    ntf = raw.get("notify", {})

    gemini_cfg = vis.get("gemini", {})
    claude_cfg = vis.get("claude", {})
    remote_cfg = sto.get("remote", {})

    # Resolve secrets: config file → environment variable
    gemini_api_key = (
        gemini_cfg.get("api_key", "")
        or os.environ.get("GOOGLE_API_KEY", "")
        or os.environ.get("GEMINI_API_KEY", "")
    )
    claude_api_key = claude_cfg.get("api_key", "") or os.environ.get(
        "ANTHROPIC_API_KEY", ""
    )
    remote_url = remote_cfg.get("url", "") or os.environ.get("SUPABASE_URL", "")
    remote_key = remote_cfg.get("api_key", "") or os.environ.get(
        "SUPABASE_ANON_KEY", ""
    )

    file_webhooks = ntf.get("webhooks", {})
    webhooks: dict[str, str] = {}
    for channel in CHANNELS:
        url = file_webhooks.get(channel, "") or os.environ.get(
            f"WEBHOOK_{channel.upper()}", ""
        )
        if url:
            webhooks[channel] = url

    return AppConfig(
        server=ServerConfig(
            host=srv.get("host", "127.0.0.1"),
            port=srv.get("port", 5000),
            upload_dir=srv.get("upload_dir", "uploads"),
            transcript_dir=srv.get("transcript_dir", "transcripts"),
        ),
        vision=VisionConfig(
            backend=vis.get("backend", "gemini"),
            timeout=vis.get("timeout", 60.0),
            gemini=GeminiVisionConfig(
                api_key=gemini_api_key,
                model=gemini_cfg.get("model", "gemini-2.5-pro"),
            ),
            claude=ClaudeVisionConfig(
                api_key=claude_api_key,
                model=claude_cfg.get("model", "claude-sonnet-4-5-20250929"),
            ),
        ),
        storage=StorageConfig(
            backend=sto.get("backend", "local"),
            db_path=sto.get("db_path", "~/.config/sharehouse/inventory.db"),
            chat_limit=sto.get("chat_limit", 300),
            remote=RemoteStorageConfig(
                url=remote_url,
                api_key=remote_key,
                timeout=remote_cfg.get("timeout", 10.0),
            ),
        ),
        notify=NotifyConfig(
            timeout=ntf.get("timeout", 5.0),
            webhooks=webhooks,
        ),
    )
