"""Tests for sharehouse config loading."""

import os
import tempfile

import pytest

from sharehouse.config import AppConfig, load_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "GOOGLE_API_KEY",
        "GEMINI_API_KEY",
        "ANTHROPIC_API_KEY",
        "SUPABASE_URL",
        "SUPABASE_ANON_KEY",
        "WEBHOOK_KITCHEN",
        "WEBHOOK_BATH",
        "WEBHOOK_CONSUMABLE",
        "WEBHOOK_TOOL",
        "WEBHOOK_OTHER",
    ):
        monkeypatch.delenv(name, raising=False)


def _load_toml(content: bytes) -> AppConfig:
    with tempfile.NamedTemporaryFile(suffix=".toml", delete=False) as f:
        f.write(content)
        f.flush()
        config = load_config(f.name)
    os.unlink(f.name)
    return config


def test_load_config_defaults():
    """Loading with no path returns all defaults."""
    config = load_config()
    assert isinstance(config, AppConfig)
    assert config.server.port == 5000
    assert config.server.upload_dir == "uploads"
    assert config.server.transcript_dir == "transcripts"
    assert config.vision.backend == "gemini"
    assert config.vision.gemini.model == "gemini-2.5-pro"
    assert config.vision.gemini.api_key == ""
    assert config.vision.timeout == 60.0
    assert config.storage.backend == "local"
    assert config.storage.chat_limit == 300
    assert config.storage.remote.configured is False
    assert config.notify.webhooks == {}


def test_load_config_nonexistent_file():
    """Loading a nonexistent file returns defaults."""
    config = load_config("/nonexistent/path.toml")
    assert config.vision.backend == "gemini"


def test_load_config_from_toml():
    config = _load_toml(b"""\
[server]
port = 8080
upload_dir = "/var/sharehouse/uploads"

[vision]
backend = "claude"
timeout = 30.0

[vision.claude]
api_key = "test-key-123"
model = "claude-test"

[storage]
backend = "remote"
db_path = "/tmp/inv.db"

[storage.remote]
url = "https://example.supabase.co"
api_key = "anon"

[notify.webhooks]
kitchen = "https://hooks.example/kitchen"
""")
    assert config.server.port == 8080
    assert config.server.upload_dir == "/var/sharehouse/uploads"
    assert config.vision.backend == "claude"
    assert config.vision.timeout == 30.0
    assert config.vision.claude.api_key == "test-key-123"
    assert config.vision.claude.model == "claude-test"
    assert config.storage.backend == "remote"
    assert config.storage.db_path == "/tmp/inv.db"
    assert config.storage.remote.configured is True
    assert config.notify.webhooks == {"kitchen": "https://hooks.example/kitchen"}


def test_load_config_env_fallback(monkeypatch):
    """Environment variables fill in empty secrets."""
    monkeypatch.setenv("GOOGLE_API_KEY", "env-google-key")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "env-anthropic-key")
    monkeypatch.setenv("SUPABASE_URL", "https://env.supabase.co")
    monkeypatch.setenv("SUPABASE_ANON_KEY", "env-anon")
    monkeypatch.setenv("WEBHOOK_BATH", "https://hooks.example/bath")

    config = load_config()
    assert config.vision.gemini.api_key == "env-google-key"
    assert config.vision.claude.api_key == "env-anthropic-key"
    assert config.storage.remote.url == "https://env.supabase.co"
    assert config.storage.remote.api_key == "env-anon"
    assert config.notify.webhooks == {"bath": "https://hooks.example/bath"}


def test_gemini_api_key_alias(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "env-gemini-key")
    config = load_config()
    assert config.vision.gemini.api_key == "env-gemini-key"


def test_load_config_file_key_takes_precedence(monkeypatch):
    """Config file API key takes precedence over env var."""
    monkeypatch.setenv("GOOGLE_API_KEY", "env-key")
    config = _load_toml(b"""\
[vision.gemini]
api_key = "file-key"
""")
    assert config.vision.gemini.api_key == "file-key"


def test_load_config_partial_toml():
    """Partial TOML uses defaults for missing sections."""
    config = _load_toml(b"""\
[server]
port = 9000
""")
    assert config.server.port == 9000
    assert config.vision.backend == "gemini"
    assert config.storage.backend == "local"
    assert config.notify.timeout == 5.0
