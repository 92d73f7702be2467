import asyncio
import importlib
import os
import sys

import httpx
import pytest

from relaychat.chat_relay.config import RelayConfig
from relaychat.chat_relay.conversation_store import ConversationStore
from relaychat.chat_relay.crypto import SecretBox
from relaychat.chat_relay.db import Database
from relaychat.chat_relay.relay import CompletionRelay
from relaychat.chat_relay.settings_store import SettingsStore

from relay_helpers import FakeUpstream


@pytest.fixture
def upstream(monkeypatch):
    fake = FakeUpstream()

    def fake_stream(self, method, url, json=None, headers=None, timeout=None):  # noqa: A002
        return fake.stream(method, url, json=json, headers=headers, timeout=timeout)

    monkeypatch.setattr(httpx.AsyncClient, "stream", fake_stream)
    return fake


@pytest.fixture
def stores(tmp_path):
    db = Database(str(tmp_path / "chat.db"))
    settings = SettingsStore(db, SecretBox("test-secret"))
    conversations = ConversationStore(db)
    yield settings, conversations
    db.close()


@pytest.fixture
def relay(stores):
    settings, conversations = stores
    client = httpx.AsyncClient()
    relay = CompletionRelay(RelayConfig(), settings, conversations, client)
    yield relay
    asyncio.run(client.aclose())


@pytest.fixture
def relay_app(tmp_path, monkeypatch):
    """Load the app module against an isolated config file and database."""
    for key in list(os.environ.keys()):
        if key.startswith("RELAYCHAT_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("RELAYCHAT_CONFIG_FILE", str(tmp_path / "relaychat.toml"))
    monkeypatch.setenv("RELAYCHAT_DB_PATH", str(tmp_path / "chat_app.db"))
    monkeypatch.setenv("RELAYCHAT_LOG_PATH", str(tmp_path / "logs" / "relay.jsonl"))

    name = "relaychat.chat_relay.app"
    if name in sys.modules:
        app_module = importlib.reload(sys.modules[name])
    else:
        app_module = importlib.import_module(name)
    yield app_module
    app_module._db.close()
