import threading

import pytest

from relaychat.chat_relay.crypto import SecretBox
from relaychat.chat_relay.db import Database
from relaychat.chat_relay.models import AppConfig
from relaychat.chat_relay.settings_store import SettingsStore


def test_config_defaults_and_round_trip(stores):
    settings, _ = stores
    assert settings.get_config() == AppConfig()
    assert settings.get_config().searxng_engine == "google"

    updated = settings.set_config(
        {"searxng_enabled": True, "searxng_domain": "http://searx", "deep_thinking": "true"}
    )
    assert updated.searxng_enabled is True
    assert updated.deep_thinking is True
    assert updated.searxng_domain == "http://searx"


def test_config_rejects_unknown_keys(stores):
    settings, _ = stores
    with pytest.raises(KeyError):
        settings.set_config({"bogus": 1})


def test_config_snapshot_is_not_live(stores):
    settings, _ = stores
    snapshot = settings.get_config()
    settings.set_config({"deep_thinking": True})
    assert snapshot.deep_thinking is False


def test_credential_is_encrypted_at_rest(tmp_path):
    db = Database(str(tmp_path / "c.db"))
    settings = SettingsStore(db, SecretBox("one"))
    settings.set_credential("http://api", "sk-secret")

    raw = db.fetchone("SELECT api_key FROM api_settings ORDER BY id DESC LIMIT 1")
    assert raw["api_key"] != "sk-secret"
    assert settings.get_credential().api_key == "sk-secret"

    # A different secret cannot read the key and reports it as absent
    other = SettingsStore(db, SecretBox("two"))
    assert other.get_credential().api_key == ""
    assert other.get_credential().api_url == "http://api"
    db.close()


def test_latest_credential_wins(stores):
    settings, _ = stores
    settings.set_credential("http://a", "1")
    settings.set_credential("http://b", "2")
    cred = settings.get_credential()
    assert (cred.api_url, cred.api_key) == ("http://b", "2")


def test_models_replace_on_save(stores):
    settings, _ = stores
    assert settings.get_models() == []
    settings.save_models([{"name": "a", "provider": "x"}])
    saved = settings.save_models([{"name": "b"}, {"name": "c", "type": "chat"}])
    assert saved == [
        {"name": "b", "provider": "Unknown", "type": "Unknown"},
        {"name": "c", "provider": "Unknown", "type": "chat"},
    ]


def test_session_lifecycle_and_cascade(stores):
    _, conversations = stores
    sid = conversations.create_session()
    conversations.save_message(sid, "User", "hi")
    conversations.save_message(sid, "Bot", "hello", tokens=3)

    messages = conversations.get_messages(sid)
    assert [(m.sender, m.message, m.tokens_used) for m in messages] == [
        ("User", "hi", 0),
        ("Bot", "hello", 3),
    ]
    sessions = conversations.list_sessions()
    assert sessions[0]["id"] == sid
    assert sessions[0]["message_count"] == 2

    assert conversations.delete_session(sid) is True
    assert conversations.get_messages(sid) == []
    assert conversations.session_exists(sid) is False
    assert conversations.delete_session(sid) is False


def test_save_message_creates_unknown_session(stores):
    _, conversations = stores
    conversations.save_message("client-made-id", "User", "x")
    assert conversations.session_exists("client-made-id")


def test_save_message_validates_sender_and_tokens(stores):
    _, conversations = stores
    with pytest.raises(ValueError):
        conversations.save_message("s", "System", "x")
    with pytest.raises(ValueError):
        conversations.save_message("s", "Bot", "x", tokens=-1)


def test_token_counter_increments_atomically_across_threads(stores):
    _, conversations = stores
    threads = [
        threading.Thread(target=conversations.add_token_usage, args=(5,))
        for _ in range(20)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert conversations.get_total_token_usage() == 100
    assert conversations.add_token_usage(0) == 100
