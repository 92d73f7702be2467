from __future__ import annotations

import logging
from typing import Any, Iterable

from .crypto import SecretBox
from .db import Database
from .models import AppConfig, Credential

logger = logging.getLogger(__name__)

_BOOL_KEYS = ("searxng_enabled", "deep_thinking")
_STR_KEYS = ("searxng_domain", "searxng_engine", "selected_model")


def _to_text(key: str, value: Any) -> str:
    if key in _BOOL_KEYS:
        if isinstance(value, str):
            return "true" if value.lower() in {"1", "true", "yes", "on"} else "false"
        return "true" if value else "false"
    return "" if value is None else str(value)


class SettingsStore:
    """Key-value app config, the encrypted credential and the models table."""

    def __init__(self, db: Database, secret_box: SecretBox):
        self._db = db
        self._box = secret_box

    def get_config(self) -> AppConfig:
        rows = self._db.fetchall("SELECT key, value FROM config")
        values: dict[str, Any] = {}
        for row in rows:
            key, value = row["key"], row["value"]
            if key in _BOOL_KEYS:
                values[key] = value == "true"
            elif key in _STR_KEYS:
                values[key] = value
        if not values.get("searxng_engine"):
            values.pop("searxng_engine", None)
        return AppConfig(**values)

    def set_config(self, updates: dict[str, Any]) -> AppConfig:
        known = {k: v for k, v in updates.items() if k in _BOOL_KEYS + _STR_KEYS}
        unknown = sorted(set(updates) - set(known))
        if unknown:
            raise KeyError(f"Unknown config key(s): {', '.join(unknown)}")
        with self._db.transaction() as conn:
            for key, value in known.items():
                if value is None:
                    continue
                conn.execute(
                    "INSERT OR REPLACE INTO config (key, value) VALUES (?, ?)",
                    (key, _to_text(key, value)),
                )
        return self.get_config()

    def get_credential(self) -> Credential:
        row = self._db.fetchone(
            "SELECT api_url, api_key FROM api_settings ORDER BY id DESC LIMIT 1"
        )
        if row is None:
            return Credential()
        try:
            api_key = self._box.decrypt(row["api_key"] or "")
        except ValueError:
            logger.warning("[settings] Stored API key unreadable; treating as absent")
            api_key = ""
        return Credential(api_url=row["api_url"] or "", api_key=api_key)

    def set_credential(self, api_url: str, api_key: str) -> Credential:
        with self._db.transaction() as conn:
            conn.execute(
                "INSERT INTO api_settings (api_url, api_key, updated_at) "
                "VALUES (?, ?, CURRENT_TIMESTAMP)",
                (api_url, self._box.encrypt(api_key)),
            )
        return self.get_credential()

    def get_models(self) -> list[dict[str, str]]:
        rows = self._db.fetchall("SELECT name, provider, type FROM models ORDER BY id")
        return [dict(row) for row in rows]

    def save_models(self, models: Iterable[dict[str, str]]) -> list[dict[str, str]]:
        with self._db.transaction() as conn:
            conn.execute("DELETE FROM models")
            conn.executemany(
                "INSERT INTO models (name, provider, type) VALUES (?, ?, ?)",
                [
                    (
                        m["name"],
                        m.get("provider") or "Unknown",
                        m.get("type") or "Unknown",
                    )
                    for m in models
                ],
            )
        return self.get_models()
