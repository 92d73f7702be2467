from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass
class RelayConfig:
    host: str = "127.0.0.1"
    port: int = 8200
    db_path: str = "data/chat_app.db"
    encryption_secret: str = "relaychat-local-secret"
    log_path: str = "logs/chat_relay.jsonl"
    max_log_bytes: int = 25_000_000
    log_prompts: bool = False
    upstream_timeout_ms: int = 120_000
    search_timeout_ms: int = 10_000
    temperature: float = 0.7
    max_tokens: int = 1000
    search_result_limit: int = 3
    # Upstream connect failures answer with an echo transcript instead of a bare error
    echo_fallback: bool = True
    config_file_path: Optional[str] = None

    @classmethod
    def load(cls) -> "RelayConfig":
        from .config_loader import load_relay_config

        return load_relay_config()
