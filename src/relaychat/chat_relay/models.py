from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ChatStreamRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    message: str
    api_url: Optional[str] = None
    api_key: Optional[str] = None
    model: str
    session_id: Optional[str] = Field(None, alias="sessionId")


class ChatHistoryAction(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    action: str
    session_id: Optional[str] = Field(None, alias="sessionId")
    sender: Optional[str] = None
    message: Optional[str] = None


class DeleteSessionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: Optional[str] = Field(None, alias="sessionId")


class ApiSettingsRequest(BaseModel):
    api_url: Optional[str] = None
    api_key: Optional[str] = None


class AppConfigUpdate(BaseModel):
    searxng_enabled: Optional[bool] = None
    searxng_domain: Optional[str] = None
    searxng_engine: Optional[str] = None
    deep_thinking: Optional[bool] = None
    selected_model: Optional[str] = None


@dataclass(frozen=True)
class AppConfig:
    """Snapshot of the user-facing settings taken at the start of a relay."""

    searxng_enabled: bool = False
    searxng_domain: str = ""
    searxng_engine: str = "google"
    deep_thinking: bool = False
    selected_model: str = ""

    @property
    def search_active(self) -> bool:
        return self.searxng_enabled and bool(self.searxng_domain.strip())


@dataclass(frozen=True)
class Credential:
    api_url: str = ""
    api_key: str = ""


@dataclass(frozen=True)
class StoredMessage:
    id: int
    session_id: str
    sender: str
    message: str
    tokens_used: int
    timestamp: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "sender": self.sender,
            "message": self.message,
            "tokens_used": self.tokens_used,
            "timestamp": self.timestamp,
        }


DEFAULT_MODELS: List[Dict[str, str]] = [
    {"name": "gpt-3.5", "provider": "openai", "type": "chat-completion"},
    {"name": "gpt-4", "provider": "openai", "type": "chat-completion"},
    {"name": "custom-model", "provider": "custom", "type": "chat-completion"},
]
