from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict
from typing import Any, Optional

import httpx
from fastapi import Body, FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse, StreamingResponse

from .catalog import fetch_models
from .config import RelayConfig
from .config_loader import list_env_overrides, load_file_config, update_config_file
from .conversation_store import ConversationStore
from .crypto import SecretBox
from .db import Database
from .errors import (
    ApiError,
    err_invalid_action,
    err_missing_credential,
    err_missing_fields,
    err_session_not_found,
)
from .logging_utils import JsonlLogger
from .models import (
    DEFAULT_MODELS,
    ApiSettingsRequest,
    AppConfigUpdate,
    ChatHistoryAction,
    ChatStreamRequest,
    DeleteSessionRequest,
)
from .relay import CompletionRelay
from .settings_store import SettingsStore

logger = logging.getLogger(__name__)


_cfg = RelayConfig.load()
_db = Database(_cfg.db_path)
_settings = SettingsStore(_db, SecretBox(_cfg.encryption_secret))
_conversations = ConversationStore(_db)
_client = httpx.AsyncClient(timeout=_cfg.upstream_timeout_ms / 1000)
_request_log = JsonlLogger(_cfg.log_path, _cfg.max_log_bytes)
_relay = CompletionRelay(
    _cfg,
    _settings,
    _conversations,
    _client,
    request_log=_request_log,
)

CONFIG_PRECEDENCE = [
    "Environment variables (RELAYCHAT_*)",
    "Config file (configs/relaychat.toml)",
    "Built-in defaults",
]

STREAM_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive"}

app = FastAPI(title="relaychat", version="0.1")


@app.exception_handler(ApiError)
async def _api_error_handler(_request, exc: ApiError):
    return JSONResponse(status_code=exc.status_code, content=exc.detail)


@app.post("/api/chat-stream")
async def chat_stream(payload: ChatStreamRequest):
    return StreamingResponse(
        _relay.stream(payload),
        media_type="text/event-stream",
        headers=STREAM_HEADERS,
    )


@app.get("/api/chat-history")
async def read_chat_history(session_id: Optional[str] = Query(None, alias="sessionId")):
    if session_id:
        messages = await asyncio.to_thread(_conversations.get_messages, session_id)
        return {"messages": [m.to_dict() for m in messages]}
    sessions = await asyncio.to_thread(_conversations.list_sessions)
    return {"sessions": sessions}


@app.post("/api/chat-history")
async def update_chat_history(payload: ChatHistoryAction):
    if payload.action == "create_session":
        session_id = await asyncio.to_thread(_conversations.create_session)
        return {"sessionId": session_id}
    if payload.action == "add_message":
        if not payload.session_id or not payload.sender or not payload.message:
            raise err_missing_fields("sessionId", "sender", "message")
        try:
            await asyncio.to_thread(
                _conversations.save_message,
                payload.session_id,
                payload.sender,
                payload.message,
            )
        except ValueError as exc:
            raise ApiError(400, "invalid_message", str(exc)) from exc
        return {"success": True}
    raise err_invalid_action(payload.action)


@app.delete("/api/chat-history")
async def delete_chat_history(payload: DeleteSessionRequest):
    if not payload.session_id:
        raise err_missing_fields("sessionId")
    deleted = await asyncio.to_thread(_conversations.delete_session, payload.session_id)
    if not deleted:
        raise err_session_not_found(payload.session_id)
    return {"success": True}


@app.get("/api/token-usage")
async def token_usage():
    total = await asyncio.to_thread(_conversations.get_total_token_usage)
    return {"total_tokens": total}


@app.get("/api/config")
async def read_app_config():
    config = await asyncio.to_thread(_settings.get_config)
    return asdict(config)


@app.post("/api/config")
async def update_app_config(payload: AppConfigUpdate):
    updates = payload.model_dump(exclude_none=True)
    config = await asyncio.to_thread(_settings.set_config, updates)
    return asdict(config)


@app.get("/api/api-settings")
async def read_api_settings():
    credential = await asyncio.to_thread(_settings.get_credential)
    return {"api_url": credential.api_url, "api_key": credential.api_key}


@app.post("/api/api-settings")
async def update_api_settings(payload: ApiSettingsRequest):
    if not payload.api_url or not payload.api_key:
        raise err_missing_credential()
    credential = await asyncio.to_thread(
        _settings.set_credential, payload.api_url, payload.api_key
    )
    return {"api_url": credential.api_url, "api_key": "********"}


@app.get("/api/models")
async def list_models_api():
    models = await asyncio.to_thread(_settings.get_models)
    return {"models": models or DEFAULT_MODELS}


@app.post("/api/models-refresh")
async def refresh_models():
    credential = await asyncio.to_thread(_settings.get_credential)
    if not credential.api_url or not credential.api_key:
        raise err_missing_credential()
    models = await fetch_models(_client, credential, _cfg.upstream_timeout_ms / 1000)
    saved = await asyncio.to_thread(_settings.save_models, models)
    return {"models": saved}


@app.get("/api/config/relay")
async def read_relay_config():
    runtime = asdict(RelayConfig.load())
    config_path = runtime.pop("config_file_path", None)
    return JSONResponse(
        content={
            "runtime": runtime,
            "file": load_file_config(),
            "config_file_path": config_path,
            "env_overrides": list_env_overrides(),
            "precedence": CONFIG_PRECEDENCE,
        }
    )


@app.put("/api/config/relay")
async def update_relay_config(payload: dict[str, Any] = Body(...)):
    if not isinstance(payload, dict) or not payload:
        raise HTTPException(
            status_code=400, detail="Request body must be a non-empty object."
        )
    try:
        updated = update_config_file(payload)
    except KeyError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except OSError as exc:
        logger.exception("[app] Failed to update relay config.")
        raise HTTPException(
            status_code=500, detail="Failed to update configuration."
        ) from exc

    runtime = asdict(updated)
    config_path = runtime.pop("config_file_path", None)
    return JSONResponse(
        content={
            "status": "written",
            "runtime": runtime,
            "file": load_file_config(),
            "config_file_path": config_path,
            "env_overrides": list_env_overrides(),
            "precedence": CONFIG_PRECEDENCE,
            "requires_restart": True,
            "message": "Config file updated. Restart the relay to apply changes.",
        }
    )


@app.get("/api/health")
async def health():
    return {"status": "ok"}


@app.on_event("shutdown")
async def _shutdown():  # pragma: no cover
    await _client.aclose()
    _db.close()


def main():  # pragma: no cover
    import uvicorn

    from ..logging_utils import configure_logging

    configure_logging("chat_relay")
    uvicorn.run(app, host=_cfg.host, port=_cfg.port)


if __name__ == "__main__":  # pragma: no cover
    main()
