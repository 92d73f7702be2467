from __future__ import annotations

import logging
from typing import Any

import httpx

from .credentials import models_url
from .errors import err_no_models_found, err_upstream_failed
from .models import Credential

logger = logging.getLogger(__name__)


def _model_name(model: Any) -> str | None:
    if isinstance(model, str):
        return model
    if isinstance(model, dict):
        name = model.get("id") or model.get("name")
        return str(name) if name else None
    return None


def parse_models_response(data: Any) -> list[dict[str, str]]:
    """Map the shapes seen from OpenAI-compatible ``/v1/models`` endpoints."""

    models: list[dict[str, str]] = []
    if isinstance(data, dict) and isinstance(data.get("data"), list):
        for model in data["data"]:
            name = _model_name(model)
            if not name:
                continue
            info = model.get("info") if isinstance(model, dict) else None
            developer = info.get("developer") if isinstance(info, dict) else None
            models.append(
                {
                    "name": name,
                    "provider": developer or "Unknown",
                    "type": (model.get("type") if isinstance(model, dict) else None)
                    or "Unknown",
                }
            )
    elif isinstance(data, list) or (
        isinstance(data, dict) and isinstance(data.get("models"), list)
    ):
        raw = data if isinstance(data, list) else data["models"]
        for model in raw:
            name = _model_name(model)
            if not name:
                continue
            extra = model if isinstance(model, dict) else {}
            models.append(
                {
                    "name": name,
                    "provider": extra.get("provider") or "Unknown",
                    "type": extra.get("type") or "Unknown",
                }
            )
    return models


async def fetch_models(
    client: httpx.AsyncClient, credential: Credential, timeout_s: float
) -> list[dict[str, str]]:
    url = models_url(credential.api_url)
    headers = {
        "Authorization": f"Bearer {credential.api_key}",
        "Content-Type": "application/json",
    }
    try:
        resp = await client.get(url, headers=headers, timeout=timeout_s)
    except httpx.HTTPError as exc:
        logger.error("[models] Failed to fetch models from %s: %s", url, exc)
        raise err_upstream_failed(f"Failed to fetch models: {exc}") from exc
    if resp.status_code >= 400:
        raise err_upstream_failed(
            f"Failed to fetch models: HTTP {resp.status_code}", hint=resp.text[:200]
        )
    try:
        data = resp.json()
    except ValueError as exc:
        raise err_upstream_failed("Failed to fetch models: malformed body") from exc
    models = parse_models_response(data)
    if not models:
        raise err_no_models_found()
    return models
