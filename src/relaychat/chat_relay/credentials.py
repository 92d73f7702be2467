from __future__ import annotations

import logging
from typing import Optional

from .errors import MissingCredentialError
from .models import Credential
from .settings_store import SettingsStore

logger = logging.getLogger(__name__)


def normalize_base_url(api_url: str) -> str:
    base = api_url.strip()
    if base.endswith("/"):
        base = base[:-1]
    return base


def completions_url(api_url: str) -> str:
    return f"{normalize_base_url(api_url)}/v1/chat/completions"


def models_url(api_url: str) -> str:
    return f"{normalize_base_url(api_url)}/v1/models"


def resolve_credential(
    store: SettingsStore,
    api_url: Optional[str] = None,
    api_key: Optional[str] = None,
) -> Credential:
    """Merge caller-supplied values over the stored credential.

    Both caller values present: they are persisted (overwrite-on-use) and
    used as-is. Otherwise the stored credential fills the missing field(s).
    Raises :class:`MissingCredentialError` when either field is still empty.
    """

    if api_url and api_key:
        store.set_credential(api_url, api_key)
        return Credential(api_url=api_url, api_key=api_key)

    stored = store.get_credential()
    merged = Credential(
        api_url=api_url or stored.api_url,
        api_key=api_key or stored.api_key,
    )
    if not merged.api_url or not merged.api_key:
        logger.info("[relay] No usable API URL/key after merging request and store")
        raise MissingCredentialError()
    return merged
