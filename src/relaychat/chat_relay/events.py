from __future__ import annotations

import json
from typing import Any

SEARCHING_STATUS = "Searching for information..."
SEARCH_DONE_STATUS = "Search complete. Generating response..."
SEARCH_FAILED_STATUS = "Error performing search. Continuing with standard response..."


def encode_event(**fields: Any) -> bytes:
    """Encode one client-facing ``data: {json}`` frame; ``None`` fields are dropped."""

    body = {key: value for key, value in fields.items() if value is not None}
    return f"data: {json.dumps(body, ensure_ascii=False)}\n\n".encode("utf-8")


def chunk_event(text: str) -> bytes:
    return encode_event(chunk=text, done=False)


def status_event(text: str) -> bytes:
    # Advisory progress; never carries a ``chunk`` key.
    return encode_event(status=text, done=False)


def error_event(message: str, chunk: str | None = None) -> bytes:
    return encode_event(chunk=chunk, error=message, done=True)


def done_event(tokens: int = 0, total_tokens: int | None = None) -> bytes:
    if tokens > 0:
        return encode_event(done=True, tokens=tokens, total_tokens=total_tokens)
    return encode_event(done=True)
