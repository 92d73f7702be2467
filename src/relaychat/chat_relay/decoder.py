"""Incremental decoder for SSE-style ``data: {json}`` completion streams.

The upstream delivers bytes in arbitrary pieces. Frames are separated by a
blank line and carry a ``data: `` prefix; ``data: [DONE]`` marks the end of
generation but the decode loop itself only ends with the transport.

Each :meth:`ChunkDecoder.feed` call appends to a text buffer, splits it on
the separator, keeps the trailing element as the new buffer and processes
the rest. A frame whose JSON does not parse is pushed back onto the front
of the buffer with its separator and retried on every later read.
"""

from __future__ import annotations

import codecs
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .errors import MalformedFrameError

logger = logging.getLogger(__name__)

FRAME_SEPARATOR = "\n\n"
DATA_PREFIX = "data: "
DONE_MARKER = "data: [DONE]"


class DecoderState(str, Enum):
    ACCUMULATING = "accumulating"
    CLOSED = "closed"


@dataclass
class StreamUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


def _as_int(value: Any) -> int:
    try:
        return max(0, int(value or 0))
    except (TypeError, ValueError):
        return 0


def extract_content(payload: Any) -> str | None:
    """Return ``choices[0].delta.content`` when it is a non-empty string."""

    if not isinstance(payload, dict):
        return None
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    delta = (choices[0] or {}).get("delta") if isinstance(choices[0], dict) else None
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    if not isinstance(content, str) or not content:
        return None
    return content


def extract_usage(payload: Any) -> StreamUsage | None:
    if not isinstance(payload, dict):
        return None
    usage = payload.get("usage")
    if not isinstance(usage, dict):
        return None
    prompt = _as_int(usage.get("prompt_tokens"))
    completion = _as_int(usage.get("completion_tokens"))
    total = _as_int(usage.get("total_tokens")) or prompt + completion
    return StreamUsage(prompt, completion, total)


def parse_frame(frame: str) -> Any:
    """Parse the JSON payload of one data frame.

    Raises :class:`MalformedFrameError` when the payload is not valid JSON.
    """

    try:
        return json.loads(frame[len(DATA_PREFIX) :])
    except json.JSONDecodeError as exc:
        raise MalformedFrameError(str(exc)) from exc


class ChunkDecoder:
    def __init__(self) -> None:
        self.buffer = ""
        self.state = DecoderState.ACCUMULATING
        self.usage: StreamUsage | None = None
        self._text_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def feed(self, data: bytes | str) -> list[str]:
        """Consume one network read and return the content fragments it completes."""

        if self.state is DecoderState.CLOSED:
            raise RuntimeError("decoder is closed")
        if isinstance(data, bytes):
            data = self._text_decoder.decode(data)
        self.buffer += data

        *frames, remainder = self.buffer.split(FRAME_SEPARATOR)
        retry: list[str] = []
        fragments: list[str] = []
        for frame in frames:
            if not frame.startswith(DATA_PREFIX) or frame == DONE_MARKER:
                continue
            if not frame[len(DATA_PREFIX) :].strip():
                continue
            try:
                payload = parse_frame(frame)
            except MalformedFrameError:
                logger.debug("[decoder] Incomplete JSON detected, waiting for more data")
                retry.append(frame)
                continue
            usage = extract_usage(payload)
            if usage is not None:
                self.usage = usage
            content = extract_content(payload)
            if content:
                fragments.append(content)
        # Unparseable frames go back in front of the partial tail, in order.
        self.buffer = FRAME_SEPARATOR.join(retry + [remainder])
        return fragments

    def close(self) -> StreamUsage | None:
        """Flush the text decoder and mark the stream finished."""

        if self.state is DecoderState.ACCUMULATING:
            tail = self._text_decoder.decode(b"", final=True)
            self.buffer += tail
            if self.buffer.strip():
                logger.debug(
                    "[decoder] Discarding %d unterminated trailing characters",
                    len(self.buffer),
                )
            self.state = DecoderState.CLOSED
        return self.usage
