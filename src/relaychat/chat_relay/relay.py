from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from .config import RelayConfig
from .conversation_store import ConversationStore
from .credentials import completions_url, resolve_credential
from .decoder import ChunkDecoder
from .errors import MissingCredentialError, UpstreamConnectError, UpstreamStreamError
from .events import (
    SEARCH_DONE_STATUS,
    SEARCH_FAILED_STATUS,
    SEARCHING_STATUS,
    chunk_event,
    done_event,
    error_event,
    status_event,
)
from .logging_utils import JsonlLogger
from .models import ChatStreamRequest
from .search import SearchAugmenter
from .settings_store import SettingsStore

logger = logging.getLogger(__name__)

DEEP_THINKING_PROMPT = (
    "You are a thoughtful assistant that carefully analyzes questions before "
    "answering. Take your time to think step by step and consider different "
    "perspectives before providing a comprehensive response."
)


def build_messages(prompt: str, deep_thinking: bool) -> List[Dict[str, str]]:
    messages = [{"role": "user", "content": prompt}]
    if deep_thinking:
        messages.insert(0, {"role": "system", "content": DEEP_THINKING_PROMPT})
    return messages


def echo_response(message: str, model: str) -> str:
    return f"Echo (API Error): {message} (using model '{model}')"


@dataclass
class RelayRecord:
    """One line of the per-request JSONL log."""

    ts: str
    model: str
    session_id: Optional[str]
    outcome: str = "pending"
    search_attempted: bool = False
    augmented: bool = False
    chunks: int = 0
    tokens: int = 0
    duration_ms: float = 0.0
    error: Optional[str] = None


class CompletionRelay:
    def __init__(
        self,
        cfg: RelayConfig,
        settings: SettingsStore,
        conversations: ConversationStore,
        client: httpx.AsyncClient,
        search: SearchAugmenter | None = None,
        request_log: JsonlLogger | None = None,
    ):
        self.cfg = cfg
        self.settings = settings
        self.conversations = conversations
        self.client = client
        self.search = search or SearchAugmenter(
            client,
            timeout_s=cfg.search_timeout_ms / 1000,
            result_limit=cfg.search_result_limit,
        )
        self.request_log = request_log

    @property
    def upstream_timeout(self) -> httpx.Timeout:
        return httpx.Timeout(self.cfg.upstream_timeout_ms / 1000)

    def build_payload(self, model: str, messages: List[Dict[str, str]]) -> Dict[str, Any]:
        return {
            "model": model,
            "messages": messages,
            "temperature": self.cfg.temperature,
            "max_tokens": self.cfg.max_tokens,
            "stream": True,
        }

    async def stream(self, request: ChatStreamRequest) -> AsyncIterator[bytes]:
        """Relay one chat request, yielding encoded event frames ending in ``done: true``."""
        started_at = time.time()
        record = RelayRecord(
            ts=time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime(started_at)),
            model=request.model,
            session_id=request.session_id,
        )
        frames = self._relay(request, record)
        try:
            async for frame in frames:
                yield frame
        except Exception as exc:  # noqa: BLE001
            logger.exception("[relay] Unexpected failure in chat handler")
            record.outcome = "server_error"
            record.error = str(exc)
            yield error_event(f"Server Error: {exc}")
        finally:
            await frames.aclose()
            record.duration_ms = (time.time() - started_at) * 1000
            if self.request_log is not None:
                self.request_log.log(asdict(record))

    async def _relay(
        self, request: ChatStreamRequest, record: RelayRecord
    ) -> AsyncIterator[bytes]:
        config = await asyncio.to_thread(self.settings.get_config)

        try:
            credential = await asyncio.to_thread(
                resolve_credential, self.settings, request.api_url, request.api_key
            )
        except MissingCredentialError as exc:
            record.outcome = "missing_credential"
            record.error = str(exc)
            yield error_event(str(exc))
            return

        session_id = request.session_id
        if session_id:
            await asyncio.to_thread(
                self.conversations.save_message, session_id, "User", request.message, 0
            )

        prompt = request.message
        if config.search_active:
            yield status_event(SEARCHING_STATUS)
            outcome = await self.search.augment(request.message, config)
            prompt = outcome.prompt
            record.search_attempted = outcome.attempted
            record.augmented = outcome.augmented
            if outcome.augmented:
                yield status_event(SEARCH_DONE_STATUS)
            elif outcome.error:
                yield status_event(SEARCH_FAILED_STATUS)

        messages = build_messages(prompt, config.deep_thinking)
        payload = self.build_payload(request.model, messages)
        url = completions_url(credential.api_url)
        headers = {
            "Authorization": f"Bearer {credential.api_key}",
            "Content-Type": "application/json",
        }
        if self.cfg.log_prompts:
            logger.info("[relay] POST %s model=%s prompt=%r", url, request.model, prompt)
        else:
            logger.info("[relay] POST %s model=%s", url, request.model)

        decoder = ChunkDecoder()
        accumulated: List[str] = []
        persisted = False
        upstream = self._stream_upstream(url, payload, headers, decoder)
        try:
            try:
                async for fragment in upstream:
                    accumulated.append(fragment)
                    record.chunks += 1
                    yield chunk_event(fragment)
            except UpstreamConnectError as exc:
                record.outcome = "echo"
                record.error = str(exc)
                logger.error("[relay] Error calling external API: %s", exc)
                if not self.cfg.echo_fallback:
                    yield error_event(f"API Error: {exc}")
                    return
                echo = echo_response(request.message, request.model)
                if session_id:
                    await asyncio.to_thread(
                        self.conversations.save_message, session_id, "Bot", echo, 0
                    )
                persisted = True
                yield error_event(f"API Error: {exc}", chunk=echo)
                return
            except UpstreamStreamError as exc:
                record.outcome = "stream_error"
                record.error = str(exc)
                logger.error("[relay] Stream error: %s", exc)
                yield error_event(f"Stream error: {exc}")
                return

            usage = decoder.close()
            tokens = usage.total_tokens if usage else 0
            full_response = "".join(accumulated)
            total: int | None = None
            if session_id and full_response:
                await asyncio.to_thread(
                    self.conversations.save_message,
                    session_id,
                    "Bot",
                    full_response,
                    tokens,
                )
                if tokens > 0:
                    total = await asyncio.to_thread(
                        self.conversations.add_token_usage, tokens
                    )
            persisted = True
            record.outcome = "ok"
            record.tokens = tokens
            yield done_event(tokens, total)
        except (GeneratorExit, asyncio.CancelledError):
            # Client went away: stop forwarding, keep what was generated.
            record.outcome = "client_disconnected"
            if session_id and accumulated and not persisted:
                try:
                    await asyncio.to_thread(
                        self.conversations.save_message,
                        session_id,
                        "Bot",
                        "".join(accumulated),
                        0,
                    )
                except Exception:  # noqa: BLE001
                    logger.exception("[relay] Failed to persist partial response")
            raise
        finally:
            await upstream.aclose()

    async def _stream_upstream(
        self,
        url: str,
        payload: Dict[str, Any],
        headers: Dict[str, str],
        decoder: ChunkDecoder,
    ) -> AsyncIterator[str]:
        """Yield content fragments from the upstream stream.

        Failures before the first byte raise :class:`UpstreamConnectError`,
        later ones :class:`UpstreamStreamError`.
        """
        received = False
        try:
            async with self.client.stream(
                "POST", url, json=payload, headers=headers, timeout=self.upstream_timeout
            ) as resp:
                if not resp.is_success:
                    body = await resp.aread()
                    logger.warning(
                        "[relay] Upstream returned %s: %s",
                        resp.status_code,
                        body.decode(errors="ignore")[:200],
                    )
                    raise UpstreamConnectError(
                        f"Request failed with status code {resp.status_code}",
                        status_code=resp.status_code,
                    )
                async for raw in resp.aiter_bytes():
                    if not raw:
                        continue
                    received = True
                    for fragment in decoder.feed(raw):
                        yield fragment
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            message = str(exc) or exc.__class__.__name__
            if received:
                raise UpstreamStreamError(message) from exc
            raise UpstreamConnectError(message) from exc
