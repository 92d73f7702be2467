"""Web-search prompt augmentation against a SearxNG-compatible backend."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from .errors import SearchAugmentationError
from .models import AppConfig

logger = logging.getLogger(__name__)

DEFAULT_ENGINE = "google"
NO_CONTENT = "No content available"


@dataclass(frozen=True)
class SearchResult:
    title: str
    url: str
    content: str


@dataclass(frozen=True)
class SearchOutcome:
    prompt: str
    augmented: bool = False
    attempted: bool = False
    error: str | None = None


def build_augmented_prompt(message: str, results: list[SearchResult]) -> str:
    search_info = "\n\n".join(
        f"Title: {r.title}\nURL: {r.url}\nContent: {r.content or NO_CONTENT}"
        for r in results
    )
    return (
        f'I want to answer the following question: "{message}"\n\n'
        f"Here is some relevant information from a web search:\n{search_info}\n\n"
        "Please use this information to provide a comprehensive answer."
    )


def _parse_results(data: Any) -> list[SearchResult]:
    if not isinstance(data, dict):
        raise SearchAugmentationError("search response is not a JSON object")
    raw = data.get("results")
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise SearchAugmentationError("search 'results' is not a list")
    results = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        results.append(
            SearchResult(
                title=str(item.get("title") or ""),
                url=str(item.get("url") or ""),
                content=str(item.get("content") or ""),
            )
        )
    return results


class SearchAugmenter:
    def __init__(
        self, client: httpx.AsyncClient, timeout_s: float = 10.0, result_limit: int = 3
    ):
        self.client = client
        self.timeout_s = timeout_s
        self.result_limit = result_limit

    async def search(self, query: str, domain: str, engine: str | None = None) -> list[SearchResult]:
        """Query ``{domain}/search``; raises :class:`SearchAugmentationError` on any failure."""
        url = f"{domain.strip().rstrip('/')}/search"
        params = {"q": query, "format": "json", "engines": engine or DEFAULT_ENGINE}
        try:
            resp = await self.client.get(url, params=params, timeout=self.timeout_s)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise SearchAugmentationError(f"Search error: {exc}") from exc
        if resp.status_code >= 400:
            raise SearchAugmentationError(
                f"Search error: HTTP {resp.status_code} from {url}"
            )
        try:
            data = resp.json()
        except ValueError as exc:
            raise SearchAugmentationError(f"Search error: malformed body ({exc})") from exc
        return _parse_results(data)

    async def augment(self, message: str, config: AppConfig) -> SearchOutcome:
        """Fold the top results into the prompt; every failure keeps the original message."""
        if not config.search_active:
            return SearchOutcome(prompt=message)
        try:
            results = await self.search(
                message, config.searxng_domain, config.searxng_engine
            )
        except SearchAugmentationError as exc:
            logger.warning("[search] %s; continuing without augmentation", exc)
            return SearchOutcome(prompt=message, attempted=True, error=str(exc))
        if not results:
            logger.info("[search] No results for query; using original message")
            return SearchOutcome(prompt=message, attempted=True)
        top = results[: self.result_limit]
        return SearchOutcome(
            prompt=build_augmented_prompt(message, top), augmented=True, attempted=True
        )
