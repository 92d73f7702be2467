import asyncio

import httpx

from relaychat.chat_relay.models import AppConfig, ChatStreamRequest
from relaychat.chat_relay.search import SearchAugmenter, build_augmented_prompt, SearchResult

from relay_helpers import collect, delta, sse


class FakeSearchResp:
    def __init__(self, status_code=200, payload=None, bad_json=False):
        self.status_code = status_code
        self._payload = payload
        self._bad_json = bad_json

    def json(self):
        if self._bad_json:
            raise ValueError("Expecting value")
        return self._payload


def _patch_get(monkeypatch, response=None, error=None):
    captured = {}

    async def fake_get(self, url, params=None, headers=None, timeout=None):
        captured["url"] = url
        captured["params"] = params
        if error is not None:
            raise error
        return response

    monkeypatch.setattr(httpx.AsyncClient, "get", fake_get)
    return captured


RESULTS = {
    "results": [
        {"title": "One", "url": "https://one.example", "content": "first"},
        {"title": "Two", "url": "https://two.example", "content": ""},
        {"title": "Three", "url": "https://three.example", "content": "third"},
        {"title": "Four", "url": "https://four.example", "content": "fourth"},
    ]
}

ENABLED = AppConfig(searxng_enabled=True, searxng_domain="http://searx.local")


def _augment(message, config):
    async def run():
        async with httpx.AsyncClient() as client:
            return await SearchAugmenter(client).augment(message, config)

    return asyncio.run(run())


def test_augmented_prompt_layout():
    prompt = build_augmented_prompt(
        "Q?",
        [SearchResult("T1", "U1", "C1"), SearchResult("T2", "U2", "")],
    )
    assert prompt == (
        'I want to answer the following question: "Q?"\n\n'
        "Here is some relevant information from a web search:\n"
        "Title: T1\nURL: U1\nContent: C1\n\n"
        "Title: T2\nURL: U2\nContent: No content available\n\n"
        "Please use this information to provide a comprehensive answer."
    )


def test_top_three_results_are_used(monkeypatch):
    captured = _patch_get(monkeypatch, FakeSearchResp(payload=RESULTS))

    outcome = _augment("Who?", ENABLED)

    assert outcome.augmented is True
    assert captured["url"] == "http://searx.local/search"
    assert captured["params"] == {"q": "Who?", "format": "json", "engines": "google"}
    assert "Title: Three" in outcome.prompt
    assert "Title: Four" not in outcome.prompt
    assert "Content: No content available" in outcome.prompt


def test_configured_engine_is_passed(monkeypatch):
    captured = _patch_get(monkeypatch, FakeSearchResp(payload=RESULTS))
    config = AppConfig(
        searxng_enabled=True, searxng_domain="http://searx.local", searxng_engine="duckduckgo"
    )
    _augment("x", config)
    assert captured["params"]["engines"] == "duckduckgo"


def test_disabled_or_blank_domain_skips_search(monkeypatch):
    captured = _patch_get(monkeypatch, FakeSearchResp(payload=RESULTS))
    assert _augment("x", AppConfig()).prompt == "x"
    assert _augment("x", AppConfig(searxng_enabled=True, searxng_domain="  ")).prompt == "x"
    assert captured == {}


def test_failures_degrade_to_original_message(monkeypatch):
    _patch_get(monkeypatch, FakeSearchResp(status_code=500))
    outcome = _augment("orig", ENABLED)
    assert (outcome.prompt, outcome.augmented) == ("orig", False)
    assert "500" in outcome.error

    _patch_get(monkeypatch, FakeSearchResp(bad_json=True))
    assert _augment("orig", ENABLED).prompt == "orig"

    _patch_get(monkeypatch, FakeSearchResp(payload={"results": []}))
    outcome = _augment("orig", ENABLED)
    assert outcome.prompt == "orig" and outcome.error is None

    _patch_get(monkeypatch, error=httpx.ConnectError("no route"))
    assert _augment("orig", ENABLED).prompt == "orig"


def test_relay_uses_original_message_when_search_returns_500(
    relay, stores, upstream, monkeypatch
):
    settings, _ = stores
    settings.set_credential("http://upstream.local", "k")
    settings.set_config({"searxng_enabled": True, "searxng_domain": "http://searx.local"})
    _patch_get(monkeypatch, FakeSearchResp(status_code=500))
    upstream.respond([sse(delta("answer"), "[DONE]")])

    events = collect(relay, ChatStreamRequest(message="original text", model="m"))

    assert upstream.calls[0]["json"]["messages"] == [
        {"role": "user", "content": "original text"}
    ]
    statuses = [e["status"] for e in events if "status" in e]
    assert statuses[0] == "Searching for information..."
    assert statuses[-1].startswith("Error performing search")
    chunks = [e["chunk"] for e in events if "chunk" in e]
    assert chunks == ["answer"]
    assert events[-1] == {"done": True}


def test_relay_sends_augmented_prompt(relay, stores, upstream, monkeypatch):
    settings, _ = stores
    settings.set_credential("http://upstream.local", "k")
    settings.set_config({"searxng_enabled": True, "searxng_domain": "http://searx.local"})
    _patch_get(monkeypatch, FakeSearchResp(payload=RESULTS))
    upstream.respond([sse(delta("answer"))])

    events = collect(relay, ChatStreamRequest(message="Who?", model="m"))

    sent = upstream.calls[0]["json"]["messages"][0]["content"]
    assert sent.startswith('I want to answer the following question: "Who?"')
    assert {"status": "Search complete. Generating response...", "done": False} in events


def test_malformed_domain_degrades_to_original_message():
    config = AppConfig(searxng_enabled=True, searxng_domain="http://[::1")
    outcome = _augment("orig", config)
    assert (outcome.prompt, outcome.augmented, outcome.attempted) == ("orig", False, True)
    assert outcome.error.startswith("Search error:")


def test_domain_whitespace_is_ignored(monkeypatch):
    captured = _patch_get(monkeypatch, FakeSearchResp(payload=RESULTS))
    config = AppConfig(searxng_enabled=True, searxng_domain=" http://searx.local/ ")
    assert _augment("x", config).augmented is True
    assert captured["url"] == "http://searx.local/search"


def test_relay_continues_when_search_domain_is_malformed(relay, stores, upstream):
    settings, _ = stores
    settings.set_credential("http://upstream.local", "k")
    settings.set_config({"searxng_enabled": True, "searxng_domain": "http://[::1"})
    upstream.respond([sse(delta("answer"), "[DONE]")])

    events = collect(relay, ChatStreamRequest(message="plain", model="m"))

    assert len(upstream.calls) == 1
    assert upstream.calls[0]["json"]["messages"] == [{"role": "user", "content": "plain"}]
    assert [e["chunk"] for e in events if "chunk" in e] == ["answer"]
    assert events[-1] == {"done": True}
