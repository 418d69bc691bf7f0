import json
from typing import Any
from urllib import error as urllib_error
from urllib.request import Request

import pytest

from luminous.config import Settings
from luminous.core.turns import CapabilityInvocation
from luminous.tools.builtin import NO_ANSWER, extract_answer, parse_headers
from luminous.tools.registry import CapabilityContext, CapabilityRegistry


class _Headers(dict):
    def get_content_charset(self) -> str:
        return "utf-8"


class _Response:
    def __init__(self, body: str, status: int = 200) -> None:
        self._body = body.encode("utf-8")
        self.status = status
        self.headers = _Headers({"Content-Type": "application/json"})

    def __enter__(self) -> Any:
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> bool:
        _ = (exc_type, exc, tb)
        return False

    def read(self) -> bytes:
        return self._body


def _patch_urlopen(monkeypatch: Any, body: str, status: int = 200) -> list[Request]:
    observed: list[Request] = []

    def _urlopen(request: Request, timeout: float) -> _Response:
        _ = timeout
        observed.append(request)
        return _Response(body, status)

    monkeypatch.setattr("luminous.tools.http.urlopen", _urlopen)
    return observed


async def _run(registry: CapabilityRegistry, context: CapabilityContext, name: str, **args: Any):
    return await registry.execute(CapabilityInvocation(name=name, args=args), context)


def test_builtin_names_are_exposed_to_the_model(registry: CapabilityRegistry) -> None:
    names = [tool["function"]["name"] for tool in registry.model_tools()]
    assert names == ["code_run", "http_request", "shop_query", "state_update", "web_search"]


@pytest.mark.asyncio
async def test_state_update_merges_valid_fields_and_always_succeeds(
    registry: CapabilityRegistry, context: CapabilityContext
) -> None:
    result = await _run(registry, context, "state_update", coherence=0.3, novelty=4, mood=0.5)

    assert result.ok
    assert result.payload["applied"] == {"coherence": 0.3}
    assert result.payload["rejected"] == ["mood", "novelty"]
    assert context.session.state.coherence == 0.3
    assert context.session.state.novelty == 0.6


@pytest.mark.asyncio
async def test_web_search_without_key_is_unconfigured(registry: CapabilityRegistry, context: CapabilityContext) -> None:
    result = await _run(registry, context, "web_search", query="weather")
    assert not result.ok
    assert result.payload["kind"] == "CapabilityUnconfigured"


@pytest.mark.asyncio
async def test_web_search_requires_a_query(
    registry: CapabilityRegistry, session, settings: Settings
) -> None:
    context = CapabilityContext(session=session, settings=settings.model_copy(update={"serpapi_key": "k"}))
    result = await _run(registry, context, "web_search", query="   ")
    assert result.payload["kind"] == "CapabilityArgumentError"


@pytest.mark.asyncio
async def test_web_search_queries_serpapi_and_extracts_answer(
    monkeypatch: Any, registry: CapabilityRegistry, session, settings: Settings
) -> None:
    observed = _patch_urlopen(monkeypatch, json.dumps({"answer_box": {"snippet": "Sunny, 21C"}}))
    context = CapabilityContext(session=session, settings=settings.model_copy(update={"serpapi_key": "secret"}))

    result = await _run(registry, context, "web_search", query="weather in lisbon")

    assert result.payload == {"query": "weather in lisbon", "answer": "Sunny, 21C"}
    url = observed[0].full_url
    assert url.startswith("https://serpapi.com/search.json?")
    assert "q=weather+in+lisbon" in url
    assert "api_key=secret" in url
    assert "engine=google" in url


def test_extract_answer_preference_order() -> None:
    assert extract_answer({"answer_box": {"answer": "A", "snippet": "S"}}) == "A"
    assert extract_answer({"answer_box": {"snippet": "S"}, "knowledge_graph": {"description": "K"}}) == "S"
    assert extract_answer({"knowledge_graph": {"description": "K"}, "organic_results": [{"snippet": "O"}]}) == "K"
    assert extract_answer({"organic_results": [{"title": "no snippet"}, {"snippet": "O"}]}) == "O"
    assert extract_answer({"organic_results": []}) == NO_ANSWER
    assert extract_answer(["not", "a", "dict"]) == NO_ANSWER


@pytest.mark.asyncio
async def test_http_request_passes_headers_and_body_through(
    monkeypatch: Any, registry: CapabilityRegistry, context: CapabilityContext
) -> None:
    body = "x" * 500
    observed = _patch_urlopen(monkeypatch, body, status=201)

    result = await _run(
        registry,
        context,
        "http_request",
        url="example.com/items",
        method="post",
        headers='{"X-Token": "abc"}',
        body='{"name": "lamp"}',
    )

    assert result.payload == {"status": 201, "body": body}
    request = observed[0]
    assert request.full_url == "https://example.com/items"
    assert request.get_method() == "POST"
    assert request.get_header("X-token") == "abc"
    assert request.data == b'{"name": "lamp"}'
    logged = [line for line in context.session.log.lines if "HTTP POST" in line]
    assert logged and len(logged[0]) < len(body)


@pytest.mark.asyncio
async def test_http_request_transport_failure_is_execution_error(
    monkeypatch: Any, registry: CapabilityRegistry, context: CapabilityContext
) -> None:
    def _urlopen(request: Request, timeout: float) -> _Response:
        raise urllib_error.URLError("connection refused")

    monkeypatch.setattr("luminous.tools.http.urlopen", _urlopen)

    result = await _run(registry, context, "http_request", url="https://example.com")

    assert not result.ok
    assert result.payload["kind"] == "CapabilityExecutionError"
    assert "connection refused" in result.payload["error"]


@pytest.mark.asyncio
async def test_http_request_rejects_bad_headers(registry: CapabilityRegistry, context: CapabilityContext) -> None:
    result = await _run(registry, context, "http_request", url="https://example.com", headers="{not json")
    assert result.payload["kind"] == "CapabilityArgumentError"


def test_parse_headers_accepts_objects_and_strings() -> None:
    assert parse_headers(None) == {}
    assert parse_headers({"Accept": "text/plain", "X-Count": 2}) == {"Accept": "text/plain", "X-Count": "2"}
    assert parse_headers('{"Accept": "text/plain"}') == {"Accept": "text/plain"}


@pytest.mark.asyncio
async def test_shop_query_without_credentials_is_unconfigured(
    registry: CapabilityRegistry, context: CapabilityContext
) -> None:
    result = await _run(registry, context, "shop_query", action="list_products")
    assert result.payload == {"error": "Shopify credentials not configured.", "kind": "CapabilityUnconfigured"}


@pytest.mark.asyncio
async def test_shop_query_lists_products(
    monkeypatch: Any, registry: CapabilityRegistry, session, settings: Settings
) -> None:
    observed = _patch_urlopen(monkeypatch, json.dumps({"products": [{"id": 1, "title": "Lamp"}]}))
    configured = settings.model_copy(update={"shopify_key": "shpat", "shopify_store": "skipper.myshopify.com"})
    context = CapabilityContext(session=session, settings=configured)

    result = await _run(registry, context, "shop_query", action="list_products", limit=5)

    assert result.payload == {"action": "list_products", "data": [{"id": 1, "title": "Lamp"}]}
    request = observed[0]
    assert request.full_url == "https://skipper.myshopify.com/admin/api/2024-07/products.json?limit=5"
    assert request.get_header("X-shopify-access-token") == "shpat"
