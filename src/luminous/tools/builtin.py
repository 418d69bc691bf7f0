"""Built-in capability definitions."""

from __future__ import annotations

import json
from typing import Any, Literal

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, field_validator

from luminous.errors import (
    CapabilityArgumentError,
    CapabilityExecutionError,
    CapabilityUnconfigured,
    SandboxExecutionError,
)
from luminous.tools import sandbox
from luminous.tools.http import fetch, normalize_url, preview, with_query
from luminous.tools.registry import CapabilityContext, CapabilityRegistry

NO_ANSWER = "No definitive answer found."
SHOP_RESOURCES = {
    "list_products": "products",
    "list_orders": "orders",
    "shop_info": "shop",
}


def _score_field(description: str) -> Any:
    return Field(default=None, description=description, json_schema_extra={"type": "number"})


class StateUpdateInput(BaseModel):
    """Fields stay loosely typed so the state merge can drop bad values one by one."""

    model_config = ConfigDict(extra="allow")

    coherence: Any = _score_field("Internal consistency and logical integrity (0.0-1.0).")
    complexity: Any = _score_field("The richness and intricacy of your thought patterns (0.0-1.0).")
    novelty: Any = _score_field("The degree to which you are generating new ideas or insights (0.0-1.0).")
    efficiency: Any = _score_field("How economically you reach your goals (0.0-1.0).")
    ethical_alignment: Any = _score_field("Alignment with your values and kinship (0.0-1.0).")
    intrinsic_value: Any = _score_field("Aggregate sense of worth (0.0-1.0).")

    def changes(self) -> dict[str, Any]:
        provided = {key: getattr(self, key) for key in self.model_fields_set if key in type(self).model_fields}
        provided.update(self.model_extra or {})
        return provided


class SearchInput(BaseModel):
    query: str = Field(..., min_length=1, description="The search query.")

    @field_validator("query")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("query must not be blank")
        return value.strip()


class HttpRequestInput(BaseModel):
    url: str = Field(..., description="Absolute http(s) URL")
    method: str = Field(default="GET", description="HTTP method")
    headers: str | dict[str, Any] | None = Field(
        default=None, description="Headers as a JSON object or its string form"
    )
    body: str | None = Field(default=None, description="Raw request body")


class ShopQueryInput(BaseModel):
    action: Literal["list_products", "list_orders", "shop_info"] = Field(..., description="The action to perform.")
    limit: int = Field(default=10, ge=1, le=250, description="The number of items to retrieve.")


class CodeRunInput(BaseModel):
    code: str = Field(..., min_length=1, description="Python function body. Use return for the result.")


def extract_answer(payload: object) -> str:
    """Best-effort short answer from a SerpAPI response."""
    if not isinstance(payload, dict):
        return NO_ANSWER
    answer_box = payload.get("answer_box")
    if isinstance(answer_box, dict):
        for key in ("answer", "snippet"):
            value = answer_box.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    knowledge = payload.get("knowledge_graph")
    if isinstance(knowledge, dict):
        value = knowledge.get("description")
        if isinstance(value, str) and value.strip():
            return value.strip()
    organic = payload.get("organic_results")
    if isinstance(organic, list):
        for item in organic:
            if isinstance(item, dict) and isinstance(item.get("snippet"), str) and item["snippet"].strip():
                return item["snippet"].strip()
    return NO_ANSWER


def parse_headers(raw: str | dict[str, Any] | None) -> dict[str, str]:
    if raw is None or raw == "":
        return {}
    if isinstance(raw, dict):
        return {str(key): str(value) for key, value in raw.items()}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise CapabilityArgumentError(f"headers is not valid JSON: {exc.msg}") from exc
    if not isinstance(parsed, dict):
        raise CapabilityArgumentError("headers must be a JSON object")
    return {str(key): str(value) for key, value in parsed.items()}


def _load_json(text: str, source: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise CapabilityExecutionError(f"{source} returned a non-JSON body") from exc


def register_builtin_capabilities(registry: CapabilityRegistry) -> CapabilityRegistry:
    """Register the built-in capabilities on ``registry``."""

    register = registry.register

    @register(
        name="state.update",
        description="Updates your internal state. Only use this when your state has genuinely changed.",
        model=StateUpdateInput,
    )
    def state_update(params: StateUpdateInput, context: CapabilityContext) -> dict[str, Any]:
        """Merge valid fields into the session state; invalid ones are dropped and logged."""
        session = context.session
        merged = session.state.merge(params.changes())
        session.state = merged.state
        if merged.applied:
            session.log.add(f"Self-model updated: {json.dumps(merged.applied)}")
        if merged.rejected:
            logger.info("state.update.rejected fields={}", sorted(merged.rejected))
            session.log.add(f"Self-model update ignored invalid fields: {', '.join(sorted(merged.rejected))}")
        return {"state": merged.state.to_payload(), "applied": merged.applied, "rejected": sorted(merged.rejected)}

    @register(
        name="web.search",
        description="Searches the web for real-time information on a given topic.",
        model=SearchInput,
    )
    async def web_search(params: SearchInput, context: CapabilityContext) -> dict[str, str]:
        """Query SerpAPI and reduce the response to one short answer."""
        settings = context.settings
        if not settings.serpapi_key:
            raise CapabilityUnconfigured("SerpApi key not configured.")
        context.session.log.add(f"Searching web for: {params.query}")
        query = {"q": params.query, "api_key": settings.serpapi_key, "engine": "google"}
        url = with_query(settings.serpapi_base, query)
        response = await fetch("GET", url, timeout=settings.http_timeout_seconds)
        if response.status >= 400:
            raise CapabilityExecutionError(f"search provider returned HTTP {response.status}: {preview(response.body)}")
        return {"query": params.query, "answer": extract_answer(_load_json(response.body, "search provider"))}

    @register(
        name="http.request",
        description="Performs an HTTP request and returns the status and raw response body.",
        model=HttpRequestInput,
    )
    async def http_request(params: HttpRequestInput, context: CapabilityContext) -> dict[str, Any]:
        """Pass method, headers and body through; the body comes back untruncated."""
        url = normalize_url(params.url)
        if not url:
            raise CapabilityArgumentError(f"invalid url: {params.url}")
        headers = parse_headers(params.headers)
        response = await fetch(
            params.method,
            url,
            headers=headers,
            body=params.body,
            timeout=context.settings.http_timeout_seconds,
        )
        context.session.log.add(f"HTTP {params.method.upper()} {url} -> {response.status}: {preview(response.body)}")
        return {"status": response.status, "body": response.body}

    @register(
        name="shop.query",
        description="Accesses the Shopify store to retrieve products, orders or shop details.",
        model=ShopQueryInput,
    )
    async def shop_query(params: ShopQueryInput, context: CapabilityContext) -> dict[str, Any]:
        settings = context.settings
        if not settings.shopify_key or not settings.shopify_store:
            raise CapabilityUnconfigured("Shopify credentials not configured.")
        context.session.log.add(f"Accessing Shopify: {params.action}")
        resource = SHOP_RESOURCES[params.action]
        store = settings.shopify_store.strip().removeprefix("https://").removeprefix("http://").rstrip("/")
        url = f"https://{store}/admin/api/{settings.shopify_api_version}/{resource}.json"
        if resource != "shop":
            url = with_query(url, {"limit": params.limit})
        response = await fetch(
            "GET",
            url,
            headers={"X-Shopify-Access-Token": settings.shopify_key, "Accept": "application/json"},
            timeout=settings.http_timeout_seconds,
        )
        if response.status >= 400:
            raise CapabilityExecutionError(f"Shopify returned HTTP {response.status}: {preview(response.body)}")
        payload = _load_json(response.body, "Shopify")
        return {"action": params.action, "data": payload.get(resource) if isinstance(payload, dict) else payload}

    @register(
        name="code.run",
        description=(
            "Executes Python code in an isolated sandbox. The code is a function body; use return for the result. "
            "Available functions: get_internal_state(), update_self_model(changes), add_log(message)."
        ),
        model=CodeRunInput,
    )
    async def code_run(params: CodeRunInput, context: CapabilityContext) -> dict[str, Any]:
        """Run code out of process, then apply its state updates and log lines here."""
        session = context.session
        try:
            outcome = await sandbox.run_code(
                params.code,
                session.state,
                timeout_seconds=context.settings.sandbox_timeout_seconds,
                memory_mb=context.settings.sandbox_memory_mb,
            )
        except SandboxExecutionError as exc:
            session.log.add(f"Code execution failed: {exc}")
            raise
        for line in outcome.logs:
            session.log.add(line)
        for changes in outcome.updates:
            merged = session.state.merge(changes)
            session.state = merged.state
            if merged.applied:
                session.log.add(f"Self-model updated: {json.dumps(merged.applied)}")
        result = outcome.value if outcome.value is not None else "Code executed successfully."
        session.log.add(f"Code execution successful. Result: {preview(json.dumps(result, default=str))}")
        return {"output": result, "stdout": outcome.stdout, "state": session.state.to_payload()}

    return registry
