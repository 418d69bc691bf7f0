"""LLM boundary: request/response contract and the any-llm client."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Protocol

from any_llm import completion  # type: ignore[import-untyped]
from loguru import logger
from openai.types.chat import ChatCompletion, ChatCompletionMessageParam

from luminous.config import Settings
from luminous.core.turns import CapabilityInvocation, History, Turn, new_call_id
from luminous.errors import ApiKeyNotConfiguredError

BLOCKED_FINISH_REASONS = frozenset({"content_filter", "safety", "blocked"})


@dataclass(frozen=True)
class ModelRequest:
    """Everything one model call needs."""

    history: History
    system_prompt: str
    tools: list[dict[str, Any]] = field(default_factory=list)
    temperature: float = 0.7
    max_tokens: int | None = None


@dataclass(frozen=True)
class ModelResponse:
    """Plain text, capability invocations, or nothing (empty/blocked)."""

    text: str = ""
    invocations: list[CapabilityInvocation] = field(default_factory=list)
    blocked: bool = False
    finish_reason: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.invocations and not self.text.strip()

    def to_turn(self) -> Turn:
        return Turn.model(self.text, self.invocations)


class ModelClient(Protocol):
    async def generate(self, request: ModelRequest) -> ModelResponse: ...


class AnyLLMClient:
    """Provider-agnostic chat completion client backed by any-llm."""

    def __init__(
        self,
        *,
        provider: str,
        model_name: str,
        api_key: str,
        api_base: str | None = None,
    ) -> None:
        self.provider = provider
        self.model = model_name
        self.api_key = api_key
        self.api_base = api_base

    @classmethod
    def from_settings(cls, settings: Settings) -> AnyLLMClient:
        api_key = settings.resolved_api_key
        if not api_key:
            raise ApiKeyNotConfiguredError("set LUMINOUS_API_KEY (or API_KEY) to talk to the model")
        return cls(
            provider=settings.provider,
            model_name=settings.model_name,
            api_key=api_key,
            api_base=settings.api_base,
        )

    async def generate(self, request: ModelRequest) -> ModelResponse:
        kwargs: dict[str, Any] = {
            "model": f"{self.provider}/{self.model}",
            "messages": to_messages(request.history, request.system_prompt),
            "temperature": request.temperature,
            "api_key": self.api_key,
            "api_base": self.api_base,
        }
        if request.max_tokens is not None:
            kwargs["max_tokens"] = request.max_tokens
        if request.tools:
            kwargs["tools"] = request.tools
        logger.debug("model.call.start model={} turns={}", self.model, len(request.history))
        response: ChatCompletion = await asyncio.to_thread(completion, **kwargs)
        return from_completion(response)


def to_messages(history: History, system_prompt: str) -> list[ChatCompletionMessageParam]:
    """Render history as OpenAI-format chat messages."""
    messages: list[ChatCompletionMessageParam] = [{"role": "system", "content": system_prompt}]
    for turn in history:
        if turn.role == "user":
            messages.append({"role": "user", "content": turn.text})
        elif turn.role == "model":
            # Null content is only accepted next to tool_calls.
            message: dict[str, Any] = {"role": "assistant", "content": turn.text}
            if invocations := turn.invocations:
                message["content"] = turn.text or None
                message["tool_calls"] = [
                    {
                        "id": item.call_id,
                        "type": "function",
                        "function": {"name": item.name, "arguments": json.dumps(item.args, ensure_ascii=False)},
                    }
                    for item in invocations
                ]
            messages.append(message)  # type: ignore[arg-type]
        else:
            for result in turn.results:
                messages.append({"role": "tool", "tool_call_id": result.call_id, "content": result.render()})
    return messages


def from_completion(response: ChatCompletion) -> ModelResponse:
    choices = getattr(response, "choices", None) or []
    if not choices:
        return ModelResponse(blocked=True, finish_reason="no_choices")

    choice = choices[0]
    finish_reason = getattr(choice, "finish_reason", None)
    message = choice.message
    invocations = [_invocation_from_call(call) for call in (message.tool_calls or [])]
    return ModelResponse(
        text=message.content or "",
        invocations=invocations,
        blocked=finish_reason in BLOCKED_FINISH_REASONS,
        finish_reason=finish_reason,
    )


def _invocation_from_call(call: Any) -> CapabilityInvocation:
    function = call.function
    raw_arguments = function.arguments or "{}"
    try:
        args = json.loads(raw_arguments)
    except json.JSONDecodeError:
        args = {"_raw": raw_arguments}
    if not isinstance(args, dict):
        args = {"_raw": args}
    return CapabilityInvocation(name=function.name, args=args, call_id=call.id or new_call_id())
