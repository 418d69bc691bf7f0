"""Capability registry: name -> (argument model, executor)."""

from __future__ import annotations

import asyncio
import inspect
import json
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any

from loguru import logger
from pydantic import BaseModel, ValidationError

from luminous.config import Settings
from luminous.core.session import SessionContext
from luminous.core.turns import NOT_FOUND_PAYLOAD, CapabilityInvocation, CapabilityResult
from luminous.errors import CapabilityArgumentError, CapabilityError, CapabilityExecutionError, CapabilityNotFound

Handler = Callable[[Any, "CapabilityContext"], Any | Awaitable[Any]]


def _shorten_text(text: str, width: int = 30, placeholder: str = "...") -> str:
    """Shorten text to width characters, cutting in the middle of words if needed."""
    if len(text) <= width:
        return text

    available = width - len(placeholder)
    if available <= 0:
        return placeholder

    return text[:available] + placeholder


@dataclass(frozen=True)
class CapabilityContext:
    """What an executor may touch: the session it runs for and the settings."""

    session: SessionContext
    settings: Settings


@dataclass(frozen=True)
class CapabilityDescriptor:
    """Capability metadata and runtime handle."""

    name: str
    description: str
    model: type[BaseModel]
    handler: Handler
    source: str = "builtin"

    def schema(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": CapabilityRegistry.to_model_name(self.name),
                "description": self.description,
                "parameters": self.model.model_json_schema(),
            },
        }


class CapabilityRegistry:
    """Registry resolved once at startup and shared by every turn."""

    def __init__(self) -> None:
        self._capabilities: dict[str, CapabilityDescriptor] = {}

    def register(
        self,
        *,
        name: str,
        description: str,
        model: type[BaseModel],
        source: str = "builtin",
    ) -> Callable[[Handler], Handler]:
        def decorator(handler: Handler) -> Handler:
            self.add(
                CapabilityDescriptor(name=name, description=description, model=model, handler=handler, source=source)
            )
            return handler

        return decorator

    def add(self, descriptor: CapabilityDescriptor) -> None:
        self._capabilities[descriptor.name] = descriptor

    def has(self, name: str) -> bool:
        return self.get(name) is not None

    def get(self, name: str) -> CapabilityDescriptor | None:
        descriptor = self._capabilities.get(name)
        if descriptor is not None:
            return descriptor
        for candidate in self._capabilities.values():
            if self.to_model_name(candidate.name) == name:
                return candidate
        return None

    def resolve(self, name: str) -> CapabilityDescriptor:
        descriptor = self.get(name)
        if descriptor is None:
            raise CapabilityNotFound(f"capability not found: {name}")
        return descriptor

    def descriptors(self) -> list[CapabilityDescriptor]:
        return sorted(self._capabilities.values(), key=lambda item: item.name)

    @staticmethod
    def to_model_name(name: str) -> str:
        return name.replace(".", "_")

    def compact_rows(self) -> list[str]:
        return [f"{self.to_model_name(item.name)}: {item.description}" for item in self.descriptors()]

    def model_tools(self) -> list[dict[str, Any]]:
        tools: list[dict[str, Any]] = []
        seen_names: set[str] = set()
        for descriptor in self.descriptors():
            model_name = self.to_model_name(descriptor.name)
            if model_name in seen_names:
                raise ValueError(f"Duplicate model tool name after conversion: {model_name}")
            seen_names.add(model_name)
            tools.append(descriptor.schema())
        return tools

    async def execute(self, invocation: CapabilityInvocation, context: CapabilityContext) -> CapabilityResult:
        """Run one invocation. Failures come back as error results, never as exceptions."""
        log = context.session.log
        log.add(f"Executing tool: {invocation.name} with args: {_render_args(invocation.args, width=200)}")

        try:
            descriptor = self.resolve(invocation.name)
        except CapabilityNotFound as exc:
            logger.warning("tool.call.unknown name={} kind={}", invocation.name, exc.kind)
            log.add(f"Unknown tool called: {invocation.name}")
            return CapabilityResult.failure(invocation, dict(NOT_FOUND_PAYLOAD))

        self._log_call(descriptor.name, invocation.args)
        start = time.monotonic()
        try:
            params = self._validate(descriptor, invocation.args)
            output = descriptor.handler(params, context)
            if inspect.isawaitable(output):
                output = await output
        except CapabilityError as exc:
            logger.warning("tool.call.failed name={} kind={} error={}", descriptor.name, exc.kind, exc)
            log.add(f"{exc.kind}: {descriptor.name}: {exc}")
            return CapabilityResult.failure(invocation, {"error": str(exc), "kind": exc.kind})
        except Exception as exc:
            logger.exception("tool.call.error name={}", descriptor.name)
            wrapped = CapabilityExecutionError(f"{type(exc).__name__}: {exc}")
            log.add(f"{wrapped.kind}: {descriptor.name}: {wrapped}")
            return CapabilityResult.failure(invocation, {"error": str(wrapped), "kind": wrapped.kind})
        finally:
            duration = time.monotonic() - start
            logger.info("tool.call.end name={} duration={:.3f}ms", descriptor.name, duration * 1000)
        return CapabilityResult.success(invocation, output)

    async def execute_all(
        self,
        invocations: Sequence[CapabilityInvocation],
        context: CapabilityContext,
        *,
        parallel: bool = True,
    ) -> list[CapabilityResult]:
        """Run a round of invocations. Results keep the request order."""
        if parallel and len(invocations) > 1:
            return list(await asyncio.gather(*(self.execute(item, context) for item in invocations)))
        return [await self.execute(item, context) for item in invocations]

    @staticmethod
    def _validate(descriptor: CapabilityDescriptor, args: dict[str, Any]) -> BaseModel:
        try:
            return descriptor.model.model_validate(args)
        except ValidationError as exc:
            problems = "; ".join(
                f"{'.'.join(str(loc) for loc in error['loc']) or '(args)'}: {error['msg']}" for error in exc.errors()
            )
            raise CapabilityArgumentError(f"invalid arguments for {descriptor.name}: {problems}") from exc

    def _log_call(self, name: str, kwargs: dict[str, Any]) -> None:
        logger.info("tool.call.start name={} {{ {} }}", name, _render_args(kwargs))


def _render_args(kwargs: dict[str, Any], *, width: int = 30) -> str:
    params: list[str] = []
    for key, value in kwargs.items():
        try:
            rendered = json.dumps(value, ensure_ascii=False)
        except TypeError:
            rendered = repr(value)
        value = _shorten_text(rendered, width=width, placeholder="...")
        if value.startswith('"') and not value.endswith('"'):
            value = value + '"'
        if value.startswith("{") and not value.endswith("}"):
            value = value + "}"
        if value.startswith("[") and not value.endswith("]"):
            value = value + "]"
        params.append(f"{key}={value}")
    return ", ".join(params)
