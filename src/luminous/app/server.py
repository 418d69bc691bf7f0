"""Inbound HTTP API consumed by the chat UI."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, model_validator
from starlette.exceptions import HTTPException as StarletteHTTPException

from luminous.app.runtime import HeldReflection, SessionRuntime, SessionSnapshot
from luminous.app.scheduler import ReflectionScheduler
from luminous.core.orchestrator import AdvanceResult
from luminous.core.state import InternalState
from luminous.core.turns import History
from luminous.errors import LuminousError, ProviderError, ProviderTimeout


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str = ""
    is_reflection: bool = Field(default=False, alias="isReflection")
    history: list[dict[str, Any]] | None = None
    internal_state: dict[str, Any] | None = Field(default=None, alias="internalState")
    keepsake: str | None = None

    @model_validator(mode="after")
    def _require_message(self) -> ChatRequest:
        if not self.is_reflection and not self.message.strip():
            raise ValueError("message is required unless isReflection is true")
        return self

    def snapshot(self) -> SessionSnapshot | None:
        if self.history is None:
            return None
        return SessionSnapshot(
            history=History.from_payload(self.history),
            state=InternalState.from_payload(self.internal_state),
            keepsake=self.keepsake or None,
        )


def error_status(exc: LuminousError) -> int:
    if isinstance(exc, ProviderTimeout):
        return 504
    if isinstance(exc, ProviderError):
        return 502
    return 500


def render_result(
    result: AdvanceResult,
    *,
    reflection: bool,
    held: Sequence[HeldReflection] = (),
) -> dict[str, Any]:
    """Shape a turn for the UI. Held background reflections come first, oldest first."""
    messages = [{"role": "luminous-reflection", "text": item.text} for item in held]
    if result.final_text is not None:
        messages.append({"role": "luminous-reflection" if reflection else "luminous", "text": result.final_text})
    tool_message = None
    if result.invocations:
        names = ", ".join(dict.fromkeys(item.name for item in result.invocations))
        tool_message = f"Using tool: {names}..."
    return {
        "responseText": result.final_text,
        "messages": messages,
        "newHistory": result.history.to_payload(),
        "updatedState": result.state.to_payload(camel=True),
        "keepsake": result.keepsake,
        "logs": result.log,
        "toolMessage": tool_message,
    }


def create_app(runtime: SessionRuntime, *, enable_reflection: bool = False) -> FastAPI:
    """Build the API around one session runtime."""

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        if not enable_reflection:
            yield
            return
        settings = runtime.settings
        loop = asyncio.get_running_loop()
        scheduler = ReflectionScheduler(
            runtime,
            loop,
            interval_seconds=settings.reflection_interval_seconds,
            probability=settings.reflection_probability,
            on_result=lambda result: loop.call_soon_threadsafe(runtime.hold_reflection, result),
        )
        with scheduler:
            yield

    app = FastAPI(title="Luminous", lifespan=lifespan)
    app.state.runtime = runtime

    @app.exception_handler(StarletteHTTPException)
    async def http_error(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse({"error": str(exc.detail), "logs": []}, status_code=exc.status_code, headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error(_request: Request, exc: RequestValidationError) -> JSONResponse:
        problems = "; ".join(str(error.get("msg", "")) for error in exc.errors())
        return JSONResponse({"error": f"Invalid request: {problems}", "logs": []}, status_code=422)

    @app.exception_handler(LuminousError)
    async def turn_error(_request: Request, exc: LuminousError) -> JSONResponse:
        return JSONResponse({"error": str(exc), "kind": exc.kind, "logs": exc.logs}, status_code=error_status(exc))

    @app.post("/api/chat")
    async def chat(payload: ChatRequest) -> dict[str, Any]:
        logger.info("api.chat reflection={} stateless={}", payload.is_reflection, payload.history is not None)
        held = runtime.take_reflections()
        try:
            # A client holding its own history has not seen background reflections yet.
            snapshot = payload.snapshot()
            if snapshot is not None:
                snapshot = snapshot.with_reflections(held)
            if payload.is_reflection:
                result = await runtime.reflect(snapshot=snapshot)
            else:
                result = await runtime.submit(payload.message, snapshot=snapshot)
        except Exception:
            runtime.restore_reflections(held)
            raise
        return render_result(result, reflection=payload.is_reflection, held=held)

    @app.get("/api/state")
    async def state() -> dict[str, Any]:
        session = runtime.session
        return {
            "state": session.state.to_payload(camel=True),
            "keepsake": session.keepsake,
            "turns": len(session.history),
            "busy": runtime.busy,
            "pendingReflections": runtime.pending_reflections,
            "logs": session.log.lines,
        }

    return app
