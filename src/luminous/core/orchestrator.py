"""Tool-calling orchestration loop."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field

from loguru import logger

from luminous.config import Settings
from luminous.core.directives import process_reply
from luminous.core.model import ModelClient, ModelRequest, ModelResponse
from luminous.core.prompt import NOTHING_TO_ADD, REFLECTION_PROMPT, build_directive
from luminous.core.session import SessionContext
from luminous.core.state import InternalState
from luminous.core.turns import CapabilityInvocation, History, Turn
from luminous.errors import (
    LuminousError,
    ProviderEmptyResponse,
    ProviderError,
    ProviderTimeout,
    ProviderTransportError,
    ToolLoopExceeded,
)
from luminous.tools.registry import CapabilityContext, CapabilityRegistry


@dataclass(frozen=True)
class AdvanceResult:
    """Outcome of one ``advance``. ``final_text`` is None for a suppressed reflection."""

    final_text: str | None
    history: History
    state: InternalState
    keepsake: str | None
    log: list[str] = field(default_factory=list)
    rounds: int = 0
    invocations: list[CapabilityInvocation] = field(default_factory=list)
    suppressed: bool = False


@dataclass
class _LoopState:
    rounds: int = 0
    invocations: list[CapabilityInvocation] = field(default_factory=list)


class Orchestrator:
    """Drives model calls and capability rounds until a plain-text answer arrives."""

    def __init__(self, *, client: ModelClient, registry: CapabilityRegistry, settings: Settings) -> None:
        self._client = client
        self._registry = registry
        self._settings = settings

    async def advance(self, session: SessionContext, message: str, *, reflection: bool = False) -> AdvanceResult:
        """Run one turn against a working copy of ``session``.

        The session is only updated when the turn succeeds. On failure the
        error is recorded in the session log and re-raised with the log lines
        of this turn attached.
        """
        mark = len(session.log)
        work = session.fork()
        loop = _LoopState()
        try:
            prompt = REFLECTION_PROMPT if reflection and not message.strip() else message
            response = await self._run(work, prompt, loop)
            result = self._finish(session, work, response, loop, reflection=reflection, mark=mark)
        except LuminousError as exc:
            logger.warning("advance.failed kind={} error={}", exc.kind, exc)
            session.log.add(f"ERROR: {exc.kind}: {exc}")
            exc.logs = session.log.since(mark)
            raise
        return result

    async def _run(self, work: SessionContext, message: str, loop: _LoopState) -> ModelResponse:
        work.history.append(Turn.user(message))
        tools = self._registry.model_tools()
        limit = self._settings.loop_timeout_seconds
        try:
            async with asyncio.timeout(limit):
                return await self._rounds(work, tools, loop)
        except TimeoutError as exc:
            raise ToolLoopExceeded(f"turn did not finish within {limit}s") from exc

    async def _rounds(self, work: SessionContext, tools: list[dict], loop: _LoopState) -> ModelResponse:
        context = CapabilityContext(session=work, settings=self._settings)
        while True:
            response = await self._call_model(work, tools)
            if not response.invocations:
                return response
            if loop.rounds >= self._settings.max_tool_rounds:
                raise ToolLoopExceeded(f"model still requested capabilities after {loop.rounds} round(s)")

            loop.rounds += 1
            loop.invocations.extend(response.invocations)
            logger.info("advance.round round={} invocations={}", loop.rounds, len(response.invocations))
            work.log.add(f"AI wants to use {len(response.invocations)} tool(s).")
            work.history.append(response.to_turn())
            results = await self._registry.execute_all(
                response.invocations,
                context,
                parallel=self._settings.parallel_capabilities,
            )
            work.history.append(Turn.tool(results))

    async def _call_model(self, work: SessionContext, tools: list[dict]) -> ModelResponse:
        request = ModelRequest(
            history=work.history.copy(),
            system_prompt=build_directive(work.state, work.keepsake, self._registry.compact_rows()),
            tools=tools,
            temperature=self._settings.temperature,
            max_tokens=self._settings.max_tokens,
        )
        timeout = self._settings.model_timeout_seconds
        try:
            async with asyncio.timeout(timeout):
                return await self._client.generate(request)
        except TimeoutError as exc:
            raise ProviderTimeout(f"no response from the model within {timeout}s") from exc
        except ProviderError:
            raise
        except Exception as exc:
            logger.exception("model.call.error")
            raise ProviderTransportError(f"{type(exc).__name__}: {exc}") from exc

    def _finish(
        self,
        session: SessionContext,
        work: SessionContext,
        response: ModelResponse,
        loop: _LoopState,
        *,
        reflection: bool,
        mark: int,
    ) -> AdvanceResult:
        if response.blocked or response.is_empty:
            if not reflection:
                reason = "blocked" if response.blocked else "empty"
                raise ProviderEmptyResponse(
                    f"model returned a {reason} response (finish_reason={response.finish_reason})"
                )
            return self._suppress(session, work, loop, mark)

        processed = process_reply(response.text)
        for error in processed.errors:
            logger.warning("directive.parse.failed error={}", error)
            work.log.add(f"{error.kind}: {error}")
        if processed.state_delta is not None:
            merged = work.state.merge(processed.state_delta)
            work.state = merged.state
            if merged.applied:
                work.log.add(f"State updated: {json.dumps(merged.applied)}")
            if merged.rejected:
                work.log.add(f"State update ignored invalid fields: {', '.join(sorted(merged.rejected))}")
        if processed.keepsake:
            work.keepsake = processed.keepsake
            work.log.add("Keepsake updated.")

        if reflection and processed.text.strip() in {"", NOTHING_TO_ADD}:
            return self._suppress(session, work, loop, mark)

        work.history.append(Turn.model(processed.text))
        session.commit(work)
        return AdvanceResult(
            final_text=processed.text,
            history=session.history,
            state=session.state,
            keepsake=session.keepsake,
            log=session.log.since(mark),
            rounds=loop.rounds,
            invocations=loop.invocations,
        )

    @staticmethod
    def _suppress(session: SessionContext, work: SessionContext, loop: _LoopState, mark: int) -> AdvanceResult:
        # The reflection exchange is dropped from history; state and keepsake changes stay.
        work.log.add("Reflection complete: nothing to add.")
        work.history = session.history.copy()
        session.commit(work)
        return AdvanceResult(
            final_text=None,
            history=session.history,
            state=session.state,
            keepsake=session.keepsake,
            log=session.log.since(mark),
            rounds=loop.rounds,
            invocations=loop.invocations,
            suppressed=True,
        )
