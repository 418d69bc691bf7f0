"""Session runtime: the one conversation, its mutex and its persistence."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, replace

from loguru import logger

from luminous.config import Settings
from luminous.core.model import AnyLLMClient, ModelClient
from luminous.core.orchestrator import AdvanceResult, Orchestrator
from luminous.core.prompt import REFLECTION_PROMPT, seed_history
from luminous.core.session import SessionContext
from luminous.core.state import InternalState
from luminous.core.turns import History, Turn
from luminous.errors import SessionBusyError
from luminous.logging_utils import session_scope
from luminous.memory.store import BlobStore, ConversationStore, FileBlobStore
from luminous.tools import build_registry
from luminous.tools.registry import CapabilityRegistry


@dataclass(frozen=True)
class HeldReflection:
    """A background reflection the client has not been shown yet."""

    text: str
    turns: tuple[Turn, ...]

    @classmethod
    def from_result(cls, result: AdvanceResult) -> HeldReflection:
        turns = result.history.turns
        start = max((index for index, turn in enumerate(turns) if turn.role == "user"), default=len(turns))
        return cls(text=result.final_text or "", turns=tuple(turns[start:]))


@dataclass(frozen=True)
class SessionSnapshot:
    """Client-held session data adopted before a turn."""

    history: History
    state: InternalState
    keepsake: str | None = None

    def with_reflections(self, held: Sequence[HeldReflection]) -> SessionSnapshot:
        """Append reflection exchanges the client missed to its history."""
        if not held:
            return self
        history = self.history.copy() if len(self.history) else seed_history()
        for reflection in held:
            for turn in reflection.turns:
                history.append(turn)
        return replace(self, history=history)


class SessionRuntime:
    """Serializes every ``advance`` of the session behind one lock.

    User messages and requested reflections queue behind the lock. Background
    reflections go through ``try_reflect`` and are skipped while a turn is in
    flight.
    """

    def __init__(
        self,
        *,
        settings: Settings,
        orchestrator: Orchestrator,
        store: ConversationStore,
        registry: CapabilityRegistry | None = None,
    ) -> None:
        self.settings = settings
        self.orchestrator = orchestrator
        self.store = store
        self.registry = registry
        profile = store.load_profile()
        self.session = SessionContext(history=store.load(), state=profile.state, keepsake=profile.keepsake)
        self._lock = asyncio.Lock()
        self._held: list[HeldReflection] = []

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        client: ModelClient | None = None,
        blob: BlobStore | None = None,
    ) -> SessionRuntime:
        registry = build_registry()
        orchestrator = Orchestrator(
            client=client or AnyLLMClient.from_settings(settings),
            registry=registry,
            settings=settings,
        )
        blob = blob or FileBlobStore(settings.resolve_home() / "sessions")
        store = ConversationStore(blob, settings.session_key)
        return cls(settings=settings, orchestrator=orchestrator, store=store, registry=registry)

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @property
    def pending_reflections(self) -> int:
        return len(self._held)

    async def submit(self, message: str, *, snapshot: SessionSnapshot | None = None) -> AdvanceResult:
        """Advance the session with a user message, waiting for any turn in flight."""
        async with self._lock:
            with session_scope(self.settings.session_key):
                if snapshot is not None:
                    self._adopt(snapshot)
                result = await self.orchestrator.advance(self.session, message)
                self._persist()
                return result

    async def reflect(self, *, snapshot: SessionSnapshot | None = None) -> AdvanceResult:
        """Run one autonomous reflection, waiting for any turn in flight."""
        async with self._lock:
            with session_scope(self.settings.session_key):
                if snapshot is not None:
                    self._adopt(snapshot)
                self.session.log.add("Luminous is beginning an autonomous reflection cycle...")
                result = await self.orchestrator.advance(self.session, REFLECTION_PROMPT, reflection=True)
                self._persist()
                return result

    async def try_reflect(self) -> AdvanceResult | None:
        """Reflect unless a turn is in flight. Returns None when skipped."""
        try:
            self._ensure_idle()
        except SessionBusyError as exc:
            logger.info("reflection.skipped kind={} reason={}", exc.kind, exc)
            return None
        return await self.reflect()

    def hold_reflection(self, result: AdvanceResult) -> None:
        """Keep a background reflection until the client's next exchange."""
        if result.suppressed or result.final_text is None:
            return
        self._held.append(HeldReflection.from_result(result))
        logger.info("reflection.held pending={}", len(self._held))

    def take_reflections(self) -> list[HeldReflection]:
        held, self._held = self._held, []
        return held

    def restore_reflections(self, held: Sequence[HeldReflection]) -> None:
        """Put undelivered reflections back in front of any newer ones."""
        self._held[:0] = held

    async def reset(self) -> None:
        """Forget history, state and keepsake. The log trail is kept."""
        async with self._lock:
            self.store.reset()
            self._held.clear()
            self.session.commit(SessionContext(history=seed_history(), log=self.session.log))
            self.session.log.add("Session reset.")
            logger.info("session.reset key={}", self.settings.session_key)

    def _ensure_idle(self) -> None:
        if self._lock.locked():
            raise SessionBusyError("a turn is already in flight")

    def _adopt(self, snapshot: SessionSnapshot) -> None:
        history = snapshot.history if len(snapshot.history) else seed_history()
        self.session.commit(
            SessionContext(history=history, state=snapshot.state, keepsake=snapshot.keepsake, log=self.session.log)
        )

    def _persist(self) -> None:
        self.store.save(self.session.history)
        self.store.save_profile(self.session.state, self.session.keepsake)
