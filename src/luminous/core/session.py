"""Explicit session context passed through every core call."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime

from loguru import logger

from luminous.core.state import InternalState
from luminous.core.turns import History


class SessionLog:
    """Ordered, additive, human-readable trail shown to the operator."""

    def __init__(self, clock: Callable[[], datetime] = datetime.now) -> None:
        self._clock = clock
        self._lines: list[str] = []

    def __len__(self) -> int:
        return len(self._lines)

    @property
    def lines(self) -> list[str]:
        return list(self._lines)

    def add(self, entry: str) -> None:
        self._lines.append(f"[{self._clock().strftime('%H:%M:%S')}] {entry}")
        logger.debug("session.log {}", entry)

    def since(self, mark: int) -> list[str]:
        return self._lines[mark:]


@dataclass
class SessionContext:
    """History, state and keepsake of the one ongoing conversation."""

    history: History = field(default_factory=History)
    state: InternalState = field(default_factory=InternalState)
    keepsake: str | None = None
    log: SessionLog = field(default_factory=SessionLog)

    def fork(self) -> SessionContext:
        """Working copy for one turn. The log is shared, the rest is copied."""
        return replace(self, history=self.history.copy())

    def commit(self, other: SessionContext) -> None:
        self.history = other.history
        self.state = other.state
        self.keepsake = other.keepsake
