"""Conversation turns and the ordered history."""

from __future__ import annotations

import json
import uuid
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal

from luminous.errors import HistoryOrderError

Role = Literal["user", "model", "tool"]
ROLES: tuple[Role, ...] = ("user", "model", "tool")
NOT_FOUND_PAYLOAD = {"error": "capability not found"}


def new_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class CapabilityInvocation:
    """A capability call requested by the model."""

    name: str
    args: dict[str, Any] = field(default_factory=dict)
    call_id: str = field(default_factory=new_call_id)

    def to_payload(self) -> dict[str, Any]:
        return {"name": self.name, "args": dict(self.args), "call_id": self.call_id}

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> CapabilityInvocation:
        args = payload.get("args")
        return cls(
            name=str(payload.get("name", "")),
            args=dict(args) if isinstance(args, dict) else {},
            call_id=str(payload.get("call_id") or new_call_id()),
        )


@dataclass(frozen=True)
class CapabilityResult:
    """Outcome of one invocation, correlated by name, call id and position."""

    name: str
    ok: bool
    payload: Any
    call_id: str = ""

    @classmethod
    def success(cls, invocation: CapabilityInvocation, payload: Any) -> CapabilityResult:
        return cls(name=invocation.name, ok=True, payload=payload, call_id=invocation.call_id)

    @classmethod
    def failure(cls, invocation: CapabilityInvocation, payload: Any) -> CapabilityResult:
        return cls(name=invocation.name, ok=False, payload=payload, call_id=invocation.call_id)

    def render(self) -> str:
        try:
            return json.dumps(self.payload, ensure_ascii=False)
        except TypeError:
            return json.dumps(repr(self.payload), ensure_ascii=False)

    def to_payload(self) -> dict[str, Any]:
        return {"name": self.name, "ok": self.ok, "payload": self.payload, "call_id": self.call_id}

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> CapabilityResult:
        return cls(
            name=str(payload.get("name", "")),
            ok=bool(payload.get("ok", False)),
            payload=payload.get("payload"),
            call_id=str(payload.get("call_id") or ""),
        )


@dataclass(frozen=True)
class Part:
    """One content part: text, an invocation request, or a result."""

    text: str | None = None
    invocation: CapabilityInvocation | None = None
    result: CapabilityResult | None = None

    def __post_init__(self) -> None:
        present = sum(item is not None for item in (self.text, self.invocation, self.result))
        if present != 1:
            raise ValueError("a part holds exactly one of text, invocation or result")

    def to_payload(self) -> dict[str, Any]:
        if self.invocation is not None:
            return {"invocation": self.invocation.to_payload()}
        if self.result is not None:
            return {"result": self.result.to_payload()}
        return {"text": self.text}

    @classmethod
    def from_payload(cls, payload: object) -> Part | None:
        if not isinstance(payload, dict):
            return None
        if isinstance(invocation := payload.get("invocation"), dict):
            return cls(invocation=CapabilityInvocation.from_payload(invocation))
        if isinstance(result := payload.get("result"), dict):
            return cls(result=CapabilityResult.from_payload(result))
        if isinstance(text := payload.get("text"), str):
            return cls(text=text)
        return None


@dataclass(frozen=True)
class Turn:
    """One role-tagged unit of conversation content."""

    role: Role
    parts: tuple[Part, ...]

    @classmethod
    def user(cls, text: str) -> Turn:
        return cls(role="user", parts=(Part(text=text),))

    @classmethod
    def model(cls, text: str = "", invocations: Sequence[CapabilityInvocation] = ()) -> Turn:
        parts: list[Part] = []
        if text:
            parts.append(Part(text=text))
        parts.extend(Part(invocation=item) for item in invocations)
        if not parts:
            parts.append(Part(text=""))
        return cls(role="model", parts=tuple(parts))

    @classmethod
    def tool(cls, results: Sequence[CapabilityResult]) -> Turn:
        return cls(role="tool", parts=tuple(Part(result=item) for item in results))

    @property
    def text(self) -> str:
        return "".join(part.text for part in self.parts if part.text)

    @property
    def invocations(self) -> list[CapabilityInvocation]:
        return [part.invocation for part in self.parts if part.invocation is not None]

    @property
    def results(self) -> list[CapabilityResult]:
        return [part.result for part in self.parts if part.result is not None]

    def to_payload(self) -> dict[str, Any]:
        return {"role": self.role, "parts": [part.to_payload() for part in self.parts]}

    @classmethod
    def from_payload(cls, payload: object) -> Turn | None:
        if not isinstance(payload, dict):
            return None
        role = payload.get("role")
        raw_parts = payload.get("parts")
        if role not in ROLES or not isinstance(raw_parts, list):
            return None
        parts = tuple(part for part in (Part.from_payload(item) for item in raw_parts) if part is not None)
        if not parts:
            return None
        return cls(role=role, parts=parts)


class History:
    """Append-only ordered turns.

    A tool turn must directly follow a model turn that requested
    capabilities and hold exactly one result per request, in request order.
    """

    def __init__(self, turns: Iterable[Turn] = ()) -> None:
        self._turns: list[Turn] = []
        for turn in turns:
            self.append(turn)

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self) -> Iterator[Turn]:
        return iter(self._turns)

    def __getitem__(self, index: int) -> Turn:
        return self._turns[index]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, History):
            return NotImplemented
        return self._turns == other._turns

    @property
    def turns(self) -> list[Turn]:
        return list(self._turns)

    @property
    def pending_invocations(self) -> list[CapabilityInvocation]:
        """Invocations of the last turn that still await their tool turn."""
        if not self._turns or self._turns[-1].role != "model":
            return []
        return self._turns[-1].invocations

    def copy(self) -> History:
        clone = History()
        clone._turns = list(self._turns)
        return clone

    def append(self, turn: Turn) -> None:
        pending = self.pending_invocations
        if turn.role == "tool":
            self._check_results(pending, turn.results)
        elif pending:
            raise HistoryOrderError(f"{len(pending)} invocation(s) still await results before a {turn.role} turn")
        self._turns.append(turn)

    @staticmethod
    def _check_results(pending: list[CapabilityInvocation], results: list[CapabilityResult]) -> None:
        if not pending:
            raise HistoryOrderError("tool turn must follow a model turn that requested capabilities")
        if len(results) != len(pending):
            raise HistoryOrderError(f"expected {len(pending)} result(s), got {len(results)}")
        for invocation, result in zip(pending, results, strict=True):
            if result.name != invocation.name or result.call_id != invocation.call_id:
                raise HistoryOrderError(f"result {result.name!r} does not answer invocation {invocation.name!r}")

    def to_payload(self) -> list[dict[str, Any]]:
        return [turn.to_payload() for turn in self._turns]

    @classmethod
    def from_payload(cls, payload: object) -> History:
        """Rebuild a history, skipping malformed entries the way the tape reader does."""
        history = cls()
        if not isinstance(payload, list):
            return history
        for item in payload:
            turn = Turn.from_payload(item)
            if turn is None:
                continue
            try:
                history.append(turn)
            except HistoryOrderError:
                continue
        return history
