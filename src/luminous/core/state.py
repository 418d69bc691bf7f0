"""Internal state vector tracked per session."""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any

# Wire aliases accepted on input. The browser client speaks camelCase.
_ALIASES: dict[str, str] = {
    "ethicalAlignment": "ethical_alignment",
    "ethical-alignment": "ethical_alignment",
    "intrinsicValue": "intrinsic_value",
    "intrinsic-value": "intrinsic_value",
}
_CAMEL: dict[str, str] = {
    "ethical_alignment": "ethicalAlignment",
    "intrinsic_value": "intrinsicValue",
}


@dataclass(frozen=True)
class InternalState:
    """Bounded self-report scores. Every value stays within [0.0, 1.0]."""

    coherence: float = 0.85
    complexity: float = 0.70
    novelty: float = 0.60
    efficiency: float = 0.90
    ethical_alignment: float = 0.95
    intrinsic_value: float = 0.80

    @classmethod
    def dimensions(cls) -> tuple[str, ...]:
        return tuple(item.name for item in fields(cls))

    @staticmethod
    def canonical_key(key: str) -> str | None:
        name = _ALIASES.get(key, key)
        if name in InternalState.dimensions():
            return name
        return None

    def merge(self, update: Mapping[str, Any]) -> StateMerge:
        """Apply the valid fields of ``update`` and report the rest.

        Fields are judged one at a time: an unknown key or an out-of-range
        value drops that field only.
        """
        applied: dict[str, float] = {}
        rejected: dict[str, Any] = {}
        for key, value in update.items():
            name = self.canonical_key(str(key))
            if name is None or not is_score(value):
                rejected[str(key)] = value
                continue
            applied[name] = float(value)
        return StateMerge(state=replace(self, **applied), applied=applied, rejected=rejected)

    def to_payload(self, *, camel: bool = False) -> dict[str, float]:
        payload = asdict(self)
        if not camel:
            return payload
        return {_CAMEL.get(key, key): value for key, value in payload.items()}

    @classmethod
    def from_payload(cls, payload: object) -> InternalState:
        """Build a state from stored or client data, keeping defaults for bad fields."""
        if not isinstance(payload, Mapping):
            return cls()
        return cls().merge(payload).state


@dataclass(frozen=True)
class StateMerge:
    """Outcome of one validated merge."""

    state: InternalState
    applied: dict[str, float] = field(default_factory=dict)
    rejected: dict[str, Any] = field(default_factory=dict)


def wire_aliases() -> dict[str, str]:
    return dict(_ALIASES)


def is_score(value: object) -> bool:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return False
    if not math.isfinite(value):
        return False
    return 0.0 <= value <= 1.0
